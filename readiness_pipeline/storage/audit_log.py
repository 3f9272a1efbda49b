"""
Append-only audit log and the user mapping cache.

The audit log has no update or delete path; every mutating pipeline
action records one entry.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from .database import Database, new_id, utcnow
from .models import AuditEntry, UserMapping


logger = logging.getLogger(__name__)

SYSTEM_USER = 'system'


class AuditLog:
    """Writes and reads audit entries."""

    def __init__(self, database: Database):
        self.db = database

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        changes: Optional[Dict[str, Any]] = None,
        user_id: str = SYSTEM_USER
    ) -> str:
        """
        Append an entry.

        Joins the caller's transaction when one is open.

        Returns:
            Entry id
        """
        entry_id = new_id()
        with self.db.transaction() as conn:
            conn.execute("""
                INSERT INTO audit_log (id, action, entity_type, entity_id, user_id, changes, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                entry_id, action, entity_type, entity_id, user_id or SYSTEM_USER,
                json.dumps(changes or {}, default=str), utcnow()
            ])
        logger.debug(f"Audit {action} on {entity_type} {entity_id}")
        return entry_id

    def entries(self, entity_id: Optional[str] = None, action: Optional[str] = None) -> List[AuditEntry]:
        clauses = []
        params: List[Any] = []
        if entity_id:
            clauses.append("entity_id = ?")
            params.append(entity_id)
        if action:
            clauses.append("action = ?")
            params.append(action)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.db.fetch_all(f"SELECT * FROM audit_log {where} ORDER BY created_at, id", params)
        return [AuditEntry.from_row(row) for row in rows]


class UserMappingStore:
    """Tracker email -> messaging user id, filled by lookups and seeding."""

    def __init__(self, database: Database):
        self.db = database

    def get_by_email(self, jira_email: str) -> Optional[UserMapping]:
        if not jira_email:
            return None
        row = self.db.fetch_one(
            "SELECT * FROM user_mappings WHERE lower(jira_email) = lower(?)",
            [jira_email]
        )
        return UserMapping.from_row(row) if row else None

    def upsert(self, jira_email: str, slack_user_id: str, slack_display_name: str = '') -> UserMapping:
        with self.db.transaction() as conn:
            existing = conn.execute(
                "SELECT id FROM user_mappings WHERE lower(jira_email) = lower(?)", [jira_email]
            ).fetchone()
            if existing:
                conn.execute("""
                    UPDATE user_mappings SET slack_user_id = ?, slack_display_name = ?
                    WHERE id = ?
                """, [slack_user_id, slack_display_name, existing[0]])
            else:
                conn.execute("""
                    INSERT INTO user_mappings (id, jira_email, slack_user_id, slack_display_name, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, [new_id(), jira_email, slack_user_id, slack_display_name, utcnow()])
        return self.get_by_email(jira_email)

    def list_mappings(self) -> List[UserMapping]:
        rows = self.db.fetch_all("SELECT * FROM user_mappings ORDER BY jira_email")
        return [UserMapping.from_row(row) for row in rows]

    def delete(self, jira_email: str) -> None:
        self.db.execute("DELETE FROM user_mappings WHERE lower(jira_email) = lower(?)", [jira_email])
