"""
Persistence for scanned issues and their clarifying questions.

Design decisions:
- Issue ids are derived from the tracker key, so a rescan of the same
  key always lands on the same row
- Upsert is select-then-update/insert inside a transaction; callers hold
  the per-key lock around the whole scan
- Q&A rows belong to their issue and are deleted with it
- Question order is the insertion sequence
"""
import hashlib
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from decisioning.rule_engine import MissingItem
from errors import NotFoundError
from .database import Database, new_id, utcnow
from .models import QaAnswer, ScannedIssue, format_question


logger = logging.getLogger(__name__)

UPDATABLE_ISSUE_FIELDS = (
    'summary', 'description', 'assignee', 'readiness_score', 'status',
    'missing_items', 'questions_generated', 'slack_message_sent',
    'manual_override', 'override_reason', 'scanned_at',
)


def issue_id_for(jira_key: str) -> str:
    """Stable issue id for a tracker key."""
    return hashlib.md5(jira_key.encode()).hexdigest()[:16]


def _serialize_missing(missing: Sequence[Any]) -> str:
    return json.dumps([
        m.to_dict() if isinstance(m, MissingItem) else MissingItem.from_dict(m).to_dict()
        for m in missing
    ])


class IssueStore:
    """
    Reads and writes scanned issues and Q&A rows.

    Operations:
    1. upsert_scan: write a scan result keyed by jira_key
    2. get / find_by_key / list_issues: reads with optional filters
    3. update: partial update of flags, status and score
    4. questions: add, list, answer, and clear unanswered rows
    5. delete: remove an issue and its questions
    """

    def __init__(self, database: Database):
        self.db = database

    def get(self, issue_id: str) -> ScannedIssue:
        """
        Raises:
            NotFoundError: If the issue does not exist
        """
        row = self.db.fetch_one("SELECT * FROM scanned_issues WHERE id = ?", [issue_id])
        if row is None:
            raise NotFoundError("Issue", issue_id)
        return ScannedIssue.from_row(row)

    def find_by_key(self, jira_key: str) -> Optional[ScannedIssue]:
        row = self.db.fetch_one("SELECT * FROM scanned_issues WHERE jira_key = ?", [jira_key])
        return ScannedIssue.from_row(row) if row else None

    def list_issues(self, status: Optional[str] = None, assignee: Optional[str] = None) -> List[ScannedIssue]:
        """
        List scanned issues ordered by key.

        Args:
            status: Only issues with this status
            assignee: Only issues assigned to this user
        """
        clauses = []
        params: List[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if assignee:
            clauses.append("assignee = ?")
            params.append(assignee)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.db.fetch_all(f"SELECT * FROM scanned_issues {where} ORDER BY jira_key", params)
        return [ScannedIssue.from_row(row) for row in rows]

    def count(self) -> int:
        return self.db.fetch_value("SELECT COUNT(*) FROM scanned_issues") or 0

    def upsert_scan(
        self,
        jira_key: str,
        summary: str,
        description: str,
        assignee: str,
        readiness_score: float,
        status: str,
        missing_items: Sequence[Any],
    ) -> ScannedIssue:
        """
        Insert or update the row for jira_key with a fresh scan result.

        Existing flags (questions_generated, slack_message_sent,
        manual_override, override_reason) are preserved.

        Returns:
            The persisted issue
        """
        now = utcnow()
        missing_json = _serialize_missing(missing_items)

        with self.db.transaction() as conn:
            existing = conn.execute(
                "SELECT id FROM scanned_issues WHERE jira_key = ?", [jira_key]
            ).fetchone()

            if existing:
                issue_id = existing[0]
                conn.execute("""
                    UPDATE scanned_issues
                    SET summary = ?, description = ?, assignee = ?,
                        readiness_score = ?, status = ?, missing_items = ?,
                        scanned_at = ?, updated_at = ?
                    WHERE id = ?
                """, [
                    summary, description, assignee, readiness_score, status,
                    missing_json, now, now, issue_id
                ])
            else:
                issue_id = issue_id_for(jira_key)
                conn.execute("""
                    INSERT INTO scanned_issues
                    (id, jira_key, summary, description, assignee, readiness_score,
                     status, missing_items, scanned_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, [
                    issue_id, jira_key, summary, description, assignee,
                    readiness_score, status, missing_json, now, now
                ])

        return self.get(issue_id)

    def update(self, issue_id: str, **fields) -> ScannedIssue:
        """
        Partial update of an issue row; updated_at is always refreshed.

        Raises:
            NotFoundError: If the issue does not exist
            ValueError: If a field is not updatable
        """
        unknown = set(fields) - set(UPDATABLE_ISSUE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown issue fields: {', '.join(sorted(unknown))}")

        if 'missing_items' in fields:
            fields['missing_items'] = _serialize_missing(fields['missing_items'])
        fields['updated_at'] = utcnow()

        assignments = ', '.join(f"{name} = ?" for name in fields)
        with self.db.transaction() as conn:
            found = conn.execute("SELECT 1 FROM scanned_issues WHERE id = ?", [issue_id]).fetchone()
            if not found:
                raise NotFoundError("Issue", issue_id)
            conn.execute(
                f"UPDATE scanned_issues SET {assignments} WHERE id = ?",
                list(fields.values()) + [issue_id]
            )
        return self.get(issue_id)

    def delete(self, issue_id: str) -> None:
        """Delete an issue together with its Q&A rows."""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM qa_answers WHERE issue_id = ?", [issue_id])
            conn.execute("DELETE FROM scanned_issues WHERE id = ?", [issue_id])

    # Q&A rows

    def list_questions(self, issue_id: str) -> List[QaAnswer]:
        rows = self.db.fetch_all(
            "SELECT * FROM qa_answers WHERE issue_id = ? ORDER BY seq",
            [issue_id]
        )
        return [QaAnswer.from_row(row) for row in rows]

    def answered_questions(self, issue_id: str) -> List[str]:
        """Question strings with a non-empty answer, in question order."""
        return [qa.question for qa in self.list_questions(issue_id) if qa.is_answered]

    def unanswered_questions(self, issue_id: str) -> List[QaAnswer]:
        return [qa for qa in self.list_questions(issue_id) if not qa.is_answered]

    def get_question(self, qa_id: str) -> QaAnswer:
        row = self.db.fetch_one("SELECT * FROM qa_answers WHERE id = ?", [qa_id])
        if row is None:
            raise NotFoundError("Question", qa_id)
        return QaAnswer.from_row(row)

    def find_question(self, issue_id: str, question: str) -> Optional[QaAnswer]:
        """Match by full question string; unanswered rows win over answered ones."""
        matches = [qa for qa in self.list_questions(issue_id) if qa.question == question]
        for qa in matches:
            if not qa.is_answered:
                return qa
        return matches[0] if matches else None

    def add_questions(self, issue_id: str, questions: Sequence[Tuple[str, str]]) -> List[QaAnswer]:
        """
        Insert unanswered questions.

        Args:
            questions: (rule_name, text) pairs in display order
        """
        now = utcnow()
        with self.db.transaction() as conn:
            for rule_name, text in questions:
                conn.execute("""
                    INSERT INTO qa_answers (id, issue_id, rule_name, question, answer, created_at)
                    VALUES (?, ?, ?, ?, '', ?)
                """, [new_id(), issue_id, rule_name, format_question(rule_name, text), now])
        return self.list_questions(issue_id)

    def add_answered_question(self, issue_id: str, rule_name: str, question: str, answer: str) -> QaAnswer:
        """Insert a question that arrives already answered."""
        qa_id = new_id()
        now = utcnow()
        with self.db.transaction() as conn:
            conn.execute("""
                INSERT INTO qa_answers
                (id, issue_id, rule_name, question, answer, answered_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [qa_id, issue_id, rule_name, question, answer, now, now])
        return self.get_question(qa_id)

    def record_answer(self, qa_id: str, answer: str) -> QaAnswer:
        with self.db.transaction() as conn:
            conn.execute("""
                UPDATE qa_answers SET answer = ?, answered_at = ?
                WHERE id = ?
            """, [answer, utcnow(), qa_id])
        return self.get_question(qa_id)

    def delete_unanswered(self, issue_id: str) -> int:
        """Delete questions without an answer; answered rows are kept."""
        with self.db.transaction() as conn:
            count = conn.execute("""
                SELECT COUNT(*) FROM qa_answers
                WHERE issue_id = ? AND trim(answer) = ''
            """, [issue_id]).fetchone()[0]
            conn.execute("""
                DELETE FROM qa_answers
                WHERE issue_id = ? AND trim(answer) = ''
            """, [issue_id])
        return count
