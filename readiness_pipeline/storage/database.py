"""
Database connection and schema management for the readiness pipeline.

This module provides:
- DuckDB connection lifecycle management
- Tables for rule sets, rules, scanned issues, Q&A, audit log,
  user mappings and scan runs
- Transactions serialized through a single re-entrant lock

Design decisions:
- One connection per Database; every statement runs under self._lock,
  so the object can be shared between worker threads
- Cascading deletes are done by the stores inside a transaction
  (DuckDB has no ON DELETE CASCADE)
- JSON columns for missing items, audit changes and run metrics
"""
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

import duckdb


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


class Database:
    """
    Manages the DuckDB connection, schema and transactions.

    This class is responsible for:
    - Creating and maintaining a single database connection
    - Initializing all pipeline tables
    - Running statements and transactions under one lock
    - Generating scan run IDs
    """

    def __init__(self, db_path: str = "readiness.duckdb"):
        """
        Initialize database manager.

        Args:
            db_path: Path to DuckDB database file (created if doesn't exist),
                     or ':memory:'
        """
        self.db_path = db_path
        self.conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()
        self._tx_depth = 0

    def connect(self) -> duckdb.DuckDBPyConnection:
        """
        Get or create database connection.

        Returns:
            Active DuckDB connection
        """
        with self._lock:
            if self.conn is None:
                self.conn = duckdb.connect(self.db_path)
            return self.conn

    def close(self):
        """Close database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    def initialize_schema(self):
        """
        Create all required tables if they don't exist.

        Tables created:
        - rulesets / rules: DoR rule sets and their ordered rules
        - scanned_issues: One row per tracker key (upserted)
        - qa_answers: Clarifying questions and answers per issue
        - audit_log: Append-only record of mutating actions
        - user_mappings: Tracker email -> messaging user id
        - scan_runs: Full scan metadata
        """
        with self._lock:
            conn = self.connect()

            conn.execute("""
                CREATE TABLE IF NOT EXISTS rulesets (
                    id VARCHAR PRIMARY KEY,
                    project_key VARCHAR NOT NULL,
                    version INTEGER NOT NULL,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    threshold_ready DOUBLE NOT NULL DEFAULT 4.0,
                    threshold_clarification DOUBLE NOT NULL DEFAULT 2.5,
                    created_at TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS rules (
                    id VARCHAR PRIMARY KEY,
                    ruleset_id VARCHAR NOT NULL,
                    position INTEGER NOT NULL,
                    name VARCHAR NOT NULL,
                    description VARCHAR NOT NULL DEFAULT '',
                    enabled BOOLEAN NOT NULL DEFAULT TRUE,
                    severity VARCHAR NOT NULL DEFAULT 'warn',
                    weight DOUBLE NOT NULL DEFAULT 1.0,
                    detection_method VARCHAR NOT NULL DEFAULT 'field_presence',
                    target_field VARCHAR NOT NULL DEFAULT '',
                    expected_pattern VARCHAR NOT NULL DEFAULT '',
                    min_length INTEGER,
                    created_at TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS scanned_issues (
                    id VARCHAR PRIMARY KEY,
                    jira_key VARCHAR NOT NULL UNIQUE,
                    summary VARCHAR NOT NULL DEFAULT '',
                    description VARCHAR NOT NULL DEFAULT '',
                    assignee VARCHAR NOT NULL DEFAULT '',
                    readiness_score DOUBLE NOT NULL DEFAULT 0,
                    status VARCHAR NOT NULL DEFAULT 'NEEDS_INFO',
                    missing_items JSON,
                    questions_generated BOOLEAN NOT NULL DEFAULT FALSE,
                    slack_message_sent BOOLEAN NOT NULL DEFAULT FALSE,
                    manual_override BOOLEAN NOT NULL DEFAULT FALSE,
                    override_reason VARCHAR NOT NULL DEFAULT '',
                    scanned_at TIMESTAMP,
                    updated_at TIMESTAMP
                )
            """)

            conn.execute("CREATE SEQUENCE IF NOT EXISTS qa_answers_seq START 1")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS qa_answers (
                    id VARCHAR PRIMARY KEY,
                    issue_id VARCHAR NOT NULL,
                    seq BIGINT NOT NULL DEFAULT nextval('qa_answers_seq'),
                    rule_name VARCHAR NOT NULL DEFAULT '',
                    question VARCHAR NOT NULL,
                    answer VARCHAR NOT NULL DEFAULT '',
                    answered_at TIMESTAMP,
                    created_at TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    id VARCHAR PRIMARY KEY,
                    action VARCHAR NOT NULL,
                    entity_type VARCHAR NOT NULL,
                    entity_id VARCHAR NOT NULL,
                    user_id VARCHAR NOT NULL DEFAULT 'system',
                    changes JSON,
                    created_at TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_mappings (
                    id VARCHAR PRIMARY KEY,
                    jira_email VARCHAR NOT NULL UNIQUE,
                    slack_user_id VARCHAR NOT NULL,
                    slack_display_name VARCHAR NOT NULL DEFAULT '',
                    created_at TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS scan_runs (
                    run_id VARCHAR PRIMARY KEY,
                    started_at TIMESTAMP,
                    completed_at TIMESTAMP,
                    status VARCHAR,
                    issues_scanned INTEGER,
                    errors INTEGER,
                    metrics JSON
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_rules_ruleset
                ON rules(ruleset_id)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_qa_issue
                ON qa_answers(issue_id)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_audit_entity
                ON audit_log(entity_id)
            """)

    @contextmanager
    def transaction(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Run a block atomically.

        Nested calls join the outermost transaction. On any exception the
        whole transaction is rolled back and the exception re-raised.
        """
        with self._lock:
            conn = self.connect()
            outermost = self._tx_depth == 0
            if outermost:
                conn.execute("BEGIN TRANSACTION")
            self._tx_depth += 1
            try:
                yield conn
            except BaseException:
                self._tx_depth -= 1
                if outermost:
                    conn.execute("ROLLBACK")
                raise
            self._tx_depth -= 1
            if outermost:
                conn.execute("COMMIT")

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> None:
        with self._lock:
            self.connect().execute(sql, params or [])

    def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """Run a query and return rows as dictionaries."""
        with self._lock:
            conn = self.connect()
            cursor = conn.execute(sql, params or [])
            columns = [desc[0] for desc in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def fetch_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_value(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        with self._lock:
            row = self.connect().execute(sql, params or []).fetchone()
            return row[0] if row else None

    def reset(self):
        """
        Delete all scan state: issues, Q&A, and scan runs.

        Rule sets, user mappings and the audit log are kept.
        """
        with self.transaction() as conn:
            conn.execute("DELETE FROM qa_answers")
            conn.execute("DELETE FROM scanned_issues")
            conn.execute("DELETE FROM scan_runs")

    def get_current_run_id(self) -> str:
        """
        Generate a unique run ID for a scan.

        Returns:
            Run ID in format: scan_YYYYMMDD_HHMMSS_xxxxxx
        """
        return f"scan_{utcnow().strftime('%Y%m%d_%H%M%S')}_{new_id()[:6]}"

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
