"""
Storage layer for the readiness pipeline.

Data persistence uses DuckDB; every mutation runs in a transaction.

Components:
- Database: Connection management, schema and transactions
- RuleSetStore: Rule sets and ordered rules
- IssueStore: Scanned issues and their Q&A rows
- AuditLog / UserMappingStore: Append-only audit and identity cache
- KeyedLocks: Per-issue locks for read-modify-write sequences

Usage:
    from storage import Database, IssueStore

    db = Database("readiness.duckdb")
    db.initialize_schema()

    issues = IssueStore(db)
    issue = issues.upsert_scan("DEMO-101", ...)
"""

from .database import Database, new_id, utcnow
from .audit_log import AuditLog, UserMappingStore
from .issue_store import IssueStore, issue_id_for
from .locks import KeyedLocks
from .models import AuditEntry, QaAnswer, ScannedIssue, UserMapping, format_question, parse_question
from .ruleset_store import RuleSetStore

__all__ = [
    "Database",
    "AuditLog",
    "AuditEntry",
    "IssueStore",
    "KeyedLocks",
    "QaAnswer",
    "RuleSetStore",
    "ScannedIssue",
    "UserMapping",
    "UserMappingStore",
    "format_question",
    "issue_id_for",
    "new_id",
    "parse_question",
    "utcnow",
]
