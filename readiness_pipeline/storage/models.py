"""
Persisted records of the readiness pipeline.

Rows come back from DuckDB as dictionaries; these dataclasses give them
names and handle the JSON columns. Questions keep their wire form
"[RuleName] text" in the question column, with the rule name also
stored in its own column.
"""
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from decisioning.rule_engine import MissingItem


QUESTION_PREFIX = re.compile(r'^\[([^\]]+)\]\s*(.*)$', re.DOTALL)


def format_question(rule_name: str, text: str) -> str:
    """Wire form of a question: "[RuleName] text"."""
    return f"[{rule_name}] {text}"


def parse_question(question: str) -> Tuple[str, str]:
    """
    Split a wire-form question into (rule_name, text).

    Questions without a prefix return an empty rule name.
    """
    match = QUESTION_PREFIX.match(question or '')
    if not match:
        return '', question or ''
    return match.group(1), match.group(2)


def _load_json(value: Any, default: Any) -> Any:
    if value is None or value == '':
        return default
    if isinstance(value, (list, dict)):
        return value
    return json.loads(value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class ScannedIssue:
    """Current readiness state of one tracker issue (one row per key)."""
    id: str
    jira_key: str
    summary: str = ''
    description: str = ''
    assignee: str = ''
    readiness_score: float = 0.0
    status: str = 'NEEDS_INFO'
    missing_items: List[MissingItem] = field(default_factory=list)
    questions_generated: bool = False
    slack_message_sent: bool = False
    manual_override: bool = False
    override_reason: str = ''
    scanned_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'ScannedIssue':
        return cls(
            id=row['id'],
            jira_key=row['jira_key'],
            summary=row.get('summary') or '',
            description=row.get('description') or '',
            assignee=row.get('assignee') or '',
            readiness_score=float(row.get('readiness_score') or 0.0),
            status=row.get('status') or 'NEEDS_INFO',
            missing_items=[MissingItem.from_dict(m) for m in _load_json(row.get('missing_items'), [])],
            questions_generated=bool(row.get('questions_generated')),
            slack_message_sent=bool(row.get('slack_message_sent')),
            manual_override=bool(row.get('manual_override')),
            override_reason=row.get('override_reason') or '',
            scanned_at=row.get('scanned_at'),
            updated_at=row.get('updated_at'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'jira_key': self.jira_key,
            'summary': self.summary,
            'description': self.description,
            'assignee': self.assignee,
            'readiness_score': round(self.readiness_score, 2),
            'status': self.status,
            'missing_items': [m.to_dict() for m in self.missing_items],
            'questions_generated': self.questions_generated,
            'slack_message_sent': self.slack_message_sent,
            'manual_override': self.manual_override,
            'override_reason': self.override_reason,
            'scanned_at': _iso(self.scanned_at),
            'updated_at': _iso(self.updated_at),
        }


@dataclass
class QaAnswer:
    """A clarifying question and its (possibly empty) answer."""
    id: str
    issue_id: str
    rule_name: str
    question: str
    answer: str = ''
    answered_at: Optional[datetime] = None
    seq: int = 0

    @property
    def is_answered(self) -> bool:
        return bool(self.answer and self.answer.strip())

    @property
    def question_text(self) -> str:
        return parse_question(self.question)[1]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'QaAnswer':
        return cls(
            id=row['id'],
            issue_id=row['issue_id'],
            rule_name=row.get('rule_name') or parse_question(row['question'])[0],
            question=row['question'],
            answer=row.get('answer') or '',
            answered_at=row.get('answered_at'),
            seq=int(row.get('seq') or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'issue_id': self.issue_id,
            'rule_name': self.rule_name,
            'question': self.question,
            'answer': self.answer,
            'answered_at': _iso(self.answered_at),
        }


@dataclass
class AuditEntry:
    id: str
    action: str
    entity_type: str
    entity_id: str
    user_id: str = 'system'
    changes: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'AuditEntry':
        return cls(
            id=row['id'],
            action=row['action'],
            entity_type=row['entity_type'],
            entity_id=row['entity_id'],
            user_id=row.get('user_id') or 'system',
            changes=_load_json(row.get('changes'), {}),
            created_at=row.get('created_at'),
        )


@dataclass
class UserMapping:
    """Tracker email to messaging user id."""
    jira_email: str
    slack_user_id: str
    slack_display_name: str = ''
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'UserMapping':
        return cls(
            id=row['id'],
            jira_email=row['jira_email'],
            slack_user_id=row['slack_user_id'],
            slack_display_name=row.get('slack_display_name') or '',
        )
