"""
Data quality checks for scan outputs.

QualityChecker runs SQL-based validation checks against the
scanned_issues and qa_answers tables after each scan.

Checks implemented:
- No duplicate keys: one row per jira_key
- Scores in range: readiness_score within [0, 5]
- Valid statuses: only the four known statuses
- Question prefix integrity: every question starts with "[rule_name]"
- Waiting consistency: WAITING_ON_SLACK only after a send
- No orphan questions: every Q&A row belongs to an issue
"""
from dataclasses import dataclass
from typing import Any, Dict, List

from decisioning.state_machine import IssueStatus


@dataclass
class QualityCheckResult:
    """
    Result of a single quality check.

    Attributes:
        check_name: Unique identifier for the check
        passed: True if check passed, False otherwise
        message: Human-readable summary of the result
        details: Optional dict with additional context (e.g., counts)
    """
    check_name: str
    passed: bool
    message: str
    details: Dict[str, Any] = None


class QualityChecker:
    """Each check runs one count query and returns a QualityCheckResult."""

    def __init__(self, database):
        """
        Args:
            database: Database instance
        """
        self.db = database

    def run_all_checks(self) -> List[QualityCheckResult]:
        return [
            self.check_no_duplicate_keys(),
            self.check_scores_in_range(),
            self.check_valid_statuses(),
            self.check_question_prefix_integrity(),
            self.check_waiting_consistency(),
            self.check_no_orphan_questions(),
        ]

    def _count(self, sql: str, params=None) -> int:
        return self.db.fetch_value(sql, params) or 0

    def check_no_duplicate_keys(self) -> QualityCheckResult:
        """Upserts must never create a second row for a key."""
        result = self._count("""
            SELECT count(*) FROM (
                SELECT jira_key FROM scanned_issues
                GROUP BY jira_key HAVING count(*) > 1
            )
        """)

        return QualityCheckResult(
            check_name="no_duplicate_keys",
            passed=result == 0,
            message=f"{result} duplicated issue keys" if result > 0 else "All issue keys unique",
            details={"duplicate_count": result}
        )

    def check_scores_in_range(self) -> QualityCheckResult:
        result = self._count("""
            SELECT count(*) FROM scanned_issues
            WHERE readiness_score < 0 OR readiness_score > 5
        """)

        return QualityCheckResult(
            check_name="scores_in_range",
            passed=result == 0,
            message=f"{result} scores outside 0-5" if result > 0 else "All scores within 0-5",
            details={"out_of_range_count": result}
        )

    def check_valid_statuses(self) -> QualityCheckResult:
        statuses = [s.value for s in IssueStatus]
        placeholders = ", ".join("?" for _ in statuses)
        result = self._count(
            f"SELECT count(*) FROM scanned_issues WHERE status NOT IN ({placeholders})",
            statuses
        )

        return QualityCheckResult(
            check_name="valid_statuses",
            passed=result == 0,
            message=f"{result} issues with unknown status" if result > 0 else "All statuses valid",
            details={"invalid_count": result}
        )

    def check_question_prefix_integrity(self) -> QualityCheckResult:
        """
        Questions must keep their "[RuleName]" prefix.

        Answer matching and regeneration rely on it.
        """
        result = self._count("""
            SELECT count(*) FROM qa_answers
            WHERE rule_name <> ''
              AND NOT starts_with(question, '[' || rule_name || ']')
        """)

        return QualityCheckResult(
            check_name="question_prefix_integrity",
            passed=result == 0,
            message=f"{result} questions without rule prefix" if result > 0 else "All questions carry their rule prefix",
            details={"broken_count": result}
        )

    def check_waiting_consistency(self) -> QualityCheckResult:
        result = self._count("""
            SELECT count(*) FROM scanned_issues
            WHERE status = 'WAITING_ON_SLACK' AND slack_message_sent = FALSE
        """)

        return QualityCheckResult(
            check_name="waiting_on_slack_consistency",
            passed=result == 0,
            message=f"{result} issues waiting without a sent message" if result > 0 else "Waiting statuses consistent",
            details={"inconsistent_count": result}
        )

    def check_no_orphan_questions(self) -> QualityCheckResult:
        result = self._count("""
            SELECT count(*) FROM qa_answers q
            LEFT JOIN scanned_issues i ON q.issue_id = i.id
            WHERE i.id IS NULL
        """)

        return QualityCheckResult(
            check_name="no_orphan_questions",
            passed=result == 0,
            message=f"{result} questions without an issue" if result > 0 else "No orphan questions",
            details={"orphan_count": result}
        )
