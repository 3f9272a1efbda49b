"""
Status state machine for scanned issues.

Statuses:
- NEEDS_INFO, NEEDS_CLARIFICATION, READY: derived from the score
- WAITING_ON_SLACK: forced when questions are sent to messaging

manual_override freezes the status; scans never change a frozen status.
"""
from enum import Enum
from typing import Optional, Dict, Any
import logging

from errors import ValidationError


logger = logging.getLogger(__name__)


class IssueStatus(str, Enum):
    NEEDS_INFO = "NEEDS_INFO"
    NEEDS_CLARIFICATION = "NEEDS_CLARIFICATION"
    READY = "READY"
    WAITING_ON_SLACK = "WAITING_ON_SLACK"


SCORE_STATUSES = (IssueStatus.NEEDS_INFO, IssueStatus.NEEDS_CLARIFICATION, IssueStatus.READY)


class IssueStateMachine:
    """
    Resolves issue status from score, thresholds and override flag.

    Transitions:
    - (re)scan: score >= ready -> READY, >= clarification ->
      NEEDS_CLARIFICATION, else NEEDS_INFO; frozen when overridden
    - messaging send: any -> WAITING_ON_SLACK until the next scan
    - override: any -> requested status (READY by default), frozen
    """

    def __init__(self, threshold_ready: float, threshold_clarification: float):
        self.threshold_ready = threshold_ready
        self.threshold_clarification = threshold_clarification

    @classmethod
    def for_ruleset(cls, ruleset) -> 'IssueStateMachine':
        return cls(ruleset.threshold_ready, ruleset.threshold_clarification)

    def status_for_score(self, score: float) -> IssueStatus:
        if score >= self.threshold_ready:
            return IssueStatus.READY
        if score >= self.threshold_clarification:
            return IssueStatus.NEEDS_CLARIFICATION
        return IssueStatus.NEEDS_INFO

    def resolve(
        self,
        score: float,
        current_status: Optional[str] = None,
        manual_override: bool = False
    ) -> IssueStatus:
        """
        Status after a scan.

        Args:
            score: Readiness score (boosted on rescan)
            current_status: Persisted status, None for a new issue
            manual_override: Whether the issue is frozen
        """
        if manual_override and current_status:
            return parse_status(current_status)
        return self.status_for_score(score)

    @staticmethod
    def messaging_sent() -> IssueStatus:
        """Status after questions are sent, regardless of score."""
        return IssueStatus.WAITING_ON_SLACK

    @staticmethod
    def override(new_status: Optional[str] = None) -> IssueStatus:
        """
        Status after a manual override.

        There is deliberately no way back: an override is never cleared
        by the pipeline.

        Raises:
            ValidationError: If new_status is not a known status
        """
        if not new_status:
            return IssueStatus.READY
        return parse_status(new_status)

    def describe_transition(
        self,
        current_status: Optional[str],
        score: float,
        manual_override: bool = False
    ) -> Dict[str, Any]:
        """Resolve a status and summarize the move for the audit log."""
        new_status = self.resolve(score, current_status, manual_override)
        return {
            'from_status': current_status,
            'to_status': new_status.value,
            'score': score,
            'frozen': bool(manual_override and current_status),
            'changed': current_status != new_status.value,
        }


def parse_status(value: str) -> IssueStatus:
    try:
        return IssueStatus(str(value).upper())
    except ValueError:
        raise ValidationError(
            f"Invalid status: {value}. Expected one of "
            f"{', '.join(s.value for s in IssueStatus)}"
        )
