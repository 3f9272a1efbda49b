"""
Human-readable text for DoR results.

Holds the per-rule suggested fixes and builds the plain-text summary
comments written back to the issue tracker.
"""
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Sequence, Iterable


DEFAULT_SUGGESTION = 'Address this requirement.'

SUGGESTED_FIXES: Dict[str, str] = {
    'Acceptance Criteria Present': 'Add 3-5 bullet points describing expected behavior under "Acceptance Criteria" heading.',
    'Story Points Estimated': 'Estimate complexity and assign story points (1-13 scale).',
    'Assignee Set': 'Assign a team member who will own this work.',
    'Technical Design Present': 'Add a "Technical Design" section describing the implementation approach.',
    'Dependencies Identified': 'List any blocked-by or depends-on relationships with other issues.',
    'Test Strategy Defined': 'Add a "Test Strategy" section describing how this will be tested.',
    'User Impact Documented': 'Describe how this change affects end users.',
    'Labels Present': 'Add relevant labels (e.g., frontend, backend, bug, feature).',
    'Priority Set': 'Set the priority level (Critical, High, Medium, Low).',
}


def suggestion_for(rule_name: str, suggestions: Optional[Dict[str, str]] = None) -> str:
    table = SUGGESTED_FIXES if suggestions is None else suggestions
    return table.get(rule_name, DEFAULT_SUGGESTION)


def _timestamp(now: Optional[datetime]) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def build_dor_comment(
    issue_key: str,
    score: float,
    status: str,
    missing: Sequence[Any],
    now: Optional[datetime] = None
) -> str:
    """
    Build the readiness summary comment for an issue.

    Args:
        issue_key: Tracker key (e.g. DEMO-101)
        score: Readiness score
        status: Resolved status
        missing: MissingItem objects or dicts with rule/severity/suggestion
    """
    lines = [
        '--- DoR Gatekeeper - Readiness Summary ---',
        f"Issue: {issue_key} | Score: {score:.1f}/5.0 | Status: {status}",
        '',
    ]

    if not missing:
        lines.append('All Definition of Ready criteria are satisfied.')
    else:
        lines.append(f"Missing Items ({len(missing)}):")
        for item in missing:
            values = item.to_dict() if hasattr(item, 'to_dict') else item
            lines.append(
                f"  - [{values['severity'].upper()}] {values['rule']}: {values['suggestion']}"
            )

    lines.append('')
    lines.append(f"Scanned at: {_timestamp(now)}")
    lines.append('--- End DoR Gatekeeper ---')
    return '\n'.join(lines)


def build_qa_comment(
    issue_key: str,
    score: float,
    answered_by: str,
    answers: Iterable[Dict[str, str]],
    now: Optional[datetime] = None
) -> str:
    """Build the comment that records a batch of answered questions."""
    lines = [
        '--- DoR Gatekeeper - Q&A Answers ---',
        f"Issue: {issue_key} | Score: {score:.1f}/5.0",
        f"Answered by: {answered_by}",
        '',
        'Questions & Answers:',
    ]

    for answer in answers:
        lines.append(f"  Q: {answer['question']}")
        lines.append(f"  A: {answer['answer']}")
        lines.append('')

    lines.append(f"Answered at: {_timestamp(now)}")
    lines.append('Next Action: Re-scan recommended to update readiness score.')
    lines.append('--- End DoR Gatekeeper ---')
    return '\n'.join(lines)
