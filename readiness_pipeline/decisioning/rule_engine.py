"""
Scoring engine that evaluates an issue against a DoR rule set.

All functions here are pure: they read the issue and rules and return
values without side effects, so they can run concurrently across issues.

Score = weighted pass rate of the enabled rules, scaled to 0-5.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Dict, Any, Optional, Sequence, Pattern
import logging
import re

from errors import PatternError
from .explainer import suggestion_for
from .rules import Rule, MAX_SCORE


logger = logging.getLogger(__name__)

# Legacy inline case-insensitive flag carried by older rule definitions.
LEGACY_CASE_FLAG = re.compile(r'\(\?i\)')

BOOST_DAMPING = 0.6


@dataclass
class RuleResult:
    """Pass/fail outcome of one rule."""
    rule: str
    passed: bool
    weight: float
    error: Optional[str] = None


@dataclass
class MissingItem:
    """An unmet DoR criterion."""
    rule: str
    severity: str
    suggestion: str

    def to_dict(self) -> Dict[str, str]:
        return {'rule': self.rule, 'severity': self.severity, 'suggestion': self.suggestion}

    @classmethod
    def from_dict(cls, data: Any) -> 'MissingItem':
        # Older rows stored a bare rule name
        if isinstance(data, str):
            return cls(rule=data, severity='warn', suggestion='')
        return cls(
            rule=data.get('rule', ''),
            severity=data.get('severity', 'warn'),
            suggestion=data.get('suggestion', '')
        )


@dataclass
class ScoreResult:
    score: float
    missing: List[MissingItem]
    results: List[RuleResult]


def sanitize_pattern(pattern: str) -> str:
    """
    Strip the legacy inline (?i) marker from a rule pattern.

    Matching is always case-insensitive, so the marker is redundant, and
    an inline flag in the middle of a pattern is an error in Python.
    """
    return LEGACY_CASE_FLAG.sub('', pattern or '')


@lru_cache(maxsize=256)
def _compile(pattern: str) -> Pattern:
    return re.compile(sanitize_pattern(pattern), re.IGNORECASE)


def compile_pattern(rule: Rule) -> Pattern:
    """
    Compile a rule's expected pattern.

    Raises:
        PatternError: If the pattern is not a valid regular expression
    """
    try:
        return _compile(rule.expected_pattern)
    except re.error as e:
        raise PatternError(rule.name, rule.expected_pattern, str(e)) from e


def resolve_field(issue: Any, target_field: str) -> Any:
    """
    Look up a rule's target field on an issue.

    Accepts a NormalizedIssue (fixed schema plus extension map) or a
    plain mapping. Missing values and falsy scalars resolve to ''.
    """
    if hasattr(issue, 'get_field'):
        value = issue.get_field(target_field)
    elif isinstance(issue, dict):
        value = issue.get(target_field)
    else:
        value = getattr(issue, target_field, None)

    # Empty containers are kept: they count as present (see DESIGN.md)
    if isinstance(value, (list, tuple, dict, set)):
        return value
    if value is None or value is False or value == 0 or value == '':
        return ''
    return value


def stringify(value: Any) -> str:
    """String form of a field value for pattern and length checks."""
    if isinstance(value, (list, tuple)):
        return ','.join(stringify(v) for v in value)
    if isinstance(value, dict):
        if 'name' in value:
            return str(value['name'])
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def rule_passes(issue: Any, rule: Rule) -> bool:
    """
    Apply a single rule to an issue.

    Raises:
        PatternError: If the rule pattern is malformed
    """
    field_value = resolve_field(issue, rule.target_field)

    if rule.expected_pattern:
        passes = compile_pattern(rule).search(stringify(field_value)) is not None
    else:
        passes = field_value is not None and field_value != ''

    if passes and rule.min_length:
        passes = len(stringify(field_value)) >= rule.min_length

    return passes


def evaluate(issue: Any, rules: Sequence[Rule]) -> List[RuleResult]:
    """
    Evaluate every enabled rule, in order.

    A malformed pattern is logged and the rule counts as failing.
    """
    results = []
    for rule in rules:
        if not rule.enabled:
            continue
        try:
            passed = rule_passes(issue, rule)
            error = None
        except PatternError as e:
            logger.warning(str(e))
            passed = False
            error = str(e)
        results.append(RuleResult(rule=rule.name, passed=passed, weight=rule.weight, error=error))
    return results


def score_results(results: Sequence[RuleResult]) -> float:
    total_weight = 0.0
    earned = 0.0
    for result in results:
        total_weight += result.weight
        if result.passed:
            earned += result.weight
    return (earned / total_weight) * MAX_SCORE if total_weight > 0 else 0.0


def score(issue: Any, rules: Sequence[Rule]) -> float:
    """
    Compute the raw 0-5 readiness score of an issue.

    Returns:
        Weighted pass rate scaled to 5, or 0 when no rule is enabled
    """
    return score_results(evaluate(issue, rules))


def is_answered(rule_name: str, answered_questions: Sequence[str]) -> bool:
    """True if any answered question mentions the rule name (case-insensitive)."""
    needle = rule_name.lower()
    return any(needle in (q or '').lower() for q in answered_questions)


def missing_items(
    issue: Any,
    rules: Sequence[Rule],
    answered_questions: Sequence[str] = (),
    results: Optional[Sequence[RuleResult]] = None
) -> List[MissingItem]:
    """
    List the enabled rules an issue fails, in rule order.

    A failing rule is considered satisfied when an answered question
    carries its name, even though the source field is unchanged.

    Args:
        issue: Issue to check
        rules: Ordered rules
        answered_questions: Question strings that have a non-empty answer
        results: Precomputed evaluate() output, to avoid re-evaluating
    """
    if results is None:
        results = evaluate(issue, rules)
    passed = {r.rule: r.passed for r in results}

    missing = []
    for rule in rules:
        if not rule.enabled or passed.get(rule.name, False):
            continue
        if is_answered(rule.name, answered_questions):
            continue
        missing.append(MissingItem(
            rule=rule.name,
            severity=rule.severity,
            suggestion=suggestion_for(rule.name)
        ))
    return missing


def boost_score(raw: float, answered: int, total_enabled_rules: int) -> float:
    """
    Raise a raw score in proportion to answered clarifying questions.

    The gap to 5 is closed by answered/total * 0.6, so answers alone
    never reach a perfect score unless the fields change.
    """
    if answered <= 0:
        return raw
    ratio = answered / max(total_enabled_rules, 1)
    return min(MAX_SCORE, raw + ratio * (MAX_SCORE - raw) * BOOST_DAMPING)


def score_issue(
    issue: Any,
    rules: Sequence[Rule],
    answered_questions: Sequence[str] = ()
) -> ScoreResult:
    """
    Score an issue and derive its missing items.

    When answered questions are given the score is boosted (rescan path).
    """
    results = evaluate(issue, rules)
    raw = score_results(results)
    missing = missing_items(issue, rules, answered_questions, results=results)

    final = raw
    if answered_questions:
        enabled = sum(1 for r in rules if r.enabled)
        final = boost_score(raw, len(answered_questions), enabled)

    return ScoreResult(score=final, missing=missing, results=list(results))


def explain_score(issue: Any, rules: Sequence[Rule]) -> Dict[str, Any]:
    """
    Detailed scoring trace for display or debugging.

    Returns:
        Dictionary with the score and one entry per evaluated rule
    """
    results = evaluate(issue, rules)
    return {
        'score': score_results(results),
        'evaluation_trace': [
            {'rule': r.rule, 'weight': r.weight, 'passed': r.passed, 'error': r.error}
            for r in results
        ],
        'total_rules_evaluated': len(results),
    }
