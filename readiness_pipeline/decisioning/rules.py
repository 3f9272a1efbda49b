"""
Rule definitions for Definition of Ready (DoR) scoring.

A rule checks one field of an issue, either for presence or against a
regular expression. Rules belong to an ordered, versioned rule set that
also carries the status thresholds.
"""
from dataclasses import dataclass, field, replace
from typing import Optional, Dict, Any, List

from errors import ValidationError


SEVERITIES = ('error', 'warn', 'info')
DETECTION_FIELD_PRESENCE = 'field_presence'

DEFAULT_THRESHOLD_READY = 4.0
DEFAULT_THRESHOLD_CLARIFICATION = 2.5
MIN_THRESHOLD = 0.1
MAX_SCORE = 5.0


@dataclass
class Rule:
    """A single weighted DoR criterion."""
    name: str
    description: str
    enabled: bool = True
    severity: str = 'warn'  # error | warn | info
    weight: float = 1.0
    detection_method: str = DETECTION_FIELD_PRESENCE
    target_field: str = ''
    expected_pattern: str = ''
    min_length: Optional[int] = None
    id: Optional[str] = None
    position: int = 0

    def validate(self) -> None:
        """
        Check weight and severity ranges.

        Raises:
            ValidationError: If the rule is out of range
        """
        validate_weight(self.weight)
        if self.severity not in SEVERITIES:
            raise ValidationError(f"severity must be one of {', '.join(SEVERITIES)}")
        if not self.name or not self.name.strip():
            raise ValidationError("rule name is required")
        validate_min_length(self.min_length)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'enabled': self.enabled,
            'severity': self.severity,
            'weight': self.weight,
            'detection_method': self.detection_method,
            'target_field': self.target_field,
            'expected_pattern': self.expected_pattern,
            'min_length': self.min_length,
        }


@dataclass
class RuleSet:
    """
    Project-scoped, versioned collection of rules plus thresholds.

    Rule order is significant: question lists are truncated in rule order.
    """
    project_key: str
    version: int = 1
    is_active: bool = True
    threshold_ready: float = DEFAULT_THRESHOLD_READY
    threshold_clarification: float = DEFAULT_THRESHOLD_CLARIFICATION
    rules: List[Rule] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def enabled_rules(self) -> List[Rule]:
        return [r for r in self.rules if r.enabled]

    def validate(self) -> None:
        validate_thresholds(self.threshold_ready, self.threshold_clarification)
        for rule in self.rules:
            rule.validate()


def validate_weight(weight: Any) -> float:
    """
    Validate a rule weight.

    Returns:
        The weight as float

    Raises:
        ValidationError: If weight is not a number in [0, 1]
    """
    try:
        value = float(weight)
    except (TypeError, ValueError):
        raise ValidationError(f"weight must be a number, got {weight!r}")

    if value < 0 or value > 1:
        raise ValidationError('weight must be between 0.0 and 1.0')
    return value


def validate_min_length(min_length: Any) -> Optional[int]:
    """
    Validate an optional minimum text length.

    Raises:
        ValidationError: If min_length is not a non-negative integer
    """
    if min_length is None or min_length == '':
        return None
    if isinstance(min_length, bool):
        raise ValidationError(f"min_length must be an integer, got {min_length!r}")
    try:
        value = int(min_length)
    except (TypeError, ValueError):
        raise ValidationError(f"min_length must be an integer, got {min_length!r}")

    if value != float(min_length) or value < 0:
        raise ValidationError('min_length must be a non-negative integer')
    return value


def validate_thresholds(ready: Any, clarification: Any) -> tuple:
    """
    Validate a pair of status thresholds.

    Both must lie in [0.1, 5.0] and ready must be strictly greater.

    Raises:
        ValidationError: If the thresholds are out of range or misordered
    """
    try:
        ready_value = float(ready)
        clarification_value = float(clarification)
    except (TypeError, ValueError):
        raise ValidationError('thresholds must be numbers')

    if ready_value < MIN_THRESHOLD or ready_value > MAX_SCORE:
        raise ValidationError('threshold_ready must be between 0.1 and 5.0')
    if clarification_value < MIN_THRESHOLD or clarification_value > MAX_SCORE:
        raise ValidationError('threshold_clarification must be between 0.1 and 5.0')
    if ready_value <= clarification_value:
        raise ValidationError('threshold_ready must be greater than threshold_clarification')

    return ready_value, clarification_value


DEFAULT_RULES: List[Rule] = [
    Rule(
        name='Acceptance Criteria Present',
        description='Story must have clear acceptance criteria defined',
        severity='error',
        weight=1.0,
        target_field='description',
        expected_pattern='(?i)(acceptance criteria|AC:)',
        min_length=20,
    ),
    Rule(
        name='Story Points Estimated',
        description='Story must have story points assigned',
        severity='warn',
        weight=0.8,
        target_field='customfield_10016',
    ),
    Rule(
        name='Assignee Set',
        description='Story should have an assignee before sprint',
        severity='info',
        weight=0.5,
        target_field='assignee',
    ),
    Rule(
        name='Technical Design Present',
        description='Complex stories should have technical design notes',
        severity='warn',
        weight=0.9,
        target_field='description',
        expected_pattern='(?i)(technical design|design notes|architecture)',
        min_length=50,
    ),
    Rule(
        name='Dependencies Identified',
        description='Story should document any dependencies',
        severity='warn',
        weight=0.7,
        target_field='description',
        expected_pattern='(?i)(depends on|dependency|blocked by)',
    ),
    Rule(
        name='Test Strategy Defined',
        description='Story should have testing approach documented',
        severity='warn',
        weight=0.8,
        target_field='description',
        expected_pattern='(?i)(test strategy|testing approach|QA notes)',
        min_length=30,
    ),
    Rule(
        name='User Impact Documented',
        description='Story should explain impact on users',
        severity='info',
        weight=0.6,
        target_field='description',
        expected_pattern='(?i)(user impact|affects users|customer impact)',
    ),
    Rule(
        name='Labels Present',
        description='Story should have relevant labels/tags',
        severity='info',
        weight=0.4,
        target_field='labels',
    ),
    Rule(
        name='Priority Set',
        description='Story must have a priority level',
        severity='error',
        weight=0.9,
        target_field='priority',
    ),
]


def get_default_rules() -> List[Rule]:
    """
    Get fresh copies of the default rule chain, in order.

    Copies are returned so callers can edit weights without touching
    the module-level defaults.
    """
    return [replace(rule, position=index) for index, rule in enumerate(DEFAULT_RULES)]


def get_default_ruleset(project_key: str = 'DEMO') -> RuleSet:
    """Default rule set used by demo data and tests."""
    return RuleSet(project_key=project_key, version=1, rules=get_default_rules())
