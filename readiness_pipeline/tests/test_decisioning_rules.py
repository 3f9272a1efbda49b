"""
Tests for rule definitions and rule set validation.
"""
import pytest

from decisioning.rules import (
    DEFAULT_RULES,
    Rule,
    RuleSet,
    get_default_rules,
    get_default_ruleset,
    validate_min_length,
    validate_thresholds,
    validate_weight,
)
from errors import ValidationError


class TestDefaultRules:
    """The shipped nine-rule chain."""

    def test_default_rule_order(self):
        assert [r.name for r in get_default_rules()] == [
            "Acceptance Criteria Present",
            "Story Points Estimated",
            "Assignee Set",
            "Technical Design Present",
            "Dependencies Identified",
            "Test Strategy Defined",
            "User Impact Documented",
            "Labels Present",
            "Priority Set",
        ]

    def test_default_weights(self):
        assert sum(r.weight for r in get_default_rules()) == pytest.approx(6.6)

    def test_default_rules_are_copies(self):
        """Editing a returned rule leaves the module defaults alone."""
        rules = get_default_rules()
        rules[0].weight = 0.1
        assert DEFAULT_RULES[0].weight == 1.0

    def test_positions_follow_order(self):
        assert [r.position for r in get_default_rules()] == list(range(9))

    def test_default_ruleset(self):
        ruleset = get_default_ruleset("PROJ")
        ruleset.validate()
        assert ruleset.project_key == "PROJ"
        assert ruleset.threshold_ready == 4.0
        assert ruleset.threshold_clarification == 2.5
        assert len(ruleset.enabled_rules) == 9


class TestWeightValidation:
    @pytest.mark.parametrize("weight", [0, 0.0, 0.5, 1, "0.7"])
    def test_accepts_weights_in_range(self, weight):
        assert 0.0 <= validate_weight(weight) <= 1.0

    @pytest.mark.parametrize("weight", [-0.1, 1.01, 5, "heavy", None])
    def test_rejects_weights_out_of_range(self, weight):
        with pytest.raises(ValidationError):
            validate_weight(weight)


class TestMinLengthValidation:
    @pytest.mark.parametrize("value, expected", [(None, None), ("", None), (0, 0), (30, 30), ("30", 30)])
    def test_accepts(self, value, expected):
        assert validate_min_length(value) == expected

    @pytest.mark.parametrize("value", [-1, "long", 2.5, "2.5", True, [30]])
    def test_rejects(self, value):
        with pytest.raises(ValidationError):
            validate_min_length(value)

    def test_rule_rejects_non_numeric_min_length(self):
        with pytest.raises(ValidationError):
            Rule(name="X", description="", min_length="lots").validate()


class TestThresholdValidation:
    def test_accepts_ordered_pair(self):
        assert validate_thresholds(4.0, 2.5) == (4.0, 2.5)
        assert validate_thresholds(5.0, 0.1) == (5.0, 0.1)

    @pytest.mark.parametrize("ready,clarification", [
        (2.5, 2.5),
        (2.0, 3.0),
        (5.1, 2.0),
        (4.0, 0.0),
        (0.05, 0.01),
        ("high", 2.0),
    ])
    def test_rejects_invalid_pair(self, ready, clarification):
        with pytest.raises(ValidationError):
            validate_thresholds(ready, clarification)


class TestRuleValidation:
    def test_rejects_unknown_severity(self):
        rule = Rule(name="X", description="", severity="fatal")
        with pytest.raises(ValidationError):
            rule.validate()

    def test_rejects_blank_name(self):
        with pytest.raises(ValidationError):
            Rule(name="  ", description="").validate()

    def test_rejects_negative_min_length(self):
        with pytest.raises(ValidationError):
            Rule(name="X", description="", min_length=-1).validate()

    def test_ruleset_validates_its_rules(self):
        ruleset = RuleSet(project_key="P", rules=[Rule(name="X", description="", weight=2.0)])
        with pytest.raises(ValidationError):
            ruleset.validate()

    def test_to_dict(self):
        data = get_default_rules()[0].to_dict()
        assert data["name"] == "Acceptance Criteria Present"
        assert data["min_length"] == 20
        assert data["severity"] == "error"
