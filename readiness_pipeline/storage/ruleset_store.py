"""
Persistence for DoR rule sets and their ordered rules.

Rules are owned by their rule set: deleting a rule set deletes its rules
in the same transaction. Rule order is kept in the position column.
"""
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from decisioning.rules import (
    SEVERITIES,
    Rule,
    RuleSet,
    get_default_ruleset,
    validate_min_length,
    validate_thresholds,
    validate_weight,
)
from errors import ConfigurationError, NotFoundError, ValidationError
from .database import Database, new_id, utcnow


logger = logging.getLogger(__name__)

EDITABLE_RULE_FIELDS = (
    'name', 'description', 'enabled', 'severity', 'weight',
    'target_field', 'expected_pattern', 'min_length',
)


def _rule_from_row(row: Dict[str, Any]) -> Rule:
    return Rule(
        id=row['id'],
        position=row['position'],
        name=row['name'],
        description=row['description'],
        enabled=bool(row['enabled']),
        severity=row['severity'],
        weight=float(row['weight']),
        detection_method=row['detection_method'],
        target_field=row['target_field'],
        expected_pattern=row['expected_pattern'],
        min_length=row['min_length'],
    )


class RuleSetStore:
    """
    CRUD for rule sets.

    Operations:
    1. create_ruleset / seed_default: insert a validated rule set
    2. get_active_ruleset: project rule set, else any active one
    3. update_rule / update_thresholds: validated partial edits
    4. delete_ruleset: removes the set and its rules
    """

    def __init__(self, database: Database):
        self.db = database

    def create_ruleset(self, ruleset: RuleSet) -> RuleSet:
        """
        Insert a rule set and its rules.

        Raises:
            ValidationError: If thresholds or any rule are out of range
        """
        ruleset.validate()

        ruleset_id = ruleset.id or new_id()
        now = utcnow()
        rules = [
            replace(rule, id=rule.id or new_id(), position=position)
            for position, rule in enumerate(ruleset.rules)
        ]

        with self.db.transaction() as conn:
            conn.execute("""
                INSERT INTO rulesets
                (id, project_key, version, is_active, threshold_ready,
                 threshold_clarification, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                ruleset_id, ruleset.project_key, ruleset.version, ruleset.is_active,
                ruleset.threshold_ready, ruleset.threshold_clarification, now
            ])
            for rule in rules:
                conn.execute("""
                    INSERT INTO rules
                    (id, ruleset_id, position, name, description, enabled, severity,
                     weight, detection_method, target_field, expected_pattern,
                     min_length, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, [
                    rule.id, ruleset_id, rule.position, rule.name, rule.description,
                    rule.enabled, rule.severity, rule.weight, rule.detection_method,
                    rule.target_field, rule.expected_pattern, rule.min_length, now
                ])

        logger.info(f"Created rule set {ruleset.project_key} v{ruleset.version} with {len(rules)} rules")
        return replace(ruleset, id=ruleset_id, rules=rules)

    def seed_default(self, project_key: str = 'DEMO') -> RuleSet:
        """Create the default rule set for a project unless one exists."""
        existing = self.db.fetch_one(
            "SELECT id FROM rulesets WHERE project_key = ? ORDER BY version DESC LIMIT 1",
            [project_key]
        )
        if existing:
            return self.get_ruleset(existing['id'])
        return self.create_ruleset(get_default_ruleset(project_key))

    def get_ruleset(self, ruleset_id: str) -> RuleSet:
        row = self.db.fetch_one("SELECT * FROM rulesets WHERE id = ?", [ruleset_id])
        if row is None:
            raise NotFoundError("Rule set", ruleset_id)
        return self._hydrate(row)

    def get_active_ruleset(self, project_key: Optional[str] = None) -> RuleSet:
        """
        Resolve the rule set to score with.

        The newest active set for project_key wins; otherwise any active set.

        Raises:
            ConfigurationError: If no active rule set exists
        """
        row = None
        if project_key:
            row = self.db.fetch_one("""
                SELECT * FROM rulesets
                WHERE project_key = ? AND is_active = TRUE
                ORDER BY version DESC, created_at DESC
                LIMIT 1
            """, [project_key])

        if row is None:
            row = self.db.fetch_one("""
                SELECT * FROM rulesets
                WHERE is_active = TRUE
                ORDER BY version DESC, created_at DESC
                LIMIT 1
            """)
            if row is not None and project_key:
                logger.debug(f"No active rule set for {project_key}, using {row['project_key']}")

        if row is None:
            raise ConfigurationError("No active rule set configured")
        return self._hydrate(row)

    def list_rulesets(self) -> List[RuleSet]:
        rows = self.db.fetch_all("SELECT * FROM rulesets ORDER BY project_key, version")
        return [self._hydrate(row) for row in rows]

    def get_rule(self, rule_id: str) -> Rule:
        row = self.db.fetch_one("SELECT * FROM rules WHERE id = ?", [rule_id])
        if row is None:
            raise NotFoundError("Rule", rule_id)
        return _rule_from_row(row)

    def update_rule(self, rule_id: str, **fields) -> Rule:
        """
        Apply a partial edit to one rule.

        Raises:
            NotFoundError: If the rule does not exist
            ValidationError: If a field is unknown or out of range
        """
        unknown = set(fields) - set(EDITABLE_RULE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown rule fields: {', '.join(sorted(unknown))}")

        if 'weight' in fields:
            fields['weight'] = validate_weight(fields['weight'])
        if 'severity' in fields and fields['severity'] not in SEVERITIES:
            raise ValidationError(f"severity must be one of {', '.join(SEVERITIES)}")
        if 'name' in fields and not str(fields['name'] or '').strip():
            raise ValidationError("rule name is required")
        if 'min_length' in fields:
            fields['min_length'] = validate_min_length(fields['min_length'])

        current = self.get_rule(rule_id)
        if not fields:
            return current

        assignments = ', '.join(f"{name} = ?" for name in fields)
        with self.db.transaction() as conn:
            conn.execute(
                f"UPDATE rules SET {assignments} WHERE id = ?",
                list(fields.values()) + [rule_id]
            )
        return replace(current, **fields)

    def update_thresholds(
        self,
        ruleset_id: str,
        threshold_ready: Optional[float] = None,
        threshold_clarification: Optional[float] = None
    ) -> RuleSet:
        """
        Change one or both thresholds.

        The resulting pair is validated together, so a single edit cannot
        leave ready <= clarification.
        """
        ruleset = self.get_ruleset(ruleset_id)
        ready, clarification = validate_thresholds(
            ruleset.threshold_ready if threshold_ready is None else threshold_ready,
            ruleset.threshold_clarification if threshold_clarification is None else threshold_clarification,
        )

        with self.db.transaction() as conn:
            conn.execute("""
                UPDATE rulesets
                SET threshold_ready = ?, threshold_clarification = ?
                WHERE id = ?
            """, [ready, clarification, ruleset_id])

        return replace(ruleset, threshold_ready=ready, threshold_clarification=clarification)

    def delete_ruleset(self, ruleset_id: str) -> None:
        """Delete a rule set and all of its rules."""
        self.get_ruleset(ruleset_id)
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM rules WHERE ruleset_id = ?", [ruleset_id])
            conn.execute("DELETE FROM rulesets WHERE id = ?", [ruleset_id])
        logger.info(f"Deleted rule set {ruleset_id}")

    def _hydrate(self, row: Dict[str, Any]) -> RuleSet:
        rule_rows = self.db.fetch_all(
            "SELECT * FROM rules WHERE ruleset_id = ? ORDER BY position",
            [row['id']]
        )
        return RuleSet(
            id=row['id'],
            project_key=row['project_key'],
            version=row['version'],
            is_active=bool(row['is_active']),
            threshold_ready=float(row['threshold_ready']),
            threshold_clarification=float(row['threshold_clarification']),
            rules=[_rule_from_row(r) for r in rule_rows],
        )
