"""
Tests for the storage layer.

Covers:
- Schema creation and transactions
- Rule set persistence, validation and active rule set resolution
- Issue upserts, flag preservation and cascading deletes
- Q&A rows, audit entries and user mappings
"""
import pytest

from decisioning.rule_engine import MissingItem
from decisioning.rules import Rule, RuleSet, get_default_ruleset
from errors import ConfigurationError, NotFoundError, ValidationError
from storage import format_question, issue_id_for, parse_question


def upsert(store, key="DEMO-1", score=1.0, status="NEEDS_INFO", missing=None, assignee="dev@example.com"):
    return store.upsert_scan(
        jira_key=key,
        summary=f"Summary {key}",
        description="",
        assignee=assignee,
        readiness_score=score,
        status=status,
        missing_items=missing or [],
    )


class TestDatabase:
    def test_schema_creates_tables(self, temp_db):
        tables = {row["table_name"] for row in temp_db.fetch_all(
            "SELECT table_name FROM information_schema.tables"
        )}
        assert {"rulesets", "rules", "scanned_issues", "qa_answers",
                "audit_log", "user_mappings", "scan_runs"} <= tables

    def test_initialize_schema_is_idempotent(self, temp_db):
        temp_db.initialize_schema()
        temp_db.initialize_schema()

    def test_transaction_rolls_back_on_error(self, temp_db, issue_store):
        """Nothing written inside a failed transaction survives."""
        with pytest.raises(RuntimeError):
            with temp_db.transaction():
                upsert(issue_store, "DEMO-1")
                raise RuntimeError("boom")

        assert issue_store.count() == 0

    def test_nested_transactions_join_outer(self, temp_db, issue_store):
        with temp_db.transaction():
            upsert(issue_store, "DEMO-1")
            with temp_db.transaction():
                upsert(issue_store, "DEMO-2")

        assert issue_store.count() == 2

    def test_run_id_format(self, temp_db):
        run_id = temp_db.get_current_run_id()
        assert run_id.startswith("scan_")
        assert len(run_id.split("_")) == 4

    def test_reset_keeps_rulesets_and_mappings(self, temp_db, issue_store, default_ruleset, mapping_store):
        issue = upsert(issue_store)
        issue_store.add_questions(issue.id, [("Priority Set", "Priority?")])
        mapping_store.upsert("dev@example.com", "U1")

        temp_db.reset()

        assert issue_store.count() == 0
        assert temp_db.fetch_value("SELECT count(*) FROM qa_answers") == 0
        assert temp_db.fetch_value("SELECT count(*) FROM rulesets") == 1
        assert mapping_store.get_by_email("dev@example.com") is not None


class TestRuleSetStore:
    def test_create_assigns_ids_and_positions(self, default_ruleset, ruleset_store):
        stored = ruleset_store.get_ruleset(default_ruleset.id)

        assert default_ruleset.id is not None
        assert all(r.id for r in default_ruleset.rules)
        assert [r.name for r in stored.rules] == [r.name for r in get_default_ruleset().rules]
        assert [r.position for r in stored.rules] == list(range(9))

    def test_create_rejects_invalid_thresholds(self, ruleset_store):
        ruleset = RuleSet(project_key="BAD", threshold_ready=2.0, threshold_clarification=3.0)
        with pytest.raises(ValidationError):
            ruleset_store.create_ruleset(ruleset)
        assert ruleset_store.list_rulesets() == []

    def test_active_ruleset_prefers_project(self, ruleset_store, default_ruleset):
        other = ruleset_store.create_ruleset(RuleSet(
            project_key="OTHER",
            rules=[Rule(name="Assignee Set", description="", target_field="assignee")],
        ))

        assert ruleset_store.get_active_ruleset("OTHER").id == other.id
        assert ruleset_store.get_active_ruleset("DEMO").id == default_ruleset.id

    def test_active_ruleset_falls_back_to_any(self, ruleset_store, default_ruleset):
        assert ruleset_store.get_active_ruleset("UNKNOWN").id == default_ruleset.id

    def test_no_active_ruleset(self, ruleset_store):
        with pytest.raises(ConfigurationError):
            ruleset_store.get_active_ruleset("DEMO")

    def test_inactive_rulesets_are_ignored(self, ruleset_store):
        ruleset = get_default_ruleset()
        ruleset.is_active = False
        ruleset_store.create_ruleset(ruleset)
        with pytest.raises(ConfigurationError):
            ruleset_store.get_active_ruleset()

    def test_seed_default_is_idempotent(self, ruleset_store):
        first = ruleset_store.seed_default("DEMO")
        second = ruleset_store.seed_default("DEMO")
        assert first.id == second.id
        assert len(ruleset_store.list_rulesets()) == 1

    def test_update_rule(self, ruleset_store, default_ruleset):
        rule_id = default_ruleset.rules[0].id

        updated = ruleset_store.update_rule(rule_id, weight=0.3, enabled=False)

        assert updated.weight == 0.3
        assert not updated.enabled
        stored = ruleset_store.get_rule(rule_id)
        assert stored.weight == 0.3
        assert not stored.enabled

    @pytest.mark.parametrize("fields", [
        {"weight": 1.5},
        {"weight": -1},
        {"severity": "fatal"},
        {"name": ""},
        {"min_length": -5},
        {"min_length": "long"},
        {"min_length": 2.5},
        {"position": 3},
    ])
    def test_update_rule_rejects_invalid_fields(self, ruleset_store, default_ruleset, fields):
        rule_id = default_ruleset.rules[0].id
        with pytest.raises(ValidationError):
            ruleset_store.update_rule(rule_id, **fields)
        assert ruleset_store.get_rule(rule_id).weight == 1.0

    def test_update_unknown_rule(self, ruleset_store):
        with pytest.raises(NotFoundError):
            ruleset_store.update_rule("missing", weight=0.5)

    def test_update_thresholds_validates_pair(self, ruleset_store, default_ruleset):
        """Changing only one threshold is checked against the other."""
        with pytest.raises(ValidationError):
            ruleset_store.update_thresholds(default_ruleset.id, threshold_ready=2.0)

        updated = ruleset_store.update_thresholds(default_ruleset.id, threshold_ready=4.5)
        assert updated.threshold_ready == 4.5
        assert ruleset_store.get_ruleset(default_ruleset.id).threshold_clarification == 2.5

    def test_delete_ruleset_cascades(self, temp_db, ruleset_store, default_ruleset):
        ruleset_store.delete_ruleset(default_ruleset.id)

        assert temp_db.fetch_value("SELECT count(*) FROM rules") == 0
        with pytest.raises(NotFoundError):
            ruleset_store.get_ruleset(default_ruleset.id)


class TestIssueStore:
    def test_upsert_inserts_then_updates(self, issue_store):
        """Scanning a key twice leaves one row."""
        first = upsert(issue_store, score=1.0)
        second = upsert(issue_store, score=4.5, status="READY")

        assert first.id == second.id == issue_id_for("DEMO-1")
        assert issue_store.count() == 1
        assert second.readiness_score == 4.5
        assert second.status == "READY"

    def test_upsert_preserves_flags(self, issue_store):
        issue = upsert(issue_store)
        issue_store.update(issue.id, manual_override=True, override_reason="PO approved",
                           questions_generated=True, slack_message_sent=True)

        rescanned = upsert(issue_store, score=0.5)

        assert rescanned.manual_override
        assert rescanned.override_reason == "PO approved"
        assert rescanned.questions_generated
        assert rescanned.slack_message_sent

    def test_missing_items_round_trip(self, issue_store):
        missing = [MissingItem("Priority Set", "error", "Set the priority.")]
        issue = upsert(issue_store, missing=missing)
        assert issue_store.get(issue.id).missing_items == missing

    def test_get_unknown_issue(self, issue_store):
        with pytest.raises(NotFoundError):
            issue_store.get("nope")

    def test_update_rejects_unknown_fields(self, issue_store):
        issue = upsert(issue_store)
        with pytest.raises(ValueError):
            issue_store.update(issue.id, jira_key="OTHER-1")

    def test_list_filters(self, issue_store):
        upsert(issue_store, "DEMO-2", status="READY", assignee="a@example.com")
        upsert(issue_store, "DEMO-1", status="NEEDS_INFO", assignee="b@example.com")
        upsert(issue_store, "DEMO-3", status="READY", assignee="b@example.com")

        assert [i.jira_key for i in issue_store.list_issues()] == ["DEMO-1", "DEMO-2", "DEMO-3"]
        assert [i.jira_key for i in issue_store.list_issues(status="READY")] == ["DEMO-2", "DEMO-3"]
        assert [i.jira_key for i in issue_store.list_issues(status="READY", assignee="b@example.com")] == ["DEMO-3"]

    def test_delete_cascades_to_questions(self, temp_db, issue_store):
        issue = upsert(issue_store)
        issue_store.add_questions(issue.id, [("Priority Set", "Priority?")])

        issue_store.delete(issue.id)

        assert issue_store.find_by_key("DEMO-1") is None
        assert temp_db.fetch_value("SELECT count(*) FROM qa_answers") == 0

    def test_to_dict_rounds_score(self, issue_store):
        issue = upsert(issue_store, score=1.96969)
        assert issue.to_dict()["readiness_score"] == 1.97


class TestQuestions:
    def test_questions_keep_insertion_order(self, issue_store):
        issue = upsert(issue_store)
        issue_store.add_questions(issue.id, [
            ("Acceptance Criteria Present", "What are the criteria?"),
            ("Priority Set", "What is the priority?"),
        ])

        questions = issue_store.list_questions(issue.id)

        assert [q.question for q in questions] == [
            "[Acceptance Criteria Present] What are the criteria?",
            "[Priority Set] What is the priority?",
        ]
        assert questions[0].seq < questions[1].seq
        assert questions[1].rule_name == "Priority Set"
        assert questions[1].question_text == "What is the priority?"
        assert not questions[0].is_answered
        assert questions[0].answered_at is None

    def test_record_answer(self, issue_store):
        issue = upsert(issue_store)
        qa = issue_store.add_questions(issue.id, [("Priority Set", "Priority?")])[0]

        answered = issue_store.record_answer(qa.id, "High")

        assert answered.is_answered
        assert answered.answered_at is not None
        assert issue_store.answered_questions(issue.id) == ["[Priority Set] Priority?"]
        assert issue_store.unanswered_questions(issue.id) == []

    def test_delete_unanswered_keeps_answered(self, issue_store):
        issue = upsert(issue_store)
        first, second = issue_store.add_questions(issue.id, [("A", "a?"), ("B", "b?")])
        issue_store.record_answer(first.id, "yes")

        assert issue_store.delete_unanswered(issue.id) == 1
        assert [q.id for q in issue_store.list_questions(issue.id)] == [first.id]

    def test_find_question_prefers_unanswered(self, issue_store):
        issue = upsert(issue_store)
        answered = issue_store.add_answered_question(issue.id, "A", "[A] a?", "done")
        open_row = issue_store.add_questions(issue.id, [("A", "a?")])[-1]

        assert issue_store.find_question(issue.id, "[A] a?").id == open_row.id
        assert answered.is_answered

    def test_question_prefix_helpers(self):
        assert format_question("Priority Set", "What?") == "[Priority Set] What?"
        assert parse_question("[Priority Set] What?") == ("Priority Set", "What?")
        assert parse_question("No prefix") == ("", "No prefix")


class TestAuditAndMappings:
    def test_audit_record_and_filter(self, audit_log):
        audit_log.record("MANUAL_OVERRIDE", "ScannedIssue", "i1", {"reason": "ok"}, user_id="po")
        audit_log.record("RESET", "Database", "db")

        entries = audit_log.entries(entity_id="i1")

        assert len(entries) == 1
        assert entries[0].action == "MANUAL_OVERRIDE"
        assert entries[0].changes == {"reason": "ok"}
        assert entries[0].user_id == "po"
        assert len(audit_log.entries(action="RESET")) == 1

    def test_audit_joins_rolled_back_transaction(self, temp_db, audit_log):
        with pytest.raises(RuntimeError):
            with temp_db.transaction():
                audit_log.record("RESET", "Database", "db")
                raise RuntimeError("boom")
        assert audit_log.entries() == []

    def test_mapping_lookup_is_case_insensitive(self, mapping_store):
        mapping_store.upsert("Dev@Example.com", "U1", "Dev")
        assert mapping_store.get_by_email("dev@example.com").slack_user_id == "U1"

    def test_mapping_upsert_updates(self, mapping_store):
        mapping_store.upsert("dev@example.com", "U1")
        mapping_store.upsert("dev@example.com", "U2", "Dev")

        mappings = mapping_store.list_mappings()
        assert len(mappings) == 1
        assert mappings[0].slack_user_id == "U2"

    def test_mapping_delete(self, mapping_store):
        mapping_store.upsert("dev@example.com", "U1")
        mapping_store.delete("dev@example.com")
        assert mapping_store.get_by_email("dev@example.com") is None
        assert mapping_store.get_by_email("") is None
