"""
Readiness pipeline orchestrator.

Coordinates the Definition-of-Ready lifecycle of tracker issues:
1. Scan: fetch issues, score them against the active rule set, resolve
   status and upsert one row per key
2. Questions: generate clarifying questions for missing items
3. Messaging: send questions to Slack and collect answers
4. Rescan: re-score one issue, boosted by its answered questions
5. Override: freeze an issue's status manually
6. Reporting: metrics, quality checks, Markdown report, JSON/CSV export

The orchestrator is designed to be:
- Idempotent: scanning the same issues twice leaves one row per key
- Observable: scan metrics, audit entries and logging
- Explicitly configured: Settings are passed in, never read globally

Usage:
    pipeline = ReadinessPipeline.from_config("config.yaml")
    pipeline.seed_demo_data()
    pipeline.scan_all()
"""
import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from decisioning.explainer import build_dor_comment, build_qa_comment
from decisioning.rule_engine import ScoreResult, score_issue
from decisioning.rules import RuleSet, get_default_ruleset
from decisioning.state_machine import IssueStateMachine
from errors import NotFoundError, UpstreamError, ValidationError
from ingestion.base_adapter import BaseIssueProvider, NormalizedIssue
from ingestion.jira_adapter import JiraIssueProvider
from ingestion.mock_adapter import MockIssueProvider
from messaging.round_trip import SlackRoundTrip
from observability.metrics import ScanMetrics
from observability.quality_checks import QualityChecker
from observability.reporter import ScanReporter, export_issues
from questions.answers import AnswerService
from questions.generator import QuestionGenerationService
from questions.llm_client import OpenAIQuestionDelegate
from settings import Settings, configure_logging, load_settings
from storage import (
    AuditLog,
    Database,
    IssueStore,
    KeyedLocks,
    QaAnswer,
    RuleSetStore,
    ScannedIssue,
    UserMappingStore,
    issue_id_for,
    utcnow,
)

logger = logging.getLogger(__name__)

DEMO_USER_MAPPINGS = [
    ("alice@example.com", "U0DEMOALICE", "Alice"),
    ("bob@example.com", "U0DEMOBOB", "Bob"),
    ("carol@example.com", "U0DEMOCAROL", "Carol"),
]


class ReadinessPipeline:
    """
    Boundary operations of the readiness core.

    Design decisions:
    - Scoring is pure and runs on a thread pool; persistence of each
      issue happens under its per-issue lock in one transaction
    - Batch scans log and skip failing issues; single-issue actions raise
    - Mock mode swaps Jira, Slack and the LLM for simulated collaborators
    """

    def __init__(
        self,
        settings: Settings,
        provider: Optional[BaseIssueProvider] = None,
        database: Optional[Database] = None,
        slack_client=None,
        question_delegate=None,
    ):
        """
        Args:
            settings: Pipeline configuration
            provider: Issue provider; mock or Jira from settings if omitted
            database: Database; opened from settings.database_path if omitted
            slack_client: Injected Slack client (live mode)
            question_delegate: Injected question generator (live mode)
        """
        self.settings = settings
        self.mock_mode = settings.mock_mode

        self.db = database or Database(settings.database_path)
        self.db.initialize_schema()

        self.locks = KeyedLocks()
        self.rulesets = RuleSetStore(self.db)
        self.issues = IssueStore(self.db)
        self.audit = AuditLog(self.db)
        self.mappings = UserMappingStore(self.db)

        if provider is None:
            provider = MockIssueProvider() if self.mock_mode else JiraIssueProvider(settings.jira)
        self.provider = provider

        if question_delegate is None and not self.mock_mode and OpenAIQuestionDelegate.is_configured(settings.llm):
            question_delegate = OpenAIQuestionDelegate(settings.llm)

        self.answers = AnswerService(self.issues, self.audit, self.locks)
        self.questions = QuestionGenerationService(self.issues, question_delegate, self.locks)
        self.messaging = SlackRoundTrip(
            self.issues,
            self.audit,
            self.mappings,
            self.answers,
            slack_settings=settings.slack,
            mock_mode=self.mock_mode,
            client=slack_client,
            locks=self.locks,
            jira_base_url=settings.jira.base_url,
            on_answers=self._post_answers_to_tracker,
        )

        self.quality_checker = QualityChecker(self.db)
        self.reporter = ScanReporter()
        self.last_metrics: Optional[ScanMetrics] = None

        mode = "mock" if self.mock_mode else "live"
        logger.info(f"Readiness pipeline initialized ({mode} mode, database {settings.database_path})")

    @classmethod
    def from_config(cls, config_path: str = "config.yaml", **kwargs) -> "ReadinessPipeline":
        """Load settings from YAML, configure logging, and build the pipeline."""
        settings = load_settings(config_path)
        configure_logging(settings)
        return cls(settings, **kwargs)

    # Scanning

    def scan_all(self, project_query: Optional[str] = None) -> Dict[str, List[ScannedIssue]]:
        """
        Scan every issue the provider returns and upsert the results.

        Args:
            project_query: Project key or JQL; configured default if omitted

        Returns:
            {"scanned": [ScannedIssue]} in provider order

        Raises:
            ConfigurationError: If no active rule set exists
            UpstreamError: If the provider cannot list issues
        """
        ruleset = self.rulesets.get_active_ruleset(self._project_key(project_query))
        machine = IssueStateMachine.for_ruleset(ruleset)

        run_id = self.db.get_current_run_id()
        metrics = ScanMetrics(run_id=run_id, started_at=utcnow())
        logger.info(f"=== Starting scan {run_id} with rule set {ruleset.project_key} v{ruleset.version} ===")

        try:
            source_issues = self.provider.list_issues(project_query)
        except UpstreamError as e:
            metrics.record_error(str(e))
            self._record_provider_health(metrics)
            self._finish_scan(metrics, "failed")
            logger.error(f"Scan {run_id} failed: {e}")
            raise

        metrics.issues_total = len(source_issues)
        self._record_provider_health(metrics)

        results: Dict[str, Tuple[Optional[str], ScannedIssue, ScoreResult]] = {}
        with ThreadPoolExecutor(max_workers=max(1, self.settings.max_workers)) as pool:
            futures = {
                pool.submit(self._scan_issue, issue, ruleset, machine): issue.key
                for issue in source_issues
            }
            for future in as_completed(futures):
                key = futures[future]
                try:
                    results[key] = future.result()
                except Exception as e:
                    logger.error(f"Failed to scan {key}: {e}", exc_info=True)
                    metrics.record_error(f"Scan failed for {key}: {e}", {"jira_key": key})

        scanned = []
        for issue in source_issues:
            if issue.key not in results:
                continue
            previous_status, saved, result = results[issue.key]
            metrics.record_issue(previous_status, saved.status, saved.readiness_score,
                                 [m.rule for m in result.missing])
            scanned.append(saved)

        metrics.status_counts = self._status_counts()
        self._finish_scan(metrics, "completed")
        self.audit.record("SCAN_COMPLETED", "ScanRun", run_id, {
            "issues_total": metrics.issues_total,
            "issues_scanned": metrics.issues_scanned,
            "errors": metrics.errors,
        })

        logger.info(f"=== Scan complete: {metrics.issues_scanned}/{metrics.issues_total} issues, "
                    f"{metrics.status_changes} status changes, {metrics.errors} errors ===")
        return {"scanned": scanned}

    def _scan_issue(
        self,
        issue: NormalizedIssue,
        ruleset: RuleSet,
        machine: IssueStateMachine
    ) -> Tuple[Optional[str], ScannedIssue, ScoreResult]:
        """Score one issue without answers and upsert it."""
        if not issue.key:
            raise ValidationError("Issue without key")

        result = score_issue(issue, ruleset.rules)

        with self.locks.hold(issue_id_for(issue.key)):
            existing = self.issues.find_by_key(issue.key)
            previous_status = existing.status if existing else None
            status = machine.resolve(
                result.score,
                previous_status,
                existing.manual_override if existing else False
            )
            saved = self.issues.upsert_scan(
                jira_key=issue.key,
                summary=issue.summary,
                description=issue.description,
                assignee=issue.assignee,
                readiness_score=result.score,
                status=status.value,
                missing_items=result.missing,
            )

        self._write_back(saved)
        return previous_status, saved, result

    def rescan_one(self, issue_id: str) -> Dict[str, ScannedIssue]:
        """
        Re-score one issue, boosted by its answered questions.

        The issue is re-fetched from the provider; if that fails the
        stored record is scored instead.

        Raises:
            NotFoundError: If the issue does not exist
            ConfigurationError: If no active rule set exists
        """
        stored = self.issues.get(issue_id)
        ruleset = self.rulesets.get_active_ruleset(self._project_key(stored.jira_key.split("-")[0]))
        machine = IssueStateMachine.for_ruleset(ruleset)

        try:
            source = self.provider.get_issue(stored.jira_key)
        except (UpstreamError, NotFoundError) as e:
            logger.warning(f"Could not re-fetch {stored.jira_key}, rescoring stored record: {e}")
            source = NormalizedIssue(
                key=stored.jira_key,
                summary=stored.summary,
                description=stored.description,
                assignee=stored.assignee,
            )

        with self.locks.hold(issue_id):
            current = self.issues.get(issue_id)
            answered = self.issues.answered_questions(issue_id)
            result = score_issue(source, ruleset.rules, answered)
            transition = machine.describe_transition(current.status, result.score, current.manual_override)

            with self.db.transaction():
                saved = self.issues.upsert_scan(
                    jira_key=current.jira_key,
                    summary=source.summary,
                    description=source.description,
                    assignee=source.assignee,
                    readiness_score=result.score,
                    status=transition["to_status"],
                    missing_items=result.missing,
                )
                self.audit.record("ISSUE_RESCANNED", "ScannedIssue", issue_id, dict(
                    transition,
                    score=round(result.score, 4),
                    answered_questions=len(answered),
                ))

        logger.info(f"Rescanned {saved.jira_key}: {saved.readiness_score:.2f} {saved.status} "
                    f"({len(answered)} answered questions)")
        self._write_back(saved)
        return {"issue": saved}

    # Questions and answers

    def generate_questions(self, issue_id: str, regenerate: bool = False) -> Dict[str, List[QaAnswer]]:
        return {"questions": self.questions.generate(issue_id, regenerate=regenerate)}

    def submit_answer(self, issue_id: str, question: str, answer_text: str,
                      user_id: str = "system") -> Dict[str, QaAnswer]:
        return {"answer": self.answers.submit(issue_id, question, answer_text, user_id=user_id)}

    def send_to_messaging(self, issue_id: str) -> Dict[str, Any]:
        return self.messaging.send(issue_id)

    def handle_interaction(self, payload: Any) -> Dict[str, Any]:
        """Messaging callback (button click or modal submission)."""
        return self.messaging.handle_interaction(payload)

    # Overrides

    def override(self, issue_id: str, reason: str, new_status: Optional[str] = None,
                 user_id: str = "system") -> Dict[str, ScannedIssue]:
        """
        Force an issue's status and freeze it against later scans.

        Args:
            reason: Free-text justification, stored on the issue
            new_status: Target status, READY if omitted

        Raises:
            ValidationError: If new_status is unknown
            NotFoundError: If the issue does not exist
        """
        status = IssueStateMachine.override(new_status)

        with self.locks.hold(issue_id):
            current = self.issues.get(issue_id)
            with self.db.transaction():
                saved = self.issues.update(
                    issue_id,
                    status=status.value,
                    manual_override=True,
                    override_reason=reason or "",
                )
                self.audit.record("MANUAL_OVERRIDE", "ScannedIssue", issue_id, {
                    "manual_override": True,
                    "override_reason": reason or "",
                    "from_status": current.status,
                    "new_status": status.value,
                }, user_id=user_id)

        logger.info(f"Override on {saved.jira_key}: {current.status} -> {saved.status}")
        return {"issue": saved}

    # Reads, reporting and maintenance

    def list_issues(self, status: Optional[str] = None, assignee: Optional[str] = None) -> List[ScannedIssue]:
        return self.issues.list_issues(status=status, assignee=assignee)

    def export(self, fmt: str = "json") -> str:
        """All scanned issues as JSON (with Q&A) or CSV."""
        issues = self.issues.list_issues()
        answers = {issue.id: self.issues.list_questions(issue.id) for issue in issues} if fmt == "json" else None
        return export_issues(issues, fmt, answers)

    def report(self) -> str:
        """Markdown report of the latest scan, quality checks and current issues."""
        quality_results = self.quality_checker.run_all_checks()
        failed = [r.check_name for r in quality_results if not r.passed]
        if failed:
            logger.warning(f"Quality checks failed: {', '.join(failed)}")
        return self.reporter.generate_report(self.last_metrics, quality_results, self.issues.list_issues())

    def seed_demo_data(self) -> Dict[str, Any]:
        """
        Create the demo rule set and user mappings.

        Safe to call repeatedly; an existing DEMO rule set is kept.
        """
        project_key = self.settings.default_project_key or "DEMO"
        existing = [rs for rs in self.rulesets.list_rulesets() if rs.project_key == project_key]
        if existing:
            ruleset = existing[-1]
        else:
            ruleset = self.rulesets.create_ruleset(replace(
                get_default_ruleset(project_key),
                threshold_ready=self.settings.threshold_ready,
                threshold_clarification=self.settings.threshold_clarification,
            ))

        for email, slack_id, name in DEMO_USER_MAPPINGS:
            self.mappings.upsert(email, slack_id, name)

        logger.info(f"Seeded demo data: rule set {ruleset.project_key} v{ruleset.version}, "
                    f"{len(DEMO_USER_MAPPINGS)} user mappings")
        return {"ruleset": ruleset, "user_mappings": len(DEMO_USER_MAPPINGS)}

    def reset(self) -> None:
        """Delete all scanned issues, their Q&A, and scan runs."""
        self.messaging.drain()
        self.db.reset()
        self.last_metrics = None
        self.audit.record("RESET", "Database", self.settings.database_path)
        logger.info("Reset scan data")

    def close(self) -> None:
        self.messaging.close()
        self.db.close()

    # Internals

    def _project_key(self, project_query: Optional[str]) -> str:
        if project_query and "=" not in project_query:
            return project_query
        return self.settings.default_project_key

    def _status_counts(self) -> Dict[str, int]:
        rows = self.db.fetch_all("SELECT status, count(*) AS n FROM scanned_issues GROUP BY status")
        return {row["status"]: row["n"] for row in rows}

    def _record_provider_health(self, metrics: ScanMetrics) -> None:
        health = self.provider.get_health()
        metrics.source_health[health.provider_id or "provider"] = {
            "healthy": health.is_healthy,
            "records": health.records_fetched,
            "error": health.error_message,
        }

    def _finish_scan(self, metrics: ScanMetrics, status: str) -> None:
        metrics.completed_at = utcnow()
        self.db.execute("""
            INSERT INTO scan_runs (run_id, started_at, completed_at, status, issues_scanned, errors, metrics)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, [
            metrics.run_id, metrics.started_at, metrics.completed_at, status,
            metrics.issues_scanned, metrics.errors, json.dumps(metrics.to_dict())
        ])
        self.last_metrics = metrics

    def _writeback_enabled(self) -> bool:
        return not self.mock_mode and self.settings.jira.writeback

    def _write_back(self, issue: ScannedIssue) -> None:
        """Publish labels and the summary comment; failures are logged only."""
        if not self._writeback_enabled():
            return
        comment = build_dor_comment(issue.jira_key, issue.readiness_score, issue.status, issue.missing_items)
        try:
            self.provider.write_back(issue.jira_key, issue.status, comment)
        except UpstreamError as e:
            logger.warning(f"Write-back failed for {issue.jira_key}: {e}")

    def _post_answers_to_tracker(self, issue: ScannedIssue, saved: List[QaAnswer], answered_by: str) -> None:
        if not self._writeback_enabled():
            return
        comment = build_qa_comment(
            issue.jira_key,
            issue.readiness_score,
            answered_by,
            [{"question": qa.question, "answer": qa.answer} for qa in saved],
        )
        try:
            self.provider.add_comment(issue.jira_key, comment)
        except UpstreamError as e:
            logger.warning(f"Posting answers to {issue.jira_key} failed: {e}")
