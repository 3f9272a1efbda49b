"""
Sending clarifying questions to messaging and collecting the answers.

Mock mode marks the issue sent and fills every open question from a
canned answer table. Live mode posts an interactive Slack message; the
answers come back later through handle_interaction and are stored on a
worker thread.
"""
import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from decisioning.state_machine import IssueStateMachine, IssueStatus
from errors import NoDestinationError, NotFoundError, ValidationError
from questions.answers import AnswerService
from storage import AuditLog, IssueStore, KeyedLocks, QaAnswer, UserMappingStore
from .slack_client import (
    ANSWER_ACTION_ID,
    ANSWER_MODAL_CALLBACK_ID,
    SlackClient,
    build_answer_modal,
    build_question_message,
    extract_modal_answers,
)

logger = logging.getLogger(__name__)

MOCK_ANSWERS: Dict[str, str] = {
    'Acceptance Criteria Present': (
        'Acceptance Criteria: 1) Given a valid request the feature responds within 2s. '
        '2) Invalid input shows a clear error. 3) Changes are recorded in the audit trail.'
    ),
    'Story Points Estimated': 'Estimated at 5 story points after team refinement.',
    'Assignee Set': 'The owning team lead will pick this up in the next sprint.',
    'Technical Design Present': (
        'Technical Design: extend the existing service layer with a new endpoint '
        'backed by the current data model; no schema migration required.'
    ),
    'Dependencies Identified': 'Depends on the platform team finishing the shared auth update; blocks nothing.',
    'Test Strategy Defined': 'Test Strategy: unit tests for the service, an integration test for the endpoint, manual QA in staging.',
    'User Impact Documented': 'User Impact: all signed-in users see the change; no action is required from them.',
    'Labels Present': 'Labels: backend, feature.',
    'Priority Set': 'Priority: Medium.',
}

DEFAULT_MOCK_ANSWER = 'Details confirmed with the reporter; see the issue description for context.'


def mock_answer_for(rule_name: str) -> str:
    return MOCK_ANSWERS.get(rule_name, DEFAULT_MOCK_ANSWER)


class SlackRoundTrip:
    """
    Sends an issue's open questions to messaging and records answers.

    Status handling: a successful send forces WAITING_ON_SLACK regardless
    of score; the next scan recomputes it.
    """

    def __init__(
        self,
        issues: IssueStore,
        audit: AuditLog,
        mappings: UserMappingStore,
        answers: AnswerService,
        slack_settings=None,
        mock_mode: bool = True,
        client: Optional[SlackClient] = None,
        locks: Optional[KeyedLocks] = None,
        max_workers: int = 2,
        jira_base_url: str = '',
        on_answers: Optional[Callable[[Any, List[QaAnswer], str], None]] = None,
    ):
        """
        Args:
            issues: Issue and Q&A store
            audit: Audit log
            mappings: Email -> Slack user cache
            answers: Shared answer-submission path
            slack_settings: SlackSettings section (live mode)
            mock_mode: Simulate the round trip
            client: Injected Slack client; built lazily in live mode
            locks: Per-issue locks shared with the orchestrator
            max_workers: Threads persisting answer batches
            jira_base_url: For links in the message
            on_answers: Called with (issue, saved answers, user) after a batch
        """
        self.issues = issues
        self.audit = audit
        self.mappings = mappings
        self.answers = answers
        self.slack_settings = slack_settings
        self.mock_mode = mock_mode
        self._client = client
        self.locks = locks or KeyedLocks()
        self.jira_base_url = jira_base_url
        self.on_answers = on_answers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='slack-answers')
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()

    @property
    def client(self) -> SlackClient:
        """
        Raises:
            ConfigurationError: If no bot token is configured
        """
        if self._client is None:
            self._client = SlackClient(self.slack_settings)
        return self._client

    def send(self, issue_id: str) -> Dict[str, Any]:
        """
        Send the issue's unanswered questions.

        Returns:
            {"sent": True, "destination": channel or user id}, or
            {"sent": False, "destination": ""} when a live send is already
            waiting on Slack

        Raises:
            NotFoundError: Unknown issue
            ConfigurationError: Live mode without a bot token
            NoDestinationError: No user or default channel resolved
            ValidationError: Live mode with no open questions
            UpstreamError: Slack rejected the message
        """
        if self.mock_mode:
            return self._send_mock(issue_id)
        return self._send_live(issue_id)

    def _send_mock(self, issue_id: str) -> Dict[str, Any]:
        with self.locks.hold(issue_id):
            issue = self.issues.get(issue_id)
            open_questions = self.issues.unanswered_questions(issue_id)

            with self.issues.db.transaction():
                for qa in open_questions:
                    self.issues.record_answer(qa.id, mock_answer_for(qa.rule_name))
                self.issues.update(
                    issue_id,
                    slack_message_sent=True,
                    status=IssueStateMachine.messaging_sent().value
                )
                self.audit.record('SLACK_MESSAGE_SENT', 'ScannedIssue', issue_id, {
                    'mock_mode': True,
                    'issue': issue.jira_key,
                    'assignee': issue.assignee,
                    'questions': [qa.question for qa in open_questions],
                    'answers_synthesized': len(open_questions),
                })

        logger.info(f"Mock send for {issue.jira_key}: {len(open_questions)} answers synthesized")
        return {'sent': True, 'destination': 'mock'}

    def _send_live(self, issue_id: str) -> Dict[str, Any]:
        client = self.client
        # Held across the post so a concurrent send sees WAITING_ON_SLACK
        with self.locks.hold(issue_id):
            issue = self.issues.get(issue_id)
            if issue.slack_message_sent and issue.status == IssueStatus.WAITING_ON_SLACK.value:
                logger.info(f"Questions for {issue.jira_key} are already waiting on Slack")
                return {'sent': False, 'destination': ''}

            open_questions = self.issues.unanswered_questions(issue_id)
            if not open_questions:
                raise ValidationError(f"{issue.jira_key} has no unanswered questions to send")

            destination = self.resolve_destination(issue.assignee)
            message = build_question_message(issue, open_questions, self.jira_base_url)
            message_ts = client.send_message(destination, message['text'], message['blocks'])

            with self.issues.db.transaction():
                self.issues.update(
                    issue_id,
                    slack_message_sent=True,
                    status=IssueStateMachine.messaging_sent().value
                )
                self.audit.record('SLACK_MESSAGE_SENT', 'ScannedIssue', issue_id, {
                    'mock_mode': False,
                    'issue': issue.jira_key,
                    'destination': destination,
                    'message_ts': message_ts,
                    'question_ids': [qa.id for qa in open_questions],
                })

        logger.info(f"Sent {len(open_questions)} questions for {issue.jira_key} to {destination}")
        return {'sent': True, 'destination': destination}

    def resolve_destination(self, assignee: str) -> str:
        """
        Pick where to send questions for an assignee.

        Order: stored mapping, Slack lookup by email (mapping persisted),
        configured default channel.

        Raises:
            NoDestinationError: If nothing resolves
        """
        if assignee:
            mapping = self.mappings.get_by_email(assignee)
            if mapping:
                return mapping.slack_user_id

            if '@' in assignee:
                user_id = self.client.lookup_user_by_email(assignee)
                if user_id:
                    self.mappings.upsert(assignee, user_id)
                    logger.info(f"Mapped {assignee} to Slack user {user_id}")
                    return user_id

        default_channel = getattr(self.slack_settings, 'default_channel', '') if self.slack_settings else ''
        if default_channel:
            return default_channel

        raise NoDestinationError(
            f"No Slack destination for assignee '{assignee or 'unassigned'}' and no default channel configured"
        )

    def handle_interaction(self, payload: Any) -> Dict[str, Any]:
        """
        Entry point for Slack interaction callbacks.

        - block_actions on the answer button opens the answer modal
        - view_submission of the modal queues the answers for storage

        Args:
            payload: Interaction payload as dict or JSON string

        Returns:
            Small summary of what was done
        """
        if isinstance(payload, str):
            payload = json.loads(payload)
        if isinstance(payload, dict) and 'payload' in payload and 'type' not in payload:
            inner = payload['payload']
            payload = json.loads(inner) if isinstance(inner, str) else inner

        kind = payload.get('type')
        if kind == 'block_actions':
            return self._handle_button(payload)
        if kind == 'view_submission':
            return self._handle_submission(payload)

        logger.debug(f"Ignoring Slack interaction type {kind}")
        return {'action': 'ignored'}

    def _handle_button(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        actions = payload.get('actions') or []
        action = actions[0] if actions else {}
        if action.get('action_id') != ANSWER_ACTION_ID:
            return {'action': 'ignored'}

        value = json.loads(action.get('value') or '{}')
        issue_id = value.get('issue_id')
        issue = self.issues.get(issue_id)
        open_questions = self.issues.unanswered_questions(issue_id)

        self.client.open_view(payload.get('trigger_id', ''), build_answer_modal(issue, open_questions))
        return {'action': 'modal_opened', 'issue_id': issue_id, 'questions': len(open_questions)}

    def _handle_submission(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        view = payload.get('view') or {}
        if view.get('callback_id') != ANSWER_MODAL_CALLBACK_ID:
            return {'action': 'ignored'}

        metadata = json.loads(view.get('private_metadata') or '{}')
        issue_id = metadata.get('issue_id')
        user = payload.get('user') or {}
        user_id = user.get('username') or user.get('name') or user.get('id') or 'slack'
        submitted = [(a['qa_id'], a['answer']) for a in extract_modal_answers(view)]

        future = self._executor.submit(self.record_answers, issue_id, submitted, user_id)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._finished)

        return {'action': 'answers_queued', 'issue_id': issue_id, 'count': len(submitted)}

    def record_answers(self, issue_id: str, submitted: Sequence[Tuple[str, str]], user_id: str) -> List[QaAnswer]:
        """
        Store a batch of answers through the shared submission path.

        Already-answered or unknown questions are skipped. One
        ANSWERS_RECEIVED audit entry is written per non-empty batch.
        """
        saved = []
        for qa_id, text in submitted:
            try:
                saved.append(self.answers.submit_by_id(issue_id, qa_id, text, user_id=user_id, record_audit=False))
            except (ValidationError, NotFoundError) as e:
                logger.warning(f"Skipping answer for question {qa_id}: {e}")

        if not saved:
            return saved

        self.audit.record('ANSWERS_RECEIVED', 'ScannedIssue', issue_id, {
            'count': len(saved),
            'answered_by': user_id,
            'answers': [{'question': qa.question, 'answer': qa.answer} for qa in saved],
        }, user_id=user_id)
        logger.info(f"Stored {len(saved)} answers for issue {issue_id} from {user_id}")

        if self.on_answers is not None:
            self.on_answers(self.issues.get(issue_id), saved, user_id)
        return saved

    @property
    def pending_count(self) -> int:
        """Answer batches queued or still being stored."""
        with self._pending_lock:
            return len(self._pending)

    def drain(self, timeout: Optional[float] = None) -> int:
        """
        Wait for outstanding answer batches.

        Returns:
            Number of batches still running when the timeout expired
        """
        with self._pending_lock:
            outstanding = list(self._pending)
        _, not_done = wait(outstanding, timeout=timeout)
        return len(not_done)

    def close(self):
        self._executor.shutdown(wait=True)

    def _finished(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        error = future.exception()
        if error is not None:
            logger.error(f"Failed to store Slack answers: {error}", exc_info=error)
