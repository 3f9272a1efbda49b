"""
Slack Web API client and Block Kit builders.

Calls go through HttpClient (timeouts, retries, circuit breaker). Slack
reports most failures as HTTP 200 with {"ok": false, "error": ...};
those are raised as UpstreamError like transport failures.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from errors import ConfigurationError, UpstreamError
from ingestion.http_client import CircuitOpenError, HttpClient, RetryConfig

logger = logging.getLogger(__name__)

ANSWER_ACTION_ID = 'answer_questions'
ANSWER_MODAL_CALLBACK_ID = 'dor_answer_modal'
SLACK_LABEL_LIMIT = 150


class SlackClient:
    """Minimal Slack Web API client for the question round trip."""

    def __init__(self, settings, token: Optional[str] = None, http_client: Optional[HttpClient] = None):
        """
        Args:
            settings: SlackSettings section
            token: Bot token; read from the configured env var if omitted
            http_client: Injected client (tests)

        Raises:
            ConfigurationError: If no bot token is available
        """
        self.base_url = (settings.base_url or 'https://slack.com/api').rstrip('/')
        token = token or settings.bot_token
        if not token and http_client is None:
            raise ConfigurationError("Slack bot token is not configured")

        self.client = http_client or HttpClient(
            source_id='slack',
            retry_config=RetryConfig(
                max_retries=int(settings.max_retries),
                timeout_seconds=settings.timeout_seconds,
            ),
            headers={'Authorization': f"Bearer {token}"},
        )

    def send_message(self, channel: str, text: str, blocks: Optional[List[Dict[str, Any]]] = None) -> Optional[str]:
        """
        Post a message to a channel or user id.

        Returns:
            Message timestamp (Slack's message reference)
        """
        body: Dict[str, Any] = {'channel': channel, 'text': text}
        if blocks:
            body['blocks'] = blocks
        result = self._call('chat.postMessage', body)
        return result.get('ts')

    def lookup_user_by_email(self, email: str) -> Optional[str]:
        """
        Find a Slack user id by email.

        Returns:
            User id, or None when the user is unknown or the lookup fails
        """
        try:
            result = self._call('users.lookupByEmail', params={'email': email})
        except UpstreamError as e:
            logger.warning(f"Slack user lookup failed for {email}: {e}")
            return None
        return (result.get('user') or {}).get('id')

    def open_view(self, trigger_id: str, view: Dict[str, Any]) -> Dict[str, Any]:
        return self._call('views.open', {'trigger_id': trigger_id, 'view': view})

    def _call(self, method: str, body: Optional[Dict[str, Any]] = None,
              params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{method}"
        try:
            if body is None:
                result = self.client.get_json(url, params=params)
            else:
                result = self.client.post_json(url, body)
        except (requests.RequestException, CircuitOpenError, ValueError) as e:
            raise UpstreamError('slack', f"{method} failed: {e}") from e

        if not isinstance(result, dict) or not result.get('ok'):
            error = result.get('error') if isinstance(result, dict) else 'empty response'
            raise UpstreamError('slack', f"{method} failed: {error}")
        return result


def issue_link(jira_key: str, jira_base_url: str = '') -> str:
    if not jira_base_url:
        return jira_key
    return f"{jira_base_url.rstrip('/')}/browse/{jira_key}"


def build_question_message(issue: Any, questions: Sequence[Any], jira_base_url: str = '') -> Dict[str, Any]:
    """
    Block Kit message listing the questions with one "Answer Questions" button.

    Args:
        issue: ScannedIssue
        questions: Unanswered QaAnswer rows

    Returns:
        {"text": fallback text, "blocks": [...]}
    """
    link = issue_link(issue.jira_key, jira_base_url)
    question_list = '\n'.join(f"{i}. {qa.question}" for i, qa in enumerate(questions, 1))

    blocks = [
        {
            'type': 'header',
            'text': {'type': 'plain_text', 'text': f"DoR Gatekeeper: {issue.jira_key}", 'emoji': True},
        },
        {
            'type': 'section',
            'text': {
                'type': 'mrkdwn',
                'text': f"*<{link}|{issue.jira_key}>* - {issue.summary}\n\n"
                        f"*Readiness Score:* {issue.readiness_score:.1f}/5.0  |  *Status:* {issue.status}",
            },
        },
        {'type': 'divider'},
        {
            'type': 'section',
            'text': {'type': 'mrkdwn', 'text': f"*Clarifying Questions:*\n{question_list}"},
        },
        {'type': 'divider'},
        {
            'type': 'actions',
            'elements': [
                {
                    'type': 'button',
                    'text': {'type': 'plain_text', 'text': 'Answer Questions', 'emoji': True},
                    'style': 'primary',
                    'action_id': ANSWER_ACTION_ID,
                    'value': json.dumps({'issue_id': issue.id, 'issue_key': issue.jira_key}),
                },
            ],
        },
    ]

    text = (f"DoR Gatekeeper: {issue.jira_key} needs clarification "
            f"(score {issue.readiness_score:.1f}/5.0)")
    return {'text': text, 'blocks': blocks}


def build_answer_modal(issue: Any, questions: Sequence[Any]) -> Dict[str, Any]:
    """Modal view with one optional multiline input per question."""
    inputs = [
        {
            'type': 'input',
            'block_id': f"answer_{qa.id}",
            'label': {'type': 'plain_text', 'text': f"Q{i}: {qa.question}"[:SLACK_LABEL_LIMIT]},
            'element': {
                'type': 'plain_text_input',
                'action_id': f"answer_input_{qa.id}",
                'multiline': True,
                'placeholder': {'type': 'plain_text', 'text': 'Type your answer here...'},
            },
            'optional': True,
        }
        for i, qa in enumerate(questions, 1)
    ]

    return {
        'type': 'modal',
        'callback_id': ANSWER_MODAL_CALLBACK_ID,
        'private_metadata': json.dumps({
            'issue_id': issue.id,
            'issue_key': issue.jira_key,
            'question_ids': [qa.id for qa in questions],
        }),
        'title': {'type': 'plain_text', 'text': f"DoR: {issue.jira_key}"[:24]},
        'submit': {'type': 'plain_text', 'text': 'Submit Answers'},
        'close': {'type': 'plain_text', 'text': 'Cancel'},
        'blocks': [
            {
                'type': 'section',
                'text': {
                    'type': 'mrkdwn',
                    'text': f"*{issue.jira_key}*: {issue.summary}\n\n"
                            "Please answer the questions below to help this issue meet the Definition of Ready.",
                },
            },
            {'type': 'divider'},
        ] + inputs,
    }


def extract_modal_answers(view: Dict[str, Any]) -> List[Dict[str, str]]:
    """
    Read submitted answers from a modal view.

    Returns:
        [{"qa_id", "answer"}] for non-empty inputs, in question order
    """
    metadata = json.loads(view.get('private_metadata') or '{}')
    values = (view.get('state') or {}).get('values') or {}

    answers = []
    for qa_id in metadata.get('question_ids', []):
        block = values.get(f"answer_{qa_id}") or {}
        element = block.get(f"answer_input_{qa_id}") or {}
        text = (element.get('value') or '').strip()
        if text:
            answers.append({'qa_id': qa_id, 'answer': text})
    return answers
