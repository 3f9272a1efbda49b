"""
Question generation through an OpenAI-compatible chat completions API.

Works with OpenAI itself and with compatible providers (Groq, Ollama,
LM Studio) through their base URL. Any failure returns None so the
caller can fall back to the canned templates.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import OpenAI

from .redaction import redact_sensitive_data
from .templates import MAX_QUESTIONS

logger = logging.getLogger(__name__)

PROVIDER_BASE_URLS = {
    'openai': 'https://api.openai.com/v1',
    'ollama': 'http://localhost:11434/v1',
    'groq': 'https://api.groq.com/openai/v1',
    'lmstudio': 'http://localhost:1234/v1',
}

LOCAL_PROVIDERS = ('ollama', 'lmstudio')

DESCRIPTION_LIMIT = 2000

SYSTEM_PROMPT = """You are a DoR (Definition of Ready) analyst. Given a Jira issue and its missing DoR criteria, generate targeted clarifying questions.

Rules:
- Generate 1-2 questions per missing item, up to 6 total.
- Questions must be specific, short, and actionable.
- Avoid generic "please add more details" questions.
- Each question must reference the specific missing rule.

You MUST respond with valid JSON matching this exact schema:
{
  "questions": [
    {
      "missingRule": "Rule Name",
      "question": "Your specific question here?"
    }
  ]
}

Only return JSON, no markdown or explanation."""


def build_user_prompt(jira_key: str, summary: str, description: str, missing: Sequence[Any]) -> str:
    """User message with the redacted description and the missing criteria."""
    missing_list = '\n'.join(
        f"- {item.rule} ({item.severity}): {item.suggestion}" for item in missing
    )
    redacted = redact_sensitive_data(description or '')[:DESCRIPTION_LIMIT]

    return f"""Jira Issue: {jira_key} - {summary}

Description (redacted):
{redacted}

Missing DoR Criteria:
{missing_list}

Generate targeted clarifying questions for the missing items above."""


def parse_questions(content: Optional[str]) -> Optional[List[Dict[str, str]]]:
    """
    Parse the model's JSON reply into [{"rule", "question"}].

    Returns:
        Up to six well-formed questions, or None if none are usable
    """
    if not content:
        return None

    try:
        parsed = json.loads(content)
    except ValueError:
        logger.warning("Question generation returned invalid JSON")
        return None

    raw_questions = parsed.get('questions') if isinstance(parsed, dict) else None
    if not isinstance(raw_questions, list):
        return None

    questions = [
        {'rule': q['missingRule'], 'question': q['question']}
        for q in raw_questions
        if isinstance(q, dict)
        and isinstance(q.get('missingRule'), str)
        and isinstance(q.get('question'), str)
        and q['question'].strip()
    ][:MAX_QUESTIONS]

    return questions or None


class OpenAIQuestionDelegate:
    """Generates clarifying questions with a chat completion call."""

    def __init__(self, settings, client: Optional[OpenAI] = None):
        """
        Args:
            settings: LlmSettings section
            client: Injected client (tests); built from settings otherwise
        """
        self.settings = settings
        self.model = settings.model or 'gpt-4o-mini'

        if client is None:
            base_url = (
                settings.base_url
                or PROVIDER_BASE_URLS.get(settings.provider)
                or PROVIDER_BASE_URLS['openai']
            )
            client = OpenAI(
                api_key=settings.api_key or 'not-needed',
                base_url=base_url,
                timeout=settings.timeout_seconds,
                max_retries=1,
            )
        self.client = client

    @staticmethod
    def is_configured(settings) -> bool:
        """An API key is required except for local providers."""
        return bool(settings.api_key) or settings.provider in LOCAL_PROVIDERS

    def generate_questions(self, issue: Any, missing: Sequence[Any]) -> Optional[List[Dict[str, str]]]:
        """
        Ask the model for questions about the missing items.

        Args:
            issue: Object with jira_key, summary, description
            missing: MissingItem objects

        Returns:
            [{"rule", "question"}] or None on any failure
        """
        prompt = build_user_prompt(issue.jira_key, issue.summary, issue.description, missing)

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.3,
                max_tokens=1000,
                response_format={"type": "json_object"},
            )
        except openai.OpenAIError as e:
            logger.warning(f"Question generation failed for {issue.jira_key}, using templates: {e}")
            return None

        content = response.choices[0].message.content if response.choices else None
        return parse_questions(content)
