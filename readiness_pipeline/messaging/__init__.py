"""
Messaging round trip (Slack).
"""
from .round_trip import MOCK_ANSWERS, SlackRoundTrip, mock_answer_for
from .slack_client import SlackClient, build_answer_modal, build_question_message, extract_modal_answers

__all__ = [
    "MOCK_ANSWERS",
    "SlackClient",
    "SlackRoundTrip",
    "build_answer_modal",
    "build_question_message",
    "extract_modal_answers",
    "mock_answer_for",
]
