"""
Clarifying questions: generation, redaction and answers.
"""
from .answers import AnswerService
from .generator import QuestionGenerationService
from .llm_client import OpenAIQuestionDelegate
from .redaction import redact_sensitive_data
from .templates import MAX_QUESTIONS, QUESTION_TEMPLATES, template_questions

__all__ = [
    "AnswerService",
    "MAX_QUESTIONS",
    "OpenAIQuestionDelegate",
    "QUESTION_TEMPLATES",
    "QuestionGenerationService",
    "redact_sensitive_data",
    "template_questions",
]
