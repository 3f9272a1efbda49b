"""
Scrub sensitive data from issue text before it leaves the process.

Applied to descriptions sent to the question-generation service.
"""
import re
from typing import List, Pattern, Tuple


REDACTIONS: List[Tuple[Pattern, str]] = [
    (re.compile(r'[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}'), '[EMAIL]'),
    (re.compile(r'(?:key|token|secret|password|auth)[=:\s]+\S{10,}', re.IGNORECASE), '[REDACTED_CREDENTIAL]'),
    (re.compile(r'https?://\S+\?\S+'), '[URL_REDACTED]'),
    (re.compile(r'AKIA[0-9A-Z]{16}'), '[AWS_KEY_REDACTED]'),
]


def redact_sensitive_data(text: str) -> str:
    """Replace sensitive substrings with placeholders, in REDACTIONS order."""
    if not text:
        return ''
    for pattern, placeholder in REDACTIONS:
        text = pattern.sub(placeholder, text)
    return text
