"""
Canned clarifying questions, one or two per default rule.
"""
from typing import Dict, List, Sequence, Tuple

MAX_QUESTIONS = 6

QUESTION_TEMPLATES: Dict[str, List[str]] = {
    'Acceptance Criteria Present': [
        'What are the specific acceptance criteria for this story? Please provide 3-5 bullet points.',
        'How will we verify this feature is complete and working correctly?',
    ],
    'Story Points Estimated': [
        'What is the estimated effort/complexity for this story (story points 1-13)?',
    ],
    'Assignee Set': [
        'Who should be assigned to own and deliver this work?',
    ],
    'Technical Design Present': [
        'What is the technical approach for implementing this feature?',
        'Are there any architectural decisions or trade-offs to document?',
    ],
    'Dependencies Identified': [
        'Does this story depend on or block any other work items?',
    ],
    'Test Strategy Defined': [
        'How should this feature be tested? (unit tests, integration, E2E, manual)',
    ],
    'User Impact Documented': [
        'What is the expected impact on end users? Who is affected and how?',
    ],
    'Labels Present': [
        'What labels/tags should be applied to categorize this work? (e.g., frontend, backend, bug)',
    ],
    'Priority Set': [
        'What is the priority level for this story? (Critical, High, Medium, Low)',
    ],
}


def questions_for_rule(rule_name: str) -> List[str]:
    return QUESTION_TEMPLATES.get(rule_name, [f"Please provide details for: {rule_name}"])


def template_questions(rule_names: Sequence[str], limit: int = MAX_QUESTIONS) -> List[Tuple[str, str]]:
    """
    Build (rule_name, question) pairs for missing rules, in rule order.

    Args:
        rule_names: Missing rule names, ordered as in the rule set
        limit: Maximum number of questions
    """
    questions = [
        (rule_name, text)
        for rule_name in rule_names
        for text in questions_for_rule(rule_name)
    ]
    return questions[:limit]
