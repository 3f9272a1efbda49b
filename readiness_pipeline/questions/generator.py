"""
Clarifying question generation for scanned issues.

Questions come from an optional delegate (an LLM) or from canned
templates. Delegate output is only trusted for rules that are actually
missing; anything else falls back to templates.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from storage import IssueStore, KeyedLocks, QaAnswer
from .templates import MAX_QUESTIONS, template_questions

logger = logging.getLogger(__name__)


class QuestionGenerationService:
    """
    Generates and persists clarifying questions.

    - Idempotent: existing questions are returned unless regenerate=True
    - Regeneration deletes unanswered rows only
    - At most six new questions, in rule order
    """

    def __init__(self, issues: IssueStore, delegate: Optional[Any] = None, locks: Optional[KeyedLocks] = None):
        """
        Args:
            issues: Issue and Q&A store
            delegate: Object with generate_questions(issue, missing) -> list | None
            locks: Per-issue locks shared with the orchestrator
        """
        self.issues = issues
        self.delegate = delegate
        self.locks = locks or KeyedLocks()

    def generate(self, issue_id: str, regenerate: bool = False) -> List[QaAnswer]:
        """
        Generate questions for an issue's missing items.

        Raises:
            NotFoundError: If the issue does not exist
        """
        with self.locks.hold(issue_id):
            issue = self.issues.get(issue_id)

            if issue.questions_generated and not regenerate:
                return self.issues.list_questions(issue_id)

            if not issue.missing_items:
                if regenerate:
                    self.issues.delete_unanswered(issue_id)
                logger.info(f"No missing items for {issue.jira_key}; no questions generated")
                return []

            # delegate call happens outside the database transaction
            questions = self.build_questions(issue, issue.missing_items)

            with self.issues.db.transaction():
                if regenerate:
                    removed = self.issues.delete_unanswered(issue_id)
                    logger.debug(f"Removed {removed} unanswered questions for {issue.jira_key}")
                self.issues.add_questions(issue_id, questions)
                self.issues.update(issue_id, questions_generated=True)

            logger.info(f"Generated {len(questions)} questions for {issue.jira_key}")
            return self.issues.list_questions(issue_id)

    def build_questions(self, issue: Any, missing: Sequence[Any]) -> List[Tuple[str, str]]:
        """(rule_name, question) pairs, delegate first, templates as fallback."""
        rule_names = [item.rule for item in missing]

        if self.delegate is not None:
            try:
                generated = self.delegate.generate_questions(issue, missing)
            except Exception as e:
                logger.warning(f"Question delegate failed for {issue.jira_key}: {e}")
                generated = None
            usable = self._usable(generated, rule_names)
            if usable:
                return usable
            logger.warning(f"Question delegate returned nothing usable for {issue.jira_key}; using templates")

        return template_questions(rule_names, MAX_QUESTIONS)

    @staticmethod
    def _usable(generated: Optional[List[Dict[str, str]]], rule_names: Sequence[str]) -> List[Tuple[str, str]]:
        """
        Keep delegate questions whose rule is one of the missing rules.

        Rule names are matched case-insensitively and normalized to the
        rule set's spelling; output is stably sorted into rule order.
        """
        if not generated or not isinstance(generated, (list, tuple)):
            return []

        order = {name.lower(): (position, name) for position, name in enumerate(rule_names)}
        matched = []
        for item in generated:
            if not isinstance(item, dict):
                continue
            key = str(item.get('rule', '')).strip().lower()
            text = str(item.get('question', '')).strip()
            if key in order and text:
                position, name = order[key]
                matched.append((position, name, text))

        matched.sort(key=lambda entry: entry[0])
        return [(name, text) for _, name, text in matched][:MAX_QUESTIONS]
