"""
Answer submission for clarifying questions.

Manual answers and answers arriving from messaging share this path.
"""
import logging
from typing import Optional

from errors import ValidationError
from storage import AuditLog, IssueStore, KeyedLocks, QaAnswer, parse_question

logger = logging.getLogger(__name__)


class AnswerService:
    """Records answers against persisted questions."""

    def __init__(self, issues: IssueStore, audit: AuditLog, locks: Optional[KeyedLocks] = None):
        self.issues = issues
        self.audit = audit
        self.locks = locks or KeyedLocks()

    def submit(
        self,
        issue_id: str,
        question: str,
        answer_text: str,
        user_id: str = 'system',
        record_audit: bool = True
    ) -> QaAnswer:
        """
        Answer a question by its full "[Rule] text" string.

        The unanswered row with the same question is updated. A question
        that was never generated is stored as a new, answered row.

        Raises:
            NotFoundError: If the issue does not exist
            ValidationError: If question or answer is empty, or the
                question was already answered
        """
        if not question or not question.strip():
            raise ValidationError("question is required")
        if not answer_text or not answer_text.strip():
            raise ValidationError("answer is required")

        with self.locks.hold(issue_id):
            issue = self.issues.get(issue_id)

            with self.issues.db.transaction():
                existing = self.issues.find_question(issue_id, question)
                if existing is not None and existing.is_answered:
                    raise ValidationError(f"Question already answered: {question}")

                if existing is not None:
                    qa = self.issues.record_answer(existing.id, answer_text)
                else:
                    rule_name, _ = parse_question(question)
                    qa = self.issues.add_answered_question(issue_id, rule_name, question, answer_text)

                if record_audit:
                    self.audit.record(
                        'QUESTION_ANSWERED', 'QaAnswer', qa.id,
                        {'issue': issue.jira_key, 'question': question, 'answer': answer_text},
                        user_id=user_id
                    )

        logger.debug(f"Recorded answer for {issue.jira_key}: {question}")
        return qa

    def submit_by_id(self, issue_id: str, qa_id: str, answer_text: str, user_id: str = 'system',
                     record_audit: bool = True) -> QaAnswer:
        """Answer a question identified by its row id."""
        qa = self.issues.get_question(qa_id)
        if qa.issue_id != issue_id:
            raise ValidationError(f"Question {qa_id} does not belong to issue {issue_id}")
        return self.submit(issue_id, qa.question, answer_text, user_id=user_id, record_audit=record_audit)
