"""
Mock issue provider backed by a JSON file of demo issues.

Used in mock mode and in tests. The default file holds five DEMO issues
of varying completeness, from fully ready to nearly empty.
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from errors import NotFoundError, UpstreamError
from .base_adapter import BaseIssueProvider, NormalizedIssue

logger = logging.getLogger(__name__)

DEFAULT_MOCK_FILE = Path(__file__).parent / "mock_responses" / "demo_issues.json"


class MockIssueProvider(BaseIssueProvider):
    """Serves issues from a JSON list or an in-memory list of records."""

    def __init__(self, issues: Optional[List[Union[Dict[str, Any], NormalizedIssue]]] = None,
                 mock_file: Optional[Union[str, Path]] = None):
        super().__init__({"mock_file": str(mock_file or DEFAULT_MOCK_FILE)})
        self.provider_id = "mock"
        self.mock_file = Path(mock_file) if mock_file else DEFAULT_MOCK_FILE
        self._issues = None if issues is None else [self._coerce(i) for i in issues]

    def list_issues(self, query: Optional[str] = None) -> List[NormalizedIssue]:
        """Return every demo issue; the query is ignored."""
        self._last_fetch = datetime.now(timezone.utc)

        try:
            issues = self._load()
        except (OSError, ValueError, KeyError) as e:
            self._last_error = f"{type(e).__name__}: {e}"
            self._records_fetched = 0
            raise UpstreamError(self.provider_id, f"failed to load {self.mock_file}: {e}") from e

        self._records_fetched = len(issues)
        self._last_error = None
        logger.debug(f"Loaded {len(issues)} mock issues")
        return issues

    def get_issue(self, key: str) -> NormalizedIssue:
        for issue in self.list_issues():
            if issue.key == key:
                return issue
        raise NotFoundError("Mock issue", key)

    def set_issues(self, issues: List[Union[Dict[str, Any], NormalizedIssue]]) -> None:
        """Replace the served issues (tests use this to simulate edits)."""
        self._issues = [self._coerce(i) for i in issues]

    def _load(self) -> List[NormalizedIssue]:
        if self._issues is not None:
            return list(self._issues)

        with open(self.mock_file, encoding="utf-8") as f:
            data = json.load(f)
        return [NormalizedIssue.from_dict(record) for record in data]

    @staticmethod
    def _coerce(issue: Union[Dict[str, Any], NormalizedIssue]) -> NormalizedIssue:
        if isinstance(issue, NormalizedIssue):
            return issue
        return NormalizedIssue.from_dict(issue)
