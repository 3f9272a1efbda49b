"""
Jira Cloud issue provider.

Searches issues with JQL, fetches single issues, and optionally writes
scan results back as labels and a summary comment. Raw Jira issues are
flattened into NormalizedIssue records; rich-text (ADF) descriptions are
reduced to plain text.
"""
import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from errors import ConfigurationError, NotFoundError, UpstreamError
from .base_adapter import STORY_POINTS_FIELD, BaseIssueProvider, NormalizedIssue
from .http_client import CircuitOpenError, HttpClient, RetryConfig

logger = logging.getLogger(__name__)

DEFAULT_FIELDS = ["summary", "description", "assignee", "priority", "labels", STORY_POINTS_FIELD, "status"]
PAGE_SIZE = 50

READY_LABEL = "DOR_READY"
NEEDS_INFO_LABEL = "DOR_NEEDS_INFO"


class JiraIssueProvider(BaseIssueProvider):
    """Live Jira provider using the REST API v3."""

    def __init__(self, settings, http_client: Optional[HttpClient] = None):
        """
        Args:
            settings: JiraSettings section
            http_client: Injected client (tests); built from settings otherwise

        Raises:
            ConfigurationError: If base URL or credentials are missing
        """
        super().__init__(settings)
        self.provider_id = "jira"
        self.base_url = (settings.base_url or "").rstrip("/")
        self.project_keys = settings.project_keys
        self.jql = settings.jql
        self.max_results = int(settings.max_results or 200)

        if http_client is None:
            token = settings.api_token
            if not self.base_url or not settings.email or not token:
                raise ConfigurationError(
                    "Jira base_url, email and API token are required in live mode"
                )
            credentials = base64.b64encode(f"{settings.email}:{token}".encode()).decode()
            http_client = HttpClient(
                source_id=self.provider_id,
                retry_config=RetryConfig(
                    max_retries=int(settings.max_retries),
                    timeout_seconds=settings.timeout_seconds,
                ),
                headers={
                    "Authorization": f"Basic {credentials}",
                    "Accept": "application/json",
                },
            )
        self.client = http_client

    def build_jql(self, query: Optional[str] = None) -> str:
        """
        Resolve the JQL for a scan.

        A query containing '=' is treated as JQL; anything else as a
        project key.
        """
        if query and "=" in query:
            return query
        if self.jql and not query:
            return self.jql
        project = query or self.project_keys
        return f"project = {project} AND statusCategory != Done ORDER BY priority DESC, updated DESC"

    def list_issues(self, query: Optional[str] = None) -> List[NormalizedIssue]:
        """Search issues with automatic pagination, up to max_results."""
        self._last_fetch = datetime.now(timezone.utc)
        jql = self.build_jql(query)
        issues: List[NormalizedIssue] = []
        start_at = 0

        try:
            while start_at < self.max_results:
                data = self.client.get_json(
                    f"{self.base_url}/rest/api/3/search/jql",
                    params={
                        "jql": jql,
                        "fields": ",".join(DEFAULT_FIELDS),
                        "startAt": start_at,
                        "maxResults": PAGE_SIZE,
                    },
                )
                page = data.get("issues", [])
                issues.extend(normalize_issue(raw) for raw in page)

                total = data.get("total", len(page))
                if not page or start_at + len(page) >= total:
                    break
                start_at += PAGE_SIZE

        except (requests.RequestException, CircuitOpenError, ValueError) as e:
            self._last_error = f"{type(e).__name__}: {e}"
            self._records_fetched = 0
            logger.error(f"Jira search failed: {self._last_error}")
            raise UpstreamError(self.provider_id, f"search failed: {e}") from e

        self._records_fetched = len(issues)
        self._last_error = None
        return issues

    def get_issue(self, key: str) -> NormalizedIssue:
        try:
            data = self.client.get_json(
                f"{self.base_url}/rest/api/3/issue/{key}",
                params={"fields": ",".join(DEFAULT_FIELDS)},
            )
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                raise NotFoundError("Jira issue", key) from e
            raise UpstreamError(self.provider_id, f"getIssue {key} failed: {e}") from e
        except (requests.RequestException, CircuitOpenError, ValueError) as e:
            raise UpstreamError(self.provider_id, f"getIssue {key} failed: {e}") from e

        return normalize_issue(data)

    def add_comment(self, key: str, text: str) -> None:
        """Add a plain-text comment, wrapped in ADF paragraphs."""
        body = {
            "body": {
                "version": 1,
                "type": "doc",
                "content": [
                    {
                        "type": "paragraph",
                        "content": [{"type": "text", "text": line}] if line.strip() else [],
                    }
                    for line in text.split("\n")
                ],
            }
        }
        self._send("POST", f"{self.base_url}/rest/api/3/issue/{key}/comment", body)

    def update_labels(self, key: str, add: List[str], remove: List[str]) -> None:
        operations = [{"add": label} for label in add] + [{"remove": label} for label in remove]
        if not operations:
            return
        self._send("PUT", f"{self.base_url}/rest/api/3/issue/{key}", {"update": {"labels": operations}})

    def write_back(self, key: str, status: str, comment: Optional[str] = None) -> None:
        """Set the DoR label for the status and post the summary comment."""
        if status == "READY":
            self.update_labels(key, [READY_LABEL], [NEEDS_INFO_LABEL])
        else:
            self.update_labels(key, [NEEDS_INFO_LABEL], [READY_LABEL])
        if comment:
            self.add_comment(key, comment)

    def _send(self, method: str, url: str, body: Dict[str, Any]) -> None:
        try:
            if method == "POST":
                self.client.post_json(url, body)
            else:
                self.client.put_json(url, body)
        except (requests.RequestException, CircuitOpenError) as e:
            raise UpstreamError(self.provider_id, f"{method} {url} failed: {e}") from e


def normalize_issue(raw: Dict[str, Any]) -> NormalizedIssue:
    """
    Flatten a raw Jira issue.

    fields.assignee.emailAddress -> assignee (display name as fallback)
    fields.priority.name -> priority
    fields.description (ADF or string) -> description
    fields.customfield_10016 -> story_points
    """
    fields = raw.get("fields") or {}

    description = fields.get("description")
    if isinstance(description, dict):
        description = extract_text_from_adf(description)
    elif not isinstance(description, str):
        description = ""

    assignee = ""
    if isinstance(fields.get("assignee"), dict):
        person = fields["assignee"]
        assignee = person.get("emailAddress") or person.get("displayName") or ""

    priority = None
    if isinstance(fields.get("priority"), dict):
        priority = fields["priority"].get("name") or None

    labels = fields.get("labels") if isinstance(fields.get("labels"), list) else []

    story_points = fields.get(STORY_POINTS_FIELD)
    if isinstance(story_points, bool) or not isinstance(story_points, (int, float)):
        story_points = None

    known = set(DEFAULT_FIELDS)
    custom_fields = {k: v for k, v in fields.items() if k not in known}

    return NormalizedIssue(
        key=raw.get("key", ""),
        summary=fields.get("summary") or "",
        description=description,
        assignee=assignee,
        priority=priority,
        labels=list(labels),
        story_points=story_points,
        custom_fields=custom_fields,
    )


def extract_text_from_adf(node: Any) -> str:
    """Recursively extract plain text from Atlassian Document Format."""
    if not isinstance(node, dict):
        return ""

    if node.get("type") == "text" and isinstance(node.get("text"), str):
        return node["text"]

    content = node.get("content")
    if isinstance(content, list):
        # Inline runs join directly; block children go on separate lines
        separator = "" if node.get("type") in ("paragraph", "heading") else "\n"
        return separator.join(extract_text_from_adf(child) for child in content)

    return ""
