"""
Base interface for issue providers.

Defines the normalized issue record every provider produces and the
contract the orchestrator relies on: list issues for a query, fetch one
issue by key.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# Jira's default story point field; rules may target it by this name.
STORY_POINTS_FIELD = "customfield_10016"


@dataclass
class NormalizedIssue:
    """
    Provider-independent issue record.

    Known fields have a fixed schema; anything else a rule may target
    lives in custom_fields, keyed by the tracker's field name.
    """
    key: str
    summary: str = ""
    description: str = ""
    assignee: str = ""
    priority: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    story_points: Optional[float] = None
    custom_fields: Dict[str, Any] = field(default_factory=dict)

    FIELD_ALIASES = {
        STORY_POINTS_FIELD: "story_points",
    }
    SCHEMA_FIELDS = ("key", "summary", "description", "assignee", "priority", "labels", "story_points")

    def get_field(self, name: str) -> Any:
        """Resolve a rule target field; unknown names read custom_fields."""
        attr = self.FIELD_ALIASES.get(name, name)
        if attr in self.SCHEMA_FIELDS:
            return getattr(self, attr)
        return self.custom_fields.get(name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NormalizedIssue":
        """Build from a flat mapping; unrecognized keys become custom fields."""
        priority = data.get("priority")
        if isinstance(priority, dict):
            priority = priority.get("name")

        story_points = data.get("story_points", data.get(STORY_POINTS_FIELD))
        known = set(cls.SCHEMA_FIELDS) | {STORY_POINTS_FIELD}

        return cls(
            key=data["key"],
            summary=data.get("summary") or "",
            description=data.get("description") or "",
            assignee=data.get("assignee") or "",
            priority=priority or None,
            labels=list(data.get("labels") or []),
            story_points=story_points,
            custom_fields={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "key": self.key,
            "summary": self.summary,
            "description": self.description,
            "assignee": self.assignee,
            "priority": self.priority,
            "labels": list(self.labels),
            STORY_POINTS_FIELD: self.story_points,
        }
        data.update(self.custom_fields)
        return data


@dataclass
class ProviderHealth:
    """Health status of an issue provider."""
    provider_id: str
    is_healthy: bool
    last_fetch: Optional[datetime]
    records_fetched: int
    error_message: Optional[str] = None


class BaseIssueProvider(ABC):
    """
    Abstract base class for issue providers.

    Providers raise UpstreamError when the tracker cannot be reached;
    the orchestrator decides whether that is fatal.
    """

    def __init__(self, config: Any = None):
        self.config = config
        self.provider_id: str = ""
        self._last_fetch: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._records_fetched: int = 0

    @abstractmethod
    def list_issues(self, query: Optional[str] = None) -> List[NormalizedIssue]:
        """
        Fetch all issues matching a project key or query.

        Returns:
            List of NormalizedIssue objects
        """
        pass

    @abstractmethod
    def get_issue(self, key: str) -> NormalizedIssue:
        """
        Fetch one issue by key.

        Raises:
            NotFoundError: If the tracker has no such issue
            UpstreamError: If the tracker cannot be reached
        """
        pass

    def write_back(self, key: str, status: str, comment: Optional[str] = None) -> None:
        """Publish scan results to the tracker. Providers may not support it."""
        return None

    def add_comment(self, key: str, text: str) -> None:
        """Post a plain-text comment on the issue, where supported."""
        return None

    def get_health(self) -> ProviderHealth:
        """Return health status of this provider."""
        return ProviderHealth(
            provider_id=self.provider_id,
            is_healthy=self._last_error is None,
            last_fetch=self._last_fetch,
            records_fetched=self._records_fetched,
            error_message=self._last_error
        )
