"""
Ingestion layer for the readiness pipeline.

Provides issue providers that fetch and normalize work items:
- MockIssueProvider (demo issues from JSON, used in mock mode)
- JiraIssueProvider (Jira Cloud REST API)
"""
from .base_adapter import BaseIssueProvider, NormalizedIssue, ProviderHealth, STORY_POINTS_FIELD
from .jira_adapter import JiraIssueProvider
from .mock_adapter import MockIssueProvider

__all__ = [
    "BaseIssueProvider",
    "NormalizedIssue",
    "ProviderHealth",
    "STORY_POINTS_FIELD",
    "JiraIssueProvider",
    "MockIssueProvider",
]
