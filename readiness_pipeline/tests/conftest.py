"""
Shared pytest fixtures for readiness pipeline tests.

This module provides reusable fixtures that simplify test setup
and reduce code duplication across test modules.
"""
import tempfile
from pathlib import Path

import pytest

from decisioning import get_default_ruleset
from fakes import FakeSlackClient
from ingestion import MockIssueProvider
from run_scan import ReadinessPipeline
from settings import Settings, SlackSettings
from storage import AuditLog, Database, IssueStore, KeyedLocks, RuleSetStore, UserMappingStore


@pytest.fixture
def temp_db():
    """
    Create a temporary database for testing.

    Yields:
        Database instance with schema initialized

    Cleanup:
        Automatically closes connection and removes file after test
    """
    # DuckDB creates the actual file; only the name is needed
    with tempfile.NamedTemporaryFile(suffix=".duckdb", delete=True) as f:
        db_path = f.name

    db = Database(db_path)
    db.initialize_schema()
    yield db
    db.close()

    Path(db_path).unlink(missing_ok=True)
    Path(db_path + ".wal").unlink(missing_ok=True)


@pytest.fixture
def issue_store(temp_db):
    return IssueStore(temp_db)


@pytest.fixture
def ruleset_store(temp_db):
    return RuleSetStore(temp_db)


@pytest.fixture
def audit_log(temp_db):
    return AuditLog(temp_db)


@pytest.fixture
def mapping_store(temp_db):
    return UserMappingStore(temp_db)


@pytest.fixture
def locks():
    return KeyedLocks()


@pytest.fixture
def default_ruleset(ruleset_store):
    """Default nine-rule DEMO rule set, persisted."""
    return ruleset_store.create_ruleset(get_default_ruleset("DEMO"))


@pytest.fixture
def mock_settings():
    return Settings(mock_mode=True, database_path=":memory:", max_workers=4)


@pytest.fixture
def live_settings():
    """Live-mode settings pointing at no real services."""
    return Settings(
        mock_mode=False,
        database_path=":memory:",
        max_workers=2,
        slack=SlackSettings(bot_token_env="TEST_SLACK_TOKEN_UNSET", default_channel=""),
    )


@pytest.fixture
def pipeline(temp_db, mock_settings):
    """
    Mock-mode pipeline with demo rule set and user mappings seeded.

    Yields:
        ReadinessPipeline backed by the temporary database
    """
    p = ReadinessPipeline(mock_settings, provider=MockIssueProvider(), database=temp_db)
    p.seed_demo_data()
    yield p
    p.messaging.close()


@pytest.fixture
def fake_slack():
    return FakeSlackClient()
