"""
Tests for issue providers and the HTTP client.

Covers:
- NormalizedIssue field resolution
- Mock provider loading and failure handling
- Jira normalization (ADF descriptions, assignee, priority, story points)
- Jira search pagination, error mapping and write-back
- HttpClient retries, Retry-After and circuit breaking
"""
import json

import pytest
import requests

from errors import ConfigurationError, NotFoundError, UpstreamError
from ingestion import JiraIssueProvider, MockIssueProvider, NormalizedIssue
from ingestion.http_client import CircuitBreaker, CircuitOpenError, HttpClient, RetryConfig, retry_after_seconds
from ingestion.jira_adapter import NEEDS_INFO_LABEL, READY_LABEL, extract_text_from_adf, normalize_issue
from settings import JiraSettings


def make_response(status_code, body=None, headers=None):
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(body).encode() if body is not None else b""
    response.headers.update(headers or {})
    response.url = "https://jira.example.com"
    return response


def raw_issue(key, **fields):
    base = {
        "summary": f"Summary {key}",
        "description": None,
        "assignee": None,
        "priority": None,
        "labels": [],
        "customfield_10016": None,
    }
    base.update(fields)
    return {"key": key, "fields": base}


class FakeSession:
    """requests.Session stand-in returning queued responses."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.headers = {}
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeJiraClient:
    def __init__(self, pages=None, error=None):
        self.pages = list(pages or [])
        self.error = error
        self.gets = []
        self.posts = []
        self.puts = []

    def get_json(self, url, params=None, headers=None):
        self.gets.append((url, params))
        if self.error:
            raise self.error
        return self.pages.pop(0)

    def post_json(self, url, body, headers=None):
        self.posts.append((url, body))

    def put_json(self, url, body, headers=None):
        self.puts.append((url, body))


@pytest.fixture
def jira_settings():
    return JiraSettings(base_url="https://jira.example.com/", email="bot@example.com", project_keys="DEMO")


class TestNormalizedIssue:
    def test_from_dict(self):
        issue = NormalizedIssue.from_dict({
            "key": "DEMO-1",
            "priority": {"name": "High"},
            "story_points": 3,
            "customfield_20000": "Team Blue",
        })

        assert issue.priority == "High"
        assert issue.get_field("customfield_10016") == 3
        assert issue.get_field("customfield_20000") == "Team Blue"
        assert issue.get_field("unknown") is None
        assert issue.to_dict()["customfield_10016"] == 3


class TestMockProvider:
    def test_loads_demo_issues(self):
        provider = MockIssueProvider()

        issues = provider.list_issues()

        assert [i.key for i in issues] == ["DEMO-101", "DEMO-102", "DEMO-103", "DEMO-104", "DEMO-105"]
        assert issues[1].labels == []
        assert issues[1].priority is None
        health = provider.get_health()
        assert health.is_healthy
        assert health.records_fetched == 5

    def test_get_issue(self):
        assert MockIssueProvider().get_issue("DEMO-103").assignee == "bob@example.com"
        with pytest.raises(NotFoundError):
            MockIssueProvider().get_issue("DEMO-999")

    def test_set_issues(self):
        provider = MockIssueProvider()
        provider.set_issues([{"key": "X-1", "summary": "edited"}])
        assert [i.summary for i in provider.list_issues()] == ["edited"]

    def test_missing_file_is_upstream_error(self, tmp_path):
        provider = MockIssueProvider(mock_file=tmp_path / "missing.json")

        with pytest.raises(UpstreamError):
            provider.list_issues()
        assert not provider.get_health().is_healthy


class TestJiraNormalization:
    def test_flattens_fields(self):
        issue = normalize_issue(raw_issue(
            "DEMO-7",
            description="AC: done",
            assignee={"emailAddress": "dev@example.com", "displayName": "Dev"},
            priority={"name": "Critical"},
            labels=["backend"],
            customfield_10016=5.0,
            customfield_30000="extra",
        ))

        assert issue.key == "DEMO-7"
        assert issue.description == "AC: done"
        assert issue.assignee == "dev@example.com"
        assert issue.priority == "Critical"
        assert issue.labels == ["backend"]
        assert issue.story_points == 5.0
        assert issue.custom_fields == {"customfield_30000": "extra"}

    def test_empty_fields(self):
        issue = normalize_issue(raw_issue("DEMO-8", customfield_10016="n/a"))

        assert issue.description == ""
        assert issue.assignee == ""
        assert issue.priority is None
        assert issue.story_points is None

    def test_assignee_display_name_fallback(self):
        issue = normalize_issue(raw_issue("DEMO-9", assignee={"displayName": "Dev"}))
        assert issue.assignee == "Dev"

    def test_adf_description(self):
        adf = {
            "type": "doc",
            "version": 1,
            "content": [
                {"type": "heading", "content": [{"type": "text", "text": "Acceptance Criteria"}]},
                {"type": "paragraph", "content": [
                    {"type": "text", "text": "Users can "},
                    {"type": "text", "text": "log in", "marks": [{"type": "strong"}]},
                ]},
                {"type": "bulletList", "content": [
                    {"type": "listItem", "content": [
                        {"type": "paragraph", "content": [{"type": "text", "text": "Depends on DEMO-1"}]},
                    ]},
                ]},
            ],
        }

        text = extract_text_from_adf(adf)

        assert text == "Acceptance Criteria\nUsers can log in\nDepends on DEMO-1"
        assert normalize_issue(raw_issue("DEMO-10", description=adf)).description == text

    def test_adf_ignores_non_dicts(self):
        assert extract_text_from_adf(None) == ""
        assert extract_text_from_adf({"type": "mention"}) == ""


class TestJiraProvider:
    def test_requires_credentials(self, monkeypatch):
        monkeypatch.delenv("JIRA_API_TOKEN", raising=False)
        with pytest.raises(ConfigurationError):
            JiraIssueProvider(JiraSettings(base_url="https://jira.example.com", email="bot@example.com"))

    def test_build_jql(self, jira_settings):
        provider = JiraIssueProvider(jira_settings, http_client=FakeJiraClient())

        assert provider.build_jql("project = X") == "project = X"
        assert provider.build_jql("OPS").startswith("project = OPS AND statusCategory != Done")
        assert provider.build_jql().startswith("project = DEMO ")

        jira_settings.jql = "assignee = currentUser()"
        assert JiraIssueProvider(jira_settings, http_client=FakeJiraClient()).build_jql() == "assignee = currentUser()"

    def test_search_paginates(self, jira_settings):
        first_page = [raw_issue(f"DEMO-{i}") for i in range(50)]
        second_page = [raw_issue(f"DEMO-{i}") for i in range(50, 60)]
        client = FakeJiraClient(pages=[
            {"issues": first_page, "total": 60},
            {"issues": second_page, "total": 60},
        ])
        provider = JiraIssueProvider(jira_settings, http_client=client)

        issues = provider.list_issues()

        assert len(issues) == 60
        assert [params["startAt"] for _, params in client.gets] == [0, 50]
        assert client.gets[0][0] == "https://jira.example.com/rest/api/3/search/jql"
        assert provider.get_health().records_fetched == 60

    def test_search_respects_max_results(self, jira_settings):
        jira_settings.max_results = 50
        client = FakeJiraClient(pages=[{"issues": [raw_issue(f"DEMO-{i}") for i in range(50)], "total": 500}])

        assert len(JiraIssueProvider(jira_settings, http_client=client).list_issues()) == 50
        assert len(client.gets) == 1

    def test_search_failure_is_upstream_error(self, jira_settings):
        provider = JiraIssueProvider(jira_settings, http_client=FakeJiraClient(error=requests.ConnectionError("down")))

        with pytest.raises(UpstreamError):
            provider.list_issues()
        health = provider.get_health()
        assert not health.is_healthy
        assert "down" in health.error_message

    def test_get_issue_not_found(self, jira_settings):
        error = requests.HTTPError("404", response=make_response(404))
        provider = JiraIssueProvider(jira_settings, http_client=FakeJiraClient(error=error))

        with pytest.raises(NotFoundError):
            provider.get_issue("DEMO-404")

    def test_get_issue_server_error(self, jira_settings):
        error = requests.HTTPError("502", response=make_response(502))
        provider = JiraIssueProvider(jira_settings, http_client=FakeJiraClient(error=error))

        with pytest.raises(UpstreamError):
            provider.get_issue("DEMO-1")

    def test_write_back_ready(self, jira_settings):
        client = FakeJiraClient()
        provider = JiraIssueProvider(jira_settings, http_client=client)

        provider.write_back("DEMO-1", "READY", "line one\n\nline two")

        url, body = client.puts[0]
        assert url == "https://jira.example.com/rest/api/3/issue/DEMO-1"
        assert body == {"update": {"labels": [{"add": READY_LABEL}, {"remove": NEEDS_INFO_LABEL}]}}
        comment_url, comment = client.posts[0]
        assert comment_url.endswith("/issue/DEMO-1/comment")
        paragraphs = comment["body"]["content"]
        assert len(paragraphs) == 3
        assert paragraphs[1]["content"] == []

    def test_write_back_not_ready(self, jira_settings):
        client = FakeJiraClient()
        JiraIssueProvider(jira_settings, http_client=client).write_back("DEMO-1", "NEEDS_INFO")

        assert client.puts[0][1]["update"]["labels"][0] == {"add": NEEDS_INFO_LABEL}
        assert client.posts == []


class TestHttpClient:
    def make_client(self, responses, max_retries=2, circuit_breaker=None):
        session = FakeSession(responses)
        retry = RetryConfig(max_retries=max_retries, base_delay_seconds=0, jitter_ratio=0)
        return HttpClient("test", retry_config=retry, circuit_breaker=circuit_breaker, session=session), session

    def test_retries_transient_failures(self):
        client, session = self.make_client([make_response(503), make_response(200, {"ok": True})])

        assert client.get_json("https://jira.example.com/x") == {"ok": True}
        assert len(session.requests) == 2
        assert session.requests[0][2]["timeout"] == 30.0

    def test_retries_connection_errors(self):
        client, session = self.make_client([requests.ConnectionError("reset"), make_response(200, {"ok": 1})])
        assert client.get_json("https://jira.example.com/x") == {"ok": 1}

    def test_gives_up_after_max_retries(self):
        client, session = self.make_client([make_response(502)] * 3)

        with pytest.raises(requests.HTTPError):
            client.get_json("https://jira.example.com/x")
        assert len(session.requests) == 3

    def test_client_errors_are_not_retried(self):
        client, session = self.make_client([make_response(404)])

        with pytest.raises(requests.HTTPError):
            client.get_json("https://jira.example.com/x")
        assert len(session.requests) == 1
        assert not client.circuit_breaker.is_open

    def test_circuit_opens_after_failures(self):
        breaker = CircuitBreaker(failure_threshold=2, open_seconds=60)
        client, session = self.make_client([make_response(500), make_response(500)], max_retries=0,
                                           circuit_breaker=breaker)

        for _ in range(2):
            with pytest.raises(requests.HTTPError):
                client.get_json("https://jira.example.com/x")

        with pytest.raises(CircuitOpenError):
            client.get_json("https://jira.example.com/x")
        assert len(session.requests) == 2

    def test_trial_call_closes_circuit(self):
        breaker = CircuitBreaker(failure_threshold=1, open_seconds=0)
        client, _ = self.make_client([make_response(500), make_response(200, {"ok": True})], max_retries=0,
                                     circuit_breaker=breaker)

        with pytest.raises(requests.HTTPError):
            client.get_json("https://jira.example.com/x")
        assert breaker.is_open

        assert client.get_json("https://jira.example.com/x") == {"ok": True}
        assert not breaker.is_open

    def test_only_one_trial_call_while_open(self):
        breaker = CircuitBreaker(failure_threshold=1, open_seconds=0)
        breaker.record_failure()

        assert breaker.can_attempt()
        assert not breaker.can_attempt()
        breaker.record_failure()
        assert breaker.can_attempt()

    def test_post_with_empty_body(self):
        client, session = self.make_client([make_response(204)])

        assert client.post_json("https://jira.example.com/x", {"a": 1}) is None
        assert session.requests[0][2]["json"] == {"a": 1}

    def test_retry_after_header(self):
        assert retry_after_seconds(make_response(429, headers={"Retry-After": "3"})) == 3.0
        assert retry_after_seconds(make_response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})) == 0.0
        assert retry_after_seconds(make_response(429, headers={"Retry-After": "soon"})) is None
        assert retry_after_seconds(make_response(429)) is None

    def test_retry_after_extends_backoff(self):
        assert RetryConfig(base_delay_seconds=0.5, jitter_ratio=0).delay(1) == 1.0
        assert RetryConfig(base_delay_seconds=0.5, jitter_ratio=0).delay(1, retry_after=4) == 4
        assert RetryConfig(base_delay_seconds=8, max_delay_seconds=10, jitter_ratio=0).delay(3) == 10

    def test_retry_policy_comes_from_settings(self, jira_settings, monkeypatch):
        monkeypatch.setenv("JIRA_API_TOKEN", "token")
        jira_settings.max_retries = 5
        jira_settings.timeout_seconds = 12

        client = JiraIssueProvider(jira_settings).client

        assert client.retry_config.max_retries == 5
        assert client.retry_config.timeout_seconds == 12
        assert client.session.headers["Authorization"].startswith("Basic ")
