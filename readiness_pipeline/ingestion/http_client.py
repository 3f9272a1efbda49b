"""
Shared HTTP client for the Jira and Slack APIs.

Every outbound call gets a timeout, bounded retries with exponential
backoff (honoring Retry-After on 429/5xx) and a circuit breaker that
fails fast once a collaborator keeps erroring.
"""
import logging
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class CircuitOpenError(RuntimeError):
    """Raised instead of calling a collaborator whose circuit is open."""


@dataclass
class RetryConfig:
    max_retries: int = 2
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 10.0
    jitter_ratio: float = 0.3
    timeout_seconds: float = 30.0

    def delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        base = min(self.max_delay_seconds, self.base_delay_seconds * (2 ** attempt))
        delay = base + base * random.uniform(0, self.jitter_ratio)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Opens after failure_threshold failures in a row. Once open_seconds
    have passed a single trial call is let through; its outcome closes
    or re-opens the circuit. Shared by the scan worker threads.
    """

    def __init__(self, failure_threshold: int = 5, open_seconds: float = 60):
        self.failure_threshold = failure_threshold
        self.open_seconds = open_seconds
        self._lock = threading.Lock()
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._opened_at is not None

    def can_attempt(self) -> bool:
        with self._lock:
            if self._opened_at is None:
                return True
            if self._trial_in_flight:
                return False
            if time.monotonic() - self._opened_at < self.open_seconds:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._trial_in_flight = False
            if self._opened_at is not None or self._failures >= self.failure_threshold:
                self._opened_at = time.monotonic()


def retry_after_seconds(response: requests.Response) -> Optional[float]:
    """Seconds requested by a Retry-After header (delta or HTTP date), if any."""
    value = response.headers.get("Retry-After")
    if not value:
        return None

    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Unparseable Retry-After header: {value}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class HttpClient:
    """JSON-over-HTTP with timeouts, retries and a circuit breaker."""

    def __init__(
        self,
        source_id: str,
        retry_config: Optional[RetryConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            source_id: Collaborator name used in errors and logs
            retry_config: Timeout and retry policy
            circuit_breaker: Shared breaker; one per client by default
            headers: Default headers (auth, accept)
            session: Injected session (tests)
        """
        self.source_id = source_id
        self.retry_config = retry_config or RetryConfig()
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.session = session or requests.Session()
        if headers:
            self.session.headers.update(headers)

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None) -> Any:
        return self.request("GET", url, params=params, headers=headers).json()

    def post_json(self, url: str, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Any:
        response = self.request("POST", url, json_body=body, headers=headers)
        return response.json() if response.content else None

    def put_json(self, url: str, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Any:
        response = self.request("PUT", url, json_body=body, headers=headers)
        return response.json() if response.content else None

    def request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """
        Send one logical request, retrying transient failures.

        Raises:
            CircuitOpenError: The collaborator's circuit is open
            requests.HTTPError: Final non-2xx response
            requests.RequestException: Final connection or timeout error
        """
        if not self.circuit_breaker.can_attempt():
            raise CircuitOpenError(f"{self.source_id} circuit open")

        policy = self.retry_config
        attempt = 0
        while True:
            try:
                response = self.session.request(
                    method, url, params=params, json=json_body, headers=headers,
                    timeout=policy.timeout_seconds,
                )
            except requests.RequestException as e:
                if attempt >= policy.max_retries:
                    self.circuit_breaker.record_failure()
                    raise
                logger.debug(f"{self.source_id} {method} {url} failed ({e}); retrying")
                time.sleep(policy.delay(attempt))
                attempt += 1
                continue

            status = response.status_code
            if status in RETRYABLE_STATUS_CODES and attempt < policy.max_retries:
                logger.debug(f"{self.source_id} {method} {url} returned {status}; retrying")
                time.sleep(policy.delay(attempt, retry_after_seconds(response)))
                attempt += 1
                continue

            # A 4xx other than 429 is the caller's fault; the collaborator answered
            if status >= 500 or status == 429:
                self.circuit_breaker.record_failure()
            else:
                self.circuit_breaker.record_success()
            response.raise_for_status()
            return response
