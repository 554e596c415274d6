"""
personas/webhook.py -- Deliver chat messages to persona webhooks.

WebhookClient POSTs a JSON payload to a persona's decrypted webhook URL over
one pooled requests.Session. A delivery is 1 + retries attempts; each attempt
is bounded by timeout and the pause before retry n is retry_delay * 2**(n-1).
Only when every attempt has failed does the delivery count as failed.

CircuitBreaker guards one persona:

  CLOSED     deliveries flow. failure_threshold failed deliveries in a row
             open the breaker.
  OPEN       deliveries are refused without touching the network until
             reset_seconds have passed since the last failure.
  HALF_OPEN  deliveries flow again. The next success closes the breaker,
             the next failure opens it for another reset_seconds.

BreakerRegistry hands out one breaker per persona id. Breakers live in process
memory, so each worker process keeps its own counts.

The webhook URL is a bearer secret. It is never logged; failures are logged
by exception type only.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

import requests

logger = logging.getLogger("personahub.personas.webhook")

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"

NO_REPLY = "No response received"
_REPLY_KEYS = ("reply", "message", "response", "output", "data")


class WebhookError(Exception):
    """Every attempt to reach the webhook failed."""


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        reset_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.reset_seconds = reset_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self.state = CLOSED
        self.failures = 0
        self.last_failure_at: float | None = None

    def allow_request(self) -> bool:
        """False while OPEN; moves to HALF_OPEN once the reset window has passed."""
        with self._lock:
            if self.state == OPEN and self._clock() - self.last_failure_at >= self.reset_seconds:
                self.state = HALF_OPEN
                logger.info("Circuit breaker half-open after %.0fs", self.reset_seconds)
            return self.state != OPEN

    def record_success(self) -> None:
        with self._lock:
            if self.state != CLOSED:
                logger.info("Circuit breaker closed")
            self.state = CLOSED
            self.failures = 0
            self.last_failure_at = None

    def record_failure(self) -> None:
        with self._lock:
            self.failures += 1
            self.last_failure_at = self._clock()
            if self.state == HALF_OPEN or self.failures >= self.failure_threshold:
                if self.state != OPEN:
                    logger.warning("Circuit breaker opened after %d consecutive failures", self.failures)
                self.state = OPEN


class BreakerRegistry:
    """Lazily created CircuitBreaker per persona id."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_seconds = reset_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, persona_id: str) -> CircuitBreaker:
        if not persona_id:
            raise ValueError("Persona ID must be a non-empty string")
        with self._lock:
            breaker = self._breakers.get(persona_id)
            if breaker is None:
                breaker = CircuitBreaker(self.failure_threshold, self.reset_seconds, self._clock)
                self._breakers[persona_id] = breaker
            return breaker

    def remove(self, persona_id: str) -> None:
        with self._lock:
            self._breakers.pop(persona_id, None)

    def __len__(self) -> int:
        return len(self._breakers)


# ---------------------------------------------------------------------------
# HTTP delivery
# ---------------------------------------------------------------------------


def extract_reply(body: Any) -> str:
    """Pull the assistant's text out of whatever shape the webhook answered with.

    The first truthy string among reply, message, response, output and data
    wins. A plain-text body is the reply itself.
    """
    if isinstance(body, dict):
        for key in _REPLY_KEYS:
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        return NO_REPLY
    if isinstance(body, str) and body:
        return body
    return NO_REPLY


class WebhookClient:
    """POST JSON to persona webhooks with bounded retries.

    Usage:
        client = WebhookClient.from_settings()
        body = client.post(url, {"message": "hi", "personaId": "p-1"})
    """

    def __init__(
        self,
        timeout: float = 30.0,
        retries: int = 2,
        retry_delay: float = 1.0,
        user_agent: str = "PersonaHub-Backend/1.0.0",
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if retries < 0:
            raise ValueError("retries must be zero or more")
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.user_agent = user_agent
        self._session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings=None) -> WebhookClient:
        if settings is None:
            from core.config import get_settings

            settings = get_settings()
        return cls(
            timeout=settings.webhook_timeout,
            retries=settings.webhook_retries,
            retry_delay=settings.webhook_retry_delay,
            user_agent=settings.webhook_user_agent,
        )

    def post(self, url: str, payload: dict) -> Any:
        """Return the decoded response body (JSON if it parses, else text).

        Raises WebhookError once the last attempt has failed.
        """
        attempts = self.retries + 1
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                resp = self._session.post(
                    url,
                    json=payload,
                    headers={"User-Agent": self.user_agent},
                    timeout=self.timeout,
                )
                resp.raise_for_status()
                return _decode_body(resp)
            except requests.RequestException as exc:
                last_error = exc
                logger.warning("Webhook attempt %d/%d failed: %s", attempt, attempts, type(exc).__name__)
                if attempt < attempts:
                    self._sleep(self.retry_delay * 2 ** (attempt - 1))
        raise WebhookError(f"Webhook delivery failed after {attempts} attempts") from last_error

    def close(self) -> None:
        self._session.close()


def _decode_body(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text
