"""
auth/breach.py -- Password breach lookup (k-anonymity) and breach-aware policy.

Protocol (Have I Been Pwned "range" API):
  1. SHA-1 the password, uppercase hex.
  2. Send only the first 5 characters: GET {api_url}{prefix}.
  3. The service answers with every known suffix for that prefix, one
     "SUFFIX:COUNT" pair per line. Matching happens locally, so neither the
     password nor its full hash ever leaves the process.

  "Add-Padding: true" asks the service to pad the response with fake
  zero-count rows so the response size does not reveal the prefix bucket.
  Zero-count rows are therefore never treated as a breach.

Failure policy: fail open. The lookup is advisory; an outage or timeout of the
external service must never block registration or login. Errors are logged
and reported as severity "unknown".

Layer rule: no imports from api/ or personas/.
"""

from __future__ import annotations

import hashlib
import logging
import re

import requests

from auth.models import BreachCheckResult, PolicyDecision
from auth.passwords import has_special_character

logger = logging.getLogger("personahub.auth.breach")

SERVICE_UNAVAILABLE = "Service unavailable"


def get_severity_level(count: int) -> str:
    """Map a breach occurrence count to its severity band.

    0 safe | 1-10 low | 11-1000 medium | 1001-10000 high | >10000 critical
    """
    if count > 10000:
        return "critical"
    if count > 1000:
        return "high"
    if count > 10:
        return "medium"
    if count > 0:
        return "low"
    return "safe"


def is_strong_password(password: str) -> bool:
    """Upper, lower, digit, special character and at least 8 characters."""
    return (
        re.search(r"[A-Z]", password) is not None
        and re.search(r"[a-z]", password) is not None
        and re.search(r"\d", password) is not None
        and has_special_character(password)
        and len(password) >= 8
    )


def _parse_range_response(body: str, suffix: str) -> int:
    """Sum the counts of every line whose hash suffix equals ours."""
    total = 0
    for line in body.splitlines():
        candidate, sep, count = line.strip().partition(":")
        if not sep or candidate.upper() != suffix:
            continue
        total += int(count.strip())
    return total


class BreachChecker:
    """Client for the range lookup service plus the password policy built on it.

    Usage:
        checker = BreachChecker.from_settings()
        result = checker.check_breach("hunter2")
        decision = checker.validate_with_policy("hunter2")
    """

    def __init__(
        self,
        api_url: str = "https://api.pwnedpasswords.com/range/",
        user_agent: str = "PersonaHub-Backend/1.0.0",
        timeout: float = 5.0,
        session: requests.Session | None = None,
    ) -> None:
        self.api_url = api_url
        self.user_agent = user_agent
        self.timeout = timeout
        # One pooled session per checker; max_redirects kept low for a known API.
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    @classmethod
    def from_settings(cls, settings=None) -> BreachChecker:
        if settings is None:
            from core.config import get_settings

            settings = get_settings()
        return cls(
            api_url=settings.breach_check_url,
            user_agent=settings.breach_check_user_agent,
            timeout=settings.breach_check_timeout,
        )

    def check_breach(self, password: str) -> BreachCheckResult:
        """Look the password up by hash prefix. Never raises."""
        digest = hashlib.sha1(password.encode("utf-8")).hexdigest().upper()  # noqa: S324 -- protocol mandates SHA-1
        prefix, suffix = digest[:5], digest[5:]

        try:
            resp = self._session.get(
                f"{self.api_url}{prefix}",
                headers={"User-Agent": self.user_agent, "Add-Padding": "true"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            count = _parse_range_response(resp.text or "", suffix)
        except (requests.RequestException, ValueError) as e:
            logger.warning("Breach check unavailable: %s", e)
            return BreachCheckResult(breached=False, count=0, severity="unknown", error=SERVICE_UNAVAILABLE)

        if count > 0:
            logger.warning("Password breach detected: %d occurrences", count)
            return BreachCheckResult(breached=True, count=count, severity=get_severity_level(count))
        return BreachCheckResult(breached=False, count=0, severity="safe")

    def validate_with_policy(self, password: str) -> PolicyDecision:
        """Combine the breach lookup with complexity.

        breached + strong     -> accepted with a warning
        breached + not strong -> rejected
        not breached          -> accepted (this includes "unknown" on outage)
        """
        result = self.check_breach(password)

        if result.breached:
            if is_strong_password(password):
                logger.warning("Strong password accepted despite breach: %d occurrences", result.count)
                return PolicyDecision(
                    is_valid=True,
                    reason=(
                        f"Password accepted (strong complexity) but has been breached {result.count} times. "
                        "Consider using a different password."
                    ),
                    severity=result.severity,
                    count=result.count,
                    warning=True,
                )
            return PolicyDecision(
                is_valid=False,
                reason=f"Password has been breached {result.count} times",
                severity=result.severity,
                count=result.count,
            )

        return PolicyDecision(is_valid=True, reason="Password is secure", severity="safe")

    def close(self) -> None:
        self._session.close()
