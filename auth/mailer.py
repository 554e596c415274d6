"""
auth/mailer.py -- Outbound account email (verification, password reset).

AccountService only depends on the two-method interface below. LoggingMailer
is the default implementation: it records that a message would have been sent
and, at DEBUG level only, the link itself, which is all a development setup
needs. A production deployment swaps in an SMTP or API-backed class with the
same methods.

Layer rule: no imports from api/ or personas/.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from auth.models import Account

logger = logging.getLogger("personahub.auth.mailer")


class LoggingMailer:
    """Mailer that writes to the log instead of sending email."""

    def __init__(self, base_url: str = "http://localhost:8000") -> None:
        self.base_url = base_url.rstrip("/")

    def _link(self, path: str, token: str) -> str:
        return f"{self.base_url}{path}?{urlencode({'token': token})}"

    def send_verification(self, account: Account, token: str) -> None:
        logger.info("Verification email queued for account %s", account.id)
        logger.debug("Verification link: %s", self._link("/api/v1/auth/verify-email", token))

    def send_password_reset(self, account: Account, token: str) -> None:
        logger.info("Password reset email queued for account %s", account.id)
        logger.debug("Password reset link: %s", self._link("/reset-password", token))
