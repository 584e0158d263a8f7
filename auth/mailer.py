"""
auth/mailer.py -- Seam for out-of-band email verification.

Delivery is not implemented here. When REQUIRE_EMAIL_VERIFICATION is on, the
engine hands each new user to Mailer.send_verification() and leaves the
account unverified; whatever confirms the address out-of-band then calls
AuthEngine.mark_verified(user_id).
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth.models import User


class Mailer(Protocol):
    def send_verification(self, user: User) -> None: ...


class LoggingMailer:
    """Default Mailer: records the request in the log and sends nothing."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("authservice.mailer")

    def send_verification(self, user: User) -> None:
        self.logger.info("Verification requested for user_id=%s (no mail transport configured)", user.id)
