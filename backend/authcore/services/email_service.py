"""Outbound email seam

Delivery is owned by an external collaborator. The core only hands over
a template name, a recipient and substitution values.
"""

from __future__ import annotations

import logging
from typing import Dict, Protocol

logger = logging.getLogger(__name__)

VERIFICATION_TEMPLATE = "verification"
ALREADY_REGISTERED_TEMPLATE = "already_registered"
PASSWORD_RESET_TEMPLATE = "password_reset"


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailSender(Protocol):
    def send(self, template_name: str, recipient: str, values: Dict[str, str]) -> None: ...


class LoggingEmailSender:
    """Sender used when no delivery backend is wired in; logs instead of sending."""

    def send(self, template_name: str, recipient: str, values: Dict[str, str]) -> None:
        logger.info(
            "Email '%s' not delivered to %s: no delivery backend configured",
            template_name,
            redact_email(recipient),
        )
