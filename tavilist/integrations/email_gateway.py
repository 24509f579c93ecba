"""
Transactional email gateway (Resend).

    POST https://api.resend.com/emails
    Authorization: Bearer <RESEND_API_KEY>
    {"from": ..., "to": [...], "subject": ..., "html": ...}

When RESEND_API_KEY is not configured the gateway runs in dev mode:
the email is logged and reported as sent without any network call.
"""

from __future__ import annotations

import logging

import requests
from flask import current_app

from tavilist.integrations import GatewayResult
from tavilist.integrations._http import dispatch

logger = logging.getLogger(__name__)


class EmailGateway:
    """Resend REST client."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @staticmethod
    def is_configured() -> bool:
        """Check if a Resend API key is configured."""
        return bool(current_app.config.get("RESEND_API_KEY"))

    def send(self, *, to: str | list[str], subject: str, html: str) -> GatewayResult:
        """Send one HTML email. Returns the provider result, never raises."""
        recipients = [to] if isinstance(to, str) else list(to)
        cfg = current_app.config

        if not self.is_configured():
            logger.info("Email (dev mode): to=%s subject='%s'", ",".join(recipients), subject)
            return GatewayResult(
                ok=True,
                status_code=None,
                data={"id": "dev-mode"},
                error=None,
                duration_ms=0,
            )

        result = dispatch(
            self.session, "POST", cfg["RESEND_API_URL"],
            headers={
                "Authorization": f"Bearer {cfg['RESEND_API_KEY']}",
                "Content-Type": "application/json",
            },
            timeout=cfg.get("EMAIL_TIMEOUT", 15),
            json_body={
                "from": cfg["EMAIL_FROM"],
                "to": recipients,
                "subject": subject,
                "html": html,
            },
            label="resend",
        )
        if result.ok:
            logger.info("Email sent: to=%s subject='%s'", ",".join(recipients), subject)
        else:
            logger.error("Email failed: to=%s error=%s", ",".join(recipients), result.error)
        return result


# Module-level singleton: patch in tests via patch.object(module, "email_gateway", ...)
email_gateway = EmailGateway()
