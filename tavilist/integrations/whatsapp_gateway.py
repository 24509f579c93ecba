"""
WhatsApp (Evolution API) gateway.

Endpoints used:
    GET  {api_url}/instance/connectionState/{instance}
    POST {api_url}/message/sendText/{instance}
         body: {"number", "text", "delay", "linkPreview": false}

Authentication is the ``apikey`` header. The decrypted key is passed in
per call by notification_service and never stored on the gateway.

Testability: pass a mock `session` to WhatsAppGateway() in tests, or patch
the module-level ``whatsapp_gateway`` singleton.
"""

from __future__ import annotations

import logging

import requests

from tavilist.integrations import GatewayResult
from tavilist.integrations._http import dispatch

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 15

# States reported by Evolution API that mean "ready to send"
CONNECTED_STATES = frozenset({"open", "connected"})


class WhatsAppGateway:
    """Thin client for the Evolution API instance endpoints."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @staticmethod
    def _headers(api_key: str) -> dict:
        return {"apikey": api_key, "Content-Type": "application/json"}

    @staticmethod
    def extract_state(data: dict | list | None) -> str:
        """Pull the connection state out of either response shape.

        Evolution API v1 answers ``{"instance": {"state": ...}}``, some
        deployments answer ``{"state": ...}``.
        """
        if not isinstance(data, dict):
            return "unknown"
        instance = data.get("instance")
        if isinstance(instance, dict) and instance.get("state"):
            return str(instance["state"])
        if data.get("state"):
            return str(data["state"])
        return "unknown"

    def connection_state(
        self,
        api_url: str,
        instance_name: str,
        api_key: str,
        *,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> GatewayResult:
        """Probe the instance; ``result.data["state"]`` is always set."""
        url = f"{api_url.rstrip('/')}/instance/connectionState/{instance_name}"
        result = dispatch(
            self.session, "GET", url,
            headers=self._headers(api_key),
            timeout=timeout,
            label="whatsapp",
        )
        state = self.extract_state(result.data) if result.ok else "unknown"
        payload = result.data if isinstance(result.data, dict) else {}
        result.data = {**payload, "state": state}
        return result

    def send_text(
        self,
        api_url: str,
        instance_name: str,
        api_key: str,
        *,
        number: str,
        text: str,
        delay_ms: int = 1500,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> GatewayResult:
        """Send one text message. Never retried."""
        url = f"{api_url.rstrip('/')}/message/sendText/{instance_name}"
        result = dispatch(
            self.session, "POST", url,
            headers=self._headers(api_key),
            timeout=timeout,
            json_body={
                "number": number,
                "text": text,
                "delay": delay_ms,
                "linkPreview": False,
            },
            label="whatsapp",
        )
        if result.ok:
            logger.info(
                "WhatsApp message sent instance=%s duration_ms=%s",
                instance_name, result.duration_ms,
            )
        return result


# Module-level singleton: import this module in services and use
# ``whatsapp_gateway.whatsapp_gateway``. In tests:
#   patch.object(wa_module, "whatsapp_gateway", WhatsAppGateway(session=mock_session))
whatsapp_gateway = WhatsAppGateway()
