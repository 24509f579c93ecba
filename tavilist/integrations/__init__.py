"""tavilist.integrations — External service gateway modules.

All outbound HTTP calls to third-party APIs go through a gateway in this
package, never via bare `requests` calls in services or blueprints.

Every gateway:
  - accepts an injectable `requests.Session` (tests pass a MagicMock)
  - applies an explicit per-call timeout
  - never retries: delivery is at-most-once, the caller decides
  - returns a GatewayResult instead of raising on HTTP failures

Current gateways:
  whatsapp_gateway.WhatsAppGateway — Evolution API (connection state, sendText)
  email_gateway.EmailGateway       — Resend transactional email
  storage_gateway.StorageGateway   — object storage (Supabase REST or local disk)
"""

from __future__ import annotations


class GatewayResult:
    """Structured return value from gateway calls.

    Attributes:
        ok:           True if the call succeeded (HTTP 2xx + no exception).
        status_code:  HTTP status code (None if network-level failure).
        data:         Parsed JSON response body (dict or list), else None.
        error:        Human-readable error message or None.
        duration_ms:  Round-trip latency in milliseconds.
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: dict | list | None,
        error: str | None,
        duration_ms: int,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms

    def __repr__(self) -> str:
        return f"<GatewayResult ok={self.ok} status={self.status_code} {self.duration_ms}ms>"
