"""Shared single-shot HTTP dispatch for the gateways in this package."""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from tavilist.integrations import GatewayResult

logger = logging.getLogger(__name__)


def _parse_body(resp: requests.Response) -> dict | list | None:
    if not resp.content:
        return {}
    try:
        return resp.json()
    except ValueError:
        return {"raw": resp.text[:1000]}


def dispatch(
    session: requests.Session,
    method: str,
    url: str,
    *,
    headers: dict,
    timeout: int,
    json_body: dict | list | None = None,
    label: str = "gateway",
) -> GatewayResult:
    """Execute exactly one HTTP request and wrap the outcome.

    Non-2xx responses keep the parsed provider body in ``data`` so callers
    can surface it verbatim.
    """
    kwargs: dict[str, Any] = {"headers": headers, "timeout": timeout}
    if json_body is not None:
        kwargs["json"] = json_body

    t0 = time.perf_counter()
    try:
        resp = session.request(method, url, **kwargs)
    except requests.Timeout:
        logger.warning("%s request timed out after %ss url=%s", label, timeout, url)
        return GatewayResult(
            ok=False,
            status_code=None,
            data=None,
            error=f"Request timed out after {timeout}s",
            duration_ms=int(timeout * 1000),
        )
    except requests.RequestException as exc:
        logger.warning("%s network error url=%s error=%s", label, url, str(exc)[:300])
        return GatewayResult(
            ok=False,
            status_code=None,
            data=None,
            error=str(exc)[:500],
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )

    duration_ms = int((time.perf_counter() - t0) * 1000)
    body = _parse_body(resp)
    if resp.ok:
        return GatewayResult(
            ok=True,
            status_code=resp.status_code,
            data=body,
            error=None,
            duration_ms=duration_ms,
        )

    logger.warning("%s request failed status=%d url=%s", label, resp.status_code, url)
    return GatewayResult(
        ok=False,
        status_code=resp.status_code,
        data=body,
        error=f"HTTP {resp.status_code}: {resp.text[:500]}",
        duration_ms=duration_ms,
    )
