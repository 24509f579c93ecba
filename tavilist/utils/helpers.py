"""Shared request/parsing helpers used by blueprints and services.

parse_date:     lenient ISO / DD/MM/YYYY parsing (None on bad input)
get_client_ip:  best-effort originating IP behind proxies
"""
import ipaddress
from datetime import date, datetime

from flask import request

UNKNOWN_IP = "unavailable"
# Width of the signer_ip / signature_ip columns
MAX_IP_LENGTH = 64


def parse_date(value):
    """Parse a date string (ISO or DD/MM/YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS (→ .date())
    - DD/MM/YYYY (Brazilian format used by the admin UI)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d/%m/%Y").date()
    except (ValueError, TypeError):
        return None


def _valid_ip(candidate: str) -> str | None:
    candidate = candidate.strip()
    if not candidate or len(candidate) > MAX_IP_LENGTH:
        return None
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def get_client_ip() -> str:
    """Return the originating client IP, honouring proxy headers.

    Order: first X-Forwarded-For entry, X-Real-IP, then "unavailable".
    Each header is client-controlled, so a value that does not parse as an
    IPv4/IPv6 address is skipped. request.remote_addr is deliberately not
    used: behind the load balancer it is always the proxy address.
    """
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    candidates = [forwarded_for.split(",")[0], request.headers.get("X-Real-IP", "")]
    for candidate in candidates:
        ip = _valid_ip(candidate)
        if ip:
            return ip
    return UNKNOWN_IP
