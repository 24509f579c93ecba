"""
Object storage gateway.

Two backends, chosen per call from app config:

    STORAGE_URL set   → Supabase-compatible REST
        POST {STORAGE_URL}/storage/v1/object/{bucket}/{path}
        public URL: {STORAGE_URL}/storage/v1/object/public/{bucket}/{path}
    STORAGE_URL unset → local filesystem under STORAGE_LOCAL_DIR
        public URL: /media/{bucket}/{path}  (served by media_bp)

Uploads never overwrite (x-upsert: false). Failures raise StorageError;
callers decide whether that is fatal.
"""

from __future__ import annotations

import logging
import os

import requests
from flask import current_app
from werkzeug.security import safe_join

from tavilist.core.exceptions import StorageError

logger = logging.getLogger(__name__)

LOCAL_MEDIA_PREFIX = "/media/"


class StorageGateway:
    """Upload bytes and fetch public objects."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    # ── Local backend ─────────────────────────────────────────────────────

    @staticmethod
    def local_path(bucket: str, path: str) -> str:
        """Resolve bucket/path inside STORAGE_LOCAL_DIR, refusing traversal."""
        root = current_app.config["STORAGE_LOCAL_DIR"]
        bucket_dir = safe_join(root, bucket)
        full = safe_join(bucket_dir, path) if bucket_dir else None
        if not full:
            raise StorageError(f"Invalid storage path: {bucket}/{path}")
        return full

    def _upload_local(self, bucket: str, path: str, data: bytes) -> str:
        full = self.local_path(bucket, path)
        if os.path.exists(full):
            raise StorageError(f"Object already exists: {bucket}/{path}")
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "wb") as fh:
                fh.write(data)
        except OSError as exc:
            raise StorageError(f"Local storage write failed: {exc}") from exc
        return f"{LOCAL_MEDIA_PREFIX}{bucket}/{path}"

    def _fetch_local(self, url: str) -> bytes:
        bucket, _, path = url[len(LOCAL_MEDIA_PREFIX):].partition("/")
        full = self.local_path(bucket, path)
        try:
            with open(full, "rb") as fh:
                return fh.read()
        except OSError as exc:
            raise StorageError(f"Local storage read failed: {exc}") from exc

    # ── Public API ────────────────────────────────────────────────────────

    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` and return its public URL.

        Raises:
            StorageError: on any backend failure.
        """
        cfg = current_app.config
        base_url = cfg.get("STORAGE_URL")
        if not base_url:
            url = self._upload_local(bucket, path, data)
            logger.info("Stored object locally bucket=%s path=%s bytes=%d", bucket, path, len(data))
            return url

        base_url = base_url.rstrip("/")
        key = cfg.get("STORAGE_KEY") or ""
        try:
            resp = self.session.post(
                f"{base_url}/storage/v1/object/{bucket}/{path}",
                data=data,
                headers={
                    "Authorization": f"Bearer {key}",
                    "apikey": key,
                    "Content-Type": content_type,
                    "x-upsert": "false",
                },
                timeout=cfg.get("STORAGE_TIMEOUT", 30),
            )
        except requests.RequestException as exc:
            logger.error("Storage upload error bucket=%s path=%s error=%s", bucket, path, exc)
            raise StorageError(f"Upload failed: {exc}") from exc

        if not resp.ok:
            logger.error(
                "Storage upload rejected bucket=%s path=%s status=%d",
                bucket, path, resp.status_code,
            )
            raise StorageError(f"Upload failed: HTTP {resp.status_code}: {resp.text[:300]}")

        logger.info("Stored object bucket=%s path=%s bytes=%d", bucket, path, len(data))
        return f"{base_url}/storage/v1/object/public/{bucket}/{path}"

    def fetch(self, url: str, *, timeout: int = 10) -> bytes:
        """Download a public object (local media URL or absolute http URL).

        Raises:
            StorageError: on timeout, network error or non-2xx.
        """
        if url.startswith(LOCAL_MEDIA_PREFIX):
            return self._fetch_local(url)
        try:
            resp = self.session.get(url, timeout=timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise StorageError(f"Fetch failed for {url}: {exc}") from exc
        return resp.content


# Module-level singleton: patch in tests via patch.object(module, "storage_gateway", ...)
storage_gateway = StorageGateway()
