"""Async object-storage client that mirrors ledger snapshots to a bucket.

Speaks the Firebase Storage REST API (``/b/{bucket}/o``). Every upload
writes a new, uniquely named, timestamped object, so the remote side keeps
an unbounded history just like the local BackupManager. Nothing is ever
overwritten remotely.

Public operations never raise on network trouble: they return a
``SyncResult`` carrying a pass/fail flag and a human-readable reason, and
leave the ledger untouched on failure.
"""

from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from stockbook.config import StockbookConfig
from stockbook.ledger import Ledger, LedgerStorageError
from stockbook.models import CloudBackupReference, RemoteSnapshot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class SyncError(Exception):
    """Base exception for object-storage operations."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SyncAuthError(SyncError):
    """401/403 — bucket rejected our credentials."""


class SyncNotFoundError(SyncError):
    """404 — object or bucket not found."""


class SyncServerError(SyncError):
    """5xx — storage service error."""


class SyncConnectionError(SyncError):
    """Network/DNS failure."""


class SyncTimeoutError(SyncError):
    """Request exceeded the configured timeout."""


class SyncResponseError(SyncError):
    """Response body was not the JSON we expected."""


_STATUS_MAP: dict[int, type[SyncError]] = {
    401: SyncAuthError,
    403: SyncAuthError,
    404: SyncNotFoundError,
}


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a sync operation.

    ``kind`` is ``"ok"``, ``"rejected"`` (operation refused before any I/O),
    ``"network"`` (transport or remote failure) or ``"storage"`` (remote
    write landed but the local reference could not be persisted).
    """

    success: bool
    kind: str = "ok"
    reason: str = ""
    reference: CloudBackupReference | None = None
    snapshot: RemoteSnapshot | None = None
    objects: tuple[str, ...] = ()
    revision: int | None = None

    @classmethod
    def failed(cls, kind: str, reason: str, revision: int | None = None) -> SyncResult:
        return cls(success=False, kind=kind, reason=reason, revision=revision)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RemoteSyncClient:
    """Uploads ledger snapshots to, and fetches them from, a storage bucket.

    The snapshot is taken synchronously before the first ``await``; the
    network call then works on that frozen copy, so concurrent ledger
    mutations and overlapping uploads never observe each other.
    """

    def __init__(self, ledger: Ledger, config: StockbookConfig) -> None:
        self._ledger = ledger
        self._config = config
        self._seq = itertools.count(1)
        headers = {}
        if config.access_token:
            headers["Authorization"] = f"Bearer {config.access_token}"
        base_url = config.storage_base_url.rstrip("/")
        if config.bucket:
            base_url += f"/b/{quote(config.bucket, safe='')}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(
                connect=config.connect_timeout,
                read=config.read_timeout,
                write=config.read_timeout,
                pool=config.connect_timeout,
            ),
        )

    # -- internal request dispatcher -----------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, str] | None = None,
        content: str | None = None,
    ) -> Any:
        """Send a request and map errors to the SyncError hierarchy."""
        headers = {"Content-Type": "application/json"} if content is not None else None
        try:
            response = await self._client.request(
                method, endpoint, params=params, content=content, headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise SyncTimeoutError(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise SyncConnectionError(str(exc)) from exc

        if response.status_code >= 400:
            body = response.text
            exc_cls = _STATUS_MAP.get(response.status_code)
            if exc_cls is not None:
                raise exc_cls(body, status_code=response.status_code)
            if response.status_code >= 500:
                raise SyncServerError(body, status_code=response.status_code)
            raise SyncError(body, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise SyncResponseError(
                "response is not JSON", status_code=response.status_code
            ) from exc

    def _object_name(self, revision: int) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        return f"{self._config.object_prefix}{stamp}-r{revision}-{next(self._seq)}.json"

    def _media_url(self, name: str) -> str:
        base = str(self._client.base_url).rstrip("/")
        return f"{base}/o/{quote(name, safe='')}?alt=media"

    def _in_bucket(self, url: str) -> bool:
        base = str(self._client.base_url).rstrip("/") + "/"
        return url.startswith(base)

    # -- public API -----------------------------------------------------------

    async def upload(self) -> SyncResult:
        """Upload a fresh snapshot as a new object and record a local reference."""
        if not self._config.sync_enabled:
            return SyncResult.failed("rejected", "remote sync is not configured")

        # Captured before any await: the upload never sees later mutations.
        revision = self._ledger.revision
        snapshot = self._ledger.snapshot(include_users=self._config.include_users)
        name = self._object_name(revision)
        body = json.dumps(snapshot.to_dict())

        try:
            data = await self._request(
                "POST", "/o", params={"name": name, "uploadType": "media"}, content=body,
            )
        except SyncError as exc:
            logger.warning("Upload of %s failed: %s", name, exc)
            return SyncResult.failed("network", f"upload failed: {exc}", revision)

        if not isinstance(data, dict) or not isinstance(data.get("name"), str):
            logger.warning("Upload of %s returned a malformed response: %r", name, data)
            return SyncResult.failed("network", "upload response missing object name", revision)

        reference = CloudBackupReference(
            date=snapshot.date,
            file=data["name"],
            url=data.get("mediaLink") or self._media_url(data["name"]),
        )
        try:
            self._ledger.record_cloud_backup(reference)
        except LedgerStorageError as exc:
            return SyncResult.failed(
                "storage", f"uploaded {reference.file} but could not record it: {exc}", revision,
            )

        logger.info("Uploaded snapshot %s (revision %d).", reference.file, revision)
        return SyncResult(success=True, reference=reference, revision=revision)

    async def download(self, locator: str) -> SyncResult:
        """Fetch a snapshot by object name or media URL. Does not apply it.

        A URL is only followed when it points into the configured bucket,
        since the request carries the bucket's access token.
        """
        if locator.startswith(("http://", "https://")):
            if not self._in_bucket(locator):
                logger.warning("Refusing to download %s: outside the bucket.", locator)
                return SyncResult.failed("rejected", "locator is outside the configured bucket")
            endpoint, params = locator, None
        else:
            endpoint, params = f"/o/{quote(locator, safe='')}", {"alt": "media"}

        try:
            data = await self._request("GET", endpoint, params=params)
        except SyncError as exc:
            logger.warning("Download of %s failed: %s", locator, exc)
            return SyncResult.failed("network", f"download failed: {exc}")

        if not isinstance(data, dict):
            return SyncResult.failed("network", "downloaded object is not a snapshot")
        try:
            snapshot = RemoteSnapshot.from_dict(data)
        except (TypeError, ValueError) as exc:
            logger.warning("Download of %s returned a malformed snapshot: %s", locator, exc)
            return SyncResult.failed(
                "network", f"downloaded object is not a valid snapshot: {exc}",
            )
        return SyncResult(success=True, snapshot=snapshot)

    async def list_remote_backups(self) -> SyncResult:
        """List snapshot object names under the configured prefix, newest first."""
        if not self._config.sync_enabled:
            return SyncResult.failed("rejected", "remote sync is not configured")
        try:
            data = await self._request(
                "GET", "/o", params={"prefix": self._config.object_prefix},
            )
        except SyncError as exc:
            logger.warning("Listing remote backups failed: %s", exc)
            return SyncResult.failed("network", f"list failed: {exc}")

        items = data.get("items", []) if isinstance(data, dict) else []
        names = sorted(
            (item["name"] for item in items if isinstance(item, dict) and "name" in item),
            reverse=True,
        )
        return SyncResult(success=True, objects=tuple(names))

    # -- lifecycle ------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> RemoteSyncClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
