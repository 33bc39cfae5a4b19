"""Analytics persistence with layered fallback.

Two backends are tried in order on load: a remote JSON document store
(Firebase Realtime Database, spoken to over its REST API) and a local JSON
file.  Saves go synchronously to the local file and best-effort, in the
background, to the remote store.  No failure in either backend is ever
allowed to reach the request path or the startup sequence.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

import httpx

from lta_datamall_mcp.analytics.models import AnalyticsSnapshot
from lta_datamall_mcp.constants import ANALYTICS_SAVE_INTERVAL, REMOTE_ANALYTICS_PATH
from lta_datamall_mcp.errors import PersistenceUnavailableError

if TYPE_CHECKING:
    from lta_datamall_mcp.analytics.aggregator import AnalyticsAggregator

logger = logging.getLogger(__name__)

# Characters Firebase forbids in keys and their escapes.  "_" is not escaped,
# so a key that already contains e.g. "_dot_" does not round-trip.
_KEY_ESCAPES = (
    (".", "_dot_"),
    ("$", "_dollar_"),
    ("#", "_hash_"),
    ("[", "_lb_"),
    ("]", "_rb_"),
    ("/", "_slash_"),
)

# Map-valued snapshot fields whose keys come from clients
_SANITIZED_FIELDS = (
    "requestsByMethod",
    "requestsByEndpoint",
    "toolCalls",
    "clientsByIp",
    "clientsByUserAgent",
    "hourlyRequests",
)

_REMOTE_DRAIN_TIMEOUT = 5.0  # seconds to wait for in-flight remote writes on stop


def sanitize_key(key: str) -> str:
    """Escape characters the remote store does not allow in keys."""
    for char, escape in _KEY_ESCAPES:
        key = key.replace(char, escape)
    return key


def restore_key(key: str) -> str:
    """Reverse :func:`sanitize_key`."""
    for char, escape in _KEY_ESCAPES:
        key = key.replace(escape, char)
    return key


def _rekey(data: Dict[str, Any], transform: Any) -> Dict[str, Any]:
    out = dict(data)
    for field_name in _SANITIZED_FIELDS:
        value = out.get(field_name)
        if isinstance(value, dict):
            out[field_name] = {transform(str(k)): v for k, v in value.items()}
    return out


# ── Backends ─────────────────────────────────────────────────────────────


class LocalFileStore:
    """JSON file holding one serialised snapshot.

    Writes go to a temporary file in the same directory which is then
    renamed over the target, so readers never see a half-written file.
    """

    name = "local"

    def __init__(self, path: str) -> None:
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored document, or ``None`` if there is no file.

        Raises :class:`PersistenceUnavailableError` if the file exists but
        cannot be read or parsed.
        """
        if not os.path.exists(self._path):
            return None
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except (json.JSONDecodeError, OSError) as exc:
            raise PersistenceUnavailableError(self.name, f"cannot read {self._path}: {exc}", exc) from exc

    def save(self, data: Dict[str, Any]) -> None:
        """Atomically replace the file with *data*.

        Raises :class:`PersistenceUnavailableError` on I/O errors.
        """
        directory = os.path.dirname(os.path.abspath(self._path))
        tmp_path: Optional[str] = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".analytics-", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_path, self._path)
            tmp_path = None
        except OSError as exc:
            raise PersistenceUnavailableError(self.name, f"cannot write {self._path}: {exc}", exc) from exc
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)


class RemoteStore:
    """Firebase Realtime Database document accessed through its REST API.

    Parameters
    ----------
    base_url:
        Database root, e.g. ``https://<db>.firebasedatabase.app``.
    path:
        Location of the analytics document inside the database.
    auth_token:
        Database secret or access token passed as ``?auth=``.
    timeout:
        HTTP timeout in seconds.
    client:
        Pre-built ``httpx.AsyncClient`` (tests inject a mock transport).
    """

    name = "remote"

    def __init__(
        self,
        base_url: str,
        *,
        path: str = REMOTE_ANALYTICS_PATH,
        auth_token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._path = path.strip("/")
        self._auth_token = auth_token
        self._timeout = timeout
        self._client = client

    @property
    def url(self) -> str:
        return self._base_url

    @property
    def path(self) -> str:
        return f"/{self._path}"

    def _document_url(self) -> str:
        return f"{self._base_url}/{self._path}.json"

    def _params(self) -> Dict[str, str]:
        return {"auth": self._auth_token} if self._auth_token else {}

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def load(self) -> Optional[Dict[str, Any]]:
        """Fetch the document; ``None`` if the store holds nothing there.

        Raises :class:`PersistenceUnavailableError` on network, auth or
        decoding failures.
        """
        try:
            resp = await self._ensure_client().get(self._document_url(), params=self._params())
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PersistenceUnavailableError(self.name, str(exc) or type(exc).__name__, exc) from exc
        if data is None:
            return None
        if not isinstance(data, dict):
            raise PersistenceUnavailableError(self.name, "stored analytics is not a JSON object")
        return _rekey(data, restore_key)

    async def save(self, data: Dict[str, Any]) -> None:
        """Replace the document with *data* (keys sanitised)."""
        payload = _rekey(data, sanitize_key)
        try:
            resp = await self._ensure_client().put(
                self._document_url(), params=self._params(), json=payload
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise PersistenceUnavailableError(self.name, str(exc) or type(exc).__name__, exc) from exc


# ── Orchestration ────────────────────────────────────────────────────────


class AnalyticsPersistence:
    """Loads analytics at startup and saves them periodically and on shutdown.

    Parameters
    ----------
    local:
        Local JSON file backend (always present).
    remote:
        Optional remote backend, preferred on load.
    save_interval:
        Seconds between periodic saves.
    """

    def __init__(
        self,
        local: LocalFileStore,
        remote: Optional[RemoteStore] = None,
        *,
        save_interval: float = ANALYTICS_SAVE_INTERVAL,
    ) -> None:
        self._local = local
        self._remote = remote
        self._save_interval = save_interval
        self._periodic_task: Optional[asyncio.Task[None]] = None
        self._remote_writes: Set[asyncio.Task[None]] = set()
        self._remote_tail: Optional[asyncio.Task[None]] = None
        self._last_loaded_from: Optional[str] = None

    @property
    def remote_enabled(self) -> bool:
        return self._remote is not None

    # ── Load ─────────────────────────────────────────────────────────

    async def load(self, *, server_start_time: str) -> Optional[AnalyticsSnapshot]:
        """Return the most recent stored snapshot, or ``None``.

        Tries the remote store, then the local file.  A failing backend is
        logged and skipped; this method never raises.
        """
        for backend in self._backends():
            try:
                if isinstance(backend, RemoteStore):
                    data = await backend.load()
                else:
                    data = backend.load()
            except PersistenceUnavailableError as exc:
                logger.warning("%s; trying next backend.", exc)
                continue
            except Exception:
                logger.exception("Unexpected error loading analytics from '%s' backend.", backend.name)
                continue
            if data is None:
                logger.info("No stored analytics in '%s' backend.", backend.name)
                continue
            self._last_loaded_from = backend.name
            logger.info("Loaded analytics from '%s' backend.", backend.name)
            return AnalyticsSnapshot.rehydrate(data, server_start_time=server_start_time)
        logger.info("No stored analytics found; starting from zero.")
        return None

    # ── Save ─────────────────────────────────────────────────────────

    async def save(self, snapshot: AnalyticsSnapshot) -> None:
        """Write *snapshot* locally now and remotely in the background."""
        data = snapshot.to_json_dict()
        try:
            self._local.save(data)
            logger.debug("Analytics saved to %s.", self._local.path)
        except PersistenceUnavailableError as exc:
            logger.warning("Local analytics save failed: %s", exc)

        if self._remote is not None:
            task = asyncio.create_task(
                self._save_remote(self._remote, data, self._remote_tail),
                name="analytics-remote-save",
            )
            self._remote_tail = task
            self._remote_writes.add(task)
            task.add_done_callback(self._remote_writes.discard)

    async def _save_remote(
        self,
        remote: RemoteStore,
        data: Dict[str, Any],
        previous: Optional["asyncio.Task[None]"],
    ) -> None:
        # Remote writes land in the order they were scheduled
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        try:
            await remote.save(data)
            logger.debug("Analytics saved to remote store %s%s.", remote.url, remote.path)
        except PersistenceUnavailableError as exc:
            logger.warning("Remote analytics save failed: %s", exc)
        except Exception:
            logger.exception("Unexpected error saving analytics to remote store.")

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self, aggregator: "AnalyticsAggregator") -> None:
        """Start the periodic save loop."""
        if self._periodic_task is None or self._periodic_task.done():
            self._periodic_task = asyncio.create_task(
                self._periodic_loop(aggregator), name="analytics-periodic-save"
            )
            logger.info("Analytics periodic save started (interval=%.0fs).", self._save_interval)

    async def stop(self, aggregator: "AnalyticsAggregator") -> None:
        """Cancel the loop, flush once, and wait briefly for remote writes."""
        if self._periodic_task is not None and not self._periodic_task.done():
            self._periodic_task.cancel()
            try:
                await self._periodic_task
            except asyncio.CancelledError:
                pass
        self._periodic_task = None

        await self.save(aggregator.snapshot())
        await self.drain()
        if self._remote is not None:
            await self._remote.aclose()
        logger.info("Analytics persistence stopped.")

    async def drain(self, timeout: float = _REMOTE_DRAIN_TIMEOUT) -> None:
        """Wait up to *timeout* seconds for pending remote writes."""
        pending: List[asyncio.Task[None]] = list(self._remote_writes)
        if not pending:
            return
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            logger.warning("Dropped %d unfinished remote analytics write(s).", len(not_done))

    async def _periodic_loop(self, aggregator: "AnalyticsAggregator") -> None:
        try:
            while True:
                await asyncio.sleep(self._save_interval)
                await self.save(aggregator.snapshot())
        except asyncio.CancelledError:
            logger.debug("Analytics periodic save loop cancelled.")
            raise

    # ── Status ───────────────────────────────────────────────────────

    def status(self) -> Dict[str, Any]:
        """Backend summary for the health endpoint."""
        return {
            "local": {"enabled": True, "path": self._local.path},
            "remote": {
                "enabled": self._remote is not None,
                "url": self._remote.url if self._remote else None,
                "path": self._remote.path if self._remote else None,
            },
            "loadedFrom": self._last_loaded_from,
        }

    def _backends(self) -> List[Any]:
        backends: List[Any] = []
        if self._remote is not None:
            backends.append(self._remote)
        backends.append(self._local)
        return backends
