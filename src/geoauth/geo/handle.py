"""Hot-swappable GeoIP database handle and its periodic reloader.

The handle owns the provider every request reads from. The reloader reopens
the database file on a fixed interval (an external downloader may have
replaced it), swaps the fresh provider in, and hands the displaced one to a
short-lived cleanup task that closes it once a grace delay has passed.

The grace delay is a best-effort bound on in-flight lookups, not a reference
count. A lookup still running when the delay expires makes ``close()`` fail
with UseAfterCloseError, and the cleanup task tries again one grace delay
later.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
from collections.abc import Callable

import structlog

from geoauth.core.exceptions import DatabaseOpenError, UseAfterCloseError
from geoauth.geo.provider import GeoLookupProvider, open_provider
from geoauth.observability.metrics import DB_GENERATION, DB_RELOADS

logger = structlog.get_logger()

Opener = Callable[[str], GeoLookupProvider]


class DatabaseHandle:
    """Shared slot holding the current GeoIP provider.

    Readers take a ``snapshot()`` once per request and use that reference
    for the whole lookup; they never touch the slot again. The reloader is
    the single writer.
    """

    def __init__(self, provider: GeoLookupProvider, path: str | None = None) -> None:
        self._current = provider
        self._path = path
        self._lock = threading.Lock()
        self._generation = 0
        self._closed = False

    @classmethod
    def open(cls, path: str, opener: Opener = open_provider) -> DatabaseHandle:
        """Open the database at ``path``.

        Raises:
            DatabaseOpenError: If the database can't be opened.
        """
        return cls(opener(path), path)

    @property
    def path(self) -> str | None:
        return self._path

    @property
    def generation(self) -> int:
        """Number of completed swaps."""
        return self._generation

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> GeoLookupProvider:
        """Return the current provider for use by one request."""
        with self._lock:
            if self._closed:
                raise UseAfterCloseError("Database handle is closed")
            return self._current

    def swap(self, provider: GeoLookupProvider) -> GeoLookupProvider:
        """Install ``provider`` as current and return the displaced one."""
        with self._lock:
            if self._closed:
                raise UseAfterCloseError("Swap on closed database handle")
            retired, self._current = self._current, provider
            self._generation += 1
            generation = self._generation
        DB_GENERATION.set(generation)
        return retired

    def close(self) -> None:
        """Close the current provider. Later calls are no-ops."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            provider = self._current
        provider.close()


class Reloader:
    """Periodically reopen the database file and swap it into a handle."""

    def __init__(
        self,
        handle: DatabaseHandle,
        path: str,
        *,
        interval: float = 3600.0,
        grace_period: float = 10.0,
        opener: Opener = open_provider,
    ) -> None:
        self.handle = handle
        self.path = path
        self.interval = interval
        self.grace_period = grace_period
        self._opener = opener
        self._task: asyncio.Task[None] | None = None
        self._retiring: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending_retirements(self) -> int:
        return len(self._retiring)

    def start(self) -> None:
        """Start the periodic reload task."""
        if self.running:
            return
        self._task = asyncio.create_task(self._reload_loop())
        logger.debug(
            "Database reloader started",
            path=self.path,
            interval=self.interval,
            grace_period=self.grace_period,
        )

    async def stop(self) -> None:
        """Stop reloading and close every retired provider right away."""
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        pending = list(self._retiring)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._retiring.clear()

    async def reload_once(self) -> bool:
        """Open a fresh provider and swap it in.

        Returns:
            True if the database was swapped, False if this cycle was skipped.
        """
        logger.debug("Trying to re-read the database from disk", path=self.path)
        try:
            provider = await asyncio.to_thread(self._opener, self.path)
        except DatabaseOpenError as e:
            DB_RELOADS.labels(result="failure").inc()
            logger.error("Can't re-read MaxMind database", path=self.path, error=e.reason)
            return False

        try:
            retired = self.handle.swap(provider)
        except UseAfterCloseError:
            provider.close()
            DB_RELOADS.labels(result="failure").inc()
            logger.warning("Database handle closed during reload", path=self.path)
            return False

        DB_RELOADS.labels(result="success").inc()
        self._schedule_retirement(retired)
        logger.info(
            "MaxMind database reloaded",
            path=self.path,
            generation=self.handle.generation,
        )
        return True

    def _schedule_retirement(self, provider: GeoLookupProvider) -> None:
        task = asyncio.create_task(self._retire(provider))
        self._retiring.add(task)
        task.add_done_callback(self._retiring.discard)

    async def _reload_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval)
                await self.reload_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Database reload error", path=self.path, error=str(e))

    async def _retire(self, provider: GeoLookupProvider) -> None:
        try:
            while True:
                await asyncio.sleep(self.grace_period)
                try:
                    provider.close()
                except UseAfterCloseError as e:
                    logger.warning("Retired database still in use, postponing close", error=e.message)
                    continue
                logger.debug("Retired MaxMind database closed", path=self.path)
                return
        except asyncio.CancelledError:
            self._close_now(provider)
            raise

    def _close_now(self, provider: GeoLookupProvider) -> None:
        try:
            provider.close()
        except UseAfterCloseError as e:
            logger.warning("Retired database left open at shutdown", error=e.message)
