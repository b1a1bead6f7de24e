"""Forward-auth HTTP server.

Every request on the auth listener, whatever its path or method, is
answered from the ``X-Forwarded-For`` header alone:

- 200: the client country passes the policy
- 403: the client country is refused by the policy
- 400: the header is missing or is not an IP address (zone-scoped IPv6 included)
- 500: the database lookup failed
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from ipaddress import ip_address

import structlog
from aiohttp import web

from geoauth.core.config import GeoAuthConfig, parse_listen_address
from geoauth.core.exceptions import LookupFailedError, UseAfterCloseError, format_error_for_user
from geoauth.geo.handle import DatabaseHandle, Reloader
from geoauth.geo.policy import Policy, Verdict
from geoauth.geo.provider import IPAddress, LookupResult
from geoauth.observability.metrics import (
    DECISIONS,
    LOOKUP_DURATION,
    REQUEST_ERRORS,
    generate_metrics,
    get_content_type,
)

logger = structlog.get_logger()

FORWARDED_FOR_HEADER = "X-Forwarded-For"


class ForwardAuthServer:
    """aiohttp server answering forward-auth requests."""

    def __init__(
        self,
        config: GeoAuthConfig,
        handle: DatabaseHandle,
        *,
        policy: Policy | None = None,
        reloader: Reloader | None = None,
    ) -> None:
        self.config = config
        self.handle = handle
        self.policy = policy or config.policy
        self.reloader = reloader or Reloader(
            handle,
            config.db,
            interval=config.db_refresh_every,
            grace_period=config.db_grace_period,
        )
        self._http_runner: web.AppRunner | None = None
        self._metrics_runner: web.AppRunner | None = None
        self._stopped = False

    def build_app(self) -> web.Application:
        """Application for the auth listener (single catch-all route)."""
        app = web.Application()
        app.router.add_route("*", "/{path:.*}", self.handle_request)
        return app

    def build_metrics_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/metrics", self._handle_metrics)
        app.router.add_get("/health", self._handle_health_check)
        return app

    async def handle_request(self, request: web.Request) -> web.Response:
        """Decide on one forward-auth request."""
        source_ip = request.headers.get(FORWARDED_FOR_HEADER, "")
        if not source_ip:
            REQUEST_ERRORS.labels(reason="missing_ip").inc()
            logger.debug("Missing source IP header", header=FORWARDED_FOR_HEADER, path=request.path)
            return web.Response(status=400)

        try:
            ip = ip_address(source_ip)
        except ValueError:
            ip = None
        # Zone-scoped IPv6 ("fe80::1%eth0") is not a client address
        if ip is None or (ip.version == 6 and ip.scope_id):
            REQUEST_ERRORS.labels(reason="invalid_ip").inc()
            logger.error("Can't parse IP address", source_ip=source_ip)
            return web.Response(status=400)

        try:
            result = await self.resolve(ip)
        except (LookupFailedError, UseAfterCloseError, TimeoutError) as e:
            REQUEST_ERRORS.labels(reason="lookup_failed").inc()
            logger.error("MaxMind database lookup failed", ip=str(ip), error=format_error_for_user(e))
            return web.Response(status=500)

        verdict = self.policy.evaluate(result)
        DECISIONS.labels(verdict=verdict.value).inc()
        logger.debug(
            "Access granted" if verdict is Verdict.ALLOW else "Access blocked",
            ip=str(ip),
            country=result.country_code,
            mode=self.policy.mode.value,
        )
        return web.Response(status=verdict.status)

    async def resolve(self, ip: IPAddress) -> LookupResult:
        """Look up ``ip`` on the current database snapshot.

        The lookup runs in a worker thread and is bounded by ``web_timeout``.
        """
        provider = self.handle.snapshot()
        with LOOKUP_DURATION.time():
            return await asyncio.wait_for(
                asyncio.to_thread(provider.lookup, ip),
                timeout=self.config.web_timeout,
            )

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        return web.Response(
            body=generate_metrics(),
            headers={"Content-Type": get_content_type()},
        )

    async def _handle_health_check(self, request: web.Request) -> web.Response:
        if self.handle.closed:
            return web.json_response({"status": "stopping"}, status=503)
        return web.json_response({"status": "healthy", "db_generation": self.handle.generation})

    async def start(self) -> None:
        """Bind the listeners and start reloading the database."""
        self._http_runner = web.AppRunner(
            self.build_app(),
            keepalive_timeout=self.config.web_timeout,
            shutdown_timeout=self.config.shutdown_timeout,
            access_log=None,
        )
        await self._http_runner.setup()
        host, port = parse_listen_address(self.config.web_listen)
        await web.TCPSite(self._http_runner, host, port).start()
        logger.info("HTTP server listening", address=self.config.web_listen)

        if self.config.metrics_listen:
            self._metrics_runner = web.AppRunner(self.build_metrics_app(), access_log=None)
            await self._metrics_runner.setup()
            metrics_host, metrics_port = parse_listen_address(self.config.metrics_listen)
            await web.TCPSite(self._metrics_runner, metrics_host, metrics_port).start()
            logger.info("Metrics server listening", address=self.config.metrics_listen)

        self.reloader.start()

    async def stop(self) -> None:
        """Stop gracefully. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping API server")

        # Stops accepting, then waits up to shutdown_timeout for in-flight requests
        if self._http_runner:
            await self._http_runner.cleanup()
        if self._metrics_runner:
            await self._metrics_runner.cleanup()

        await self.reloader.stop()

        try:
            self.handle.close()
        except UseAfterCloseError as e:
            logger.warning("Database closed with reads in progress", error=e.message)

        logger.info("API server stopped")


async def run_server(config: GeoAuthConfig, handle: DatabaseHandle | None = None) -> None:
    """Serve until SIGINT/SIGTERM, then shut down.

    Raises:
        DatabaseOpenError: If the database can't be opened at startup.
        OSError: If a listener can't be bound; the server is stopped first.
    """
    if handle is None:
        handle = DatabaseHandle.open(config.db)
        logger.debug("MaxMind database opened", path=config.db)

    server = ForwardAuthServer(config, handle)
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(sig: signal.Signals) -> None:
        if shutdown.is_set():
            logger.debug("Shutdown already in progress", signal=sig.name)
            return
        logger.info("Signal received, start shutdown", signal=sig.name)
        shutdown.set()

    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown, sig)

    try:
        await server.start()
        await shutdown.wait()
    finally:
        # Handlers stay installed until stop() returns so repeated signals are absorbed
        try:
            await server.stop()
        finally:
            for sig in signals:
                with contextlib.suppress(NotImplementedError):
                    loop.remove_signal_handler(sig)
