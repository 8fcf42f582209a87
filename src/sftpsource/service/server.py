"""
sftpsource long-running service (poller + HTTP status API).

Provides:
- Background poller driven by the ``trigger`` config
- GET /health - liveness
- GET /status - poller state, counters and the last cycle result
- POST /poll/run_once - run one cycle now (409 if one is already running)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from aiohttp import web

from sftpsource.config.loader import Config, load_config
from sftpsource.connections import build_session
from sftpsource.source.poller import Poller, build_poller
from sftpsource.source.seen_store import SeenFileStore, build_metadata_backend
from sftpsource.source.types import PollConfig, RemoteSession
from sftpsource.streaming import MessageAdapter, build_adapter
from sftpsource.utils.logging import get_logger, setup_logging_from_config

logger = get_logger("sftpsource.service")


class SourceService:
    """
    Wires session, seen-file store, adapter and poller from one config.

    Components can be injected (tests, embedding); anything left out is built
    from the config by ``initialize``.
    """

    def __init__(
        self,
        project_dir: Path,
        env: str | None = None,
        *,
        config: Config | None = None,
        session: RemoteSession | None = None,
        store: SeenFileStore | None = None,
        adapter: MessageAdapter | None = None,
    ):
        self.project_dir = Path(project_dir)
        self.env = env
        self.config = config
        self.session = session
        self.store = store
        self.adapter = adapter
        self.poll_config: PollConfig | None = None
        self.poller: Poller | None = None

    def initialize(self) -> Poller:
        """
        Build every missing component and the poller.

        Raises:
            ConfigurationError: invalid config, including conflicting filters
        """
        if self.config is None:
            self.config = load_config(self.project_dir, env=self.env)
            setup_logging_from_config(self.config.data, project_dir=self.project_dir)

        self.poll_config = PollConfig.from_config(self.config)
        if self.session is None:
            self.session = build_session(self.config)
        if self.store is None:
            backend = build_metadata_backend(self.config.data, project_dir=self.project_dir)
            self.store = SeenFileStore(backend, self.poll_config.store_namespace)
        if self.adapter is None:
            self.adapter = build_adapter(self.config)

        topic = str(self.config.get("output.topic", "output"))
        self.poller = build_poller(self.session, self.store, self.adapter, self.poll_config, topic=topic)
        logger.info(
            f"Initialized source for {self.poll_config.remote_dir} "
            f"(namespace={self.poll_config.store_namespace}, topic={topic})"
        )
        return self.poller

    async def start(self) -> None:
        if self.poller is None:
            self.initialize()
        await self.adapter.connect()
        await self.poller.start()

    async def stop(self) -> None:
        if self.poller is not None:
            await self.poller.stop()
        if self.adapter is not None:
            await self.adapter.disconnect()
        if self.store is not None:
            self.store.close()
        close = getattr(self.session, "close", None)
        if callable(close):
            close()
        logger.info("Source service stopped")

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def handle_status(self, request: web.Request) -> web.Response:
        if self.poller is None:
            return web.json_response({"error": "poller not initialized"}, status=503)
        status = self.poller.status()
        status["seen_files"] = len(self.store) if self.store is not None else 0
        return web.json_response(status)

    async def handle_run_once(self, request: web.Request) -> web.Response:
        if self.poller is None:
            return web.json_response({"error": "poller not initialized"}, status=503)
        result = await self.poller.run_cycle()
        if result is None:
            return web.json_response(
                {"status": "dropped", "error": "a poll cycle is already running"},
                status=409,
            )
        return web.json_response({"status": "ok" if result.ok else "error", "result": result.to_dict()})


def build_app(svc: SourceService) -> web.Application:
    """Create the aiohttp app; the poller starts and stops with it."""
    app = web.Application()
    app.add_routes(
        [
            web.get("/health", svc.handle_health),
            web.get("/status", svc.handle_status),
            web.post("/poll/run_once", svc.handle_run_once),
        ]
    )

    async def on_startup(app: web.Application) -> None:
        await svc.start()

    async def on_cleanup(app: web.Application) -> None:
        await svc.stop()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    return app


def run_service(*, project_dir: Path, env: str | None, host: str | None = None, port: int | None = None) -> None:
    """
    Run the source service (blocking).

    ``host``/``port`` default to the ``service`` config section, then
    127.0.0.1:8080.
    """
    svc = SourceService(project_dir=project_dir, env=env)
    svc.initialize()

    service_cfg: dict[str, Any] = svc.config.get("service", {}) or {}
    host = host or str(service_cfg.get("host", "127.0.0.1"))
    port = port or int(service_cfg.get("port", 8080))

    app = build_app(svc)
    logger.info(f"sftpsource service starting on http://{host}:{port}")
    web.run_app(app, host=host, port=port, access_log=None)
