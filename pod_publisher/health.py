from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest


@dataclass
class RuntimeState:
    healthy: bool = False
    started: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    started_monotonic: float = field(default_factory=time.monotonic)
    last_poll: Optional[str] = None
    active_jobs: int = 0


class HealthServer:
    def __init__(self, host: str, port: int, state: RuntimeState, processed_count: Callable[[], int]):
        self.host = host
        self.port = port
        self.state = state
        self.processed_count = processed_count
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self.healthz)
        app.router.add_get("/health", self.healthz)
        app.router.add_get("/healthz", self.healthz)
        app.router.add_get("/ready", self.ready)
        app.router.add_get("/metrics", self.metrics)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def healthz(self, _request: web.Request) -> web.Response:
        status = 200 if self.state.healthy else 503
        return web.json_response(
            {
                "status": "healthy" if self.state.healthy else "starting",
                "started": self.state.started,
                "lastPoll": self.state.last_poll,
                "activeJobs": self.state.active_jobs,
                "processedTweets": self.processed_count(),
                "uptime": round(time.monotonic() - self.state.started_monotonic, 3),
            },
            status=status,
        )

    async def ready(self, _request: web.Request) -> web.Response:
        if self.state.healthy:
            return web.Response(text="ready")
        return web.Response(text="not ready", status=503)

    async def metrics(self, _request: web.Request) -> web.Response:  # pragma: no cover - Prometheus endpoint
        data = generate_latest()
        return web.Response(body=data, headers={"Content-Type": CONTENT_TYPE_LATEST})
