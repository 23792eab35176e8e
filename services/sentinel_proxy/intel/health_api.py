"""
Health endpoint for the sentinel proxy.

Endpoints:
- GET /health - current primary, generation and active session count
"""

from datetime import datetime, UTC
from typing import Optional

from aiohttp import web

from .primary_state import PrimaryState


class HealthAPIHandler:
    """Thin read-only view over the primary state and the proxy listener."""

    def __init__(self, service_name: str, state: PrimaryState, proxy, logger):
        self.service_name = service_name
        self.state = state
        self.proxy = proxy
        self.logger = logger
        self._runner: Optional[web.AppRunner] = None

    def register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self.get_health)

    async def get_health(self, request: web.Request) -> web.Response:
        snapshot = self.state.snapshot()
        return web.json_response({
            "status": "ok" if snapshot.address is not None else "waiting",
            "service": self.service_name,
            "primary": str(snapshot.address) if snapshot.address is not None else None,
            "generation": snapshot.generation,
            "active_sessions": self.proxy.active_sessions,
            "timestamp": datetime.now(UTC).isoformat(),
        })

    def build_app(self) -> web.Application:
        app = web.Application()
        self.register_routes(app)
        return app

    async def start(self, host: str, port: int) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, host or None, port)
        await site.start()
        self.logger.ok(f"[HEALTH] listening on {host or '*'}:{port}", emoji="🩺")

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
