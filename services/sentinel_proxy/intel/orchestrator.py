# services/sentinel_proxy/intel/orchestrator.py

import asyncio
from typing import Any, Dict, List, Optional

from redis.asyncio import Redis

from ..heartbeat import start_heartbeat
from .discovery import DiscoveryClient
from .events import FailoverPublisher
from .health_api import HealthAPIHandler
from .primary_state import PrimaryState
from .proxy import ProxyServer
from .tracker import PrimaryTracker


REDIS_SOCKET_TIMEOUT_SEC = 2.0


class ProxyOrchestrator:
    """
    Owns the long-running pieces of the proxy:

    - PrimaryTracker task (sole writer of PrimaryState)
    - ProxyServer accept loop
    - optional health endpoint and Redis heartbeat / failover events
    """

    def __init__(self, config, logger, redis: Optional[Redis] = None):
        self.config = config
        self.logger = logger
        self.state = PrimaryState()

        self.redis = redis
        if self.redis is None and config.redis_url:
            self.redis = Redis.from_url(
                config.redis_url,
                decode_responses=True,
                socket_connect_timeout=REDIS_SOCKET_TIMEOUT_SEC,
                socket_timeout=REDIS_SOCKET_TIMEOUT_SEC,
            )

        self.discovery = DiscoveryClient(
            config.sentinel_addr,
            config.master_name,
            logger,
            timeout=config.discovery_timeout,
            read_timeout=config.sentinel_read_timeout,
        )

        on_change = None
        if self.redis is not None:
            on_change = FailoverPublisher(
                self.redis,
                config.events_channel,
                config.master_name,
                logger,
            )

        self.tracker = PrimaryTracker(
            self.discovery,
            self.state,
            logger,
            poll_interval=config.poll_interval,
            slow_backoff=config.slow_backoff,
            on_change=on_change,
        )
        self.proxy = ProxyServer(
            self.state,
            logger,
            config.listen_host,
            config.listen_port,
            dial_timeout=config.dial_timeout,
        )
        self.health: Optional[HealthAPIHandler] = None
        if config.health_enabled:
            self.health = HealthAPIHandler(config.service_name, self.state, self.proxy, logger)

        self.tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        """Bind sockets and launch background tasks. Bind errors propagate."""
        await self.proxy.start()

        if self.health is not None:
            await self.health.start(self.config.health_host, self.config.health_port)

        self.tasks.append(asyncio.create_task(
            self.tracker.run(),
            name=f"{self.config.service_name}-tracker",
        ))
        self.tasks.append(asyncio.create_task(
            self.proxy.serve_forever(),
            name=f"{self.config.service_name}-proxy",
        ))

        if self.redis is not None:
            self.tasks.append(asyncio.create_task(
                start_heartbeat(
                    self.redis,
                    self.config.service_name,
                    self.state,
                    self.proxy,
                    self.logger,
                    interval_sec=self.config.heartbeat_interval,
                ),
                name=f"{self.config.service_name}-heartbeat",
            ))

        self.logger.info("orchestrator running", emoji="▶️")

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        """
        Start everything and wait until `stop` is set or a task dies,
        then shut down. Bind errors from start() propagate.
        """
        stopper = asyncio.create_task(
            (stop or asyncio.Event()).wait(),
            name=f"{self.config.service_name}-stop",
        )
        try:
            await self.start()
            done, _pending = await asyncio.wait(
                [stopper, *self.tasks],
                return_when=asyncio.FIRST_COMPLETED,
            )
            if stopper in done:
                self.logger.info("received shutdown signal, stopping", emoji="🛑")
            for task in done:
                if task is stopper:
                    continue
                if not task.cancelled() and task.exception() is not None:
                    self.logger.error(
                        f"task {task.get_name()} died: {task.exception()!r}",
                        emoji="💥",
                    )
                else:
                    self.logger.error(f"task {task.get_name()} exited unexpectedly", emoji="💥")
        finally:
            stopper.cancel()
            await self.stop()

    async def stop(self) -> None:
        # sessions first: the accept loop waits for open connections on close
        await self.proxy.close()

        for task in self.tasks:
            task.cancel()
        for task in self.tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                self.logger.error(f"task {task.get_name()} failed during stop: {e!r}")
        self.tasks.clear()

        if self.health is not None:
            await self.health.stop()
        if self.redis is not None:
            await self.redis.aclose()
        self.logger.info("orchestrator stopped", emoji="🛑")

    def status(self) -> Dict[str, Any]:
        snapshot = self.state.snapshot()
        return {
            "primary": str(snapshot.address) if snapshot.address is not None else None,
            "generation": snapshot.generation,
            "active_sessions": self.proxy.active_sessions,
        }
