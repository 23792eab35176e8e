import asyncio
from typing import Awaitable, Callable, Optional, Set

from .discovery import DiscoveryClient, DiscoveryError
from .models import PrimaryAddress
from .primary_state import PrimaryState


POLL_INTERVAL_SEC = 0.25
SLOW_BACKOFF_SEC = 1.0
HOOK_TIMEOUT_SEC = 2.0

ChangeHook = Callable[[Optional[PrimaryAddress], PrimaryAddress, int], Awaitable[None]]


class PrimaryTracker:
    """
    Polls discovery forever and publishes primary changes.

    Sole writer of PrimaryState. Two sleep tiers: slow_backoff while
    discovery is failing or no primary has ever been seen, poll_interval
    once a primary is known. The change hook runs in its own task, bounded
    by hook_timeout, so a slow hook never delays the next poll.
    """

    def __init__(
        self,
        discovery: DiscoveryClient,
        state: PrimaryState,
        logger,
        poll_interval: float = POLL_INTERVAL_SEC,
        slow_backoff: float = SLOW_BACKOFF_SEC,
        on_change: Optional[ChangeHook] = None,
        hook_timeout: float = HOOK_TIMEOUT_SEC,
    ):
        self.discovery = discovery
        self.state = state
        self.logger = logger
        self.poll_interval = poll_interval
        self.slow_backoff = slow_backoff
        self.on_change = on_change
        self.hook_timeout = hook_timeout
        self._hooks: Set[asyncio.Task] = set()

    async def poll_once(self) -> bool:
        """
        Run one discovery and publish the result if it is a new primary.

        Returns True when the primary changed. DiscoveryError propagates.
        """
        candidate = await self.discovery.discover()
        if candidate is None:
            return False

        previous = self.state.address
        if previous is not None and str(candidate) == str(previous):
            return False

        # Logged at ERROR so a failover is visible at the default level.
        self.logger.error(
            f"[MASTER] Master Address changed from {previous} to {candidate}.",
            emoji="🔀",
        )
        snapshot = self.state.publish(candidate)

        if self.on_change is not None:
            task = asyncio.create_task(self._notify(previous, candidate, snapshot.generation))
            self._hooks.add(task)
            task.add_done_callback(self._hooks.discard)
        return True

    async def _notify(self, previous, candidate, generation) -> None:
        try:
            await asyncio.wait_for(
                self.on_change(previous, candidate, generation),
                timeout=self.hook_timeout,
            )
        except asyncio.TimeoutError:
            self.logger.warn(f"[MASTER] change hook timed out after {self.hook_timeout}s")
        except Exception as e:
            self.logger.warn(f"[MASTER] change hook failed: {e}")

    async def wait_hooks(self) -> None:
        """Wait for change hooks still in flight."""
        if self._hooks:
            await asyncio.gather(*list(self._hooks), return_exceptions=True)

    def cancel_hooks(self) -> None:
        for task in list(self._hooks):
            task.cancel()

    def next_delay(self) -> float:
        if self.state.address is None:
            # cluster is probably still coming up
            return self.slow_backoff
        return self.poll_interval

    async def run(self) -> None:
        self.logger.info("[MASTER] tracker loop running", emoji="▶️")

        try:
            while True:
                try:
                    await self.poll_once()
                except DiscoveryError as e:
                    self.logger.error(f"[MASTER] Error polling for new master: {e}.")
                    await asyncio.sleep(self.slow_backoff)
                    continue
                except Exception as e:
                    self.logger.error(f"[MASTER] unexpected error while polling: {e!r}", emoji="💥")
                    await asyncio.sleep(self.slow_backoff)
                    continue

                await asyncio.sleep(self.next_delay())
        except asyncio.CancelledError:
            self.logger.warn("[MASTER] tracker stopping", emoji="🛑")
            raise
        finally:
            self.cancel_hooks()
