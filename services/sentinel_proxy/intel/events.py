import json
import time
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .models import PrimaryAddress


class FailoverPublisher:
    """
    Publishes primary changes on the system bus.

    Used as the tracker's on_change hook. A Redis outage only costs the
    event; it never reaches the tracker.
    """

    def __init__(self, redis: Redis, channel: str, master_name: str, logger):
        self.redis = redis
        self.channel = channel
        self.master_name = master_name
        self.logger = logger

    def build_event(
        self,
        old: Optional[PrimaryAddress],
        new: PrimaryAddress,
        generation: int,
    ) -> dict:
        return {
            "type": "primary_changed",
            "master": self.master_name,
            "old": str(old) if old is not None else None,
            "new": str(new),
            "generation": generation,
            "ts": time.time(),
        }

    async def __call__(
        self,
        old: Optional[PrimaryAddress],
        new: PrimaryAddress,
        generation: int,
    ) -> None:
        event = self.build_event(old, new, generation)
        try:
            await self.redis.publish(self.channel, json.dumps(event))
        except (RedisError, OSError) as e:
            self.logger.warn(f"[EVENTS] could not publish to {self.channel}: {e}")
            return
        self.logger.debug(f"[EVENTS] published {event['type']} → {self.channel}", emoji="📡")
