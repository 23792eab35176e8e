# heartbeat.py
import asyncio
import json
import os
import time

from redis.asyncio import Redis
from redis.exceptions import RedisError


def build_pulse(service_name: str, state, proxy) -> dict:
    address = state.address
    return {
        "service": service_name,
        "ts": time.time(),
        "status": "alive" if address is not None else "waiting",
        "primary": str(address) if address is not None else None,
        "generation": state.generation,
        "active_sessions": proxy.active_sessions,
        "container_id": os.environ.get("HOSTNAME", "unknown"),
    }


async def start_heartbeat(
    redis: Redis,
    service_name: str,
    state,
    proxy,
    logger,
    interval_sec: float = 10,
):
    """Publish a pulse on <service>:heartbeat until cancelled."""
    heartbeat_key = f"{service_name}:heartbeat"
    logger.info(f"[HEARTBEAT] publishing to {heartbeat_key} every {interval_sec}s", emoji="❤️")

    while True:
        payload = build_pulse(service_name, state, proxy)
        try:
            await redis.publish(heartbeat_key, json.dumps(payload))
            logger.trace(f"[HEARTBEAT] {payload}")
        except (RedisError, OSError) as e:
            logger.warn(f"[HEARTBEAT] publish failed: {e}")
        await asyncio.sleep(interval_sec)
