#!/usr/bin/env python3
"""
main.py - Sentinel Proxy Service Entrypoint

Orchestration flow:
- setup_environment() parses flags/env and validates them (fatal on error)
- ProxyOrchestrator binds the listen socket and starts:
    - primary tracker (sentinel polling, failover broadcast)
    - proxy accept loop (one session per client)
    - optional health endpoint and Redis heartbeat
- SIGINT / SIGTERM stop everything and exit cleanly.
"""

import asyncio
import signal
import sys
from typing import List, Optional

from shared.logutil import LogUtil

from .intel.orchestrator import ProxyOrchestrator
from .setup import SERVICE_ID, SetupError, setup_environment


logger = LogUtil(SERVICE_ID)


async def serve(config) -> int:
    orchestrator = ProxyOrchestrator(config, logger)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # platforms without loop signal support fall back to KeyboardInterrupt
            pass

    try:
        await orchestrator.run(stop)
    except OSError as e:
        logger.error(f"Failed to listen on {config.listen_addr}: {e}")
        return 1
    return 0


def run(argv: Optional[List[str]] = None) -> int:
    try:
        config = setup_environment(argv, logger=logger)
    except SetupError as e:
        logger.error(f"Setup failed: {e}")
        return 1

    logger.info("Sentinel proxy starting…", emoji="🚀")
    try:
        return asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("received Ctrl+C, shutting down gracefully", emoji="🛑")
        return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
