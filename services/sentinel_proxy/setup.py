#!/usr/bin/env python3
"""
setup.py - Sentinel Proxy Service Setup
Parses flags (with env fallbacks), validates them and returns the config
for the main runner. Any problem here is fatal: the service must not start
its loops on a bad configuration.
"""

import argparse
import os
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .intel.discovery import (
    DEFAULT_READ_TIMEOUT,
    DEFAULT_TIMEOUT,
    split_host_port,
)
from .intel.proxy import PROXY_DIAL_TIMEOUT_SEC
from .intel.tracker import POLL_INTERVAL_SEC, SLOW_BACKOFF_SEC

SERVICE_ID = "sentinel_proxy"


class SetupError(RuntimeError):
    """Configuration that makes startup impossible."""


@dataclass
class ProxyConfig:
    master_name: str
    listen_host: str = ""
    listen_port: int = 9999
    sentinel_addr: str = ":26379"
    log_level: str = ""
    poll_interval: float = POLL_INTERVAL_SEC
    slow_backoff: float = SLOW_BACKOFF_SEC
    discovery_timeout: float = DEFAULT_TIMEOUT
    sentinel_read_timeout: float = DEFAULT_READ_TIMEOUT
    dial_timeout: float = PROXY_DIAL_TIMEOUT_SEC
    health_host: Optional[str] = None
    health_port: Optional[int] = None
    redis_url: Optional[str] = None
    heartbeat_interval: float = 10.0
    service_name: str = SERVICE_ID

    @property
    def listen_addr(self) -> str:
        return f"{self.listen_host}:{self.listen_port}"

    @property
    def health_enabled(self) -> bool:
        return self.health_port is not None

    @property
    def events_channel(self) -> str:
        return f"{self.service_name}:events"


class _ArgumentParser(argparse.ArgumentParser):
    """Bad flags are a SetupError like any other config problem."""

    def error(self, message):
        raise SetupError(message)


def _env(k, d=None):
    v = os.getenv(k)
    return v if v and v.strip() else d


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="sentinel-proxy",
        description="TCP proxy that follows the primary reported by sentinel",
    )
    parser.add_argument("--listen", default=_env("PROXY_LISTEN", ":9999"), help="local address")
    parser.add_argument("--sentinel", default=_env("SENTINEL_ADDR", ":26379"), help="sentinel address (host:port)")
    parser.add_argument("--master", default=_env("MASTER_NAME", ""), help="name of the master redis node")
    parser.add_argument(
        "--log_level",
        "--log-level",
        dest="log_level",
        default=_env("LOG_LEVEL", ""),
        help="log level: error, warn, info, debug, trace (default: error)",
    )
    parser.add_argument("--poll-interval", type=float, default=float(_env("POLL_INTERVAL_SEC", POLL_INTERVAL_SEC)))
    parser.add_argument("--slow-backoff", type=float, default=float(_env("SLOW_BACKOFF_SEC", SLOW_BACKOFF_SEC)))
    parser.add_argument("--discovery-timeout", type=float, default=float(_env("DISCOVERY_TIMEOUT_SEC", DEFAULT_TIMEOUT)))
    parser.add_argument("--dial-timeout", type=float, default=float(_env("PROXY_DIAL_TIMEOUT_SEC", PROXY_DIAL_TIMEOUT_SEC)))
    parser.add_argument("--health", default=_env("HEALTH_LISTEN"), help="health endpoint address, disabled if unset")
    parser.add_argument("--redis-url", default=_env("SYSTEM_REDIS_URL"), help="system redis for heartbeat + failover events")
    parser.add_argument("--heartbeat-interval", type=float, default=float(_env("HEARTBEAT_INTERVAL_SEC", 10)))
    return parser


def _address(flag: str, value: str) -> Tuple[str, int]:
    try:
        return split_host_port(value)
    except ValueError as e:
        raise SetupError(f"Failed to resolve {flag} address '{value}': {e}") from None


def _positive(flag: str, value: float) -> float:
    if value <= 0:
        raise SetupError(f"{flag} must be positive, got {value}")
    return value


def setup_environment(argv: Optional[List[str]] = None, logger=None) -> ProxyConfig:
    try:
        args = build_parser().parse_args(argv)
    except ValueError as e:
        # bad numeric env default
        raise SetupError(str(e)) from None

    if not args.master:
        raise SetupError("Name of the master redis node is required argument.")

    listen_host, listen_port = _address("local", args.listen)
    _address("sentinel", args.sentinel)

    health_host, health_port = None, None
    if args.health:
        health_host, health_port = _address("health", args.health)

    cfg = ProxyConfig(
        master_name=args.master,
        listen_host=listen_host,
        listen_port=listen_port,
        sentinel_addr=args.sentinel,
        log_level=args.log_level,
        poll_interval=_positive("--poll-interval", args.poll_interval),
        slow_backoff=_positive("--slow-backoff", args.slow_backoff),
        discovery_timeout=_positive("--discovery-timeout", args.discovery_timeout),
        dial_timeout=_positive("--dial-timeout", args.dial_timeout),
        health_host=health_host,
        health_port=health_port,
        redis_url=args.redis_url,
        heartbeat_interval=_positive("--heartbeat-interval", args.heartbeat_interval),
    )

    if logger is not None:
        logger.set_level(cfg.log_level)
        logger.info(f"Current log level is '{logger.level_name}'", emoji="🔊")
        logger.info(
            f"listen={cfg.listen_addr} sentinel={cfg.sentinel_addr} master={cfg.master_name}",
            emoji="⚙️",
        )
        if cfg.redis_url:
            logger.info(f"SYSTEM_REDIS_URL={cfg.redis_url}", emoji="⚙️")

    return cfg
