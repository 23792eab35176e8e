"""
Sentinel discovery client.

Asks each resolved sentinel for the address of the named primary and
returns the first answer that parses and is actually accepting
connections. Stateless: the primary tracker calls discover() once per
poll and the sentinel name is re-resolved every time, so DNS-managed
sentinel fleets are followed without restarts.
"""

import asyncio
import socket
from typing import List, Optional, Tuple

from .models import PrimaryAddress
from .pipe import close_stream


SENTINEL_COMMAND = "sentinel get-master-addr-by-name {name}\n"
REPLY_BUFFER_SIZE = 256
DEFAULT_TIMEOUT = 0.1
DEFAULT_READ_TIMEOUT = 0.5
LOCAL_HOST = "127.0.0.1"


class DiscoveryError(Exception):
    """No sentinel could even be attempted (bad address, DNS failure)."""


class MalformedReplyError(ValueError):
    """A sentinel answered with something that is not a host/port reply."""


def split_host_port(address: str) -> Tuple[str, int]:
    """
    Split "host:port", "[v6]:port" or ":port" into (host, port).

    Raises ValueError when the port is missing or not a valid number.
    """
    address = (address or "").strip()
    host, sep, port_str = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address '{address}'")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"invalid port in address '{address}'") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range in address '{address}'")
    return host, port


def parse_sentinel_reply(data: bytes) -> PrimaryAddress:
    """
    Parse a get-master-addr-by-name reply.

      *2\\r\\n$9\\r\\n10.0.0.1\\r\\n$4\\r\\n6380\\r\\n

    Segment 2 is the host and segment 4 the port. Anything shorter
    (null reply, error reply, truncated read) is malformed.
    """
    parts = data.decode("utf-8", errors="replace").split("\r\n")
    if len(parts) < 5:
        raise MalformedReplyError(f"Wrong sentinel response: {data!r}")

    host = parts[2].strip()
    try:
        port = int(parts[4])
    except ValueError:
        raise MalformedReplyError(f"Wrong sentinel response: {data!r}") from None

    if not host or not 0 < port <= 65535:
        raise MalformedReplyError(f"Wrong sentinel response: {data!r}")
    return PrimaryAddress(host=host, port=port)


async def resolve_sentinels(address: str) -> List[Tuple[str, int]]:
    """Resolve the sentinel name to every (ip, port) it points at, in order."""
    try:
        host, port = split_host_port(address)
    except ValueError as e:
        raise DiscoveryError(f"Can't find Sentinel: {e}") from e

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host or LOCAL_HOST, port, type=socket.SOCK_STREAM)
    except OSError as e:
        raise DiscoveryError(f"Can't lookup Sentinel '{host}': {e}") from e

    sentinels: List[Tuple[str, int]] = []
    for _family, _type, _proto, _canon, sockaddr in infos:
        candidate = (sockaddr[0], port)
        if candidate not in sentinels:
            sentinels.append(candidate)

    if not sentinels:
        raise DiscoveryError(f"Can't lookup Sentinel '{host}': no addresses")
    return sentinels


async def probe(address: PrimaryAddress, timeout: float) -> None:
    """
    Open and immediately close a connection to address.

    Best effort only: a primary that accepts here may still be gone by the
    time a client is proxied to it.
    """
    _reader, writer = await asyncio.wait_for(
        asyncio.open_connection(address.host, address.port),
        timeout=timeout,
    )
    await close_stream(writer)


class DiscoveryClient:
    """Queries sentinels for the current primary of one master name."""

    def __init__(
        self,
        sentinel_addr: str,
        master_name: str,
        logger,
        timeout: float = DEFAULT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
    ):
        self.sentinel_addr = sentinel_addr
        self.master_name = master_name
        self.logger = logger
        self.timeout = timeout
        self.read_timeout = read_timeout

    async def query_sentinel(self, sentinel: Tuple[str, int]) -> PrimaryAddress:
        host, port = sentinel
        writer = None
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self.timeout,
            )
            writer.write(SENTINEL_COMMAND.format(name=self.master_name).encode())
            await writer.drain()

            data = await asyncio.wait_for(
                reader.read(REPLY_BUFFER_SIZE),
                timeout=self.read_timeout,
            )
        finally:
            await close_stream(writer)

        return parse_sentinel_reply(data)

    async def discover(self) -> Optional[PrimaryAddress]:
        """
        Return the first reachable primary any sentinel reports.

        Raises DiscoveryError only when there is nothing to ask. When every
        sentinel fails or reports an unreachable address the result is None,
        meaning "try again later" rather than "the primary changed".
        """
        sentinels = await resolve_sentinels(self.sentinel_addr)

        for sentinel in sentinels:
            label = f"{sentinel[0]}:{sentinel[1]}"
            self.logger.trace(f"Sentinel address: {label}")

            try:
                candidate = await self.query_sentinel(sentinel)
            except MalformedReplyError as e:
                self.logger.error(f"[SENTINEL {label}] {e}")
                continue
            except asyncio.TimeoutError:
                self.logger.error(f"[SENTINEL {label}] did not respond in time")
                continue
            except OSError as e:
                self.logger.error(f"[SENTINEL {label}] unreachable: {e}")
                continue

            try:
                await probe(candidate, self.timeout)
            except (OSError, asyncio.TimeoutError) as e:
                self.logger.error(
                    f"[SENTINEL {label}] Can not dial master {candidate}: {e!r}"
                )
                continue

            self.logger.debug(f"[SENTINEL {label}] reports master {candidate}")
            return candidate

        # No available masters.
        return None
