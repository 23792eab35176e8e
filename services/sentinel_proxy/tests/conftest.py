"""
Shared fixtures for the sentinel proxy tests: a capturing logger, a fake
sentinel speaking the get-master-addr-by-name reply format, and tagged
echo servers standing in for primaries.
"""

import asyncio
import io
import socket

import pytest
import pytest_asyncio

from shared.logutil import LogUtil


def sentinel_reply(host: str, port: int) -> bytes:
    return f"*2\r\n${len(host)}\r\n{host}\r\n${len(str(port))}\r\n{port}\r\n".encode()


def free_port() -> int:
    """A port that was free a moment ago and has nothing listening now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class CaptureLogger(LogUtil):
    def __init__(self):
        self.buffer = io.StringIO()
        super().__init__("test", level="TRACE", stream=self.buffer)

    @property
    def lines(self):
        return self.buffer.getvalue().splitlines()

    def count(self, needle: str) -> int:
        return sum(1 for line in self.lines if needle in line)


class FakeSentinel:
    """Answers every connection with whatever `reply` currently holds."""

    def __init__(self, reply: bytes = b""):
        self.reply = reply
        self.commands = []
        self._server = None

    async def _handle(self, reader, writer):
        try:
            line = await reader.readline()
            self.commands.append(line)
            writer.write(self.reply)
            await writer.drain()
        finally:
            writer.close()

    async def start(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    @property
    def port(self) -> int:
        return self._server.sockets[0].getsockname()[1]

    @property
    def addr(self) -> str:
        return f"127.0.0.1:{self.port}"

    def report(self, host: str, port: int):
        self.reply = sentinel_reply(host, port)

    async def close(self):
        self._server.close()
        await self._server.wait_closed()


class TaggedPrimary:
    """Echo server that prefixes every reply with its tag."""

    def __init__(self, tag: bytes):
        self.tag = tag
        self.writers = set()
        self._server = None

    async def _handle(self, reader, writer):
        self.writers.add(writer)
        try:
            while True:
                data = await reader.read(4096)
                if not data:
                    break
                writer.write(self.tag + data)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            self.writers.discard(writer)
            writer.close()

    async def start(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    @property
    def port(self) -> int:
        return self._server.sockets[0].getsockname()[1]

    async def close(self):
        self._server.close()
        for writer in list(self.writers):
            writer.close()
        await self._server.wait_closed()


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def logger():
    return CaptureLogger()


@pytest_asyncio.fixture
async def sentinel():
    s = await FakeSentinel().start()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def primary_a():
    p = await TaggedPrimary(b"A:").start()
    yield p
    await p.close()


@pytest_asyncio.fixture
async def primary_b():
    p = await TaggedPrimary(b"B:").start()
    yield p
    await p.close()
