"""
End-to-end: fake sentinel + two primaries behind a running orchestrator.
"""

import asyncio

import pytest
import pytest_asyncio

from ..intel.models import PrimaryAddress
from ..intel.orchestrator import REDIS_SOCKET_TIMEOUT_SEC, ProxyOrchestrator
from ..setup import ProxyConfig
from .conftest import free_port, wait_for


@pytest_asyncio.fixture
async def orchestrator(logger, sentinel):
    config = ProxyConfig(
        master_name="mymaster",
        listen_host="127.0.0.1",
        listen_port=0,
        sentinel_addr=sentinel.addr,
        poll_interval=0.05,
        slow_backoff=0.05,
    )
    orch = ProxyOrchestrator(config, logger)
    yield orch
    await orch.stop()


async def connect(orch):
    host, port = orch.proxy.sockname[:2]
    return await asyncio.open_connection(host, port)


async def send(reader, writer, payload: bytes, expected: int) -> bytes:
    writer.write(payload)
    await writer.drain()
    return await asyncio.wait_for(reader.readexactly(expected), timeout=1.0)


@pytest.mark.asyncio
async def test_failover_forces_reconnect_to_new_primary(orchestrator, sentinel, primary_a, primary_b, logger):
    first = PrimaryAddress("127.0.0.1", primary_a.port)
    second = PrimaryAddress("127.0.0.1", primary_b.port)
    sentinel.report(first.host, first.port)

    await orchestrator.start()
    assert await wait_for(lambda: orchestrator.state.address == first)

    reader, writer = await connect(orchestrator)
    assert await send(reader, writer, b"SET k v", 9) == b"A:SET k v"

    sentinel.report(second.host, second.port)

    # old session is cut even though the client never stopped talking
    assert await asyncio.wait_for(reader.read(100), timeout=1.0) == b""
    writer.close()
    assert orchestrator.state.address == second
    assert orchestrator.state.generation == 2

    reader, writer = await connect(orchestrator)
    try:
        assert await send(reader, writer, b"GET k", 7) == b"B:GET k"
    finally:
        writer.close()

    assert logger.count("Master Address changed") == 2


@pytest.mark.asyncio
async def test_all_sentinel_candidates_unreachable_keeps_sessions(orchestrator, sentinel, primary_a, logger):
    sentinel.report("127.0.0.1", primary_a.port)
    await orchestrator.start()
    assert await wait_for(lambda: orchestrator.state.address is not None)

    reader, writer = await connect(orchestrator)
    try:
        assert await send(reader, writer, b"one", 5) == b"A:one"

        sentinel.report("127.0.0.1", free_port())
        assert await wait_for(lambda: logger.count("Can not dial master") >= 3)

        assert orchestrator.state.address == PrimaryAddress("127.0.0.1", primary_a.port)
        assert orchestrator.state.generation == 1
        assert await send(reader, writer, b"two", 5) == b"A:two"
    finally:
        writer.close()


@pytest.mark.asyncio
async def test_status_reports_snapshot(orchestrator, sentinel, primary_a):
    sentinel.report("127.0.0.1", primary_a.port)
    await orchestrator.start()
    assert await wait_for(lambda: orchestrator.state.address is not None)

    status = orchestrator.status()
    assert status["primary"] == f"127.0.0.1:{primary_a.port}"
    assert status["generation"] == 1
    assert status["active_sessions"] == 0


@pytest.mark.asyncio
async def test_run_returns_after_stop_signal(orchestrator, sentinel, primary_a, logger):
    sentinel.report("127.0.0.1", primary_a.port)
    stop = asyncio.Event()

    runner = asyncio.create_task(orchestrator.run(stop))
    assert await wait_for(lambda: orchestrator.state.address is not None)

    reader, writer = await connect(orchestrator)
    try:
        assert await send(reader, writer, b"hi", 4) == b"A:hi"
        stop.set()
        await asyncio.wait_for(runner, timeout=2.0)
        assert await asyncio.wait_for(reader.read(10), timeout=1.0) == b""
    finally:
        writer.close()

    assert orchestrator.tasks == []
    assert logger.count("received shutdown signal") == 1
    assert logger.count("orchestrator stopped") == 1


@pytest.mark.asyncio
async def test_run_stops_when_a_task_dies(orchestrator, sentinel, logger, monkeypatch):
    async def broken_tracker():
        raise RuntimeError("tracker blew up")

    monkeypatch.setattr(orchestrator.tracker, "run", broken_tracker)

    await asyncio.wait_for(orchestrator.run(asyncio.Event()), timeout=2.0)

    assert logger.count("died: RuntimeError('tracker blew up')") == 1
    assert logger.count("orchestrator stopped") == 1


@pytest.mark.asyncio
async def test_run_propagates_bind_error(logger, sentinel):
    blocker = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = blocker.sockets[0].getsockname()[1]
    config = ProxyConfig(
        master_name="mymaster",
        listen_host="127.0.0.1",
        listen_port=port,
        sentinel_addr=sentinel.addr,
    )
    orch = ProxyOrchestrator(config, logger)
    try:
        with pytest.raises(OSError):
            await asyncio.wait_for(orch.run(asyncio.Event()), timeout=2.0)
    finally:
        blocker.close()
        await blocker.wait_closed()

    assert orch.tasks == []


@pytest.mark.asyncio
async def test_redis_client_has_socket_timeouts(logger):
    config = ProxyConfig(master_name="mymaster", redis_url="redis://127.0.0.1:6379/0")
    orch = ProxyOrchestrator(config, logger)
    try:
        kwargs = orch.redis.connection_pool.connection_kwargs
        assert kwargs["socket_timeout"] == REDIS_SOCKET_TIMEOUT_SEC
        assert kwargs["socket_connect_timeout"] == REDIS_SOCKET_TIMEOUT_SEC
        assert orch.tracker.on_change is not None
    finally:
        await orch.redis.aclose()
