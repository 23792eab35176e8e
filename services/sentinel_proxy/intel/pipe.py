import asyncio

from .models import PipeResult


CHUNK_SIZE = 64 * 1024
CLOSE_TIMEOUT_SEC = 0.5


async def close_stream(
    writer: asyncio.StreamWriter,
    abort: bool = False,
    timeout: float = CLOSE_TIMEOUT_SEC,
) -> None:
    """
    Close a stream and wait for the transport to go away.

    abort=True drops any buffered outgoing bytes and resets the connection.
    A graceful close that cannot flush within `timeout` (peer not reading)
    is turned into an abort, so this never blocks for long.
    """
    if writer is None:
        return
    if abort:
        writer.transport.abort()
    else:
        writer.close()
    try:
        await asyncio.wait_for(writer.wait_closed(), timeout=timeout)
    except asyncio.TimeoutError:
        writer.transport.abort()
    except OSError:
        # peer already gone; nothing left to release
        pass


def peer_label(writer: asyncio.StreamWriter) -> str:
    peer = writer.get_extra_info("peername") if writer is not None else None
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer or "?")


async def pipe(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    direction: str,
    logger,
    chunk_size: int = CHUNK_SIZE,
) -> PipeResult:
    """
    Copy bytes from reader to writer until EOF or a stream error.

    Knows nothing about primary generations: it stops when its own stream
    ends or when the owning session closes the sockets underneath it.
    """
    result = PipeResult(direction=direction)

    try:
        while True:
            data = await reader.read(chunk_size)
            if not data:
                break
            writer.write(data)
            await writer.drain()
            result.bytes_transferred += len(data)
    except (ConnectionError, OSError) as e:
        result.error = e

    if result.error is not None:
        logger.error(
            f"[PROXY {direction}] Shutting down stream; transferred "
            f"{result.bytes_transferred} bytes: {result.error!r}"
        )
    else:
        logger.info(
            f"[PROXY {direction}] Shutting down stream; transferred "
            f"{result.bytes_transferred} bytes",
            emoji="🔚",
        )
    return result
