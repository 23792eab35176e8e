"""
Connection proxy.

ProxyServer accepts client connections and hands each one to a
ProxySession together with the primary snapshot taken at accept time.
A session relays bytes in both directions until one direction finishes
or its generation ends, then closes both sockets.
"""

import asyncio
from typing import List, Optional, Set

from .models import PipeResult, PrimarySnapshot, SessionEnd
from .pipe import CHUNK_SIZE, close_stream, peer_label, pipe
from .primary_state import PrimaryState


PROXY_DIAL_TIMEOUT_SEC = 0.05
DRAIN_TIMEOUT_SEC = 1.0


class ProxySession:
    def __init__(
        self,
        client_reader: asyncio.StreamReader,
        client_writer: asyncio.StreamWriter,
        snapshot: PrimarySnapshot,
        logger,
        dial_timeout: float = PROXY_DIAL_TIMEOUT_SEC,
        chunk_size: int = CHUNK_SIZE,
    ):
        self.client_reader = client_reader
        self.client_writer = client_writer
        self.snapshot = snapshot
        self.logger = logger
        self.dial_timeout = dial_timeout
        self.chunk_size = chunk_size

        self.primary_writer: Optional[asyncio.StreamWriter] = None
        self.client = peer_label(client_writer)
        self.results: List[PipeResult] = []
        self.reason: Optional[SessionEnd] = None
        self._client_closed = False
        self._primary_closed = False

    @property
    def label(self) -> str:
        return f"{self.client} => {self.snapshot.address}"

    async def close(self, abort_primary: bool = False) -> None:
        """
        Close each end exactly once, whichever branch got here first.

        Both ends are closed together, so a client that stopped reading
        cannot keep the primary connection open. The client gets what was
        already buffered for it, bounded by CLOSE_TIMEOUT_SEC.
        abort_primary=True resets the primary connection without flushing.
        """
        closing = []
        if not self._client_closed:
            self._client_closed = True
            closing.append(close_stream(self.client_writer))
        if self.primary_writer is not None and not self._primary_closed:
            self._primary_closed = True
            closing.append(close_stream(self.primary_writer, abort=abort_primary))
        if closing:
            await asyncio.gather(*closing)

    async def run(self) -> SessionEnd:
        address = self.snapshot.address
        if address is None:
            self.logger.info(f"[PROXY {self.client}] No master known yet; dropping connection")
            await self.close()
            self.reason = SessionEnd.NO_PRIMARY
            return self.reason

        try:
            primary_reader, self.primary_writer = await asyncio.wait_for(
                asyncio.open_connection(address.host, address.port),
                timeout=self.dial_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            self.logger.info(f"[PROXY {self.label}] Can't establish connection: {e!r}")
            await self.close()
            self.reason = SessionEnd.DIAL_FAILED
            return self.reason

        self.logger.debug(
            f"[PROXY {self.label}] Opened connection (generation {self.snapshot.generation})",
            emoji="🔗",
        )

        upstream = asyncio.create_task(
            pipe(self.client_reader, self.primary_writer, self.label, self.logger, self.chunk_size),
        )
        downstream = asyncio.create_task(
            pipe(primary_reader, self.client_writer, f"{address} => {self.client}", self.logger, self.chunk_size),
        )
        generation_ended = asyncio.create_task(self.snapshot.epoch.wait())
        relays = {upstream, downstream}

        try:
            done, _pending = await asyncio.wait(
                relays | {generation_ended},
                return_when=asyncio.FIRST_COMPLETED,
            )
            self.reason = self._decide(done, generation_ended)
        finally:
            generation_ended.cancel()
            # a demoted primary gets no flush: cut mid-transfer
            await self.close(abort_primary=self.reason is SessionEnd.PRIMARY_CHANGED)
            await self._finish(relays)

        moved = sum(r.bytes_transferred for r in self.results)
        self.logger.info(
            f"[PROXY {self.label}] Closing connection ({self.reason.value}); "
            f"transferred {moved} bytes",
            emoji="🔌",
        )
        return self.reason

    def _decide(self, done, generation_ended) -> SessionEnd:
        if generation_ended in done:
            return SessionEnd.PRIMARY_CHANGED
        for task in done:
            result = task.result()
            if not result.ok:
                return SessionEnd.ERROR
        return SessionEnd.EOF

    async def _finish(self, relays) -> None:
        """Wait for both relays to unwind after the sockets were closed."""
        _done, pending = await asyncio.wait(relays, timeout=DRAIN_TIMEOUT_SEC)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in relays:
            if task.cancelled():
                continue
            exc = task.exception()
            if exc is None:
                self.results.append(task.result())
            else:
                self.logger.error(f"[PROXY {self.label}] relay failed: {exc!r}")


class ProxyServer:
    """Accept loop; one ProxySession per client connection."""

    def __init__(
        self,
        state: PrimaryState,
        logger,
        host: str,
        port: int,
        dial_timeout: float = PROXY_DIAL_TIMEOUT_SEC,
    ):
        self.state = state
        self.logger = logger
        self.host = host
        self.port = port
        self.dial_timeout = dial_timeout
        self.sessions: Set[ProxySession] = set()
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def active_sessions(self) -> int:
        return len(self.sessions)

    @property
    def sockname(self):
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._on_connect,
            host=self.host or None,
            port=self.port,
        )
        self.logger.ok(f"[PROXY] listening on {self.sockname}", emoji="👂")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    async def _on_connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        # address and epoch come from one snapshot
        snapshot = self.state.snapshot()
        session = ProxySession(
            reader,
            writer,
            snapshot,
            self.logger,
            dial_timeout=self.dial_timeout,
        )
        self.sessions.add(session)
        try:
            await session.run()
        except asyncio.CancelledError:
            await session.close()
            raise
        except Exception as e:
            self.logger.error(f"[PROXY {session.label}] session crashed: {e!r}", emoji="💥")
            await session.close()
        finally:
            self.sessions.discard(session)

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
        if self.sessions:
            await asyncio.gather(*(s.close(abort_primary=True) for s in list(self.sessions)))
        if self._server is not None:
            await self._server.wait_closed()
        self.logger.info("[PROXY] listener closed", emoji="🛑")
