"""
Sentinel Proxy Data Models

Value types shared by discovery, the primary tracker and proxy sessions.
"""

from dataclasses import dataclass
from typing import Optional
from enum import Enum
import asyncio


@dataclass(frozen=True)
class PrimaryAddress:
    """Network address reported by a sentinel as the current primary."""
    host: str
    port: int

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


class Epoch:
    """
    One-shot broadcast token for a primary generation.

    Sessions hold the epoch that was live when they started and await it.
    fire() ends the generation for every waiter; it can never be undone.
    """

    def __init__(self, generation: int):
        self.generation = generation
        self._ended = asyncio.Event()

    @property
    def fired(self) -> bool:
        return self._ended.is_set()

    def fire(self) -> bool:
        """End this generation. Returns False if it had already ended."""
        if self._ended.is_set():
            return False
        self._ended.set()
        return True

    async def wait(self) -> None:
        await self._ended.wait()

    def __repr__(self) -> str:
        return f"Epoch(generation={self.generation}, fired={self.fired})"


@dataclass(frozen=True)
class PrimarySnapshot:
    """Primary address and the epoch it belongs to, read as one value."""
    address: Optional[PrimaryAddress]
    epoch: Epoch

    @property
    def generation(self) -> int:
        return self.epoch.generation


class SessionEnd(str, Enum):
    """Why a proxy session finished."""
    EOF = "eof"
    ERROR = "error"
    PRIMARY_CHANGED = "primary_changed"
    DIAL_FAILED = "dial_failed"
    NO_PRIMARY = "no_primary"


@dataclass
class PipeResult:
    """Outcome of one relay direction."""
    direction: str
    bytes_transferred: int = 0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None
