from typing import Optional

from .models import Epoch, PrimaryAddress, PrimarySnapshot


class PrimaryState:
    """
    Holds the current (primary address, epoch) pair.

    The pair lives in one immutable PrimarySnapshot and is replaced with a
    single assignment, so snapshot() always returns a pair the tracker
    actually produced. publish() is reserved for the primary tracker.
    """

    def __init__(self):
        self._snapshot = PrimarySnapshot(address=None, epoch=Epoch(0))
        self.changes = 0

    def snapshot(self) -> PrimarySnapshot:
        return self._snapshot

    @property
    def address(self) -> Optional[PrimaryAddress]:
        return self._snapshot.address

    @property
    def generation(self) -> int:
        return self._snapshot.generation

    def publish(self, address: PrimaryAddress) -> PrimarySnapshot:
        """
        Install a new primary and end the previous generation.

        The new snapshot is swapped in before the old epoch fires, so a
        session woken by the fire can only ever read the new pair.
        """
        previous = self._snapshot
        current = PrimarySnapshot(
            address=address,
            epoch=Epoch(previous.generation + 1),
        )
        self._snapshot = current
        previous.epoch.fire()
        self.changes += 1
        return current
