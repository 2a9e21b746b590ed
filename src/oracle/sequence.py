"""
Local signer sequence tracking.

The sequence manager hands out monotonically increasing sequence numbers for
one signing identity and tracks which of them are still in flight. It only
keeps the signer from racing itself inside this process: it starts from a
local counter and never reads the account sequence from the chain, so it is
not safe across restarts or with several processes sharing one signer.
"""

import logging
import threading
from typing import Optional

from .models import SequenceError

logger = logging.getLogger(__name__)


class SequenceManager:
    """
    Monotonic sequence counter with in-flight tracking.

    Example:
        >>> manager = SequenceManager()
        >>> manager.initialize()
        >>> seq = manager.next_sequence()
        >>> manager.mark_complete(seq)
    """

    def __init__(self, identity: Optional[str] = None):
        self.identity = identity
        self._current = 0
        self._pending: set[int] = set()
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self, start: int = 0) -> None:
        """
        Reset the counter for a new identity session.

        Args:
            start: First sequence number to hand out.
        """
        if start < 0:
            raise SequenceError(f"Sequence start must not be negative, got {start}")
        with self._lock:
            self._current = start
            self._pending.clear()
            self._initialized = True
        logger.info(f"Sequence manager initialized with starting sequence: {start}")

    def next_sequence(self) -> int:
        """
        Issue the next sequence number and mark it in flight.

        Raises:
            SequenceError: If the manager has not been initialized.
        """
        with self._lock:
            if not self._initialized:
                raise SequenceError("Sequence manager not initialized")
            sequence = self._current
            self._current += 1
            self._pending.add(sequence)
        return sequence

    def mark_complete(self, sequence: int) -> None:
        with self._lock:
            self._pending.discard(sequence)

    def mark_failed(self, sequence: int) -> None:
        with self._lock:
            self._pending.discard(sequence)
        logger.debug(f"Sequence {sequence} released after failure")

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def pending(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._pending)

    @property
    def next_value(self) -> int:
        """The sequence number that will be issued next."""
        return self._current
