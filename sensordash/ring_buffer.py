"""Fixed-capacity FIFO buffer used for raw samples and finalized aggregates.

Backed by a ``collections.deque`` with ``maxlen`` so pushing past capacity
drops the oldest item in O(1).
"""
from collections import deque
from typing import Any, List, Optional


class RingBuffer:
    def __init__(self, capacity: int):
        capacity = int(capacity)
        if capacity < 1:
            raise ValueError(f"RingBuffer capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._dq = deque(maxlen=capacity)

    def push(self, item: Any) -> None:
        self._dq.append(item)

    def snapshot(self) -> List[Any]:
        """Return a copy of the retained items, oldest first."""
        return list(self._dq)

    def last(self) -> Optional[Any]:
        if not self._dq:
            return None
        return self._dq[-1]

    def clear(self) -> None:
        self._dq.clear()

    def __len__(self) -> int:
        return len(self._dq)
