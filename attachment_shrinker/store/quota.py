"""Remote call budget shared by every phase of one run."""

from __future__ import annotations


class QuotaTracker:
    """Count remote calls against a fixed ceiling.

    Callers ask ``has_capacity`` before acting; ``increment`` is called once per
    call actually issued. Not safe for concurrent use.
    """

    def __init__(self, ceiling: int) -> None:
        if ceiling < 0:
            raise ValueError("ceiling must be non-negative")
        self._ceiling = ceiling
        self._consumed = 0

    @property
    def ceiling(self) -> int:
        return self._ceiling

    @property
    def consumed(self) -> int:
        return self._consumed

    @property
    def remaining(self) -> int:
        return max(0, self._ceiling - self._consumed)

    def has_capacity(self, needed: int = 1) -> bool:
        return self._consumed + needed <= self._ceiling

    def increment(self) -> None:
        self._consumed += 1

    def __repr__(self) -> str:
        return f"QuotaTracker(consumed={self._consumed}, ceiling={self._ceiling})"


__all__ = ["QuotaTracker"]
