"""
auth/token_ring.py -- Fixed-capacity FIFO of a user's refresh tokens.

Pushing onto a full ring evicts the oldest token. The bound is a FIFO trim,
not an LRU: redeeming a token does not move it, and eviction ignores whether
an older token is still within its cryptographic expiry window.

Usage:
    ring = RefreshTokenRing(["t1", "t2"], capacity=5)
    ring.push("t3")
    "t1" in ring        # True until four more tokens are pushed
    ring.to_list()      # oldest first, ready to persist
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable

DEFAULT_CAPACITY = 5


class RefreshTokenRing:
    def __init__(self, tokens: Iterable[str] = (), capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        # deque(maxlen=...) drops from the left when appending past capacity.
        self._tokens: deque[str] = deque(tokens, maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._tokens.maxlen

    def push(self, token: str) -> str | None:
        """Append token as the newest entry. Returns the evicted token, if any."""
        evicted = self._tokens[0] if len(self._tokens) == self.capacity else None
        self._tokens.append(token)
        return evicted

    def remove(self, token: str) -> bool:
        """Drop token if present. Returns False (not an error) when absent."""
        try:
            self._tokens.remove(token)
        except ValueError:
            return False
        return True

    def replace(self, old: str, new: str) -> bool:
        """Rotate: remove old and push new in one step. No-op if old is absent."""
        if not self.remove(old):
            return False
        self.push(new)
        return True

    def prune(self, is_stale: Callable[[str], bool]) -> int:
        """Remove every token for which is_stale() is true. Returns the count removed."""
        kept = [t for t in self._tokens if not is_stale(t)]
        removed = len(self._tokens) - len(kept)
        if removed:
            self._tokens = deque(kept, maxlen=self.capacity)
        return removed

    def clear(self) -> None:
        self._tokens.clear()

    def to_list(self) -> list[str]:
        return list(self._tokens)

    def __contains__(self, token: object) -> bool:
        return token in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)

    def __repr__(self) -> str:
        return f"RefreshTokenRing(size={len(self)}, capacity={self.capacity})"
