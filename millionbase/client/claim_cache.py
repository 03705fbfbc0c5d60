"""
Per-session view of which cells are claimed.

Two grow-only sets back the view:

- confirmed: cells the registry has told this session are claimed
- mine: cells this session claimed itself, marked before any confirmation

`view(i)` is recomputed from both sets on every read. Nothing here ever
removes a member, so once a cell renders as claimed it stays that way for the
rest of the session. A lookup that comes back unclaimed changes nothing; the
cell can be claimed by someone else at any moment, so that answer is not kept.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Set

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheStats:
    confirmed: int
    mine: int
    mine_unconfirmed: int


class ClaimCache:
    def __init__(self) -> None:
        self._confirmed: Set[int] = set()
        self._mine: Set[int] = set()

    # ------------------------------------------------------------------ #
    # Transitions

    def mark_mine(self, index: int) -> None:
        """Optimistic update after this session's claim succeeded."""
        if index not in self._mine:
            self._mine.add(index)
            logger.debug(f"[ClaimCache] Cell {index} marked mine")

    def confirm_claimed(self, index: int) -> bool:
        """Record that the registry reports `index` as claimed. Returns True if newly confirmed."""
        if index in self._confirmed:
            return False
        self._confirmed.add(index)
        return True

    def confirm_many(self, indices: Iterable[int]) -> int:
        before = len(self._confirmed)
        self._confirmed.update(indices)
        return len(self._confirmed) - before

    def record_lookup(self, index: int, claimed: bool) -> None:
        """Route a resolved remote lookup into the cache."""
        if claimed:
            self.confirm_claimed(index)

    # ------------------------------------------------------------------ #
    # Reads

    def view(self, index: int) -> bool:
        return index in self._confirmed or index in self._mine

    def view_range(self, start: int, stop: int) -> List[bool]:
        return [self.view(i) for i in range(start, stop)]

    def is_confirmed(self, index: int) -> bool:
        return index in self._confirmed

    def is_mine(self, index: int) -> bool:
        return index in self._mine

    def needs_lookup(self, index: int) -> bool:
        """True while the registry has not confirmed `index` as claimed."""
        return index not in self._confirmed

    def mine(self) -> Set[int]:
        return set(self._mine)

    def stats(self) -> CacheStats:
        return CacheStats(
            confirmed=len(self._confirmed),
            mine=len(self._mine),
            mine_unconfirmed=len(self._mine - self._confirmed),
        )

    def as_dict(self) -> Dict[str, int]:
        s = self.stats()
        return {"confirmed": s.confirmed, "mine": s.mine, "mine_unconfirmed": s.mine_unconfirmed}
