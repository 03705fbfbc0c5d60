"""
SQLite-backed claim registry.

The store is the single source of truth for which cells are claimed. Every
claim runs inside one `BEGIN IMMEDIATE` transaction, so concurrent writers
(threads sharing this store, other RegistryStore instances, other processes
on the same database file) are serialized by SQLite's reserved lock. The
`cells.cell_index` primary key makes a second commit for the same cell
impossible even if the checks above it were somehow bypassed.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional

from millionbase.core.config import DEFAULT_CAPACITY
from millionbase.core.exceptions import (
    AlreadyClaimedError,
    CapReachedError,
    NotAuthorizedError,
    OutOfRangeError,
)
from millionbase.core.logging_config import log_claim_attempt, log_claim_result
from millionbase.core.models import ClaimRecord, SupplyStatus
from millionbase.registry.access import OperatorAllowList
from millionbase.registry.cap_policy import is_valid_index

logger = logging.getLogger(__name__)

ClaimListener = Callable[[ClaimRecord], None]

EVENT_PAGE_SIZE = 500

_RECORD_COLUMNS = "cell_index, claimant, claim_order, claimed_at, assisted_by"


def _row_to_record(row: Any) -> ClaimRecord:
    return ClaimRecord(
        cell_index=int(row[0]),
        claimant=row[1],
        order=int(row[2]),
        claimed_at=float(row[3]),
        assisted_by=row[4],
    )


class RegistryStore:
    def __init__(
        self,
        db_path: str | Path,
        *,
        capacity: int = DEFAULT_CAPACITY,
        operators: Optional[OperatorAllowList] = None,
        busy_timeout: float = 30.0,
    ):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.operators = operators or OperatorAllowList()
        self._lock = threading.Lock()
        self._listeners: List[ClaimListener] = []
        # Autocommit mode: transactions are opened explicitly with BEGIN IMMEDIATE
        self._conn = sqlite3.connect(
            self.db_path,
            timeout=busy_timeout,
            check_same_thread=False,
            isolation_level=None,
        )
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=FULL;")
        self._capacity = self._ensure_tables(capacity)

    # ------------------------------------------------------------------ #
    # Public API

    def claim(self, index: int, claimant: str) -> ClaimRecord:
        """Claim `index` for `claimant`. Raises a ClaimError subclass on rejection."""
        return self._claim(index, claimant, assisted_by=None)

    def assisted_claim(self, index: int, beneficiary: str, operator: str) -> ClaimRecord:
        """Operator-issued claim. Same state transition, different caller gate."""
        if not self.operators.allows(operator):
            logger.warning(f"[RegistryStore] Rejected assisted claim on cell {index} by {operator!r}")
            raise NotAuthorizedError(index, operator)
        return self._claim(index, beneficiary, assisted_by=operator)

    def is_claimed(self, index: int) -> bool:
        self._check_range(index)
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM cells WHERE cell_index = ?",
                (index,),
            ).fetchone()
        return row is not None

    def get_record(self, index: int) -> Optional[ClaimRecord]:
        self._check_range(index)
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM cells WHERE cell_index = ?",
                (index,),
            ).fetchone()
        return _row_to_record(row) if row else None

    def total_claimed(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT claimed_count FROM supply WHERE id = 1").fetchone()
        return int(row[0])

    def capacity(self) -> int:
        return self._capacity

    def supply(self) -> SupplyStatus:
        return SupplyStatus(total_claimed=self.total_claimed(), capacity=self._capacity)

    def iter_events(
        self,
        *,
        after: int = 0,
        limit: Optional[int] = None,
        page_size: int = EVENT_PAGE_SIZE,
    ) -> Iterator[ClaimRecord]:
        """
        Yield committed claims with order > `after`, oldest first.

        Rows are read `page_size` at a time; the lock is held only while a
        page is read. `limit=0` yields nothing.
        """
        if page_size < 1:
            raise ValueError("page_size must be positive")
        last = int(after)
        remaining = None if limit is None else max(int(limit), 0)
        while remaining is None or remaining > 0:
            size = page_size if remaining is None else min(page_size, remaining)
            with self._lock:
                rows = self._conn.execute(
                    f"""
                    SELECT {_RECORD_COLUMNS}
                    FROM cells
                    WHERE claim_order > ?
                    ORDER BY claim_order ASC
                    LIMIT ?
                    """,
                    (last, size),
                ).fetchall()
            for row in rows:
                record = _row_to_record(row)
                last = record.order
                yield record
            if remaining is not None:
                remaining -= len(rows)
            if len(rows) < size:
                return

    def add_listener(self, listener: ClaimListener) -> None:
        """Register a callback run after each committed claim, in claim order."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ClaimListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------ #
    # Internal helpers

    def _claim(self, index: int, claimant: str, *, assisted_by: Optional[str]) -> ClaimRecord:
        if not claimant:
            raise ValueError("claimant is required")
        self._check_range(index)
        log_claim_attempt(logger, index, claimant, assisted_by)
        started = time.perf_counter()

        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                capacity, claimed_count = self._conn.execute(
                    "SELECT capacity, claimed_count FROM supply WHERE id = 1"
                ).fetchone()
                # Global cap first: an exhausted registry rejects every cell alike
                if claimed_count >= capacity:
                    raise CapReachedError(index, capacity)
                taken = self._conn.execute(
                    "SELECT 1 FROM cells WHERE cell_index = ?",
                    (index,),
                ).fetchone()
                if taken:
                    raise AlreadyClaimedError(index)

                order = claimed_count + 1
                claimed_at = time.time()
                self._conn.execute(
                    f"INSERT INTO cells ({_RECORD_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                    (index, claimant, order, claimed_at, assisted_by),
                )
                self._conn.execute(
                    "UPDATE supply SET claimed_count = ? WHERE id = 1",
                    (order,),
                )
                self._conn.execute("COMMIT")
            except sqlite3.IntegrityError as e:
                self._conn.execute("ROLLBACK")
                log_claim_result(logger, index, False, f"integrity: {e}")
                raise AlreadyClaimedError(index) from e
            except BaseException as e:
                self._conn.execute("ROLLBACK")
                log_claim_result(logger, index, False, type(e).__name__)
                raise

            record = ClaimRecord(
                cell_index=index,
                claimant=claimant,
                order=order,
                claimed_at=claimed_at,
                assisted_by=assisted_by,
            )
            # Still under the lock so listeners observe claims in commit order
            self._notify(record)

        log_claim_result(
            logger,
            index,
            True,
            f"order={order}/{capacity}",
            elapsed_ms=(time.perf_counter() - started) * 1000,
        )
        return record

    def _notify(self, record: ClaimRecord) -> None:
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as e:
                # The claim is committed; a broken listener must not undo that for the caller
                logger.error(
                    f"[RegistryStore] Claim listener failed for cell {record.cell_index}: "
                    f"{type(e).__name__}: {e}",
                    exc_info=True,
                )

    def _check_range(self, index: Any) -> None:
        if not is_valid_index(index, self._capacity):
            raise OutOfRangeError(index, self._capacity)

    def _ensure_tables(self, capacity: int) -> int:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS supply (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    capacity INTEGER NOT NULL CHECK (capacity > 0),
                    claimed_count INTEGER NOT NULL DEFAULT 0
                        CHECK (claimed_count >= 0 AND claimed_count <= capacity)
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cells (
                    cell_index INTEGER PRIMARY KEY,
                    claimant TEXT NOT NULL,
                    claim_order INTEGER NOT NULL UNIQUE,
                    claimed_at REAL NOT NULL,
                    assisted_by TEXT
                )
                """
            )
            self._conn.execute(
                "INSERT OR IGNORE INTO supply (id, capacity, claimed_count) VALUES (1, ?, 0)",
                (capacity,),
            )
            stored = int(self._conn.execute("SELECT capacity FROM supply WHERE id = 1").fetchone()[0])
        if stored != capacity:
            logger.warning(
                f"[RegistryStore] {self.db_path} was created with capacity {stored}; "
                f"ignoring configured capacity {capacity}"
            )
        return stored
