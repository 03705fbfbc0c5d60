"""Operator allow-list for assisted (operator-issued) claims."""

from __future__ import annotations

import threading
from typing import Iterable, Optional


class OperatorAllowList:
    """Thread-safe set of operator ids allowed to claim on behalf of others."""

    def __init__(self, operators: Optional[Iterable[str]] = None):
        self._lock = threading.Lock()
        self._operators = {op for op in (operators or []) if op}

    def allows(self, operator: Optional[str]) -> bool:
        if not operator:
            return False
        with self._lock:
            return operator in self._operators

    def grant(self, operator: str) -> None:
        if not operator:
            raise ValueError("operator is required")
        with self._lock:
            self._operators.add(operator)

    def revoke(self, operator: str) -> bool:
        with self._lock:
            if operator in self._operators:
                self._operators.discard(operator)
                return True
            return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._operators)
