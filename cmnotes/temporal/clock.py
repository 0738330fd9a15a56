"""
Injectable Clocks and Session Boundaries
========================================

Every TTL and fresh-load decision reads time through these objects,
so tests can drive time explicitly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional
import time
import uuid


class SystemClock:
    """Wall-clock time in unix seconds."""

    def now(self) -> float:
        return time.time()

    def __repr__(self) -> str:
        return "SystemClock()"


@dataclass
class ManualClock:
    """
    Clock that only moves when told to.

    Used by tests and by replays of recorded cache behavior.
    """
    current: float = 0.0

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> float:
        self.current += seconds
        return self.current

    def set(self, value: float) -> None:
        self.current = value


@dataclass(frozen=True)
class SessionBoundary:
    """
    Marks the start of one process/page-load session.

    A snapshot refreshed under a different token predates this session
    and is reconciled against the ledger once more in the background.
    """
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: float = field(default_factory=time.time)

    @classmethod
    def start(cls, clock: Optional[object] = None) -> 'SessionBoundary':
        started_at = clock.now() if clock is not None else time.time()
        return cls(started_at=started_at)
