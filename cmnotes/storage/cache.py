"""
Snapshot Cache
==============

TTL-bounded per-project cache of reconciled notes.

STATE MACHINE (per project):
============================
    Empty --first success--> Fresh(ts)
    Fresh --TTL elapsed----> Stale
    Stale --refresh--------> Fresh(ts')

GUARANTEES:
- Reads never wait on the network
- A refresh publishes a complete new snapshot or nothing
- Snapshots are replaced wholesale, never mutated in place
- Selection-gated refresh results for a project that is no longer active are discarded
- The first read of a new session refreshes in the background even while Fresh
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple
import asyncio
import json
import logging

from ..contracts.base import ErrorCode, Note
from ..temporal.clock import SessionBoundary, SystemClock
from .backends import CacheBackend, InMemoryCacheBackend


logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = 'cache-'
LAST_PAGE_LOAD_KEY = 'last-page-load'
DEFAULT_TTL_SECONDS = 5 * 60

NoteLoader = Callable[[str], Awaitable[List[Note]]]


@dataclass(frozen=True)
class CacheSnapshot:
    """Complete, immutable set of notes for one project."""
    data: Tuple[Note, ...]
    timestamp: float
    project: str
    session_token: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps({
            'data': [n.to_dict() for n in self.data],
            'timestamp': self.timestamp,
            'project': self.project,
            'session': self.session_token,
        })

    @classmethod
    def from_json(cls, raw: str) -> 'CacheSnapshot':
        item = json.loads(raw)
        return cls(
            data=tuple(Note.from_dict(n) for n in item['data']),
            timestamp=float(item['timestamp']),
            project=item['project'],
            session_token=item.get('session'),
        )


@dataclass(frozen=True)
class CacheRead:
    """Result of a non-blocking read."""
    data: List[Note]
    is_stale: bool
    age_seconds: Optional[float] = None
    refreshing: bool = False


class SnapshotCache:
    """
    Per-project snapshot cache with background refresh.

    Refresh tasks are tagged with their target project and the
    selection generation at scheduling time. A selection-gated refresh
    publishes only if its project is the active selection when it
    finishes. Unselected reads (one cache shared by many clients) pin
    the project so its refresh publishes regardless of the selection.
    """

    def __init__(
        self,
        loader: NoteLoader,
        backend: Optional[CacheBackend] = None,
        clock=None,
        session: Optional[SessionBoundary] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        fresh_load_window_seconds: float = 1.0,
        log: Optional[logging.Logger] = None
    ):
        self._loader = loader
        self._backend = backend or InMemoryCacheBackend()
        self._clock = clock or SystemClock()
        self._session = session or SessionBoundary.start(self._clock)
        self._ttl = ttl_seconds
        self._fresh_load_window = fresh_load_window_seconds
        self._log = log or logger

        self._active: Optional[str] = None
        self._generation = 0
        self._inflight: Dict[str, asyncio.Task] = {}
        self._pinned: Set[str] = set()

    @property
    def active_project(self) -> Optional[str]:
        return self._active

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def session(self) -> SessionBoundary:
        return self._session

    @staticmethod
    def cache_key(project: str) -> str:
        return f"{CACHE_KEY_PREFIX}{project}"

    # =========================================================================
    # SYNCHRONOUS CACHE API
    # =========================================================================

    def save_to_cache(self, project: str, notes: List[Note]) -> CacheSnapshot:
        snapshot = CacheSnapshot(
            data=tuple(notes),
            timestamp=self._clock.now(),
            project=project,
            session_token=self._session.token
        )
        self._backend.put(self.cache_key(project), snapshot.to_json())
        self._log.info(
            "Saved %d notes for project %s", len(notes), project,
            extra={'project': project, 'note_count': len(notes)}
        )
        return snapshot

    def _read_snapshot(self, project: str) -> Optional[CacheSnapshot]:
        """Stored snapshot regardless of age; corrupt entries are cleared."""
        raw = self._backend.get(self.cache_key(project))
        if raw is None:
            return None
        try:
            snapshot = CacheSnapshot.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            self._log.error(
                "Corrupt cache entry for %s: %s", project, e,
                extra={'project': project, 'error_code': ErrorCode.CACHE_CORRUPT.name}
            )
            self.clear_cache(project)
            return None
        if snapshot.project != project:
            self.clear_cache(project)
            return None
        return snapshot

    def peek(self, project: str) -> Optional[CacheSnapshot]:
        """Last published snapshot, even when expired."""
        return self._read_snapshot(project)

    def _is_expired(self, snapshot: CacheSnapshot) -> bool:
        return self._clock.now() - snapshot.timestamp > self._ttl

    def get_from_cache(self, project: str) -> Optional[List[Note]]:
        """Cached notes, or None when missing or older than the TTL."""
        snapshot = self._read_snapshot(project)
        if snapshot is None or self._is_expired(snapshot):
            return None
        return list(snapshot.data)

    def is_cache_valid(self, project: str) -> bool:
        snapshot = self._read_snapshot(project)
        return snapshot is not None and not self._is_expired(snapshot)

    def get_cache_age(self, project: str) -> Optional[float]:
        snapshot = self._read_snapshot(project)
        if snapshot is None:
            return None
        return self._clock.now() - snapshot.timestamp

    def clear_cache(self, project: str) -> None:
        self._backend.delete(self.cache_key(project))
        self._log.info("Cleared cache for project %s", project, extra={'project': project})

    def clear_all_caches(self) -> None:
        for key in self._backend.keys():
            if key.startswith(CACHE_KEY_PREFIX):
                self._backend.delete(key)
        self._log.info("Cleared all caches")

    # =========================================================================
    # SESSION / FRESH-LOAD MARKERS
    # =========================================================================

    def mark_page_load(self) -> None:
        """Record the wall-clock time of this page load."""
        self._backend.put(LAST_PAGE_LOAD_KEY, repr(self._clock.now()))

    def is_fresh_load(self) -> bool:
        """True inside the short window after mark_page_load (or with no marker)."""
        raw = self._backend.get(LAST_PAGE_LOAD_KEY)
        if raw is None:
            return True
        try:
            marked = float(raw)
        except ValueError:
            return True
        return self._clock.now() - marked < self._fresh_load_window

    def _needs_session_refresh(self, snapshot: CacheSnapshot) -> bool:
        if snapshot.session_token != self._session.token:
            return True
        marked = self._backend.get(LAST_PAGE_LOAD_KEY) is not None
        return marked and self.is_fresh_load() and snapshot.timestamp < self._page_load_time()

    def _page_load_time(self) -> float:
        try:
            return float(self._backend.get(LAST_PAGE_LOAD_KEY) or 0.0)
        except ValueError:
            return 0.0

    # =========================================================================
    # ASYNC READ / REFRESH
    # =========================================================================

    def select_project(self, project: str) -> int:
        """Make `project` the active selection; returns the new generation."""
        if project != self._active:
            self._active = project
            self._generation += 1
            self._log.debug(
                "Selected project %s", project,
                extra={'project': project, 'generation': self._generation}
            )
        return self._generation

    def get_or_refresh(self, project: str, select: bool = True) -> CacheRead:
        """
        Return cached notes immediately.

        Schedules a background refresh when the project is empty, stale,
        or was last refreshed in an earlier session. Needs a running loop.

        With `select=False` the active selection is left alone and the
        refresh publishes whatever the selection is when it finishes.
        """
        if select:
            self.select_project(project)
        snapshot = self._read_snapshot(project)
        stale = snapshot is None or self._is_expired(snapshot)

        if stale or self._needs_session_refresh(snapshot):
            self.schedule_refresh(project, pin=not select)

        if snapshot is None:
            return CacheRead(data=[], is_stale=True, refreshing=self.is_refreshing(project))
        return CacheRead(
            data=list(snapshot.data),
            is_stale=stale,
            age_seconds=self._clock.now() - snapshot.timestamp,
            refreshing=self.is_refreshing(project)
        )

    def is_refreshing(self, project: str) -> bool:
        task = self._inflight.get(project)
        return task is not None and not task.done()

    def schedule_refresh(self, project: str, pin: bool = False) -> asyncio.Task:
        """
        Start a background refresh unless one is already running for `project`.

        `pin` makes the refresh (new or already running) publish even if
        the selection moves elsewhere.
        """
        if pin:
            self._pinned.add(project)
        task = self._inflight.get(project)
        if task is not None and not task.done():
            return task
        task = asyncio.get_running_loop().create_task(
            self._background_refresh(project, self._generation)
        )
        self._inflight[project] = task
        task.add_done_callback(lambda t, p=project: self._forget(p, t))
        return task

    def _forget(self, project: str, task: asyncio.Task):
        if self._inflight.get(project) is task:
            del self._inflight[project]
            self._pinned.discard(project)

    async def _background_refresh(self, project: str, generation: int) -> Optional[CacheSnapshot]:
        try:
            return await self._refresh(project, generation)
        except Exception:
            self._log.exception(
                "Background refresh failed for %s; keeping previous snapshot", project,
                extra={'project': project}
            )
            return None

    async def refresh(self, project: str) -> Optional[CacheSnapshot]:
        """
        Load and publish a new snapshot now.

        Loader errors propagate. Returns None when the selection moved
        to another project while loading.
        """
        if self._active is None:
            self.select_project(project)
        return await self._refresh(project, self._generation)

    async def _refresh(self, project: str, generation: int) -> Optional[CacheSnapshot]:
        notes = await self._loader(project)
        if project not in self._pinned and project != self._active:
            self._log.info(
                "Discarding refresh for %s; active selection changed", project,
                extra={'project': project, 'generation': generation}
            )
            return None
        if generation != self._generation:
            self._log.debug(
                "Publishing refresh for %s scheduled at generation %d (now %d)",
                project, generation, self._generation,
                extra={'project': project, 'generation': generation}
            )
        return self.save_to_cache(project, notes)

    async def wait_for_refresh(self, project: str) -> Optional[CacheSnapshot]:
        """Await the in-flight refresh for `project`, if any."""
        task = self._inflight.get(project)
        if task is None:
            return None
        return await task

    async def close(self) -> None:
        """Cancel in-flight refreshes."""
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._inflight.clear()
        self._pinned.clear()


class StalenessMonitor:
    """
    Recurring timer that refreshes the active project once it goes stale.

    Must be stopped when its owner is disposed; usable as
    `async with StalenessMonitor(cache): ...`.
    """

    def __init__(
        self,
        cache: SnapshotCache,
        interval_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self._cache = cache
        self._interval = interval_seconds
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.checks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self):
        while True:
            await self._sleep(self._interval)
            self.check()

    def check(self) -> bool:
        """Schedule a refresh if the active project is stale. Returns True if scheduled."""
        self.checks += 1
        project = self._cache.active_project
        if project is None or self._cache.is_cache_valid(project):
            return False
        self._cache.schedule_refresh(project)
        return True

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> 'StalenessMonitor':
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
