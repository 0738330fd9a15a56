"""
Engine Orchestration Module

Unified interface coordinating every layer for the presentation layer.

LAYER FLOW:
===========
1. Ingestion: ledger queries + blob fetches -> raw records
2. Normalization: raw records -> visible Notes
3. Identity: permission grants + Notes -> CMIdentityResolver
4. Query: Notes + resolver -> CM / dApp / User views
5. Storage: complete Note sets cached per project

Stale-but-present data is always preferred over no data.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Tuple
import logging

from .config import LedgerConfig
from .contracts.base import LedgerError, Note, ProjectIcon
from .contracts.records import PermissionGrant
from .identity.resolver import CMIdentityResolver
from .ingestion.fetcher import LedgerFetcher
from .ingestion.service import LedgerIngestionService, ProjectRecords
from .normalization.reconcile import ReconciliationReport, reconcile_with_report
from .query.views import ProjectView, build_project_view
from .storage.backends import CacheBackend
from .storage.cache import CacheRead, SnapshotCache, StalenessMonitor
from .temporal.clock import SessionBoundary


logger = logging.getLogger(__name__)


class NoteEngine:
    """
    Programmatic entry point for the note pipeline.

    The engine owns one SnapshotCache whose loader is
    `query_notes_by_project`; a CMIdentityResolver is built fresh for
    every project load.
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        ingestion: Optional[LedgerIngestionService] = None,
        cache_backend: Optional[CacheBackend] = None,
        clock=None,
        session: Optional[SessionBoundary] = None,
        log: Optional[logging.Logger] = None
    ):
        self._config = config or LedgerConfig()
        self._log = log or logger
        self._ingestion = ingestion or LedgerIngestionService(
            LedgerFetcher(self._config, log=self._log), self._config, log=self._log
        )
        self._cache = SnapshotCache(
            loader=self.query_notes_by_project,
            backend=cache_backend,
            clock=clock,
            session=session,
            ttl_seconds=self._config.cache_ttl_seconds,
            fresh_load_window_seconds=self._config.fresh_load_window_seconds,
            log=self._log
        )
        self._cache.mark_page_load()

    @property
    def config(self) -> LedgerConfig:
        return self._config

    @property
    def cache(self) -> SnapshotCache:
        return self._cache

    # =========================================================================
    # NOTES
    # =========================================================================

    async def query_notes_with_report(
        self,
        project: str
    ) -> Tuple[List[Note], ReconciliationReport, ProjectRecords]:
        records = await self._ingestion.fetch_project_records(project)
        notes, report = reconcile_with_report(
            records.unified,
            records.individual,
            project=project,
            gateway_url=self._config.gateway_url
        )
        self._log.info(
            "Reconciled %d notes for %s (%d tombstoned, %d shadowed)",
            report.emitted, project, report.tombstoned, report.shadowed,
            extra={'project': project, 'note_count': report.emitted}
        )
        return notes, report, records

    async def query_notes_by_project(self, project: str) -> List[Note]:
        """
        Visible notes for a project, newest first.

        Raises LedgerError when the project query itself fails; failed
        blob fetches only reduce the result.
        """
        notes, _, _ = await self.query_notes_with_report(project)
        return notes

    async def load_notes(self, project: str, select: bool = True) -> List[Note]:
        """
        Foreground load with fallback.

        On query failure returns the last cached snapshot (even if
        expired), else an empty list.
        """
        try:
            notes = await self.query_notes_by_project(project)
        except LedgerError as e:
            snapshot = self._cache.peek(project)
            self._log.warning(
                "Query failed for %s, falling back to %s: %s",
                project, 'cached snapshot' if snapshot else 'empty result', e,
                extra={'project': project, 'error_code': e.error.code.name}
            )
            return list(snapshot.data) if snapshot else []
        if select:
            self._cache.select_project(project)
        self._cache.save_to_cache(project, notes)
        return notes

    def read_notes(self, project: str, select: bool = True) -> CacheRead:
        """Non-blocking cached read; may schedule a background refresh."""
        return self._cache.get_or_refresh(project, select=select)

    async def current_notes(self, project: str, select: bool = True) -> Tuple[List[Note], bool]:
        """
        Cached notes and their staleness.

        Only the very first load of a project waits for the ledger;
        afterwards stale data is returned while a refresh runs.

        Shared callers (the HTTP API) pass `select=False` so concurrent
        clients reading different projects do not cancel each other's
        refreshes.
        """
        read = self.read_notes(project, select=select)
        if read.data or self._cache.peek(project) is not None:
            return read.data, read.is_stale

        snapshot = await self._cache.wait_for_refresh(project)
        if snapshot is not None:
            return list(snapshot.data), False
        notes = await self.load_notes(project, select=select)
        return notes, not self._cache.is_cache_valid(project)

    # =========================================================================
    # IDENTITY & VIEWS
    # =========================================================================

    async def query_permissions(self, project: str) -> Dict[str, PermissionGrant]:
        return await self._ingestion.fetch_permissions(project)

    async def build_resolver(self, project: str, notes: List[Note]) -> CMIdentityResolver:
        """Resolver from the project's grants; missing grants degrade to notes only."""
        try:
            grants = await self.query_permissions(project)
        except LedgerError as e:
            self._log.warning(
                "Permission query failed for %s: %s", project, e,
                extra={'project': project, 'error_code': e.error.code.name}
            )
            grants = {}
        return CMIdentityResolver.initialize(
            grants, notes, dapp_handles=self._config.dapp_handles, log=self._log
        )

    async def load_project(self, project: str, select: bool = True) -> ProjectView:
        """
        Notes, CM/dApp/user views for one project.

        Notes come from `current_notes`; grants are always queried live.
        """
        notes, is_stale = await self.current_notes(project, select=select)
        resolver = await self.build_resolver(project, notes)
        return build_project_view(
            project,
            notes,
            resolver,
            recent_limit=self._config.recent_limit,
            strip_limit=self._config.recent_users_strip,
            is_stale=is_stale
        )

    # =========================================================================
    # PROJECT METADATA
    # =========================================================================

    async def list_projects(self) -> List[str]:
        return await self._ingestion.list_projects()

    async def query_project_icons(self, project: str) -> List[ProjectIcon]:
        try:
            return await self._ingestion.fetch_project_icons(project)
        except LedgerError as e:
            self._log.warning(
                "Icon query failed for %s: %s", project, e,
                extra={'project': project, 'error_code': e.error.code.name}
            )
            return []

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def monitor(self) -> StalenessMonitor:
        """Staleness monitor bound to this engine's cache; caller must stop it."""
        return StalenessMonitor(self._cache, self._config.monitor_interval_seconds)

    async def close(self) -> None:
        await self._cache.close()
