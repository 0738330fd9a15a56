"""
Ingestion Service

Orchestrates the ledger queries for one project: both note families,
permission grants, icons and the project list.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging

from ..config import LedgerConfig
from ..contracts.base import ProjectIcon, NoteStatus
from ..contracts.records import (
    APP_INDIVIDUAL, APP_NAME_TAG, APP_PERMISSION, APP_UNIFIED, ROOT_TX_TAG,
    TAG_CM, TAG_CM_HANDLE, TAG_CONTENT, TAG_ICON_NAME, TAG_PROJECT, TAG_STATUS, TAG_TYPE,
    FetchReport, LedgerTransaction, PermissionGrant, UnifiedRecord,
)
from .fetcher import LedgerFetcher


logger = logging.getLogger(__name__)


@dataclass
class ProjectRecords:
    """Everything fetched for one project before reconciliation."""
    project: str
    unified: List[UnifiedRecord] = field(default_factory=list)
    individual: List[LedgerTransaction] = field(default_factory=list)
    blob_report: FetchReport = field(default_factory=FetchReport)
    content_report: FetchReport = field(default_factory=FetchReport)

    @property
    def is_partial(self) -> bool:
        return not (self.blob_report.is_complete and self.content_report.is_complete)


def is_icon_record(tx: LedgerTransaction) -> bool:
    return tx.tag(TAG_TYPE) == 'icon'


def parse_permission_grants(transactions: List[LedgerTransaction]) -> Dict[str, PermissionGrant]:
    """
    Reduce permission transactions to one grant per CM name.

    Transactions arrive newest first; the first grant seen for a
    name wins. Grants without a name or handle are skipped.
    """
    grants: Dict[str, PermissionGrant] = {}
    for tx in transactions:
        name = (tx.tag(TAG_CM) or '').strip()
        handle = tx.tag(TAG_CM_HANDLE)
        if not name or not handle or name in grants:
            continue
        grants[name] = PermissionGrant(
            cm_name=name,
            handle=handle,
            project=tx.tag(TAG_PROJECT, ''),
            tx_id=tx.tx_id,
            timestamp=tx.timestamp
        )
    return grants


class LedgerIngestionService:
    """
    Coordinates ledger queries and blob fetches.

    DESIGN:
    =======
    1. Query each record family with its own tag filter
    2. Fetch unified blobs (and missing individual content) in batches
    3. Hand raw records on untouched; reconciliation happens elsewhere
    4. A failing query propagates; failing blobs are only reported
    """

    def __init__(
        self,
        fetcher: Optional[LedgerFetcher] = None,
        config: Optional[LedgerConfig] = None,
        log: Optional[logging.Logger] = None
    ):
        self._config = config or (fetcher.config if fetcher else LedgerConfig())
        self._fetcher = fetcher or LedgerFetcher(self._config)
        self._log = log or logger

    @property
    def fetcher(self) -> LedgerFetcher:
        return self._fetcher

    async def fetch_project_records(self, project: str) -> ProjectRecords:
        """Fetch both note families for a project."""
        individual = await self._fetcher.query_transactions([
            (APP_NAME_TAG, [APP_INDIVIDUAL]),
            (TAG_PROJECT, [project]),
        ])
        individual = [tx for tx in individual if not is_icon_record(tx)]

        unified_txs = await self._fetcher.query_transactions([
            (APP_NAME_TAG, [APP_UNIFIED]),
        ])
        unified, blob_report = await self._fetcher.fetch_unified_records(
            self._dedupe_addresses(unified_txs)
        )

        records = ProjectRecords(
            project=project,
            unified=unified,
            individual=individual,
            blob_report=blob_report
        )
        if self._config.fetch_missing_content:
            records.individual, records.content_report = await self._fill_content(individual)

        self._log.info(
            "Fetched %d unified and %d individual records for %s",
            len(records.unified), len(records.individual), project,
            extra={'project': project}
        )
        return records

    def _dedupe_addresses(self, transactions: List[LedgerTransaction]) -> List[LedgerTransaction]:
        """Keep the newest transaction per mutable address (Root-TX or own id)."""
        seen = set()
        kept = []
        for tx in transactions:
            address = tx.tag(ROOT_TX_TAG) or tx.tx_id
            if address in seen:
                continue
            seen.add(address)
            if address != tx.tx_id:
                tx = LedgerTransaction(
                    tx_id=address, tags=tx.tags, timestamp=tx.timestamp, cursor=tx.cursor
                )
            kept.append(tx)
        return kept

    async def _fill_content(self, individual: List[LedgerTransaction]):
        """Fetch content for live records that carry no content tag."""
        missing = [
            tx for tx in individual
            if tx.tag(TAG_CONTENT) is None
            and NoteStatus.parse(tx.tag(TAG_STATUS)) is not NoteStatus.REMOVED
        ]
        if not missing:
            return individual, FetchReport()

        blobs, report = await self._fetcher.fetch_mutable_batch(
            missing, address_for=lambda tx: tx.tag(ROOT_TX_TAG) or tx.tx_id
        )
        filled = []
        for tx in individual:
            blob = blobs.get(tx.tx_id)
            if blob is not None:
                tx = tx.with_tag(TAG_CONTENT, str(blob.get('content') or ''))
            filled.append(tx)
        return filled, report

    async def fetch_permissions(self, project: str) -> Dict[str, PermissionGrant]:
        """CM name -> grant for the project, newest grant per name."""
        transactions = await self._fetcher.query_transactions([
            (APP_NAME_TAG, [APP_PERMISSION]),
            (TAG_PROJECT, [project]),
        ])
        return parse_permission_grants(transactions)

    async def fetch_project_icons(self, project: str) -> List[ProjectIcon]:
        transactions = await self._fetcher.query_transactions([
            (APP_NAME_TAG, [APP_INDIVIDUAL]),
            (TAG_PROJECT, [project]),
            (TAG_TYPE, ['icon']),
        ], first=100, max_pages=1)
        return [
            ProjectIcon(
                name=tx.tag(TAG_ICON_NAME) or 'Unnamed Icon',
                url=self._config.data_url(tx.tx_id),
                tx_id=tx.tx_id
            )
            for tx in transactions
        ]

    async def list_projects(self) -> List[str]:
        """All project names seen in the note and permission namespaces."""
        transactions = await self._fetcher.query_transactions([
            (APP_NAME_TAG, [APP_INDIVIDUAL, APP_PERMISSION]),
        ])
        return sorted({tx.tag(TAG_PROJECT) for tx in transactions if tx.tag(TAG_PROJECT)})
