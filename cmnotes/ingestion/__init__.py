"""
Ingestion Layer

RESPONSIBILITY: Raw record capture from the ledger
OUTPUTS: LedgerTransaction, UnifiedRecord, PermissionGrant, FetchReport

WHAT THIS LAYER MUST NOT DO:
============================
- Reconcile, deduplicate or interpret note versions
- Resolve CM identities
"""

from .fetcher import LedgerFetcher, build_transactions_query
from .service import LedgerIngestionService, ProjectRecords, parse_permission_grants

__all__ = [
    'LedgerFetcher', 'build_transactions_query',
    'LedgerIngestionService', 'ProjectRecords', 'parse_permission_grants',
]
