"""
Normalization Layer

RESPONSIBILITY: Reconcile raw ledger records into visible Notes
ALLOWED INPUTS: UnifiedRecord and LedgerTransaction from the ingestion layer
OUTPUTS: Note (immutable), ReconciliationReport

WHAT THIS LAYER MUST NOT DO:
============================
- Perform network I/O
- Resolve CM identities or build views
"""

from .reconcile import (
    reconcile, reconcile_with_report, filter_notes, latest_version,
    parse_unified_record, parse_individual_record,
    ReconciliationReport, MalformedEntry,
)

__all__ = [
    'reconcile', 'reconcile_with_report', 'filter_notes', 'latest_version',
    'parse_unified_record', 'parse_individual_record',
    'ReconciliationReport', 'MalformedEntry',
]
