"""
Ledger Record Contracts

Raw, unvalidated records exactly as the ledger returns them.

BOUNDARY: Ingestion Layer
All ledger data enters the system through these contracts.
Nothing here is reconciled; that is the normalization layer's job.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .base import Error, ErrorCode, normalize_handle


# =============================================================================
# TAG NAMESPACE
# =============================================================================

APP_NAME_TAG = 'App-Name'
ROOT_TX_TAG = 'Root-TX'

APP_INDIVIDUAL = 'irys-cm-note'
APP_UNIFIED = 'irys-cm-note-unified'
APP_PERMISSION = 'irys-cm-note-permission'

TAG_PROJECT = 'irys-cm-note-project'
TAG_SUBJECT_HANDLE = 'irys-cm-note-twitter-handle'
TAG_USER = 'irys-cm-note-user'
TAG_USER_TYPE = 'irys-cm-note-user-type'
TAG_ICON = 'irys-cm-note-Icon'
TAG_STATUS = 'irys-cm-note-status'
TAG_CM = 'irys-cm-note-cm'
TAG_CM_HANDLE = 'irys-cm-note-cm-twitter-handle'
TAG_CONTENT = 'irys-cm-note-content'
TAG_TYPE = 'irys-cm-note-type'
TAG_ICON_NAME = 'irys-cm-note-icon-name'


# =============================================================================
# TRANSACTIONS
# =============================================================================

@dataclass(frozen=True)
class LedgerTransaction:
    """One `edges[].node` entry from a tag-filtered query."""
    tx_id: str
    tags: Tuple[Tuple[str, str], ...]
    timestamp: int
    cursor: Optional[str] = None

    def tag(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value for a tag name; tag names are matched exactly."""
        for tag_name, value in self.tags:
            if tag_name == name:
                return value
        return default

    def has_tag(self, name: str, value: str) -> bool:
        return any(n == name and v == value for n, v in self.tags)

    def with_tag(self, name: str, value: str) -> LedgerTransaction:
        """Return a copy carrying one more tag (immutable)."""
        return LedgerTransaction(
            tx_id=self.tx_id,
            tags=self.tags + ((name, value),),
            timestamp=self.timestamp,
            cursor=self.cursor
        )


@dataclass(frozen=True)
class UnifiedRecord:
    """
    A unified-namespace transaction together with its fetched blob.

    `blob` is None when the mutable address could not be fetched;
    such records contribute no candidates.
    """
    transaction: LedgerTransaction
    blob: Optional[Dict[str, Any]]

    @property
    def tx_id(self) -> str:
        return self.transaction.tx_id


@dataclass(frozen=True)
class PermissionGrant:
    """A CM-name to handle grant for one project."""
    cm_name: str
    handle: str
    project: str
    tx_id: str
    timestamp: int

    def __post_init__(self):
        object.__setattr__(self, 'handle', normalize_handle(self.handle))


# =============================================================================
# FETCH OUTCOMES
# =============================================================================

@dataclass(frozen=True)
class FetchFailure:
    """A single failed blob fetch. First-class data, never discarded."""
    tx_id: str
    url: str
    error: Error

    @property
    def code(self) -> ErrorCode:
        return self.error.code


@dataclass
class FetchReport:
    """
    Outcome of one batched blob fetch pass.

    TRACEABLE:
    Every requested transaction ends up counted in `succeeded`
    or listed in `failures`.
    """
    requested: int = 0
    succeeded: int = 0
    batches: int = 0
    failures: List[FetchFailure] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def is_partial(self) -> bool:
        return self.failed > 0 and self.succeeded > 0

    @property
    def is_complete(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict:
        return {
            'requested': self.requested,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'batches': self.batches,
            'failures': [
                {'tx_id': f.tx_id, 'url': f.url, 'code': f.code.name, 'message': f.error.message}
                for f in self.failures
            ],
        }
