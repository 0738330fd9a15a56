"""
Contracts shared by every layer.

Layers import types from here and never from each other's implementations.
"""

from .base import (
    ErrorCode, Error, LedgerError, NetworkFailure, ParseFailure, PartialDataFailure,
    Note, NoteStatus, RecordOrigin, ProjectIcon,
    normalize_handle, normalize_timestamp,
)
from .records import (
    LedgerTransaction, UnifiedRecord, PermissionGrant, FetchFailure, FetchReport,
)

__all__ = [
    'ErrorCode', 'Error', 'LedgerError', 'NetworkFailure', 'ParseFailure',
    'PartialDataFailure', 'Note', 'NoteStatus', 'RecordOrigin', 'ProjectIcon',
    'normalize_handle', 'normalize_timestamp',
    'LedgerTransaction', 'UnifiedRecord', 'PermissionGrant', 'FetchFailure', 'FetchReport',
]
