"""
Base Contracts and Shared Types

These are the foundational types used across all layers.
All types here are IMMUTABLE and represent pure data.

BOUNDARY ENFORCEMENT:
=====================
- Layers may import types but MUST NOT modify this module
- All records are frozen dataclasses
- Handles are normalized at construction, never assumed pre-normalized
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional, Tuple, Any, Dict
from enum import Enum, auto


# Values at or above this are milliseconds (year 2001 expressed in ms).
MILLISECOND_THRESHOLD = 978307200000


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes.
    Every degradation path of the pipeline is enumerated here.
    """
    # Fetch errors
    NETWORK_FAILURE = auto()
    PARSE_FAILURE = auto()
    PARTIAL_DATA = auto()
    QUERY_FAILED = auto()

    # Cache errors
    CACHE_CORRUPT = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and reported.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            context=self.context + ((key, value),)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code.name,
            'message': self.message,
            'timestamp': self.timestamp.isoformat(),
            'context': dict(self.context),
        }

    @staticmethod
    def now(code: ErrorCode, message: str, **context: str) -> Error:
        return Error(
            code=code,
            message=message,
            timestamp=datetime.now(timezone.utc),
            context=tuple(sorted((k, str(v)) for k, v in context.items()))
        )


class LedgerError(Exception):
    """Base exception for ledger access failures."""

    code = ErrorCode.QUERY_FAILED

    def __init__(self, message: str, **context: str):
        super().__init__(message)
        self.error = Error.now(self.code, message, **context)


class NetworkFailure(LedgerError):
    """Transport failure: connection error, timeout or non-2xx status."""
    code = ErrorCode.NETWORK_FAILURE


class ParseFailure(LedgerError):
    """Response arrived but its body is not the expected shape."""
    code = ErrorCode.PARSE_FAILURE


class PartialDataFailure(LedgerError):
    """
    Some authors failed while others succeeded.

    Describes a degraded FetchReport; the engine never raises it,
    callers may raise it themselves when partial data is unacceptable.
    """
    code = ErrorCode.PARTIAL_DATA


# =============================================================================
# NORMALIZATION HELPERS
# =============================================================================

def normalize_handle(handle: Optional[str]) -> str:
    """Strip a leading '@' and lowercase. Empty input yields ''."""
    if not handle:
        return ''
    handle = handle.strip()
    if handle.startswith('@'):
        handle = handle[1:]
    return handle.lower()


def normalize_timestamp(value: Any) -> int:
    """
    Coerce a ledger timestamp to unix seconds.

    The ledger reports seconds for some records and milliseconds for
    others; anything past the millisecond threshold is floored to seconds.
    Missing or unparseable values become 0.
    """
    if value is None or value == '':
        return 0
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return 0
    if number >= MILLISECOND_THRESHOLD:
        return number // 1000
    return number


# =============================================================================
# NOTE CONTRACT
# =============================================================================

class NoteStatus(Enum):
    """Lifecycle status carried by every ledger record."""
    ADDED = "added"
    EDITED = "edited"
    REMOVED = "removed"

    @classmethod
    def parse(cls, value: Optional[str]) -> NoteStatus:
        """Unknown or missing statuses are read as ADDED."""
        try:
            return cls((value or 'added').strip().lower())
        except ValueError:
            return cls.ADDED


class RecordOrigin(Enum):
    """Which record family produced a candidate note."""
    UNIFIED = "unified"
    INDIVIDUAL = "individual"


@dataclass(frozen=True)
class Note:
    """
    One version of a CM note about a social-media account.

    Within a root_tx_id group only the newest version is authoritative.
    """
    note_id: str
    root_tx_id: str
    project: str
    subject_handle: str
    author_name: str
    content: str
    status: NoteStatus
    timestamp: int
    icon_url: str = ''
    source_url: str = ''
    author_handle: Optional[str] = None
    user_type: Optional[str] = None
    origin: RecordOrigin = RecordOrigin.INDIVIDUAL

    def __post_init__(self):
        object.__setattr__(self, 'subject_handle', normalize_handle(self.subject_handle))
        if self.author_handle is not None:
            object.__setattr__(
                self, 'author_handle', normalize_handle(self.author_handle) or None
            )

    @property
    def is_removed(self) -> bool:
        return self.status is NoteStatus.REMOVED

    def with_author(self, author_name: str, author_handle: Optional[str]) -> Note:
        """Return a copy attributed to a different author (immutable)."""
        return Note(
            note_id=self.note_id,
            root_tx_id=self.root_tx_id,
            project=self.project,
            subject_handle=self.subject_handle,
            author_name=author_name,
            content=self.content,
            status=self.status,
            timestamp=self.timestamp,
            icon_url=self.icon_url,
            source_url=self.source_url,
            author_handle=author_handle,
            user_type=self.user_type,
            origin=self.origin,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        data['origin'] = self.origin.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Note:
        return cls(
            note_id=data['note_id'],
            root_tx_id=data['root_tx_id'],
            project=data.get('project', ''),
            subject_handle=data.get('subject_handle', ''),
            author_name=data.get('author_name', ''),
            content=data.get('content', ''),
            status=NoteStatus.parse(data.get('status')),
            timestamp=int(data.get('timestamp', 0)),
            icon_url=data.get('icon_url', ''),
            source_url=data.get('source_url', ''),
            author_handle=data.get('author_handle'),
            user_type=data.get('user_type'),
            origin=RecordOrigin(data.get('origin', RecordOrigin.INDIVIDUAL.value)),
        )


@dataclass(frozen=True)
class ProjectIcon:
    """Icon image uploaded for a project."""
    name: str
    url: str
    tx_id: Optional[str] = None
