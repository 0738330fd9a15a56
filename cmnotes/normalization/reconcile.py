"""
Note Reconciliation
===================

Merges unified blobs and individual transactions into one logical Note set.

GUARANTEES:
- Pure: identical inputs always produce identical output
- Latest-write-wins within a root_tx_id group
- A removed authoritative record suppresses the whole group
- Unified candidates shadow individual candidates for the same root_tx_id
- Malformed entries are skipped and reported, never raised
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from ..contracts.base import Note, NoteStatus, RecordOrigin, normalize_handle, normalize_timestamp
from ..contracts.records import (
    ROOT_TX_TAG, TAG_CM, TAG_CM_HANDLE, TAG_CONTENT, TAG_ICON, TAG_PROJECT, TAG_STATUS,
    TAG_SUBJECT_HANDLE, TAG_USER_TYPE,
    LedgerTransaction, UnifiedRecord,
)


logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = 'https://gateway.irys.xyz'


@dataclass(frozen=True)
class MalformedEntry:
    """Record of a blob entry or transaction that could not become a candidate."""
    tx_id: str
    reason: str

    def to_dict(self) -> dict:
        return {'tx_id': self.tx_id, 'reason': self.reason}


@dataclass
class ReconciliationReport:
    """
    Complete report of one reconciliation pass.

    TRACEABLE:
    Every candidate ends up emitted, superseded by a newer version,
    shadowed by a unified candidate, or suppressed by a tombstone.
    """
    unified_candidates: int = 0
    individual_candidates: int = 0
    groups: int = 0
    emitted: int = 0
    shadowed: int = 0
    tombstoned: int = 0
    malformed: List[MalformedEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'unified_candidates': self.unified_candidates,
            'individual_candidates': self.individual_candidates,
            'groups': self.groups,
            'emitted': self.emitted,
            'shadowed': self.shadowed,
            'tombstoned': self.tombstoned,
            'malformed': [m.to_dict() for m in self.malformed],
        }


# =============================================================================
# CANDIDATE PARSING
# =============================================================================

def _mutable_url(gateway_url: str, tx_id: str) -> str:
    return f"{gateway_url.rstrip('/')}/mutable/{tx_id}"


def parse_unified_record(
    record: UnifiedRecord,
    project: Optional[str] = None,
    gateway_url: str = DEFAULT_GATEWAY_URL
) -> Tuple[List[Note], List[MalformedEntry]]:
    """
    One candidate per nested `notes[]` entry of a unified blob.

    root_tx_id is the entry's explicit rootTxId when present,
    otherwise the blob's own transaction id.
    """
    tx = record.transaction
    candidates: List[Note] = []
    malformed: List[MalformedEntry] = []

    blob = record.blob
    if not isinstance(blob, dict):
        return candidates, [MalformedEntry(tx.tx_id, 'blob is not an object')]

    projects = blob.get('projects')
    if not isinstance(projects, dict):
        return candidates, [MalformedEntry(tx.tx_id, 'blob has no projects map')]

    for project_name, project_data in projects.items():
        if project is not None and project_name != project:
            continue
        cms = project_data.get('cms') if isinstance(project_data, dict) else None
        if not isinstance(cms, dict):
            malformed.append(MalformedEntry(tx.tx_id, f'project {project_name!r} has no cms map'))
            continue

        for cm_name, cm_data in cms.items():
            entries = cm_data.get('notes') if isinstance(cm_data, dict) else None
            if not isinstance(entries, list):
                malformed.append(MalformedEntry(tx.tx_id, f'cm {cm_name!r} has no notes list'))
                continue
            cm_handle = cm_data.get('cmTwitterHandle') or tx.tag(TAG_CM_HANDLE)

            for index, entry in enumerate(entries):
                note = _unified_entry_to_note(
                    tx, project_name, cm_name, cm_handle, index, entry, gateway_url
                )
                if isinstance(note, MalformedEntry):
                    malformed.append(note)
                else:
                    candidates.append(note)

    return candidates, malformed


def _unified_entry_to_note(
    tx: LedgerTransaction,
    project: str,
    cm_name: str,
    cm_handle: Optional[str],
    index: int,
    entry: Any,
    gateway_url: str
):
    if not isinstance(entry, dict):
        return MalformedEntry(tx.tx_id, f'entry {index} of {cm_name!r} is not an object')

    subject = entry.get('twitterHandle') or tx.tag(TAG_SUBJECT_HANDLE)
    if not normalize_handle(subject):
        return MalformedEntry(tx.tx_id, f'entry {index} of {cm_name!r} has no subject handle')

    root_tx_id = entry.get('rootTxId') or tx.tx_id
    timestamp = normalize_timestamp(entry.get('timestamp') or entry.get('updatedAt'))

    return Note(
        note_id=str(entry.get('id') or f'{tx.tx_id}:{cm_name}:{index}'),
        root_tx_id=str(root_tx_id),
        project=project,
        subject_handle=subject,
        author_name=cm_name,
        author_handle=entry.get('cmTwitterHandle') or cm_handle,
        content=str(entry.get('content') or ''),
        status=NoteStatus.parse(entry.get('status')),
        timestamp=timestamp,
        icon_url=str(entry.get('iconUrl') or ''),
        source_url=_mutable_url(gateway_url, tx.tx_id),
        user_type=entry.get('userType') or tx.tag(TAG_USER_TYPE),
        origin=RecordOrigin.UNIFIED,
    )


def parse_individual_record(
    tx: LedgerTransaction,
    gateway_url: str = DEFAULT_GATEWAY_URL
) -> Note:
    """One candidate per transaction; every field is carried as a tag."""
    root_tx_id = tx.tag(ROOT_TX_TAG) or tx.tx_id
    return Note(
        note_id=tx.tx_id,
        root_tx_id=root_tx_id,
        project=tx.tag(TAG_PROJECT, ''),
        subject_handle=tx.tag(TAG_SUBJECT_HANDLE, ''),
        author_name=tx.tag(TAG_CM, ''),
        author_handle=tx.tag(TAG_CM_HANDLE),
        content=tx.tag(TAG_CONTENT, ''),
        status=NoteStatus.parse(tx.tag(TAG_STATUS)),
        timestamp=tx.timestamp,
        icon_url=tx.tag(TAG_ICON, ''),
        source_url=_mutable_url(gateway_url, root_tx_id),
        user_type=tx.tag(TAG_USER_TYPE),
        origin=RecordOrigin.INDIVIDUAL,
    )


# =============================================================================
# REDUCTION
# =============================================================================

def latest_version(group: Sequence[Note]) -> Note:
    """Newest record of a group; on equal timestamps the first seen wins."""
    return sorted(group, key=lambda n: n.timestamp, reverse=True)[0]


def reconcile_with_report(
    unified_records: Iterable[UnifiedRecord],
    individual_records: Iterable[LedgerTransaction],
    project: Optional[str] = None,
    gateway_url: str = DEFAULT_GATEWAY_URL
) -> Tuple[List[Note], ReconciliationReport]:
    """
    Reconcile both record families and report what happened to every candidate.

    When `project` is given, candidates from other projects are ignored.
    """
    report = ReconciliationReport()
    unified_groups: Dict[str, List[Note]] = {}
    individual_groups: Dict[str, List[Note]] = {}
    order: Dict[str, None] = {}

    for record in unified_records:
        candidates, malformed = parse_unified_record(record, project, gateway_url)
        report.malformed.extend(malformed)
        for note in candidates:
            report.unified_candidates += 1
            unified_groups.setdefault(note.root_tx_id, []).append(note)
            order.setdefault(note.root_tx_id)

    for tx in individual_records:
        note = parse_individual_record(tx, gateway_url)
        if project is not None and note.project != project:
            continue
        if not note.subject_handle:
            report.malformed.append(MalformedEntry(tx.tx_id, 'transaction has no subject handle'))
            continue
        report.individual_candidates += 1
        individual_groups.setdefault(note.root_tx_id, []).append(note)
        order.setdefault(note.root_tx_id)

    visible: List[Note] = []
    for root_tx_id in order:
        if root_tx_id in unified_groups:
            group = unified_groups[root_tx_id]
            report.shadowed += len(individual_groups.get(root_tx_id, ()))
        else:
            group = individual_groups[root_tx_id]

        authoritative = latest_version(group)
        if authoritative.is_removed:
            report.tombstoned += 1
            continue
        visible.append(authoritative)

    report.groups = len(order)
    report.emitted = len(visible)
    visible.sort(key=lambda n: n.timestamp, reverse=True)

    if report.malformed:
        logger.warning(
            "Skipped %d malformed entries", len(report.malformed),
            extra={'project': project}
        )
    return visible, report


def reconcile(
    unified_records: Iterable[UnifiedRecord],
    individual_records: Iterable[LedgerTransaction],
    project: Optional[str] = None,
    gateway_url: str = DEFAULT_GATEWAY_URL
) -> List[Note]:
    """Visible notes, newest first."""
    notes, _ = reconcile_with_report(unified_records, individual_records, project, gateway_url)
    return notes


def filter_notes(
    notes: Iterable[Note],
    author_name: Optional[str] = None,
    user_type: Optional[str] = None,
    icon_url: Optional[str] = None
) -> List[Note]:
    """Filters used by the presentation layer; None means 'all'."""
    result = []
    for note in notes:
        if author_name is not None and note.author_name != author_name:
            continue
        if user_type is not None and note.user_type != user_type:
            continue
        if icon_url is not None and note.icon_url != icon_url:
            continue
        result.append(note)
    return result
