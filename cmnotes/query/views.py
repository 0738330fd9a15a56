"""
Aggregation Views

Read-only projections over reconciled Notes: per-CM, per-dApp and
per-user summaries for the presentation layer.

Views are derived, never persisted, and never mutate their inputs.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from ..contracts.base import Note
from ..identity.resolver import CMIdentityResolver


RECENT_LIMIT = 10


@dataclass(frozen=True)
class CMInfo:
    """Summary of one CM or dApp identity."""
    name: str
    handle: Optional[str]
    note_count: int
    recent_users: Tuple[str, ...] = ()
    recent_notes: Tuple[Note, ...] = ()
    latest_timestamp: int = 0
    is_dapp: bool = False
    all_names: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'handle': self.handle,
            'note_count': self.note_count,
            'recent_users': list(self.recent_users),
            'recent_notes': [n.to_dict() for n in self.recent_notes],
            'latest_timestamp': self.latest_timestamp,
            'is_dapp': self.is_dapp,
            'all_names': list(self.all_names),
        }


@dataclass(frozen=True)
class UserInfo:
    """Summary of one note subject."""
    handle: str
    display_name: str
    note_count: int
    notes: Tuple[Note, ...] = ()
    recent_notes: Tuple[Note, ...] = ()
    latest_timestamp: int = 0
    is_cm: bool = False

    def to_dict(self) -> dict:
        return {
            'handle': self.handle,
            'display_name': self.display_name,
            'note_count': self.note_count,
            'notes': [n.to_dict() for n in self.notes],
            'recent_notes': [n.to_dict() for n in self.recent_notes],
            'latest_timestamp': self.latest_timestamp,
            'is_cm': self.is_cm,
        }


def _newest_first(notes: Iterable[Note]) -> List[Note]:
    return sorted(notes, key=lambda n: n.timestamp, reverse=True)


def _recent_subjects(notes: List[Note], limit: int) -> Tuple[str, ...]:
    """Distinct subject handles by most recent note; `notes` is newest first."""
    seen: Dict[str, None] = {}
    for note in notes:
        if note.subject_handle not in seen:
            seen[note.subject_handle] = None
            if len(seen) == limit:
                break
    return tuple(seen)


# =============================================================================
# CM / DAPP VIEWS
# =============================================================================

def _build_author_infos(
    notes: Iterable[Note],
    resolver: CMIdentityResolver,
    recent_limit: int
) -> List[CMInfo]:
    buckets: Dict[str, List[Note]] = {}
    handles: Dict[str, Optional[str]] = {}
    names: Dict[str, str] = {}

    for note in notes:
        handle = resolver.resolve_author(note)
        key = handle or f'name:{note.author_name}'
        buckets.setdefault(key, []).append(note)
        handles[key] = handle
        names.setdefault(key, note.author_name)

    # Registered identities stay visible with zero notes.
    for identity in resolver.identities():
        buckets.setdefault(identity.handle, [])
        handles[identity.handle] = identity.handle

    infos = []
    for key, bucket in buckets.items():
        handle = handles[key]
        ordered = _newest_first(bucket)
        name = (resolver.current_name_for_handle(handle) if handle else None) or names.get(key, key)
        infos.append(CMInfo(
            name=name,
            handle=handle,
            note_count=len(ordered),
            recent_users=_recent_subjects(ordered, recent_limit),
            recent_notes=tuple(ordered[:recent_limit]),
            latest_timestamp=ordered[0].timestamp if ordered else 0,
            is_dapp=resolver.is_dapp(handle) if handle else False,
            all_names=tuple(resolver.all_names_for_handle(handle)) if handle else (name,),
        ))

    infos.sort(key=lambda info: (-info.note_count, info.name.lower(), info.name))
    return infos


def build_cm_infos(
    notes: Iterable[Note],
    resolver: CMIdentityResolver,
    recent_limit: int = RECENT_LIMIT
) -> List[CMInfo]:
    """
    One CMInfo per author handle, dApps excluded.

    note_count sums every historical name mapped onto the handle.
    Sorted by note_count descending, then name; zero-note CMs last.
    """
    return [i for i in _build_author_infos(notes, resolver, recent_limit) if not i.is_dapp]


def build_dapp_infos(
    notes: Iterable[Note],
    resolver: CMIdentityResolver,
    recent_limit: int = RECENT_LIMIT
) -> List[CMInfo]:
    """Same projection as build_cm_infos, restricted to dApp handles."""
    return [i for i in _build_author_infos(notes, resolver, recent_limit) if i.is_dapp]


# =============================================================================
# USER VIEWS
# =============================================================================

def build_user_infos(
    notes: Iterable[Note],
    resolver: CMIdentityResolver,
    recent_limit: int = RECENT_LIMIT
) -> List[UserInfo]:
    """
    One UserInfo per subject handle, dApp subjects excluded.

    When the subject is itself a CM, its label is the CM's current name.
    Sorted by most recent note.
    """
    buckets: Dict[str, List[Note]] = {}
    for note in notes:
        if resolver.is_dapp(note.subject_handle):
            continue
        buckets.setdefault(note.subject_handle, []).append(note)

    infos = []
    for handle, bucket in buckets.items():
        ordered = _newest_first(bucket)
        is_cm = resolver.is_cm(handle)
        label = resolver.current_name_for_handle(handle) if is_cm else None
        infos.append(UserInfo(
            handle=handle,
            display_name=label or handle,
            note_count=len(ordered),
            notes=tuple(ordered),
            recent_notes=tuple(ordered[:recent_limit]),
            latest_timestamp=ordered[0].timestamp,
            is_cm=is_cm,
        ))

    infos.sort(key=lambda info: (-info.latest_timestamp, info.handle))
    return infos


def recent_user_infos(users: Iterable[UserInfo], limit: int = 20) -> List[UserInfo]:
    """Most recently noted users, for the activity strip."""
    return sorted(users, key=lambda u: u.latest_timestamp, reverse=True)[:limit]


# =============================================================================
# PROJECT VIEW
# =============================================================================

@dataclass(frozen=True)
class ProjectView:
    """Everything the presentation layer needs for one project."""
    project: str
    notes: Tuple[Note, ...]
    cms: Tuple[CMInfo, ...]
    dapps: Tuple[CMInfo, ...]
    users: Tuple[UserInfo, ...]
    recent_users: Tuple[UserInfo, ...] = field(default_factory=tuple)
    is_stale: bool = False

    def to_dict(self) -> dict:
        return {
            'project': self.project,
            'notes': [n.to_dict() for n in self.notes],
            'cms': [c.to_dict() for c in self.cms],
            'dapps': [d.to_dict() for d in self.dapps],
            'users': [u.to_dict() for u in self.users],
            'recent_users': [u.handle for u in self.recent_users],
            'is_stale': self.is_stale,
        }


def build_project_view(
    project: str,
    notes: List[Note],
    resolver: CMIdentityResolver,
    recent_limit: int = RECENT_LIMIT,
    strip_limit: int = 20,
    is_stale: bool = False
) -> ProjectView:
    infos = _build_author_infos(notes, resolver, recent_limit)
    users = build_user_infos(notes, resolver, recent_limit)
    return ProjectView(
        project=project,
        notes=tuple(notes),
        cms=tuple(i for i in infos if not i.is_dapp),
        dapps=tuple(i for i in infos if i.is_dapp),
        users=tuple(users),
        recent_users=tuple(recent_user_infos(users, strip_limit)),
        is_stale=is_stale,
    )
