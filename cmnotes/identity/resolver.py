"""
CM Identity Resolution
======================

Maps every display name a CM has used onto one stable handle.

INVARIANT: The normalized handle is the only stable identity key.
Display names are mutable and many-to-one onto handles.

The resolver is an explicit object owned by the caller and rebuilt
once per project load from permission grants plus observed notes.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Union
import logging

from ..contracts.base import Note, normalize_handle
from ..contracts.records import PermissionGrant


logger = logging.getLogger(__name__)


@dataclass
class CMIdentity:
    """
    One CM (or dApp) identity keyed by normalized handle.

    `historical_names` holds every name other than `current_name`
    seen on a note for this handle.
    """
    handle: str
    current_name: str
    historical_names: Set[str] = field(default_factory=set)
    is_dapp: bool = False
    from_grant: bool = False

    @property
    def all_names(self) -> List[str]:
        return [self.current_name] + sorted(self.historical_names)


class CMIdentityResolver:
    """
    Resolves CM names and handles for one project load.

    GUARANTEES:
    ===========
    1. Permission grants seed identities and fix `current_name`
    2. Notes only add historical names, or create identities for
       handles that have no grant (legacy data)
    3. dApp classification is applied here, never read from raw data
    """

    def __init__(
        self,
        dapp_handles: Iterable[str] = (),
        log: Optional[logging.Logger] = None
    ):
        self._dapp_handles: FrozenSet[str] = frozenset(normalize_handle(h) for h in dapp_handles)
        self._identities: Dict[str, CMIdentity] = {}
        self._name_to_handle: Dict[str, str] = {}
        self._log = log or logger

    @classmethod
    def initialize(
        cls,
        permission_grants: Mapping[str, Union[str, PermissionGrant]],
        notes: Iterable[Note],
        dapp_handles: Iterable[str] = (),
        log: Optional[logging.Logger] = None
    ) -> 'CMIdentityResolver':
        """Build a resolver from `name -> handle` grants and observed notes."""
        resolver = cls(dapp_handles=dapp_handles, log=log)
        for name, grant in permission_grants.items():
            handle = grant.handle if isinstance(grant, PermissionGrant) else grant
            resolver._seed(name, handle)
        for note in notes:
            resolver._fold(note.author_name, note.author_handle)
        resolver._log.debug(
            "Resolved %d identities from %d names",
            len(resolver._identities), len(resolver._name_to_handle)
        )
        return resolver

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    def _seed(self, name: str, handle: str):
        normalized = normalize_handle(handle)
        if not name or not normalized:
            return
        self._identities[normalized] = CMIdentity(
            handle=normalized,
            current_name=name,
            is_dapp=normalized in self._dapp_handles,
            from_grant=True
        )
        self._name_to_handle[name] = normalized

    def _fold(self, name: str, handle: Optional[str]):
        normalized = normalize_handle(handle)
        if not normalized:
            if name and name not in self._name_to_handle:
                self._log.warning("No handle found for CM %r", name)
            return

        identity = self._identities.get(normalized)
        if identity is None:
            if not name:
                return
            self._identities[normalized] = CMIdentity(
                handle=normalized,
                current_name=name,
                is_dapp=normalized in self._dapp_handles
            )
            self._name_to_handle.setdefault(name, normalized)
        elif name and name != identity.current_name:
            identity.historical_names.add(name)
            self._name_to_handle.setdefault(name, normalized)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def handle_for_name(self, name: str) -> Optional[str]:
        """Handle for any current or historical CM name."""
        return self._name_to_handle.get(name)

    def current_name_for_handle(self, handle: str) -> Optional[str]:
        identity = self._identities.get(normalize_handle(handle))
        return identity.current_name if identity else None

    def all_names_for_handle(self, handle: str) -> List[str]:
        identity = self._identities.get(normalize_handle(handle))
        return identity.all_names if identity else []

    def is_cm(self, handle: str) -> bool:
        return normalize_handle(handle) in self._identities

    def is_dapp(self, handle: str) -> bool:
        normalized = normalize_handle(handle)
        identity = self._identities.get(normalized)
        if identity is not None:
            return identity.is_dapp
        return normalized in self._dapp_handles

    def identity(self, handle: str) -> Optional[CMIdentity]:
        return self._identities.get(normalize_handle(handle))

    def identities(self) -> List[CMIdentity]:
        return list(self._identities.values())

    def resolve_author(self, note: Note) -> Optional[str]:
        """Handle of a note's author: its own handle, else lookup by name."""
        return note.author_handle or self.handle_for_name(note.author_name)

    # =========================================================================
    # NOTE REWRITING
    # =========================================================================

    def enrich_notes(self, notes: Iterable[Note]) -> List[Note]:
        """Fill in missing author handles from the name index."""
        enriched = []
        for note in notes:
            if not note.author_handle:
                handle = self.handle_for_name(note.author_name)
                if handle:
                    note = note.with_author(note.author_name, handle)
            enriched.append(note)
        return enriched

    def canonicalize_notes(self, notes: Iterable[Note]) -> List[Note]:
        """Rewrite author names to the handle's current name."""
        result = []
        for note in notes:
            handle = self.resolve_author(note)
            current = self.current_name_for_handle(handle) if handle else None
            if current and current != note.author_name:
                note = note.with_author(current, handle)
            result.append(note)
        return result
