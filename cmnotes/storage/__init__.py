"""
Snapshot Storage Layer

RESPONSIBILITY: TTL-bounded per-project snapshot cache and its persistence
ALLOWED INPUTS: Complete reconciled note sets
OUTPUTS: CacheRead, CacheSnapshot

WHAT THIS LAYER MUST NOT DO:
============================
- Reconcile or interpret notes
- Mutate a published snapshot (replace only)
"""

from .backends import CacheBackend, InMemoryCacheBackend, SqliteCacheBackend
from .cache import (
    SnapshotCache, StalenessMonitor, CacheSnapshot, CacheRead,
    CACHE_KEY_PREFIX, LAST_PAGE_LOAD_KEY, DEFAULT_TTL_SECONDS,
)

__all__ = [
    'CacheBackend', 'InMemoryCacheBackend', 'SqliteCacheBackend',
    'SnapshotCache', 'StalenessMonitor', 'CacheSnapshot', 'CacheRead',
    'CACHE_KEY_PREFIX', 'LAST_PAGE_LOAD_KEY', 'DEFAULT_TTL_SECONDS',
]
