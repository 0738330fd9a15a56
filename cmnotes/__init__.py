"""
CM Notes Engine

Reconstructs the current, de-duplicated set of community-manager notes
for a project from an append-only ledger, resolves CM identities across
renames, and serves per-CM and per-user views from a TTL-bounded cache.

LAYER STRUCTURE:
================

1. INGESTION LAYER (ingestion/)
   - Responsibility: GraphQL tag queries and mutable-blob fetches
   - Allowed inputs: Project names, transaction ids
   - Outputs: LedgerTransaction, UnifiedRecord, FetchReport
   - MUST NOT: Decide which version of a note is current

2. NORMALIZATION LAYER (normalization/)
   - Responsibility: Parse records into Notes, group by root, pick the latest
   - Allowed inputs: Raw records from the ingestion layer
   - Outputs: Visible Notes, ReconciliationReport
   - MUST NOT: Perform I/O

3. IDENTITY LAYER (identity/)
   - Responsibility: Handle <-> display-name mapping across renames
   - Allowed inputs: Permission grants, reconciled Notes
   - Outputs: CMIdentityResolver (one per project load)
   - MUST NOT: Live in module-level state

4. QUERY LAYER (query/)
   - Responsibility: CM, dApp and user aggregation views
   - Allowed inputs: Notes + resolver
   - Outputs: CMInfo, UserInfo, ProjectView
   - MUST NOT: Mutate notes or caches

5. STORAGE LAYER (storage/)
   - Responsibility: Per-project snapshots, TTL, background refresh
   - Allowed inputs: Complete note sets
   - Outputs: CacheRead, CacheSnapshot
   - MUST NOT: Publish partial refresh results

6. OBSERVABILITY (observability/)
   - Responsibility: Logging setup
   - MUST NOT: Influence control flow

CONSTRAINTS ENFORCED:
=====================
- Immutability-first: records and snapshots are frozen
- Deterministic: identical record sets always reconcile to identical output
- Latest write wins per root transaction; removals are tombstones
- Stale-but-present data beats no data
"""

from .config import LedgerConfig
from .engine import NoteEngine

__all__ = ['LedgerConfig', 'NoteEngine']
