"""
Ledger Fixtures

Explicit record builders and an in-process fake of the ledger's
GraphQL and gateway endpoints.

RULES:
======
1. Every record is built explicitly; no hidden randomness
2. The fake ledger answers by App-Name filter, like the real one
3. Failing blob addresses are declared up front
"""

from __future__ import annotations
from typing import Dict, List, Optional, Set
import json

import httpx

from cmnotes.config import LedgerConfig
from cmnotes.contracts.base import Note, NoteStatus, RecordOrigin
from cmnotes.contracts.records import (
    APP_INDIVIDUAL, APP_NAME_TAG, APP_PERMISSION, APP_UNIFIED, ROOT_TX_TAG,
    TAG_CM, TAG_CM_HANDLE, TAG_CONTENT, TAG_ICON_NAME, TAG_PROJECT, TAG_STATUS,
    TAG_SUBJECT_HANDLE, TAG_TYPE, TAG_USER_TYPE,
    LedgerTransaction, UnifiedRecord,
)


# =============================================================================
# RECORD BUILDERS
# =============================================================================

def individual_tx(
    tx_id: str,
    timestamp: int,
    root: Optional[str] = None,
    project: str = 'demo',
    subject: str = 'carol_tw',
    cm: str = 'Bob',
    cm_handle: Optional[str] = None,
    status: str = 'added',
    content: Optional[str] = 'note',
    user_type: Optional[str] = None
) -> LedgerTransaction:
    """An individual-namespace note transaction."""
    tags = [
        (APP_NAME_TAG, APP_INDIVIDUAL),
        (TAG_PROJECT, project),
        (TAG_SUBJECT_HANDLE, subject),
        (TAG_CM, cm),
        (TAG_STATUS, status),
    ]
    if root:
        tags.append((ROOT_TX_TAG, root))
    if cm_handle:
        tags.append((TAG_CM_HANDLE, cm_handle))
    if content is not None:
        tags.append((TAG_CONTENT, content))
    if user_type:
        tags.append((TAG_USER_TYPE, user_type))
    return LedgerTransaction(tx_id=tx_id, tags=tuple(tags), timestamp=timestamp)


def permission_tx(tx_id: str, cm: str, handle: str, project: str = 'demo', timestamp: int = 1):
    return LedgerTransaction(
        tx_id=tx_id,
        tags=(
            (APP_NAME_TAG, APP_PERMISSION),
            (TAG_PROJECT, project),
            (TAG_CM, cm),
            (TAG_CM_HANDLE, handle),
        ),
        timestamp=timestamp
    )


def icon_tx(tx_id: str, name: Optional[str] = None, project: str = 'demo') -> LedgerTransaction:
    tags = [
        (APP_NAME_TAG, APP_INDIVIDUAL),
        (TAG_PROJECT, project),
        (TAG_TYPE, 'icon'),
    ]
    if name:
        tags.append((TAG_ICON_NAME, name))
    return LedgerTransaction(tx_id=tx_id, tags=tuple(tags), timestamp=1)


def unified_tx(tx_id: str, root: Optional[str] = None, timestamp: int = 1) -> LedgerTransaction:
    tags = [(APP_NAME_TAG, APP_UNIFIED)]
    if root:
        tags.append((ROOT_TX_TAG, root))
    return LedgerTransaction(tx_id=tx_id, tags=tuple(tags), timestamp=timestamp)


def unified_blob(project: str, cms: Dict[str, dict]) -> dict:
    """`{"projects": {project: {"cms": cms}}}`"""
    return {'projects': {project: {'cms': cms}}}


def unified_record(tx_id: str, blob: dict) -> UnifiedRecord:
    return UnifiedRecord(transaction=unified_tx(tx_id), blob=blob)


def make_note(
    note_id: str,
    timestamp: int,
    author: str = 'Bob',
    author_handle: Optional[str] = None,
    subject: str = 'carol_tw',
    project: str = 'demo',
    content: str = 'note',
    status: NoteStatus = NoteStatus.ADDED,
    root: Optional[str] = None
) -> Note:
    return Note(
        note_id=note_id,
        root_tx_id=root or note_id,
        project=project,
        subject_handle=subject,
        author_name=author,
        content=content,
        status=status,
        timestamp=timestamp,
        author_handle=author_handle,
        origin=RecordOrigin.INDIVIDUAL,
    )


def ledger_config(**overrides) -> LedgerConfig:
    values = {'batch_delay_seconds': 0.0}
    values.update(overrides)
    return LedgerConfig(**values)


# =============================================================================
# FAKE LEDGER
# =============================================================================

def _node(tx: LedgerTransaction) -> dict:
    return {
        'id': tx.tx_id,
        'tags': [{'name': n, 'value': v} for n, v in tx.tags],
        'timestamp': tx.timestamp,
    }


class FakeLedger:
    """
    In-process stand-in for the GraphQL endpoint and the gateway.

    Queries are routed on the rendered App-Name filter. Pagination
    follows `page_size` on the `first:` argument of each query.
    """

    def __init__(self):
        self.individual: List[LedgerTransaction] = []
        self.unified: List[LedgerTransaction] = []
        self.permissions: List[LedgerTransaction] = []
        self.icons: List[LedgerTransaction] = []
        self.blobs: Dict[str, object] = {}
        self.failing: Set[str] = set()
        self.query_failure: Optional[int] = None
        self.queries: List[str] = []
        self.gets: List[str] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    def _select(self, query: str) -> List[LedgerTransaction]:
        if f'values: ["{APP_UNIFIED}"]' in query:
            return self.unified
        if f'values: ["{APP_PERMISSION}"]' in query:
            return self.permissions
        if 'values: ["icon"]' in query:
            return self.icons
        if f'values: ["{APP_INDIVIDUAL}", "{APP_PERMISSION}"]' in query:
            return self.individual + self.permissions
        return self.individual

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == 'POST':
            return self._graphql(request)
        return self._gateway(request)

    def _graphql(self, request: httpx.Request) -> httpx.Response:
        query = json.loads(request.content)['query']
        self.queries.append(query)
        if self.query_failure is not None:
            return httpx.Response(self.query_failure, text='unavailable')

        records = self._select(query)
        first = int(query.split('first: ')[1].split(',')[0].split('\n')[0])
        start = 0
        if 'after: ' in query:
            after = json.loads(query.split('after: ')[1].split(',')[0])
            start = [tx.tx_id for tx in records].index(after) + 1
        page = records[start:start + first]
        return httpx.Response(200, json={'data': {'transactions': {
            'pageInfo': {'hasNextPage': start + first < len(records)},
            'edges': [{'cursor': tx.tx_id, 'node': _node(tx)} for tx in page],
        }}})

    def _gateway(self, request: httpx.Request) -> httpx.Response:
        tx_id = request.url.path.rsplit('/', 1)[-1]
        self.gets.append(tx_id)
        if tx_id in self.failing:
            return httpx.Response(500, text='gateway error')
        if tx_id not in self.blobs:
            return httpx.Response(404, text='not found')
        return httpx.Response(200, json=self.blobs[tx_id])


# =============================================================================
# DEMO SCENARIO
# =============================================================================

def demo_ledger() -> FakeLedger:
    """
    Project `demo`:
    - Bob is granted handle bob_tw
    - A unified blob holds Bob's note "hi" about carol_tw at ts 100
    - An individual tombstone at ts 90 shares the same rootTxId
    """
    ledger = FakeLedger()
    ledger.permissions.append(permission_tx('perm-bob', 'Bob', 'bob_tw'))
    ledger.unified.append(unified_tx('u1'))
    ledger.blobs['u1'] = unified_blob('demo', {
        'Bob': {
            'cmTwitterHandle': 'bob_tw',
            'notes': [{
                'id': 'n1',
                'rootTxId': 'r1',
                'twitterHandle': 'carol_tw',
                'content': 'hi',
                'status': 'added',
                'timestamp': 100,
            }],
        },
    })
    ledger.individual.append(individual_tx(
        'i1', 90, root='r1', subject='carol_tw', cm='Bob', status='removed', content=None
    ))
    return ledger
