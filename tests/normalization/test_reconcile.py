"""
Reconciliation Tests

INVARIANTS:
===========
- Latest write wins within a root_tx_id group
- A removed authoritative record hides the whole group
- Unified candidates shadow individual candidates for the same root
- Reconciliation is pure and order-independent for distinct timestamps
"""

import itertools
import random

import pytest
from hypothesis import given, settings, strategies as st
from hypothesis.strategies import composite

from cmnotes.contracts.base import NoteStatus, RecordOrigin
from cmnotes.contracts.records import TAG_CM_HANDLE, UnifiedRecord
from cmnotes.normalization.reconcile import (
    filter_notes, latest_version, parse_individual_record, parse_unified_record,
    reconcile, reconcile_with_report,
)
from tests.fixtures import (
    individual_tx, make_note, unified_blob, unified_record, unified_tx,
)


# =============================================================================
# STRATEGIES (Generators)
# =============================================================================

@composite
def individual_histories(draw):
    """Individual transactions over a few roots, all timestamps distinct."""
    count = draw(st.integers(min_value=0, max_value=25))
    timestamps = draw(st.lists(
        st.integers(min_value=1, max_value=10 ** 9),
        min_size=count, max_size=count, unique=True
    ))
    txs = []
    for i, ts in enumerate(timestamps):
        txs.append(individual_tx(
            f'tx{i}', ts,
            root=draw(st.sampled_from(['r1', 'r2', 'r3', 'r4'])),
            subject=draw(st.sampled_from(['alice_tw', 'carol_tw', 'dave_tw'])),
            status=draw(st.sampled_from(['added', 'edited', 'removed'])),
            content=f'content {i}',
        ))
    return txs


# =============================================================================
# LATEST-WRITE-WINS
# =============================================================================

class TestLatestWriteWins:

    @pytest.mark.parametrize('order', list(itertools.permutations(range(3))))
    def test_newest_version_is_authoritative(self, order):
        versions = [
            individual_tx('a', 10, root='r1', status='added', content='v1'),
            individual_tx('b', 20, root='r1', status='edited', content='v2'),
            individual_tx('c', 15, root='r1', status='removed', content=None),
        ]
        txs = [versions[i] for i in order]

        notes = reconcile([], txs)

        assert len(notes) == 1
        assert notes[0].timestamp == 20
        assert notes[0].status is NoteStatus.EDITED
        assert notes[0].content == 'v2'

    def test_removed_latest_version_hides_group(self):
        txs = [
            individual_tx('a', 10, root='r1', status='added'),
            individual_tx('b', 30, root='r1', status='removed', content=None),
        ]

        notes, report = reconcile_with_report([], txs)

        assert notes == []
        assert report.tombstoned == 1
        assert report.groups == 1

    def test_re_added_after_removal_is_visible(self):
        txs = [
            individual_tx('a', 10, root='r1', status='added'),
            individual_tx('b', 20, root='r1', status='removed', content=None),
            individual_tx('c', 30, root='r1', status='added', content='back'),
        ]

        notes = reconcile([], txs)

        assert [n.content for n in notes] == ['back']

    def test_equal_timestamps_first_seen_wins(self):
        group = [
            make_note('first', 50, root='r1', content='first'),
            make_note('second', 50, root='r1', content='second'),
        ]
        assert latest_version(group).content == 'first'

    def test_output_is_newest_first(self):
        txs = [
            individual_tx('a', 5, root='r1'),
            individual_tx('b', 50, root='r2'),
            individual_tx('c', 20, root='r3'),
        ]
        assert [n.timestamp for n in reconcile([], txs)] == [50, 20, 5]


# =============================================================================
# CROSS-SOURCE PRECEDENCE
# =============================================================================

class TestCrossSourcePrecedence:

    def _blob(self, timestamp, status='added', content='hi'):
        return unified_blob('demo', {
            'Bob': {
                'cmTwitterHandle': 'bob_tw',
                'notes': [{
                    'id': 'n1', 'rootTxId': 'r1', 'twitterHandle': 'carol_tw',
                    'content': content, 'status': status, 'timestamp': timestamp,
                }],
            },
        })

    def test_unified_shadows_older_individual_tombstone(self):
        unified = [unified_record('u1', self._blob(100))]
        individual = [individual_tx('i1', 90, root='r1', status='removed', content=None)]

        notes, report = reconcile_with_report(unified, individual, project='demo')

        assert len(notes) == 1
        note = notes[0]
        assert note.author_name == 'Bob'
        assert note.subject_handle == 'carol_tw'
        assert note.content == 'hi'
        assert note.timestamp == 100
        assert note.origin is RecordOrigin.UNIFIED
        assert report.shadowed == 1

    def test_unified_shadows_newer_individual_record(self):
        unified = [unified_record('u1', self._blob(100))]
        individual = [individual_tx('i1', 500, root='r1', status='edited', content='later')]

        notes = reconcile(unified, individual, project='demo')

        assert [n.content for n in notes] == ['hi']

    def test_unified_tombstone_hides_root(self):
        unified = [unified_record('u1', self._blob(100, status='removed'))]
        individual = [individual_tx('i1', 50, root='r1', status='added')]

        assert reconcile(unified, individual, project='demo') == []

    def test_individual_only_roots_still_reconcile(self):
        unified = [unified_record('u1', self._blob(100))]
        individual = [individual_tx('i1', 50, root='r9', subject='dave_tw')]

        notes = reconcile(unified, individual, project='demo')

        assert {n.root_tx_id for n in notes} == {'r1', 'r9'}


# =============================================================================
# PARSING
# =============================================================================

class TestParsing:

    def test_unified_entry_without_root_uses_blob_tx(self):
        blob = unified_blob('demo', {'Bob': {'notes': [
            {'twitterHandle': '@Carol_TW', 'content': 'x', 'timestamp': 1700000000000},
        ]}})

        notes, malformed = parse_unified_record(unified_record('u7', blob), project='demo')

        assert malformed == []
        assert notes[0].root_tx_id == 'u7'
        assert notes[0].note_id == 'u7:Bob:0'
        assert notes[0].subject_handle == 'carol_tw'
        assert notes[0].timestamp == 1700000000
        assert notes[0].source_url.endswith('/mutable/u7')

    def test_unified_author_handle_falls_back_to_tag(self):
        tx = unified_tx('u1').with_tag(TAG_CM_HANDLE, '@Bob_TW')
        blob = unified_blob('demo', {'Bob': {'notes': [
            {'twitterHandle': 'carol_tw', 'timestamp': 5},
        ]}})

        notes, _ = parse_unified_record(UnifiedRecord(transaction=tx, blob=blob))

        assert notes[0].author_handle == 'bob_tw'

    def test_malformed_entries_are_reported_not_raised(self):
        blob = unified_blob('demo', {
            'Bob': {'notes': ['not-an-object', {'content': 'no subject'}]},
            'Eve': {'notes': 'not-a-list'},
        })

        notes, report = reconcile_with_report([unified_record('u1', blob)], [])

        assert notes == []
        assert len(report.malformed) == 3

    def test_blob_without_projects_is_malformed(self):
        notes, malformed = parse_unified_record(unified_record('u1', {'unexpected': True}))
        assert notes == []
        assert malformed[0].tx_id == 'u1'

    def test_other_projects_are_ignored(self):
        blob = {'projects': {
            'demo': {'cms': {'Bob': {'notes': [{'twitterHandle': 'a', 'timestamp': 1}]}}},
            'other': {'cms': {'Bob': {'notes': [{'twitterHandle': 'b', 'timestamp': 2}]}}},
        }}
        individual = [individual_tx('i1', 3, project='other', subject='c')]

        notes = reconcile([unified_record('u1', blob)], individual, project='demo')

        assert [n.subject_handle for n in notes] == ['a']

    def test_individual_record_root_defaults_to_own_id(self):
        note = parse_individual_record(individual_tx('solo', 7, cm_handle='@Bob_TW'))
        assert note.root_tx_id == 'solo'
        assert note.author_handle == 'bob_tw'

    def test_unknown_status_reads_as_added(self):
        notes = reconcile([], [individual_tx('a', 1, status='archived')])
        assert notes[0].status is NoteStatus.ADDED


# =============================================================================
# FILTERS
# =============================================================================

def test_filter_notes_combines_criteria():
    txs = [
        individual_tx('a', 3, root='r1', cm='Bob', user_type='builder'),
        individual_tx('b', 2, root='r2', cm='Bob', user_type='artist'),
        individual_tx('c', 1, root='r3', cm='Alice', user_type='builder'),
    ]
    notes = reconcile([], txs)

    assert [n.note_id for n in filter_notes(notes, author_name='Bob')] == ['a', 'b']
    assert [n.note_id for n in filter_notes(notes, user_type='builder')] == ['a', 'c']
    assert [n.note_id for n in filter_notes(notes, author_name='Bob', user_type='builder')] == ['a']
    assert filter_notes(notes) == notes


# =============================================================================
# PROPERTIES
# =============================================================================

@settings(max_examples=75)
@given(individual_histories())
def test_reconcile_is_idempotent(txs):
    assert reconcile([], txs) == reconcile([], txs)


@settings(max_examples=75)
@given(individual_histories(), st.randoms(use_true_random=False))
def test_reconcile_ignores_input_order(txs, rnd):
    shuffled = list(txs)
    rnd.shuffle(shuffled)
    assert reconcile([], shuffled) == reconcile([], txs)


@settings(max_examples=75)
@given(individual_histories())
def test_one_live_note_per_root(txs):
    notes = reconcile([], txs)

    roots = [n.root_tx_id for n in notes]
    assert len(roots) == len(set(roots))
    assert not any(n.is_removed for n in notes)
    assert [n.timestamp for n in notes] == sorted((n.timestamp for n in notes), reverse=True)

    for note in notes:
        group = [tx for tx in txs if tx.tag('Root-TX') == note.root_tx_id]
        assert note.timestamp == max(tx.timestamp for tx in group)


@pytest.mark.parametrize('seed', [1, 2, 3])
def test_reconcile_does_not_mutate_inputs(seed):
    txs = [individual_tx(f'tx{i}', i + 1, root=f'r{i % 2}') for i in range(6)]
    random.Random(seed).shuffle(txs)
    before = list(txs)

    reconcile([], txs)

    assert txs == before
