"""
Engine Integration Tests

End-to-end runs of NoteEngine against the in-process fake ledger:
ingestion -> reconciliation -> identity -> views -> cache.
"""

import pytest

from cmnotes.contracts.base import NetworkFailure
from cmnotes.engine import NoteEngine
from cmnotes.ingestion.fetcher import LedgerFetcher
from cmnotes.ingestion.service import LedgerIngestionService
from cmnotes.storage.backends import InMemoryCacheBackend
from cmnotes.temporal.clock import ManualClock
from tests.fixtures import (
    FakeLedger, demo_ledger, icon_tx, individual_tx, ledger_config, permission_tx,
)


def _engine(client, clock=None, backend=None, **overrides):
    config = ledger_config(**overrides)
    ingestion = LedgerIngestionService(LedgerFetcher(config, client=client), config)
    return NoteEngine(
        config,
        ingestion=ingestion,
        cache_backend=backend or InMemoryCacheBackend(),
        clock=clock or ManualClock(1000.0)
    )


class TestDemoScenario:

    @pytest.mark.asyncio
    async def test_demo_project_yields_one_note(self):
        ledger = demo_ledger()

        async with ledger.client() as client:
            engine = _engine(client)
            notes = await engine.query_notes_by_project('demo')

        assert len(notes) == 1
        note = notes[0]
        assert note.author_name == 'Bob'
        assert note.subject_handle == 'carol_tw'
        assert note.content == 'hi'
        assert note.timestamp == 100

    @pytest.mark.asyncio
    async def test_demo_project_view(self):
        ledger = demo_ledger()

        async with ledger.client() as client:
            engine = _engine(client)
            view = await engine.load_project('demo')
            await engine.close()

        assert [(c.name, c.handle, c.note_count) for c in view.cms] == [('Bob', 'bob_tw', 1)]
        assert [u.handle for u in view.users] == ['carol_tw']
        assert not view.is_stale

    @pytest.mark.asyncio
    async def test_report_counts_shadowed_tombstone(self):
        ledger = demo_ledger()

        async with ledger.client() as client:
            _, report, records = await _engine(client).query_notes_with_report('demo')

        assert report.shadowed == 1
        assert report.emitted == 1
        assert not records.is_partial


class TestDegradation:

    @pytest.mark.asyncio
    async def test_query_failure_propagates(self):
        ledger = FakeLedger()
        ledger.query_failure = 502

        async with ledger.client() as client:
            with pytest.raises(NetworkFailure):
                await _engine(client).query_notes_by_project('demo')

    @pytest.mark.asyncio
    async def test_load_notes_falls_back_to_expired_snapshot(self):
        ledger = demo_ledger()
        clock = ManualClock(1000.0)

        async with ledger.client() as client:
            engine = _engine(client, clock=clock)
            first = await engine.load_notes('demo')
            clock.advance(10_000)
            ledger.query_failure = 503
            fallback = await engine.load_notes('demo')

        assert fallback == first
        assert not engine.cache.is_cache_valid('demo')

    @pytest.mark.asyncio
    async def test_load_notes_without_cache_returns_empty(self):
        ledger = FakeLedger()
        ledger.query_failure = 503

        async with ledger.client() as client:
            assert await _engine(client).load_notes('demo') == []

    @pytest.mark.asyncio
    async def test_missing_grants_degrade_to_note_handles(self):
        ledger = FakeLedger()
        ledger.individual = [individual_tx('n1', 10, cm='Bob', cm_handle='bob_tw')]

        async with ledger.client() as client:
            engine = _engine(client)
            view = await engine.load_project('demo')
            await engine.close()

        assert [c.handle for c in view.cms] == ['bob_tw']


class TestCachedReads:

    @pytest.mark.asyncio
    async def test_second_read_is_served_from_cache(self):
        ledger = demo_ledger()

        async with ledger.client() as client:
            engine = _engine(client)
            first, _ = await engine.current_notes('demo')
            queries = len(ledger.queries)
            second, stale = await engine.current_notes('demo')
            await engine.close()

        assert first == second
        assert not stale
        assert len(ledger.queries) == queries

    @pytest.mark.asyncio
    async def test_stale_read_returns_old_notes_and_refreshes(self):
        ledger = FakeLedger()
        ledger.individual = [individual_tx('n1', 10, root='r1', content='v1')]
        clock = ManualClock(1000.0)

        async with ledger.client() as client:
            engine = _engine(client, clock=clock)
            await engine.current_notes('demo')

            ledger.individual.insert(0, individual_tx('n2', 20, root='r1', content='v2'))
            clock.advance(301)
            notes, stale = await engine.current_notes('demo')
            await engine.cache.wait_for_refresh('demo')
            refreshed, _ = await engine.current_notes('demo')
            await engine.close()

        assert stale
        assert [n.content for n in notes] == ['v1']
        assert [n.content for n in refreshed] == ['v2']

    @pytest.mark.asyncio
    async def test_unselected_reads_refresh_every_project(self):
        ledger = FakeLedger()
        ledger.individual = [individual_tx('n1', 10, root='r1', content='v1')]
        clock = ManualClock(1000.0)

        async with ledger.client() as client:
            engine = _engine(client, clock=clock)
            await engine.current_notes('demo', select=False)
            await engine.current_notes('other', select=False)
            clock.advance(301)

            for project in ('demo', 'other', 'demo', 'other'):
                await engine.current_notes(project, select=False)
                await engine.cache.wait_for_refresh(project)
            demo_valid = engine.cache.is_cache_valid('demo')
            other_valid = engine.cache.is_cache_valid('other')
            active = engine.cache.active_project
            await engine.close()

        assert demo_valid
        assert other_valid
        assert active is None


class TestProjectMetadata:

    @pytest.mark.asyncio
    async def test_projects_and_icons(self):
        ledger = FakeLedger()
        ledger.individual = [individual_tx('n1', 1)]
        ledger.permissions = [permission_tx('p1', 'Bob', 'bob_tw', project='alpha')]
        ledger.icons = [icon_tx('ic1', 'Logo')]

        async with ledger.client() as client:
            engine = _engine(client)
            projects = await engine.list_projects()
            icons = await engine.query_project_icons('demo')

        assert projects == ['alpha', 'demo']
        assert [i.name for i in icons] == ['Logo']

    @pytest.mark.asyncio
    async def test_icon_failure_yields_empty_list(self):
        ledger = FakeLedger()
        ledger.query_failure = 500

        async with ledger.client() as client:
            assert await _engine(client).query_project_icons('demo') == []
