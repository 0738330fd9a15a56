"""
Ledger Fetcher

Issues tag-filtered queries against the ledger GraphQL endpoint and
GETs mutable blob addresses.

PRINCIPLES:
===========
1. Returns raw, unvalidated records - no reconciliation here
2. Per-blob failures are first-class FetchFailure records
3. One failing blob never cancels or fails its siblings
4. Only a failure of the overall query propagates to the caller
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
import asyncio
import json
import logging

import httpx

from ..config import LedgerConfig
from ..contracts.base import (
    Error, ErrorCode, LedgerError, NetworkFailure, ParseFailure, normalize_timestamp
)
from ..contracts.records import (
    FetchFailure, FetchReport, LedgerTransaction, UnifiedRecord
)


logger = logging.getLogger(__name__)

TagFilter = Tuple[str, Sequence[str]]


def build_transactions_query(
    tags: Sequence[TagFilter],
    first: int,
    after: Optional[str] = None
) -> str:
    """Render a `transactions` query with inlined tag filters."""
    tag_parts = []
    for name, values in tags:
        rendered_values = ', '.join(json.dumps(v) for v in values)
        tag_parts.append(f'{{ name: {json.dumps(name)}, values: [{rendered_values}] }}')
    after_clause = f', after: {json.dumps(after)}' if after else ''
    return (
        'query {\n'
        '  transactions(\n'
        f'    tags: [{", ".join(tag_parts)}],\n'
        f'    first: {int(first)}{after_clause},\n'
        '    order: DESC\n'
        '  ) {\n'
        '    pageInfo { hasNextPage }\n'
        '    edges { cursor node { id tags { name value } timestamp } }\n'
        '  }\n'
        '}'
    )


class LedgerFetcher:
    """
    Fetches transactions and mutable blobs from the ledger.

    GUARANTEES:
    ===========
    1. Blob fetches run in bounded batches with a delay between batches
    2. Failed blob fetches are reported, logged and never raised
    3. A failing query raises NetworkFailure or ParseFailure
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        log: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self._config = config or LedgerConfig()
        self._client = client
        self._log = log or logger
        self._sleep = sleep

    @property
    def config(self) -> LedgerConfig:
        return self._config

    @asynccontextmanager
    async def _session(self):
        """Yield the injected client, or a short-lived one owned by this call."""
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            headers={'User-Agent': self._config.user_agent},
            follow_redirects=True
        ) as client:
            yield client

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def query_transactions(
        self,
        tags: Sequence[TagFilter],
        first: Optional[int] = None,
        max_pages: Optional[int] = None
    ) -> List[LedgerTransaction]:
        """
        Run a tag-filtered query, following cursors up to `max_pages`.

        Raises:
            NetworkFailure: transport error or non-2xx status
            ParseFailure: body is not a transactions payload
        """
        first = first or self._config.page_size
        max_pages = max_pages or self._config.max_pages
        transactions: List[LedgerTransaction] = []
        after = None

        async with self._session() as client:
            for _ in range(max_pages):
                query = build_transactions_query(tags, first, after)
                payload = await self._post_query(client, query)
                page, has_next = self._parse_transactions(payload)
                transactions.extend(page)
                if not has_next or not page or page[-1].cursor is None:
                    break
                after = page[-1].cursor

        self._log.debug(
            "Fetched %d transactions", len(transactions),
            extra={'note_count': len(transactions)}
        )
        return transactions

    async def _post_query(self, client: httpx.AsyncClient, query: str) -> dict:
        url = self._config.graphql_url
        try:
            response = await client.post(url, json={'query': query})
        except httpx.TimeoutException as e:
            raise NetworkFailure(f"Query timed out: {e}", url=url) from e
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Query failed: {e}", url=url) from e

        if response.status_code != 200:
            raise NetworkFailure(f"HTTP {response.status_code}", url=url)

        try:
            payload = response.json()
        except ValueError as e:
            raise ParseFailure(f"Query response is not JSON: {e}", url=url) from e

        if not isinstance(payload, dict):
            raise ParseFailure("Query response is not an object", url=url)
        if payload.get('errors'):
            raise LedgerError(f"Query rejected: {payload['errors']}", url=url)
        return payload

    def _parse_transactions(self, payload: dict) -> Tuple[List[LedgerTransaction], bool]:
        """Parse `data.transactions.edges[].node` into transactions."""
        data = payload.get('data') or {}
        connection = data.get('transactions')
        if not isinstance(connection, dict):
            raise ParseFailure("Response has no transactions connection")

        transactions = []
        for edge in connection.get('edges') or []:
            node = (edge or {}).get('node') or {}
            tx_id = node.get('id')
            if not tx_id:
                continue
            tags = tuple(
                (t.get('name', ''), t.get('value', ''))
                for t in node.get('tags') or []
                if isinstance(t, dict)
            )
            transactions.append(LedgerTransaction(
                tx_id=tx_id,
                tags=tags,
                timestamp=normalize_timestamp(node.get('timestamp')),
                cursor=edge.get('cursor')
            ))

        page_info = connection.get('pageInfo') or {}
        return transactions, bool(page_info.get('hasNextPage'))

    # =========================================================================
    # MUTABLE BLOBS
    # =========================================================================

    async def fetch_mutable(self, tx_id: str, client: Optional[httpx.AsyncClient] = None) -> dict:
        """
        GET the mutable address derived from a transaction id.

        Raises:
            NetworkFailure / ParseFailure
        """
        if client is None:
            async with self._session() as session:
                return await self._get_json(session, self._config.mutable_url(tx_id), tx_id)
        return await self._get_json(client, self._config.mutable_url(tx_id), tx_id)

    async def _get_json(self, client: httpx.AsyncClient, url: str, tx_id: str) -> dict:
        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise NetworkFailure(f"Blob fetch timed out: {e}", url=url, tx_id=tx_id) from e
        except httpx.HTTPError as e:
            raise NetworkFailure(f"Blob fetch failed: {e}", url=url, tx_id=tx_id) from e

        if response.status_code != 200:
            raise NetworkFailure(f"HTTP {response.status_code}", url=url, tx_id=tx_id)

        try:
            body = response.json()
        except ValueError as e:
            raise ParseFailure(f"Blob is not JSON: {e}", url=url, tx_id=tx_id) from e
        if not isinstance(body, dict):
            raise ParseFailure("Blob is not a JSON object", url=url, tx_id=tx_id)
        return body

    async def fetch_mutable_batch(
        self,
        transactions: Sequence[LedgerTransaction],
        address_for: Callable[[LedgerTransaction], str] = lambda tx: tx.tx_id
    ) -> Tuple[Dict[str, dict], FetchReport]:
        """
        Fetch many mutable blobs in bounded, delayed batches.

        Returns blobs keyed by transaction id plus a report listing
        every failure. Never raises for a single failing blob.
        """
        report = FetchReport(
            requested=len(transactions),
            started_at=datetime.now(timezone.utc)
        )
        blobs: Dict[str, dict] = {}
        size = self._config.batch_size

        async with self._session() as client:
            for start in range(0, len(transactions), size):
                if start:
                    await self._sleep(self._config.batch_delay_seconds)
                batch = transactions[start:start + size]
                report.batches += 1
                outcomes = await asyncio.gather(
                    *(self.fetch_mutable(address_for(tx), client) for tx in batch),
                    return_exceptions=True
                )
                for tx, outcome in zip(batch, outcomes):
                    if isinstance(outcome, dict):
                        blobs[tx.tx_id] = outcome
                        report.succeeded += 1
                    elif isinstance(outcome, Exception):
                        report.failures.append(
                            self._record_failure(tx, address_for(tx), outcome, report.batches)
                        )
                    else:
                        raise outcome

        report.completed_at = datetime.now(timezone.utc)
        if report.is_partial:
            self._log.warning(
                "Partial blob data: %d of %d fetches failed", report.failed, report.requested,
                extra={'error_code': ErrorCode.PARTIAL_DATA.name}
            )
        return blobs, report

    def _record_failure(
        self,
        tx: LedgerTransaction,
        address: str,
        exc: Exception,
        batch: int
    ) -> FetchFailure:
        if isinstance(exc, LedgerError):
            error = exc.error
        else:
            error = Error.now(ErrorCode.NETWORK_FAILURE, str(exc), tx_id=tx.tx_id)
        self._log.warning(
            "Blob fetch failed for %s: %s", tx.tx_id, error.message,
            extra={'tx_id': tx.tx_id, 'error_code': error.code.name, 'batch': batch}
        )
        return FetchFailure(
            tx_id=tx.tx_id,
            url=self._config.mutable_url(address),
            error=error
        )

    async def fetch_unified_records(
        self,
        transactions: Sequence[LedgerTransaction]
    ) -> Tuple[List[UnifiedRecord], FetchReport]:
        """Pair each unified transaction with its blob; failed ones are left out."""
        blobs, report = await self.fetch_mutable_batch(transactions)
        records = [
            UnifiedRecord(transaction=tx, blob=blobs[tx.tx_id])
            for tx in transactions
            if tx.tx_id in blobs
        ]
        return records, report
