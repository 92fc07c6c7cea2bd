"""Fakes standing in for the indexer, resolver and actions, plus a local HTTP server helper."""

import asyncio
import contextlib
from typing import Optional

import aiohttp
from aiohttp import test_utils, web

from henflow_clients import DispatchError, PageFetchError, ResolutionError, strip_scheme
from henflow_indexers import DiscoveryRecord, Indexer


class FakeIndexer(Indexer):
    """In-memory indexer serving `n` records, `ipfs://cid<id>` each."""

    name = "Fake"

    def __init__(self, records: list[DiscoveryRecord], fail_page_at: Optional[int] = None):
        super().__init__(session=None, base_url="http://fake")
        self.records = records
        self.fail_page_at = fail_page_at
        self.page_calls: list[tuple[int, int]] = []

    @classmethod
    def with_count(cls, n: int, **kwargs) -> "FakeIndexer":
        return cls([DiscoveryRecord(i, f"ipfs://cid{i}") for i in range(1, n + 1)], **kwargs)

    async def count(self) -> int:
        return len(self.records)

    async def page(self, offset: int, limit: int) -> list[DiscoveryRecord]:
        self.page_calls.append((offset, limit))
        if self.fail_page_at is not None and offset >= self.fail_page_at:
            raise PageFetchError("HTTP 502: Bad Gateway", 502)
        await asyncio.sleep(0)
        return self.records[offset:offset + limit]

    async def fetch_record(self, token_id: int) -> DiscoveryRecord:
        for r in self.records:
            if r.token_id == token_id:
                return r
        raise ResolutionError(f"Token n.{token_id} not found")


class FakeResolver:
    """Strips the scheme; raises for token ids listed in `fail_ids`."""

    def __init__(self, indexer: Indexer, fail_ids=()):
        self.indexer = indexer
        self.fail_ids = set(fail_ids)

    async def fetch_record(self, token_id: int) -> DiscoveryRecord:
        return await self.indexer.fetch_record(token_id)

    async def resolve(self, record: DiscoveryRecord) -> str:
        await asyncio.sleep(0)
        if record.token_id in self.fail_ids:
            raise ResolutionError("Request Timeout", 408)
        return strip_scheme(record.artifact_reference)


class SizeAction:
    """Returns a fixed size per CID and tracks concurrency."""

    def __init__(self, sizes=None, default: int = 1, fail_cids=(), delay: float = 0.0):
        self.sizes = sizes or {}
        self.default = default
        self.fail_cids = set(fail_cids)
        self.delay = delay
        self.calls: list[str] = []
        self.running = 0
        self.max_running = 0

    async def perform(self, cid: str) -> int:
        self.calls.append(cid)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            await asyncio.sleep(self.delay)
            if cid in self.fail_cids:
                raise DispatchError("HTTP 500: Internal Server Error", 500)
            return self.sizes.get(cid, self.default)
        finally:
            self.running -= 1


@contextlib.asynccontextmanager
async def serve(routes, timeout=None):
    """Run an aiohttp app on localhost; yields (base_url, session)."""
    app = web.Application()
    app.add_routes(routes)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            yield f"http://{server.host}:{server.port}", session
    finally:
        await server.close()
