#!/usr/bin/env python3
"""
henflow Indexers

Discovery back-ends enumerating hic et nunc OBJKTs:
- HicDexIndexer: HicDEX GraphQL API, records carry the artifact URI directly
- TzKTIndexer: TzKT big-map API, records carry a hex-encoded pointer to the
  token metadata document

Both expose count(), page(offset, limit) and fetch_record(token_id). The batch
driver only ever talks to the Indexer interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import aiohttp

from henflow_clients import PageFetchError, request_json


HICDEX_URL = "https://api.hicdex.com"
TZKT_URL = "https://api.tzkt.io"
TOKEN_METADATA_BIGMAP = 514

INDEXERS = ("HicDex", "TzKT")


@dataclass(frozen=True)
class DiscoveryRecord:
    """One token as returned by an indexer page."""
    token_id: int
    artifact_reference: str


class Indexer(ABC):
    """Paginated source of DiscoveryRecords."""

    name: str = ""
    # Records point at a metadata document rather than the artifact itself
    needs_metadata_lookup: bool = False

    def __init__(self, session: aiohttp.ClientSession, base_url: str):
        self.session = session
        self.base_url = base_url.rstrip("/")

    @abstractmethod
    async def count(self) -> int:
        """Total number of tokens, used for progress reporting only."""

    @abstractmethod
    async def page(self, offset: int, limit: int) -> list[DiscoveryRecord]:
        """Up to `limit` records starting at `offset`, ordered by token id."""

    @abstractmethod
    async def fetch_record(self, token_id: int) -> DiscoveryRecord:
        """The record of a single token."""


# =============================================================================
# HICDEX (GRAPHQL)
# =============================================================================

class HicDexIndexer(Indexer):
    name = "HicDex"

    async def _query(self, query: str) -> dict[str, Any]:
        res = await request_json(
            self.session,
            "POST",
            f"{self.base_url}/v1/graphql",
            json={"operationName": "PriceHistory", "variables": None, "query": query},
            error_cls=PageFetchError,
        )
        if not isinstance(res, dict) or not isinstance(res.get("data"), dict):
            errors = res.get("errors") if isinstance(res, dict) else None
            raise PageFetchError(f"HicDEX returned no data: {errors or res!r}")
        return res["data"]

    async def count(self) -> int:
        data = await self._query(
            "query PriceHistory { hic_et_nunc_token_aggregate(distinct_on: id) "
            "{ aggregate { count(columns: artifact_uri) } } }"
        )
        try:
            return int(data["hic_et_nunc_token_aggregate"]["aggregate"]["count"])
        except (TypeError, KeyError, ValueError):
            raise PageFetchError("Malformed HicDEX token count") from None

    async def page(self, offset: int, limit: int) -> list[DiscoveryRecord]:
        data = await self._query(
            f"query PriceHistory {{ hic_et_nunc_token(limit: {limit}, offset: {offset}, "
            f"order_by: {{id: asc}}) {{ artifact_uri id }} }}"
        )
        try:
            return [
                DiscoveryRecord(token_id=int(t["id"]), artifact_reference=t["artifact_uri"] or "")
                for t in data["hic_et_nunc_token"]
            ]
        except (TypeError, KeyError, ValueError):
            raise PageFetchError(f"Malformed HicDEX page at offset {offset}") from None

    async def fetch_record(self, token_id: int) -> DiscoveryRecord:
        data = await self._query(
            f'query PriceHistory {{ hic_et_nunc_token_by_pk(id: "{token_id}") {{ artifact_uri }} }}'
        )
        token = data.get("hic_et_nunc_token_by_pk")
        if not isinstance(token, dict):
            raise PageFetchError(f"Token n.{token_id} not found on HicDEX")
        return DiscoveryRecord(token_id=token_id, artifact_reference=token.get("artifact_uri") or "")


# =============================================================================
# TZKT (BIG MAP)
# =============================================================================

class TzKTIndexer(Indexer):
    name = "TzKT"
    needs_metadata_lookup = True

    @property
    def _bigmap_url(self) -> str:
        return f"{self.base_url}/v1/bigmaps/{TOKEN_METADATA_BIGMAP}"

    @staticmethod
    def _to_record(key: Any) -> DiscoveryRecord:
        # token_info[""] holds the hex-encoded URI of the metadata document
        return DiscoveryRecord(
            token_id=int(key["key"]),
            artifact_reference=str(key["value"]["token_info"][""]),
        )

    async def count(self) -> int:
        res = await request_json(
            self.session, "GET", self._bigmap_url,
            params={"active": "true"}, error_cls=PageFetchError,
        )
        try:
            return int(res["activeKeys"])
        except (TypeError, KeyError, ValueError):
            raise PageFetchError("Malformed TzKT big map summary") from None

    async def page(self, offset: int, limit: int) -> list[DiscoveryRecord]:
        res = await request_json(
            self.session, "GET", f"{self._bigmap_url}/keys",
            params={"active": "true", "limit": str(limit), "offset": str(offset)},
            error_cls=PageFetchError,
        )
        try:
            return [self._to_record(k) for k in res]
        except (TypeError, KeyError, ValueError):
            raise PageFetchError(f"Malformed TzKT page at offset {offset}") from None

    async def fetch_record(self, token_id: int) -> DiscoveryRecord:
        res = await request_json(
            self.session, "GET", f"{self._bigmap_url}/keys/{token_id}",
            error_cls=PageFetchError,
        )
        try:
            return self._to_record(res)
        except (TypeError, KeyError, ValueError):
            raise PageFetchError(f"Token n.{token_id} not found on TzKT") from None


def make_indexer(name: str, session: aiohttp.ClientSession, *, hicdex_url: str = HICDEX_URL,
                 tzkt_url: str = TZKT_URL) -> Indexer:
    """Build the indexer selected on the command line."""
    if name == "HicDex":
        return HicDexIndexer(session, hicdex_url)
    if name == "TzKT":
        return TzKTIndexer(session, tzkt_url)
    raise ValueError(f"Unknown indexer: {name} (expected one of {', '.join(INDEXERS)})")
