#!/usr/bin/env python3
"""
henflow Single Token Module

Per-token logic shared by the batch runner and the single-token commands:
- Resolver: DiscoveryRecord -> CID (optionally through the metadata document)
- Action classes: what to do with a CID (pin it, or measure a size)
- backup_one() / status_one(): the non-batch `backup <id>` and `status <id>` commands
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from enum import Enum
from typing import Optional

from henflow_clients import EstuaryClient, IpfsClient, ResolutionError, strip_scheme
from henflow_indexers import DiscoveryRecord, Indexer


# =============================================================================
# RESOLUTION
# =============================================================================

def decode_pointer(reference: str) -> str:
    """
    Decode a hex-encoded big map value into the URI it holds.

    Raises:
        ResolutionError: If the value is not hex-encoded UTF-8
    """
    try:
        return bytes.fromhex(reference).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        raise ResolutionError(f"Undecodable metadata pointer: {reference[:40]!r}") from None


class Resolver:
    """Turns indexer records into CIDs for the active indexer."""

    def __init__(self, indexer: Indexer, ipfs: IpfsClient):
        self.indexer = indexer
        self.ipfs = ipfs

    async def fetch_record(self, token_id: int) -> DiscoveryRecord:
        return await self.indexer.fetch_record(token_id)

    async def resolve(self, record: DiscoveryRecord) -> str:
        """
        Return the CID of a token's artifact.

        Args:
            record: Record from the active indexer

        Returns:
            CID without scheme; empty string when the token has no artifact

        Raises:
            ResolutionError: If the metadata pointer can't be followed
        """
        if not self.indexer.needs_metadata_lookup:
            return strip_scheme(record.artifact_reference)

        pointer = strip_scheme(decode_pointer(record.artifact_reference))
        if not pointer:
            return ""
        return strip_scheme(await self.ipfs.resolve(pointer))


# =============================================================================
# ACTIONS
# =============================================================================

class Action(Enum):
    ARCHIVE = "archive"
    MEASURE_STORED_SIZE = "pins"
    MEASURE_SOURCE_SIZE = "artefacts"


class ArchiveAction:
    """Pin a CID on Estuary unless it is already there."""

    def __init__(self, estuary: EstuaryClient):
        self.estuary = estuary
        self.submissions = 0
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._archived: set[str] = set()

    async def perform(self, cid: str) -> int:
        # One lookup/submit sequence per CID at a time; later calls see the result
        async with self._locks[cid]:
            if cid in self._archived:
                return 0
            if await self.estuary.lookup(cid) is None:
                await self.estuary.submit(cid)
                self.submissions += 1
            self._archived.add(cid)
        return 0


class StoredSizeAction:
    """Size Estuary reports for a pinned CID; 0 when not pinned."""

    def __init__(self, estuary: EstuaryClient):
        self.estuary = estuary

    async def perform(self, cid: str) -> int:
        size = await self.estuary.lookup(cid)
        return size or 0


class SourceSizeAction:
    """Cumulative size of the CID according to the local IPFS daemon."""

    def __init__(self, ipfs: IpfsClient):
        self.ipfs = ipfs

    async def perform(self, cid: str) -> int:
        return await self.ipfs.size(cid)


def make_action(action: Action, *, ipfs: IpfsClient, estuary: EstuaryClient):
    if action is Action.ARCHIVE:
        return ArchiveAction(estuary)
    if action is Action.MEASURE_STORED_SIZE:
        return StoredSizeAction(estuary)
    if action is Action.MEASURE_SOURCE_SIZE:
        return SourceSizeAction(ipfs)
    raise ValueError(f"Unknown action: {action}")


# =============================================================================
# SINGLE TOKEN COMMANDS
# =============================================================================

async def backup_one(token_id: int, resolver: Resolver, estuary: EstuaryClient) -> Optional[str]:
    """
    Pin one token's artifact without going through the batch runner.

    Returns:
        The CID that was checked, or None if the token has no artifact

    Raises:
        HenflowError: Any lookup, resolution or pinning failure
    """
    record = await resolver.fetch_record(token_id)
    cid = await resolver.resolve(record)
    if not cid:
        return None
    await ArchiveAction(estuary).perform(cid)
    return cid


async def status_one(token_id: int, resolver: Resolver, estuary: EstuaryClient) -> tuple[str, bool]:
    """Return (cid, pinned) for one token."""
    record = await resolver.fetch_record(token_id)
    cid = await resolver.resolve(record)
    if not cid:
        return cid, False
    return cid, await estuary.lookup(cid) is not None
