"""Reads cached staking details from the destination chain."""

from __future__ import annotations

from typing import Any

from stakenoter.chain.interface import ChainClient
from stakenoter.reconcile.collector import read_field
from stakenoter.reconcile.models import Source, StakingSnapshot

CACHE_MODULE = "StakingScore"
CACHE_STORAGE = "CachedStakingDetails"


def parse_cached(record: Any) -> StakingSnapshot | None:
    """Decode a cache record; an absent or empty record is None."""
    if record is None or record == {} or record == "":
        return None
    return StakingSnapshot(
        staked_amount=int(read_field(record, "staked_amount", "stakedAmount", default=0)),
        nominations_count=int(read_field(record, "nominations_count", "nominationsCount", default=0)),
        unlocking_chunks_count=int(
            read_field(record, "unlocking_chunks_count", "unlockingChunksCount", default=0)
        ),
    )


class CacheReader:
    """Per-(account, source) lookups against ``StakingScore.CachedStakingDetails``."""

    def __init__(self, chain: ChainClient):
        self.chain = chain

    async def read(self, address: str, source: Source) -> StakingSnapshot | None:
        record = await self.chain.query(CACHE_MODULE, CACHE_STORAGE, [address, source.value])
        return parse_cached(record)

    async def read_all(self, address: str, sources: list[Source]) -> dict[Source, StakingSnapshot | None]:
        """Every requested source for one account in a single round-trip."""
        records = await self.chain.query_multi(
            CACHE_MODULE, CACHE_STORAGE, [[address, s.value] for s in sources],
        )
        return {s: parse_cached(r) for s, r in zip(sources, records)}


__all__ = ["CacheReader", "parse_cached"]
