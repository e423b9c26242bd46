"""Staking data collection from the source chains.

Direct staking follows the stash -> controller indirection; pool staking
reads the member record. Pool points are taken as the staked amount (1:1);
the exchange ratio to pool balance is deliberately not applied because
earlier cache writes used the same approximation.
"""

from __future__ import annotations

from typing import Any

import bittensor as bt

from stakenoter.chain.interface import ChainClient
from stakenoter.reconcile.memo import ScopedMemo
from stakenoter.reconcile.models import PartialCollectionResult, StakingSnapshot, short_address

STAKING = "Staking"
POOLS = "NominationPools"


def read_field(record: Any, *names: str, default: Any = None) -> Any:
    """Read the first present field, accepting snake_case or camelCase."""
    if record is None:
        return default
    for name in names:
        if isinstance(record, dict):
            if name in record and record[name] is not None:
                return record[name]
        elif getattr(record, name, None) is not None:
            return getattr(record, name)
    return default


def _count(value: Any) -> int:
    if value is None:
        return 0
    return len(value)


class StakingCollector:
    """Queries one account's staking state on a source chain."""

    async def supports(
        self, chain: ChainClient, module: str, storage: str, memo: ScopedMemo | None = None,
    ) -> bool:
        """Whether the chain still exposes a staking capability."""
        if memo is None:
            return await chain.has_storage(module, storage)
        return await memo.get_or_load(
            (chain.name, module, storage), lambda: chain.has_storage(module, storage),
        )

    async def collect_direct(
        self, chain: ChainClient, address: str, memo: ScopedMemo | None = None,
    ) -> PartialCollectionResult:
        """Direct staking ledger snapshot.

        Errors propagate: the direct ledger is authoritative, so a failed read
        aborts this account's cycle instead of producing partial data.
        """
        if not await self.supports(chain, STAKING, "Ledger", memo):
            return PartialCollectionResult()

        ledger = await chain.query(STAKING, "Ledger", [address])
        if ledger is None:
            controller = await chain.query(STAKING, "Bonded", [address])
            if controller:
                ledger = await chain.query(STAKING, "Ledger", [str(controller)])
        if ledger is None:
            return PartialCollectionResult()

        # Nominations are keyed by stash, which differs from a controller address
        stash = read_field(ledger, "stash", default=address)
        nominator = await chain.query(STAKING, "Nominators", [str(stash)])
        snapshot = StakingSnapshot(
            staked_amount=int(read_field(ledger, "active", default=0)),
            nominations_count=_count(read_field(nominator, "targets")),
            unlocking_chunks_count=_count(read_field(ledger, "unlocking")),
        )
        return PartialCollectionResult(snapshot=snapshot)

    async def collect_pool(
        self, chain: ChainClient, address: str, memo: ScopedMemo | None = None,
    ) -> PartialCollectionResult:
        """Nomination pool membership snapshot. Never raises on RPC errors."""
        try:
            if not await self.supports(chain, POOLS, "PoolMembers", memo):
                return PartialCollectionResult()
            member = await chain.query(POOLS, "PoolMembers", [address])
        except Exception as e:
            bt.logging.warning({
                "staking_collector": {
                    "pool_query_failed": short_address(address),
                    "chain": chain.name,
                    "error": str(e),
                }
            })
            return PartialCollectionResult.failed()

        if member is None:
            return PartialCollectionResult()

        snapshot = StakingSnapshot(
            staked_amount=int(read_field(member, "points", default=0)),
            unlocking_chunks_count=_count(read_field(member, "unbonding_eras", "unbondingEras")),
        )
        bt.logging.debug({
            "staking_collector": {
                "pool_member": short_address(address),
                "pool_id": read_field(member, "pool_id", "poolId"),
                "points": snapshot.staked_amount,
            }
        })
        return PartialCollectionResult(snapshot=snapshot)


__all__ = ["StakingCollector", "read_field"]
