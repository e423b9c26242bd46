"""Per-account reconciliation: collect -> combine -> read cache -> diff.

``plan_account`` produces at most one PendingUpdate per source and never
writes; ``reconcile_account`` plans and submits in one step. The sweep uses
``plan_account`` so a whole batch of accounts shares one extrinsic.
"""

from __future__ import annotations

from dataclasses import dataclass

import bittensor as bt

from stakenoter.chain.interface import ChainClient
from stakenoter.reconcile.aggregator import combine
from stakenoter.reconcile.cache import CacheReader
from stakenoter.reconcile.collector import POOLS, STAKING, StakingCollector
from stakenoter.reconcile.diff import should_update
from stakenoter.reconcile.memo import ScopedMemo
from stakenoter.reconcile.models import (
    Decision,
    PartialCollectionResult,
    PendingUpdate,
    Source,
    StakingSnapshot,
    short_address,
)
from stakenoter.reconcile.submitter import SubmissionOutcome, Submitter


@dataclass(frozen=True)
class SourceRoute:
    """Where a cache source's data comes from."""

    source: Source
    chain: ChainClient
    include_pools: bool = False


@dataclass
class _Collected:
    route: SourceRoute
    snapshot: StakingSnapshot
    failed: bool
    retired: bool


class Reconciler:
    """Single-account reconciliation shared by the sweep and the event path."""

    def __init__(
        self,
        routes: list[SourceRoute],
        cache: CacheReader,
        submitter: Submitter,
        collector: StakingCollector | None = None,
    ):
        self.routes = routes
        self.cache = cache
        self.submitter = submitter
        self.collector = collector or StakingCollector()

    @classmethod
    def for_chains(
        cls,
        relay: ChainClient,
        asset_hub: ChainClient,
        people: ChainClient,
        submitter: Submitter,
    ) -> Reconciler:
        routes = [
            SourceRoute(Source.RELAY_CHAIN, relay),
            SourceRoute(Source.ASSET_HUB, asset_hub, include_pools=True),
        ]
        return cls(routes=routes, cache=CacheReader(people), submitter=submitter)

    async def _collect(self, route: SourceRoute, address: str, memo: ScopedMemo) -> _Collected:
        # A failed direct capability lookup aborts the account like a failed ledger read
        has_direct = await self.collector.supports(route.chain, STAKING, "Ledger", memo)

        has_pools = False
        pool: PartialCollectionResult | None = None
        if route.include_pools:
            try:
                has_pools = await self.collector.supports(route.chain, POOLS, "PoolMembers", memo)
            except Exception as e:
                bt.logging.warning({
                    "reconciler": {
                        "pool_capability_unknown": short_address(address),
                        "chain": route.chain.name,
                        "error": str(e),
                    }
                })
                pool = PartialCollectionResult.failed()

        if not has_direct and not has_pools and pool is None:
            return _Collected(route, StakingSnapshot.zero(), failed=False, retired=True)

        direct = (
            await self.collector.collect_direct(route.chain, address, memo)
            if has_direct else PartialCollectionResult()
        )
        if pool is None:
            pool = (
                await self.collector.collect_pool(route.chain, address, memo)
                if has_pools else PartialCollectionResult()
            )
        snapshot, failed = combine(direct, pool)
        return _Collected(route, snapshot, failed=failed, retired=False)

    async def plan_account(self, address: str, memo: ScopedMemo | None = None) -> list[PendingUpdate]:
        """Updates needed to bring this account's cache records up to date."""
        memo = memo if memo is not None else ScopedMemo(f"account-{short_address(address)}")

        collected = [await self._collect(route, address, memo) for route in self.routes]
        cached = await self.cache.read_all(address, [c.route.source for c in collected])

        updates: list[PendingUpdate] = []
        for c in collected:
            previous = cached.get(c.route.source)
            if c.retired:
                # Retired source: clear a stale nonzero record, otherwise leave it absent
                if previous is None or previous.is_zero:
                    continue
                bt.logging.info({
                    "reconciler": {
                        "zeroing_retired_source": short_address(address),
                        "source": c.route.source.value,
                        "cached": str(previous.staked_amount),
                    }
                })
                updates.append(PendingUpdate(address=address, source=c.route.source, snapshot=StakingSnapshot.zero()))
                continue

            decision = should_update(c.snapshot, previous, c.failed, address=address)
            if decision is Decision.SUBMIT:
                bt.logging.info({
                    "reconciler": {
                        "changed": short_address(address),
                        "source": c.route.source.value,
                        "staked": str(c.snapshot.staked_amount),
                        "noms": c.snapshot.nominations_count,
                        "unlocking": c.snapshot.unlocking_chunks_count,
                        "bootstrap": previous is None,
                    }
                })
                updates.append(PendingUpdate(address=address, source=c.route.source, snapshot=c.snapshot))
        return updates

    async def reconcile_account(self, address: str, memo: ScopedMemo | None = None) -> SubmissionOutcome:
        """Plan and submit for one account, sequentially."""
        updates = await self.plan_account(address, memo)
        return await self.submitter.submit(updates)


__all__ = ["Reconciler", "SourceRoute"]
