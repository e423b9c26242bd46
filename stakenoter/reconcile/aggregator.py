"""Combine direct and pool partial results into one per-source snapshot."""

from __future__ import annotations

from stakenoter.reconcile.models import PartialCollectionResult, StakingSnapshot


def combine(
    direct: PartialCollectionResult, pool: PartialCollectionResult,
) -> tuple[StakingSnapshot, bool]:
    """Sum stake and unlocking chunks; nominations come from the direct ledger.

    Returns ``(snapshot, failed)`` where ``failed`` mirrors the pool result's
    flag. A failed direct read never reaches here, it raises upstream.
    """
    snapshot = StakingSnapshot(
        staked_amount=direct.snapshot.staked_amount + pool.snapshot.staked_amount,
        nominations_count=direct.snapshot.nominations_count,
        unlocking_chunks_count=(
            direct.snapshot.unlocking_chunks_count + pool.snapshot.unlocking_chunks_count
        ),
    )
    return snapshot, pool.collection_failed


__all__ = ["combine"]
