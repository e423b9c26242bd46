"""Decide whether a fresh snapshot should overwrite the cached one."""

from __future__ import annotations

import bittensor as bt

from stakenoter.reconcile.models import Decision, StakingSnapshot, short_address


def should_update(
    fresh: StakingSnapshot,
    cached: StakingSnapshot | None,
    collection_failed: bool,
    address: str = "",
) -> Decision:
    """Submit on bootstrap or any field change, except a downgrade built on partial data."""
    if cached is None:
        return Decision.SUBMIT
    if fresh == cached:
        return Decision.SUPPRESS
    if collection_failed and fresh.staked_amount < cached.staked_amount:
        bt.logging.warning({
            "diff_engine": {
                "skipped_downgrade": short_address(address),
                "cached": str(cached.staked_amount),
                "fresh": str(fresh.staked_amount),
            }
        })
        return Decision.SUPPRESS
    return Decision.SUBMIT


__all__ = ["should_update"]
