"""Pydantic models for staking snapshots and pending cache updates.

- StakingSnapshot: the three fields cached per (account, source)
- PartialCollectionResult: one sub-source's snapshot plus a failure flag
- PendingUpdate: a snapshot queued for submission within one cycle
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Sources - values are the destination pallet's enum variant names
# ---------------------------------------------------------------------------

U128_MAX = 2**128 - 1


class Source(str, Enum):
    """Cache record key alongside the account."""

    RELAY_CHAIN = "RelayChain"  # legacy direct staking
    ASSET_HUB = "AssetHub"  # direct staking + nomination pools, combined


class Decision(str, Enum):
    """Outcome of comparing a fresh snapshot with the cached one."""

    SUBMIT = "submit"
    SUPPRESS = "suppress"


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class StakingSnapshot(BaseModel):
    """Immutable staking state for one (account, source) pair.

    Amounts are in the smallest on-chain unit.
    """

    model_config = ConfigDict(frozen=True)

    staked_amount: int = Field(default=0, ge=0, le=U128_MAX)
    nominations_count: int = Field(default=0, ge=0)
    unlocking_chunks_count: int = Field(default=0, ge=0)

    @classmethod
    def zero(cls) -> StakingSnapshot:
        return cls()

    @property
    def is_zero(self) -> bool:
        return (
            self.staked_amount == 0
            and self.nominations_count == 0
            and self.unlocking_chunks_count == 0
        )


class PartialCollectionResult(BaseModel):
    """Snapshot from a single sub-source (direct ledger or pool membership).

    ``collection_failed`` marks data known to be incomplete; the snapshot is
    then zero and must not be read as "not staking".
    """

    model_config = ConfigDict(frozen=True)

    snapshot: StakingSnapshot = Field(default_factory=StakingSnapshot)
    collection_failed: bool = False

    @classmethod
    def failed(cls) -> PartialCollectionResult:
        return cls(collection_failed=True)


class PendingUpdate(BaseModel):
    """A cache write awaiting submission. Never persisted."""

    model_config = ConfigDict(frozen=True)

    address: str = Field(min_length=1)
    source: Source
    snapshot: StakingSnapshot

    def call_params(self) -> dict[str, object]:
        """Arguments for ``StakingScore.receive_staking_details``."""
        return {
            "who": self.address,
            "source": self.source.value,
            "staked_amount": str(self.snapshot.staked_amount),
            "nominations_count": self.snapshot.nominations_count,
            "unlocking_chunks_count": self.snapshot.unlocking_chunks_count,
        }


def short_address(address: str) -> str:
    """Truncate an address for log lines."""
    return f"{address[:8]}..." if len(address) > 8 else address


__all__ = [
    "Decision",
    "PartialCollectionResult",
    "PendingUpdate",
    "Source",
    "StakingSnapshot",
    "U128_MAX",
    "short_address",
]
