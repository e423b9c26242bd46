"""Submission of pending cache updates as one signed extrinsic.

A single update is sent as a plain ``receive_staking_details`` call; several
are wrapped in ``Utility.batch_all`` so they land together or not at all.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import bittensor as bt

from stakenoter.chain.interface import CallSpec, ChainClient
from stakenoter.errors import DispatchFailure
from stakenoter.reconcile.models import PendingUpdate, short_address


@dataclass
class SubmissionOutcome:
    """Result of one submit() invocation."""

    status: str  # "noop", "landed", "failed"
    updates: int = 0
    block_hash: str | None = None
    error: DispatchFailure | None = None

    def __bool__(self) -> bool:
        return self.status != "failed"


def build_call(updates: list[PendingUpdate]) -> CallSpec:
    calls = [
        CallSpec("StakingScore", "receive_staking_details", u.call_params())
        for u in updates
    ]
    if len(calls) == 1:
        return calls[0]
    return CallSpec("Utility", "batch_all", {"calls": calls})


class Submitter:
    """Signs with the noter keypair and submits to the destination chain."""

    def __init__(self, chain: ChainClient, keypair: Any):
        self.chain = chain
        self.keypair = keypair

    async def submit(self, updates: list[PendingUpdate]) -> SubmissionOutcome:
        if not updates:
            return SubmissionOutcome(status="noop")

        receipt = await self.chain.submit(build_call(updates), self.keypair)
        targets = [f"{short_address(u.address)}:{u.source.value}" for u in updates]

        if not receipt.success:
            failure = DispatchFailure.from_error_message(receipt.error, block_hash=receipt.block_hash)
            bt.logging.error({
                "submitter": {
                    "status": "dispatch_failed",
                    "module": failure.module,
                    "error": failure.name or failure.message,
                    "updates": targets,
                    "block": receipt.block_hash,
                }
            })
            return SubmissionOutcome(
                status="failed", updates=len(updates), block_hash=receipt.block_hash, error=failure,
            )

        bt.logging.info({
            "submitter": {
                "status": "landed",
                "updates": targets,
                "block": receipt.block_hash,
            }
        })
        return SubmissionOutcome(status="landed", updates=len(updates), block_hash=receipt.block_hash)


__all__ = ["SubmissionOutcome", "Submitter", "build_call"]
