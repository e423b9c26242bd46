"""Periodic full sweep over every tracked account.

Accounts are planned concurrently in fixed-size batches; each batch's
updates go out as one extrinsic, with a short pause between batches to
keep RPC pressure on the source nodes bounded.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import bittensor as bt

from stakenoter.reconcile.engine import Reconciler
from stakenoter.reconcile.memo import ScopedMemo
from stakenoter.reconcile.models import PendingUpdate, short_address
from stakenoter.reconcile.registry import AccountRegistry


@dataclass
class SweepReport:
    """Aggregate counts for one sweep."""

    tracked: int = 0
    updated: int = 0
    errored: int = 0
    skipped: bool = False
    abandoned: bool = False


class Scheduler:
    """Runs full sweeps on a timer, never two at once."""

    def __init__(
        self,
        registry: AccountRegistry,
        reconciler: Reconciler,
        interval: float = 300.0,
        batch_size: int = 10,
        batch_pause: float = 0.5,
    ):
        self.registry = registry
        self.reconciler = reconciler
        self.interval = interval
        self.batch_size = batch_size
        self.batch_pause = batch_pause
        self._lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._running = False

    async def sweep(self) -> SweepReport:
        if self._lock.locked():
            bt.logging.warning({"scheduler": "sweep_still_running, skipping"})
            return SweepReport(skipped=True)

        async with self._lock:
            accounts = await self.registry.tracked_accounts()
            report = SweepReport(tracked=len(accounts))
            bt.logging.info({"scheduler": {"sweep": "started", "tracked": report.tracked}})

            for start in range(0, len(accounts), self.batch_size):
                if start and self._wake.is_set():
                    report.abandoned = True
                    bt.logging.info({"scheduler": {"sweep": "abandoned", "remaining": len(accounts) - start}})
                    break
                batch = accounts[start:start + self.batch_size]
                await self._run_batch(batch, start // self.batch_size, report)
                if start + self.batch_size < len(accounts):
                    await asyncio.sleep(self.batch_pause)

            bt.logging.info({
                "scheduler": {
                    "sweep": "complete",
                    "tracked": report.tracked,
                    "updated": report.updated,
                    "errors": report.errored,
                }
            })
            return report

    async def _run_batch(self, batch: list[str], index: int, report: SweepReport) -> None:
        memo = ScopedMemo(f"sweep-batch-{index}")
        results = await asyncio.gather(
            *(self.reconciler.plan_account(address, memo) for address in batch),
            return_exceptions=True,
        )

        updates: list[PendingUpdate] = []
        for address, result in zip(batch, results):
            if isinstance(result, BaseException):
                report.errored += 1
                bt.logging.error({
                    "scheduler": {"account_failed": short_address(address), "error": repr(result)}
                })
                continue
            updates.extend(result)

        if not updates:
            return

        touched = len({u.address for u in updates})
        try:
            outcome = await self.reconciler.submitter.submit(updates)
        except Exception as e:
            report.errored += touched
            bt.logging.error({"scheduler": {"batch_submit_failed": index, "error": str(e)}})
            return
        if outcome:
            report.updated += outcome.updates
        else:
            report.errored += touched

    async def run(self, initial_delay: bool = False) -> None:
        """Sweep every ``interval`` seconds until stopped."""
        self._running = True
        consecutive_errors = 0
        if initial_delay and await self._sleep(self.interval):
            return

        while self._running:
            try:
                await self.sweep()
                consecutive_errors = 0
            except asyncio.CancelledError:
                break
            except Exception as e:
                consecutive_errors += 1
                bt.logging.error({"scheduler_sweep_error": str(e), "consecutive": consecutive_errors})
                # Retry sooner than a full interval, never later
                if await self._sleep(min(self.interval, 5 * consecutive_errors)):
                    break
                continue

            if await self._sleep(self.interval):
                break

        self._running = False
        bt.logging.info({"scheduler": "stopped"})

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns True when stopped."""
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    def stop(self) -> None:
        """Stop the timer; a running sweep ends after its current batch."""
        self._running = False
        self._wake.set()


__all__ = ["Scheduler", "SweepReport"]
