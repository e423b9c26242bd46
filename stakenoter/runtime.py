"""Noter runtime.

Startup bootstrap (noter role check + initial sweep), then the event
watcher and the periodic sweep side by side until stopped.
"""

from __future__ import annotations

import asyncio
from typing import Any

import bittensor as bt

from stakenoter.chain.interface import ChainClient
from stakenoter.config import NoterSettings
from stakenoter.reconcile.engine import Reconciler
from stakenoter.reconcile.models import short_address
from stakenoter.reconcile.registry import AccountRegistry
from stakenoter.reconcile.scheduler import Scheduler
from stakenoter.reconcile.submitter import Submitter
from stakenoter.reconcile.watcher import EventWatcher

NOTER_ROLE = "noter"


def _role_name(entry: Any) -> str:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict):
        return str(entry.get("name") or entry.get("role") or next(iter(entry), ""))
    return str(entry)


async def verify_noter_role(people: ChainClient, address: str) -> bool:
    """Warn when the noter account lacks the Noter tiki; submissions would be rejected."""
    try:
        if not await people.has_storage("Tiki", "UserTikis"):
            bt.logging.debug({"noter_role": "tiki_pallet_absent"})
            return False
        tikis = await people.query("Tiki", "UserTikis", [address])
    except Exception as e:
        bt.logging.warning({"noter_role": {"check_failed": str(e)}})
        return False

    has_role = any(_role_name(t).lower() == NOTER_ROLE for t in (tikis or []))
    if has_role:
        bt.logging.info({"noter_role": "verified", "account": short_address(address)})
    else:
        bt.logging.warning({
            "noter_role": "missing, submissions will fail with NotAuthorized",
            "account": short_address(address),
        })
    return has_role


class NoterRuntime:
    """Wires the reconciliation components over three chain clients."""

    def __init__(
        self,
        relay: ChainClient,
        asset_hub: ChainClient,
        people: ChainClient,
        keypair: Any,
        settings: NoterSettings | None = None,
    ):
        self.settings = settings or NoterSettings()
        self.relay = relay
        self.asset_hub = asset_hub
        self.people = people
        self.keypair = keypair

        ss58 = self.settings.chain.ss58_format
        self.submitter = Submitter(people, keypair)
        self.reconciler = Reconciler.for_chains(relay, asset_hub, people, self.submitter)
        self.registry = AccountRegistry(people, ss58_format=ss58)
        self.scheduler = Scheduler(
            registry=self.registry,
            reconciler=self.reconciler,
            interval=self.settings.sweep.interval,
            batch_size=self.settings.sweep.batch_size,
            batch_pause=self.settings.sweep.batch_pause,
        )
        self.watcher = EventWatcher(people, self.reconciler, ss58_format=ss58)

        # Set only once bootstrap fully succeeds; a crash before that reruns it on restart
        self.bootstrapped = False
        self._watcher_task: asyncio.Task | None = None

    async def bootstrap(self) -> bool:
        """One-time startup step, before the event subscription begins.

        Returns whether bootstrap is complete. A sweep that was skipped or
        stopped part way leaves the flag clear.
        """
        if self.bootstrapped:
            return True
        await verify_noter_role(self.people, self.keypair.ss58_address)
        report = await self.scheduler.sweep()
        if report.skipped or report.abandoned:
            bt.logging.warning({
                "noter_runtime": {"bootstrap": "incomplete", "skipped": report.skipped, "abandoned": report.abandoned}
            })
            return False
        self.bootstrapped = True
        bt.logging.info({"noter_runtime": {"bootstrap": "complete", "tracked": report.tracked}})
        return True

    async def run(self) -> None:
        """Bootstrap, then run watcher and sweep timer until stopped."""
        if not await self.bootstrap():
            return
        self._watcher_task = asyncio.ensure_future(self.watcher.run())
        bt.logging.info({
            "noter_runtime": {"status": "running", "sweep_interval": self.settings.sweep.interval}
        })
        try:
            await self.scheduler.run(initial_delay=True)
        finally:
            await self._stop_watcher()
        bt.logging.info({"noter_runtime": "stopped"})

    async def _stop_watcher(self) -> None:
        task = self._watcher_task
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            bt.logging.error({"noter_runtime": {"watcher_error": str(e)}})
        await self.watcher.drain()

    def stop(self) -> None:
        """Signal shutdown; in-flight submissions finish first."""
        self.scheduler.stop()


__all__ = ["NoterRuntime", "verify_noter_role"]
