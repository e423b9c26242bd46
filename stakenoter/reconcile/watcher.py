"""Finalized-block watcher for newly tracked accounts.

Every finalized block on the destination chain is scanned for
``StakingScore.ScoreTrackingStarted``; each account found is reconciled
inline, without waiting for the next sweep.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Sequence

import bittensor as bt

from stakenoter.chain.interface import BlockRef, ChainClient
from stakenoter.reconcile.engine import Reconciler
from stakenoter.reconcile.memo import ScopedMemo
from stakenoter.reconcile.models import short_address
from stakenoter.reconcile.registry import normalize_address

TRACKING_EVENT = ("StakingScore", "ScoreTrackingStarted")
MAX_RESUBSCRIBE_DELAY = 30.0


class WatcherState(str, Enum):
    IDLE = "idle"
    SUBSCRIBED = "subscribed"


def _event_body(record: Any) -> Any:
    if isinstance(record, dict):
        return record.get("event", record)
    return getattr(record, "event", record)


def event_key(record: Any) -> tuple[str, str]:
    """(pallet, event name) for an event record of any decoded shape."""
    ev = _event_body(record)
    if isinstance(ev, dict):
        module = ev.get("module_id") or ev.get("section") or ""
        name = ev.get("event_id") or ev.get("method") or ev.get("name") or ""
    else:
        module = getattr(ev, "module_id", None) or getattr(ev, "section", "")
        name = getattr(ev, "event_id", None) or getattr(ev, "method", "")
    return str(module), str(name)


def first_attribute(record: Any) -> Any:
    ev = _event_body(record)
    params = ev.get("attributes", ev.get("data")) if isinstance(ev, dict) else getattr(ev, "attributes", None)
    if isinstance(params, dict):
        for name in ("who", "account", "account_id"):
            if name in params:
                return params[name]
        return next(iter(params.values()), None)
    if isinstance(params, (list, tuple)) and params and not all(isinstance(x, int) for x in params):
        return params[0]
    return params


def tracking_started_accounts(events: Sequence[Any], ss58_format: int = 42) -> list[str]:
    """Accounts named by tracking-started events, first occurrence order."""
    found: list[str] = []
    for record in events:
        if event_key(record) != TRACKING_EVENT:
            continue
        who = first_attribute(record)
        if who is None:
            bt.logging.warning({"event_watcher": "tracking_event_without_account"})
            continue
        address = normalize_address(who, ss58_format)
        if address not in found:
            found.append(address)
    return found


class EventWatcher:
    """Idle until run(); Subscribed while consuming the finalized head stream."""

    def __init__(
        self,
        chain: ChainClient,
        reconciler: Reconciler,
        ss58_format: int = 42,
        resubscribe_delay: float = 1.0,
    ):
        self.chain = chain
        self.reconciler = reconciler
        self.ss58_format = ss58_format
        self.state = WatcherState.IDLE
        self._inflight: asyncio.Task | None = None
        self._resubscribe_delay = resubscribe_delay

    async def run(self) -> None:
        """Consume finalized heads until the stream ends.

        A failure raised by the stream itself is logged and the stream is
        re-entered after a backoff; only cancellation or the end of the stream
        stops the watcher.
        """
        self.state = WatcherState.SUBSCRIBED
        bt.logging.info({"event_watcher": "subscribed", "chain": self.chain.name})
        failures = 0
        try:
            while True:
                try:
                    async for block in self.chain.finalized_heads():
                        failures = 0
                        await self._handle(block)
                    return
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    failures += 1
                    wait = min(MAX_RESUBSCRIBE_DELAY, self._resubscribe_delay * 2 ** (failures - 1))
                    bt.logging.error({
                        "event_watcher": {"stream_error": str(e), "consecutive": failures, "resubscribe_in": wait}
                    })
                    await asyncio.sleep(wait)
        finally:
            self.state = WatcherState.IDLE
            bt.logging.info({"event_watcher": "idle"})

    async def _handle(self, block: BlockRef) -> None:
        self._inflight = asyncio.ensure_future(self.process_block(block))
        try:
            # Shielded so shutdown never interrupts a submission mid-flight
            await asyncio.shield(self._inflight)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            bt.logging.error({"event_watcher": {"block": block.number, "error": str(e)}})

    async def process_block(self, block: BlockRef) -> list[str]:
        """Reconcile every account that started tracking in this block."""
        events = await self.chain.get_events(block.hash)
        accounts = tracking_started_accounts(events, self.ss58_format)
        if not accounts:
            return []

        memo = ScopedMemo(f"block-{block.number}")
        for address in accounts:
            bt.logging.info({
                "event_watcher": {
                    "tracking_started": short_address(address),
                    "block": block.number,
                    "hash": block.hash,
                }
            })
            try:
                await self.reconciler.reconcile_account(address, memo)
            except Exception as e:
                bt.logging.error({
                    "event_watcher": {"account_failed": short_address(address), "block": block.number, "error": str(e)}
                })
        return accounts

    async def drain(self) -> None:
        """Wait for a block still being processed after the stream was cancelled."""
        task = self._inflight
        if task is None or task.done():
            return
        try:
            await task
        except Exception as e:
            bt.logging.error({"event_watcher": {"drain_error": str(e)}})


__all__ = [
    "EventWatcher",
    "WatcherState",
    "event_key",
    "tracking_started_accounts",
]
