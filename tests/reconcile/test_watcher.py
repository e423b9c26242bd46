"""Tests for the finalized-block event watcher."""

import asyncio
from dataclasses import dataclass

import pytest

from stakenoter.chain.mock import MockChain
from stakenoter.reconcile.engine import Reconciler
from stakenoter.reconcile.submitter import Submitter
from stakenoter.reconcile.watcher import (
    EventWatcher,
    WatcherState,
    event_key,
    tracking_started_accounts,
)


@dataclass
class _Key:
    ss58_address: str = "5Noter"


def _tracking_event(address, start_block=10):
    return {
        "phase": {"ApplyExtrinsic": 1},
        "extrinsic_idx": 1,
        "event": {
            "module_id": "StakingScore",
            "event_id": "ScoreTrackingStarted",
            "attributes": {"who": address, "start_block": start_block},
        },
    }


def _other_event():
    return {"event": {"module_id": "Balances", "event_id": "Transfer", "attributes": ("5A", "5B", 10)}}


def _ledger(chain, address, active):
    chain.set("Staking", "Ledger", address, {"stash": address, "total": active, "active": active, "unlocking": []})


class _RecordingReconciler:

    def __init__(self, fail_for=()):
        self.seen = []
        self.fail_for = set(fail_for)

    async def reconcile_account(self, address, memo=None):
        self.seen.append(address)
        if address in self.fail_for:
            raise RuntimeError(f"boom {address}")


class TestEventParsing:

    def test_event_key_shapes(self):
        assert event_key(_tracking_event("5A")) == ("StakingScore", "ScoreTrackingStarted")
        assert event_key({"event": {"section": "stakingScore", "method": "X"}}) == ("stakingScore", "X")

    def test_tracking_started_accounts_filters_and_dedupes(self):
        events = [
            _other_event(),
            _tracking_event("5Alice"),
            _tracking_event("5Bob"),
            _tracking_event("5Alice"),
        ]
        assert tracking_started_accounts(events) == ["5Alice", "5Bob"]

    def test_positional_attributes(self):
        event = {"event": {"module_id": "StakingScore", "event_id": "ScoreTrackingStarted", "attributes": ["5Carol", 99]}}
        assert tracking_started_accounts([event]) == ["5Carol"]

    def test_raw_account_id_is_rendered_ss58(self):
        raw = tuple(range(32))
        event = {"event": {"module_id": "StakingScore", "event_id": "ScoreTrackingStarted", "attributes": [raw, 5]}}
        (address,) = tracking_started_accounts([event])
        assert address.startswith("5")
        assert len(address) == 48


@pytest.mark.asyncio
class TestEventWatcher:

    async def test_fast_path_reconciles_only_the_new_account(self):
        relay, asset_hub, people = MockChain("relay"), MockChain("asset_hub"), MockChain("people")
        for address in ("5Alice", "5Bob"):
            people.set("StakingScore", "StakingStartBlock", address, 1)
            _ledger(relay, address, 100)
        reconciler = Reconciler.for_chains(relay, asset_hub, people, Submitter(people, _Key()))
        watcher = EventWatcher(people, reconciler)

        block = people.push_block([_tracking_event("5Alice")])
        processed = await watcher.process_block(block)

        assert processed == ["5Alice"]
        (call,) = people.submissions
        whos = {c.params["who"] for c in call.params.get("calls", [call])}
        assert whos == {"5Alice"}

    async def test_block_without_tracking_events(self):
        people = MockChain("people")
        reconciler = _RecordingReconciler()
        watcher = EventWatcher(people, reconciler)
        block = people.push_block([_other_event()])
        assert await watcher.process_block(block) == []
        assert reconciler.seen == []

    async def test_account_failure_does_not_skip_others(self):
        people = MockChain("people")
        reconciler = _RecordingReconciler(fail_for={"5Alice"})
        watcher = EventWatcher(people, reconciler)
        block = people.push_block([_tracking_event("5Alice"), _tracking_event("5Bob")])

        await watcher.process_block(block)

        assert reconciler.seen == ["5Alice", "5Bob"]

    async def test_block_error_keeps_subscription(self):
        people = MockChain("people")
        reconciler = _RecordingReconciler()
        watcher = EventWatcher(people, reconciler)

        bad = people.push_block([_tracking_event("5Alice")])
        people.push_block([_tracking_event("5Bob")])
        people.fail("System", "Events", bad.hash)
        await people.close()

        assert watcher.state is WatcherState.IDLE
        await asyncio.wait_for(watcher.run(), timeout=5)

        assert reconciler.seen == ["5Bob"]
        assert watcher.state is WatcherState.IDLE

    async def test_state_is_subscribed_while_running(self):
        people = MockChain("people")
        watcher = EventWatcher(people, _RecordingReconciler())
        task = asyncio.ensure_future(watcher.run())
        await asyncio.sleep(0.01)
        assert watcher.state is WatcherState.SUBSCRIBED
        await people.close()
        await asyncio.wait_for(task, timeout=5)
        assert watcher.state is WatcherState.IDLE


class _BrokenHeadStream(MockChain):
    """Head stream that fails on its first subscriptions, then behaves."""

    def __init__(self, name, stream_failures=1):
        super().__init__(name)
        self.stream_failures = stream_failures
        self.subscriptions = 0

    async def finalized_heads(self):
        self.subscriptions += 1
        if self.stream_failures:
            self.stream_failures -= 1
            raise KeyError("number")
        async for ref in super().finalized_heads():
            yield ref


@pytest.mark.asyncio
class TestHeadStreamRecovery:

    async def test_stream_error_resubscribes_and_reconciles_later_block(self):
        people = _BrokenHeadStream("people")
        reconciler = _RecordingReconciler()
        watcher = EventWatcher(people, reconciler, resubscribe_delay=0)

        people.push_block([_tracking_event("5Bob")])
        await people.close()
        await asyncio.wait_for(watcher.run(), timeout=5)

        assert people.subscriptions == 2
        assert reconciler.seen == ["5Bob"]
        assert watcher.state is WatcherState.IDLE

    async def test_repeated_stream_errors_keep_retrying(self):
        people = _BrokenHeadStream("people", stream_failures=3)
        reconciler = _RecordingReconciler()
        watcher = EventWatcher(people, reconciler, resubscribe_delay=0)

        people.push_block([_tracking_event("5Alice")])
        await people.close()
        await asyncio.wait_for(watcher.run(), timeout=5)

        assert people.subscriptions == 4
        assert reconciler.seen == ["5Alice"]

    async def test_cancel_stops_watcher(self):
        people = _BrokenHeadStream("people", stream_failures=0)
        watcher = EventWatcher(people, _RecordingReconciler())
        task = asyncio.ensure_future(watcher.run())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert watcher.state is WatcherState.IDLE
