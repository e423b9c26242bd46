"""Tests for the websocket chain connector against a scripted substrate session."""

import asyncio

import pytest
import pytest_asyncio
from async_substrate_interface.errors import SubstrateRequestException

from stakenoter.chain.connector import ChainConnector
from stakenoter.chain.interface import CallSpec
from stakenoter.chain.mock import MockChain
from stakenoter.errors import ChainConnectionError, ChainTransportError
from stakenoter.reconcile.engine import Reconciler
from stakenoter.reconcile.submitter import Submitter


class _Decoded:

    def __init__(self, value):
        self.value = value


async def _resolved(value):
    return value


class _Receipt:

    def __init__(self, success, error=None):
        self._success = success
        self._error = error
        self.block_hash = "0xincluded"
        self.extrinsic_hash = "0xext"

    @property
    def is_success(self):
        return _resolved(self._success)

    @property
    def error_message(self):
        return _resolved(self._error)


class _PagedResult:

    def __init__(self, items):
        self._items = list(items)

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for item in self._items:
            yield item


class FakeSubstrate:
    """Scripted stand-in for an AsyncSubstrateInterface session."""

    def __init__(self, url):
        self.url = url
        self.storage = {}
        self.modules = {"Staking"}
        self.heads = []
        self.fail_next = None
        self.composed = []
        self.receipt = _Receipt(True)
        self.closed = False

    def _maybe_fail(self):
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error

    async def initialize(self):
        return None

    async def rpc_request(self, method, params):
        return {"result": "Pezkuwi"}

    async def query(self, module, storage, params):
        self._maybe_fail()
        return _Decoded(self.storage.get((module, storage, tuple(params))))

    async def create_storage_key(self, module, storage, params):
        return (module, storage, tuple(params))

    async def query_multi(self, keys):
        return [(key, _Decoded(self.storage.get(key))) for key in keys]

    async def query_map(self, module, storage, page_size=100):
        items = [
            (_Decoded([key[2][0]]), _Decoded(value))
            for key, value in self.storage.items()
            if key[:2] == (module, storage)
        ]
        return _PagedResult(items)

    async def get_metadata_storage_function(self, module, storage):
        return object() if module in self.modules else None

    async def get_chain_finalised_head(self):
        self._maybe_fail()
        return self.heads.pop(0) if len(self.heads) > 1 else self.heads[0]

    async def get_block_header(self, block_hash=None):
        return {"header": {"number": hex(int(block_hash[2:]))}}

    async def get_block_hash(self, number):
        return f"0x{number}"

    async def get_events(self, block_hash=None):
        return [{"event": {"module_id": "System", "event_id": "ExtrinsicSuccess"}}]

    async def compose_call(self, module, function, params):
        self.composed.append((module, function, params))
        return {"call": f"{module}.{function}", "args": params}

    async def create_signed_extrinsic(self, call, keypair):
        return {"signed": call, "by": keypair}

    async def submit_extrinsic(self, extrinsic, wait_for_inclusion=False, wait_for_finalization=False):
        assert wait_for_inclusion
        return self.receipt

    async def close(self):
        self.closed = True


class _Factory:

    def __init__(self):
        self.sessions = []
        self.heads = []

    def __call__(self, url):
        session = FakeSubstrate(url)
        session.heads = self.heads
        self.sessions.append(session)
        return session


@pytest.fixture
def factory():
    return _Factory()


@pytest_asyncio.fixture
async def connector(factory):
    conn = ChainConnector("people", "ws://people", call_timeout=2, head_poll_interval=0, substrate_factory=factory)
    await conn.connect()
    yield conn
    await conn.close()


@pytest.mark.asyncio
class TestConnect:

    async def test_connect_sets_ready(self, connector, factory):
        assert connector.ready
        assert factory.sessions[0].url == "ws://people"

    async def test_unreachable_endpoint_raises(self):
        def broken(url):
            raise OSError("connection refused")

        conn = ChainConnector("relay", "ws://nowhere", substrate_factory=broken)
        with pytest.raises(ChainConnectionError, match="relay"):
            await conn.connect()
        assert not conn.ready


@pytest.mark.asyncio
class TestStorage:

    async def test_query_unwraps_value(self, connector, factory):
        factory.sessions[0].storage[("Staking", "Ledger", ("5Alice",))] = {"active": 10}
        assert await connector.query("Staking", "Ledger", ["5Alice"]) == {"active": 10}
        assert await connector.query("Staking", "Ledger", ["5Bob"]) is None

    async def test_query_multi_preserves_order(self, connector, factory):
        session = factory.sessions[0]
        session.storage[("StakingScore", "CachedStakingDetails", ("5A", "AssetHub"))] = {"staked_amount": 2}
        values = await connector.query_multi(
            "StakingScore", "CachedStakingDetails", [["5A", "RelayChain"], ["5A", "AssetHub"]],
        )
        assert values == [None, {"staked_amount": 2}]
        assert await connector.query_multi("StakingScore", "CachedStakingDetails", []) == []

    async def test_query_map_keys_unwraps_single_keys(self, connector, factory):
        session = factory.sessions[0]
        session.storage[("StakingScore", "StakingStartBlock", ("5A",))] = 1
        session.storage[("StakingScore", "StakingStartBlock", ("5B",))] = 2
        assert await connector.query_map_keys("StakingScore", "StakingStartBlock") == ["5A", "5B"]

    async def test_has_storage_reads_metadata(self, connector):
        assert await connector.has_storage("Staking", "Ledger")
        assert not await connector.has_storage("NominationPools", "PoolMembers")

    async def test_has_storage_propagates_lookup_failure(self, connector, factory):
        async def failing_lookup(module, storage):
            raise SubstrateRequestException("runtime fetch failed")

        factory.sessions[0].get_metadata_storage_function = failing_lookup
        with pytest.raises(SubstrateRequestException):
            await connector.has_storage("Staking", "Ledger")
        assert connector.ready


@pytest.mark.asyncio
class TestReconnect:

    async def test_transport_error_marks_not_ready_and_reconnects(self, connector, factory):
        factory.sessions[0].fail_next = ConnectionError("socket reset")

        with pytest.raises(ChainTransportError) as exc:
            await connector.query("Staking", "Ledger", ["5Alice"])

        assert exc.value.chain == "people"
        assert not connector.ready
        await asyncio.wait_for(connector.wait_ready(), timeout=5)
        assert len(factory.sessions) == 2
        assert factory.sessions[0].closed

    async def test_timeout_is_a_transport_error(self, factory):
        class Slow(FakeSubstrate):
            async def query(self, module, storage, params):
                await asyncio.sleep(10)

        conn = ChainConnector("relay", "ws://relay", call_timeout=0.05, substrate_factory=Slow)
        await conn.connect()
        try:
            with pytest.raises(ChainTransportError):
                await conn.query("Staking", "Ledger", ["5Alice"])
            assert not conn.ready
        finally:
            await conn.close()


@pytest.mark.asyncio
class TestFinalizedHeads:

    async def _take(self, connector, count):
        seen = []
        async for ref in connector.finalized_heads():
            seen.append(ref)
            if len(seen) == count:
                break
        return seen

    async def test_backfills_skipped_blocks(self, connector, factory):
        factory.sessions[0].heads = ["0x5", "0x8"]
        refs = await asyncio.wait_for(self._take(connector, 4), timeout=5)
        assert [r.number for r in refs] == [5, 6, 7, 8]
        assert [r.hash for r in refs] == ["0x5", "0x6", "0x7", "0x8"]

    async def test_backfill_is_bounded(self, factory):
        conn = ChainConnector(
            "people", "ws://people", head_poll_interval=0, max_backfill=2, substrate_factory=factory,
        )
        await conn.connect()
        try:
            factory.sessions[0].heads = ["0x1", "0x10"]
            refs = await asyncio.wait_for(self._take(conn, 4), timeout=5)
            assert [r.number for r in refs] == [1, 8, 9, 10]
        finally:
            await conn.close()

    async def test_stream_survives_transport_error(self, connector, factory):
        factory.heads.extend(["0x3", "0x4"])
        factory.sessions[0].fail_next = ConnectionError("reset")
        refs = await asyncio.wait_for(self._take(connector, 2), timeout=10)
        assert [r.number for r in refs] == [3, 4]
        assert len(factory.sessions) == 2


@pytest.mark.asyncio
class TestSubmit:

    async def test_batch_is_composed_recursively(self, connector, factory):
        inner = [
            CallSpec("StakingScore", "receive_staking_details", {"who": "5A"}),
            CallSpec("StakingScore", "receive_staking_details", {"who": "5B"}),
        ]
        receipt = await connector.submit(CallSpec("Utility", "batch_all", {"calls": inner}), keypair="kp")

        assert receipt.success
        assert receipt.block_hash == "0xincluded"
        composed = factory.sessions[0].composed
        assert [(m, f) for m, f, _ in composed] == [
            ("StakingScore", "receive_staking_details"),
            ("StakingScore", "receive_staking_details"),
            ("Utility", "batch_all"),
        ]
        assert len(composed[-1][2]["calls"]) == 2

    async def test_failed_receipt_carries_error(self, connector, factory):
        error = {"type": "Module", "name": "NotAuthorized", "docs": ["Caller is not a noter"]}
        factory.sessions[0].receipt = _Receipt(False, error)

        receipt = await connector.submit(CallSpec("StakingScore", "receive_staking_details", {}), keypair="kp")

        assert not receipt.success
        assert receipt.error == error


@pytest.mark.asyncio
class TestCapabilityLookupInReconcile:

    async def test_metadata_failure_leaves_relay_cache_alone(self):
        class LookupFails(FakeSubstrate):
            async def get_metadata_storage_function(self, module, storage):
                raise SubstrateRequestException("runtime fetch failed")

        relay = ChainConnector("relay", "ws://relay", substrate_factory=LookupFails)
        await relay.connect()
        asset_hub, people = MockChain("asset_hub"), MockChain("people")
        people.set("StakingScore", "CachedStakingDetails", ("5Alice", "RelayChain"), {
            "staked_amount": 500, "nominations_count": 3, "unlocking_chunks_count": 0,
        })
        reconciler = Reconciler.for_chains(relay, asset_hub, people, Submitter(people, keypair=None))
        try:
            with pytest.raises(SubstrateRequestException):
                await reconciler.reconcile_account("5Alice")
        finally:
            await relay.close()

        assert people.submissions == []
        assert people.get("StakingScore", "CachedStakingDetails", ("5Alice", "RelayChain"))["staked_amount"] == 500
