"""Websocket RPC connector for one substrate chain.

Wraps an ``AsyncSubstrateInterface`` session with:
  - a ready flag callers await before issuing calls,
  - per-call timeouts,
  - background reconnect with exponential backoff when the transport drops,
  - a gap-free finalized head stream that survives reconnects.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable

import bittensor as bt
import websockets
from async_substrate_interface import AsyncSubstrateInterface
from async_substrate_interface.errors import SubstrateRequestException

from stakenoter.chain.interface import BlockRef, CallSpec, SubmissionReceipt
from stakenoter.errors import ChainConnectionError, ChainTransportError

TRANSPORT_ERRORS = (
    websockets.exceptions.ConnectionClosed,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
)

MAX_BACKOFF_SECONDS = 30.0


def _value(obj: Any) -> Any:
    """Unwrap a decoded SCALE object to plain python."""
    if obj is None:
        return None
    return getattr(obj, "value", obj)


def _header_number(header: Any) -> int:
    inner = header.get("header", header) if isinstance(header, dict) else header
    number = inner["number"] if isinstance(inner, dict) else getattr(inner, "number")
    if isinstance(number, str):
        return int(number, 16) if number.startswith("0x") else int(number)
    return int(number)


class ChainConnector:
    """Live RPC session against one chain endpoint."""

    def __init__(
        self,
        name: str,
        endpoint: str,
        call_timeout: float = 60.0,
        submit_timeout: float = 180.0,
        head_poll_interval: float = 6.0,
        max_backfill: int = 64,
        substrate_factory: Callable[[str], Any] | None = None,
    ):
        self.name = name
        self.endpoint = endpoint
        self._call_timeout = call_timeout
        self._submit_timeout = submit_timeout
        self._head_poll_interval = head_poll_interval
        self._max_backfill = max_backfill
        self._factory = substrate_factory or (lambda url: AsyncSubstrateInterface(url))
        self._substrate: Any = None
        self._ready = asyncio.Event()
        self._reconnect_task: asyncio.Task | None = None
        self._closed = False

    # -- Lifecycle --

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    async def wait_ready(self) -> None:
        await self._ready.wait()

    async def connect(self) -> ChainConnector:
        """Open the initial session. Failure here is fatal for the caller."""
        try:
            await self._open()
        except Exception as e:
            raise ChainConnectionError(f"{self.name}: cannot connect to {self.endpoint}: {e}") from e
        return self

    async def _open(self) -> None:
        substrate = self._factory(self.endpoint)
        await asyncio.wait_for(substrate.initialize(), timeout=self._call_timeout)
        chain = await asyncio.wait_for(
            substrate.rpc_request("system_chain", []), timeout=self._call_timeout,
        )
        self._substrate = substrate
        self._ready.set()
        bt.logging.info({
            "chain_connector": {
                "chain": self.name,
                "status": "connected",
                "endpoint": self.endpoint,
                "runtime_chain": (chain or {}).get("result") if isinstance(chain, dict) else chain,
            }
        })

    async def close(self) -> None:
        self._closed = True
        self._ready.clear()
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
        if self._substrate is not None:
            await self._substrate.close()
            self._substrate = None

    def _on_transport_error(self, error: BaseException) -> None:
        if self._closed:
            return
        self._ready.clear()
        if self._reconnect_task is None or self._reconnect_task.done():
            bt.logging.warning({
                "chain_connector": {"chain": self.name, "status": "disconnected", "error": str(error)}
            })
            self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect())

    async def _reconnect(self) -> None:
        attempt = 0
        stale, self._substrate = self._substrate, None
        if stale is not None:
            try:
                await stale.close()
            except Exception as e:
                bt.logging.debug({"chain_connector": {"chain": self.name, "stale_close_error": str(e)}})

        while not self._closed:
            wait = min(MAX_BACKOFF_SECONDS, 2 ** attempt)
            await asyncio.sleep(wait)
            try:
                await self._open()
                bt.logging.info({"chain_connector": {"chain": self.name, "status": "reconnected", "attempts": attempt + 1}})
                return
            except Exception as e:
                attempt += 1
                bt.logging.warning({
                    "chain_connector": {"chain": self.name, "reconnect_retry": attempt, "wait": wait, "error": str(e)}
                })

    async def _call(self, method: str, *args: Any, timeout: float | None = None, **kwargs: Any) -> Any:
        """Await readiness, then run one substrate call with a timeout."""
        await self.wait_ready()
        fn = getattr(self._substrate, method)
        try:
            return await asyncio.wait_for(fn(*args, **kwargs), timeout=timeout or self._call_timeout)
        except TRANSPORT_ERRORS as e:
            self._on_transport_error(e)
            raise ChainTransportError(self.name, f"{method} failed: {e!r}") from e

    # -- Storage --

    async def query(self, module: str, storage: str, params: list[Any] | None = None) -> Any:
        return _value(await self._call("query", module, storage, params or []))

    async def query_multi(self, module: str, storage: str, params_list: list[list[Any]]) -> list[Any]:
        if not params_list:
            return []
        keys = [
            await self._call("create_storage_key", module, storage, params)
            for params in params_list
        ]
        results = await self._call("query_multi", keys)
        return [_value(obj) for _key, obj in results]

    async def query_map_keys(self, module: str, storage: str) -> list[Any]:
        result = await self._call("query_map", module, storage, page_size=100)
        keys: list[Any] = []
        async for key, _obj in result:
            key = _value(key)
            if isinstance(key, (list, tuple)) and len(key) == 1:
                key = key[0]
            keys.append(key)
        return keys

    async def has_storage(self, module: str, storage: str) -> bool:
        """Whether the runtime metadata declares this storage item.

        Only a definite miss in the metadata is False. A failed lookup raises,
        since the metadata fetch itself goes over the wire.
        """
        found = await self._call("get_metadata_storage_function", module, storage)
        return found is not None

    # -- Blocks --

    async def get_events(self, block_hash: str) -> list[Any]:
        events = await self._call("get_events", block_hash=block_hash)
        return list(events or [])

    async def _finalized_head(self) -> BlockRef:
        head_hash = await self._call("get_chain_finalised_head")
        header = await self._call("get_block_header", block_hash=head_hash)
        return BlockRef(number=_header_number(header), hash=str(head_hash))

    async def finalized_heads(self) -> AsyncIterator[BlockRef]:
        """Yield every finalized block once, in order.

        Polls the finalized head and backfills skipped numbers (bounded by
        ``max_backfill``). Transport failures wait for the reconnect and
        resume from the last yielded block.
        """
        last: int | None = None
        while not self._closed:
            try:
                head = await self._finalized_head()
                start = head.number if last is None else last + 1
                if head.number - start > self._max_backfill:
                    bt.logging.warning({
                        "chain_connector": {"chain": self.name, "backfill_truncated": {"from": start, "to": head.number}}
                    })
                    start = head.number - self._max_backfill
                for number in range(start, head.number + 1):
                    if number == head.number:
                        ref = head
                    else:
                        ref = BlockRef(number=number, hash=str(await self._call("get_block_hash", number)))
                    yield ref
                    last = number
            except (ChainTransportError, SubstrateRequestException) as e:
                bt.logging.warning({"chain_connector": {"chain": self.name, "head_stream_error": str(e)}})
            await asyncio.sleep(self._head_poll_interval)

    # -- Submission --

    async def _compose(self, call: CallSpec) -> Any:
        params = dict(call.params)
        if "calls" in params:
            params["calls"] = [await self._compose(inner) for inner in params["calls"]]
        return await self._call("compose_call", call.module, call.function, params)

    async def submit(self, call: CallSpec, keypair: Any) -> SubmissionReceipt:
        """Sign and submit, resolving once the extrinsic is in a block.

        Not retried here: an ambiguous transport failure is left to the next
        cycle, which re-reads the cache before deciding to write again.
        """
        composed = await self._compose(call)
        extrinsic = await self._call("create_signed_extrinsic", call=composed, keypair=keypair)
        receipt = await self._call(
            "submit_extrinsic",
            extrinsic,
            wait_for_inclusion=True,
            wait_for_finalization=False,
            timeout=self._submit_timeout,
        )
        success = await receipt.is_success
        error = None if success else await receipt.error_message
        return SubmissionReceipt(
            block_hash=getattr(receipt, "block_hash", None),
            success=bool(success),
            error=error,
            extrinsic_hash=getattr(receipt, "extrinsic_hash", None),
        )


__all__ = ["ChainConnector", "TRANSPORT_ERRORS"]
