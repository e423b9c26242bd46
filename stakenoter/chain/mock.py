"""In-memory chain used by tests and ``--mock`` runs.

Storage is a dict per (module, storage item) keyed by the tuple of key
arguments. Submitted ``StakingScore.receive_staking_details`` calls are
applied to ``CachedStakingDetails`` so repeated cycles see their own writes.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

from stakenoter.chain.interface import BlockRef, CallSpec, SubmissionReceipt
from stakenoter.errors import ChainTransportError

BATCH_FUNCTIONS = {"batch", "batch_all", "force_batch"}
DEFAULT_MODULES = frozenset({"System", "Staking", "NominationPools", "StakingScore", "Tiki", "Utility"})


def flatten_calls(call: CallSpec) -> list[CallSpec]:
    """Unwrap utility batches recursively into their leaf calls."""
    if call.module == "Utility" and call.function in BATCH_FUNCTIONS:
        leaves: list[CallSpec] = []
        for inner in call.params.get("calls", []):
            leaves.extend(flatten_calls(inner))
        return leaves
    return [call]


def _key(params: list[Any] | tuple | None) -> tuple:
    return tuple(params or ())


class MockChain:
    """ChainClient backed by plain dictionaries."""

    def __init__(self, name: str, modules: set[str] | None = None):
        self.name = name
        self.modules: set[str] = set(DEFAULT_MODULES if modules is None else modules)
        self.storage: dict[tuple[str, str], dict[tuple, Any]] = {}
        self.events: dict[str, list[Any]] = {}
        self.submissions: list[CallSpec] = []
        self.dispatch_error: Any = None
        self.query_count = 0
        self._failures: dict[tuple, Exception] = {}
        self._metadata_failures: dict[str, Exception] = {}
        self._heads: asyncio.Queue[BlockRef | None] = asyncio.Queue()
        self._block_number = 0
        self._ready = True

    # -- Seeding --

    def set(self, module: str, storage: str, key: Any, value: Any) -> None:
        params = key if isinstance(key, tuple) else (key,)
        self.storage.setdefault((module, storage), {})[params] = value

    def get(self, module: str, storage: str, key: Any) -> Any:
        params = key if isinstance(key, tuple) else (key,)
        return self.storage.get((module, storage), {}).get(params)

    def remove_module(self, module: str) -> None:
        self.modules.discard(module)

    def fail(self, module: str, storage: str, key: Any = None, error: Exception | None = None) -> None:
        """Make reads of a storage item (or a single key of it) raise."""
        params = None if key is None else (key if isinstance(key, tuple) else (key,))
        self._failures[(module, storage, params)] = error or ChainTransportError(self.name, "injected failure")

    def fail_metadata(self, module: str, error: Exception | None = None) -> None:
        """Make capability lookups for a pallet raise instead of answering."""
        self._metadata_failures[module] = error or ChainTransportError(self.name, "metadata fetch failed")

    def clear_failures(self) -> None:
        self._failures.clear()
        self._metadata_failures.clear()

    def push_block(self, events: list[Any] | None = None) -> BlockRef:
        self._block_number += 1
        ref = BlockRef(number=self._block_number, hash=f"0x{self._block_number:064x}")
        self.events[ref.hash] = list(events or [])
        self._heads.put_nowait(ref)
        return ref

    # -- ChainClient --

    @property
    def ready(self) -> bool:
        return self._ready

    async def wait_ready(self) -> None:
        return None

    def _check(self, module: str, storage: str, params: tuple) -> None:
        self.query_count += 1
        for probe in ((module, storage, params), (module, storage, None)):
            if probe in self._failures:
                raise self._failures[probe]

    async def query(self, module: str, storage: str, params: list[Any] | None = None) -> Any:
        key = _key(params)
        self._check(module, storage, key)
        return self.storage.get((module, storage), {}).get(key)

    async def query_multi(self, module: str, storage: str, params_list: list[list[Any]]) -> list[Any]:
        return [await self.query(module, storage, params) for params in params_list]

    async def query_map_keys(self, module: str, storage: str) -> list[Any]:
        self._check(module, storage, ())
        return [key[0] for key in self.storage.get((module, storage), {})]

    async def has_storage(self, module: str, storage: str) -> bool:
        if module in self._metadata_failures:
            raise self._metadata_failures[module]
        return module in self.modules

    async def get_events(self, block_hash: str) -> list[Any]:
        self._check("System", "Events", (block_hash,))
        return list(self.events.get(block_hash, []))

    async def finalized_heads(self) -> AsyncIterator[BlockRef]:
        while True:
            ref = await self._heads.get()
            if ref is None:
                return
            yield ref

    async def submit(self, call: CallSpec, keypair: Any) -> SubmissionReceipt:
        self.submissions.append(call)
        self._block_number += 1
        block_hash = f"0x{self._block_number:064x}"
        if self.dispatch_error is not None:
            return SubmissionReceipt(block_hash=block_hash, success=False, error=self.dispatch_error)
        for leaf in flatten_calls(call):
            if (leaf.module, leaf.function) == ("StakingScore", "receive_staking_details"):
                p = leaf.params
                self.set("StakingScore", "CachedStakingDetails", (p["who"], p["source"]), {
                    "staked_amount": int(p["staked_amount"]),
                    "nominations_count": p["nominations_count"],
                    "unlocking_chunks_count": p["unlocking_chunks_count"],
                })
        return SubmissionReceipt(block_hash=block_hash, success=True)

    async def close(self) -> None:
        self._heads.put_nowait(None)


__all__ = ["MockChain", "flatten_calls"]
