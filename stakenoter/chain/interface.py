"""ChainClient protocol - the remote capabilities the engine relies on.

Implementations: ChainConnector (websocket RPC), MockChain (in-memory).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol, runtime_checkable


@dataclass(frozen=True)
class BlockRef:
    """A finalized block reference."""

    number: int
    hash: str

    def __str__(self) -> str:
        return f"#{self.number} ({self.hash[:10]})"


@dataclass(frozen=True)
class CallSpec:
    """One runtime call to be composed and signed."""

    module: str
    function: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class SubmissionReceipt:
    """Inclusion result for a submitted extrinsic."""

    block_hash: str | None
    success: bool
    error: Any = None
    extrinsic_hash: str | None = None


@runtime_checkable
class ChainClient(Protocol):
    """Abstract interface over one chain's RPC session."""

    name: str

    @property
    def ready(self) -> bool:
        """True while the session is usable."""
        ...

    async def wait_ready(self) -> None:
        """Block until the session is usable."""
        ...

    async def query(
        self, module: str, storage: str, params: list[Any] | None = None,
    ) -> Any:
        """Read one storage entry. Returns None when absent."""
        ...

    async def query_multi(
        self, module: str, storage: str, params_list: list[list[Any]],
    ) -> list[Any]:
        """Read several entries of one storage item in a single round-trip."""
        ...

    async def query_map_keys(self, module: str, storage: str) -> list[Any]:
        """First key argument of every entry in a storage map."""
        ...

    async def has_storage(self, module: str, storage: str) -> bool:
        """Whether the runtime metadata declares this storage item."""
        ...

    async def get_events(self, block_hash: str) -> list[Any]:
        """Events recorded in a block."""
        ...

    def finalized_heads(self) -> AsyncIterator[BlockRef]:
        """Stream of finalized block references, in order, without gaps."""
        ...

    async def submit(self, call: CallSpec, keypair: Any) -> SubmissionReceipt:
        """Sign, submit and wait for inclusion in a block."""
        ...

    async def close(self) -> None:
        ...


__all__ = ["BlockRef", "CallSpec", "ChainClient", "SubmissionReceipt"]
