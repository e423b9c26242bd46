"""Short-lived memo scoped to one block or one sweep batch.

Created by the caller that owns the scope, passed down the reconciliation
call stack, and dropped when the scope ends. Concurrent lookups of the same
key share one in-flight load.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Hashable


class ScopedMemo:
    """Bounded async memo keyed by hashable tuples."""

    def __init__(self, scope: str, max_entries: int = 256):
        self.scope = scope
        self.max_entries = max_entries
        self._entries: OrderedDict[Hashable, asyncio.Future] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_load(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        fut = self._entries.get(key)
        if fut is None:
            fut = asyncio.ensure_future(loader())
            self._entries[key] = fut
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        try:
            return await asyncio.shield(fut)
        except Exception:
            # Failed loads are not remembered
            if self._entries.get(key) is fut:
                del self._entries[key]
            raise


__all__ = ["ScopedMemo"]
