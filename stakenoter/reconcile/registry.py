"""Tracked-account discovery on the destination chain."""

from __future__ import annotations

from typing import Any

import bittensor as bt
from scalecodec.utils.ss58 import ss58_encode

from stakenoter.chain.interface import ChainClient

TRACKING_MODULE = "StakingScore"
TRACKING_STORAGE = "StakingStartBlock"


def normalize_address(key: Any, ss58_format: int = 42) -> str:
    """Render a storage key as an SS58 string."""
    if isinstance(key, (bytes, bytearray)):
        return ss58_encode(bytes(key), ss58_format)
    if isinstance(key, (list, tuple)) and len(key) == 32 and all(isinstance(x, int) for x in key):
        return ss58_encode(bytes(key), ss58_format)
    if isinstance(key, str) and key.startswith("0x") and len(key) == 66:
        return ss58_encode(key, ss58_format)
    return str(key)


class AccountRegistry:
    """Enumerates accounts under score tracking. Read-only."""

    def __init__(self, chain: ChainClient, ss58_format: int = 42):
        self.chain = chain
        self.ss58_format = ss58_format

    async def tracked_accounts(self) -> list[str]:
        keys = await self.chain.query_map_keys(TRACKING_MODULE, TRACKING_STORAGE)
        accounts = list(dict.fromkeys(normalize_address(k, self.ss58_format) for k in keys))
        bt.logging.debug({"account_registry": {"tracked": len(accounts)}})
        return accounts


__all__ = ["AccountRegistry", "normalize_address"]
