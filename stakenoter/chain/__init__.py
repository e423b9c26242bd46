"""Chain access: the ChainClient protocol, the websocket connector and an in-memory mock."""

from .connector import ChainConnector
from .interface import BlockRef, CallSpec, ChainClient, SubmissionReceipt
from .mock import MockChain, flatten_calls

__all__ = [
    "BlockRef",
    "CallSpec",
    "ChainClient",
    "ChainConnector",
    "MockChain",
    "SubmissionReceipt",
    "flatten_calls",
]
