"""Reconciliation engine.

Keeps the destination chain's staking cache consistent with the source
ledgers. Two triggers feed one per-account routine:
- Scheduler: full sweep over every tracked account on a timer
- EventWatcher: immediate reconciliation when an account starts tracking
"""

from .aggregator import combine
from .cache import CacheReader
from .collector import StakingCollector
from .diff import should_update
from .engine import Reconciler, SourceRoute
from .memo import ScopedMemo
from .models import (
    Decision,
    PartialCollectionResult,
    PendingUpdate,
    Source,
    StakingSnapshot,
)
from .registry import AccountRegistry
from .scheduler import Scheduler, SweepReport
from .submitter import SubmissionOutcome, Submitter
from .watcher import EventWatcher, WatcherState

__all__ = [
    "AccountRegistry",
    "CacheReader",
    "Decision",
    "EventWatcher",
    "PartialCollectionResult",
    "PendingUpdate",
    "Reconciler",
    "Scheduler",
    "ScopedMemo",
    "Source",
    "SourceRoute",
    "StakingCollector",
    "StakingSnapshot",
    "SubmissionOutcome",
    "Submitter",
    "SweepReport",
    "WatcherState",
    "combine",
    "should_update",
]
