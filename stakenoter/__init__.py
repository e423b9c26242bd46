"""Staking score noter: bridges source-chain staking state into the destination chain's cache."""

__version__ = "1.0.0"
