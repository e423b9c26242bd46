"""Noter configuration: CLI flags with environment overrides.

Environment variables take precedence over CLI values, following the
``STAKENOTER_<SECTION>__<KEY>`` convention.
"""

from __future__ import annotations

import argparse
import os
from typing import Any, Mapping

from pydantic import BaseModel, Field, field_validator

from stakenoter.credentials import DEFAULT_SECRET_PATH

ENV_PREFIX = "STAKENOTER_"


class ChainSettings(BaseModel):
    relay_rpc: str = "wss://rpc.pezkuwichain.io"
    asset_hub_rpc: str = "wss://asset-hub-rpc.pezkuwichain.io"
    people_rpc: str = "wss://people-rpc.pezkuwichain.io"
    call_timeout: float = Field(default=60.0, gt=0)
    ss58_format: int = Field(default=42, ge=0)

    @field_validator("relay_rpc", "asset_hub_rpc", "people_rpc")
    @classmethod
    def _endpoint_set(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("endpoint must not be empty")
        return v.strip()


class SweepSettings(BaseModel):
    interval: float = Field(default=300.0, gt=0, description="Seconds between full sweeps")
    batch_size: int = Field(default=10, gt=0)
    batch_pause: float = Field(default=0.5, ge=0)


class NoterSettings(BaseModel):
    chain: ChainSettings = Field(default_factory=ChainSettings)
    sweep: SweepSettings = Field(default_factory=SweepSettings)
    secret_path: str = DEFAULT_SECRET_PATH
    mock: bool = False


# (section, key, cli dest, env suffix)
_OVERRIDES = [
    ("chain", "relay_rpc", "chain.relay_rpc", "CHAIN__RELAY_RPC"),
    ("chain", "asset_hub_rpc", "chain.asset_hub_rpc", "CHAIN__ASSET_HUB_RPC"),
    ("chain", "people_rpc", "chain.people_rpc", "CHAIN__PEOPLE_RPC"),
    ("chain", "call_timeout", "chain.call_timeout", "CHAIN__CALL_TIMEOUT"),
    ("chain", "ss58_format", "chain.ss58_format", "CHAIN__SS58_FORMAT"),
    ("sweep", "interval", "sweep.interval", "SWEEP__INTERVAL_SECONDS"),
    ("sweep", "batch_size", "sweep.batch_size", "SWEEP__BATCH_SIZE"),
    ("sweep", "batch_pause", "sweep.batch_pause", "SWEEP__BATCH_PAUSE_SECONDS"),
    (None, "secret_path", "noter.secret_path", "NOTER__SECRET_PATH"),
]

# Unprefixed names from earlier noter deployments, read after the prefixed ones
_LEGACY_ENV = {
    "chain.relay_rpc": ("RELAY_RPC", str),
    "chain.asset_hub_rpc": ("ASSET_HUB_RPC", str),
    "chain.people_rpc": ("PEOPLE_RPC", str),
    "sweep.interval": ("SCAN_INTERVAL_MS", lambda v: float(v) / 1000),
}


def add_args(parser: argparse.ArgumentParser) -> None:
    """Adds noter arguments to the parser."""
    parser.add_argument("--chain.relay_rpc", type=str, default=None, help="Relay chain websocket endpoint.")
    parser.add_argument("--chain.asset_hub_rpc", type=str, default=None, help="Asset hub websocket endpoint.")
    parser.add_argument("--chain.people_rpc", type=str, default=None, help="People chain (cache) websocket endpoint.")
    parser.add_argument("--chain.call_timeout", type=float, default=None, help="Per-call RPC timeout in seconds.")
    parser.add_argument("--chain.ss58_format", type=int, default=None, help="SS58 prefix for rendered addresses.")
    parser.add_argument("--sweep.interval", type=float, default=None, help="Seconds between full sweeps.")
    parser.add_argument("--sweep.batch_size", type=int, default=None, help="Accounts processed concurrently per batch.")
    parser.add_argument("--sweep.batch_pause", type=float, default=None, help="Pause between batches in seconds.")
    parser.add_argument("--noter.secret_path", type=str, default=None, help="File holding the noter mnemonic.")
    parser.add_argument("--mock", action="store_true", default=False, help="Run every chain in memory.")


def load_settings(
    args: argparse.Namespace | None = None, environ: Mapping[str, str] | None = None,
) -> NoterSettings:
    """Merge defaults, CLI values and environment overrides, then validate."""
    environ = os.environ if environ is None else environ
    data: dict[str, Any] = {"chain": {}, "sweep": {}}

    for section, key, dest, env_suffix in _OVERRIDES:
        value = getattr(args, dest, None) if args is not None else None
        env_value = environ.get(ENV_PREFIX + env_suffix)
        if env_value:
            value = env_value
        elif dest in _LEGACY_ENV and environ.get(_LEGACY_ENV[dest][0]):
            legacy_name, convert = _LEGACY_ENV[dest]
            value = convert(environ[legacy_name])
        if value is None:
            continue
        if section is None:
            data[key] = value
        else:
            data[section][key] = value

    data["mock"] = bool(getattr(args, "mock", False)) or environ.get(ENV_PREFIX + "MOCK") == "true"
    return NoterSettings.model_validate(data)


__all__ = ["ChainSettings", "NoterSettings", "SweepSettings", "add_args", "load_settings"]
