"""Report staking cache drift for one or more accounts.

Read-only: collects fresh staking data, reads the people chain cache and
prints the decision the noter would take for each source. Nothing is
submitted.

Usage:
    python scripts/dev/check_cache.py 5GrwvaEF... 5FHneW46...
    python scripts/dev/check_cache.py --all --chain.people_rpc ws://127.0.0.1:9944
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import bittensor as bt


async def run(args: argparse.Namespace) -> int:
    from stakenoter.chain.connector import ChainConnector
    from stakenoter.config import load_settings
    from stakenoter.reconcile.engine import Reconciler
    from stakenoter.reconcile.registry import AccountRegistry

    settings = load_settings(args)
    chains = [
        ChainConnector(name, endpoint, call_timeout=settings.chain.call_timeout)
        for name, endpoint in (
            ("relay", settings.chain.relay_rpc),
            ("asset_hub", settings.chain.asset_hub_rpc),
            ("people", settings.chain.people_rpc),
        )
    ]
    print("Connecting to relay, asset hub and people chains...")
    await asyncio.gather(*(c.connect() for c in chains))
    relay, asset_hub, people = chains

    # Planning never touches the submitter, so no keypair is needed
    reconciler = Reconciler.for_chains(relay, asset_hub, people, submitter=None)

    addresses = list(args.addresses)
    if args.all:
        addresses = await AccountRegistry(people, settings.chain.ss58_format).tracked_accounts()

    if not addresses:
        print("No addresses given (pass addresses or --all).")
        return 0

    print(f"\nStaking cache check ({len(addresses)} account(s))")
    print(f"{'=' * 72}")
    drifted = 0
    try:
        for address in addresses:
            try:
                updates = await reconciler.plan_account(address)
            except Exception as e:
                print(f"{address}  ERROR  {e}")
                continue
            cached = await reconciler.cache.read_all(address, [r.source for r in reconciler.routes])
            for route in reconciler.routes:
                pending = next((u for u in updates if u.source == route.source), None)
                current = cached.get(route.source)
                state = "DRIFT" if pending else "ok"
                cached_txt = "-" if current is None else f"{current.staked_amount}/{current.nominations_count}/{current.unlocking_chunks_count}"
                fresh_txt = "" if pending is None else f" -> {pending.snapshot.staked_amount}/{pending.snapshot.nominations_count}/{pending.snapshot.unlocking_chunks_count}"
                print(f"{address[:12]}  {route.source.value:<10}  {state:<5}  cached={cached_txt}{fresh_txt}")
            drifted += 1 if updates else 0
    finally:
        for chain in chains:
            await chain.close()

    print(f"\n{drifted} of {len(addresses)} account(s) would be updated.")
    return 0


def main() -> None:
    from stakenoter.config import add_args

    parser = argparse.ArgumentParser(description="Check staking cache drift")
    add_args(parser)
    parser.add_argument("addresses", nargs="*", help="SS58 addresses to check")
    parser.add_argument("--all", action="store_true", help="Check every tracked account")
    args = parser.parse_args()
    bt.logging.set_warning()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
