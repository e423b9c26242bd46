"""Noter entrypoint.

Connects to the relay, asset hub and people chains, loads the noter
credential, and keeps the people chain's staking cache reconciled.

Startup is all-or-nothing: a missing credential or an unreachable chain
exits with status 1.
"""

import argparse
import asyncio
import os
import signal
import sys

import bittensor as bt
from dotenv import load_dotenv


def main() -> None:
    # Load .env if not in test mode
    if os.environ.get("STAKENOTER_TEST_MODE") != "true":
        load_dotenv()

    from stakenoter.chain.connector import ChainConnector
    from stakenoter.chain.mock import MockChain
    from stakenoter.config import add_args, load_settings
    from stakenoter.credentials import load_keypair
    from stakenoter.errors import ChainConnectionError, CredentialError
    from stakenoter.runtime import NoterRuntime

    parser = argparse.ArgumentParser(description="Staking score noter")
    bt.logging.add_args(parser)
    add_args(parser)
    args = parser.parse_args()

    try:
        settings = load_settings(args)
    except ValueError as e:
        bt.logging.error({"noter": {"invalid_config": str(e)}})
        sys.exit(1)

    bt.logging.info({"noter": "starting"})

    try:
        keypair = load_keypair(settings.secret_path)
    except CredentialError as e:
        bt.logging.error({"noter": {"credential": str(e)}})
        sys.exit(1)

    bt.logging.info({
        "noter_config": {
            "account": keypair.ss58_address,
            "relay_rpc": settings.chain.relay_rpc,
            "asset_hub_rpc": settings.chain.asset_hub_rpc,
            "people_rpc": settings.chain.people_rpc,
            "sweep_interval": settings.sweep.interval,
            "batch_size": settings.sweep.batch_size,
            "mock": settings.mock,
        }
    })

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    if settings.mock:
        chains = [MockChain("relay"), MockChain("asset_hub"), MockChain("people")]
    else:
        chains = [
            ChainConnector(name, endpoint, call_timeout=settings.chain.call_timeout)
            for name, endpoint in (
                ("relay", settings.chain.relay_rpc),
                ("asset_hub", settings.chain.asset_hub_rpc),
                ("people", settings.chain.people_rpc),
            )
        ]
        try:
            loop.run_until_complete(asyncio.gather(*(c.connect() for c in chains)))
        except ChainConnectionError as e:
            bt.logging.error({"noter": {"startup_connect_failed": str(e)}})
            loop.run_until_complete(_close_all(chains))
            loop.close()
            sys.exit(1)

    relay, asset_hub, people = chains
    runtime = NoterRuntime(relay, asset_hub, people, keypair, settings)

    # Graceful shutdown
    def _signal_handler(sig, frame):
        bt.logging.info({"noter": "shutdown_signal_received"})
        loop.call_soon_threadsafe(runtime.stop)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    exit_code = 0
    try:
        loop.run_until_complete(runtime.run())
    except KeyboardInterrupt:
        bt.logging.info({"noter": "keyboard_interrupt"})
    except Exception as e:
        bt.logging.error({"noter": {"fatal": str(e), "bootstrapped": runtime.bootstrapped}})
        exit_code = 1
    finally:
        loop.run_until_complete(_close_all(chains))
        loop.close()
        bt.logging.info({"noter": "stopped"})
    sys.exit(exit_code)


async def _close_all(chains) -> None:
    for chain in chains:
        try:
            await chain.close()
        except Exception as e:
            bt.logging.debug({"noter": {"close_error": str(e), "chain": chain.name}})


if __name__ == "__main__":
    main()
