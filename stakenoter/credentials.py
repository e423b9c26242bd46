"""Noter signing credential loading.

Order: mounted secret file, then the ``NOTER_MNEMONIC`` environment
variable (development only). Neither available is fatal.
"""

from __future__ import annotations

import os
from pathlib import Path

import bittensor as bt
from bittensor_wallet import Keypair

from stakenoter.errors import CredentialError

DEFAULT_SECRET_PATH = "/run/secrets/noter_mnemonic"
ENV_VAR = "NOTER_MNEMONIC"


def load_mnemonic(secret_path: str = DEFAULT_SECRET_PATH, environ: dict | None = None) -> str:
    environ = os.environ if environ is None else environ
    path = Path(secret_path)
    if path.is_file():
        mnemonic = path.read_text().strip()
        if mnemonic:
            bt.logging.info({"credentials": "loaded_from_secret", "path": secret_path})
            return mnemonic
        bt.logging.warning({"credentials": "secret_file_empty", "path": secret_path})

    mnemonic = (environ.get(ENV_VAR) or "").strip()
    if mnemonic:
        bt.logging.warning({"credentials": f"loaded_from_env {ENV_VAR}, use a secret file in production"})
        return mnemonic

    raise CredentialError(f"No noter mnemonic found. Mount {secret_path} or set {ENV_VAR}.")


def load_keypair(secret_path: str = DEFAULT_SECRET_PATH, environ: dict | None = None) -> Keypair:
    """sr25519 keypair for the noter account."""
    mnemonic = load_mnemonic(secret_path, environ)
    try:
        return Keypair.create_from_mnemonic(mnemonic)
    except Exception as e:
        raise CredentialError(f"Invalid noter mnemonic: {e}") from e


__all__ = ["DEFAULT_SECRET_PATH", "ENV_VAR", "load_keypair", "load_mnemonic"]
