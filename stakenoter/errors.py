"""Exception types shared across the noter service."""

from __future__ import annotations


class NoterError(Exception):
    """Base class for noter errors."""


class CredentialError(NoterError):
    """No signing credential could be loaded."""


class ChainConnectionError(NoterError):
    """A chain endpoint could not be reached at startup."""


class ChainTransportError(NoterError):
    """A remote call failed because the transport dropped or timed out."""

    def __init__(self, chain: str, message: str):
        super().__init__(f"{chain}: {message}")
        self.chain = chain


class DispatchFailure(NoterError):
    """The destination chain rejected a submitted call.

    Module errors carry the pallet and error name; anything else is kept
    as an opaque message.
    """

    def __init__(
        self,
        message: str,
        module: str | None = None,
        name: str | None = None,
        docs: str = "",
        block_hash: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.module = module
        self.name = name
        self.docs = docs
        self.block_hash = block_hash

    @property
    def is_module_error(self) -> bool:
        return self.name is not None

    @classmethod
    def from_error_message(cls, error: object, block_hash: str | None = None) -> DispatchFailure:
        """Decode a receipt error payload into a structured failure."""
        if isinstance(error, dict):
            name = error.get("name")
            module = error.get("module") or error.get("pallet") or error.get("section")
            docs = error.get("docs") or ""
            if isinstance(docs, (list, tuple)):
                docs = " ".join(str(d) for d in docs)
            if error.get("type") == "Module" and name:
                label = f"{module}.{name}" if module else str(name)
                return cls(
                    message=f"{label}: {docs}".rstrip(": "),
                    module=module,
                    name=str(name),
                    docs=str(docs),
                    block_hash=block_hash,
                )
            return cls(message=str(name or error), block_hash=block_hash)
        return cls(message=str(error), block_hash=block_hash)


__all__ = [
    "ChainConnectionError",
    "ChainTransportError",
    "CredentialError",
    "DispatchFailure",
    "NoterError",
]
