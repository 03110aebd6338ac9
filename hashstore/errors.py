# hashstore/errors.py
"""
Error taxonomy.

Contract errors abort a call with no state change. Each carries a stable
``code`` (used on the wire) and a human-readable ``reason``.
"""

from typing import Dict, Optional, Type


class RegistryError(Exception):
    """Base class for contract call aborts."""
    code = "RegistryError"
    default_reason = "Call reverted"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.default_reason
        super().__init__(self.reason)

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.code, "message": self.reason}


class Unauthorized(RegistryError):
    """Caller lacks the privilege the operation requires."""
    code = "Unauthorized"
    default_reason = "Only owner can call this function"


class AlreadyRegistered(RegistryError):
    code = "AlreadyRegistered"
    default_reason = "User is already registered"


class CannotRemoveOwner(RegistryError):
    code = "CannotRemoveOwner"
    default_reason = "Cannot unregister owner"


class NotRegistered(RegistryError):
    code = "NotRegistered"
    default_reason = "User is not registered"


class EmptyHash(RegistryError):
    code = "EmptyHash"
    default_reason = "IPFS hash cannot be empty"


_ERRORS: Dict[str, Type[RegistryError]] = {
    cls.code: cls
    for cls in (RegistryError, Unauthorized, AlreadyRegistered,
                CannotRemoveOwner, NotRegistered, EmptyHash)
}


def error_from_code(code: str, reason: Optional[str] = None) -> RegistryError:
    """Rebuild a contract error from its wire code."""
    cls = _ERRORS.get(code, RegistryError)
    return cls(reason)


class InvalidAddress(ValueError):
    """Address is not 0x followed by 40 hex characters."""


class TransactionRejected(Exception):
    """Transaction was refused before execution (signature, nonce, chain)."""


class ChainMismatch(Exception):
    """Client is pointed at a node on an unexpected chain."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected chain id {expected}, node reports {actual}")


class PinningError(RuntimeError):
    """Pinning service failed to store content."""
