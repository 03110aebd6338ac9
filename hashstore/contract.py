# hashstore/contract.py
"""
IPFS hash storage contract.

The contract keeps:
- A single owner, fixed at creation
- The set of registered user addresses (owner always included)
- Per-user append-only lists of (ipfs_hash, file_name, timestamp) records

Every write checks all of its preconditions before touching state, so a
failed call leaves the contract exactly as it was.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Set

from .accounts import normalize_address
from .errors import (
    AlreadyRegistered,
    CannotRemoveOwner,
    EmptyHash,
    NotRegistered,
    Unauthorized,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserFile:
    """
    A stored file record.

    Attributes:
        ipfs_hash: Content identifier returned by the pinning service
        file_name: Original file name (free text)
        timestamp: Block time of the write, seconds since epoch
    """
    ipfs_hash: str
    file_name: str
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ipfs_hash": self.ipfs_hash,
            "file_name": self.file_name,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserFile":
        return cls(
            ipfs_hash=data["ipfs_hash"],
            file_name=data["file_name"],
            timestamp=int(data["timestamp"]),
        )


@dataclass(frozen=True)
class Event:
    """A notification emitted by a successful write."""
    name: str
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "args": dict(self.args)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        return cls(name=data["name"], args=dict(data.get("args", {})))


def hash_added(caller: str, ipfs_hash: str, file_name: str) -> Event:
    return Event("HashAdded", {"user": caller, "ipfs_hash": ipfs_hash, "file_name": file_name})


class HashStorage:
    """
    Access-controlled registry of IPFS hashes.

    Usage:
        contract = HashStorage(creator="0x...")
        contract.register_user(owner, alice)
        contract.add_hash(alice, "QmTest123", "test.txt")
        contract.get_user_files(alice, alice)

    Args:
        creator: Address of the deploying account; becomes the owner
        clock: Returns the current time in seconds (block time)
    """

    def __init__(self, creator: str, clock: Callable[[], float] = time.time):
        self._owner = normalize_address(creator)
        self._registered: Set[str] = {self._owner}
        self._files: Dict[str, List[UserFile]] = {}
        self.clock = clock

    @property
    def owner(self) -> str:
        return self._owner

    def is_owner(self, caller: str) -> bool:
        return normalize_address(caller) == self._owner

    def is_self_or_owner(self, caller: str, target: str) -> bool:
        caller = normalize_address(caller)
        return caller == normalize_address(target) or caller == self._owner

    def _only_owner(self, caller: str):
        if not self.is_owner(caller):
            raise Unauthorized("Only owner can call this function")

    # Writes

    def register_user(self, caller: str, target: str) -> List[Event]:
        """Add an address to the registered set (owner only)."""
        self._only_owner(caller)
        target = normalize_address(target)
        if target in self._registered:
            raise AlreadyRegistered("User is already registered")

        self._registered.add(target)
        logger.debug(f"Registered {target}")
        return [Event("UserRegistered", {"user": target})]

    def unregister_user(self, caller: str, target: str) -> List[Event]:
        """
        Remove an address from the registered set (owner only).

        The owner can never be removed. Removing an address that is not
        registered succeeds without changing anything. Stored files are kept.
        Targeting the owner fails with CannotRemoveOwner whoever the caller is.
        """
        target = normalize_address(target)
        if target == self._owner:
            raise CannotRemoveOwner("Cannot unregister owner")
        self._only_owner(caller)

        if target not in self._registered:
            return []
        self._registered.discard(target)
        logger.debug(f"Unregistered {target}")
        return [Event("UserUnregistered", {"user": target})]

    def add_hash(self, caller: str, ipfs_hash: str, file_name: str) -> List[Event]:
        """Append a file record to the caller's list."""
        caller = normalize_address(caller)
        if caller not in self._registered:
            raise NotRegistered("User is not registered")
        if not ipfs_hash:
            raise EmptyHash("IPFS hash cannot be empty")

        record = UserFile(
            ipfs_hash=ipfs_hash,
            file_name=file_name or "",
            timestamp=int(self.clock()),
        )
        self._files.setdefault(caller, []).append(record)
        logger.debug(f"Stored {ipfs_hash} for {caller}")
        return [hash_added(caller, ipfs_hash, record.file_name)]

    # Reads

    def get_user_files(self, caller: str, target: str) -> List[UserFile]:
        """Return target's records in insertion order (self or owner only)."""
        if not self.is_self_or_owner(caller, target):
            raise Unauthorized("Not authorized")
        return list(self._files.get(normalize_address(target), []))

    def get_user_file_count(self, target: str) -> int:
        return len(self._files.get(normalize_address(target), []))

    def is_user_registered(self, address: str) -> bool:
        return normalize_address(address) in self._registered

    def list_registered(self) -> List[str]:
        return sorted(self._registered)

    # Persistence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self._owner,
            "registered_users": sorted(self._registered),
            "user_files": {
                address: [f.to_dict() for f in files]
                for address, files in self._files.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], clock: Callable[[], float] = time.time) -> "HashStorage":
        contract = cls(data["owner"], clock=clock)
        contract._registered = {normalize_address(a) for a in data.get("registered_users", [])}
        contract._registered.add(contract._owner)
        contract._files = {
            normalize_address(address): [UserFile.from_dict(f) for f in files]
            for address, files in data.get("user_files", {}).items()
        }
        return contract
