# hashstore/accounts.py
"""
Signing accounts.

An Account is a caller identity with:
- A name for local lookup
- RSA key pair for signing transactions
- An address derived from the public key
"""

import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .errors import InvalidAddress

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(value: str) -> str:
    """Validate an address and return it in lowercase form."""
    if not isinstance(value, str) or not _ADDRESS_RE.match(value):
        raise InvalidAddress(f"Invalid address: {value!r}")
    return value.lower()


def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))


def address_from_public_key(public_key_pem: bytes) -> str:
    """
    Derive an address from a PEM public key.

    The address is the last 20 bytes of the SHA3-256 digest of the
    DER-encoded SubjectPublicKeyInfo.
    """
    public_key = serialization.load_pem_public_key(public_key_pem)
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return "0x" + hashlib.sha3_256(der).digest()[-20:].hex()


def _generate_keypair() -> tuple[bytes, bytes]:
    """Generate RSA key pair for signing."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


@dataclass
class Account:
    """
    A signing identity.

    Attributes:
        name: Local name (e.g., "owner", "alice")
        public_key: PEM-encoded public key
        private_key: PEM-encoded private key (kept secret)
        created_at: Timestamp of creation
    """
    name: str
    public_key: bytes
    private_key: bytes
    created_at: float = field(default_factory=time.time)

    @property
    def address(self) -> str:
        return address_from_public_key(self.public_key)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for storage."""
        return {
            "name": self.name,
            "address": self.address,
            "public_key": self.public_key.decode("utf-8"),
            "private_key": self.private_key.decode("utf-8"),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        """Deserialize from storage."""
        return cls(
            name=data["name"],
            public_key=data["public_key"].encode("utf-8"),
            private_key=data["private_key"].encode("utf-8"),
            created_at=data.get("created_at", time.time()),
        )

    @classmethod
    def create(cls, name: str) -> "Account":
        """Create a new account with generated keys."""
        private_pem, public_pem = _generate_keypair()
        return cls(name=name, public_key=public_pem, private_key=private_pem)

    @classmethod
    def from_private_key(cls, name: str, private_pem: bytes) -> "Account":
        """Build an account around an existing PEM private key."""
        private_key = serialization.load_pem_private_key(private_pem, password=None)
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise ValueError("Only RSA private keys are supported")
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return cls(name=name, public_key=public_pem, private_key=private_pem)


class AccountStore:
    """
    Persistent keystore.

    Structure:
        store_dir/
            accounts.json     # All accounts, keyed by name
    """

    def __init__(self, store_dir: Path | str):
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self._accounts: Dict[str, Account] = {}
        self._load()

    def _index_path(self) -> Path:
        return self.store_dir / "accounts.json"

    def _load(self):
        """Load accounts from disk."""
        index_path = self._index_path()
        if index_path.exists():
            with open(index_path) as f:
                data = json.load(f)
            self._accounts = {
                name: Account.from_dict(account_data)
                for name, account_data in data.get("accounts", {}).items()
            }

    def _save(self):
        """Save accounts to disk."""
        data = {
            "version": "1.0",
            "accounts": {
                name: account.to_dict()
                for name, account in self._accounts.items()
            },
        }
        with open(self._index_path(), "w") as f:
            json.dump(data, f, indent=2)
        self._index_path().chmod(0o600)

    def create(self, name: str) -> Account:
        """Create and store a new account."""
        if name in self._accounts:
            raise ValueError(f"Account {name} already exists")

        account = Account.create(name)
        self._accounts[name] = account
        self._save()
        logger.info(f"Created account {name} ({account.address})")
        return account

    def import_pem(self, name: str, private_pem: bytes) -> Account:
        """Store an account from an existing private key."""
        if name in self._accounts:
            raise ValueError(f"Account {name} already exists")

        account = Account.from_private_key(name, private_pem)
        self._accounts[name] = account
        self._save()
        return account

    def get(self, name: str) -> Optional[Account]:
        """Get an account by name."""
        return self._accounts.get(name)

    def find_by_address(self, address: str) -> Optional[Account]:
        address = normalize_address(address)
        for account in self._accounts.values():
            if account.address == address:
                return account
        return None

    def list(self) -> List[Account]:
        """List all accounts."""
        return list(self._accounts.values())

    def __contains__(self, name: str) -> bool:
        return name in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)
