# hashstore/transactions.py
"""
Signed transactions.

A transaction names a contract write method and its arguments. The sender
signs it with RSA-SHA256 over the canonical JSON of the unsigned payload;
the node only executes transactions whose signature verifies and whose
sender address matches the embedded public key.
"""

import base64
import hashlib
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from .accounts import Account, address_from_public_key, normalize_address

# method name -> ordered argument names
WRITE_METHODS: Dict[str, tuple] = {
    "register_user": ("target",),
    "unregister_user": ("target",),
    "add_hash": ("ipfs_hash", "file_name"),
}


def canonicalize(data: Dict[str, Any]) -> str:
    """Canonical JSON: sorted keys, no whitespace."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def _generate_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Transaction:
    """
    A state-changing call.

    Attributes:
        sender: Address of the signing account
        method: Contract write method (see WRITE_METHODS)
        args: Method arguments by name
        nonce: Sender's transaction sequence number
        chain_id: Chain the transaction is meant for
        public_key: Signer's PEM public key (attached when signing)
        tx_id: Random identifier
        created_at: Client-side creation time
        signature: Base64 RSA signature (attached when signing)
    """
    sender: str
    method: str
    args: Dict[str, Any]
    nonce: int
    chain_id: int
    public_key: Optional[bytes] = None
    tx_id: str = field(default_factory=_generate_id)
    created_at: float = field(default_factory=time.time)
    signature: Optional[str] = None

    def __post_init__(self):
        self.sender = normalize_address(self.sender)

    def signing_payload(self) -> Dict[str, Any]:
        """Everything covered by the signature."""
        return {
            "sender": self.sender,
            "method": self.method,
            "args": self.args,
            "nonce": self.nonce,
            "chain_id": self.chain_id,
            "tx_id": self.tx_id,
            "created_at": self.created_at,
        }

    @property
    def tx_hash(self) -> str:
        payload = self.signing_payload()
        payload["signature"] = self.signature
        return "0x" + hashlib.sha3_256(canonicalize(payload).encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        data = self.signing_payload()
        data["public_key"] = self.public_key.decode("utf-8") if self.public_key else None
        data["signature"] = self.signature
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        public_key = data.get("public_key")
        return cls(
            sender=data["sender"],
            method=data["method"],
            args=dict(data.get("args", {})),
            nonce=int(data["nonce"]),
            chain_id=int(data["chain_id"]),
            public_key=public_key.encode("utf-8") if public_key else None,
            tx_id=data["tx_id"],
            created_at=data["created_at"],
            signature=data.get("signature"),
        )

    @classmethod
    def build(
        cls,
        account: Account,
        method: str,
        args: Dict[str, Any],
        nonce: int,
        chain_id: int,
    ) -> "Transaction":
        """Build and sign a transaction for an account."""
        if method not in WRITE_METHODS:
            raise ValueError(f"Unknown method: {method}")
        tx = cls(
            sender=account.address,
            method=method,
            args=args,
            nonce=nonce,
            chain_id=chain_id,
        )
        return sign_transaction(tx, account)


def sign_transaction(tx: Transaction, account: Account) -> Transaction:
    """
    Sign a transaction with the account's private key.

    Args:
        tx: The transaction to sign
        account: The account whose key signs the transaction

    Returns:
        Transaction with signature and public key attached
    """
    private_key = serialization.load_pem_private_key(
        account.private_key,
        password=None,
    )
    canonical = canonicalize(tx.signing_payload()).encode()

    signature_bytes = private_key.sign(
        canonical,
        padding.PKCS1v15(),
        hashes.SHA256(),
    )
    tx.signature = base64.b64encode(signature_bytes).decode("utf-8")
    tx.public_key = account.public_key
    return tx


def verify_transaction(tx: Transaction) -> bool:
    """
    Verify a transaction's signature and sender.

    Returns:
        True if the signature is valid and the sender address is the one
        derived from the embedded public key
    """
    if not tx.signature or not tx.public_key:
        return False

    try:
        if address_from_public_key(tx.public_key) != tx.sender:
            return False

        public_key = serialization.load_pem_public_key(tx.public_key)
        canonical = canonicalize(tx.signing_payload()).encode()
        signature_bytes = base64.b64decode(tx.signature)
        public_key.verify(
            signature_bytes,
            canonical,
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        return True

    except (InvalidSignature, ValueError, TypeError):
        return False
