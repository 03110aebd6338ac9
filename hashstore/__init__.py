# hashstore - Access-controlled registry of IPFS content hashes
#
# A contract records IPFS content identifiers per registered user. A local
# single-writer node hosts the contract and applies signed transactions in
# order. Files are pinned through a pinning service; only their CIDs are
# stored.
#
# Core concepts:
# - HashStorage: The contract (owner, registered users, per-user file lists)
# - Account: A signing identity whose address is derived from its public key
# - Transaction: A signed contract write
# - Node: Executes transactions one block at a time and keeps receipts
# - PinningService: Turns files into content identifiers

from .accounts import Account, AccountStore, address_from_public_key, normalize_address
from .contract import Event, HashStorage, UserFile
from .errors import (
    AlreadyRegistered,
    CannotRemoveOwner,
    ChainMismatch,
    EmptyHash,
    InvalidAddress,
    NotRegistered,
    PinningError,
    RegistryError,
    TransactionRejected,
    Unauthorized,
)
from .transactions import Transaction, sign_transaction, verify_transaction
from .node import Node, Receipt, DeploymentReceipt
from .pinning import PinningService, LocalPinStore, PinataClient, PinResult, compute_cid
from .deployment import DeploymentInfo, deploy_contract
from .client import RegistryClient

__all__ = [
    # Contract
    "HashStorage",
    "UserFile",
    "Event",
    # Errors
    "RegistryError",
    "Unauthorized",
    "AlreadyRegistered",
    "CannotRemoveOwner",
    "NotRegistered",
    "EmptyHash",
    "InvalidAddress",
    "TransactionRejected",
    "ChainMismatch",
    "PinningError",
    # Accounts and transactions
    "Account",
    "AccountStore",
    "address_from_public_key",
    "normalize_address",
    "Transaction",
    "sign_transaction",
    "verify_transaction",
    # Host
    "Node",
    "Receipt",
    "DeploymentReceipt",
    "DeploymentInfo",
    "deploy_contract",
    # Pinning
    "PinningService",
    "LocalPinStore",
    "PinataClient",
    "PinResult",
    "compute_cid",
    # Client
    "RegistryClient",
]

__version__ = "0.1.0"
