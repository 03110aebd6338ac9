# hashstore/node.py
"""
Local single-writer node hosting one HashStorage contract.

The node is the contract's execution environment:
- Verifies signed transactions (signature, chain id, nonce)
- Applies them one at a time, each in its own block
- Records a receipt for every mined transaction, reverted or not
- Serves read-only calls against the last committed state

Structure (when data_dir is given):
    data_dir/
        chain.json      # Contract state, nonces, receipts, block height
"""

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .accounts import Account, is_address, normalize_address
from .contract import Event, HashStorage
from .errors import RegistryError, TransactionRejected
from .transactions import WRITE_METHODS, Transaction, verify_transaction

logger = logging.getLogger(__name__)

DEFAULT_CHAIN_ID = 31

READ_METHODS = {
    "owner": (),
    "get_user_files": ("target",),
    "get_user_file_count": ("target",),
    "is_user_registered": ("address",),
}


@dataclass
class Receipt:
    """Outcome of a mined transaction."""
    tx_hash: str
    sender: str
    method: str
    block_number: int
    timestamp: int
    status: str = "success"  # success|reverted
    error: Optional[str] = None
    reason: Optional[str] = None
    events: List[Event] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "sender": self.sender,
            "method": self.method,
            "block_number": self.block_number,
            "timestamp": self.timestamp,
            "status": self.status,
            "error": self.error,
            "reason": self.reason,
            "events": [e.to_dict() for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Receipt":
        return cls(
            tx_hash=data["tx_hash"],
            sender=data["sender"],
            method=data["method"],
            block_number=data["block_number"],
            timestamp=data["timestamp"],
            status=data.get("status", "success"),
            error=data.get("error"),
            reason=data.get("reason"),
            events=[Event.from_dict(e) for e in data.get("events", [])],
        )


@dataclass
class DeploymentReceipt:
    """Outcome of deploying the contract."""
    contract_address: str
    deployer: str
    tx_hash: str
    block_number: int
    timestamp: int
    chain_id: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contract_address": self.contract_address,
            "deployer": self.deployer,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "timestamp": self.timestamp,
            "chain_id": self.chain_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentReceipt":
        return cls(**data)


class Node:
    """
    Host for a single deployed contract.

    Usage:
        node = Node(data_dir="/tmp/hashstore")
        node.deploy(owner_account)
        receipt = node.send_transaction(Transaction.build(...))
        files = node.call("get_user_files", {"target": addr}, caller=addr)

    Args:
        data_dir: Where to persist chain state (None keeps it in memory)
        chain_id: Identifier clients check before sending transactions
        clock: Returns the current time in seconds
    """

    def __init__(
        self,
        data_dir: Path | str = None,
        chain_id: int = DEFAULT_CHAIN_ID,
        clock: Callable[[], float] = time.time,
    ):
        self.data_dir = Path(data_dir) if data_dir else None
        self.chain_id = chain_id
        self.clock = clock
        self.contract: Optional[HashStorage] = None
        self.deployment: Optional[DeploymentReceipt] = None
        self.block_number = 0
        self.block_timestamp = 0
        self._nonces: Dict[str, int] = {}
        self._receipts: Dict[str, Receipt] = {}
        self._receipt_order: List[str] = []
        self._lock = threading.RLock()

        if self.data_dir:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            self._load()

    def _state_path(self) -> Path:
        return self.data_dir / "chain.json"

    def _load(self):
        """Load chain state from disk."""
        state_path = self._state_path()
        if not state_path.exists():
            return
        with open(state_path) as f:
            data = json.load(f)
        if data.get("chain_id") != self.chain_id:
            raise ValueError(
                f"State in {state_path} belongs to chain {data.get('chain_id')}, not {self.chain_id}"
            )
        self._apply_state(data)
        logger.info(f"Loaded chain state at block {self.block_number}")

    def _state(self) -> Dict[str, Any]:
        return {
            "version": "1.0",
            "chain_id": self.chain_id,
            "block_number": self.block_number,
            "block_timestamp": self.block_timestamp,
            "nonces": dict(self._nonces),
            "receipts": [self._receipts[h].to_dict() for h in self._receipt_order],
            "deployment": self.deployment.to_dict() if self.deployment else None,
            "contract": self.contract.to_dict() if self.contract else None,
        }

    def _apply_state(self, data: Dict[str, Any]):
        self.block_number = data.get("block_number", 0)
        self.block_timestamp = data.get("block_timestamp", 0)
        self._nonces = dict(data.get("nonces", {}))
        receipts = [Receipt.from_dict(r) for r in data.get("receipts", [])]
        self._receipts = {r.tx_hash: r for r in receipts}
        self._receipt_order = [r.tx_hash for r in receipts]
        if data.get("deployment"):
            self.deployment = DeploymentReceipt.from_dict(data["deployment"])
            self.contract = HashStorage.from_dict(data["contract"], clock=self._block_time)
        else:
            self.deployment = None
            self.contract = None

    def _save(self):
        """Save chain state to disk."""
        if not self.data_dir:
            return
        data = self._state()
        tmp_path = self._state_path().with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(self._state_path())

    def _commit(self, snapshot: Optional[Dict[str, Any]]):
        """Persist the current state, rolling back to snapshot if the write fails."""
        try:
            self._save()
        except OSError as e:
            logger.error(f"Failed to persist block {self.block_number}: {e}")
            if snapshot is not None:
                self._apply_state(snapshot)
            raise

    def _block_time(self) -> int:
        return self.block_timestamp

    def _mine(self) -> int:
        """Open a new block; timestamps never go backwards."""
        self.block_number += 1
        self.block_timestamp = max(int(self.clock()), self.block_timestamp)
        return self.block_number

    @property
    def contract_address(self) -> Optional[str]:
        return self.deployment.contract_address if self.deployment else None

    def _require_contract(self) -> HashStorage:
        if self.contract is None:
            raise RuntimeError("No contract deployed")
        return self.contract

    def deploy(self, deployer: Account) -> DeploymentReceipt:
        """Deploy the contract with the deployer as owner."""
        with self._lock:
            if self.contract is not None:
                raise RuntimeError(f"Contract already deployed at {self.contract_address}")

            snapshot = self._state() if self.data_dir else None
            sender = deployer.address
            nonce = self._nonces.get(sender, 0)
            block_number = self._mine()
            self.contract = HashStorage(sender, clock=self._block_time)

            seed = f"{sender}:{nonce}:{self.chain_id}".encode()
            self.deployment = DeploymentReceipt(
                contract_address="0x" + hashlib.sha3_256(seed).digest()[-20:].hex(),
                deployer=sender,
                tx_hash="0x" + hashlib.sha3_256(b"deploy:" + seed).hexdigest(),
                block_number=block_number,
                timestamp=self.block_timestamp,
                chain_id=self.chain_id,
            )
            self._nonces[sender] = nonce + 1
            self._commit(snapshot)

        logger.info(f"Deployed contract at {self.contract_address} (owner {sender})")
        return self.deployment

    def get_nonce(self, address: str) -> int:
        """Next nonce expected from an address."""
        with self._lock:
            return self._nonces.get(normalize_address(address), 0)

    def _validate(self, tx: Transaction):
        if tx.chain_id != self.chain_id:
            raise TransactionRejected(f"Wrong chain id {tx.chain_id}, expected {self.chain_id}")
        if tx.method not in WRITE_METHODS:
            raise TransactionRejected(f"Unknown method: {tx.method}")
        expected_args = set(WRITE_METHODS[tx.method])
        if set(tx.args) != expected_args:
            raise TransactionRejected(
                f"{tx.method} takes arguments {sorted(expected_args)}, got {sorted(tx.args)}"
            )
        if not all(isinstance(v, str) for v in tx.args.values()):
            raise TransactionRejected("Arguments must be strings")
        if "target" in tx.args and not is_address(tx.args["target"]):
            raise TransactionRejected(f"Invalid target address: {tx.args['target']!r}")
        if not verify_transaction(tx):
            raise TransactionRejected("Invalid signature")
        expected_nonce = self._nonces.get(tx.sender, 0)
        if tx.nonce != expected_nonce:
            raise TransactionRejected(f"Invalid nonce {tx.nonce}, expected {expected_nonce}")
        if tx.tx_hash in self._receipts:
            raise TransactionRejected(f"Transaction {tx.tx_hash} already mined")

    def send_transaction(self, tx: Transaction) -> Receipt:
        """
        Validate and mine a transaction.

        Raises TransactionRejected if the transaction cannot be mined.
        Raises OSError if the block cannot be persisted; the node is then left
        at its last committed state.
        Contract errors do not raise: they produce a reverted receipt.
        """
        with self._lock:
            contract = self._require_contract()
            self._validate(tx)
            snapshot = self._state() if self.data_dir else None

            block_number = self._mine()
            receipt = Receipt(
                tx_hash=tx.tx_hash,
                sender=tx.sender,
                method=tx.method,
                block_number=block_number,
                timestamp=self.block_timestamp,
            )
            args = [tx.args[name] for name in WRITE_METHODS[tx.method]]
            try:
                receipt.events = getattr(contract, tx.method)(tx.sender, *args)
            except RegistryError as e:
                receipt.status = "reverted"
                receipt.error = e.code
                receipt.reason = e.reason
                logger.info(f"Transaction {tx.tx_hash[:10]} reverted: {e.reason}")

            self._nonces[tx.sender] = tx.nonce + 1
            self._receipts[receipt.tx_hash] = receipt
            self._receipt_order.append(receipt.tx_hash)
            self._commit(snapshot)

        logger.debug(f"Mined {tx.method} from {tx.sender} in block {block_number}")
        return receipt

    def call(self, method: str, args: Dict[str, Any] = None, caller: str = None) -> Any:
        """
        Run a read-only contract method.

        Contract errors propagate to the caller.
        """
        args = args or {}
        if method not in READ_METHODS:
            raise ValueError(f"Unknown read method: {method}")
        with self._lock:
            contract = self._require_contract()
            if method == "owner":
                return contract.owner
            if method == "get_user_files":
                if caller is None:
                    raise ValueError("get_user_files requires a caller address")
                return contract.get_user_files(caller, args["target"])
            if method == "get_user_file_count":
                return contract.get_user_file_count(args["target"])
            return contract.is_user_registered(args["address"])

    def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        with self._lock:
            return self._receipts.get(tx_hash)

    def get_events(self, name: str = None, address: str = None) -> List[Event]:
        """Events from successful transactions, in mining order."""
        if address is not None:
            address = normalize_address(address)
        events = []
        with self._lock:
            for tx_hash in self._receipt_order:
                for event in self._receipts[tx_hash].events:
                    if name is not None and event.name != name:
                        continue
                    if address is not None and event.args.get("user") != address:
                        continue
                    events.append(event)
        return events
