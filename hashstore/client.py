# hashstore/client.py
"""
Client SDK for the hashstore node server.

Usage:
    client = RegistryClient("http://localhost:8545", account=alice, expected_chain_id=31)
    client.check_network()

    receipt = client.add_hash("QmTest123", "test.txt")
    files = client.get_user_files(alice.address)

    # Pin a file and record its CID in one go
    result = client.upload_and_record("photo.jpg", LocalPinStore("./pins"))
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from .accounts import Account
from .contract import UserFile
from .errors import ChainMismatch, PinningError, TransactionRejected, error_from_code
from .node import Receipt
from .pinning import PinningService, is_valid_cid
from .transactions import Transaction

logger = logging.getLogger(__name__)

_REGISTRY_CODES = {
    "RegistryError", "Unauthorized", "AlreadyRegistered",
    "CannotRemoveOwner", "NotRegistered", "EmptyHash",
}


@dataclass
class ChainInfo:
    """Chain details reported by the node."""
    chain_id: int
    contract_address: Optional[str] = None
    block_number: int = 0


@dataclass
class UploadResult:
    """Result of pinning a file and recording its CID."""
    cid: str
    file_name: str
    gateway_url: str
    receipt: Receipt
    files: List[UserFile] = field(default_factory=list)


class RegistryClient:
    """
    Client for the node server.

    Args:
        base_url: Server URL (e.g., "http://localhost:8545")
        account: Signing account for writes and default caller for reads
        expected_chain_id: Chain id check_network() insists on
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8545",
        account: Account = None,
        expected_chain_id: int = None,
        timeout: float = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.account = account
        self.expected_chain_id = expected_chain_id
        self.timeout = timeout
        self._chain_id: Optional[int] = None

    def _request(self, method: str, path: str, data: dict = None) -> dict:
        """Make HTTP request to server."""
        url = f"{self.base_url}{path}"

        if data is not None:
            body = json.dumps(data).encode()
            headers = {"Content-Type": "application/json"}
        else:
            body = None
            headers = {}

        req = Request(url, data=body, headers=headers, method=method)

        try:
            with urlopen(req, timeout=self.timeout) as response:
                return json.loads(response.read().decode())
        except HTTPError as e:
            error_body = e.read().decode()
            try:
                error_data = json.loads(error_body)
            except json.JSONDecodeError:
                raise RuntimeError(f"HTTP {e.code}: {error_body}")
            code = error_data.get("error")
            message = error_data.get("message", str(e))
            if code in _REGISTRY_CODES:
                raise error_from_code(code, message)
            if code == "TransactionRejected":
                raise TransactionRejected(message)
            raise RuntimeError(message)
        except URLError as e:
            raise ConnectionError(f"Failed to connect to node: {e}")

    def _require_account(self) -> Account:
        if self.account is None:
            raise ValueError("A signing account is required for this operation")
        return self.account

    def _caller(self, caller: Optional[str]) -> str:
        if caller:
            return caller
        return self._require_account().address

    def health(self) -> bool:
        """Check if server is healthy."""
        try:
            result = self._request("GET", "/health")
            return result.get("status") == "ok"
        except (ConnectionError, RuntimeError):
            return False

    def chain_info(self) -> ChainInfo:
        data = self._request("GET", "/chain")
        self._chain_id = data["chain_id"]
        return ChainInfo(
            chain_id=data["chain_id"],
            contract_address=data.get("contract_address"),
            block_number=data.get("block_number", 0),
        )

    def check_network(self) -> ChainInfo:
        """
        Confirm the node is on the expected chain.

        Raises ChainMismatch if it is not.
        """
        info = self.chain_info()
        if self.expected_chain_id is not None and info.chain_id != self.expected_chain_id:
            raise ChainMismatch(self.expected_chain_id, info.chain_id)
        return info

    # Reads

    def owner(self) -> str:
        return self._request("GET", "/owner")["owner"]

    def is_user_registered(self, address: str) -> bool:
        return self._request("GET", f"/users/{quote(address)}/registered")["registered"]

    def get_user_file_count(self, address: str) -> int:
        return self._request("GET", f"/users/{quote(address)}/count")["count"]

    def get_user_files(self, address: str, caller: str = None) -> List[UserFile]:
        """
        Get a user's files.

        Args:
            address: Whose files to read
            caller: Address to read as (defaults to the client's account)
        """
        query = urlencode({"from": self._caller(caller)})
        data = self._request("GET", f"/users/{quote(address)}/files?{query}")
        return [UserFile.from_dict(f) for f in data["files"]]

    def get_nonce(self, address: str) -> int:
        return self._request("GET", f"/nonce/{quote(address)}")["nonce"]

    def get_receipt(self, tx_hash: str) -> Receipt:
        return Receipt.from_dict(self._request("GET", f"/receipts/{quote(tx_hash)}"))

    def get_events(self, name: str = None, address: str = None) -> List[Dict[str, Any]]:
        params = {k: v for k, v in {"name": name, "address": address}.items() if v}
        path = "/events" + (f"?{urlencode(params)}" if params else "")
        return self._request("GET", path)["events"]

    # Writes

    def send(self, method: str, args: Dict[str, Any]) -> Receipt:
        """
        Build, sign and submit a transaction.

        Reverted transactions raise the matching RegistryError.
        """
        account = self._require_account()
        if self._chain_id is None:
            self.chain_info()
        tx = Transaction.build(
            account,
            method,
            args,
            nonce=self.get_nonce(account.address),
            chain_id=self._chain_id,
        )
        receipt = Receipt.from_dict(self._request("POST", "/transactions", tx.to_dict()))
        if not receipt.success:
            raise error_from_code(receipt.error, receipt.reason)
        logger.debug(f"{method} mined in block {receipt.block_number}")
        return receipt

    def register_user(self, address: str) -> Receipt:
        return self.send("register_user", {"target": address})

    def unregister_user(self, address: str) -> Receipt:
        return self.send("unregister_user", {"target": address})

    def add_hash(self, ipfs_hash: str, file_name: str) -> Receipt:
        return self.send("add_hash", {"ipfs_hash": ipfs_hash, "file_name": file_name})

    def upload_and_record(
        self,
        path: Path | str,
        pinning: PinningService,
        file_name: str = None,
    ) -> UploadResult:
        """
        Pin a file, record its CID on the contract and read it back.

        Args:
            path: File to upload
            pinning: Pinning service to upload through
            file_name: Name to record (defaults to the file's name)

        Returns:
            UploadResult with the CID, receipt and the account's files
        """
        account = self._require_account()
        path = Path(path)
        file_name = file_name or path.name

        pin = pinning.pin_file(path, name=file_name)
        if not is_valid_cid(pin.cid):
            raise PinningError(f"Pinning service returned an invalid CID: {pin.cid!r}")
        logger.info(f"Uploaded {file_name} to IPFS: {pin.cid}")

        receipt = self.add_hash(pin.cid, file_name)
        files = self.get_user_files(account.address)

        return UploadResult(
            cid=pin.cid,
            file_name=file_name,
            gateway_url=pinning.gateway_url(pin.cid),
            receipt=receipt,
            files=files,
        )


__all__ = ["RegistryClient", "ChainInfo", "UploadResult"]
