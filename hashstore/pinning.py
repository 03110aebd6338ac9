# hashstore/pinning.py
"""
Pinning services.

A pinning service stores file bytes and returns a content identifier
(CID). The contract only ever sees the CID string.

- LocalPinStore: content-addressed directory, for development and tests
- PinataClient: Pinata HTTP API
"""

import base64
import hashlib
import json
import logging
import re
import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import requests

from .errors import PinningError

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY = "https://gateway.pinata.cloud/ipfs/"
PINATA_API_URL = "https://api.pinata.cloud"

_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{10,}$")

# CIDv1 prefix: version 1, raw codec (0x55), sha2-256 multihash (0x12, 32 bytes)
_CID_PREFIX = bytes([0x01, 0x55, 0x12, 0x20])


def compute_cid(data: bytes) -> str:
    """
    Compute a CIDv1 (raw codec, sha2-256, base32 lower) for a block of bytes.

    Matches what IPFS assigns to content added as a single raw block.
    """
    digest = hashlib.sha256(data).digest()
    encoded = base64.b32encode(_CID_PREFIX + digest).decode("ascii")
    return "b" + encoded.lower().rstrip("=")


def is_valid_cid(cid: str) -> bool:
    """Loose syntactic check for CIDv0 (Qm...) and base32 CIDv1 (b...)."""
    cid = (cid or "").strip()
    return bool(_CIDV0_RE.match(cid) or _CIDV1_BASE32_RE.match(cid))


@dataclass
class PinResult:
    """A pinned file."""
    cid: str
    name: str
    size_bytes: int
    pinned_at: float

    def to_dict(self) -> Dict:
        return {
            "cid": self.cid,
            "name": self.name,
            "size_bytes": self.size_bytes,
            "pinned_at": self.pinned_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PinResult":
        return cls(
            cid=data["cid"],
            name=data["name"],
            size_bytes=data["size_bytes"],
            pinned_at=data["pinned_at"],
        )


class PinningService(ABC):
    """Base class for pinning backends."""

    gateway: str = DEFAULT_GATEWAY

    @abstractmethod
    def pin_file(self, path: Path | str, name: str = None) -> PinResult:
        """
        Pin a file.

        Args:
            path: File to pin
            name: Name to record (defaults to the file name)

        Returns:
            PinResult with the content identifier
        """

    def gateway_url(self, cid: str) -> str:
        """Public URL for fetching pinned content."""
        return f"{self.gateway.rstrip('/')}/{cid}"


class LocalPinStore(PinningService):
    """
    Content-addressed local pin store.

    Structure:
        store_dir/
            pins.json        # Pin metadata
            <cid>            # Pinned bytes
    """

    def __init__(self, store_dir: Path | str, gateway: str = "http://127.0.0.1:8080/ipfs/"):
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self.gateway = gateway
        self._pins: Dict[str, PinResult] = {}
        self._load_index()

    def _index_path(self) -> Path:
        return self.store_dir / "pins.json"

    def _load_index(self):
        """Load pin index from disk."""
        index_path = self._index_path()
        if index_path.exists():
            try:
                with open(index_path) as f:
                    data = json.load(f)
                self._pins = {
                    k: PinResult.from_dict(v)
                    for k, v in data.get("pins", {}).items()
                }
            except (json.JSONDecodeError, KeyError) as e:
                logger.warning(f"Failed to load pin index: {e}")
                self._pins = {}

    def _save_index(self):
        """Save pin index to disk."""
        data = {"pins": {k: v.to_dict() for k, v in self._pins.items()}}
        with open(self._index_path(), "w") as f:
            json.dump(data, f, indent=2)

    def _blob_path(self, cid: str) -> Path:
        return self.store_dir / cid

    def pin_bytes(self, data: bytes, name: str) -> PinResult:
        """Pin raw bytes under a name."""
        cid = compute_cid(data)
        blob_path = self._blob_path(cid)
        if not blob_path.exists():
            blob_path.write_bytes(data)

        pin = self._pins.get(cid)
        if pin is None:
            pin = PinResult(cid=cid, name=name, size_bytes=len(data), pinned_at=time.time())
            self._pins[cid] = pin
            self._save_index()
            logger.debug(f"Pinned {name} as {cid} ({len(data)} bytes)")
        return pin

    def pin_file(self, path: Path | str, name: str = None) -> PinResult:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        return self.pin_bytes(path.read_bytes(), name or path.name)

    def get(self, cid: str) -> Optional[bytes]:
        """Get pinned bytes, or None if not pinned."""
        if cid not in self._pins:
            return None
        blob_path = self._blob_path(cid)
        if not blob_path.exists():
            logger.warning(f"Pin {cid} missing file, removing")
            self.unpin(cid)
            return None
        return blob_path.read_bytes()

    def has(self, cid: str) -> bool:
        return cid in self._pins and self._blob_path(cid).exists()

    def unpin(self, cid: str) -> bool:
        """Remove a pin and its bytes."""
        if cid not in self._pins:
            return False
        del self._pins[cid]
        blob_path = self._blob_path(cid)
        if blob_path.exists():
            blob_path.unlink()
        self._save_index()
        return True

    def list_pins(self) -> List[PinResult]:
        return list(self._pins.values())

    def export(self, cid: str, dest: Path | str) -> Path:
        """Copy pinned content to a destination path."""
        if not self.has(cid):
            raise KeyError(f"Not pinned: {cid}")
        dest = Path(dest)
        shutil.copyfile(self._blob_path(cid), dest)
        return dest


class PinataClient(PinningService):
    """
    Client for the Pinata pinning API.

    Authenticates with a JWT, or with an API key / secret pair.

    Args:
        jwt: Pinata JWT
        api_key: Legacy API key (used when no JWT is given)
        api_secret: Legacy API secret
        api_url: API base URL
        gateway: Gateway base URL for gateway_url()
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        jwt: str = None,
        api_key: str = None,
        api_secret: str = None,
        api_url: str = PINATA_API_URL,
        gateway: str = DEFAULT_GATEWAY,
        timeout: float = 120,
    ):
        if not jwt and not (api_key and api_secret):
            raise ValueError("Pinata needs a JWT or an API key and secret")
        self.jwt = jwt
        self.api_key = api_key
        self.api_secret = api_secret
        self.api_url = api_url.rstrip("/")
        self.gateway = gateway
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        if self.jwt:
            return {"Authorization": f"Bearer {self.jwt}"}
        return {
            "pinata_api_key": self.api_key,
            "pinata_secret_api_key": self.api_secret,
        }

    def pin_file(self, path: Path | str, name: str = None) -> PinResult:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        name = name or path.name
        url = f"{self.api_url}/pinning/pinFileToIPFS"

        try:
            with open(path, "rb") as f:
                response = requests.post(
                    url,
                    files={"file": (name, f)},
                    data={"pinataMetadata": json.dumps({"name": name})},
                    headers=self._headers(),
                    timeout=self.timeout,
                )
        except requests.RequestException as e:
            raise PinningError(f"Failed to reach Pinata: {e}") from e

        if response.status_code != 200:
            raise PinningError(f"Pinata upload failed ({response.status_code}): {response.text}")

        data = response.json()
        logger.info(f"Pinned {name} to IPFS as {data['IpfsHash']}")
        return PinResult(
            cid=data["IpfsHash"],
            name=name,
            size_bytes=data.get("PinSize", path.stat().st_size),
            pinned_at=time.time(),
        )

    def check_authentication(self) -> bool:
        """Check the credentials against Pinata."""
        try:
            response = requests.get(
                f"{self.api_url}/data/testAuthentication",
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException:
            return False
        return response.status_code == 200
