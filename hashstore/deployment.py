# hashstore/deployment.py
"""
Contract deployment.

Deploys the contract on a node and writes a deployment record that
clients and operators can read back.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from .accounts import Account
from .node import Node

logger = logging.getLogger(__name__)

DEFAULT_DEPLOYMENT_FILE = "deployment-info.json"

NETWORK_NAMES = {
    30: "rsk-mainnet",
    31: "rsk-testnet",
    1337: "local",
}


@dataclass
class DeploymentInfo:
    """Deployment record written after a successful deploy."""
    network: str
    chain_id: int
    contract_address: str
    deployment_hash: str
    deployer: str
    block_number: int
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network": self.network,
            "chain_id": self.chain_id,
            "contract_address": self.contract_address,
            "deployment_hash": self.deployment_hash,
            "deployer": self.deployer,
            "block_number": self.block_number,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentInfo":
        return cls(**data)

    @classmethod
    def load(cls, path: Path | str) -> "DeploymentInfo":
        with open(path) as f:
            return cls.from_dict(json.load(f))


def network_name(chain_id: int) -> str:
    return NETWORK_NAMES.get(chain_id, f"chain-{chain_id}")


def deploy_contract(
    node: Node,
    account: Account,
    output_path: Path | str = DEFAULT_DEPLOYMENT_FILE,
) -> DeploymentInfo:
    """
    Deploy the contract and save the deployment record.

    Args:
        node: Node to deploy on
        account: Deployer; becomes the contract owner
        output_path: Where to write the record (None to skip writing)

    Returns:
        DeploymentInfo
    """
    logger.info(f"Deploying to network: {network_name(node.chain_id)} (chain id {node.chain_id})")
    logger.info(f"Deploying with account: {account.address}")

    receipt = node.deploy(account)

    info = DeploymentInfo(
        network=network_name(node.chain_id),
        chain_id=node.chain_id,
        contract_address=receipt.contract_address,
        deployment_hash=receipt.tx_hash,
        deployer=receipt.deployer,
        block_number=receipt.block_number,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    logger.info(f"Contract deployed at {info.contract_address} (tx {info.deployment_hash})")

    if output_path is not None:
        output_path = Path(output_path)
        with open(output_path, "w") as f:
            json.dump(info.to_dict(), f, indent=2)
        logger.info(f"Deployment information saved to {output_path}")

    return info
