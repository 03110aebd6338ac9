# hashstore/config.py
"""
Settings.

Resolved in order, later sources winning:
1. Defaults
2. YAML settings file (explicit path, or ./hashstore.yaml if present)
3. Environment variables (HASHSTORE_*), after loading .env
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import find_dotenv, load_dotenv

from .node import DEFAULT_CHAIN_ID
from .pinning import DEFAULT_GATEWAY, PINATA_API_URL

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "hashstore.yaml"
ENV_PREFIX = "HASHSTORE_"


@dataclass
class Settings:
    """Runtime configuration shared by the CLI, server and client."""
    data_dir: str = "./hashstore_data"
    keystore_dir: str = "~/.hashstore/keys"
    pin_dir: str = "./hashstore_data/pins"
    chain_id: int = DEFAULT_CHAIN_ID
    host: str = "127.0.0.1"
    port: int = 8545
    rpc_url: str = "http://127.0.0.1:8545"
    account: str = "default"
    pinata_jwt: Optional[str] = None
    pinata_api_url: str = PINATA_API_URL
    gateway_url: str = DEFAULT_GATEWAY

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def keystore_path(self) -> Path:
        return Path(self.keystore_dir).expanduser()

    @property
    def pin_path(self) -> Path:
        return Path(self.pin_dir).expanduser()

    def update(self, values: Dict[str, Any]) -> None:
        """Apply known keys, coercing to each field's type."""
        known = {f.name: f for f in fields(self)}
        for key, value in values.items():
            if key not in known:
                logger.warning(f"Ignoring unknown setting: {key}")
                continue
            if value is not None and known[key].type in (int, "int"):
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    raise ValueError(f"Setting {key} must be an integer, got {value!r}")
            setattr(self, key, value)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return data


def _read_env(environ: Dict[str, str]) -> Dict[str, Any]:
    values = {}
    for f in fields(Settings):
        key = ENV_PREFIX + f.name.upper()
        if key in environ:
            values[f.name] = environ[key]
    return values


def load_settings(
    path: Path | str = None,
    environ: Dict[str, str] = None,
    dotenv_path: Path | str = None,
) -> Settings:
    """
    Load settings.

    Args:
        path: YAML settings file (must exist if given)
        environ: Environment mapping (defaults to os.environ after .env is loaded)
        dotenv_path: .env file to load (defaults to searching from the cwd)

    Returns:
        Settings
    """
    settings = Settings()

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")
        settings.update(_read_yaml(path))
    elif Path(DEFAULT_CONFIG_FILE).exists():
        settings.update(_read_yaml(Path(DEFAULT_CONFIG_FILE)))

    if environ is None:
        load_dotenv(dotenv_path or find_dotenv(usecwd=True))
        environ = os.environ
    settings.update(_read_env(environ))

    return settings
