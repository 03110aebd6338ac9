# tests/test_config.py
"""Tests for settings loading."""

from pathlib import Path

import pytest

from hashstore.config import Settings, load_settings


@pytest.fixture
def no_default_file(temp_dir, monkeypatch):
    """Run from an empty directory so ./hashstore.yaml is never picked up."""
    monkeypatch.chdir(temp_dir)
    return temp_dir


class TestSettings:

    def test_defaults(self, no_default_file):
        settings = load_settings(environ={})
        assert settings.chain_id == 31
        assert settings.port == 8545
        assert settings.pinata_jwt is None

    def test_yaml_file(self, no_default_file):
        path = no_default_file / "custom.yaml"
        path.write_text("chain_id: 1337\nport: 9000\ndata_dir: /srv/chain\n")

        settings = load_settings(path, environ={})
        assert settings.chain_id == 1337
        assert settings.port == 9000
        assert settings.data_path == Path("/srv/chain")

    def test_default_file_in_cwd(self, no_default_file):
        (no_default_file / "hashstore.yaml").write_text("account: alice\n")
        assert load_settings(environ={}).account == "alice"

    def test_env_overrides_yaml(self, no_default_file):
        path = no_default_file / "custom.yaml"
        path.write_text("chain_id: 1337\n")

        settings = load_settings(path, environ={
            "HASHSTORE_CHAIN_ID": "30",
            "HASHSTORE_PINATA_JWT": "jwt-token",
        })
        assert settings.chain_id == 30
        assert settings.pinata_jwt == "jwt-token"

    def test_dotenv(self, no_default_file, monkeypatch):
        # set then delete so teardown removes whatever .env loads
        monkeypatch.setenv("HASHSTORE_RPC_URL", "unset")
        monkeypatch.delenv("HASHSTORE_RPC_URL")
        env_file = no_default_file / ".env"
        env_file.write_text("HASHSTORE_RPC_URL=http://node.test:9999\n")

        settings = load_settings(dotenv_path=env_file)
        assert settings.rpc_url == "http://node.test:9999"

    def test_dotenv_found_in_cwd(self, no_default_file, monkeypatch):
        monkeypatch.setenv("HASHSTORE_RPC_URL", "unset")
        monkeypatch.delenv("HASHSTORE_RPC_URL")
        (no_default_file / ".env").write_text("HASHSTORE_RPC_URL=http://node.test:9999\n")

        settings = load_settings()
        assert settings.rpc_url == "http://node.test:9999"

    def test_missing_file(self, no_default_file):
        with pytest.raises(FileNotFoundError):
            load_settings(no_default_file / "missing.yaml", environ={})

    def test_non_mapping_yaml(self, no_default_file):
        path = no_default_file / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_settings(path, environ={})

    def test_bad_integer(self):
        with pytest.raises(ValueError):
            Settings().update({"port": "eighty"})

    def test_unknown_keys_ignored(self):
        settings = Settings()
        settings.update({"colour": "blue"})
        assert not hasattr(settings, "colour")

    def test_expanduser(self):
        settings = Settings(keystore_dir="~/keys")
        assert "~" not in str(settings.keystore_path)
