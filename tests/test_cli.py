# tests/test_cli.py
"""Tests for the hashstore command line."""

import json

import pytest

from hashstore import pinning
from hashstore.accounts import AccountStore
from hashstore.cli import build_parser, main, node_main
from hashstore.deployment import DeploymentInfo
from hashstore.node import Node
from hashstore.server import RegistryServer


@pytest.fixture
def workdir(temp_dir, monkeypatch):
    monkeypatch.chdir(temp_dir)
    for key in ("HASHSTORE_RPC_URL", "HASHSTORE_ACCOUNT", "HASHSTORE_CHAIN_ID"):
        monkeypatch.delenv(key, raising=False)
    return temp_dir


@pytest.fixture
def keystore(workdir):
    return workdir / "keys"


class RejectedAuthResponse:
    status_code = 401


def run(keystore, *argv):
    main(["--keystore-dir", str(keystore), *argv])


@pytest.fixture
def accounts(keystore):
    store = AccountStore(keystore)
    return store.create("owner"), store.create("alice")


@pytest.fixture
def live_server(workdir, accounts):
    owner, _ = accounts
    node = Node(data_dir=workdir / "chain")
    node.deploy(owner)
    server = RegistryServer(node, port=0)
    server.start_background()
    yield server
    server.stop()


class TestParser:

    def test_global_options(self):
        args = build_parser().parse_args(["--account", "alice", "add", "QmX", "x.txt"])
        assert args.command == "add"
        assert args.account == "alice"
        assert args.hash == "QmX"

    def test_no_command(self, workdir):
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 1


class TestAccountCommands:

    def test_create_and_list(self, keystore, capsys):
        run(keystore, "account", "create", "alice")
        out = capsys.readouterr().out
        assert "Created account 'alice'" in out

        address = AccountStore(keystore).get("alice").address
        assert address in out

        run(keystore, "account", "list")
        assert address in capsys.readouterr().out

    def test_list_empty(self, keystore, capsys):
        run(keystore, "account", "list")
        assert "No accounts" in capsys.readouterr().out

    def test_import(self, keystore, workdir, accounts, capsys):
        owner, _ = accounts
        pem_path = workdir / "owner.pem"
        pem_path.write_bytes(owner.private_key)

        run(keystore, "account", "import", "copy", str(pem_path))
        assert AccountStore(keystore).get("copy").address == owner.address


class TestDeploy:

    def test_deploy(self, keystore, workdir, accounts, capsys):
        owner, _ = accounts
        output = workdir / "deployment-info.json"

        run(keystore, "--account", "owner", "--data-dir", str(workdir / "chain"),
            "deploy", "-o", str(output))

        out = capsys.readouterr().out
        assert "Deployment successful!" in out
        info = DeploymentInfo.load(output)
        assert info.deployer == owner.address
        assert Node(data_dir=workdir / "chain").call("owner") == owner.address

    def test_deploy_twice(self, keystore, workdir, accounts):
        argv = ["--account", "owner", "--data-dir", str(workdir / "chain"), "deploy"]
        run(keystore, *argv)
        with pytest.raises(SystemExit, match="already deployed"):
            run(keystore, *argv)

    def test_unknown_account(self, keystore, workdir):
        with pytest.raises(SystemExit, match="unknown account"):
            run(keystore, "--account", "nobody", "--data-dir", str(workdir / "chain"), "deploy")


class TestServe:

    @pytest.fixture
    def started(self, monkeypatch):
        servers = []
        monkeypatch.setattr(RegistryServer, "start", lambda self: servers.append(self))
        return servers

    @pytest.mark.parametrize("entry,prefix", [
        (main, ["serve"]),
        (node_main, []),
    ])
    def test_serve_deploys_and_starts(self, entry, prefix, keystore, workdir, accounts, started):
        owner, _ = accounts
        argv = ["--keystore-dir", str(keystore), "--data-dir", str(workdir / "chain")]
        # global options go before the subcommand; node_main takes them flat
        entry([*argv, *prefix, "--deploy-as", "owner", "--port", "9100"])

        assert len(started) == 1
        assert started[0].port == 9100
        assert started[0].node.call("owner") == owner.address
        assert (workdir / "chain" / "deployment-info.json").exists()

    def test_serve_without_contract(self, keystore, workdir, started, capsys):
        node_main(["--keystore-dir", str(keystore), "--data-dir", str(workdir / "chain")])
        assert "no contract deployed" in capsys.readouterr().out
        assert started[0].node.contract is None


class TestRemoteCommands:

    def test_register_and_add(self, keystore, live_server, accounts, capsys):
        _, alice = accounts
        url = live_server.url

        run(keystore, "--rpc-url", url, "--account", "owner", "register", alice.address)
        run(keystore, "--rpc-url", url, "is-registered", alice.address)
        assert capsys.readouterr().out.strip().endswith("yes")

        run(keystore, "--rpc-url", url, "--account", "alice", "add", "QmTest123", "test.txt")
        run(keystore, "--rpc-url", url, "count", alice.address)
        assert capsys.readouterr().out.strip().endswith("1")

        run(keystore, "--rpc-url", url, "--account", "alice", "files", "--json")
        files = json.loads(capsys.readouterr().out)
        assert [f["ipfs_hash"] for f in files] == ["QmTest123"]
        assert files[0]["file_name"] == "test.txt"

    def test_owner(self, keystore, live_server, accounts, capsys):
        owner, _ = accounts
        run(keystore, "--rpc-url", live_server.url, "owner")
        assert capsys.readouterr().out.strip() == owner.address

    def test_contract_error_exit_code(self, keystore, live_server, accounts, capsys):
        with pytest.raises(SystemExit) as exc:
            run(keystore, "--rpc-url", live_server.url, "--account", "alice",
                "add", "QmTest123", "test.txt")
        assert exc.value.code == 2
        assert "NotRegistered" in capsys.readouterr().err

    def test_upload(self, keystore, live_server, accounts, workdir, capsys):
        _, alice = accounts
        url = live_server.url
        run(keystore, "--rpc-url", url, "--account", "owner", "register", alice.address)

        path = workdir / "notes.txt"
        path.write_text("hello ipfs")
        run(keystore, "--rpc-url", url, "--account", "alice", "upload", str(path))

        out = capsys.readouterr().out
        assert "CID: bafkrei" in out
        assert "You now have 1 stored file(s)" in out

    def test_unreachable_node(self, keystore, accounts, capsys):
        with pytest.raises(SystemExit) as exc:
            run(keystore, "--rpc-url", "http://127.0.0.1:1", "owner")
        assert exc.value.code == 1

    def test_upload_pinata_bad_credentials(self, keystore, live_server, accounts, workdir,
                                           monkeypatch, capsys):
        _, alice = accounts
        url = live_server.url
        run(keystore, "--rpc-url", url, "--account", "owner", "register", alice.address)
        monkeypatch.setenv("HASHSTORE_PINATA_JWT", "expired-jwt")
        monkeypatch.setattr(pinning.requests, "get", lambda *a, **kw: RejectedAuthResponse())

        path = workdir / "notes.txt"
        path.write_text("hello ipfs")
        with pytest.raises(SystemExit) as exc:
            run(keystore, "--rpc-url", url, "--account", "alice", "upload", str(path), "--pinata")

        assert exc.value.code == 1
        assert "Pinata rejected" in capsys.readouterr().err
        assert live_server.node.call("get_user_file_count", {"target": alice.address}) == 0
