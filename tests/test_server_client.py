# tests/test_server_client.py
"""End-to-end tests: client SDK against a running node server."""

import json
from urllib.error import HTTPError
from urllib.request import Request, urlopen

import pytest

from hashstore.client import RegistryClient
from hashstore.errors import (
    AlreadyRegistered,
    CannotRemoveOwner,
    ChainMismatch,
    EmptyHash,
    NotRegistered,
    PinningError,
    TransactionRejected,
    Unauthorized,
)
from hashstore.node import Node
from hashstore.pinning import LocalPinStore, PinningService, PinResult
from hashstore.server import RegistryServer

TEST_HASH = "QmTest123"
TEST_FILE_NAME = "test.txt"


@pytest.fixture
def node(owner_account, clock):
    node = Node(chain_id=31, clock=clock)
    node.deploy(owner_account)
    return node


@pytest.fixture
def server(node):
    server = RegistryServer(node, port=0)
    server.start_background()
    yield server
    server.stop()


@pytest.fixture
def owner_client(server, owner_account):
    return RegistryClient(server.url, account=owner_account, expected_chain_id=31)


@pytest.fixture
def user1_client(server, user1_account):
    return RegistryClient(server.url, account=user1_account, expected_chain_id=31)


@pytest.fixture
def user2_client(server, user2_account):
    return RegistryClient(server.url, account=user2_account, expected_chain_id=31)


@pytest.fixture
def registered(owner_client, user1_account):
    owner_client.register_user(user1_account.address)
    return owner_client


class BrokenPinning(PinningService):
    def pin_file(self, path, name=None):
        return PinResult(cid="not-a-cid", name=name, size_bytes=0, pinned_at=0.0)


def _raw_get(url):
    try:
        with urlopen(url) as response:
            return response.status, json.loads(response.read().decode())
    except HTTPError as e:
        return e.code, json.loads(e.read().decode())


class TestChain:

    def test_health(self, owner_client):
        assert owner_client.health()

    def test_health_unreachable(self):
        assert not RegistryClient("http://127.0.0.1:1", timeout=1).health()

    def test_check_network(self, owner_client, node):
        info = owner_client.check_network()
        assert info.chain_id == 31
        assert info.contract_address == node.contract_address

    def test_wrong_network(self, server, owner_account):
        client = RegistryClient(server.url, account=owner_account, expected_chain_id=30)
        with pytest.raises(ChainMismatch) as exc:
            client.check_network()
        assert exc.value.actual == 31

    def test_owner(self, owner_client, owner_account):
        assert owner_client.owner() == owner_account.address


class TestRegistration:

    def test_register(self, registered, user1_account):
        assert registered.is_user_registered(user1_account.address)

    def test_register_twice(self, registered, user1_account):
        with pytest.raises(AlreadyRegistered):
            registered.register_user(user1_account.address)

    def test_non_owner_register(self, user1_client, user2_account):
        with pytest.raises(Unauthorized):
            user1_client.register_user(user2_account.address)

    def test_unregister(self, registered, user1_account):
        registered.unregister_user(user1_account.address)
        assert not registered.is_user_registered(user1_account.address)

    def test_cannot_unregister_owner(self, owner_client, owner_account):
        with pytest.raises(CannotRemoveOwner):
            owner_client.unregister_user(owner_account.address)

    def test_invalid_target_rejected(self, owner_client):
        with pytest.raises(TransactionRejected):
            owner_client.register_user("0x1234")


class TestFiles:

    def test_add_and_read_back(self, registered, user1_client, user1_account, clock):
        receipt = user1_client.add_hash(TEST_HASH, TEST_FILE_NAME)

        files = user1_client.get_user_files(user1_account.address)
        assert len(files) == 1
        assert files[0].ipfs_hash == TEST_HASH
        assert files[0].file_name == TEST_FILE_NAME
        assert files[0].timestamp == receipt.timestamp == int(clock())

        events = user1_client.get_events(name="HashAdded")
        assert events == [{
            "name": "HashAdded",
            "args": {"user": user1_account.address, "ipfs_hash": TEST_HASH, "file_name": TEST_FILE_NAME},
        }]

    def test_unregistered_add(self, user2_client, user2_account):
        with pytest.raises(NotRegistered):
            user2_client.add_hash(TEST_HASH, TEST_FILE_NAME)
        assert user2_client.get_user_file_count(user2_account.address) == 0

    def test_empty_hash(self, registered, user1_client):
        with pytest.raises(EmptyHash):
            user1_client.add_hash("", TEST_FILE_NAME)

    def test_owner_reads_user_files(self, registered, user1_client, user1_account):
        user1_client.add_hash(TEST_HASH, TEST_FILE_NAME)
        files = registered.get_user_files(user1_account.address)
        assert [f.ipfs_hash for f in files] == [TEST_HASH]

    def test_third_party_read(self, registered, user1_client, user2_client, user1_account):
        user1_client.add_hash(TEST_HASH, TEST_FILE_NAME)
        with pytest.raises(Unauthorized):
            user2_client.get_user_files(user1_account.address)

    def test_count(self, registered, user1_client, user1_account):
        user1_client.add_hash("QmA", "a")
        user1_client.add_hash("QmB", "b")
        assert registered.get_user_file_count(user1_account.address) == 2

    def test_receipt_lookup(self, registered, user1_client):
        receipt = user1_client.add_hash(TEST_HASH, TEST_FILE_NAME)
        assert user1_client.get_receipt(receipt.tx_hash) == receipt

    def test_upload_and_record(self, registered, user1_client, temp_dir):
        path = temp_dir / "photo.jpg"
        path.write_bytes(b"\xff\xd8\xff fake jpeg")
        pins = LocalPinStore(temp_dir / "pins")

        result = user1_client.upload_and_record(path, pins)

        assert pins.get(result.cid) == path.read_bytes()
        assert result.file_name == "photo.jpg"
        assert result.gateway_url.endswith(result.cid)
        assert [f.ipfs_hash for f in result.files] == [result.cid]

    def test_upload_rejects_invalid_cid(self, registered, user1_client, user1_account, temp_dir):
        path = temp_dir / "photo.jpg"
        path.write_bytes(b"data")

        with pytest.raises(PinningError):
            user1_client.upload_and_record(path, BrokenPinning())
        assert user1_client.get_user_file_count(user1_account.address) == 0

    def test_writes_need_account(self, server):
        with pytest.raises(ValueError):
            RegistryClient(server.url).add_hash(TEST_HASH, TEST_FILE_NAME)


class TestHttpApi:

    def test_unknown_path(self, server):
        status, data = _raw_get(f"{server.url}/nope")
        assert status == 404

    def test_files_requires_from(self, server, owner_account):
        status, data = _raw_get(f"{server.url}/users/{owner_account.address}/files")
        assert status == 400

    def test_invalid_address(self, server):
        status, data = _raw_get(f"{server.url}/users/0x12/registered")
        assert status == 400
        assert data["error"] == "InvalidAddress"

    def test_unauthorized_status(self, server, owner_account, user1_account):
        status, data = _raw_get(
            f"{server.url}/users/{owner_account.address}/files?from={user1_account.address}"
        )
        assert status == 403
        assert data == {"error": "Unauthorized", "message": "Not authorized"}

    def test_malformed_transaction(self, server):
        req = Request(f"{server.url}/transactions", data=b"{not json",
                      headers={"Content-Type": "application/json"}, method="POST")
        with pytest.raises(HTTPError) as exc:
            urlopen(req)
        assert exc.value.code == 400

    def test_undeployed_node(self):
        server = RegistryServer(Node(), port=0)
        server.start_background()
        try:
            status, data = _raw_get(f"{server.url}/owner")
            assert status == 503
        finally:
            server.stop()

    def test_storage_failure(self, temp_dir, owner_account, user1_account):
        node = Node(data_dir=temp_dir)
        node.deploy(owner_account)
        server = RegistryServer(node, port=0)
        server.start_background()
        try:
            (temp_dir / "chain.tmp").mkdir()
            client = RegistryClient(server.url, account=owner_account)
            with pytest.raises(RuntimeError, match="Storage error"):
                client.register_user(user1_account.address)
            assert not client.is_user_registered(user1_account.address)
        finally:
            server.stop()
