#!/usr/bin/env python3
"""
hashstore CLI

Command-line interface for the IPFS hash registry:
  hashstore account create|list|import  - Manage signing accounts
  hashstore deploy                      - Deploy the contract on the local chain
  hashstore serve                       - Run the node server
  hashstore register|unregister <addr>  - Owner-only membership changes
  hashstore add <hash> <name>           - Record a CID
  hashstore upload <file>               - Pin a file, record and read back its CID
  hashstore files|count|is-registered   - Reads
  hashstore owner                       - Contract owner

Usage:
  hashstore account create alice
  hashstore --account owner deploy
  hashstore serve
  hashstore --account owner register 0x...
  hashstore --account alice upload ./photo.jpg --pinata
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from .accounts import Account, AccountStore
from .client import RegistryClient
from .config import Settings, load_settings
from .errors import ChainMismatch, PinningError, RegistryError, TransactionRejected

logger = logging.getLogger(__name__)


def _format_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _load_account(settings: Settings, name: str = None) -> Account:
    name = name or settings.account
    account = AccountStore(settings.keystore_path).get(name)
    if account is None:
        raise SystemExit(f"Error: unknown account '{name}'. Create it with: hashstore account create {name}")
    return account


def _client(settings: Settings, account: Account = None) -> RegistryClient:
    client = RegistryClient(settings.rpc_url, account=account, expected_chain_id=settings.chain_id)
    client.check_network()
    return client


def _pinning(settings: Settings, use_pinata: bool):
    from .pinning import LocalPinStore, PinataClient

    if use_pinata:
        if not settings.pinata_jwt:
            raise SystemExit("Error: HASHSTORE_PINATA_JWT is not set")
        client = PinataClient(
            jwt=settings.pinata_jwt,
            api_url=settings.pinata_api_url,
            gateway=settings.gateway_url,
        )
        if not client.check_authentication():
            raise PinningError("Pinata rejected the configured credentials")
        return client
    return LocalPinStore(settings.pin_path)


def cmd_account(args, settings: Settings):
    """Manage signing accounts."""
    store = AccountStore(settings.keystore_path)

    if args.account_command == "create":
        account = store.create(args.name)
        print(f"Created account '{account.name}'")
        print(f"Address: {account.address}")

    elif args.account_command == "import":
        pem = Path(args.pem).read_bytes()
        account = store.import_pem(args.name, pem)
        print(f"Imported account '{account.name}'")
        print(f"Address: {account.address}")

    elif args.account_command == "list":
        accounts = store.list()
        if not accounts:
            print("No accounts")
        for account in accounts:
            print(f"{account.name:<16} {account.address}")


def cmd_deploy(args, settings: Settings):
    """Deploy the contract on the local chain."""
    from .deployment import deploy_contract
    from .node import Node

    account = _load_account(settings, args.account)
    node = Node(data_dir=settings.data_path, chain_id=settings.chain_id)
    output = Path(args.output) if args.output else settings.data_path / "deployment-info.json"

    try:
        info = deploy_contract(node, account, output)
    except RuntimeError as e:
        raise SystemExit(f"Error: {e}")

    print("Deployment successful!")
    print("--------------------")
    print(f"- Network: {info.network} (chain id {info.chain_id})")
    print(f"- Address: {info.contract_address}")
    print(f"- Transaction Hash: {info.deployment_hash}")
    print(f"- Owner: {info.deployer}")
    print(f"\nDeployment information saved to {output}")


def cmd_serve(args, settings: Settings):
    """Run the node server."""
    from .deployment import deploy_contract
    from .node import Node
    from .server import RegistryServer

    settings.update({k: v for k, v in {"host": args.host, "port": args.port}.items() if v is not None})
    node = Node(data_dir=settings.data_path, chain_id=settings.chain_id)
    if args.deploy_as and node.contract is None:
        deploy_contract(node, _load_account(settings, args.deploy_as),
                        settings.data_path / "deployment-info.json")
    if node.contract is None:
        print("Warning: no contract deployed; run 'hashstore deploy' or pass --deploy-as")

    RegistryServer(node, host=settings.host, port=settings.port).start()


def cmd_register(args, settings: Settings):
    client = _client(settings, _load_account(settings))
    receipt = client.register_user(args.address)
    print(f"Registered {args.address} (block {receipt.block_number})")


def cmd_unregister(args, settings: Settings):
    client = _client(settings, _load_account(settings))
    receipt = client.unregister_user(args.address)
    print(f"Unregistered {args.address} (block {receipt.block_number})")


def cmd_add(args, settings: Settings):
    client = _client(settings, _load_account(settings))
    receipt = client.add_hash(args.hash, args.name)
    print(f"Stored {args.hash} as '{args.name}' (tx {receipt.tx_hash})")


def cmd_upload(args, settings: Settings):
    """Pin a file, record its CID and read it back."""
    client = _client(settings, _load_account(settings))
    pinning = _pinning(settings, args.pinata)

    print(f"Uploading {args.file} to IPFS...")
    result = client.upload_and_record(args.file, pinning, file_name=args.name)

    print(f"CID: {result.cid}")
    print(f"Gateway: {result.gateway_url}")
    print(f"Recorded in block {result.receipt.block_number}")
    print(f"You now have {len(result.files)} stored file(s)")


def cmd_files(args, settings: Settings):
    account = _load_account(settings)
    client = _client(settings, account)
    files = client.get_user_files(args.address or account.address)

    if args.json:
        print(json.dumps([f.to_dict() for f in files], indent=2))
        return
    if not files:
        print("No files")
    for i, f in enumerate(files):
        print(f"[{i}] {f.ipfs_hash}  {f.file_name}  {_format_time(f.timestamp)}")


def cmd_count(args, settings: Settings):
    client = _client(settings)
    print(client.get_user_file_count(args.address))


def cmd_is_registered(args, settings: Settings):
    client = _client(settings)
    print("yes" if client.is_user_registered(args.address) else "no")


def cmd_owner(args, settings: Settings):
    client = _client(settings)
    print(client.owner())


COMMANDS = {
    "account": cmd_account,
    "deploy": cmd_deploy,
    "serve": cmd_serve,
    "register": cmd_register,
    "unregister": cmd_unregister,
    "add": cmd_add,
    "upload": cmd_upload,
    "files": cmd_files,
    "count": cmd_count,
    "is-registered": cmd_is_registered,
    "owner": cmd_owner,
}


def _add_global_options(parser: argparse.ArgumentParser):
    parser.add_argument("--config", help="Settings YAML file")
    parser.add_argument("--account", help="Account name to sign with")
    parser.add_argument("--rpc-url", help="Node server URL")
    parser.add_argument("--data-dir", help="Local chain state directory")
    parser.add_argument("--keystore-dir", help="Account keystore directory")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")


def _add_serve_options(parser: argparse.ArgumentParser):
    parser.add_argument("--deploy-as", help="Deploy with this account if nothing is deployed")
    parser.add_argument("--host", help="Host to bind to")
    parser.add_argument("--port", type=int, help="Port to bind to")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hashstore",
        description="hashstore - IPFS hash registry",
    )
    _add_global_options(parser)
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # account command
    account_parser = subparsers.add_parser("account", help="Manage signing accounts")
    account_sub = account_parser.add_subparsers(dest="account_command", required=True)
    create_parser = account_sub.add_parser("create", help="Create an account")
    create_parser.add_argument("name", help="Account name")
    import_parser = account_sub.add_parser("import", help="Import a PEM private key")
    import_parser.add_argument("name", help="Account name")
    import_parser.add_argument("pem", help="PEM private key file")
    account_sub.add_parser("list", help="List accounts")

    # deploy command
    deploy_parser = subparsers.add_parser("deploy", help="Deploy the contract on the local chain")
    deploy_parser.add_argument("-o", "--output", help="Deployment record (default: <data-dir>/deployment-info.json)")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the node server")
    _add_serve_options(serve_parser)

    register_parser = subparsers.add_parser("register", help="Register a user (owner only)")
    register_parser.add_argument("address", help="User address")

    unregister_parser = subparsers.add_parser("unregister", help="Unregister a user (owner only)")
    unregister_parser.add_argument("address", help="User address")

    add_parser = subparsers.add_parser("add", help="Record an IPFS hash")
    add_parser.add_argument("hash", help="IPFS content identifier")
    add_parser.add_argument("name", help="File name")

    upload_parser = subparsers.add_parser("upload", help="Pin a file and record its hash")
    upload_parser.add_argument("file", help="File to upload")
    upload_parser.add_argument("--name", help="File name to record (default: file's name)")
    upload_parser.add_argument("--pinata", action="store_true",
                               help="Pin through Pinata instead of the local pin store")

    files_parser = subparsers.add_parser("files", help="List a user's files")
    files_parser.add_argument("address", nargs="?", help="User address (default: your account)")
    files_parser.add_argument("--json", action="store_true", help="Print JSON")

    count_parser = subparsers.add_parser("count", help="Count a user's files")
    count_parser.add_argument("address", help="User address")

    is_registered_parser = subparsers.add_parser("is-registered", help="Check registration")
    is_registered_parser.add_argument("address", help="User address")

    subparsers.add_parser("owner", help="Show the contract owner")

    return parser


def _run(parser: argparse.ArgumentParser, args):
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command not in COMMANDS:
        parser.print_help()
        sys.exit(1)

    settings = load_settings(args.config)
    overrides = {
        "account": args.account,
        "rpc_url": args.rpc_url,
        "data_dir": args.data_dir,
        "keystore_dir": args.keystore_dir,
    }
    settings.update({k: v for k, v in overrides.items() if v is not None})

    try:
        COMMANDS[args.command](args, settings)
    except RegistryError as e:
        print(f"Error: {e.code}: {e.reason}", file=sys.stderr)
        sys.exit(2)
    except (TransactionRejected, ChainMismatch, PinningError, ConnectionError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def main(argv=None):
    parser = build_parser()
    _run(parser, parser.parse_args(argv))


def node_main(argv=None):
    """hashstore-node entry point: 'hashstore serve' with flat options."""
    parser = argparse.ArgumentParser(prog="hashstore-node", description="hashstore node server")
    _add_global_options(parser)
    _add_serve_options(parser)
    args = parser.parse_args(argv)
    args.command = "serve"
    _run(parser, args)


if __name__ == "__main__":
    main()
