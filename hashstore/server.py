# hashstore/server.py
"""
HTTP server exposing a node.

Endpoints:
    GET  /health                       - Liveness
    GET  /chain                        - Chain id, contract address, block height
    GET  /owner                        - Contract owner
    GET  /users/:addr/registered       - Membership check
    GET  /users/:addr/count            - Number of stored files
    GET  /users/:addr/files?from=addr  - Stored files (self or owner only)
    GET  /nonce/:addr                  - Next nonce for an address
    GET  /receipts/:tx_hash            - Transaction receipt
    GET  /events?name=&address=        - Emitted events
    POST /transactions                 - Submit a signed transaction
"""

import json
import logging
import threading
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from .errors import (
    AlreadyRegistered,
    EmptyHash,
    InvalidAddress,
    RegistryError,
    TransactionRejected,
)
from .node import Node
from .transactions import Transaction

logger = logging.getLogger(__name__)


def _status_for(error: RegistryError) -> int:
    if isinstance(error, AlreadyRegistered):
        return 409
    if isinstance(error, EmptyHash):
        return 400
    return 403


class RegistryServer:
    """
    HTTP server for a hashstore node.

    Usage:
        server = RegistryServer(node, port=8545)
        server.start()  # Blocking
    """

    def __init__(self, node: Node, host: str = "127.0.0.1", port: int = 8545):
        self.node = node
        self.host = host
        self.port = port
        self._httpd: Optional[ThreadingHTTPServer] = None

    def _create_handler(server_instance):
        """Create request handler with access to server instance."""

        class RequestHandler(BaseHTTPRequestHandler):
            server_ref = server_instance

            def log_message(self, format, *args):
                logger.debug(format % args)

            def _send_json(self, data: Any, status: int = 200):
                body = json.dumps(data).encode()
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def _send_error(self, message: str, status: int = 400, code: str = "BadRequest"):
                self._send_json({"error": code, "message": message}, status)

            def _user_route(self, path: str):
                # /users/<addr>/<action>
                parts = path.strip("/").split("/")
                if len(parts) != 3:
                    return None, None
                return parts[1], parts[2]

            def do_GET(self):
                parsed = urlparse(self.path)
                path = parsed.path
                query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
                node = self.server_ref.node

                try:
                    if path == "/health":
                        self._send_json({"status": "ok"})

                    elif path == "/chain":
                        self._send_json({
                            "chain_id": node.chain_id,
                            "contract_address": node.contract_address,
                            "block_number": node.block_number,
                        })

                    elif path == "/owner":
                        self._send_json({"owner": node.call("owner")})

                    elif path.startswith("/users/"):
                        address, action = self._user_route(path)
                        if action == "registered":
                            result = node.call("is_user_registered", {"address": address})
                            self._send_json({"address": address, "registered": result})
                        elif action == "count":
                            result = node.call("get_user_file_count", {"target": address})
                            self._send_json({"address": address, "count": result})
                        elif action == "files":
                            caller = query.get("from")
                            if not caller:
                                self._send_error("Missing 'from' address")
                                return
                            files = node.call("get_user_files", {"target": address}, caller=caller)
                            self._send_json({
                                "address": address,
                                "files": [f.to_dict() for f in files],
                            })
                        else:
                            self._send_error("Not found", 404, "NotFound")

                    elif path.startswith("/nonce/"):
                        address = path[len("/nonce/"):]
                        self._send_json({"address": address, "nonce": node.get_nonce(address)})

                    elif path.startswith("/receipts/"):
                        receipt = node.get_receipt(path[len("/receipts/"):])
                        if receipt is None:
                            self._send_error("Receipt not found", 404, "NotFound")
                            return
                        self._send_json(receipt.to_dict())

                    elif path == "/events":
                        events = node.get_events(name=query.get("name"), address=query.get("address"))
                        self._send_json({"events": [e.to_dict() for e in events]})

                    else:
                        self._send_error("Not found", 404, "NotFound")

                except RegistryError as e:
                    self._send_json(e.to_dict(), _status_for(e))
                except InvalidAddress as e:
                    self._send_error(str(e), 400, "InvalidAddress")
                except RuntimeError as e:
                    self._send_error(str(e), 503, "Unavailable")
                except OSError as e:
                    self._send_error(f"Storage error: {e}", 500, "StorageError")

            def do_POST(self):
                if self.path != "/transactions":
                    self._send_error("Not found", 404, "NotFound")
                    return

                try:
                    content_length = int(self.headers.get("Content-Length", 0))
                    body = self.rfile.read(content_length).decode()
                    tx = Transaction.from_dict(json.loads(body))
                    receipt = self.server_ref.node.send_transaction(tx)
                    self._send_json(receipt.to_dict())
                except json.JSONDecodeError as e:
                    self._send_error(f"Invalid JSON: {e}")
                except InvalidAddress as e:
                    self._send_error(str(e), 400, "InvalidAddress")
                except TransactionRejected as e:
                    self._send_error(str(e), 400, "TransactionRejected")
                except (KeyError, TypeError, ValueError) as e:
                    self._send_error(f"Malformed transaction: {e}")
                except RuntimeError as e:
                    self._send_error(str(e), 503, "Unavailable")
                except OSError as e:
                    self._send_error(f"Storage error: {e}", 500, "StorageError")

        return RequestHandler

    def bind(self) -> ThreadingHTTPServer:
        """Create the listening socket (port 0 picks a free port)."""
        if self._httpd is None:
            handler = self._create_handler()
            self._httpd = ThreadingHTTPServer((self.host, self.port), handler)
            self.port = self._httpd.server_address[1]
        return self._httpd

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def start(self):
        """Start the HTTP server (blocking)."""
        httpd = self.bind()
        logger.info(f"hashstore node serving on {self.url} (chain id {self.node.chain_id})")
        print(f"hashstore node running on {self.url}")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            print("\nShutting down...")
        finally:
            httpd.server_close()

    def start_background(self) -> threading.Thread:
        """Start the server in a background thread."""
        httpd = self.bind()
        thread = threading.Thread(target=httpd.serve_forever)
        thread.daemon = True
        thread.start()
        return thread

    def stop(self):
        """Stop a server started with start_background()."""
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
