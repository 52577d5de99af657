"""Pytest configuration and fixtures for the siege proxy tests."""
from __future__ import annotations

import logging
import stat
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest
import rlp
from eth_utils import keccak

from siege_proxy.logs import LOGGER_NAME

NODE_RESULT = b'{"jsonrpc":"2.0","id":1,"result":"0x1"}'


class _Server(ThreadingHTTPServer):
    daemon_threads = True
    request_queue_size = 128


class FakeNode:
    """Minimal JSON-RPC node that records what it receives."""

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.status = 200
        self.body: Optional[bytes] = NODE_RESULT
        self.headers: List[Tuple[str, str]] = [("Content-Type", "application/json"), ("X-Node", "fake")]
        self.delay = 0.0
        self._lock = threading.Lock()
        node = self

        class Handler(BaseHTTPRequestHandler):
            def _answer(self):
                length = int(self.headers.get("Content-Length", 0))
                body = self.rfile.read(length)
                with node._lock:
                    node.requests.append(
                        {"method": self.command, "path": self.path, "headers": dict(self.headers), "body": body}
                    )
                if node.delay:
                    time.sleep(node.delay)
                # None means echo the request body back
                payload = body if node.body is None else node.body
                self.send_response(node.status)
                for name, value in node.headers:
                    self.send_header(name, value)
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            do_POST = _answer
            do_GET = _answer

            def log_message(self, format, *args):
                pass

        self.server = _Server(("127.0.0.1", 0), Handler)
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    @property
    def url(self) -> str:
        host, port = self.server.server_address[:2]
        return f"http://{host}:{port}"

    def start(self) -> "FakeNode":
        self.thread.start()
        return self

    def stop(self) -> None:
        self.server.shutdown()
        self.server.server_close()


@pytest.fixture
def fake_node():
    node = FakeNode().start()
    yield node
    node.stop()


@pytest.fixture
def make_verifier(tmp_path):
    """
    Return a factory writing an executable cannon stand-in.

    The script appends its arguments to ``<name>.args`` and runs ``body``.
    """

    def _make(body: str = "exit 0", name: str = "cannon") -> Tuple[Path, Path]:
        script = tmp_path / name
        args_file = tmp_path / f"{name}.args"
        script.write_text(f'#!/bin/sh\necho "$@" >> "{args_file}"\n{body}\n', encoding="utf-8")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script, args_file

    return _make


def build_header(
    number: int = 1,
    state_root: bytes = b"\x11" * 32,
    receipt_root: bytes = b"\x22" * 32,
    extra_fields: int = 1,
) -> List[Any]:
    header: List[Any] = [
        b"\x00" * 32,  # parent hash
        keccak(rlp.encode([])),  # uncle hash
        b"\x33" * 20,  # coinbase
        state_root,
        b"\x44" * 32,  # tx root
        receipt_root,
        b"\x00" * 256,  # bloom
        0,  # difficulty
        number,
        30_000_000,  # gas limit
        21_000,  # gas used
        1_700_000_000,  # timestamp
        b"siege",  # extra data
        b"\x55" * 32,  # mix digest
        b"\x00" * 8,  # nonce
    ]
    # base fee, withdrawals root
    optional = [7, b"\x66" * 32]
    return header + optional[:extra_fields]


def build_legacy_tx() -> List[Any]:
    # nonce, gas price, gas, to, value, data, v, r, s
    return [0, 10**9, 21_000, b"\x33" * 20, 1, b"", 27, 1, 1]


def build_typed_tx(tx_type: int) -> bytes:
    to = b"\x33" * 20
    access = [[b"\x44" * 20, [b"\x00" * 32]]]
    signature = [1, 2, 3]
    fee_market = [1, 0, 10**9, 2 * 10**9, 21_000]
    if tx_type == 1:
        payload = [1, 0, 10**9, 21_000, to, 1, b"", access] + signature
    elif tx_type == 2:
        payload = fee_market + [to, 1, b"", access] + signature
    elif tx_type == 3:
        payload = fee_market + [to, 1, b"", access, 10**9, [b"\x01" + b"\x00" * 31]] + signature
    elif tx_type == 4:
        authorization = [[1, b"\x55" * 20, 0, 1, 2, 3]]
        payload = fee_market + [to, 0, b"", access, authorization] + signature
    else:
        raise ValueError(f"unknown tx type {tx_type}")
    return bytes([tx_type]) + rlp.encode(payload)


def encode_block(header: List[Any], body: Optional[List[Any]] = None) -> str:
    block = [header, [], []] if body is None else [header, *body]
    return "0x" + rlp.encode(block).hex()


@pytest.fixture
def block_payload():
    """
    Return a factory producing ``(hex_param, expected_verifier_args)``.
    """

    def _make(number: int = 1, state_root: bytes = b"\x11" * 32, receipt_root: bytes = b"\x22" * 32):
        header = build_header(number, state_root, receipt_root)
        expected = [
            "test",
            str(number),
            "0x" + keccak(rlp.encode(header)).hex(),
            "0x" + state_root.hex(),
            "0x" + receipt_root.hex(),
        ]
        return encode_block(header), expected

    return _make


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
