"""Pytest configuration and fixtures for getmyid tests."""

from __future__ import annotations

import socket
import tempfile
import threading
from pathlib import Path
from typing import Callable, Iterator

import pytest


TRUSTEE_LINE = (
    b'{"identity":"TRUSTEE_AGENT","idm_url":"https://auth.example.com/oauth2/trustee",'
    b'"config_url":"https://config.example.com/api/trustee","token":"tok_trustee_xxx",'
    b'"runner":{"identity":"TRUSTEE_AGENT","hostname":"worker-node-03","process":"trustee",'
    b'"pid":26567,"uid":1000,"gid":1000,"instance_id":42,"timestamp":1738512000}}\n'
)


class ScriptedDaemon:
    """Unix socket server running one handler per accepted connection in a thread."""

    def __init__(self, path: str, handler: Callable[[ScriptedDaemon, socket.socket], None]) -> None:
        self.path = path
        self.received: list[bytes] = []
        self.connections = 0
        self.stopped = threading.Event()
        self._handler = handler
        self._sock: socket.socket | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.bind(self.path)
        sock.listen(8)
        sock.settimeout(0.05)
        self._sock = sock
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self.stopped.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
        if self._sock is not None:
            self._sock.close()

    def _run(self) -> None:
        assert self._sock is not None
        while not self.stopped.is_set():
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            self.connections += 1
            with conn:
                conn.settimeout(None)
                try:
                    self._handler(self, conn)
                except OSError:
                    pass

    def read_request(self, conn: socket.socket, grace_s: float = 0.2) -> bytes:
        conn.settimeout(grace_s)
        buf = bytearray()
        while b"\n" not in buf:
            try:
                chunk = conn.recv(4096)
            except socket.timeout:
                break
            if not chunk:
                break
            buf.extend(chunk)
        conn.settimeout(None)
        self.received.append(bytes(buf))
        return bytes(buf)


def respond(line: bytes) -> Callable[[ScriptedDaemon, socket.socket], None]:
    def handler(daemon: ScriptedDaemon, conn: socket.socket) -> None:
        daemon.read_request(conn)
        conn.sendall(line)

    return handler


def stall(daemon: ScriptedDaemon, conn: socket.socket) -> None:
    # Accept, then never answer.
    daemon.stopped.wait(10)


def send_partial_then_stall(daemon: ScriptedDaemon, conn: socket.socket) -> None:
    conn.sendall(TRUSTEE_LINE[:40])
    daemon.stopped.wait(10)


def trickle(daemon: ScriptedDaemon, conn: socket.socket) -> None:
    # A byte every 50ms and never a newline.
    conn.sendall(b"{")
    while not daemon.stopped.wait(0.05):
        conn.sendall(b" ")


def close_silently(daemon: ScriptedDaemon, conn: socket.socket) -> None:
    daemon.read_request(conn)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the developer's environment and config file out of the tests."""
    monkeypatch.delenv("GETMYID_SOCKET", raising=False)
    monkeypatch.delenv("GETMYID_TIMEOUT", raising=False)
    monkeypatch.setenv("GETMYID_CONFIG_DIR", str(tmp_path / "config"))


@pytest.fixture
def sock_path() -> Iterator[str]:
    """Socket path short enough for AF_UNIX (tmp_path can exceed 108 bytes)."""
    with tempfile.TemporaryDirectory(prefix="getmyid-", dir="/tmp") as d:
        yield str(Path(d) / "whoami.sock")


@pytest.fixture
def daemon(sock_path: str) -> Iterator[Callable[[Callable[[ScriptedDaemon, socket.socket], None]], ScriptedDaemon]]:
    started: list[ScriptedDaemon] = []

    def _start(handler: Callable[[ScriptedDaemon, socket.socket], None]) -> ScriptedDaemon:
        d = ScriptedDaemon(sock_path, handler)
        d.start()
        started.append(d)
        return d

    yield _start
    for d in started:
        d.stop()
