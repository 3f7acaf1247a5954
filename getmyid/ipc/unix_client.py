from __future__ import annotations

import logging
import os
import socket
import time
from typing import TYPE_CHECKING

from getmyid.config import ClientConfig
from getmyid.errors import (
    ConnectionFailedError,
    GetMyIdError,
    ReadError,
    RequestTimeoutError,
    SocketNotFoundError,
    WriteError,
)
from getmyid.ipc.protocol import MAX_RESPONSE_BYTES, decode_response, encode_request
from getmyid.logging import TRACE_LEVEL
from getmyid.types import Identity, RunnerRequest

if TYPE_CHECKING:
    from getmyid.client import ClientBuilder


log = logging.getLogger(__name__)

_RECV_CHUNK = 4096


class Deadline:
    """One time budget shared by the connect, write and read phases."""

    def __init__(self, timeout: float | None) -> None:
        self.timeout = timeout
        self._end = None if timeout is None else time.monotonic() + float(timeout)

    def remaining(self, phase: str) -> float | None:
        if self._end is None:
            return None
        left = self._end - time.monotonic()
        if left <= 0:
            raise RequestTimeoutError(self.timeout, phase)
        return left


def open_connection(socket_path: str, deadline: Deadline) -> socket.socket:
    if not os.path.exists(socket_path):
        raise SocketNotFoundError(socket_path)
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.settimeout(deadline.remaining("connecting"))
        sock.connect(socket_path)
    except socket.timeout as exc:
        sock.close()
        raise RequestTimeoutError(deadline.timeout, "connecting") from exc
    except OSError as exc:
        sock.close()
        raise ConnectionFailedError(socket_path, exc.strerror or str(exc)) from exc
    except BaseException:
        sock.close()
        raise
    return sock


def send_request(sock: socket.socket, payload: bytes | None, deadline: Deadline) -> None:
    if payload is None:
        # No client context: the daemon works from the peer credentials alone.
        return None
    try:
        sock.settimeout(deadline.remaining("sending request"))
        sock.sendall(payload)
    except socket.timeout as exc:
        raise RequestTimeoutError(deadline.timeout, "sending request") from exc
    except OSError as exc:
        raise WriteError(f"failed to write to socket: {exc}") from exc
    try:
        sock.shutdown(socket.SHUT_WR)
    except OSError as exc:
        # The daemon may already have answered and closed; the read decides.
        log.debug("Write shutdown failed", extra={"reason": str(exc)})
    return None


def read_response(sock: socket.socket, deadline: Deadline) -> bytes:
    buf = bytearray()
    while True:
        try:
            sock.settimeout(deadline.remaining("reading response"))
            chunk = sock.recv(_RECV_CHUNK)
        except socket.timeout as exc:
            raise RequestTimeoutError(deadline.timeout, "reading response") from exc
        except OSError as exc:
            raise ReadError(f"failed to read response: {exc}") from exc
        if not chunk:
            break
        buf.extend(chunk)
        newline = buf.find(b"\n")
        if newline >= 0:
            del buf[newline + 1 :]
            break
        if len(buf) > MAX_RESPONSE_BYTES:
            break
    if len(buf) > MAX_RESPONSE_BYTES:
        raise ReadError(f"response exceeds {MAX_RESPONSE_BYTES} bytes")
    if not buf:
        raise ReadError("daemon closed the connection without a response")
    return bytes(buf)


class Client:
    """Blocking client for the whoami daemon.

    Every call opens its own connection and closes it before returning, so a
    client can be reused (and shared between threads) freely.
    """

    def __init__(self, config: ClientConfig | None = None) -> None:
        self._config = config if config is not None else ClientConfig()

    @staticmethod
    def builder() -> ClientBuilder:
        from getmyid.client import ClientBuilder

        return ClientBuilder()

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def socket_path(self) -> str:
        return self._config.socket_path

    @property
    def timeout(self) -> float | None:
        return self._config.timeout

    def get_identity(self) -> Identity:
        return self.get_identity_with_runner(None)

    def get_identity_with_runner(self, runner: RunnerRequest | None = None) -> Identity:
        """Resolve the identity, optionally sending runner context first.

        Raises a GetMyIdError subclass on any failure.
        """
        path = self._config.socket_path
        deadline = Deadline(self._config.timeout)
        try:
            payload = encode_request(runner)
            log.log(TRACE_LEVEL, "Connecting", extra={"sock": path})
            with open_connection(path, deadline) as sock:
                if payload is not None:
                    log.log(TRACE_LEVEL, "Sending runner context", extra={"sock": path, "bytes": len(payload)})
                send_request(sock, payload, deadline)
                log.log(TRACE_LEVEL, "Reading response", extra={"sock": path})
                line = read_response(sock, deadline)
            identity = decode_response(line)
        except GetMyIdError as exc:
            log.debug("Identity call failed", extra={"sock": path, "kind": exc.kind})
            raise
        log.debug("Identity resolved", extra={"sock": path, "identity": identity.identity})
        return identity
