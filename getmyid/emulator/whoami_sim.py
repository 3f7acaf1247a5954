from __future__ import annotations

import argparse
import logging
import os
import socket
import struct
import threading
from dataclasses import dataclass
from typing import Any

from getmyid.ipc.protocol import decode_json_line, encode_json_line
from getmyid.logging import TRACE_LEVEL


log = logging.getLogger(__name__)

# struct ucred: pid_t pid; uid_t uid; gid_t gid
_CREDS = struct.Struct("i2I")


@dataclass(frozen=True)
class SimulatedIdentity:
    identity: str
    idm_url: str = "https://auth.example.invalid/oauth2/dev"
    config_url: str = "https://config.example.invalid/api/dev"
    token: str = "tok_dev"


@dataclass(frozen=True)
class PeerInfo:
    pid: int
    uid: int
    gid: int
    process: str


def peer_info(conn: socket.socket) -> PeerInfo:
    """Kernel-reported credentials of the connected process (Linux only).

    Elsewhere the fields fall back to 0 / "unknown".
    """
    opt = getattr(socket, "SO_PEERCRED", None)
    if opt is None:
        return PeerInfo(pid=0, uid=0, gid=0, process="unknown")
    pid, uid, gid = _CREDS.unpack(conn.getsockopt(socket.SOL_SOCKET, opt, _CREDS.size))
    return PeerInfo(pid=pid, uid=uid, gid=gid, process=_process_name(pid))


def _process_name(pid: int) -> str:
    try:
        with open(f"/proc/{pid}/comm", encoding="utf-8") as fh:
            return fh.read().strip() or "unknown"
    except OSError:
        return "unknown"


class WhoamiSimulator:
    """Stand-in for the whoami daemon, for local development and tests.

    Every peer gets the same configured identity (or the configured denial);
    there is no rule matching.
    """

    def __init__(
        self,
        socket_path: str,
        identity: SimulatedIdentity,
        *,
        deny: str | None = None,
        request_grace_s: float = 0.2,
    ) -> None:
        self._socket_path = socket_path
        self._identity = identity
        self._deny = deny
        self._grace_s = float(request_grace_s)
        self._sock: socket.socket | None = None
        self._stop = threading.Event()
        self._hostname = socket.gethostname()

    @property
    def socket_path(self) -> str:
        return self._socket_path

    def start(self) -> None:
        os.makedirs(os.path.dirname(self._socket_path) or ".", exist_ok=True)
        if os.path.exists(self._socket_path):
            os.unlink(self._socket_path)
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.bind(self._socket_path)
        sock.listen(8)
        # Periodic wakeups so stop() is noticed without a connection.
        sock.settimeout(0.1)
        self._sock = sock
        log.info("Simulator listening", extra={"sock": self._socket_path, "identity": self._identity.identity})

    def serve_forever(self) -> None:
        if self._sock is None:
            self.start()
        assert self._sock is not None
        while not self._stop.is_set():
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                if self._stop.is_set():
                    return None
                raise
            with conn:
                self._handle_client(conn)

    def stop(self) -> None:
        self._stop.set()

    def close(self) -> None:
        self._stop.set()
        if self._sock is not None:
            try:
                self._sock.close()
            finally:
                self._sock = None
        if os.path.exists(self._socket_path):
            try:
                os.unlink(self._socket_path)
            except OSError:
                return None

    def _handle_client(self, conn: socket.socket) -> None:
        try:
            peer = peer_info(conn)
            log.debug("Peer connected", extra={"pid": peer.pid, "uid": peer.uid, "gid": peer.gid})
            line = self._read_request(conn)
            response = self._build_response(peer, line)
            conn.settimeout(None)
            conn.sendall(encode_json_line(response))
        except OSError as exc:
            log.warning("Client connection failed", extra={"reason": str(exc)})

    def _read_request(self, conn: socket.socket) -> bytes:
        # The request is optional: wait briefly, then answer from credentials only.
        conn.settimeout(self._grace_s)
        buf = bytearray()
        while b"\n" not in buf:
            try:
                chunk = conn.recv(4096)
            except socket.timeout:
                break
            if not chunk:
                break
            buf.extend(chunk)
        return bytes(buf)

    def _build_response(self, peer: PeerInfo, line: bytes) -> dict[str, Any]:
        if self._deny is not None:
            return {"error": self._deny}

        runner: dict[str, Any] = {}
        if line.strip():
            try:
                request = decode_json_line(line)
            except ValueError as exc:
                return {"error": f"invalid request: {exc}"}
            log.log(TRACE_LEVEL, "Runner context received", extra={"keys": sorted(request)})
            for key in ("instance_id", "timestamp", "extra"):
                if request.get(key) is not None:
                    runner[key] = request[key]

        # Server-verified facts win over anything the client sent.
        runner.update(
            {
                "identity": self._identity.identity,
                "hostname": self._hostname,
                "process": peer.process,
                "pid": peer.pid,
                "uid": peer.uid,
                "gid": peer.gid,
            }
        )
        return {
            "status": "ok",
            "identity": self._identity.identity,
            "idm_url": self._identity.idm_url,
            "config_url": self._identity.config_url,
            "token": self._identity.token,
            "runner": runner,
        }


def build_parser(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--sock", default="/tmp/whoami.sock", help="Unix socket path")
    parser.add_argument("--identity", default="DEV_IDENTITY", help="Identity returned to every peer")
    parser.add_argument("--idm-url", default=SimulatedIdentity.idm_url)
    parser.add_argument("--config-url", default=SimulatedIdentity.config_url)
    parser.add_argument("--token", default=SimulatedIdentity.token)
    parser.add_argument("--deny", default=None, metavar="MESSAGE", help="Answer every peer with this error")
    parser.add_argument("--grace-ms", type=int, default=200, help="How long to wait for a runner request")


def run(args: argparse.Namespace) -> None:
    identity = SimulatedIdentity(
        identity=args.identity,
        idm_url=args.idm_url,
        config_url=args.config_url,
        token=args.token,
    )
    server = WhoamiSimulator(
        args.sock,
        identity,
        deny=args.deny,
        request_grace_s=max(0, int(args.grace_ms)) / 1000.0,
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        return None
    finally:
        server.close()
