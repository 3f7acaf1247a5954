from __future__ import annotations

import asyncio
import contextlib
import logging
import os
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


class _Call:
    def __init__(self, socket_path: str) -> None:
        self.socket_path = socket_path
        self.phase = "connecting"

    def enter(self, phase: str) -> None:
        self.phase = phase
        log.log(TRACE_LEVEL, phase.capitalize(), extra={"sock": self.socket_path})


class AsyncClient:
    """asyncio client for the whoami daemon.

    Connect, write and read are suspension points. The configured timeout
    bounds the whole round trip; on expiry the call is cancelled and its
    socket closed.
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

    async def get_identity(self) -> Identity:
        return await self.get_identity_with_runner(None)

    async def get_identity_with_runner(self, runner: RunnerRequest | None = None) -> Identity:
        path = self._config.socket_path
        timeout = self._config.timeout
        call = _Call(path)
        try:
            payload = encode_request(runner)
            if not os.path.exists(path):
                raise SocketNotFoundError(path)
            try:
                line = await asyncio.wait_for(self._round_trip(call, payload), timeout)
            except asyncio.TimeoutError as exc:
                raise RequestTimeoutError(timeout, call.phase) from exc
            identity = decode_response(line)
        except GetMyIdError as exc:
            log.debug("Identity call failed", extra={"sock": path, "kind": exc.kind})
            raise
        log.debug("Identity resolved", extra={"sock": path, "identity": identity.identity})
        return identity

    async def _round_trip(self, call: _Call, payload: bytes | None) -> bytes:
        call.enter("connecting")
        try:
            reader, writer = await asyncio.open_unix_connection(call.socket_path, limit=MAX_RESPONSE_BYTES)
        except OSError as exc:
            raise ConnectionFailedError(call.socket_path, exc.strerror or str(exc)) from exc

        try:
            if payload is not None:
                call.enter("sending request")
                try:
                    writer.write(payload)
                    await writer.drain()
                except OSError as exc:
                    raise WriteError(f"failed to write to socket: {exc}") from exc
                if writer.can_write_eof():
                    try:
                        writer.write_eof()
                    except OSError as exc:
                        log.debug("Write shutdown failed", extra={"reason": str(exc)})

            call.enter("reading response")
            try:
                line = await reader.readline()
            except ValueError as exc:
                # StreamReader reports a line over its limit as ValueError.
                raise ReadError(f"response exceeds {MAX_RESPONSE_BYTES} bytes") from exc
            except OSError as exc:
                raise ReadError(f"failed to read response: {exc}") from exc
            if not line:
                raise ReadError("daemon closed the connection without a response")
            return line
        finally:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
