from __future__ import annotations

import datetime as _dt
import os

from getmyid.config import DEFAULT_SOCKET_PATH, DEFAULT_TIMEOUT, ClientConfig, load_config
from getmyid.ipc.async_client import AsyncClient
from getmyid.ipc.unix_client import Client
from getmyid.types import Identity


class ClientBuilder:
    """Mutable accumulator for a ClientConfig.

    Example::

        client = Client.builder().socket_path("/tmp/whoami.sock").timeout(10).build()
    """

    def __init__(self) -> None:
        self._socket_path: str = DEFAULT_SOCKET_PATH
        self._timeout: float | None = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls) -> ClientBuilder:
        """Seed the builder from env vars and the config file."""
        cfg = load_config()
        return cls().socket_path(cfg.socket_path).timeout(cfg.timeout)

    def socket_path(self, path: str | os.PathLike[str]) -> ClientBuilder:
        self._socket_path = os.fspath(path)
        return self

    def timeout(self, timeout: float | _dt.timedelta | None) -> ClientBuilder:
        """Set the round-trip timeout in seconds. None disables it."""
        if isinstance(timeout, _dt.timedelta):
            timeout = timeout.total_seconds()
        self._timeout = timeout
        return self

    def config(self) -> ClientConfig:
        return ClientConfig(socket_path=self._socket_path, timeout=self._timeout)

    def build(self) -> Client:
        return Client(self.config())

    def build_async(self) -> AsyncClient:
        return AsyncClient(self.config())


def get_identity() -> Identity:
    """Resolve the identity with the default socket path and timeout."""
    return Client().get_identity()


def get_identity_from(socket_path: str | os.PathLike[str]) -> Identity:
    return ClientBuilder().socket_path(socket_path).build().get_identity()
