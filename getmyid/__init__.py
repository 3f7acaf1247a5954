from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from getmyid.client import ClientBuilder, get_identity, get_identity_from
from getmyid.config import DEFAULT_SOCKET_PATH, DEFAULT_TIMEOUT, ClientConfig, load_config
from getmyid.errors import (
    ConnectionFailedError,
    DaemonError,
    ErrorKind,
    GetMyIdError,
    InvalidJsonError,
    ReadError,
    RequestTimeoutError,
    SocketNotFoundError,
    WriteError,
)
from getmyid.ipc import AsyncClient, Client
from getmyid.types import Identity, Runner, RunnerRequest

__all__ = [
    "DEFAULT_SOCKET_PATH",
    "DEFAULT_TIMEOUT",
    "AsyncClient",
    "Client",
    "ClientBuilder",
    "ClientConfig",
    "ConnectionFailedError",
    "DaemonError",
    "ErrorKind",
    "GetMyIdError",
    "Identity",
    "InvalidJsonError",
    "ReadError",
    "RequestTimeoutError",
    "Runner",
    "RunnerRequest",
    "SocketNotFoundError",
    "WriteError",
    "get_identity",
    "get_identity_from",
    "load_config",
]


def __getattr__(name: str) -> str:
    if name != "__version__":
        raise AttributeError(name)
    try:
        return version("getmyid")
    except PackageNotFoundError:
        return "0.0.0"
