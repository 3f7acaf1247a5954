from __future__ import annotations

from typing import Any, Literal


ErrorKind = Literal[
    "socket_not_found",
    "connection_failed",
    "write_error",
    "read_error",
    "timeout",
    "invalid_json",
    "daemon_error",
]


class GetMyIdError(Exception):
    """Base class for every failure of an identity call.

    Catch this to handle all of them; switch on `kind` (or the subclass) to
    tell them apart.
    """

    kind: ErrorKind

    def to_dict(self) -> dict[str, Any]:
        return {"ok": False, "kind": self.kind, "error": str(self)}


class SocketNotFoundError(GetMyIdError):
    kind: ErrorKind = "socket_not_found"

    def __init__(self, path: str) -> None:
        super().__init__(f"socket path does not exist: {path}")
        self.path = path


class ConnectionFailedError(GetMyIdError):
    kind: ErrorKind = "connection_failed"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"failed to connect to socket at {path}: {reason}")
        self.path = path


class WriteError(GetMyIdError):
    kind: ErrorKind = "write_error"


class ReadError(GetMyIdError):
    kind: ErrorKind = "read_error"


class RequestTimeoutError(GetMyIdError):
    kind: ErrorKind = "timeout"

    def __init__(self, timeout: float | None, phase: str) -> None:
        super().__init__(f"timeout after {timeout}s while {phase}")
        self.timeout = timeout
        self.phase = phase


class InvalidJsonError(GetMyIdError):
    kind: ErrorKind = "invalid_json"


class DaemonError(GetMyIdError):
    kind: ErrorKind = "daemon_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        if code:
            super().__init__(f"daemon error ({code}): {message}")
        else:
            super().__init__(f"daemon error: {message}")
        self.message = message
        self.code = code

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["message"] = self.message
        if self.code is not None:
            out["code"] = self.code
        return out
