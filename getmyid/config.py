from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any


log = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/var/run/whoami.sock"
DEFAULT_TIMEOUT = 5.0

CONFIG_FILE_NAME = "getmyid.json"

# Sentinel for "not given": None is a meaningful timeout (disabled).
_UNSET: Any = object()


@dataclass(frozen=True)
class ClientConfig:
    socket_path: str = DEFAULT_SOCKET_PATH
    timeout: float | None = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        if not str(self.socket_path or "").strip():
            raise ValueError("socket_path must not be empty")
        if self.timeout is not None:
            if isinstance(self.timeout, bool) or not math.isfinite(float(self.timeout)) or float(self.timeout) <= 0:
                raise ValueError("timeout must be a finite positive number (or None to disable)")
            object.__setattr__(self, "timeout", float(self.timeout))
        object.__setattr__(self, "socket_path", os.fspath(self.socket_path))


def _xdg_config_home() -> Path:
    env = (os.getenv("XDG_CONFIG_HOME", "") or "").strip()
    if env:
        return Path(env).expanduser()
    return Path("~/.config").expanduser()


def config_dir() -> Path:
    env = (os.getenv("GETMYID_CONFIG_DIR", "") or "").strip()
    if env:
        return Path(env).expanduser()
    return _xdg_config_home() / "getmyid"


def parse_timeout(value: Any) -> float | None:
    """Parse a timeout in seconds. `0`, `none` and `off` disable it."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("invalid timeout")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        raw = str(value).strip().lower()
        if raw in {"none", "off", "0"}:
            return None
        try:
            seconds = float(raw)
        except ValueError as exc:
            raise ValueError("invalid timeout") from exc
    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError("invalid timeout")
    return seconds or None


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        obj = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        log.warning("Ignoring unreadable config file", extra={"path": str(path), "reason": str(exc)})
        return {}
    if not isinstance(obj, dict):
        log.warning("Ignoring config file without a JSON object", extra={"path": str(path)})
        return {}
    return obj


def load_config(
    *,
    socket_path: str | os.PathLike[str] | None = None,
    timeout: float | None = _UNSET,
) -> ClientConfig:
    """Resolve client configuration.

    Precedence (highest to lowest):
    1) explicit parameters (typically CLI or builder)
    2) env vars GETMYID_SOCKET, GETMYID_TIMEOUT
    3) config file getmyid.json in the config dir (socket_path, timeout)
    4) defaults (/var/run/whoami.sock, 5 seconds)
    """

    file_cfg = _read_config_file(config_dir() / CONFIG_FILE_NAME)

    path: str | None = os.fspath(socket_path) if socket_path is not None else None
    if path is None:
        env = (os.getenv("GETMYID_SOCKET", "") or "").strip()
        if env:
            path = env
    if path is None:
        v = file_cfg.get("socket_path")
        if isinstance(v, str) and v.strip():
            path = v.strip()
    if path is None:
        path = DEFAULT_SOCKET_PATH

    resolved_timeout: float | None
    if timeout is not _UNSET:
        resolved_timeout = timeout
    else:
        env = (os.getenv("GETMYID_TIMEOUT", "") or "").strip()
        if env:
            resolved_timeout = parse_timeout(env)
        elif "timeout" in file_cfg:
            try:
                resolved_timeout = parse_timeout(file_cfg["timeout"])
            except ValueError:
                log.warning("Ignoring invalid timeout in config file", extra={"value": file_cfg["timeout"]})
                resolved_timeout = DEFAULT_TIMEOUT
        else:
            resolved_timeout = DEFAULT_TIMEOUT

    return ClientConfig(socket_path=path, timeout=resolved_timeout)
