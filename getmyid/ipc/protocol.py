from __future__ import annotations

import json
import logging
from typing import Any, NoReturn

from getmyid.errors import DaemonError, InvalidJsonError
from getmyid.types import Identity, Runner, RunnerRequest


log = logging.getLogger(__name__)

# Upper bound for a single response line.
MAX_RESPONSE_BYTES = 64 * 1024

_U32_MAX = 2**32 - 1


def encode_json_line(payload: dict[str, Any]) -> bytes:
    # IPC is JSONL; keep it compact but deterministic. NaN/Infinity are not JSON.
    text = json.dumps(payload, separators=(",", ":"), sort_keys=True, allow_nan=False)
    return (text + "\n").encode("utf-8")


def decode_json_line(line: bytes | str) -> dict[str, Any]:
    """Parse one JSONL line into an object; raise ValueError otherwise."""
    if isinstance(line, bytes):
        try:
            text = line.decode("utf-8").strip()
        except UnicodeDecodeError as exc:
            raise ValueError("invalid utf-8") from exc
    else:
        text = line.strip()
    if not text:
        raise ValueError("empty line")
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid json") from exc
    if not isinstance(raw, dict):
        raise ValueError("expected a json object")
    return raw


def encode_request(request: RunnerRequest | None) -> bytes | None:
    """Serialize the optional runner context; None means nothing is sent."""
    if request is None:
        return None
    try:
        return encode_json_line(request.to_dict())
    except (TypeError, ValueError) as exc:
        raise InvalidJsonError(f"runner request is not JSON serializable: {exc}") from exc


def decode_response(line: bytes | str) -> Identity:
    """Decode one daemon response line.

    Returns the Identity for a success object, raises DaemonError for an
    error object and InvalidJsonError for anything else.
    """
    try:
        raw = decode_json_line(line)
    except ValueError as exc:
        raise InvalidJsonError(f"invalid JSON response: {exc}") from exc

    if "identity" not in raw:
        _raise_daemon_error(raw)

    runner_raw = raw.get("runner")
    if not isinstance(runner_raw, dict):
        raise InvalidJsonError("invalid response: field 'runner' must be an object")

    identity = Identity(
        identity=_require_str(raw, "identity"),
        idm_url=_require_str(raw, "idm_url"),
        config_url=_require_str(raw, "config_url"),
        token=_require_str(raw, "token"),
        runner=_decode_runner(runner_raw),
    )
    log.debug("Identity decoded", extra={"identity": identity.identity, "pid": identity.runner.pid})
    return identity


def _raise_daemon_error(raw: dict[str, Any]) -> NoReturn:
    if "error" in raw:
        message = raw["error"]
        if not isinstance(message, str):
            raise InvalidJsonError("invalid response: field 'error' must be a string")
        code = raw.get("error_code")
        raise DaemonError(message, code=code if isinstance(code, str) else None)

    # Older daemons: {"status":"error","error_code":"E_NO_MATCH","message":"..."}
    if raw.get("status") == "error":
        message = raw.get("message")
        if not isinstance(message, str):
            raise InvalidJsonError("invalid response: field 'message' must be a string")
        code = raw.get("error_code")
        raise DaemonError(message, code=code if isinstance(code, str) else None)

    raise InvalidJsonError("invalid response: missing field 'identity'")


def _decode_runner(raw: dict[str, Any]) -> Runner:
    extra = raw.get("extra")
    if extra is not None and not isinstance(extra, dict):
        raise InvalidJsonError("invalid response: field 'runner.extra' must be an object")
    return Runner(
        identity=_require_str(raw, "identity", prefix="runner."),
        hostname=_require_str(raw, "hostname", prefix="runner."),
        process=_require_str(raw, "process", prefix="runner."),
        pid=_require_u32(raw, "pid"),
        uid=_require_u32(raw, "uid"),
        gid=_require_u32(raw, "gid"),
        instance_id=_optional_int(raw, "instance_id"),
        timestamp=_optional_int(raw, "timestamp"),
        extra=extra,
    )


def _require_str(raw: dict[str, Any], name: str, *, prefix: str = "") -> str:
    if name not in raw:
        raise InvalidJsonError(f"invalid response: missing field '{prefix}{name}'")
    value = raw[name]
    if not isinstance(value, str):
        raise InvalidJsonError(f"invalid response: field '{prefix}{name}' must be a string")
    return value


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_u32(raw: dict[str, Any], name: str) -> int:
    if name not in raw:
        raise InvalidJsonError(f"invalid response: missing field 'runner.{name}'")
    value = raw[name]
    if not _is_int(value) or not 0 <= value <= _U32_MAX:
        raise InvalidJsonError(f"invalid response: field 'runner.{name}' must be an unsigned integer")
    return int(value)


def _optional_int(raw: dict[str, Any], name: str) -> int | None:
    value = raw.get(name)
    if value is None:
        return None
    if not _is_int(value):
        raise InvalidJsonError(f"invalid response: field 'runner.{name}' must be an integer")
    return int(value)
