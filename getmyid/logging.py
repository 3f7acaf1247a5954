from __future__ import annotations

import contextlib
import contextvars
import datetime as _dt
import json
import logging
import os
import sys
import traceback
from typing import Any, Iterator

# Finer than DEBUG: per-phase socket events.
TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")

LOG_FORMATS = ("pretty", "json")

_trace_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("getmyid_trace_id", default=None)


@contextlib.contextmanager
def trace_context(trace_id: str) -> Iterator[None]:
    token = _trace_id_var.set(str(trace_id))
    try:
        yield
    finally:
        _trace_id_var.reset(token)


def get_trace_id() -> str | None:
    return _trace_id_var.get()


class _TraceIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 (filter)
        if not hasattr(record, "trace_id"):
            record.trace_id = get_trace_id()  # type: ignore[attr-defined]
        return True


# Attributes every LogRecord carries; anything else came in through `extra=`.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS and not k.startswith("_")}


def _timestamp(record: logging.LogRecord) -> str:
    return (
        _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc)
        .astimezone()
        .isoformat(timespec="milliseconds")
    )


def _exc_text(record: logging.LogRecord) -> str:
    assert record.exc_info is not None
    return "".join(traceback.format_exception(*record.exc_info)).rstrip()


_LEVEL_COLORS = (
    (logging.ERROR, "31"),
    (logging.WARNING, "33"),
    (logging.INFO, "32"),
    (logging.DEBUG, "36"),
)


class PrettyFormatter(logging.Formatter):
    """`<ts> <LEVEL> <logger> <msg> key=value ...` on one line."""

    def __init__(self, *, use_color: bool) -> None:
        super().__init__()
        self._use_color = bool(use_color)

    def format(self, record: logging.LogRecord) -> str:
        parts = [_timestamp(record), record.levelname, record.name, record.getMessage()]
        extras = _extras(record)
        trace_id = extras.pop("trace_id", None)
        if trace_id:
            parts.append(f"trace_id={trace_id}")
        parts.extend(f"{k}={extras[k]}" for k in sorted(extras))

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + _exc_text(record)
        if self._use_color:
            line = _colorize(record.levelno, line)
        return line


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": _timestamp(record),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(_extras(record))
        if record.exc_info:
            payload["exc"] = _exc_text(record)
        return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)


def _colorize(levelno: int, text: str) -> str:
    color = "90"  # gray for TRACE
    for threshold, code in _LEVEL_COLORS:
        if levelno >= threshold:
            color = code
            break
    return f"\x1b[{color}m{text}\x1b[0m"


_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE_LEVEL,
}


def parse_log_level(value: str | None) -> int:
    raw = (value or "").strip().lower()
    if not raw:
        return logging.INFO
    try:
        return _LEVELS[raw]
    except KeyError:
        raise ValueError("invalid log level") from None


def setup_logging(
    *,
    level: int = logging.INFO,
    log_format: str = "pretty",
    log_file: str | None = None,
    no_color: bool = False,
) -> None:
    """Configure root logging for the command line tools.

    Logs go to stderr (and optionally a file); stdout carries command results.
    The library itself never calls this.
    """

    fmt = (log_format or "pretty").strip().lower()
    if fmt not in LOG_FORMATS:
        raise ValueError("invalid log format")

    use_color = (not no_color) and bool(getattr(sys.stderr, "isatty", lambda: False)())

    handlers: list[logging.Handler] = []

    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setFormatter(JsonFormatter() if fmt == "json" else PrettyFormatter(use_color=use_color))
    handlers.append(stderr_handler)

    if log_file:
        path = os.path.expanduser(str(log_file))
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setFormatter(JsonFormatter() if fmt == "json" else PrettyFormatter(use_color=False))
        handlers.append(fh)

    for handler in handlers:
        handler.addFilter(_TraceIdFilter())

    logging.basicConfig(level=int(level), handlers=handlers, force=True)

    # asyncio's own DEBUG chatter only matters when tracing.
    logging.getLogger("asyncio").setLevel(TRACE_LEVEL if int(level) <= TRACE_LEVEL else logging.WARNING)
