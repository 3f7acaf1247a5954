from __future__ import annotations

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class Runner:
    """Runner context returned by the daemon.

    `identity`, `hostname`, `process`, `pid`, `uid` and `gid` are filled in by
    the daemon from the kernel peer credentials. `instance_id`, `timestamp`
    and `extra` are whatever the caller sent, echoed back.
    """

    identity: str
    hostname: str
    process: str
    pid: int
    uid: int
    gid: int
    instance_id: int | None = None
    timestamp: int | None = None
    extra: Mapping[str, Any] | None = field(default=None, hash=False)

    def __post_init__(self) -> None:
        # Read-only snapshot; the caller keeps its own dict.
        if self.extra is not None:
            object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "identity": self.identity,
            "hostname": self.hostname,
            "process": self.process,
            "pid": int(self.pid),
            "uid": int(self.uid),
            "gid": int(self.gid),
        }
        if self.instance_id is not None:
            out["instance_id"] = int(self.instance_id)
        if self.timestamp is not None:
            out["timestamp"] = int(self.timestamp)
        if self.extra is not None:
            out["extra"] = dict(self.extra)
        return out


@dataclass(frozen=True)
class Identity:
    """Application identity resolved by the whoami daemon."""

    identity: str
    idm_url: str
    config_url: str
    token: str
    runner: Runner

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "idm_url": self.idm_url,
            "config_url": self.config_url,
            "token": self.token,
            "runner": self.runner.to_dict(),
        }


def _check_int(name: str, value: Any) -> int:
    # bool is an int subclass; the daemon expects a JSON number.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    return value


@dataclass
class RunnerRequest:
    """Client context sent to the daemon and merged into `Identity.runner`.

    Setters return the request itself so calls can be chained::

        req = RunnerRequest().with_instance_id(42).with_current_timestamp()
    """

    instance_id: int | None = None
    timestamp: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.instance_id is not None:
            _check_int("instance_id", self.instance_id)
        if self.timestamp is not None:
            _check_int("timestamp", self.timestamp)
        for key in self.extra:
            if not isinstance(key, str):
                raise ValueError("extra keys must be strings")

    def with_instance_id(self, instance_id: int) -> RunnerRequest:
        self.instance_id = _check_int("instance_id", instance_id)
        return self

    def with_timestamp(self, timestamp: int) -> RunnerRequest:
        self.timestamp = _check_int("timestamp", timestamp)
        return self

    def with_current_timestamp(self) -> RunnerRequest:
        self.timestamp = int(time.time())
        return self

    def with_extra(self, key: str, value: Any) -> RunnerRequest:
        if not isinstance(key, str):
            raise ValueError("extra keys must be strings")
        self.extra[key] = value
        return self

    def with_extras(self, values: dict[str, Any]) -> RunnerRequest:
        for key, value in values.items():
            self.with_extra(key, value)
        return self

    def is_empty(self) -> bool:
        return self.instance_id is None and self.timestamp is None and not self.extra

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.instance_id is not None:
            out["instance_id"] = int(self.instance_id)
        if self.timestamp is not None:
            out["timestamp"] = int(self.timestamp)
        if self.extra:
            out["extra"] = dict(self.extra)
        return out
