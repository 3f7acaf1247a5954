"""Tests for configuration resolution and the client builder."""

from __future__ import annotations

import datetime as dt
import json
import os

import pytest

from conftest import TRUSTEE_LINE, respond
from getmyid.client import ClientBuilder, get_identity_from
from getmyid.config import DEFAULT_SOCKET_PATH, DEFAULT_TIMEOUT, ClientConfig, load_config, parse_timeout
from getmyid.ipc.async_client import AsyncClient
from getmyid.ipc.unix_client import Client


def _write_config_file(data) -> None:
    path = os.environ["GETMYID_CONFIG_DIR"]
    os.makedirs(path, exist_ok=True)
    with open(os.path.join(path, "getmyid.json"), "w", encoding="utf-8") as fh:
        fh.write(data if isinstance(data, str) else json.dumps(data))


class TestClientConfig:
    def test_defaults(self):
        cfg = ClientConfig()

        assert cfg.socket_path == DEFAULT_SOCKET_PATH == "/var/run/whoami.sock"
        assert cfg.timeout == DEFAULT_TIMEOUT == 5.0

    @pytest.mark.parametrize("timeout", [0, -1, True, float("nan"), float("inf"), float("-inf")])
    def test_rejects_bad_timeout(self, timeout):
        with pytest.raises(ValueError):
            ClientConfig(timeout=timeout)

    def test_rejects_empty_path(self):
        with pytest.raises(ValueError):
            ClientConfig(socket_path="")

    def test_int_timeout_normalized(self):
        assert ClientConfig(timeout=3).timeout == 3.0


class TestParseTimeout:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("2.5", 2.5), ("10", 10.0), (3, 3.0), ("0", None), ("none", None), ("OFF", None), (None, None)],
    )
    def test_values(self, raw, expected):
        assert parse_timeout(raw) == expected

    @pytest.mark.parametrize("raw", ["soon", "-1", True, "nan", "inf", "-inf", float("nan"), float("inf")])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_timeout(raw)


class TestLoadConfig:
    def test_defaults(self):
        assert load_config() == ClientConfig()

    def test_env(self, monkeypatch):
        monkeypatch.setenv("GETMYID_SOCKET", "/tmp/env.sock")
        monkeypatch.setenv("GETMYID_TIMEOUT", "1.5")

        assert load_config() == ClientConfig(socket_path="/tmp/env.sock", timeout=1.5)

    def test_env_disables_timeout(self, monkeypatch):
        monkeypatch.setenv("GETMYID_TIMEOUT", "0")

        assert load_config().timeout is None

    def test_invalid_env_timeout(self, monkeypatch):
        monkeypatch.setenv("GETMYID_TIMEOUT", "later")

        with pytest.raises(ValueError):
            load_config()

    def test_non_finite_env_timeout(self, monkeypatch):
        monkeypatch.setenv("GETMYID_TIMEOUT", "nan")

        with pytest.raises(ValueError):
            load_config()

    def test_non_finite_timeout_in_file_ignored(self):
        _write_config_file({"timeout": "inf"})

        assert load_config().timeout == DEFAULT_TIMEOUT

    def test_config_file(self):
        _write_config_file({"socket_path": "/tmp/file.sock", "timeout": 9})

        assert load_config() == ClientConfig(socket_path="/tmp/file.sock", timeout=9.0)

    def test_env_beats_file(self, monkeypatch):
        _write_config_file({"socket_path": "/tmp/file.sock", "timeout": 9})
        monkeypatch.setenv("GETMYID_SOCKET", "/tmp/env.sock")

        cfg = load_config()

        assert cfg.socket_path == "/tmp/env.sock"
        assert cfg.timeout == 9.0

    def test_explicit_beats_env(self, monkeypatch):
        monkeypatch.setenv("GETMYID_SOCKET", "/tmp/env.sock")
        monkeypatch.setenv("GETMYID_TIMEOUT", "1")

        cfg = load_config(socket_path="/tmp/cli.sock", timeout=None)

        assert cfg == ClientConfig(socket_path="/tmp/cli.sock", timeout=None)

    def test_malformed_file_ignored(self):
        _write_config_file("{not json")

        assert load_config() == ClientConfig()

    def test_bad_timeout_in_file_ignored(self):
        _write_config_file({"timeout": "eventually"})

        assert load_config().timeout == DEFAULT_TIMEOUT


class TestClientBuilder:
    def test_build(self):
        client = Client.builder().socket_path("/tmp/test.sock").timeout(10).build()

        assert isinstance(client, Client)
        assert client.socket_path == "/tmp/test.sock"
        assert client.timeout == 10.0

    def test_no_timeout(self):
        assert ClientBuilder().timeout(None).build().timeout is None

    def test_timedelta(self):
        assert ClientBuilder().timeout(dt.timedelta(milliseconds=1500)).config().timeout == 1.5

    def test_build_async(self):
        client = AsyncClient.builder().socket_path("/tmp/a.sock").build_async()

        assert isinstance(client, AsyncClient)
        assert client.config == ClientConfig(socket_path="/tmp/a.sock")

    def test_builder_does_not_mutate_built_config(self):
        builder = ClientBuilder().socket_path("/tmp/one.sock")
        client = builder.build()
        builder.socket_path("/tmp/two.sock")

        assert client.socket_path == "/tmp/one.sock"

    def test_invalid_values_rejected_at_build(self):
        with pytest.raises(ValueError):
            ClientBuilder().timeout(-2).build()
        with pytest.raises(ValueError):
            ClientBuilder().timeout(float("nan")).build()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("GETMYID_SOCKET", "/tmp/env.sock")

        assert ClientBuilder.from_env().config() == ClientConfig(socket_path="/tmp/env.sock")

    def test_from_env_reads_timeout_and_file(self, monkeypatch):
        _write_config_file({"socket_path": "/tmp/file.sock"})
        monkeypatch.setenv("GETMYID_TIMEOUT", "off")

        client = ClientBuilder.from_env().build()

        assert client.config == ClientConfig(socket_path="/tmp/file.sock", timeout=None)

    def test_default_client(self):
        client = Client()

        assert client.socket_path == DEFAULT_SOCKET_PATH
        assert client.timeout == DEFAULT_TIMEOUT


def test_get_identity_from(daemon, sock_path):
    daemon(respond(TRUSTEE_LINE))

    identity = get_identity_from(sock_path)

    assert identity.identity == "TRUSTEE_AGENT"
