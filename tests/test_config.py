"""Test ClientConfig validation and YAML loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from vex_client import ClientConfig, ConfigError, load_config


def test_defaults_and_urls() -> None:
    config = ClientConfig(host="chat.example.org:8000")

    assert config.ws_url() == "wss://chat.example.org:8000/socket"
    assert config.http_url("/file/f-1") == "https://chat.example.org:8000/file/f-1"
    assert config.ping_interval == 10
    assert config.max_missed_pongs == 2
    assert config.request_timeout is None


def test_insecure_urls() -> None:
    config = ClientConfig(host="localhost:8000", secure=False)
    assert config.ws_url() == "ws://localhost:8000/socket"
    assert config.http_url() == "http://localhost:8000"


@pytest.mark.parametrize(
    "overrides",
    [{"host": ""}, {"ping_interval": 0}, {"max_missed_pongs": 0}, {"request_timeout": -1}],
)
def test_invalid_values_rejected(overrides: dict) -> None:
    with pytest.raises(ConfigError):
        ClientConfig(**{"host": "h:1", **overrides})


def test_load_config_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "vex.yaml"
    path.write_text("host: chat.example.org:8000\nsecure: false\nping_interval: 5\n")

    config = load_config(path, max_missed_pongs=4)

    assert config.host == "chat.example.org:8000"
    assert config.secure is False
    assert config.ping_interval == 5
    assert config.max_missed_pongs == 4


def test_load_config_rejects_unknown_keys(tmp_path: Path) -> None:
    path = tmp_path / "vex.yaml"
    path.write_text("host: h:1\ncolour: blue\n")

    with pytest.raises(ConfigError, match="colour"):
        load_config(path)


def test_load_config_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="File not found"):
        load_config(tmp_path / "missing.yaml")


def test_load_config_invalid_yaml(tmp_path: Path) -> None:
    path = tmp_path / "vex.yaml"
    path.write_text("host: [unclosed\n")

    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(path)
