"""Tests for address_harvest.config."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import SecretStr

from address_harvest.config import HarvestConfig, ImapConfig, RetryConfig, ScanConfig, load_config
from address_harvest.errors import ConfigError

_PREFIXES = ("IMAP_", "RETRY_", "SCAN_", "HARVEST_")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith(_PREFIXES):
            monkeypatch.delenv(name)


def _write_env(path: Path, **values: str) -> Path:
    path.write_text("".join(f"{k}={v}\n" for k, v in values.items()), encoding="utf-8")
    return path


@pytest.fixture
def env_file(tmp_path: Path) -> Path:
    return _write_env(
        tmp_path / "connection.env",
        IMAP_HOST="imap.gmail.com",
        IMAP_PORT="993",
        IMAP_USERNAME="someone@gmail.com",
        IMAP_PASSWORD="app-password",
    )


class TestImapConfig:
    def test_defaults(self):
        cfg = ImapConfig(host="imap.test.com", port=993, username="u", password="p")
        assert cfg.port == 993
        assert cfg.mailbox == "INBOX"
        assert cfg.timeout_seconds is None

    def test_port_is_required(self):
        with pytest.raises(ValueError, match="port"):
            ImapConfig(host="imap.test.com", username="u", password="p")

    def test_password_is_secret(self):
        cfg = ImapConfig(host="h", port=993, username="u", password="hunter2")
        assert isinstance(cfg.password, SecretStr)
        assert "hunter2" not in repr(cfg)
        assert cfg.password.get_secret_value() == "hunter2"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("IMAP_HOST", "env-imap.example.com")
        monkeypatch.setenv("IMAP_PORT", "1993")
        monkeypatch.setenv("IMAP_USERNAME", "envuser")
        monkeypatch.setenv("IMAP_PASSWORD", "envpass")
        monkeypatch.setenv("IMAP_MAILBOX", "Archive")
        cfg = ImapConfig()
        assert cfg.host == "env-imap.example.com"
        assert cfg.port == 1993
        assert cfg.mailbox == "Archive"

    @pytest.mark.parametrize("field", ["host", "username"])
    def test_blank_values_rejected(self, field):
        values = {"host": "h", "port": 993, "username": "u", "password": "p", field: "   "}
        with pytest.raises(ValueError, match="must not be empty"):
            ImapConfig(**values)

    def test_blank_password_rejected(self):
        with pytest.raises(ValueError, match="must not be empty"):
            ImapConfig(host="h", port=993, username="u", password="")

    def test_port_range(self):
        with pytest.raises(ValueError):
            ImapConfig(host="h", port=70000, username="u", password="p")


class TestRetryAndScanConfig:
    def test_retry_defaults(self):
        cfg = RetryConfig()
        assert cfg.max_attempts == 3
        assert cfg.initial_wait_seconds == 1.0
        assert cfg.max_wait_seconds == 30.0

    def test_scan_defaults(self):
        cfg = ScanConfig()
        assert cfg.output_dir == Path("Outputs")
        assert cfg.window_size == 200
        assert cfg.file_prefix == "contacts-"

    def test_scan_from_env(self, monkeypatch):
        monkeypatch.setenv("SCAN_OUTPUT_DIR", "/data/out")
        monkeypatch.setenv("SCAN_WINDOW_SIZE", "50")
        cfg = ScanConfig()
        assert cfg.output_dir == Path("/data/out")
        assert cfg.window_size == 50

    def test_window_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ScanConfig(window_size=0)


class TestLoadConfig:
    def test_loads_env_file(self, env_file: Path):
        cfg = load_config(env_file)
        assert isinstance(cfg, HarvestConfig)
        assert cfg.imap.host == "imap.gmail.com"
        assert cfg.imap.port == 993
        assert cfg.imap.username == "someone@gmail.com"
        assert cfg.imap.password.get_secret_value() == "app-password"
        assert cfg.scan.window_size == 200
        assert cfg.retry.max_attempts == 3
        assert cfg.log_level == "INFO"

    def test_optional_sections_from_file(self, tmp_path: Path):
        path = _write_env(
            tmp_path / "c.env",
            IMAP_HOST="h",
            IMAP_PORT="993",
            IMAP_USERNAME="u",
            IMAP_PASSWORD="p",
            SCAN_WINDOW_SIZE="25",
            RETRY_MAX_ATTEMPTS="5",
            HARVEST_LOG_LEVEL="DEBUG",
            HARVEST_JSON_LOGS="true",
        )
        cfg = load_config(path)
        assert cfg.scan.window_size == 25
        assert cfg.retry.max_attempts == 5
        assert cfg.log_level == "DEBUG"
        assert cfg.json_logs is True

    def test_environment_overrides_file(self, env_file: Path, monkeypatch):
        monkeypatch.setenv("IMAP_HOST", "override.example.com")
        assert load_config(env_file).imap.host == "override.example.com"

    def test_missing_file_with_environment(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("IMAP_HOST", "h")
        monkeypatch.setenv("IMAP_PORT", "993")
        monkeypatch.setenv("IMAP_USERNAME", "u")
        monkeypatch.setenv("IMAP_PASSWORD", "p")
        assert load_config(tmp_path / "absent.env").imap.host == "h"

    def test_missing_file_without_environment(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "absent.env")

    def test_missing_fields_are_listed(self, tmp_path: Path):
        path = _write_env(tmp_path / "c.env", IMAP_HOST="h")
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        message = str(exc_info.value)
        assert "username" in message
        assert "password" in message
        assert "port" in message
        assert "host" not in message.split("invalid:")[1]

    def test_missing_port(self, tmp_path: Path):
        path = _write_env(tmp_path / "c.env", IMAP_HOST="h", IMAP_USERNAME="u", IMAP_PASSWORD="p")
        with pytest.raises(ConfigError, match=r"ImapConfig\.port"):
            load_config(path)

    def test_unparsable_port(self, env_file: Path):
        env_file.write_text(env_file.read_text() + "IMAP_PORT=not-a-number\n")
        with pytest.raises(ConfigError, match="port"):
            load_config(env_file)

    def test_empty_password(self, tmp_path: Path):
        path = _write_env(tmp_path / "c.env", IMAP_HOST="h", IMAP_PORT="993", IMAP_USERNAME="u", IMAP_PASSWORD="")
        with pytest.raises(ConfigError, match="password"):
            load_config(path)

    def test_chains_validation_error(self, tmp_path: Path):
        with pytest.raises(ConfigError) as exc_info:
            load_config(tmp_path / "absent.env")
        assert exc_info.value.__cause__ is not None
