"""Harvester configuration loaded from a dotenv file and environment variables.

Uses pydantic-settings so every field can be overridden via env vars; the
configuration file is a plain ``KEY=value`` dotenv file::

    IMAP_HOST=imap.gmail.com
    IMAP_PORT=993
    IMAP_USERNAME=someone@gmail.com
    IMAP_PASSWORD=app-password
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigError

DEFAULT_CONFIG_FILE = "connection.env"


class ImapConfig(BaseSettings):
    """IMAP server connection settings."""

    model_config = {"env_prefix": "IMAP_", "extra": "ignore"}

    host: str = Field(description="IMAP server hostname")
    port: int = Field(ge=1, le=65535, description="IMAP server port (implicit TLS, usually 993)")
    username: str = Field(description="IMAP login username")
    password: SecretStr = Field(description="IMAP login password")
    mailbox: str = Field(default="INBOX", description="Mailbox to scan, opened read-only")
    timeout_seconds: float | None = Field(
        default=None,
        description="Socket timeout for the IMAP connection (transport default if unset)",
    )

    @field_validator("host", "username", "mailbox")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("password")
    @classmethod
    def _password_not_blank(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value():
            raise ValueError("must not be empty")
        return value


class RetryConfig(BaseSettings):
    """Retry / backoff settings for window fetches, driven by Tenacity."""

    model_config = {"env_prefix": "RETRY_", "extra": "ignore"}

    max_attempts: int = Field(default=3, ge=1, description="Total fetch attempts per window")
    initial_wait_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Initial backoff wait in seconds",
    )
    max_wait_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Maximum backoff wait in seconds",
    )
    multiplier: float = Field(default=2.0, ge=0, description="Exponential backoff multiplier")


class ScanConfig(BaseSettings):
    """Scan window and checkpoint output settings."""

    model_config = {"env_prefix": "SCAN_", "extra": "ignore"}

    output_dir: Path = Field(
        default=Path("Outputs"),
        description="Directory holding the checkpoint CSV files",
    )
    window_size: int = Field(default=200, ge=1, description="Messages fetched per window")
    file_prefix: str = Field(
        default="contacts-",
        min_length=1,
        description="Checkpoint file name prefix; the consumed count follows it",
    )


class HarvestConfig(BaseSettings):
    """Root configuration.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "HARVEST_", "extra": "ignore"}

    log_level: str = Field(default="INFO", description="Root log level name")
    json_logs: bool = Field(default=False, description="Emit JSON log lines instead of console output")

    imap: ImapConfig = Field(default_factory=ImapConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)


def load_config(path: str | Path = DEFAULT_CONFIG_FILE) -> HarvestConfig:
    """Load configuration from the dotenv file at *path* plus the environment.

    Environment variables take precedence over the file.  A missing file is
    only an error if the environment does not supply the required values.
    Raises :class:`ConfigError` describing every invalid field.
    """
    env_file = Path(path)
    try:
        return HarvestConfig(
            imap=ImapConfig(_env_file=env_file),
            retry=RetryConfig(_env_file=env_file),
            scan=ScanConfig(_env_file=env_file),
            _env_file=env_file,
        )
    except ValidationError as exc:
        problems = "; ".join(
            f"{exc.title}.{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        source = str(env_file) if env_file.is_file() else f"{env_file} (not found)"
        raise ConfigError(f"Configuration from {source} is invalid: {problems}") from exc
