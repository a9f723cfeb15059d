import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError

from .history import DEFAULT_HISTORY_SIZE

logger = structlog.get_logger(__name__)

# --- Centralized Path Constants ---
SHELL_HOME = Path(os.getenv("CYPHER_SHELL_HOME", Path.home() / ".cypher_shell"))
CONFIG_FILE_NAME = "config.yaml"
HISTORY_FILE_NAME = "history"

ABSENT_DB_NAME = ""
SYSTEM_DB_NAME = "system"

DEFAULT_SCHEME = "neo4j"
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 7687

ADDRESS_PATTERN = re.compile(
    r"\s*(?:(?P<scheme>[a-zA-Z0-9+\-.]+)://)?"
    r"(?:(?P<username>\w+):(?P<password>\S+)@)?"
    r"(?P<host>[a-zA-Z\d\-.]+)?"
    r"(?::(?P<port>\d+))?\s*"
)


class FailBehavior(str, Enum):
    FAIL_FAST = "fail-fast"
    FAIL_AT_END = "fail-at-end"


class OutputFormat(str, Enum):
    AUTO = "auto"
    VERBOSE = "verbose"
    PLAIN = "plain"


class ShellSettings(BaseModel):
    """User defaults read from `config.yaml` in the shell home directory."""

    address: str = f"{DEFAULT_SCHEME}://{DEFAULT_HOST}:{DEFAULT_PORT}"
    username: str = ""
    database: str = ABSENT_DB_NAME
    encryption: bool = False
    format: OutputFormat = OutputFormat.AUTO
    fail_behavior: FailBehavior = FailBehavior.FAIL_FAST
    history_file: Optional[Path] = None
    history_size: int = Field(default=DEFAULT_HISTORY_SIZE, ge=1)
    prompt_width: int = 50


class ConnectionConfig(BaseModel):
    """Everything needed to open a driver against one server."""

    scheme: str = DEFAULT_SCHEME
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    username: str = ""
    password: str = ""
    encryption: bool = False
    database: str = ABSENT_DB_NAME

    @property
    def driver_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    def driver_options(self) -> Dict[str, Any]:
        """Extra driver keyword arguments. Secure schemes (`+s`, `+ssc`) carry their own TLS settings."""
        if "+" in self.scheme:
            return {}
        return {"encrypted": self.encryption}


def get_history_file(settings: ShellSettings) -> Path:
    return settings.history_file or SHELL_HOME / HISTORY_FILE_NAME


def parse_address(address: str) -> Dict[str, Optional[str]]:
    """
    Splits `[scheme://][username:password@][host][:port]` into its parts.
    Missing parts are returned as None.
    """
    match = ADDRESS_PATTERN.fullmatch(address)
    if not match:
        raise ValueError(
            f"Failed to parse address: '{address}'\n"
            "  Address should be of the form: [scheme://][username:password@][host][:port]"
        )
    return match.groupdict()


def load_settings(shell_home: Optional[Path] = None) -> ShellSettings:
    """Loads and validates `config.yaml`, falling back to defaults when it is absent."""
    config_file = (shell_home or SHELL_HOME) / CONFIG_FILE_NAME
    if not config_file.is_file():
        return ShellSettings()

    log = logger.bind(path=str(config_file))
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        settings = ShellSettings.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        raise ValueError(f"Invalid configuration file {config_file}: {e}") from e
    log.debug("config.loaded")
    return settings


def build_connection_config(
    settings: ShellSettings,
    address: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    encryption: Optional[bool] = None,
    database: Optional[str] = None,
) -> ConnectionConfig:
    """
    Merges command-line values over the settings file. Credentials embedded in
    the address are used only when no explicit username/password is given.
    """
    parts = parse_address(address or settings.address)
    return ConnectionConfig(
        scheme=parts["scheme"] or DEFAULT_SCHEME,
        host=parts["host"] or DEFAULT_HOST,
        port=int(parts["port"]) if parts["port"] else DEFAULT_PORT,
        username=username or parts["username"] or settings.username,
        password=password or parts["password"] or "",
        encryption=settings.encryption if encryption is None else encryption,
        database=settings.database if database is None else database,
    )
