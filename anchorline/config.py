"""
Configuration management for anchorline.

Loads and validates ``anchorline.yml`` from the workspace root:
- read: FileView pagination ceiling and default window
- edit: defaults for edit requests
- store: session database location
- logging: level and log file
- tools: sandbox policy for the tool executor
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "anchorline.yml"
DB_FILENAME = "anchorline.db"
DB_ENV_VAR = "ANCHORLINE_DB"

DEFAULT_BLOCKED_PATTERNS = [".env", "id_rsa", "credentials", ".secret"]


class ConfigError(ValueError):
    """Raised when anchorline.yml is present but malformed."""


@dataclass
class ReadConfig:
    """FileView pagination settings."""

    max_limit: int = 20_000
    default_limit: int | None = None


@dataclass
class EditConfig:
    """Edit request defaults."""

    allow_overwrite: bool = False


@dataclass
class StoreConfig:
    db_path: str | None = None


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str | None = None


@dataclass
class ToolsConfig:
    """Sandbox policy for tool calls coming from the model."""

    blocked_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_BLOCKED_PATTERNS))


@dataclass
class AnchorlineConfig:
    """Complete anchorline configuration."""

    read: ReadConfig = field(default_factory=ReadConfig)
    edit: EditConfig = field(default_factory=EditConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    root: Path | None = None

    @property
    def resolved_db_path(self) -> Path:
        """Database path: $ANCHORLINE_DB, then store.db_path, then .anchorline/."""
        override = os.environ.get(DB_ENV_VAR)
        if override:
            return Path(override).expanduser().resolve()
        root = self.root or get_repo_root()
        if self.store.db_path:
            path = Path(self.store.db_path).expanduser()
            if not path.is_absolute():
                path = root / path
            return path.resolve()
        return get_anchorline_dir(root) / DB_FILENAME

    @property
    def resolved_log_file(self) -> Path:
        if self.logging.file:
            return Path(self.logging.file).expanduser().resolve()
        return Path.home() / ".anchorline" / "anchorline.log"

    @classmethod
    def load(cls, root: Path) -> "AnchorlineConfig":
        """Load configuration from a workspace root directory."""
        config_path = root / CONFIG_FILENAME
        if not config_path.exists():
            return cls(root=root.resolve())

        with open(config_path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"{config_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{config_path}: top level must be a mapping")
        return cls._parse(data, root=root.resolve())

    @staticmethod
    def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
        section = data.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"'{name}' must be a mapping")
        return section

    @staticmethod
    def _integer(value: Any, name: str, minimum: int) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{name} must be an integer, got {value!r}")
        if value < minimum:
            raise ConfigError(f"{name} must be >= {minimum}, got {value}")
        return value

    @classmethod
    def _parse(cls, data: dict[str, Any], root: Path) -> "AnchorlineConfig":
        config = cls(root=root)

        read_data = cls._section(data, "read")
        default_limit = read_data.get("default_limit")
        config.read = ReadConfig(
            max_limit=cls._integer(read_data.get("max_limit", 20_000), "read.max_limit", minimum=1),
            default_limit=(
                None if default_limit is None else cls._integer(default_limit, "read.default_limit", minimum=0)
            ),
        )

        edit_data = cls._section(data, "edit")
        config.edit = EditConfig(allow_overwrite=bool(edit_data.get("allow_overwrite", False)))

        store_data = cls._section(data, "store")
        config.store = StoreConfig(db_path=store_data.get("db_path"))

        logging_data = cls._section(data, "logging")
        config.logging = LoggingConfig(
            level=str(logging_data.get("level", "INFO")).upper(),
            file=logging_data.get("file"),
        )

        tools_data = cls._section(data, "tools")
        patterns = tools_data.get("blocked_patterns", DEFAULT_BLOCKED_PATTERNS)
        if not isinstance(patterns, list):
            raise ConfigError("tools.blocked_patterns must be a list")
        config.tools = ToolsConfig(blocked_patterns=[str(p) for p in patterns])

        return config


def get_repo_root() -> Path:
    """Find the repository root (directory containing .git)."""

    current = Path.cwd()
    while current != current.parent:
        if (current / ".git").exists():
            return current
        current = current.parent
    return Path.cwd()


def get_anchorline_dir(root: Path | None = None) -> Path:
    """Get the .anchorline directory path."""

    if root is None:
        root = get_repo_root()
    return root / ".anchorline"


def ensure_anchorline_dir(root: Path | None = None) -> Path:
    """Ensure .anchorline directory exists and return its path."""

    anchorline_dir = get_anchorline_dir(root)
    anchorline_dir.mkdir(parents=True, exist_ok=True)
    return anchorline_dir
