"""TOML configuration loading for dotstate."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import DotstateError
from .filesystem import get_umask

DEFAULT_CONFIG_FILENAME = "dotstate.toml"
DEFAULT_STATE_FILENAME = "dotstatestate.toml"


class ConfigError(DotstateError):
    """Raised when a configuration file cannot be parsed or validated."""


def default_config_dir() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or "~/.config"
    return Path(base).expanduser() / "dotstate"


def default_config_path() -> Path:
    return default_config_dir() / DEFAULT_CONFIG_FILENAME


def _expand_path(raw: str | os.PathLike[str] | Path, *, base_dir: Path) -> Path:
    """Return an absolute ``Path`` by expanding env vars and user segments."""

    text = str(raw)
    expanded = Path(os.path.expandvars(text)).expanduser()
    if expanded.is_absolute():
        return expanded.resolve(strict=False)
    return (base_dir / expanded).resolve(strict=False)


def parse_umask(raw: int | str) -> int:
    """Accept an integer or an octal string such as ``"022"``."""

    if isinstance(raw, int):
        value = raw
    else:
        try:
            value = int(raw.strip().removeprefix("0o"), 8)
        except ValueError as exc:
            raise ConfigError(f"Invalid umask {raw!r}") from exc
    if not 0 <= value <= 0o777:
        raise ConfigError(f"Invalid umask {raw!r}")
    return value


class Settings(BaseModel):
    """Global configuration options."""

    model_config = ConfigDict(frozen=True)

    source_dir: Path = Field(default_factory=lambda: Path("~/.local/share/dotstate").expanduser())
    dest_dir: Path = Field(default_factory=Path.home)
    umask: int = Field(default_factory=get_umask)
    state_path: Path = Field(default_factory=lambda: default_config_dir() / DEFAULT_STATE_FILENAME)
    format: Literal["json", "toml", "yaml"] = "json"

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, base_dir: Path) -> "Settings":
        values: dict[str, Any] = {}
        for key in ("source_dir", "dest_dir"):
            if key in raw:
                values[key] = _expand_path(raw[key], base_dir=base_dir)
        values["state_path"] = (
            _expand_path(raw["state_path"], base_dir=base_dir)
            if "state_path" in raw
            else base_dir / DEFAULT_STATE_FILENAME
        )
        if "umask" in raw:
            values["umask"] = parse_umask(raw["umask"])
        if "format" in raw:
            values["format"] = raw["format"]
        return cls(**values)


class KeePassXCConfig(BaseModel):
    """Settings for the ``keepassxc-cli`` integration."""

    model_config = ConfigDict(frozen=True)

    command: str = "keepassxc-cli"
    database: Path | None = None
    args: tuple[str, ...] = ()

    @field_validator("database", mode="before")
    @classmethod
    def _expand_database(cls, value: Any) -> Any:
        if isinstance(value, str) and value:
            return Path(os.path.expandvars(value)).expanduser()
        return value


class Config(BaseModel):
    """Fully parsed configuration file."""

    model_config = ConfigDict(frozen=True)

    config_path: Path | None = None
    settings: Settings = Field(default_factory=Settings)
    keepassxc: KeePassXCConfig = Field(default_factory=KeePassXCConfig)

    def with_overrides(self, **overrides: Any) -> "Config":
        """Return a copy with non-``None`` settings in ``overrides`` applied."""

        changes = {key: value for key, value in overrides.items() if value is not None}
        if not changes:
            return self
        return self.model_copy(update={"settings": self.settings.model_copy(update=changes)})


def load_config(path: Path | None = None) -> Config:
    """Load and validate a configuration file.

    Args:
        path: Optional path to the TOML file or its directory. Defaults to
            ``dotstate.toml`` under ``$XDG_CONFIG_HOME/dotstate``; a missing
            default file yields the default configuration.
    """

    if path is None:
        candidate = default_config_path()
        if not candidate.exists():
            return Config()
        path = candidate

    config_path = _resolve_config_path(path)
    base_dir = config_path.parent

    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Cannot parse '{config_path}': {exc}") from exc

    try:
        settings = Settings.from_raw(data.get("settings", {}), base_dir=base_dir)
        keepassxc = KeePassXCConfig(**data.get("keepassxc", {}))
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration '{config_path}': {exc}") from exc

    return Config(config_path=config_path, settings=settings, keepassxc=keepassxc)


def _resolve_config_path(path: Path) -> Path:
    path = Path(path)

    if not path.exists():
        raise ConfigError(f"Configuration file '{path}' does not exist")
    if path.is_dir():
        candidate = path / DEFAULT_CONFIG_FILENAME
        if not candidate.exists():
            raise ConfigError(f"Expected to find '{DEFAULT_CONFIG_FILENAME}' inside '{path}', but none was located")
        path = candidate

    return path.resolve(strict=False)
