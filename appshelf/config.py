"""
Configuration file support for AppShelf.

Loads settings from ``~/.config/appshelf/config.yaml`` (or
``$XDG_CONFIG_HOME/appshelf/config.yaml``, or ``%APPDATA%\\appshelf`` on
Windows) and exposes them as typed dataclasses that the CLI and the manager
share. The source toggles live here instead of in module globals.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from appshelf.errors import LastSourceError, ValidationError
from appshelf.models import CHOCOLATEY, WINGET
from appshelf.platform import default_data_dir, is_windows

logger = logging.getLogger("appshelf.config")

ENV_CONFIG = "APPSHELF_CONFIG"
COMMAND_NAMES = ("probe", "search", "list", "install")


def default_config_path() -> Path:
    """Return the default configuration file path.

    ``$APPSHELF_CONFIG`` wins when set. Otherwise uses
    ``$XDG_CONFIG_HOME/appshelf/config.yaml``, ``%APPDATA%\\appshelf\\config.yaml``
    on Windows, and finally ``~/.config/appshelf/config.yaml``.
    """
    override = os.environ.get(ENV_CONFIG)
    if override:
        return Path(override).expanduser()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "appshelf" / "config.yaml"
    if is_windows():
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "appshelf" / "config.yaml"
    return Path.home() / ".config" / "appshelf" / "config.yaml"


@dataclass
class Timeouts:
    """Per-invocation time budgets, in seconds."""

    probe: float = 5.0
    query: float = 30.0
    install: float = 300.0


@dataclass
class SourceSettings:
    """Settings for one package source.

    ``commands`` maps an operation name (probe, search, list, install) to the
    argument list passed after the binary; ``{query}`` and ``{package_id}``
    are substituted. Operations left out use the source's built-in arguments.
    """

    enabled: bool = True
    binary: Optional[str] = None
    commands: Dict[str, List[str]] = field(default_factory=dict)


def _default_sources() -> Dict[str, SourceSettings]:
    return {WINGET: SourceSettings(), CHOCOLATEY: SourceSettings()}


@dataclass
class AppshelfConfig:
    """Top-level configuration loaded from the YAML file."""

    database_path: Path = field(
        default_factory=lambda: default_data_dir() / "applications.db"
    )
    exports_dir: Path = field(default_factory=lambda: default_data_dir() / "exports")
    timeouts: Timeouts = field(default_factory=Timeouts)
    sources: Dict[str, SourceSettings] = field(default_factory=_default_sources)

    def is_source_enabled(self, name: str) -> bool:
        settings = self.sources.get(name)
        return settings is not None and settings.enabled

    def enabled_sources(self) -> List[str]:
        return [name for name, settings in self.sources.items() if settings.enabled]

    def set_source_enabled(self, name: str, enabled: bool) -> None:
        """Toggle a source, refusing to disable the last enabled one."""
        settings = self.sources.get(name)
        if settings is None:
            raise ValidationError(f"unknown package source: {name}")
        if not enabled and settings.enabled and self.enabled_sources() == [name]:
            raise LastSourceError(
                f"at least one package manager must be enabled; {name} remains enabled"
            )
        settings.enabled = enabled

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppshelfConfig":
        """Construct an ``AppshelfConfig`` from a parsed YAML dictionary."""
        if not isinstance(data, dict):
            return cls()

        config = cls()
        if data.get("database_path"):
            config.database_path = Path(str(data["database_path"])).expanduser()
        if data.get("exports_dir"):
            config.exports_dir = Path(str(data["exports_dir"])).expanduser()

        timeouts = data.get("timeouts") or {}
        if isinstance(timeouts, dict):
            for key in ("probe", "query", "install"):
                value = timeouts.get(key)
                if value is None:
                    continue
                try:
                    seconds = float(value)
                except (TypeError, ValueError):
                    logger.warning("Ignoring invalid %s timeout: %r", key, value)
                    continue
                if seconds <= 0:
                    logger.warning("Ignoring non-positive %s timeout: %r", key, value)
                    continue
                setattr(config.timeouts, key, seconds)

        sources = data.get("sources") or {}
        if isinstance(sources, dict):
            for name, entry in sources.items():
                if name not in config.sources:
                    logger.warning("Skipping unknown source in config: %s", name)
                    continue
                if not isinstance(entry, dict):
                    logger.warning("Skipping invalid sources entry: %s", entry)
                    continue
                config.sources[name] = _source_settings_from_dict(entry)

        if not config.enabled_sources():
            logger.warning("Config disables every source; enabling %s", WINGET)
            config.sources[WINGET].enabled = True
        return config

    def to_dict(self) -> Dict[str, Any]:
        sources: Dict[str, Any] = {}
        for name, settings in self.sources.items():
            entry: Dict[str, Any] = {"enabled": settings.enabled}
            if settings.binary:
                entry["binary"] = settings.binary
            if settings.commands:
                entry["commands"] = {k: list(v) for k, v in settings.commands.items()}
            sources[name] = entry
        return {
            "database_path": str(self.database_path),
            "exports_dir": str(self.exports_dir),
            "timeouts": {
                "probe": self.timeouts.probe,
                "query": self.timeouts.query,
                "install": self.timeouts.install,
            },
            "sources": sources,
        }

    @classmethod
    def from_file(cls, path: Path) -> "AppshelfConfig":
        """Read a YAML file and return an ``AppshelfConfig``.

        Returns a default config on any error.
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f.read())
            if data is None:
                return cls()
            return cls.from_dict(data)
        except (IOError, yaml.YAMLError) as e:
            logger.error("Failed to load config from %s: %s", path, e)
            return cls()

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "AppshelfConfig":
        """Main entry point: load config from *config_path* or the default location.

        Returns a default config if the file does not exist.
        """
        path = config_path or default_config_path()
        if not path.exists():
            return cls()
        return cls.from_file(path)

    def save(self, config_path: Optional[Path] = None) -> Path:
        """Write the configuration back as YAML and return the path written."""
        path = config_path or default_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)
        logger.debug("Saved config to %s", path)
        return path


def _source_settings_from_dict(entry: Dict[str, Any]) -> SourceSettings:
    commands: Dict[str, List[str]] = {}
    raw_commands = entry.get("commands") or {}
    if isinstance(raw_commands, dict):
        for op, args in raw_commands.items():
            if op not in COMMAND_NAMES:
                logger.warning("Skipping unknown command override: %s", op)
                continue
            if not isinstance(args, list):
                logger.warning("Skipping invalid %s command override: %r", op, args)
                continue
            commands[op] = [str(arg) for arg in args]
    binary = entry.get("binary")
    return SourceSettings(
        enabled=bool(entry.get("enabled", True)),
        binary=str(binary) if binary else None,
        commands=commands,
    )
