"""Configuration loading for plugin-audit."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from plugin_audit.errors import ConfigError
from plugin_audit.source_index import DEFAULT_EXCLUDES, DEFAULT_MAX_FILE_BYTES

CONFIG_FILENAMES = (".plugin-audit.toml", "plugin-audit.toml")
OUTPUT_FORMATS = {"text", "json"}
FAIL_ON_CHOICES = {"critical", "high", "warning", "none"}


@dataclass(slots=True)
class RulesConfig:
    """Catalog selection controls."""

    sections: list[str] = field(default_factory=list)
    disable: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"sections": list(self.sections), "disable": list(self.disable)}


@dataclass(slots=True)
class AppConfig:
    """Runtime configuration values resolved from project files."""

    format: str = "text"
    fail_on: str = "high"
    jobs: int = 1
    timeout_seconds: float | None = None
    catalog: Path | None = None
    exclude: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDES))
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    rules: RulesConfig = field(default_factory=RulesConfig)
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format,
            "fail_on": self.fail_on,
            "jobs": self.jobs,
            "timeout_seconds": self.timeout_seconds,
            "catalog": str(self.catalog) if self.catalog is not None else None,
            "exclude": list(self.exclude),
            "max_file_bytes": self.max_file_bytes,
            "rules": self.rules.to_dict(),
            "source": self.source,
        }


def load_app_config(root: Path, config_path: Path | None = None) -> AppConfig:
    """Load config from an explicit path or from files in the scanned root."""
    root = root.resolve()
    if config_path is not None:
        resolved = config_path if config_path.is_absolute() else (Path.cwd() / config_path)
        if not resolved.exists():
            raise ConfigError(f"Config file does not exist: {resolved}")
        return _from_mapping(_load_toml(resolved), source_path=resolved)

    for filename in CONFIG_FILENAMES:
        resolved = root / filename
        if resolved.exists():
            return _from_mapping(_load_toml(resolved), source_path=resolved)

    return AppConfig()


def default_config_template() -> str:
    """Return a starter config template."""
    return "\n".join(
        [
            'format = "text"',
            'fail_on = "high"',
            "jobs = 1",
            "# timeout_seconds = 60",
            '# catalog = "audit-rules.toml"',
            'exclude = ["vendor/**", "node_modules/**", ".git/**"]',
            f"max_file_bytes = {DEFAULT_MAX_FILE_BYTES}",
            "",
            "[rules]",
            '# sections = ["headers", "security", "metadata"]',
            "sections = []",
            '# disable = ["B8", "D6"]',
            "disable = []",
            "",
        ]
    )


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as file_obj:
            loaded = tomllib.load(file_obj)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    if not isinstance(loaded, dict):
        return {}
    return loaded


def _from_mapping(mapping: dict[str, Any], *, source_path: Path) -> AppConfig:
    rules_mapping = _as_table(mapping.get("rules"), "rules")

    raw_timeout = mapping.get("timeout_seconds")
    timeout: float | None = None
    if raw_timeout is not None:
        timeout = _as_float(raw_timeout, "timeout_seconds")
        if timeout <= 0:
            raise ConfigError("timeout_seconds must be > 0")

    jobs = _as_int(mapping.get("jobs", 1), "jobs")
    if jobs < 1:
        raise ConfigError("jobs must be >= 1")

    max_file_bytes = _as_int(
        mapping.get("max_file_bytes", DEFAULT_MAX_FILE_BYTES), "max_file_bytes"
    )
    if max_file_bytes <= 0:
        raise ConfigError("max_file_bytes must be > 0")

    raw_catalog = mapping.get("catalog")
    catalog: Path | None = None
    if raw_catalog is not None:
        catalog = Path(_as_str(raw_catalog, "catalog"))
        if not catalog.is_absolute():
            catalog = source_path.parent / catalog

    raw_exclude = mapping.get("exclude")
    if raw_exclude is None:
        exclude = list(DEFAULT_EXCLUDES)
    else:
        exclude = _as_str_list(raw_exclude, "exclude")

    return AppConfig(
        format=_as_choice(mapping.get("format", "text"), OUTPUT_FORMATS, "format"),
        fail_on=_as_choice(mapping.get("fail_on", "high"), FAIL_ON_CHOICES, "fail_on"),
        jobs=jobs,
        timeout_seconds=timeout,
        catalog=catalog,
        exclude=exclude,
        max_file_bytes=max_file_bytes,
        rules=RulesConfig(
            sections=_as_str_list(rules_mapping.get("sections"), "rules.sections"),
            disable=_as_str_list(rules_mapping.get("disable"), "rules.disable"),
        ),
        source=str(source_path),
    )


def _as_table(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{field_name} must be a table/object")
    return value


def _as_str_list(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{field_name} must be a list of strings")
    items: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"{field_name} must be a list of strings")
        items.append(item)
    return items


def _as_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{field_name} must be a string")
    return value


def _as_choice(raw: Any, allowed: set[str], field_name: str) -> str:
    value = str(raw).lower()
    if value not in allowed:
        choices = ", ".join(sorted(allowed))
        raise ConfigError(f"{field_name} must be one of: {choices}")
    return value


def _as_int(raw: Any, field_name: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ConfigError(f"{field_name} must be an integer")
    return raw


def _as_float(raw: Any, field_name: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ConfigError(f"{field_name} must be a number")
    return float(raw)
