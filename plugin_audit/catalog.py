"""Rule catalog loading, validation and selection."""

from __future__ import annotations

import logging
import re
import tomllib
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from plugin_audit.base import SECTIONS, SECTIONS_BY_ID, SEVERITIES, Rule, Section
from plugin_audit.classifier import POLICIES
from plugin_audit.detector import STRATEGIES, validate_params
from plugin_audit.errors import ConfigError

logger = logging.getLogger(__name__)

BUNDLED_CATALOG = Path(__file__).parent / "data" / "catalog.toml"
PREDICATE_KINDS = frozenset(POLICIES) & frozenset(STRATEGIES)

_RULE_ID_RE = re.compile(r"^[A-Z][0-9]+$")
_RULE_KEYS = frozenset(
    {
        "id",
        "section",
        "title",
        "severity",
        "required",
        "kind",
        "params",
        "explanation",
        "suggestion",
    }
)


@dataclass(frozen=True, slots=True)
class Catalog:
    """Immutable, ordered collection of rules."""

    version: str
    rules: tuple[Rule, ...]
    source: str | None = None

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def get(self, rule_id: str) -> Rule:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        raise KeyError(rule_id)

    def ids(self) -> list[str]:
        return [rule.id for rule in self.rules]

    def sections(self) -> list[Section]:
        """Sections that hold at least one rule, in canonical order."""
        present = {rule.section for rule in self.rules}
        return [section for section in SECTIONS if section.id in present]

    def by_section(self) -> dict[str, list[Rule]]:
        """Rules grouped by section id, keeping declaration order within each."""
        grouped: dict[str, list[Rule]] = {section.id: [] for section in self.sections()}
        for rule in self.rules:
            grouped[rule.section].append(rule)
        return grouped


def load_catalog(path: Path | None = None) -> Catalog:
    """Load and validate a TOML rule catalog.

    Uses the bundled catalog when *path* is ``None``. Any malformed entry
    raises ``ConfigError`` so a broken catalog never yields a partial report.
    """
    resolved = path if path is not None else BUNDLED_CATALOG
    if not resolved.exists():
        raise ConfigError(f"Rule catalog does not exist: {resolved}")
    try:
        with resolved.open("rb") as file_obj:
            loaded = tomllib.load(file_obj)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in rule catalog {resolved}: {exc}") from exc

    catalog = parse_catalog(loaded, source=str(resolved))
    logger.debug("Loaded %d rules from %s", len(catalog), resolved)
    return catalog


def parse_catalog(mapping: dict[str, Any], *, source: str | None = None) -> Catalog:
    """Build a catalog from an already-decoded mapping."""
    version = mapping.get("version", "0")
    if not isinstance(version, str):
        raise ConfigError("catalog version must be a string")
    raw_rules = mapping.get("rules")
    if not isinstance(raw_rules, list) or not raw_rules:
        raise ConfigError("catalog must define a non-empty [[rules]] array")

    rules: list[Rule] = []
    seen: set[str] = set()
    for position, raw in enumerate(raw_rules, start=1):
        if not isinstance(raw, dict):
            raise ConfigError(f"rule #{position} must be a table")
        rule = _parse_rule(raw, position=position)
        if rule.id in seen:
            raise ConfigError(f"Duplicate rule id: {rule.id}")
        seen.add(rule.id)
        rules.append(rule)
    return Catalog(version=version, rules=tuple(rules), source=source)


def select_rules(
    catalog: Catalog,
    *,
    sections: list[str] | None = None,
    disabled: list[str] | None = None,
) -> Catalog:
    """Restrict *catalog* to the given sections and drop disabled rule ids.

    Declaration order is preserved. Unknown section or rule ids raise
    ``ConfigError``.
    """
    wanted_sections = {item.lower() for item in sections} if sections else None
    if wanted_sections is not None:
        unknown = sorted(item for item in wanted_sections if item not in SECTIONS_BY_ID)
        if unknown:
            choices = ", ".join(section.id for section in SECTIONS)
            raise ConfigError(f"Unknown sections: {', '.join(unknown)}. Expected: {choices}")

    disabled_set = set(disabled or [])
    known_ids = set(catalog.ids())
    unknown_ids = sorted(rule_id for rule_id in disabled_set if rule_id not in known_ids)
    if unknown_ids:
        raise ConfigError(f"Unknown rule ids: {', '.join(unknown_ids)}")

    selected = tuple(
        rule
        for rule in catalog
        if (wanted_sections is None or rule.section in wanted_sections)
        and rule.id not in disabled_set
    )
    return Catalog(version=catalog.version, rules=selected, source=catalog.source)


def _parse_rule(raw: dict[str, Any], *, position: int) -> Rule:
    rule_id = raw.get("id")
    if not isinstance(rule_id, str) or not _RULE_ID_RE.match(rule_id):
        raise ConfigError(f"rule #{position}: id must look like 'A2', got {rule_id!r}")
    context = f"Rule '{rule_id}'"

    extra = sorted(set(raw) - _RULE_KEYS)
    if extra:
        raise ConfigError(f"{context}: unknown keys: {', '.join(extra)}")

    section_id = _as_str(raw.get("section"), f"{context}: section")
    section = SECTIONS_BY_ID.get(section_id)
    if section is None:
        choices = ", ".join(item.id for item in SECTIONS)
        raise ConfigError(f"{context}: unknown section '{section_id}'. Expected: {choices}")
    if not rule_id.startswith(section.code):
        raise ConfigError(
            f"{context}: id must start with '{section.code}' for section '{section.id}'"
        )

    severity = _as_str(raw.get("severity"), f"{context}: severity").upper()
    if severity not in SEVERITIES:
        raise ConfigError(f"{context}: severity must be one of: {', '.join(SEVERITIES)}")

    kind = _as_str(raw.get("kind"), f"{context}: kind")
    if kind not in PREDICATE_KINDS:
        choices = ", ".join(sorted(PREDICATE_KINDS))
        raise ConfigError(f"{context}: unknown predicate kind '{kind}'. Expected: {choices}")

    params = raw.get("params", {})
    if not isinstance(params, dict):
        raise ConfigError(f"{context}: params must be a table")
    try:
        validate_params(kind, params)
    except ValueError as exc:
        raise ConfigError(f"{context}: {exc}") from exc

    required = raw.get("required", True)
    if not isinstance(required, bool):
        raise ConfigError(f"{context}: required must be a boolean")

    title = _as_str(raw.get("title"), f"{context}: title").strip()
    if not title:
        raise ConfigError(f"{context}: title must not be empty")

    return Rule(
        id=rule_id,
        section=section.id,
        title=title,
        severity=severity,
        required=required,
        predicate_kind=kind,
        predicate_params=_freeze(params),
        explanation=_as_str(raw.get("explanation", ""), f"{context}: explanation").strip(),
        suggestion=_as_str(raw.get("suggestion", ""), f"{context}: suggestion").strip(),
    )


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def _as_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{field_name} must be a string")
    return value
