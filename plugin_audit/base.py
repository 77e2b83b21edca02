"""Core audit value types: sections, rules, findings and outcomes."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

SEVERITIES: tuple[str, ...] = ("CRITICAL", "HIGH", "WARNING", "INFO")
SEVERITY_RANK: dict[str, int] = {"CRITICAL": 3, "HIGH": 2, "WARNING": 1, "INFO": 0}

STATUS_PASS = "PASS"
STATUS_FAIL = "FAIL"
STATUS_WARNING = "WARNING"

BASIS_DETECTED = "detected"
BASIS_MANUAL = "manual-review"
BASIS_UNRESOLVED = "unresolved"
BASIS_ERROR = "evaluation-error"
BASIS_CANCELLED = "cancelled"

KIND_PRESENCE = "presence"
KIND_ABSENCE = "absence"
KIND_REGEX_MATCH = "regex-match"
KIND_CROSS_FILE_EQUALITY = "cross-file-equality"
KIND_COUNT_THRESHOLD = "count-threshold"
KIND_MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class Section:
    """A named group of checklist rules."""

    id: str
    code: str
    title: str


SECTIONS: tuple[Section, ...] = (
    Section(id="headers", code="A", title="Plugin headers"),
    Section(id="guidelines", code="B", title="Directory guidelines"),
    Section(id="security", code="C", title="Security"),
    Section(id="standards", code="D", title="Coding standards"),
    Section(id="i18n", code="E", title="Internationalization"),
    Section(id="metadata", code="F", title="Readme metadata"),
)
SECTIONS_BY_ID: dict[str, Section] = {section.id: section for section in SECTIONS}


@dataclass(frozen=True, slots=True)
class Rule:
    """One checklist item and the predicate that decides it."""

    id: str
    section: str
    title: str
    severity: str
    required: bool
    predicate_kind: str
    predicate_params: Mapping[str, Any] = field(default_factory=dict, compare=False)
    explanation: str = ""
    suggestion: str = ""


@dataclass(frozen=True, slots=True)
class Finding:
    """A single piece of evidence produced while evaluating a rule."""

    rule_id: str
    file_path: str
    line_number: int | None
    evidence_snippet: str
    column: int | None = None


class Findings(list[Finding]):
    """Findings kept for one rule.

    ``total`` counts every match, including those dropped once the evidence
    cap was reached.
    """

    def __init__(self, items: Iterable[Finding] = (), total: int | None = None) -> None:
        super().__init__(items)
        self.total = len(self) if total is None else total

    @property
    def truncated(self) -> bool:
        return self.total > len(self)


@dataclass(frozen=True, slots=True)
class Outcome:
    """Final verdict for one rule in one scan."""

    rule_id: str
    status: str
    findings: tuple[Finding, ...] = ()
    basis: str = BASIS_DETECTED
    note: str | None = None
