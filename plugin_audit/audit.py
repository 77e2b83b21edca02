"""Audit orchestration: evaluate a catalog against a source index into a report."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from types import MappingProxyType

from plugin_audit.base import (
    BASIS_CANCELLED,
    BASIS_ERROR,
    SEVERITY_RANK,
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WARNING,
    Finding,
    Outcome,
    Rule,
)
from plugin_audit.catalog import Catalog
from plugin_audit.classifier import (
    cancelled_outcome,
    classify,
    error_outcome,
    unresolved_outcome,
)
from plugin_audit.detector import detect
from plugin_audit.errors import PartialScanError, RuleEvaluationError, UnresolvedValue
from plugin_audit.source_index import SourceIndex

logger = logging.getLogger(__name__)

# Tuning note: a CRITICAL rule counts five times as much as a WARNING-only
# rule. WARNING outcomes earn half credit; evaluation errors and rules never
# reached are left out of the denominator.
SEVERITY_WEIGHTS: dict[str, float] = {
    "CRITICAL": 5.0,
    "HIGH": 3.0,
    "WARNING": 1.0,
    "INFO": 0.5,
}
STATUS_CREDIT: dict[str, float] = {
    STATUS_PASS: 1.0,
    STATUS_WARNING: 0.5,
    STATUS_FAIL: 0.0,
}
UNSCORED_BASES = frozenset({BASIS_ERROR, BASIS_CANCELLED})

FAIL_ON_SEVERITIES: dict[str, frozenset[str]] = {
    "critical": frozenset({"CRITICAL"}),
    "high": frozenset({"CRITICAL", "HIGH"}),
    "warning": frozenset({"CRITICAL", "HIGH", "WARNING"}),
    "none": frozenset(),
}

Detector = Callable[[Rule, SourceIndex], list[Finding]]


@dataclass(frozen=True, slots=True)
class SectionTotals:
    """Per-section outcome counts."""

    passed: int = 0
    failed: int = 0
    warned: int = 0
    errors: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "pass": self.passed,
            "fail": self.failed,
            "warn": self.warned,
            "error": self.errors,
            "skipped": self.skipped,
        }


@dataclass(frozen=True, slots=True)
class ActionItem:
    """A non-passing outcome, ranked for follow-up."""

    rule_id: str
    section: str
    severity: str
    status: str
    basis: str
    title: str
    suggestion: str
    note: str | None = None


@dataclass(frozen=True, slots=True)
class Report:
    """Complete, ordered result of one audit run."""

    scanned_at: str
    target_root: str
    outcomes: tuple[Outcome, ...]
    section_totals: Mapping[str, SectionTotals]
    overall_score: float | None
    action_items: tuple[ActionItem, ...]
    incomplete: bool = False
    catalog_version: str = ""

    def outcome(self, rule_id: str) -> Outcome:
        for item in self.outcomes:
            if item.rule_id == rule_id:
                return item
        raise KeyError(rule_id)

    def failures(self, fail_on: str) -> list[ActionItem]:
        """FAIL action items at or above the ``--fail-on`` threshold."""
        severities = FAIL_ON_SEVERITIES[fail_on]
        return [
            item
            for item in self.action_items
            if item.status == STATUS_FAIL and item.severity in severities
        ]


class CancelToken:
    """Cooperative cancellation checked between rule evaluations."""

    def __init__(
        self,
        timeout_seconds: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout_seconds if timeout_seconds is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self._event.set()
            return True
        return False

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise PartialScanError("scan cancelled before all rules were evaluated")


def run(
    catalog: Catalog,
    index: SourceIndex,
    *,
    jobs: int = 1,
    cancel: CancelToken | None = None,
    detector: Detector = detect,
    now: Callable[[], datetime] | None = None,
) -> Report:
    """Evaluate every rule in *catalog* and build the report.

    With ``jobs > 1`` sections run concurrently; rules inside a section always
    run in declaration order. Outcomes are re-ordered into catalog order
    before the report is built.
    """
    token = cancel or CancelToken()
    results: dict[str, Outcome] = {}

    groups = catalog.by_section()
    if jobs <= 1 or len(groups) <= 1:
        results.update(_evaluate_rules(list(catalog), index, token, detector))
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=jobs) as executor:
            futures = {
                executor.submit(_evaluate_rules, rules, index, token, detector): section_id
                for section_id, rules in groups.items()
            }
            for future in concurrent.futures.as_completed(futures):
                results.update(future.result())
                logger.debug("Section '%s' evaluated", futures[future])

    outcomes = tuple(results[rule.id] for rule in catalog)
    incomplete = any(outcome.basis == BASIS_CANCELLED for outcome in outcomes)
    scanned_at = (now or _utc_now)()
    return Report(
        scanned_at=scanned_at.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        target_root=str(index.root),
        outcomes=outcomes,
        section_totals=MappingProxyType(section_totals(catalog, outcomes)),
        overall_score=overall_score(catalog, outcomes),
        action_items=tuple(action_items(catalog, outcomes)),
        incomplete=incomplete,
        catalog_version=catalog.version,
    )


def evaluate_rule(rule: Rule, index: SourceIndex, detector: Detector = detect) -> Outcome:
    """Detect and classify one rule, isolating any failure to this rule."""
    try:
        findings = detector(rule, index)
        return classify(rule, findings)
    except UnresolvedValue as exc:
        logger.info("Rule %s needs manual review: %s", rule.id, exc.message)
        return unresolved_outcome(rule, exc.message)
    except Exception as exc:
        error = RuleEvaluationError(rule.id, f"{exc.__class__.__name__}: {exc}")
        logger.warning("Rule %s failed to evaluate: %s", rule.id, error.message)
        return error_outcome(rule, error)


def section_totals(catalog: Catalog, outcomes: tuple[Outcome, ...]) -> dict[str, SectionTotals]:
    counts: dict[str, dict[str, int]] = {
        section.id: {"passed": 0, "failed": 0, "warned": 0, "errors": 0, "skipped": 0}
        for section in catalog.sections()
    }
    for rule, outcome in zip(catalog, outcomes, strict=True):
        bucket = counts[rule.section]
        if outcome.basis == BASIS_ERROR:
            bucket["errors"] += 1
        elif outcome.basis == BASIS_CANCELLED:
            bucket["skipped"] += 1
        elif outcome.status == STATUS_PASS:
            bucket["passed"] += 1
        elif outcome.status == STATUS_FAIL:
            bucket["failed"] += 1
        else:
            bucket["warned"] += 1
    return {section_id: SectionTotals(**values) for section_id, values in counts.items()}


def overall_score(catalog: Catalog, outcomes: tuple[Outcome, ...]) -> float | None:
    """Severity-weighted pass rate on a 0-100 scale.

    ``None`` when no rule was scored, e.g. every rule was skipped or errored.
    """
    earned = 0.0
    total = 0.0
    for rule, outcome in zip(catalog, outcomes, strict=True):
        if outcome.basis in UNSCORED_BASES:
            continue
        weight = SEVERITY_WEIGHTS[rule.severity]
        total += weight
        earned += weight * STATUS_CREDIT[outcome.status]
    if total <= 0:
        return None
    return round(100.0 * earned / total, 1)


def action_items(catalog: Catalog, outcomes: tuple[Outcome, ...]) -> list[ActionItem]:
    """Non-passing outcomes by (severity desc, catalog order asc)."""
    ranked: list[tuple[int, int, ActionItem]] = []
    for position, (rule, outcome) in enumerate(zip(catalog, outcomes, strict=True)):
        if outcome.status == STATUS_PASS or outcome.basis == BASIS_CANCELLED:
            continue
        item = ActionItem(
            rule_id=rule.id,
            section=rule.section,
            severity=rule.severity,
            status=outcome.status,
            basis=outcome.basis,
            title=rule.title,
            suggestion=rule.suggestion,
            note=outcome.note,
        )
        ranked.append((-SEVERITY_RANK[rule.severity], position, item))
    ranked.sort(key=lambda entry: (entry[0], entry[1]))
    return [item for _, _, item in ranked]


def _evaluate_rules(
    rules: list[Rule],
    index: SourceIndex,
    token: CancelToken,
    detector: Detector,
) -> dict[str, Outcome]:
    outcomes: dict[str, Outcome] = {}
    for position, rule in enumerate(rules):
        try:
            token.raise_if_cancelled()
        except PartialScanError as exc:
            remaining = rules[position:]
            logger.warning("%s; %d rules not evaluated", exc, len(remaining))
            for skipped in remaining:
                outcomes[skipped.id] = cancelled_outcome(skipped)
            break
        outcomes[rule.id] = evaluate_rule(rule, index, detector)
    return outcomes


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)
