"""Map detector findings to PASS / FAIL / WARNING outcomes."""

from __future__ import annotations

from collections.abc import Callable

from plugin_audit.base import (
    BASIS_CANCELLED,
    BASIS_DETECTED,
    BASIS_ERROR,
    BASIS_MANUAL,
    BASIS_UNRESOLVED,
    KIND_ABSENCE,
    KIND_COUNT_THRESHOLD,
    KIND_CROSS_FILE_EQUALITY,
    KIND_MANUAL,
    KIND_PRESENCE,
    KIND_REGEX_MATCH,
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WARNING,
    Finding,
    Findings,
    Outcome,
    Rule,
)
from plugin_audit.errors import RuleEvaluationError

MANUAL_REVIEW_NOTE = "manual review required"

Policy = Callable[[Rule, list[Finding]], str]


def _presence(rule: Rule, findings: list[Finding]) -> str:
    if findings:
        return STATUS_PASS
    return STATUS_FAIL if rule.required else STATUS_WARNING


def _absence(rule: Rule, findings: list[Finding]) -> str:
    return STATUS_FAIL if findings else STATUS_PASS


def _cross_file_equality(rule: Rule, findings: list[Finding]) -> str:
    return STATUS_FAIL if findings else STATUS_PASS


def _count_threshold(rule: Rule, findings: list[Finding]) -> str:
    count = _total(findings)
    lower = rule.predicate_params.get("min")
    upper = rule.predicate_params.get("max")
    if lower is not None and count < lower:
        return STATUS_FAIL
    if upper is not None and count > upper:
        return STATUS_FAIL
    return STATUS_PASS


def _regex_match(rule: Rule, findings: list[Finding]) -> str:
    # Matches need human judgment; only a clean tree is decidable.
    return STATUS_WARNING if findings else STATUS_PASS


def _manual(rule: Rule, findings: list[Finding]) -> str:
    return STATUS_WARNING


POLICIES: dict[str, Policy] = {
    KIND_PRESENCE: _presence,
    KIND_ABSENCE: _absence,
    KIND_CROSS_FILE_EQUALITY: _cross_file_equality,
    KIND_COUNT_THRESHOLD: _count_threshold,
    KIND_REGEX_MATCH: _regex_match,
    KIND_MANUAL: _manual,
}


def classify(rule: Rule, findings: list[Finding]) -> Outcome:
    """Apply the policy for the rule's predicate kind."""
    policy = POLICIES.get(rule.predicate_kind)
    if policy is None:
        raise ValueError(f"No classification policy for '{rule.predicate_kind}'")
    status = policy(rule, findings)
    total = _total(findings)
    notes: list[str] = []
    if rule.predicate_kind == KIND_MANUAL:
        notes.append(MANUAL_REVIEW_NOTE)
    elif rule.predicate_kind == KIND_COUNT_THRESHOLD:
        notes.append(_count_note(rule, total))
    if total > len(findings):
        notes.append(f"showing {len(findings)} of {total} matches")
    return Outcome(
        rule_id=rule.id,
        status=status,
        findings=tuple(findings),
        basis=BASIS_MANUAL if rule.predicate_kind == KIND_MANUAL else BASIS_DETECTED,
        note="; ".join(notes) or None,
    )


def error_outcome(rule: Rule, error: RuleEvaluationError) -> Outcome:
    """WARNING outcome for a rule whose predicate raised."""
    message = error.message
    return Outcome(
        rule_id=rule.id,
        status=STATUS_WARNING,
        findings=(
            Finding(rule_id=rule.id, file_path=".", line_number=None, evidence_snippet=message),
        ),
        basis=BASIS_ERROR,
        note=f"evaluation error: {message}",
    )


def unresolved_outcome(rule: Rule, reason: str) -> Outcome:
    """WARNING outcome for a rule whose inputs could not be located."""
    return Outcome(
        rule_id=rule.id,
        status=STATUS_WARNING,
        basis=BASIS_UNRESOLVED,
        note=f"{MANUAL_REVIEW_NOTE}: {reason}",
    )


def cancelled_outcome(rule: Rule) -> Outcome:
    """WARNING outcome for a rule the scan never reached."""
    return Outcome(
        rule_id=rule.id,
        status=STATUS_WARNING,
        basis=BASIS_CANCELLED,
        note="not evaluated: scan cancelled",
    )


def _total(findings: list[Finding]) -> int:
    if isinstance(findings, Findings):
        return findings.total
    return len(findings)


def _count_note(rule: Rule, count: int) -> str:
    bounds: list[str] = []
    if rule.predicate_params.get("min") is not None:
        bounds.append(f"min {rule.predicate_params['min']}")
    if rule.predicate_params.get("max") is not None:
        bounds.append(f"max {rule.predicate_params['max']}")
    return f"count {count} ({', '.join(bounds)})"
