"""Report rendering."""

from __future__ import annotations

import json
from typing import Any

import click

from plugin_audit import __version__
from plugin_audit.audit import ActionItem, Report
from plugin_audit.base import (
    BASIS_CANCELLED,
    BASIS_ERROR,
    BASIS_MANUAL,
    BASIS_UNRESOLVED,
    SECTIONS_BY_ID,
    STATUS_FAIL,
    STATUS_PASS,
    Finding,
    Outcome,
    Rule,
)
from plugin_audit.catalog import Catalog

MAX_DETAIL_FINDINGS = 5


def render_text(report: Report, catalog: Catalog) -> str:
    """Render a sectioned, colorized summary with per-rule detail and actions."""
    label, color = _score_label(report.overall_score, incomplete=report.incomplete)
    score = "n/a" if report.overall_score is None else f"{report.overall_score}/100"
    lines: list[str] = [
        click.style(f"Plugin audit: {report.target_root}", bold=True),
        click.style(f"Compliance score: {score} ({label})", fg=color, bold=True),
    ]
    if report.incomplete:
        lines.append(
            click.style(
                "INCOMPLETE: scan was cancelled before every rule ran; results are partial.",
                fg="yellow",
                bold=True,
            )
        )

    lines.append("")
    lines.append(click.style("Summary:", bold=True))
    lines.append(f"  {'Section':<24} {'Pass':>5} {'Fail':>5} {'Warn':>5} {'Error':>6}")
    for section_id, totals in report.section_totals.items():
        title = SECTIONS_BY_ID[section_id].title
        lines.append(
            f"  {title:<24} {totals.passed:>5} {totals.failed:>5} "
            f"{totals.warned:>5} {totals.errors:>6}"
        )

    rules_by_id = {rule.id: rule for rule in catalog}
    current_section: str | None = None
    lines.append("")
    lines.append(click.style("Details:", bold=True))
    for outcome in report.outcomes:
        rule = rules_by_id[outcome.rule_id]
        if rule.section != current_section:
            current_section = rule.section
            lines.append(f"  {SECTIONS_BY_ID[rule.section].title}")
        lines.append(
            f"    [{rule.id}] {_status_label(outcome)} {rule.title} ({rule.severity})"
        )
        if outcome.note:
            lines.append(f"         note: {outcome.note}")
        if outcome.status != STATUS_PASS:
            lines.extend(_finding_lines(outcome.findings))

    lines.append("")
    if report.action_items:
        lines.append(click.style("Action items:", bold=True))
        for position, item in enumerate(report.action_items, start=1):
            lines.append(
                f"  {position}. [{item.severity}] {item.rule_id} {item.status}: {item.title}"
            )
            if item.suggestion:
                lines.append(f"     fix: {item.suggestion}")
    elif report.incomplete:
        lines.append(click.style("No action items among the rules that ran.", fg="yellow"))
    else:
        lines.append(click.style("No action items.", fg="green"))
    return "\n".join(lines)


def render_json(report: Report, catalog: Catalog) -> str:
    """Render stable JSON output for CI and automation."""
    return json.dumps(build_json_payload(report, catalog), sort_keys=True)


def build_json_payload(report: Report, catalog: Catalog) -> dict[str, Any]:
    """Build the machine-readable report payload."""
    rules_by_id = {rule.id: rule for rule in catalog}
    return {
        "scanned_at": report.scanned_at,
        "target_root": report.target_root,
        "incomplete": report.incomplete,
        "overall_score": report.overall_score,
        "outcomes": [
            _serialize_outcome(outcome, rules_by_id[outcome.rule_id])
            for outcome in report.outcomes
        ],
        "section_totals": {
            section_id: totals.to_dict() for section_id, totals in report.section_totals.items()
        },
        "action_items": [_serialize_action_item(item) for item in report.action_items],
        "meta": {
            "version": __version__,
            "catalog_version": report.catalog_version,
            "catalog_source": catalog.source,
        },
    }


def _serialize_outcome(outcome: Outcome, rule: Rule) -> dict[str, Any]:
    return {
        "rule_id": outcome.rule_id,
        "section": rule.section,
        "title": rule.title,
        "severity": rule.severity,
        "status": outcome.status,
        "basis": outcome.basis,
        "note": outcome.note,
        "findings": [_serialize_finding(item) for item in outcome.findings],
    }


def _serialize_finding(finding: Finding) -> dict[str, Any]:
    return {
        "rule_id": finding.rule_id,
        "file_path": finding.file_path,
        "line_number": finding.line_number,
        "column": finding.column,
        "evidence_snippet": finding.evidence_snippet,
    }


def _serialize_action_item(item: ActionItem) -> dict[str, Any]:
    return {
        "rule_id": item.rule_id,
        "section": item.section,
        "severity": item.severity,
        "status": item.status,
        "basis": item.basis,
        "title": item.title,
        "suggestion": item.suggestion,
        "note": item.note,
    }


def _finding_lines(findings: tuple[Finding, ...]) -> list[str]:
    lines: list[str] = []
    for finding in findings[:MAX_DETAIL_FINDINGS]:
        location = finding.file_path
        if finding.line_number is not None:
            location = f"{location}:{finding.line_number}"
            if finding.column is not None:
                location = f"{location}:{finding.column}"
        lines.append(f"         {location}  {finding.evidence_snippet}")
    hidden = len(findings) - MAX_DETAIL_FINDINGS
    if hidden > 0:
        lines.append(f"         ... {hidden} more")
    return lines


def _status_label(outcome: Outcome) -> str:
    if outcome.basis == BASIS_ERROR:
        return click.style("ERROR", fg="magenta", bold=True) + " (tool could not evaluate)"
    if outcome.basis == BASIS_CANCELLED:
        return click.style("SKIPPED", fg="yellow")
    if outcome.status == STATUS_PASS:
        return click.style("PASS", fg="green")
    if outcome.status == STATUS_FAIL:
        return click.style("FAIL", fg="red", bold=True)
    if outcome.basis in {BASIS_MANUAL, BASIS_UNRESOLVED}:
        return click.style("WARN", fg="yellow") + " (manual review)"
    return click.style("WARN", fg="yellow") + " (needs judgment)"


def _score_label(score: float | None, *, incomplete: bool) -> tuple[str, str]:
    if score is None:
        return ("NOT SCORED", "yellow")
    if incomplete:
        # A partial scan never reads as clean.
        return ("PARTIAL", "yellow")
    if score >= 90:
        return ("GOOD", "green")
    if score >= 70:
        return ("NEEDS WORK", "yellow")
    return ("POOR", "red")
