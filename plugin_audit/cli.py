"""CLI entrypoint for plugin-audit."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated

import typer

from plugin_audit import __version__
from plugin_audit.audit import CancelToken, Report, run
from plugin_audit.base import SECTIONS_BY_ID
from plugin_audit.catalog import Catalog, load_catalog, select_rules
from plugin_audit.config import (
    FAIL_ON_CHOICES,
    OUTPUT_FORMATS,
    AppConfig,
    default_config_template,
    load_app_config,
)
from plugin_audit.errors import ConfigError, SourceMissing
from plugin_audit.output import render_json, render_text
from plugin_audit.source_index import SourceIndex

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="plugin-audit",
    no_args_is_help=True,
    help="Audit WordPress plugin source trees against a compliance checklist.",
)


def version_callback(value: bool) -> None:
    """Print version and exit when --version is provided."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option("--version", help="Show version and exit.", callback=version_callback),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug details to stderr."),
    ] = False,
) -> None:
    """Root command callback."""
    _ = version
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        force=True,
    )


@app.command("scan")
def scan_command(
    root: Annotated[Path, typer.Argument(help="Plugin directory to audit.")],
    format: Annotated[
        str | None, typer.Option(help="Output format: text|json.", show_default="text")
    ] = None,
    fail_on: Annotated[
        str | None,
        typer.Option(
            "--fail-on",
            help="Exit 1 on FAIL at or above: critical|high|warning|none.",
            show_default="high",
        ),
    ] = None,
    rules: Annotated[
        list[str] | None,
        typer.Option("--rules", help="Only run these sections (repeatable or comma-separated)."),
    ] = None,
    disable: Annotated[
        list[str] | None,
        typer.Option("--disable", help="Skip these rule ids (repeatable or comma-separated)."),
    ] = None,
    catalog_file: Annotated[
        Path | None,
        typer.Option("--catalog", help="Path to a rule catalog TOML file."),
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
    jobs: Annotated[
        int | None, typer.Option(help="Sections evaluated in parallel.", show_default="1")
    ] = None,
    timeout: Annotated[
        float | None, typer.Option(help="Stop evaluating rules after this many seconds.")
    ] = None,
) -> None:
    """Scan a plugin directory and report compliance per rule."""
    app_config = _load_config_or_raise(root, config_file)
    output_format = _choice_or_default(
        value=format, default=app_config.format, allowed=OUTPUT_FORMATS, field_name="--format"
    )
    threshold = _choice_or_default(
        value=fail_on, default=app_config.fail_on, allowed=FAIL_ON_CHOICES, field_name="--fail-on"
    )
    resolved_jobs = jobs if jobs is not None else app_config.jobs
    if resolved_jobs < 1:
        raise typer.BadParameter("jobs must be >= 1", param_hint="--jobs")
    resolved_timeout = timeout if timeout is not None else app_config.timeout_seconds
    if resolved_timeout is not None and resolved_timeout <= 0:
        raise typer.BadParameter("timeout must be > 0", param_hint="--timeout")

    catalog = _load_catalog_or_raise(catalog_file or app_config.catalog)
    selected = _select_or_raise(
        catalog,
        sections=_split_values(rules) or app_config.rules.sections,
        disabled=_split_values(disable) + app_config.rules.disable,
    )
    index = _build_index_or_exit(root, app_config)

    report = run(
        selected,
        index,
        jobs=resolved_jobs,
        cancel=CancelToken(resolved_timeout),
    )

    if output_format == "json":
        typer.echo(render_json(report, selected))
    else:
        typer.echo(render_text(report, selected))

    if _should_fail(report, threshold):
        raise typer.Exit(code=1)


@app.command("rules")
def rules_command(
    format: Annotated[str, typer.Option(help="Output format: text|json.")] = "text",
    catalog_file: Annotated[
        Path | None,
        typer.Option("--catalog", help="Path to a rule catalog TOML file."),
    ] = None,
) -> None:
    """List the rules in the catalog."""
    output_format = _choice_or_default(
        value=format, default="text", allowed=OUTPUT_FORMATS, field_name="--format"
    )
    catalog = _load_catalog_or_raise(catalog_file)

    if output_format == "json":
        payload = {
            "rules": [
                {
                    "rule_id": rule.id,
                    "section": rule.section,
                    "title": rule.title,
                    "severity": rule.severity,
                    "required": rule.required,
                    "kind": rule.predicate_kind,
                    "explanation": rule.explanation,
                    "suggestion": rule.suggestion,
                }
                for rule in catalog
            ],
            "meta": {"catalog_version": catalog.version, "catalog_source": catalog.source},
        }
        typer.echo(json.dumps(payload, sort_keys=True))
        return

    lines = [f"Rule catalog {catalog.version} ({len(catalog)} rules):"]
    for section_id, section_rules in catalog.by_section().items():
        lines.append(f"{SECTIONS_BY_ID[section_id].title} [{section_id}]")
        for rule in section_rules:
            lines.append(f"- {rule.id} [{rule.severity}] {rule.title} ({rule.predicate_kind})")
    typer.echo("\n".join(lines))


@app.command("config")
def config_command(
    root: Annotated[Path, typer.Argument(help="Plugin directory to resolve config for.")] = Path(
        "."
    ),
    format: Annotated[str, typer.Option(help="Output format: text|json.")] = "text",
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """Show resolved configuration."""
    output_format = _choice_or_default(
        value=format, default="text", allowed=OUTPUT_FORMATS, field_name="--format"
    )
    app_config = _load_config_or_raise(root, config_file)
    selected = _configured_catalog_or_raise(app_config)
    payload = app_config.to_dict()
    payload["active_rule_ids"] = selected.ids()

    if output_format == "json":
        typer.echo(json.dumps(payload, sort_keys=True))
        return

    lines = [
        "Resolved configuration:",
        f"- source: {payload['source'] or 'defaults'}",
        f"- format: {payload['format']}",
        f"- fail_on: {payload['fail_on']}",
        f"- jobs: {payload['jobs']}",
        f"- timeout_seconds: {payload['timeout_seconds']}",
        f"- catalog: {payload['catalog'] or 'bundled'}",
        f"- exclude: {payload['exclude']}",
        f"- max_file_bytes: {payload['max_file_bytes']}",
        f"- rules.sections: {payload['rules']['sections']}",
        f"- rules.disable: {payload['rules']['disable']}",
        f"- active_rule_ids: {payload['active_rule_ids']}",
    ]
    typer.echo("\n".join(lines))


@app.command("config-init")
def config_init_command(
    out: Annotated[Path, typer.Option(help="Output path for starter config TOML.")] = Path(
        ".plugin-audit.toml"
    ),
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite if file already exists."),
    ] = False,
) -> None:
    """Create a starter config file."""
    out_path = out.resolve()
    if out_path.exists() and not force:
        raise typer.BadParameter(
            f"Refusing to overwrite existing file: {out_path}. Use --force to overwrite."
        )
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(default_config_template(), encoding="utf-8")
    typer.echo(f"Wrote starter config: {out_path}")


@app.command("config-validate")
def config_validate_command(
    root: Annotated[Path, typer.Option(help="Plugin directory the config applies to.")] = Path(
        "."
    ),
    config_file: Annotated[
        Path,
        typer.Option("--config", help="Path to config TOML file to validate."),
    ] = Path(".plugin-audit.toml"),
    format: Annotated[str, typer.Option(help="Output format: text|json.")] = "text",
) -> None:
    """Validate a config file and report active rules."""
    output_format = _choice_or_default(
        value=format, default="text", allowed=OUTPUT_FORMATS, field_name="--format"
    )
    app_config = _load_config_or_raise(root, config_file)
    selected = _configured_catalog_or_raise(app_config)
    payload = {
        "ok": True,
        "source": app_config.source,
        "active_rule_ids": selected.ids(),
    }
    if output_format == "json":
        typer.echo(json.dumps(payload, sort_keys=True))
        return
    typer.echo(
        "\n".join(
            [
                "Config is valid.",
                f"- source: {payload['source']}",
                f"- active_rule_ids: {payload['active_rule_ids']}",
            ]
        )
    )


def main() -> None:
    """Console script entrypoint."""
    app()


def _should_fail(report: Report, fail_on: str) -> bool:
    failures = report.failures(fail_on)
    for item in failures:
        logger.debug("Failing threshold '%s' on %s (%s)", fail_on, item.rule_id, item.severity)
    return bool(failures)


def _split_values(values: list[str] | None) -> list[str]:
    items: list[str] = []
    for value in values or []:
        items.extend(part.strip() for part in value.split(",") if part.strip())
    return items


def _load_config_or_raise(root: Path, config_file: Path | None = None) -> AppConfig:
    try:
        return load_app_config(root, config_path=config_file)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc), param_hint="config") from exc


def _load_catalog_or_raise(path: Path | None) -> Catalog:
    try:
        return load_catalog(path)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc), param_hint="--catalog") from exc


def _select_or_raise(
    catalog: Catalog, *, sections: list[str], disabled: list[str]
) -> Catalog:
    try:
        return select_rules(catalog, sections=sections, disabled=disabled)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc), param_hint="rules") from exc


def _configured_catalog_or_raise(app_config: AppConfig) -> Catalog:
    catalog = _load_catalog_or_raise(app_config.catalog)
    return _select_or_raise(
        catalog, sections=app_config.rules.sections, disabled=app_config.rules.disable
    )


def _build_index_or_exit(root: Path, app_config: AppConfig) -> SourceIndex:
    try:
        return SourceIndex.build(
            root, exclude=app_config.exclude, max_file_bytes=app_config.max_file_bytes
        )
    except SourceMissing as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc


def _choice_or_default(
    *,
    value: str | None,
    default: str,
    allowed: set[str],
    field_name: str,
) -> str:
    resolved = (value or default).lower()
    if resolved not in allowed:
        choices = ", ".join(sorted(allowed))
        raise typer.BadParameter(f"{field_name} must be one of: {choices}", param_hint=field_name)
    return resolved
