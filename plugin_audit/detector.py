"""Predicate evaluation: turn a rule plus the source index into findings."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from plugin_audit.base import (
    KIND_ABSENCE,
    KIND_COUNT_THRESHOLD,
    KIND_CROSS_FILE_EQUALITY,
    KIND_MANUAL,
    KIND_PRESENCE,
    KIND_REGEX_MATCH,
    Finding,
    Findings,
    Rule,
)
from plugin_audit.errors import NotFound, UnresolvedValue
from plugin_audit.source_index import SourceIndex

DEFAULT_TARGET = "sources"
DEFAULT_MAX_FINDINGS = 50
SNIPPET_MAX_LEN = 120

TARGET_MAIN = "main"
TARGET_README = "readme"
TARGET_SLUG = "slug"
TARGET_SUFFIXES: dict[str, tuple[str, ...]] = {
    "php": (".php", ".inc"),
    "js": (".js", ".jsx", ".ts"),
    "sources": (".php", ".inc", ".js", ".jsx", ".ts"),
}

VALUE_SOURCES = frozenset({"header", "folder", "regex"})
NORMALIZERS: dict[str, Callable[[str], str]] = {
    "lower": str.lower,
    "strip": str.strip,
}

Strategy = Callable[[Rule, SourceIndex], list[Finding]]


def detect(rule: Rule, index: SourceIndex) -> list[Finding]:
    """Evaluate *rule* against *index* and return its findings.

    Exceptions propagate; callers isolate per-rule failures.
    """
    strategy = STRATEGIES.get(rule.predicate_kind)
    if strategy is None:
        raise ValueError(f"Unsupported predicate kind '{rule.predicate_kind}'")
    return strategy(rule, index)


def validate_params(kind: str, params: Mapping[str, Any]) -> None:
    """Raise ``ValueError`` when *params* are not usable for predicate *kind*."""
    if kind in {KIND_PRESENCE, KIND_ABSENCE, KIND_REGEX_MATCH}:
        _validate_pattern_params(params, required=True)
    elif kind == KIND_CROSS_FILE_EQUALITY:
        for side in ("left", "right"):
            _validate_extractor(params.get(side), side)
        _validate_normalize(params.get("normalize"))
    elif kind == KIND_COUNT_THRESHOLD:
        has_pattern = "pattern" in params
        has_value = "value" in params
        if has_pattern == has_value:
            raise ValueError("count-threshold needs exactly one of 'pattern' or 'value'")
        if has_pattern:
            _validate_pattern_params(params, required=True)
        else:
            _validate_extractor(params.get("value"), "value")
            separator = params.get("separator", ",")
            if not isinstance(separator, str) or not separator:
                raise ValueError("separator must be a non-empty string")
        bounds = [params.get("min"), params.get("max")]
        if all(bound is None for bound in bounds):
            raise ValueError("count-threshold needs 'min' and/or 'max'")
        for bound in bounds:
            if bound is not None and (isinstance(bound, bool) or not isinstance(bound, int)):
                raise ValueError("count-threshold bounds must be integers")
    elif kind == KIND_MANUAL:
        _validate_pattern_params(params, required=False)
    else:
        raise ValueError(f"Unsupported predicate kind '{kind}'")


def _match_lines(rule: Rule, index: SourceIndex) -> Findings:
    params = rule.predicate_params
    if "pattern" not in params:
        return Findings()
    pattern = _compile(params["pattern"], ignore_case=bool(params.get("ignore_case", False)))
    exclude = params.get("exclude_pattern")
    exclude_re = _compile(exclude, ignore_case=True) if exclude else None
    limit = int(params.get("max_findings", DEFAULT_MAX_FINDINGS))

    # One finding per match; matches past the cap are counted, not kept.
    findings = Findings()
    for path, line_number, text in _iter_target_lines(index, params.get("target", DEFAULT_TARGET)):
        matches = list(pattern.finditer(text))
        if not matches:
            continue
        if exclude_re is not None and exclude_re.search(text):
            continue
        findings.total += len(matches)
        for match in matches[: max(limit - len(findings), 0)]:
            findings.append(
                Finding(
                    rule_id=rule.id,
                    file_path=path,
                    line_number=line_number,
                    evidence_snippet=_clip_line(text),
                    column=match.start() + 1,
                )
            )
    return findings


def _cross_file_equality(rule: Rule, index: SourceIndex) -> list[Finding]:
    params = rule.predicate_params
    normalize = _normalizers(params.get("normalize"))
    left = _extract_value(rule.id, params["left"], index)
    right = _extract_value(rule.id, params["right"], index)

    left_value = _apply(normalize, left.value)
    right_value = _apply(normalize, right.value)
    if left_value == right_value:
        return []
    return [
        Finding(
            rule_id=rule.id,
            file_path=left.path,
            line_number=left.line_number,
            evidence_snippet=(
                f"{left.label} '{left.value}' ({left.path}) != "
                f"{right.label} '{right.value}' ({right.path})"
            ),
        )
    ]


def _count_threshold(rule: Rule, index: SourceIndex) -> Findings:
    params = rule.predicate_params
    if "pattern" in params:
        return _match_lines(rule, index)

    extractor = params["value"]
    if extractor["source"] != "folder":
        # A missing file stays unresolved; only a missing value counts as zero.
        _resolve_single_file(rule.id, extractor["target"], index)
    try:
        extracted = _extract_value(rule.id, extractor, index)
    except UnresolvedValue:
        return Findings()
    separator = params.get("separator", ",")
    items = [item.strip() for item in extracted.value.split(separator)]
    return Findings(
        Finding(
            rule_id=rule.id,
            file_path=extracted.path,
            line_number=extracted.line_number,
            evidence_snippet=item,
        )
        for item in items
        if item
    )


STRATEGIES: dict[str, Strategy] = {
    KIND_PRESENCE: _match_lines,
    KIND_ABSENCE: _match_lines,
    KIND_REGEX_MATCH: _match_lines,
    KIND_CROSS_FILE_EQUALITY: _cross_file_equality,
    KIND_COUNT_THRESHOLD: _count_threshold,
    KIND_MANUAL: _match_lines,
}


@dataclass(frozen=True, slots=True)
class _Value:
    """A value pulled out of the index together with where it came from."""

    value: str
    path: str
    line_number: int | None
    label: str


def _extract_value(rule_id: str, extractor: Mapping[str, Any], index: SourceIndex) -> _Value:
    source = extractor["source"]
    if source == "folder":
        return _Value(index.slug, ".", None, extractor.get("label", "folder name"))

    path = _resolve_single_file(rule_id, extractor["target"], index)
    if source == "header":
        name = extractor["name"]
        found = index.header_value(path, name)
        if found is None:
            raise UnresolvedValue(rule_id, f"'{name}' header not found in {path}")
        value, line_number = found
        return _Value(value, path, line_number, extractor.get("label", name))

    pattern = _compile(
        extractor["pattern"], ignore_case=bool(extractor.get("ignore_case", False)), multiline=True
    )
    content = index.read(path)
    match = pattern.search(content)
    if match is None or not match.group(1):
        raise UnresolvedValue(rule_id, f"pattern '{extractor['pattern']}' not found in {path}")
    line_number = content.count("\n", 0, match.start()) + 1
    return _Value(match.group(1).strip(), path, line_number, extractor.get("label", "value"))


def _resolve_single_file(rule_id: str, target: str, index: SourceIndex) -> str:
    if target == TARGET_MAIN:
        try:
            return index.find_declared_main_file()
        except NotFound as exc:
            raise UnresolvedValue(rule_id, str(exc)) from exc
    if target == TARGET_README:
        readme = index.find_metadata_file()
        if readme is None:
            raise UnresolvedValue(rule_id, "no readme file found")
        return readme
    matches = index.find_files(target)
    if not matches:
        raise UnresolvedValue(rule_id, f"no file matches '{target}'")
    return matches[0]


def _iter_target_lines(index: SourceIndex, target: str) -> Iterator[tuple[str, int | None, str]]:
    if target == TARGET_SLUG:
        yield (".", None, index.slug)
        try:
            main_file = index.find_declared_main_file()
        except NotFound:
            return
        text_domain = index.header_value(main_file, "Text Domain")
        if text_domain is not None:
            yield (main_file, text_domain[1], text_domain[0])
        return

    for path in _target_files(index, target):
        for line_number, line in enumerate(_split_lines(index.read(path)), start=1):
            yield (path, line_number, line)


def _split_lines(content: str) -> list[str]:
    # Only "\n" ends a line, matching header line numbers and editors.
    lines = [line.removesuffix("\r") for line in content.split("\n")]
    if lines and not lines[-1]:
        lines.pop()
    return lines


def _target_files(index: SourceIndex, target: str) -> list[str]:
    if target == TARGET_MAIN:
        try:
            return [index.find_declared_main_file()]
        except NotFound:
            return []
    if target == TARGET_README:
        readme = index.find_metadata_file()
        return [readme] if readme is not None else []
    if target == "all":
        return list(index.paths)
    suffixes = TARGET_SUFFIXES.get(target)
    if suffixes is not None:
        return [path for path in index.paths if path.lower().endswith(suffixes)]
    return index.find_files(target)


def _validate_pattern_params(params: Mapping[str, Any], *, required: bool) -> None:
    pattern = params.get("pattern")
    if pattern is None:
        if required:
            raise ValueError("missing 'pattern'")
    else:
        _compile_or_raise(pattern, "pattern")
    exclude = params.get("exclude_pattern")
    if exclude is not None:
        _compile_or_raise(exclude, "exclude_pattern")
    target = params.get("target", DEFAULT_TARGET)
    if not isinstance(target, str) or not target:
        raise ValueError("target must be a non-empty string")
    limit = params.get("max_findings", DEFAULT_MAX_FINDINGS)
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ValueError("max_findings must be a positive integer")


def _validate_extractor(extractor: Any, field_name: str) -> None:
    if not isinstance(extractor, Mapping):
        raise ValueError(f"'{field_name}' must be a table")
    source = extractor.get("source")
    if source not in VALUE_SOURCES:
        choices = ", ".join(sorted(VALUE_SOURCES))
        raise ValueError(f"{field_name}.source must be one of: {choices}")
    if source == "folder":
        return
    target = extractor.get("target")
    if not isinstance(target, str) or not target or target == TARGET_SLUG:
        raise ValueError(f"{field_name}.target must name a single file")
    if source == "header":
        if not isinstance(extractor.get("name"), str) or not extractor["name"]:
            raise ValueError(f"{field_name}.name must be a non-empty string")
        return
    compiled = _compile_or_raise(extractor.get("pattern"), f"{field_name}.pattern")
    if compiled.groups < 1:
        raise ValueError(f"{field_name}.pattern must capture a group")


def _validate_normalize(value: Any) -> None:
    for name in _as_names(value):
        if name not in NORMALIZERS:
            choices = ", ".join(sorted(NORMALIZERS))
            raise ValueError(f"normalize must use: {choices}")


def _normalizers(value: Any) -> list[Callable[[str], str]]:
    return [NORMALIZERS[name] for name in _as_names(value)]


def _as_names(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _apply(normalizers: list[Callable[[str], str]], value: str) -> str:
    for normalize in normalizers:
        value = normalize(value)
    return value


def _compile(pattern: str, *, ignore_case: bool, multiline: bool = False) -> re.Pattern[str]:
    flags = re.IGNORECASE if ignore_case else 0
    if multiline:
        flags |= re.MULTILINE
    return re.compile(pattern, flags)


def _compile_or_raise(pattern: Any, field_name: str) -> re.Pattern[str]:
    if not isinstance(pattern, str) or not pattern:
        raise ValueError(f"{field_name} must be a non-empty string")
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"{field_name} is not a valid regex: {exc}") from exc


def _clip_line(content: str, max_len: int = SNIPPET_MAX_LEN) -> str:
    stripped = content.strip()
    if len(stripped) <= max_len:
        return stripped
    return stripped[: max_len - 3] + "..."
