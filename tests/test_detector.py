"""Tests for predicate evaluation."""

from __future__ import annotations

from pathlib import Path

import pytest

from plugin_audit.detector import detect, validate_params
from plugin_audit.errors import UnresolvedValue
from plugin_audit.source_index import SourceIndex
from tests.helpers_plugin import main_file_content, make_plugin, make_rule, readme_content


def _index(tmp_path: Path, **kwargs: object) -> SourceIndex:
    return SourceIndex.build(make_plugin(tmp_path, **kwargs))  # type: ignore[arg-type]


def test_line_match_reports_path_line_and_snippet(tmp_path: Path) -> None:
    index = _index(
        tmp_path,
        extra_files={"includes/run.php": "<?php\n\n    eval( $code );\n"},
    )
    rule = make_rule("C6", "absence", target="php", pattern=r"\beval\s*\(")

    findings = detect(rule, index)

    assert len(findings) == 1
    assert findings[0].rule_id == "C6"
    assert findings[0].file_path == "includes/run.php"
    assert findings[0].line_number == 3
    assert findings[0].column == 5
    assert findings[0].evidence_snippet == "eval( $code );"


def test_every_match_on_a_line_is_a_finding(tmp_path: Path) -> None:
    index = _index(
        tmp_path,
        extra_files={"includes/form.php": "<?php\n$a = $_GET['a'] . $_POST['b'];\n"},
    )
    rule = make_rule(
        "C1", "regex-match", target="php", pattern=r"\$_(?:GET|POST|REQUEST)\s*\["
    )

    findings = detect(rule, index)

    assert [(item.line_number, item.column) for item in findings] == [(2, 6), (2, 19)]


def test_line_numbers_only_break_on_newlines(tmp_path: Path) -> None:
    index = _index(
        tmp_path,
        extra_files={
            "feed.php": "<?php\n// a\x0cb\neval(1);\n",
            "crlf.php": "<?php\r\n// note\r\neval(2);\r\n",
        },
    )
    rule = make_rule("C6", "absence", target="php", pattern=r"eval\(\d\);$")

    findings = detect(rule, index)

    assert sorted((item.file_path, item.line_number) for item in findings) == [
        ("crlf.php", 3),
        ("feed.php", 3),
    ]


def test_line_match_returns_empty_list_when_nothing_matches(tmp_path: Path) -> None:
    rule = make_rule("C6", "absence", target="php", pattern=r"\beval\s*\(")
    assert detect(rule, _index(tmp_path)) == []


def test_exclude_pattern_drops_sanitized_lines(tmp_path: Path) -> None:
    index = _index(
        tmp_path,
        extra_files={
            "includes/form.php": "\n".join(
                [
                    "<?php",
                    "$raw = $_POST['title'];",
                    "$clean = sanitize_text_field( wp_unslash( $_POST['title'] ) );",
                ]
            )
        },
    )
    rule = make_rule(
        "C1",
        "regex-match",
        target="php",
        pattern=r"\$_POST\s*\[",
        exclude_pattern=r"\bsanitize_\w+\s*\(",
    )
    findings = detect(rule, index)
    assert [(item.file_path, item.line_number) for item in findings] == [("includes/form.php", 2)]


def test_max_findings_caps_evidence(tmp_path: Path) -> None:
    body = "\n".join(["<?php"] + ["var_dump( $x );"] * 10)
    index = _index(tmp_path, extra_files={"debug.php": body})
    rule = make_rule("D3", "regex-match", target="php", pattern=r"var_dump\s*\(", max_findings=3)

    findings = detect(rule, index)

    assert len(findings) == 3
    assert findings.total == 10
    assert findings.truncated is True


def test_target_selects_files_by_name_and_group(tmp_path: Path) -> None:
    index = _index(
        tmp_path,
        extra_files={
            "assets/app.js": "fetch('https://example.com');\n",
            "includes/a.php": "// example.com\n",
        },
    )
    js_rule = make_rule("B6", "regex-match", target="js", pattern=r"example\.com")
    glob_rule = make_rule("B6", "regex-match", target="includes/*.php", pattern=r"example\.com")
    readme_rule = make_rule("F1", "presence", target="readme", pattern=r"^Stable tag:")

    assert [item.file_path for item in detect(js_rule, index)] == ["assets/app.js"]
    assert [item.file_path for item in detect(glob_rule, index)] == ["includes/a.php"]
    assert [item.file_path for item in detect(readme_rule, index)] == ["readme.txt"]


def test_slug_target_checks_folder_and_text_domain(tmp_path: Path) -> None:
    index = _index(tmp_path, slug="wordpress-seo-helper")
    rule = make_rule("B1", "absence", target="slug", pattern=r"^wordpress(?:[-_]|$)")

    findings = detect(rule, index)

    assert [(item.file_path, item.evidence_snippet) for item in findings] == [
        (".", "wordpress-seo-helper"),
        ("wordpress-seo-helper.php", "wordpress-seo-helper"),
    ]


def test_long_lines_are_clipped(tmp_path: Path) -> None:
    index = _index(tmp_path, extra_files={"long.php": "<?php\n" + "x" * 300 + " eval(1);\n"})
    rule = make_rule("C6", "absence", target="php", pattern=r"eval\(")
    snippet = detect(rule, index)[0].evidence_snippet
    assert len(snippet) == 120
    assert snippet.endswith("...")


def test_cross_file_equality_records_both_values(tmp_path: Path) -> None:
    index = _index(tmp_path, readme=readme_content(stable_tag="0.9.0"))
    rule = make_rule(
        "F2",
        "cross-file-equality",
        left={"source": "header", "target": "main", "name": "Version"},
        right={"source": "header", "target": "readme", "name": "Stable tag"},
    )

    findings = detect(rule, index)

    assert len(findings) == 1
    assert findings[0].file_path == "seo-helper.php"
    assert findings[0].line_number == 5
    assert "'1.0.0'" in findings[0].evidence_snippet
    assert "'0.9.0'" in findings[0].evidence_snippet


def test_cross_file_equality_applies_normalizers(tmp_path: Path) -> None:
    index = _index(tmp_path, readme=readme_content(name="seo helper"))
    rule = make_rule(
        "F7",
        "cross-file-equality",
        normalize=["strip", "lower"],
        left={"source": "header", "target": "main", "name": "Plugin Name"},
        right={"source": "regex", "target": "readme", "pattern": r"^===\s*(.+?)\s*===\s*$"},
    )
    assert detect(rule, index) == []


def test_cross_file_equality_folder_source(tmp_path: Path) -> None:
    index = _index(tmp_path, main=main_file_content(text_domain="other-domain"))
    rule = make_rule(
        "E2",
        "cross-file-equality",
        left={"source": "folder", "label": "Folder name"},
        right={"source": "header", "target": "main", "name": "Text Domain"},
    )
    findings = detect(rule, index)
    assert findings[0].evidence_snippet == (
        "Folder name 'seo-helper' (.) != Text Domain 'other-domain' (seo-helper.php)"
    )


def test_cross_file_equality_raises_when_value_is_missing(tmp_path: Path) -> None:
    index = _index(tmp_path, readme="")
    rule = make_rule(
        "F2",
        "cross-file-equality",
        left={"source": "header", "target": "main", "name": "Version"},
        right={"source": "header", "target": "readme", "name": "Stable tag"},
    )
    with pytest.raises(UnresolvedValue, match="no readme file found"):
        detect(rule, index)


def test_count_threshold_counts_separated_items(tmp_path: Path) -> None:
    index = _index(tmp_path, readme=readme_content(tags="a, b, c, d, e, f"))
    rule = make_rule(
        "F3",
        "count-threshold",
        max=5,
        value={"source": "header", "target": "readme", "name": "Tags"},
    )
    findings = detect(rule, index)
    assert [item.evidence_snippet for item in findings] == ["a", "b", "c", "d", "e", "f"]
    assert {item.line_number for item in findings} == {3}


def test_count_threshold_pattern_counts_matches_not_lines(tmp_path: Path) -> None:
    index = _index(tmp_path, extra_files={"calls.php": "<?php\nfoo(); foo(); foo();\n"})
    rule = make_rule("D6", "count-threshold", target="php", pattern=r"foo\(", max=2)

    findings = detect(rule, index)

    assert findings.total == 3
    assert [item.column for item in findings] == [1, 8, 15]


def test_count_threshold_pattern_counts_past_evidence_cap(tmp_path: Path) -> None:
    body = "\n".join(["<?php"] + ["add_action( 'init', 'x' );"] * 20)
    index = _index(tmp_path, extra_files={"hooks.php": body})
    rule = make_rule(
        "D6", "count-threshold", target="php", pattern=r"add_action", max=2, max_findings=4
    )

    findings = detect(rule, index)

    assert len(findings) == 4
    assert findings.total == 20


def test_count_threshold_missing_file_is_unresolved(tmp_path: Path) -> None:
    index = _index(tmp_path, readme="")
    rule = make_rule(
        "F3",
        "count-threshold",
        max=5,
        value={"source": "header", "target": "readme", "name": "Tags"},
    )
    with pytest.raises(UnresolvedValue, match="no readme file found"):
        detect(rule, index)


def test_count_threshold_missing_header_counts_zero(tmp_path: Path) -> None:
    index = _index(tmp_path, readme="=== SEO Helper ===\nContributors: exampleco\n")
    rule = make_rule(
        "F3",
        "count-threshold",
        max=5,
        value={"source": "header", "target": "readme", "name": "Tags"},
    )
    assert detect(rule, index) == []


def test_manual_rule_collects_pointers_without_pattern(tmp_path: Path) -> None:
    index = _index(tmp_path, extra_files={"lib/vendor.js": "/* @license MIT */\n"})
    with_pattern = make_rule("B11", "manual", target="sources", pattern=r"@license\b")
    bare = make_rule("B11", "manual")

    assert [item.file_path for item in detect(with_pattern, index)] == ["lib/vendor.js"]
    assert detect(bare, index) == []


def test_unknown_kind_raises(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Unsupported predicate kind"):
        detect(make_rule("C6", "fuzzy"), _index(tmp_path))


@pytest.mark.parametrize(
    ("kind", "params", "message"),
    [
        ("absence", {}, "missing 'pattern'"),
        ("presence", {"pattern": "x", "max_findings": 0}, "max_findings"),
        ("count-threshold", {"pattern": "x", "value": {}, "max": 1}, "exactly one"),
        ("count-threshold", {"pattern": "x", "max": "5"}, "integers"),
        (
            "cross-file-equality",
            {"left": {"source": "folder"}, "right": {"source": "header", "target": "slug"}},
            "single file",
        ),
        (
            "cross-file-equality",
            {
                "left": {"source": "folder"},
                "right": {"source": "regex", "target": "readme", "pattern": "==="},
            },
            "capture a group",
        ),
        (
            "cross-file-equality",
            {"left": {"source": "folder"}, "right": {"source": "folder"}, "normalize": "upper"},
            "normalize",
        ),
    ],
)
def test_validate_params_rejects_unusable_params(
    kind: str, params: dict[str, object], message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        validate_params(kind, params)
