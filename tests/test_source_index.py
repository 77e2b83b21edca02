"""Tests for source discovery, caching and header parsing."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from plugin_audit.errors import NotFound, SourceMissing
from plugin_audit.source_index import SourceIndex
from tests.helpers_plugin import main_file_content, make_plugin, write_file


def test_build_rejects_missing_root_and_plain_file(tmp_path: Path) -> None:
    with pytest.raises(SourceMissing, match="does not exist"):
        SourceIndex.build(tmp_path / "nope")

    plain = write_file(tmp_path, "plugin.php", "<?php\n")
    with pytest.raises(SourceMissing, match="not a directory"):
        SourceIndex.build(plain)


def test_build_rejects_root_without_candidate_files(tmp_path: Path) -> None:
    root = tmp_path / "empty-plugin"
    write_file(root, "logo.png", "not really a png")
    with pytest.raises(SourceMissing, match="No candidate files"):
        SourceIndex.build(root)


def test_build_skips_default_excludes_and_unknown_suffixes(tmp_path: Path) -> None:
    root = make_plugin(
        tmp_path,
        extra_files={
            "includes/class-admin.php": "<?php\n",
            "assets/app.js": "console.log('x');\n",
            "vendor/lib/autoload.php": "<?php\n",
            "node_modules/pkg/index.js": "module.exports = 1;\n",
            "assets/logo.svg": "<svg/>",
        },
    )
    index = SourceIndex.build(root)

    assert index.paths == (
        "assets/app.js",
        "includes/class-admin.php",
        "readme.txt",
        "seo-helper.php",
    )
    assert index.slug == "seo-helper"
    assert "readme.txt" in index
    assert "vendor/lib/autoload.php" not in index


def test_build_honors_custom_excludes(tmp_path: Path) -> None:
    root = make_plugin(tmp_path, extra_files={"tests/test-admin.php": "<?php\n"})
    index = SourceIndex.build(root, exclude=["tests/**"])
    assert "tests/test-admin.php" not in index
    assert "seo-helper.php" in index


def test_content_is_read_from_disk_once(tmp_path: Path) -> None:
    root = make_plugin(tmp_path)
    index = SourceIndex.build(root)

    first = index.read("seo-helper.php")
    (root / "seo-helper.php").write_text("<?php // changed\n", encoding="utf-8")
    second = index.read("seo-helper.php")

    assert first == second
    assert index.disk_reads == 1


def test_concurrent_reads_share_one_load(tmp_path: Path) -> None:
    root = make_plugin(tmp_path)
    index = SourceIndex.build(root)
    with ThreadPoolExecutor(max_workers=8) as executor:
        contents = list(executor.map(lambda _: index.read("readme.txt"), range(32)))
    assert len(set(contents)) == 1
    assert index.disk_reads == 1


def test_get_rejects_paths_outside_the_index(tmp_path: Path) -> None:
    index = SourceIndex.build(make_plugin(tmp_path))
    with pytest.raises(NotFound):
        index.read("../secrets.php")


def test_large_files_are_truncated_and_bad_bytes_replaced(tmp_path: Path) -> None:
    root = make_plugin(tmp_path)
    (root / "blob.txt").write_bytes(b"ok\xff" + b"a" * 100)
    index = SourceIndex.build(root, max_file_bytes=10)

    loaded = index.get("blob.txt")
    assert loaded.size == 103
    assert loaded.raw_content.startswith("ok\ufffd")
    assert len(loaded.raw_content) == 10


def test_find_files_accepts_globs_and_extensions(tmp_path: Path) -> None:
    root = make_plugin(
        tmp_path,
        extra_files={"includes/class-admin.php": "<?php\n", "assets/app.js": "x\n"},
    )
    index = SourceIndex.build(root)

    assert index.find_files("*.php") == ["includes/class-admin.php", "seo-helper.php"]
    assert index.find_files("includes/*.php") == ["includes/class-admin.php"]
    assert index.find_files(".js") == ["assets/app.js"]
    assert index.find_files("js") == ["assets/app.js"]
    assert index.find_files("readme.txt") == ["readme.txt"]
    assert index.find_files("missing.txt") == []


def test_main_file_prefers_slug_named_file(tmp_path: Path) -> None:
    root = make_plugin(
        tmp_path,
        extra_files={"aaa-legacy.php": main_file_content(name="Legacy Loader")},
    )
    index = SourceIndex.build(root)
    assert index.find_declared_main_file() == "seo-helper.php"


def test_main_file_found_by_header_when_canonical_name_is_absent(tmp_path: Path) -> None:
    root = make_plugin(
        tmp_path,
        main_name="loader.php",
        extra_files={"functions.php": "<?php\nfunction seo_helper_boot() {}\n"},
    )
    index = SourceIndex.build(root)
    assert index.find_declared_main_file() == "loader.php"


def test_main_file_lookup_raises_not_found(tmp_path: Path) -> None:
    root = make_plugin(tmp_path, main="<?php\n// no header here\n")
    index = SourceIndex.build(root)
    with pytest.raises(NotFound, match="Plugin Name"):
        index.find_declared_main_file()


def test_metadata_file_lookup_is_case_insensitive(tmp_path: Path) -> None:
    root = make_plugin(tmp_path, readme="", extra_files={"README.md": "# SEO Helper\n"})
    index = SourceIndex.build(root)
    assert index.find_metadata_file() == "README.md"

    bare = make_plugin(tmp_path, slug="bare", readme="")
    assert SourceIndex.build(bare).find_metadata_file() is None


def test_header_value_returns_value_and_line(tmp_path: Path) -> None:
    root = make_plugin(
        tmp_path,
        extra_files={"single.php": "<?php\n/* Plugin Name: One Liner */ ?>\n"},
    )
    index = SourceIndex.build(root)

    assert index.header_value("seo-helper.php", "Version") == ("1.0.0", 5)
    assert index.header_value("seo-helper.php", "text domain") == ("seo-helper", 11)
    assert index.header_value("readme.txt", "Stable tag") == ("1.0.0", 6)
    assert index.header_value("single.php", "Plugin Name") == ("One Liner", 2)
    assert index.header_value("seo-helper.php", "Network") is None
