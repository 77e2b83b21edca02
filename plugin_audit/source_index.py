"""Read-only, cached view of a scanned plugin's files."""

from __future__ import annotations

import fnmatch
import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path

from plugin_audit.errors import NotFound, SourceMissing

logger = logging.getLogger(__name__)

CANDIDATE_SUFFIXES = frozenset(
    {".php", ".inc", ".js", ".jsx", ".ts", ".css", ".html", ".txt", ".md", ".json"}
)
DEFAULT_EXCLUDES: tuple[str, ...] = ("vendor/**", "node_modules/**", ".git/**")
DEFAULT_MAX_FILE_BYTES = 2 * 1024 * 1024

# WordPress only parses headers from the first 8 KiB of a file.
HEADER_SCAN_BYTES = 8192
MAIN_FILE_HEADER = "Plugin Name"
METADATA_FILENAMES = ("readme.txt", "readme.md")

_GLOB_CHARS = frozenset("*?[")
_HEADER_CLOSERS = re.compile(r"\s*(?:\*/|\?>).*$")


@dataclass(frozen=True, slots=True)
class SourceFile:
    """A loaded project file, addressed by its root-relative POSIX path."""

    path: str
    raw_content: str
    size: int


class SourceIndex:
    """Discovers project files once and serves cached, read-only content.

    Content is loaded lazily on first ``read`` and never re-read from disk for
    the lifetime of the index. Concurrent readers share the cache safely.
    """

    def __init__(
        self,
        root: Path,
        paths: list[str],
        *,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    ) -> None:
        self._root = root
        self._paths = tuple(sorted(paths))
        self._path_set = frozenset(self._paths)
        self._max_file_bytes = max_file_bytes
        self._cache: dict[str, SourceFile] = {}
        self._lock = threading.Lock()
        self._main_file: str | None = None
        self._main_file_resolved = False
        self.disk_reads = 0

    @classmethod
    def build(
        cls,
        root: Path | str,
        *,
        exclude: list[str] | tuple[str, ...] | None = None,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    ) -> SourceIndex:
        """Discover candidate files under *root*.

        Raises ``SourceMissing`` when the root is missing, not a directory, or
        contains no candidate files.
        """
        root_path = Path(root)
        if not root_path.exists():
            raise SourceMissing(f"Scan root does not exist: {root_path}")
        if not root_path.is_dir():
            raise SourceMissing(f"Scan root is not a directory: {root_path}")
        resolved_root = root_path.resolve()
        patterns = DEFAULT_EXCLUDES if exclude is None else tuple(exclude)

        paths: list[str] = []
        try:
            candidates = sorted(resolved_root.rglob("*"))
        except OSError as exc:
            raise SourceMissing(f"Scan root is unreadable: {root_path}: {exc}") from exc

        for candidate in candidates:
            if not candidate.is_file():
                continue
            if candidate.suffix.lower() not in CANDIDATE_SUFFIXES:
                continue
            try:
                relative = candidate.resolve().relative_to(resolved_root).as_posix()
            except ValueError:
                logger.debug("Skipping %s: resolves outside the scan root", candidate)
                continue
            if any(fnmatch.fnmatch(relative, pattern) for pattern in patterns):
                continue
            paths.append(relative)

        if not paths:
            raise SourceMissing(f"No candidate files found under: {root_path}")

        logger.debug("Indexed %d files under %s", len(paths), resolved_root)
        return cls(resolved_root, paths, max_file_bytes=max_file_bytes)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def slug(self) -> str:
        """Plugin slug, taken from the scanned folder name."""
        return self._root.name

    @property
    def paths(self) -> tuple[str, ...]:
        return self._paths

    def __contains__(self, path: object) -> bool:
        return path in self._path_set

    def get(self, path: str) -> SourceFile:
        """Return the loaded file for *path*, reading it on first access."""
        if path not in self._path_set:
            raise NotFound(f"File is not part of the index: {path}")
        with self._lock:
            cached = self._cache.get(path)
            if cached is not None:
                return cached
            absolute = self._root / path
            raw = absolute.read_bytes()
            self.disk_reads += 1
            content = raw[: self._max_file_bytes].decode("utf-8", errors="replace")
            loaded = SourceFile(path=path, raw_content=content, size=len(raw))
            self._cache[path] = loaded
            return loaded

    def read(self, path: str) -> str:
        return self.get(path).raw_content

    def find_files(self, pattern: str) -> list[str]:
        """Return indexed paths matching a glob or a bare extension.

        ``"*.php"`` and ``"includes/**"`` are globs; ``".php"`` and ``"php"``
        select by extension; anything else must match a path exactly.
        """
        if _GLOB_CHARS.intersection(pattern):
            return [
                path
                for path in self._paths
                if fnmatch.fnmatch(path, pattern)
                or ("/" not in pattern and fnmatch.fnmatch(path.rpartition("/")[2], pattern))
            ]
        if pattern.startswith("."):
            suffix = pattern.lower()
            return [path for path in self._paths if path.lower().endswith(suffix)]
        if "." not in pattern and "/" not in pattern:
            suffix = f".{pattern.lower()}"
            return [path for path in self._paths if path.lower().endswith(suffix)]
        return [path for path in self._paths if path == pattern]

    def find_declared_main_file(self) -> str:
        """Locate the file carrying the ``Plugin Name:`` declaration.

        The conventional ``<slug>.php`` is checked first; otherwise every
        top-level PHP file is scanned in sorted order. Raises ``NotFound``.
        """
        with self._lock:
            resolved = self._main_file_resolved
        if not resolved:
            main_file = self._discover_main_file()
            with self._lock:
                self._main_file = main_file
                self._main_file_resolved = True
        if self._main_file is None:
            raise NotFound("No PHP file declares a 'Plugin Name:' header")
        return self._main_file

    def find_metadata_file(self) -> str | None:
        """Return the readme path, preferring ``readme.txt`` over ``README.md``."""
        top_level = {path.lower(): path for path in self._paths if "/" not in path}
        for filename in METADATA_FILENAMES:
            found = top_level.get(filename)
            if found is not None:
                return found
        return None

    def header_value(self, path: str, name: str) -> tuple[str, int] | None:
        """Parse a WordPress-style ``Name: value`` header from *path*.

        Returns ``(value, line_number)`` or ``None`` when the header is absent
        or empty.
        """
        head = self.read(path)[:HEADER_SCAN_BYTES]
        pattern = re.compile(
            rf"^[ \t/*#@]*{re.escape(name)}:(.*)$", re.IGNORECASE | re.MULTILINE
        )
        match = pattern.search(head)
        if match is None:
            return None
        value = _HEADER_CLOSERS.sub("", match.group(1)).strip()
        if not value:
            return None
        line_number = head.count("\n", 0, match.start()) + 1
        return (value, line_number)

    def _discover_main_file(self) -> str | None:
        top_level_php = [
            path for path in self._paths if "/" not in path and path.lower().endswith(".php")
        ]
        preferred = f"{self.slug}.php"
        ordered = sorted(top_level_php, key=lambda path: (path != preferred, path))
        for path in ordered:
            if self.header_value(path, MAIN_FILE_HEADER) is not None:
                logger.debug("Main plugin file: %s", path)
                return path
        return None
