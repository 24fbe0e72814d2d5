"""Repository-level integrity checks."""

from __future__ import annotations

import importlib
import re
from pathlib import Path

import moviefinder

CONFLICT_PATTERN = re.compile(r"^(<<<<<<<|=======|>>>>>>>)", re.MULTILINE)
SOURCE_SUFFIXES = {".py", ".md", ".toml", ".txt"}
IGNORED_PARTS = {".git", "__pycache__", ".pytest_cache", ".venv", "build", "dist"}

REPO_ROOT = Path(__file__).resolve().parents[1]


def _source_files() -> list[Path]:
    return [
        path
        for path in REPO_ROOT.rglob("*")
        if path.is_file()
        and path.suffix in SOURCE_SUFFIXES
        and not any(part in IGNORED_PARTS for part in path.parts)
    ]


def test_sources_have_no_merge_conflict_markers() -> None:
    offending = [
        path.relative_to(REPO_ROOT)
        for path in _source_files()
        if CONFLICT_PATTERN.search(path.read_text(encoding="utf-8", errors="ignore"))
    ]

    assert not offending, "Conflict markers found in: " + ", ".join(map(str, offending))


def test_every_moviefinder_module_imports() -> None:
    """Catch broken imports in modules the other suites only touch indirectly."""

    # ``services`` is a namespace package, which pkgutil does not descend into.
    package_root = Path(moviefinder.__file__).resolve().parent
    names = sorted(
        ".".join(("moviefinder", *path.relative_to(package_root).with_suffix("").parts))
        for path in package_root.rglob("*.py")
        if path.stem not in {"__init__", "__main__"}
    )

    assert "moviefinder.services.discovery" in names
    for name in names:
        importlib.import_module(name)
