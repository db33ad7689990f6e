"""File discovery for batch extraction."""

import fnmatch
from datetime import datetime, timezone
from pathlib import Path

from .clock import to_iso
from .errors import UserError


def require_directory(path: Path) -> Path:
    """Raise UserError unless ``path`` is an existing directory."""
    if not path.exists():
        raise UserError(f"Directory not found: {path}")
    if not path.is_dir():
        raise UserError(f"Not a directory: {path}")
    return path


def _matches(pattern: str, relative: str, name: str) -> bool:
    pattern = pattern.lower()
    return fnmatch.fnmatchcase(relative.lower(), pattern) or fnmatch.fnmatchcase(
        name.lower(), pattern
    )


def list_files(root: Path, pattern: str = "*.md", since: str | None = None) -> list[Path]:
    """Find files under ``root`` whose relative path or name matches ``pattern``.

    Matching is case-insensitive. With ``since`` (a normalized ISO timestamp),
    only files modified strictly after it are returned. Results are sorted.
    """
    root = require_directory(Path(root))
    found = []
    for path in root.rglob("*"):
        if not path.is_file():
            continue
        relative = path.relative_to(root).as_posix()
        if not _matches(pattern, relative, path.name):
            continue
        if since is not None:
            mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            if to_iso(mtime) <= since:
                continue
        found.append(path)
    return sorted(found)
