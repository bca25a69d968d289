"""Parsers for git's machine-readable output."""

from __future__ import annotations

import re

from .models import GitFileChange

UNRESOLVED_CONFLICT = "(see git status)"

_CONFLICT_RE = re.compile(r"CONFLICT.*?Merge conflict in (.+)")
# Copy and type-change codes have no dedicated status of their own.
_CODE_ALIASES = {"C": "A", "T": "M"}


def _file_status(code: str) -> str:
    return _CODE_ALIASES.get(code, code)


def parse_status(output: str) -> list[GitFileChange]:
    """Parse ``git status --porcelain`` (v1, newline separated).

    A path with both staged and unstaged edits yields two entries.
    """

    files: list[GitFileChange] = []
    for line in output.splitlines():
        if len(line) < 4:
            continue
        staged_code, unstaged_code = line[0], line[1]
        rest = line[3:].rstrip()

        if staged_code == "R" or unstaged_code == "R":
            old_path, arrow, new_path = rest.partition(" -> ")
            if not arrow:
                old_path, new_path = "", rest
            files.append(
                GitFileChange(
                    path=new_path,
                    status="R",
                    staged=staged_code == "R",
                    old_path=old_path or None,
                )
            )
            continue

        if staged_code == "?" and unstaged_code == "?":
            files.append(GitFileChange(path=rest, status="?", staged=False))
            continue
        if staged_code not in (" ", "?", "!"):
            files.append(GitFileChange(path=rest, status=_file_status(staged_code), staged=True))
        if unstaged_code not in (" ", "?", "!"):
            files.append(GitFileChange(path=rest, status=_file_status(unstaged_code), staged=False))
    return files


def parse_ahead_behind(output: str) -> tuple[int, int]:
    """Parse ``rev-list --left-right --count @{u}...HEAD`` into ``(ahead, behind)``."""

    parts = output.split()
    behind = _to_int(parts[0]) if parts else 0
    ahead = _to_int(parts[1]) if len(parts) > 1 else 0
    return ahead, behind


def parse_numstat(output: str) -> tuple[int, int]:
    """Sum ``diff --numstat`` into ``(additions, deletions)``; binary rows count zero."""

    additions = deletions = 0
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 2:
            continue
        additions += _to_int(parts[0])
        deletions += _to_int(parts[1])
    return additions, deletions


def parse_refs(output: str, *, remote: bool = False) -> list[str]:
    refs = [line.strip() for line in output.splitlines() if line.strip()]
    if remote:
        refs = [ref for ref in refs if not ref.endswith("/HEAD") and "HEAD ->" not in ref]
    return refs


def parse_merge_conflicts(output: str) -> list[str] | None:
    """Return conflicting paths from merge output, or ``None`` if it did not conflict."""

    if "CONFLICT" not in output and "Automatic merge failed" not in output:
        return None
    conflicts = []
    for line in output.splitlines():
        match = _CONFLICT_RE.search(line)
        if match:
            conflicts.append(match.group(1).strip())
    return conflicts or [UNRESOLVED_CONFLICT]


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


__all__ = [
    "UNRESOLVED_CONFLICT",
    "parse_ahead_behind",
    "parse_merge_conflicts",
    "parse_numstat",
    "parse_refs",
    "parse_status",
]
