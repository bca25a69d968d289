"""Git workspace snapshots and workflow results."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

FileStatus = Literal["M", "A", "D", "R", "U", "?"]


class GitFileChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    status: FileStatus
    staged: bool = False
    old_path: str | None = None


class GitStatus(BaseModel):
    """Point-in-time state of a workspace. Replaced wholesale on every refresh."""

    model_config = ConfigDict(frozen=True)

    branch: str = "HEAD"
    ahead: int = 0
    behind: int = 0
    additions: int = 0
    deletions: int = 0
    files: tuple[GitFileChange, ...] = ()

    @property
    def staged(self) -> list[GitFileChange]:
        return [change for change in self.files if change.staged]

    @property
    def unstaged(self) -> list[GitFileChange]:
        return [change for change in self.files if not change.staged]

    @property
    def is_dirty(self) -> bool:
        return bool(self.files)


class GitBranches(BaseModel):
    model_config = ConfigDict(frozen=True)

    current: str = "HEAD"
    local: tuple[str, ...] = ()
    remote: tuple[str, ...] = ()


class MergeResult(BaseModel):
    """Outcome of a merge. Conflicts are a result, not an error."""

    model_config = ConfigDict(frozen=True)

    source: str = ""
    conflicts: tuple[str, ...] = Field(default_factory=tuple)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


class BranchSwitchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    branch: str
    warnings: tuple[str, ...] = ()
    merge: MergeResult | None = None


__all__ = [
    "BranchSwitchResult",
    "FileStatus",
    "GitBranches",
    "GitFileChange",
    "GitStatus",
    "MergeResult",
]
