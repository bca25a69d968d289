"""Git workspace models, CLI backend and controller."""

from .models import (
    BranchSwitchResult,
    GitBranches,
    GitFileChange,
    GitStatus,
    MergeResult,
)
from .controller import BranchWorkflowError, GitWorkspaceController
from .runner import GitCommandError, GitExecutionResult, GitNotFoundError, GitRunner, GitRunnerError
from .backend import GitBackend

__all__ = [
    "BranchSwitchResult",
    "BranchWorkflowError",
    "GitBackend",
    "GitBranches",
    "GitCommandError",
    "GitExecutionResult",
    "GitFileChange",
    "GitNotFoundError",
    "GitRunner",
    "GitRunnerError",
    "GitStatus",
    "GitWorkspaceController",
    "MergeResult",
]
