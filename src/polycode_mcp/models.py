"""Thread and command definition models exchanged with the execution host."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .keys import validate_identifier
from .status import INSTANCE_STATUSES

ThreadStatus = Literal["idle", "running", "error", "stopped", "plan_pending", "question_pending"]
THREAD_STATUSES: frozenset[str] = INSTANCE_STATUSES | {"plan_pending", "question_pending"}

ArchiveOutcome = Literal["archived", "deleted"]
ARCHIVE_OUTCOMES: frozenset[str] = frozenset({"archived", "deleted"})


class Thread(BaseModel):
    """One agent conversation bound to a project and a location."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable thread identifier.")
    project_id: str
    location_id: str | None = None
    name: str = ""
    provider: str = "claude-code"
    model: str = ""
    status: ThreadStatus = "idle"
    use_wsl: bool = False
    wsl_distro: str | None = None
    archived: bool = False
    input_tokens: int = 0
    output_tokens: int = 0
    context_window: int = 0
    has_messages: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("id", "project_id")
    @classmethod
    def _require_identifier(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Thread and project ids must not be empty")
        return normalized


class CommandDefinition(BaseModel):
    """A named shell invocation owned by a project, independent of location."""

    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str
    name: str
    command: str
    cwd: str | None = None
    shell: str | None = None

    @field_validator("id")
    @classmethod
    def _validate_id(cls, value: str) -> str:
        return validate_identifier(value.strip(), kind="command id")

    @field_validator("command")
    @classmethod
    def _require_command(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Command must not be empty")
        return value


class SendOptions(BaseModel):
    plan_mode: bool = False


class QuestionOption(BaseModel):
    label: str
    description: str = ""


class Question(BaseModel):
    """A question the agent asked while running, answered via ``answer_question``."""

    question: str
    header: str = ""
    multi_select: bool = False
    options: list[QuestionOption] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    context_window: int = 0


@dataclass(frozen=True, slots=True)
class QueuedMessage:
    content: str
    plan_mode: bool = False


__all__ = [
    "ARCHIVE_OUTCOMES",
    "ArchiveOutcome",
    "CommandDefinition",
    "Question",
    "QuestionOption",
    "QueuedMessage",
    "SendOptions",
    "THREAD_STATUSES",
    "Thread",
    "ThreadStatus",
    "TokenUsage",
]
