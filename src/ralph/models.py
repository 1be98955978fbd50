"""Ralph data models — exceptions, dataclasses, and coercion helpers."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ralph.constants import DEFAULT_TASK_STATUS


def _is_passing(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value == "true"


class ConfigError(RuntimeError):
    """Raised when arguments or ralph.yaml cannot produce a usable loop config."""


class RunDocumentError(RuntimeError):
    """Raised when prd.json cannot be loaded as an object."""


class GateState(str, enum.Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskEntry:
    position: int
    task_id: str
    passes: bool
    status: str


@dataclass(frozen=True)
class RunDocument:
    """Read-only snapshot of prd.json taken at one point in time."""

    branch_name: str
    user_stories: tuple[dict[str, Any], ...] = ()

    def task_at(self, position: int) -> TaskEntry | None:
        """Return the task at a 1-based ``position`` with defaults applied."""
        index = position - 1
        if index < 0 or index >= len(self.user_stories):
            return None
        raw = self.user_stories[index]
        if not isinstance(raw, dict):
            return None
        raw_status = raw.get("status")
        status = DEFAULT_TASK_STATUS if raw_status is None else str(raw_status)
        raw_id = raw.get("id")
        task_id = str(raw_id) if raw_id not in (None, "") else f"US-{position}"
        return TaskEntry(
            position=position,
            task_id=task_id,
            passes=_is_passing(raw.get("passes")),
            status=status,
        )


@dataclass(frozen=True)
class RunChange:
    changed: bool
    previous_label: str
    current_label: str


@dataclass(frozen=True)
class GateDecision:
    state: GateState
    task_id: str = ""
    status: str = ""
    observed: bool = False


@dataclass(frozen=True)
class RalphPaths:
    root: Path
    prd_file: Path
    progress_file: Path
    prompt_file: Path
    archive_dir: Path
    last_branch_file: Path

    @classmethod
    def under(cls, root: Path, *, prompt_file: str = "prompt.md") -> "RalphPaths":
        return cls(
            root=root,
            prd_file=root / "prd.json",
            progress_file=root / "progress.txt",
            prompt_file=root / prompt_file,
            archive_dir=root / "archive",
            last_branch_file=root / ".last-branch",
        )


@dataclass(frozen=True)
class AgentRunnerConfig:
    command: str
    argv: tuple[str, ...]
    prompt_file: str


@dataclass(frozen=True)
class LoopConfig:
    paths: RalphPaths
    runner: AgentRunnerConfig
    max_iterations: int
    stop_at_task: int | None = None
    branch_prefix: str = "ralph/"


@dataclass(frozen=True)
class AgentRunResult:
    returncode: int | None
    transcript: str
    error: str = ""


@dataclass(frozen=True)
class LoopOutcome:
    exit_code: int
    reason: str          # "complete" | "task_passed" | "task_failed" | "max_iterations"
    iterations: int
    message: str
    archived_to: Path | None = None
