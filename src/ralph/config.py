from __future__ import annotations

import os
import re
import shlex
import sys
from pathlib import Path
from typing import Any

import yaml

from ralph.constants import (
    CONFIG_FILE_NAME,
    DEFAULT_AGENT_COMMAND,
    DEFAULT_BRANCH_PREFIX,
    DEFAULT_PROMPT_FILE,
    ROOT_ENV_VAR,
)
from ralph.models import (
    AgentRunnerConfig,
    ConfigError,
    LoopConfig,
    RalphPaths,
)

_SHELL_META_PATTERN = re.compile(r"[|&;<>()$`]")


def _command_uses_shell_syntax(command: str) -> bool:
    return bool(_SHELL_META_PATTERN.search(command))


def _resolve_tool_root(cli_root: str | None = None) -> Path:
    """Pick the directory every persisted file lives under.

    ``--root`` wins over ``$RALPH_HOME``; otherwise files sit next to the
    launching script, never in the working directory.
    """
    if cli_root:
        return Path(cli_root).expanduser().resolve()
    env_root = os.environ.get(ROOT_ENV_VAR, "").strip()
    if env_root:
        return Path(env_root).expanduser().resolve()
    return Path(sys.argv[0]).expanduser().resolve().parent


def _load_ralph_policy(root: Path) -> dict[str, Any]:
    policy_path = root / CONFIG_FILE_NAME
    if not policy_path.exists():
        return {}
    try:
        loaded = yaml.safe_load(policy_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError):
        return {}
    if not isinstance(loaded, dict):
        return {}
    return loaded


def _load_agent_runner_config(root: Path) -> AgentRunnerConfig:
    policy = _load_ralph_policy(root)
    runner = policy.get("agent_runner")
    if not isinstance(runner, dict):
        runner = {}
    command = str(runner.get("command") or DEFAULT_AGENT_COMMAND).strip()
    prompt_file = str(runner.get("prompt_file") or DEFAULT_PROMPT_FILE).strip()
    if _command_uses_shell_syntax(command):
        raise ConfigError(
            "agent_runner.command contains shell metacharacters; "
            "configure an argv-safe command without pipes/subshell syntax"
        )
    try:
        argv = shlex.split(command)
    except ValueError as exc:
        raise ConfigError(f"agent_runner.command could not be parsed: {exc}") from exc
    if not argv:
        raise ConfigError("agent_runner.command resolved to empty arguments")
    return AgentRunnerConfig(command=command, argv=tuple(argv), prompt_file=prompt_file)


def _load_branch_prefix(root: Path) -> str:
    policy = _load_ralph_policy(root)
    archive = policy.get("archive")
    if not isinstance(archive, dict) or "branch_prefix" not in archive:
        return DEFAULT_BRANCH_PREFIX
    raw = archive.get("branch_prefix")
    return "" if raw is None else str(raw)


def _is_positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def build_loop_config(
    root: Path,
    *,
    max_iterations: int,
    stop_at_task: int | None = None,
) -> LoopConfig:
    if not _is_positive_int(max_iterations):
        raise ConfigError(f"iteration count must be a positive integer, got {max_iterations!r}")
    if stop_at_task is not None and not _is_positive_int(stop_at_task):
        raise ConfigError(f"task number must be a positive integer, got {stop_at_task!r}")

    runner = _load_agent_runner_config(root)
    paths = RalphPaths.under(root, prompt_file=runner.prompt_file)
    if not paths.prompt_file.is_file():
        raise ConfigError(
            f"agent prompt is missing at {paths.prompt_file}; "
            f"pass --root or set {ROOT_ENV_VAR} to the directory holding prompt.md and prd.json"
        )
    return LoopConfig(
        paths=paths,
        runner=runner,
        max_iterations=max_iterations,
        stop_at_task=stop_at_task,
        branch_prefix=_load_branch_prefix(root),
    )
