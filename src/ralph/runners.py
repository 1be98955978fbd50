from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path
from typing import Any, TextIO

from ralph.constants import STATE_DIR_NAME
from ralph.models import AgentRunResult, LoopConfig
from ralph.utils import (
    _append_log,
    _compact_log_text,
    _redact_sensitive_text,
    _utc_now,
    _write_json,
)


def _write_runner_execution_report(root: Path, *, payload: dict[str, Any]) -> None:
    _write_json(root / STATE_DIR_NAME / "runner_execution_report.json", payload)


def _build_agent_env(config: LoopConfig, *, iteration: int) -> dict[str, str]:
    env = os.environ.copy()
    env["RALPH_ROOT"] = str(config.paths.root)
    env["RALPH_PRD_FILE"] = str(config.paths.prd_file)
    env["RALPH_PROGRESS_FILE"] = str(config.paths.progress_file)
    env["RALPH_ITERATION"] = str(iteration)
    env["RALPH_MAX_ITERATIONS"] = str(config.max_iterations)
    if config.stop_at_task is not None:
        env["RALPH_STOP_AT_TASK_NUM"] = str(config.stop_at_task)
    else:
        env.pop("RALPH_STOP_AT_TASK_NUM", None)
    return env


def _pump_output(stream: Any, sink: TextIO, captured_chunks: list[str]) -> None:
    if stream is None:
        return
    try:
        for line in iter(stream.readline, ""):
            sink.write(line)
            sink.flush()
            captured_chunks.append(line)
    finally:
        try:
            stream.close()
        except OSError:
            pass


def invoke_agent(
    config: LoopConfig,
    *,
    iteration: int,
    sink: TextIO | None = None,
) -> AgentRunResult:
    """Run the agent once with the prompt on stdin and capture its transcript.

    stdout and stderr are merged into one stream that is echoed to ``sink``
    (stderr by default) line by line while being captured. A launch failure or
    nonzero exit is reported in the result and never raised.
    """
    root = config.paths.root
    sink = sink if sink is not None else sys.stderr
    run_report: dict[str, Any] = {
        "generated_at": _utc_now(),
        "iteration": iteration,
        "command_argv": [_redact_sensitive_text(token) for token in config.runner.argv],
        "prompt_path": str(config.paths.prompt_file),
        "status": "starting",
        "exit_code": None,
    }
    _write_runner_execution_report(root, payload=run_report)
    _append_log(
        root,
        f"agent runner start iteration={iteration} command={_redact_sensitive_text(config.runner.command)}",
    )

    try:
        prompt_text = config.paths.prompt_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        return _finish_with_error(root, run_report, iteration=iteration, error=f"prompt unreadable: {exc}")

    captured_chunks: list[str] = []
    try:
        process = subprocess.Popen(
            list(config.runner.argv),
            cwd=root,
            shell=False,
            text=True,
            encoding="utf-8",
            errors="replace",
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            bufsize=1,
            env=_build_agent_env(config, iteration=iteration),
        )
    except OSError as exc:
        return _finish_with_error(root, run_report, iteration=iteration, error=str(exc))

    returncode: int | None = None
    try:
        if process.stdin is not None:
            try:
                process.stdin.write(prompt_text)
                process.stdin.flush()
            except BrokenPipeError:
                pass
            finally:
                try:
                    process.stdin.close()
                except BrokenPipeError:
                    pass
        _pump_output(process.stdout, sink, captured_chunks)
        returncode = process.wait()
    except KeyboardInterrupt:
        _append_log(root, f"agent runner interrupted iteration={iteration}")
        run_report["status"] = "interrupted"
        run_report["finalized_at"] = _utc_now()
        _write_runner_execution_report(root, payload=run_report)
        raise
    except Exception as exc:
        return _finish_with_error(root, run_report, iteration=iteration, error=str(exc))
    finally:
        if returncode is None:
            _stop_process(process)

    transcript = "".join(captured_chunks)
    if transcript.strip():
        _append_log(
            root,
            f"agent runner output iteration={iteration}: {_compact_log_text(_redact_sensitive_text(transcript))}",
        )
    _append_log(root, f"agent runner exit iteration={iteration} returncode={returncode}")
    if returncode != 0:
        _append_log(root, f"agent runner non-zero exit at iteration={iteration}; continuing")
    run_report["status"] = "completed" if returncode == 0 else "failed"
    run_report["exit_code"] = int(returncode)
    run_report["finalized_at"] = _utc_now()
    _write_runner_execution_report(root, payload=run_report)
    return AgentRunResult(returncode=int(returncode), transcript=transcript)


def _finish_with_error(
    root: Path,
    run_report: dict[str, Any],
    *,
    iteration: int,
    error: str,
) -> AgentRunResult:
    _append_log(root, f"agent runner execution error iteration={iteration}: {error}")
    print(f"ralph: WARN agent run failed: {error}", file=sys.stderr)
    run_report["status"] = "error"
    run_report["error"] = error
    run_report["finalized_at"] = _utc_now()
    _write_runner_execution_report(root, payload=run_report)
    return AgentRunResult(returncode=None, transcript="", error=error)


def _stop_process(process: Any) -> None:
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()
