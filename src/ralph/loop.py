"""Ralph iteration driver.

One invocation of ``run_loop`` prepares the workspace once (run identity check,
optional archival, progress log, last-run marker) and then runs the agent up to
``max_iterations`` times. After each run the transcript is checked for the
completion marker and, when a target task is configured, the stop gate is
evaluated against a fresh read of prd.json.
"""

from __future__ import annotations

import sys
import time
from datetime import date
from pathlib import Path
from typing import Callable

from ralph.archive import archive_previous_run, detect_run_change
from ralph.constants import (
    BANNER_RULE,
    EXIT_FAILURE,
    EXIT_SUCCESS,
    ITERATION_PAUSE_SECONDS,
)
from ralph.gate import evaluate_stop_gate, transcript_signals_completion
from ralph.models import AgentRunResult, GateState, LoopConfig, LoopOutcome
from ralph.runners import invoke_agent
from ralph.state import (
    _ensure_progress_log,
    _read_last_label,
    _read_run_document,
    _write_last_label,
)
from ralph.utils import _append_log

AgentRunner = Callable[..., AgentRunResult]


def prepare_run(config: LoopConfig, *, today: date | None = None) -> Path | None:
    """Archive the previous run when its label changed, then record the current one."""
    paths = config.paths
    document = _read_run_document(paths.prd_file)
    last_label = _read_last_label(paths.last_branch_file)
    change = detect_run_change(document, last_label)

    archived_to: Path | None = None
    if change.changed:
        _append_log(
            paths.root,
            f"run label changed previous={change.previous_label} current={change.current_label}",
        )
        archived_to = archive_previous_run(
            paths,
            change.previous_label,
            today=today or date.today(),
            branch_prefix=config.branch_prefix,
        )

    if change.current_label:
        _write_last_label(paths.last_branch_file, change.current_label)

    if _ensure_progress_log(paths.progress_file):
        _append_log(paths.root, f"progress log created at {paths.progress_file}")
    return archived_to


def _finish(config: LoopConfig, outcome: LoopOutcome) -> LoopOutcome:
    _append_log(
        config.paths.root,
        f"loop stop reason={outcome.reason} iterations={outcome.iterations} exit_code={outcome.exit_code}",
    )
    return outcome


def run_loop(
    config: LoopConfig,
    *,
    runner: AgentRunner = invoke_agent,
    sleep: Callable[[float], None] = time.sleep,
    today: date | None = None,
) -> LoopOutcome:
    archived_to = prepare_run(config, today=today)
    paths = config.paths
    target = config.stop_at_task

    print(f"Starting Ralph - Max iterations: {config.max_iterations}")
    if target is not None:
        print(f"Will stop at task number: {target} (exit 0 if passes, exit 1 if fails)")
    _append_log(
        paths.root,
        f"loop start max_iterations={config.max_iterations} stop_at_task={target or '-'}",
    )

    gate_state = GateState.PENDING
    for index in range(1, config.max_iterations + 1):
        print("")
        print(BANNER_RULE)
        print(f"  Ralph Iteration {index} of {config.max_iterations}")
        print(BANNER_RULE)

        result = runner(config, iteration=index)

        if transcript_signals_completion(result.transcript):
            print("")
            print("Ralph completed all tasks!")
            print(f"Completed at iteration {index} of {config.max_iterations}")
            return _finish(
                config,
                LoopOutcome(
                    exit_code=EXIT_SUCCESS,
                    reason="complete",
                    iterations=index,
                    message=f"completion marker observed at iteration {index}",
                    archived_to=archived_to,
                ),
            )

        if target is not None:
            decision = evaluate_stop_gate(_read_run_document(paths.prd_file), target, gate_state)
            gate_state = decision.state
            if not decision.observed:
                _append_log(paths.root, f"stop gate: task at position {target} not readable; still {gate_state.value}")
            else:
                _append_log(
                    paths.root,
                    f"stop gate: task={decision.task_id} status={decision.status} state={gate_state.value}",
                )
            if gate_state is GateState.PASSED:
                print("")
                print(f"Task {decision.task_id} (position {target}) passed!")
                print(f"Stopping as requested. Completed at iteration {index}")
                return _finish(
                    config,
                    LoopOutcome(
                        exit_code=EXIT_SUCCESS,
                        reason="task_passed",
                        iterations=index,
                        message=f"task {decision.task_id} passed at iteration {index}",
                        archived_to=archived_to,
                    ),
                )
            if gate_state is GateState.FAILED:
                print("", file=sys.stderr)
                print(f"ERROR: Task {decision.task_id} (position {target}) failed!", file=sys.stderr)
                print(f"Task status: {decision.status}, passes: false", file=sys.stderr)
                print(f"Check {paths.progress_file} for details.", file=sys.stderr)
                return _finish(
                    config,
                    LoopOutcome(
                        exit_code=EXIT_FAILURE,
                        reason="task_failed",
                        iterations=index,
                        message=f"task {decision.task_id} failed with status {decision.status}",
                        archived_to=archived_to,
                    ),
                )

        print(f"Iteration {index} complete. Continuing...")
        if index < config.max_iterations:
            sleep(ITERATION_PAUSE_SECONDS)

    print("")
    print(f"Ralph reached max iterations ({config.max_iterations}) without completing target task.")
    if target is not None:
        print(f"Task at position {target} did not complete.")
    print(f"Check {paths.progress_file} for status.")
    return _finish(
        config,
        LoopOutcome(
            exit_code=EXIT_FAILURE,
            reason="max_iterations",
            iterations=config.max_iterations,
            message=f"reached max iterations ({config.max_iterations})",
            archived_to=archived_to,
        ),
    )
