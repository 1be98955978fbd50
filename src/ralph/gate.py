"""Ralph stop conditions — completion marker detection and the task stop gate."""

from __future__ import annotations

from ralph.constants import COMPLETION_MARKER, DEFAULT_TASK_STATUS
from ralph.models import GateDecision, GateState, RunDocument


def transcript_signals_completion(transcript: str, marker: str = COMPLETION_MARKER) -> bool:
    return marker in transcript


def evaluate_stop_gate(
    document: RunDocument | None,
    position: int,
    previous: GateState = GateState.PENDING,
) -> GateDecision:
    """Decide the target task's gate state from a fresh document snapshot.

    A missing document or task entry keeps ``previous``; absent data never
    turns into a pass or a failure. A task that was never attempted (status
    still ``pending``) stays pending even though ``passes`` defaults to false.
    """
    task = document.task_at(position) if document is not None else None
    if task is None:
        return GateDecision(state=previous)

    if task.passes:
        state = GateState.PASSED
    elif task.status != DEFAULT_TASK_STATUS:
        state = GateState.FAILED
    else:
        state = GateState.PENDING
    return GateDecision(state=state, task_id=task.task_id, status=task.status, observed=True)
