"""Ralph — supervise a long-running autonomous agent loop."""

from ralph.archive import archive_previous_run, detect_run_change
from ralph.gate import evaluate_stop_gate, transcript_signals_completion
from ralph.loop import prepare_run, run_loop

__version__ = "0.1.0"

__all__ = [
    "archive_previous_run",
    "detect_run_change",
    "evaluate_stop_gate",
    "prepare_run",
    "run_loop",
    "transcript_signals_completion",
]
