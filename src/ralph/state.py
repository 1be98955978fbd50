"""Ralph state — run document snapshots, last-run marker, and progress log."""

from __future__ import annotations

from pathlib import Path

from ralph.constants import PROGRESS_HEADER, PROGRESS_SEPARATOR
from ralph.models import RunDocument, RunDocumentError
from ralph.utils import _local_now_text, _read_json


# ---------------------------------------------------------------------------
# Run document
# ---------------------------------------------------------------------------


def _load_run_document(path: Path) -> RunDocument:
    payload = _read_json(path)
    raw_branch = payload.get("branchName")
    branch_name = "" if raw_branch is None else str(raw_branch).strip()
    raw_stories = payload.get("user_stories")
    stories = tuple(raw_stories) if isinstance(raw_stories, list) else ()
    return RunDocument(branch_name=branch_name, user_stories=stories)


def _read_run_document(path: Path) -> RunDocument | None:
    """Take a fresh snapshot of the run document, or ``None`` when unusable.

    The agent rewrites prd.json while it runs, so callers must not hold on to a
    snapshot across iterations.
    """
    try:
        return _load_run_document(path)
    except RunDocumentError:
        return None


# ---------------------------------------------------------------------------
# Last-run marker
# ---------------------------------------------------------------------------


def _read_last_label(path: Path) -> str:
    if not path.exists():
        return ""
    try:
        return path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError):
        return ""


def _write_last_label(path: Path, label: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{label}\n", encoding="utf-8")


# ---------------------------------------------------------------------------
# Progress log
# ---------------------------------------------------------------------------


def _progress_header() -> str:
    return f"{PROGRESS_HEADER}\nStarted: {_local_now_text()}\n{PROGRESS_SEPARATOR}\n"


def _reset_progress_log(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_progress_header(), encoding="utf-8")


def _ensure_progress_log(path: Path) -> bool:
    if path.exists():
        return False
    _reset_progress_log(path)
    return True
