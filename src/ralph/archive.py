"""Ralph run identity tracking and archival of the previous run."""

from __future__ import annotations

import shutil
import sys
from datetime import date
from pathlib import Path

from ralph.constants import ARCHIVE_DATE_FORMAT, ARCHIVE_NAME_UNSAFE_PATTERN
from ralph.models import RalphPaths, RunChange, RunDocument
from ralph.state import _reset_progress_log
from ralph.utils import _append_log


def detect_run_change(document: RunDocument | None, last_label: str) -> RunChange:
    """Compare the document's run label with the last tracked one.

    Missing information on either side means there is nothing to compare, so
    only two non-empty, different labels count as a change.
    """
    current = document.branch_name if document is not None else ""
    previous = str(last_label or "").strip()
    changed = bool(current) and bool(previous) and current != previous
    return RunChange(changed=changed, previous_label=previous, current_label=current)


def _archive_folder_name(label: str, *, today: date, branch_prefix: str) -> str:
    stripped = label
    if branch_prefix and stripped.startswith(branch_prefix):
        stripped = stripped[len(branch_prefix):]
    stripped = ARCHIVE_NAME_UNSAFE_PATTERN.sub("-", stripped).strip("-") or "run"
    return f"{today.strftime(ARCHIVE_DATE_FORMAT)}-{stripped}"


def _next_free_archive_dir(archive_root: Path, folder_name: str) -> Path:
    candidate = archive_root / folder_name
    suffix = 2
    while candidate.exists():
        candidate = archive_root / f"{folder_name}-{suffix}"
        suffix += 1
    return candidate


def archive_previous_run(
    paths: RalphPaths,
    previous_label: str,
    *,
    today: date,
    branch_prefix: str,
) -> Path | None:
    """Copy prd.json and progress.txt into a dated record and reset the log.

    Returns the archive directory, or ``None`` when it could not be created.
    Archival is bookkeeping only: failures are logged and never raised.
    """
    folder_name = _archive_folder_name(previous_label, today=today, branch_prefix=branch_prefix)
    archive_dir = _next_free_archive_dir(paths.archive_dir, folder_name)
    if archive_dir.name != folder_name:
        _append_log(
            paths.root,
            f"archive record {folder_name} already exists; using {archive_dir.name}",
        )

    print(f"ralph: archiving previous run: {previous_label}")
    try:
        archive_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        _append_log(paths.root, f"archive directory creation failed {archive_dir}: {exc}")
        print(f"ralph: WARN could not create archive directory {archive_dir}: {exc}", file=sys.stderr)
        return None

    progress_preserved = True
    for source in (paths.prd_file, paths.progress_file):
        if not source.exists():
            continue
        try:
            shutil.copy2(source, archive_dir / source.name)
        except OSError as exc:
            _append_log(paths.root, f"archive copy failed {source} -> {archive_dir}: {exc}")
            print(f"ralph: WARN could not archive {source.name}: {exc}", file=sys.stderr)
            if source == paths.progress_file:
                progress_preserved = False

    print(f"   Archived to: {archive_dir}")
    _append_log(paths.root, f"archived run label={previous_label} to {archive_dir}")

    if not progress_preserved:
        _append_log(paths.root, "progress log kept in place because its archive copy failed")
        return archive_dir
    try:
        _reset_progress_log(paths.progress_file)
    except OSError as exc:
        _append_log(paths.root, f"progress log reset failed {paths.progress_file}: {exc}")
        print(f"ralph: WARN could not reset {paths.progress_file.name}: {exc}", file=sys.stderr)
    return archive_dir
