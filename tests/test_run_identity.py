from __future__ import annotations

import json
from datetime import date
from pathlib import Path

import pytest

import ralph.archive as archive_module
from ralph.archive import _archive_folder_name, archive_previous_run, detect_run_change
from ralph.config import build_loop_config
from ralph.loop import prepare_run
from ralph.models import RalphPaths, RunDocument

TODAY = date(2026, 3, 14)


def _make_root(tmp_path: Path) -> Path:
    root = tmp_path / "tool"
    root.mkdir()
    (root / "prompt.md").write_text("# prompt\n", encoding="utf-8")
    return root


def _write_prd(root: Path, branch: str | None) -> None:
    payload: dict = {"user_stories": [{"id": "US-001", "passes": False, "status": "pending"}]}
    if branch is not None:
        payload["branchName"] = branch
    (root / "prd.json").write_text(json.dumps(payload, indent=2), encoding="utf-8")


@pytest.mark.parametrize(
    ("document", "last_label", "expected"),
    [
        (None, "ralph/a", False),
        (RunDocument(branch_name=""), "ralph/a", False),
        (RunDocument(branch_name="ralph/b"), "", False),
        (RunDocument(branch_name="ralph/a"), "ralph/a", False),
        (RunDocument(branch_name="ralph/b"), "ralph/a", True),
        (RunDocument(branch_name="ralph/A"), "ralph/a", True),
    ],
)
def test_detect_run_change(document: RunDocument | None, last_label: str, expected: bool) -> None:
    change = detect_run_change(document, last_label)

    assert change.changed is expected
    assert change.previous_label == last_label


def test_archive_folder_name_strips_prefix_and_flattens_separators() -> None:
    assert _archive_folder_name("ralph/login-page", today=TODAY, branch_prefix="ralph/") == "2026-03-14-login-page"
    assert _archive_folder_name("feature/x/y", today=TODAY, branch_prefix="ralph/") == "2026-03-14-feature-x-y"
    assert _archive_folder_name("ralph/ok", today=TODAY, branch_prefix="") == "2026-03-14-ralph-ok"


def test_label_change_archives_documents_and_resets_progress(tmp_path: Path) -> None:
    root = _make_root(tmp_path)
    _write_prd(root, "ralph/beta")
    previous_prd = (root / "prd.json").read_text(encoding="utf-8")
    (root / "progress.txt").write_text("# Ralph Progress Log\nStarted: x\n---\nold notes\n", encoding="utf-8")
    (root / ".last-branch").write_text("ralph/alpha\n", encoding="utf-8")
    config = build_loop_config(root, max_iterations=1)

    archived_to = prepare_run(config, today=TODAY)

    assert archived_to == root / "archive" / "2026-03-14-alpha"
    assert (archived_to / "prd.json").read_text(encoding="utf-8") == previous_prd
    assert "old notes" in (archived_to / "progress.txt").read_text(encoding="utf-8")
    live_progress = (root / "progress.txt").read_text(encoding="utf-8").splitlines()
    assert live_progress[0] == "# Ralph Progress Log"
    assert live_progress[1].startswith("Started: ")
    assert live_progress[2] == "---"
    assert len(live_progress) == 3
    assert (root / ".last-branch").read_text(encoding="utf-8").strip() == "ralph/beta"


def test_unchanged_label_does_not_archive_or_reset(tmp_path: Path) -> None:
    root = _make_root(tmp_path)
    _write_prd(root, "ralph/alpha")
    (root / "progress.txt").write_text("# Ralph Progress Log\nStarted: x\n---\nkeep me\n", encoding="utf-8")
    (root / ".last-branch").write_text("ralph/alpha\n", encoding="utf-8")
    config = build_loop_config(root, max_iterations=1)

    assert prepare_run(config, today=TODAY) is None
    assert prepare_run(config, today=TODAY) is None

    assert not (root / "archive").exists()
    assert "keep me" in (root / "progress.txt").read_text(encoding="utf-8")


def test_first_invocation_writes_marker_and_creates_progress(tmp_path: Path) -> None:
    root = _make_root(tmp_path)
    _write_prd(root, "ralph/alpha")
    config = build_loop_config(root, max_iterations=1)

    assert prepare_run(config, today=TODAY) is None

    assert (root / ".last-branch").read_text(encoding="utf-8").strip() == "ralph/alpha"
    assert (root / "progress.txt").read_text(encoding="utf-8").startswith("# Ralph Progress Log\n")
    assert not (root / "archive").exists()


def test_missing_label_keeps_existing_marker(tmp_path: Path) -> None:
    root = _make_root(tmp_path)
    _write_prd(root, None)
    (root / ".last-branch").write_text("ralph/alpha\n", encoding="utf-8")
    config = build_loop_config(root, max_iterations=1)

    assert prepare_run(config, today=TODAY) is None

    assert (root / ".last-branch").read_text(encoding="utf-8").strip() == "ralph/alpha"


def test_same_day_rearchive_uses_new_directory(tmp_path: Path) -> None:
    root = _make_root(tmp_path)
    paths = RalphPaths.under(root)
    _write_prd(root, "ralph/beta")
    (root / "progress.txt").write_text("first\n", encoding="utf-8")

    first = archive_previous_run(paths, "ralph/alpha", today=TODAY, branch_prefix="ralph/")
    (root / "progress.txt").write_text("second\n", encoding="utf-8")
    second = archive_previous_run(paths, "ralph/alpha", today=TODAY, branch_prefix="ralph/")

    assert first == root / "archive" / "2026-03-14-alpha"
    assert second == root / "archive" / "2026-03-14-alpha-2"
    assert (first / "progress.txt").read_text(encoding="utf-8") == "first\n"
    assert (second / "progress.txt").read_text(encoding="utf-8") == "second\n"


def test_archive_skips_missing_files(tmp_path: Path) -> None:
    root = _make_root(tmp_path)
    paths = RalphPaths.under(root)

    archived_to = archive_previous_run(paths, "ralph/alpha", today=TODAY, branch_prefix="ralph/")

    assert archived_to is not None
    assert list(archived_to.iterdir()) == []
    assert (root / "progress.txt").exists()


def test_archive_copy_failure_is_logged_and_progress_kept(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    root = _make_root(tmp_path)
    paths = RalphPaths.under(root)
    _write_prd(root, "ralph/beta")
    (root / "progress.txt").write_text("precious notes\n", encoding="utf-8")

    def _failing_copy(_src, _dst):
        raise PermissionError("read-only archive")

    monkeypatch.setattr(archive_module.shutil, "copy2", _failing_copy)

    archived_to = archive_previous_run(paths, "ralph/alpha", today=TODAY, branch_prefix="ralph/")

    assert archived_to == root / "archive" / "2026-03-14-alpha"
    assert (root / "progress.txt").read_text(encoding="utf-8") == "precious notes\n"
    log_text = (root / ".ralph" / "logs" / "ralph.log").read_text(encoding="utf-8")
    assert "archive copy failed" in log_text
