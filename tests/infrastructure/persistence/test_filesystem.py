"""Tests for FilesystemRunStore - persistent run storage with version tokens."""

import json
import os

import pytest

from helmsman.domain.exceptions import (
    MissingVersionTokenError,
    RunNotFoundError,
    StaleReadError,
    StaleWriteError,
)
from helmsman.domain.models import Run, Transition
from helmsman.domain.verification import CheckStatus, VerificationEvent, VerificationEventType
from helmsman.infrastructure.persistence import filesystem
from helmsman.infrastructure.persistence.filesystem import FilesystemRunStore


@pytest.fixture
def sample_run() -> Run:
    return Run(
        id="run-0a1b2c3d",
        state="active/executing",
        plan_path="plans/02-01-PLAN.md",
        created="2025-01-01T12:00:00+00:00",
        updated="2025-01-01T12:05:00+00:00",
        intent="Add login",
        transitions=[
            Transition(
                from_state="ready",
                to_state="active/executing",
                at="2025-01-01T12:05:00+00:00",
                by="agent-1",
            )
        ],
        files_touched=["src/login.py"],
        verification_events=[
            VerificationEvent(
                event_type=VerificationEventType.CHECK_EXECUTED,
                at="2025-01-01T12:06:00+00:00",
                by="agent-1",
                name="tests",
                status=CheckStatus.PASS,
                exit_code=0,
                output_tail="3 passed",
            )
        ],
    )


def age_file(path, seconds=5):
    """Push a file's mtime into the past so the next write gets a new token."""
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns - seconds * 1_000_000_000))


class TestFilesystemRunStoreBasics:
    """Tests for plain load/save/list/delete."""

    def test_init_creates_runs_directory(self, tmp_path) -> None:  # noqa: ANN001
        store = FilesystemRunStore(tmp_path / ".helmsman")

        assert store.runs_dir == tmp_path / ".helmsman" / "runs"
        assert store.runs_dir.is_dir()

    def test_save_and_load(self, fs_store, sample_run) -> None:  # noqa: ANN001
        fs_store.save(sample_run)

        loaded = fs_store.load(sample_run.id)

        assert loaded == sample_run
        assert loaded.plan_ref == "02-01"

    def test_file_layout(self, fs_store, sample_run) -> None:  # noqa: ANN001
        fs_store.save(sample_run)

        data = json.loads((fs_store.runs_dir / "run-0a1b2c3d.json").read_text())

        assert data["state"] == "active/executing"
        assert data["transitions"][0] == {
            "from": "ready",
            "to": "active/executing",
            "at": "2025-01-01T12:05:00+00:00",
            "by": "agent-1",
        }
        assert data["verification"]["events"][0]["status"] == "pass"
        assert "version" not in data
        assert "plan_ref" not in data

    def test_no_temp_files_left_behind(self, fs_store, sample_run) -> None:  # noqa: ANN001
        fs_store.save(sample_run)

        assert [p.name for p in fs_store.runs_dir.iterdir()] == ["run-0a1b2c3d.json"]

    def test_failed_write_removes_temp_file(self, fs_store, sample_run, monkeypatch) -> None:  # noqa: ANN001
        fs_store.save(sample_run)
        monkeypatch.setattr(filesystem, "run_to_dict", lambda run: {"id": run.id, "bad": object()})

        sample_run.intent = "lost"
        with pytest.raises(TypeError):
            fs_store.save(sample_run)

        assert [p.name for p in fs_store.runs_dir.iterdir()] == ["run-0a1b2c3d.json"]
        assert fs_store.load(sample_run.id).intent == "Add login"

    def test_load_missing(self, fs_store) -> None:  # noqa: ANN001
        with pytest.raises(RunNotFoundError):
            fs_store.load("run-missing")
        with pytest.raises(RunNotFoundError):
            fs_store.load_versioned("run-missing")

    def test_list_filters_and_sorts(self, fs_store, sample_run) -> None:  # noqa: ANN001
        fs_store.save(sample_run)
        fs_store.save(
            Run(
                id="run-ffff0000",
                state="ready",
                plan_path="plans/02-02-PLAN.md",
                created="2025-01-01T12:00:00+00:00",
                updated="2025-01-01T13:00:00+00:00",
            )
        )

        assert [r.id for r in fs_store.list_runs()] == ["run-ffff0000", "run-0a1b2c3d"]
        assert [r.id for r in fs_store.list_runs("active")] == ["run-0a1b2c3d"]

    def test_list_skips_unreadable_files(self, fs_store, sample_run) -> None:  # noqa: ANN001
        fs_store.save(sample_run)
        (fs_store.runs_dir / "broken.json").write_text("{not json")

        assert [r.id for r in fs_store.list_runs()] == [sample_run.id]

    def test_legacy_records_are_migrated(self, fs_store) -> None:  # noqa: ANN001
        (fs_store.runs_dir / "old.json").write_text(
            json.dumps({"run_id": "old", "state": "active", "plan_path": "plans/01-01-PLAN.md"})
        )

        run = fs_store.load("old")

        assert run.id == "old"
        assert run.state == "active/executing"
        assert run.verification_events == []

    def test_delete(self, fs_store, sample_run) -> None:  # noqa: ANN001
        fs_store.save(sample_run)

        fs_store.delete(sample_run.id)

        assert not fs_store.exists(sample_run.id)
        with pytest.raises(RunNotFoundError):
            fs_store.delete(sample_run.id)


class TestFilesystemRunStoreVersioning:
    """Tests for versioned reads and conditional writes."""

    def test_versioned_load_sets_token(self, fs_store, sample_run) -> None:  # noqa: ANN001
        fs_store.save(sample_run)

        run = fs_store.load_versioned(sample_run.id)

        expected = str((fs_store.runs_dir / "run-0a1b2c3d.json").stat().st_mtime_ns)
        assert run.version == expected
        assert run.read_at is not None

    def test_fresh_write_succeeds_and_refreshes_token(self, fs_store, sample_run) -> None:  # noqa: ANN001
        fs_store.save(sample_run)
        age_file(fs_store.runs_dir / "run-0a1b2c3d.json")
        run = fs_store.load_versioned(sample_run.id)
        old_version = run.version

        run.intent = "changed"
        new_version = fs_store.save_if_fresh(run)

        assert new_version != old_version
        assert run.version == new_version
        assert fs_store.load(sample_run.id).intent == "changed"

    def test_stale_write_rejected(self, fs_store, sample_run) -> None:  # noqa: ANN001
        fs_store.save(sample_run)
        path = fs_store.runs_dir / "run-0a1b2c3d.json"
        age_file(path)
        mine = fs_store.load_versioned(sample_run.id)

        other = fs_store.load(sample_run.id)
        other.intent = "theirs"
        fs_store.save(other)

        mine.intent = "mine"
        with pytest.raises(StaleWriteError) as exc_info:
            fs_store.save_if_fresh(mine)

        assert exc_info.value.retriable
        assert fs_store.load(sample_run.id).intent == "theirs"

    def test_change_during_read_is_a_stale_read(self, fs_store, sample_run, monkeypatch) -> None:  # noqa: ANN001
        fs_store.save(sample_run)
        path = fs_store.runs_dir / "run-0a1b2c3d.json"
        age_file(path)
        before = str(path.stat().st_mtime_ns)
        writer = FilesystemRunStore(fs_store.runs_dir.parent)
        read = fs_store._read

        def read_then_overwrite(path, run_id):  # noqa: ANN001, ANN202
            run = read(path, run_id)
            other = writer.load(run_id)
            other.intent = "rewritten"
            writer.save(other)
            return run

        monkeypatch.setattr(fs_store, "_read", read_then_overwrite)

        with pytest.raises(StaleReadError) as exc_info:
            fs_store.load_versioned(sample_run.id)

        assert exc_info.value.retriable
        assert exc_info.value.expected_version == before
        assert exc_info.value.actual_version == str(path.stat().st_mtime_ns)
        assert exc_info.value.actual_version != before

    def test_write_after_delete_rejected(self, fs_store, sample_run) -> None:  # noqa: ANN001
        fs_store.save(sample_run)
        run = fs_store.load_versioned(sample_run.id)
        fs_store.delete(sample_run.id)

        with pytest.raises(StaleWriteError):
            fs_store.save_if_fresh(run)

    def test_conditional_write_requires_token(self, fs_store, sample_run) -> None:  # noqa: ANN001
        fs_store.save(sample_run)

        with pytest.raises(MissingVersionTokenError):
            fs_store.save_if_fresh(fs_store.load(sample_run.id))

    def test_two_stores_share_one_directory(self, tmp_path, sample_run) -> None:  # noqa: ANN001
        first = FilesystemRunStore(tmp_path / ".helmsman")
        second = FilesystemRunStore(tmp_path / ".helmsman")
        first.save(sample_run)
        age_file(first.runs_dir / "run-0a1b2c3d.json")

        a = first.load_versioned(sample_run.id)
        b = second.load_versioned(sample_run.id)
        a.claimed_by = "agent-a"
        first.save_if_fresh(a)

        b.claimed_by = "agent-b"
        with pytest.raises(StaleWriteError):
            second.save_if_fresh(b)
        assert second.load(sample_run.id).claimed_by == "agent-a"
