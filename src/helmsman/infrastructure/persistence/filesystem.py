"""
Filesystem implementation of the run store.

One JSON file per run under ``<base_dir>/runs/<run_id>.json``. The file's
modification time (nanoseconds, as a string) is the optimistic-lock
version token. Its resolution is whatever the filesystem records, so two
writes landing in the same timestamp tick cannot be told apart and the
conditional write degrades to last-writer-wins inside that window.
"""

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from helmsman.domain.exceptions import (
    MissingVersionTokenError,
    RunNotFoundError,
    StaleReadError,
    StaleWriteError,
)
from helmsman.domain.interfaces import RunStoreInterface
from helmsman.domain.models import Run
from helmsman.domain.states import match_state
from helmsman.infrastructure.persistence.records import run_from_dict, run_to_dict

logger = logging.getLogger(__name__)


def _mtime_token(path: Path) -> str | None:
    try:
        return str(path.stat().st_mtime_ns)
    except FileNotFoundError:
        return None


class FilesystemRunStore(RunStoreInterface):
    """
    Run store shared by independent processes through the filesystem.

    Writes go to a temp file in the same directory and are renamed into
    place, so readers never observe a half-written record.
    """

    def __init__(self, base_dir: str | Path):
        self._base_dir = Path(base_dir)
        self._runs_dir = self._base_dir / "runs"
        self._runs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def runs_dir(self) -> Path:
        return self._runs_dir

    def _path(self, run_id: str) -> Path:
        return self._runs_dir / f"{run_id}.json"

    def _write_atomic(self, run: Run) -> Path:
        """Write via temp file + rename (atomic on POSIX)."""
        path = self._path(run.id)
        temp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        try:
            with open(temp_path, "w") as f:
                json.dump(run_to_dict(run), f, indent=2)
                f.write("\n")
            temp_path.replace(path)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
        return path

    def _read(self, path: Path, run_id: str) -> Run:
        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError:
            raise RunNotFoundError(run_id) from None
        return run_from_dict(data)

    def exists(self, run_id: str) -> bool:
        return self._path(run_id).exists()

    def load(self, run_id: str) -> Run:
        return self._read(self._path(run_id), run_id)

    def save(self, run: Run) -> None:
        self._write_atomic(run)

    def load_versioned(self, run_id: str) -> Run:
        path = self._path(run_id)
        before = _mtime_token(path)
        if before is None:
            raise RunNotFoundError(run_id)
        read_at = datetime.now(UTC).isoformat()
        run = self._read(path, run_id)
        after = _mtime_token(path)
        if after != before:
            logger.debug("Stale read of %s: %s -> %s", run_id, before, after)
            raise StaleReadError(run_id, before, after)
        run.version = before
        run.read_at = read_at
        return run

    def save_if_fresh(self, run: Run) -> str:
        if not run.version:
            raise MissingVersionTokenError(run.id)
        path = self._path(run.id)
        current = _mtime_token(path)
        if current != run.version:
            logger.debug("Refusing stale write of %s: %s != %s", run.id, current, run.version)
            raise StaleWriteError(run.id, run.version, current)
        self._write_atomic(run)
        new_version = _mtime_token(path) or str(datetime.now(UTC).timestamp())
        run.version = new_version
        run.read_at = datetime.now(UTC).isoformat()
        return new_version

    def list_runs(self, state_query: str | None = None) -> list[Run]:
        runs: list[Run] = []
        for path in self._runs_dir.glob("*.json"):
            try:
                with open(path) as f:
                    run = run_from_dict(json.load(f))
            except (OSError, ValueError, KeyError) as e:
                logger.warning("Skipping unreadable run file %s: %s", path.name, e)
                continue
            if state_query and not match_state(run.state, state_query):
                continue
            runs.append(run)
        return sorted(runs, key=lambda r: r.updated, reverse=True)

    def delete(self, run_id: str) -> None:
        try:
            self._path(run_id).unlink()
        except FileNotFoundError:
            raise RunNotFoundError(run_id) from None
