"""
In-memory implementation of the run store.

Useful for testing. Records are held in serialized form so callers never
share mutable state with the store, and version tokens come from a
monotonic counter instead of file timestamps.
"""

import itertools
from datetime import UTC, datetime
from typing import Any

from helmsman.domain.exceptions import (
    MissingVersionTokenError,
    RunNotFoundError,
    StaleWriteError,
)
from helmsman.domain.interfaces import RunStoreInterface
from helmsman.domain.models import Run
from helmsman.domain.states import match_state
from helmsman.infrastructure.persistence.records import run_from_dict, run_to_dict


class InMemoryRunStore(RunStoreInterface):
    """Simple in-memory run store for testing."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._versions: dict[str, str] = {}
        self._counter = itertools.count(1)

    def _put(self, run: Run) -> str:
        self._records[run.id] = run_to_dict(run)
        version = str(next(self._counter))
        self._versions[run.id] = version
        return version

    def exists(self, run_id: str) -> bool:
        return run_id in self._records

    def load(self, run_id: str) -> Run:
        if run_id not in self._records:
            raise RunNotFoundError(run_id)
        return run_from_dict(self._records[run_id])

    def save(self, run: Run) -> None:
        self._put(run)

    def load_versioned(self, run_id: str) -> Run:
        run = self.load(run_id)
        run.version = self._versions[run_id]
        run.read_at = datetime.now(UTC).isoformat()
        return run

    def save_if_fresh(self, run: Run) -> str:
        if not run.version:
            raise MissingVersionTokenError(run.id)
        current = self._versions.get(run.id)
        if current != run.version:
            raise StaleWriteError(run.id, run.version, current)
        run.version = self._put(run)
        return run.version

    def list_runs(self, state_query: str | None = None) -> list[Run]:
        runs = [run_from_dict(data) for data in self._records.values()]
        if state_query:
            runs = [r for r in runs if match_state(r.state, state_query)]
        return sorted(runs, key=lambda r: r.updated, reverse=True)

    def delete(self, run_id: str) -> None:
        if run_id not in self._records:
            raise RunNotFoundError(run_id)
        del self._records[run_id]
        del self._versions[run_id]
