"""
Bulk export/import of runs as newline-delimited JSON.

The export is meant to be committed to version control: the first line
is metadata, then one run per line sorted by id so diffs stay small.
Import reconciles per record by ``updated`` timestamp and never aborts
the batch on a bad record.
"""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import jsonschema

from helmsman.domain.claims import parse_timestamp
from helmsman.domain.interfaces import RunStoreInterface
from helmsman.domain.models import SyncStats
from helmsman.domain.states import is_valid_state
from helmsman.infrastructure.persistence.records import run_from_dict, run_to_dict
from helmsman.schemas import format_validation_error, validate_run

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = "1.0"


class JsonlRunSync:
    """Exports and imports every run in a store through one JSONL file."""

    def __init__(self, store: RunStoreInterface) -> None:
        self._store = store

    def export(self, path: str | Path) -> SyncStats:
        """
        Write all runs to ``path``, replacing it.

        Returns:
            SyncStats with ``exported`` set
        """
        runs = sorted(self._store.list_runs(), key=lambda r: r.id)
        metadata = {
            "version": EXPORT_FORMAT_VERSION,
            "exported_at": datetime.now(UTC).isoformat(),
            "run_count": len(runs),
        }
        lines = [json.dumps(metadata)]
        lines.extend(json.dumps(run_to_dict(run)) for run in runs)

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(path.suffix + ".tmp")
        temp_path.write_text("\n".join(lines) + "\n")
        temp_path.replace(path)

        logger.info("Exported %d runs to %s", len(runs), path)
        return SyncStats(exported=len(runs))

    def _reconcile(self, data: dict[str, Any]) -> str:
        """Apply one record; returns created, updated or unchanged."""
        incoming = run_from_dict(data)
        if not is_valid_state(incoming.state):
            raise ValueError(f"unknown state '{incoming.state}'")
        if not self._store.exists(incoming.id):
            self._store.save(incoming)
            return "created"
        local = self._store.load(incoming.id)
        if parse_timestamp(incoming.updated) > parse_timestamp(local.updated):
            self._store.save(incoming)
            return "updated"
        return "unchanged"

    def import_(self, path: str | Path) -> SyncStats:
        """
        Reconcile the store with the runs in ``path``.

        Missing runs are created; a local run is replaced only when the
        incoming ``updated`` is strictly newer. Malformed lines, records
        without an id and records that fail validation are counted as
        skipped. A missing file yields all-zero stats.
        """
        path = Path(path)
        if not path.exists():
            return SyncStats()

        lines = [line for line in path.read_text().splitlines() if line.strip()]
        counts = {"created": 0, "updated": 0, "unchanged": 0, "skipped": 0}
        errors: list[str] = []

        # First line is metadata
        for lineno, line in enumerate(lines[1:], start=2):
            try:
                data = json.loads(line)
                if not isinstance(data, dict) or not (data.get("id") or data.get("run_id")):
                    raise ValueError("record has no id")
                validate_run(data)
                outcome = self._reconcile(data)
            except jsonschema.ValidationError as e:
                errors.append(f"line {lineno}: {format_validation_error(e)}")
                counts["skipped"] += 1
            except (ValueError, KeyError, TypeError, OSError) as e:
                errors.append(f"line {lineno}: {e}")
                counts["skipped"] += 1
            else:
                counts[outcome] += 1

        for error in errors:
            logger.warning("Skipped record during import from %s: %s", path, error)
        logger.info(
            "Imported %s: %d created, %d updated, %d unchanged, %d skipped",
            path,
            counts["created"],
            counts["updated"],
            counts["unchanged"],
            counts["skipped"],
        )
        return SyncStats(errors=tuple(errors), **counts)
