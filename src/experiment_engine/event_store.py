"""
File-backed experiment store.

Writes one directory per experiment under data/experiments/<experiment_id>/:
experiment.json, assignments.csv and metric_events.csv. Reads and writes go
through pandas. Atomic insert-if-absent is guaranteed within one process by a
lock; multi-instance deployments need a store with a real unique constraint.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .schema import Assignment, Experiment, ExperimentStatus, MetricEvent, MetricSummary
from .stats.descriptive import summarize_values
from .store import ExperimentStore, StoreError

logger = logging.getLogger(__name__)

DEFAULT_STORE_DIR = "data/experiments"

ASSIGNMENT_COLUMNS = ["experiment_id", "subject_id", "variant_id", "assigned_at"]
EVENT_COLUMNS = ["event_id", "experiment_id", "subject_id", "variant_id", "metric_id", "value", "recorded_at"]


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _read_table(path: Path, columns: List[str]) -> pd.DataFrame:
    if not path.exists():
        return pd.DataFrame(columns=columns)
    try:
        return pd.read_csv(path, dtype={"subject_id": str, "variant_id": str, "event_id": str, "metric_id": str})
    except (OSError, ValueError) as e:
        raise StoreError(f"Failed to read {path}: {e}") from e


def _append_row(path: Path, row: dict, columns: List[str]) -> None:
    _ensure_dir(path.parent)
    df = pd.DataFrame([row], columns=columns)
    try:
        df.to_csv(path, mode="a", header=not path.exists(), index=False)
    except OSError as e:
        raise StoreError(f"Failed to write {path}: {e}") from e


class CsvExperimentStore(ExperimentStore):
    """ExperimentStore over CSV/JSON files in a base directory."""

    def __init__(self, base_dir: str = DEFAULT_STORE_DIR):
        self.base_dir = Path(base_dir)
        self._lock = threading.RLock()

    def _exp_dir(self, experiment_id: str) -> Path:
        return self.base_dir / experiment_id

    def _experiment_path(self, experiment_id: str) -> Path:
        return self._exp_dir(experiment_id) / "experiment.json"

    def _assignments_path(self, experiment_id: str) -> Path:
        return self._exp_dir(experiment_id) / "assignments.csv"

    def _events_path(self, experiment_id: str) -> Path:
        return self._exp_dir(experiment_id) / "metric_events.csv"

    def save_experiment(self, experiment: Experiment) -> None:
        path = self._experiment_path(experiment.id)
        with self._lock:
            _ensure_dir(path.parent)
            try:
                with open(path, "w") as f:
                    json.dump(experiment.to_dict(), f, indent=2)
            except OSError as e:
                raise StoreError(f"Failed to write {path}: {e}") from e

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        path = self._experiment_path(experiment_id)
        with self._lock:
            if not path.exists():
                return None
            try:
                with open(path) as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                raise StoreError(f"Failed to read {path}: {e}") from e
        return Experiment.from_dict(data)

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        if not self.base_dir.exists():
            return []
        exps = []
        for d in sorted(self.base_dir.iterdir()):
            if d.is_dir() and (d / "experiment.json").exists():
                exp = self.get_experiment(d.name)
                if exp is not None and (status is None or exp.status == status):
                    exps.append(exp)
        return exps

    def get_assignment(self, experiment_id: str, subject_id: str) -> Optional[str]:
        with self._lock:
            df = _read_table(self._assignments_path(experiment_id), ASSIGNMENT_COLUMNS)
        match = df[df["subject_id"] == subject_id]
        if match.empty:
            return None
        return str(match.iloc[0]["variant_id"])

    def put_assignment_if_absent(self, assignment: Assignment) -> str:
        with self._lock:
            existing = self.get_assignment(assignment.experiment_id, assignment.subject_id)
            if existing is not None:
                return existing
            _append_row(
                self._assignments_path(assignment.experiment_id),
                {
                    "experiment_id": assignment.experiment_id,
                    "subject_id": assignment.subject_id,
                    "variant_id": assignment.variant_id,
                    "assigned_at": assignment.assigned_at.isoformat(),
                },
                ASSIGNMENT_COLUMNS,
            )
            return assignment.variant_id

    def count_assignments(self, experiment_id: str) -> Dict[str, int]:
        with self._lock:
            df = _read_table(self._assignments_path(experiment_id), ASSIGNMENT_COLUMNS)
        if df.empty:
            return {}
        return {str(k): int(v) for k, v in df["variant_id"].value_counts().items()}

    def record_metric_event(self, event: MetricEvent) -> bool:
        path = self._events_path(event.experiment_id)
        with self._lock:
            df = _read_table(path, EVENT_COLUMNS)
            if not df.empty and (df["event_id"] == event.event_id).any():
                return False
            _append_row(
                path,
                {
                    "event_id": event.event_id,
                    "experiment_id": event.experiment_id,
                    "subject_id": event.subject_id,
                    "variant_id": event.variant_id,
                    "metric_id": event.metric_id,
                    "value": event.value,
                    "recorded_at": event.recorded_at.isoformat(),
                },
                EVENT_COLUMNS,
            )
            return True

    def query_metric_events(self, experiment_id: str, variant_id: str, metric_id: str) -> MetricSummary:
        with self._lock:
            df = _read_table(self._events_path(experiment_id), EVENT_COLUMNS)
        if df.empty:
            return summarize_values([])
        sub = df[(df["variant_id"] == variant_id) & (df["metric_id"] == metric_id)]
        return summarize_values(sub["value"].astype(float).tolist())

    def purge_experiment(self, experiment_id: str) -> None:
        with self._lock:
            for path in (self._assignments_path(experiment_id), self._events_path(experiment_id)):
                if path.exists():
                    path.unlink()
        logger.info(f"Purged assignments and metric events for {experiment_id} under {self.base_dir}")
