"""
Persistence contract for the experimentation engine.

The engine keeps no state of its own: experiments, sticky assignments and raw
metric events all live behind an ExperimentStore. The only write that needs an
atomicity guarantee is ``put_assignment_if_absent``; implementations delegate
it to whatever primitive they have (unique constraint, conditional put, lock).
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .schema import Assignment, Experiment, ExperimentStatus, MetricEvent, MetricSummary
from .stats.descriptive import summarize_values

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """The persistence collaborator could not complete a read or write."""


class ExperimentStore(ABC):
    """Read/write contract the engine needs from persistence."""

    @abstractmethod
    def save_experiment(self, experiment: Experiment) -> None:
        ...

    @abstractmethod
    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        ...

    @abstractmethod
    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        ...

    @abstractmethod
    def get_assignment(self, experiment_id: str, subject_id: str) -> Optional[str]:
        """Return the stored variant id, or None."""

    @abstractmethod
    def put_assignment_if_absent(self, assignment: Assignment) -> str:
        """
        Insert the assignment unless one exists for (experiment, subject).

        Returns:
            The variant id that is stored after the call (the race winner)
        """

    @abstractmethod
    def count_assignments(self, experiment_id: str) -> Dict[str, int]:
        """Assignment counts keyed by variant id."""

    @abstractmethod
    def record_metric_event(self, event: MetricEvent) -> bool:
        """
        Append a metric event. Idempotent on ``event.event_id``.

        Returns:
            True if written, False if the event id was already present
        """

    @abstractmethod
    def query_metric_events(self, experiment_id: str, variant_id: str, metric_id: str) -> MetricSummary:
        ...

    @abstractmethod
    def purge_experiment(self, experiment_id: str) -> None:
        """Drop assignments and metric events (experiment record is kept)."""


class InMemoryExperimentStore(ExperimentStore):
    """Process-local store. Suitable for tests and single-instance deployments."""

    def __init__(self):
        self._lock = threading.RLock()
        self._experiments: Dict[str, Experiment] = {}
        self._assignments: Dict[str, Dict[str, Assignment]] = {}
        self._events: Dict[str, Dict[str, MetricEvent]] = {}

    def save_experiment(self, experiment: Experiment) -> None:
        with self._lock:
            self._experiments[experiment.id] = copy.deepcopy(experiment)

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        with self._lock:
            exp = self._experiments.get(experiment_id)
            return copy.deepcopy(exp) if exp is not None else None

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        with self._lock:
            exps = [copy.deepcopy(e) for e in self._experiments.values()]
        if status is not None:
            exps = [e for e in exps if e.status == status]
        return exps

    def get_assignment(self, experiment_id: str, subject_id: str) -> Optional[str]:
        with self._lock:
            a = self._assignments.get(experiment_id, {}).get(subject_id)
            return a.variant_id if a else None

    def put_assignment_if_absent(self, assignment: Assignment) -> str:
        with self._lock:
            by_subject = self._assignments.setdefault(assignment.experiment_id, {})
            existing = by_subject.get(assignment.subject_id)
            if existing is not None:
                return existing.variant_id
            by_subject[assignment.subject_id] = assignment
            return assignment.variant_id

    def count_assignments(self, experiment_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        with self._lock:
            for a in self._assignments.get(experiment_id, {}).values():
                counts[a.variant_id] = counts.get(a.variant_id, 0) + 1
        return counts

    def record_metric_event(self, event: MetricEvent) -> bool:
        with self._lock:
            events = self._events.setdefault(event.experiment_id, {})
            if event.event_id in events:
                return False
            events[event.event_id] = event
            return True

    def query_metric_events(self, experiment_id: str, variant_id: str, metric_id: str) -> MetricSummary:
        with self._lock:
            values = [
                e.value
                for e in self._events.get(experiment_id, {}).values()
                if e.variant_id == variant_id and e.metric_id == metric_id
            ]
        return summarize_values(values)

    def purge_experiment(self, experiment_id: str) -> None:
        with self._lock:
            n_assign = len(self._assignments.pop(experiment_id, {}))
            n_events = len(self._events.pop(experiment_id, {}))
        logger.info(f"Purged experiment {experiment_id}: {n_assign} assignments, {n_events} metric events")
