"""
Experiment lifecycle controller.

Orchestrates the store, assignment, aggregation, analysis and guardrail
pieces behind the operations the HTTP surface exposes. All state lives in the
injected ExperimentStore; the controller itself holds only collaborators, so
any number of instances can serve requests side by side.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from . import lifecycle
from .aggregator import MetricAggregator
from .analyze import run_analysis
from .assignment import AssignmentStore
from .collaborators import FeatureFlagClient, InMemoryFeatureFlags, LoggingNotifier, Notifier
from .config import EngineSettings, get_settings
from .errors import ErrorCode, ExperimentError, not_found, validation_error
from .lifecycle import ACTIVE_STATUSES, Effect, EffectKind, Transition
from .schema import (
    Experiment,
    ExperimentResults,
    ExperimentStatus,
    ExperimentSummary,
    MetricEvent,
    SubjectContext,
    Variant,
)
from .stats import RandomSource
from .event_store import CsvExperimentStore
from .store import ExperimentStore, InMemoryExperimentStore, StoreError

logger = logging.getLogger(__name__)


class ExperimentController:
    """Entry point for every engine operation."""

    def __init__(
        self,
        store: ExperimentStore,
        flags: Optional[FeatureFlagClient] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.store = store
        self.flags = flags or InMemoryFeatureFlags()
        self.notifier = notifier or LoggingNotifier()
        self.settings = settings or get_settings()
        self.assignments = AssignmentStore(store)
        self.aggregator = MetricAggregator(store)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get(self, experiment_id: str) -> Experiment:
        try:
            experiment = self.store.get_experiment(experiment_id)
        except StoreError as e:
            raise ExperimentError(ErrorCode.RECORD_FAILED, f"Failed to load {experiment_id}: {e}") from e
        if experiment is None:
            raise not_found(f"Experiment {experiment_id} not found")
        return experiment

    def _count_assignments(self, experiment_id: str) -> Dict[str, int]:
        try:
            return self.store.count_assignments(experiment_id)
        except StoreError as e:
            raise ExperimentError(ErrorCode.AGGREGATION_FAILED, f"Failed to count assignments: {e}") from e

    def _apply(self, transition: Transition) -> Experiment:
        """
        Persist a transition and perform its effects.

        Flag roll-outs and purges run before the new status is saved, so a
        failure there leaves the experiment where it was. Events go out only
        after the save and their delivery failures are logged, never raised.
        """
        experiment, effects = transition
        for effect in effects:
            if effect.kind == EffectKind.SET_FLAG:
                p = effect.payload
                self.flags.set_value(p["flag_id"], p["value"], p["rollout_percent"])
            elif effect.kind == EffectKind.PURGE:
                try:
                    self.store.purge_experiment(effect.payload["experiment_id"])
                except StoreError as e:
                    raise ExperimentError(ErrorCode.RECORD_FAILED, f"Purge failed: {e}") from e

        try:
            self.store.save_experiment(experiment)
        except StoreError as e:
            raise ExperimentError(ErrorCode.RECORD_FAILED, f"Failed to save {experiment.id}: {e}") from e
        logger.info(f"Experiment {experiment.id} -> {experiment.status.value}")

        for effect in effects:
            if effect.kind == EffectKind.EMIT:
                self._emit(effect)
        return experiment

    def _emit(self, effect: Effect) -> None:
        try:
            self.notifier.emit(effect.name, effect.payload)
        except Exception as e:
            logger.warning(f"Event delivery failed for {effect.name}: {e}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_experiment(self, definition: Union[Experiment, Dict[str, Any]]) -> Experiment:
        if isinstance(definition, Experiment):
            experiment = definition
        else:
            definition = dict(definition)
            definition.setdefault("significance_level", self.settings.default_significance_level)
            definition.setdefault("power", self.settings.default_power)
            experiment = Experiment.from_dict(definition)
        try:
            existing = self.store.get_experiment(experiment.id)
        except StoreError as e:
            raise ExperimentError(ErrorCode.RECORD_FAILED, f"Failed to load {experiment.id}: {e}") from e
        if existing is not None:
            raise validation_error(f"Experiment {experiment.id} already exists")
        return self._apply(lifecycle.create(experiment))

    def approve(self, experiment_id: str, approved_by: str) -> Experiment:
        return self._apply(lifecycle.approve(self._get(experiment_id), approved_by))

    def start(self, experiment_id: str, approval_token: Optional[str] = None) -> Experiment:
        return self._apply(lifecycle.start(self._get(experiment_id), approval_token))

    def pause(self, experiment_id: str, reason: str = "manual") -> Experiment:
        return self._apply(lifecycle.pause(self._get(experiment_id), reason))

    def resume(self, experiment_id: str) -> Experiment:
        return self._apply(lifecycle.resume(self._get(experiment_id)))

    def stop(self, experiment_id: str, reason: str) -> Experiment:
        return self._apply(lifecycle.stop(self._get(experiment_id), reason))

    def complete(self, experiment_id: str, winning_variant_id: str) -> Experiment:
        return self._apply(lifecycle.complete(self._get(experiment_id), winning_variant_id))

    def archive(self, experiment_id: str) -> Experiment:
        return self._apply(lifecycle.archive(self._get(experiment_id)))

    # ------------------------------------------------------------------
    # Assignment and metrics
    # ------------------------------------------------------------------

    def assign(
        self,
        experiment_id: str,
        subject_id: str,
        context: Optional[SubjectContext] = None,
        preferred_variant: Optional[str] = None,
    ) -> Variant:
        """
        Sticky assignment of a subject to a variant.

        Raises:
            ExperimentError: NOT_FOUND, NOT_RUNNING, NOT_ELIGIBLE,
                NOT_IN_TRAFFIC (the last two are benign) or RECORD_FAILED
        """
        experiment = self._get(experiment_id)
        lifecycle.require_running(experiment)
        try:
            variant_id = self.assignments.get_or_create(experiment, subject_id, context, preferred_variant)
        except ExperimentError as e:
            if e.benign:
                logger.debug(f"No assignment for {subject_id} in {experiment_id}: {e.code.value}")
            raise
        variant = experiment.get_variant(variant_id)
        if variant is None:
            raise not_found(f"Stored variant {variant_id} no longer exists in {experiment_id}")
        return variant

    def record_metric_event(
        self,
        experiment_id: str,
        subject_id: str,
        metric_id: str,
        value: float,
        event_id: Optional[str] = None,
    ) -> bool:
        """
        Record one metric observation for an assigned subject.

        Safe to retry with the same ``event_id``.

        Returns:
            True if written, False if the event id was already recorded
        """
        experiment = self._get(experiment_id)
        if experiment.status not in ACTIVE_STATUSES:
            raise ExperimentError(
                ErrorCode.NOT_RUNNING,
                f"Experiment {experiment_id} is {experiment.status.value}, not collecting metrics",
            )
        known = {experiment.primary_metric.id}
        known.update(m.id for m in experiment.secondary_metrics)
        known.update(g.metric.id for g in experiment.guardrail_metrics)
        if metric_id not in known:
            raise not_found(f"Metric {metric_id} not defined for {experiment_id}")

        try:
            variant_id = self.store.get_assignment(experiment_id, subject_id)
        except StoreError as e:
            raise ExperimentError(ErrorCode.RECORD_FAILED, f"Assignment lookup failed: {e}") from e
        if variant_id is None:
            raise not_found(f"Subject {subject_id} not assigned to {experiment_id}")

        event = MetricEvent(
            experiment_id=experiment_id,
            subject_id=subject_id,
            variant_id=variant_id,
            metric_id=metric_id,
            value=float(value),
        )
        if event_id:
            event.event_id = event_id
        try:
            return self.store.record_metric_event(event)
        except StoreError as e:
            raise ExperimentError(ErrorCode.RECORD_FAILED, f"Failed to record metric: {e}") from e

    # ------------------------------------------------------------------
    # Analysis and queries
    # ------------------------------------------------------------------

    def analyze(self, experiment_id: str) -> ExperimentResults:
        """
        Analyze an experiment from scratch.

        Guardrail violations pause a running experiment whatever the primary
        metric shows; they are reported in the results, not raised.
        """
        experiment = self._get(experiment_id)
        counts = self._count_assignments(experiment_id)

        results = run_analysis(
            experiment,
            self.aggregator,
            assignment_counts=counts,
            settings=self.settings,
            random_source=RandomSource(self.settings.random_seed),
        )

        if results.guardrail_violations and experiment.status == ExperimentStatus.RUNNING:
            logger.warning(f"Experiment {experiment_id} auto-paused due to guardrail violation")
            experiment = self._apply(
                lifecycle.pause(experiment, reason="guardrail", violations=results.guardrail_violations)
            )
            results.status = experiment.status
        elif results.guardrail_violations:
            self._emit(lifecycle.guardrail_violated(experiment, results.guardrail_violations))
        return results

    def get_summary(self, experiment_id: str) -> ExperimentSummary:
        experiment = self._get(experiment_id)
        counts = self._count_assignments(experiment_id)
        total = sum(counts.values())

        days_running = 0
        if experiment.start_date:
            end = experiment.end_date or datetime.now(timezone.utc)
            days_running = max((end - experiment.start_date).days, 0)

        target = experiment.target_sample_size
        planned_total = target * len(experiment.variants)
        percent = min(100, round(total / planned_total * 100)) if planned_total > 0 else 0

        return ExperimentSummary(
            id=experiment.id,
            name=experiment.name,
            status=experiment.status,
            category=experiment.category,
            hypothesis=experiment.hypothesis,
            total_participants=total,
            variant_counts={v.name: counts.get(v.id, 0) for v in experiment.variants},
            days_running=days_running,
            target_sample_size=target,
            percent_complete=percent,
        )

    def list_experiments(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        try:
            return self.store.list_experiments(status)
        except StoreError as e:
            raise ExperimentError(ErrorCode.RECORD_FAILED, f"Failed to list experiments: {e}") from e


def build_store(settings: Optional[EngineSettings] = None) -> ExperimentStore:
    """Store backend selected by ``settings.store_backend``."""
    settings = settings or get_settings()
    if settings.store_backend == "csv":
        return CsvExperimentStore(settings.data_dir)
    return InMemoryExperimentStore()


def build_controller(
    settings: Optional[EngineSettings] = None,
    flags: Optional[FeatureFlagClient] = None,
    notifier: Optional[Notifier] = None,
) -> ExperimentController:
    settings = settings or get_settings()
    return ExperimentController(build_store(settings), flags=flags, notifier=notifier, settings=settings)
