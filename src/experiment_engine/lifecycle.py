"""
Experiment lifecycle state machine.

draft -> review -> running -> {paused, completed, stopped} -> archived

Transitions are pure: each takes an experiment and returns the updated copy
plus the side effects (events to emit, flag roll-outs, data purges) that a
caller must perform. Only paused -> running goes backwards.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import ErrorCode, ExperimentError, not_found, validation_error
from .schema import TERMINAL_STATUSES, Experiment, ExperimentStatus, GuardrailViolation

ACTIVE_STATUSES = frozenset({ExperimentStatus.RUNNING, ExperimentStatus.PAUSED})


class EffectKind(str, Enum):
    EMIT = "emit"  # notification / event bus
    SET_FLAG = "set_flag"  # feature-flag roll-out
    PURGE = "purge"  # drop assignments and metric events


@dataclass(frozen=True)
class Effect:
    kind: EffectKind
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)


Transition = Tuple[Experiment, List[Effect]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _emit(event_name: str, **payload) -> Effect:
    return Effect(EffectKind.EMIT, event_name, payload)


def _invalid(experiment: Experiment, action: str) -> ExperimentError:
    return ExperimentError(
        ErrorCode.INVALID_TRANSITION,
        f"Cannot {action} experiment {experiment.id} in status {experiment.status.value}",
    )


def require_running(experiment: Experiment) -> None:
    if experiment.status != ExperimentStatus.RUNNING:
        raise ExperimentError(
            ErrorCode.NOT_RUNNING,
            f"Experiment {experiment.id} is {experiment.status.value}, not running",
        )


def create(experiment: Experiment) -> Transition:
    """Validate a new definition; high/critical safety goes straight to review."""
    if experiment.status != ExperimentStatus.DRAFT:
        raise validation_error(f"New experiments must be in draft, got {experiment.status.value}")
    experiment.validate()

    status = ExperimentStatus.DRAFT
    if experiment.safety_classification.requires_approval:
        status = ExperimentStatus.REVIEW
    created = replace(experiment, status=status)
    return created, [
        _emit(
            "experiment.created",
            experiment_id=created.id,
            name=created.name,
            status=status.value,
            feature_flag_id=created.feature_flag_id,
            flag_values=[v.feature_flag_value for v in created.variants],
        )
    ]


def approve(experiment: Experiment, approved_by: str) -> Transition:
    if experiment.status != ExperimentStatus.REVIEW:
        raise _invalid(experiment, "approve")
    if not approved_by:
        raise validation_error("Approval requires an approver")
    approved = replace(experiment, approved_by=approved_by)
    return approved, [_emit("experiment.approved", experiment_id=experiment.id, approved_by=approved_by)]


def start(
    experiment: Experiment,
    approval_token: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transition:
    """
    Start a draft or approved experiment.

    An unapproved high/critical experiment raises APPROVAL_REQUIRED and is
    returned unchanged; its classification is never downgraded.
    """
    if experiment.status not in (ExperimentStatus.DRAFT, ExperimentStatus.REVIEW):
        raise _invalid(experiment, "start")

    approved_by = experiment.approved_by or approval_token
    needs_approval = (
        experiment.status == ExperimentStatus.REVIEW
        or experiment.safety_classification.requires_approval
    )
    if needs_approval and not approved_by:
        raise ExperimentError(
            ErrorCode.APPROVAL_REQUIRED,
            f"Experiment {experiment.id} ({experiment.safety_classification.value}) "
            "requires approval before starting",
        )

    started = replace(
        experiment,
        status=ExperimentStatus.RUNNING,
        approved_by=approved_by,
        start_date=experiment.start_date or now or _now(),
    )
    return started, [_emit("experiment.started", experiment_id=started.id, name=started.name)]


def guardrail_violated(experiment: Experiment, violations: List[GuardrailViolation]) -> Effect:
    """Event for guardrail violations; emitted whether or not a pause follows."""
    return _emit(
        "experiment.guardrail.violated",
        experiment_id=experiment.id,
        violations=[
            {
                "metric_id": v.metric_id,
                "variant_id": v.variant_id,
                "current_value": v.current_value,
                "threshold": v.threshold,
            }
            for v in violations
        ],
    )


def pause(
    experiment: Experiment,
    reason: str = "manual",
    violations: Optional[List[GuardrailViolation]] = None,
) -> Transition:
    require_running(experiment)
    paused = replace(experiment, status=ExperimentStatus.PAUSED)
    effects = [guardrail_violated(experiment, violations)] if violations else []
    effects.append(_emit("experiment.paused", experiment_id=experiment.id, reason=reason))
    return paused, effects


def resume(experiment: Experiment) -> Transition:
    if experiment.status != ExperimentStatus.PAUSED:
        raise _invalid(experiment, "resume")
    resumed = replace(experiment, status=ExperimentStatus.RUNNING)
    return resumed, [_emit("experiment.resumed", experiment_id=experiment.id)]


def complete(
    experiment: Experiment,
    winning_variant_id: str,
    now: Optional[datetime] = None,
) -> Transition:
    """Declare a winner and roll its flag value out to 100% of traffic."""
    if experiment.status not in ACTIVE_STATUSES:
        raise ExperimentError(
            ErrorCode.NOT_RUNNING,
            f"Experiment {experiment.id} is {experiment.status.value}; only running or paused can complete",
        )
    winner = experiment.get_variant(winning_variant_id)
    if winner is None:
        raise not_found(f"Winning variant {winning_variant_id} not found in {experiment.id}")

    completed = replace(
        experiment,
        status=ExperimentStatus.COMPLETED,
        winning_variant_id=winner.id,
        end_date=now or _now(),
    )
    return completed, [
        Effect(
            EffectKind.SET_FLAG,
            "featureflag.update",
            {"flag_id": experiment.feature_flag_id, "value": winner.feature_flag_value, "rollout_percent": 100},
        ),
        _emit(
            "experiment.completed",
            experiment_id=experiment.id,
            winning_variant_id=winner.id,
            variant_name=winner.name,
        ),
    ]


def stop(experiment: Experiment, reason: str, now: Optional[datetime] = None) -> Transition:
    """Manual abort from any non-terminal state."""
    if experiment.status in TERMINAL_STATUSES:
        raise _invalid(experiment, "stop")
    stopped = replace(
        experiment,
        status=ExperimentStatus.STOPPED,
        stop_reason=reason,
        end_date=now or _now(),
    )
    return stopped, [_emit("experiment.stopped", experiment_id=experiment.id, reason=reason)]


def archive(experiment: Experiment) -> Transition:
    if experiment.status not in (ExperimentStatus.COMPLETED, ExperimentStatus.STOPPED):
        raise _invalid(experiment, "archive")
    archived = replace(experiment, status=ExperimentStatus.ARCHIVED)
    return archived, [
        Effect(EffectKind.PURGE, "experiment.purge", {"experiment_id": experiment.id}),
        _emit("experiment.archived", experiment_id=experiment.id),
    ]
