"""
Deterministic experiment assignment.

Hashes (experiment_id, subject_id) with two different salts: one draw decides
whether the subject falls inside the experiment's traffic allocation, the
other picks the variant by walking cumulative weights. Both are pure functions
of their inputs, so any instance can recompute a first-time decision without
coordination. AssignmentStore adds the sticky, persisted layer on top.
"""

import hashlib
import logging
from typing import List, Optional, Sequence

from .eligibility import is_eligible
from .errors import ErrorCode, ExperimentError, validation_error
from .schema import Assignment, Experiment, SubjectContext
from .store import ExperimentStore, StoreError

logger = logging.getLogger(__name__)

TRAFFIC_SALT = "traffic"
VARIANT_SALT = "variant"
_HASH_SPACE = float(0x100000000)


def _hash_to_unit(experiment_id: str, subject_id: str, salt: str) -> float:
    """
    Deterministic hash to [0, 1).

    Same experiment + subject + salt always maps to the same value.
    """
    key = f"{experiment_id}:{subject_id}:{salt}"
    h = hashlib.sha256(key.encode()).hexdigest()
    return int(h[:8], 16) / _HASH_SPACE


def in_traffic(experiment_id: str, subject_id: str, traffic_percentage: float) -> bool:
    """True if the subject falls inside the experiment's traffic allocation."""
    if traffic_percentage >= 100:
        return True
    return _hash_to_unit(experiment_id, subject_id, TRAFFIC_SALT) < traffic_percentage / 100.0


def assign_variant(
    experiment_id: str,
    subject_id: str,
    variant_ids: Sequence[str],
    weights: Sequence[float],
    preferred: Optional[str] = None,
) -> str:
    """
    Pick a variant for a subject deterministically.

    Args:
        experiment_id: Experiment identifier
        subject_id: Subject identifier
        variant_ids: Variant ids in their fixed configured order
        weights: Traffic weight per variant (validated at creation to sum to 1)
        preferred: Optional override variant (QA), honored when it is known

    Returns:
        Selected variant id
    """
    if not variant_ids or len(variant_ids) != len(weights):
        raise validation_error("variant_ids and weights must be non-empty and the same length")

    if preferred is not None and preferred in variant_ids:
        return preferred

    draw = _hash_to_unit(experiment_id, subject_id, VARIANT_SALT)
    cumulative = 0.0
    for vid, w in zip(variant_ids, weights):
        cumulative += w
        if draw <= cumulative:
            return vid
    # Float rounding in the cumulative tail
    return variant_ids[-1]


class AssignmentStore:
    """Sticky assignment cache over the persistence collaborator."""

    def __init__(self, store: ExperimentStore):
        self.store = store

    def get_or_create(
        self,
        experiment: Experiment,
        subject_id: str,
        context: Optional[SubjectContext] = None,
        preferred: Optional[str] = None,
    ) -> str:
        """
        Return the subject's variant, creating and persisting it on first call.

        Concurrent first calls race on ``put_assignment_if_absent``; the stored
        winner is returned to every caller. A failed write fails the request.

        Raises:
            ExperimentError: NOT_ELIGIBLE, NOT_IN_TRAFFIC or RECORD_FAILED
        """
        try:
            existing = self.store.get_assignment(experiment.id, subject_id)
        except StoreError as e:
            raise ExperimentError(ErrorCode.RECORD_FAILED, f"Assignment lookup failed: {e}") from e
        if existing is not None:
            return existing

        context = context or SubjectContext(subject_id=subject_id)
        if not is_eligible(experiment.eligibility, context):
            raise ExperimentError(ErrorCode.NOT_ELIGIBLE, f"Subject {subject_id} not eligible for {experiment.id}")
        if not in_traffic(experiment.id, subject_id, experiment.traffic_percentage):
            raise ExperimentError(
                ErrorCode.NOT_IN_TRAFFIC,
                f"Subject {subject_id} not in traffic allocation for {experiment.id}",
            )

        local = assign_variant(
            experiment.id, subject_id, experiment.variant_ids, experiment.weights, preferred
        )
        try:
            stored = self.store.put_assignment_if_absent(
                Assignment(experiment_id=experiment.id, subject_id=subject_id, variant_id=local)
            )
        except StoreError as e:
            raise ExperimentError(ErrorCode.RECORD_FAILED, f"Failed to persist assignment: {e}") from e

        if stored != local:
            logger.debug(f"Lost assignment race for {experiment.id}/{subject_id}: kept {stored}")
        return stored


def assign_subjects(experiment: Experiment, subject_ids: List[str]) -> List[str]:
    """Assign a batch of subjects without persistence (replays, simulations)."""
    variants = []
    for sid in subject_ids:
        variants.append(assign_variant(experiment.id, sid, experiment.variant_ids, experiment.weights))

    counts = {vid: variants.count(vid) for vid in experiment.variant_ids}
    logger.info(f"Assignment complete: {len(variants)} subjects -> {counts}")
    return variants
