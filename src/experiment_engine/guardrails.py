"""
Guardrail monitor.

Each guardrail metric is checked for every non-control variant, either
against an absolute threshold in the metric's direction or as a relative
deviation from control. Aggregations are independent and run on a thread
pool; if any of them fails the whole evaluation fails.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple

from .schema import (
    ComparisonType,
    Experiment,
    GuardrailMetric,
    GuardrailViolation,
    MetricDefinition,
    VariantStats,
)

logger = logging.getLogger(__name__)

AggregateFn = Callable[[str, str, MetricDefinition], VariantStats]


def is_violated(
    guardrail: GuardrailMetric,
    variant_value: float,
    control_value: Optional[float] = None,
) -> bool:
    """Apply one guardrail rule to an already aggregated value."""
    if guardrail.comparison_type == ComparisonType.ABSOLUTE:
        if guardrail.metric.higher_is_better:
            return variant_value < guardrail.threshold
        return variant_value > guardrail.threshold

    if not control_value:
        return False
    relative_change = (variant_value - control_value) / control_value
    return abs(relative_change) > guardrail.threshold


def evaluate_guardrails(
    experiment: Experiment,
    aggregate: AggregateFn,
    max_workers: int = 4,
) -> List[GuardrailViolation]:
    """
    Evaluate every guardrail for every non-control variant.

    Variants with fewer samples than the metric's minimum (and at least one)
    are not judged yet.

    Args:
        experiment: Experiment with guardrail_metrics
        aggregate: Callable (experiment_id, variant_id, metric) -> VariantStats
        max_workers: Thread pool size

    Returns:
        List of GuardrailViolation (empty when everything is within bounds)
    """
    if not experiment.guardrail_metrics:
        return []

    control = experiment.control
    jobs: List[Tuple[int, str]] = []
    for i, g in enumerate(experiment.guardrail_metrics):
        if g.comparison_type == ComparisonType.RELATIVE_TO_CONTROL:
            jobs.append((i, control.id))
        for v in experiment.treatments:
            jobs.append((i, v.id))

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            job: pool.submit(aggregate, experiment.id, job[1], experiment.guardrail_metrics[job[0]].metric)
            for job in jobs
        }
        # .result() re-raises the first aggregation failure
        results: Dict[Tuple[int, str], VariantStats] = {job: f.result() for job, f in futures.items()}

    violations = []
    for i, g in enumerate(experiment.guardrail_metrics):
        min_n = max(1, g.metric.minimum_sample_per_variant)
        control_value = None
        if g.comparison_type == ComparisonType.RELATIVE_TO_CONTROL:
            control_stats = results[(i, control.id)]
            if control_stats.sample_size < min_n:
                continue
            control_value = control_stats.summary_value(g.metric.aggregation)

        for v in experiment.treatments:
            stats = results[(i, v.id)]
            if stats.sample_size < min_n:
                continue
            value = stats.summary_value(g.metric.aggregation)
            if is_violated(g, value, control_value):
                violations.append(GuardrailViolation(
                    metric_id=g.metric.id,
                    metric_name=g.metric.name,
                    variant_id=v.id,
                    current_value=value,
                    threshold=g.threshold,
                    comparison_type=g.comparison_type,
                    description=g.description,
                ))

    if violations:
        logger.warning(
            f"{len(violations)} guardrail violation(s) in {experiment.id}: "
            + ", ".join(f"{v.metric_id}@{v.variant_id}={v.current_value:.4f}" for v in violations)
        )
    return violations
