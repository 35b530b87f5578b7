"""
Experiment analysis entrypoint.

Input: an experiment definition and a MetricAggregator.
Output: ExperimentResults with per-variant stats, frequentist / Bayesian /
sequential comparisons of each variant against control, guardrail violations,
a sample ratio check and the overall recommendation. Nothing is cached: every
call recomputes from raw events, and any aggregation failure fails the call.
"""

import logging
from typing import Dict, List, Optional

from .aggregator import MetricAggregator
from .config import EngineSettings, get_settings
from .guardrails import evaluate_guardrails
from .schema import (
    Direction,
    Experiment,
    ExperimentResults,
    GuardrailViolation,
    MetricType,
    TestRecommendation,
    VariantComparison,
    VariantStats,
)
from .stats import (
    RandomSource,
    bayesian_binary_ab,
    check_srm,
    proportions_z_test,
    sample_size_continuous,
    sample_size_proportion,
    sequential_check,
    welch_t_test,
)

logger = logging.getLogger(__name__)

SHIP = "SHIP"
KEEP_CONTROL = "KEEP CONTROL"
CONTINUE = "CONTINUE"
STOP = "STOP"


def planned_sample_size(experiment: Experiment, control_stats: VariantStats) -> int:
    """
    Target sample size per variant.

    Uses the configured target when set; otherwise derives it from the
    minimum detectable effect, alpha and power against the observed control.
    Returns 0 when there is nothing to plan against yet.
    """
    if experiment.target_sample_size > 0:
        return experiment.target_sample_size
    if control_stats.sample_size == 0:
        return 0

    mde = experiment.minimum_detectable_effect
    if experiment.primary_metric.metric_type == MetricType.BINARY:
        baseline = control_stats.mean
        if not 0 < baseline < 1:
            return 0
        return sample_size_proportion(
            baseline, mde, alpha=experiment.significance_level, power=experiment.power
        )
    if control_stats.std == 0:
        return 0
    # A zero control mean has no relative scale: read the MDE in standard deviations
    mde_abs = mde * abs(control_stats.mean) or mde * control_stats.std
    return sample_size_continuous(
        control_stats.std,
        mde_abs,
        alpha=experiment.significance_level,
        power=experiment.power,
    )


def compare_variant(
    experiment: Experiment,
    control_stats: VariantStats,
    variant_stats: VariantStats,
    variant_name: str,
    n_target_per_variant: int,
    settings: EngineSettings,
    random_source: Optional[RandomSource] = None,
) -> VariantComparison:
    """Run the primary-metric tests for one variant against control."""
    metric = experiment.primary_metric
    alpha = experiment.significance_level
    bayesian = None

    if metric.metric_type == MetricType.BINARY:
        frequentist = proportions_z_test(
            control_stats.successes,
            control_stats.sample_size,
            variant_stats.successes,
            variant_stats.sample_size,
            alpha=alpha,
            direction=metric.direction,
        )
        bayesian = bayesian_binary_ab(
            control_stats.successes,
            control_stats.sample_size,
            variant_stats.successes,
            variant_stats.sample_size,
            simulations=settings.bayesian_simulations,
            random_source=random_source,
        )
    else:
        frequentist = welch_t_test(
            control_stats.mean,
            control_stats.variance,
            control_stats.sample_size,
            variant_stats.mean,
            variant_stats.variance,
            variant_stats.sample_size,
            alpha=alpha,
            direction=metric.direction,
        )

    sequential = sequential_check(
        frequentist.p_value,
        control_stats.sample_size + variant_stats.sample_size,
        n_target_per_variant * 2,
        alpha,
    )
    return VariantComparison(
        variant_id=variant_stats.variant_id,
        variant_name=variant_name,
        frequentist=frequentist,
        sequential=sequential,
        bayesian=bayesian,
    )


def synthesize_recommendation(
    comparisons: List[VariantComparison],
    guardrail_violations: List[GuardrailViolation],
    direction: Direction = Direction.HIGHER_IS_BETTER,
) -> str:
    """
    Overall recommendation across all non-control variants.

    Guardrail violations always win: the answer is STOP whatever the primary
    metric says.
    """
    if guardrail_violations:
        return f"{STOP}: Guardrail metrics violated, investigate before proceeding"

    significant = [c for c in comparisons if c.frequentist.is_significant]
    if not significant:
        return f"{CONTINUE}: No significant results yet"

    winners = [c for c in significant if c.frequentist.recommendation == TestRecommendation.SHIP_VARIANT]
    if winners:
        sign = 1 if direction == Direction.HIGHER_IS_BETTER else -1
        best = max(winners, key=lambda c: sign * c.frequentist.effect_size)
        return (
            f"{SHIP}: {best.variant_name} shows significant improvement "
            f"({best.frequentist.relative_effect * 100:.1f}%)"
        )

    losers = [c for c in significant if c.frequentist.recommendation == TestRecommendation.KEEP_CONTROL]
    if len(losers) == len(significant):
        return f"{KEEP_CONTROL}: All variants performed worse than control"

    return f"{CONTINUE}: Mixed results, collect more data"


def run_analysis(
    experiment: Experiment,
    aggregator: MetricAggregator,
    assignment_counts: Optional[Dict[str, int]] = None,
    settings: Optional[EngineSettings] = None,
    random_source: Optional[RandomSource] = None,
) -> ExperimentResults:
    """
    Run full experiment analysis.

    Args:
        experiment: Experiment definition
        aggregator: Aggregator over the experiment's metric events
        assignment_counts: Assignment count per variant id, for the SRM check
        settings: Engine settings (defaults from the environment)
        random_source: Sampler for the Bayesian comparison

    Returns:
        ExperimentResults
    """
    settings = settings or get_settings()
    primary = experiment.primary_metric

    variant_stats = {
        v.id: aggregator.aggregate(experiment.id, v.id, primary) for v in experiment.variants
    }
    secondary_stats = {
        v.id: {m.id: aggregator.aggregate(experiment.id, v.id, m) for m in experiment.secondary_metrics}
        for v in experiment.variants
    }

    control_stats = variant_stats[experiment.control.id]
    n_target = planned_sample_size(experiment, control_stats)

    comparisons = [
        compare_variant(
            experiment, control_stats, variant_stats[v.id], v.name, n_target, settings, random_source
        )
        for v in experiment.treatments
    ]

    violations = evaluate_guardrails(experiment, aggregator.aggregate, settings.guardrail_workers)

    sample_ratio = None
    if assignment_counts:
        sample_ratio = check_srm(
            assignment_counts,
            {v.id: v.weight for v in experiment.variants},
            alpha=settings.srm_alpha,
        )
        if not sample_ratio.passed:
            logger.warning(
                f"Sample ratio mismatch in {experiment.id}: p={sample_ratio.p_value:.4g}, "
                f"observed={sample_ratio.observed}"
            )

    recommendation = synthesize_recommendation(comparisons, violations, primary.direction)

    results = ExperimentResults(
        experiment_id=experiment.id,
        primary_metric=primary.id,
        total_participants=sum(s.sample_size for s in variant_stats.values()),
        variant_stats=variant_stats,
        comparisons=comparisons,
        guardrail_violations=violations,
        overall_recommendation=recommendation,
        can_stop_early=any(c.sequential.can_stop for c in comparisons),
        secondary_stats=secondary_stats,
        sample_ratio=sample_ratio,
        status=experiment.status,
    )
    logger.info(
        f"Analysis complete for {experiment.id}: {results.total_participants} participants, "
        f"recommendation={recommendation}"
    )
    return results
