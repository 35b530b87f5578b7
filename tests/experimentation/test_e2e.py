"""End-to-end: create -> start -> simulate -> analyze -> complete."""
import pytest

from experiment_engine.schema import ExperimentStatus, MetricDefinition, MetricType, TestRecommendation, Variant
from experiment_engine.simulate import simulate_binary_experiment


def test_e2e_significant_lift(controller, experiment, flags):
    """1,000 subjects at 55% vs 62% completion ship variant_a."""
    controller.create_experiment(experiment)
    controller.start(experiment.id)

    sim = simulate_binary_experiment(
        controller,
        experiment.id,
        n_subjects=1000,
        success_rates={"control": 0.55, "variant_a": 0.62},
        exact=True,
    )
    assert sim["n_assigned"] == 1000
    assert 400 <= sim["counts"]["control"] <= 600

    results = controller.analyze(experiment.id)
    assert results.total_participants == 1000
    assert results.is_significant
    comparison = results.comparisons[0]
    assert comparison.variant_id == "variant_a"
    assert comparison.frequentist.recommendation == TestRecommendation.SHIP_VARIANT
    assert comparison.bayesian.probability_beat_control > 0.95
    assert results.overall_recommendation.startswith("SHIP: variant_a")
    assert results.sample_ratio.passed
    assert results.status == ExperimentStatus.RUNNING
    # 1,000 of the planned 2 x 500: full information, full alpha
    assert results.can_stop_early
    assert comparison.sequential.stop_reason == "efficacy"
    assert comparison.sequential.information_fraction == 1.0

    payload = results.to_dict()
    assert payload["comparisons"][0]["frequentist"]["recommendation"] == "ship_variant"

    controller.complete(experiment.id, comparison.variant_id)
    assert flags.flags[experiment.feature_flag_id] == ("new", 100)


def test_e2e_no_effect_continues(controller, experiment):
    controller.create_experiment(experiment)
    controller.start(experiment.id)
    simulate_binary_experiment(
        controller, experiment.id, 400, {"control": 0.5, "variant_a": 0.5}, exact=True
    )
    results = controller.analyze(experiment.id)
    assert not results.is_significant
    assert results.overall_recommendation.startswith("CONTINUE")


def test_e2e_analysis_is_reproducible(controller, experiment):
    controller.create_experiment(experiment)
    controller.start(experiment.id)
    simulate_binary_experiment(controller, experiment.id, 300, {"control": 0.3, "variant_a": 0.4})
    r1 = controller.analyze(experiment.id)
    r2 = controller.analyze(experiment.id)
    assert r1.comparisons[0].bayesian.probability_beat_control == r2.comparisons[0].bayesian.probability_beat_control
    assert r1.comparisons[0].frequentist.p_value == r2.comparisons[0].frequentist.p_value


def test_e2e_continuous_metric_and_secondary(controller, experiment_factory):
    exp = experiment_factory(
        primary_metric=MetricDefinition("minutes", "Reading minutes", metric_type=MetricType.CONTINUOUS),
        secondary_metrics=[MetricDefinition("shares", "Shares", metric_type=MetricType.COUNT)],
        variants=[
            Variant("control", "Control", 0.4, is_control=True),
            Variant("a", "A", 0.3),
            Variant("b", "B", 0.3),
        ],
    )
    controller.create_experiment(exp)
    controller.start(exp.id)
    for i in range(300):
        subject = f"u{i}"
        variant = controller.assign(exp.id, subject)
        base = {"control": 10.0, "a": 10.0, "b": 13.0}[variant.id]
        controller.record_metric_event(exp.id, subject, "minutes", base + (i % 7) - 3)
        controller.record_metric_event(exp.id, subject, "shares", float(i % 3))

    results = controller.analyze(exp.id)
    by_variant = {c.variant_id: c for c in results.comparisons}
    assert set(by_variant) == {"a", "b"}
    assert by_variant["b"].frequentist.test_type == "t_test"
    assert by_variant["b"].bayesian is None
    assert by_variant["b"].frequentist.is_significant
    assert results.overall_recommendation == (
        "SHIP: B shows significant improvement "
        f"({by_variant['b'].frequentist.relative_effect * 100:.1f}%)"
    )
    assert results.secondary_stats["control"]["shares"].sample_size > 0
    assert len(results.sample_ratio.observed) == 3
