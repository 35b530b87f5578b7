"""Tests for the lifecycle controller: wiring, effects and error codes."""
import pytest

from experiment_engine.collaborators import Notifier
from experiment_engine.controller import ExperimentController, build_store
from experiment_engine.config import EngineSettings
from experiment_engine.errors import ErrorCode, ExperimentError
from experiment_engine.event_store import CsvExperimentStore
from experiment_engine.schema import (
    Direction,
    EligibilityCriteria,
    ExperimentStatus,
    GuardrailMetric,
    MetricDefinition,
    SafetyClassification,
    SubjectContext,
    TestRecommendation,
)
from experiment_engine.simulate import simulate_binary_experiment
from experiment_engine.store import InMemoryExperimentStore, StoreError


def _started(controller, experiment):
    controller.create_experiment(experiment)
    controller.start(experiment.id)
    return experiment.id


def test_create_and_duplicate(controller, experiment, notifier):
    created = controller.create_experiment(experiment)
    assert created.status == ExperimentStatus.DRAFT
    assert notifier.names() == ["experiment.created"]
    with pytest.raises(ExperimentError) as exc:
        controller.create_experiment(experiment)
    assert exc.value.code == ErrorCode.VALIDATION


def test_create_from_dict_uses_settings_defaults(controller):
    created = controller.create_experiment({
        "id": "exp_dict",
        "name": "From JSON",
        "variants": [
            {"id": "control", "weight": 0.5, "is_control": True},
            {"id": "b", "weight": 0.5},
        ],
        "primary_metric": {"id": "clicks"},
    })
    assert created.significance_level == 0.05
    assert created.power == 0.8
    assert controller.list_experiments(ExperimentStatus.DRAFT)[0].id == "exp_dict"


def test_create_from_malformed_dict(controller):
    with pytest.raises(ExperimentError) as exc:
        controller.create_experiment({"id": "x", "variants": [{"weight": 1.0}]})
    assert exc.value.code == ErrorCode.VALIDATION


def test_unknown_experiment(controller):
    with pytest.raises(ExperimentError) as exc:
        controller.assign("missing", "u1")
    assert exc.value.code == ErrorCode.NOT_FOUND


def test_assign_requires_running(controller, experiment):
    controller.create_experiment(experiment)
    with pytest.raises(ExperimentError) as exc:
        controller.assign(experiment.id, "u1")
    assert exc.value.code == ErrorCode.NOT_RUNNING


def test_assign_is_sticky(controller, experiment):
    exp_id = _started(controller, experiment)
    first = controller.assign(exp_id, "user_1")
    assert controller.assign(exp_id, "user_1").id == first.id
    assert first.feature_flag_value in ("old", "new")


def test_assign_not_eligible(controller, experiment_factory):
    exp = experiment_factory(eligibility=EligibilityCriteria(min_age=18))
    exp_id = _started(controller, exp)
    with pytest.raises(ExperimentError) as exc:
        controller.assign(exp_id, "kid", SubjectContext("kid", age=12))
    assert exc.value.code == ErrorCode.NOT_ELIGIBLE
    assert controller.assign(exp_id, "adult", SubjectContext("adult", age=30)) is not None


def test_critical_start_without_approval(controller, experiment_factory, notifier):
    exp = experiment_factory(safety_classification=SafetyClassification.CRITICAL)
    controller.create_experiment(exp)
    with pytest.raises(ExperimentError) as exc:
        controller.start(exp.id)
    assert exc.value.code == ErrorCode.APPROVAL_REQUIRED
    assert controller.store.get_experiment(exp.id).status == ExperimentStatus.REVIEW
    assert "experiment.started" not in notifier.names()

    controller.approve(exp.id, "board")
    assert controller.start(exp.id).status == ExperimentStatus.RUNNING


def test_record_metric_event(controller, experiment):
    exp_id = _started(controller, experiment)
    controller.assign(exp_id, "u1")
    assert controller.record_metric_event(exp_id, "u1", "completion", 1.0, event_id="e1")
    assert not controller.record_metric_event(exp_id, "u1", "completion", 1.0, event_id="e1")


def test_record_metric_event_unassigned(controller, experiment):
    exp_id = _started(controller, experiment)
    with pytest.raises(ExperimentError) as exc:
        controller.record_metric_event(exp_id, "ghost", "completion", 1.0)
    assert exc.value.code == ErrorCode.NOT_FOUND


def test_record_metric_event_unknown_metric(controller, experiment):
    exp_id = _started(controller, experiment)
    controller.assign(exp_id, "u1")
    with pytest.raises(ExperimentError) as exc:
        controller.record_metric_event(exp_id, "u1", "nope", 1.0)
    assert exc.value.code == ErrorCode.NOT_FOUND


def test_complete_sets_flag(controller, experiment, flags, notifier):
    exp_id = _started(controller, experiment)
    done = controller.complete(exp_id, "variant_a")
    assert done.status == ExperimentStatus.COMPLETED
    assert flags.flags["experiment_exp_checkout"] == ("new", 100)
    assert notifier.names()[-1] == "experiment.completed"
    with pytest.raises(ExperimentError) as exc:
        controller.record_metric_event(exp_id, "u1", "completion", 1.0)
    assert exc.value.code == ErrorCode.NOT_RUNNING


def test_archive_purges_data(controller, experiment):
    exp_id = _started(controller, experiment)
    controller.assign(exp_id, "u1")
    controller.stop(exp_id, "abandoned")
    archived = controller.archive(exp_id)
    assert archived.status == ExperimentStatus.ARCHIVED
    assert controller.store.count_assignments(exp_id) == {}
    assert controller.store.get_experiment(exp_id) is not None


class ExplodingNotifier(Notifier):
    def emit(self, event_type, payload):
        raise ConnectionError("bus unavailable")


def test_notifier_failure_does_not_roll_back(store, flags, settings, experiment):
    controller = ExperimentController(store, flags=flags, notifier=ExplodingNotifier(), settings=settings)
    exp_id = _started(controller, experiment)
    assert store.get_experiment(exp_id).status == ExperimentStatus.RUNNING


def test_guardrail_violation_pauses(controller, experiment_factory, notifier):
    errors = MetricDefinition("error_rate", "Error rate", direction=Direction.LOWER_IS_BETTER)
    exp = experiment_factory(guardrail_metrics=[GuardrailMetric(errors, threshold=0.05)])
    exp_id = _started(controller, exp)
    for i in range(200):
        subject = f"u{i}"
        variant = controller.assign(exp_id, subject)
        controller.record_metric_event(exp_id, subject, "completion", float(i % 2))
        bad = variant.id == "variant_a" and i % 5 == 0
        controller.record_metric_event(exp_id, subject, "error_rate", 1.0 if bad else 0.0)

    results = controller.analyze(exp_id)
    assert results.guardrail_violations
    assert results.overall_recommendation.startswith("STOP")
    assert results.status == ExperimentStatus.PAUSED
    assert controller.store.get_experiment(exp_id).status == ExperimentStatus.PAUSED
    assert "experiment.guardrail.violated" in notifier.names()
    assert notifier.names()[-1] == "experiment.paused"


def test_summary(controller, experiment):
    exp_id = _started(controller, experiment)
    for i in range(100):
        controller.assign(exp_id, f"u{i}")
    summary = controller.get_summary(exp_id)
    assert summary.total_participants == 100
    assert sum(summary.variant_counts.values()) == 100
    assert summary.percent_complete == 10
    assert summary.days_running == 0


def test_build_store(tmp_path):
    assert isinstance(build_store(EngineSettings(_env_file=None)), InMemoryExperimentStore)
    csv_settings = EngineSettings(store_backend="csv", data_dir=str(tmp_path), _env_file=None)
    assert isinstance(build_store(csv_settings), CsvExperimentStore)


def test_created_event_carries_name(controller, experiment, notifier):
    controller.create_experiment(experiment)
    event_type, payload = notifier.events[0]
    assert event_type == "experiment.created"
    assert payload["name"] == "Checkout copy"
    assert payload["experiment_id"] == experiment.id


def test_create_rejects_string_is_control(controller):
    with pytest.raises(ExperimentError) as exc:
        controller.create_experiment({
            "id": "exp_str",
            "variants": [
                {"id": "control", "weight": 0.5, "is_control": True},
                {"id": "b", "weight": 0.5, "is_control": "false"},
            ],
            "primary_metric": {"id": "clicks"},
        })
    assert exc.value.code == ErrorCode.VALIDATION


class FlakyStore(InMemoryExperimentStore):
    """Reads other than single-experiment loads fail."""

    def __init__(self):
        super().__init__()
        self.down = False

    def get_experiment(self, experiment_id):
        if self.down:
            raise StoreError("db down")
        return super().get_experiment(experiment_id)

    def count_assignments(self, experiment_id):
        raise StoreError("db down")

    def list_experiments(self, status=None):
        raise StoreError("db down")


def test_store_failures_are_structured(flags, notifier, settings, experiment, experiment_factory):
    store = FlakyStore()
    controller = ExperimentController(store, flags=flags, notifier=notifier, settings=settings)
    controller.create_experiment(experiment)

    with pytest.raises(ExperimentError) as exc:
        controller.get_summary(experiment.id)
    assert exc.value.code == ErrorCode.AGGREGATION_FAILED
    with pytest.raises(ExperimentError) as exc:
        controller.list_experiments()
    assert exc.value.code == ErrorCode.RECORD_FAILED

    store.down = True
    with pytest.raises(ExperimentError) as exc:
        controller.create_experiment(experiment_factory("exp_other"))
    assert exc.value.code == ErrorCode.RECORD_FAILED


def _guardrailed_with_lift(controller, experiment_factory):
    errors = MetricDefinition("error_rate", "Error rate", direction=Direction.LOWER_IS_BETTER)
    exp = experiment_factory(guardrail_metrics=[GuardrailMetric(errors, threshold=0.05)])
    exp_id = _started(controller, exp)
    simulate_binary_experiment(
        controller, exp_id, 1000, {"control": 0.55, "variant_a": 0.62}, exact=True
    )
    for i in range(1000):
        subject = f"user_{i:06d}"
        variant_id = controller.store.get_assignment(exp_id, subject)
        controller.record_metric_event(exp_id, subject, "error_rate", 1.0 if variant_id == "variant_a" else 0.0)
    return exp_id


def test_guardrail_priority_over_significant_lift(controller, experiment_factory):
    exp_id = _guardrailed_with_lift(controller, experiment_factory)
    results = controller.analyze(exp_id)
    assert results.comparisons[0].frequentist.recommendation == TestRecommendation.SHIP_VARIANT
    assert results.is_significant
    assert results.overall_recommendation.startswith("STOP")
    assert not results.overall_recommendation.startswith("SHIP")
    assert results.status == ExperimentStatus.PAUSED


def test_guardrail_event_when_already_paused(controller, experiment_factory, notifier):
    exp_id = _guardrailed_with_lift(controller, experiment_factory)
    controller.analyze(exp_id)
    controller.analyze(exp_id)
    names = notifier.names()
    assert names.count("experiment.guardrail.violated") == 2
    assert names.count("experiment.paused") == 1
    assert names[-1] == "experiment.guardrail.violated"
    assert controller.store.get_experiment(exp_id).status == ExperimentStatus.PAUSED
