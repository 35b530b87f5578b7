"""Tests for the CSV-backed experiment store."""
import pytest

from experiment_engine.controller import ExperimentController
from experiment_engine.event_store import CsvExperimentStore
from experiment_engine.schema import (
    Assignment,
    EligibilityCriteria,
    ExperimentStatus,
    MetricEvent,
    SafetyClassification,
)


@pytest.fixture
def csv_store(tmp_path):
    return CsvExperimentStore(str(tmp_path / "experiments"))


def test_experiment_round_trip(csv_store, experiment_factory):
    exp = experiment_factory(
        safety_classification=SafetyClassification.HIGH,
        eligibility=EligibilityCriteria(roles=["student"], min_age=13),
    )
    csv_store.save_experiment(exp)
    loaded = csv_store.get_experiment(exp.id)
    assert loaded.variants == exp.variants
    assert loaded.eligibility.roles == ["student"]
    assert loaded.safety_classification == SafetyClassification.HIGH
    assert loaded.created_at == exp.created_at
    assert csv_store.get_experiment("missing") is None


def test_list_experiments_by_status(csv_store, experiment_factory):
    csv_store.save_experiment(experiment_factory("exp_a"))
    csv_store.save_experiment(experiment_factory("exp_b", status=ExperimentStatus.RUNNING))
    assert [e.id for e in csv_store.list_experiments()] == ["exp_a", "exp_b"]
    assert [e.id for e in csv_store.list_experiments(ExperimentStatus.RUNNING)] == ["exp_b"]


def test_put_assignment_if_absent(csv_store):
    assert csv_store.put_assignment_if_absent(Assignment("exp", "007", "control")) == "control"
    assert csv_store.put_assignment_if_absent(Assignment("exp", "007", "variant_a")) == "control"
    assert csv_store.get_assignment("exp", "007") == "control"
    assert csv_store.count_assignments("exp") == {"control": 1}


def test_metric_events_idempotent(csv_store):
    assert csv_store.record_metric_event(MetricEvent("exp", "u1", "control", "m", 1.0, event_id="e1"))
    assert not csv_store.record_metric_event(MetricEvent("exp", "u1", "control", "m", 1.0, event_id="e1"))
    csv_store.record_metric_event(MetricEvent("exp", "u2", "control", "m", 0.0))
    summary = csv_store.query_metric_events("exp", "control", "m")
    assert summary.count == 2
    assert summary.mean == pytest.approx(0.5)


def test_purge(csv_store, experiment):
    csv_store.save_experiment(experiment)
    csv_store.put_assignment_if_absent(Assignment(experiment.id, "u1", "control"))
    csv_store.purge_experiment(experiment.id)
    assert csv_store.count_assignments(experiment.id) == {}
    assert csv_store.get_experiment(experiment.id) is not None


def test_controller_over_csv_store(csv_store, settings, experiment):
    controller = ExperimentController(csv_store, settings=settings)
    controller.create_experiment(experiment)
    controller.start(experiment.id)
    variant = controller.assign(experiment.id, "u1")
    controller.record_metric_event(experiment.id, "u1", "completion", 1.0)
    assert CsvExperimentStore(csv_store.base_dir).get_assignment(experiment.id, "u1") == variant.id
    results = controller.analyze(experiment.id)
    assert results.variant_stats[variant.id].sample_size == 1
