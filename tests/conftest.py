"""Pytest configuration - add src/ to path and shared fixtures."""
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))

from experiment_engine.collaborators import InMemoryFeatureFlags, InMemoryNotifier
from experiment_engine.config import EngineSettings
from experiment_engine.controller import ExperimentController
from experiment_engine.schema import Experiment, MetricDefinition, Variant
from experiment_engine.store import InMemoryExperimentStore


def make_experiment(experiment_id="exp_checkout", **overrides) -> Experiment:
    """Two-arm binary experiment; keyword overrides go straight to Experiment."""
    fields = dict(
        id=experiment_id,
        name="Checkout copy",
        hypothesis="New copy lifts completion",
        variants=[
            Variant("control", "Control", 0.5, is_control=True, feature_flag_value="old"),
            Variant("variant_a", "variant_a", 0.5, feature_flag_value="new"),
        ],
        primary_metric=MetricDefinition("completion", "Completion rate"),
        target_sample_size=500,
    )
    fields.update(overrides)
    return Experiment(**fields)


@pytest.fixture
def settings():
    return EngineSettings(random_seed=1234, guardrail_workers=2, _env_file=None)


@pytest.fixture
def store():
    return InMemoryExperimentStore()


@pytest.fixture
def flags():
    return InMemoryFeatureFlags()


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def controller(store, flags, notifier, settings):
    return ExperimentController(store, flags=flags, notifier=notifier, settings=settings)


@pytest.fixture
def experiment():
    return make_experiment()


@pytest.fixture
def experiment_factory():
    return make_experiment
