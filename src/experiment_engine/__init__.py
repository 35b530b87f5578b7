"""Experimentation engine: assignment, metric collection, analysis and lifecycle for A/B tests."""

from .schema import (
    Experiment,
    ExperimentStatus,
    ExperimentResults,
    ExperimentSummary,
    MetricDefinition,
    GuardrailMetric,
    EligibilityCriteria,
    SubjectContext,
    Variant,
)
from .errors import ErrorCode, ExperimentError
from .config import EngineSettings, get_settings, configure_logging
from .assignment import assign_variant, assign_subjects
from .store import ExperimentStore, InMemoryExperimentStore
from .event_store import CsvExperimentStore
from .analyze import run_analysis
from .controller import ExperimentController, build_controller, build_store
from .simulate import simulate_binary_experiment

__all__ = [
    "Experiment",
    "ExperimentStatus",
    "ExperimentResults",
    "ExperimentSummary",
    "MetricDefinition",
    "GuardrailMetric",
    "EligibilityCriteria",
    "SubjectContext",
    "Variant",
    "ErrorCode",
    "ExperimentError",
    "EngineSettings",
    "get_settings",
    "configure_logging",
    "assign_variant",
    "assign_subjects",
    "ExperimentStore",
    "InMemoryExperimentStore",
    "CsvExperimentStore",
    "run_analysis",
    "ExperimentController",
    "build_controller",
    "build_store",
    "simulate_binary_experiment",
]
