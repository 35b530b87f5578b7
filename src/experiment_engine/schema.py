"""
Experiment data models for the experimentation engine.

Dataclass schemas for experiment definitions, variants, metrics, guardrails,
assignments, metric events and the derived analysis results.
"""

import uuid
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import validation_error

WEIGHT_TOLERANCE = 1e-3
PERCENTILE_KEYS = ("p5", "p25", "p50", "p75", "p95")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExperimentStatus(str, Enum):
    """Lifecycle status."""
    DRAFT = "draft"
    REVIEW = "review"  # awaiting approval (high / critical safety)
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"  # winner declared
    STOPPED = "stopped"  # aborted manually
    ARCHIVED = "archived"


TERMINAL_STATUSES = frozenset({
    ExperimentStatus.COMPLETED,
    ExperimentStatus.STOPPED,
    ExperimentStatus.ARCHIVED,
})


class ExperimentCategory(str, Enum):
    UI_UX = "ui_ux"
    CONTENT = "content"
    DIFFICULTY = "difficulty"
    ENGAGEMENT = "engagement"
    ONBOARDING = "onboarding"
    PERFORMANCE = "performance"
    NOTIFICATION = "notification"
    PRICING = "pricing"


class SafetyClassification(str, Enum):
    """How much scrutiny an experiment needs before launch."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def requires_approval(self) -> bool:
        return self in (SafetyClassification.HIGH, SafetyClassification.CRITICAL)


class MetricType(str, Enum):
    """Metric type for analysis."""
    CONTINUOUS = "continuous"  # e.g., reading time, session duration
    BINARY = "binary"  # e.g., completed book
    COUNT = "count"  # e.g., sessions started
    REVENUE = "revenue"  # e.g., subscription value


class Aggregation(str, Enum):
    MEAN = "mean"
    MEDIAN = "median"
    SUM = "sum"
    PROPORTION = "proportion"
    PERCENTILE_95 = "percentile_95"


class Direction(str, Enum):
    HIGHER_IS_BETTER = "higher_is_better"
    LOWER_IS_BETTER = "lower_is_better"


class ComparisonType(str, Enum):
    ABSOLUTE = "absolute"
    RELATIVE_TO_CONTROL = "relative_to_control"


class TestRecommendation(str, Enum):
    __test__ = False

    SHIP_VARIANT = "ship_variant"
    KEEP_CONTROL = "keep_control"
    CONTINUE_TESTING = "continue_testing"
    STOP_EXPERIMENT = "stop_experiment"


@dataclass(frozen=True)
class Variant:
    """One treatment arm, including the control. Immutable."""
    id: str
    name: str
    weight: float
    is_control: bool = False
    feature_flag_value: str = ""
    description: str = ""
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MetricDefinition:
    """Definition of a metric used in experiment analysis."""
    id: str
    name: str
    metric_type: MetricType = MetricType.BINARY
    event_name: str = ""
    aggregation: Aggregation = Aggregation.MEAN
    direction: Direction = Direction.HIGHER_IS_BETTER
    minimum_sample_per_variant: int = 0
    description: str = ""

    @property
    def higher_is_better(self) -> bool:
        return self.direction == Direction.HIGHER_IS_BETTER


@dataclass
class GuardrailMetric:
    """Safety metric whose degradation pauses the experiment."""
    metric: MetricDefinition
    threshold: float
    comparison_type: ComparisonType = ComparisonType.ABSOLUTE
    description: str = ""


@dataclass
class EligibilityCriteria:
    """Targeting rules. ``None`` means no constraint."""
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    phases: Optional[List[int]] = None
    roles: Optional[List[str]] = None
    cohorts: Optional[List[str]] = None
    tenant_ids: Optional[List[str]] = None
    exclude_experiments: Optional[List[str]] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


@dataclass
class SubjectContext:
    """Attributes of the subject asking for an assignment."""
    subject_id: str
    tenant_id: Optional[str] = None
    role: Optional[str] = None
    age: Optional[int] = None
    phase: Optional[int] = None
    cohort: Optional[str] = None
    active_experiments: List[str] = field(default_factory=list)


@dataclass
class Experiment:
    """Experiment definition and lifecycle state."""
    id: str
    name: str
    variants: List[Variant]
    primary_metric: MetricDefinition
    hypothesis: str = ""
    category: ExperimentCategory = ExperimentCategory.ENGAGEMENT
    safety_classification: SafetyClassification = SafetyClassification.LOW
    status: ExperimentStatus = ExperimentStatus.DRAFT
    feature_flag_id: str = ""
    secondary_metrics: List[MetricDefinition] = field(default_factory=list)
    guardrail_metrics: List[GuardrailMetric] = field(default_factory=list)
    target_sample_size: int = 0  # per variant; 0 = derive from MDE
    minimum_detectable_effect: float = 0.05
    significance_level: float = 0.05
    power: float = 0.8
    traffic_percentage: float = 100.0
    eligibility: EligibilityCriteria = field(default_factory=EligibilityCriteria)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    max_duration_days: int = 30
    created_by: str = ""
    approved_by: Optional[str] = None
    tenant_id: Optional[str] = None
    stop_reason: Optional[str] = None
    winning_variant_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if not self.feature_flag_id:
            self.feature_flag_id = f"experiment_{self.id}"

    @property
    def control(self) -> Variant:
        for v in self.variants:
            if v.is_control:
                return v
        raise validation_error(f"Experiment {self.id} has no control variant")

    @property
    def treatments(self) -> List[Variant]:
        return [v for v in self.variants if not v.is_control]

    @property
    def variant_ids(self) -> List[str]:
        return [v.id for v in self.variants]

    @property
    def weights(self) -> List[float]:
        return [v.weight for v in self.variants]

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        for v in self.variants:
            if v.id == variant_id:
                return v
        return None

    def validate(self) -> None:
        """Reject malformed definitions up front (weights, control count, rates)."""
        if not self.id:
            raise validation_error("Experiment id is required")
        if len(self.variants) < 2:
            raise validation_error(f"At least two variants required, got {len(self.variants)}")
        ids = self.variant_ids
        if len(set(ids)) != len(ids):
            raise validation_error(f"Variant ids must be unique: {ids}")
        for v in self.variants:
            if not 0.0 <= v.weight <= 1.0:
                raise validation_error(f"Variant {v.id} weight {v.weight} outside [0, 1]")
        weight_sum = sum(self.weights)
        if abs(weight_sum - 1.0) > WEIGHT_TOLERANCE:
            raise validation_error(f"Variant weights must sum to 1.0, got {weight_sum:.4f}")
        controls = [v for v in self.variants if v.is_control]
        if len(controls) != 1:
            raise validation_error(
                f"Exactly one control variant required, found {len(controls)}"
            )
        if not 0.0 < self.significance_level < 1.0:
            raise validation_error(f"Significance level must be in (0, 1), got {self.significance_level}")
        if not 0.0 < self.power < 1.0:
            raise validation_error(f"Power must be in (0, 1), got {self.power}")
        if not 0.0 <= self.traffic_percentage <= 100.0:
            raise validation_error(f"Traffic percentage must be in [0, 100], got {self.traffic_percentage}")
        if self.target_sample_size < 0:
            raise validation_error("Target sample size cannot be negative")
        for g in self.guardrail_metrics:
            if g.threshold < 0 and g.comparison_type == ComparisonType.RELATIVE_TO_CONTROL:
                raise validation_error(f"Relative guardrail {g.metric.id} needs a non-negative threshold")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Experiment":
        """Build an experiment from a JSON-style dict (API payloads, stored files)."""
        try:
            variants = [
                Variant(
                    id=str(v["id"]),
                    name=str(v.get("name", v["id"])),
                    weight=float(v["weight"]),
                    is_control=_parse_bool(v.get("is_control", False), "is_control"),
                    feature_flag_value=str(v.get("feature_flag_value", "")),
                    description=str(v.get("description", "")),
                    config=dict(v.get("config") or {}),
                )
                for v in data["variants"]
            ]
            guardrails = [
                GuardrailMetric(
                    metric=_metric_from_dict(g["metric"]),
                    threshold=float(g["threshold"]),
                    comparison_type=ComparisonType(g.get("comparison_type", "absolute")),
                    description=str(g.get("description", "")),
                )
                for g in data.get("guardrail_metrics") or []
            ]
            eligibility = EligibilityCriteria(**(data.get("eligibility") or {}))
            kwargs: Dict[str, Any] = {
                "id": str(data["id"]),
                "name": str(data.get("name", data["id"])),
                "variants": variants,
                "primary_metric": _metric_from_dict(data["primary_metric"]),
                "secondary_metrics": [_metric_from_dict(m) for m in data.get("secondary_metrics") or []],
                "guardrail_metrics": guardrails,
                "eligibility": eligibility,
            }
        except (KeyError, TypeError, ValueError) as e:
            raise validation_error(f"Malformed experiment definition: {e}") from e

        scalar_parsers = {
            "hypothesis": str,
            "category": ExperimentCategory,
            "safety_classification": SafetyClassification,
            "status": ExperimentStatus,
            "feature_flag_id": str,
            "target_sample_size": int,
            "minimum_detectable_effect": float,
            "significance_level": float,
            "power": float,
            "traffic_percentage": float,
            "start_date": _parse_datetime,
            "end_date": _parse_datetime,
            "max_duration_days": int,
            "created_by": str,
            "approved_by": str,
            "tenant_id": str,
            "stop_reason": str,
            "winning_variant_id": str,
            "created_at": _parse_datetime,
        }
        for key, parse in scalar_parsers.items():
            if data.get(key) is not None:
                try:
                    kwargs[key] = parse(data[key])
                except (TypeError, ValueError) as e:
                    raise validation_error(f"Invalid value for {key}: {data[key]!r}") from e
        return cls(**kwargs)


@dataclass
class Assignment:
    """Sticky assignment of a subject to a variant."""
    experiment_id: str
    subject_id: str
    variant_id: str
    assigned_at: datetime = field(default_factory=_utcnow)


@dataclass
class MetricEvent:
    """One raw metric observation for an assigned subject."""
    experiment_id: str
    subject_id: str
    variant_id: str
    metric_id: str
    value: float
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    recorded_at: datetime = field(default_factory=_utcnow)


@dataclass
class MetricSummary:
    """Summary returned by the persistence layer for one experiment/variant/metric."""
    count: int
    mean: float
    variance: float
    percentiles: Dict[str, float] = field(
        default_factory=lambda: {k: 0.0 for k in PERCENTILE_KEYS}
    )


@dataclass
class VariantStats:
    """Statistics for a single variant on a single metric."""
    variant_id: str
    sample_size: int
    mean: float
    variance: float
    std: float
    ci_low: float
    ci_high: float
    percentiles: Dict[str, float] = field(
        default_factory=lambda: {k: 0.0 for k in PERCENTILE_KEYS}
    )

    @classmethod
    def empty(cls, variant_id: str) -> "VariantStats":
        return cls(variant_id=variant_id, sample_size=0, mean=0.0, variance=0.0,
                   std=0.0, ci_low=0.0, ci_high=0.0)

    @property
    def successes(self) -> int:
        """Success count for binary metrics."""
        return int(round(self.mean * self.sample_size))

    def summary_value(self, aggregation: Aggregation) -> float:
        if aggregation == Aggregation.MEDIAN:
            return self.percentiles.get("p50", 0.0)
        if aggregation == Aggregation.PERCENTILE_95:
            return self.percentiles.get("p95", 0.0)
        if aggregation == Aggregation.SUM:
            return self.mean * self.sample_size
        return self.mean

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass
class TestResult:
    """Frequentist comparison of one variant against control."""
    test_type: str  # z_test, t_test
    statistic: float
    p_value: float
    confidence_level: float
    effect_size: float
    relative_effect: float
    ci_low: float
    ci_high: float
    is_significant: bool
    power_achieved: float
    recommendation: TestRecommendation
    explanation: str
    degrees_of_freedom: Optional[float] = None

    __test__ = False  # not a pytest class


@dataclass
class BayesianResult:
    probability_beat_control: float
    expected_loss: float
    credible_low: float
    credible_high: float
    posterior_mean: float
    posterior_variance: float
    recommendation: TestRecommendation
    simulations: int


@dataclass
class SequentialResult:
    can_stop: bool
    adjusted_alpha: float
    information_fraction: float
    reason: str
    stop_reason: Optional[str] = None  # efficacy, futility
    z_boundary: Optional[float] = None


@dataclass
class VariantComparison:
    variant_id: str
    variant_name: str
    frequentist: TestResult
    sequential: SequentialResult
    bayesian: Optional[BayesianResult] = None


@dataclass
class GuardrailViolation:
    metric_id: str
    metric_name: str
    variant_id: str
    current_value: float
    threshold: float
    comparison_type: ComparisonType
    description: str = ""


@dataclass
class SampleRatioCheck:
    """Chi-square check of observed assignment counts against configured weights."""
    passed: bool
    chi2: float
    p_value: float
    observed: Dict[str, int]
    expected_fractions: Dict[str, float]


@dataclass
class ExperimentResults:
    """Disposable analysis snapshot, regenerated on every analysis call."""
    experiment_id: str
    primary_metric: str
    total_participants: int
    variant_stats: Dict[str, VariantStats]
    comparisons: List[VariantComparison]
    guardrail_violations: List[GuardrailViolation]
    overall_recommendation: str
    can_stop_early: bool
    secondary_stats: Dict[str, Dict[str, VariantStats]] = field(default_factory=dict)
    sample_ratio: Optional[SampleRatioCheck] = None
    status: Optional[ExperimentStatus] = None
    analysed_at: datetime = field(default_factory=_utcnow)

    @property
    def is_significant(self) -> bool:
        return any(c.frequentist.is_significant for c in self.comparisons)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return _jsonable(asdict(self))


@dataclass
class ExperimentSummary:
    id: str
    name: str
    status: ExperimentStatus
    category: ExperimentCategory
    hypothesis: str
    total_participants: int
    variant_counts: Dict[str, int]
    days_running: int
    target_sample_size: int
    percent_complete: int

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


def _metric_from_dict(data: Dict[str, Any]) -> MetricDefinition:
    return MetricDefinition(
        id=str(data["id"]),
        name=str(data.get("name", data["id"])),
        metric_type=MetricType(data.get("metric_type", "binary")),
        event_name=str(data.get("event_name", "")),
        aggregation=Aggregation(data.get("aggregation", "mean")),
        direction=Direction(data.get("direction", "higher_is_better")),
        minimum_sample_per_variant=int(data.get("minimum_sample_per_variant", 0)),
        description=str(data.get("description", "")),
    )


def _parse_bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise validation_error(f"{key} must be a boolean, got {value!r}")
    return value


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value):
        return _jsonable(asdict(value))
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
