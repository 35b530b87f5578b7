"""Per-variant metric aggregation over the persistence collaborator."""

import logging

from .errors import ErrorCode, ExperimentError
from .schema import MetricDefinition, VariantStats
from .stats.descriptive import build_variant_stats
from .store import ExperimentStore, StoreError

logger = logging.getLogger(__name__)


class MetricAggregator:
    """Recomputes VariantStats from raw metric events on every call."""

    def __init__(self, store: ExperimentStore, ci_level: float = 0.95):
        self.store = store
        self.ci_level = ci_level

    def aggregate(self, experiment_id: str, variant_id: str, metric: MetricDefinition) -> VariantStats:
        """
        Aggregate one (experiment, variant, metric) triple.

        A variant with no events yet gets all-zero stats. A failing store read
        raises AGGREGATION_FAILED so no analysis is built over partial data.
        """
        try:
            summary = self.store.query_metric_events(experiment_id, variant_id, metric.id)
        except StoreError as e:
            raise ExperimentError(
                ErrorCode.AGGREGATION_FAILED,
                f"Failed to aggregate {metric.id} for {experiment_id}/{variant_id}: {e}",
            ) from e

        stats = build_variant_stats(variant_id, summary, self.ci_level)
        if 0 < stats.sample_size < metric.minimum_sample_per_variant:
            logger.debug(
                f"{experiment_id}/{variant_id} {metric.id}: {stats.sample_size} samples, "
                f"below minimum {metric.minimum_sample_per_variant}"
            )
        return stats
