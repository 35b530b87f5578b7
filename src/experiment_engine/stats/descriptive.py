"""
Descriptive statistics for raw metric values.

Count, mean, sample variance and linearly interpolated percentiles, plus the
per-variant confidence interval built on top of them.
"""

import math
from typing import Iterable

import numpy as np
from scipy import stats

from ..schema import PERCENTILE_KEYS, MetricSummary, VariantStats

PERCENTILES = (5, 25, 50, 75, 95)


def summarize_values(values: Iterable[float]) -> MetricSummary:
    """
    Summarize raw metric values.

    Variance uses ddof=1 (sample variance); percentiles use linear
    interpolation between order statistics. An empty input yields all zeros.
    """
    arr = np.asarray(list(values), dtype=float)
    n = int(arr.size)
    if n == 0:
        return MetricSummary(count=0, mean=0.0, variance=0.0)

    mean = float(np.mean(arr))
    variance = float(np.var(arr, ddof=1)) if n > 1 else 0.0
    qs = np.percentile(arr, PERCENTILES)
    return MetricSummary(
        count=n,
        mean=mean,
        variance=variance,
        percentiles={k: float(q) for k, q in zip(PERCENTILE_KEYS, qs)},
    )


def build_variant_stats(
    variant_id: str,
    summary: MetricSummary,
    ci_level: float = 0.95,
) -> VariantStats:
    """Build VariantStats (with a normal CI on the mean) from a store summary."""
    n = int(summary.count or 0)
    if n == 0:
        return VariantStats.empty(variant_id)

    mean = float(summary.mean or 0.0)
    variance = max(float(summary.variance or 0.0), 0.0)
    std = math.sqrt(variance)
    se = std / math.sqrt(n)
    z_crit = stats.norm.ppf((1 + ci_level) / 2)

    percentiles = {k: float(summary.percentiles.get(k) or 0.0) for k in PERCENTILE_KEYS}
    return VariantStats(
        variant_id=variant_id,
        sample_size=n,
        mean=mean,
        variance=variance,
        std=std,
        ci_low=float(mean - z_crit * se),
        ci_high=float(mean + z_crit * se),
        percentiles=percentiles,
    )
