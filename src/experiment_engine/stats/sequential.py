"""
Sequential analysis: alpha-spending early-stopping and futility checks.

The admissible significance level at information fraction f is alpha * f^2,
strict on early looks and close to alpha near the planned sample size. Both
checks are advisory; nothing here changes experiment state.
"""

import math
from typing import Optional

from scipy import stats

from ..schema import SequentialResult

FUTILITY_MIN_FRACTION = 0.5
FUTILITY_P_VALUE = 0.5


def information_fraction(n_current: int, n_target: int) -> float:
    """Share of the planned sample observed so far, capped at 1. Zero without a plan."""
    if n_target <= 0:
        return 0.0
    return min(max(n_current / n_target, 0.0), 1.0)


def spent_alpha(alpha: float, fraction: float) -> float:
    """O'Brien-Fleming style alpha spending: alpha * f^2."""
    return alpha * fraction ** 2


def obf_boundary(
    alpha: float,
    fraction: float,
) -> Optional[float]:
    """
    O'Brien-Fleming z boundary z_{alpha/2} / sqrt(f), reported alongside the
    spending threshold. None before any information has accrued.
    """
    if fraction <= 0 or fraction > 1:
        return None
    z_alpha = stats.norm.ppf(1 - alpha / 2)
    return float(z_alpha / math.sqrt(fraction))


def sequential_check(
    p_value: float,
    n_current: int,
    n_target: int,
    alpha: float = 0.05,
) -> SequentialResult:
    """
    Can the experiment stop early?

    Args:
        p_value: Current p-value of the primary comparison
        n_current: Observed sample size (both arms)
        n_target: Planned sample size (both arms)
        alpha: Overall Type I error

    Returns:
        SequentialResult
    """
    if n_target <= 0:
        return SequentialResult(
            can_stop=False,
            adjusted_alpha=0.0,
            information_fraction=0.0,
            reason="No sample size plan yet, continue collecting data",
        )

    fraction = information_fraction(n_current, n_target)
    adjusted = spent_alpha(alpha, fraction)
    boundary = obf_boundary(alpha, fraction)
    pct = fraction * 100

    if p_value < adjusted:
        return SequentialResult(
            can_stop=True,
            adjusted_alpha=adjusted,
            information_fraction=fraction,
            reason=f"Significant at adjusted alpha {adjusted:.4f} (information fraction {pct:.0f}%)",
            stop_reason="efficacy",
            z_boundary=boundary,
        )

    if fraction > FUTILITY_MIN_FRACTION and p_value > FUTILITY_P_VALUE:
        return SequentialResult(
            can_stop=True,
            adjusted_alpha=adjusted,
            information_fraction=fraction,
            reason=(
                f"Futility: p={p_value:.3f} at {pct:.0f}% of target sample, "
                "unlikely to reach significance"
            ),
            stop_reason="futility",
            z_boundary=boundary,
        )

    return SequentialResult(
        can_stop=False,
        adjusted_alpha=adjusted,
        information_fraction=fraction,
        reason="Continue collecting data",
        z_boundary=boundary,
    )
