"""
Sample Ratio Mismatch (SRM) chi-square test.

Detects if observed assignment counts deviate significantly from the
configured variant weights.
"""

from typing import Dict, Tuple

import numpy as np
from scipy import stats

from ..schema import SampleRatioCheck


def srm_chi_square(
    observed: Dict[str, int],
    expected_fractions: Dict[str, float],
) -> Tuple[float, float]:
    """
    Chi-square goodness-of-fit for variant allocation.

    H0: actual allocation equals the configured weights
    H1: actual allocation differs

    Args:
        observed: Assignment count per variant id
        expected_fractions: Configured weight per variant id

    Returns:
        Tuple of (chi2_statistic, p_value)
    """
    keys = list(expected_fractions)
    counts = np.array([observed.get(k, 0) for k in keys], dtype=float)
    n_total = counts.sum()
    if n_total == 0 or len(keys) < 2:
        return 0.0, 1.0

    expected = n_total * np.array([expected_fractions[k] for k in keys], dtype=float)
    # Zero-weight arms: any traffic there is a mismatch, avoid division by zero
    expected = np.where(expected == 0, 1e-10, expected)

    chi2 = float(np.sum((counts - expected) ** 2 / expected))
    p_value = float(1 - stats.chi2.cdf(chi2, df=len(keys) - 1))
    return chi2, p_value


def check_srm(
    observed: Dict[str, int],
    expected_fractions: Dict[str, float],
    alpha: float = 0.01,
) -> SampleRatioCheck:
    """
    Check for sample ratio mismatch.

    Args:
        observed: Assignment count per variant id
        expected_fractions: Configured weight per variant id
        alpha: Significance threshold (default 0.01)

    Returns:
        SampleRatioCheck
    """
    chi2, p_value = srm_chi_square(observed, expected_fractions)
    return SampleRatioCheck(
        passed=p_value >= alpha,
        chi2=chi2,
        p_value=p_value,
        observed={k: int(observed.get(k, 0)) for k in expected_fractions},
        expected_fractions=dict(expected_fractions),
    )
