"""
Power analysis and sample size planning.

Achieved power reported with every test, plus required sample size per
variant for proportions and continuous metrics when planning an experiment.
"""

import numpy as np
from scipy import stats


def achieved_power(effect: float, se: float, alpha: float = 0.05) -> float:
    """
    Achieved power for an observed effect: Phi(|effect| / se - z_{alpha/2}).

    Reported next to each test so "not significant" can be told apart from
    "underpowered". A zero standard error means the effect is known exactly.
    """
    if se == 0:
        return 1.0
    z_alpha = stats.norm.ppf(1 - alpha / 2)
    return float(stats.norm.cdf(abs(effect) / se - z_alpha))


def sample_size_proportion(
    baseline: float,
    mde_relative: float,
    alpha: float = 0.05,
    power: float = 0.8,
    allocation: float = 0.5,
) -> int:
    """
    Sample size per variant for a two-proportion test.

    Args:
        baseline: Baseline proportion (e.g., 0.40 completion)
        mde_relative: Minimum detectable effect as relative change (0.05 = 5% relative lift)
        alpha: Type I error rate
        power: Statistical power (1 - Type II)
        allocation: Fraction of traffic in the variant arm

    Returns:
        Required sample size per variant
    """
    p1 = baseline
    p2 = min(baseline * (1 + mde_relative), 1.0)

    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_beta = stats.norm.ppf(power)

    p_pool = (p1 + p2) / 2
    se = np.sqrt(p_pool * (1 - p_pool) * (1 / allocation + 1 / (1 - allocation)) / 2)
    effect = abs(p2 - p1)

    if se == 0 or effect == 0:
        return 0

    n_per_arm = ((z_alpha + z_beta) * se / effect) ** 2
    return int(np.ceil(n_per_arm))


def sample_size_continuous(
    std: float,
    mde_abs: float,
    alpha: float = 0.05,
    power: float = 0.8,
) -> int:
    """
    Sample size per variant for a two-sample comparison of means.

    Args:
        std: Expected standard deviation of the metric
        mde_abs: Minimum detectable effect (absolute difference in means)
        alpha: Type I error
        power: Statistical power

    Returns:
        Required sample size per variant
    """
    if mde_abs == 0:
        return 0
    z_alpha = stats.norm.ppf(1 - alpha / 2)
    z_beta = stats.norm.ppf(power)

    n = 2 * (z_alpha + z_beta) ** 2 * (std ** 2) / (mde_abs ** 2)
    return int(np.ceil(n))
