"""
Bayesian A/B comparison for binary metrics (Beta-Binomial conjugate model).

Posteriors are Beta(prior_a + successes, prior_b + failures). P(variant >
control), expected loss and the credible interval are estimated by Monte-Carlo
sampling both posteriors. Sampling goes through RandomSource so a seed makes
every estimate exactly reproducible.
"""

from typing import Optional

import numpy as np

from ..schema import BayesianResult, TestRecommendation

DEFAULT_SIMULATIONS = 10000
MIN_SIMULATIONS = 10000
SHIP_THRESHOLD = 0.95
KEEP_CONTROL_THRESHOLD = 0.05


class RandomSource:
    """
    Seedable sampler: Box-Muller normals, Marsaglia-Tsang gammas, betas as a
    gamma ratio. Uniforms come from numpy's PCG64 generator.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def uniform(self, size: int) -> np.ndarray:
        """Uniform draws on (0, 1]."""
        return 1.0 - self._rng.random(size)

    def normal(self, size: int) -> np.ndarray:
        u1 = self.uniform(size)
        u2 = self.uniform(size)
        return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)

    def gamma(self, shape: float, size: int) -> np.ndarray:
        if shape <= 0:
            raise ValueError(f"Gamma shape must be positive, got {shape}")
        if shape < 1:
            # Boost: Gamma(a) = Gamma(a + 1) * U^(1/a)
            return self.gamma(shape + 1.0, size) * self.uniform(size) ** (1.0 / shape)

        d = shape - 1.0 / 3.0
        c = 1.0 / np.sqrt(9.0 * d)
        out = np.empty(size)
        pending = np.arange(size)
        while pending.size:
            m = pending.size
            x = self.normal(m)
            v = (1.0 + c * x) ** 3
            u = self.uniform(m)
            with np.errstate(invalid="ignore", divide="ignore"):
                squeeze = u < 1.0 - 0.0331 * x ** 4
                full = np.log(u) < 0.5 * x * x + d * (1.0 - v + np.log(v))
            accept = (v > 0) & (squeeze | full)
            out[pending[accept]] = d * v[accept]
            pending = pending[~accept]
        return out

    def beta(self, a: float, b: float, size: int) -> np.ndarray:
        ga = self.gamma(a, size)
        gb = self.gamma(b, size)
        return ga / (ga + gb)


def bayesian_binary_ab(
    control_successes: int,
    control_total: int,
    variant_successes: int,
    variant_total: int,
    prior_alpha: float = 1.0,
    prior_beta: float = 1.0,
    simulations: int = DEFAULT_SIMULATIONS,
    random_source: Optional[RandomSource] = None,
) -> BayesianResult:
    """
    Posterior comparison of two conversion rates.

    Args:
        control_successes: Control successes
        control_total: Control sample size
        variant_successes: Variant successes
        variant_total: Variant sample size
        prior_alpha: Beta prior alpha (1 = uniform)
        prior_beta: Beta prior beta (1 = uniform)
        simulations: Monte-Carlo draws per posterior (at least 10,000)
        random_source: Sampler; a fresh unseeded one when omitted

    Returns:
        BayesianResult
    """
    simulations = max(int(simulations), MIN_SIMULATIONS)
    rs = random_source or RandomSource()

    control_a = prior_alpha + control_successes
    control_b = prior_beta + (control_total - control_successes)
    variant_a = prior_alpha + variant_successes
    variant_b = prior_beta + (variant_total - variant_successes)

    control_draws = rs.beta(control_a, control_b, simulations)
    variant_draws = rs.beta(variant_a, variant_b, simulations)

    prob_beat = float(np.mean(variant_draws > control_draws))
    expected_loss = float(np.mean(np.maximum(0.0, control_draws - variant_draws)))
    ci_low, ci_high = np.quantile(variant_draws, [0.025, 0.975])

    total = variant_a + variant_b
    posterior_mean = variant_a / total
    posterior_variance = (variant_a * variant_b) / (total ** 2 * (total + 1))

    if prob_beat > SHIP_THRESHOLD:
        recommendation = TestRecommendation.SHIP_VARIANT
    elif prob_beat < KEEP_CONTROL_THRESHOLD:
        recommendation = TestRecommendation.KEEP_CONTROL
    else:
        recommendation = TestRecommendation.CONTINUE_TESTING

    return BayesianResult(
        probability_beat_control=prob_beat,
        expected_loss=expected_loss,
        credible_low=float(ci_low),
        credible_high=float(ci_high),
        posterior_mean=float(posterior_mean),
        posterior_variance=float(posterior_variance),
        recommendation=recommendation,
        simulations=simulations,
    )
