"""Experiment statistics module."""

from .descriptive import summarize_values, build_variant_stats
from .hypothesis_tests import proportions_z_test, welch_t_test, recommend_from_test
from .power import achieved_power, sample_size_proportion, sample_size_continuous
from .bayesian import RandomSource, bayesian_binary_ab
from .sequential import sequential_check, obf_boundary, information_fraction
from .srm import srm_chi_square, check_srm

__all__ = [
    "summarize_values",
    "build_variant_stats",
    "proportions_z_test",
    "welch_t_test",
    "recommend_from_test",
    "achieved_power",
    "sample_size_proportion",
    "sample_size_continuous",
    "RandomSource",
    "bayesian_binary_ab",
    "sequential_check",
    "obf_boundary",
    "information_fraction",
    "srm_chi_square",
    "check_srm",
]
