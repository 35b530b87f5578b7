"""Tests for SRM chi-square."""
import pytest
from experiment_engine.stats.srm import check_srm, srm_chi_square

HALF = {"control": 0.5, "variant_a": 0.5}


def test_srm_perfect_balance():
    """500/500 should pass SRM."""
    r = check_srm({"control": 500, "variant_a": 500}, HALF)
    assert r.passed
    assert r.p_value > 0.9


def test_srm_extreme_imbalance():
    """900/100 should fail SRM."""
    r = check_srm({"control": 900, "variant_a": 100}, HALF)
    assert not r.passed
    assert r.p_value < 0.01


def test_srm_three_variants():
    weights = {"control": 0.5, "a": 0.3, "b": 0.2}
    assert check_srm({"control": 5010, "a": 2990, "b": 2000}, weights).passed
    r = check_srm({"control": 5000, "a": 2500, "b": 2500}, weights)
    assert not r.passed
    assert r.observed == {"control": 5000, "a": 2500, "b": 2500}


def test_srm_chi_square_output():
    """Chi-square returns (stat, pvalue)."""
    chi2, p = srm_chi_square({"control": 50, "variant_a": 50}, HALF)
    assert chi2 == pytest.approx(0.0)
    assert 0 <= p <= 1


def test_srm_no_traffic():
    chi2, p = srm_chi_square({}, HALF)
    assert (chi2, p) == (0.0, 1.0)
