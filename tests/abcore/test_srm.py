"""Tests for SRM chi-square and p-value corrections."""
import pytest
from src.abcore.stats.corrections import adjust_p_values, benjamini_hochberg, bonferroni
from src.abcore.errors import InvalidConfiguration
from src.abcore.stats.srm import check_srm, srm_chi_square


def test_srm_perfect_balance():
    """500/500 should pass SRM."""
    passed, _, p = check_srm([500, 500], [50, 50])
    assert passed
    assert p > 0.9


def test_srm_extreme_imbalance():
    """900/100 should fail SRM."""
    passed, _, p = check_srm([900, 100], [50, 50])
    assert not passed
    assert p < 0.01


def test_srm_uneven_weights():
    passed, _, _ = check_srm([200, 300, 500], [20, 30, 50])
    assert passed


def test_srm_chi_square_output():
    """Chi-square returns (stat, pvalue)."""
    chi2, p = srm_chi_square([50, 50], [0.5, 0.5])
    assert chi2 >= 0
    assert 0 <= p <= 1


def test_srm_no_traffic():
    assert srm_chi_square([0, 0], [50, 50]) == (0.0, 1.0)


def test_bonferroni():
    assert bonferroni([0.01, 0.04, 0.5]) == pytest.approx([0.03, 0.12, 1.0])


def test_benjamini_hochberg_keeps_order():
    adjusted = benjamini_hochberg([0.04, 0.01, 0.03])
    assert adjusted == pytest.approx([0.04, 0.03, 0.04])


def test_unknown_correction():
    with pytest.raises(InvalidConfiguration):
        adjust_p_values([0.1], "holm")
