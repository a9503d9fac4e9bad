"""Experiment statistics module."""

from .bayesian import (
    beta_posterior,
    beta_moments,
    credible_interval,
    expected_loss,
    monte_carlo_comparison,
    probability_best,
    sample_posteriors,
)
from .corrections import adjust_p_values, benjamini_hochberg, bonferroni
from .hypothesis_tests import continuous_t_test, proportions_z_test
from .power import mde_proportion, power_proportion, sample_size_proportion
from .sequential import (
    alpha_spending,
    conditional_power,
    repeated_peek_warning,
    z_boundary,
)
from .srm import check_srm, srm_chi_square

__all__ = [
    "beta_posterior",
    "beta_moments",
    "credible_interval",
    "expected_loss",
    "monte_carlo_comparison",
    "probability_best",
    "sample_posteriors",
    "adjust_p_values",
    "benjamini_hochberg",
    "bonferroni",
    "continuous_t_test",
    "proportions_z_test",
    "mde_proportion",
    "power_proportion",
    "sample_size_proportion",
    "alpha_spending",
    "conditional_power",
    "repeated_peek_warning",
    "z_boundary",
    "check_srm",
    "srm_chi_square",
]
