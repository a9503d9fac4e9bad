"""
Experiment analysis entrypoints.

Frequentist, Bayesian, sequential and revenue analyses over ledger
aggregates, plus standalone tests and sample-size calculators. Every
analysis is a pure function of a consistent snapshot; too little data
yields a result with status ``insufficient-data`` rather than an exception.
"""

import logging
from typing import Dict, Optional, Sequence

import numpy as np

from .config import EngineConfig
from .errors import InvalidConfiguration
from .event_store import events_frame, get_aggregates
from .lifecycle import get_experiment
from .schema import (
    AnalysisStatus,
    BayesianResult,
    ConfidenceInterval,
    Experiment,
    FrequentistResult,
    MonteCarloResult,
    PosteriorSummary,
    PowerResult,
    RevenueComparison,
    RevenueResult,
    SampleSizeResult,
    SequentialDecision,
    SequentialResult,
    TTestResult,
    Variant,
    VariantAggregate,
    VariantComparison,
    ZTestResult,
)
from .stats import (
    adjust_p_values,
    beta_moments,
    beta_posterior,
    check_srm,
    conditional_power,
    continuous_t_test,
    credible_interval,
    expected_loss,
    mde_proportion,
    monte_carlo_comparison,
    power_proportion,
    probability_best,
    proportions_z_test,
    repeated_peek_warning,
    sample_posteriors,
    sample_size_proportion,
    z_boundary,
)
from .stats import sequential
from .store import ExperimentStore

logger = logging.getLogger(__name__)

INSUFFICIENT = AnalysisStatus.INSUFFICIENT_DATA


def _resolve_control(experiment: Experiment):
    """Flagged control, else the first declared variant (inferred)."""
    control = experiment.control
    if control is not None:
        return control, False
    return experiment.variants[0], True


def _check_confidence(confidence_level: float) -> None:
    if not 0 < confidence_level < 1:
        raise InvalidConfiguration("confidence_level must be in (0, 1)")


def _compare(
    control: Variant,
    variant: Variant,
    c_agg: VariantAggregate,
    v_agg: VariantAggregate,
    confidence_level: float,
) -> VariantComparison:
    comparison = VariantComparison(variant_id=variant.variant_id, variant_name=variant.name)
    if c_agg.impressions == 0 or v_agg.impressions == 0:
        comparison.status = INSUFFICIENT
        comparison.reason = "Control and variant both need impressions"
        return comparison

    z = proportions_z_test(
        c_agg.conversions, c_agg.impressions,
        v_agg.conversions, v_agg.impressions,
        confidence_level,
    )
    c_rate, v_rate = z.rate_a, z.rate_b
    comparison.control_rate = c_rate
    comparison.variant_rate = v_rate
    comparison.absolute_lift = v_rate - c_rate
    comparison.relative_lift = (v_rate - c_rate) / c_rate if c_rate > 0 else 0.0
    comparison.z_score = z.z_score
    comparison.p_value = z.p_value
    comparison.adjusted_p_value = z.p_value
    comparison.standard_error = z.standard_error
    comparison.confidence_interval = z.confidence_interval
    comparison.is_significant = z.is_significant
    return comparison


def analyze_frequentist(
    store: ExperimentStore,
    experiment_id: str,
    correction: Optional[str] = None,
) -> FrequentistResult:
    """
    Pooled two-proportion z-test of every variant against control.

    Args:
        store: Experiment store
        experiment_id: Experiment ID
        correction: Optional multiple-comparison correction (bonferroni, fdr_bh)

    Returns:
        FrequentistResult
    """
    experiment = get_experiment(store, experiment_id)
    result = FrequentistResult(
        experiment_id=experiment_id,
        confidence_level=experiment.confidence_level,
        correction=correction,
    )
    if len(experiment.variants) < 2:
        result.status = INSUFFICIENT
        result.reason = "At least two variants are required"
        return result

    aggs = get_aggregates(store, experiment_id)
    control, inferred = _resolve_control(experiment)
    result.control_variant_id = control.variant_id
    result.control_inferred = inferred
    result.rates = {
        vid: {
            "impressions": a.impressions,
            "conversions": a.conversions,
            "conversion_rate": a.conversion_rate,
            "revenue": a.revenue,
            "revenue_per_impression": a.revenue_per_impression,
        }
        for vid, a in aggs.items()
    }

    c_agg = aggs[control.variant_id]
    result.comparisons = [
        _compare(control, v, c_agg, aggs[v.variant_id], experiment.confidence_level)
        for v in experiment.variants
        if v.variant_id != control.variant_id
    ]

    ok = [c for c in result.comparisons if c.status == AnalysisStatus.OK]
    if c_agg.impressions == 0 or not ok:
        result.status = INSUFFICIENT
        result.reason = "Control has no impressions" if c_agg.impressions == 0 else \
            "No variant has enough data for comparison"
        logger.warning(f"Frequentist analysis of {experiment_id}: {result.reason}")
        return result

    if correction is not None:
        alpha = 1 - experiment.confidence_level
        adjusted = adjust_p_values([c.p_value for c in ok], correction)
        for comparison, p_adj in zip(ok, adjusted):
            comparison.adjusted_p_value = float(p_adj)
            comparison.is_significant = bool(p_adj < alpha)

    weights = [v.traffic_weight for v in experiment.variants]
    if all(w is not None and w > 0 for w in weights):
        observed = [aggs[v.variant_id].impressions for v in experiment.variants]
        passed, _, p_srm = check_srm(observed, weights, alpha=store.config.srm_alpha)
        result.srm_passed = passed
        result.srm_p_value = p_srm
        if not passed:
            logger.warning(
                f"Sample ratio mismatch in {experiment_id} (p={p_srm:.4g}); "
                "traffic split deviates from configured weights"
            )
    return result


def analyze_bayesian(
    store: ExperimentStore,
    experiment_id: str,
    prior_alpha: float = 1.0,
    prior_beta: float = 1.0,
    num_samples: Optional[int] = None,
) -> BayesianResult:
    """
    Beta-Binomial analysis with probability-to-be-best.

    Args:
        store: Experiment store
        experiment_id: Experiment ID
        prior_alpha: Beta prior alpha (default uniform prior)
        prior_beta: Beta prior beta
        num_samples: Joint posterior draws (defaults to config.bayesian_samples)

    Returns:
        BayesianResult
    """
    if prior_alpha <= 0 or prior_beta <= 0:
        raise InvalidConfiguration("Prior parameters must be positive")
    if num_samples is None:
        num_samples = store.config.bayesian_samples
    if num_samples <= 0:
        raise InvalidConfiguration("num_samples must be positive")

    experiment = get_experiment(store, experiment_id)
    result = BayesianResult(
        experiment_id=experiment_id,
        num_samples=num_samples,
        prior_alpha=prior_alpha,
        prior_beta=prior_beta,
    )
    if not experiment.variants:
        result.status = INSUFFICIENT
        result.reason = "Experiment has no variants"
        return result

    aggs = get_aggregates(store, experiment_id)
    if sum(a.impressions for a in aggs.values()) == 0:
        result.status = INSUFFICIENT
        result.reason = "No impressions recorded yet"
        logger.warning(f"Bayesian analysis of {experiment_id}: {result.reason}")
        return result

    variant_ids = [v.variant_id for v in experiment.variants]
    params = [
        beta_posterior(aggs[vid].conversions, aggs[vid].impressions, prior_alpha, prior_beta)
        for vid in variant_ids
    ]
    samples = sample_posteriors(params, num_samples, store.spawn_rng())
    level = store.config.credible_level

    for i, v in enumerate(experiment.variants):
        a, b = params[i]
        mean, var = beta_moments(a, b)
        lower, upper = credible_interval(samples[:, i], level)
        result.posteriors[v.variant_id] = PosteriorSummary(
            variant_id=v.variant_id,
            variant_name=v.name,
            alpha=a,
            beta=b,
            mean=mean,
            variance=var,
            credible_interval=ConfidenceInterval(lower=lower, upper=upper, level=level),
            impressions=aggs[v.variant_id].impressions,
            conversions=aggs[v.variant_id].conversions,
        )

    result.probability_best = probability_best(samples, variant_ids)
    result.expected_loss = expected_loss(samples, variant_ids)

    control, _ = _resolve_control(experiment)
    c_idx = variant_ids.index(control.variant_id)
    result.control_variant_id = control.variant_id
    result.probability_beat_control = {
        vid: float(np.mean(samples[:, i] > samples[:, c_idx]))
        for i, vid in enumerate(variant_ids)
        if i != c_idx
    }
    return result


def analyze_sequential(
    store: ExperimentStore,
    experiment_id: str,
    alpha_spending: str = "obrien-fleming",
    n_analyses: int = 1,
) -> SequentialResult:
    """
    Group-sequential analysis with an alpha-spending boundary.

    information_fraction = total impressions / target sample size. The
    leading comparison (highest z-score against control) stops for efficacy
    only if its p-value is below the alpha spent so far and its lift is
    positive. Futility is declared when conditional power under the current
    trend drops below config.futility_threshold (after
    config.futility_min_information), or when the full sample is reached
    without a winner.

    Args:
        store: Experiment store
        experiment_id: Experiment ID
        alpha_spending: obrien-fleming, pocock or linear
        n_analyses: How many looks have been taken, for the peeking warning

    Returns:
        SequentialResult
    """
    if alpha_spending not in sequential.SPENDING_METHODS:
        raise InvalidConfiguration(f"Unknown alpha spending method '{alpha_spending}'")

    experiment = get_experiment(store, experiment_id)
    alpha = 1 - experiment.confidence_level
    freq = analyze_frequentist(store, experiment_id)
    total = sum(int(r["impressions"]) for r in freq.rates.values())
    fraction = total / experiment.sample_size

    result = SequentialResult(
        experiment_id=experiment_id,
        alpha_spending=alpha_spending,
        information_fraction=fraction,
        alpha=alpha,
        remaining_alpha=alpha,
        frequentist=freq,
    )
    warn, message = repeated_peek_warning(experiment.sample_size, total, n_analyses)
    result.peeking_warning = message if warn else ""

    if freq.status != AnalysisStatus.OK:
        result.status = INSUFFICIENT
        result.reason = freq.reason
        result.decision_reason = "Not enough data to evaluate stopping boundaries"
        return result

    spent = sequential.alpha_spending(fraction, alpha, alpha_spending)
    result.spent_alpha = spent
    result.remaining_alpha = alpha - spent
    result.z_boundary = z_boundary(spent)

    ok = [c for c in freq.comparisons if c.status == AnalysisStatus.OK]
    best = max(ok, key=lambda c: c.z_score)
    result.best_variant_id = best.variant_id
    result.best_p_value = best.p_value
    result.best_relative_lift = best.relative_lift

    cp = conditional_power(best.z_score, min(fraction, 1.0), alpha)
    result.conditional_power = cp
    cfg = store.config

    if best.p_value < spent and best.absolute_lift > 0:
        result.decision = SequentialDecision.STOP_EFFICACY
        result.decision_reason = (
            f"Variant {best.variant_name} crossed the boundary "
            f"(p={best.p_value:.4g} < {spent:.4g})"
        )
    elif fraction >= 1:
        result.decision = SequentialDecision.STOP_FUTILITY
        result.decision_reason = "Planned sample reached without a significant improvement"
    elif fraction >= cfg.futility_min_information and cp < cfg.futility_threshold:
        result.decision = SequentialDecision.STOP_FUTILITY
        result.decision_reason = (
            f"Conditional power {cp:.1%} below {cfg.futility_threshold:.0%} "
            "under the current trend"
        )
    else:
        result.decision = SequentialDecision.CONTINUE
        result.decision_reason = f"{fraction:.0%} of planned sample observed; boundary not crossed"

    logger.info(f"Sequential analysis of {experiment_id}: {result.decision.value} at t={fraction:.2f}")
    return result


def _revenue_per_visitor(store: ExperimentStore, experiment_id: str) -> Dict[str, np.ndarray]:
    """Revenue summed per exposed visitor (0 for visitors without revenue), by variant."""
    df = events_frame(store, experiment_id)
    if df.empty:
        return {}
    exposed = (
        df[(df["type"] == "impression") & df["visitor_id"].notna()]
        [["variant_id", "visitor_id"]]
        .drop_duplicates()
    )
    revenue = (
        df[df["type"] == "revenue"]
        .groupby(["variant_id", "visitor_id"], as_index=False)["value"]
        .sum()
    )
    merged = exposed.merge(revenue, on=["variant_id", "visitor_id"], how="left")
    merged["value"] = merged["value"].fillna(0.0).astype(float)
    return {vid: grp["value"].to_numpy() for vid, grp in merged.groupby("variant_id")}


def analyze_revenue(store: ExperimentStore, experiment_id: str) -> RevenueResult:
    """Welch t-test of revenue per exposed visitor, each variant vs control."""
    experiment = get_experiment(store, experiment_id)
    result = RevenueResult(experiment_id=experiment_id)
    if len(experiment.variants) < 2:
        result.status = INSUFFICIENT
        result.reason = "At least two variants are required"
        return result

    control, _ = _resolve_control(experiment)
    result.control_variant_id = control.variant_id
    values = _revenue_per_visitor(store, experiment_id)
    empty = np.array([], dtype=float)
    c_vals = values.get(control.variant_id, empty)

    for v in experiment.variants:
        if v.variant_id == control.variant_id:
            continue
        v_vals = values.get(v.variant_id, empty)
        test = continuous_t_test(c_vals, v_vals, experiment.confidence_level)
        result.comparisons.append(RevenueComparison(
            variant_id=v.variant_id,
            variant_name=v.name,
            control_revenue_per_visitor=float(c_vals.mean()) if len(c_vals) else None,
            variant_revenue_per_visitor=float(v_vals.mean()) if len(v_vals) else None,
            test=test,
        ))

    if all(c.test.status != AnalysisStatus.OK for c in result.comparisons):
        result.status = INSUFFICIENT
        result.reason = "Each group needs at least two exposed visitors"
    return result


# ---------------------------------------------------------------------------
# Standalone tests and calculators
# ---------------------------------------------------------------------------


def run_t_test(
    sample_a: Sequence[float],
    sample_b: Sequence[float],
    confidence_level: float = 0.95,
) -> TTestResult:
    """Welch t-test on two raw numeric samples."""
    _check_confidence(confidence_level)
    return continuous_t_test(sample_a, sample_b, confidence_level)


def run_z_test(
    c1: int,
    n1: int,
    c2: int,
    n2: int,
    confidence_level: float = 0.95,
) -> ZTestResult:
    """Two-proportion z-test from counts."""
    _check_confidence(confidence_level)
    for c, n in ((c1, n1), (c2, n2)):
        if c < 0 or n < 0 or c > n:
            raise InvalidConfiguration(f"Invalid counts: {c} conversions out of {n}")
    return proportions_z_test(c1, n1, c2, n2, confidence_level)


def run_monte_carlo(
    alpha_a: float,
    beta_a: float,
    alpha_b: float,
    beta_b: float,
    num_samples: Optional[int] = None,
    seed: Optional[int] = None,
) -> MonteCarloResult:
    """Probability that arm B beats arm A under Beta posteriors."""
    if num_samples is None:
        num_samples = EngineConfig.monte_carlo_samples
    if min(alpha_a, beta_a, alpha_b, beta_b) <= 0:
        raise InvalidConfiguration("Beta parameters must be positive")
    if num_samples <= 0:
        raise InvalidConfiguration("num_samples must be positive")
    prob, lift = monte_carlo_comparison(
        alpha_a, beta_a, alpha_b, beta_b, num_samples, np.random.default_rng(seed)
    )
    return MonteCarloResult(probability_b_beats_a=prob, num_samples=num_samples, expected_lift=lift)


def compute_sample_size(
    baseline_rate: float,
    mde: float,
    alpha: float = 0.05,
    power: float = 0.8,
    num_variants: int = 2,
) -> SampleSizeResult:
    """
    Required sample size per variant and in total.

    Args:
        baseline_rate: Control conversion rate
        mde: Minimum detectable effect, relative (0.20 = +20%)
        alpha: Two-sided Type I error
        power: Desired power
        num_variants: Number of variants sharing traffic

    Returns:
        SampleSizeResult (total = per variant * num_variants)
    """
    if num_variants < 2:
        raise InvalidConfiguration("num_variants must be at least 2")
    per_variant = sample_size_proportion(baseline_rate, mde, alpha, power)
    return SampleSizeResult(
        sample_size_per_variant=per_variant,
        total_sample_size=per_variant * num_variants,
        baseline_rate=baseline_rate,
        variant_rate=baseline_rate * (1 + mde),
        minimum_detectable_effect=mde,
        alpha=alpha,
        power=power,
        num_variants=num_variants,
    )


def compute_power(
    sample_size: int,
    baseline_rate: float,
    mde: float,
    alpha: float = 0.05,
) -> PowerResult:
    """Power achieved with ``sample_size`` visitors per variant."""
    return PowerResult(
        power=power_proportion(baseline_rate, mde, sample_size, alpha),
        sample_size=sample_size,
        baseline_rate=baseline_rate,
        variant_rate=baseline_rate * (1 + mde),
        minimum_detectable_effect=mde,
        alpha=alpha,
    )


def compute_mde(
    baseline_rate: float,
    sample_size: int,
    alpha: float = 0.05,
    power: float = 0.8,
) -> float:
    """Smallest relative lift detectable with ``sample_size`` visitors per variant."""
    return mde_proportion(baseline_rate, sample_size, alpha, power)
