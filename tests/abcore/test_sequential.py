"""Tests for alpha spending and sequential decisions."""
import math

import pytest
from src.abcore.analyze import analyze_sequential
from src.abcore.errors import InvalidConfiguration
from src.abcore.event_store import record_event
from src.abcore.lifecycle import create_experiment, start_experiment
from src.abcore.schema import AnalysisStatus, SequentialDecision
from src.abcore.stats.sequential import (
    SPENDING_METHODS,
    alpha_spending,
    conditional_power,
    repeated_peek_warning,
    z_boundary,
)


@pytest.mark.parametrize("method", SPENDING_METHODS)
def test_spending_is_monotonic_and_bounded(method):
    fractions = [0.0, 0.1, 0.25, 0.5, 0.75, 1.0, 1.5]
    spent = [alpha_spending(t, 0.05, method) for t in fractions]
    assert spent[0] == 0.0
    assert spent[-2] == pytest.approx(0.05)
    assert spent[-1] == pytest.approx(0.05)
    assert all(a <= b for a, b in zip(spent, spent[1:]))


def test_obrien_fleming_is_strict_early():
    assert alpha_spending(0.1, 0.05) < 1e-5
    assert alpha_spending(0.1, 0.05, "pocock") > alpha_spending(0.1, 0.05)


def test_unknown_method_rejected():
    with pytest.raises(InvalidConfiguration):
        alpha_spending(0.5, 0.05, "haybittle")


def test_boundaries():
    assert math.isinf(z_boundary(0.0))
    assert z_boundary(0.05) == pytest.approx(1.96, abs=0.01)
    # O'Brien-Fleming at a quarter of the information: z_{alpha/2} / sqrt(0.25)
    assert z_boundary(alpha_spending(0.25, 0.05)) == pytest.approx(2 * 1.96, abs=0.02)


def test_conditional_power():
    assert conditional_power(3.0, 0.5, 0.05) > 0.9
    assert conditional_power(0.1, 0.5, 0.05) < 0.2
    assert conditional_power(2.5, 1.0, 0.05) == 1.0


def test_peek_warning():
    warn, msg = repeated_peek_warning(1000, 200)
    assert warn
    assert "20%" in msg
    warn, _ = repeated_peek_warning(1000, 1000)
    assert not warn


def _sequential_experiment(store, sample_size):
    exp = create_experiment(
        store,
        name="Sequential",
        variants=[{"id": "control", "is_control": True}, {"id": "treatment"}],
        sample_size=sample_size,
    )
    start_experiment(store, exp.experiment_id)
    return exp.experiment_id


def _load(store, eid, vid, impressions, conversions):
    for _ in range(impressions):
        record_event(store, eid, vid, "impression")
    for _ in range(conversions):
        record_event(store, eid, vid, "conversion")


def test_early_peek_never_stops_for_small_effect(store):
    """10% of the planned sample with a modest lift keeps running."""
    eid = _sequential_experiment(store, sample_size=10000)
    _load(store, eid, "control", 500, 50)
    _load(store, eid, "treatment", 500, 65)

    result = analyze_sequential(store, eid)
    assert result.information_fraction == pytest.approx(0.1)
    assert result.decision == SequentialDecision.CONTINUE
    assert result.spent_alpha < 1e-4
    assert result.peeking_warning


def test_early_peek_with_near_zero_effect_keeps_running(store):
    eid = _sequential_experiment(store, sample_size=10000)
    _load(store, eid, "control", 500, 50)
    _load(store, eid, "treatment", 500, 51)

    result = analyze_sequential(store, eid)
    assert result.information_fraction == pytest.approx(0.1)
    assert result.decision != SequentialDecision.STOP_EFFICACY
    assert result.decision == SequentialDecision.CONTINUE


def test_stop_for_efficacy(store):
    eid = _sequential_experiment(store, sample_size=2000)
    _load(store, eid, "control", 800, 80)
    _load(store, eid, "treatment", 800, 200)

    result = analyze_sequential(store, eid)
    assert result.decision == SequentialDecision.STOP_EFFICACY
    assert result.best_variant_id == "treatment"
    assert result.best_relative_lift > 0


def test_stop_for_futility_at_full_sample(store):
    eid = _sequential_experiment(store, sample_size=1000)
    _load(store, eid, "control", 500, 50)
    _load(store, eid, "treatment", 500, 50)

    result = analyze_sequential(store, eid)
    assert result.information_fraction == pytest.approx(1.0)
    assert result.decision == SequentialDecision.STOP_FUTILITY
    assert result.remaining_alpha == pytest.approx(0.0)


def test_sequential_without_data(store):
    eid = _sequential_experiment(store, sample_size=1000)
    result = analyze_sequential(store, eid)
    assert result.status == AnalysisStatus.INSUFFICIENT_DATA
    assert result.decision == SequentialDecision.CONTINUE


def test_sequential_unknown_spending(store):
    eid = _sequential_experiment(store, sample_size=1000)
    with pytest.raises(InvalidConfiguration):
        analyze_sequential(store, eid, alpha_spending="custom")
