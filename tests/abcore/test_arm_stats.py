"""Tests for bandit arm statistics."""
import pytest
from src.abcore.arm_stats import (
    experiment_arm_stats,
    get_arm_stat,
    record_pull,
    record_reward,
    record_selection,
    reset_arm_stats,
)
from src.abcore.errors import NotFound
from src.abcore.lifecycle import create_experiment, delete_experiment


@pytest.fixture(autouse=True)
def experiment(store):
    return create_experiment(
        store,
        name="Arms",
        variants=[{"id": "a"}, {"id": "b"}],
        allocation={"type": "bandit", "method": "ucb1"},
        experiment_id="exp_1",
    )


def test_lazy_init(store):
    arm = get_arm_stat(store, "exp_1", "a")
    assert arm.pulls == 0
    assert arm.selections == 0
    assert arm.alpha == 1
    assert arm.beta == 1
    assert arm.avg_reward == 0.0
    assert ("exp_1", "a") not in store.arm_stats


def test_pull_and_reward(store):
    for _ in range(10):
        record_pull(store, "exp_1", "a")
    for _ in range(3):
        record_reward(store, "exp_1", "a")
    arm = get_arm_stat(store, "exp_1", "a")
    assert arm.pulls == 10
    assert arm.rewards == 3
    assert arm.alpha == 4
    assert arm.beta == 8
    assert arm.avg_reward == 0.3


def test_selections_count_as_exposure_but_not_reward_denominator(store):
    for _ in range(4):
        record_selection(store, "exp_1", "a")
    record_pull(store, "exp_1", "a")
    record_reward(store, "exp_1", "a")
    arm = get_arm_stat(store, "exp_1", "a")
    assert arm.selections == 4
    assert arm.exposures == 4
    assert arm.avg_reward == 1.0


def test_beta_floored_when_rewards_exceed_pulls(store):
    """A conversion arriving before its impression keeps Beta valid."""
    record_reward(store, "exp_1", "a")
    arm = get_arm_stat(store, "exp_1", "a")
    assert arm.beta == 1


def test_snapshots_are_copies(store):
    snap = record_pull(store, "exp_1", "a")
    snap.pulls = 99
    assert get_arm_stat(store, "exp_1", "a").pulls == 1


def test_ordered_snapshots(store):
    record_pull(store, "exp_1", "b")
    arms = experiment_arm_stats(store, "exp_1", ["a", "b"])
    assert [a.variant_id for a in arms] == ["a", "b"]
    assert [a.pulls for a in arms] == [0, 1]


def test_reset(store):
    record_pull(store, "exp_1", "a")
    record_pull(store, "exp_1", "b")
    assert reset_arm_stats(store, "exp_1") == 2
    assert get_arm_stat(store, "exp_1", "a").pulls == 0
    assert get_arm_stat(store, "exp_1", "b").pulls == 0


def test_writes_after_delete_are_refused(store):
    record_pull(store, "exp_1", "a")
    delete_experiment(store, "exp_1")
    with pytest.raises(NotFound):
        record_pull(store, "exp_1", "a")
    with pytest.raises(NotFound):
        record_selection(store, "exp_1", "b")
    assert not any(k[0] == "exp_1" for k in store.arm_stats)
