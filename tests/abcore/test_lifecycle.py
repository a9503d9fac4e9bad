"""Tests for experiment lifecycle and validation."""
import pytest
from src.abcore.errors import ExperimentNotActive, InvalidConfiguration, NotFound
from src.abcore.event_store import get_aggregates, record_event
from src.abcore.assignment import assign, get_allocator
from src.abcore.lifecycle import (
    add_variant,
    create_experiment,
    delete_experiment,
    get_experiment,
    list_experiments,
    pause_experiment,
    start_experiment,
    stop_experiment,
    update_experiment,
)
from src.abcore.schema import AllocationMethod, ExperimentStatus, ExperimentType


def test_create_defaults(store):
    """New experiments start in draft with generated ids."""
    exp = create_experiment(store, name="Homepage", variants=[{"name": "A"}, {"name": "B"}])
    assert exp.status == ExperimentStatus.DRAFT
    assert exp.experiment_id.startswith("exp_")
    assert [v.variant_id for v in exp.variants] == ["var_0", "var_1"]
    assert exp.type == ExperimentType.AB
    assert exp.allocation.method == AllocationMethod.ROUND_ROBIN


def test_create_without_variants_is_legal(store):
    exp = create_experiment(store, name="Empty")
    assert exp.variants == []
    assert exp.goals == []


def test_weights_must_sum_to_100(store):
    with pytest.raises(InvalidConfiguration):
        create_experiment(
            store,
            name="Bad",
            variants=[{"id": "a", "traffic_weight": 60}, {"id": "b", "traffic_weight": 30}],
        )


def test_weights_all_or_none(store):
    with pytest.raises(InvalidConfiguration):
        create_experiment(
            store,
            name="Bad",
            variants=[{"id": "a", "traffic_weight": 100}, {"id": "b"}],
        )


def test_duplicate_variant_ids_rejected(store):
    with pytest.raises(InvalidConfiguration):
        create_experiment(store, name="Dup", variants=[{"id": "a"}, {"id": "a"}])


def test_two_controls_rejected(store):
    with pytest.raises(InvalidConfiguration):
        create_experiment(
            store,
            name="Two controls",
            variants=[{"id": "a", "is_control": True}, {"id": "b", "is_control": True}],
        )


def test_invalid_allocation_pair(store):
    """Fixed allocators cannot run bandit methods."""
    with pytest.raises(InvalidConfiguration):
        create_experiment(
            store,
            name="Bad alloc",
            variants=[{"id": "a"}, {"id": "b"}],
            allocation={"type": "fixed", "method": "ucb1"},
        )


def test_ucb_alias(store):
    exp = create_experiment(
        store,
        name="UCB",
        variants=[{"id": "a"}, {"id": "b"}],
        allocation={"type": "bandit", "method": "ucb"},
    )
    assert exp.allocation.method == AllocationMethod.UCB1


def test_state_machine(store):
    """draft -> running -> paused -> running -> stopped."""
    exp = create_experiment(store, name="SM", variants=[{"id": "a"}, {"id": "b"}])
    eid = exp.experiment_id

    start_experiment(store, eid)
    started_at = get_experiment(store, eid).started_at
    assert get_experiment(store, eid).status == ExperimentStatus.RUNNING
    assert started_at is not None

    pause_experiment(store, eid)
    assert get_experiment(store, eid).status == ExperimentStatus.PAUSED
    assert get_experiment(store, eid).paused_at is not None

    start_experiment(store, eid)
    assert get_experiment(store, eid).status == ExperimentStatus.RUNNING
    assert get_experiment(store, eid).started_at == started_at

    stop_experiment(store, eid)
    assert get_experiment(store, eid).status == ExperimentStatus.STOPPED
    assert get_experiment(store, eid).stopped_at is not None


def test_start_is_idempotent(store, running_experiment):
    before = get_experiment(store, running_experiment.experiment_id).started_at
    start_experiment(store, running_experiment.experiment_id)
    assert get_experiment(store, running_experiment.experiment_id).started_at == before


def test_start_creates_allocator(store, running_experiment):
    allocator = get_allocator(store, running_experiment.experiment_id)
    assert allocator.config.method == AllocationMethod.ROUND_ROBIN


def test_stopped_is_terminal(store, running_experiment):
    eid = running_experiment.experiment_id
    stop_experiment(store, eid)
    with pytest.raises(ExperimentNotActive):
        start_experiment(store, eid)
    with pytest.raises(ExperimentNotActive):
        record_event(store, eid, "control", "impression")
    with pytest.raises(ExperimentNotActive):
        assign(store, eid, "visitor_1")


def test_pause_draft_rejected(store):
    exp = create_experiment(store, name="Draft", variants=[{"id": "a"}, {"id": "b"}])
    with pytest.raises(InvalidConfiguration):
        pause_experiment(store, exp.experiment_id)
    with pytest.raises(InvalidConfiguration):
        stop_experiment(store, exp.experiment_id)


def test_paused_still_accepts_events(store, running_experiment):
    eid = running_experiment.experiment_id
    pause_experiment(store, eid)
    record_event(store, eid, "control", "impression")
    assert get_aggregates(store, eid)["control"].impressions == 1


def test_add_variant_requires_pause(store, running_experiment):
    eid = running_experiment.experiment_id
    with pytest.raises(InvalidConfiguration):
        add_variant(store, eid, {"id": "third"})
    pause_experiment(store, eid)
    v = add_variant(store, eid, {"id": "third", "name": "Third"})
    assert v.experiment_id == eid
    assert len(get_experiment(store, eid).variants) == 3


def test_update_experiment(store, running_experiment):
    eid = running_experiment.experiment_id
    exp = update_experiment(store, eid, name="Renamed", sample_size=5000)
    assert exp.name == "Renamed"
    assert exp.sample_size == 5000
    with pytest.raises(InvalidConfiguration):
        update_experiment(store, eid, status="stopped")
    with pytest.raises(InvalidConfiguration):
        update_experiment(store, eid, confidence_level=1.5)


def test_list_experiments_filters(store, running_experiment):
    create_experiment(store, name="Other", type="abn")
    assert len(list_experiments(store)) == 2
    assert [e.experiment_id for e in list_experiments(store, status="running")] == [
        running_experiment.experiment_id
    ]
    assert len(list_experiments(store, type=ExperimentType.ABN)) == 1


def test_delete_cascades(store, running_experiment):
    eid = running_experiment.experiment_id
    assign(store, eid, "visitor_1")
    record_event(store, eid, "control", "impression", visitor_id="visitor_1")
    delete_experiment(store, eid)

    with pytest.raises(NotFound):
        get_experiment(store, eid)
    assert not any(k[0] == eid for k in store.assignments)
    assert not any(k[0] == eid for k in store.aggregates)
    assert not any(k[0] == eid for k in store.arm_stats)
    assert eid not in store.allocators


def test_unknown_experiment(store):
    with pytest.raises(NotFound):
        get_experiment(store, "exp_missing")


def test_weighted_allocation_needs_weighted_variants(store):
    with pytest.raises(InvalidConfiguration):
        create_experiment(
            store,
            name="Weighted",
            variants=[{"id": "a"}, {"id": "b"}],
            allocation={"type": "fixed", "method": "weighted"},
        )


def test_failed_start_leaves_experiment_in_draft(store):
    exp = create_experiment(
        store, name="Weighted later", allocation={"type": "fixed", "method": "weighted"}
    )
    eid = exp.experiment_id
    add_variant(store, eid, {"id": "a"})
    add_variant(store, eid, {"id": "b"})

    with pytest.raises(InvalidConfiguration):
        start_experiment(store, eid)
    after = get_experiment(store, eid)
    assert after.status == ExperimentStatus.DRAFT
    assert after.started_at is None
    assert eid not in store.allocators

    update_experiment(store, eid, allocation={"type": "fixed", "method": "round-robin"})
    start_experiment(store, eid)
    assert get_experiment(store, eid).status == ExperimentStatus.RUNNING
    assert assign(store, eid, "visitor_1").variant_id == "a"


def test_allocation_update_reaches_live_allocator(store, running_experiment):
    eid = running_experiment.experiment_id
    update_experiment(store, eid, allocation={"type": "fixed", "method": "weighted"})
    assert get_allocator(store, eid).config.method == AllocationMethod.WEIGHTED
    assert get_experiment(store, eid).allocation.method == AllocationMethod.WEIGHTED
    assert assign(store, eid, "visitor_1").method == AllocationMethod.WEIGHTED.value


def test_rejected_allocation_update_changes_nothing(store):
    exp = create_experiment(store, name="Unweighted", variants=[{"id": "a"}, {"id": "b"}])
    eid = exp.experiment_id
    start_experiment(store, eid)
    with pytest.raises(InvalidConfiguration):
        update_experiment(store, eid, allocation={"type": "fixed", "method": "weighted"})
    assert get_allocator(store, eid).config.method == AllocationMethod.ROUND_ROBIN
    assert get_experiment(store, eid).allocation.method == AllocationMethod.ROUND_ROBIN


def test_writes_after_delete_raise(store, running_experiment):
    eid = running_experiment.experiment_id
    delete_experiment(store, eid)
    with pytest.raises(NotFound):
        record_event(store, eid, "control", "impression")
    with pytest.raises(NotFound):
        assign(store, eid, "visitor_1")
    assert not any(k[0] == eid for k in store.events)
    assert not any(k[0] == eid for k in store.assignments)
