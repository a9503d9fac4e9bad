"""
Event ledger for experiment impressions, conversions, revenue and custom events.

Events are append-only. Each record updates the owning variant's aggregate
under that variant's lock and forwards impressions/conversions to the arm
statistics so bandit policies stay current. Aggregates can always be rebuilt
by replaying the ledger (see ``events_frame`` / ``replay_aggregates``).
"""

import logging
import math
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd

from . import arm_stats
from .errors import InvalidConfiguration
from .lifecycle import get_experiment, get_variant, require_active
from .schema import Event, EventType, VariantAggregate, utcnow
from .store import ExperimentStore, new_id

logger = logging.getLogger(__name__)

EVENT_COLUMNS = [
    "event_id",
    "experiment_id",
    "variant_id",
    "type",
    "value",
    "visitor_id",
    "session_id",
    "name",
    "timestamp",
]


def _coerce_type(event_type: Union[EventType, str]) -> EventType:
    try:
        return EventType(event_type)
    except ValueError:
        raise InvalidConfiguration(f"Unknown event type '{event_type}'")


def _default_value(event_type: EventType, value: Optional[float]) -> float:
    if value is None:
        return 0.0 if event_type == EventType.REVENUE else 1.0
    value = float(value)
    if not math.isfinite(value):
        raise InvalidConfiguration(f"Event value must be finite, got {value}")
    return value


def _apply(agg: VariantAggregate, visitors: set, event: Event) -> None:
    """Fold one event into an aggregate (caller holds the key's lock)."""
    if event.type == EventType.IMPRESSION:
        agg.impressions += 1
        if event.visitor_id is not None:
            visitors.add(event.visitor_id)
            agg.unique_visitors = len(visitors)
    elif event.type == EventType.CONVERSION:
        agg.conversions += 1
    elif event.type == EventType.REVENUE:
        agg.revenue += event.value
    else:
        key = event.name or "custom"
        agg.custom_counts[key] = agg.custom_counts.get(key, 0) + 1
    agg.last_updated = event.timestamp


def record_event(
    store: ExperimentStore,
    experiment_id: str,
    variant_id: str,
    event_type: Union[EventType, str],
    value: Optional[float] = None,
    visitor_id: Optional[str] = None,
    session_id: Optional[str] = None,
    name: Optional[str] = None,
) -> Event:
    """
    Record an event for a variant.

    Args:
        store: Experiment store
        experiment_id: Experiment identifier
        variant_id: Variant the visitor saw
        event_type: impression, conversion, revenue or custom
        value: Numeric value (defaults to 1 for impression/conversion, 0 for revenue)
        visitor_id: Visitor identifier (drives distinct-visitor counts)
        session_id: Session identifier
        name: Custom event name

    Returns:
        The appended Event
    """
    experiment = get_experiment(store, experiment_id)
    get_variant(store, experiment_id, variant_id)
    require_active(experiment)

    etype = _coerce_type(event_type)
    event = Event(
        event_id=new_id("evt"),
        experiment_id=experiment_id,
        variant_id=variant_id,
        type=etype,
        value=_default_value(etype, value),
        visitor_id=visitor_id,
        session_id=session_id,
        name=name,
        timestamp=utcnow(),
    )

    key = (experiment_id, variant_id)
    with store.counter_locks.for_key(("agg",) + key):
        store.require_experiment(experiment_id)
        store.events[key].append(event)
        agg = store.aggregates.get(key)
        if agg is None:
            agg = VariantAggregate(experiment_id=experiment_id, variant_id=variant_id)
            store.aggregates[key] = agg
        _apply(agg, store.visitors[key], event)

    # Arm updates take their own lock; never nested with the aggregate lock
    cfg = store.config
    if etype == EventType.IMPRESSION:
        arm_stats.record_pull(store, experiment_id, variant_id)
    elif etype == EventType.CONVERSION and cfg.reward_on_conversion:
        arm_stats.record_reward(store, experiment_id, variant_id, 1.0)
    elif etype == EventType.REVENUE and cfg.revenue_as_reward:
        arm_stats.add_reward_value(store, experiment_id, variant_id, event.value)

    logger.debug(f"Recorded {etype.value} for {experiment_id}/{variant_id}")
    return event


def record_events(
    store: ExperimentStore,
    experiment_id: str,
    events: Iterable[Mapping[str, Any]],
) -> int:
    """
    Record a batch of events given as mappings with keys
    variant_id, type, value, visitor_id, session_id, name.

    Returns:
        Number of events recorded
    """
    n = 0
    for e in events:
        record_event(
            store,
            experiment_id,
            e["variant_id"],
            e["type"],
            value=e.get("value"),
            visitor_id=e.get("visitor_id"),
            session_id=e.get("session_id"),
            name=e.get("name"),
        )
        n += 1
    logger.info(f"Recorded {n} events for experiment {experiment_id}")
    return n


def get_aggregate(store: ExperimentStore, experiment_id: str, variant_id: str) -> VariantAggregate:
    """Consistent snapshot of one variant's counters."""
    get_variant(store, experiment_id, variant_id)
    key = (experiment_id, variant_id)
    with store.counter_locks.for_key(("agg",) + key):
        agg = store.aggregates.get(key)
        if agg is None:
            return VariantAggregate(experiment_id=experiment_id, variant_id=variant_id)
        return replace(agg, custom_counts=dict(agg.custom_counts))


def get_aggregates(store: ExperimentStore, experiment_id: str) -> Dict[str, VariantAggregate]:
    """Snapshots for every variant, in declared order."""
    experiment = get_experiment(store, experiment_id)
    return {
        v.variant_id: get_aggregate(store, experiment_id, v.variant_id)
        for v in experiment.variants
    }


def get_events(
    store: ExperimentStore,
    experiment_id: str,
    variant_id: Optional[str] = None,
    event_type: Union[EventType, str, None] = None,
) -> List[Event]:
    """Read ledger events, optionally filtered by variant and type."""
    experiment = get_experiment(store, experiment_id)
    variant_ids = [variant_id] if variant_id else [v.variant_id for v in experiment.variants]
    etype = _coerce_type(event_type) if event_type is not None else None

    out: List[Event] = []
    for vid in variant_ids:
        key = (experiment_id, vid)
        with store.counter_locks.for_key(("agg",) + key):
            events = list(store.events.get(key, ()))
        if etype is not None:
            events = [e for e in events if e.type == etype]
        out.extend(events)
    return out


def events_frame(store: ExperimentStore, experiment_id: str) -> pd.DataFrame:
    """Export the ledger of an experiment as a DataFrame (one row per event)."""
    rows = [
        {
            "event_id": e.event_id,
            "experiment_id": e.experiment_id,
            "variant_id": e.variant_id,
            "type": e.type.value,
            "value": e.value,
            "visitor_id": e.visitor_id,
            "session_id": e.session_id,
            "name": e.name,
            "timestamp": e.timestamp,
        }
        for e in get_events(store, experiment_id)
    ]
    df = pd.DataFrame(rows, columns=EVENT_COLUMNS)
    if not df.empty:
        df = df.sort_values("timestamp", kind="stable").reset_index(drop=True)
    return df


def replay_aggregates(df: pd.DataFrame) -> Dict[str, VariantAggregate]:
    """
    Rebuild per-variant aggregates from an event frame.

    Returns:
        Dict of variant_id -> VariantAggregate
    """
    result: Dict[str, VariantAggregate] = {}
    if df.empty:
        return result

    for (exp_id, variant_id), grp in df.groupby(["experiment_id", "variant_id"], sort=False):
        imps = grp[grp["type"] == EventType.IMPRESSION.value]
        custom = grp[grp["type"] == EventType.CUSTOM.value]
        custom_counts = (
            custom["name"].fillna("custom").value_counts().astype(int).to_dict()
            if not custom.empty
            else {}
        )
        result[variant_id] = VariantAggregate(
            experiment_id=exp_id,
            variant_id=variant_id,
            impressions=len(imps),
            conversions=int((grp["type"] == EventType.CONVERSION.value).sum()),
            revenue=float(grp.loc[grp["type"] == EventType.REVENUE.value, "value"].sum()),
            unique_visitors=int(imps["visitor_id"].dropna().nunique()),
            custom_counts={str(k): int(v) for k, v in custom_counts.items()},
            last_updated=grp["timestamp"].max(),
        )
    return result


def get_experiment_summary(store: ExperimentStore, experiment_id: str) -> dict:
    """
    Get summary counts for an experiment.

    Returns:
        Dict with totals and per-variant impressions/conversions/revenue
    """
    aggs = get_aggregates(store, experiment_id)
    return {
        "experiment_id": experiment_id,
        "total_impressions": sum(a.impressions for a in aggs.values()),
        "total_conversions": sum(a.conversions for a in aggs.values()),
        "total_revenue": sum(a.revenue for a in aggs.values()),
        "variants": {
            vid: {
                "impressions": a.impressions,
                "conversions": a.conversions,
                "revenue": a.revenue,
                "unique_visitors": a.unique_visitors,
                "conversion_rate": a.conversion_rate,
            }
            for vid, a in aggs.items()
        },
    }
