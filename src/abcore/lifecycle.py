"""
Experiment lifecycle management.

State machine:
    draft --start--> running --pause--> paused --start--> running
    running | paused --stop--> stopped (terminal)

Creating an experiment without variants or goals is legal so it can be
configured incrementally before launch. Deleting cascades to every event,
aggregate, arm statistic and assignment the experiment owns.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .config import (
    DEFAULT_CONFIDENCE_LEVEL,
    DEFAULT_MDE,
    DEFAULT_SAMPLE_SIZE,
    WEIGHT_TOLERANCE,
    WEIGHT_TOTAL,
)
from .errors import ExperimentNotActive, InvalidConfiguration, NotFound
from .schema import (
    AllocationMethod,
    AllocatorConfig,
    AllocatorType,
    Experiment,
    ExperimentStatus,
    ExperimentType,
    Goal,
    GoalType,
    Variant,
    utcnow,
)
from .store import ExperimentStore, new_id

logger = logging.getLogger(__name__)

VariantInput = Union[Variant, Mapping[str, Any]]
GoalInput = Union[Goal, Mapping[str, Any]]

DEFAULT_METHODS = {
    AllocatorType.FIXED: AllocationMethod.ROUND_ROBIN,
    AllocatorType.BANDIT: AllocationMethod.THOMPSON_SAMPLING,
    AllocatorType.CONTEXTUAL: AllocationMethod.THOMPSON_SAMPLING,
}

ALLOWED_METHODS = {
    AllocatorType.FIXED: {
        AllocationMethod.ROUND_ROBIN,
        AllocationMethod.WEIGHTED,
        AllocationMethod.HASH,
    },
    AllocatorType.BANDIT: {
        AllocationMethod.THOMPSON_SAMPLING,
        AllocationMethod.UCB1,
        AllocationMethod.EPSILON_GREEDY,
    },
    AllocatorType.CONTEXTUAL: {AllocationMethod.THOMPSON_SAMPLING},
}

METHOD_ALIASES = {"ucb": "ucb1"}

UPDATABLE_FIELDS = {
    "name",
    "description",
    "targeting",
    "goals",
    "sample_size",
    "confidence_level",
    "minimum_detectable_effect",
    "metadata",
    "allocation",
}


def _coerce_enum(enum_cls, value, what: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise InvalidConfiguration(f"Unknown {what} '{value}' (expected one of: {allowed})")


def _to_variant(item: VariantInput, experiment_id: str, index: int) -> Variant:
    if isinstance(item, Variant):
        return replace(item, experiment_id=experiment_id)
    variant_id = item.get("variant_id") or item.get("id") or f"var_{index}"
    weight = item.get("traffic_weight")
    return Variant(
        variant_id=str(variant_id),
        name=item.get("name") or str(variant_id),
        experiment_id=experiment_id,
        is_control=bool(item.get("is_control", False)),
        traffic_weight=float(weight) if weight is not None else None,
        payload=dict(item.get("payload") or {}),
    )


def _to_goal(item: GoalInput) -> Goal:
    if isinstance(item, Goal):
        return item
    if "name" not in item:
        raise InvalidConfiguration("Goal requires a name")
    return Goal(
        name=item["name"],
        kind=_coerce_enum(GoalType, item.get("kind", GoalType.CONVERSION), "goal kind"),
        is_primary=bool(item.get("is_primary", False)),
    )


def to_allocator_config(value: Union[AllocatorConfig, Mapping[str, Any], None]) -> AllocatorConfig:
    """
    Normalise and validate an allocation config.

    Fills in the default method for the type and checks that the
    type/method pair and its parameters are usable.
    """
    if value is None:
        value = AllocatorConfig()
    if isinstance(value, AllocatorConfig):
        raw_type, raw_method, params = value.type, value.method, value.parameters
    else:
        raw_type = value.get("type", AllocatorType.FIXED)
        raw_method = value.get("method")
        params = value.get("parameters") or {}

    alloc_type = _coerce_enum(AllocatorType, raw_type, "allocator type")
    if raw_method is None:
        method = DEFAULT_METHODS[alloc_type]
    else:
        method = _coerce_enum(AllocationMethod, METHOD_ALIASES.get(raw_method, raw_method), "allocation method")
    if method not in ALLOWED_METHODS[alloc_type]:
        raise InvalidConfiguration(
            f"Method '{method.value}' is not valid for allocator type '{alloc_type.value}'"
        )

    params = dict(params)
    epsilon = params.get("epsilon")
    if epsilon is not None and not 0 <= float(epsilon) <= 1:
        raise InvalidConfiguration("epsilon must be in [0, 1]")
    rate = params.get("exploration_rate")
    if rate is not None and float(rate) < 0:
        raise InvalidConfiguration("exploration_rate must be >= 0")
    return AllocatorConfig(type=alloc_type, method=method, parameters=params)


def validate_variants(variants: List[Variant], require_complete_weights: bool = True) -> None:
    """
    Check variant ids, control flag and traffic weights.

    Weights are all-or-none. When ``require_complete_weights`` is set, a
    fully weighted variant list must sum to 100.
    """
    ids = [v.variant_id for v in variants]
    if len(ids) != len(set(ids)):
        raise InvalidConfiguration("Variant ids must be unique")
    if sum(1 for v in variants if v.is_control) > 1:
        raise InvalidConfiguration("At most one variant may be the control")

    weights = [v.traffic_weight for v in variants]
    present = [w for w in weights if w is not None]
    for w in present:
        if not 0 <= w <= WEIGHT_TOTAL:
            raise InvalidConfiguration(f"Traffic weight {w} outside [0, 100]")
    if not present or not require_complete_weights:
        return
    if len(present) != len(weights):
        raise InvalidConfiguration("Either every variant has a traffic weight or none does")
    total = sum(present)
    if abs(total - WEIGHT_TOTAL) > WEIGHT_TOLERANCE:
        raise InvalidConfiguration(f"Traffic weights must sum to 100, got {total}")


def allocation_weights(variants: List[Variant]) -> List[float]:
    """Weights for weighted allocation: every variant needs one and they sum to 100."""
    weights = [v.traffic_weight for v in variants]
    if any(w is None for w in weights):
        raise InvalidConfiguration("Weighted allocation requires a traffic weight on every variant")
    total = sum(weights)
    if abs(total - WEIGHT_TOTAL) > WEIGHT_TOLERANCE:
        raise InvalidConfiguration(f"Traffic weights must sum to 100, got {total}")
    return weights


def check_allocation(cfg: AllocatorConfig, variants: List[Variant]) -> None:
    """Raise if the allocation cannot serve the given variants."""
    if cfg.method == AllocationMethod.WEIGHTED and variants:
        allocation_weights(variants)


def _validate_settings(sample_size: int, confidence_level: float, mde: float) -> None:
    if sample_size <= 0:
        raise InvalidConfiguration("sample_size must be positive")
    if not 0 < confidence_level < 1:
        raise InvalidConfiguration("confidence_level must be in (0, 1)")
    if mde <= 0:
        raise InvalidConfiguration("minimum_detectable_effect must be positive")


def create_experiment(
    store: ExperimentStore,
    name: str,
    type: Union[ExperimentType, str] = ExperimentType.AB,
    variants: Optional[Iterable[VariantInput]] = None,
    goals: Optional[Iterable[GoalInput]] = None,
    targeting: Optional[Dict[str, Any]] = None,
    allocation: Union[AllocatorConfig, Mapping[str, Any], None] = None,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL,
    minimum_detectable_effect: float = DEFAULT_MDE,
    description: str = "",
    created_by: str = "system",
    metadata: Optional[Dict[str, Any]] = None,
    experiment_id: Optional[str] = None,
) -> Experiment:
    """
    Create an experiment in ``draft`` status.

    Args:
        store: Experiment store
        name: Display name
        type: ab, abn, multivariate or split-url
        variants: Variant objects or mappings (id, name, is_control, traffic_weight, payload)
        goals: Goal objects or mappings (name, kind, is_primary)
        targeting: Opaque targeting rules, stored as-is
        allocation: Allocator config used when the experiment starts
        sample_size: Target total sample size for sequential analysis
        confidence_level: Confidence level for significance decisions
        minimum_detectable_effect: Relative MDE

    Returns:
        The created Experiment
    """
    if not name:
        raise InvalidConfiguration("Experiment name is required")
    exp_type = _coerce_enum(ExperimentType, type, "experiment type")
    _validate_settings(sample_size, confidence_level, minimum_detectable_effect)

    experiment_id = experiment_id or new_id("exp")
    variant_list = [_to_variant(v, experiment_id, i) for i, v in enumerate(variants or [])]
    validate_variants(variant_list)
    allocation = to_allocator_config(allocation)
    check_allocation(allocation, variant_list)

    experiment = Experiment(
        experiment_id=experiment_id,
        name=name,
        description=description,
        type=exp_type,
        variants=variant_list,
        goals=[_to_goal(g) for g in goals or []],
        targeting=dict(targeting or {}),
        allocation=allocation,
        sample_size=int(sample_size),
        confidence_level=float(confidence_level),
        minimum_detectable_effect=float(minimum_detectable_effect),
        created_by=created_by,
        metadata=dict(metadata or {}),
    )

    with store.experiment_lock:
        if experiment_id in store.experiments:
            raise InvalidConfiguration(f"Experiment {experiment_id} already exists")
        store.experiments[experiment_id] = experiment

    logger.info(
        f"Created experiment {experiment_id} ({exp_type.value}) "
        f"with {len(variant_list)} variants"
    )
    return experiment


def get_experiment(store: ExperimentStore, experiment_id: str) -> Experiment:
    experiment = store.experiments.get(experiment_id)
    if experiment is None:
        raise NotFound(f"Experiment {experiment_id} not found")
    return experiment


def get_variant(store: ExperimentStore, experiment_id: str, variant_id: str) -> Variant:
    variant = get_experiment(store, experiment_id).get_variant(variant_id)
    if variant is None:
        raise NotFound(f"Variant {variant_id} not found in experiment {experiment_id}")
    return variant


def list_experiments(
    store: ExperimentStore,
    status: Union[ExperimentStatus, str, None] = None,
    type: Union[ExperimentType, str, None] = None,
) -> List[Experiment]:
    """List experiments, optionally filtered by status and type."""
    experiments = list(store.experiments.values())
    if status is not None:
        status = _coerce_enum(ExperimentStatus, status, "status")
        experiments = [e for e in experiments if e.status == status]
    if type is not None:
        type = _coerce_enum(ExperimentType, type, "experiment type")
        experiments = [e for e in experiments if e.type == type]
    return experiments


def require_active(experiment: Experiment) -> None:
    if experiment.status == ExperimentStatus.STOPPED:
        raise ExperimentNotActive(f"Experiment {experiment.experiment_id} is stopped")


def add_variant(store: ExperimentStore, experiment_id: str, variant: VariantInput) -> Variant:
    """Append a variant to a draft or paused experiment."""
    with store.experiment_lock:
        experiment = get_experiment(store, experiment_id)
        require_active(experiment)
        if experiment.status == ExperimentStatus.RUNNING:
            raise InvalidConfiguration("Pause the experiment before adding variants")
        new_variant = _to_variant(variant, experiment_id, len(experiment.variants))
        candidate = experiment.variants + [new_variant]
        validate_variants(candidate, require_complete_weights=False)
        experiment.variants = candidate
        experiment.updated_at = utcnow()
    logger.info(f"Added variant {new_variant.variant_id} to experiment {experiment_id}")
    return new_variant


def update_experiment(store: ExperimentStore, experiment_id: str, **changes: Any) -> Experiment:
    """
    Update descriptive and analysis settings of a non-stopped experiment.

    A new ``allocation`` on a started experiment is applied to its live
    allocator as well; visitors already assigned keep their variant.
    """
    from .assignment import update_allocator

    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise InvalidConfiguration(f"Fields cannot be updated: {sorted(unknown)}")

    with store.experiment_lock:
        experiment = get_experiment(store, experiment_id)
        require_active(experiment)
        if "goals" in changes:
            changes["goals"] = [_to_goal(g) for g in changes["goals"] or []]
        if "allocation" in changes:
            changes["allocation"] = to_allocator_config(changes["allocation"])
            check_allocation(changes["allocation"], experiment.variants)
        _validate_settings(
            changes.get("sample_size", experiment.sample_size),
            changes.get("confidence_level", experiment.confidence_level),
            changes.get("minimum_detectable_effect", experiment.minimum_detectable_effect),
        )
        for key, value in changes.items():
            setattr(experiment, key, value)
        experiment.updated_at = utcnow()
        if "allocation" in changes and experiment_id in store.allocators:
            update_allocator(store, experiment_id, experiment.allocation)
    return experiment


def start_experiment(store: ExperimentStore, experiment_id: str) -> Experiment:
    """
    Start (or resume) an experiment.

    Idempotent for running experiments. The start timestamp is recorded only
    on the first start; resuming from pause keeps it. The allocator is
    built before the status changes, so a failed start leaves the
    experiment where it was.
    """
    from .assignment import ensure_allocator

    with store.experiment_lock:
        experiment = get_experiment(store, experiment_id)
        require_active(experiment)
        if experiment.status == ExperimentStatus.RUNNING:
            return experiment

        validate_variants(experiment.variants)
        allocator = store.allocators.get(experiment_id)
        check_allocation(allocator.config if allocator else experiment.allocation, experiment.variants)
        ensure_allocator(store, experiment_id)

        previous = experiment.status
        now = utcnow()
        experiment.status = ExperimentStatus.RUNNING
        if experiment.started_at is None:
            experiment.started_at = now
        experiment.paused_at = None
        experiment.updated_at = now

    logger.info(f"Experiment {experiment_id}: {previous.value} -> running")
    return experiment


def pause_experiment(store: ExperimentStore, experiment_id: str) -> Experiment:
    with store.experiment_lock:
        experiment = get_experiment(store, experiment_id)
        require_active(experiment)
        if experiment.status == ExperimentStatus.PAUSED:
            return experiment
        if experiment.status != ExperimentStatus.RUNNING:
            raise InvalidConfiguration(
                f"Cannot pause experiment {experiment_id} in status {experiment.status.value}"
            )
        experiment.status = ExperimentStatus.PAUSED
        experiment.paused_at = experiment.updated_at = utcnow()
    logger.info(f"Experiment {experiment_id}: running -> paused")
    return experiment


def stop_experiment(store: ExperimentStore, experiment_id: str) -> Experiment:
    """Stop a running or paused experiment. Stopped is terminal."""
    with store.experiment_lock:
        experiment = get_experiment(store, experiment_id)
        if experiment.status == ExperimentStatus.STOPPED:
            return experiment
        if experiment.status == ExperimentStatus.DRAFT:
            raise InvalidConfiguration(f"Experiment {experiment_id} was never started")
        previous = experiment.status
        experiment.status = ExperimentStatus.STOPPED
        experiment.stopped_at = experiment.updated_at = utcnow()
    logger.info(f"Experiment {experiment_id}: {previous.value} -> stopped")
    return experiment


def delete_experiment(store: ExperimentStore, experiment_id: str) -> None:
    """Delete an experiment and everything recorded for it."""
    get_experiment(store, experiment_id)
    store.purge_experiment(experiment_id)
    logger.info(f"Deleted experiment {experiment_id}")
