"""Experimentation core: experiments, traffic allocation, event ledger and analysis."""

from .config import EngineConfig
from .errors import ExperimentationError, ExperimentNotActive, InvalidConfiguration, NotFound
from .schema import (
    AllocationMethod,
    AllocatorConfig,
    AllocatorType,
    AnalysisStatus,
    Assignment,
    Event,
    EventType,
    Experiment,
    ExperimentStatus,
    ExperimentType,
    SequentialDecision,
    Variant,
    VariantAggregate,
)
from .store import ExperimentStore
from .lifecycle import (
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
from .event_store import (
    events_frame,
    get_aggregate,
    get_aggregates,
    get_events,
    get_experiment_summary,
    record_event,
    record_events,
    replay_aggregates,
)
from .assignment import (
    assign,
    create_allocator,
    get_allocator,
    get_assignment,
    get_distribution,
    get_experiment_assignments,
    get_regret,
    update_allocator,
)
from .analyze import (
    analyze_bayesian,
    analyze_frequentist,
    analyze_revenue,
    analyze_sequential,
    compute_mde,
    compute_power,
    compute_sample_size,
    run_monte_carlo,
    run_t_test,
    run_z_test,
)
from .simulate import run_simulation

__all__ = [
    "EngineConfig",
    "ExperimentationError",
    "ExperimentNotActive",
    "InvalidConfiguration",
    "NotFound",
    "AllocationMethod",
    "AllocatorConfig",
    "AllocatorType",
    "AnalysisStatus",
    "Assignment",
    "Event",
    "EventType",
    "Experiment",
    "ExperimentStatus",
    "ExperimentType",
    "SequentialDecision",
    "Variant",
    "VariantAggregate",
    "ExperimentStore",
    "add_variant",
    "create_experiment",
    "delete_experiment",
    "get_experiment",
    "list_experiments",
    "pause_experiment",
    "start_experiment",
    "stop_experiment",
    "update_experiment",
    "events_frame",
    "get_aggregate",
    "get_aggregates",
    "get_events",
    "get_experiment_summary",
    "record_event",
    "record_events",
    "replay_aggregates",
    "assign",
    "create_allocator",
    "get_allocator",
    "get_assignment",
    "get_distribution",
    "get_experiment_assignments",
    "get_regret",
    "update_allocator",
    "analyze_bayesian",
    "analyze_frequentist",
    "analyze_revenue",
    "analyze_sequential",
    "compute_mde",
    "compute_power",
    "compute_sample_size",
    "run_monte_carlo",
    "run_t_test",
    "run_z_test",
    "run_simulation",
]
