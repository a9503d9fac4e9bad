"""
Traffic simulator.

Drives a running experiment with synthetic visitors: each visitor is
assigned through the experiment's allocator, records an impression, and
converts with the true rate of the variant they were shown. Useful for
demos, bandit regret checks and end-to-end tests.
"""

import logging
from typing import Dict, Mapping, Optional

import numpy as np

from .assignment import assign, get_distribution, get_regret
from .errors import InvalidConfiguration
from .event_store import get_experiment_summary, record_event
from .lifecycle import get_experiment
from .schema import EventType
from .store import ExperimentStore

logger = logging.getLogger(__name__)

SIMULATOR_SEED = 42


def run_simulation(
    store: ExperimentStore,
    experiment_id: str,
    true_rates: Mapping[str, float],
    n_visitors: int,
    revenue_per_conversion: Optional[float] = None,
    revenue_noise_std: float = 0.0,
    visitor_prefix: str = "visitor",
    random_seed: int = SIMULATOR_SEED,
) -> Dict:
    """
    Simulate visitor traffic through an experiment.

    Args:
        store: Experiment store
        experiment_id: Running experiment
        true_rates: variant_id -> true conversion probability
        n_visitors: Number of synthetic visitors
        revenue_per_conversion: Mean revenue recorded with each conversion (optional)
        revenue_noise_std: Std of normal noise added to revenue
        visitor_prefix: Prefix for generated visitor ids
        random_seed: Random seed for reproducibility

    Returns:
        Dict with per-variant counts, allocator distribution and regret
    """
    experiment = get_experiment(store, experiment_id)
    missing = [v.variant_id for v in experiment.variants if v.variant_id not in true_rates]
    if missing:
        raise InvalidConfiguration(f"No true rate given for variants: {missing}")
    for vid, rate in true_rates.items():
        if not 0 <= rate <= 1:
            raise InvalidConfiguration(f"True rate for {vid} must be in [0, 1], got {rate}")
    if n_visitors <= 0:
        raise InvalidConfiguration("n_visitors must be positive")

    rng = np.random.default_rng(random_seed)
    n_conversions = 0

    for i in range(n_visitors):
        visitor_id = f"{visitor_prefix}_{i}"
        assignment = assign(store, experiment_id, visitor_id)
        vid = assignment.variant_id
        record_event(store, experiment_id, vid, EventType.IMPRESSION, visitor_id=visitor_id)

        if rng.random() < true_rates[vid]:
            n_conversions += 1
            record_event(store, experiment_id, vid, EventType.CONVERSION, visitor_id=visitor_id)
            if revenue_per_conversion is not None:
                amount = revenue_per_conversion + rng.normal(0, revenue_noise_std)
                record_event(
                    store, experiment_id, vid, EventType.REVENUE,
                    value=max(float(amount), 0.0), visitor_id=visitor_id,
                )

    summary = get_experiment_summary(store, experiment_id)
    summary.update({
        "n_visitors": n_visitors,
        "n_conversions": n_conversions,
        "true_rates": dict(true_rates),
        "distribution": get_distribution(store, experiment_id),
        "regret": get_regret(store, experiment_id),
        "random_seed": random_seed,
    })

    logger.info(
        f"Simulation complete for {experiment_id}: {n_visitors} visitors, "
        f"{n_conversions} conversions"
    )
    return summary
