"""Pytest configuration - add project root to path and shared fixtures."""
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

from src.abcore.config import EngineConfig  # noqa: E402
from src.abcore.lifecycle import create_experiment, start_experiment  # noqa: E402
from src.abcore.store import ExperimentStore  # noqa: E402


@pytest.fixture
def store():
    """Fresh store with a fixed seed."""
    return ExperimentStore(EngineConfig(random_seed=42))


@pytest.fixture
def running_experiment(store):
    """Started 50/50 experiment with a flagged control."""
    exp = create_experiment(
        store,
        name="Checkout button",
        variants=[
            {"id": "control", "name": "Control", "is_control": True, "traffic_weight": 50},
            {"id": "treatment", "name": "Green button", "traffic_weight": 50},
        ],
        goals=[{"name": "purchase", "is_primary": True}],
        sample_size=2000,
    )
    start_experiment(store, exp.experiment_id)
    return exp
