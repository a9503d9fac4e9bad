"""
Engine configuration.

Defaults for statistical sampling, bandit policies, futility rules and
locking. One EngineConfig is attached to each ExperimentStore.
"""

from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

from .errors import InvalidConfiguration

DEFAULT_CONFIDENCE_LEVEL = 0.95
DEFAULT_SAMPLE_SIZE = 1000
DEFAULT_MDE = 0.05
WEIGHT_TOTAL = 100.0
WEIGHT_TOLERANCE = 1e-6


@dataclass
class EngineConfig:
    """Tunables shared by every component of a store."""
    bayesian_samples: int = 10000  # joint posterior draws
    monte_carlo_samples: int = 10000
    credible_level: float = 0.95
    default_exploration_rate: float = 2.0  # UCB1
    default_epsilon: float = 0.1
    futility_threshold: float = 0.2  # conditional power
    futility_min_information: float = 0.5
    srm_alpha: float = 0.01
    reward_on_conversion: bool = True
    revenue_as_reward: bool = False
    random_seed: Optional[int] = None
    lock_stripes: int = 64

    def __post_init__(self):
        if self.bayesian_samples <= 0 or self.monte_carlo_samples <= 0:
            raise InvalidConfiguration("Sample counts must be positive")
        if not 0 < self.credible_level < 1:
            raise InvalidConfiguration("credible_level must be in (0, 1)")
        if not 0 <= self.default_epsilon <= 1:
            raise InvalidConfiguration("default_epsilon must be in [0, 1]")
        if self.default_exploration_rate < 0:
            raise InvalidConfiguration("default_exploration_rate must be >= 0")
        if not 0 <= self.futility_min_information <= 1:
            raise InvalidConfiguration("futility_min_information must be in [0, 1]")
        if self.lock_stripes < 1:
            raise InvalidConfiguration("lock_stripes must be >= 1")

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "EngineConfig":
        """Build from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise InvalidConfiguration(f"Unknown config keys: {sorted(unknown)}")
        return cls(**dict(values))
