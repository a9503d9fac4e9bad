"""
Experiment data models for the experimentation core.

Dataclass schemas for experiments, variants, events, per-variant aggregates,
bandit arm statistics, sticky assignments, and analysis results.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExperimentStatus(str, Enum):
    """Experiment lifecycle state."""
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class ExperimentType(str, Enum):
    """Experiment design."""
    AB = "ab"
    ABN = "abn"
    MULTIVARIATE = "multivariate"
    SPLIT_URL = "split-url"


class GoalType(str, Enum):
    CONVERSION = "conversion"
    REVENUE = "revenue"
    CUSTOM = "custom"


class EventType(str, Enum):
    """Ledger event kind."""
    IMPRESSION = "impression"
    CONVERSION = "conversion"
    REVENUE = "revenue"
    CUSTOM = "custom"


class AllocatorType(str, Enum):
    FIXED = "fixed"
    BANDIT = "bandit"
    CONTEXTUAL = "contextual"


class AllocationMethod(str, Enum):
    """Variant selection policy."""
    ROUND_ROBIN = "round-robin"
    WEIGHTED = "weighted"
    HASH = "hash"
    THOMPSON_SAMPLING = "thompson-sampling"
    UCB1 = "ucb1"
    EPSILON_GREEDY = "epsilon-greedy"


class AnalysisStatus(str, Enum):
    OK = "ok"
    INSUFFICIENT_DATA = "insufficient-data"


class SequentialDecision(str, Enum):
    CONTINUE = "continue"
    STOP_EFFICACY = "stop-efficacy"
    STOP_FUTILITY = "stop-futility"


def _to_jsonable(value: Any) -> Any:
    """Convert enums, datetimes and non-finite floats for JSON output."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    return value


class _Serializable:
    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return _to_jsonable(asdict(self))


@dataclass
class Variant(_Serializable):
    """One arm of an experiment. Content payload is opaque to the core."""
    variant_id: str
    name: str
    experiment_id: str = ""
    is_control: bool = False
    traffic_weight: Optional[float] = None  # 0-100
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Goal(_Serializable):
    name: str
    kind: GoalType = GoalType.CONVERSION
    is_primary: bool = False


@dataclass
class AllocatorConfig(_Serializable):
    """Allocation policy for an experiment."""
    type: AllocatorType = AllocatorType.FIXED
    method: Optional[AllocationMethod] = None  # None -> default for type
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Experiment(_Serializable):
    """Experiment definition and lifecycle state."""
    experiment_id: str
    name: str
    description: str = ""
    type: ExperimentType = ExperimentType.AB
    variants: List[Variant] = field(default_factory=list)
    goals: List[Goal] = field(default_factory=list)
    targeting: Dict[str, Any] = field(default_factory=dict)
    allocation: AllocatorConfig = field(default_factory=AllocatorConfig)
    sample_size: int = 1000
    confidence_level: float = 0.95
    minimum_detectable_effect: float = 0.05
    status: ExperimentStatus = ExperimentStatus.DRAFT
    created_by: str = "system"
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        for v in self.variants:
            if v.variant_id == variant_id:
                return v
        return None

    @property
    def control(self) -> Optional[Variant]:
        for v in self.variants:
            if v.is_control:
                return v
        return None


@dataclass
class Event(_Serializable):
    """Append-only ledger entry."""
    event_id: str
    experiment_id: str
    variant_id: str
    type: EventType
    value: float = 1.0
    visitor_id: Optional[str] = None
    session_id: Optional[str] = None
    name: Optional[str] = None  # custom events only
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class VariantAggregate(_Serializable):
    """Per-variant counters derived from the event ledger."""
    experiment_id: str
    variant_id: str
    impressions: int = 0
    conversions: int = 0
    revenue: float = 0.0
    unique_visitors: int = 0
    custom_counts: Dict[str, int] = field(default_factory=dict)
    last_updated: Optional[datetime] = None

    @property
    def conversion_rate(self) -> float:
        return self.conversions / self.impressions if self.impressions > 0 else 0.0

    @property
    def revenue_per_impression(self) -> float:
        return self.revenue / self.impressions if self.impressions > 0 else 0.0


@dataclass
class ArmStat(_Serializable):
    """Bandit statistics for a single arm (variant)."""
    experiment_id: str
    variant_id: str
    selections: int = 0
    pulls: int = 0
    rewards: int = 0
    reward_sum: float = 0.0
    last_pulled: Optional[datetime] = None

    @property
    def alpha(self) -> float:
        return self.rewards + 1

    @property
    def beta(self) -> float:
        # Floored so a conversion recorded before its impression keeps Beta valid
        return max(self.pulls - self.rewards, 0) + 1

    @property
    def avg_reward(self) -> float:
        return self.reward_sum / self.pulls if self.pulls > 0 else 0.0

    @property
    def exposures(self) -> int:
        """Visitors sent to the arm, counting those whose impression has not arrived."""
        return max(self.pulls, self.selections)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d.update(alpha=self.alpha, beta=self.beta, avg_reward=self.avg_reward)
        return d


@dataclass
class Assignment(_Serializable):
    """Sticky (experiment, visitor) -> variant mapping."""
    experiment_id: str
    visitor_id: str
    variant_id: str
    variant_name: str
    method: str
    context: Dict[str, Any] = field(default_factory=dict)
    assigned_at: datetime = field(default_factory=utcnow)


@dataclass
class Allocator(_Serializable):
    experiment_id: str
    config: AllocatorConfig
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Analysis results
# ---------------------------------------------------------------------------


@dataclass
class ConfidenceInterval(_Serializable):
    lower: float
    upper: float
    level: float


@dataclass
class ZTestResult(_Serializable):
    """Two-proportion z-test."""
    status: AnalysisStatus = AnalysisStatus.OK
    reason: str = ""
    z_score: Optional[float] = None
    p_value: Optional[float] = None
    standard_error: Optional[float] = None
    rate_a: Optional[float] = None
    rate_b: Optional[float] = None
    difference: Optional[float] = None
    confidence_interval: Optional[ConfidenceInterval] = None
    is_significant: bool = False


@dataclass
class TTestResult(_Serializable):
    """Welch two-sample t-test."""
    status: AnalysisStatus = AnalysisStatus.OK
    reason: str = ""
    t_statistic: Optional[float] = None
    degrees_of_freedom: Optional[float] = None
    p_value: Optional[float] = None
    mean_a: Optional[float] = None
    mean_b: Optional[float] = None
    mean_difference: Optional[float] = None
    standard_error: Optional[float] = None
    confidence_interval: Optional[ConfidenceInterval] = None
    is_significant: bool = False


@dataclass
class MonteCarloResult(_Serializable):
    probability_b_beats_a: float
    num_samples: int
    expected_lift: float
    status: AnalysisStatus = AnalysisStatus.OK
    reason: str = ""


@dataclass
class SampleSizeResult(_Serializable):
    sample_size_per_variant: int
    total_sample_size: int
    baseline_rate: float
    variant_rate: float
    minimum_detectable_effect: float
    alpha: float
    power: float
    num_variants: int = 2


@dataclass
class PowerResult(_Serializable):
    power: float
    sample_size: int
    baseline_rate: float
    variant_rate: float
    minimum_detectable_effect: float
    alpha: float


@dataclass
class VariantComparison(_Serializable):
    """One treatment variant compared with control."""
    variant_id: str
    variant_name: str
    status: AnalysisStatus = AnalysisStatus.OK
    reason: str = ""
    control_rate: Optional[float] = None
    variant_rate: Optional[float] = None
    absolute_lift: Optional[float] = None
    relative_lift: Optional[float] = None
    z_score: Optional[float] = None
    p_value: Optional[float] = None
    adjusted_p_value: Optional[float] = None
    standard_error: Optional[float] = None
    confidence_interval: Optional[ConfidenceInterval] = None
    is_significant: bool = False


@dataclass
class FrequentistResult(_Serializable):
    experiment_id: str
    status: AnalysisStatus = AnalysisStatus.OK
    reason: str = ""
    confidence_level: float = 0.95
    control_variant_id: Optional[str] = None
    control_inferred: bool = False
    rates: Dict[str, Dict[str, float]] = field(default_factory=dict)
    comparisons: List[VariantComparison] = field(default_factory=list)
    correction: Optional[str] = None
    srm_passed: Optional[bool] = None
    srm_p_value: Optional[float] = None
    analysis_timestamp: datetime = field(default_factory=utcnow)


@dataclass
class PosteriorSummary(_Serializable):
    variant_id: str
    variant_name: str
    alpha: float
    beta: float
    mean: float
    variance: float
    credible_interval: ConfidenceInterval
    impressions: int
    conversions: int


@dataclass
class BayesianResult(_Serializable):
    experiment_id: str
    status: AnalysisStatus = AnalysisStatus.OK
    reason: str = ""
    num_samples: int = 0
    prior_alpha: float = 1.0
    prior_beta: float = 1.0
    posteriors: Dict[str, PosteriorSummary] = field(default_factory=dict)
    probability_best: Dict[str, float] = field(default_factory=dict)
    expected_loss: Dict[str, float] = field(default_factory=dict)
    probability_beat_control: Dict[str, float] = field(default_factory=dict)
    control_variant_id: Optional[str] = None
    analysis_timestamp: datetime = field(default_factory=utcnow)


@dataclass
class SequentialResult(_Serializable):
    experiment_id: str
    status: AnalysisStatus = AnalysisStatus.OK
    reason: str = ""
    alpha_spending: str = "obrien-fleming"
    information_fraction: float = 0.0
    alpha: float = 0.05
    spent_alpha: float = 0.0
    remaining_alpha: float = 0.05
    z_boundary: Optional[float] = None
    conditional_power: Optional[float] = None
    best_variant_id: Optional[str] = None
    best_p_value: Optional[float] = None
    best_relative_lift: Optional[float] = None
    decision: SequentialDecision = SequentialDecision.CONTINUE
    decision_reason: str = ""
    peeking_warning: str = ""
    frequentist: Optional[FrequentistResult] = None
    analysis_timestamp: datetime = field(default_factory=utcnow)


@dataclass
class RevenueComparison(_Serializable):
    variant_id: str
    variant_name: str
    control_revenue_per_visitor: Optional[float]
    variant_revenue_per_visitor: Optional[float]
    test: TTestResult


@dataclass
class RevenueResult(_Serializable):
    experiment_id: str
    status: AnalysisStatus = AnalysisStatus.OK
    reason: str = ""
    control_variant_id: Optional[str] = None
    comparisons: List[RevenueComparison] = field(default_factory=list)
    analysis_timestamp: datetime = field(default_factory=utcnow)
