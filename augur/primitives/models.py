# models.py
# =============================================================================
# 本模块定义 augur 共识引擎的全部核心数据模型。
# / Core data models of the augur consensus engine.
#
# 包含：MarketBriefingDocument、AgentSignal、AgentError、Thesis、
#       DebateRecord、FusedSignal、ConsensusProbability、TradeRecommendation、
#       AuditEntry、AnalysisState 等不可变结构。
# / Immutable structures: MBD, signals, theses, debate record, fusion and
#   consensus outputs, recommendation, audit entry and the threaded state.
#
# 所有概率 / 置信度字段在构造时校验 [0, 1] 区间。
# / Every probability / confidence field is validated to [0, 1] on construction.
# =============================================================================

from __future__ import annotations

import math
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Optional, Tuple


class SignalDirection(str, Enum):
    """信号方向。 / Signal direction."""

    YES = "YES"
    NO = "NO"
    NEUTRAL = "NEUTRAL"


class AgentErrorKind(str, Enum):
    """生产者失败类型。 / Producer failure kind."""

    TIMEOUT = "TIMEOUT"
    EXECUTION_FAILED = "EXECUTION_FAILED"


class ProbabilityRegime(str, Enum):
    """由分歧指数得出的置信区制。 / Confidence regime derived from the disagreement index."""

    HIGH_CONFIDENCE = "high-confidence"
    MODERATE_CONFIDENCE = "moderate-confidence"
    HIGH_UNCERTAINTY = "high-uncertainty"


class TradeAction(str, Enum):
    LONG_YES = "LONG_YES"
    LONG_NO = "LONG_NO"
    NO_TRADE = "NO_TRADE"


class LiquidityRisk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _check_unit_interval(name: str, value: float) -> None:
    """校验 value ∈ [0, 1] 且为有限数。 / Validate value is finite and within [0, 1]."""
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value) or value < 0.0 or value > 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """按顺序取第一个存在的键（兼容 camelCase / snake_case）。 / First present key (camelCase or snake_case)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_tuple(value: Any) -> Tuple[Any, ...]:
    """单个字符串视为一项。 / A bare string counts as one item."""
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    return tuple(value)


# =============================================================================
# 市场快照 / Market snapshot
# =============================================================================


@dataclass(frozen=True)
class MarketMetadata:
    """MBD 附带的元信息。 / Metadata attached to an MBD."""

    ambiguity_flags: Tuple[str, ...] = ()
    key_catalysts: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MarketBriefingDocument:
    """市场简报（MBD）— 由外部采集一次创建，流水线全程只读。

    / Market Briefing Document — created once by ingestion, read-only afterwards.

    bid_ask_spread 以美分计（0.02 美元价差 = 2.0）；liquidity_score 取 0-10 区间。
    / bid_ask_spread is in cents (a 0.02 spread is 2.0); liquidity_score is on a 0-10 scale.
    """

    market_id: str
    condition_id: str
    event_type: str
    question: str
    resolution_criteria: str
    expiry_timestamp: float
    current_probability: float
    liquidity_score: float
    bid_ask_spread: float
    volatility_regime: str = "medium"
    volume_24h: float = 0.0
    metadata: MarketMetadata = field(default_factory=MarketMetadata)

    def __post_init__(self) -> None:
        _check_unit_interval("current_probability", self.current_probability)
        if self.bid_ask_spread < 0:
            raise ValueError(f"bid_ask_spread must be >= 0, got {self.bid_ask_spread}")
        if self.liquidity_score < 0:
            raise ValueError(f"liquidity_score must be >= 0, got {self.liquidity_score}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> MarketBriefingDocument:
        """从字典构建（兼容 camelCase 键）。 / Build from a dict (camelCase keys accepted)."""
        meta = data.get("metadata") or {}
        return cls(
            market_id=str(_first(data, "market_id", "marketId", default="")),
            condition_id=str(_first(data, "condition_id", "conditionId", default="")),
            event_type=str(_first(data, "event_type", "eventType", default="other")),
            question=str(data.get("question", "")),
            resolution_criteria=str(
                _first(data, "resolution_criteria", "resolutionCriteria", default="")
            ),
            expiry_timestamp=float(_first(data, "expiry_timestamp", "expiryTimestamp", default=0)),
            current_probability=float(
                _first(data, "current_probability", "currentProbability", default=0.5)
            ),
            liquidity_score=float(_first(data, "liquidity_score", "liquidityScore", default=0)),
            bid_ask_spread=float(_first(data, "bid_ask_spread", "bidAskSpread", default=0)),
            volatility_regime=str(
                _first(data, "volatility_regime", "volatilityRegime", default="medium")
            ),
            volume_24h=float(_first(data, "volume_24h", "volume24h", default=0)),
            metadata=MarketMetadata(
                ambiguity_flags=_as_tuple(_first(meta, "ambiguity_flags", "ambiguityFlags", default=())),
                key_catalysts=tuple(
                    _catalyst_text(c)
                    for c in _first(meta, "key_catalysts", "keyCatalysts", default=())
                ),
            ),
        )


def _catalyst_text(catalyst: Any) -> str:
    # 上游有时给出 {"event": ..., "timestamp": ...} / upstream sometimes sends {"event": ..., "timestamp": ...}
    if isinstance(catalyst, dict):
        return str(catalyst.get("event", ""))
    return str(catalyst)


# =============================================================================
# 智能体信号 / Agent signals
# =============================================================================


@dataclass(frozen=True)
class AgentSignal:
    """单个信号生产者的一次成功输出。 / One successful output of a signal producer.

    metadata 为不透明负载，融合 / 共识计算从不读取。
    / metadata is an opaque payload; fusion and consensus math never read it.
    """

    agent_name: str
    confidence: float
    direction: SignalDirection
    fair_probability: float
    key_drivers: Tuple[str, ...]
    risk_factors: Tuple[str, ...] = ()
    timestamp: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not self.agent_name:
            raise ValueError("agent_name must be non-empty")
        _check_unit_interval("confidence", self.confidence)
        _check_unit_interval("fair_probability", self.fair_probability)
        if not isinstance(self.direction, SignalDirection):
            object.__setattr__(self, "direction", SignalDirection(str(self.direction).upper()))
        if isinstance(self.key_drivers, str) or not self.key_drivers:
            raise ValueError("key_drivers must be a non-empty list of strings")
        object.__setattr__(self, "key_drivers", tuple(str(d) for d in self.key_drivers))
        object.__setattr__(self, "risk_factors", tuple(str(r) for r in _as_tuple(self.risk_factors)))

    @classmethod
    def from_dict(cls, data: Dict[str, Any], agent_name: Optional[str] = None) -> AgentSignal:
        """从生产者返回的字典构建。 / Build from a producer's dict payload."""
        return cls(
            agent_name=agent_name or str(_first(data, "agent_name", "agentName", default="")),
            confidence=float(data["confidence"]),
            direction=SignalDirection(str(data.get("direction", "NEUTRAL")).upper()),
            fair_probability=float(_first(data, "fair_probability", "fairProbability")),
            key_drivers=_as_tuple(_first(data, "key_drivers", "keyDrivers", default=())),
            risk_factors=_as_tuple(_first(data, "risk_factors", "riskFactors", default=())),
            timestamp=float(data.get("timestamp") or time.time()),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class AgentError:
    """生产者失败记录，不阻断流水线。 / Producer failure record; never blocks the pipeline."""

    agent_name: str
    kind: AgentErrorKind
    error: str
    error_type: str = ""
    duration_seconds: float = 0.0


# =============================================================================
# 论点与辩论 / Theses and debate
# =============================================================================


@dataclass(frozen=True)
class Thesis:
    """多方 / 空方论点。fair_probability 始终处于 YES 概率空间。

    / Bull or bear thesis. fair_probability is always expressed as P(YES).
    """

    direction: SignalDirection
    fair_probability: float
    confidence: float
    market_probability: float
    edge: float
    supporting_signals: Tuple[str, ...] = ()
    core_argument: str = ""
    catalysts: Tuple[str, ...] = ()
    failure_conditions: Tuple[str, ...] = ()
    strategy: str = ""

    def __post_init__(self) -> None:
        _check_unit_interval("thesis.fair_probability", self.fair_probability)
        _check_unit_interval("thesis.confidence", self.confidence)


@dataclass(frozen=True)
class RefinedThesis:
    """质询生产者返回的修订论点。 / Revised thesis returned by a critique producer."""

    fair_probability: float
    core_argument: str = ""
    confidence: Optional[float] = None
    catalysts: Tuple[str, ...] = ()
    failure_conditions: Tuple[str, ...] = ()


class DebatePhase(str, Enum):
    """辩论状态机的状态。 / States of the debate state machine."""

    INIT = "INIT"
    BULL_OPENING = "BULL_OPENING"
    BEAR_REBUTTAL = "BEAR_REBUTTAL"
    BULL_REBUTTAL = "BULL_REBUTTAL"
    RESOLVED = "RESOLVED"


@dataclass(frozen=True)
class DebateTurn:
    """一次发言（一次状态迁移）。 / One exchange, i.e. one state transition."""

    round_number: int
    phase: DebatePhase
    speaker: SignalDirection
    probability_before: float
    probability_after: float
    argument: str = ""


@dataclass(frozen=True)
class DebateRecord:
    """辩论记录：原始论点与修订论点分开保存。 / Debate record keeping original and refined theses apart."""

    original_bull: Thesis
    original_bear: Thesis
    refined_bull: Thesis
    refined_bear: Thesis
    degraded: bool = False
    skipped: bool = False
    rounds_completed: int = 0
    turns: Tuple[DebateTurn, ...] = ()
    degradation_reason: Optional[str] = None

    @property
    def usable(self) -> bool:
        """辩论结果是否可用于共识混合。 / Whether the debate output may enter the consensus blend."""
        return not (self.degraded or self.skipped)

    @property
    def implied_probability(self) -> float:
        """修订后多空论点的平均 YES 概率。 / Mean P(YES) of the refined bull and bear theses."""
        return (self.refined_bull.fair_probability + self.refined_bear.fair_probability) / 2.0


# =============================================================================
# 融合与共识 / Fusion and consensus
# =============================================================================


@dataclass(frozen=True)
class SignalConflict:
    agent1: str
    agent2: str
    disagreement: float


@dataclass(frozen=True)
class FusedSignal:
    """加权融合后的单一估计。 / Single weighted estimate produced by fusion."""

    fair_probability: float
    confidence: float
    contributing_agents: Tuple[str, ...]
    conflicts: Tuple[SignalConflict, ...] = ()
    weights: Dict[str, float] = field(default_factory=dict, compare=False)
    direction: SignalDirection = SignalDirection.NEUTRAL
    alignment: float = 0.0
    probability_range: float = 0.0

    def __post_init__(self) -> None:
        _check_unit_interval("fused.fair_probability", self.fair_probability)
        _check_unit_interval("fused.confidence", self.confidence)


@dataclass(frozen=True)
class ConsensusProbability:
    """带置信带与区制的共识概率。 / Consensus probability with confidence band and regime."""

    consensus_probability: float
    confidence_band: Tuple[float, float]
    disagreement_index: float
    regime: ProbabilityRegime
    contributing_signals: Tuple[str, ...]
    fused_probability: float = 0.0
    debate_probability: Optional[float] = None

    def __post_init__(self) -> None:
        _check_unit_interval("consensus_probability", self.consensus_probability)
        _check_unit_interval("disagreement_index", self.disagreement_index)
        lo, hi = self.confidence_band
        _check_unit_interval("confidence_band.lo", lo)
        _check_unit_interval("confidence_band.hi", hi)
        if lo > hi:
            raise ValueError(f"confidence_band lo > hi: {self.confidence_band}")

    @property
    def band_width(self) -> float:
        return self.confidence_band[1] - self.confidence_band[0]


# =============================================================================
# 交易建议 / Trade recommendation
# =============================================================================


@dataclass(frozen=True)
class TradeExplanation:
    summary: str
    core_thesis: str
    key_catalysts: Tuple[str, ...] = ()
    failure_scenarios: Tuple[str, ...] = ()
    uncertainty_note: Optional[str] = None


@dataclass(frozen=True)
class TradeMetadata:
    consensus_probability: float
    market_probability: float
    edge: float
    confidence_band: Tuple[float, float]


@dataclass(frozen=True)
class TradeRecommendation:
    """最终可执行的交易建议。 / Final actionable recommendation."""

    market_id: str
    action: TradeAction
    entry_zone: Tuple[float, float]
    target_zone: Tuple[float, float]
    expected_value: float
    win_probability: Optional[float]
    liquidity_risk: LiquidityRisk
    explanation: TradeExplanation
    metadata: TradeMetadata


# =============================================================================
# 审计 / Audit
# =============================================================================


def _freeze(value: Any) -> Any:
    """递归转换为只读结构。 / Recursively convert into read-only structures."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class AuditEntry:
    """单个阶段的审计条目，创建后不可修改。 / Audit entry for one stage; immutable once created.

    timestamp 为 epoch 秒；duration 为秒。 / timestamp is epoch seconds; duration is seconds.
    """

    stage: str
    timestamp: float
    duration: float
    success: bool
    payload: Mapping[str, Any] = field(default_factory=dict)
    errors: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", _freeze(dict(self.payload or {})))
        object.__setattr__(self, "errors", tuple(self.errors))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "timestamp": self.timestamp,
            "duration": self.duration,
            "success": self.success,
            "payload": _thaw(self.payload),
            "errors": list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AuditEntry:
        return cls(
            stage=str(data["stage"]),
            timestamp=float(data["timestamp"]),
            duration=float(data.get("duration", 0.0)),
            success=bool(data["success"]),
            payload=dict(data.get("payload") or {}),
            errors=tuple(data.get("errors") or ()),
        )


# =============================================================================
# 流水线状态 / Pipeline state
# =============================================================================


@dataclass(frozen=True)
class AnalysisState:
    """在各阶段间显式传递的状态值。 / Explicit state value threaded through the stage chain.

    各阶段只返回增量（delta），由运行时通过 merge_state() 合并。
    / Stages return deltas only; the runtime merges them via merge_state().
    """

    run_id: str
    market_id: str
    mbd: Optional[MarketBriefingDocument] = None
    signals: Tuple[AgentSignal, ...] = ()
    agent_errors: Tuple[AgentError, ...] = ()
    bull_thesis: Optional[Thesis] = None
    bear_thesis: Optional[Thesis] = None
    debate: Optional[DebateRecord] = None
    fused: Optional[FusedSignal] = None
    consensus: Optional[ConsensusProbability] = None
    recommendation: Optional[TradeRecommendation] = None


# 运行时按阶段顺序写入的字段集合 / Fields a stage delta may set
STATE_DELTA_FIELDS = frozenset({
    "mbd",
    "signals",
    "agent_errors",
    "bull_thesis",
    "bear_thesis",
    "debate",
    "fused",
    "consensus",
    "recommendation",
})
