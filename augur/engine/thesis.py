"""多空论点构建器。 / Bull and bear thesis construction.

把成功的信号划分为多方（YES）与空方（NO）两组，并分别聚合成论点。
/ Partitions successful signals into a bull (YES) and a bear (NO) side and
aggregates each side into a thesis.

聚合按有序策略表执行，第一个成功的策略胜出：
/ Aggregation walks an ordered strategy list; the first strategy that succeeds wins:
    1. confidence_weighted — 置信度加权平均 / confidence-weighted mean
    2. simple_mean        — 置信度全为 0 时的简单平均 / plain mean when every confidence is 0
    3. market_implied     — 该方无信号时退回市场价 / market price when the side has no signals
"""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from augur.primitives.models import (
    AgentSignal,
    MarketBriefingDocument,
    SignalDirection,
    Thesis,
)

logger = logging.getLogger(__name__)

STAGE = "thesis_construction"

# (name, fn) — fn 返回 None 表示该策略不适用 / fn returns None when the strategy does not apply
ThesisStrategy = Tuple[
    str,
    Callable[[Sequence[AgentSignal], MarketBriefingDocument, SignalDirection], Optional[Thesis]],
]


def partition_signals(
    signals: Sequence[AgentSignal], market_probability: float,
) -> Tuple[List[AgentSignal], List[AgentSignal]]:
    """划分多空两方。 / Split signals into (bull, bear).

    YES，或 fair_probability 高于市场价的 NEUTRAL → 多方；
    NO，或低于市场价的 NEUTRAL → 空方；恰好等于市场价的 NEUTRAL 两边都不支持。
    / YES, or NEUTRAL above market → bull; NO, or NEUTRAL below market → bear;
      NEUTRAL exactly at market supports neither side.
    """
    bull: List[AgentSignal] = []
    bear: List[AgentSignal] = []
    for s in signals:
        if s.direction == SignalDirection.YES:
            bull.append(s)
        elif s.direction == SignalDirection.NO:
            bear.append(s)
        elif s.fair_probability > market_probability:
            bull.append(s)
        elif s.fair_probability < market_probability:
            bear.append(s)
    return bull, bear


def _dedupe(items: Sequence[str]) -> Tuple[str, ...]:
    seen = set()
    out = []
    for item in items:
        key = item.strip()
        if key and key not in seen:
            seen.add(key)
            out.append(key)
    return tuple(out)


def _side_label(direction: SignalDirection) -> str:
    return "bull" if direction == SignalDirection.YES else "bear"


def _make_thesis(
    subset: Sequence[AgentSignal],
    mbd: MarketBriefingDocument,
    direction: SignalDirection,
    fair_probability: float,
    confidence: float,
    strategy: str,
) -> Thesis:
    drivers = _dedupe([d for s in subset for d in s.key_drivers])
    risks = _dedupe([r for s in subset for r in s.risk_factors])
    fair_probability = min(1.0, max(0.0, fair_probability))
    edge = fair_probability - mbd.current_probability

    if subset:
        core_argument = (
            f"{len(subset)} signal(s) put P(YES) at {fair_probability:.1%} against a market "
            f"price of {mbd.current_probability:.1%}: " + "; ".join(drivers[:3])
        )
    else:
        core_argument = (
            f"No signals support the {_side_label(direction)} case; "
            f"deferring to the market price of {mbd.current_probability:.1%}."
        )

    return Thesis(
        direction=direction,
        fair_probability=fair_probability,
        confidence=min(1.0, max(0.0, confidence)),
        market_probability=mbd.current_probability,
        edge=edge,
        supporting_signals=tuple(s.agent_name for s in subset),
        core_argument=core_argument,
        catalysts=drivers,
        failure_conditions=risks,
        strategy=strategy,
    )


def _confidence_weighted(subset, mbd, direction) -> Optional[Thesis]:
    total = sum(s.confidence for s in subset)
    if not subset or total <= 0:
        return None
    p = sum(s.fair_probability * s.confidence for s in subset) / total
    c = sum(s.confidence * s.confidence for s in subset) / total
    return _make_thesis(subset, mbd, direction, p, c, "confidence_weighted")


def _simple_mean(subset, mbd, direction) -> Optional[Thesis]:
    if not subset:
        return None
    p = sum(s.fair_probability for s in subset) / len(subset)
    c = sum(s.confidence for s in subset) / len(subset)
    return _make_thesis(subset, mbd, direction, p, c, "simple_mean")


def _market_implied(subset, mbd, direction) -> Optional[Thesis]:
    logger.warning(
        f"no_opposing_signals: {mbd.market_id} 的{_side_label(direction)}方无支持信号，退回市场价 "
        f"{mbd.current_probability:.3f}"
    )
    return _make_thesis((), mbd, direction, mbd.current_probability, 0.0, "market_implied")


DEFAULT_STRATEGIES: List[ThesisStrategy] = [
    ("confidence_weighted", _confidence_weighted),
    ("simple_mean", _simple_mean),
    ("market_implied", _market_implied),
]


class ThesisBuilder:
    """按有序策略表构建多空论点；从不抛出。 / Build bull and bear theses from an ordered strategy list; never raises."""

    def __init__(self, strategies: Optional[List[ThesisStrategy]] = None):
        self.strategies = list(strategies or DEFAULT_STRATEGIES)

    def build(
        self, signals: Sequence[AgentSignal], mbd: MarketBriefingDocument,
    ) -> Tuple[Thesis, Thesis]:
        bull_signals, bear_signals = partition_signals(signals, mbd.current_probability)
        bull = self._build_side(bull_signals, mbd, SignalDirection.YES)
        bear = self._build_side(bear_signals, mbd, SignalDirection.NO)
        logger.info(
            f"论点构建完成 {mbd.market_id}: bull={bull.fair_probability:.3f} ({bull.strategy}, "
            f"{len(bull_signals)} 个信号), bear={bear.fair_probability:.3f} ({bear.strategy}, "
            f"{len(bear_signals)} 个信号)"
        )
        return bull, bear

    def _build_side(
        self,
        subset: Sequence[AgentSignal],
        mbd: MarketBriefingDocument,
        direction: SignalDirection,
    ) -> Thesis:
        for name, strategy in self.strategies:
            thesis = strategy(subset, mbd, direction)
            if thesis is not None:
                return thesis
            logger.debug(f"thesis strategy {name} not applicable for {_side_label(direction)}")
        # 策略表必须以无条件兜底结尾 / the list must end with an unconditional fallback
        return _market_implied(subset, mbd, direction)


def build_theses(
    signals: Sequence[AgentSignal], mbd: MarketBriefingDocument,
) -> Tuple[Thesis, Thesis]:
    """便捷函数。 / Convenience wrapper."""
    return ThesisBuilder().build(signals, mbd)
