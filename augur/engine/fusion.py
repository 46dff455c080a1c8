# fusion.py
# =============================================================================
# 信号融合引擎 — 纯函数，无隐藏状态。
# / Signal fusion engine; pure functions, no hidden state.
#
# 公式 / Formulas:
#   p     = Σ(p_i·w_i·c_i) / Σ(w_i·c_i)          （w_i 默认 1.0 / defaults to 1.0）
#   base  = Σ(c_i·w_i·c_i) / Σ(w_i·c_i)
#   conf  = base · (1 − 冲突对数 / 总对数) [+ alignment_bonus] ∈ [0, 1]
#   冲突  = |p_i − p_j| > conflict_threshold 的信号对
# =============================================================================

from __future__ import annotations

import logging
from itertools import combinations
from typing import Dict, List, Mapping, Optional, Sequence

from augur.primitives.models import AgentSignal, FusedSignal, SignalConflict, SignalDirection

logger = logging.getLogger(__name__)

STAGE = "signal_fusion"

# 方向一致占比超过该值时加上 alignment_bonus / alignment share above which the bonus applies
ALIGNMENT_SHARE_THRESHOLD = 0.7

# 同分时的方向优先级 / direction precedence on ties
_DIRECTION_ORDER = (SignalDirection.YES, SignalDirection.NO, SignalDirection.NEUTRAL)


def detect_conflicts(
    signals: Sequence[AgentSignal], conflict_threshold: float,
) -> List[SignalConflict]:
    """两两比较，返回分歧超过阈值的信号对。 / Pairwise comparison; pairs whose gap exceeds the threshold."""
    conflicts = []
    for a, b in combinations(signals, 2):
        gap = abs(a.fair_probability - b.fair_probability)
        if gap > conflict_threshold:
            conflicts.append(SignalConflict(agent1=a.agent_name, agent2=b.agent_name, disagreement=gap))
    return conflicts


def dominant_direction(
    signals: Sequence[AgentSignal], weights: Mapping[str, float],
) -> SignalDirection:
    """总 w·c 最大的方向。 / Direction carrying the largest total w·c."""
    totals: Dict[SignalDirection, float] = {d: 0.0 for d in _DIRECTION_ORDER}
    for s in signals:
        totals[s.direction] += weights.get(s.agent_name, 1.0) * s.confidence
    best = _DIRECTION_ORDER[0]
    for direction in _DIRECTION_ORDER[1:]:
        if totals[direction] > totals[best]:
            best = direction
    return best


def fuse_signals(
    signals: Sequence[AgentSignal],
    weights_by_agent: Optional[Mapping[str, float]] = None,
    conflict_threshold: float = 0.20,
    alignment_bonus: float = 0.20,
) -> FusedSignal:
    """把成功信号融合为单一估计。 / Fuse successful signals into one estimate.

    Raises:
        ValueError: signals 为空。 / signals is empty.
    """
    if not signals:
        raise ValueError("cannot fuse an empty signal list")
    weights = dict(weights_by_agent or {})

    effective = [weights.get(s.agent_name, 1.0) * s.confidence for s in signals]
    total = sum(effective)

    if total > 0:
        probability = sum(s.fair_probability * e for s, e in zip(signals, effective)) / total
        base_confidence = sum(s.confidence * e for s, e in zip(signals, effective)) / total
        normalized = {s.agent_name: e / total for s, e in zip(signals, effective)}
    else:
        # 全部有效权重为 0 时退化为简单平均 / all effective weights zero: plain mean
        probability = sum(s.fair_probability for s in signals) / len(signals)
        base_confidence = 0.0
        normalized = {s.agent_name: 1.0 / len(signals) for s in signals}

    conflicts = detect_conflicts(signals, conflict_threshold)
    total_pairs = len(signals) * (len(signals) - 1) // 2
    conflict_ratio = len(conflicts) / total_pairs if total_pairs else 0.0
    confidence = base_confidence * (1.0 - conflict_ratio)

    direction = dominant_direction(signals, weights)
    alignment = sum(1 for s in signals if s.direction == direction) / len(signals)
    if alignment > ALIGNMENT_SHARE_THRESHOLD:
        confidence += alignment_bonus

    probs = [s.fair_probability for s in signals]
    probability_range = max(probs) - min(probs)
    if conflicts:
        logger.warning(
            f"检测到 {len(conflicts)}/{total_pairs} 个信号冲突 (range={probability_range:.3f})"
        )

    return FusedSignal(
        fair_probability=min(1.0, max(0.0, probability)),
        confidence=min(1.0, max(0.0, confidence)),
        contributing_agents=tuple(s.agent_name for s in signals),
        conflicts=tuple(conflicts),
        weights=normalized,
        direction=direction,
        alignment=alignment,
        probability_range=probability_range,
    )
