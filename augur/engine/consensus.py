# consensus.py
# =============================================================================
# 共识引擎 — 融合结果与辩论结果混合，计算分歧指数、置信带与区制。
# / Consensus engine: blends fusion and debate output, then derives the
#   disagreement index, confidence band and regime.
# =============================================================================

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

from augur.primitives.errors import ConsensusUnavailable
from augur.primitives.models import (
    AgentSignal,
    ConsensusProbability,
    DebateRecord,
    FusedSignal,
    ProbabilityRegime,
)

logger = logging.getLogger(__name__)

STAGE = "consensus"


def disagreement_index(signals: Sequence[AgentSignal]) -> float:
    """信号概率的总体标准差；信号数 ≤ 1 时为 0。 / Population std-dev of signal probabilities; 0 for ≤ 1 signal."""
    if len(signals) <= 1:
        return 0.0
    probs = [s.fair_probability for s in signals]
    mean = sum(probs) / len(probs)
    variance = sum((p - mean) ** 2 for p in probs) / len(probs)
    return min(1.0, math.sqrt(variance))


def classify_regime(
    disagreement: float,
    high_confidence_threshold: float = 0.10,
    high_disagreement_threshold: float = 0.20,
) -> ProbabilityRegime:
    if disagreement < high_confidence_threshold:
        return ProbabilityRegime.HIGH_CONFIDENCE
    if disagreement < high_disagreement_threshold:
        return ProbabilityRegime.MODERATE_CONFIDENCE
    return ProbabilityRegime.HIGH_UNCERTAINTY


def compute_consensus(
    fused: Optional[FusedSignal],
    debate: Optional[DebateRecord],
    signals: Sequence[AgentSignal],
    blend_weight: float = 0.5,
    band_multiplier: float = 1.0,
    high_confidence_threshold: float = 0.10,
    high_disagreement_threshold: float = 0.20,
) -> ConsensusProbability:
    """计算共识概率。 / Compute the consensus probability.

    辩论被跳过或降级时直接使用融合概率；否则
    consensus = (1 − β)·fused + β·mean(修订后多空概率)。
    / With a skipped or degraded debate the fused probability is used as is;
      otherwise consensus = (1 − β)·fused + β·mean(refined bull, refined bear).

    Raises:
        ConsensusUnavailable: 缺少融合结果。 / No fused signal available.
    """
    if fused is None:
        raise ConsensusUnavailable(stage=STAGE, reason="no fused signal to build a consensus from")

    debate_probability: Optional[float] = None
    if debate is not None and debate.usable:
        debate_probability = debate.implied_probability
        probability = (1.0 - blend_weight) * fused.fair_probability + blend_weight * debate_probability
    else:
        probability = fused.fair_probability
    probability = min(1.0, max(0.0, probability))

    d = disagreement_index(signals)
    lo = max(0.0, probability - band_multiplier * d)
    hi = min(1.0, probability + band_multiplier * d)
    regime = classify_regime(d, high_confidence_threshold, high_disagreement_threshold)

    if regime == ProbabilityRegime.HIGH_UNCERTAINTY:
        logger.warning(f"信号分歧过大: disagreement={d:.3f}, band=[{lo:.3f}, {hi:.3f}]")

    return ConsensusProbability(
        consensus_probability=probability,
        confidence_band=(lo, hi),
        disagreement_index=d,
        regime=regime,
        contributing_signals=tuple(fused.contributing_agents),
        fused_probability=fused.fair_probability,
        debate_probability=debate_probability,
    )
