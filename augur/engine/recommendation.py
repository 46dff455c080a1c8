# recommendation.py
# =============================================================================
# 交易建议生成器 — 由共识与市场快照确定性地推导交易建议。
# / Recommendation generator: deterministically derives a trade
#   recommendation from the consensus and the market snapshot.
# =============================================================================

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from augur.config import AnalysisConfig
from augur.primitives.models import (
    ConsensusProbability,
    LiquidityRisk,
    MarketBriefingDocument,
    ProbabilityRegime,
    Thesis,
    TradeAction,
    TradeExplanation,
    TradeMetadata,
    TradeRecommendation,
)

logger = logging.getLogger(__name__)

STAGE = "recommendation"


def _clip_zone(lo: float, hi: float) -> Tuple[float, float]:
    lo = min(1.0, max(0.0, lo))
    hi = min(1.0, max(0.0, hi))
    if lo > hi:
        lo, hi = hi, lo
    return lo, hi


def decide_action(edge: float, min_edge_threshold: float) -> TradeAction:
    """|edge| 低于阈值则不交易。 / NO_TRADE when |edge| is below the threshold."""
    if abs(edge) < min_edge_threshold:
        return TradeAction.NO_TRADE
    return TradeAction.LONG_YES if edge > 0 else TradeAction.LONG_NO


def assess_liquidity_risk(mbd: MarketBriefingDocument, config: AnalysisConfig) -> LiquidityRisk:
    """按流动性分数与价差（美分）分级。 / Grade by liquidity score and spread (cents)."""
    if (
        mbd.liquidity_score < config.liquidity_high_risk_below
        or mbd.bid_ask_spread >= config.spread_high_risk_at
    ):
        return LiquidityRisk.HIGH
    if (
        mbd.liquidity_score < config.liquidity_medium_risk_below
        or mbd.bid_ask_spread >= config.spread_medium_risk_at
    ):
        return LiquidityRisk.MEDIUM
    return LiquidityRisk.LOW


def entry_zone(mbd: MarketBriefingDocument) -> Tuple[float, float]:
    half_spread = (mbd.bid_ask_spread / 100.0) / 2.0
    return _clip_zone(mbd.current_probability - half_spread, mbd.current_probability + half_spread)


def target_zone(consensus: ConsensusProbability) -> Tuple[float, float]:
    half_band = consensus.band_width / 2.0
    c = consensus.consensus_probability
    return _clip_zone(c - half_band, c + half_band)


def _dedupe(items: List[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(i for i in items if i))


def _uncertainty_note(consensus: ConsensusProbability) -> Optional[str]:
    if consensus.regime == ProbabilityRegime.HIGH_CONFIDENCE:
        return None
    if consensus.regime == ProbabilityRegime.HIGH_UNCERTAINTY:
        return (
            f"Signals disagree sharply (disagreement index {consensus.disagreement_index:.3f}); "
            "treat the consensus as low-confidence and size accordingly."
        )
    return (
        f"Signals show moderate disagreement (disagreement index {consensus.disagreement_index:.3f}); "
        f"the fair value may sit anywhere in [{consensus.confidence_band[0]:.1%}, "
        f"{consensus.confidence_band[1]:.1%}]."
    )


def build_explanation(
    action: TradeAction,
    consensus: ConsensusProbability,
    mbd: MarketBriefingDocument,
    edge: float,
    bull: Optional[Thesis] = None,
    bear: Optional[Thesis] = None,
) -> TradeExplanation:
    """由数字与主论点拼出解释。 / Assemble the explanation from the numbers and the primary thesis."""
    summary = (
        f"{action.value}: consensus {consensus.consensus_probability:.1%} vs market "
        f"{mbd.current_probability:.1%} (edge {edge:+.1%}, {consensus.regime.value})."
    )

    primary: Optional[Thesis] = None
    if action == TradeAction.LONG_YES:
        primary = bull
    elif action == TradeAction.LONG_NO:
        primary = bear

    if primary is not None:
        core_thesis = primary.core_argument
        catalysts = list(primary.catalysts)
        failures = list(primary.failure_conditions)
    else:
        core_thesis = (
            f"Consensus sits within {abs(edge):.1%} of the market price; "
            "no edge large enough to trade."
        )
        catalysts = []
        failures = []

    catalysts.extend(mbd.metadata.key_catalysts)
    failures.extend(f"Resolution ambiguity: {flag}" for flag in mbd.metadata.ambiguity_flags)

    return TradeExplanation(
        summary=summary,
        core_thesis=core_thesis,
        key_catalysts=_dedupe(catalysts),
        failure_scenarios=_dedupe(failures),
        uncertainty_note=_uncertainty_note(consensus),
    )


def generate_recommendation(
    consensus: ConsensusProbability,
    mbd: MarketBriefingDocument,
    config: Optional[AnalysisConfig] = None,
    bull: Optional[Thesis] = None,
    bear: Optional[Thesis] = None,
) -> TradeRecommendation:
    """纯函数：共识 + 市场快照 → 交易建议。 / Pure function: consensus + snapshot → recommendation.

    bull / bear 应传入辩论后的修订论点。 / Pass the refined theses from the debate.
    """
    config = config or AnalysisConfig()
    c = consensus.consensus_probability
    edge = c - mbd.current_probability
    action = decide_action(edge, config.min_edge_threshold)

    if action == TradeAction.LONG_YES:
        win_probability: Optional[float] = c
    elif action == TradeAction.LONG_NO:
        win_probability = 1.0 - c
    else:
        win_probability = None

    recommendation = TradeRecommendation(
        market_id=mbd.market_id,
        action=action,
        entry_zone=entry_zone(mbd),
        target_zone=target_zone(consensus),
        expected_value=edge * 100.0,
        win_probability=win_probability,
        liquidity_risk=assess_liquidity_risk(mbd, config),
        explanation=build_explanation(action, consensus, mbd, edge, bull, bear),
        metadata=TradeMetadata(
            consensus_probability=c,
            market_probability=mbd.current_probability,
            edge=edge,
            confidence_band=consensus.confidence_band,
        ),
    )
    logger.info(
        f"交易建议 {mbd.market_id}: {action.value} edge={edge:+.3f} "
        f"liquidity_risk={recommendation.liquidity_risk.value}"
    )
    return recommendation
