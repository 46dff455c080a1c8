"""Tests for the consensus engine."""

import pytest

from augur.engine.consensus import classify_regime, compute_consensus, disagreement_index
from augur.engine.fusion import fuse_signals
from augur.primitives.errors import ConsensusUnavailable
from augur.primitives.models import (
    AgentSignal,
    DebateRecord,
    ProbabilityRegime,
    SignalDirection,
    Thesis,
)


def _signal(name, p, c=0.8):
    return AgentSignal(
        agent_name=name, confidence=c, direction=SignalDirection.YES,
        fair_probability=p, key_drivers=("d",),
    )


def _thesis(direction, p):
    return Thesis(
        direction=direction, fair_probability=p, confidence=0.6,
        market_probability=0.5, edge=p - 0.5,
    )


def _debate(bull_p, bear_p, **flags):
    bull = _thesis(SignalDirection.YES, 0.7)
    bear = _thesis(SignalDirection.NO, 0.3)
    return DebateRecord(
        original_bull=bull,
        original_bear=bear,
        refined_bull=_thesis(SignalDirection.YES, bull_p),
        refined_bear=_thesis(SignalDirection.NO, bear_p),
        **flags,
    )


class TestDisagreement:
    def test_population_std(self):
        signals = [_signal("a", 0.6), _signal("b", 0.62), _signal("c", 0.58)]
        assert disagreement_index(signals) == pytest.approx((0.0008 / 3) ** 0.5)

    def test_single_signal_is_zero(self):
        assert disagreement_index([_signal("a", 0.9)]) == 0.0

    def test_monotonic_in_spread(self):
        narrow = [_signal("a", 0.48), _signal("b", 0.52)]
        wide = [_signal("a", 0.3), _signal("b", 0.7)]
        assert disagreement_index(wide) > disagreement_index(narrow)


class TestRegime:
    @pytest.mark.parametrize("d,expected", [
        (0.0, ProbabilityRegime.HIGH_CONFIDENCE),
        (0.09, ProbabilityRegime.HIGH_CONFIDENCE),
        (0.15, ProbabilityRegime.MODERATE_CONFIDENCE),
        (0.25, ProbabilityRegime.HIGH_UNCERTAINTY),
    ])
    def test_thresholds(self, d, expected):
        assert classify_regime(d, 0.10, 0.20) == expected


class TestComputeConsensus:
    def test_without_debate_equals_fused(self):
        signals = [_signal("a", 0.6), _signal("b", 0.64)]
        fused = fuse_signals(signals)
        c = compute_consensus(fused, None, signals)
        assert c.consensus_probability == pytest.approx(fused.fair_probability)
        assert c.debate_probability is None
        assert c.contributing_signals == ("a", "b")

    def test_blends_usable_debate(self):
        signals = [_signal("a", 0.6), _signal("b", 0.6)]
        fused = fuse_signals(signals)
        c = compute_consensus(fused, _debate(0.5, 0.4), signals, blend_weight=0.5)
        assert c.debate_probability == pytest.approx(0.45)
        assert c.consensus_probability == pytest.approx(0.5 * 0.6 + 0.5 * 0.45)

    @pytest.mark.parametrize("flags", [{"degraded": True}, {"skipped": True}])
    def test_ignores_unusable_debate(self, flags):
        signals = [_signal("a", 0.6), _signal("b", 0.6)]
        fused = fuse_signals(signals)
        c = compute_consensus(fused, _debate(0.1, 0.1, **flags), signals)
        assert c.consensus_probability == pytest.approx(0.6)
        assert c.debate_probability is None

    def test_band_is_clipped_and_contains_consensus(self):
        signals = [_signal("a", 0.95), _signal("b", 0.55)]
        fused = fuse_signals(signals)
        c = compute_consensus(fused, None, signals, band_multiplier=2.0)
        lo, hi = c.confidence_band
        assert 0.0 <= lo <= c.consensus_probability <= hi <= 1.0
        assert hi == 1.0

    def test_missing_fused_raises(self):
        with pytest.raises(ConsensusUnavailable) as exc_info:
            compute_consensus(None, None, [])
        assert exc_info.value.stage == "consensus"
