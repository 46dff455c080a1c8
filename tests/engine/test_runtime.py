"""Tests for AnalysisRuntime stage chaining, state merging and auditing."""

import asyncio

import pytest

from augur.config import AnalysisConfig
from augur.engine.recorder import AuditTrailRecorder
from augur.engine.runtime import STAGES, AnalysisRuntime, fetch_briefing, merge_state
from augur.primitives.errors import (
    AnalysisError,
    ConsensusUnavailable,
    InsufficientSignals,
    InvalidConfiguration,
    MarketDataUnavailable,
)
from augur.primitives.models import (
    AnalysisState,
    MarketBriefingDocument,
    RefinedThesis,
    TradeAction,
)


def _mbd(**overrides):
    data = dict(
        market_id="m-1", condition_id="c-1", event_type="election",
        question="Will X win?", resolution_criteria="Official result",
        expiry_timestamp=1_900_000_000, current_probability=0.5,
        liquidity_score=8.0, bid_ask_spread=1.0,
    )
    data.update(overrides)
    return MarketBriefingDocument(**data)


def _producer(p, c, direction="YES", delay=0.0):
    async def produce(mbd, context):
        if delay:
            await asyncio.sleep(delay)
        return {
            "fair_probability": p, "confidence": c, "direction": direction,
            "key_drivers": ["driver"],
        }
    return produce


def _producers():
    return [
        ("polling", _producer(0.60, 0.8)),
        ("sentiment", _producer(0.62, 0.7)),
        ("base_rate", _producer(0.58, 0.9)),
    ]


class MidpointCritic:
    async def critique(self, thesis, opposing):
        return RefinedThesis(
            fair_probability=(thesis.fair_probability + opposing.fair_probability) / 2,
        )


class TestMergeState:
    def test_returns_new_state(self):
        state = AnalysisState(run_id="r", market_id="m")
        mbd = _mbd()
        merged = merge_state(state, {"mbd": mbd})
        assert merged.mbd is mbd
        assert state.mbd is None

    def test_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="unknown state keys"):
            merge_state(AnalysisState(run_id="r", market_id="m"), {"run_id": "other"})

    def test_sequences_become_tuples(self):
        merged = merge_state(AnalysisState(run_id="r", market_id="m"), {"signals": []})
        assert merged.signals == ()


class TestAnalysisRuntime:
    @pytest.mark.asyncio
    async def test_full_run_writes_one_entry_per_stage(self):
        runtime = AnalysisRuntime(_producers(), run_id="r-1")
        state = await runtime.run(_mbd())

        assert runtime.recorder.stages == list(STAGES[1:])
        assert all(e.success for e in runtime.recorder.entries)
        assert state.recommendation.action == TradeAction.LONG_YES
        assert state.recommendation.expected_value == pytest.approx((1.436 / 2.4 - 0.5) * 100)
        assert state.debate.skipped

    @pytest.mark.asyncio
    async def test_ingestion_stage_runs_without_mbd(self):
        runtime = AnalysisRuntime(_producers())
        state = await runtime.run(market_id="m-1", market_data=lambda market_id: _mbd(market_id=market_id))
        assert runtime.recorder.stages == list(STAGES)
        assert state.mbd.market_id == "m-1"

    @pytest.mark.asyncio
    async def test_debate_feeds_consensus(self):
        runtime = AnalysisRuntime(_producers(), critic=MidpointCritic())
        state = await runtime.run(_mbd())
        assert state.debate.usable
        assert state.consensus.debate_probability is not None
        debate_entry = runtime.recorder.entries[STAGES.index("debate") - 1]
        assert len(debate_entry.payload["turns"]) == 3

    @pytest.mark.asyncio
    async def test_insufficient_signals_carries_partial_audit(self):
        async def broken(mbd, context):
            raise RuntimeError("feed down")

        runtime = AnalysisRuntime([("a", _producer(0.6, 0.8)), ("b", broken)])
        with pytest.raises(InsufficientSignals) as exc_info:
            await runtime.run(_mbd())

        exc = exc_info.value
        assert exc.stage == "agent_orchestration"
        assert [e.stage for e in exc.audit_log] == ["agent_orchestration"]
        assert exc.audit_log[0].success is False
        assert exc.audit_log[0].payload["failed"] == 1

    @pytest.mark.asyncio
    async def test_degraded_debate_is_recorded_but_not_fatal(self):
        class Broken:
            async def critique(self, thesis, opposing):
                raise RuntimeError("critic offline")

        runtime = AnalysisRuntime(_producers(), critic=Broken())
        state = await runtime.run(_mbd())
        entry = runtime.recorder.entries[STAGES.index("debate") - 1]
        assert entry.stage == "debate"
        assert entry.success is True
        assert entry.payload["degraded"] is True
        assert any("critic offline" in e for e in entry.errors)
        assert state.consensus.debate_probability is None

    @pytest.mark.asyncio
    async def test_cancellation_records_interrupted_stage(self):
        producers = [
            ("fast", _producer(0.6, 0.8)),
            ("slow", _producer(0.6, 0.8, delay=5.0)),
        ]
        runtime = AnalysisRuntime(producers, config=AnalysisConfig(per_agent_timeout=30.0))
        task = asyncio.ensure_future(runtime.run(_mbd()))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        last = runtime.recorder.entries[-1]
        assert last.stage == "agent_orchestration"
        assert last.success is False
        assert last.errors == ("cancelled",)

    @pytest.mark.asyncio
    async def test_progress_events(self):
        events = []
        runtime = AnalysisRuntime(_producers(), on_progress=events.append)
        await runtime.run(_mbd())

        types = [e.type for e in events]
        assert types.count("stage_start") == len(STAGES) - 1
        assert types.count("stage_end") == len(STAGES) - 1
        assert types.count("agent_completed") == 3
        progress = [e.progress for e in events if e.type == "stage_end"]
        assert progress == sorted(progress)
        assert progress[-1] == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_async_progress_callback(self):
        seen = []

        async def on_progress(event):
            seen.append(event.stage)

        await AnalysisRuntime(_producers(), on_progress=on_progress).run(_mbd())
        assert "recommendation" in seen

    @pytest.mark.asyncio
    async def test_unexpected_stage_error_is_wrapped(self, monkeypatch):
        def explode(*args, **kwargs):
            raise ZeroDivisionError("oops")

        monkeypatch.setattr("augur.engine.runtime.generate_recommendation", explode)
        runtime = AnalysisRuntime(_producers())
        with pytest.raises(AnalysisError) as exc_info:
            await runtime.run(_mbd())
        assert exc_info.value.stage == "recommendation"
        assert "ZeroDivisionError" in exc_info.value.reason
        assert runtime.recorder.entries[-1].success is False

    @pytest.mark.asyncio
    async def test_fusion_failure_maps_to_consensus_unavailable(self, monkeypatch):
        def explode(*args, **kwargs):
            raise ZeroDivisionError("oops")

        monkeypatch.setattr("augur.engine.runtime.fuse_signals", explode)
        runtime = AnalysisRuntime(_producers())
        with pytest.raises(ConsensusUnavailable) as exc_info:
            await runtime.run(_mbd())
        assert exc_info.value.stage == "signal_fusion"
        assert "ZeroDivisionError" in exc_info.value.reason
        assert runtime.recorder.stages[-1] == "signal_fusion"
        assert runtime.recorder.entries[-1].success is False

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_abort_run(self):
        def on_progress(event):
            if event.type == "stage_end" and event.stage == "consensus":
                raise RuntimeError("ui went away")

        runtime = AnalysisRuntime(_producers(), on_progress=on_progress)
        state = await runtime.run(_mbd())
        assert state.recommendation is not None
        assert runtime.recorder.stages == list(STAGES[1:])
        assert all(e.success for e in runtime.recorder.entries)

    def test_invalid_config_fails_at_startup(self):
        with pytest.raises(InvalidConfiguration):
            AnalysisRuntime(_producers(), config=AnalysisConfig(conflict_threshold=1.5))

    def test_uses_recorder_run_id(self):
        runtime = AnalysisRuntime(_producers(), recorder=AuditTrailRecorder("given"))
        assert runtime.run_id == "given"


class TestFetchBriefing:
    @pytest.mark.asyncio
    async def test_provider_object(self):
        class Provider:
            async def get_briefing(self, market_id):
                return {"market_id": market_id, "current_probability": 0.4, "liquidity_score": 6}

        mbd = await fetch_briefing("m-7", Provider())
        assert mbd.market_id == "m-7"
        assert mbd.current_probability == 0.4

    @pytest.mark.asyncio
    async def test_missing_provider(self):
        with pytest.raises(MarketDataUnavailable):
            await fetch_briefing("m-7", None)

    @pytest.mark.asyncio
    async def test_provider_failure(self):
        def provider(market_id):
            raise ConnectionError("gamma api down")

        with pytest.raises(MarketDataUnavailable) as exc_info:
            await fetch_briefing("m-7", provider)
        assert "gamma api down" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_provider_returns_nothing(self):
        with pytest.raises(MarketDataUnavailable):
            await fetch_briefing("m-7", lambda market_id: None)
