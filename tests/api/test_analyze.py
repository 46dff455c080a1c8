"""Tests for the public analyze() entry point."""

import asyncio

import pytest

from augur import analyze
from augur.config import AnalysisConfig
from augur.engine.recorder import InMemoryAuditStore, JsonFileAuditStore, load_audit_trail
from augur.primitives.errors import (
    AnalysisError,
    InsufficientSignals,
    InvalidConfiguration,
    MarketDataUnavailable,
)
from augur.primitives.models import LiquidityRisk, TradeAction

MARKET = {
    "market_id": "m-1",
    "condition_id": "c-1",
    "event_type": "election",
    "question": "Will X win?",
    "resolution_criteria": "Official result",
    "expiry_timestamp": 1_900_000_000,
    "current_probability": 0.5,
    "liquidity_score": 8.0,
    "bid_ask_spread": 1.0,
}

STAGES = [
    "market_ingestion",
    "agent_orchestration",
    "thesis_construction",
    "debate",
    "signal_fusion",
    "consensus",
    "recommendation",
]


def _producer(p, c, direction="YES", delay=0.0):
    async def produce(mbd, context):
        if delay:
            await asyncio.sleep(delay)
        return {"fair_probability": p, "confidence": c, "direction": direction, "key_drivers": ["d"]}
    return produce


def _aligned():
    return [
        ("polling", _producer(0.60, 0.8)),
        ("sentiment", _producer(0.62, 0.7)),
        ("base_rate", _producer(0.58, 0.9)),
    ]


def _split():
    return [
        ("bear", _producer(0.25, 0.8, "NO")),
        ("bull", _producer(0.75, 0.8, "YES")),
    ]


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_aligned_signals_go_long_yes(self):
        store = InMemoryAuditStore()
        rec = await analyze(
            "m-1", AnalysisConfig(), market_data=MARKET, producers=_aligned(),
            store=store, run_id="run-a",
        )
        assert rec.action == TradeAction.LONG_YES
        assert rec.expected_value == pytest.approx(9.8333, abs=1e-3)
        assert rec.win_probability == pytest.approx(0.59833, abs=1e-4)
        assert rec.liquidity_risk == LiquidityRisk.LOW
        assert rec.entry_zone == pytest.approx((0.495, 0.505))
        assert rec.explanation.uncertainty_note is None

        assert [e.stage for e in store.entries("run-a")] == STAGES
        assert store.status("run-a") == "completed"

    @pytest.mark.asyncio
    async def test_split_signals_do_not_trade(self):
        rec = await analyze("m-1", AnalysisConfig(), market_data=MARKET, producers=_split())
        assert rec.action == TradeAction.NO_TRADE
        assert rec.win_probability is None
        assert rec.metadata.confidence_band == pytest.approx((0.25, 0.75))
        assert rec.explanation.uncertainty_note

    @pytest.mark.asyncio
    async def test_insufficient_signals(self):
        async def broken(mbd, context):
            raise RuntimeError("no data")

        store = InMemoryAuditStore()
        with pytest.raises(InsufficientSignals) as exc_info:
            await analyze(
                "m-1", AnalysisConfig(), market_data=MARKET,
                producers=[("a", _producer(0.6, 0.8)), ("b", broken)],
                store=store, run_id="run-i",
            )
        exc = exc_info.value
        assert [e.stage for e in exc.audit_log] == ["market_ingestion", "agent_orchestration"]
        assert store.status("run-i") == "failed"

    @pytest.mark.asyncio
    async def test_market_data_unavailable(self):
        with pytest.raises(MarketDataUnavailable) as exc_info:
            await analyze("m-1", AnalysisConfig(), market_data=None, producers=_aligned())
        assert exc_info.value.stage == "market_ingestion"
        assert len(exc_info.value.audit_log) == 1

    @pytest.mark.asyncio
    async def test_json_store_can_be_replayed(self, tmp_path):
        store = JsonFileAuditStore(tmp_path)
        await analyze(
            "m-1", AnalysisConfig(), market_data=MARKET, producers=_aligned(),
            store=store, run_id="run-j",
        )
        entries = load_audit_trail(store.path_for("run-j"))
        assert [e.stage for e in entries] == STAGES
        timestamps = [e.timestamp for e in entries]
        assert timestamps == sorted(timestamps)

    @pytest.mark.asyncio
    async def test_cancellation_marks_run_cancelled(self):
        store = InMemoryAuditStore()
        producers = [("fast", _producer(0.6, 0.8)), ("slow", _producer(0.6, 0.8, delay=5.0))]
        task = asyncio.ensure_future(analyze(
            "m-1", AnalysisConfig(per_agent_timeout=30.0), market_data=MARKET,
            producers=producers, store=store, run_id="run-c",
        ))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert store.status("run-c") == "cancelled"
        last = store.entries("run-c")[-1]
        assert last.stage == "agent_orchestration"
        assert last.errors == ("cancelled",)

    @pytest.mark.asyncio
    async def test_dict_config_overrides(self, tmp_path):
        rec = await analyze(
            "m-1", {"min_edge_threshold": 0.2}, market_data=MARKET, producers=_aligned(),
            config_file=str(tmp_path / "absent.yaml"),
        )
        assert rec.action == TradeAction.NO_TRADE

    @pytest.mark.asyncio
    async def test_duplicate_producer_names_rejected(self):
        producers = [("a", _producer(0.6, 0.8)), ("a", _producer(0.6, 0.8))]
        with pytest.raises(InvalidConfiguration):
            await analyze("m-1", AnalysisConfig(), market_data=MARKET, producers=producers)

    @pytest.mark.asyncio
    async def test_progress_callback_receives_events(self):
        events = []
        await analyze(
            "m-1", AnalysisConfig(), market_data=MARKET, producers=_aligned(),
            on_progress=events.append,
        )
        assert {e.stage for e in events if e.type == "stage_end"} == set(STAGES)

    @pytest.mark.asyncio
    async def test_failing_progress_callback_still_completes(self):
        def on_progress(event):
            if event.type == "stage_end" and event.stage == "consensus":
                raise RuntimeError("ui went away")

        store = InMemoryAuditStore()
        rec = await analyze(
            "m-1", AnalysisConfig(), market_data=MARKET, producers=_aligned(),
            store=store, run_id="run-p", on_progress=on_progress,
        )
        assert rec.action == TradeAction.LONG_YES
        assert store.status("run-p") == "completed"

    @pytest.mark.asyncio
    async def test_unexpected_runtime_error_marks_run_failed(self, monkeypatch):
        async def boom(self, *args, **kwargs):
            raise KeyError("lost")

        monkeypatch.setattr("augur.engine.runtime.AnalysisRuntime.run", boom)
        store = InMemoryAuditStore()
        with pytest.raises(AnalysisError) as exc_info:
            await analyze(
                "m-1", AnalysisConfig(), market_data=MARKET, producers=_aligned(),
                store=store, run_id="run-x",
            )
        assert exc_info.value.stage == "analysis"
        assert "KeyError" in exc_info.value.reason
        assert isinstance(exc_info.value.__cause__, KeyError)
        assert store.status("run-x") == "failed"


def _payload(store, run_id, stage):
    return next(e.payload for e in store.entries(run_id) if e.stage == stage)


class TestEndToEndScenarios:
    @pytest.mark.asyncio
    async def test_aligned_signals_fuse_with_high_confidence(self):
        store = InMemoryAuditStore()
        rec = await analyze(
            "m-1", AnalysisConfig(), market_data=MARKET, producers=_aligned(),
            store=store, run_id="run-sa",
        )
        fusion = _payload(store, "run-sa", "signal_fusion")
        consensus = _payload(store, "run-sa", "consensus")
        assert fusion["fair_probability"] == pytest.approx(0.598333, abs=1e-5)
        assert consensus["consensus_probability"] == pytest.approx(0.598333, abs=1e-5)
        assert consensus["disagreement_index"] == pytest.approx(0.01633, abs=1e-4)
        assert consensus["regime"] == "high-confidence"
        assert rec.action == TradeAction.LONG_YES

    @pytest.mark.asyncio
    async def test_one_timeout_still_recommends(self):
        store = InMemoryAuditStore()
        producers = [
            ("polling", _producer(0.60, 0.8)),
            ("sentiment", _producer(0.62, 0.7)),
            ("stalled", _producer(0.58, 0.9, delay=5.0)),
        ]
        rec = await analyze(
            "m-1", AnalysisConfig(per_agent_timeout=0.1, min_agents_required=2),
            market_data=MARKET, producers=producers, store=store, run_id="run-sb",
        )
        assert rec.action == TradeAction.LONG_YES
        orchestration = _payload(store, "run-sb", "agent_orchestration")
        assert orchestration["succeeded"] == 2
        failures = orchestration["failures"]
        assert len(failures) == 1
        assert failures[0]["agent_name"] == "stalled"
        assert failures[0]["kind"] == "TIMEOUT"
        assert store.status("run-sb") == "completed"

    @pytest.mark.asyncio
    async def test_one_failure_below_minimum_is_insufficient(self):
        async def broken(mbd, context):
            raise RuntimeError("feed down")

        producers = [
            ("polling", _producer(0.60, 0.8)),
            ("sentiment", _producer(0.62, 0.7)),
            ("broken", broken),
        ]
        store = InMemoryAuditStore()
        with pytest.raises(InsufficientSignals) as exc_info:
            await analyze(
                "m-1", AnalysisConfig(min_agents_required=3),
                market_data=MARKET, producers=producers, store=store, run_id="run-sc",
            )
        assert exc_info.value.stage == "agent_orchestration"
        assert exc_info.value.details["succeeded"] == 2
        assert exc_info.value.details["failed"] == 1
        assert store.status("run-sc") == "failed"

    @pytest.mark.asyncio
    async def test_split_signals_are_high_uncertainty(self):
        store = InMemoryAuditStore()
        rec = await analyze(
            "m-1", AnalysisConfig(), market_data=MARKET, producers=_split(),
            store=store, run_id="run-sd",
        )
        consensus = _payload(store, "run-sd", "consensus")
        assert consensus["disagreement_index"] == pytest.approx(0.25)
        assert consensus["regime"] == "high-uncertainty"
        assert rec.action == TradeAction.NO_TRADE
