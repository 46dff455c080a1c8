"""Tests for analyze_many()."""

import asyncio

import pytest

from augur import analyze_many
from augur.config import AnalysisConfig
from augur.engine.recorder import InMemoryAuditStore
from augur.primitives.errors import MarketDataUnavailable
from augur.primitives.models import MarketBriefingDocument, TradeAction


def _briefing(market_id):
    if market_id == "missing":
        return None
    return MarketBriefingDocument(
        market_id=market_id, condition_id="c", event_type="economic",
        question=f"{market_id}?", resolution_criteria="r",
        expiry_timestamp=1_900_000_000, current_probability=0.5,
        liquidity_score=8.0, bid_ask_spread=1.0,
    )


def _producer(p):
    async def produce(mbd, context):
        return {"fair_probability": p, "confidence": 0.8, "direction": "YES", "key_drivers": ["d"]}
    return produce


PRODUCERS = [("a", _producer(0.7)), ("b", _producer(0.7))]


class TestAnalyzeMany:
    @pytest.mark.asyncio
    async def test_failures_are_isolated(self):
        store = InMemoryAuditStore()
        results = await analyze_many(
            ["m-1", "missing", "m-2"], AnalysisConfig(),
            market_data=_briefing, producers=PRODUCERS, store=store,
        )
        assert list(results) == ["m-1", "missing", "m-2"]
        assert results["m-1"].action == TradeAction.LONG_YES
        assert isinstance(results["missing"], MarketDataUnavailable)
        assert len(store.run_ids) == 3

    @pytest.mark.asyncio
    async def test_duplicate_ids_run_once(self):
        results = await analyze_many(
            ["m-1", "m-1"], AnalysisConfig(), market_data=_briefing, producers=PRODUCERS,
        )
        assert list(results) == ["m-1"]

    @pytest.mark.asyncio
    async def test_concurrency_limit(self):
        active = 0
        peak = 0

        async def produce(mbd, context):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return {"fair_probability": 0.7, "confidence": 0.8, "direction": "YES", "key_drivers": ["d"]}

        await analyze_many(
            [f"m-{i}" for i in range(5)], AnalysisConfig(min_agents_required=1),
            max_concurrency=2, market_data=_briefing, producers=[("only", produce)],
        )
        assert peak <= 2

    @pytest.mark.asyncio
    async def test_rejects_run_id(self):
        with pytest.raises(ValueError):
            await analyze_many(["m-1"], AnalysisConfig(), run_id="x", market_data=_briefing, producers=PRODUCERS)

    @pytest.mark.asyncio
    async def test_rejects_bad_concurrency(self):
        with pytest.raises(ValueError):
            await analyze_many(["m-1"], AnalysisConfig(), max_concurrency=0, market_data=_briefing, producers=PRODUCERS)
