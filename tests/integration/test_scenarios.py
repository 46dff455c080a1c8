# test_scenarios.py
# =============================================================================
# 端到端场景测试 / End-to-end scenario tests
# LLM 生产者 + 质询者经 httpx MockTransport 驱动，配置来自 YAML 文件，
# 审计写入 JSON 文件。
# / LLM producers and critic driven through httpx MockTransport, config
#   loaded from a YAML file, audit written to JSON files.
# =============================================================================

import json

import httpx
import pytest

from augur import analyze
from augur.agents import LLMCritiqueAgent, LLMSignalAgent
from augur.engine.recorder import JsonFileAuditStore, load_audit_file
from augur.llm import CallBudget, ChatCompletionsAdapter, make_llm_caller
from augur.primitives.models import ProbabilityRegime, TradeAction

MARKET = {
    "marketId": "fed-cut-dec",
    "conditionId": "0xabc",
    "eventType": "economic",
    "question": "Will the Fed cut rates in December?",
    "resolutionCriteria": "FOMC statement",
    "expiryTimestamp": 1_900_000_000,
    "currentProbability": 0.40,
    "liquidityScore": 6.5,
    "bidAskSpread": 2.0,
    "metadata": {
        "ambiguityFlags": ["emergency cuts"],
        "keyCatalysts": [{"event": "CPI release", "timestamp": 1_890_000_000}],
    },
}

SIGNALS = {
    "macro": {"fair_probability": 0.55, "confidence": 0.8, "direction": "YES", "key_drivers": ["cooling CPI"]},
    "futures": {"fair_probability": 0.52, "confidence": 0.9, "direction": "YES", "key_drivers": ["FedWatch"]},
    "hawk": {"fair_probability": 0.35, "confidence": 0.5, "direction": "NO", "key_drivers": ["sticky wages"]},
}


def _handler(calls):
    def handler(request):
        body = json.loads(request.content)
        system = body["messages"][0]["content"]
        user = body["messages"][-1]["content"]
        calls.append(system)
        if system.startswith("You refine"):
            side = "bull" if "Your thesis (bull)" in user else "bear"
            reply = {"fair_probability": 0.5 if side == "bull" else 0.42, "core_argument": f"{side} revised"}
        else:
            name = system.split(",")[0].replace("You are ", "")
            reply = SIGNALS[name]
        return httpx.Response(200, json={"choices": [{"message": {"content": json.dumps(reply)}}]})
    return handler


@pytest.fixture
def llm_stack():
    calls = []
    client = httpx.AsyncClient(transport=httpx.MockTransport(_handler(calls)))
    adapter = ChatCompletionsAdapter(
        url="https://llm.example.com/v1", api_key="sk-test", model="test-model",
        backoff_base=0, client=client,
    )
    budget = CallBudget(max_calls=20)
    caller = make_llm_caller(adapter, budget=budget)
    producers = [LLMSignalAgent(name, f"{name} desk", caller) for name in SIGNALS]
    critic = LLMCritiqueAgent(caller)
    return producers, critic, calls, budget


@pytest.mark.asyncio
async def test_llm_pipeline_end_to_end(tmp_path, llm_stack):
    producers, critic, calls, budget = llm_stack
    config_file = tmp_path / "augur.yaml"
    config_file.write_text(
        "min_agents_required: 3\n"
        "fusion_weights:\n"
        "  futures: 1.5\n"
        "debate_rounds: 1\n",
        encoding="utf-8",
    )
    store = JsonFileAuditStore(tmp_path / "audit")

    rec = await analyze(
        "fed-cut-dec",
        market_data=MARKET,
        producers=producers,
        critic=critic,
        store=store,
        run_id="e2e",
        config_file=str(config_file),
    )

    # 3 signal calls + 3 debate phases
    assert len(calls) == 6
    assert budget.used == 6

    assert rec.market_id == "fed-cut-dec"
    assert rec.action == TradeAction.LONG_YES
    assert rec.metadata.edge > 0.05
    assert "CPI release" in rec.explanation.key_catalysts
    assert "Resolution ambiguity: emergency cuts" in rec.explanation.failure_scenarios

    data = load_audit_file(store.path_for("e2e"))
    assert data["meta"]["status"] == "completed"
    stages = [e["stage"] for e in data["entries"]]
    assert stages[0] == "market_ingestion"
    assert stages[-1] == "recommendation"
    debate = data["entries"][stages.index("debate")]
    assert debate["payload"]["rounds_completed"] == 1
    assert "sk-test" not in json.dumps(data)


@pytest.mark.asyncio
async def test_debate_disabled_uses_fused_consensus(tmp_path, llm_stack):
    producers, critic, _, _ = llm_stack
    store = JsonFileAuditStore(tmp_path)
    rec = await analyze(
        "fed-cut-dec",
        {"debate_rounds": 0},
        market_data=MARKET,
        producers=producers,
        critic=critic,
        store=store,
        run_id="mod",
        config_file=str(tmp_path / "absent.yaml"),
    )
    consensus_entry = next(
        e for e in load_audit_file(store.path_for("mod"))["entries"] if e["stage"] == "consensus"
    )
    assert consensus_entry["payload"]["regime"] == ProbabilityRegime.HIGH_CONFIDENCE.value
    assert consensus_entry["payload"]["debate_probability"] is None
    assert rec.explanation.uncertainty_note is None
