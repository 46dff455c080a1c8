#!/usr/bin/env python3
"""E2E: 用 LLM 信号生产者分析单个预测市场。 / E2E: analyse one prediction market with LLM producers.

需要 llm_config.yaml（或 --llm-config）为 "signal" 与 "critic" 两个角色
配置 OpenAI 兼容端点。市场简报从 JSON 文件读取。
/ Needs llm_config.yaml (or --llm-config) with OpenAI-compatible endpoints
  for the "signal" and "critic" roles. The briefing is read from a JSON file.

用法 / Usage:
    python examples/e2e_prediction_market.py --market-file market.json
    python examples/e2e_prediction_market.py --market-file market.json --no-debate
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict

from augur import analyze
from augur.agents import LLMCritiqueAgent, LLMSignalAgent
from augur.engine.recorder import JsonFileAuditStore
from augur.llm import CallBudget, callers_from_config
from augur.primitives.errors import AnalysisError
from augur.primitives.events import AnalysisEvent

logger = logging.getLogger(__name__)

# 生产者名称 → 分析视角 / producer name → analysis perspective
PERSPECTIVES = {
    "base_rate": "Historical base rates for this class of event; ignore news flow.",
    "news_flow": "Recent reporting and announcements that move the odds.",
    "market_microstructure": "Order flow, liquidity and how prices have reacted so far.",
    "contrarian": "Where the crowd is most likely to be wrong about this market.",
}

_STAGE_CN = {
    "market_ingestion": "市场简报",
    "agent_orchestration": "信号采集",
    "thesis_construction": "论点构建",
    "debate": "多空辩论",
    "signal_fusion": "信号融合",
    "consensus": "共识计算",
    "recommendation": "交易建议",
}

_BAR_WIDTH = 30


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


def _progress_bar(progress: float) -> str:
    filled = int(_BAR_WIDTH * progress)
    return f"[{'█' * filled}{'░' * (_BAR_WIDTH - filled)}] {progress:>5.1%}"


def print_progress(event: AnalysisEvent) -> None:
    """终端进度回调（同步）。 / Terminal progress callback (sync)."""
    bar = _progress_bar(event.progress)
    stage_cn = _STAGE_CN.get(event.stage, event.stage)
    detail = event.detail or {}

    if event.type == "stage_start":
        print(f"  {bar}  ▶ {stage_cn} 开始")
    elif event.type == "stage_end":
        print(f"  {bar}  ✓ {stage_cn} 完成")
    elif event.type == "agent_completed":
        print(f"  {bar}    ← {event.agent_name}: p={detail.get('fair_probability', '?')}")
    elif event.type == "agent_failed":
        print(f"  {bar}    ✗ {event.agent_name}: {detail.get('kind', '?')} {detail.get('error', '')}")
    elif event.type == "debate_turn":
        print(
            f"  {bar}    ⇄ 第{detail.get('round')}轮 {detail.get('phase')}: "
            f"{detail.get('probability_before', 0):.3f} → {detail.get('probability_after', 0):.3f}"
        )
    elif event.type == "error":
        print(f"  {bar}  ✗ {stage_cn} 失败: {detail.get('reason', '')}")


def load_market(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def print_recommendation(rec: Any) -> None:
    print()
    print("=" * 60)
    print(f"  市场: {rec.market_id}")
    print(f"  建议: {rec.action.value}")
    print(
        f"  共识 {rec.metadata.consensus_probability:.1%} vs 市场 "
        f"{rec.metadata.market_probability:.1%} (edge {rec.metadata.edge:+.1%})"
    )
    print(f"  置信区间: [{rec.metadata.confidence_band[0]:.1%}, {rec.metadata.confidence_band[1]:.1%}]")
    print(f"  入场区间: [{rec.entry_zone[0]:.3f}, {rec.entry_zone[1]:.3f}]")
    print(f"  目标区间: [{rec.target_zone[0]:.3f}, {rec.target_zone[1]:.3f}]")
    print(f"  期望收益: {rec.expected_value:+.2f} 美分/份   流动性风险: {rec.liquidity_risk.value}")
    print()
    print(f"  {rec.explanation.summary}")
    print(f"  {rec.explanation.core_thesis}")
    for catalyst in rec.explanation.key_catalysts:
        print(f"    + {catalyst}")
    for scenario in rec.explanation.failure_scenarios:
        print(f"    - {scenario}")
    if rec.explanation.uncertainty_note:
        print(f"  ⚠ {rec.explanation.uncertainty_note}")
    print("=" * 60)


async def main() -> None:
    parser = argparse.ArgumentParser(description="augur 单市场端到端分析 / single-market E2E analysis")
    parser.add_argument("--market-file", required=True, help="市场简报 JSON 文件")
    parser.add_argument("--llm-config", default=None, help="LLM 配置文件（默认自动搜索 llm_config.yaml）")
    parser.add_argument("--config-file", default=None, help="分析配置文件（默认自动搜索 augur.yaml）")
    parser.add_argument("--audit-dir", default="audit_logs", help="审计 JSON 输出目录")
    parser.add_argument("--max-calls", type=int, default=40, help="单次分析 LLM 调用上限")
    parser.add_argument("--no-debate", action="store_true", help="跳过多空辩论")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    market = load_market(args.market_file)
    market_id = str(market.get("market_id") or market.get("marketId") or Path(args.market_file).stem)

    roles = ["signal"] if args.no_debate else ["signal", "critic"]
    callers = callers_from_config(
        roles, config_file=args.llm_config, budget=CallBudget(max_calls=args.max_calls),
    )
    producers = [
        LLMSignalAgent(name, perspective, callers["signal"])
        for name, perspective in PERSPECTIVES.items()
    ]
    critic = None if args.no_debate else LLMCritiqueAgent(callers["critic"])
    store = JsonFileAuditStore(args.audit_dir)

    print(f"\n  分析市场 {market_id}: {market.get('question', '')}\n")
    try:
        rec = await analyze(
            market_id,
            market_data=market,
            producers=producers,
            critic=critic,
            store=store,
            on_progress=print_progress,
            config_file=args.config_file,
        )
    except AnalysisError as exc:
        logger.error(f"分析失败 ({exc.code}) 阶段 {exc.stage}: {exc.reason}")
        raise SystemExit(1) from exc

    print_recommendation(rec)
    print(f"\n  审计记录目录: {Path(args.audit_dir).resolve()}")


if __name__ == "__main__":
    asyncio.run(main())
