# augur/api/batch.py
"""批量分析 — 多个市场的独立并发运行。 / Batch analysis: independent concurrent runs over several markets."""

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence, Union

from augur.api.analyze import analyze, resolve_config
from augur.config import AnalysisConfig
from augur.primitives.errors import AnalysisError
from augur.primitives.models import TradeRecommendation

logger = logging.getLogger(__name__)

BatchResult = Dict[str, Union[TradeRecommendation, AnalysisError]]


async def analyze_many(
    market_ids: Sequence[str],
    config: Union[AnalysisConfig, Dict[str, Any], None] = None,
    *,
    max_concurrency: int = 4,
    config_file: Optional[str] = None,
    **analyze_kwargs: Any,
) -> BatchResult:
    """并发分析多个市场，单个市场失败不影响其他市场。

    / Analyse several markets concurrently; one market failing never affects the others.

    各次运行只共享只读配置，每个市场都有独立的 run_id 与审计轨迹。
    / Runs share only the read-only config; each market gets its own run_id and audit trail.

    Returns:
        market_id → TradeRecommendation 或 AnalysisError。
    """
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
    if "run_id" in analyze_kwargs:
        raise ValueError("analyze_many assigns a run_id per market; do not pass run_id")
    resolved = resolve_config(config, config_file)
    semaphore = asyncio.Semaphore(max_concurrency)

    async def _one(market_id: str) -> Union[TradeRecommendation, AnalysisError]:
        async with semaphore:
            try:
                return await analyze(market_id, resolved, **analyze_kwargs)
            except AnalysisError as exc:
                logger.warning("Batch: market %s failed at %s: %s", market_id, exc.stage, exc.reason)
                return exc

    unique_ids = list(dict.fromkeys(market_ids))
    outcomes = await asyncio.gather(*(_one(mid) for mid in unique_ids))
    results: BatchResult = dict(zip(unique_ids, outcomes))

    failed = sum(1 for r in outcomes if isinstance(r, AnalysisError))
    if failed:
        logger.warning("Batch: %d of %d markets failed", failed, len(unique_ids))
    return results
