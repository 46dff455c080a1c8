# analyze.py
# =============================================================================
# 公共 API — augur 分析入口。
#
# 提供 analyze() 一键分析函数，内部使用 AnalysisRuntime 编排。
# 审计轨迹可选地写入 AuditStore（内存或 JSON 文件）。
# =============================================================================

"""公共 API — augur 分析入口。"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Sequence, Union

from augur.config import AnalysisConfig, AnalysisConfigLoader
from augur.engine.recorder import AuditStore, AuditTrailRecorder
from augur.engine.runtime import AnalysisRuntime, ProgressCallback
from augur.primitives.errors import AnalysisError
from augur.primitives.models import TradeRecommendation

logger = logging.getLogger(__name__)


def resolve_config(
    config: Union[AnalysisConfig, Dict[str, Any], None] = None,
    config_file: Optional[str] = None,
) -> AnalysisConfig:
    """把 AnalysisConfig / 字典 / None 统一为已校验的配置。

    字典与 None 走三层加载（代码 > 配置文件 > 环境变量）。
    """
    if isinstance(config, AnalysisConfig):
        return config.validate()
    return AnalysisConfigLoader(config=config, config_file=config_file).load()


async def analyze(
    market_id: str,
    config: Union[AnalysisConfig, Dict[str, Any], None] = None,
    *,
    market_data: Any,
    producers: Sequence[Any],
    critic: Optional[Any] = None,
    store: Optional[AuditStore] = None,
    run_id: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
    config_file: Optional[str] = None,
) -> TradeRecommendation:
    """一键分析单个市场。

    参数：
        market_id: 市场标识
        config: AnalysisConfig 实例，或覆盖项字典（最高优先级）
        market_data: 市场数据提供者（get_briefing(market_id)）、可调用对象、
            现成的 MarketBriefingDocument 或字典
        producers: 信号生产者列表（name + produce(mbd, context)，
            或 (name, async_fn) 二元组）
        critic: 辩论质询者（critique(thesis, opposing)），不传则跳过辩论
        store: 审计存储（可选），如 JsonFileAuditStore
        run_id: 外部指定 run_id，不传则自动生成
        on_progress: 进度回调函数（可选）。支持同步和异步函数。
        config_file: 分析配置文件路径（可选，不传则自动搜索 augur.yaml）

    返回：
        TradeRecommendation。

    异常：
        InvalidConfiguration: 配置或生产者名称非法（启动时）。
        AnalysisError: 任一致命阶段失败；携带 stage、reason 与部分审计日志。
    """
    resolved = resolve_config(config, config_file)
    run_id = run_id or str(uuid.uuid4())[:8]
    recorder = AuditTrailRecorder(run_id=run_id, store=store)
    runtime = AnalysisRuntime(
        producers=producers,
        config=resolved,
        critic=critic,
        recorder=recorder,
        on_progress=on_progress,
        run_id=run_id,
    )

    try:
        state = await runtime.run(market_id=market_id, market_data=market_data)
    except asyncio.CancelledError:
        # 已有的审计条目仍保留，运行标记为取消
        recorder.finalize(status="cancelled")
        logger.warning(f"分析被取消: run_id={run_id}, market={market_id}")
        raise
    except AnalysisError as exc:
        recorder.mark_failed(str(exc))
        logger.error(f"分析失败: run_id={run_id}, stage={exc.stage}, reason={exc.reason}")
        raise
    except Exception as exc:
        # 阶段之外的意外异常同样以 AnalysisError 交给调用方
        wrapped = AnalysisError(
            stage="analysis",
            reason=f"{type(exc).__name__}: {exc}",
            audit_log=recorder.entries,
        )
        recorder.mark_failed(str(wrapped))
        logger.error(f"分析异常: run_id={run_id}, reason={wrapped.reason}")
        raise wrapped from exc

    recorder.finalize()
    logger.info(f"分析完成: run_id={run_id}, market={market_id}, action={state.recommendation.action.value}")
    return state.recommendation
