# events.py
# =============================================================================
# 分析进度事件 — 供外部应用实时获取流水线状态。
# / Analysis progress events for external integration.
# =============================================================================

"""Analysis progress events for external integration."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class AnalysisEvent:
    """流水线运行过程中的结构化进度事件。

    外部应用通过注册 on_progress 回调来接收此类事件，
    实现实时进度展示、WebSocket 推送、SSE 流等集成场景。

    Attributes:
        type: 事件类型。
            - "stage_start": 阶段开始
            - "stage_end": 阶段结束
            - "agent_completed": 单个信号生产者成功返回
            - "agent_failed": 单个信号生产者超时或失败
            - "debate_turn": 辩论完成一次状态迁移
            - "error": 发生致命错误
        stage: 当前阶段 ("market_ingestion" | "agent_orchestration" |
            "thesis_construction" | "debate" | "signal_fusion" |
            "consensus" | "recommendation")。
        run_id: 本次分析的唯一标识。
        timestamp: 事件产生时的单调时钟（秒），用于计算耗时。
        progress: 总进度 (0.0 ~ 1.0)，适合直接驱动进度条。
        agent_name: 相关信号生产者名称。
        detail: 事件附加数据，结构因 type 而异。
    """

    type: str
    stage: str
    run_id: str
    timestamp: float = field(default_factory=time.monotonic)
    progress: float = 0.0
    agent_name: Optional[str] = None
    detail: Optional[Dict[str, Any]] = None
