"""augur 分析运行时。 / augur analysis runtime.

职责 / Responsibilities:
1. 编排（Orchestration）—— 按阶段顺序执行流水线 / Run the pipeline stages in order
2. 状态管理（State Management）—— 显式传递 AnalysisState，阶段只返回增量
   / Thread an explicit AnalysisState; stages return deltas only
3. 审计（Audit）—— 每个阶段恰好一条审计条目，失败与取消也不例外
   / Exactly one audit entry per stage, including failure and cancellation

不负责：生产者推理、市场数据采集、运行状态收尾（由 api 层负责）。
/ Not responsible for: producer reasoning, market data fetching, run finalisation (api layer).
"""

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from augur.config import AnalysisConfig
from augur.engine.consensus import compute_consensus
from augur.engine.debate import DebateEngine
from augur.engine.fusion import fuse_signals
from augur.engine.orchestrator import SignalOrchestrator, normalize_producers
from augur.engine.recommendation import generate_recommendation
from augur.engine.recorder import AuditTrailRecorder
from augur.engine.thesis import ThesisBuilder
from augur.primitives.errors import (
    AnalysisError,
    ConsensusUnavailable,
    MarketDataUnavailable,
)
from augur.primitives.events import AnalysisEvent
from augur.primitives.models import (
    STATE_DELTA_FIELDS,
    AgentError,
    AgentSignal,
    AnalysisState,
    DebateTurn,
    MarketBriefingDocument,
)

logger = logging.getLogger(__name__)

# 类型别名：支持同步和异步回调 / Type alias: supports sync and async callbacks
ProgressCallback = Union[
    Callable[[AnalysisEvent], Awaitable[None]],
    Callable[[AnalysisEvent], None],
]

# 阶段返回 (增量, 审计负载) / A stage returns (delta, audit payload)
StageResult = Tuple[Dict[str, Any], Dict[str, Any]]

STAGES = (
    "market_ingestion",
    "agent_orchestration",
    "thesis_construction",
    "debate",
    "signal_fusion",
    "consensus",
    "recommendation",
)


def merge_state(state: AnalysisState, delta: Dict[str, Any]) -> AnalysisState:
    """把阶段增量合并进状态，返回新状态；输入状态不变。

    / Merge a stage delta into the state and return a new state; the input is untouched.

    Raises:
        ValueError: 增量包含未知或不可写的键。 / The delta names an unknown or read-only key.
    """
    unknown = sorted(set(delta) - STATE_DELTA_FIELDS)
    if unknown:
        raise ValueError(f"unknown state keys in delta: {', '.join(unknown)}")
    values = dict(delta)
    for key in ("signals", "agent_errors"):
        if key in values:
            values[key] = tuple(values[key])
    return replace(state, **values)


class AnalysisRuntime:
    """单次市场分析的运行时编排器。 / Runtime orchestrator for one market analysis."""

    # 各阶段在总进度中的权重 / Stage weights in total progress (sum = 1.0)
    _STAGE_WEIGHTS = {
        "market_ingestion": 0.05,
        "agent_orchestration": 0.45,
        "thesis_construction": 0.05,
        "debate": 0.25,
        "signal_fusion": 0.05,
        "consensus": 0.05,
        "recommendation": 0.10,
    }

    def __init__(
        self,
        producers: Sequence[Any],
        config: Optional[AnalysisConfig] = None,
        critic: Optional[Any] = None,
        recorder: Optional[AuditTrailRecorder] = None,
        on_progress: Optional[ProgressCallback] = None,
        run_id: Optional[str] = None,
    ):
        self.config = (config or AnalysisConfig()).validate()
        # 启动时即检查生产者名称 / producer names are checked at startup
        self.producers = normalize_producers(producers)
        self.critic = critic
        self.run_id = run_id or (recorder.run_id if recorder else str(uuid.uuid4())[:8])
        self.recorder = recorder or AuditTrailRecorder(run_id=self.run_id)
        self._on_progress = on_progress

        self._stage_offsets: Dict[str, float] = {}
        offset = 0.0
        for stage in STAGES:
            self._stage_offsets[stage] = offset
            offset += self._STAGE_WEIGHTS[stage]

    async def _emit(self, event: AnalysisEvent) -> None:
        """触发进度回调（支持同步和异步回调）。 / Emit progress callback (sync and async).

        回调异常只记录日志，不影响分析结果。 / Callback errors are logged and never change the outcome.
        """
        if self._on_progress is None:
            return
        try:
            result = self._on_progress(event)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(f"[{self.run_id}] 进度回调失败 ({event.type}/{event.stage}): {exc}")

    def _progress(self, stage: str, fraction: float = 0.0) -> float:
        base = self._stage_offsets.get(stage, 0.0)
        weight = self._STAGE_WEIGHTS.get(stage, 0.0)
        return min(1.0, base + weight * fraction)

    # ------------------------------------------------------------------
    # 入口 / Entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        mbd: Optional[MarketBriefingDocument] = None,
        *,
        market_id: Optional[str] = None,
        market_data: Any = None,
    ) -> AnalysisState:
        """执行完整流水线，返回最终状态。 / Run the full pipeline and return the final state.

        传入 mbd 时跳过 market_ingestion；否则通过 market_data 获取简报。
        / With an mbd the market_ingestion stage is skipped; otherwise the
          briefing is fetched through market_data.

        Raises:
            AnalysisError: 任一致命阶段失败，附带部分审计日志。
                / Any fatal stage failure, carrying the partial audit log.
        """
        state = AnalysisState(
            run_id=self.run_id,
            market_id=mbd.market_id if mbd is not None else str(market_id or ""),
            mbd=mbd,
        )
        logger.info(f"[{self.run_id}] 开始分析: market={state.market_id}")

        chain: List[Tuple[str, Callable[[AnalysisState], Awaitable[StageResult]]]] = []
        if mbd is None:
            chain.append(("market_ingestion", lambda s: self._ingest(s, market_data)))
        chain.extend([
            ("agent_orchestration", self._orchestrate),
            ("thesis_construction", self._build_theses),
            ("debate", self._debate),
            ("signal_fusion", self._fuse),
            ("consensus", self._consensus),
            ("recommendation", self._recommend),
        ])

        for stage, fn in chain:
            state = await self._run_stage(stage, fn, state)

        logger.info(
            f"[{self.run_id}] 分析完成: {state.recommendation.action.value} "
            f"({len(self.recorder.entries)} 个审计条目)"
        )
        return state

    async def _run_stage(
        self,
        stage: str,
        fn: Callable[[AnalysisState], Awaitable[StageResult]],
        state: AnalysisState,
    ) -> AnalysisState:
        """执行单个阶段并写入恰好一条审计条目。 / Run one stage and write exactly one audit entry."""
        await self._emit(AnalysisEvent(
            type="stage_start", stage=stage, run_id=self.run_id,
            progress=self._progress(stage, 0.0),
        ))
        started = time.monotonic()
        try:
            delta, payload = await fn(state)
            new_state = merge_state(state, delta)
        except asyncio.CancelledError:
            self.recorder.record(
                stage, success=False, errors=["cancelled"],
                duration=time.monotonic() - started,
            )
            logger.warning(f"[{self.run_id}] 阶段 {stage} 被取消")
            raise
        except AnalysisError as exc:
            self.recorder.record(
                stage, success=False, payload=exc.details, errors=[exc.reason],
                duration=time.monotonic() - started,
            )
            logger.error(f"[{self.run_id}] 阶段 {stage} 失败: {exc.reason}")
            await self._emit_error(stage, exc)
            raise exc.with_audit_log(self.recorder.entries)
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            self.recorder.record(
                stage, success=False, errors=[reason],
                duration=time.monotonic() - started,
            )
            logger.error(f"[{self.run_id}] 阶段 {stage} 异常: {reason}")
            wrapped = AnalysisError(stage=stage, reason=reason, audit_log=self.recorder.entries)
            await self._emit_error(stage, wrapped)
            raise wrapped from exc

        errors = payload.pop("errors", ())
        self.recorder.record(
            stage, success=True, payload=payload, errors=errors,
            duration=time.monotonic() - started,
        )
        await self._emit(AnalysisEvent(
            type="stage_end", stage=stage, run_id=self.run_id,
            progress=self._progress(stage, 1.0),
            detail=payload,
        ))
        return new_state

    async def _emit_error(self, stage: str, exc: AnalysisError) -> None:
        await self._emit(AnalysisEvent(
            type="error", stage=stage, run_id=self.run_id,
            progress=self._progress(stage, 1.0),
            detail=exc.to_dict(),
        ))

    # ------------------------------------------------------------------
    # 阶段实现 / Stage implementations
    # ------------------------------------------------------------------

    async def _ingest(self, state: AnalysisState, market_data: Any) -> StageResult:
        mbd = await fetch_briefing(state.market_id, market_data)
        return {"mbd": mbd}, {
            "market_id": mbd.market_id,
            "current_probability": mbd.current_probability,
            "liquidity_score": mbd.liquidity_score,
            "bid_ask_spread": mbd.bid_ask_spread,
            "event_type": mbd.event_type,
        }

    async def _orchestrate(self, state: AnalysisState) -> StageResult:
        async def on_agent_done(
            name: str, signal: Optional[AgentSignal], error: Optional[AgentError],
        ) -> None:
            await self._emit(AnalysisEvent(
                type="agent_completed" if signal is not None else "agent_failed",
                stage="agent_orchestration",
                run_id=self.run_id,
                progress=self._progress("agent_orchestration", 0.5),
                agent_name=name,
                detail=(
                    {"fair_probability": signal.fair_probability, "confidence": signal.confidence}
                    if signal is not None
                    else {"kind": error.kind.value, "error": error.error}
                ),
            ))

        orchestrator = SignalOrchestrator(on_agent_done=on_agent_done)
        result = await orchestrator.run(
            self.producers,
            state.mbd,
            per_agent_timeout=self.config.per_agent_timeout,
            min_agents_required=self.config.min_agents_required,
            context={"run_id": self.run_id, "market_id": state.market_id},
        )
        return {"signals": result.signals, "agent_errors": result.errors}, result.summary()

    async def _build_theses(self, state: AnalysisState) -> StageResult:
        bull, bear = ThesisBuilder().build(state.signals, state.mbd)
        return {"bull_thesis": bull, "bear_thesis": bear}, {
            "bull": {
                "fair_probability": bull.fair_probability,
                "confidence": bull.confidence,
                "edge": bull.edge,
                "strategy": bull.strategy,
                "supporting_signals": bull.supporting_signals,
            },
            "bear": {
                "fair_probability": bear.fair_probability,
                "confidence": bear.confidence,
                "edge": bear.edge,
                "strategy": bear.strategy,
                "supporting_signals": bear.supporting_signals,
            },
        }

    async def _debate(self, state: AnalysisState) -> StageResult:
        async def on_turn(turn: DebateTurn) -> None:
            await self._emit(AnalysisEvent(
                type="debate_turn", stage="debate", run_id=self.run_id,
                progress=self._progress("debate", 0.5),
                detail={
                    "round": turn.round_number,
                    "phase": turn.phase.value,
                    "probability_before": turn.probability_before,
                    "probability_after": turn.probability_after,
                },
            ))

        engine = DebateEngine(
            critic=self.critic,
            rounds=self.config.debate_rounds,
            round_timeout=self.config.debate_round_timeout,
            on_turn=on_turn,
        )
        record = await engine.run(state.bull_thesis, state.bear_thesis)
        payload: Dict[str, Any] = {
            "skipped": record.skipped,
            "degraded": record.degraded,
            "rounds_completed": record.rounds_completed,
            "turns": [
                {
                    "round": t.round_number,
                    "phase": t.phase.value,
                    "speaker": t.speaker.value,
                    "probability_before": t.probability_before,
                    "probability_after": t.probability_after,
                }
                for t in record.turns
            ],
            "refined_bull": record.refined_bull.fair_probability,
            "refined_bear": record.refined_bear.fair_probability,
        }
        if record.degradation_reason:
            payload["errors"] = [record.degradation_reason]
        return {"debate": record}, payload

    async def _fuse(self, state: AnalysisState) -> StageResult:
        try:
            fused = fuse_signals(
                state.signals,
                weights_by_agent=self.config.fusion_weights,
                conflict_threshold=self.config.conflict_threshold,
                alignment_bonus=self.config.alignment_bonus,
            )
        except Exception as exc:
            raise ConsensusUnavailable(
                stage="signal_fusion",
                reason=f"fusion failed: {type(exc).__name__}: {exc}",
            ) from exc
        return {"fused": fused}, {
            "fair_probability": fused.fair_probability,
            "confidence": fused.confidence,
            "direction": fused.direction,
            "alignment": fused.alignment,
            "contributing_agents": fused.contributing_agents,
            "conflicts": fused.conflicts,
            "weights": fused.weights,
        }

    async def _consensus(self, state: AnalysisState) -> StageResult:
        consensus = compute_consensus(
            state.fused,
            state.debate,
            state.signals,
            blend_weight=self.config.debate_blend_weight,
            band_multiplier=self.config.band_multiplier,
            high_confidence_threshold=self.config.high_confidence_threshold,
            high_disagreement_threshold=self.config.high_disagreement_threshold,
        )
        return {"consensus": consensus}, {
            "consensus_probability": consensus.consensus_probability,
            "confidence_band": consensus.confidence_band,
            "disagreement_index": consensus.disagreement_index,
            "regime": consensus.regime,
            "fused_probability": consensus.fused_probability,
            "debate_probability": consensus.debate_probability,
        }

    async def _recommend(self, state: AnalysisState) -> StageResult:
        if state.consensus is None:
            raise ConsensusUnavailable(stage="recommendation", reason="no consensus available")
        bull = state.debate.refined_bull if state.debate else state.bull_thesis
        bear = state.debate.refined_bear if state.debate else state.bear_thesis
        rec = generate_recommendation(state.consensus, state.mbd, self.config, bull=bull, bear=bear)
        return {"recommendation": rec}, {
            "action": rec.action,
            "edge": rec.metadata.edge,
            "expected_value": rec.expected_value,
            "win_probability": rec.win_probability,
            "entry_zone": rec.entry_zone,
            "target_zone": rec.target_zone,
            "liquidity_risk": rec.liquidity_risk,
        }


async def fetch_briefing(market_id: str, market_data: Any) -> MarketBriefingDocument:
    """通过市场数据提供者获取简报。 / Fetch the briefing through a market data provider.

    market_data 可以是带 get_briefing() 的提供者、可调用对象、现成的 MBD 或字典。
    / market_data may be a provider exposing get_briefing(), a callable, a ready MBD or a dict.

    Raises:
        MarketDataUnavailable: 无提供者、提供者失败或返回无效数据。
    """
    if market_data is None:
        raise MarketDataUnavailable(stage="market_ingestion", reason="no market data provider configured")
    try:
        if isinstance(market_data, (MarketBriefingDocument, dict)):
            raw = market_data
        elif callable(getattr(market_data, "get_briefing", None)):
            raw = market_data.get_briefing(market_id)
        elif callable(market_data):
            raw = market_data(market_id)
        else:
            raise TypeError(f"unsupported market data provider: {type(market_data).__name__}")
        if inspect.isawaitable(raw):
            raw = await raw
        if isinstance(raw, dict):
            raw = MarketBriefingDocument.from_dict(raw)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        raise MarketDataUnavailable(
            stage="market_ingestion", reason=f"{type(exc).__name__}: {exc}",
        ) from exc
    if not isinstance(raw, MarketBriefingDocument):
        raise MarketDataUnavailable(stage="market_ingestion", reason=f"no briefing for market {market_id}")
    return raw
