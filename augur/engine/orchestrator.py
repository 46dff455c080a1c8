# orchestrator.py
# =============================================================================
# 信号生产者并发编排器 / Concurrent signal-producer orchestrator
#
# 职责 / Responsibilities:
#   - 并发调用全部信号生产者，每个调用独立超时
#     / Invoke every producer concurrently, each bounded by its own timeout
#   - 失败隔离：单个生产者的超时 / 异常只产生一条 AgentError
#     / Failure isolation: a timeout or exception yields exactly one AgentError
#   - 全部结束后按最小成功数闸门放行或抛出 InsufficientSignals
#     / After all settle, gate on the minimum successful-signal count
# =============================================================================

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from augur.primitives.errors import InsufficientSignals, InvalidConfiguration
from augur.primitives.models import (
    AgentError,
    AgentErrorKind,
    AgentSignal,
    MarketBriefingDocument,
)

logger = logging.getLogger(__name__)

STAGE = "agent_orchestration"

# 生产者完成回调：(agent_name, signal 或 None, error 或 None)
# / Producer completion callback: (agent_name, signal or None, error or None)
AgentDoneCallback = Callable[
    [str, Optional[AgentSignal], Optional[AgentError]],
    Union[Awaitable[None], None],
]


class CallableProducer:
    """把具名函数包装成信号生产者。 / Wrap a named function as a signal producer.

    同步函数在线程中执行，使超时与并发对其同样生效。
    / Sync functions run in a worker thread so timeouts and concurrency apply to them too.
    """

    def __init__(self, name: str, fn: Callable[..., Any]):
        self.name = name
        self._fn = fn

    async def produce(self, mbd: MarketBriefingDocument, context: Dict[str, Any]) -> Any:
        return await _call_maybe_blocking(self._fn, mbd, context)


async def _call_maybe_blocking(fn: Callable[..., Any], *args: Any) -> Any:
    """协程函数直接 await，其余放入线程。 / Await coroutine functions; run anything else in a thread."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


def normalize_producers(producers: Sequence[Any]) -> List[Any]:
    """统一生产者形态并检查名称唯一。 / Normalise producer shapes and check name uniqueness.

    接受带 name + produce() 的对象，或 (name, callable) 二元组。
    / Accepts objects exposing name + produce(), or (name, callable) pairs.

    Raises:
        InvalidConfiguration: 名称缺失、重复或形态不支持。
    """
    normalized: List[Any] = []
    problems: List[str] = []
    seen: set = set()
    for idx, producer in enumerate(producers):
        if isinstance(producer, tuple) and len(producer) == 2 and callable(producer[1]):
            producer = CallableProducer(str(producer[0]), producer[1])
        name = getattr(producer, "name", None)
        if not name or not callable(getattr(producer, "produce", None)):
            problems.append(f"producer #{idx} must expose a name and a produce() method")
            continue
        if name in seen:
            problems.append(f"duplicate producer name: {name}")
            continue
        seen.add(name)
        normalized.append(producer)
    if problems:
        raise InvalidConfiguration(problems)
    return normalized


@dataclass(frozen=True)
class OrchestrationResult:
    """一次扇出 / 扇入的结果。 / Outcome of one fan-out / fan-in."""

    signals: Tuple[AgentSignal, ...]
    errors: Tuple[AgentError, ...]
    durations: Dict[str, float] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return len(self.signals) + len(self.errors)

    def summary(self) -> Dict[str, Any]:
        """供审计条目使用的计数摘要。 / Count summary for the audit entry."""
        return {
            "attempted": self.attempted,
            "succeeded": len(self.signals),
            "failed": len(self.errors),
            "succeeded_agents": [s.agent_name for s in self.signals],
            "failures": [
                {"agent_name": e.agent_name, "kind": e.kind.value, "error": e.error}
                for e in self.errors
            ],
            "durations": {k: round(v, 4) for k, v in self.durations.items()},
        }


class SignalOrchestrator:
    """并发运行信号生产者并收集信号。 / Run signal producers concurrently and collect signals."""

    def __init__(self, on_agent_done: Optional[AgentDoneCallback] = None):
        self._on_agent_done = on_agent_done

    async def run(
        self,
        producers: Sequence[Any],
        mbd: MarketBriefingDocument,
        per_agent_timeout: float,
        min_agents_required: int,
        context: Optional[Dict[str, Any]] = None,
    ) -> OrchestrationResult:
        """扇出全部生产者，全部结束后扇入。 / Fan out to every producer, fan in once all settle.

        信号按生产者顺序返回，与完成顺序无关。
        / Signals come back in producer order, regardless of completion order.

        Raises:
            InvalidConfiguration: 生产者名称重复。
            InsufficientSignals: 成功信号数少于 min_agents_required。
        """
        producers = normalize_producers(producers)
        context = dict(context or {})
        run_id = context.get("run_id", "-")

        logger.info(f"[{run_id}] 启动 {len(producers)} 个信号生产者 (timeout={per_agent_timeout}s)")

        # 调用方取消时 gather 会取消全部子任务 / gather cancels every child when the caller is cancelled
        outcomes = await asyncio.gather(
            *(self._invoke(p, mbd, per_agent_timeout, context) for p in producers),
        )

        signals: List[AgentSignal] = []
        errors: List[AgentError] = []
        durations: Dict[str, float] = {}
        for producer, (signal, error, duration) in zip(producers, outcomes):
            durations[producer.name] = duration
            if signal is not None:
                signals.append(signal)
            else:
                errors.append(error)

        result = OrchestrationResult(
            signals=tuple(signals), errors=tuple(errors), durations=durations,
        )
        logger.info(
            f"[{run_id}] 信号收集完成: 成功 {len(signals)}/{len(producers)}, 失败 {len(errors)}"
        )

        if len(signals) < min_agents_required:
            raise InsufficientSignals(
                stage=STAGE,
                reason=(
                    f"only {len(signals)} of {len(producers)} producers returned a signal, "
                    f"{min_agents_required} required"
                ),
                details=result.summary(),
            )
        return result

    async def _invoke(
        self,
        producer: Any,
        mbd: MarketBriefingDocument,
        timeout: float,
        context: Dict[str, Any],
    ) -> Tuple[Optional[AgentSignal], Optional[AgentError], float]:
        """调用单个生产者，把超时 / 异常转换成 AgentError。

        / Call one producer, turning a timeout or exception into an AgentError.
        """
        name = producer.name
        run_id = context.get("run_id", "-")
        started = time.monotonic()
        signal: Optional[AgentSignal] = None
        error: Optional[AgentError] = None
        try:
            raw = await asyncio.wait_for(
                _call_maybe_blocking(producer.produce, mbd, context), timeout=timeout,
            )
            signal = _coerce_signal(raw, name)
        except asyncio.TimeoutError:
            duration = time.monotonic() - started
            logger.warning(f"[{run_id}] 信号生产者超时: {name} ({timeout}s)")
            error = AgentError(
                agent_name=name,
                kind=AgentErrorKind.TIMEOUT,
                error=f"timed out after {timeout}s",
                error_type="TimeoutError",
                duration_seconds=duration,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            duration = time.monotonic() - started
            logger.warning(f"[{run_id}] 信号生产者失败: {name}: {exc}")
            error = AgentError(
                agent_name=name,
                kind=AgentErrorKind.EXECUTION_FAILED,
                error=str(exc) or type(exc).__name__,
                error_type=type(exc).__name__,
                duration_seconds=duration,
            )

        duration = time.monotonic() - started
        if signal is not None:
            logger.debug(
                f"[{run_id}] {name}: p={signal.fair_probability:.3f} "
                f"c={signal.confidence:.2f} {signal.direction.value} ({duration:.2f}s)"
            )

        if self._on_agent_done is not None:
            try:
                result = self._on_agent_done(name, signal, error)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # 回调失败不影响其他生产者 / a failing callback must not strand sibling producers
                logger.warning(f"[{run_id}] on_agent_done 回调失败 ({name}): {exc}")
        return signal, error, duration


def _coerce_signal(raw: Any, producer_name: str) -> AgentSignal:
    """接受 AgentSignal 或字典；名称以生产者为准。 / Accept an AgentSignal or dict; the producer name wins."""
    if isinstance(raw, AgentSignal):
        if raw.agent_name != producer_name:
            logger.debug(f"信号名称 {raw.agent_name} 与生产者 {producer_name} 不一致，已重新标注")
            # replace() 会重新执行校验 / replace() re-runs validation
            return replace(raw, agent_name=producer_name)
        return raw
    if isinstance(raw, dict):
        return AgentSignal.from_dict(raw, agent_name=producer_name)
    raise TypeError(f"producer returned {type(raw).__name__}, expected AgentSignal")
