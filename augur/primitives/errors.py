# errors.py
# =============================================================================
# 共识流水线错误定义。 / Error definitions for the consensus pipeline.
#
# 致命错误统一继承 AnalysisError，携带失败阶段、原因与（可能不完整的）审计日志。
# / Fatal errors derive from AnalysisError and carry the failing stage, the
#   reason and the (possibly partial) audit log.
# 单个生产者的失败不是异常，而是 AgentError 记录（见 models.py）。
# / A single producer failure is not an exception but an AgentError record.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


# -----------------------------------------------------------------------------
# 错误码 / Error codes
# -----------------------------------------------------------------------------
INSUFFICIENT_SIGNALS = "INSUFFICIENT_SIGNALS"
CONSENSUS_UNAVAILABLE = "CONSENSUS_UNAVAILABLE"
MARKET_DATA_UNAVAILABLE = "MARKET_DATA_UNAVAILABLE"
INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
DEBATE_DEGRADED = "DEBATE_DEGRADED"
CANCELLED = "CANCELLED"


class InvalidConfiguration(Exception):
    """权重 / 阈值配置非法时在启动阶段抛出。 / Raised at startup for malformed weights or thresholds."""

    code = INVALID_CONFIGURATION

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems: List[str] = list(problems)
        super().__init__(f"[{self.code}] " + "; ".join(self.problems))


class DebateDegraded(Exception):
    """辩论轮次失败（非致命）。由辩论引擎内部捕获并记录。

    / A debate round failed (non-fatal). Caught and recorded inside the debate engine.
    """

    code = DEBATE_DEGRADED

    def __init__(self, phase: str, reason: str) -> None:
        self.phase = phase
        self.reason = reason
        super().__init__(f"[{self.code}] {phase}: {reason}")


class AnalysisError(Exception):
    """致命分析错误 — 指明失败阶段与原因。 / Fatal analysis error naming the failing stage and reason."""

    code = "ANALYSIS_FAILED"

    def __init__(
        self,
        stage: str,
        reason: str,
        audit_log: Optional[Sequence[Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.stage = stage
        self.reason = reason
        self.audit_log: List[Any] = list(audit_log or [])
        self.details: Dict[str, Any] = dict(details or {})
        super().__init__(f"[{self.code}] {stage}: {reason}")

    def with_audit_log(self, audit_log: Sequence[Any]) -> AnalysisError:
        """附加审计日志后返回自身。 / Attach the audit log and return self."""
        self.audit_log = list(audit_log)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "stage": self.stage,
            "reason": self.reason,
            "details": self.details,
        }


class InsufficientSignals(AnalysisError):
    code = INSUFFICIENT_SIGNALS


class ConsensusUnavailable(AnalysisError):
    code = CONSENSUS_UNAVAILABLE


class MarketDataUnavailable(AnalysisError):
    code = MARKET_DATA_UNAVAILABLE
