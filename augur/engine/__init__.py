# engine/__init__.py
# =============================================================================
# augur 引擎模块 — 编排、论点、辩论、融合、共识、建议与审计。
# =============================================================================

from augur.engine.recorder import (
    AuditTrailRecorder,
    InMemoryAuditStore,
    JsonFileAuditStore,
    load_audit_trail,
)
from augur.engine.runtime import AnalysisRuntime, ProgressCallback, merge_state

__all__ = [
    "AnalysisRuntime",
    "AuditTrailRecorder",
    "InMemoryAuditStore",
    "JsonFileAuditStore",
    "ProgressCallback",
    "load_audit_trail",
    "merge_state",
]
