# agents/__init__.py
# =============================================================================
# augur Agent 模块 — LLM 信号生产者与辩论质询者。 / LLM signal producer & debate critic.
# =============================================================================

from .critic import LLMCritiqueAgent
from .signal_agent import LLMSignalAgent

__all__ = [
    "LLMCritiqueAgent",
    "LLMSignalAgent",
]
