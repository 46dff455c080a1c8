# llm/__init__.py
# LLM 端点配置、适配器与调用函数工厂 / LLM endpoint config, adapter & caller factory

from augur.llm.caller import CallBudget, callers_from_config, make_llm_caller
from augur.llm.chat_completions_adapter import ChatCompletionsAdapter, LLMCallError
from augur.llm.config import (
    ConfigurationError,
    LLMConfigLoader,
    ModelEndpointConfig,
)

__all__ = [
    "CallBudget",
    "ChatCompletionsAdapter",
    "ConfigurationError",
    "LLMCallError",
    "LLMConfigLoader",
    "ModelEndpointConfig",
    "callers_from_config",
    "make_llm_caller",
]
