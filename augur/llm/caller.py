# caller.py
# =============================================================================
# LLM 调用函数工厂 — 把适配器包装成 async def(*, system_prompt, user_prompt) -> str。
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from augur.llm.chat_completions_adapter import ChatCompletionsAdapter
from augur.llm.config import LLMConfigLoader

logger = logging.getLogger(__name__)

LLMCaller = Callable[..., Awaitable[str]]


@dataclass
class CallBudget:
    """单次分析的 LLM 调用次数上限。 / Per-analysis cap on LLM calls.

    max_calls 为 None 表示不限。 / max_calls of None means unlimited.
    """

    max_calls: Optional[int] = None
    used: int = 0

    def acquire(self) -> None:
        if self.max_calls is not None and self.used >= self.max_calls:
            raise RuntimeError(f"LLM 调用次数已达上限: {self.max_calls}")
        self.used += 1


def make_llm_caller(
    adapter: Any,
    role: str = "llm",
    budget: Optional[CallBudget] = None,
) -> LLMCaller:
    """创建 LLM 调用函数。

    返回 async def(*, system_prompt, user_prompt) -> str，供 LLMSignalAgent /
    LLMCritiqueAgent 使用。adapter 只需暴露 async call(system_prompt, user_message)。
    """
    lock = asyncio.Lock()

    async def caller(*, system_prompt: str = "", user_prompt: str = "") -> str:
        if budget is not None:
            # 并发生产者共享预算 / concurrent producers share one budget
            async with lock:
                budget.acquire()
                limit = budget.max_calls if budget.max_calls is not None else "∞"
                logger.debug(f"[{role}] LLM 调用 #{budget.used}/{limit}")
        return await adapter.call(system_prompt, user_prompt)

    return caller


def callers_from_config(
    roles: Any,
    llm_config: Optional[Dict[str, Any]] = None,
    config_file: Optional[str] = None,
    budget: Optional[CallBudget] = None,
) -> Dict[str, LLMCaller]:
    """按角色批量创建调用函数（共享同一预算）。 / Build one caller per role sharing one budget."""
    loader = LLMConfigLoader(llm_config=llm_config, config_file=config_file)
    callers: Dict[str, LLMCaller] = {}
    for role in roles:
        adapter = ChatCompletionsAdapter.from_endpoint_config(loader.resolve(role))
        callers[role] = make_llm_caller(adapter, role=role, budget=budget)
    logger.info("LLM 调用函数已创建: %s", loader.summary())
    return callers
