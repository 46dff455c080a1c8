"""LLM 信号生产者。 / LLM-backed signal producer.

LLMSignalAgent 把市场简报交给所配置的模型，按 JSON 契约解析回复为 AgentSignal。
解析或校验失败时重试；最终失败时抛出，由编排器记为 EXECUTION_FAILED。
/ Hands the briefing to the configured model and parses the reply into an
AgentSignal. Retries on malformed output; raises on final failure so the
orchestrator records an EXECUTION_FAILED.
"""

import json
import logging
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Dict

from augur.primitives.models import AgentSignal, MarketBriefingDocument
from augur.prompts import RETRY_JSON_PREFIX, SIGNAL_SYSTEM_PROMPT, SIGNAL_USER_PROMPT
from augur.utils.json_parser import parse_json_from_llm

logger = logging.getLogger(__name__)


class LLMSignalAgent:
    """LLM 信号生产者：一个具名分析视角。 / LLM signal producer: one named analysis perspective."""

    def __init__(
        self,
        name: str,
        perspective: str,
        llm_caller: Callable[..., Awaitable[str]],
        max_retries: int = 2,
    ):
        self.name = name
        self.perspective = perspective
        self._llm_caller = llm_caller
        self._max_retries = max_retries

    async def produce(self, mbd: MarketBriefingDocument, context: Dict[str, Any]) -> AgentSignal:
        system_prompt = SIGNAL_SYSTEM_PROMPT.format(name=self.name, perspective=self.perspective)
        user_prompt = SIGNAL_USER_PROMPT.format(
            market_json=json.dumps(asdict(mbd), ensure_ascii=False, default=str),
        )

        last_error: Exception = ValueError("no attempt made")
        prompt = user_prompt
        for attempt in range(1 + self._max_retries):
            raw = await self._llm_caller(system_prompt=system_prompt, user_prompt=prompt)
            try:
                data = parse_json_from_llm(raw)
                return AgentSignal.from_dict(data, agent_name=self.name)
            except (ValueError, KeyError, TypeError) as e:
                last_error = e
                logger.warning(f"LLMSignalAgent {self.name} attempt {attempt + 1} failed: {e}")
                prompt = RETRY_JSON_PREFIX.format(error=e) + user_prompt

        raise ValueError(
            f"{self.name}: no valid signal after {1 + self._max_retries} attempts: {last_error}"
        )
