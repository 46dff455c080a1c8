"""LLM 辩论质询者。 / LLM-backed debate critic."""

import json
import logging
from typing import Any, Awaitable, Callable, Dict

from augur.primitives.models import RefinedThesis, SignalDirection, Thesis
from augur.prompts import CRITIC_SYSTEM_PROMPT, CRITIC_USER_PROMPT, RETRY_JSON_PREFIX
from augur.utils.json_parser import parse_json_from_llm

logger = logging.getLogger(__name__)


def _thesis_brief(thesis: Thesis) -> Dict[str, Any]:
    return {
        "fair_probability": thesis.fair_probability,
        "confidence": thesis.confidence,
        "market_probability": thesis.market_probability,
        "core_argument": thesis.core_argument,
        "catalysts": list(thesis.catalysts),
        "failure_conditions": list(thesis.failure_conditions),
    }


class LLMCritiqueAgent:
    """让模型在看到对方论点后修订本方论点。 / Has the model revise one side after reading the other."""

    def __init__(
        self,
        llm_caller: Callable[..., Awaitable[str]],
        max_retries: int = 1,
    ):
        self._llm_caller = llm_caller
        self._max_retries = max_retries

    async def critique(self, thesis: Thesis, opposing: Thesis) -> RefinedThesis:
        """返回修订后的论点；多次失败后抛出，由辩论引擎降级处理。

        / Return the revised thesis; raises after retries so the debate engine degrades.
        """
        side = "bull" if thesis.direction == SignalDirection.YES else "bear"
        user_prompt = CRITIC_USER_PROMPT.format(
            side=side,
            thesis_json=json.dumps(_thesis_brief(thesis), ensure_ascii=False),
            opposing_json=json.dumps(_thesis_brief(opposing), ensure_ascii=False),
        )

        last_error: Exception = ValueError("no attempt made")
        prompt = user_prompt
        for attempt in range(1 + self._max_retries):
            raw = await self._llm_caller(system_prompt=CRITIC_SYSTEM_PROMPT, user_prompt=prompt)
            try:
                data = parse_json_from_llm(raw)
                confidence = data.get("confidence")
                return RefinedThesis(
                    fair_probability=float(data["fair_probability"]),
                    core_argument=str(data.get("core_argument", "")),
                    confidence=float(confidence) if confidence is not None else None,
                    catalysts=tuple(str(c) for c in data.get("catalysts") or ()),
                    failure_conditions=tuple(str(f) for f in data.get("failure_conditions") or ()),
                )
            except (ValueError, KeyError, TypeError) as e:
                last_error = e
                logger.warning(f"LLMCritiqueAgent {side} attempt {attempt + 1} failed: {e}")
                prompt = RETRY_JSON_PREFIX.format(error=e) + user_prompt

        raise ValueError(f"critique for {side} failed after retries: {last_error}")
