# chat_completions_adapter.py
# =============================================================================
# OpenAI 兼容 Chat Completions 适配器
#
# 职责：
#   - 将 (system_prompt, user_message) 调用转换为 Chat Completions HTTP 请求
#   - 仅对可重试错误（网络异常、429、5xx）重试，带指数退避
#   - 解析返回结构并提取文本内容
#
# URL 兼容性：
#   - 基础 URL：https://api.openai.com/v1 -> 自动追加 /chat/completions
#   - 完整路径：.../chat/completions      -> 直接使用
#
# 请求格式：
#   {"model": "xxx", "messages": [{"role": "system", ...}, {"role": "user", ...}]}
#   -> response["choices"][0]["message"]["content"]
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from augur.llm.config import ModelEndpointConfig

logger = logging.getLogger(__name__)

# 需要重试的 HTTP 状态码 / HTTP statuses worth retrying
_RETRYABLE_STATUS = frozenset({408, 409, 429, 500, 502, 503, 504})


class LLMCallError(RuntimeError):
    """LLM 调用在全部重试后仍失败。 / LLM call still failing after every retry."""


class ChatCompletionsAdapter:
    """OpenAI 兼容 Chat Completions 适配器。

    通过 httpx 异步 HTTP 直连调用。可注入外部 httpx.AsyncClient 以复用连接池。
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str],
        model: str,
        temperature: float = 0.2,
        max_tokens: Optional[int] = 1024,
        timeout: float = 60.0,
        max_retries: int = 2,
        json_mode: bool = True,
        backoff_base: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._endpoint = self._resolve_endpoint(url)
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._max_retries = max_retries
        self._json_mode = json_mode
        self._backoff_base = backoff_base
        self._client = client

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def call(self, system_prompt: str, user_message: str) -> str:
        """调用端点并返回文本响应。

        Raises:
            LLMCallError: 全部尝试均失败，或遇到不可重试的 HTTP 错误。
        """
        body = self._build_request(system_prompt, user_message)
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        last_error: Optional[Exception] = None
        attempts = self._max_retries + 1
        for attempt in range(attempts):
            try:
                data = await self._post(headers, body)
                return self._extract_text(data)
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                last_error = e
                logger.warning(
                    "Chat Completions 调用失败 (HTTP %d)，第 %d/%d 次: %s",
                    status, attempt + 1, attempts, e.response.text[:200],
                )
                if status not in _RETRYABLE_STATUS:
                    break
            except httpx.RequestError as e:
                last_error = e
                logger.warning(
                    "Chat Completions 请求异常，第 %d/%d 次: %s", attempt + 1, attempts, e,
                )
            if attempt + 1 < attempts and self._backoff_base > 0:
                await asyncio.sleep(self._backoff_base * (2 ** attempt))

        raise LLMCallError(f"Chat Completions 调用失败 ({self._model}): {last_error}")

    async def _post(self, headers: Dict[str, str], body: Dict[str, Any]) -> Dict[str, Any]:
        if self._client is not None:
            response = await self._client.post(
                self._endpoint, headers=headers, json=body, timeout=self._timeout,
            )
            response.raise_for_status()
            return response.json()
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._endpoint, headers=headers, json=body)
            response.raise_for_status()
            return response.json()

    @staticmethod
    def _resolve_endpoint(url: str) -> str:
        if not url:
            raise ValueError("url is required")
        base, _, query = url.partition("?")
        if not base.rstrip("/").endswith("/chat/completions"):
            base = base.rstrip("/") + "/chat/completions"
        return f"{base}?{query}" if query else base

    def _build_request(self, system_prompt: str, user_message: str) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_message})

        body: Dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
        }
        if self._max_tokens is not None:
            body["max_tokens"] = self._max_tokens
        if self._json_mode:
            body["response_format"] = {"type": "json_object"}
        return body

    @staticmethod
    def _extract_text(response_data: Dict[str, Any]) -> str:
        """response["choices"][0]["message"]["content"]；缺失时返回空串。"""
        choices = response_data.get("choices") or []
        if choices:
            content = (choices[0].get("message") or {}).get("content")
            if content is not None:
                return content
        logger.warning("Chat Completions 响应中未找到文本内容: %s", str(response_data)[:300])
        return ""

    @classmethod
    def from_endpoint_config(
        cls,
        config: ModelEndpointConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> ChatCompletionsAdapter:
        return cls(
            url=config.url,
            api_key=config.api_key,
            model=config.model_name,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
            max_retries=config.max_retries,
            json_mode=config.json_mode,
            client=client,
        )
