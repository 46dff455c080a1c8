# config.py
# =============================================================================
# LLM 端点配置加载模块 / LLM endpoint config loading module
#
# 职责 / Responsibilities:
#   - 定义模型端点配置（ModelEndpointConfig）
#     / Define the model endpoint config (ModelEndpointConfig)
#   - 按角色解析配置：代码传入 > 配置文件（llm_config.yaml，${VAR} 展开）
#     / Resolve per role: code > config file (llm_config.yaml, ${VAR} expanded)
#   - 配置缺失时抛出 ConfigurationError，不提供硬编码默认模型
#     / Raise ConfigurationError on missing config; no hardcoded default model
#
# 角色 / Roles:
#   - "signal": LLMSignalAgent 使用 / used by LLMSignalAgent
#   - "critic": LLMCritiqueAgent 使用 / used by LLMCritiqueAgent
#   - 也可以按信号生产者名称单独配置 / or per signal-producer name
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from augur.config import expand_env_vars

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """LLM 配置缺失或非法。 / LLM configuration missing or malformed."""

    code = "LLM_CONFIGURATION_ERROR"


@dataclass
class ModelEndpointConfig:
    """单个 OpenAI 兼容端点的配置。 / Config of one OpenAI-compatible endpoint."""

    model_name: str
    url: str = ""
    api_key: Optional[str] = None
    temperature: float = 0.2
    max_tokens: Optional[int] = 1024
    timeout: float = 60.0
    max_retries: int = 2
    json_mode: bool = True  # 请求 response_format=json_object / request response_format=json_object
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = frozenset({
        "model", "model_name", "url", "api_key", "temperature",
        "max_tokens", "timeout", "max_retries", "json_mode",
    })

    @classmethod
    def from_dict(cls, data: Any) -> ModelEndpointConfig:
        """从字典或模型名简写构建。 / Build from a dict or a bare model-name string."""
        if isinstance(data, str):
            return cls(model_name=data)
        model_name = data.get("model_name") or data.get("model", "")
        return cls(
            model_name=model_name,
            url=data.get("url") or "",
            api_key=data.get("api_key"),
            temperature=float(data.get("temperature", 0.2)),
            max_tokens=data["max_tokens"] if "max_tokens" in data else 1024,
            timeout=float(data.get("timeout") or 60.0),
            max_retries=int(data.get("max_retries", 2)),
            json_mode=bool(data.get("json_mode", True)),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )


class LLMConfigLoader:
    """LLM 配置加载器。 / LLM config loader.

    优先级（高→低） / Priority (high→low):
    1. 代码传入（llm_config 字典参数） / Code-level config dict
    2. 配置文件（YAML，支持 ${VAR} 引用） / Config file (YAML, ${VAR} refs)
    每层内部：角色级配置覆盖 _default。 / Within a layer the role entry overrides _default.

    llm_config 字典格式 / Dict format:
    {
        "_default": {"model_name": "gpt-4o-mini", "url": "https://api.openai.com/v1",
                     "api_key": "${OPENAI_API_KEY}"},
        "critic": {"temperature": 0.0},
        "polling_intelligence": "gpt-4o",   # 简写 / shorthand
    }
    """

    _CONFIG_SEARCH_PATHS = [
        "llm_config.yaml",
        "llm_config.yml",
        "config/llm_config.yaml",
        "config/llm_config.yml",
    ]

    def __init__(
        self,
        llm_config: Optional[Dict[str, Any]] = None,
        config_file: Optional[str] = None,
    ):
        self._code_config = llm_config or {}
        self._file_config: Dict[str, Any] = {}
        self._load_config_file(config_file)

    def _load_config_file(self, config_file: Optional[str]) -> None:
        candidates = [config_file] if config_file else self._CONFIG_SEARCH_PATHS
        for candidate in candidates:
            path = Path(candidate)
            if path.exists():
                with open(path, "r", encoding="utf-8") as f:
                    self._file_config = expand_env_vars(yaml.safe_load(f) or {})
                logger.info("LLM 配置文件已加载: %s", path)
                return
        if config_file:
            logger.warning("指定的 LLM 配置文件不存在: %s", config_file)
        else:
            logger.debug("未发现 LLM 配置文件，将依赖代码配置")

    @staticmethod
    def _layer(config: Dict[str, Any], role: str) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        default = config.get("_default", {})
        if isinstance(default, dict):
            merged.update({k: v for k, v in default.items() if v is not None})
        entry = config.get(role, {})
        if isinstance(entry, str):
            merged["model_name"] = entry
        elif isinstance(entry, dict):
            merged.update({k: v for k, v in entry.items() if v is not None})
        return merged

    def resolve(self, role: str) -> ModelEndpointConfig:
        """解析指定角色的端点配置。 / Resolve the endpoint config of a role.

        Raises:
            ConfigurationError: 缺少 model_name 或 url。 / model_name or url missing.
        """
        merged = self._layer(self._file_config, role)
        merged.update(self._layer(self._code_config, role))

        model_name = merged.get("model_name") or merged.get("model")
        if not model_name:
            raise ConfigurationError(
                f"角色 '{role}' 的 LLM 模型配置缺失：未找到 model_name。"
                f"已搜索：llm_config['{role}']、llm_config['_default'] 与配置文件。"
            )
        if not merged.get("url"):
            raise ConfigurationError(f"角色 '{role}' 未配置 url（OpenAI 兼容端点地址）。")
        return ModelEndpointConfig.from_dict(merged)

    def configured_roles(self) -> List[str]:
        roles = set()
        for cfg in (self._code_config, self._file_config):
            roles.update(k for k in cfg if not k.startswith("_"))
        return sorted(roles)

    def summary(self) -> Dict[str, Dict[str, str]]:
        """配置摘要（遮蔽 API Key），用于日志。 / Config summary with masked API keys, for logging."""
        result = {}
        for role in self.configured_roles():
            try:
                cfg = self.resolve(role)
            except ConfigurationError as exc:
                result[role] = {"error": str(exc)}
                continue
            result[role] = {
                "model": cfg.model_name,
                "url": cfg.url,
                "api_key": _mask_key(cfg.api_key),
            }
        return result


def _mask_key(key: Optional[str]) -> str:
    """遮蔽 API Key，仅显示前 4 位和后 4 位。 / Mask an API key to its first and last 4 chars."""
    if not key:
        return "(none)"
    if len(key) <= 10:
        return key[:2] + "***"
    return key[:4] + "..." + key[-4:]
