# config.py
# =============================================================================
# 分析配置加载与校验模块 / Analysis config loading & validation module
#
# 职责 / Responsibilities:
#   - 定义流水线全部可调参数（AnalysisConfig）
#     / Define every tunable pipeline parameter (AnalysisConfig)
#   - 实现三层优先级配置加载：代码传入 > 配置文件 > 环境变量
#     / Three-tier priority loading: code > config file > env vars
#   - 启动时校验，非法配置抛出 InvalidConfiguration
#     / Validate at startup; malformed config raises InvalidConfiguration
#
# 配置对象在运行期间只读，可被多个并发分析共享。
# / The config object is read-only at run time and may be shared by concurrent runs.
# =============================================================================

from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from augur.primitives.errors import InvalidConfiguration

logger = logging.getLogger(__name__)


# =============================================================================
# 数据结构 / Data Structures
# =============================================================================


@dataclass(frozen=True)
class AnalysisConfig:
    """单次市场分析的完整配置。
    / Complete configuration of one market analysis.

    默认值与线上引擎保持一致。 / Defaults mirror the production engine.
    """

    # --- 编排 / Orchestration ---
    min_agents_required: int = 2
    per_agent_timeout: float = 10.0  # 秒 / seconds

    # --- 信号融合 / Signal fusion ---
    fusion_weights: Dict[str, float] = field(default_factory=dict)
    conflict_threshold: float = 0.20
    alignment_bonus: float = 0.20

    # --- 共识 / Consensus ---
    high_confidence_threshold: float = 0.10
    high_disagreement_threshold: float = 0.20
    band_multiplier: float = 1.0  # 置信带宽度系数 k / confidence-band spread multiplier k

    # --- 辩论 / Debate ---
    debate_rounds: int = 1
    debate_round_timeout: float = 30.0
    debate_blend_weight: float = 0.5  # 辩论隐含概率在共识中的权重 / weight of the debate-implied probability

    # --- 建议 / Recommendation ---
    min_edge_threshold: float = 0.05
    # 流动性分数低于该值 → high / medium 风险 / liquidity score below → high / medium risk
    liquidity_high_risk_below: float = 5.0
    liquidity_medium_risk_below: float = 7.0
    # 价差（美分）达到该值 → high / medium 风险 / spread (cents) at or above → high / medium risk
    spread_high_risk_at: float = 5.0
    spread_medium_risk_at: float = 2.0

    def validate(self) -> AnalysisConfig:
        """校验全部参数，返回自身便于链式调用。 / Validate every parameter; returns self for chaining.

        Raises:
            InvalidConfiguration: 收集到的所有问题。 / All problems found.
        """
        problems: List[str] = []

        if not isinstance(self.min_agents_required, int) or self.min_agents_required < 1:
            problems.append(f"min_agents_required must be an integer >= 1, got {self.min_agents_required!r}")
        if not _positive(self.per_agent_timeout):
            problems.append(f"per_agent_timeout must be > 0, got {self.per_agent_timeout!r}")
        if not _positive(self.debate_round_timeout):
            problems.append(f"debate_round_timeout must be > 0, got {self.debate_round_timeout!r}")
        if not isinstance(self.debate_rounds, int) or self.debate_rounds < 0:
            problems.append(f"debate_rounds must be an integer >= 0, got {self.debate_rounds!r}")

        for agent, weight in self.fusion_weights.items():
            if not _finite(weight) or weight < 0:
                problems.append(f"fusion weight for '{agent}' must be a finite number >= 0, got {weight!r}")

        for name in (
            "conflict_threshold",
            "alignment_bonus",
            "min_edge_threshold",
            "high_confidence_threshold",
            "high_disagreement_threshold",
            "debate_blend_weight",
        ):
            value = getattr(self, name)
            if not _finite(value) or value < 0 or value > 1:
                problems.append(f"{name} must be within [0, 1], got {value!r}")

        if (
            _finite(self.high_confidence_threshold)
            and _finite(self.high_disagreement_threshold)
            and self.high_confidence_threshold >= self.high_disagreement_threshold
        ):
            problems.append(
                "high_confidence_threshold must be smaller than high_disagreement_threshold "
                f"({self.high_confidence_threshold} >= {self.high_disagreement_threshold})"
            )

        if not _finite(self.band_multiplier) or self.band_multiplier < 0:
            problems.append(f"band_multiplier must be >= 0, got {self.band_multiplier!r}")

        for name in (
            "liquidity_high_risk_below",
            "liquidity_medium_risk_below",
            "spread_high_risk_at",
            "spread_medium_risk_at",
        ):
            value = getattr(self, name)
            if not _finite(value) or value < 0:
                problems.append(f"{name} must be >= 0, got {value!r}")
        if (
            _finite(self.liquidity_high_risk_below)
            and _finite(self.liquidity_medium_risk_below)
            and self.liquidity_high_risk_below > self.liquidity_medium_risk_below
        ):
            problems.append("liquidity_high_risk_below must not exceed liquidity_medium_risk_below")
        if (
            _finite(self.spread_high_risk_at)
            and _finite(self.spread_medium_risk_at)
            and self.spread_high_risk_at < self.spread_medium_risk_at
        ):
            problems.append("spread_high_risk_at must not be below spread_medium_risk_at")

        if problems:
            raise InvalidConfiguration(problems)
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AnalysisConfig:
        """从字典构建配置，未知键报错。 / Build from a dict; unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidConfiguration([f"unknown config keys: {', '.join(unknown)}"])
        values = dict(data)
        if "fusion_weights" in values:
            values["fusion_weights"] = _coerce_weights(values["fusion_weights"])
        return cls(**values)


def _finite(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _positive(value: Any) -> bool:
    return _finite(value) and value > 0


def _coerce_weights(raw: Any) -> Dict[str, float]:
    """接受 dict 或 "a=1.2,b=0.8" 字符串。 / Accept a dict or an "a=1.2,b=0.8" string."""
    if raw is None:
        return {}
    if isinstance(raw, str):
        weights: Dict[str, float] = {}
        for part in raw.split(","):
            part = part.strip()
            if not part:
                continue
            if "=" not in part:
                raise InvalidConfiguration([f"malformed fusion weight entry: '{part}'"])
            name, value = part.split("=", 1)
            weights[name.strip()] = _to_float(value, f"fusion weight '{name.strip()}'")
        return weights
    if isinstance(raw, dict):
        return {str(k): _to_float(v, f"fusion weight '{k}'") for k, v in raw.items()}
    raise InvalidConfiguration([f"fusion_weights must be a mapping, got {type(raw).__name__}"])


def _to_float(value: Any, label: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidConfiguration([f"{label} is not a number: {value!r}"]) from None


# =============================================================================
# 配置加载器 / Config Loader
# =============================================================================

# 环境变量前缀 / Environment variable prefix
ENV_PREFIX = "AUGUR_"


class AnalysisConfigLoader:
    """分析配置加载器 — 实现三层优先级配置合并。
    / Analysis config loader — three-tier priority merging.

    优先级（高→低） / Priority (high→low):
    1. 代码传入（config 字典参数） / Code-level config dict
    2. 配置文件（YAML，支持 ${VAR} 引用） / Config file (YAML, ${VAR} refs expanded)
    3. 环境变量（AUGUR_MIN_AGENTS_REQUIRED 等） / Env vars (AUGUR_MIN_AGENTS_REQUIRED, ...)

    YAML 格式 / YAML format:
        min_agents_required: 3
        per_agent_timeout: 15
        fusion_weights:
          polling_intelligence: 1.5
          media_sentiment: 0.8
    """

    # 配置文件搜索路径（按优先级） / Config file search paths (by priority)
    _CONFIG_SEARCH_PATHS = [
        "augur.yaml",
        "augur.yml",
        "config/augur.yaml",
        "config/augur.yml",
    ]

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        config_file: Optional[str] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        self._code_config = dict(config or {})
        self._environ = os.environ if environ is None else environ
        self._file_config: Dict[str, Any] = {}
        self._load_config_file(config_file)

    def _load_config_file(self, config_file: Optional[str]) -> None:
        if config_file:
            path = Path(config_file)
            if path.exists():
                self._file_config = self._read_yaml(path)
                logger.info("分析配置文件已加载 / analysis config loaded: %s", path)
            else:
                logger.warning("指定的分析配置文件不存在 / config file not found: %s", path)
            return

        for search_path in self._CONFIG_SEARCH_PATHS:
            path = Path(search_path)
            if path.exists():
                self._file_config = self._read_yaml(path)
                logger.info("自动发现分析配置文件 / discovered config file: %s", path)
                return

        logger.debug("未发现分析配置文件，使用代码配置与环境变量")

    def _read_yaml(self, path: Path) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise InvalidConfiguration([f"config file {path} must contain a mapping"])
        return expand_env_vars(raw, self._environ)

    def _env_config(self) -> Dict[str, Any]:
        """读取 AUGUR_* 环境变量并按字段类型转换。 / Read AUGUR_* env vars, converted per field type."""
        result: Dict[str, Any] = {}
        for f in fields(AnalysisConfig):
            raw = self._environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            if f.name == "fusion_weights":
                result[f.name] = _coerce_weights(raw)
            elif f.name in ("min_agents_required", "debate_rounds"):
                try:
                    result[f.name] = int(raw)
                except ValueError:
                    raise InvalidConfiguration([f"{ENV_PREFIX}{f.name.upper()} is not an integer: {raw!r}"]) from None
            else:
                result[f.name] = _to_float(raw, ENV_PREFIX + f.name.upper())
        return result

    def load(self) -> AnalysisConfig:
        """合并三层配置并校验。 / Merge the three tiers and validate.

        fusion_weights 按智能体逐个合并，高优先级覆盖低优先级。
        / fusion_weights merge per agent, higher tiers override lower ones.
        """
        merged: Dict[str, Any] = {}
        weights: Dict[str, float] = {}
        for layer in (self._env_config(), self._file_config, self._code_config):
            for key, value in layer.items():
                if key == "fusion_weights":
                    weights.update(_coerce_weights(value))
                elif value is not None:
                    merged[key] = value
        merged["fusion_weights"] = weights
        return AnalysisConfig.from_dict(merged).validate()


def expand_env_vars(obj: Any, environ: Optional[Dict[str, str]] = None) -> Any:
    """递归展开字典/列表中的 ${ENV_VAR} 引用。 / Recursively expand ${ENV_VAR} refs in dicts/lists.

    支持格式 / Supported formats:
    - ${VAR_NAME}          → environ["VAR_NAME"]
    - ${VAR_NAME:-default} → environ.get("VAR_NAME", "default")
    """
    env = os.environ if environ is None else environ
    if isinstance(obj, str):

        def _replace(match):
            var_expr = match.group(1)
            if ":-" in var_expr:
                var_name, default = var_expr.split(":-", 1)
                return env.get(var_name.strip(), default.strip())
            return env.get(var_expr.strip(), match.group(0))

        expanded = re.sub(r"\$\{([^}]+)\}", _replace, obj)
        # 整串为数字时转换，避免 "${K:-2}" 变成字符串 / numeric-only results become numbers
        if expanded != obj and re.fullmatch(r"-?\d+", expanded):
            return int(expanded)
        if expanded != obj and re.fullmatch(r"-?\d*\.\d+", expanded):
            return float(expanded)
        return expanded

    if isinstance(obj, dict):
        return {k: expand_env_vars(v, env) for k, v in obj.items()}
    if isinstance(obj, list):
        return [expand_env_vars(item, env) for item in obj]
    return obj

