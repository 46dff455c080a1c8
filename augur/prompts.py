"""augur 集中式提示词管理模块。

本文件统一管理 LLM 信号生产者与辩论质询者使用的提示词模板。
提示词只规定输出的 JSON 契约，推理本身交给所配置的模型。
每个提示词均标注了调用位置和用途。

提示词分类：
1. 通用提示词 —— 重试
2. 信号生产者 (LLMSignalAgent) 提示词
3. 辩论质询者 (LLMCritiqueAgent) 提示词
"""

# =============================================================================
# 通用提示词
# =============================================================================

# 调用位置: signal_agent.py / critic.py — JSON 解析或校验失败时的重试前缀
# 用途: 告知 LLM 上一次输出格式有误，要求重新输出合法 JSON
RETRY_JSON_PREFIX = (
    "Your previous reply could not be used: {error}\n"
    "Reply again with valid JSON only.\n\n"
)


# =============================================================================
# 信号生产者 (LLMSignalAgent)
# =============================================================================

# 调用位置: signal_agent.py — LLMSignalAgent.produce()
# 用途: system prompt，设定分析视角
SIGNAL_SYSTEM_PROMPT = (
    "You are {name}, an analyst estimating the probability that a prediction "
    "market resolves YES.\nYour perspective: {perspective}\n"
    "Answer with a single JSON object and nothing else."
)

# 调用位置: signal_agent.py — LLMSignalAgent.produce()
# 用途: user prompt，给出市场简报与输出契约
SIGNAL_USER_PROMPT = (
    "## Market\n\n{market_json}\n\n"
    "## Output contract\n\n"
    "```json\n"
    "{{\n"
    '  "fair_probability": 0.0-1.0,\n'
    '  "confidence": 0.0-1.0,\n'
    '  "direction": "YES" | "NO" | "NEUTRAL",\n'
    '  "key_drivers": ["at least one driver"],\n'
    '  "risk_factors": ["..."]\n'
    "}}\n"
    "```\n"
)


# =============================================================================
# 辩论质询者 (LLMCritiqueAgent)
# =============================================================================

# 调用位置: critic.py — LLMCritiqueAgent.critique()
# 用途: system prompt
CRITIC_SYSTEM_PROMPT = (
    "You refine one side of a bull/bear debate about a prediction market. "
    "Weigh the opposing case honestly, then restate your side's estimate. "
    "Answer with a single JSON object and nothing else."
)

# 调用位置: critic.py — LLMCritiqueAgent.critique()
# 用途: user prompt，给出本方论点与对方论点
CRITIC_USER_PROMPT = (
    "## Your thesis ({side})\n\n{thesis_json}\n\n"
    "## Opposing thesis\n\n{opposing_json}\n\n"
    "All probabilities are P(YES).\n\n"
    "## Output contract\n\n"
    "```json\n"
    "{{\n"
    '  "fair_probability": 0.0-1.0,\n'
    '  "confidence": 0.0-1.0,\n'
    '  "core_argument": "revised argument",\n'
    '  "catalysts": ["..."],\n'
    '  "failure_conditions": ["..."]\n'
    "}}\n"
    "```\n"
)
