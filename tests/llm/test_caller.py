"""Tests for LLM caller factories and the shared call budget."""

import pytest

from augur.llm.caller import CallBudget, callers_from_config, make_llm_caller


class RecordingAdapter:
    def __init__(self, reply="ok"):
        self.reply = reply
        self.calls = []

    async def call(self, system_prompt, user_message):
        self.calls.append((system_prompt, user_message))
        return self.reply


class TestMakeLLMCaller:
    @pytest.mark.asyncio
    async def test_forwards_prompts(self):
        adapter = RecordingAdapter("reply")
        caller = make_llm_caller(adapter)
        assert await caller(system_prompt="s", user_prompt="u") == "reply"
        assert adapter.calls == [("s", "u")]

    @pytest.mark.asyncio
    async def test_budget_is_enforced(self):
        budget = CallBudget(max_calls=2)
        caller = make_llm_caller(RecordingAdapter(), budget=budget)
        await caller(user_prompt="1")
        await caller(user_prompt="2")
        with pytest.raises(RuntimeError):
            await caller(user_prompt="3")
        assert budget.used == 2

    @pytest.mark.asyncio
    async def test_budget_shared_across_callers(self):
        budget = CallBudget(max_calls=1)
        first = make_llm_caller(RecordingAdapter(), role="a", budget=budget)
        second = make_llm_caller(RecordingAdapter(), role="b", budget=budget)
        await first(user_prompt="x")
        with pytest.raises(RuntimeError):
            await second(user_prompt="y")


def test_unlimited_budget():
    budget = CallBudget()
    for _ in range(100):
        budget.acquire()
    assert budget.used == 100


def test_callers_from_config(tmp_path):
    callers = callers_from_config(
        ["signal", "critic"],
        llm_config={"_default": {"model_name": "m", "url": "https://api.example.com/v1"}},
        config_file=str(tmp_path / "none.yaml"),
    )
    assert set(callers) == {"signal", "critic"}
