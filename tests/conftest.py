import json
from typing import List, Union

import pytest

from idea_refiner.config import get_settings
from idea_refiner.routers.refine import reset_dispatcher
from idea_refiner.services.llm_client import CompletionOptions, LLMClient
from idea_refiner.utils.exceptions import UpstreamError
from idea_refiner.utils.rate_limit import reset_rate_limiter

PLAN = {
    "title": "ShelfSwap",
    "short_description": "A neighbourhood book exchange app.",
    "problem": "Readers accumulate books they will not reread.",
    "solution": "Match nearby readers so books change hands locally.",
    "core_features": ["Book listing via ISBN scan", "Nearby matches", "In-app chat"],
    "mvp_scope": ["Single city", "Web only"],
    "suggested_tech_stack": ["FastAPI", "PostgreSQL", "React"],
    "next_steps": ["Interview 10 readers", "Build listing flow", "Pilot in one district"],
}


class ScriptedClient(LLMClient):
    """Plays back a script: ints raise UpstreamError with that status, strings are returned."""

    provider = "scripted"

    def __init__(self, script: List[Union[int, str]]):
        super().__init__(model="unit-test")
        self.script = list(script)
        self.calls: List[dict] = []

    def generate(self, system_instruction: str, user_prompt: str, options: CompletionOptions) -> str:
        self.calls.append({"system": system_instruction, "user": user_prompt, "options": options})
        step = self.script.pop(0)
        if isinstance(step, int):
            raise UpstreamError(step, f"scripted status {step}")
        return step


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    for name in ("OPENAI_API_KEY", "OPENROUTER_API_KEY", "AZURE_OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT",
                 "LLM_PROVIDER", "EXPOSE_ERROR_DETAILS", "METRICS_TOKEN", "RATE_LIMIT_MAX",
                 "RATE_LIMIT_WINDOW_MS", "TRUST_PROXY", "REFINE_PROMPT_VERSION"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    reset_rate_limiter()
    reset_dispatcher()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    reset_dispatcher()


@pytest.fixture
def plan_json() -> str:
    return json.dumps(PLAN)
