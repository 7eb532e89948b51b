import json
from dataclasses import dataclass
from typing import Any, Dict, List

import openai
import requests

from idea_refiner.config import Settings
from idea_refiner.utils.exceptions import ConfigurationError, UpstreamError
from idea_refiner.utils.logger import get_logger

# One client per upstream provider, all exposing generate(system, user, options) -> text.
# Transport failures surface as UpstreamError with the upstream HTTP status;
# connection problems and timeouts count as 503 so the dispatcher retries them.

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
UNREACHABLE_STATUS = 503


@dataclass
class CompletionOptions:
    temperature: float = 0.7
    max_tokens: int = 1500
    json_mode: bool = True


def _messages(system_instruction: str, user_prompt: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": system_instruction},
        {"role": "user", "content": user_prompt},
    ]


class LLMClient:
    provider = "base"

    def __init__(self, model: str, timeout: float = 30.0):
        self.model = model
        self.timeout = timeout
        self._logger = get_logger("llm")

    def generate(self, system_instruction: str, user_prompt: str, options: CompletionOptions) -> str:
        raise NotImplementedError

    def close(self) -> None:
        pass


class OpenAIClient(LLMClient):
    provider = "openai"

    def __init__(self, api_key: str, model: str, timeout: float = 30.0):
        super().__init__(model, timeout)
        # Retries are owned by the dispatcher
        self._client = openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def close(self) -> None:
        self._client.close()

    def _create(self, params: Dict[str, Any]) -> Any:
        try:
            return self._client.chat.completions.create(**params)
        except openai.APIStatusError as e:
            raise UpstreamError(e.status_code, str(e)) from e
        except openai.APIConnectionError as e:
            raise UpstreamError(UNREACHABLE_STATUS, f"openai unreachable: {e}") from e

    def generate(self, system_instruction: str, user_prompt: str, options: CompletionOptions) -> str:
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": _messages(system_instruction, user_prompt),
            "max_completion_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if options.json_mode:
            params["response_format"] = {"type": "json_object"}
        try:
            resp = self._create(params)
        except UpstreamError as e:
            # Some newer models only accept the default temperature
            if e.status == 400 and "temperature" in e.message and "unsupported" in e.message.lower():
                self._logger.warning(
                    "model rejected temperature; retrying without it",
                    extra={"extra": {"provider": self.provider, "model": self.model}},
                )
                params.pop("temperature", None)
                resp = self._create(params)
            else:
                raise
        if not resp.choices:
            return ""
        return getattr(resp.choices[0].message, "content", "") or ""


class _HTTPChatClient(LLMClient):
    """OpenAI-compatible chat completion endpoints reached with requests."""

    def _url(self) -> str:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def _payload(self, system_instruction: str, user_prompt: str, options: CompletionOptions) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": _messages(system_instruction, user_prompt),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if options.json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def generate(self, system_instruction: str, user_prompt: str, options: CompletionOptions) -> str:
        try:
            r = requests.post(
                self._url(),
                json=self._payload(system_instruction, user_prompt, options),
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamError(UNREACHABLE_STATUS, f"{self.provider} unreachable: {e}") from e

        try:
            data = r.json()
        except ValueError:
            data = None
        if r.status_code >= 400:
            raise UpstreamError(r.status_code, f"{self.provider} HTTP {r.status_code}: {_error_text(data, r.text)}")
        if not isinstance(data, dict):
            raise UpstreamError(502, f"{self.provider} returned a non-JSON body")
        choices = data.get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""


def _error_text(data: Any, fallback: str) -> str:
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return (fallback or "")[:200]


class OpenRouterClient(_HTTPChatClient):
    provider = "openrouter"

    def __init__(self, api_key: str, model: str, timeout: float = 30.0):
        super().__init__(model, timeout)
        self._api_key = api_key

    def _url(self) -> str:
        return OPENROUTER_URL

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }


class AzureOpenAIClient(_HTTPChatClient):
    provider = "azure"

    def __init__(self, api_key: str, endpoint: str, deployment: str, api_version: str, timeout: float = 30.0):
        super().__init__(deployment, timeout)
        self._api_key = api_key
        self._endpoint = endpoint.rstrip("/")
        self._api_version = api_version

    def _url(self) -> str:
        return f"{self._endpoint}/openai/deployments/{self.model}/chat/completions?api-version={self._api_version}"

    def _headers(self) -> Dict[str, str]:
        return {"api-key": self._api_key, "Content-Type": "application/json"}

    def _payload(self, system_instruction: str, user_prompt: str, options: CompletionOptions) -> Dict[str, Any]:
        payload = super()._payload(system_instruction, user_prompt, options)
        # The deployment in the URL selects the model
        payload.pop("model", None)
        return payload


class StubClient(LLMClient):
    """Deterministic offline provider for local runs; never chosen implicitly."""

    provider = "stub"

    def generate(self, system_instruction: str, user_prompt: str, options: CompletionOptions) -> str:
        idea = user_prompt.strip().splitlines()[-1].strip() if user_prompt.strip() else "Untitled idea"
        return json.dumps(
            {
                "title": idea[:60],
                "short_description": f"A first, small version of: {idea[:120]}",
                "problem": "The target users have no simple way to do this today.",
                "solution": "A focused product that covers the single most important workflow.",
                "core_features": ["Core workflow", "Basic account settings"],
                "mvp_scope": ["Single platform", "Manual onboarding"],
                "suggested_tech_stack": ["Python", "FastAPI", "PostgreSQL"],
                "next_steps": ["Interview five potential users", "Build a clickable prototype"],
            }
        )


def build_client(settings: Settings) -> LLMClient:
    """Select the provider named by LLM_PROVIDER; fail before any network call when unconfigured."""
    provider = settings.llm_provider
    if provider == "openai":
        if not settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")
        return OpenAIClient(settings.openai_api_key, settings.llm_model, settings.llm_timeout_secs)
    if provider == "openrouter":
        if not settings.openrouter_api_key:
            raise ConfigurationError("OPENROUTER_API_KEY is not configured")
        return OpenRouterClient(settings.openrouter_api_key, settings.llm_model, settings.llm_timeout_secs)
    if provider == "azure":
        if not settings.azure_openai_api_key or not settings.azure_openai_endpoint:
            raise ConfigurationError("AZURE_OPENAI_API_KEY or AZURE_OPENAI_ENDPOINT is not configured")
        return AzureOpenAIClient(
            settings.azure_openai_api_key,
            settings.azure_openai_endpoint,
            settings.azure_openai_deployment or settings.llm_model,
            settings.azure_openai_api_version,
            settings.llm_timeout_secs,
        )
    if provider == "stub":
        return StubClient(settings.llm_model, settings.llm_timeout_secs)
    raise ConfigurationError(f"unknown LLM_PROVIDER: {provider}")

