import random
import threading
import time
from typing import Callable, Optional

from idea_refiner.config import Settings, get_settings
from idea_refiner.services.llm_client import CompletionOptions, LLMClient, build_client
from idea_refiner.utils.exceptions import DispatchCancelled, UpstreamError
from idea_refiner.utils.logger import get_logger
from idea_refiner.utils.metrics import upstream_attempts
from idea_refiner.utils.prompts import load_prompt, render_user_prompt

PROMPT_NAME = "refine"


class Dispatcher:
    """Sends an idea to the upstream model and returns the raw completion text.

    Transient upstream failures (429 and 5xx) are retried with exponential
    backoff plus jitter: the wait before retry ``n`` (0-based) is
    ``base * 2**n + uniform(0, jitter)``. Anything else propagates at once.
    """

    def __init__(
        self,
        client: LLMClient,
        options: Optional[CompletionOptions] = None,
        max_retries: int = 4,
        base_delay: float = 0.5,
        jitter: float = 0.25,
        prompt_version: Optional[str] = None,
        sleep: Optional[Callable[[float], None]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.options = options or CompletionOptions()
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.jitter = jitter
        self.prompt = load_prompt(PROMPT_NAME, version=prompt_version)
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._logger = get_logger("dispatcher")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Dispatcher":
        settings = settings or get_settings()
        # Raises ConfigurationError before anything touches the network
        client = build_client(settings)
        return cls(
            client,
            options=CompletionOptions(
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
            ),
            max_retries=settings.llm_max_retries,
            base_delay=settings.llm_retry_base_delay_ms / 1000.0,
            jitter=settings.llm_retry_jitter_ms / 1000.0,
            prompt_version=settings.refine_prompt_version,
        )

    @property
    def prompt_version(self) -> str:
        return f"{self.prompt['name']}:{self.prompt['version']}"

    def close(self) -> None:
        self.client.close()

    def backoff_delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt) + self._rng.uniform(0, self.jitter)

    def _wait(self, delay: float, cancel: Optional[threading.Event]) -> None:
        if self._sleep is not None:
            self._sleep(delay)
        elif cancel is not None:
            # Event.wait returns True as soon as the event is set
            if cancel.wait(delay):
                raise DispatchCancelled("cancelled during backoff")
        else:
            time.sleep(delay)

    def generate(self, idea: str, cancel: Optional[threading.Event] = None) -> str:
        system_instruction = self.prompt["system"]
        user_prompt = render_user_prompt(self.prompt, idea)
        provider = self.client.provider

        attempt = 0
        while True:
            if cancel is not None and cancel.is_set():
                raise DispatchCancelled("cancelled before upstream call")
            try:
                text = self.client.generate(system_instruction, user_prompt, self.options)
            except UpstreamError as e:
                if not e.retryable or attempt >= self.max_retries:
                    upstream_attempts.labels(provider=provider, outcome="failed").inc()
                    self._logger.error(
                        "upstream call failed",
                        extra={
                            "extra": {
                                "event": "upstream_failed",
                                "provider": provider,
                                "status": e.status,
                                "attempts": attempt + 1,
                                "error": e.message,
                            }
                        },
                    )
                    raise
                delay = self.backoff_delay(attempt)
                upstream_attempts.labels(provider=provider, outcome="retry").inc()
                self._logger.warning(
                    "retrying upstream call",
                    extra={
                        "extra": {
                            "event": "upstream_retry",
                            "provider": provider,
                            "status": e.status,
                            "attempt": attempt + 1,
                            "delay_ms": int(delay * 1000),
                        }
                    },
                )
                self._wait(delay, cancel)
                attempt += 1
                continue

            upstream_attempts.labels(provider=provider, outcome="ok").inc()
            if not text:
                raise UpstreamError(502, "Empty response from upstream model")
            return text
