"""Judgment capability: the completion backend the engine consults.

The engine only ever asks two questions, each answered by one short JSON
object:

    "compatibility"    {"score": 0-10, "reasoning": "...", "shouldUse": bool}
    "quote_selection"  {"selection": <1-based candidate number>}

so an LLM is any callable matching

    async def __call__(self, stage: str, prompt: str) -> str: ...

HttpLLM sends each stage with its own completion budget and temperature
(STAGE_SAMPLING). OfflineLLM answers both stages with the neutral outcome
so the engine runs with no backend at all. The retrieval-assisted path takes
a CorpusAssistant instead:

    async def query(self, assistant_id: str, query: str) -> str: ...

Tests use StubLLM / StubAssistant from conftest.py.
"""

from __future__ import annotations

import logging
from typing import Literal, NamedTuple, Protocol

import httpx

logger = logging.getLogger(__name__)


class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


class CorpusAssistant(Protocol):
    """A retrieval service that has the novel attached, keyed by assistant id."""

    async def query(self, assistant_id: str, query: str) -> str: ...


class LLMError(RuntimeError):
    """The backend produced no completion for a stage."""

    def __init__(self, message: str, stage: str = "") -> None:
        super().__init__(f"{stage}: {message}" if stage else message)
        self.stage = stage


class Sampling(NamedTuple):
    max_tokens: int
    temperature: float


# Both judgment stages want a short, near-deterministic JSON answer.
STAGE_SAMPLING: dict[str, Sampling] = {
    "compatibility": Sampling(max_tokens=160, temperature=0.1),
    "quote_selection": Sampling(max_tokens=48, temperature=0.0),
}
DEFAULT_SAMPLING = Sampling(max_tokens=300, temperature=0.2)

ProviderFormat = Literal["koboldcpp", "openai"]


class _Provider(NamedTuple):
    path: str
    length_field: str
    results_field: str


PROVIDERS: dict[str, _Provider] = {
    "koboldcpp": _Provider("/api/v1/generate", "max_length", "results"),
    "openai": _Provider("/v1/completions", "max_tokens", "choices"),
}


class HttpLLM:
    """Completion client for KoboldCpp or OpenAI-compatible servers.

    Args:
        provider_url:    Server root, e.g. "http://localhost:5001".
        api_key:         Sent as a bearer token when non-empty.
        provider_format: Key into PROVIDERS.
        model:           Model name; only OpenAI-compatible servers use it.
        timeout:         Transport timeout. The engine's per-stage timeouts
                         are shorter and cancel the request first.
        sampling:        Per-stage overrides merged over STAGE_SAMPLING.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 60.0,
        sampling: dict[str, Sampling] | None = None,
    ) -> None:
        if provider_format not in PROVIDERS:
            raise ValueError(f"Unknown provider format: {provider_format!r}")
        self._provider = PROVIDERS[provider_format]
        self.url = provider_url.rstrip("/") + self._provider.path
        self._model = model if provider_format == "openai" else ""
        self._timeout = timeout
        self._sampling = {**STAGE_SAMPLING, **(sampling or {})}
        self._auth = {"Authorization": f"Bearer {api_key}"} if api_key else {}

    def sampling_for(self, stage: str) -> Sampling:
        return self._sampling.get(stage, DEFAULT_SAMPLING)

    def request_body(self, stage: str, prompt: str) -> dict:
        sampling = self.sampling_for(stage)
        body: dict = {
            "prompt": prompt,
            self._provider.length_field: sampling.max_tokens,
            "temperature": sampling.temperature,
        }
        if self._model:
            body["model"] = self._model
        return body

    def completion_text(self, stage: str, data: object) -> str:
        field = self._provider.results_field
        entries = data.get(field) if isinstance(data, dict) else None
        if not entries or not isinstance(entries[0], dict) or "text" not in entries[0]:
            raise LLMError(f"response has no {field}[0].text", stage)
        return entries[0]["text"].strip()

    async def __call__(self, stage: str, prompt: str) -> str:
        body = self.request_body(stage, prompt)
        logger.debug("llm %s -> %s (%d chars)", stage, self.url, len(prompt))
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self.url,
                    json=body,
                    headers={"Content-Type": "application/json", **self._auth},
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.ConnectError as e:
            raise LLMError(f"cannot connect to {self.url}", stage) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"no answer within {self._timeout}s", stage) from e
        except httpx.HTTPStatusError as e:
            raise LLMError(f"HTTP {e.response.status_code} from {self.url}", stage) from e
        except ValueError as e:
            raise LLMError("response body is not JSON", stage) from e

        text = self.completion_text(stage, data)
        logger.debug("llm %s <- %d chars", stage, len(text))
        return text


class OfflineLLM:
    """Neutral judgments without a backend: every passage scores 5 and the
    first candidate is chosen."""

    ANSWERS = {
        "compatibility": '{"score": 5, "reasoning": "offline", "shouldUse": true}',
        "quote_selection": '{"selection": 1}',
    }

    async def __call__(self, stage: str, prompt: str) -> str:
        if stage not in self.ANSWERS:
            raise LLMError("no offline answer", stage)
        return self.ANSWERS[stage]
