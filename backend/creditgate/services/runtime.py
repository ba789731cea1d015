from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from creditgate.core.errors import ChatErrorType
from creditgate.core.settings import settings


logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Failure reported by (or on the way to) a model provider."""

    def __init__(
        self,
        message: str,
        *,
        error_type: str = ChatErrorType.PROVIDER_BIZ_ERROR,
        status: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.status = status
        self.body = body


class UnsupportedOperationError(ProviderError):
    pass


@dataclass
class ChatResult:
    content: str
    model: str | None = None
    # Keys follow credit_calculator.calculate_text_credits_from_usage
    usage: dict[str, int] | None = None
    finish_reason: str | None = None


@dataclass
class ThreeDResult:
    model_url: str
    preview_url: str | None = None
    format: str | None = None
    job_id: str | None = None
    usage: dict[str, Any] | None = field(default=None)


class ModelRuntime:
    """A provider backend. Subclasses implement the operations the provider supports."""

    provider: str = ""

    async def chat(self, payload: dict[str, Any], *, user: str | None = None) -> ChatResult:
        raise UnsupportedOperationError(f"Provider {self.provider} does not support chat")

    async def text_to_image(self, payload: dict[str, Any]) -> list[str]:
        raise UnsupportedOperationError(f"Provider {self.provider} does not support image generation")

    async def create_3d_model(self, payload: dict[str, Any]) -> ThreeDResult:
        raise UnsupportedOperationError(f"Provider {self.provider} does not support 3D generation")


def usage_from_openai(usage: Any) -> dict[str, int] | None:
    if usage is None:
        return None
    prompt_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
    completion_tokens = int(getattr(usage, "completion_tokens", 0) or 0)
    total_tokens = int(getattr(usage, "total_tokens", 0) or (prompt_tokens + completion_tokens))
    details = getattr(usage, "prompt_tokens_details", None)
    cached = int(getattr(details, "cached_tokens", 0) or 0) if details is not None else 0
    return {
        "total_input_tokens": prompt_tokens,
        "input_cached_tokens": cached,
        "total_output_tokens": completion_tokens,
        "total_tokens": total_tokens,
    }


def _provider_error(provider: str, e: Exception) -> ProviderError:
    if isinstance(e, APIStatusError):
        status = int(getattr(e, "status_code", 0) or 0) or None
        error_type = ChatErrorType.INVALID_PROVIDER_API_KEY if status == 401 else ChatErrorType.PROVIDER_BIZ_ERROR
        return ProviderError(str(e), error_type=error_type, status=status, body=getattr(e, "body", None))
    if isinstance(e, APITimeoutError):
        return ProviderError(f"{provider} request timed out", status=None)
    return ProviderError(f"{provider} connection failed: {e}", status=None)


class OpenAICompatibleRuntime(ModelRuntime):
    def __init__(self, provider: str, *, api_key: str | None, base_url: str | None = None) -> None:
        if not api_key:
            raise ProviderError(
                f"No API key configured for provider {provider}",
                error_type=ChatErrorType.INVALID_PROVIDER_API_KEY,
                status=401,
            )
        self.provider = provider
        kwargs: dict[str, Any] = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        kwargs["http_client"] = httpx.AsyncClient(
            limits=httpx.Limits(max_connections=200, max_keepalive_connections=50),
            timeout=httpx.Timeout(settings.provider_timeout_s),
        )
        self._client = AsyncOpenAI(**kwargs)

    async def chat(self, payload: dict[str, Any], *, user: str | None = None) -> ChatResult:
        kwargs: dict[str, Any] = {
            "model": payload["model"],
            "messages": payload.get("messages") or [],
        }
        for key in ("max_tokens", "temperature", "top_p", "presence_penalty", "frequency_penalty"):
            if payload.get(key) is not None:
                kwargs[key] = payload[key]
        if user:
            kwargs["user"] = user

        try:
            resp = await self._client.chat.completions.create(**kwargs)
        except (APIStatusError, APIConnectionError, APITimeoutError) as e:
            raise _provider_error(self.provider, e) from e

        choice = resp.choices[0] if resp.choices else None
        content = (choice.message.content if choice and choice.message else "") or ""
        return ChatResult(
            content=content,
            model=getattr(resp, "model", None),
            usage=usage_from_openai(getattr(resp, "usage", None)),
            finish_reason=getattr(choice, "finish_reason", None) if choice else None,
        )

    async def text_to_image(self, payload: dict[str, Any]) -> list[str]:
        kwargs: dict[str, Any] = {
            "model": payload["model"],
            "prompt": payload["prompt"],
            "n": int(payload.get("n") or 1),
        }
        if payload.get("size"):
            kwargs["size"] = payload["size"]

        try:
            resp = await self._client.images.generate(**kwargs)
        except (APIStatusError, APIConnectionError, APITimeoutError) as e:
            raise _provider_error(self.provider, e) from e

        images: list[str] = []
        for item in resp.data or []:
            url = getattr(item, "url", None)
            if url:
                images.append(url)
            elif getattr(item, "b64_json", None):
                images.append(f"data:image/png;base64,{item.b64_json}")
        return images


_RUNTIMES: dict[str, ModelRuntime] = {}
_default_runtime: OpenAICompatibleRuntime | None = None


def register_runtime(provider: str, runtime: ModelRuntime) -> None:
    _RUNTIMES[provider] = runtime


def unregister_runtime(provider: str) -> None:
    _RUNTIMES.pop(provider, None)


def get_runtime(provider: str) -> ModelRuntime:
    """Registered runtime for `provider`, else the shared OpenAI-compatible client from settings.

    Unregistered provider names all map to one default runtime, so the registry only grows
    through `register_runtime`.
    """
    global _default_runtime
    runtime = _RUNTIMES.get(provider)
    if runtime is not None:
        return runtime
    if _default_runtime is None:
        _default_runtime = OpenAICompatibleRuntime(
            "openai-compatible", api_key=settings.llm_api_key, base_url=settings.llm_base_url
        )
        logger.info("runtime.default.created base_url=%s", settings.llm_base_url or "")
    return _default_runtime
