"""Backend clients: one per provider, all producing the same chunk stream.

Every provider implements

    async def generate(messages, model, params, cancel=None) -> AsyncIterator[str]
    async def list_models() -> list[AIModel]

generate() validates configuration and opens the request before returning;
configuration problems and non-success responses therefore surface from the
await itself, never from inside the stream. The returned iterator yields text
in the `data: {...}` line format read by storyforge.llm.stream.

Three implementations are provided:

    LocalProvider       — OpenAI-compatible server on the user's machine
                          (LM Studio, llama.cpp, ...). Raw SSE body via httpx.
    OpenAIProvider      — hosted; openai SDK, chunks re-framed as SSE lines.
    OpenRouterProvider  — hosted aggregator; same SDK, plus top_k/min_p.

Cancellation: when the shared `cancel` event is set the stream stops yielding
and releases its connection. Callers see a short stream, not an error.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol

import httpx
import openai

from storyforge.config import Settings
from storyforge.errors import ConfigurationError, ProviderError
from storyforge.models import AIModel, PromptMessage, ProviderName, SamplingParams

from .stream import sse_line

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LENGTH = 16384
OPENAI_BASE_URL = "https://api.openai.com/v1"


# ---------------------------------------------------------------------------
# Protocol: every provider must match this shape
# ---------------------------------------------------------------------------

class Provider(Protocol):
    name: ProviderName

    async def generate(
        self,
        messages: Sequence[PromptMessage],
        model: str,
        params: SamplingParams,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]: ...

    async def list_models(self) -> list[AIModel]: ...


# ---------------------------------------------------------------------------
# Request body
# ---------------------------------------------------------------------------

def build_request_body(
    model: str,
    messages: Sequence[PromptMessage],
    params: SamplingParams,
    *,
    penalty_key: str = "frequency_penalty",
    extensions: frozenset[str] = frozenset(),
) -> dict[str, Any]:
    """Chat-completions body. Disabled (None) parameters are left out entirely.

    `penalty_key` is the backend's name for the repetition penalty.
    `extensions` lists the non-standard parameters (top_k, min_p) the backend
    accepts; others are never sent.
    """
    body: dict[str, Any] = {
        "model": model,
        "messages": [{"role": m.role, "content": m.content} for m in messages],
        "temperature": params.temperature,
        "max_tokens": params.max_tokens,
        "stream": True,
    }
    if params.top_p is not None:
        body["top_p"] = params.top_p
    if params.repetition_penalty is not None:
        body[penalty_key] = params.repetition_penalty
    for key in ("top_k", "min_p"):
        value = getattr(params, key)
        if key in extensions and value is not None:
            body[key] = value
    return body


def _bearer(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}


async def _get_json(url: str, headers: dict[str, str], timeout: float) -> Any:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(url, headers=headers)
            resp.raise_for_status()
    except httpx.ConnectError as e:
        raise ProviderError(f"Cannot connect to {url}") from e
    except httpx.HTTPStatusError as e:
        raise ProviderError(
            f"Model catalog returned HTTP {e.response.status_code}",
            status_code=e.response.status_code,
        ) from e
    except httpx.TimeoutException as e:
        raise ProviderError(f"Model catalog timed out after {timeout}s") from e
    return resp.json()


# ---------------------------------------------------------------------------
# LocalProvider: raw SSE over httpx
# ---------------------------------------------------------------------------

class LocalProvider:
    """OpenAI-compatible local server, e.g. LM Studio at http://localhost:1234/v1.

    Args:
        base_url:  Server base URL including the /v1 suffix.
        timeout:   HTTP timeout in seconds.
        transport: Optional httpx transport, used by tests.
    """

    name: ProviderName = "local"
    extensions = frozenset({"top_k", "min_p"})

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _require_url(self) -> str:
        if not self._base_url:
            raise ConfigurationError("Local API URL is not configured")
        return self._base_url

    async def generate(
        self,
        messages: Sequence[PromptMessage],
        model: str,
        params: SamplingParams,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        base_url = self._require_url()
        url = f"{base_url}/chat/completions"
        model_id = model.removeprefix("local/")
        body = build_request_body(
            model_id, messages, params,
            penalty_key="repetition_penalty", extensions=self.extensions,
        )
        logger.debug("llm call provider=local url=%s model=%s messages=%d", url, model_id, len(messages))

        client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        try:
            request = client.build_request("POST", url, json=body)
            resp = await client.send(request, stream=True)
        except httpx.ConnectError as e:
            await client.aclose()
            raise ProviderError(f"Cannot connect to local model server at {base_url}") from e
        except httpx.TimeoutException as e:
            await client.aclose()
            raise ProviderError(f"Local model server timed out after {self._timeout}s") from e
        except BaseException:
            await client.aclose()
            raise

        if resp.status_code >= 400:
            await resp.aread()
            await resp.aclose()
            await client.aclose()
            raise ProviderError(
                f"Local model server returned HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        return self._iter_body(client, resp, cancel)

    async def _iter_body(
        self,
        client: httpx.AsyncClient,
        resp: httpx.Response,
        cancel: asyncio.Event | None,
    ) -> AsyncIterator[str]:
        try:
            async for chunk in resp.aiter_text():
                if cancel is not None and cancel.is_set():
                    logger.info("local stream aborted")
                    return
                yield chunk
        except httpx.TimeoutException as e:
            raise ProviderError(f"Local model server timed out after {self._timeout}s") from e
        except httpx.TransportError as e:
            raise ProviderError(f"Connection to local model server lost: {e}") from e
        finally:
            await resp.aclose()
            await client.aclose()

    async def list_models(self) -> list[AIModel]:
        """Models reported by the server, or a single placeholder if it cannot be asked."""
        fallback = [AIModel(id="local", name="Local Model", provider="local")]
        if not self._base_url:
            return fallback
        url = f"{self._base_url}/models"
        try:
            data = await _get_json(url, {}, self._timeout)
            models = [
                AIModel(id=f"local/{m['id']}", name=m["id"], provider="local")
                for m in data["data"]
            ]
        except (ProviderError, ValueError, KeyError, TypeError) as e:
            logger.warning("Failed to fetch local models from %s: %s", url, e)
            return fallback
        logger.info("Received %d local models", len(models))
        return models


# ---------------------------------------------------------------------------
# Hosted providers: openai SDK, iterator of chunk objects
# ---------------------------------------------------------------------------

class _HostedProvider:
    name: ProviderName
    extensions: frozenset[str] = frozenset()

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 120.0,
        default_headers: dict[str, str] | None = None,
        client: Any = None,
    ) -> None:
        self._api_key = api_key or ""
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._default_headers = default_headers or {}
        self._client = client

    def _require_key(self) -> str:
        if not self._api_key:
            raise ConfigurationError(f"{self.name} API key not set")
        return self._api_key

    def _sdk(self) -> Any:
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=self._require_key(),
                base_url=self._base_url,
                timeout=self._timeout,
                default_headers=self._default_headers or None,
            )
        return self._client

    async def generate(
        self,
        messages: Sequence[PromptMessage],
        model: str,
        params: SamplingParams,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        self._require_key()
        body = build_request_body(model, messages, params, extensions=self.extensions)
        extra_body = {k: body.pop(k) for k in self.extensions if k in body}
        logger.debug("llm call provider=%s model=%s messages=%d", self.name, model, len(messages))

        try:
            stream = await self._sdk().chat.completions.create(
                **body, extra_body=extra_body or None
            )
        except openai.APIStatusError as e:
            raise ProviderError(
                f"{self.name} returned HTTP {e.status_code}: {e.message}",
                status_code=e.status_code,
            ) from e
        except openai.APITimeoutError as e:
            raise ProviderError(f"{self.name} timed out after {self._timeout}s") from e
        except openai.APIConnectionError as e:
            raise ProviderError(f"Cannot connect to {self.name}") from e
        return self._reframe(stream, cancel)

    async def _reframe(self, stream: Any, cancel: asyncio.Event | None) -> AsyncIterator[str]:
        try:
            async for chunk in stream:
                if cancel is not None and cancel.is_set():
                    logger.info("%s stream aborted", self.name)
                    return
                content = chunk.choices[0].delta.content if chunk.choices else None
                if content:
                    yield sse_line(content)
        except openai.APIError as e:
            raise ProviderError(f"{self.name} stream failed: {e}") from e
        finally:
            await stream.close()

    async def _catalog(self) -> list[dict[str, Any]]:
        headers = _bearer(self._require_key())
        data = await _get_json(f"{self._base_url}/models", headers, self._timeout)
        try:
            return list(data["data"])
        except (KeyError, TypeError) as e:
            raise ProviderError(f"Unexpected model catalog format from {self.name}") from e


class OpenAIProvider(_HostedProvider):
    name: ProviderName = "openai"

    def __init__(self, api_key: str, timeout: float = 120.0, client: Any = None) -> None:
        super().__init__(api_key, OPENAI_BASE_URL, timeout=timeout, client=client)

    async def list_models(self) -> list[AIModel]:
        return [
            AIModel(
                id=m["id"],
                name=m["id"],
                provider="openai",
                context_length=m.get("context_length") or DEFAULT_CONTEXT_LENGTH,
            )
            for m in await self._catalog()
            if m.get("id", "").startswith("gpt")
        ]


class OpenRouterProvider(_HostedProvider):
    name: ProviderName = "openrouter"
    extensions = frozenset({"top_k", "min_p"})

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        referer: str = "",
        title: str = "",
        timeout: float = 120.0,
        client: Any = None,
    ) -> None:
        headers = {}
        if referer:
            headers["HTTP-Referer"] = referer
        if title:
            headers["X-Title"] = title
        super().__init__(api_key, base_url, timeout=timeout, default_headers=headers, client=client)

    async def list_models(self) -> list[AIModel]:
        return [
            AIModel(
                id=m["id"],
                name=m.get("name") or m["id"],
                provider="openrouter",
                context_length=m.get("context_length") or DEFAULT_CONTEXT_LENGTH,
            )
            for m in await self._catalog()
        ]


# ---------------------------------------------------------------------------
# Construction and model listing
# ---------------------------------------------------------------------------

def build_providers(settings: Settings) -> dict[str, Provider]:
    """One instance per backend, configured from settings."""
    return {
        "local": LocalProvider(settings.local_api_url, timeout=settings.llm_timeout),
        "openai": OpenAIProvider(settings.openai_api_key, timeout=settings.llm_timeout),
        "openrouter": OpenRouterProvider(
            settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            referer=settings.openrouter_referer,
            title=settings.openrouter_title,
            timeout=settings.llm_timeout,
        ),
    }


def get_provider(providers: dict[str, Provider], name: str) -> Provider:
    try:
        return providers[name]
    except KeyError:
        raise ConfigurationError(f"Unknown provider: {name}") from None


async def list_models(providers: dict[str, Provider], name: str) -> list[AIModel]:
    """Normalised model list for one provider."""
    models = await get_provider(providers, name).list_models()
    logger.debug("list models provider=%s count=%d", name, len(models))
    return models


def format_error(error: BaseException) -> str:
    """Single human-readable line for a generation failure."""
    if isinstance(error, (ConfigurationError, ProviderError)):
        return str(error)
    return f"Generation failed: {error.__class__.__name__}"

