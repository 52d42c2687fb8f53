"""LLM backends and the uniform token stream they produce."""

from .providers import (
    LocalProvider,
    OpenAIProvider,
    OpenRouterProvider,
    Provider,
    build_providers,
    build_request_body,
    list_models,
)
from .stream import StreamDecoder, decode_stream, sse_line

__all__ = [
    "LocalProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "Provider",
    "StreamDecoder",
    "build_providers",
    "build_request_body",
    "decode_stream",
    "list_models",
    "sse_line",
]
