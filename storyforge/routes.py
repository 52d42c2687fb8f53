"""FastAPI endpoints under /api.

Endpoint groups: health, model listing, prompt preview, generation (SSE) and
stop. Persistence endpoints live with the storage service, not here; every
request carries the lorebook entries and context it needs.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from storyforge.errors import ConfigurationError, ProviderError
from storyforge.llm.providers import format_error, list_models
from storyforge.models import LorebookEntry, Prompt, PromptContext, ProviderName
from storyforge.prompts.assembler import assemble

logger = logging.getLogger(__name__)

router = APIRouter()


class PreviewBody(BaseModel):
    prompt: Prompt
    context: PromptContext = Field(default_factory=PromptContext)
    entries: list[LorebookEntry] = Field(default_factory=list)


class GenerateBody(PreviewBody):
    surface: str = "default"
    provider: ProviderName
    model: str


def sse_event(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/models/{provider}")
async def get_models(provider: str, request: Request):
    """Normalised model list for one provider."""
    try:
        models = await list_models(request.app.state.providers, provider)
    except ConfigurationError as e:
        raise HTTPException(400, str(e))
    except ProviderError as e:
        raise HTTPException(502, str(e))
    return [m.model_dump() for m in models]


@router.post("/prompts/preview")
async def preview_prompt(body: PreviewBody, request: Request):
    """Assembled messages for a prompt, without calling a model."""
    messages = assemble(body.prompt, body.context, body.entries, request.app.state.registry)
    return [m.model_dump() for m in messages]


@router.post("/generate")
async def generate(body: GenerateBody, request: Request):
    """Stream a generation as server-sent events.

    Emits {"token": ...} per token, then {"done": true, "text", "state"} or
    {"error": ...}. Disconnecting stops this request's generation and no other.
    """
    orchestrator = request.app.state.surfaces.get(body.surface)
    queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

    async def run() -> None:
        try:
            result = await orchestrator.start(
                body.prompt, body.context, body.provider, body.model,
                entries=body.entries,
                on_token=lambda text: queue.put_nowait({"token": text}),
            )
            queue.put_nowait({"done": True, "text": result.text, "state": result.state.value})
        except Exception as e:
            if not isinstance(e, (ConfigurationError, ProviderError)):
                logger.exception("generation failed on surface %s", body.surface)
            queue.put_nowait({"error": format_error(e)})
        finally:
            queue.put_nowait(None)

    async def events():
        task = asyncio.create_task(run())
        try:
            while (item := await queue.get()) is not None:
                yield sse_event(item)
        finally:
            if not task.done():
                # cancelling this request's start() ends only the session it opened
                task.cancel()
                await asyncio.wait({task})

    return StreamingResponse(events(), media_type="text/event-stream")


@router.post("/generate/{surface}/stop")
async def stop_generation(surface: str, request: Request):
    """Stop the surface's in-flight generation. Safe to call at any time."""
    await request.app.state.surfaces.stop(surface)
    return {"ok": True}
