"""Generation orchestrator — one cancellable generation per editor surface.

Session flow:
  1. start() aborts any session still in flight, including one opened by an
     overlapping start(), and opens a new one (Requesting).
  2. The prompt template is assembled against the caller's PromptContext.
  3. The provider call is issued; the first chunk moves the session to Streaming.
  4. Decoded tokens are accumulated and pushed to the caller's token sink.
  5. The stream completes (Completed), is stopped (Completed, partial text
     kept), is superseded by a newer start() (Aborted, partial text kept), or
     fails (Errored, partial text discarded, exception re-raised).
  6. The orchestrator returns to Idle.

Cancellation is a single asyncio.Event per session, shared by the provider
transport and the decode loop. stop() sets it and cancels the session task so
a read blocked on the network is interrupted as well. Once a session has
reached a terminal state its on_complete callback is never interrupted, and
cancelling the caller of start() stops only the session that call opened.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from storyforge.llm.providers import Provider, get_provider
from storyforge.llm.stream import close_stream, decode_stream
from storyforge.models import LorebookEntry, Prompt, PromptContext
from storyforge.prompts.assembler import assemble
from storyforge.prompts.resolvers import ResolverRegistry, default_registry

logger = logging.getLogger(__name__)

Sink = Callable[[str], Any]


class SessionState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ERRORED = "errored"


TERMINAL_STATES = {SessionState.COMPLETED, SessionState.ABORTED, SessionState.ERRORED}


@dataclass
class GenerationSession:
    """Ephemeral state of one generation. Never persisted."""

    id: int
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    state: SessionState = SessionState.REQUESTING
    superseded: bool = False
    parts: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.parts)

    def advance(self, state: SessionState) -> None:
        if self.state in TERMINAL_STATES:
            return
        logger.debug("session %d %s -> %s", self.id, self.state.value, state.value)
        self.state = state


@dataclass
class GenerationResult:
    text: str
    state: SessionState


async def _notify(sink: Sink | None, text: str) -> None:
    if sink is None:
        return
    result = sink(text)
    if inspect.isawaitable(result):
        await result


class GenerationOrchestrator:
    """Runs generations for one surface, never more than one at a time.

    Construct one per editor or chat surface and keep a reference to it;
    there is no shared instance.
    """

    def __init__(
        self,
        providers: Mapping[str, Provider],
        registry: ResolverRegistry | None = None,
    ) -> None:
        self._providers = providers
        self._registry = registry or default_registry()
        self._session: GenerationSession | None = None
        self._task: asyncio.Task | None = None
        self._next_id = 0

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session is not None else SessionState.IDLE

    @property
    def session(self) -> GenerationSession | None:
        return self._session

    async def start(
        self,
        prompt: Prompt,
        context: PromptContext,
        provider: str,
        model: str,
        *,
        entries: Sequence[LorebookEntry] = (),
        on_token: Sink | None = None,
        on_complete: Sink | None = None,
        deadline: float | None = None,
    ) -> GenerationResult:
        """Generate from `prompt` and return once the session has ended.

        `on_token` is called once per token, `on_complete` once with the full
        text unless the session errors. `deadline` (seconds) stops the session
        the same way stop() does. Must not be called from inside a token sink.
        """
        # re-checked after every wait: another start() may have taken the slot meanwhile
        while self._task is not None and not self._task.done():
            if self._task is asyncio.current_task():
                raise RuntimeError("start() called from inside a running generation")
            logger.info("aborting session %d before starting a new one", self._session.id)
            self._session.superseded = True
            await self._cancel(self._session, self._task)

        self._next_id += 1
        session = GenerationSession(id=self._next_id)
        task = asyncio.create_task(
            self._run(session, prompt, context, entries, provider, model, on_token, on_complete)
        )
        self._session, self._task = session, task

        timer = None
        if deadline is not None:
            timer = asyncio.get_running_loop().call_later(deadline, self._cancel_nowait, session, task)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                # the caller itself was cancelled; the session goes down with it
                self._cancel_nowait(session, task)
                await asyncio.wait({task})
                raise
            # stopped before the task got to run
            session.advance(SessionState.ABORTED if session.superseded else SessionState.COMPLETED)
            return GenerationResult(text=session.text, state=session.state)
        finally:
            if timer is not None:
                timer.cancel()
            if self._session is session:
                self._session, self._task = None, None

    async def stop(self) -> None:
        """Stop the in-flight session; it resolves as Completed. No-op when idle."""
        session, task = self._session, self._task
        if session is None or task is None or task.done():
            return
        await self._cancel(session, task)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cancel_nowait(self, session: GenerationSession, task: asyncio.Task) -> None:
        session.cancel.set()
        if session.state in TERMINAL_STATES:
            # finished streaming; let on_complete run to the end
            return
        if not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _cancel(self, session: GenerationSession, task: asyncio.Task) -> None:
        self._cancel_nowait(session, task)
        if task is asyncio.current_task():
            # called from a token sink; the decode loop sees the event on the next chunk
            return
        await asyncio.wait({task})

    async def _run(
        self,
        session: GenerationSession,
        prompt: Prompt,
        context: PromptContext,
        entries: Sequence[LorebookEntry],
        provider_name: str,
        model: str,
        on_token: Sink | None,
        on_complete: Sink | None,
    ) -> GenerationResult:
        try:
            provider = get_provider(self._providers, provider_name)
            messages = assemble(prompt, context, entries, self._registry)
            chunks = await provider.generate(messages, model, prompt.sampling(), session.cancel)
            async for event in decode_stream(self._track(session, chunks), session.cancel):
                if event.kind == "token":
                    session.parts.append(event.text)
                    await _notify(on_token, event.text)
        except asyncio.CancelledError:
            if not session.cancel.is_set():
                raise
            logger.info("session %d stopped", session.id)
        except Exception as e:
            if not session.cancel.is_set():
                session.advance(SessionState.ERRORED)
                session.parts.clear()
                logger.warning("session %d failed: %s", session.id, e)
                raise
            logger.info("session %d stopped (%s while cancelling)", session.id, e.__class__.__name__)

        session.advance(SessionState.ABORTED if session.superseded else SessionState.COMPLETED)
        text = session.text
        await _notify(on_complete, text)
        return GenerationResult(text=text, state=session.state)

    @staticmethod
    async def _track(session: GenerationSession, chunks: AsyncIterable[str]) -> AsyncIterator[str]:
        try:
            async for chunk in chunks:
                if session.state is SessionState.REQUESTING:
                    session.advance(SessionState.STREAMING)
                yield chunk
        finally:
            await close_stream(chunks)
