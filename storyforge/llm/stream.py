"""Decode the uniform `data: {...}` line stream into token events.

Every provider hands over the same shape: text chunks that concatenate into
lines of the form

    data: {"choices": [{"delta": {"content": "..."}}]}
    data: [DONE]

Chunk boundaries are arbitrary, so a line may arrive in pieces. Lines that are
not `data:` lines, or whose payload does not parse, are skipped one at a time
without failing the stream.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator

from storyforge.models import TokenEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def sse_line(content: str) -> str:
    """Frame one delta as a stream line, the way the decoder expects it."""
    payload = {"choices": [{"delta": {"content": content}}]}
    return f"{DATA_PREFIX}{json.dumps(payload, ensure_ascii=False)}\n\n"


class StreamDecoder:
    """Incremental line decoder. Feed chunks, collect events.

    After the terminator (or finish()) the decoder is done and ignores any
    further input.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.done = False

    def feed(self, chunk: str) -> list[TokenEvent]:
        if self.done:
            return []
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def finish(self) -> list[TokenEvent]:
        """End of input. Flushes a trailing unterminated line, then completes."""
        if self.done:
            return []
        tail, self._buffer = self._buffer, ""
        events = self._decode_lines([tail]) if tail else []
        if not self.done:
            self.done = True
            events.append(TokenEvent.complete())
        return events

    def _decode_lines(self, lines: list[str]) -> list[TokenEvent]:
        events: list[TokenEvent] = []
        for line in lines:
            event = self._decode_line(line)
            if event is None:
                continue
            events.append(event)
            if event.kind == "complete":
                self.done = True
                self._buffer = ""
                break
        return events

    def _decode_line(self, line: str) -> TokenEvent | None:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            return TokenEvent.complete()
        try:
            text = json.loads(payload)["choices"][0]["delta"].get("content")
        except (ValueError, KeyError, IndexError, TypeError, AttributeError):
            logger.debug("skipping unparseable stream line: %r", line[:200])
            return None
        if not text or not isinstance(text, str):
            return None
        return TokenEvent.token(text)


async def decode_stream(
    chunks: AsyncIterable[str | bytes],
    cancel: asyncio.Event | None = None,
) -> AsyncIterator[TokenEvent]:
    """Yield token events from an async chunk source until completion.

    Always ends with exactly one `complete` event, including when `cancel` is
    set mid-read; cancellation is a normal end of stream. Byte chunks are
    decoded as UTF-8 with multi-byte characters allowed to straddle chunks.
    An exception from the chunk source propagates unchanged; no `error` event
    is emitted for it.
    """
    decoder = StreamDecoder()
    utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        async for chunk in chunks:
            if cancel is not None and cancel.is_set():
                logger.info("stream cancelled, completing with partial output")
                break
            text = utf8.decode(chunk) if isinstance(chunk, bytes) else chunk
            for event in decoder.feed(text):
                yield event
            if decoder.done:
                return
        for event in decoder.finish():
            yield event
    finally:
        await close_stream(chunks)


async def close_stream(chunks: AsyncIterable) -> None:
    """Close an async chunk source early, releasing its connection if it holds one."""
    aclose = getattr(chunks, "aclose", None)
    if aclose is not None:
        await aclose()
