"""Tests for storyforge.llm.stream — line decoding of the token stream."""

import asyncio

import pytest

from storyforge.errors import ProviderError
from storyforge.llm.stream import StreamDecoder, decode_stream, sse_line
from storyforge.models import TokenEvent


async def _chunks(*chunks):
    for chunk in chunks:
        yield chunk


async def _collect(chunks, cancel=None) -> list[TokenEvent]:
    return [e async for e in decode_stream(chunks, cancel)]


class TestStreamDecoder:
    def test_line_split_across_chunks(self) -> None:
        decoder = StreamDecoder()
        assert decoder.feed('data: {"choices":[{"delta":{"con') == []
        assert decoder.feed('tent":"hi"}}]}\n\n') == [TokenEvent.token("hi")]

    def test_done_sentinel_completes_once(self) -> None:
        decoder = StreamDecoder()
        assert decoder.feed("data: [DONE]\n\n") == [TokenEvent.complete()]
        assert decoder.feed(sse_line("late")) == []
        assert decoder.finish() == []
        assert decoder.done

    def test_events_after_done_in_same_chunk_dropped(self) -> None:
        decoder = StreamDecoder()
        events = decoder.feed(sse_line("a") + "data: [DONE]\n\n" + sse_line("b"))
        assert events == [TokenEvent.token("a"), TokenEvent.complete()]

    def test_malformed_line_skipped(self) -> None:
        decoder = StreamDecoder()
        events = decoder.feed("data: {not json}\n" + sse_line("ok"))
        assert events == [TokenEvent.token("ok")]

    def test_non_data_lines_ignored(self) -> None:
        decoder = StreamDecoder()
        assert decoder.feed(": keep-alive\nevent: ping\n\n") == []

    def test_empty_delta_ignored(self) -> None:
        decoder = StreamDecoder()
        assert decoder.feed('data: {"choices":[{"delta":{"role":"assistant"}}]}\n') == []

    def test_crlf_lines(self) -> None:
        decoder = StreamDecoder()
        line = sse_line("x").replace("\n", "\r\n")
        assert decoder.feed(line) == [TokenEvent.token("x")]

    def test_finish_flushes_unterminated_line(self) -> None:
        decoder = StreamDecoder()
        assert decoder.feed(sse_line("x").rstrip("\n")) == []
        assert decoder.finish() == [TokenEvent.token("x"), TokenEvent.complete()]


class TestDecodeStream:
    async def test_tokens_then_complete(self) -> None:
        events = await _collect(_chunks(sse_line("Once "), sse_line("upon"), "data: [DONE]\n\n"))
        assert events == [TokenEvent.token("Once "), TokenEvent.token("upon"), TokenEvent.complete()]

    async def test_complete_at_end_without_sentinel(self) -> None:
        events = await _collect(_chunks(sse_line("a")))
        assert events == [TokenEvent.token("a"), TokenEvent.complete()]

    async def test_bytes_split_inside_character(self) -> None:
        raw = sse_line("café").encode()
        cut = raw.index("é".encode()) + 1
        events = await _collect(_chunks(raw[:cut], raw[cut:]))
        assert events == [TokenEvent.token("café"), TokenEvent.complete()]

    async def test_cancel_completes_with_partial_output(self) -> None:
        cancel = asyncio.Event()

        async def source():
            yield sse_line("a")
            cancel.set()
            yield sse_line("b")

        events = await _collect(source(), cancel)
        assert events == [TokenEvent.token("a"), TokenEvent.complete()]

    async def test_source_closed_on_early_exit(self) -> None:
        closed = []

        async def source():
            try:
                yield "data: [DONE]\n\n"
                yield sse_line("never")
            finally:
                closed.append(True)

        events = await _collect(source())
        assert events == [TokenEvent.complete()]
        assert closed == [True]

    async def test_source_failure_raises_instead_of_error_event(self) -> None:
        seen: list[TokenEvent] = []

        async def source():
            yield sse_line("a")
            raise ProviderError("connection lost")

        with pytest.raises(ProviderError, match="connection lost"):
            async for event in decode_stream(source()):
                seen.append(event)
        assert seen == [TokenEvent.token("a")]
