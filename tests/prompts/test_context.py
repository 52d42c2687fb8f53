"""Tests for storyforge.prompts.context — filling a context from the chapter store."""

import asyncio

from storyforge.models import Chapter, PromptContext
from storyforge.prompts import build_context


class FakeChapters:
    def __init__(self, chapters: list[Chapter]) -> None:
        self.chapters = {c.id: c for c in chapters}
        self.in_flight = 0
        self.peak = 0

    async def _enter(self) -> None:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1

    async def get_chapters_for_story(self, story_id: str) -> list[Chapter]:
        await self._enter()
        return [c for c in self.chapters.values() if c.story_id == story_id]

    async def get_chapter(self, chapter_id: str) -> Chapter | None:
        await self._enter()
        return self.chapters.get(chapter_id)


def _store() -> FakeChapters:
    return FakeChapters([
        Chapter(id="c1", story_id="s1", order=1),
        Chapter(id="c2", story_id="s1", order=2, pov_type="First Person", pov_character="Alice"),
    ])


async def test_fills_chapters_and_pov() -> None:
    store = _store()
    context = await build_context(PromptContext(story_id="s1", chapter_id="c2"), store)
    assert [c.id for c in context.chapters] == ["c1", "c2"]
    assert context.current_chapter.id == "c2"
    assert context.pov_type == "First Person"
    assert context.pov_character == "Alice"


async def test_reads_run_concurrently() -> None:
    store = _store()
    await build_context(PromptContext(story_id="s1", chapter_id="c2"), store)
    assert store.peak == 2


async def test_default_pov_without_chapter() -> None:
    context = await build_context(PromptContext(story_id="s1"), _store())
    assert context.current_chapter is None
    assert context.pov_type == "Third Person Omniscient"


async def test_caller_values_win() -> None:
    original = PromptContext(story_id="s1", chapter_id="c2", pov_type="Third Person Limited")
    context = await build_context(original, _store())
    assert context.pov_type == "Third Person Limited"
    assert original.chapters == []


async def test_no_story_returns_context_unchanged() -> None:
    original = PromptContext(chapter_id="c2")
    assert await build_context(original, _store()) is original
