"""Fill a PromptContext with the chapter data its resolvers read."""

from __future__ import annotations

import asyncio

from storyforge.collaborators import ChapterSource
from storyforge.models import DEFAULT_POV, Chapter, PromptContext


async def _no_chapter() -> Chapter | None:
    return None


async def build_context(context: PromptContext, chapters: ChapterSource) -> PromptContext:
    """Return a copy of `context` with chapters, current chapter and POV filled in.

    The story's chapter list and the current chapter are fetched concurrently.
    Values the caller already set on the context win over fetched ones.
    """
    if not context.story_id:
        return context

    story_chapters, current = await asyncio.gather(
        chapters.get_chapters_for_story(context.story_id),
        chapters.get_chapter(context.chapter_id) if context.chapter_id else _no_chapter(),
    )
    current = context.current_chapter or current

    return context.model_copy(update={
        "chapters": context.chapters or story_chapters,
        "current_chapter": current,
        "pov_character": context.pov_character or (current.pov_character if current else None),
        "pov_type": context.pov_type or (current.pov_type if current else None) or DEFAULT_POV,
    })
