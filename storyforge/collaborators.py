"""Read interfaces of the persistence layer.

The core never fetches on its own initiative beyond these calls; all entry and
chapter data reaches resolvers pre-fetched inside PromptContext.
"""

from __future__ import annotations

from typing import Protocol

from storyforge.models import Chapter, Level, LorebookEntry


class LorebookSource(Protocol):
    async def get_lorebook_entries(
        self, level: Level, scope_id: str | None
    ) -> list[LorebookEntry]: ...


class ChapterSource(Protocol):
    async def get_chapters_for_story(self, story_id: str) -> list[Chapter]: ...

    async def get_chapter(self, chapter_id: str) -> Chapter | None: ...
