"""Global / series / story inheritance for lorebook entries."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from storyforge.collaborators import LorebookSource
from storyforge.models import LorebookEntry

logger = logging.getLogger(__name__)


def merge_for_story(
    story_id: str,
    series_id: str | None,
    global_entries: Iterable[LorebookEntry],
    series_entries: Iterable[LorebookEntry],
    story_entries: Iterable[LorebookEntry],
) -> list[LorebookEntry]:
    """Combine the three tiers into the collection visible to one story.

    Global entries pass unfiltered. Series entries are kept only when the story
    belongs to a series and the entry is scoped to it; without a series they
    are dropped silently. Story entries must be scoped to `story_id`. The tiers
    never share ids, so nothing is de-duplicated, and each entry keeps its
    `level` so callers can tell which ones are editable here.
    """
    merged = list(global_entries)
    if series_id:
        merged.extend(e for e in series_entries if e.scope_id == series_id)
    merged.extend(e for e in story_entries if e.scope_id == story_id)
    return merged


async def load_story_lorebook(
    source: LorebookSource, story_id: str, series_id: str | None = None
) -> list[LorebookEntry]:
    """Fetch all three tiers concurrently and merge them for `story_id`."""
    reads = [
        source.get_lorebook_entries("global", None),
        source.get_lorebook_entries("story", story_id),
    ]
    if series_id:
        reads.append(source.get_lorebook_entries("series", series_id))
    results = await asyncio.gather(*reads)
    global_entries, story_entries = results[0], results[1]
    series_entries = results[2] if series_id else []
    logger.debug(
        "lorebook load story=%s series=%s global=%d series=%d story=%d",
        story_id, series_id, len(global_entries), len(series_entries), len(story_entries),
    )
    return merge_for_story(story_id, series_id, global_entries, series_entries, story_entries)
