"""Named resolvers that turn a PromptContext into prompt text fragments.

A resolver is a plain function

    def resolver(context: PromptContext, entries: Sequence[LorebookEntry], arg: str | None) -> str

`entries` is the story's merged lorebook, passed explicitly on every call.
`arg` is the optional text after the colon in `{{name:arg}}`.

Resolvers never raise on a context that lacks what they need; they return
their empty value instead so prompt assembly keeps going.

Two importance scales are in use and both are intentional:

    matched-chapter-entries / matched-scenebeat-entries
        ascending over {major: 0, minor: 1, background: 2}
    scene-beat-aggregate
        descending over {major: 3, minor: 2, background: 1}

Both put major entries first. They feed different prompt types and are kept
separate so neither ordering changes when the other is touched.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence

from storyforge.models import DEFAULT_POV, Chapter, LorebookEntry, PromptContext

from .formatting import format_entries

Resolver = Callable[[PromptContext, Sequence[LorebookEntry], str | None], str]

MATCHED_RANK = {"major": 0, "minor": 1, "background": 2}
AGGREGATE_RANK = {"major": 3, "minor": 2, "background": 1}

NO_ENTRIES_TEXT = "No lorebook entries are available for this prompt."
NO_HISTORY_TEXT = "No previous conversation history."
NO_USER_INPUT_TEXT = "No specific question or topic provided."
NO_OUTLINE_TEXT = "No chapter outline is available for this prompt."
NO_BRAINSTORM_CONTEXT_TEXT = (
    "No story context is available for this query. "
    "Feel free to ask about anything related to writing or storytelling in general."
)

DEFAULT_PREVIOUS_WORDS = 1000
_NEWLINE_TOKEN = "§NEWLINE§"


class ResolverRegistry:
    """Name -> resolver lookup used by the prompt assembler."""

    def __init__(self, resolvers: dict[str, Resolver] | None = None) -> None:
        self._resolvers: dict[str, Resolver] = dict(resolvers or {})

    def register(self, name: str, resolver: Resolver | None = None):
        """Add a resolver; usable directly or as a decorator."""
        if resolver is not None:
            self._resolvers[name] = resolver
            return resolver

        def decorator(fn: Resolver) -> Resolver:
            self._resolvers[name] = fn
            return fn
        return decorator

    def __contains__(self, name: str) -> bool:
        return name in self._resolvers

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._resolvers))

    def resolve(
        self,
        name: str,
        context: PromptContext,
        entries: Sequence[LorebookEntry],
        arg: str | None = None,
    ) -> str | None:
        """Run the named resolver. Returns None when no such resolver exists."""
        resolver = self._resolvers.get(name)
        if resolver is None:
            return None
        return resolver(context, entries, arg)


# ---------------------------------------------------------------------------
# Lorebook: matched entries
# ---------------------------------------------------------------------------

def _ranked_matches(matched: Sequence[LorebookEntry]) -> str:
    enabled = [e for e in matched if not e.disabled]
    if not enabled:
        return ""
    enabled.sort(key=lambda e: MATCHED_RANK[e.importance])
    return format_entries(enabled)


def matched_chapter_entries(context: PromptContext, entries, arg=None) -> str:
    return _ranked_matches(context.chapter_matched_entries)


def matched_scenebeat_entries(context: PromptContext, entries, arg=None) -> str:
    return _ranked_matches(context.scene_beat_matched_entries)


def scene_beat_aggregate(context: PromptContext, entries, arg=None) -> str:
    """Union of the sources enabled for a scene beat, major entries first.

    Duplicate ids keep the last one seen, in the order chapter matches,
    scene-beat matches, custom items. Without scene-beat flags the legacy
    `matched_entries` set is used as-is.
    """
    unique: dict[str, LorebookEntry] = {}
    flags = context.scene_beat_context

    if flags is not None:
        if flags.use_matched_chapter:
            for entry in context.chapter_matched_entries:
                unique[entry.id] = entry
        if flags.use_matched_scene_beat:
            for entry in context.scene_beat_matched_entries:
                unique[entry.id] = entry
        if flags.use_custom_context and flags.custom_context_items:
            wanted = set(flags.custom_context_items)
            for entry in entries:
                if entry.id in wanted:
                    unique[entry.id] = entry
    elif context.matched_entries:
        for entry in context.matched_entries:
            unique[entry.id] = entry

    ranked = sorted(unique.values(), key=lambda e: AGGREGATE_RANK[e.importance], reverse=True)
    if not ranked:
        return NO_ENTRIES_TEXT
    return format_entries(ranked)


# ---------------------------------------------------------------------------
# Lorebook: by category / by name
# ---------------------------------------------------------------------------

def _visible_to_story(entry: LorebookEntry, context: PromptContext) -> bool:
    if entry.level == "global":
        return True
    if entry.level == "series":
        # without a series id on the context the entries are taken as already merged
        return context.series_id is None or entry.scope_id == context.series_id
    return entry.scope_id == context.story_id


def _story_entries(context: PromptContext, entries: Sequence[LorebookEntry]) -> list[LorebookEntry]:
    if not context.story_id:
        return []
    return [e for e in entries if not e.disabled and _visible_to_story(e, context)]


def _normalize_category(value: str) -> str:
    return value.strip().lower().replace(" ", "-")


def category_resolver(category: str) -> Resolver:
    """Build a resolver listing the story's enabled entries of one category."""

    def resolve(context: PromptContext, entries, arg=None) -> str:
        return format_entries(e for e in _story_entries(context, entries) if e.category == category)

    resolve.__name__ = f"all_{category.replace('-', '_')}"
    return resolve


def all_entries(context: PromptContext, entries, arg=None) -> str:
    visible = _story_entries(context, entries)
    if arg and arg.strip():
        wanted = _normalize_category(arg)
        visible = [e for e in visible if e.category == wanted]
    return format_entries(visible)


def character_by_name(context: PromptContext, entries, arg=None) -> str:
    if not arg or not arg.strip():
        return ""
    wanted = arg.strip().lower()
    for entry in _story_entries(context, entries):
        if entry.category == "character" and entry.name.lower() == wanted:
            return format_entries([entry])
    return ""


# ---------------------------------------------------------------------------
# Conversation and scene beat
# ---------------------------------------------------------------------------

def chat_history(context: PromptContext, entries, arg=None) -> str:
    if not context.chat_history:
        return NO_HISTORY_TEXT
    return "\n\n".join(f"{m.role.upper()}: {m.content}" for m in context.chat_history)


def user_input(context: PromptContext, entries, arg=None) -> str:
    command = (context.scene_beat_command or "").strip()
    return command or NO_USER_INPUT_TEXT


def scenebeat(context: PromptContext, entries, arg=None) -> str:
    return context.scene_beat_command or ""


# ---------------------------------------------------------------------------
# Chapters
# ---------------------------------------------------------------------------

def _chapter_summaries(chapters: Sequence[Chapter], before_order: int | None = None) -> str:
    parts = [
        f"Chapter {c.order}: {c.summary.strip()}"
        for c in sorted(chapters, key=lambda c: c.order)
        if c.summary.strip() and (before_order is None or c.order < before_order)
    ]
    return "\n\n".join(parts)


def summaries(context: PromptContext, entries, arg=None) -> str:
    if not context.chapters:
        return ""
    before = context.current_chapter.order if context.current_chapter else None
    return _chapter_summaries(context.chapters, before)


def _split_words(text: str) -> list[str]:
    return text.replace("\n", _NEWLINE_TOKEN).split()


def _join_words(words: list[str]) -> str:
    return " ".join(words).replace(_NEWLINE_TOKEN, "\n")


def _previous_chapter(context: PromptContext) -> Chapter | None:
    current = context.current_chapter
    earlier = [c for c in context.chapters if c.order < current.order and c.id != current.id]
    return max(earlier, key=lambda c: c.order, default=None)


def _pov_matches(context: PromptContext, previous: Chapter) -> bool:
    pov_type = context.pov_type or context.current_chapter.pov_type
    pov_character = context.pov_character or context.current_chapter.pov_character
    if pov_type == DEFAULT_POV and previous.pov_type == DEFAULT_POV:
        return True
    return pov_type == previous.pov_type and pov_character == previous.pov_character


def previous_words(context: PromptContext, entries, arg=None) -> str:
    """The last N words before the cursor, topped up from the previous chapter.

    The previous chapter is only used when its point of view matches the
    current one.
    """
    try:
        requested = int(arg) if arg else DEFAULT_PREVIOUS_WORDS
    except ValueError:
        requested = DEFAULT_PREVIOUS_WORDS
    if requested <= 0:
        requested = DEFAULT_PREVIOUS_WORDS

    text = context.previous_words or ""
    words = _split_words(text)
    if len(words) >= requested:
        return _join_words(words[-requested:])
    if context.current_chapter is None:
        return text

    previous = _previous_chapter(context)
    if previous is None or not _pov_matches(context, previous):
        return text

    needed = requested - len(words)
    taken = _split_words(previous.content)[-needed:]
    if not taken:
        return text
    return _join_words(taken) + "\n\n[...]\n\n" + text


def chapter_content(context: PromptContext, entries, arg=None) -> str:
    if context.current_chapter is None:
        return ""
    plain = context.additional_context.get("plain_text_content")
    if isinstance(plain, str) and plain:
        return plain
    return context.current_chapter.content


def chapter_outline(context: PromptContext, entries, arg=None) -> str:
    chapter = context.current_chapter
    if chapter is not None and chapter.outline:
        return chapter.outline
    return NO_OUTLINE_TEXT


def pov(context: PromptContext, entries, arg=None) -> str:
    chapter = context.current_chapter
    pov_type = context.pov_type or (chapter.pov_type if chapter else None) or DEFAULT_POV
    character = context.pov_character or (chapter.pov_character if chapter else None)
    if pov_type != DEFAULT_POV and character:
        return f"{pov_type} ({character})"
    return pov_type


# ---------------------------------------------------------------------------
# Brainstorm chat
# ---------------------------------------------------------------------------

def _id_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value]


def brainstorm_context(context: PromptContext, entries, arg=None) -> str:
    """Story context for the brainstorm chat, driven by the chat's selections.

    `additional_context` keys: include_full_context, selected_summaries
    (chapter ids or "all"), selected_chapter_content (chapter ids),
    selected_items (entry ids).
    """
    extra = context.additional_context

    if extra.get("include_full_context") is True:
        all_summaries = _chapter_summaries(context.chapters)
        enabled = [e for e in entries if not e.disabled]
        parts = []
        if all_summaries:
            parts.append(f"Story Chapter Summaries:\n{all_summaries}")
        if enabled:
            heading = "Story World Information:\n" if all_summaries else ""
            parts.append(heading + format_entries(enabled))
        return "\n\n".join(parts)

    by_id = {c.id: c for c in context.chapters}

    summary_ids = _id_list(extra.get("selected_summaries"))
    if "all" in summary_ids:
        selected_summaries = _chapter_summaries(context.chapters)
    else:
        selected_summaries = "\n\n".join(
            by_id[i].summary for i in summary_ids if i in by_id and by_id[i].summary
        )

    content_ids = _id_list(extra.get("selected_chapter_content"))
    selected_content = "\n\n".join(
        f"Chapter {by_id[i].order} Content:\n{by_id[i].content}"
        for i in content_ids
        if i in by_id and by_id[i].content
    )

    item_ids = set(_id_list(extra.get("selected_items")))
    selected_entries = format_entries(e for e in entries if e.id in item_ids) if item_ids else ""

    parts = []
    if selected_summaries:
        parts.append(f"Story Chapter Summaries:\n{selected_summaries}")
    if selected_content:
        parts.append(f"Full Chapter Content:\n{selected_content}")
    if selected_entries:
        parts.append(f"Story World Information:\n{selected_entries}")
    return "\n\n".join(parts) or NO_BRAINSTORM_CONTEXT_TEXT


# ---------------------------------------------------------------------------
# Default registry
# ---------------------------------------------------------------------------

CATEGORY_RESOLVERS = {
    "characters": "character",
    "locations": "location",
    "items": "item",
    "events": "event",
    "notes": "note",
    "synopsis": "synopsis",
    "starting-scenarios": "starting-scenario",
    "timelines": "timeline",
}


def default_registry() -> ResolverRegistry:
    """A fresh registry holding every built-in resolver."""
    registry = ResolverRegistry({
        "matched-chapter-entries": matched_chapter_entries,
        "matched-scenebeat-entries": matched_scenebeat_entries,
        "scene-beat-aggregate": scene_beat_aggregate,
        "all-entries": all_entries,
        "character": character_by_name,
        "chat-history": chat_history,
        "user-input": user_input,
        "scenebeat": scenebeat,
        "summaries": summaries,
        "previous-words": previous_words,
        "chapter-content": chapter_content,
        "chapter-outline": chapter_outline,
        "pov": pov,
        "brainstorm-context": brainstorm_context,
    })
    for name, category in CATEGORY_RESOLVERS.items():
        registry.register(name, category_resolver(category))
    return registry
