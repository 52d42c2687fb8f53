"""Tag index and substring matching of lorebook entries against free text.

No ranking happens here; resolvers order the matches by importance.
"""

from __future__ import annotations

from collections.abc import Iterable

from storyforge.models import LorebookEntry


def normalize(value: str) -> str:
    """Trim and lowercase a name or tag for comparison."""
    return value.strip().lower()


def build_index(entries: Iterable[LorebookEntry]) -> dict[str, LorebookEntry]:
    """Map every normalised name and tag of each enabled entry to that entry.

    The individual words of a multi-word tag are indexed only when the word is
    itself a standalone tag of the same entry, so "the mage" alone never makes
    "mage" a match key. Later entries win on a key collision.
    """
    index: dict[str, LorebookEntry] = {}
    for entry in entries:
        if entry.disabled:
            continue

        name = normalize(entry.name)
        if name:
            index[name] = entry

        own_tags = {normalize(t) for t in entry.tags}
        for tag in entry.tags:
            key = normalize(tag)
            if not key:
                continue
            index[key] = entry
            if " " not in key:
                continue
            for word in key.split():
                if word in own_tags:
                    index[word] = entry
    return index


def match_in_text(entries: Iterable[LorebookEntry], text: str) -> list[LorebookEntry]:
    """Return enabled entries with at least one tag occurring in `text`.

    Case-insensitive substring test; input order is preserved and each entry
    appears at most once.
    """
    haystack = text.lower()
    matched: list[LorebookEntry] = []
    for entry in entries:
        if entry.disabled:
            continue
        if any(key and key in haystack for key in (normalize(t) for t in entry.tags)):
            matched.append(entry)
    return matched


def match_index_in_text(index: dict[str, LorebookEntry], text: str) -> dict[str, LorebookEntry]:
    """Match a prebuilt index against `text`, keyed by entry id.

    This is the editor's live path: the index is built once per lorebook
    change and reused on every content update.
    """
    haystack = text.lower()
    return {entry.id: entry for key, entry in index.items() if key in haystack}
