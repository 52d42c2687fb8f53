"""Lorebook matching and scope inheritance."""

from .matcher import build_index, match_in_text, match_index_in_text, normalize
from .scopes import load_story_lorebook, merge_for_story

__all__ = [
    "build_index",
    "load_story_lorebook",
    "match_in_text",
    "match_index_in_text",
    "merge_for_story",
    "normalize",
]
