"""Prompt assembly: resolvers, entry formatting and placeholder expansion."""

from .assembler import assemble, expand
from .context import build_context
from .formatting import PromptError, format_entries
from .resolvers import NO_ENTRIES_TEXT, ResolverRegistry, default_registry

__all__ = [
    "NO_ENTRIES_TEXT",
    "PromptError",
    "ResolverRegistry",
    "assemble",
    "build_context",
    "default_registry",
    "expand",
    "format_entries",
]
