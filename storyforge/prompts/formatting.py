"""Handlebars rendering of lorebook entries into prompt text.

Every resolver goes through format_entries(), so an entry reads the same no
matter which placeholder pulled it into the prompt.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

import pybars

from storyforge.models import LorebookEntry

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

# Triple braces: prompt text must not be HTML-escaped.
ENTRY_TEMPLATE = (
    "{{{name}}} ({{{category}}})\n"
    "{{#if tags}}Tags: {{{tags}}}\n{{/if}}"
    "{{{description}}}"
)
ENTRY_SEPARATOR = "\n\n"


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_template(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def entry_context(entry: LorebookEntry) -> dict[str, Any]:
    """Template variables for one entry."""
    return {
        "name": entry.name,
        "category": entry.category,
        "description": entry.description,
        "tags": ", ".join(t for t in entry.tags if t.strip()),
        "importance": entry.importance,
        "status": entry.status,
        "level": entry.level,
    }


def format_entries(entries: Iterable[LorebookEntry], template: str = ENTRY_TEMPLATE) -> str:
    """Render entries in the given order, separated by a blank line."""
    blocks = [render_template(template, entry_context(e)).strip() for e in entries]
    return ENTRY_SEPARATOR.join(blocks)
