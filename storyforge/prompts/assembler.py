"""Expand `{{name}}` / `{{name:arg}}` placeholders in a prompt's messages."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from storyforge.models import LorebookEntry, Prompt, PromptContext, PromptMessage

from .resolvers import ResolverRegistry, default_registry

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z][\w.-]*)\s*(?::([^}]*))?\}\}")


def expand(
    text: str,
    context: PromptContext,
    entries: Sequence[LorebookEntry],
    registry: ResolverRegistry,
) -> str:
    """Substitute every known placeholder in `text`; unknown ones stay literal."""

    def substitute(match: re.Match) -> str:
        name, arg = match.group(1), match.group(2)
        value = registry.resolve(name, context, entries, arg.strip() if arg is not None else None)
        if value is None:
            logger.debug("unknown placeholder %r left as-is", match.group(0))
            return match.group(0)
        return value

    return PLACEHOLDER.sub(substitute, text)


def assemble(
    prompt: Prompt,
    context: PromptContext,
    entries: Sequence[LorebookEntry] = (),
    registry: ResolverRegistry | None = None,
) -> list[PromptMessage]:
    """Return the prompt's messages, in order, with placeholders resolved."""
    registry = registry or default_registry()
    messages = [
        PromptMessage(role=m.role, content=expand(m.content, context, entries, registry))
        for m in prompt.messages
    ]
    logger.debug(
        "assembled prompt=%s messages=%d chars=%d",
        prompt.id or prompt.name, len(messages), sum(len(m.content) for m in messages),
    )
    return messages
