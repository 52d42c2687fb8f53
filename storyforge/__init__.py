"""Story Forge generation core: lorebook context resolution and streamed LLM generation."""

from storyforge.errors import ConfigurationError, ProviderError, StoryForgeError

__all__ = ["ConfigurationError", "ProviderError", "StoryForgeError"]
