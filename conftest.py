import pytest

from storyforge.config import _ENV_VARS
from storyforge.models import LorebookEntry


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Unset every settings variable so a developer's .env never leaks into tests.

    Anything load_dotenv() writes during a test is removed again on teardown.
    """
    for var in _ENV_VARS.values():
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def make_entry():
    """Factory for story-level lorebook entries with sensible defaults."""

    def _make(id: str, name: str | None = None, **kwargs) -> LorebookEntry:
        kwargs.setdefault("category", "character")
        kwargs.setdefault("scope_id", None if kwargs.get("level") == "global" else "story-1")
        return LorebookEntry(id=id, name=name or id.title(), **kwargs)

    return _make
