"""Tests for storyforge.config — environment-driven settings."""

from pathlib import Path

from storyforge.config import Settings, load_settings


def test_defaults_when_environment_empty(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "missing.env")
    assert settings == Settings()
    assert settings.local_api_url == "http://localhost:1234/v1"
    assert settings.openai_api_key == ""


def test_environment_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("LLM_TIMEOUT", "30")
    monkeypatch.setenv("PORT", "9000")
    settings = load_settings(tmp_path / "missing.env")
    assert settings.openai_api_key == "sk-test"
    assert settings.llm_timeout == 30.0
    assert settings.port == 9000


def test_env_file_is_read(tmp_path: Path) -> None:
    env = tmp_path / ".env"
    env.write_text("OPENROUTER_API_KEY=or-key\nLOCAL_API_URL=http://box:8080/v1\n")
    settings = load_settings(env)
    assert settings.openrouter_api_key == "or-key"
    assert settings.local_api_url == "http://box:8080/v1"


def test_real_environment_wins_over_env_file(monkeypatch, tmp_path: Path) -> None:
    env = tmp_path / ".env"
    env.write_text("OPENAI_API_KEY=from-file\n")
    monkeypatch.setenv("OPENAI_API_KEY", "from-env")
    assert load_settings(env).openai_api_key == "from-env"
