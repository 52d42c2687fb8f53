"""Runtime settings read from the environment (and an optional .env file).

Settings are built once by the caller and handed to whatever needs them;
nothing in the package reads the environment on its own.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

ROOT = Path(__file__).parent.parent


class Settings(BaseModel):
    local_api_url: str = "http://localhost:1234/v1"
    openai_api_key: str = ""
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_referer: str = "http://localhost:5173"
    openrouter_title: str = "Story Forge"
    llm_timeout: float = 120.0
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 13013


_ENV_VARS = {
    "local_api_url": "LOCAL_API_URL",
    "openai_api_key": "OPENAI_API_KEY",
    "openrouter_api_key": "OPENROUTER_API_KEY",
    "openrouter_base_url": "OPENROUTER_BASE_URL",
    "openrouter_referer": "OPENROUTER_REFERER",
    "openrouter_title": "OPENROUTER_TITLE",
    "llm_timeout": "LLM_TIMEOUT",
    "log_level": "LOG_LEVEL",
    "host": "HOST",
    "port": "PORT",
}


def load_settings(env_file: Path | None = None) -> Settings:
    """Load .env (without overriding real environment variables) and build Settings.

    Unset variables keep their defaults; values are validated by pydantic.
    """
    load_dotenv(env_file or ROOT / ".env")
    values = {field: os.getenv(var) for field, var in _ENV_VARS.items()}
    return Settings(**{k: v for k, v in values.items() if v is not None})
