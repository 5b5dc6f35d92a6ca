"""
Recall Assistant — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from recall/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram — the single chat this assistant serves
    TELEGRAM_BOT_TOKEN: str
    TELEGRAM_CHAT_ID: int

    # LLM — provider-agnostic (gemini, anthropic, openai, cohere).
    # Empty key → AI not configured, deterministic wording is used instead.
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str = ""
    AI_TIMEOUT_SECONDS: float = 15.0

    # SQLite (key-value state + notes/profile/journal)
    DATABASE_PATH: str = "data/recall.db"

    # Google Maps Places API (optional — automatic store detection)
    GOOGLE_MAPS_API_KEY: str = ""

    @field_validator("TELEGRAM_CHAT_ID", mode="before")
    @classmethod
    def parse_chat_id(cls, v: str | int) -> int:
        return int(v)

    @field_validator("AI_TIMEOUT_SECONDS", mode="before")
    @classmethod
    def parse_timeout(cls, v: str | float) -> float:
        if isinstance(v, str) and not v.strip():
            return 15.0
        return float(v)


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    chat_id = os.getenv("TELEGRAM_CHAT_ID", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not chat_id.strip().lstrip("-").isdigit():
        print("ERROR: TELEGRAM_CHAT_ID is missing or not a number in .env", file=sys.stderr)
        sys.exit(1)

    llm_api_key = os.getenv("LLM_API_KEY", "")
    if llm_api_key.startswith("your-"):
        llm_api_key = ""

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        TELEGRAM_CHAT_ID=chat_id,
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        AI_TIMEOUT_SECONDS=os.getenv("AI_TIMEOUT_SECONDS", "15"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/recall.db"),
        GOOGLE_MAPS_API_KEY=os.getenv("GOOGLE_MAPS_API_KEY", ""),
    )


# Singleton — imported by all other modules as:
#   from recall.config import settings
settings = _load_settings()
