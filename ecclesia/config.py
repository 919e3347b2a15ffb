"""Ecclesia — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class EcclesiaSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "ECCLESIA_",
        "extra": "ignore",
    }

    # ── Directory storage ──────────────────────────────────────
    database_url: str = "sqlite:///./ecclesia.db"
    use_memory_directory: bool = False

    # ── Organization ───────────────────────────────────────────
    default_congregation_id: str = "matriz"
    headquarters_id: str = "matriz"

    # ── Invitations ────────────────────────────────────────────
    invitation_ttl_days: int = 7
    invitation_token_bytes: int = 32

    # ── API ────────────────────────────────────────────────────
    api_title: str = "Ecclesia — Access Control API"

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = EcclesiaSettings()
