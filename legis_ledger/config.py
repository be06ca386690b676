"""Legis Ledger — Application configuration via environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings

from legis_ledger.domain.schema import VotingType


class LegisSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # ── Ledger gateway ─────────────────────────────────────────
    ledger_gateway_url: str = ""  # empty: in-process ledger
    ledger_api_key: str = ""
    ledger_http_timeout_seconds: float = Field(default=30.0, gt=0)

    # ── Core ───────────────────────────────────────────────────
    operation_timeout_seconds: float = Field(default=15.0, gt=0)
    default_quorum_percentage: int = Field(default=50, ge=1, le=100)
    default_voting_type: VotingType = VotingType.SIMPLE

    # ── Record store ───────────────────────────────────────────
    database_url: str = "sqlite:///legis_ledger.db"

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = LegisSettings()
