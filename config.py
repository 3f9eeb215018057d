"""
config.py — Environment-based configuration using Pydantic Settings.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ── Product Source ───────────────────────────────────────────────────
    base_url: str = "https://www.mymobase.com/de/p/"
    identifier_prefix: str = "A2V"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    fetch_timeout_seconds: float = 30.0
    fetch_concurrency: int = 3

    # ── Reconciliation ───────────────────────────────────────────────────
    # Percent of the Excel weight; 0 = strict
    weight_tolerance_pct: float = 0.0
    weight_epsilon: float = 1e-6
    dimension_epsilon: float = 1e-6

    # ── Workbook ─────────────────────────────────────────────────────────
    header_row: int = 3
    first_data_row: int = 4
    max_upload_size_mb: int = 50
    output_filename: str = "DB_Produktvergleich_verarbeitet.xlsx"

    # ── Logging ──────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # ── Server ───────────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 3000

    # ── Computed Properties ──────────────────────────────────────────────

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"log_level must be one of {valid}")
        return v.upper()

    @field_validator("fetch_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("fetch_concurrency must be at least 1")
        return v

    @field_validator("weight_tolerance_pct")
    @classmethod
    def validate_tolerance(cls, v: float) -> float:
        if v < 0:
            raise ValueError("weight_tolerance_pct must not be negative")
        return v

    @field_validator("first_data_row")
    @classmethod
    def validate_first_data_row(cls, v: int, info) -> int:
        header = info.data.get("header_row")
        if header is not None and v <= header:
            raise ValueError("first_data_row must come after header_row")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings) -> None:
    """Root logging setup shared by the API and the CLI."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
