"""Configuration helpers for the matching engine."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _default_filters() -> Dict[str, Any]:
    return {
        "classification": ["personal", "public"],
        "active": _env_flag("FIELDMATCH_ACTIVE_RECORDS_ONLY", default=True),
    }


@dataclass
class Settings:
    """Container for environment-driven settings."""

    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))
    log_level: str = field(default_factory=lambda: os.getenv("FIELDMATCH_LOG_LEVEL", "WARNING"))

    # Cache
    cache_ttl_seconds: float = field(default_factory=lambda: _env_float("FIELDMATCH_CACHE_TTL_SECONDS", 300.0))
    cache_max_entries: int = field(default_factory=lambda: _env_int("FIELDMATCH_CACHE_MAX_ENTRIES", 100))
    snapshot_key: str = field(default_factory=lambda: os.getenv("FIELDMATCH_SNAPSHOT_KEY", "autofillCache"))

    # Matching heuristics
    fuzzy_threshold: int = field(default_factory=lambda: _env_int("FIELDMATCH_FUZZY_THRESHOLD", 60))
    rule_min_score: int = field(default_factory=lambda: _env_int("FIELDMATCH_RULE_MIN_SCORE", 3))
    max_candidates: int = field(default_factory=lambda: _env_int("FIELDMATCH_MAX_CANDIDATES", 8))
    max_suggestions: int = field(default_factory=lambda: _env_int("FIELDMATCH_MAX_SUGGESTIONS", 5))
    fetch_limit: int = field(default_factory=lambda: _env_int("FIELDMATCH_FETCH_LIMIT", 10))
    record_filters: Dict[str, Any] = field(default_factory=_default_filters)
    rules_file: str | None = field(default_factory=lambda: os.getenv("FIELDMATCH_RULES_FILE"))

    # Scanner
    rescan_debounce_ms: int = field(default_factory=lambda: _env_int("FIELDMATCH_RESCAN_DEBOUNCE_MS", 100))
    highlight_min_confidence: int = field(default_factory=lambda: _env_int("FIELDMATCH_HIGHLIGHT_MIN_CONFIDENCE", 50))
    playwright_headless: bool = field(default_factory=lambda: _env_flag("PLAYWRIGHT_HEADLESS", default=True))

    # Snapshot persistence
    database_url: str | None = field(default_factory=lambda: os.getenv("DATABASE_URL"))
    sqlite_path: str = field(default_factory=lambda: os.getenv("SQLITE_PATH", "./data/fieldmatch.db"))

    # Remote record store
    mcp_ws_url: str = field(default_factory=lambda: os.getenv("MCP_WS_URL", "ws://localhost:7001"))
    mcp_request_timeout_seconds: float = field(default_factory=lambda: _env_float("MCP_REQUEST_TIMEOUT", 30.0))
    mcp_record_method: str = field(default_factory=lambda: os.getenv("MCP_RECORD_METHOD", "extract_personal_data"))

    def resolved_database_url(self) -> str:
        """Return a SQLAlchemy-compatible database URL."""

        if self.database_url:
            return self.database_url

        sqlite_file = Path(self.sqlite_path)
        if not sqlite_file.is_absolute():
            sqlite_file = Path.cwd() / sqlite_file
        sqlite_file.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{sqlite_file.as_posix()}"

    @property
    def rescan_debounce_seconds(self) -> float:
        return max(self.rescan_debounce_ms, 0) / 1000.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()
