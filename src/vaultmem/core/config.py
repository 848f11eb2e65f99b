"""
Configuration management for Vault Memory.

Uses pydantic-settings for environment variable binding.
All settings can be overridden via environment variables with VAULTMEM_ prefix.
"""

import logging
import sys
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable binding."""

    model_config = SettingsConfigDict(
        env_prefix="VAULTMEM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================
    # Vault Storage
    # ==========================================
    memory_dir: Path = Path.home() / "vault-memory"
    """Storage root holding one markdown file per entity."""

    # ==========================================
    # External Memory Service
    # ==========================================
    sync_backend: Literal["mcp", "bolt"] = "mcp"
    """How the sync engine reaches the graph memory service."""

    neo4j_mcp_url: str = "http://localhost:9131/mcp"
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = "neo4j"

    http_timeout_seconds: float = 30.0
    fetch_limit: int = 1000
    """Maximum memories pulled per fetch."""

    # ==========================================
    # Sync Scheduler
    # ==========================================
    enable_sync: bool = False
    sync_interval_minutes: int = 5
    sync_timeout_seconds: float = 60.0
    """How long an on-demand sync request waits before giving up."""

    # ==========================================
    # Tool Server
    # ==========================================
    host: str = "0.0.0.0"
    port: int = 6666
    ws_port: int = 8765

    # ==========================================
    # Logging
    # ==========================================
    log_level: str = "INFO"
    log_file: Path | None = None

    # ==========================================
    # Computed Properties
    # ==========================================
    @property
    def obsidian_watermark_path(self) -> Path:
        return self.memory_dir / ".last_obsidian_sync"

    @property
    def neo4j_watermark_path(self) -> Path:
        return self.memory_dir / ".last_neo4j_sync"

    def ensure_directories(self) -> None:
        """Create the storage root if it doesn't exist."""
        self.memory_dir.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()


def setup_logging(level: str | None = None) -> None:
    """Configure application logging."""
    log_level = level or settings.log_level

    handlers: list[logging.Handler] = [
        logging.StreamHandler(sys.stdout),
    ]

    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        handlers=handlers,
    )

    # Quiet noisy libraries
    logging.getLogger("neo4j").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(f"vaultmem.{name}")
