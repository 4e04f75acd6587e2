"""Runtime configuration — env-driven via pydantic-settings.

Reads from a .env file and CODECACHE_* environment variables.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class CodeCacheConfig(BaseSettings):
    """Code cache configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export CODECACHE_BACKEND=sqlite
        export CODECACHE_DB_PATH=/data/code.db
        export CODECACHE_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CODECACHE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage
    backend: Literal["memory", "sqlite"] = "memory"
    db_path: Path = Path(".codecache/code.db")

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


def configure_logging(cfg: CodeCacheConfig) -> None:
    """Apply ``cfg.log_level`` to the ``codecache`` logger hierarchy."""
    level = "DEBUG" if cfg.debug else cfg.log_level.upper()
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("codecache").setLevel(level)


# Module-level singleton — import as `from codecache.config import config`
config = CodeCacheConfig()
