"""
Configuration loading for graphpipe servers.

Settings come from ``GRAPHPIPE_*`` environment variables, a ``.env`` file,
or a YAML file passed to ``load_settings`` (file values take precedence).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.errors import ConfigurationError


class GraphPipeSettings(BaseSettings):
    """Server settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="GRAPHPIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Pipeline
    debug: bool = False
    tracing: bool = False
    enable_defer: bool = True
    cache_control_default_max_age: Optional[int] = None

    # Persisted queries
    persisted_queries: bool = True
    persisted_query_ttl: Optional[int] = None
    persisted_query_max_entries: int = Field(default=1000, ge=1)
    redis_url: Optional[str] = None

    # HTTP
    graphql_path: str = "/graphql"
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )


def load_settings(path: Path | str = "graphpipe.yaml") -> GraphPipeSettings:
    """
    Load settings from a YAML file, falling back to the environment.

    A missing file yields environment/default settings.
    """
    path = Path(path)
    if not path.exists():
        return GraphPipeSettings()

    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: expected a mapping at the top level")
    return GraphPipeSettings(**data)
