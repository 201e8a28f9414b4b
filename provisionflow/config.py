from __future__ import annotations

import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_CONCURRENT_STEPS,
    DEFAULT_STEP_RETRY_DELAY_MS,
    DEFAULT_TIMEOUT_MS,
)


class HttpClientConfig(BaseModel):
    """Client-level defaults for the resilient call primitive."""

    base_url: str = ""
    default_headers: Dict[str, str] = Field(default_factory=dict)
    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, gt=0)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    base_delay_ms: int = Field(default=DEFAULT_BASE_DELAY_MS, ge=0)
    enable_logging: bool = True


class EngineConfig(BaseModel):
    """Scheduling settings for the execution engine."""

    max_concurrent_steps: int = Field(default=DEFAULT_MAX_CONCURRENT_STEPS, ge=1)
    step_retry_delay_ms: int = Field(default=DEFAULT_STEP_RETRY_DELAY_MS, ge=0)
    rollback_on_cancel: bool = False


class RegistryConfig(BaseModel):
    """Operation registry backend settings."""

    database_url: Optional[str] = None
    max_entries: Optional[int] = Field(default=None, ge=1)


class ProvisionflowConfig(BaseModel):
    """Top-level configuration model."""

    http: HttpClientConfig = HttpClientConfig()
    engine: EngineConfig = EngineConfig()
    registry: RegistryConfig = RegistryConfig()


def load_config(path: Optional[str] = None) -> ProvisionflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to PROVISIONFLOW_CONFIG
            env variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("PROVISIONFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ProvisionflowConfig(**data)
    else:
        config = ProvisionflowConfig()

    env_db_url = os.getenv("PROVISIONFLOW_DATABASE_URL")
    if env_db_url:
        config.registry.database_url = env_db_url
    return config
