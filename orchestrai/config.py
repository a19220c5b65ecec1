from __future__ import annotations

import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_API_URL,
    DEFAULT_DEDUP_WINDOW,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RECONNECT_BUDGET,
    DEFAULT_RECONNECT_DELAY,
    DEFAULT_REPOSITORY_HOSTS,
    DEFAULT_TIMEOUT,
)


class BackendConfig(BaseModel):
    """Connection settings for the orchestration backend."""

    base_url: str = DEFAULT_API_URL
    ws_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT


class SyncConfig(BaseModel):
    """How workflow status is followed once a workflow is active."""

    strategy: Literal["auto", "push", "poll"] = "auto"
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    reconnect_delay: float = Field(default=DEFAULT_RECONNECT_DELAY, ge=0)
    reconnect_budget: int = Field(default=DEFAULT_RECONNECT_BUDGET, ge=0)
    dedup_window: int = Field(default=DEFAULT_DEDUP_WINDOW, ge=1)


class OrchestraiConfig(BaseModel):
    """Top-level configuration model."""

    backend: BackendConfig = Field(default_factory=BackendConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    repository_hosts: List[str] = Field(
        default_factory=lambda: list(DEFAULT_REPOSITORY_HOSTS)
    )
    log_level: str = "WARNING"


def load_config(path: Optional[str] = None) -> OrchestraiConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to ORCHESTRAI_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("ORCHESTRAI_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = OrchestraiConfig(**data)
    else:
        config = OrchestraiConfig()

    if api_url := os.getenv("ORCHESTRAI_API_URL"):
        config.backend.base_url = api_url
    if ws_url := os.getenv("ORCHESTRAI_WS_URL"):
        config.backend.ws_url = ws_url
    if api_key := os.getenv("ORCHESTRAI_API_KEY"):
        config.backend.api_key = api_key
    if strategy := os.getenv("ORCHESTRAI_SYNC_STRATEGY"):
        config.sync = SyncConfig(
            **{**config.sync.model_dump(), "strategy": strategy.lower()}
        )
    if log_level := os.getenv("ORCHESTRAI_LOG_LEVEL"):
        config.log_level = log_level
    return config
