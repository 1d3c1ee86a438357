from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .contracts import RetryPolicy

DEFAULT_CONFIG_PATH = "txflow.yaml"


class LedgerConfig(BaseModel):
    """Connection settings for the ledger backend."""

    backend: Literal["inmemory", "jsonrpc"] = "inmemory"
    rpc_url: str = "http://127.0.0.1:8545"
    timeout_s: float = 10.0
    gas_limit: int = 1_000_000
    automine_blocks: int = Field(default=0, ge=0)


class TrackerConfig(BaseModel):
    """Confirmation tracking settings."""

    poll_interval_ms: float = Field(default=2000, gt=0)
    required_confirmations: int = Field(default=12, ge=1)
    seconds_per_block: float = 12
    max_ticks: int = Field(default=600, ge=1)


class BarrierConfig(BaseModel):
    """Pending-operation barrier settings."""

    poll_interval_ms: float = Field(default=1000, gt=0)
    max_wait_ms: float = Field(default=30000, ge=0)


class RunnerConfig(BaseModel):
    """Workflow runner settings."""

    step_delay_ms: float = Field(default=0, ge=0)
    use_barrier: bool = True


class TxflowConfig(BaseModel):
    """Top-level configuration model."""

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    barrier: BarrierConfig = Field(default_factory=BarrierConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)


def load_config(path: Optional[str] = None) -> TxflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TXFLOW_CONFIG env
            variable or 'txflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("TXFLOW_CONFIG", DEFAULT_CONFIG_PATH)
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = TxflowConfig(**data)
    else:
        config = TxflowConfig()

    env_rpc_url = os.getenv("TXFLOW_RPC_URL")
    if env_rpc_url:
        config.ledger.rpc_url = env_rpc_url
    return config
