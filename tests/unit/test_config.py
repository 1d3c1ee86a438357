"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from txflow.config import TxflowConfig, load_config
from txflow.ledger import get_ledger
from txflow.ledger.jsonrpc import JsonRpcLedger


def test_defaults_match_reference_policy(tmp_path, monkeypatch):
    monkeypatch.delenv("TXFLOW_RPC_URL", raising=False)
    config = load_config(str(tmp_path / "missing.yaml"))

    assert config.retry.max_retries == 5
    assert config.retry.initial_delay_ms == 2000
    assert config.retry.backoff_factor == 1.5
    assert config.retry.max_delay_ms == 10000
    assert config.tracker.poll_interval_ms == 2000
    assert config.tracker.required_confirmations == 12
    assert config.ledger.gas_limit == 1_000_000


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "txflow.yaml"
    config_path.write_text(
        """
ledger:
  backend: jsonrpc
  rpc_url: http://testhost:8545
retry:
  max_retries: 3
tracker:
  required_confirmations: 2
"""
    )
    monkeypatch.setenv("TXFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("TXFLOW_RPC_URL", raising=False)

    config = load_config()
    assert config.ledger.backend == "jsonrpc"
    assert config.ledger.rpc_url == "http://testhost:8545"
    assert config.retry.max_retries == 3
    assert config.retry.backoff_factor == 1.5
    assert config.tracker.required_confirmations == 2


def test_rpc_url_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("TXFLOW_CONFIG", str(tmp_path / "none.yaml"))
    monkeypatch.setenv("TXFLOW_RPC_URL", "http://override:8545")
    monkeypatch.setenv("TXFLOW_LEDGER", "jsonrpc")

    ledger = get_ledger()
    assert isinstance(ledger, JsonRpcLedger)
    assert ledger.rpc_url == "http://override:8545"


def test_invalid_policy_is_rejected():
    with pytest.raises(ValidationError):
        TxflowConfig(retry={"backoff_factor": 0.5})
    with pytest.raises(ValidationError):
        TxflowConfig(retry={"max_retries": 0})
