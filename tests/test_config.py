"""Bridge configuration."""

import pytest

from token_bridge.config import BridgeConfig
from token_bridge.constants import WORMHOLESCAN_API_URL, WORMHOLESCAN_TESTNET_API_URL


def test_defaults():
    """Testnet, one minute for transfer VAAs, 25 minutes for AttestMeta VAAs."""
    config = BridgeConfig()
    assert config.network == "Testnet"
    assert config.api_url == WORMHOLESCAN_TESTNET_API_URL
    assert config.attestation_timeout == 60
    assert config.attestation_meta_timeout == 25 * 60
    assert config.registration_poll_interval == 2


def test_mainnet_api_url():
    assert BridgeConfig(network="Mainnet").api_url == WORMHOLESCAN_API_URL


def test_unknown_network():
    with pytest.raises(ValueError):
        BridgeConfig(network="Devnet")


def test_from_env(monkeypatch):
    """Environment variables override defaults."""
    monkeypatch.setenv("NETWORK", "mainnet")
    monkeypatch.setenv("WORMHOLESCAN_API_URL", "http://localhost:8080")
    monkeypatch.setenv("ATTESTATION_TIMEOUT", "120")
    monkeypatch.setenv("REGISTRATION_POLL_INTERVAL", "0.25")

    config = BridgeConfig.from_env()
    assert config.network == "Mainnet"
    assert config.api_url == "http://localhost:8080"
    assert config.attestation_timeout == 120.0
    assert config.registration_poll_interval == 0.25


def test_from_env_defaults(monkeypatch):
    for name in ("NETWORK", "WORMHOLESCAN_API_URL", "ATTESTATION_TIMEOUT", "REGISTRATION_POLL_INTERVAL"):
        monkeypatch.delenv(name, raising=False)

    config = BridgeConfig.from_env()
    assert config == BridgeConfig()


def test_test_config_is_fast():
    config = BridgeConfig.create_test_config()
    assert config.attestation_timeout < 60
    assert config.registration_poll_interval < 2
