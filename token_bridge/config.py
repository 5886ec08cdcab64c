"""Bridge configuration.

Timeouts and endpoints shared by all orchestrators of one
:py:class:`~token_bridge.adapter.BridgeContext`.
"""

import os
from dataclasses import dataclass

from token_bridge.constants import (
    DEFAULT_ATTEST_META_TIMEOUT,
    DEFAULT_REGISTRATION_POLL_INTERVAL,
    DEFAULT_TRANSFER_ATTESTATION_TIMEOUT,
    NETWORKS,
    WORMHOLESCAN_API_URL,
    WORMHOLESCAN_TESTNET_API_URL,
)


@dataclass(slots=True)
class BridgeConfig:
    """Configuration for transfer and attestation orchestration.

    Example:

    .. code-block:: python

        # Testnet with defaults
        config = BridgeConfig(network="Testnet")

        # From NETWORK, WORMHOLESCAN_API_URL, ... environment variables
        config = BridgeConfig.from_env()

        # Fast polling for tests
        config = BridgeConfig.create_test_config()
    """

    #: ``"Mainnet"`` or ``"Testnet"``
    network: str = "Testnet"

    #: Wormholescan API base URL, derived from the network when not given
    api_url: str | None = None

    #: Seconds to wait for a transfer VAA
    attestation_timeout: float = DEFAULT_TRANSFER_ATTESTATION_TIMEOUT

    #: Seconds to wait for an AttestMeta VAA
    attestation_meta_timeout: float = DEFAULT_ATTEST_META_TIMEOUT

    #: Seconds between wrapped asset lookups while waiting for registration
    registration_poll_interval: float = DEFAULT_REGISTRATION_POLL_INTERVAL

    #: Seconds between Wormholescan polls
    api_poll_interval: float = 5.0

    #: HTTP request timeout in seconds
    request_timeout: float = 30.0

    def __post_init__(self):
        if self.network not in NETWORKS:
            raise ValueError(f"network must be one of {NETWORKS}, got {self.network!r}")
        if self.api_url is None:
            self.api_url = WORMHOLESCAN_API_URL if self.network == "Mainnet" else WORMHOLESCAN_TESTNET_API_URL

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Read configuration from environment variables.

        - ``NETWORK``: ``Mainnet`` or ``Testnet`` (default)
        - ``WORMHOLESCAN_API_URL``: override the API endpoint
        - ``ATTESTATION_TIMEOUT``: seconds to wait for a transfer VAA
        - ``REGISTRATION_POLL_INTERVAL``: seconds between registration checks
        """
        network = os.environ.get("NETWORK", "Testnet").capitalize()
        config = cls(
            network=network,
            api_url=os.environ.get("WORMHOLESCAN_API_URL") or None,
        )

        attestation_timeout = os.environ.get("ATTESTATION_TIMEOUT")
        if attestation_timeout:
            config.attestation_timeout = float(attestation_timeout)

        poll_interval = os.environ.get("REGISTRATION_POLL_INTERVAL")
        if poll_interval:
            config.registration_poll_interval = float(poll_interval)

        return config

    @classmethod
    def create_test_config(cls) -> "BridgeConfig":
        """Short timeouts for fast test feedback."""
        return cls(
            network="Testnet",
            attestation_timeout=5.0,
            attestation_meta_timeout=5.0,
            registration_poll_interval=0.5,
            api_poll_interval=0.5,
            request_timeout=5.0,
        )
