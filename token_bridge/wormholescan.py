"""Wormholescan VAA lookup.

Poll the Wormholescan REST API for guardian signed VAAs.

The API answers ``GET /api/v1/vaas/{chain_id}/{emitter}/{sequence}``:

- **404**: guardians have not signed the message yet (or it is not indexed)
- **200**: ``{"data": {"vaa": "<base64>", ...}}``

Example::

    from token_bridge.config import BridgeConfig
    from token_bridge.wormholescan import WormholescanAttestationSource

    source = WormholescanAttestationSource(BridgeConfig(network="Testnet"))
    vaa = source.fetch(message_id, MESSAGE_TYPE_TRANSFER, timeout=60)
"""

import base64
import logging

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from token_bridge.adapter import AttestationSource
from token_bridge.clock import CancelToken, Clock, SystemClock, poll_until
from token_bridge.config import BridgeConfig
from token_bridge.constants import TOKEN_BRIDGE_PAYLOAD_IDS, get_wormhole_chain_id
from token_bridge.errors import AttestationError
from token_bridge.models import MessageId
from token_bridge.vaa import SignedVAA, parse_vaa

logger = logging.getLogger(__name__)

#: HTTP 404 status code indicating the VAA is not available yet
HTTP_NOT_FOUND = 404

#: Default number of retries for transient HTTP errors
DEFAULT_RETRIES = 5

#: Default backoff factor for retries (seconds)
DEFAULT_BACKOFF_FACTOR = 0.5


def create_wormholescan_session(retries: int = DEFAULT_RETRIES, backoff_factor: float = DEFAULT_BACKOFF_FACTOR) -> requests.Session:
    """Create a :py:class:`requests.Session` retrying rate limits and server errors.

    404 is not retried here: it is the normal "not signed yet" answer and
    the caller polls.
    """
    session = requests.Session()
    retry_policy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry_policy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def get_vaa_url(api_url: str, message_id: MessageId) -> str:
    """Wormholescan URL of a message's VAA."""
    chain_id = get_wormhole_chain_id(message_id.chain)
    emitter = message_id.emitter.removeprefix("0x")
    return f"{api_url}/api/v1/vaas/{chain_id}/{emitter}/{message_id.sequence}"


class WormholescanAttestationSource(AttestationSource):
    """Poll Wormholescan until a VAA is available or the timeout passes."""

    def __init__(
        self,
        config: BridgeConfig,
        session: requests.Session | None = None,
        clock: Clock | None = None,
    ):
        """
        :param config:
            API URL, poll interval and HTTP timeout.

        :param session:
            HTTP session, see :py:func:`create_wormholescan_session`.

        :param clock:
            Time source for polling.
        """
        self.config = config
        self.session = session or create_wormholescan_session()
        self.clock = clock or SystemClock()

    def __repr__(self) -> str:
        return f"<WormholescanAttestationSource api_url={self.config.api_url!r}>"

    def fetch(
        self,
        message_id: MessageId,
        message_type: str,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> SignedVAA | None:
        url = get_vaa_url(self.config.api_url, message_id)
        logger.info("Waiting for %s VAA of %s\n  Wormholescan: %s", message_type, message_id, url)

        deadline = self.clock.time() + timeout

        def _attempt() -> SignedVAA | None:
            remaining = deadline - self.clock.time()
            if remaining <= 0:
                return None
            request_timeout = min(self.config.request_timeout, remaining)
            vaa = self.fetch_once(message_id, message_type, request_timeout=request_timeout)
            if vaa is None:
                logger.debug("VAA not yet available for %s, retrying...", message_id)
            return vaa

        return poll_until(
            _attempt,
            clock=self.clock,
            interval=self.config.api_poll_interval,
            timeout=timeout,
            cancel=cancel,
            description=f"VAA of {message_id}",
        )

    def fetch_once(self, message_id: MessageId, message_type: str, request_timeout: float | None = None) -> SignedVAA | None:
        """One-shot VAA lookup.

        :param request_timeout:
            HTTP timeout in seconds, defaults to :py:attr:`BridgeConfig.request_timeout`.
            Applies to each attempt of the transport retry policy.

        :return:
            The VAA, or ``None`` if not available yet.

        :raises requests.HTTPError:
            The API returned a non-retryable error.

        :raises AttestationError:
            The returned VAA does not match the message.
        """
        url = get_vaa_url(self.config.api_url, message_id)
        if request_timeout is None:
            request_timeout = self.config.request_timeout
        response = self.session.get(url, timeout=request_timeout)

        if response.status_code == HTTP_NOT_FOUND:
            return None

        response.raise_for_status()

        data = response.json().get("data") or {}
        encoded = data.get("vaa")
        if not encoded:
            return None

        vaa = parse_vaa(base64.b64decode(encoded))
        check_vaa_matches(vaa, message_id, message_type)
        return vaa


def check_vaa_matches(vaa: SignedVAA, message_id: MessageId, message_type: str):
    """Make sure a VAA is the one we asked for.

    :raises AttestationError:
        Emitter, sequence or payload type differ.
    """
    if vaa.emitter_chain != get_wormhole_chain_id(message_id.chain):
        raise AttestationError(f"VAA emitter chain {vaa.emitter_chain} does not match {message_id}")
    if "0x" + vaa.emitter_address.hex() != message_id.emitter:
        raise AttestationError(f"VAA emitter 0x{vaa.emitter_address.hex()} does not match {message_id}")
    if vaa.sequence != message_id.sequence:
        raise AttestationError(f"VAA sequence {vaa.sequence} does not match {message_id}")

    expected_payload_id = TOKEN_BRIDGE_PAYLOAD_IDS.get(message_type)
    if expected_payload_id is not None and vaa.payload_id != expected_payload_id:
        raise AttestationError(f"Expected {message_type} (payload id {expected_payload_id}), got payload id {vaa.payload_id} for {message_id}")
