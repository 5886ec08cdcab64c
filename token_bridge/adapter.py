"""Interfaces the orchestrators need from the outside world.

- :py:class:`ChainAdapter`: everything chain specific, building and
  submitting transactions, reading token bridge state
- :py:class:`AttestationSource`: VAA lookup by message id
- :py:class:`BridgeContext`: the explicitly passed registry tying
  adapters, the attestation source, the clock and the configuration
  together

There is no global chain registry. Each orchestrator gets a
:py:class:`BridgeContext` at construction, so independent contexts can
be used side by side, e.g. in parallel tests.
"""

import abc
from dataclasses import dataclass, field
from typing import Any

from token_bridge.clock import CancelToken, Clock, SystemClock
from token_bridge.config import BridgeConfig
from token_bridge.models import BridgeMessage, ChainAddress, MessageId, TokenId, TransactionSet, TransferRequest
from token_bridge.vaa import SignedVAA


class ChainAdapter(abc.ABC):
    """Token bridge operations on one chain.

    Instances are shared by all transfers touching the chain, so
    implementations must be safe to call from multiple threads.

    ``signer`` arguments are whatever the adapter knows how to sign
    with, e.g. an :py:class:`eth_account.signers.local.LocalAccount`
    for EVM chains. The orchestrators pass them through untouched.
    """

    #: Chain name
    chain: str

    @property
    def relayer_address(self) -> str | None:
        """Universal address (``0x`` hex, 32 bytes) of the automatic delivery relayer, if any."""
        return None

    @abc.abstractmethod
    def submit(self, transactions: TransactionSet, signer: Any) -> list[str]:
        """Sign, broadcast and confirm transactions in order.

        :return:
            Transaction ids in submission order.

        :raises SubmissionError:
            A transaction was rejected or reverted.
        """

    @abc.abstractmethod
    def parse_transaction(self, txid: str) -> list[BridgeMessage]:
        """Find the bridge messages a transaction emitted.

        :raises ParseError:
            The transaction carries no bridge message.
        """

    @abc.abstractmethod
    def get_wrapped_asset(self, token: TokenId) -> TokenId | None:
        """Wrapped counterpart of a foreign token on this chain.

        :return:
            ``None`` if the token has not been attested to this chain.
        """

    @abc.abstractmethod
    def get_original_asset(self, token: TokenId) -> TokenId:
        """Origin of a token on this chain.

        Native tokens are their own origin.
        """

    @abc.abstractmethod
    def get_decimals(self, token: TokenId) -> int:
        """Token decimals."""

    @abc.abstractmethod
    def get_relayer_fee(self, destination_chain: str, token: TokenId) -> int:
        """Automatic delivery fee to ``destination_chain``, in ``token`` base units."""

    @abc.abstractmethod
    def create_transfer_tx(self, request: TransferRequest) -> TransactionSet:
        """Build the source chain transactions for a transfer."""

    @abc.abstractmethod
    def redeem_tx(self, vaa: SignedVAA, recipient: ChainAddress) -> TransactionSet:
        """Build the destination chain transactions redeeming a transfer VAA."""

    @abc.abstractmethod
    def create_attestation_tx(self, token_address: str, submitter: ChainAddress) -> TransactionSet:
        """Build the transactions publishing a token's metadata."""

    @abc.abstractmethod
    def submit_attestation_tx(self, vaa: SignedVAA, submitter: ChainAddress) -> TransactionSet:
        """Build the transactions creating a wrapped asset from an AttestMeta VAA."""


class AttestationSource(abc.ABC):
    """Where signed VAAs come from."""

    @abc.abstractmethod
    def fetch(
        self,
        message_id: MessageId,
        message_type: str,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> SignedVAA | None:
        """Wait for the VAA of a message.

        :param message_type:
            One of the ``MESSAGE_TYPE_*`` constants in :py:mod:`token_bridge.constants`.

        :param timeout:
            Seconds to wait.

        :return:
            The VAA, or ``None`` if it was not available within ``timeout``.

        :raises OperationCancelled:
            ``cancel`` fired while waiting.
        """


@dataclass
class BridgeContext:
    """Chains and services one set of orchestrators works with.

    Example::

        context = BridgeContext(
            adapters={"Avalanche": avalanche_adapter, "Sepolia": sepolia_adapter},
            attestation_source=WormholescanAttestationSource(config),
            config=config,
        )
        transfer = TokenTransfer(context, request)
    """

    #: Chain name → adapter
    adapters: dict[str, ChainAdapter]

    attestation_source: AttestationSource

    config: BridgeConfig = field(default_factory=BridgeConfig)

    clock: Clock = field(default_factory=SystemClock)

    def get_chain(self, chain: str) -> ChainAdapter:
        """Adapter for a chain.

        :raises ValueError:
            Chain not configured in this context.
        """
        adapter = self.adapters.get(chain)
        if adapter is None:
            raise ValueError(f"Chain {chain} not configured, have: {', '.join(self.adapters)}")
        return adapter
