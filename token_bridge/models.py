"""Value types for token transfers and attestations.

Immutable request and quote types, the mutable per-transfer record and
the phase enums of the two state machines.

Amounts are always integers in the token's smallest unit (base units).
Use :py:func:`token_bridge.utils.parse_amount` to convert human input.
"""

import enum
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True, frozen=True)
class ChainAddress:
    """An address on a specific chain.

    ``0x`` prefixed hex addresses are lower-cased so that checksummed and
    non-checksummed forms compare equal. Other formats (base58 etc.) are
    case sensitive and kept verbatim.
    """

    #: Chain name, see :py:data:`token_bridge.constants.CHAINS`
    chain: str

    #: Address in the chain's native format
    address: str

    def __post_init__(self):
        assert self.chain, "Chain name missing"
        assert self.address, f"Address missing for chain {self.chain}"
        if self.address.startswith(("0x", "0X")):
            object.__setattr__(self, "address", "0x" + self.address[2:].lower())

    def __str__(self) -> str:
        return f"{self.chain}:{self.address}"


#: A token is identified by its contract address on a chain
TokenId = ChainAddress


@dataclass(slots=True, frozen=True)
class ManualDelivery:
    """The destination holder redeems the transfer themselves."""

    automatic = False


@dataclass(slots=True, frozen=True)
class AutomaticDelivery:
    """A relayer contract redeems the transfer on the destination chain.

    The relayer fee is deducted from the transferred amount.
    """

    #: Part of the transferred amount, in source token base units,
    #: the relayer swaps to destination native gas for the recipient
    native_gas: int | None = None

    automatic = True


#: Delivery mode of a transfer
DeliveryMode = ManualDelivery | AutomaticDelivery


@dataclass(slots=True, frozen=True)
class TransferRequest:
    """What the user asked to move.

    Constructed once per transfer attempt and never mutated.
    """

    #: Token on the source chain
    token: TokenId

    #: Amount in source token base units
    amount: int

    #: Sender on the source chain
    source: ChainAddress

    #: Recipient on the destination chain
    destination: ChainAddress

    #: Manual or automatic redemption
    delivery: DeliveryMode = field(default_factory=ManualDelivery)

    #: Opaque data for the receiving application
    payload: bytes | None = None

    def __post_init__(self):
        assert type(self.amount) == int, f"Amount must be integer base units, got {type(self.amount)}: {self.amount}"
        if self.amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {self.amount}")
        if self.token.chain != self.source.chain:
            raise ValueError(f"Token {self.token} does not live on the source chain {self.source.chain}")
        if self.source.chain == self.destination.chain:
            raise ValueError(f"Source and destination are both on {self.source.chain}")
        if isinstance(self.delivery, AutomaticDelivery) and self.delivery.native_gas is not None:
            if self.delivery.native_gas < 0:
                raise ValueError(f"Native gas must be non-negative, got {self.delivery.native_gas}")

    @property
    def source_chain(self) -> str:
        return self.source.chain

    @property
    def destination_chain(self) -> str:
        return self.destination.chain

    @property
    def automatic(self) -> bool:
        return self.delivery.automatic


@dataclass(slots=True, frozen=True)
class Quote:
    """Expected outcome of a transfer.

    Derived from a :py:class:`TransferRequest`, recomputed for every
    attempt and never mutated.
    """

    #: Token being sent
    source_token: TokenId

    #: Amount being sent, source base units
    source_amount: int

    #: Token the recipient receives
    destination_token: TokenId

    #: Amount the recipient receives, destination base units.
    #:
    #: This is the amount a follow-up (round trip) transfer should use.
    destination_amount: int

    #: Fee charged by the relayer for automatic delivery, source base units
    relayer_fee: int = 0

    #: Amount swapped to destination gas for automatic delivery, source base units
    native_gas: int = 0

    #: Precision remainder the bridge does not move, stays with the sender, source base units
    dust: int = 0


class TransferPhase(enum.Enum):
    """Lifecycle of a token transfer.

    Manual: created → initiated → attested → completing → completed

    Automatic: created → initiated → completed
    """

    #: Request built, nothing submitted
    created = "created"

    #: Source chain transactions submitted
    initiated = "initiated"

    #: Signed VAA fetched (manual delivery only)
    attested = "attested"

    #: Redemption on the destination chain is being submitted
    completing = "completing"

    #: Tokens delivered, or handed to the relayer for automatic delivery
    completed = "completed"

    #: Abandoned, see :py:attr:`TransferRecord.failure_reason`
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TransferPhase.completed, TransferPhase.failed)


class AttestationPhase(enum.Enum):
    """Lifecycle of a token metadata attestation."""

    created = "created"

    #: Attestation transaction submitted on the source chain
    attestation_submitted = "attestation_submitted"

    #: Signed attestation submitted to the destination chain
    attestation_signed = "attestation_signed"

    #: Wrapped asset visible on the destination chain
    registered = "registered"

    failed = "failed"


@dataclass(slots=True, frozen=True)
class MessageId:
    """Identifies one emitted bridge message."""

    #: Chain that emitted the message
    chain: str

    #: 32-byte universal emitter address as ``0x`` hex
    emitter: str

    #: Emitter specific sequence number
    sequence: int

    def __post_init__(self):
        object.__setattr__(self, "emitter", self.emitter.lower())

    def __str__(self) -> str:
        return f"{self.chain}/{self.emitter}/{self.sequence}"


@dataclass(slots=True, frozen=True)
class BridgeMessage:
    """A bridge message found in a source chain transaction."""

    id: MessageId

    #: Raw message payload, a token bridge payload for token bridge messages
    payload: bytes

    #: Account that sent the transaction, if the chain exposes it
    sender: str | None = None


@dataclass(slots=True)
class UnsignedTransaction:
    """One chain specific transaction waiting for a signature.

    :py:attr:`data` is opaque to the orchestrator and only interpreted by
    the :py:class:`~token_bridge.adapter.ChainAdapter` that built it.
    """

    #: Chain the transaction is for
    chain: str

    #: Short label for logging, e.g. ``"TokenBridge.transferTokens"``
    description: str

    #: Adapter specific transaction content
    data: Any = None


#: Transactions to be signed and submitted in order
TransactionSet = list[UnsignedTransaction]


@dataclass(slots=True)
class TransferRecord:
    """Mutable state of one transfer, owned by one :py:class:`~token_bridge.transfer.TokenTransfer`.

    Transaction id lists are append-only and in submission order.
    """

    request: TransferRequest

    phase: TransferPhase = TransferPhase.created

    source_tx_ids: list[str] = field(default_factory=list)

    #: Populated once, with the message that was attested
    attestation_ids: list[MessageId] = field(default_factory=list)

    destination_tx_ids: list[str] = field(default_factory=list)

    #: Set when the phase is :py:attr:`TransferPhase.failed`
    failure_reason: str | None = None

    def check_invariants(self):
        """Assert the record is internally consistent."""
        if self.destination_tx_ids:
            assert self.phase == TransferPhase.completed, f"Destination transactions recorded in phase {self.phase}"
        if self.attestation_ids:
            assert self.phase in (TransferPhase.attested, TransferPhase.completing, TransferPhase.completed), f"Attestation recorded in phase {self.phase}"
            assert not self.request.automatic, "Automatic transfers never fetch attestations"
