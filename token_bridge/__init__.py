"""Cross-chain token transfers over the Wormhole token bridge.

- :py:class:`~token_bridge.transfer.TokenTransfer`: initiate, attest and complete one transfer
- :py:class:`~token_bridge.attestation.TokenAttestation`: register a token's wrapped asset on another chain
- :py:class:`~token_bridge.round_trip.RoundTripCoordinator`: send tokens there and back
- :py:class:`~token_bridge.quote.QuoteEngine`: what the recipient gets

Chains are reached through :py:class:`~token_bridge.adapter.ChainAdapter`
implementations and VAAs through an :py:class:`~token_bridge.adapter.AttestationSource`,
both passed in a :py:class:`~token_bridge.adapter.BridgeContext`.
"""

from token_bridge.adapter import AttestationSource, BridgeContext, ChainAdapter
from token_bridge.attestation import TokenAttestation
from token_bridge.clock import CancelToken, SystemClock
from token_bridge.config import BridgeConfig
from token_bridge.errors import (
    AttestationError,
    AttestationTimeout,
    AttestationUnavailable,
    BridgeError,
    InsufficientAmount,
    InvalidPhase,
    OperationCancelled,
    ParseError,
    SubmissionError,
    UnregisteredToken,
    VaaNotFound,
)
from token_bridge.models import (
    AttestationPhase,
    AutomaticDelivery,
    ChainAddress,
    ManualDelivery,
    Quote,
    TokenId,
    TransferPhase,
    TransferRecord,
    TransferRequest,
)
from token_bridge.quote import QuoteEngine
from token_bridge.round_trip import RoundTripCoordinator, RoundTripResult
from token_bridge.transfer import TokenTransfer

__all__ = [
    "AttestationError",
    "AttestationPhase",
    "AttestationSource",
    "AttestationTimeout",
    "AttestationUnavailable",
    "AutomaticDelivery",
    "BridgeConfig",
    "BridgeContext",
    "BridgeError",
    "CancelToken",
    "ChainAdapter",
    "ChainAddress",
    "InsufficientAmount",
    "InvalidPhase",
    "ManualDelivery",
    "OperationCancelled",
    "ParseError",
    "Quote",
    "QuoteEngine",
    "RoundTripCoordinator",
    "RoundTripResult",
    "SubmissionError",
    "SystemClock",
    "TokenAttestation",
    "TokenId",
    "TokenTransfer",
    "TransferPhase",
    "TransferRecord",
    "TransferRequest",
    "UnregisteredToken",
    "VaaNotFound",
]
