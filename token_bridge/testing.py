"""In-memory chains and guardians for testing.

- :py:class:`FakeClock`: simulated time, sleeping advances it instantly
- :py:class:`FakeChainAdapter`: a chain with a token bridge that records
  submitted transactions, emits token bridge messages and creates
  wrapped assets
- :py:class:`FakeAttestationSource`: signs whatever the fake chains
  published, optionally after a delay

Example::

    from token_bridge.testing import create_fake_context

    context, chains = create_fake_context(["Avalanche", "Sepolia"])
    token = chains["Avalanche"].register_token("0x...", decimals=8)
"""

import logging
import threading
from typing import Any, Callable

from eth_utils import keccak

from token_bridge.adapter import AttestationSource, BridgeContext, ChainAdapter
from token_bridge.clock import CancelToken, Clock, poll_until
from token_bridge.config import BridgeConfig
from token_bridge.constants import MAX_BRIDGE_DECIMALS, get_chain_name, get_wormhole_chain_id
from token_bridge.errors import ParseError, SubmissionError
from token_bridge.models import (
    AutomaticDelivery,
    BridgeMessage,
    ChainAddress,
    MessageId,
    TokenId,
    TransactionSet,
    TransferRequest,
    UnsignedTransaction,
)
from token_bridge.vaa import (
    AttestMetaPayload,
    GuardianSignature,
    SignedVAA,
    decode_token_bridge_payload,
    encode_attest_meta_payload,
    encode_relayer_payload,
    encode_transfer_payload,
    from_universal_address,
    normalise_amount,
    serialise_vaa,
    to_universal_address,
)
from token_bridge.wormholescan import check_vaa_matches

logger = logging.getLogger(__name__)

#: Chain the test tokens are native to
SOURCE_CHAIN = "Avalanche"

#: Chain the test tokens are wrapped on
DESTINATION_CHAIN = "Sepolia"


def fake_address(label: str) -> str:
    """Deterministic EVM style address for a label."""
    return "0x" + keccak(text=label)[-20:].hex()


def fake_relayer_address(chain: str) -> str:
    """Universal address of the fake relayer contract on a chain."""
    return "0x" + to_universal_address(chain, fake_address(f"relayer:{chain}")).hex()


def fake_emitter_address(chain: str) -> str:
    """Universal address of the fake token bridge on a chain."""
    return "0x" + to_universal_address(chain, fake_address(f"token-bridge:{chain}")).hex()


def make_vaa(message_id: MessageId, payload: bytes, timestamp: int = 0, nonce: int = 0) -> SignedVAA:
    """Build a VAA signed by one dummy guardian."""
    vaa = SignedVAA(
        version=1,
        guardian_set_index=0,
        signatures=[GuardianSignature(0, b"\x01" * 65)],
        timestamp=timestamp,
        nonce=nonce,
        emitter_chain=get_wormhole_chain_id(message_id.chain),
        emitter_address=bytes.fromhex(message_id.emitter.removeprefix("0x")),
        sequence=message_id.sequence,
        consistency_level=1,
        payload=payload,
    )
    vaa.raw = serialise_vaa(vaa)
    return vaa


class FakeClock(Clock):
    """Simulated time.

    :py:meth:`sleep` returns immediately after advancing :py:meth:`time`.
    ``on_sleep`` runs after every sleep, to let tests change the world
    while "time passes" (cancel a token, register an asset...).
    """

    def __init__(self, now: float = 0.0, on_sleep: Callable[["FakeClock"], None] | None = None):
        self.now = now
        self.on_sleep = on_sleep
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float, cancel: CancelToken | None = None):
        if cancel is not None:
            cancel.check(self.now)
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            self.on_sleep(self)
        if cancel is not None:
            cancel.check(self.now)


class FakeChainAdapter(ChainAdapter):
    """A chain with a token bridge, in memory.

    Transactions are "confirmed" immediately. Token bridge messages are
    published with increasing sequence numbers and picked up by
    :py:class:`FakeAttestationSource`.
    """

    def __init__(self, chain: str, clock: Clock, relayer_fee: int = 0, registration_delay: float = 0.0):
        """
        :param relayer_fee:
            Automatic delivery fee charged for any token and destination, in token base units.

        :param registration_delay:
            Seconds between submitting an attestation and the wrapped asset becoming visible.
        """
        self.chain = chain
        self.clock = clock
        self.default_relayer_fee = relayer_fee
        self.registration_delay = registration_delay

        self.emitter = fake_emitter_address(chain)

        #: Token → decimals
        self.decimals: dict[TokenId, int] = {}

        #: (destination chain, token) → relayer fee overrides
        self.relayer_fees: dict[tuple[str, TokenId], int] = {}

        #: Origin token → wrapped asset on this chain
        self.wrapped: dict[TokenId, TokenId] = {}

        #: Wrapped asset on this chain → origin token
        self.origins: dict[TokenId, TokenId] = {}

        #: Origin token → (decimals, time the wrapped asset becomes visible)
        self.pending_registrations: dict[TokenId, tuple[int, float]] = {}

        #: Published messages: id → (payload, publish time)
        self.published: dict[MessageId, tuple[bytes, float]] = {}

        #: txid → emitted messages
        self.transactions: dict[str, list[BridgeMessage]] = {}

        #: All submitted transactions in order
        self.submitted: list[UnsignedTransaction] = []

        #: Signers that submitted, in order
        self.signers: list[Any] = []

        #: VAAs redeemed on this chain
        self.redeemed: list[SignedVAA] = []

        #: Reject this many upcoming submit() calls
        self.fail_submissions = 0

        self.sequence = 0
        self._tx_counter = 0
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<FakeChainAdapter {self.chain}>"

    @property
    def relayer_address(self) -> str | None:
        return fake_relayer_address(self.chain)

    def register_token(self, address: str, decimals: int) -> TokenId:
        """Add a native token."""
        token = TokenId(self.chain, address)
        self.decimals[token] = decimals
        return token

    def register_wrapped(self, origin: TokenId, decimals: int) -> TokenId:
        """Add a wrapped asset for a foreign token, as if it had been attested."""
        assert origin.chain != self.chain, f"{origin} is native to {self.chain}"
        wrapped = TokenId(self.chain, fake_address(f"wrapped:{self.chain}:{origin}"))
        self.wrapped[origin] = wrapped
        self.origins[wrapped] = origin
        self.decimals[wrapped] = min(decimals, MAX_BRIDGE_DECIMALS)
        return wrapped

    def submit(self, transactions: TransactionSet, signer: Any) -> list[str]:
        with self._lock:
            if self.fail_submissions > 0:
                self.fail_submissions -= 1
                raise SubmissionError(f"{self.chain}: transaction rejected")

            txids = []
            for tx in transactions:
                assert tx.chain == self.chain, f"Transaction for {tx.chain} submitted to {self.chain}"
                self._tx_counter += 1
                txid = "0x" + keccak(text=f"{self.chain}:{self._tx_counter}").hex()
                self._apply(txid, tx)
                self.submitted.append(tx)
                self.signers.append(signer)
                txids.append(txid)
            return txids

    def _apply(self, txid: str, tx: UnsignedTransaction):
        data = tx.data or {}

        if "message" in data:
            self.sequence += 1
            message_id = MessageId(self.chain, self.emitter, self.sequence)
            self.published[message_id] = (data["message"], self.clock.time())
            self.transactions[txid] = [BridgeMessage(message_id, data["message"], data.get("sender"))]

        if "create_wrapped" in data:
            meta = decode_token_bridge_payload(data["create_wrapped"].payload)
            assert isinstance(meta, AttestMetaPayload)
            origin = TokenId(get_chain_name(meta.token_chain), from_universal_address(get_chain_name(meta.token_chain), meta.token_address))
            self.pending_registrations[origin] = (meta.decimals, self.clock.time() + self.registration_delay)

        if "redeem" in data:
            self.redeemed.append(data["redeem"])

    def parse_transaction(self, txid: str) -> list[BridgeMessage]:
        messages = self.transactions.get(txid)
        if not messages:
            raise ParseError(f"{self.chain} transaction {txid} has no bridge messages")
        return list(messages)

    def get_wrapped_asset(self, token: TokenId) -> TokenId | None:
        with self._lock:
            pending = self.pending_registrations.get(token)
            if pending is not None and self.clock.time() >= pending[1]:
                del self.pending_registrations[token]
                self.register_wrapped(token, pending[0])
        return self.wrapped.get(token)

    def get_original_asset(self, token: TokenId) -> TokenId:
        return self.origins.get(token, token)

    def get_decimals(self, token: TokenId) -> int:
        decimals = self.decimals.get(token)
        if decimals is None:
            raise ValueError(f"Unknown token {token} on {self.chain}")
        return decimals

    def get_relayer_fee(self, destination_chain: str, token: TokenId) -> int:
        return self.relayer_fees.get((destination_chain, token), self.default_relayer_fee)

    def create_transfer_tx(self, request: TransferRequest) -> TransactionSet:
        origin = self.get_original_asset(request.token)
        decimals = self.get_decimals(request.token)
        destination_chain = request.destination_chain

        common = dict(
            amount=normalise_amount(request.amount, decimals),
            token_address=to_universal_address(origin.chain, origin.address),
            token_chain=get_wormhole_chain_id(origin.chain),
            to_chain=get_wormhole_chain_id(destination_chain),
        )

        if isinstance(request.delivery, AutomaticDelivery):
            relayer_payload = encode_relayer_payload(
                target_relayer_fee=normalise_amount(self.get_relayer_fee(destination_chain, request.token), decimals),
                to_native_token_amount=normalise_amount(request.delivery.native_gas or 0, decimals),
                target_recipient=to_universal_address(destination_chain, request.destination.address),
            )
            message = encode_transfer_payload(
                to=bytes.fromhex(fake_relayer_address(destination_chain).removeprefix("0x")),
                from_address=bytes.fromhex(self.relayer_address.removeprefix("0x")),
                payload=relayer_payload,
                **common,
            )
            description = "TokenBridgeRelayer.transferTokensWithRelay"
        elif request.payload is not None:
            message = encode_transfer_payload(
                to=to_universal_address(destination_chain, request.destination.address),
                from_address=to_universal_address(self.chain, request.source.address),
                payload=request.payload,
                **common,
            )
            description = "TokenBridge.transferTokensWithPayload"
        else:
            message = encode_transfer_payload(
                to=to_universal_address(destination_chain, request.destination.address),
                **common,
            )
            description = "TokenBridge.transferTokens"

        return [UnsignedTransaction(self.chain, description, {"message": message, "sender": request.source.address})]

    def redeem_tx(self, vaa: SignedVAA, recipient: ChainAddress) -> TransactionSet:
        return [UnsignedTransaction(self.chain, "TokenBridge.completeTransfer", {"redeem": vaa, "recipient": recipient})]

    def create_attestation_tx(self, token_address: str, submitter: ChainAddress) -> TransactionSet:
        token = TokenId(self.chain, token_address)
        message = encode_attest_meta_payload(
            token_address=to_universal_address(self.chain, token.address),
            token_chain=get_wormhole_chain_id(self.chain),
            decimals=self.get_decimals(token),
            symbol="FAKE",
            name="Fake token",
        )
        return [UnsignedTransaction(self.chain, "TokenBridge.attestToken", {"message": message, "sender": submitter.address})]

    def submit_attestation_tx(self, vaa: SignedVAA, submitter: ChainAddress) -> TransactionSet:
        return [UnsignedTransaction(self.chain, "TokenBridge.createWrapped", {"create_wrapped": vaa, "sender": submitter.address})]


class FakeAttestationSource(AttestationSource):
    """Guardians that sign everything the fake chains publish.

    :py:attr:`withheld` messages are never signed, to simulate timeouts.
    """

    def __init__(self, adapters: list[FakeChainAdapter], clock: Clock, signing_delay: float = 0.0, poll_interval: float = 1.0):
        """
        :param signing_delay:
            Seconds between publishing and the VAA becoming available.

        :param poll_interval:
            Seconds between simulated polls.
        """
        self.adapters = {a.chain: a for a in adapters}
        self.clock = clock
        self.signing_delay = signing_delay
        self.poll_interval = poll_interval
        self.withheld: set[MessageId] = set()
        self.fetch_calls: list[tuple[MessageId, str, float]] = []

    def fetch(
        self,
        message_id: MessageId,
        message_type: str,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> SignedVAA | None:
        self.fetch_calls.append((message_id, message_type, timeout))

        def _attempt() -> SignedVAA | None:
            adapter = self.adapters.get(message_id.chain)
            published = adapter.published.get(message_id) if adapter else None
            if published is None or message_id in self.withheld:
                return None
            payload, published_at = published
            if self.clock.time() - published_at < self.signing_delay:
                return None
            vaa = make_vaa(message_id, payload, timestamp=int(published_at))
            check_vaa_matches(vaa, message_id, message_type)
            return vaa

        return poll_until(_attempt, clock=self.clock, interval=self.poll_interval, timeout=timeout, cancel=cancel, description=f"fake VAA of {message_id}")


def create_fake_context(
    chains: list[str],
    relayer_fee: int = 0,
    signing_delay: float = 0.0,
    registration_delay: float = 0.0,
) -> tuple[BridgeContext, dict[str, FakeChainAdapter]]:
    """Wire fake chains, fake guardians and a fake clock together.

    :return:
        Tuple (context, chain name → adapter)
    """
    clock = FakeClock()
    adapters = {chain: FakeChainAdapter(chain, clock, relayer_fee=relayer_fee, registration_delay=registration_delay) for chain in chains}
    source = FakeAttestationSource(list(adapters.values()), clock, signing_delay=signing_delay)
    context = BridgeContext(
        adapters=dict(adapters),
        attestation_source=source,
        config=BridgeConfig.create_test_config(),
        clock=clock,
    )
    return context, adapters
