"""Token transfer state machine.

Drives one transfer through its phases:

1. **Initiate**: submit the transfer on the source chain
2. **Attest**: wait for guardians to sign the transfer message (manual delivery only)
3. **Complete**: redeem the signed VAA on the destination chain (manual delivery only)

With automatic delivery a relayer contract performs step 3 on its own,
so the transfer is complete as soon as it is initiated.

Example (manual delivery)::

    from token_bridge.transfer import TokenTransfer

    transfer = TokenTransfer(context, request)
    quote = transfer.quote()
    transfer.initiate(source_account)
    transfer.fetch_attestation(timeout=60)
    transfer.complete_transfer(destination_account)
    assert transfer.phase == TransferPhase.completed

Example (resume after a crash)::

    transfer = TokenTransfer.recover(context, "Avalanche", "0x1234...")
    transfer.run_to_completion(source_account, destination_account)
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable

from token_bridge.adapter import BridgeContext
from token_bridge.clock import CancelToken
from token_bridge.constants import MESSAGE_TYPE_TRANSFER, MESSAGE_TYPE_TRANSFER_WITH_PAYLOAD, get_chain_name
from token_bridge.errors import AttestationTimeout, InsufficientAmount, InvalidPhase, ParseError, SubmissionError
from token_bridge.models import (
    AutomaticDelivery,
    BridgeMessage,
    ChainAddress,
    DeliveryMode,
    ManualDelivery,
    MessageId,
    Quote,
    TokenId,
    TransferPhase,
    TransferRecord,
    TransferRequest,
)
from token_bridge.quote import QuoteEngine
from token_bridge.vaa import (
    PAYLOAD_ID_TRANSFER_WITH_PAYLOAD,
    SignedVAA,
    TokenTransferPayload,
    decode_relayer_payload,
    decode_token_bridge_payload,
    denormalise_amount,
    from_universal_address,
)

logger = logging.getLogger(__name__)

#: Callback receiving the transfer and its new phase
PhaseCallback = Callable[["TokenTransfer", TransferPhase], None]


class TokenTransfer:
    """Owns the :py:class:`~token_bridge.models.TransferRecord` of one transfer.

    Phases advance strictly in order. Operations on the same transfer
    never overlap: calling one while another is still running raises
    :py:class:`~token_bridge.errors.InvalidPhase`. Different transfers are
    independent and can run in parallel threads.
    """

    def __init__(
        self,
        context: BridgeContext,
        request: TransferRequest,
        on_phase_change: PhaseCallback | None = None,
    ):
        """
        :param context:
            Chains and attestation source to use.

        :param request:
            What to transfer.

        :param on_phase_change:
            Called after every phase transition.
        """
        self.context = context
        self.record = TransferRecord(request=request)
        self.on_phase_change = on_phase_change

        #: Result of the latest :py:meth:`quote`
        self.last_quote: Quote | None = None

        #: Signed VAA, once fetched
        self.attestation: SignedVAA | None = None

        self._message_id: MessageId | None = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        request = self.request
        return f"<TokenTransfer {request.amount} {request.token} {request.source_chain} -> {request.destination_chain} phase={self.phase.value}>"

    @classmethod
    def recover(
        cls,
        context: BridgeContext,
        chain: str,
        txid: str,
        on_phase_change: PhaseCallback | None = None,
    ) -> "TokenTransfer":
        """Resume a transfer from its source chain transaction.

        Rebuilds the request from the transfer message emitted by the
        transaction. Nothing is submitted; the transfer starts in phase
        ``initiated`` with ``txid`` as its only source transaction.
        Automatic transfers start as ``completed`` instead: the relayer
        redeems them, so there is nothing left to drive.

        :param chain:
            Source chain of the transfer.

        :param txid:
            Source chain transaction that initiated the transfer.

        :raises ParseError:
            The transaction did not emit a token transfer message.
        """
        adapter = context.get_chain(chain)
        messages = adapter.parse_transaction(txid)
        if not messages:
            raise ParseError(f"No bridge messages in {chain} transaction {txid}")

        message = messages[0]
        request = _rebuild_request(context, chain, message)

        transfer = cls(context, request, on_phase_change=on_phase_change)
        transfer.record.phase = TransferPhase.initiated
        transfer.record.source_tx_ids.append(txid)
        transfer._message_id = message.id
        if request.automatic:
            # The relayer delivers without us, nothing left to drive
            transfer.record.phase = TransferPhase.completed

        logger.info("Recovered transfer from %s tx %s: %s", chain, txid, transfer)
        return transfer

    @property
    def request(self) -> TransferRequest:
        return self.record.request

    @property
    def phase(self) -> TransferPhase:
        return self.record.phase

    @property
    def message_id(self) -> MessageId | None:
        """Id of the transfer message, once known."""
        return self._message_id

    def quote(self) -> Quote:
        """Quote the transfer and remember it as :py:attr:`last_quote`.

        :raises InsufficientAmount:
            Automatic delivery where fees consume the whole amount.
            A transfer that has not been initiated yet moves to ``failed``.
        """
        if self.phase == TransferPhase.failed:
            raise InvalidPhase(f"Cannot quote a failed transfer: {self.record.failure_reason}")

        request = self.request
        quote = QuoteEngine(self.context).quote_transfer(request.source_chain, request.destination_chain, request)
        self.last_quote = quote

        if request.automatic and quote.destination_amount <= 0:
            reason = f"The amount requested {request.amount} is too low to cover the relayer fee {quote.relayer_fee} and native gas {quote.native_gas}"
            if self.phase == TransferPhase.created:
                self._fail(reason)
            raise InsufficientAmount(reason)

        return quote

    def initiate(self, signer: Any, cancel: CancelToken | None = None) -> list[str]:
        """Submit the transfer on the source chain.

        Quotes first unless :py:meth:`quote` was already called. Automatic
        transfers are quoted on every attempt, so one that cannot cover the
        current relayer fee fails before anything is submitted.

        :param signer:
            Source chain signer, passed to the source chain adapter.

        :param cancel:
            Checked before submitting. A submission in flight is not interrupted.

        :return:
            Source chain transaction ids.

        :raises SubmissionError:
            The phase stays ``created`` and the call can be retried.
        """
        with self._exclusive("initiate"):
            self._require_phase(TransferPhase.created, "initiate")

            if self.last_quote is None or self.request.automatic:
                self.quote()

            if cancel is not None:
                cancel.check(self.context.clock.time())

            request = self.request
            source = self.context.get_chain(request.source_chain)
            transactions = source.create_transfer_tx(request)

            logger.info("Starting transfer %s with %d transactions", self, len(transactions))
            txids = source.submit(transactions, signer)
            if not txids:
                raise SubmissionError(f"{request.source_chain} adapter returned no transaction ids")

            self.record.source_tx_ids.extend(txids)
            logger.info("Started transfer, source txids: %s", txids)

            if request.automatic:
                self._set_phase(TransferPhase.completed)
            else:
                self._set_phase(TransferPhase.initiated)

            return txids

    def fetch_attestation(self, timeout: float | None = None, cancel: CancelToken | None = None) -> list[MessageId]:
        """Wait until guardians have signed the transfer message.

        The message is looked up from the first source transaction.

        :param timeout:
            Seconds to wait, defaults to :py:attr:`BridgeConfig.attestation_timeout`.

        :param cancel:
            Abort the wait early.

        :return:
            Attested message ids.

        :raises AttestationTimeout:
            Not signed in time. The phase stays ``initiated``; call again.

        :raises InvalidPhase:
            Automatic delivery, or not in phase ``initiated``.
        """
        with self._exclusive("fetch_attestation"):
            if self.request.automatic:
                raise InvalidPhase("Automatic transfers are redeemed by the relayer, there is no attestation to fetch")
            self._require_phase(TransferPhase.initiated, "fetch_attestation")

            if timeout is None:
                timeout = self.context.config.attestation_timeout

            message_id = self._resolve_message_id()
            message_type = MESSAGE_TYPE_TRANSFER_WITH_PAYLOAD if self.request.payload else MESSAGE_TYPE_TRANSFER

            logger.info("Getting attestation for %s, timeout %.1fs", message_id, timeout)
            vaa = self.context.attestation_source.fetch(message_id, message_type, timeout, cancel)
            if vaa is None:
                raise AttestationTimeout(f"VAA for {message_id} not available after {timeout}s")

            self.attestation = vaa
            self.record.attestation_ids.append(message_id)
            self._set_phase(TransferPhase.attested)
            return list(self.record.attestation_ids)

    def complete_transfer(self, signer: Any, cancel: CancelToken | None = None) -> list[str]:
        """Redeem the signed VAA on the destination chain.

        :param signer:
            Destination chain signer.

        :param cancel:
            Checked before submitting.

        :return:
            Destination chain transaction ids.

        :raises SubmissionError:
            The phase goes back to ``attested`` and the call can be retried.

        :raises InvalidPhase:
            Automatic delivery, or not in phase ``attested``.
        """
        with self._exclusive("complete_transfer"):
            if self.request.automatic:
                raise InvalidPhase("Automatic transfers are completed by the relayer")
            self._require_phase(TransferPhase.attested, "complete_transfer")

            if cancel is not None:
                cancel.check(self.context.clock.time())

            destination = self.context.get_chain(self.request.destination_chain)
            transactions = destination.redeem_tx(self.attestation, self.request.destination)

            self._set_phase(TransferPhase.completing)
            try:
                txids = destination.submit(transactions, signer)
            except Exception:
                self._set_phase(TransferPhase.attested)
                raise

            self.record.destination_tx_ids.extend(txids)
            self._set_phase(TransferPhase.completed)
            logger.info("Completed transfer, destination txids: %s", txids)
            return txids

    def run_to_completion(
        self,
        source_signer: Any,
        destination_signer: Any = None,
        attestation_timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> TransferRecord:
        """Run every remaining phase the delivery mode needs.

        Picks up from the current phase, so it also finishes recovered
        or partially driven transfers.

        :param destination_signer:
            Needed for manual delivery only.

        :return:
            The completed record.
        """
        if self.phase == TransferPhase.failed:
            raise InvalidPhase(f"Transfer failed: {self.record.failure_reason}")

        if self.phase == TransferPhase.created:
            self.initiate(source_signer, cancel)

        if self.request.automatic:
            return self.record

        if self.phase == TransferPhase.initiated:
            self.fetch_attestation(attestation_timeout, cancel)

        if self.phase != TransferPhase.completed:
            assert destination_signer is not None, "Manual delivery needs a destination signer"
            self.complete_transfer(destination_signer, cancel)

        return self.record

    def fail(self, reason: str):
        """Abandon the transfer.

        :raises InvalidPhase:
            Already completed or failed.
        """
        with self._exclusive("fail"):
            self._fail(reason)

    def _fail(self, reason: str):
        if self.phase.is_terminal:
            raise InvalidPhase(f"Cannot fail a transfer in phase {self.phase.value}")
        logger.warning("Transfer %s failed: %s", self, reason)
        self.record.failure_reason = reason
        self._set_phase(TransferPhase.failed)

    def _resolve_message_id(self) -> MessageId:
        if self._message_id is None:
            txid = self.record.source_tx_ids[0]
            messages = self.context.get_chain(self.request.source_chain).parse_transaction(txid)
            if not messages:
                raise ParseError(f"No bridge messages in {self.request.source_chain} transaction {txid}")
            self._message_id = messages[0].id
        return self._message_id

    def _require_phase(self, phase: TransferPhase, operation: str):
        if self.phase != phase:
            raise InvalidPhase(f"{operation}() needs phase {phase.value}, transfer is {self.phase.value}")

    def _set_phase(self, phase: TransferPhase):
        old_phase = self.record.phase
        self.record.phase = phase
        self.record.check_invariants()
        if old_phase != phase:
            logger.info("Transfer %s -> %s phase %s -> %s", self.request.source_chain, self.request.destination_chain, old_phase.value, phase.value)
        if self.on_phase_change is not None:
            self.on_phase_change(self, phase)

    @contextmanager
    def _exclusive(self, operation: str):
        if not self._lock.acquire(blocking=False):
            raise InvalidPhase(f"Cannot {operation}(): another operation is running on this transfer")
        try:
            yield
        finally:
            self._lock.release()


def _rebuild_request(context: BridgeContext, chain: str, message: BridgeMessage) -> TransferRequest:
    """Reconstruct the request behind a transfer message."""
    decoded = decode_token_bridge_payload(message.payload)
    if not isinstance(decoded, TokenTransferPayload):
        raise ParseError(f"Message {message.id} is not a token transfer")

    source = context.get_chain(chain)
    destination_chain = get_chain_name(decoded.to_chain)
    origin_chain = get_chain_name(decoded.token_chain)
    origin = TokenId(origin_chain, from_universal_address(origin_chain, decoded.token_address))

    if origin.chain == chain:
        token = origin
    else:
        token = source.get_wrapped_asset(origin)
        if token is None:
            raise ParseError(f"Transferred token {origin} has no wrapped asset on {chain}")

    decimals = source.get_decimals(token)
    amount = denormalise_amount(decoded.amount, decimals)

    destination_adapter = context.adapters.get(destination_chain)
    relayer = destination_adapter.relayer_address if destination_adapter is not None else None
    automatic = decoded.payload_id == PAYLOAD_ID_TRANSFER_WITH_PAYLOAD and relayer is not None and "0x" + decoded.to.hex() == relayer.lower()

    delivery: DeliveryMode
    if automatic:
        relayer_payload = decode_relayer_payload(decoded.payload)
        recipient = from_universal_address(destination_chain, relayer_payload.target_recipient)
        native_gas = denormalise_amount(relayer_payload.to_native_token_amount, decimals)
        delivery = AutomaticDelivery(native_gas=native_gas or None)
        payload = None
    else:
        recipient = from_universal_address(destination_chain, decoded.to)
        delivery = ManualDelivery()
        payload = decoded.payload

    sender = message.sender
    if sender is None and decoded.from_address is not None and not automatic:
        sender = from_universal_address(chain, decoded.from_address)
    if sender is None:
        raise ParseError(f"Cannot tell the sender of {message.id}")

    return TransferRequest(
        token=token,
        amount=amount,
        source=ChainAddress(chain, sender),
        destination=ChainAddress(destination_chain, recipient),
        delivery=delivery,
        payload=payload,
    )
