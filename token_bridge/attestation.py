"""Token attestation state machine.

Before a token can be transferred to a chain, its metadata must be
attested there so that the token bridge can create a wrapped asset.
The flow:

1. **Check**: if the wrapped asset already exists, nothing to do
2. **Create attestation**: publish the token metadata on the source chain
3. **Await signed attestation**: wait for the guardian signed AttestMeta VAA
4. **Submit attestation**: create the wrapped asset on the destination chain
5. **Poll for registration**: wait until the wrapped asset is visible

Example::

    from token_bridge.attestation import TokenAttestation

    attestation = TokenAttestation(context, token, source_payer, destination_payer)
    wrapped = attestation.run_to_completion(source_account, destination_account)
    if attestation.already_registered:
        print(f"Token already wrapped on {destination_payer.chain}: {wrapped}")
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any

from token_bridge.adapter import BridgeContext
from token_bridge.clock import CancelToken, poll_until
from token_bridge.constants import MESSAGE_TYPE_ATTEST_META
from token_bridge.errors import InvalidPhase, ParseError, SubmissionError, VaaNotFound
from token_bridge.models import AttestationPhase, ChainAddress, MessageId, TokenId
from token_bridge.vaa import SignedVAA

logger = logging.getLogger(__name__)


class TokenAttestation:
    """Registers a token's wrapped asset on a destination chain."""

    def __init__(
        self,
        context: BridgeContext,
        token: TokenId,
        source: ChainAddress,
        destination: ChainAddress,
    ):
        """
        :param token:
            Token to attest, on its origin chain.

        :param source:
            Account paying for the attestation on the token's chain.

        :param destination:
            Account paying for the wrapped asset creation on the destination chain.
        """
        assert token.chain == source.chain, f"Token {token} is not on the source chain {source.chain}"
        assert source.chain != destination.chain, f"Source and destination are both {source.chain}"

        self.context = context
        self.token = token
        self.source = source
        self.destination = destination

        self.phase = AttestationPhase.created

        #: Source chain attestation transactions
        self.source_tx_ids: list[str] = []

        #: Signed AttestMeta VAA
        self.attestation: SignedVAA | None = None

        #: Destination chain wrapped asset creation transactions
        self.destination_tx_ids: list[str] = []

        #: The wrapped asset, once registered
        self.wrapped_asset: TokenId | None = None

        #: Set when the token was registered before we attested anything
        self.already_registered = False

        self._message_id: MessageId | None = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<TokenAttestation {self.token} -> {self.destination.chain} phase={self.phase.value}>"

    @property
    def message_id(self) -> MessageId | None:
        """AttestMeta message emitted by the first source transaction.

        Looked up from the source chain on first use after
        :py:meth:`create_attestation`, so a receipt that is not indexed yet
        does not lose the submitted transaction.

        :raises ParseError:
            The transaction did not emit a bridge message (yet).
        """
        if self._message_id is None and self.source_tx_ids:
            txid = self.source_tx_ids[0]
            messages = self.context.get_chain(self.source.chain).parse_transaction(txid)
            if not messages:
                raise ParseError(f"Attestation transaction {txid} emitted no bridge message")
            self._message_id = messages[0].id
            logger.info("Attestation message: %s", self._message_id)
        return self._message_id

    def check_registration(self) -> TokenId | None:
        """Look up the wrapped asset before attesting anything.

        If it already exists, the attestation is done: the phase moves to
        ``registered`` and :py:attr:`already_registered` is set.

        :return:
            Wrapped asset or ``None``.
        """
        with self._exclusive("check_registration"):
            self._require_phase(AttestationPhase.created, "check_registration")
            wrapped = self._lookup_wrapped_asset()
            if wrapped is None:
                logger.info("No wrapped token found for %s on %s, proceeding with attestation", self.token, self.destination.chain)
                return None

            logger.info("Token %s already wrapped on %s as %s, skipping attestation", self.token, self.destination.chain, wrapped)
            self.wrapped_asset = wrapped
            self.already_registered = True
            self._set_phase(AttestationPhase.registered)
            return wrapped

    def create_attestation(self, signer: Any, cancel: CancelToken | None = None) -> list[str]:
        """Publish the token metadata on the source chain.

        :return:
            Source chain transaction ids.
        """
        with self._exclusive("create_attestation"):
            self._require_phase(AttestationPhase.created, "create_attestation")
            if cancel is not None:
                cancel.check(self.context.clock.time())

            source = self.context.get_chain(self.source.chain)
            transactions = source.create_attestation_tx(self.token.address, self.source)
            txids = source.submit(transactions, signer)
            if not txids:
                raise SubmissionError(f"{self.source.chain} adapter returned no transaction ids")

            self.source_tx_ids.extend(txids)
            logger.info("Created attestation (save this): %s", txids[0])
            self._set_phase(AttestationPhase.attestation_submitted)
            return txids

    def await_signed_attestation(self, timeout: float | None = None, cancel: CancelToken | None = None) -> SignedVAA:
        """Wait for the guardian signed AttestMeta VAA.

        :param timeout:
            Seconds to wait, defaults to :py:attr:`BridgeConfig.attestation_meta_timeout`.

        :raises VaaNotFound:
            Not signed in time. The phase is unchanged; call again with a longer timeout.

        :raises ParseError:
            The attestation transaction could not be read yet. The phase is unchanged.
        """
        with self._exclusive("await_signed_attestation"):
            self._require_phase(AttestationPhase.attestation_submitted, "await_signed_attestation")
            if self.attestation is not None:
                return self.attestation

            if timeout is None:
                timeout = self.context.config.attestation_meta_timeout

            vaa = self.context.attestation_source.fetch(self.message_id, MESSAGE_TYPE_ATTEST_META, timeout, cancel)
            if vaa is None:
                raise VaaNotFound(f"VAA for {self.message_id} not found after {timeout}s. Try extending the timeout.")

            self.attestation = vaa
            logger.info("Got signed attestation for %s, sequence %d", self.token, vaa.sequence)
            return vaa

    def submit_attestation(self, signer: Any, cancel: CancelToken | None = None) -> list[str]:
        """Create the wrapped asset on the destination chain from the signed VAA.

        :return:
            Destination chain transaction ids.
        """
        with self._exclusive("submit_attestation"):
            self._require_phase(AttestationPhase.attestation_submitted, "submit_attestation")
            if self.attestation is None:
                raise InvalidPhase("submit_attestation() needs a signed attestation, call await_signed_attestation() first")
            if cancel is not None:
                cancel.check(self.context.clock.time())

            destination = self.context.get_chain(self.destination.chain)
            logger.info("Attesting asset on destination chain %s", self.destination.chain)
            transactions = destination.submit_attestation_tx(self.attestation, self.destination)
            txids = destination.submit(transactions, signer)
            self.destination_tx_ids.extend(txids)
            logger.info("Submitted attestation, transaction hashes: %s", txids)

            self._set_phase(AttestationPhase.attestation_signed)
            return txids

    def poll_for_registration(self, poll_interval: float | None = None, cancel: CancelToken | None = None) -> TokenId:
        """Wait until the wrapped asset shows up on the destination chain.

        There is no timeout: how long registration takes depends on the
        chain. Use ``cancel`` to bound the wait.

        :param poll_interval:
            Seconds between lookups, defaults to :py:attr:`BridgeConfig.registration_poll_interval`.

        :raises OperationCancelled:
            ``cancel`` fired. The phase is unchanged.
        """
        with self._exclusive("poll_for_registration"):
            self._require_phase(AttestationPhase.attestation_signed, "poll_for_registration")

            if poll_interval is None:
                poll_interval = self.context.config.registration_poll_interval

            wrapped = poll_until(
                self._lookup_wrapped_asset,
                clock=self.context.clock,
                interval=poll_interval,
                cancel=cancel,
                description=f"wrapped asset of {self.token} on {self.destination.chain}",
            )
            self.wrapped_asset = wrapped
            logger.info("Wrapped asset: %s", wrapped)
            self._set_phase(AttestationPhase.registered)
            return wrapped

    def run_to_completion(
        self,
        source_signer: Any,
        destination_signer: Any,
        timeout: float | None = None,
        poll_interval: float | None = None,
        cancel: CancelToken | None = None,
    ) -> TokenId:
        """Run the whole attestation flow, skipping it if the token is already registered.

        Resumes from the current phase.

        :return:
            The wrapped asset on the destination chain.
        """
        if self.phase == AttestationPhase.created:
            if self.check_registration() is not None:
                return self.wrapped_asset
            self.create_attestation(source_signer, cancel)

        if self.phase == AttestationPhase.attestation_submitted:
            self.await_signed_attestation(timeout, cancel)
            self.submit_attestation(destination_signer, cancel)

        if self.phase == AttestationPhase.attestation_signed:
            self.poll_for_registration(poll_interval, cancel)

        if self.phase != AttestationPhase.registered:
            raise InvalidPhase(f"Attestation ended in phase {self.phase.value}")

        return self.wrapped_asset

    def fail(self, reason: str):
        """Abandon the attestation."""
        with self._exclusive("fail"):
            if self.phase in (AttestationPhase.registered, AttestationPhase.failed):
                raise InvalidPhase(f"Cannot fail an attestation in phase {self.phase.value}")
            logger.warning("Attestation %s failed: %s", self, reason)
            self._set_phase(AttestationPhase.failed)

    def _lookup_wrapped_asset(self) -> TokenId | None:
        wrapped = self.context.get_chain(self.destination.chain).get_wrapped_asset(self.token)
        if wrapped is None:
            logger.debug("Wrapped asset of %s not found yet on %s", self.token, self.destination.chain)
        return wrapped

    def _require_phase(self, phase: AttestationPhase, operation: str):
        if self.phase != phase:
            raise InvalidPhase(f"{operation}() needs phase {phase.value}, attestation is {self.phase.value}")

    def _set_phase(self, phase: AttestationPhase):
        logger.info("Attestation of %s phase %s -> %s", self.token, self.phase.value, phase.value)
        self.phase = phase

    @contextmanager
    def _exclusive(self, operation: str):
        if not self._lock.acquire(blocking=False):
            raise InvalidPhase(f"Cannot {operation}(): another operation is running on this attestation")
        try:
            yield
        finally:
            self._lock.release()
