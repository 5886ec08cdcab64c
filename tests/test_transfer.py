"""Token transfer state machine against fake chains."""

import pytest

from token_bridge.clock import CancelToken
from token_bridge.errors import AttestationTimeout, InsufficientAmount, InvalidPhase, OperationCancelled, ParseError, SubmissionError
from token_bridge.models import AutomaticDelivery, TransferPhase, TransferRequest
from token_bridge.testing import DESTINATION_CHAIN, SOURCE_CHAIN, create_fake_context
from token_bridge.transfer import TokenTransfer
from token_bridge.vaa import TokenTransferPayload, decode_token_bridge_payload, to_universal_address


@pytest.fixture()
def manual_request(token, sender, recipient) -> TransferRequest:
    return TransferRequest(token=token, amount=1_000, source=sender, destination=recipient)


@pytest.fixture()
def automatic_request(token, sender, recipient) -> TransferRequest:
    return TransferRequest(token=token, amount=1_000, source=sender, destination=recipient, delivery=AutomaticDelivery())


def test_manual_transfer(context, chains, manual_request, recipient):
    """Manual delivery goes initiated, attested, completing, completed."""
    phases = []
    transfer = TokenTransfer(context, manual_request, on_phase_change=lambda t, phase: phases.append(phase))
    assert transfer.phase == TransferPhase.created

    source_txids = transfer.initiate("source-signer")
    assert transfer.phase == TransferPhase.initiated
    assert transfer.record.source_tx_ids == source_txids
    assert len(source_txids) == 1

    attested = transfer.fetch_attestation()
    assert transfer.phase == TransferPhase.attested
    assert attested == [chains[SOURCE_CHAIN].parse_transaction(source_txids[0])[0].id]

    destination_txids = transfer.complete_transfer("destination-signer")
    assert transfer.phase == TransferPhase.completed
    assert transfer.record.destination_tx_ids == destination_txids
    transfer.record.check_invariants()

    assert phases == [TransferPhase.initiated, TransferPhase.attested, TransferPhase.completing, TransferPhase.completed]
    assert chains[SOURCE_CHAIN].signers == ["source-signer"]
    assert chains[DESTINATION_CHAIN].signers == ["destination-signer"]
    assert chains[DESTINATION_CHAIN].redeemed == [transfer.attestation]

    payload = decode_token_bridge_payload(transfer.attestation.payload)
    assert isinstance(payload, TokenTransferPayload)
    assert payload.amount == 1_000
    assert payload.to == to_universal_address(DESTINATION_CHAIN, recipient.address)


def test_automatic_transfer_completes_on_initiate(context, chains, automatic_request):
    """Automatic delivery never fetches an attestation."""
    transfer = TokenTransfer(context, automatic_request)
    transfer.initiate("source-signer")

    assert transfer.phase == TransferPhase.completed
    assert transfer.record.attestation_ids == []
    assert transfer.record.destination_tx_ids == []
    assert context.attestation_source.fetch_calls == []
    assert chains[DESTINATION_CHAIN].submitted == []


def test_automatic_transfer_has_no_manual_steps(context, automatic_request):
    """Attestation and redemption are the relayer's job."""
    transfer = TokenTransfer(context, automatic_request)
    transfer.initiate("source-signer")

    with pytest.raises(InvalidPhase):
        transfer.fetch_attestation()

    with pytest.raises(InvalidPhase):
        transfer.complete_transfer("destination-signer")


def test_insufficient_amount_fails_before_submitting(context, chains, token, sender, recipient):
    """Fees larger than the amount fail the transfer and submit nothing."""
    chains[SOURCE_CHAIN].default_relayer_fee = 150
    request = TransferRequest(token=token, amount=100, source=sender, destination=recipient, delivery=AutomaticDelivery())
    transfer = TokenTransfer(context, request)

    with pytest.raises(InsufficientAmount):
        transfer.initiate("source-signer")

    assert transfer.phase == TransferPhase.failed
    assert "too low" in transfer.record.failure_reason
    assert chains[SOURCE_CHAIN].submitted == []

    with pytest.raises(InvalidPhase):
        transfer.initiate("source-signer")


def test_attestation_timeout_is_retryable(context, chains, manual_request):
    """A timed out fetch leaves the transfer initiated."""
    transfer = TokenTransfer(context, manual_request)
    txids = transfer.initiate("source-signer")
    message_id = chains[SOURCE_CHAIN].parse_transaction(txids[0])[0].id
    context.attestation_source.withheld.add(message_id)

    with pytest.raises(AttestationTimeout) as exc_info:
        transfer.fetch_attestation(timeout=5.0)

    assert isinstance(exc_info.value, TimeoutError)
    assert transfer.phase == TransferPhase.initiated
    assert transfer.record.attestation_ids == []
    assert context.clock.time() == pytest.approx(5.0)

    context.attestation_source.withheld.clear()
    transfer.fetch_attestation(timeout=5.0)
    assert transfer.phase == TransferPhase.attested
    assert transfer.record.attestation_ids == [message_id]


def test_fetch_attestation_waits_for_guardians(context, manual_request):
    """The VAA shows up after the signing delay of simulated time."""
    context.attestation_source.signing_delay = 3.0
    transfer = TokenTransfer(context, manual_request)
    transfer.initiate("source-signer")
    transfer.fetch_attestation(timeout=60)
    assert transfer.phase == TransferPhase.attested
    assert context.clock.time() == pytest.approx(3.0)


def test_fetch_attestation_cancelled(context, chains, manual_request):
    """Cancelling a fetch keeps the phase."""
    transfer = TokenTransfer(context, manual_request)
    txids = transfer.initiate("source-signer")
    context.attestation_source.withheld.add(chains[SOURCE_CHAIN].parse_transaction(txids[0])[0].id)

    cancel = CancelToken.with_timeout(context.clock, 2.0)
    with pytest.raises(OperationCancelled):
        transfer.fetch_attestation(timeout=60, cancel=cancel)
    assert transfer.phase == TransferPhase.initiated

    cancelled = CancelToken()
    cancelled.cancel()
    with pytest.raises(OperationCancelled):
        transfer.fetch_attestation(timeout=60, cancel=cancelled)
    assert transfer.phase == TransferPhase.initiated


def test_initiate_submission_error(context, chains, manual_request):
    """A failed submission leaves the transfer created and retryable."""
    chains[SOURCE_CHAIN].fail_submissions = 1
    transfer = TokenTransfer(context, manual_request)

    with pytest.raises(SubmissionError):
        transfer.initiate("source-signer")
    assert transfer.phase == TransferPhase.created
    assert transfer.record.source_tx_ids == []

    transfer.initiate("source-signer")
    assert transfer.phase == TransferPhase.initiated


def test_automatic_retry_quotes_current_relayer_fee(context, chains, automatic_request):
    """A retried automatic transfer checks the relayer fee again before submitting."""
    chains[SOURCE_CHAIN].default_relayer_fee = 100
    chains[SOURCE_CHAIN].fail_submissions = 1
    transfer = TokenTransfer(context, automatic_request)

    with pytest.raises(SubmissionError):
        transfer.initiate("source-signer")
    assert transfer.phase == TransferPhase.created
    assert transfer.last_quote.relayer_fee == 100

    chains[SOURCE_CHAIN].default_relayer_fee = 2_000
    with pytest.raises(InsufficientAmount):
        transfer.initiate("source-signer")

    assert transfer.last_quote.relayer_fee == 2_000
    assert transfer.phase == TransferPhase.failed
    assert chains[SOURCE_CHAIN].submitted == []


def test_complete_submission_error_reverts_to_attested(context, chains, manual_request):
    """A failed redemption goes back to attested."""
    transfer = TokenTransfer(context, manual_request)
    transfer.initiate("source-signer")
    transfer.fetch_attestation()

    chains[DESTINATION_CHAIN].fail_submissions = 1
    with pytest.raises(SubmissionError):
        transfer.complete_transfer("destination-signer")
    assert transfer.phase == TransferPhase.attested
    assert transfer.record.destination_tx_ids == []

    transfer.complete_transfer("destination-signer")
    assert transfer.phase == TransferPhase.completed


def test_out_of_order_operations(context, manual_request):
    """Operations check the phase."""
    transfer = TokenTransfer(context, manual_request)

    with pytest.raises(InvalidPhase):
        transfer.fetch_attestation()

    with pytest.raises(InvalidPhase):
        transfer.complete_transfer("destination-signer")

    transfer.initiate("source-signer")
    with pytest.raises(InvalidPhase):
        transfer.initiate("source-signer")

    with pytest.raises(InvalidPhase):
        transfer.complete_transfer("destination-signer")


def test_overlapping_operations_rejected(context, manual_request):
    """Starting an operation while another runs on the same transfer raises InvalidPhase."""
    errors = []

    def on_phase_change(transfer: TokenTransfer, phase: TransferPhase):
        try:
            transfer.fetch_attestation()
        except InvalidPhase as e:
            errors.append(e)

    transfer = TokenTransfer(context, manual_request, on_phase_change=on_phase_change)
    transfer.initiate("source-signer")

    assert len(errors) == 1
    assert "another operation" in str(errors[0])
    assert transfer.phase == TransferPhase.initiated


def test_recover_manual_transfer(context, chains, manual_request):
    """A recovered transfer has the same request and picks up from initiated."""
    original = TokenTransfer(context, manual_request)
    txids = original.initiate("source-signer")

    recovered = TokenTransfer.recover(context, SOURCE_CHAIN, txids[0])
    assert recovered.request == manual_request
    assert recovered.phase == TransferPhase.initiated
    assert recovered.record.source_tx_ids == [txids[0]]
    assert recovered.message_id == chains[SOURCE_CHAIN].parse_transaction(txids[0])[0].id

    recovered.run_to_completion("source-signer", "destination-signer")
    assert recovered.phase == TransferPhase.completed
    assert len(recovered.record.attestation_ids) == 1


def test_recovered_transfer_matches_uninterrupted_run(context, manual_request):
    """Recovering after initiate ends with the same record as a run without interruption."""
    txids = TokenTransfer(context, manual_request).initiate("source-signer")
    recovered = TokenTransfer.recover(context, SOURCE_CHAIN, txids[0])
    recovered_record = recovered.run_to_completion("source-signer", "destination-signer")

    fresh_context, fresh_chains = create_fake_context([SOURCE_CHAIN, DESTINATION_CHAIN])
    token = fresh_chains[SOURCE_CHAIN].register_token(manual_request.token.address, decimals=8)
    fresh_chains[DESTINATION_CHAIN].register_wrapped(token, decimals=8)
    fresh_record = TokenTransfer(fresh_context, manual_request).run_to_completion("source-signer", "destination-signer")

    assert recovered_record.request == fresh_record.request
    assert recovered_record.phase == fresh_record.phase == TransferPhase.completed
    assert recovered_record.source_tx_ids == fresh_record.source_tx_ids
    assert recovered_record.attestation_ids == fresh_record.attestation_ids
    assert len(recovered_record.destination_tx_ids) == len(fresh_record.destination_tx_ids) == 1


def test_recover_transfer_with_payload(context, token, sender, recipient):
    """Application payloads survive recovery."""
    request = TransferRequest(token=token, amount=1_000, source=sender, destination=recipient, payload=b"Hello World!")
    txids = TokenTransfer(context, request).initiate("source-signer")

    recovered = TokenTransfer.recover(context, SOURCE_CHAIN, txids[0])
    assert recovered.request == request

    recovered.run_to_completion("source-signer", "destination-signer")
    assert recovered.attestation.payload_id == 3


def test_recover_automatic_transfer(context, token, sender, recipient):
    """Automatic transfers are detected from the relayer recipient and are already done."""
    request = TransferRequest(token=token, amount=1_000, source=sender, destination=recipient, delivery=AutomaticDelivery(native_gas=10))
    txids = TokenTransfer(context, request).initiate("source-signer")

    recovered = TokenTransfer.recover(context, SOURCE_CHAIN, txids[0])
    assert recovered.request == request
    assert recovered.phase == TransferPhase.completed


def test_recover_unknown_transaction(context):
    """No bridge message, no transfer."""
    with pytest.raises(ParseError):
        TokenTransfer.recover(context, SOURCE_CHAIN, "0x" + "00" * 32)


def test_run_to_completion_manual(context, chains, manual_request):
    """One call drives a manual transfer through every phase."""
    transfer = TokenTransfer(context, manual_request)
    record = transfer.run_to_completion("source-signer", "destination-signer")
    assert record.phase == TransferPhase.completed
    assert len(record.source_tx_ids) == 1
    assert len(record.attestation_ids) == 1
    assert len(record.destination_tx_ids) == 1
    assert transfer.last_quote.destination_amount == 1_000


def test_run_to_completion_automatic(context, automatic_request):
    """An automatic transfer needs no destination signer."""
    transfer = TokenTransfer(context, automatic_request)
    record = transfer.run_to_completion("source-signer")
    assert record.phase == TransferPhase.completed


def test_fail(context, manual_request):
    """A caller can abandon a transfer that is not done yet."""
    transfer = TokenTransfer(context, manual_request)
    transfer.initiate("source-signer")
    transfer.fail("user aborted")

    assert transfer.phase == TransferPhase.failed
    assert transfer.record.failure_reason == "user aborted"

    with pytest.raises(InvalidPhase):
        transfer.fail("again")

    with pytest.raises(InvalidPhase):
        transfer.run_to_completion("source-signer", "destination-signer")

    with pytest.raises(InvalidPhase):
        transfer.quote()
