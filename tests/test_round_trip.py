"""Round trip coordination."""

import pytest

from token_bridge.errors import SubmissionError
from token_bridge.models import AutomaticDelivery, ManualDelivery, TransferPhase, TransferRequest
from token_bridge.round_trip import RoundTripCoordinator
from token_bridge.testing import DESTINATION_CHAIN, SOURCE_CHAIN, fake_address


@pytest.fixture()
def request_there(token, sender, recipient) -> TransferRequest:
    return TransferRequest(token=token, amount=1_000, source=sender, destination=recipient, payload=b"ping")


def test_single_leg(context, chains, request_there):
    """Without round_trip only one transfer runs."""
    result = RoundTripCoordinator(context).run(request_there, "source-signer", "destination-signer")

    assert len(result.legs) == 1
    assert result.final.phase == TransferPhase.completed
    assert len(chains[SOURCE_CHAIN].submitted) == 1
    assert len(chains[DESTINATION_CHAIN].submitted) == 1


def test_round_trip_sends_quoted_amount_back(context, chains, token, sender, recipient, request_there):
    """The return leg uses the first leg's quoted token and amount with swapped parties."""
    result = RoundTripCoordinator(context).run(
        request_there,
        "source-signer",
        "destination-signer",
        round_trip=True,
        return_delivery=ManualDelivery(),
    )

    assert len(result.legs) == 2
    there, back = result.legs
    quote = there.last_quote

    assert there.phase == TransferPhase.completed
    assert back.phase == TransferPhase.completed
    assert back.request.token == quote.destination_token
    assert back.request.amount == quote.destination_amount
    assert back.request.source == recipient
    assert back.request.destination == sender
    assert back.request.payload == b"ping"
    assert back.last_quote.destination_token == token

    assert chains[SOURCE_CHAIN].signers == ["source-signer", "source-signer"]
    assert chains[DESTINATION_CHAIN].signers == ["destination-signer", "destination-signer"]


def test_round_trip_18_decimals_leaves_dust(context, chains, sender, recipient):
    """Dust of the first leg is not sent back."""
    token = chains[SOURCE_CHAIN].register_token(fake_address("eighteen"), decimals=18)
    chains[DESTINATION_CHAIN].register_wrapped(token, decimals=18)
    request = TransferRequest(token=token, amount=1_000_000_000_123, source=sender, destination=recipient)

    result = RoundTripCoordinator(context).run(request, "s", "d", round_trip=True, return_delivery=ManualDelivery())

    there, back = result.legs
    assert there.last_quote.dust == 123
    assert back.request.amount == 100
    assert back.last_quote.destination_amount == 1_000_000_000_000


def test_round_trip_automatic_return(context, chains, request_there):
    """The return leg can be delivered by the relayer."""
    chains[DESTINATION_CHAIN].default_relayer_fee = 10
    result = RoundTripCoordinator(context).run(request_there, "s", "d", round_trip=True, return_delivery=AutomaticDelivery())

    back = result.final
    assert back.request.automatic
    assert back.phase == TransferPhase.completed
    assert back.last_quote.destination_amount == 990


def test_round_trip_requires_return_delivery(context, chains, request_there):
    """The second leg's delivery mode is never guessed."""
    with pytest.raises(ValueError):
        RoundTripCoordinator(context).run(request_there, "s", "d", round_trip=True)
    assert chains[SOURCE_CHAIN].submitted == []


def test_round_trip_rejects_automatic_first_leg(context, token, sender, recipient):
    """The first leg must be redeemed before its proceeds can be sent back."""
    request = TransferRequest(token=token, amount=1_000, source=sender, destination=recipient, delivery=AutomaticDelivery())
    with pytest.raises(ValueError):
        RoundTripCoordinator(context).run(request, "s", "d", round_trip=True, return_delivery=ManualDelivery())


def test_max_legs(context, request_there):
    """A single-leg coordinator refuses round trips."""
    with pytest.raises(ValueError):
        RoundTripCoordinator(context, max_legs=1).run(request_there, "s", "d", round_trip=True, return_delivery=ManualDelivery())


def test_failed_return_leg_keeps_first_leg(context, chains, request_there):
    """A return leg that cannot be submitted propagates, the completed first leg is left alone."""

    def on_phase_change(transfer, phase):
        if phase == TransferPhase.completed:
            chains[DESTINATION_CHAIN].fail_submissions = 1

    coordinator = RoundTripCoordinator(context, on_phase_change=on_phase_change)
    with pytest.raises(SubmissionError):
        coordinator.run(request_there, "source-signer", "destination-signer", round_trip=True, return_delivery=ManualDelivery())

    there, back = coordinator.last_result.legs
    assert there.phase == TransferPhase.completed
    assert len(there.record.source_tx_ids) == 1
    assert len(there.record.attestation_ids) == 1
    assert len(there.record.destination_tx_ids) == 1
    assert chains[DESTINATION_CHAIN].redeemed == [there.attestation]

    assert back.phase == TransferPhase.created
    assert back.record.source_tx_ids == []
    assert len(chains[SOURCE_CHAIN].submitted) == 1
