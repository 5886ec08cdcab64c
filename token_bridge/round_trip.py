"""Chained transfers.

A round trip sends tokens to the destination chain and then sends what
arrived back to the origin. The second leg uses the first leg's quoted
destination token and amount, so dust and relayer fees of the first leg
are accounted for.

The delivery mode of the return leg is an explicit argument: the quote
of the return leg depends on it, so it is not silently inherited from
the first leg.

Example::

    from token_bridge.models import ManualDelivery
    from token_bridge.round_trip import RoundTripCoordinator

    coordinator = RoundTripCoordinator(context)
    result = coordinator.run(
        request,
        source_signer=avalanche_account,
        destination_signer=sepolia_account,
        round_trip=True,
        return_delivery=ManualDelivery(),
    )
    print(result.final.record)
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from token_bridge.adapter import BridgeContext
from token_bridge.clock import CancelToken
from token_bridge.models import DeliveryMode, TransferRequest
from token_bridge.transfer import PhaseCallback, TokenTransfer

logger = logging.getLogger(__name__)

#: Legs in a round trip: there and back
ROUND_TRIP_LEGS = 2


@dataclass(slots=True)
class RoundTripResult:
    """Transfers executed by :py:meth:`RoundTripCoordinator.run`, in order."""

    legs: list[TokenTransfer] = field(default_factory=list)

    @property
    def final(self) -> TokenTransfer:
        """The last completed leg."""
        assert self.legs, "No legs executed"
        return self.legs[-1]


class RoundTripCoordinator:
    """Run a transfer, and optionally send the proceeds back.

    A failure in the return leg does not undo the first leg, which is
    final once completed. The legs run so far stay available in
    :py:attr:`last_result` when :py:meth:`run` raises.
    """

    def __init__(self, context: BridgeContext, max_legs: int = ROUND_TRIP_LEGS, on_phase_change: PhaseCallback | None = None):
        """
        :param max_legs:
            Upper bound on chained legs.

        :param on_phase_change:
            Passed to every :py:class:`~token_bridge.transfer.TokenTransfer`.
        """
        assert max_legs >= 1, f"max_legs must be at least 1, got {max_legs}"
        self.context = context
        self.max_legs = max_legs
        self.on_phase_change = on_phase_change

        #: Legs of the latest :py:meth:`run`, including one that raised
        self.last_result: RoundTripResult | None = None

    def run(
        self,
        initial_request: TransferRequest,
        source_signer: Any,
        destination_signer: Any,
        round_trip: bool = False,
        return_delivery: DeliveryMode | None = None,
        attestation_timeout: float | None = None,
        cancel: CancelToken | None = None,
    ) -> RoundTripResult:
        """Execute the transfer, and the return transfer when ``round_trip`` is set.

        :param initial_request:
            First leg.

        :param source_signer:
            Signer on the first leg's source chain.

        :param destination_signer:
            Signer on the first leg's destination chain.

        :param round_trip:
            Send the received tokens back to the first leg's sender.

        :param return_delivery:
            Delivery mode of the return leg. Required when ``round_trip`` is set.

        :param attestation_timeout:
            Seconds each manual leg waits for its VAA.

        :raises ValueError:
            ``round_trip`` without ``return_delivery``, or with an automatic first leg.
        """
        if round_trip and return_delivery is None:
            raise ValueError("round_trip needs an explicit return_delivery for the second leg")

        if round_trip and initial_request.automatic:
            # Relayer delivery happens out of band, the return leg would race it
            raise ValueError("round_trip needs a manually delivered first leg")

        legs = ROUND_TRIP_LEGS if round_trip else 1
        if legs > self.max_legs:
            raise ValueError(f"{legs} legs requested, coordinator allows {self.max_legs}")

        result = RoundTripResult()
        self.last_result = result
        request = initial_request
        signers = (source_signer, destination_signer)

        for leg in range(legs):
            logger.info("Round trip leg %d/%d: %d of %s from %s to %s", leg + 1, legs, request.amount, request.token, request.source_chain, request.destination_chain)

            transfer = TokenTransfer(self.context, request, on_phase_change=self.on_phase_change)
            result.legs.append(transfer)
            quote = transfer.quote()
            transfer.run_to_completion(signers[0], signers[1], attestation_timeout=attestation_timeout, cancel=cancel)

            if leg + 1 < legs:
                request = TransferRequest(
                    token=quote.destination_token,
                    amount=quote.destination_amount,
                    source=request.destination,
                    destination=request.source,
                    delivery=return_delivery,
                    payload=request.payload,
                )
                signers = (signers[1], signers[0])

        return result
