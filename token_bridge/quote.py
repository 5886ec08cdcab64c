"""Transfer quoting.

Work out what the recipient gets before anything is submitted:

- which token arrives on the destination chain (the origin token when
  returning home, otherwise its wrapped counterpart)
- how much arrives, after the relayer fee and native gas drop-off of
  automatic delivery and after the bridge truncates the amount to
  :py:data:`~token_bridge.constants.MAX_BRIDGE_DECIMALS`

The truncated remainder ("dust") is never transferred and stays with the
sender, so a follow-up transfer must use :py:attr:`Quote.destination_amount`,
not the original request amount.
"""

import logging

from token_bridge.adapter import BridgeContext
from token_bridge.errors import UnregisteredToken
from token_bridge.models import AutomaticDelivery, Quote, TokenId, TransferRequest
from token_bridge.vaa import denormalise_amount, normalise_amount

logger = logging.getLogger(__name__)


def scale_amount(amount: int, source_decimals: int, destination_decimals: int) -> tuple[int, int]:
    """Convert an amount between a token and its bridged counterpart.

    :return:
        Tuple (amount in destination base units, dust left behind in source base units)
    """
    normalised = normalise_amount(amount, source_decimals)
    moved = denormalise_amount(normalised, source_decimals)
    return denormalise_amount(normalised, destination_decimals), amount - moved


class QuoteEngine:
    """Compute :py:class:`~token_bridge.models.Quote` for transfers.

    Reads token metadata and the relayer fee schedule through the chain
    adapters, does not submit anything.
    """

    def __init__(self, context: BridgeContext):
        self.context = context

    def get_destination_token(self, token: TokenId, destination_chain: str) -> TokenId:
        """Which token a transfer of ``token`` arrives as.

        :raises UnregisteredToken:
            No wrapped asset on the destination chain yet.
        """
        source = self.context.get_chain(token.chain)
        original = source.get_original_asset(token)
        if original.chain == destination_chain:
            return original

        destination = self.context.get_chain(destination_chain)
        wrapped = destination.get_wrapped_asset(original)
        if wrapped is None:
            raise UnregisteredToken(f"{original} has no wrapped asset on {destination_chain}, attest it first")
        return wrapped

    def quote_transfer(self, source_chain: str, destination_chain: str, request: TransferRequest) -> Quote:
        """Quote a transfer.

        Manual delivery receives the whole amount (minus dust).
        Automatic delivery receives ``amount - relayer_fee - native_gas``,
        which may be zero or negative when fees exceed the amount. Rejecting
        such transfers is up to the caller.

        :param source_chain:
            Chain the transfer starts from.

        :param destination_chain:
            Chain the transfer goes to.

        :param request:
            Transfer to quote.
        """
        assert request.source_chain == source_chain, f"Request source {request.source_chain} does not match {source_chain}"
        assert request.destination_chain == destination_chain, f"Request destination {request.destination_chain} does not match {destination_chain}"

        source = self.context.get_chain(source_chain)
        destination = self.context.get_chain(destination_chain)

        destination_token = self.get_destination_token(request.token, destination_chain)
        source_decimals = source.get_decimals(request.token)
        destination_decimals = destination.get_decimals(destination_token)

        relayer_fee = 0
        native_gas = 0
        if isinstance(request.delivery, AutomaticDelivery):
            relayer_fee = source.get_relayer_fee(destination_chain, request.token)
            native_gas = request.delivery.native_gas or 0

        net_amount = request.amount - relayer_fee - native_gas
        if net_amount > 0:
            destination_amount, dust = scale_amount(net_amount, source_decimals, destination_decimals)
        else:
            destination_amount, dust = net_amount, 0

        quote = Quote(
            source_token=request.token,
            source_amount=request.amount,
            destination_token=destination_token,
            destination_amount=destination_amount,
            relayer_fee=relayer_fee,
            native_gas=native_gas,
            dust=dust,
        )

        logger.info(
            "Quoted %s -> %s: send %d of %s, receive %d of %s, relayer fee %d, native gas %d, dust %d",
            source_chain,
            destination_chain,
            request.amount,
            request.token,
            destination_amount,
            destination_token,
            relayer_fee,
            native_gas,
            dust,
        )
        return quote
