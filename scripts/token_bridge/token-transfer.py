"""Transfer ERC-20 tokens between two EVM chains over the Wormhole token bridge.

Quotes, initiates, waits for the VAA and redeems it on the destination
chain. With ``AUTOMATIC=true`` a relayer redeems it instead. With
``ROUND_TRIP=true`` the received tokens are sent back.

A transfer that crashed half way can be finished with ``RECOVER_TXID``.

Environment variables
---------------------
- ``PRIVATE_KEY``: Signer on both chains (required).
- ``SOURCE_JSON_RPC_URL``: Source chain RPC (required).
- ``DESTINATION_JSON_RPC_URL``: Destination chain RPC (required).
- ``SOURCE_CHAIN``: Wormhole chain name (default: ``Avalanche``).
- ``DESTINATION_CHAIN``: Wormhole chain name (default: ``Sepolia``).
- ``TOKEN``: Token address on the source chain.
- ``AMOUNT``: Human amount (default: ``10``).
- ``AUTOMATIC``: ``true`` for relayer delivery (default: ``false``).
- ``NATIVE_GAS``: Human amount of the token to swap to destination gas, automatic only.
- ``ROUND_TRIP``: ``true`` to send the tokens back (default: ``false``).
- ``RECOVER_TXID``: Resume the transfer started by this source transaction.
- ``PAYLOAD``: Text payload for the receiving contract.
- ``NETWORK``: ``Mainnet`` or ``Testnet`` (default: ``Testnet``).
- ``LOG_LEVEL``: Logging level (default: ``info``).

Usage::

    PRIVATE_KEY=0x... \\
    SOURCE_JSON_RPC_URL=https://api.avax-test.network/ext/bc/C/rpc \\
    DESTINATION_JSON_RPC_URL=https://ethereum-sepolia-rpc.publicnode.com \\
    TOKEN=0xE66b9BBB3DFf4d4444F7Dbb6c7BB4a110d1d91a3 \\
    AMOUNT=10 \\
    poetry run python scripts/token_bridge/token-transfer.py
"""

import logging
import os

from eth_account import Account
from tabulate import tabulate
from web3 import HTTPProvider, Web3

from token_bridge.adapter import BridgeContext
from token_bridge.config import BridgeConfig
from token_bridge.evm import EVMChainAdapter
from token_bridge.models import AutomaticDelivery, ChainAddress, ManualDelivery, TokenId, TransferRequest
from token_bridge.round_trip import RoundTripCoordinator
from token_bridge.transfer import TokenTransfer
from token_bridge.utils import format_amount, parse_amount, setup_console_logging
from token_bridge.wormholescan import WormholescanAttestationSource

logger = logging.getLogger(__name__)


def print_transfer(transfer: TokenTransfer):
    record = transfer.record
    request = record.request
    rows = [
        ["Route", f"{request.source_chain} -> {request.destination_chain}"],
        ["Token", str(request.token)],
        ["Amount", request.amount],
        ["Delivery", "automatic" if request.automatic else "manual"],
        ["Phase", record.phase.value],
        ["Source txids", "\n".join(record.source_tx_ids) or "-"],
        ["Attested", "\n".join(str(m) for m in record.attestation_ids) or "-"],
        ["Destination txids", "\n".join(record.destination_tx_ids) or "-"],
    ]
    print(tabulate(rows, tablefmt="simple"))


def main():
    setup_console_logging(default_log_level=os.environ.get("LOG_LEVEL", "info"))

    private_key = os.environ.get("PRIVATE_KEY")
    assert private_key, "PRIVATE_KEY environment variable required"

    source_rpc = os.environ.get("SOURCE_JSON_RPC_URL")
    assert source_rpc, "SOURCE_JSON_RPC_URL environment variable required"

    destination_rpc = os.environ.get("DESTINATION_JSON_RPC_URL")
    assert destination_rpc, "DESTINATION_JSON_RPC_URL environment variable required"

    source_chain = os.environ.get("SOURCE_CHAIN", "Avalanche")
    destination_chain = os.environ.get("DESTINATION_CHAIN", "Sepolia")
    token_address = os.environ.get("TOKEN", "0xE66b9BBB3DFf4d4444F7Dbb6c7BB4a110d1d91a3")
    automatic = os.environ.get("AUTOMATIC", "false").lower() == "true"
    round_trip = os.environ.get("ROUND_TRIP", "false").lower() == "true"
    recover_txid = os.environ.get("RECOVER_TXID")
    payload = os.environ.get("PAYLOAD")

    config = BridgeConfig.from_env()
    account = Account.from_key(private_key)

    source = EVMChainAdapter.from_deployment(config.network, source_chain, Web3(HTTPProvider(source_rpc)))
    destination = EVMChainAdapter.from_deployment(config.network, destination_chain, Web3(HTTPProvider(destination_rpc)))

    context = BridgeContext(
        adapters={source_chain: source, destination_chain: destination},
        attestation_source=WormholescanAttestationSource(config),
        config=config,
    )

    print(f"Network: {config.network}")
    print(f"Account: {account.address}")

    if recover_txid:
        transfer = TokenTransfer.recover(context, source_chain, recover_txid)
        transfer.run_to_completion(account, account)
        print_transfer(transfer)
        return

    token = TokenId(source_chain, token_address)
    decimals = source.get_decimals(token)

    if automatic:
        native_gas = os.environ.get("NATIVE_GAS")
        delivery = AutomaticDelivery(native_gas=parse_amount(native_gas, decimals) if native_gas else None)
    else:
        delivery = ManualDelivery()

    request = TransferRequest(
        token=token,
        amount=parse_amount(os.environ.get("AMOUNT", "10"), decimals),
        source=ChainAddress(source_chain, account.address),
        destination=ChainAddress(destination_chain, account.address),
        delivery=delivery,
        payload=payload.encode("utf-8") if payload else None,
    )

    print(f"Sending {format_amount(request.amount, decimals)} of {token} to {destination_chain}")

    coordinator = RoundTripCoordinator(context)
    result = coordinator.run(
        request,
        source_signer=account,
        destination_signer=account,
        round_trip=round_trip,
        return_delivery=ManualDelivery() if round_trip else None,
    )

    for leg in result.legs:
        quote = leg.last_quote
        print(f"\nQuote: {quote.source_amount} {quote.source_token} -> {quote.destination_amount} {quote.destination_token} (relayer fee {quote.relayer_fee}, dust {quote.dust})")
        print_transfer(leg)


if __name__ == "__main__":
    main()
