"""Register an ERC-20 token's wrapped asset on another EVM chain.

Skips everything if the wrapped asset already exists. Otherwise attests
the token metadata on the source chain, waits for the guardian signed
VAA (this can take up to 25 minutes on testnet), creates the wrapped
asset on the destination chain and waits until it is visible.

Environment variables
---------------------
- ``PRIVATE_KEY``: Signer on both chains (required).
- ``SOURCE_JSON_RPC_URL``: Token's home chain RPC (required).
- ``DESTINATION_JSON_RPC_URL``: Chain to create the wrapped asset on (required).
- ``SOURCE_CHAIN``: Wormhole chain name (default: ``Avalanche``).
- ``DESTINATION_CHAIN``: Wormhole chain name (default: ``Sepolia``).
- ``TOKEN``: Token address on the source chain.
- ``NETWORK``: ``Mainnet`` or ``Testnet`` (default: ``Testnet``).
- ``LOG_LEVEL``: Logging level (default: ``info``).

Usage::

    PRIVATE_KEY=0x... \\
    SOURCE_JSON_RPC_URL=https://api.avax-test.network/ext/bc/C/rpc \\
    DESTINATION_JSON_RPC_URL=https://ethereum-sepolia-rpc.publicnode.com \\
    TOKEN=0xE66b9BBB3DFf4d4444F7Dbb6c7BB4a110d1d91a3 \\
    poetry run python scripts/token_bridge/create-wrapped.py
"""

import logging
import os

from eth_account import Account
from tabulate import tabulate
from web3 import HTTPProvider, Web3

from token_bridge.adapter import BridgeContext
from token_bridge.attestation import TokenAttestation
from token_bridge.config import BridgeConfig
from token_bridge.evm import EVMChainAdapter
from token_bridge.models import ChainAddress, TokenId
from token_bridge.utils import setup_console_logging
from token_bridge.wormholescan import WormholescanAttestationSource

logger = logging.getLogger(__name__)


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

    config = BridgeConfig.from_env()
    account = Account.from_key(private_key)

    context = BridgeContext(
        adapters={
            source_chain: EVMChainAdapter.from_deployment(config.network, source_chain, Web3(HTTPProvider(source_rpc))),
            destination_chain: EVMChainAdapter.from_deployment(config.network, destination_chain, Web3(HTTPProvider(destination_rpc))),
        },
        attestation_source=WormholescanAttestationSource(config),
        config=config,
    )

    token = TokenId(source_chain, token_address)
    print(f"Token ID for {source_chain}: {token}")

    attestation = TokenAttestation(
        context,
        token,
        source=ChainAddress(source_chain, account.address),
        destination=ChainAddress(destination_chain, account.address),
    )
    wrapped = attestation.run_to_completion(account, account)

    rows = [
        ["Token", str(token)],
        ["Wrapped asset", str(wrapped)],
        ["Already registered", attestation.already_registered],
        ["Attestation txids", "\n".join(attestation.source_tx_ids) or "-"],
        ["Create wrapped txids", "\n".join(attestation.destination_tx_ids) or "-"],
    ]
    print(tabulate(rows, tablefmt="simple"))


if __name__ == "__main__":
    main()
