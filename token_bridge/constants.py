"""Wormhole token bridge constants.

Chain table, API endpoints and protocol constants shared by the
orchestrator, the EVM adapter and the attestation source.

Contract addresses are the public Wormhole deployments. Pass explicit
addresses to :py:class:`~token_bridge.evm.adapter.EVMChainAdapter` to
target other deployments or local forks.
"""

from dataclasses import dataclass

#: Wormholescan API for mainnet VAAs
WORMHOLESCAN_API_URL = "https://api.wormholescan.io"

#: Wormholescan API for testnet VAAs
WORMHOLESCAN_TESTNET_API_URL = "https://api.testnet.wormholescan.io"

#: Supported network names
NETWORKS = ("Mainnet", "Testnet")

#: The token bridge normalises all amounts to this many decimals on the wire.
#:
#: Anything below this precision is not transferred and stays with the sender.
MAX_BRIDGE_DECIMALS = 8

#: VAA message type for a plain token transfer
MESSAGE_TYPE_TRANSFER = "TokenBridge:Transfer"

#: VAA message type for a token transfer carrying an application payload
MESSAGE_TYPE_TRANSFER_WITH_PAYLOAD = "TokenBridge:TransferWithPayload"

#: VAA message type for token metadata attestation
MESSAGE_TYPE_ATTEST_META = "TokenBridge:AttestMeta"

#: Message type → token bridge payload id
TOKEN_BRIDGE_PAYLOAD_IDS: dict[str, int] = {
    MESSAGE_TYPE_TRANSFER: 1,
    MESSAGE_TYPE_ATTEST_META: 2,
    MESSAGE_TYPE_TRANSFER_WITH_PAYLOAD: 3,
}

#: How long the original attestation script waits for an AttestMeta VAA
DEFAULT_ATTEST_META_TIMEOUT = 25 * 60.0

#: How long a manual transfer waits for its transfer VAA
DEFAULT_TRANSFER_ATTESTATION_TIMEOUT = 60.0

#: Delay between wrapped asset lookups while waiting for registration
DEFAULT_REGISTRATION_POLL_INTERVAL = 2.0


@dataclass(slots=True, frozen=True)
class ChainInfo:
    """Static description of a Wormhole connected chain."""

    #: Human readable chain name used as the key everywhere, e.g. ``"Avalanche"``
    name: str

    #: Wormhole chain id (not the EVM chain id)
    wormhole_chain_id: int

    #: ``"evm"``, ``"solana"``, ``"sui"`` ...
    platform: str


#: Known chains by name.
#:
#: Testnet EVM chains share the mainnet Wormhole chain id except
#: for the Sepolia family which got their own ids.
CHAINS: dict[str, ChainInfo] = {
    c.name: c
    for c in [
        ChainInfo("Solana", 1, "solana"),
        ChainInfo("Ethereum", 2, "evm"),
        ChainInfo("Bsc", 4, "evm"),
        ChainInfo("Polygon", 5, "evm"),
        ChainInfo("Avalanche", 6, "evm"),
        ChainInfo("Fantom", 10, "evm"),
        ChainInfo("Celo", 14, "evm"),
        ChainInfo("Moonbeam", 16, "evm"),
        ChainInfo("Sui", 21, "sui"),
        ChainInfo("Aptos", 22, "aptos"),
        ChainInfo("Arbitrum", 23, "evm"),
        ChainInfo("Optimism", 24, "evm"),
        ChainInfo("Base", 30, "evm"),
        ChainInfo("Sepolia", 10002, "evm"),
        ChainInfo("ArbitrumSepolia", 10003, "evm"),
        ChainInfo("BaseSepolia", 10004, "evm"),
        ChainInfo("OptimismSepolia", 10005, "evm"),
    ]
}

#: Wormhole chain id → chain name
CHAIN_NAMES_BY_ID: dict[int, str] = {c.wormhole_chain_id: c.name for c in CHAINS.values()}


@dataclass(slots=True, frozen=True)
class EVMDeployment:
    """Wormhole contract addresses on one EVM chain."""

    #: Core bridge, emits ``LogMessagePublished``
    core_bridge: str

    #: Portal token bridge
    token_bridge: str

    #: Token bridge relayer used for automatic delivery, if deployed
    relayer: str | None = None


#: Known EVM deployments keyed by (network, chain name)
EVM_DEPLOYMENTS: dict[tuple[str, str], EVMDeployment] = {
    ("Mainnet", "Ethereum"): EVMDeployment(
        core_bridge="0x98f3c9e6E3fAce36bAAd05FE09d375Ef1464288B",
        token_bridge="0x3ee18B2214AFF97000D974cf647E7C347E8fa585",
        relayer="0xCafd2f0A35A4459fA40C0517e17e6fA2939441CA",
    ),
    ("Mainnet", "Avalanche"): EVMDeployment(
        core_bridge="0x54a8e5f9c4CbA08F9943965859F6c34eAF03E26c",
        token_bridge="0x0e082F06FF657D94310cB8cE8B0D9a04541d8052",
        relayer="0xCafd2f0A35A4459fA40C0517e17e6fA2939441CA",
    ),
    ("Testnet", "Avalanche"): EVMDeployment(
        core_bridge="0x7bbcE28e64B3F8b84d876Ab298393c38ad7aac4C",
        token_bridge="0x61E44E506Ca5659E6c0bba9b678586fA2d729756",
        relayer="0x9563a59C15842a6f322B10f69d1dD88b41f2E97B",
    ),
    ("Testnet", "Sepolia"): EVMDeployment(
        core_bridge="0x4a8bc80Ed5a4067f1CCf107057b8270E0cC11A78",
        token_bridge="0xDB5492265f6038831E89f495670FF909aDe94bd9",
        relayer="0x7Fb0D63258caF51D8A35130d3f7A7fd1EE893969",
    ),
}


def get_chain_info(chain: str) -> ChainInfo:
    """Look up a chain by name.

    :raises ValueError:
        Unknown chain name.
    """
    info = CHAINS.get(chain)
    if info is None:
        raise ValueError(f"Unknown chain {chain}, known chains are: {', '.join(CHAINS)}")
    return info


def get_wormhole_chain_id(chain: str) -> int:
    """Wormhole chain id for a chain name."""
    return get_chain_info(chain).wormhole_chain_id


def get_chain_name(wormhole_chain_id: int) -> str:
    """Chain name for a Wormhole chain id.

    :raises ValueError:
        Unknown chain id.
    """
    name = CHAIN_NAMES_BY_ID.get(wormhole_chain_id)
    if name is None:
        raise ValueError(f"Unknown Wormhole chain id {wormhole_chain_id}")
    return name
