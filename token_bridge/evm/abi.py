"""Minimal ABIs of the Wormhole EVM contracts.

Only the functions and events the adapter calls. Full ABIs live in the
``wormhole-foundation/wormhole`` repository.
"""

from eth_utils import keccak


def _function(name: str, inputs: list[tuple[str, str]], outputs: list[str] | None = None, mutability: str = "nonpayable") -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": "", "type": t} for t in (outputs or [])],
        "stateMutability": mutability,
    }


#: Core bridge: message fee lookup
CORE_BRIDGE_ABI = [
    _function("messageFee", [], ["uint256"], "view"),
    _function("chainId", [], ["uint16"], "view"),
]

#: Token bridge: transfers, redemption, attestation and the wrapped asset registry
TOKEN_BRIDGE_ABI = [
    _function(
        "transferTokens",
        [("token", "address"), ("amount", "uint256"), ("recipientChain", "uint16"), ("recipient", "bytes32"), ("arbiterFee", "uint256"), ("nonce", "uint32")],
        ["uint64"],
        "payable",
    ),
    _function(
        "transferTokensWithPayload",
        [("token", "address"), ("amount", "uint256"), ("recipientChain", "uint16"), ("recipient", "bytes32"), ("nonce", "uint32"), ("payload", "bytes")],
        ["uint64"],
        "payable",
    ),
    _function("completeTransfer", [("encodedVm", "bytes")]),
    _function("completeTransferWithPayload", [("encodedVm", "bytes")], ["bytes"]),
    _function("attestToken", [("tokenAddress", "address"), ("nonce", "uint32")], ["uint64"], "payable"),
    _function("createWrapped", [("encodedVm", "bytes")], ["address"]),
    _function("wrappedAsset", [("tokenChainId", "uint16"), ("tokenAddress", "bytes32")], ["address"], "view"),
    _function("isWrappedAsset", [("token", "address")], ["bool"], "view"),
    _function("chainId", [], ["uint16"], "view"),
]

#: Token bridge wrapped asset: where the original token lives
WRAPPED_ASSET_ABI = [
    _function("chainId", [], ["uint16"], "view"),
    _function("nativeContract", [], ["bytes32"], "view"),
]

#: Token bridge relayer for automatic delivery
TOKEN_BRIDGE_RELAYER_ABI = [
    _function(
        "transferTokensWithRelay",
        [("token", "address"), ("amount", "uint256"), ("toNativeTokenAmount", "uint256"), ("targetChain", "uint16"), ("targetRecipient", "bytes32"), ("batchId", "uint32")],
        ["uint64"],
        "payable",
    ),
    _function("calculateRelayerFee", [("targetChainId", "uint16"), ("token", "address"), ("decimals", "uint8")], ["uint256"], "view"),
]

ERC20_ABI = [
    _function("decimals", [], ["uint8"], "view"),
    _function("allowance", [("owner", "address"), ("spender", "address")], ["uint256"], "view"),
    _function("approve", [("spender", "address"), ("amount", "uint256")], ["bool"]),
]

#: ``LogMessagePublished(address indexed sender, uint64 sequence, uint32 nonce, bytes payload, uint8 consistencyLevel)``
LOG_MESSAGE_PUBLISHED_SIGNATURE = "LogMessagePublished(address,uint64,uint32,bytes,uint8)"

#: Non-indexed fields of ``LogMessagePublished``
LOG_MESSAGE_PUBLISHED_DATA_TYPES = ["uint64", "uint32", "bytes", "uint8"]

#: ``topics[0]`` of ``LogMessagePublished``
LOG_MESSAGE_PUBLISHED_TOPIC = keccak(text=LOG_MESSAGE_PUBLISHED_SIGNATURE)
