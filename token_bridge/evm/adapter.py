"""EVM chain adapter.

Talks to the Wormhole core bridge, token bridge and token bridge relayer
contracts of one EVM chain through :py:mod:`web3`.

Transactions are signed locally with an :py:class:`eth_account.signers.local.LocalAccount`
and broadcast with ``eth_sendRawTransaction``.

ERC-20 approvals are handled inside :py:meth:`EVMChainAdapter.submit`: when
the allowance is short, an ``approve()`` is sent first. Approval
transactions are not part of the returned transaction ids, so the first
returned id is always the one emitting the bridge message.

Example::

    from eth_account import Account
    from web3 import HTTPProvider, Web3

    from token_bridge.evm import EVMChainAdapter

    web3 = Web3(HTTPProvider(os.environ["SOURCE_JSON_RPC_URL"]))
    adapter = EVMChainAdapter.from_deployment("Testnet", "Avalanche", web3)
    account = Account.from_key(os.environ["PRIVATE_KEY"])
"""

import logging
from dataclasses import dataclass
from typing import Any

from eth_abi import decode
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract.contract import ContractFunction
from web3.exceptions import TransactionNotFound, Web3Exception

from token_bridge.adapter import ChainAdapter
from token_bridge.constants import EVM_DEPLOYMENTS, get_chain_info, get_chain_name, get_wormhole_chain_id
from token_bridge.errors import ParseError, SubmissionError
from token_bridge.evm.abi import (
    CORE_BRIDGE_ABI,
    ERC20_ABI,
    LOG_MESSAGE_PUBLISHED_DATA_TYPES,
    LOG_MESSAGE_PUBLISHED_TOPIC,
    TOKEN_BRIDGE_ABI,
    TOKEN_BRIDGE_RELAYER_ABI,
    WRAPPED_ASSET_ABI,
)
from token_bridge.models import (
    AutomaticDelivery,
    BridgeMessage,
    ChainAddress,
    MessageId,
    TokenId,
    TransactionSet,
    TransferRequest,
    UnsignedTransaction,
)
from token_bridge.vaa import PAYLOAD_ID_TRANSFER_WITH_PAYLOAD, SignedVAA, from_universal_address, to_universal_address

logger = logging.getLogger(__name__)

#: Gas limit for bridge transactions, high enough for createWrapped
DEFAULT_GAS_LIMIT = 1_000_000

#: Seconds to wait for a transaction receipt
DEFAULT_RECEIPT_TIMEOUT = 180.0

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(slots=True)
class EVMCall:
    """Content of an EVM :py:class:`~token_bridge.models.UnsignedTransaction`."""

    #: Bound contract call
    function: ContractFunction

    #: Native token value attached, e.g. the core bridge message fee
    value: int = 0

    #: ``(token, spender, amount)`` allowance needed before the call
    approve: tuple[HexAddress, HexAddress, int] | None = None


def parse_core_bridge_logs(chain: str, logs: list[Any], core_bridge: str, emitter: str, sender: str | None = None) -> list[BridgeMessage]:
    """Extract bridge messages from transaction receipt logs.

    :param logs:
        Receipt logs, as returned by ``eth_getTransactionReceipt``.

    :param core_bridge:
        Core bridge contract emitting ``LogMessagePublished``.

    :param emitter:
        Only keep messages published by this contract, usually the token bridge.

    :param sender:
        Transaction ``from``, recorded on the messages.
    """
    core_bridge = core_bridge.lower()
    emitter = emitter.lower()
    messages = []
    for log in logs:
        topics = [HexBytes(t) for t in log["topics"]]
        if log["address"].lower() != core_bridge or not topics or topics[0] != LOG_MESSAGE_PUBLISHED_TOPIC:
            continue

        publisher = "0x" + bytes(topics[1][-20:]).hex()
        if publisher != emitter:
            logger.debug("Skipping message from %s in %s logs", publisher, chain)
            continue

        sequence, _nonce, payload, _consistency_level = decode(LOG_MESSAGE_PUBLISHED_DATA_TYPES, HexBytes(log["data"]))
        message_id = MessageId(chain, "0x" + to_universal_address(chain, publisher).hex(), sequence)
        messages.append(BridgeMessage(message_id, payload, sender.lower() if sender else None))
    return messages


class EVMChainAdapter(ChainAdapter):
    """Wormhole token bridge on an EVM chain."""

    def __init__(
        self,
        chain: str,
        web3: Web3,
        core_bridge: HexAddress | str,
        token_bridge: HexAddress | str,
        relayer: HexAddress | str | None = None,
        gas_limit: int = DEFAULT_GAS_LIMIT,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
    ):
        """
        :param chain:
            Chain name, see :py:data:`token_bridge.constants.CHAINS`.

        :param web3:
            Connection to the chain.

        :param relayer:
            Token bridge relayer contract. Without it automatic delivery is not available.
        """
        assert get_chain_info(chain).platform == "evm", f"{chain} is not an EVM chain"
        self.chain = chain
        self.web3 = web3
        self.core_bridge = web3.eth.contract(address=Web3.to_checksum_address(core_bridge), abi=CORE_BRIDGE_ABI)
        self.token_bridge = web3.eth.contract(address=Web3.to_checksum_address(token_bridge), abi=TOKEN_BRIDGE_ABI)
        self.relayer = web3.eth.contract(address=Web3.to_checksum_address(relayer), abi=TOKEN_BRIDGE_RELAYER_ABI) if relayer else None
        self.gas_limit = gas_limit
        self.receipt_timeout = receipt_timeout
        self._decimals: dict[TokenId, int] = {}

    def __repr__(self) -> str:
        return f"<EVMChainAdapter {self.chain} token bridge {self.token_bridge.address}>"

    @classmethod
    def from_deployment(cls, network: str, chain: str, web3: Web3, **kwargs) -> "EVMChainAdapter":
        """Create an adapter for a chain listed in :py:data:`~token_bridge.constants.EVM_DEPLOYMENTS`."""
        deployment = EVM_DEPLOYMENTS.get((network, chain))
        if deployment is None:
            raise ValueError(f"No known Wormhole deployment for {chain} on {network}")
        return cls(chain, web3, deployment.core_bridge, deployment.token_bridge, relayer=deployment.relayer, **kwargs)

    @property
    def relayer_address(self) -> str | None:
        if self.relayer is None:
            return None
        return "0x" + to_universal_address(self.chain, self.relayer.address).hex()

    def submit(self, transactions: TransactionSet, signer: LocalAccount) -> list[str]:
        txids = []
        for tx in transactions:
            call: EVMCall = tx.data
            try:
                if call.approve is not None:
                    self._ensure_allowance(*call.approve, signer=signer)
                txids.append(self._send(tx.description, call.function, signer, value=call.value))
            except (Web3Exception, ValueError) as e:
                raise SubmissionError(f"{self.chain} {tx.description} failed: {e}") from e
        return txids

    def parse_transaction(self, txid: str) -> list[BridgeMessage]:
        try:
            receipt = self.web3.eth.get_transaction_receipt(txid)
            tx = self.web3.eth.get_transaction(txid)
        except TransactionNotFound as e:
            raise ParseError(f"{self.chain} transaction {txid} not found") from e

        messages = parse_core_bridge_logs(self.chain, receipt["logs"], self.core_bridge.address, self.token_bridge.address, tx["from"])
        if not messages:
            raise ParseError(f"{self.chain} transaction {txid} emitted no token bridge message")
        return messages

    def get_wrapped_asset(self, token: TokenId) -> TokenId | None:
        if token.chain == self.chain:
            return None
        address = self.token_bridge.functions.wrappedAsset(
            get_wormhole_chain_id(token.chain),
            to_universal_address(token.chain, token.address),
        ).call()
        if address == ZERO_ADDRESS:
            return None
        return TokenId(self.chain, address)

    def get_original_asset(self, token: TokenId) -> TokenId:
        assert token.chain == self.chain, f"{token} is not on {self.chain}"
        address = Web3.to_checksum_address(token.address)
        if not self.token_bridge.functions.isWrappedAsset(address).call():
            return token
        wrapped = self.web3.eth.contract(address=address, abi=WRAPPED_ASSET_ABI)
        origin_chain = get_chain_name(wrapped.functions.chainId().call())
        native_contract = wrapped.functions.nativeContract().call()
        return TokenId(origin_chain, from_universal_address(origin_chain, native_contract))

    def get_decimals(self, token: TokenId) -> int:
        if token not in self._decimals:
            erc20 = self.web3.eth.contract(address=Web3.to_checksum_address(token.address), abi=ERC20_ABI)
            self._decimals[token] = erc20.functions.decimals().call()
        return self._decimals[token]

    def get_relayer_fee(self, destination_chain: str, token: TokenId) -> int:
        if self.relayer is None:
            raise ValueError(f"No token bridge relayer configured on {self.chain}")
        return self.relayer.functions.calculateRelayerFee(
            get_wormhole_chain_id(destination_chain),
            Web3.to_checksum_address(token.address),
            self.get_decimals(token),
        ).call()

    def create_transfer_tx(self, request: TransferRequest) -> TransactionSet:
        token = Web3.to_checksum_address(request.token.address)
        destination_chain = request.destination_chain
        recipient_chain = get_wormhole_chain_id(destination_chain)
        recipient = to_universal_address(destination_chain, request.destination.address)
        message_fee = self.core_bridge.functions.messageFee().call()

        if isinstance(request.delivery, AutomaticDelivery):
            if self.relayer is None:
                raise ValueError(f"Automatic delivery needs a token bridge relayer on {self.chain}")
            function = self.relayer.functions.transferTokensWithRelay(token, request.amount, request.delivery.native_gas or 0, recipient_chain, recipient, 0)
            spender = self.relayer.address
            description = "TokenBridgeRelayer.transferTokensWithRelay"
        elif request.payload is not None:
            function = self.token_bridge.functions.transferTokensWithPayload(token, request.amount, recipient_chain, recipient, 0, request.payload)
            spender = self.token_bridge.address
            description = "TokenBridge.transferTokensWithPayload"
        else:
            function = self.token_bridge.functions.transferTokens(token, request.amount, recipient_chain, recipient, 0, 0)
            spender = self.token_bridge.address
            description = "TokenBridge.transferTokens"

        call = EVMCall(function, value=message_fee, approve=(token, spender, request.amount))
        return [UnsignedTransaction(self.chain, description, call)]

    def redeem_tx(self, vaa: SignedVAA, recipient: ChainAddress) -> TransactionSet:
        # Payload 3 transfers may only be redeemed by the recipient
        if vaa.payload_id == PAYLOAD_ID_TRANSFER_WITH_PAYLOAD:
            function = self.token_bridge.functions.completeTransferWithPayload(vaa.raw)
            description = "TokenBridge.completeTransferWithPayload"
        else:
            function = self.token_bridge.functions.completeTransfer(vaa.raw)
            description = "TokenBridge.completeTransfer"
        return [UnsignedTransaction(self.chain, description, EVMCall(function))]

    def create_attestation_tx(self, token_address: str, submitter: ChainAddress) -> TransactionSet:
        message_fee = self.core_bridge.functions.messageFee().call()
        function = self.token_bridge.functions.attestToken(Web3.to_checksum_address(token_address), 0)
        return [UnsignedTransaction(self.chain, "TokenBridge.attestToken", EVMCall(function, value=message_fee))]

    def submit_attestation_tx(self, vaa: SignedVAA, submitter: ChainAddress) -> TransactionSet:
        function = self.token_bridge.functions.createWrapped(vaa.raw)
        return [UnsignedTransaction(self.chain, "TokenBridge.createWrapped", EVMCall(function))]

    def _ensure_allowance(self, token: HexAddress, spender: HexAddress, amount: int, signer: LocalAccount):
        erc20 = self.web3.eth.contract(address=token, abi=ERC20_ABI)
        allowance = erc20.functions.allowance(signer.address, spender).call()
        if allowance >= amount:
            return
        logger.info("Approving %d of %s for %s on %s", amount, token, spender, self.chain)
        self._send("ERC20.approve", erc20.functions.approve(spender, amount), signer)

    def _send(self, description: str, function: ContractFunction, signer: LocalAccount, value: int = 0) -> str:
        tx = function.build_transaction(
            {
                "from": signer.address,
                "value": value,
                "gas": self.gas_limit,
                "nonce": self.web3.eth.get_transaction_count(signer.address, "pending"),
                "chainId": self.web3.eth.chain_id,
            }
        )
        signed = signer.sign_transaction(tx)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        txid = Web3.to_hex(tx_hash)
        if receipt["status"] != 1:
            raise SubmissionError(f"{self.chain} {description} reverted: {txid}")
        logger.info("%s %s confirmed in block %d: %s", self.chain, description, receipt["blockNumber"], txid)
        return txid
