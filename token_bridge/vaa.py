"""Wormhole VAA and token bridge payload codec.

A VAA (Verified Action Approval) is the guardian signed envelope of a
bridge message. Layout, all integers big endian:

- header: version ``u8``, guardian set index ``u32``, signature count ``u8``,
  then per signature guardian index ``u8`` and 65 signature bytes
- body: timestamp ``u32``, nonce ``u32``, emitter chain ``u16``,
  emitter address ``bytes32``, sequence ``u64``, consistency level ``u8``,
  payload

Token bridge payloads carried inside the body:

- ``1`` Transfer: amount ``u256``, token address ``bytes32``, token chain ``u16``,
  recipient ``bytes32``, recipient chain ``u16``, fee ``u256``
- ``2`` AttestMeta: token address ``bytes32``, token chain ``u16``, decimals ``u8``,
  symbol ``bytes32``, name ``bytes32``
- ``3`` TransferWithPayload: as Transfer, but the fee is replaced by the
  sender address ``bytes32`` followed by arbitrary payload bytes

Token bridge amounts are normalised to at most
:py:data:`~token_bridge.constants.MAX_BRIDGE_DECIMALS` decimals.
"""

import struct
from dataclasses import dataclass, field

from eth_utils import keccak

from token_bridge.constants import MAX_BRIDGE_DECIMALS, get_chain_info, get_chain_name
from token_bridge.errors import AttestationError, ParseError
from token_bridge.models import MessageId

_HEADER = struct.Struct(">BIB")
_SIGNATURE = struct.Struct(">B65s")
_BODY = struct.Struct(">IIH32sQB")
_TRANSFER = struct.Struct(">B32s32sH32sH32s")
_ATTEST_META = struct.Struct(">B32sHB32s32s")

PAYLOAD_ID_TRANSFER = 1
PAYLOAD_ID_ATTEST_META = 2
PAYLOAD_ID_TRANSFER_WITH_PAYLOAD = 3


@dataclass(slots=True, frozen=True)
class GuardianSignature:
    #: Index in the guardian set
    index: int

    #: 65 byte secp256k1 signature
    signature: bytes


@dataclass(slots=True)
class SignedVAA:
    """A parsed VAA."""

    version: int
    guardian_set_index: int
    signatures: list[GuardianSignature]
    timestamp: int
    nonce: int

    #: Wormhole chain id of the emitter
    emitter_chain: int

    #: 32 byte universal emitter address
    emitter_address: bytes

    sequence: int
    consistency_level: int
    payload: bytes

    #: The serialised VAA as received
    raw: bytes = field(default=b"", repr=False)

    @property
    def body(self) -> bytes:
        return _BODY.pack(self.timestamp, self.nonce, self.emitter_chain, self.emitter_address, self.sequence, self.consistency_level) + self.payload

    @property
    def digest(self) -> bytes:
        """The hash guardians sign: ``keccak256(keccak256(body))``."""
        return keccak(keccak(self.body))

    @property
    def message_id(self) -> MessageId:
        return MessageId(
            chain=get_chain_name(self.emitter_chain),
            emitter="0x" + self.emitter_address.hex(),
            sequence=self.sequence,
        )

    @property
    def payload_id(self) -> int | None:
        return self.payload[0] if self.payload else None


@dataclass(slots=True, frozen=True)
class TokenTransferPayload:
    """Decoded Transfer or TransferWithPayload message."""

    payload_id: int

    #: Amount normalised to at most 8 decimals
    amount: int

    #: Universal address of the token on its origin chain
    token_address: bytes

    #: Wormhole chain id of the token's origin chain
    token_chain: int

    #: Universal address of the recipient
    to: bytes

    #: Wormhole chain id of the recipient
    to_chain: int

    #: Arbiter fee, Transfer only
    fee: int | None = None

    #: Universal address of the sender, TransferWithPayload only
    from_address: bytes | None = None

    #: Application payload, TransferWithPayload only
    payload: bytes | None = None


@dataclass(slots=True, frozen=True)
class AttestMetaPayload:
    """Decoded AttestMeta message."""

    token_address: bytes
    token_chain: int
    decimals: int
    symbol: str
    name: str


def parse_vaa(data: bytes) -> SignedVAA:
    """Parse a serialised VAA.

    :raises AttestationError:
        Truncated or malformed data.
    """
    try:
        version, guardian_set_index, signature_count = _HEADER.unpack_from(data, 0)
        offset = _HEADER.size
        signatures = []
        for _ in range(signature_count):
            index, signature = _SIGNATURE.unpack_from(data, offset)
            signatures.append(GuardianSignature(index, signature))
            offset += _SIGNATURE.size
        timestamp, nonce, emitter_chain, emitter_address, sequence, consistency_level = _BODY.unpack_from(data, offset)
    except struct.error as e:
        raise AttestationError(f"Malformed VAA ({len(data)} bytes): {e}") from e

    if version != 1:
        raise AttestationError(f"Unsupported VAA version {version}")

    return SignedVAA(
        version=version,
        guardian_set_index=guardian_set_index,
        signatures=signatures,
        timestamp=timestamp,
        nonce=nonce,
        emitter_chain=emitter_chain,
        emitter_address=emitter_address,
        sequence=sequence,
        consistency_level=consistency_level,
        payload=bytes(data[offset + _BODY.size :]),
        raw=bytes(data),
    )


def serialise_vaa(vaa: SignedVAA) -> bytes:
    """Serialise a VAA to its wire format."""
    header = _HEADER.pack(vaa.version, vaa.guardian_set_index, len(vaa.signatures))
    signatures = b"".join(_SIGNATURE.pack(s.index, s.signature) for s in vaa.signatures)
    return header + signatures + vaa.body


def decode_token_bridge_payload(data: bytes) -> TokenTransferPayload | AttestMetaPayload:
    """Decode a token bridge message payload.

    :raises ParseError:
        Not a token bridge payload.
    """
    if not data:
        raise ParseError("Empty token bridge payload")

    payload_id = data[0]
    try:
        if payload_id in (PAYLOAD_ID_TRANSFER, PAYLOAD_ID_TRANSFER_WITH_PAYLOAD):
            _, amount, token_address, token_chain, to, to_chain, last = _TRANSFER.unpack_from(data, 0)
            amount = int.from_bytes(amount, "big")
            if payload_id == PAYLOAD_ID_TRANSFER:
                return TokenTransferPayload(
                    payload_id=payload_id,
                    amount=amount,
                    token_address=token_address,
                    token_chain=token_chain,
                    to=to,
                    to_chain=to_chain,
                    fee=int.from_bytes(last, "big"),
                )
            return TokenTransferPayload(
                payload_id=payload_id,
                amount=amount,
                token_address=token_address,
                token_chain=token_chain,
                to=to,
                to_chain=to_chain,
                from_address=last,
                payload=bytes(data[_TRANSFER.size :]),
            )

        if payload_id == PAYLOAD_ID_ATTEST_META:
            _, token_address, token_chain, decimals, symbol, name = _ATTEST_META.unpack_from(data, 0)
            return AttestMetaPayload(
                token_address=token_address,
                token_chain=token_chain,
                decimals=decimals,
                symbol=_decode_fixed_string(symbol),
                name=_decode_fixed_string(name),
            )
    except struct.error as e:
        raise ParseError(f"Truncated token bridge payload, id {payload_id}, {len(data)} bytes") from e

    raise ParseError(f"Unknown token bridge payload id {payload_id}")


def encode_transfer_payload(
    amount: int,
    token_address: bytes,
    token_chain: int,
    to: bytes,
    to_chain: int,
    fee: int = 0,
    from_address: bytes | None = None,
    payload: bytes | None = None,
) -> bytes:
    """Encode a Transfer, or a TransferWithPayload when ``from_address`` is given."""
    if from_address is None:
        assert payload is None, "Payload needs a from_address"
        return _TRANSFER.pack(PAYLOAD_ID_TRANSFER, amount.to_bytes(32, "big"), token_address, token_chain, to, to_chain, fee.to_bytes(32, "big"))
    return _TRANSFER.pack(PAYLOAD_ID_TRANSFER_WITH_PAYLOAD, amount.to_bytes(32, "big"), token_address, token_chain, to, to_chain, from_address) + (payload or b"")


def encode_attest_meta_payload(token_address: bytes, token_chain: int, decimals: int, symbol: str, name: str) -> bytes:
    return _ATTEST_META.pack(
        PAYLOAD_ID_ATTEST_META,
        token_address,
        token_chain,
        decimals,
        symbol.encode("utf-8")[:32].ljust(32, b"\x00"),
        name.encode("utf-8")[:32].ljust(32, b"\x00"),
    )


@dataclass(slots=True, frozen=True)
class RelayerPayload:
    """Instructions for the token bridge relayer, carried in a TransferWithPayload."""

    #: Relayer fee, normalised
    target_relayer_fee: int

    #: Part of the amount to swap to destination native gas, normalised
    to_native_token_amount: int

    #: Universal address of the final recipient
    target_recipient: bytes


_RELAYER = struct.Struct(">B32s32s32s")


def decode_relayer_payload(data: bytes) -> RelayerPayload:
    """Decode the relayer instructions of an automatic transfer.

    :raises ParseError:
        Not a relayer payload.
    """
    try:
        payload_id, fee, native_amount, recipient = _RELAYER.unpack_from(data, 0)
    except struct.error as e:
        raise ParseError(f"Truncated relayer payload, {len(data)} bytes") from e
    if payload_id != 1:
        raise ParseError(f"Unknown relayer payload id {payload_id}")
    return RelayerPayload(
        target_relayer_fee=int.from_bytes(fee, "big"),
        to_native_token_amount=int.from_bytes(native_amount, "big"),
        target_recipient=recipient,
    )


def encode_relayer_payload(target_relayer_fee: int, to_native_token_amount: int, target_recipient: bytes) -> bytes:
    return _RELAYER.pack(1, target_relayer_fee.to_bytes(32, "big"), to_native_token_amount.to_bytes(32, "big"), target_recipient)


def _decode_fixed_string(value: bytes) -> str:
    return value.rstrip(b"\x00").decode("utf-8", errors="replace")


def to_universal_address(chain: str, address: str) -> bytes:
    """Convert a native address to the 32 byte form used in bridge messages.

    EVM addresses are left padded with zeroes. ``0x`` prefixed 32 byte
    addresses (Sui, Aptos, already universal) pass through.

    :raises ValueError:
        Address format not supported for the chain.
    """
    if address.startswith(("0x", "0X")):
        raw = bytes.fromhex(address[2:])
        if get_chain_info(chain).platform == "evm":
            assert len(raw) == 20, f"Bad EVM address {address} on {chain}"
        if len(raw) > 32:
            raise ValueError(f"Address {address} longer than 32 bytes")
        return raw.rjust(32, b"\x00")
    raise ValueError(f"Cannot convert {chain} address {address} to universal form")


def from_universal_address(chain: str, universal: bytes) -> str:
    """Convert a 32 byte universal address back to the chain's native form.

    EVM chains get a 20 byte ``0x`` address, other platforms the full
    32 byte ``0x`` hex.
    """
    assert len(universal) == 32, f"Universal address must be 32 bytes, got {len(universal)}"
    if get_chain_info(chain).platform == "evm":
        if any(universal[:12]):
            raise ValueError(f"Universal address 0x{universal.hex()} is not an EVM address")
        return "0x" + universal[12:].hex()
    return "0x" + universal.hex()


def normalise_amount(amount: int, decimals: int) -> int:
    """Truncate an amount to the bridge wire precision."""
    if decimals > MAX_BRIDGE_DECIMALS:
        return amount // 10 ** (decimals - MAX_BRIDGE_DECIMALS)
    return amount


def denormalise_amount(amount: int, decimals: int) -> int:
    """Scale a wire amount back to a token's native decimals."""
    if decimals > MAX_BRIDGE_DECIMALS:
        return amount * 10 ** (decimals - MAX_BRIDGE_DECIMALS)
    return amount
