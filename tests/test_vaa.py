"""VAA and token bridge payload codec."""

import pytest
from eth_utils import keccak

from token_bridge.errors import AttestationError, ParseError
from token_bridge.models import MessageId
from token_bridge.vaa import (
    AttestMetaPayload,
    TokenTransferPayload,
    decode_relayer_payload,
    decode_token_bridge_payload,
    denormalise_amount,
    encode_attest_meta_payload,
    encode_relayer_payload,
    encode_transfer_payload,
    from_universal_address,
    normalise_amount,
    parse_vaa,
    serialise_vaa,
    to_universal_address,
)

_EMITTER = bytes(12) + b"\x22" * 20

_BODY = (
    bytes.fromhex("00000064")  # timestamp
    + bytes.fromhex("00000007")  # nonce
    + bytes.fromhex("0006")  # Avalanche
    + _EMITTER
    + bytes.fromhex("000000000000002a")  # sequence
    + bytes.fromhex("0f")
    + b"\x01payload"
)

_RAW_VAA = bytes.fromhex("01" "00000003" "01") + b"\x00" + b"\x11" * 65 + _BODY


def test_parse_vaa():
    """Header, signatures and body fields are read big endian."""
    vaa = parse_vaa(_RAW_VAA)
    assert vaa.version == 1
    assert vaa.guardian_set_index == 3
    assert len(vaa.signatures) == 1
    assert vaa.signatures[0].signature == b"\x11" * 65
    assert vaa.timestamp == 100
    assert vaa.nonce == 7
    assert vaa.emitter_chain == 6
    assert vaa.emitter_address == _EMITTER
    assert vaa.sequence == 42
    assert vaa.consistency_level == 15
    assert vaa.payload == b"\x01payload"
    assert vaa.payload_id == 1
    assert vaa.raw == _RAW_VAA
    assert vaa.message_id == MessageId("Avalanche", "0x" + _EMITTER.hex(), 42)


def test_vaa_body_and_digest():
    """Guardians sign the double keccak of the body."""
    vaa = parse_vaa(_RAW_VAA)
    assert vaa.body == _BODY
    assert vaa.digest == keccak(keccak(_BODY))
    assert serialise_vaa(vaa) == _RAW_VAA


def test_parse_vaa_truncated():
    """Missing bytes are an attestation error, not a struct error."""
    with pytest.raises(AttestationError):
        parse_vaa(_RAW_VAA[:40])


def test_parse_vaa_unknown_version():
    with pytest.raises(AttestationError, match="version"):
        parse_vaa(b"\x02" + _RAW_VAA[1:])


def test_transfer_payload():
    """Payload 1 is 133 bytes and carries the arbiter fee."""
    data = encode_transfer_payload(
        amount=12_345,
        token_address=to_universal_address("Avalanche", "0x" + "ab" * 20),
        token_chain=6,
        to=to_universal_address("Sepolia", "0x" + "cd" * 20),
        to_chain=10002,
        fee=5,
    )
    assert len(data) == 133

    decoded = decode_token_bridge_payload(data)
    assert isinstance(decoded, TokenTransferPayload)
    assert decoded.payload_id == 1
    assert decoded.amount == 12_345
    assert decoded.token_chain == 6
    assert decoded.to_chain == 10002
    assert decoded.fee == 5
    assert decoded.from_address is None
    assert from_universal_address("Sepolia", decoded.to) == "0x" + "cd" * 20


def test_transfer_with_payload():
    """Payload 3 swaps the fee for the sender and appends application data."""
    sender = to_universal_address("Avalanche", "0x" + "ef" * 20)
    data = encode_transfer_payload(
        amount=1,
        token_address=bytes(32),
        token_chain=6,
        to=bytes(32),
        to_chain=10002,
        from_address=sender,
        payload=b"Hello World!",
    )
    assert len(data) == 133 + len(b"Hello World!")

    decoded = decode_token_bridge_payload(data)
    assert decoded.payload_id == 3
    assert decoded.from_address == sender
    assert decoded.payload == b"Hello World!"
    assert decoded.fee is None


def test_attest_meta_payload():
    """Payload 2 is 100 bytes with zero padded strings."""
    data = encode_attest_meta_payload(bytes(31) + b"\x01", 6, 18, "USDC", "USD Coin")
    assert len(data) == 100

    decoded = decode_token_bridge_payload(data)
    assert decoded == AttestMetaPayload(bytes(31) + b"\x01", 6, 18, "USDC", "USD Coin")


def test_relayer_payload():
    """Relayer instructions are 97 bytes."""
    recipient = to_universal_address("Sepolia", "0x" + "cd" * 20)
    data = encode_relayer_payload(target_relayer_fee=10, to_native_token_amount=20, target_recipient=recipient)
    assert len(data) == 97

    decoded = decode_relayer_payload(data)
    assert decoded.target_relayer_fee == 10
    assert decoded.to_native_token_amount == 20
    assert decoded.target_recipient == recipient

    with pytest.raises(ParseError):
        decode_relayer_payload(b"\x02" + data[1:])


@pytest.mark.parametrize("data", [b"", b"\x09" + bytes(132), b"\x01" + bytes(10)])
def test_decode_bad_payloads(data):
    """Empty, unknown and truncated payloads are rejected."""
    with pytest.raises(ParseError):
        decode_token_bridge_payload(data)


def test_universal_addresses():
    """EVM addresses are left padded, other platforms keep 32 bytes."""
    universal = to_universal_address("Sepolia", "0xABCDEF0000000000000000000000000000000001")
    assert universal == bytes(12) + bytes.fromhex("abcdef0000000000000000000000000000000001")
    assert from_universal_address("Sepolia", universal) == "0xabcdef0000000000000000000000000000000001"

    sui_address = "0x" + "12" * 32
    assert from_universal_address("Sui", to_universal_address("Sui", sui_address)) == sui_address

    with pytest.raises(ValueError):
        from_universal_address("Sepolia", b"\x01" * 32)

    with pytest.raises(ValueError):
        to_universal_address("Solana", "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM")


def test_amount_normalisation():
    """Only precision past 8 decimals is cut."""
    assert normalise_amount(123_456_789_012, 18) == 12
    assert denormalise_amount(12, 18) == 120_000_000_000
    assert normalise_amount(500, 6) == 500
    assert denormalise_amount(500, 6) == 500
