import pytest

from keyble_register.errors import MalformedCredential
from keyble_register.key_card import KeyCard, decode, encode

VALID = "M001A22AABBCCK0123456789ABCDEF0123456789ABCDEFNEQ1234567"


def test_decode_valid_key_card():
    card = decode(VALID)

    assert card.address == "00:1A:22:AA:BB:CC"
    assert card.key == bytes.fromhex("0123456789ABCDEF0123456789ABCDEF")
    assert card.serial == "NEQ1234567"


def test_decode_strips_whitespace_and_accepts_lowercase_hex():
    card = decode("  M001a22aabbccK0123456789abcdef0123456789abcdefNEQ1234567\n")
    assert card.address == "00:1A:22:AA:BB:CC"
    assert card.key.hex() == "0123456789abcdef0123456789abcdef"


def test_encode_reverses_decode():
    card = KeyCard(address="AA:BB:CC:DD:EE:FF", key=bytes(16), serial="SN12345678")
    assert decode(encode(card)) == card
    assert encode(decode(VALID)) == VALID


@pytest.mark.parametrize("data", [
    "",
    VALID[:-1],
    VALID + "X",
    "X" + VALID[1:],
    VALID[:13] + "X" + VALID[14:],
    VALID[:5] + "G" + VALID[6:],
    VALID[:20] + "Z" + VALID[21:],
    VALID[:-10] + "neq1234567",
])
def test_decode_rejects_malformed_data(data):
    with pytest.raises(MalformedCredential):
        decode(data)


def test_malformed_credential_is_a_value_error():
    with pytest.raises(ValueError):
        decode("not a key card")


def test_repr_hides_card_key():
    assert "key=" not in repr(decode(VALID))
