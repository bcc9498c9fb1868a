import pytest

from rpcgate.accounts import AccountId32, parse_account
from rpcgate.errors import AddressParseError

ALICE_SS58 = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
ALICE_HEX = "d43593c715fdd31c61141abd04a99fd6822c8558854ccde39a5684e7a56da27d"


def test_alice_ss58_matches_hex():
    assert parse_account(ALICE_SS58) == parse_account(ALICE_HEX)
    assert parse_account(ALICE_SS58).data == bytes.fromhex(ALICE_HEX)


def test_hex_with_prefix():
    assert parse_account("0x" + ALICE_HEX) == parse_account(ALICE_HEX)


def test_str_is_generic_ss58():
    assert str(parse_account(ALICE_HEX)) == ALICE_SS58
    assert parse_account(ALICE_HEX).to_ss58() == ALICE_SS58


@pytest.mark.parametrize("prefix", [0, 2, 63, 64, 2000, 16383])
def test_ss58_round_trip(prefix):
    account = AccountId32(bytes(range(32)))
    assert parse_account(account.to_ss58(prefix)) == account


def test_different_prefixes_give_different_text():
    account = AccountId32(bytes(range(32)))
    assert account.to_ss58(0) != account.to_ss58(42)


def test_bad_checksum_rejected():
    broken = ALICE_SS58[:-1] + ("Z" if ALICE_SS58[-1] != "Z" else "Y")
    with pytest.raises(AddressParseError):
        parse_account(broken)


def test_invalid_character_rejected():
    with pytest.raises(AddressParseError):
        parse_account("0OIl")


def test_invalid_hex_rejected():
    with pytest.raises(AddressParseError):
        parse_account("zz" * 32)


def test_reserved_prefix_rejected():
    account = AccountId32(bytes(range(32)))
    with pytest.raises(AddressParseError):
        parse_account(account.to_ss58(46))


def test_wrong_length_bytes():
    with pytest.raises(ValueError):
        AccountId32(b"\x01" * 31)


def test_prefix_out_of_range():
    with pytest.raises(ValueError):
        AccountId32(bytes(32)).to_ss58(16384)


def test_hashable_and_equal():
    first = AccountId32(bytes(32))
    second = AccountId32(bytes(32))
    assert {first, second} == {first}