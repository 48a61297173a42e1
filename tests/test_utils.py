"""
Helper tests: monetary decimals, datetime parsing and Stellar signature decoding
"""

import base64
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from stellar_sdk import Keypair

from utils.datetime_helpers import parse_datetime, to_iso_utc
from utils.decimal_precision import MonetaryDecimal
from utils.exceptions import ConflictError, InvalidAddressError, ServiceError, ValidationError
from utils.wallet_signatures import decode_signature, is_valid_address, normalize_address, verify_signature


class TestMonetaryDecimal:

    @pytest.mark.parametrize("value, expected", [
        ("10", Decimal("10")),
        (" 0.5 ", Decimal("0.5")),
        (3, Decimal("3")),
        (0.1, Decimal("0.1")),
        (Decimal("1.0000001"), Decimal("1.0000001")),
    ])
    def test_validate_positive_accepts(self, value, expected):
        assert MonetaryDecimal.validate_positive(value) == expected

    @pytest.mark.parametrize("value", [True, None, "NaN", "Infinity", "1e40", "0.00000001", "-0.1"])
    def test_validate_positive_rejects(self, value):
        with pytest.raises(ValidationError):
            MonetaryDecimal.validate_positive(value)

    def test_meets_ratio_is_exact(self):
        assert MonetaryDecimal.meets_ratio(Decimal("150"), Decimal("100"), Decimal("1.5"))
        assert not MonetaryDecimal.meets_ratio(Decimal("149.9999999"), Decimal("100"), Decimal("1.5"))

    def test_sum_and_format(self):
        total = MonetaryDecimal.sum_amounts(["0.1", "0.2", Decimal("0.0000001")])
        assert total == Decimal("0.3000001")
        assert MonetaryDecimal.format_amount(Decimal("250.0000000")) == "250"


class TestDatetimeHelpers:

    def test_parse_zulu_to_naive_utc(self):
        assert parse_datetime("2030-05-01T12:00:00Z") == datetime(2030, 5, 1, 12, 0, 0)

    def test_parse_offset_converted_to_utc(self):
        assert parse_datetime("2030-05-01T14:00:00+02:00") == datetime(2030, 5, 1, 12, 0, 0)

    def test_aware_datetime_passthrough(self):
        aware = datetime(2030, 5, 1, 12, tzinfo=timezone(timedelta(hours=-3)))
        assert parse_datetime(aware) == datetime(2030, 5, 1, 15)

    @pytest.mark.parametrize("value", [None, "", "tomorrow", 12345])
    def test_unparseable_is_none(self, value):
        assert parse_datetime(value) is None

    def test_to_iso_utc(self):
        assert to_iso_utc(datetime(2030, 1, 2, 3, 4, 5, 678000)) == "2030-01-02T03:04:05.678Z"
        assert to_iso_utc(None) is None


class TestWalletSignatures:

    def test_normalize_address(self):
        keypair = Keypair.random()
        assert normalize_address(f" {keypair.public_key.lower()} ") == keypair.public_key
        assert is_valid_address(keypair.public_key)
        assert not is_valid_address("G" * 56)

    def test_secret_seed_is_not_an_address(self):
        with pytest.raises(InvalidAddressError):
            normalize_address(Keypair.random().secret)

    def test_decode_hex_and_base64(self):
        raw = Keypair.random().sign(b"payload")
        assert decode_signature(raw.hex()) == raw
        assert decode_signature(raw.hex().upper()) == raw
        assert decode_signature(base64.b64encode(raw).decode()) == raw

    @pytest.mark.parametrize("value", ["", None, "00" * 63, "not a signature"])
    def test_decode_rejects_wrong_length(self, value):
        with pytest.raises(ValidationError):
            decode_signature(value)

    def test_verify_signature(self):
        keypair = Keypair.random()
        signature = keypair.sign(b"stellovault:login:abc")

        assert verify_signature(keypair.public_key, "stellovault:login:abc", signature)
        assert not verify_signature(keypair.public_key, "stellovault:login:abd", signature)
        assert not verify_signature(Keypair.random().public_key, "stellovault:login:abc", signature)


def test_service_errors_carry_status_codes():
    assert ValidationError("bad").status_code == 400
    assert ConflictError("taken").to_dict() == {"success": False, "error": "taken"}
    assert isinstance(InvalidAddressError("x"), ValidationError)
    assert issubclass(ConflictError, ServiceError)
