"""Tests for ingestor data models."""

import pytest
from conftest import raw_token

from token_filter_pipeline.ingestor.models import (
    RecordValidationError,
    TokenHolding,
    TokenMetadata,
    TokenRecord,
    coerce_number,
)


class TestCoerceNumber:
    """Tests for coerce_number."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(3, 3.0), (2.5, 2.5), ("1.25", 1.25), (" 7 ", 7.0)],
    )
    def test_numeric(self, value, expected) -> None:
        """Test numbers and numeric strings are accepted."""
        assert coerce_number(value) == expected

    @pytest.mark.parametrize("value", [None, True, "abc", [], {}, float("nan"), float("inf")])
    def test_non_numeric(self, value) -> None:
        """Test everything else is rejected."""
        assert coerce_number(value) is None


class TestTokenRecord:
    """Tests for TokenRecord validation."""

    def test_from_dict_full(self) -> None:
        """Test a well-formed record is accepted with its market snapshot."""
        record = TokenRecord.from_dict(raw_token("Mint111", logo_uri="https://img/x.png"))

        assert record.address == "Mint111"
        assert record.symbol == "T111"
        assert record.decimals == 9
        assert record.market["liquidity"] == 250_000.0
        assert record.market["holder"] == 3200.0
        assert record.market["volume_1h_usd"] == 40_000.0
        assert record.logo_uri == "https://img/x.png"

    def test_numeric_strings_are_coerced(self) -> None:
        """Test numeric strings in market fields are converted."""
        record = TokenRecord.from_dict(raw_token("Mint111", liquidity="1234.5", decimals="6"))
        assert record.market["liquidity"] == 1234.5
        assert record.decimals == 6

    def test_name_defaults_to_symbol(self) -> None:
        """Test a missing name falls back to the symbol."""
        record = TokenRecord.from_dict(raw_token("Mint111", name=None))
        assert record.name == record.symbol

    def test_malformed_optional_field_is_ignored(self) -> None:
        """Test a malformed optional field is left out of the snapshot."""
        record = TokenRecord.from_dict(raw_token("Mint111", fdv="n/a"))
        assert "fdv" not in record.market

    @pytest.mark.parametrize(
        "overrides",
        [
            {"address": ""},
            {"symbol": None},
            {"decimals": None},
            {"decimals": -1},
            {"decimals": 1.5},
            {"liquidity": None},
            {"price": "n/a"},
            {"volume_24h_usd": True},
        ],
    )
    def test_invalid_records_rejected(self, overrides) -> None:
        """Test missing or malformed required fields are rejected."""
        with pytest.raises(RecordValidationError):
            TokenRecord.from_dict(raw_token("Mint111", **overrides))

    def test_non_object_rejected(self) -> None:
        """Test a non-object record is rejected."""
        with pytest.raises(RecordValidationError):
            TokenRecord.from_dict(["Mint111"])

    def test_frozen(self) -> None:
        """Test that TokenRecord is immutable."""
        record = TokenRecord.from_dict(raw_token("Mint111"))
        with pytest.raises(AttributeError):
            record.address = "other"  # type: ignore[misc]


class TestTokenMetadata:
    """Tests for TokenMetadata."""

    def test_from_api(self) -> None:
        """Test parsing a meta-data payload with extensions."""
        metadata = TokenMetadata.from_api(
            "Mint111",
            {
                "address": "Mint111",
                "symbol": "BONK",
                "name": "Bonk",
                "decimals": 5,
                "logo_uri": "https://img/bonk.png",
                "extensions": {
                    "website": "https://bonkcoin.com",
                    "twitter": "https://twitter.com/bonk_inu",
                    "discord": "",
                    "description": "The dog coin",
                },
            },
        )

        assert metadata.symbol == "BONK"
        assert metadata.decimals == 5
        assert metadata.description == "The dog coin"
        assert metadata.social_links == {
            "website": "https://bonkcoin.com",
            "twitter": "https://twitter.com/bonk_inu",
        }

    def test_from_api_without_extensions(self) -> None:
        """Test a payload without extensions has no social links."""
        metadata = TokenMetadata.from_api("Mint111", {"symbol": "X", "extensions": None})
        assert metadata.social_links == {}

    def test_from_api_rejects_non_object(self) -> None:
        """Test a non-object payload is rejected."""
        with pytest.raises(RecordValidationError):
            TokenMetadata.from_api("Mint111", "oops")

    def test_dict_round_trip(self) -> None:
        """Test to_dict/from_dict preserve every field."""
        metadata = TokenMetadata(address="Mint111", symbol="X", telegram="https://t.me/x")
        assert TokenMetadata.from_dict(metadata.to_dict()) == metadata


class TestTokenHolding:
    """Tests for TokenHolding."""

    def test_from_api_ui_amount(self) -> None:
        """Test the UI amount is used when present."""
        holding = TokenHolding.from_api("W1", "Mint111", {"uiAmount": 12.5, "valueUsd": 3.2})
        assert holding is not None
        assert holding.balance == 12.5
        assert holding.value_usd == 3.2

    def test_from_api_raw_balance(self) -> None:
        """Test the raw balance is scaled by decimals."""
        holding = TokenHolding.from_api("W1", "Mint111", {"balance": 2_500_000, "decimals": 6})
        assert holding is not None
        assert holding.balance == 2.5

    @pytest.mark.parametrize("data", [None, {}, {"uiAmount": 0}, {"uiAmount": "x"}])
    def test_from_api_no_position(self, data) -> None:
        """Test an empty or zero balance means no holding."""
        assert TokenHolding.from_api("W1", "Mint111", data) is None
