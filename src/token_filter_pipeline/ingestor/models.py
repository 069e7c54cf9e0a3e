"""Data models for the ingestor module.

Raw BirdEye payloads are untrusted: every record is validated here before it
becomes part of a pipeline run.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any

# Numeric market fields every downstream stage relies on.
REQUIRED_MARKET_FIELDS: tuple[str, ...] = (
    "price",
    "liquidity",
    "market_cap",
    "holder",
    "volume_24h_usd",
    "price_change_24h_percent",
    "trade_24h_count",
)

# Captured into the snapshot when present and numeric, ignored otherwise.
OPTIONAL_MARKET_FIELDS: tuple[str, ...] = (
    "fdv",
    "volume_1h_usd",
    "volume_1h_change_percent",
    "volume_24h_change_percent",
    "price_change_1h_percent",
    "trade_1h_count",
    "last_trade_unix_time",
    "recent_listing_time",
)


class RecordValidationError(ValueError):
    """Raised when a raw market-data record is missing or has malformed fields."""


def coerce_number(value: Any) -> float | None:
    """Convert a JSON scalar to a finite float, or None if it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


@dataclass(frozen=True)
class TokenRecord:
    """A validated token-list record."""

    address: str
    symbol: str
    name: str
    decimals: int
    market: dict[str, float]
    logo_uri: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> TokenRecord:
        """Validate a raw token-list record.

        Raises:
            RecordValidationError: If identity or required numeric fields are
                missing or malformed.
        """
        if not isinstance(data, dict):
            raise RecordValidationError("record is not an object")

        address = data.get("address")
        if not isinstance(address, str) or not address.strip():
            raise RecordValidationError("missing address")
        symbol = data.get("symbol")
        if not isinstance(symbol, str) or not symbol.strip():
            raise RecordValidationError(f"{address}: missing symbol")

        decimals_raw = data.get("decimals")
        decimals = coerce_number(decimals_raw)
        if decimals is None or decimals < 0 or decimals != int(decimals):
            raise RecordValidationError(f"{address}: missing or invalid decimals")

        market: dict[str, float] = {}
        for field_name in REQUIRED_MARKET_FIELDS:
            value = coerce_number(data.get(field_name))
            if value is None:
                raise RecordValidationError(f"{address}: missing or invalid {field_name}")
            market[field_name] = value
        for field_name in OPTIONAL_MARKET_FIELDS:
            value = coerce_number(data.get(field_name))
            if value is not None:
                market[field_name] = value

        name = data.get("name")
        logo_uri = data.get("logo_uri") or data.get("logoURI")
        return cls(
            address=address.strip(),
            symbol=symbol.strip(),
            name=name.strip() if isinstance(name, str) and name.strip() else symbol.strip(),
            decimals=int(decimals),
            market=market,
            logo_uri=logo_uri if isinstance(logo_uri, str) else None,
        )


def _opt_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


@dataclass(frozen=True)
class TokenMetadata:
    """Extended token metadata: social links and description."""

    address: str
    symbol: str | None = None
    name: str | None = None
    decimals: int | None = None
    logo_uri: str | None = None
    website: str | None = None
    twitter: str | None = None
    telegram: str | None = None
    discord: str | None = None
    medium: str | None = None
    coingecko_id: str | None = None
    description: str | None = None

    @classmethod
    def from_api(cls, address: str, data: Any) -> TokenMetadata:
        """Create metadata from a BirdEye meta-data payload.

        Raises:
            RecordValidationError: If the payload is not an object.
        """
        if not isinstance(data, dict):
            raise RecordValidationError(f"{address}: metadata payload is not an object")
        extensions = data.get("extensions")
        if not isinstance(extensions, dict):
            extensions = {}
        decimals = coerce_number(data.get("decimals"))
        return cls(
            address=address,
            symbol=_opt_str(data.get("symbol")),
            name=_opt_str(data.get("name")),
            decimals=int(decimals) if decimals is not None else None,
            logo_uri=_opt_str(data.get("logo_uri") or data.get("logoURI")),
            website=_opt_str(extensions.get("website")),
            twitter=_opt_str(extensions.get("twitter")),
            telegram=_opt_str(extensions.get("telegram")),
            discord=_opt_str(extensions.get("discord")),
            medium=_opt_str(extensions.get("medium")),
            coingecko_id=_opt_str(extensions.get("coingecko_id")),
            description=_opt_str(extensions.get("description") or data.get("description")),
        )

    @property
    def social_links(self) -> dict[str, str]:
        links = {
            "website": self.website,
            "twitter": self.twitter,
            "telegram": self.telegram,
            "discord": self.discord,
            "medium": self.medium,
        }
        return {k: v for k, v in links.items() if v}

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenMetadata:
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class TokenHolding:
    """A wallet's balance of one token."""

    wallet_address: str
    token_address: str
    balance: float
    value_usd: float | None = None

    @classmethod
    def from_api(cls, wallet_address: str, token_address: str, data: Any) -> TokenHolding | None:
        """Parse a wallet token-balance payload. Returns None when nothing is held."""
        if not isinstance(data, dict):
            return None
        balance = coerce_number(data.get("uiAmount"))
        if balance is None:
            raw = coerce_number(data.get("balance"))
            decimals = coerce_number(data.get("decimals"))
            if raw is not None and decimals is not None:
                balance = raw / (10 ** int(decimals))
            else:
                balance = raw
        if balance is None or balance <= 0:
            return None
        return cls(
            wallet_address=wallet_address,
            token_address=token_address,
            balance=balance,
            value_usd=coerce_number(data.get("valueUsd")),
        )
