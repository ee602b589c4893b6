"""
Currency code helpers backed by pycountry (ISO 4217).
"""
from typing import Any

import pycountry

# Cryptocurrencies not in pycountry ISO 4217 database
CRYPTO_CURRENCIES = {
    "BTC": "Bitcoin",
    "ETH": "Ethereum",
    "USDT": "Tether",
    "USDC": "USD Coin",
    }


def is_iso_currency(code: str) -> bool:
    """True when ``code`` is an exact ISO 4217 alpha-3 code (no fuzzy name match)."""
    if not code or len(code) != 3:
        return False
    return pycountry.currencies.get(alpha_3=code.upper()) is not None


def validate_currency_code(v: Any) -> str:
    """
    Validate and normalize a currency code.

    Example:
        @field_validator('currency')
        @classmethod
        def validate_currency(cls, v):
            return validate_currency_code(v)

    Raises:
        ValueError: If the code is neither ISO 4217 nor a supported crypto symbol
    """
    if not isinstance(v, str):
        raise ValueError(f"Currency code must be a string, got {type(v)}")

    code = v.upper().strip()
    if not code:
        raise ValueError("Currency code cannot be empty")

    if is_iso_currency(code) or code in CRYPTO_CURRENCIES:
        return code

    raise ValueError(
        f"Invalid currency code: '{code}'. "
        f"Must be ISO 4217 currency or supported crypto."
        )
