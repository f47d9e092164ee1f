from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

# Units of each currency per 1 USD. Fixed table; prices are stored in USD.
EXCHANGE_RATES: Dict[str, float] = {
    "USD": 1.0,
    "EUR": 0.92,
    "PLN": 4.0,
    "GBP": 0.79,
    "CHF": 0.88,
}

CURRENCY_SYMBOLS: Dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "PLN": "zł",
    "GBP": "£",
    "CHF": "CHF",
}

LANGUAGE_CURRENCY: Dict[str, str] = {
    "en": "USD",
    "de": "EUR",
    "fr": "EUR",
    "es": "EUR",
    "nl": "EUR",
    "pl": "PLN",
}

DEFAULT_CURRENCY = "USD"


def normalize_currency(code: Optional[str], *, default: Optional[str] = DEFAULT_CURRENCY) -> Optional[str]:
    """Upper-case a currency code; symbols map to their code, unknown codes to default."""
    if not code:
        return default
    value = str(code).strip()
    for known, symbol in CURRENCY_SYMBOLS.items():
        if value == symbol:
            return known
    value = value.upper()
    return value if value in EXCHANGE_RATES else default


def _require(currency: str) -> str:
    code = normalize_currency(currency, default=None)
    if code is None:
        raise ValueError(f"Unsupported currency: {currency!r}")
    return code


def currency_for_language(language: Optional[str]) -> str:
    return LANGUAGE_CURRENCY.get((language or "").lower(), DEFAULT_CURRENCY)


def convert_from_usd(amount_usd: float, currency: str) -> float:
    return amount_usd * EXCHANGE_RATES[_require(currency)]


def convert_to_usd(amount: float, currency: str) -> float:
    return amount / EXCHANGE_RATES[_require(currency)]


def format_price(amount_usd: float, currency: str, show_symbol: bool = True) -> str:
    """Convert a USD amount and render it the way the site shows prices.

    CHF prefixes the code with a space, PLN puts the symbol after the
    amount, everything else prefixes the bare symbol.
    """
    code = _require(currency)
    converted = f"{convert_from_usd(amount_usd, code):.2f}"
    if not show_symbol:
        return converted
    symbol = CURRENCY_SYMBOLS[code]
    if code == "CHF":
        return f"CHF {converted}"
    if code == "PLN":
        return f"{converted} {symbol}"
    return f"{symbol}{converted}"


@dataclass
class CurrencyPreference:
    """Visitor currency selection that follows the language until overridden."""

    currency: str = DEFAULT_CURRENCY
    manual_override: bool = False

    def select(self, currency: str) -> None:
        self.currency = _require(currency)
        self.manual_override = True

    def on_language_change(self, language: str) -> None:
        if not self.manual_override:
            self.currency = currency_for_language(language)

    def format(self, amount_usd: float, show_symbol: bool = True) -> str:
        return format_price(amount_usd, self.currency, show_symbol)
