"""Locale tables: number formatting and translated labels.

A locale is ``<locales dir>/<id>.toml``:

    decimalseparator = ","
    thousandseparator = "."

    [translations]
    invoice = "Rechnung"
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_EVEN, Decimal
from pathlib import Path

from .aggregate import CURRENCY_DECIMALS
from .config import read_toml

logger = logging.getLogger("invoicer.locale")

DEFAULT_LOCALE = "en"

CURRENCY_SYMBOLS = {
    "EUR": "€",
    "USD": "$",
    "GBP": "£",
    "CHF": "CHF",
    "JPY": "¥",
}


def currency_symbol(currency: str) -> str:
    return CURRENCY_SYMBOLS.get(currency.upper(), "€")


@dataclass(frozen=True)
class Locale:
    name: str = DEFAULT_LOCALE
    currency: str = "EUR"
    decimalseparator: str = "."
    thousandseparator: str = ","
    translations: dict[str, str] = field(default_factory=dict)

    def tr(self, key: str) -> str:
        """Translated label, or the key itself when the table lacks it."""
        return self.translations.get(key, key)

    def format_number(self, value: Decimal | int | float, digits: int = 2) -> str:
        """1234.5 -> "1,234.50" (en) / "1.234,50" (de)."""
        amount = Decimal(str(value)).quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_EVEN)
        text = f"{amount:,.{digits}f}"
        return (
            text.replace(",", "\0")
            .replace(".", self.decimalseparator)
            .replace("\0", self.thousandseparator)
        )

    def format_amount(self, value: Decimal, currency: str | None = None) -> str:
        currency = currency or self.currency
        digits = CURRENCY_DECIMALS.get(currency.upper(), 2)
        return f"{self.format_number(value, digits)} {currency_symbol(currency)}"


def parse_locale(name: str, data: dict) -> Locale:
    return Locale(
        name=name,
        currency=data.get("currency", "EUR"),
        decimalseparator=data.get("decimalseparator", "."),
        thousandseparator=data.get("thousandseparator", ","),
        translations={k: str(v) for k, v in data.get("translations", {}).items()},
    )


def load_locale(locales_dir: Path, name: str = DEFAULT_LOCALE) -> Locale:
    """Load a locale table, falling back to the default locale when missing."""
    name = name or DEFAULT_LOCALE
    path = locales_dir / f"{name}.toml"
    if path.exists():
        return parse_locale(name, read_toml(path))

    if name != DEFAULT_LOCALE:
        logger.warning("Locale '%s' not found in %s, using '%s'", name, locales_dir, DEFAULT_LOCALE)
        return load_locale(locales_dir, DEFAULT_LOCALE)

    logger.warning("Default locale not found in %s, labels will be untranslated", locales_dir)
    return Locale()
