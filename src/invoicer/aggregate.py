"""Line items and totals for one recipient.

Entries are grouped per (calendar day, task label) so an invoice lists one
row per task and day rather than every timestamp. Money is Decimal and each
line total is rounded to the currency's minor unit (round-half-to-even)
before the subtotal is summed, so the subtotal always equals the sum of the
printed line totals.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal

from .errors import MissingRate
from .recipients import Recipient
from .routing import RoutedEntry

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Currencies without two minor digits; everything else rounds to cents
CURRENCY_DECIMALS = {
    "JPY": 0,
    "KRW": 0,
    "ISK": 0,
    "CLP": 0,
    "VND": 0,
    "BHD": 3,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
}


def currency_unit(currency: str) -> Decimal:
    """Smallest representable amount, e.g. Decimal("0.01") for EUR."""
    return Decimal(1).scaleb(-CURRENCY_DECIMALS.get(currency.upper(), 2))


def quantize(amount: Decimal, currency: str = "EUR") -> Decimal:
    return amount.quantize(currency_unit(currency), rounding=ROUND_HALF_EVEN)


@dataclass(frozen=True)
class LineItem:
    date: date
    description: str
    quantity: Decimal  # hours
    rate: Decimal
    total: Decimal
    unit: str = "h"


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax_rate: Decimal  # percent
    tax: Decimal
    total: Decimal


def resolve_rate(
    routed: RoutedEntry,
    recipient: Recipient,
    default_rate: Decimal | None,
) -> Decimal:
    """Entry rate, then recipient default, then global default."""
    for rate in (routed.entry.rate, recipient.default_rate, default_rate):
        if rate is not None:
            return rate
    raise MissingRate(recipient.name, routed.description)


def build_line_items(
    routed_entries: Iterable[RoutedEntry],
    recipient: Recipient,
    default_rate: Decimal | None = None,
    currency: str = "EUR",
) -> list[LineItem]:
    """Group a recipient's entries into line items, ordered by date then label.

    Entries of one day and label billed at different rates stay on separate
    rows so quantity x rate holds for every row.
    """
    groups: dict[tuple[date, str, Decimal], Decimal] = {}
    for routed in routed_entries:
        rate = resolve_rate(routed, recipient, default_rate)
        key = (routed.entry.date, routed.description, rate)
        groups[key] = groups.get(key, ZERO) + routed.entry.hours

    items = [
        LineItem(
            date=day,
            description=description,
            quantity=hours,
            rate=rate,
            total=quantize(hours * rate, currency),
        )
        for (day, description, rate), hours in groups.items()
    ]
    items.sort(key=lambda item: (item.date, item.description, item.rate))
    return items


def compute_totals(
    items: Iterable[LineItem],
    tax_rate: Decimal,
    calculate_tax: bool = True,
    currency: str = "EUR",
) -> Totals:
    """Subtotal from the already rounded line totals, tax on top when enabled."""
    subtotal = quantize(sum((item.total for item in items), ZERO), currency)
    if calculate_tax:
        tax = quantize(subtotal * tax_rate / HUNDRED, currency)
    else:
        tax = quantize(ZERO, currency)
    return Totals(
        subtotal=subtotal,
        tax_rate=tax_rate if calculate_tax else ZERO,
        tax=tax,
        total=subtotal + tax,
    )
