"""The per-recipient invoice record handed to the renderer."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from .aggregate import LineItem, Totals
from .config import InvoiceConfig
from .recipients import Recipient
from .worklog import WorklogEntry


@dataclass(frozen=True)
class RecipientInvoice:
    recipient: Recipient
    items: tuple[LineItem, ...]
    totals: Totals
    number: str
    filename: str
    generated_at: datetime
    period_begin: datetime
    period_end: datetime
    due_date: date
    currency: str
    settings: InvoiceConfig  # effective settings after recipient overrides
    timesheet: tuple[WorklogEntry, ...] = field(default_factory=tuple)

    @property
    def subtotal(self) -> Decimal:
        return self.totals.subtotal

    @property
    def tax(self) -> Decimal:
        return self.totals.tax

    @property
    def total(self) -> Decimal:
        return self.totals.total

    @property
    def tax_rate(self) -> Decimal:
        return self.totals.tax_rate

    @property
    def calculate_tax(self) -> bool:
        return self.settings.calculate_value_added_tax

    def summary(self) -> dict:
        """JSON-friendly overview used in run reports."""
        return {
            "invoice_number": self.number,
            "recipient": self.recipient.name,
            "items": len(self.items),
            "hours": str(sum((item.quantity for item in self.items), Decimal("0"))),
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "total": str(self.total),
            "due_date": self.due_date.isoformat(),
        }
