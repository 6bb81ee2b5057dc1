"""Invoice numbers and output filenames from format strings.

Format strings use ``${NAME}`` placeholders; ``strftime`` directives such as
``%Y%m`` are honoured too and expand against the generation timestamp:

    number_format   = "%Y%m${COUNTER}"                              -> 20260302
    filename_format = "${INVOICENUMBER}_${INVOICE}_${RECIPIENT}.tex" -> 20260302_invoice_acme.tex

Placeholders that are not known raise UnknownPlaceholder instead of being
dropped, and validate_format() lets the caller check every configured format
before a single file is written.
"""

import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime

from .errors import UnknownPlaceholder

PLACEHOLDER_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
# Whatever is left of a "${" once well-formed placeholders are taken out
MALFORMED_RE = re.compile(r"\$\{([^}]*)\}?")

# Characters that are path separators or forbidden on common filesystems
FORBIDDEN_FILENAME_CHARS = re.compile(r'[/\\\x00:*?"<>|]')

DATE_PLACEHOLDERS = frozenset({"YEAR", "MONTH", "DAY", "DATE"})
NUMBER_PLACEHOLDERS = DATE_PLACEHOLDERS | {"COUNTER", "RECIPIENT"}
FILENAME_PLACEHOLDERS = NUMBER_PLACEHOLDERS | {"INVOICENUMBER", "INVOICE"}


def placeholders(fmt: str) -> list[str]:
    """Placeholder names referenced by a format string, in order of appearance."""
    return PLACEHOLDER_RE.findall(fmt)


def check_malformed(fmt: str) -> None:
    """Raise UnknownPlaceholder for an unclosed ``${`` or a non-identifier name."""
    match = MALFORMED_RE.search(PLACEHOLDER_RE.sub("", fmt))
    if match:
        raise UnknownPlaceholder(match.group(1), fmt)


def validate_format(fmt: str, allowed: frozenset[str] | set[str]) -> None:
    """Raise UnknownPlaceholder for the first placeholder not in ``allowed``."""
    check_malformed(fmt)
    for name in placeholders(fmt):
        if name not in allowed:
            raise UnknownPlaceholder(name, fmt)


def sanitize_filename_part(value: str, replacement: str = "_") -> str:
    """Replace path separators, NUL and other forbidden characters."""
    return FORBIDDEN_FILENAME_CHARS.sub(replacement, value)


def substitute(fmt: str, values: Mapping[str, str], sanitize: bool = False) -> str:
    """Replace every ``${NAME}`` in fmt with values[NAME].

    With sanitize=True the substituted values (never the literal parts of
    the format) are passed through sanitize_filename_part.
    """
    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in values:
            raise UnknownPlaceholder(name, fmt)
        value = str(values[name])
        return sanitize_filename_part(value) if sanitize else value

    check_malformed(fmt)
    return PLACEHOLDER_RE.sub(_replace, fmt)


def expand_date_directives(fmt: str, when: datetime) -> str:
    """Apply strftime to fmt, leaving ``${...}`` placeholders intact."""
    if "%" not in fmt:
        return fmt
    # Escape placeholder bodies so strftime never sees them as directives
    parts = PLACEHOLDER_RE.split(fmt)
    out = []
    for i, part in enumerate(parts):
        if i % 2:
            out.append("${" + part + "}")
        else:
            out.append(when.strftime(part) if part else part)
    return "".join(out)


@dataclass(frozen=True)
class FormatContext:
    """Placeholder values for one invoice, rebuilt per invoice."""
    when: datetime
    counter: int
    recipient: str = ""
    counter_width: int = 2
    invoice_word: str = "invoice"
    number: str = ""
    date_format: str = "%Y/%m/%d"

    def values(self) -> dict[str, str]:
        values = {
            "YEAR": f"{self.when.year:04d}",
            "MONTH": f"{self.when.month:02d}",
            "DAY": f"{self.when.day:02d}",
            "DATE": self.when.strftime(self.date_format),
            "COUNTER": f"{self.counter:0{self.counter_width}d}",
            "RECIPIENT": self.recipient,
            "INVOICE": self.invoice_word,
        }
        if self.number:
            values["INVOICENUMBER"] = self.number
        return values

    def with_number(self, number: str) -> "FormatContext":
        return replace(self, number=number)


def expand(fmt: str, context: FormatContext, sanitize: bool = False) -> str:
    """Expand date directives and placeholders of fmt against context."""
    return substitute(expand_date_directives(fmt, context.when), context.values(), sanitize=sanitize)


def format_invoice_number(number_format: str, context: FormatContext) -> str:
    """Expand the invoice number format, e.g. "%Y%m${COUNTER}" -> "20260302"."""
    validate_format(number_format, NUMBER_PLACEHOLDERS)
    return expand(number_format, context)


def format_filename(filename_format: str, context: FormatContext) -> str:
    """Expand the output filename format with sanitized placeholder values."""
    validate_format(filename_format, FILENAME_PLACEHOLDERS)
    return expand(filename_format, context, sanitize=True)


class InvoiceCounter:
    """Run-scoped invoice counter.

    next() hands out the current value and increments it. The lock makes the
    counter safe to share, though the builder draws numbers from a single
    thread so the sequence follows recipient-processing order.
    """

    def __init__(self, start: int = 1):
        if start < 0:
            raise ValueError(f"Counter must not be negative: {start}")
        self._value = start
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        """The value the next invoice will receive."""
        return self._value

    def next(self) -> int:
        with self._lock:
            current = self._value
            self._value += 1
            return current
