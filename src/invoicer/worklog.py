"""Worklog entries and the store that merges them.

A worklog is a CSV export with one row per time record:

    tags,start,hours,rate,message
    dev,03/02/2026 09:00,2,100,Implement importer
    CustomerB;dev,03/02/2026 13:00,1.5,,Code review

``tags`` and ``rate`` may be empty. Bad rows are collected as MalformedEntry
errors; the remaining rows (and other files) are still merged.
"""

import csv
import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path

from .errors import MalformedEntry

logger = logging.getLogger("invoicer.worklog")

# Format of the time tracker's CSV export; ISO 8601 is accepted as well
TIMESTAMP_FORMATS = ("%m/%d/%Y %H:%M",)

TAG_SPLIT_RE = re.compile(r"[,;\s]+")


@dataclass(frozen=True)
class WorklogEntry:
    start: datetime
    hours: Decimal
    message: str
    rate: Decimal | None = None
    tags: frozenset[str] = frozenset()
    source: str = ""
    row: int = 0

    @property
    def end(self) -> datetime:
        return self.start + timedelta(hours=float(self.hours))

    @property
    def date(self) -> date:
        return self.start.date()


def parse_timestamp(value: str) -> datetime:
    value = value.strip()
    for fmt in TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            pass
    return datetime.fromisoformat(value)


def parse_tags(value: str | Iterable[str] | None) -> frozenset[str]:
    if not value:
        return frozenset()
    if isinstance(value, str):
        return frozenset(t for t in TAG_SPLIT_RE.split(value.strip()) if t)
    return frozenset(str(t).strip() for t in value if str(t).strip())


def _parse_amount(value, what: str, source: str, row: int) -> Decimal:
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise MalformedEntry(source, row, f"{what} is not a number: {value!r}")
    if not amount.is_finite():
        raise MalformedEntry(source, row, f"{what} is not a finite number: {value!r}")
    if amount < 0:
        raise MalformedEntry(source, row, f"{what} must not be negative: {value!r}")
    return amount


def parse_worklog_row(row: Mapping, source: str = "", row_number: int = 0) -> WorklogEntry:
    """Turn one {tags?, start, hours, rate?, message} mapping into an entry."""
    start_raw = row.get("start")
    if not start_raw:
        raise MalformedEntry(source, row_number, "missing start timestamp")
    try:
        start = parse_timestamp(str(start_raw))
    except ValueError:
        raise MalformedEntry(source, row_number, f"unparsable start timestamp: {start_raw!r}")

    hours_raw = row.get("hours")
    if hours_raw is None or str(hours_raw).strip() == "":
        raise MalformedEntry(source, row_number, "missing hours")
    hours = _parse_amount(hours_raw, "hours", source, row_number)

    rate_raw = row.get("rate")
    rate = None
    if rate_raw is not None and str(rate_raw).strip() != "":
        rate = _parse_amount(rate_raw, "rate", source, row_number)

    return WorklogEntry(
        start=start,
        hours=hours,
        message=str(row.get("message") or "").strip(),
        rate=rate,
        tags=parse_tags(row.get("tags")),
        source=source,
        row=row_number,
    )


def parse_worklog_rows(
    rows: Iterable[Mapping],
    source: str = "",
    first_row: int = 1,
) -> tuple[list[WorklogEntry], list[MalformedEntry]]:
    """Parse rows, collecting bad ones instead of stopping at the first."""
    entries = []
    errors = []
    for row_number, row in enumerate(rows, start=first_row):
        try:
            entries.append(parse_worklog_row(row, source, row_number))
        except MalformedEntry as e:
            logger.debug("Skipping row: %s", e)
            errors.append(e)
    return entries, errors


def read_worklog_csv(path: Path) -> tuple[list[WorklogEntry], list[MalformedEntry]]:
    """Read a worklog CSV file. Row numbers are file line numbers (header = 1)."""
    source = str(path)
    try:
        with open(path, newline="", encoding="utf-8") as f:
            reader = csv.DictReader(f)
            if reader.fieldnames is None:
                return [], []
            reader.fieldnames = [name.strip().lower() for name in reader.fieldnames]
            return parse_worklog_rows(reader, source, first_row=2)
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        return [], [MalformedEntry(source, 0, f"cannot read worklog: {e}")]


class WorklogStore:
    """Merged worklog entries from any number of sources.

    Order is source order, then row order within each source. Repeated
    entries are kept; recurring tasks legitimately produce identical rows.
    """

    def __init__(self, entries: Iterable[WorklogEntry] = ()):
        self._entries: list[WorklogEntry] = list(entries)
        self.errors: list[MalformedEntry] = []

    @classmethod
    def merge(cls, *sources: Iterable[WorklogEntry]) -> "WorklogStore":
        """Concatenate sources; a WorklogStore source brings its errors along."""
        store = cls()
        for source in sources:
            store.extend(source, source.errors if isinstance(source, WorklogStore) else ())
        return store

    @classmethod
    def from_csv(cls, path: Path) -> "WorklogStore":
        store = cls()
        store.add_csv(path)
        return store

    def extend(self, entries: Iterable[WorklogEntry], errors: Iterable[MalformedEntry] = ()) -> None:
        self._entries.extend(entries)
        self.errors.extend(errors)

    def add_rows(self, rows: Iterable[Mapping], source: str = "") -> None:
        self.extend(*parse_worklog_rows(rows, source))

    def add_csv(self, path: Path) -> None:
        entries, errors = read_worklog_csv(path)
        logger.info("Loaded %d entries from %s (%d malformed)", len(entries), path, len(errors))
        self.extend(entries, errors)

    @property
    def entries(self) -> tuple[WorklogEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[WorklogEntry]:
        return iter(self._entries)

    def tags(self) -> list[str]:
        """All tags seen, in first-seen order."""
        seen: dict[str, None] = {}
        for entry in self._entries:
            for tag in sorted(entry.tags):
                seen.setdefault(tag, None)
        return list(seen)

    @property
    def begin(self) -> datetime | None:
        return min((e.start for e in self._entries), default=None)

    @property
    def end(self) -> datetime | None:
        return max((e.end for e in self._entries), default=None)
