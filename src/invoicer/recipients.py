"""Recipient records and the tag index used for routing.

A recipient is one TOML file; its identifier is the file stem:

    # tags/acme.toml
    companyname = "Acme Corp"
    locale = "de"
    default_rate = 95.0

    [contact]
    fullname = "Jane Roe"
    street = "1 Loop Rd"
    zipcode = 12345
    city = "Berlin"

    [tags]            # worklog tag -> line item label, in priority order
    dev = "Software development"
    ops = "Operations"

    [invoice]         # optional per-recipient overrides
    days_for_payment = 30

A recipient always accepts its own name as a tag as well.
"""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

from .config import read_toml, to_decimal
from .errors import ConfigError

logger = logging.getLogger("invoicer.recipients")


@dataclass(frozen=True)
class Recipient:
    name: str
    companyname: str = ""
    locale: str = ""
    contact: dict[str, str] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)  # tag -> display label, ordered
    default_rate: Decimal | None = None
    invoice: dict = field(default_factory=dict)  # InvoiceConfig overrides

    @property
    def accepted_tags(self) -> tuple[str, ...]:
        """Configured tags in order, followed by the recipient's own name."""
        if self.name in self.tags:
            return tuple(self.tags)
        return (*self.tags, self.name)

    def label_for(self, entry_tags: Iterable[str]) -> str | None:
        """Display label of the first configured tag the entry carries.

        None when only the implicit name tag (or nothing) matched; the line
        item then falls back to the entry's message.
        """
        carried = set(entry_tags)
        for tag, label in self.tags.items():
            if tag in carried:
                return label or tag
        return None


def parse_recipient(name: str, data: dict) -> Recipient:
    """Build a Recipient from a parsed TOML record."""
    contact = {k: str(v) for k, v in data.get("contact", {}).items()}
    invoice = dict(data.get("invoice", {}))

    companyname = data.get("companyname") or contact.get("companyname", "")
    invoice_locale = invoice.pop("locale", "")
    locale = data.get("locale") or invoice_locale

    tags = {}
    for tag, label in data.get("tags", {}).items():
        if not isinstance(label, str):
            raise ConfigError(f"Recipient {name}: label for tag '{tag}' must be a string")
        tags[str(tag)] = label

    default_rate = data.get("default_rate")
    return Recipient(
        name=name,
        companyname=companyname,
        locale=locale,
        contact=contact,
        tags=tags,
        default_rate=to_decimal(default_rate, f"{name}.default_rate") if default_rate is not None else None,
        invoice=invoice,
    )


def load_recipient(path: Path) -> Recipient:
    """Load a recipient record; the identifier is the file name without extension."""
    recipient = parse_recipient(path.stem, read_toml(path))
    logger.debug("Loaded recipient %s from %s", recipient.name, path)
    return recipient


def load_recipients_dir(tags_dir: Path) -> list[Recipient]:
    """Load every *.toml recipient record in a directory, sorted by name."""
    recipients = []
    if not tags_dir.is_dir():
        return recipients
    for toml_file in sorted(tags_dir.glob("*.toml")):
        # Skip example files (e.g., acme.example.toml)
        if ".example" in toml_file.stem:
            continue
        recipients.append(load_recipient(toml_file))
    return recipients


def select_recipients(recipients: Iterable[Recipient], tags: Iterable[str]) -> list[Recipient]:
    """Recipients accepting at least one of tags, in their original order."""
    index = RecipientIndex(recipients)
    tags = list(tags)
    for tag in tags:
        if not index.recipients_for_tag(tag):
            logger.warning("No recipient accepts tag '%s'", tag)
    return [index[name] for name in index.match(tags)]


def load_recipients_for_tags(tags_dir: Path, tags: Iterable[str]) -> list[Recipient]:
    """Load the records in tags_dir that accept any of the worklog's tags.

    A record matches through its ``[tags]`` table or through its own name,
    so both ``acme.toml`` with ``dev = ...`` and a plain ``dev.toml`` pick up
    entries tagged "dev".
    """
    return select_recipients(load_recipients_dir(tags_dir), tags)


class RecipientIndex:
    """Recipients by name plus a tag -> recipient names lookup, built once."""

    def __init__(self, recipients: Iterable[Recipient]):
        self._recipients: dict[str, Recipient] = {}
        self._by_tag: dict[str, list[str]] = {}
        for recipient in recipients:
            if recipient.name in self._recipients:
                raise ConfigError(f"Duplicate recipient: {recipient.name}")
            self._recipients[recipient.name] = recipient
            for tag in recipient.accepted_tags:
                self._by_tag.setdefault(tag, []).append(recipient.name)

    def __len__(self) -> int:
        return len(self._recipients)

    def __iter__(self) -> Iterator[Recipient]:
        return iter(self._recipients.values())

    def __getitem__(self, name: str) -> Recipient:
        return self._recipients[name]

    @property
    def names(self) -> list[str]:
        return list(self._recipients)

    def recipients_for_tag(self, tag: str) -> tuple[str, ...]:
        return tuple(self._by_tag.get(tag, ()))

    def match(self, tags: Iterable[str]) -> list[str]:
        """Names of all recipients accepting any of tags, in recipient order."""
        matched = set()
        for tag in tags:
            matched.update(self._by_tag.get(tag, ()))
        return [name for name in self._recipients if name in matched]
