"""Assign worklog entries to recipients by tag.

- An untagged entry goes to the only recipient when there is exactly one.
- A tagged entry goes to every recipient accepting one of its tags. Matching
  several recipients bills the time to each of them; splitting time across
  clients by tag ("CustomerB" plus "dev") relies on this.
- Anything else is reported as UnroutedEntry and billed to nobody.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from .errors import UnroutedEntry
from .recipients import RecipientIndex
from .worklog import WorklogEntry

logger = logging.getLogger("invoicer.routing")


@dataclass(frozen=True)
class RoutedEntry:
    """An entry as billed to one recipient, with the label it is billed under."""
    entry: WorklogEntry
    label: str | None = None

    @property
    def description(self) -> str:
        return self.label if self.label is not None else self.entry.message


@dataclass
class RoutingResult:
    assignments: dict[str, list[RoutedEntry]] = field(default_factory=dict)
    unrouted: list[UnroutedEntry] = field(default_factory=list)

    def entries_for(self, name: str) -> list[RoutedEntry]:
        return self.assignments.get(name, [])


def _unrouted(entry: WorklogEntry, reason: str) -> UnroutedEntry:
    return UnroutedEntry(
        source=entry.source,
        row=entry.row,
        message=entry.message,
        tags=tuple(sorted(entry.tags)),
        reason=reason,
    )


def route(entries: Iterable[WorklogEntry], index: RecipientIndex) -> RoutingResult:
    """Partition entries into per-recipient lists (recipient order kept)."""
    result = RoutingResult(assignments={name: [] for name in index.names})
    only = index.names[0] if len(index) == 1 else None

    for entry in entries:
        if not entry.tags:
            if only is not None:
                result.assignments[only].append(RoutedEntry(entry))
            else:
                reason = "untagged entry and no single recipient to bill"
                result.unrouted.append(_unrouted(entry, reason))
            continue

        names = index.match(entry.tags)
        if not names:
            result.unrouted.append(_unrouted(entry, "no recipient accepts these tags"))
            continue

        for name in names:
            label = index[name].label_for(entry.tags)
            result.assignments[name].append(RoutedEntry(entry, label))

    for unrouted in result.unrouted:
        logger.warning("Unrouted entry %s", unrouted)

    return result
