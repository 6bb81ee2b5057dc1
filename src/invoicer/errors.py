"""Error types raised by the invoicing engine.

Everything derives from ValueError so callers that only know the
configuration-parsing contract (ValueError on bad input) keep working.
"""

from dataclasses import dataclass


class InvoicerError(ValueError):
    """Base class for all invoicer errors."""


class ConfigError(InvoicerError):
    """Run-wide misconfiguration (bad policy value, unreadable config)."""


class MalformedEntry(InvoicerError):
    """A worklog row that could not be turned into an entry."""

    def __init__(self, source: str, row: int, reason: str):
        self.source = source
        self.row = row
        self.reason = reason
        super().__init__(f"{source}:{row}: {reason}")


class MissingRate(InvoicerError):
    """No hourly rate resolves for an entry (entry, recipient, global)."""

    def __init__(self, recipient: str, description: str):
        self.recipient = recipient
        self.description = description
        super().__init__(f"No rate for '{description}' billed to {recipient}")


class UnknownPlaceholder(InvoicerError):
    """A format string references a placeholder that does not exist."""

    def __init__(self, name: str, fmt: str):
        self.name = name
        self.fmt = fmt
        super().__init__(f"Unknown placeholder ${{{name}}} in format '{fmt}'")


class RenderFailure(InvoicerError):
    """Filling a document template failed."""


class CompileFailure(InvoicerError):
    """The external document compiler failed or could not be run."""


@dataclass(frozen=True)
class UnroutedEntry:
    """Warning record: an entry no recipient accepts. Never raised."""
    source: str
    row: int
    message: str
    tags: tuple[str, ...]
    reason: str = "no recipient accepts these tags"

    def __str__(self) -> str:
        tags = ", ".join(self.tags) if self.tags else "(untagged)"
        return f"{self.source}:{self.row}: '{self.message}' [{tags}]: {self.reason}"
