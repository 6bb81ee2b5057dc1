"""Invoice generation for a whole run.

This is the main orchestration:
1. Routes the merged worklog to recipients by tag
2. Aggregates each recipient's entries into line items and totals
3. Draws invoice numbers from the run counter, in recipient order
4. Renders each invoice, resolves its output path against existing files
   and compiles it

Configuration problems (bad format strings, unknown overwrite policy) raise
before anything is written. Problems with one recipient (missing rate,
render or compile failure) are reported for that recipient only.
"""

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from .aggregate import build_line_items, compute_totals
from .config import Config, InvoiceConfig
from .errors import ConfigError, InvoicerError, MalformedEntry, MissingRate, UnroutedEntry
from .identifiers import (
    FILENAME_PLACEHOLDERS,
    NUMBER_PLACEHOLDERS,
    FormatContext,
    InvoiceCounter,
    format_filename,
    format_invoice_number,
    validate_format,
)
from .invoice import RecipientInvoice
from .locale import Locale, load_locale
from .overwrite import OverwriteDecision, OverwritePolicy, decide_overwrite, resolve_output_path
from .recipients import Recipient, RecipientIndex
from .render import compile_document, render_invoice, write_document
from .routing import RoutedEntry, route
from .worklog import WorklogStore

logger = logging.getLogger("invoicer.builder")

# Outcome statuses
WRITTEN = "written"
SKIPPED = "skipped"
EMPTY = "empty"
FAILED = "failed"
PLANNED = "planned"


@dataclass
class RecipientOutcome:
    recipient: str
    status: str
    invoice: RecipientInvoice | None = None
    decision: OverwriteDecision | None = None
    document: Path | None = None
    pdf: Path | None = None
    error: str = ""

    def to_dict(self) -> dict:
        result = {"recipient": self.recipient, "status": self.status}
        if self.invoice is not None:
            result.update(self.invoice.summary())
        if self.decision is not None:
            result["overwrite"] = self.decision.action.value
        if self.document is not None:
            result["file"] = str(self.document)
        if self.pdf is not None:
            result["pdf"] = str(self.pdf)
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class BuildResult:
    invoices: list[RecipientInvoice] = field(default_factory=list)
    failures: dict[str, InvoicerError] = field(default_factory=dict)
    empty: list[str] = field(default_factory=list)
    unrouted: list[UnroutedEntry] = field(default_factory=list)
    errors: list[MalformedEntry] = field(default_factory=list)


@dataclass
class RunReport:
    outcomes: list[RecipientOutcome] = field(default_factory=list)
    unrouted: list[UnroutedEntry] = field(default_factory=list)
    errors: list[MalformedEntry] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(o.status == FAILED for o in self.outcomes)

    def by_status(self, status: str) -> list[RecipientOutcome]:
        return [o for o in self.outcomes if o.status == status]

    def to_dict(self) -> dict:
        return {
            "status": "ok" if self.ok else "error",
            "invoices": [o.to_dict() for o in self.outcomes],
            "written": len(self.by_status(WRITTEN)),
            "skipped": len(self.by_status(SKIPPED)),
            "failed": len(self.by_status(FAILED)),
            "unrouted": [str(u) for u in self.unrouted],
            "malformed": [str(e) for e in self.errors],
        }


class InvoiceBuilder:
    """Builds and writes one invoice per recipient with billable entries."""

    def __init__(
        self,
        config: Config,
        recipients: Iterable[Recipient] | RecipientIndex,
        counter: InvoiceCounter | None = None,
        now: datetime | None = None,
    ):
        self.config = config
        self.index = recipients if isinstance(recipients, RecipientIndex) else RecipientIndex(recipients)
        self.counter = counter if counter is not None else InvoiceCounter(config.counter)
        self.now = now or datetime.now()
        self.policy = OverwritePolicy.parse(config.overwrite)
        self._settings: dict[str, InvoiceConfig] = {}
        self._locales: dict[str, Locale] = {}
        self._path_lock = threading.Lock()
        self.validate()

    def validate(self) -> None:
        """Check run-wide settings; raises before any output is produced."""
        if self.config.jobs < 1:
            raise ConfigError(f"jobs must be at least 1, got {self.config.jobs}")
        self.config.output_dir(self.now)
        for recipient in self.index:
            settings = self.settings_for(recipient)
            validate_format(settings.number_format, NUMBER_PLACEHOLDERS)
            validate_format(settings.filename_format, FILENAME_PLACEHOLDERS)
            if settings.counter_width < 1:
                raise ConfigError(f"counter_width must be at least 1 ({recipient.name})")

    def settings_for(self, recipient: Recipient) -> InvoiceConfig:
        """Run-wide [invoice] settings with the recipient's overrides applied."""
        if recipient.name not in self._settings:
            settings = self.config.invoice.merged(recipient.invoice)
            if recipient.locale:
                settings = settings.merged({"locale": recipient.locale})
            self._settings[recipient.name] = settings
        return self._settings[recipient.name]

    def locale_for(self, recipient: Recipient) -> Locale:
        name = self.settings_for(recipient).locale
        if name not in self._locales:
            self._locales[name] = load_locale(self.config.locales_dir, name)
        return self._locales[name]

    def build_invoice(self, recipient: Recipient, routed: list[RoutedEntry]) -> RecipientInvoice | None:
        """Invoice for one recipient, or None when nothing is billable.

        Raises MissingRate before the counter is touched, so a failed
        recipient does not use up an invoice number.
        """
        if not routed:
            return None

        settings = self.settings_for(recipient)
        currency = self.config.payment.currency
        items = build_line_items(routed, recipient, self.config.payment.default_rate, currency)
        if not items:
            return None
        totals = compute_totals(
            items,
            self.config.payment.tax_rate,
            settings.calculate_value_added_tax,
            currency,
        )

        locale = self.locale_for(recipient)
        context = FormatContext(
            when=self.now,
            counter=self.counter.next(),
            recipient=recipient.name,
            counter_width=settings.counter_width,
            invoice_word=locale.tr("invoice"),
            date_format=settings.date_format,
        )
        number = format_invoice_number(settings.number_format, context)
        filename = format_filename(settings.filename_format, context.with_number(number))

        entries = [r.entry for r in routed]
        timesheet = tuple(sorted(entries, key=lambda e: e.start)) if settings.generate_timesheet else ()

        return RecipientInvoice(
            recipient=recipient,
            items=tuple(items),
            totals=totals,
            number=number,
            filename=filename,
            generated_at=self.now,
            period_begin=min(e.start for e in entries),
            period_end=max(e.end for e in entries),
            due_date=self.now.date() + timedelta(days=settings.days_for_payment),
            currency=currency,
            settings=settings,
            timesheet=timesheet,
        )

    def build(self, store: WorklogStore) -> BuildResult:
        """Route and aggregate; no files are touched."""
        routing = route(store, self.index)
        result = BuildResult(unrouted=routing.unrouted, errors=list(store.errors))

        for recipient in self.index:
            try:
                invoice = self.build_invoice(recipient, routing.entries_for(recipient.name))
            except MissingRate as e:
                logger.error("%s: %s, no invoice generated", recipient.name, e)
                result.failures[recipient.name] = e
                continue
            if invoice is None:
                logger.info("%s: no billable entries, no invoice generated", recipient.name)
                result.empty.append(recipient.name)
                continue
            result.invoices.append(invoice)

        seen: dict[str, str] = {}
        for invoice in result.invoices:
            for kind, value in (("number", invoice.number), ("filename", invoice.filename)):
                key = f"{kind}:{value}"
                if key in seen:
                    raise ConfigError(
                        f"Invoice {kind} '{value}' generated for both {seen[key]} and "
                        f"{invoice.recipient.name}; add ${{COUNTER}} or ${{RECIPIENT}} to the format"
                    )
                seen[key] = invoice.recipient.name

        return result

    def output_path(self, invoice: RecipientInvoice) -> Path:
        return self.config.output_dir(self.now) / invoice.filename

    def _companions(self) -> tuple[str, ...]:
        return (".pdf",) if self.config.pdf_generator.strip() else ()

    def plan_invoice(self, invoice: RecipientInvoice) -> RecipientOutcome:
        """Dry run: report the overwrite decision without touching files."""
        decision = decide_overwrite(
            self.output_path(invoice), self.policy, self.now, companions=self._companions()
        )
        return RecipientOutcome(
            invoice.recipient.name, PLANNED, invoice, decision, document=decision.target
        )

    def write_invoice(self, invoice: RecipientInvoice) -> RecipientOutcome:
        """Render, place and compile one invoice; failures stay with this recipient."""
        try:
            return self._write_invoice(invoice)
        except Exception as e:
            logger.exception("%s: unexpected error writing %s", invoice.recipient.name, invoice.filename)
            return RecipientOutcome(invoice.recipient.name, FAILED, invoice, error=f"{type(e).__name__}: {e}")

    def _write_invoice(self, invoice: RecipientInvoice) -> RecipientOutcome:
        name = invoice.recipient.name
        try:
            text = render_invoice(invoice, self.config, self.locale_for(invoice.recipient))
        except InvoicerError as e:
            logger.error("%s: %s", name, e)
            return RecipientOutcome(name, FAILED, invoice, error=str(e))

        try:
            with self._path_lock:
                path = self.output_path(invoice)
                path.parent.mkdir(parents=True, exist_ok=True)
                decision, target = resolve_output_path(path, self.policy, self.now, self._companions())
        except OSError as e:
            logger.error("%s: cannot prepare %s: %s", name, invoice.filename, e)
            return RecipientOutcome(name, FAILED, invoice, error=str(e))

        if target is None:
            return RecipientOutcome(name, SKIPPED, invoice, decision)

        try:
            write_document(text, target)
            pdf = compile_document(target, self.config)
        except (OSError, InvoicerError) as e:
            logger.error("%s: %s", name, e)
            return RecipientOutcome(name, FAILED, invoice, decision, document=target, error=str(e))

        logger.info(
            "%s: %d positions, total %s",
            target.name, len(invoice.items), invoice.total,
        )
        return RecipientOutcome(name, WRITTEN, invoice, decision, document=target, pdf=pdf)

    def generate(self, store: WorklogStore, dry_run: bool = False) -> RunReport:
        """Build all invoices and write them; one outcome per recipient."""
        result = self.build(store)

        outcomes: dict[str, RecipientOutcome] = {}
        for name, error in result.failures.items():
            outcomes[name] = RecipientOutcome(name, FAILED, error=str(error))
        for name in result.empty:
            outcomes[name] = RecipientOutcome(name, EMPTY)

        if dry_run:
            written = [self.plan_invoice(invoice) for invoice in result.invoices]
        elif self.config.jobs > 1 and len(result.invoices) > 1:
            with ThreadPoolExecutor(max_workers=self.config.jobs) as pool:
                written = list(pool.map(self.write_invoice, result.invoices))
        else:
            written = [self.write_invoice(invoice) for invoice in result.invoices]

        for outcome in written:
            outcomes[outcome.recipient] = outcome

        for error in result.errors:
            logger.warning("Malformed worklog entry %s", error)

        return RunReport(
            outcomes=[outcomes[name] for name in self.index.names if name in outcomes],
            unrouted=result.unrouted,
            errors=result.errors,
        )
