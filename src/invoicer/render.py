"""Document rendering and compiling.

Templates are plain TeX or HTML files with ``{{TOKEN}}`` markers. The
token values for an invoice come from tex_tokens() or html_tokens() and
fill_template() substitutes them. Compiling runs the configured
``pdf_generator``: a LaTeX engine through subprocess, or WeasyPrint for
HTML templates.
"""

import html
import logging
import re
import shlex
import subprocess
from collections.abc import Mapping
from pathlib import Path

from .config import Config
from .errors import CompileFailure, RenderFailure
from .invoice import RecipientInvoice
from .locale import Locale, currency_symbol

logger = logging.getLogger("invoicer.render")

TOKEN_RE = re.compile(r"\{\{\s*([A-Z_]+)\s*\}\}")

# Contact fields always defined, so templates can reference them unconditionally
CONTACT_FIELDS = (
    "companyname", "fullname", "street", "zipcode", "city",
    "country", "phone", "fax", "email", "website",
)

_TEX_SPECIALS = {
    "\\": r"\textbackslash{}",
    "&": r"\&",
    "%": r"\%",
    "$": r"\$",
    "#": r"\#",
    "_": r"\_",
    "{": r"\{",
    "}": r"\}",
    "~": r"\textasciitilde{}",
    "^": r"\textasciicircum{}",
}
_TEX_SPECIALS_RE = re.compile("|".join(re.escape(c) for c in _TEX_SPECIALS))


def tex_escape(text: str) -> str:
    return _TEX_SPECIALS_RE.sub(lambda m: _TEX_SPECIALS[m.group()], str(text))


def tex_command(name: str, value: str) -> str:
    """\\newcommand definition; TeX macro names may only contain letters."""
    macro = re.sub(r"[^A-Za-z]", "", name)
    return f"\\newcommand{{\\{macro}}}{{{tex_escape(value)}}}\n"


def load_template(templates_dir: Path, name: str) -> str:
    path = templates_dir / name
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise RenderFailure(f"Cannot read template {path}: {e}") from e


def fill_template(template: str, tokens: Mapping[str, str]) -> str:
    """Replace ``{{TOKEN}}`` markers; a marker without a value is an error."""
    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in tokens:
            raise RenderFailure(f"Template uses unknown token {{{{{name}}}}}")
        return tokens[name]

    return TOKEN_RE.sub(_replace, template)


def is_html_template(name: str) -> bool:
    return Path(name).suffix.lower() in (".html", ".htm")


def _contact_values(contact: Mapping[str, str], extra: Mapping[str, str] | None = None) -> dict[str, str]:
    values = {key: "" for key in CONTACT_FIELDS}
    values.update(contact)
    if extra:
        values.update({k: v for k, v in extra.items() if v})
    return values


def _payment_values(config: Config) -> dict[str, str]:
    payment = config.payment
    return {
        "accountholder": payment.accountholder or config.contact.get("fullname", ""),
        "iban": payment.iban,
        "bic": payment.bic,
        "taxid": payment.taxid,
        "currency": payment.currency,
    }


def _detail_values(invoice: RecipientInvoice) -> dict[str, str]:
    date_format = invoice.settings.date_format
    return {
        "number": invoice.number,
        "date": invoice.generated_at.strftime(date_format),
        "periodbegin": invoice.period_begin.strftime(date_format),
        "periodend": invoice.period_end.strftime(date_format),
        "duedate": invoice.due_date.strftime(date_format),
    }


def tex_tokens(
    invoice: RecipientInvoice,
    config: Config,
    locale: Locale,
    timesheet_template: str | None = None,
) -> dict[str, str]:
    """Token values for a TeX template."""
    currency = invoice.currency
    recipient = invoice.recipient

    def amount(value):
        return locale.format_amount(value, currency)

    language = "".join(tex_command(f"tr{key}", value) for key, value in locale.translations.items())
    recipient_values = _contact_values(recipient.contact, {"companyname": recipient.companyname})
    recipient_address = tex_command("recipientname", recipient.name) + "".join(
        tex_command(f"recipient{key}", value) for key, value in recipient_values.items()
    )
    biller_address = "".join(
        tex_command(f"my{key}", value) for key, value in _contact_values(config.contact).items()
    )
    payment_details = "".join(tex_command(f"my{key}", value) for key, value in _payment_values(config).items())
    invoice_details = "".join(tex_command(f"invoice{key}", value) for key, value in _detail_values(invoice).items())

    positions = "".join(
        "\\position{{{text}}}{{{qty}{unit}}}{{{rate}/{unit}}}{{{net}}}\n".format(
            text=tex_escape(item.description),
            qty=locale.format_number(item.quantity, 2),
            unit=item.unit,
            rate=tex_escape(amount(item.rate)),
            net=tex_escape(amount(item.total)),
        )
        for item in invoice.items
    )

    if invoice.calculate_tax:
        invoice_sum = "\\invoicesum{{{sum}}}{{{rate}}}{{{tax}}}{{{total}}}\n".format(
            sum=tex_escape(amount(invoice.subtotal)),
            rate=locale.format_number(invoice.tax_rate, 1),
            tax=tex_escape(amount(invoice.tax)),
            total=tex_escape(amount(invoice.total)),
        )
        tax_note = ""
    else:
        invoice_sum = f"\\invoicesumnotax{{{tex_escape(amount(invoice.subtotal))}}}\n"
        tax_note = "\\trinvoicevaluetaxnote\n"

    timesheet = ""
    if timesheet_template is not None and invoice.timesheet:
        worklog = "".join(
            "{start} & {hours} & {message}\\\\\n".format(
                start=tex_escape(entry.start.strftime(f"{invoice.settings.date_format} %H:%M")),
                hours=locale.format_number(entry.hours, 2),
                message=tex_escape(entry.message),
            )
            for entry in invoice.timesheet
        )
        timesheet = "\\newpage\n" + fill_template(timesheet_template, {"WORKLOG": worklog})

    return {
        "LANGUAGE": language,
        "RECIPIENT_ADDRESS": recipient_address,
        "BILLER_ADDRESS": biller_address,
        "PAYMENT_DETAILS": payment_details,
        "INVOICE_DETAILS": invoice_details,
        "INVOICE_POSITIONS": positions,
        "INVOICE_SUM": invoice_sum,
        "INVOICE_VALUE_TAX_NOTE": tax_note,
        "TIMESHEET": timesheet,
    }


def html_tokens(
    invoice: RecipientInvoice,
    config: Config,
    locale: Locale,
    timesheet_template: str | None = None,
) -> dict[str, str]:
    """Token values for an HTML template (WeasyPrint)."""
    esc = html.escape
    currency = invoice.currency
    recipient = invoice.recipient
    tr = locale.tr

    def amount(value):
        return esc(locale.format_amount(value, currency))

    def address_block(values: Mapping[str, str]) -> str:
        lines = [
            values.get("companyname", ""),
            values.get("fullname", ""),
            values.get("street", ""),
            " ".join(v for v in (values.get("zipcode", ""), values.get("city", "")) if v),
            values.get("country", ""),
            values.get("email", ""),
        ]
        return "".join(f"<div>{esc(line)}</div>" for line in lines if line)

    payment = _payment_values(config)
    payment_rows = "".join(
        f"<tr><td>{esc(tr(key))}</td><td>{esc(payment[key])}</td></tr>"
        for key in ("accountholder", "iban", "bic", "taxid")
        if payment[key]
    )
    details = _detail_values(invoice)
    detail_rows = "".join(
        f'<div class="meta-row"><span class="meta-label">{esc(tr(label))}:</span> {esc(value)}</div>'
        for label, value in (
            ("invoicenumber", details["number"]),
            ("invoicedate", details["date"]),
            ("period", f"{details['periodbegin']} – {details['periodend']}"),
            ("duedate", details["duedate"]),
        )
    )

    positions = "".join(
        f"""
        <tr>
            <td>{esc(item.description)}</td>
            <td class="right">{esc(locale.format_number(item.quantity, 2))} {item.unit}</td>
            <td class="right">{amount(item.rate)}/{item.unit}</td>
            <td class="right">{amount(item.total)}</td>
        </tr>"""
        for item in invoice.items
    )

    if invoice.calculate_tax:
        invoice_sum = (
            f'<tr class="summary-row"><td colspan="3" class="right">{esc(tr("subtotal"))}</td>'
            f'<td class="right">{amount(invoice.subtotal)}</td></tr>'
            f'<tr class="summary-row"><td colspan="3" class="right">{esc(tr("vat"))} '
            f'{esc(locale.format_number(invoice.tax_rate, 1))} %</td>'
            f'<td class="right">{amount(invoice.tax)}</td></tr>'
            f'<tr class="summary-row"><td colspan="3" class="right"><strong>{esc(tr("total"))}</strong></td>'
            f'<td class="right amount-due">{amount(invoice.total)}</td></tr>'
        )
        tax_note = ""
    else:
        invoice_sum = (
            f'<tr class="summary-row"><td colspan="3" class="right"><strong>{esc(tr("total"))}</strong></td>'
            f'<td class="right amount-due">{amount(invoice.subtotal)}</td></tr>'
        )
        tax_note = f'<p class="note">{esc(tr("invoicevaluetaxnote"))}</p>'

    timesheet = ""
    if timesheet_template is not None and invoice.timesheet:
        worklog = "".join(
            f"<tr><td>{esc(entry.start.strftime(invoice.settings.date_format + ' %H:%M'))}</td>"
            f'<td class="right">{esc(locale.format_number(entry.hours, 2))}</td>'
            f"<td>{esc(entry.message)}</td></tr>"
            for entry in invoice.timesheet
        )
        timesheet = fill_template(timesheet_template, {
            "WORKLOG": worklog,
            "TIMESHEET_TITLE": esc(tr("timesheet")),
            "START_LABEL": esc(tr("start")),
            "HOURS_LABEL": esc(tr("hours")),
            "DESCRIPTION_LABEL": esc(tr("description")),
        })

    return {
        "LANGUAGE": esc(locale.name),
        "TITLE": esc(f"{tr('invoicetitle')} {invoice.number}"),
        "CURRENCY_SYMBOL": esc(currency_symbol(currency)),
        "RECIPIENT_ADDRESS": address_block(
            _contact_values(recipient.contact, {"companyname": recipient.companyname})
        ),
        "BILLER_ADDRESS": address_block(_contact_values(config.contact)),
        "PAYMENT_DETAILS": payment_rows,
        "PAYMENT_LABEL": esc(tr("payment")),
        "INVOICE_DETAILS": detail_rows,
        "TABLE_HEADER": f"<th>{esc(tr('description'))}</th>" + "".join(
            f'<th class="right">{esc(tr(key))}</th>' for key in ("quantity", "rate", "amount")
        ),
        "INVOICE_POSITIONS": positions,
        "INVOICE_SUM": invoice_sum,
        "INVOICE_VALUE_TAX_NOTE": tax_note,
        "TIMESHEET": timesheet,
    }


def render_invoice(invoice: RecipientInvoice, config: Config, locale: Locale) -> str:
    """Fill the invoice template (and timesheet template, when enabled)."""
    settings = invoice.settings
    templates_dir = config.templates_dir
    as_html = is_html_template(settings.template)
    template = load_template(templates_dir, settings.template)
    timesheet_template = None
    if settings.generate_timesheet:
        timesheet_name = settings.timesheet_template
        # timesheet.tex is the default; HTML invoices pair with timesheet.html
        if as_html and not is_html_template(timesheet_name):
            timesheet_name = Path(timesheet_name).with_suffix(".html").name
        timesheet_template = load_template(templates_dir, timesheet_name)

    if as_html:
        tokens = html_tokens(invoice, config, locale, timesheet_template)
    else:
        tokens = tex_tokens(invoice, config, locale, timesheet_template)
    return fill_template(template, tokens)


def write_document(text: str, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _latex_command(generator: str, document: Path) -> list[str]:
    cmd = shlex.split(generator)
    if Path(cmd[0]).name.endswith("latex"):
        cmd += ["-interaction=nonstopmode", "-halt-on-error"]
    return cmd + [document.name]


def run_compiler(document: Path, generator: str, timeout: int = 120) -> Path:
    """Compile document with an external program, run in its directory.

    Returns the expected PDF path.
    """
    cmd = _latex_command(generator, document)
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            cwd=str(document.parent),
        )
    except FileNotFoundError:
        raise CompileFailure(f"{cmd[0]} not found. Is it installed and on PATH?")
    except subprocess.TimeoutExpired:
        raise CompileFailure(f"{cmd[0]} timed out after {timeout}s compiling {document.name}")

    if result.returncode != 0:
        output = (result.stdout + result.stderr).strip().splitlines()
        # LaTeX reports errors as lines starting with "!"
        errors = [line for line in output if line.startswith("!")] or output[-5:]
        raise CompileFailure(f"{cmd[0]} failed for {document.name}: " + " | ".join(errors))

    return document.with_suffix(".pdf")


def generate_pdf_weasyprint(document: Path) -> Path:
    """Convert an HTML document to PDF using WeasyPrint."""
    from weasyprint import HTML

    pdf_path = document.with_suffix(".pdf")
    try:
        HTML(string=document.read_text(encoding="utf-8"), base_url=str(document.parent)).write_pdf(str(pdf_path))
    except Exception as e:
        raise CompileFailure(f"WeasyPrint failed for {document.name}: {e}") from e
    return pdf_path


def compile_document(document: Path, config: Config) -> Path | None:
    """Run the configured PDF generator; None when compiling is disabled."""
    generator = config.pdf_generator.strip()
    if not generator:
        return None
    if generator.lower() == "weasyprint":
        return generate_pdf_weasyprint(document)
    return run_compiler(document, generator, timeout=config.compile_timeout)
