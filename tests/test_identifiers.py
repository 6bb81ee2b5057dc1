"""Tests for invoice numbers and filenames (invoicer.identifiers)."""

import threading
from datetime import datetime

import pytest

from invoicer.errors import UnknownPlaceholder
from invoicer.identifiers import (
    FILENAME_PLACEHOLDERS,
    NUMBER_PLACEHOLDERS,
    FormatContext,
    InvoiceCounter,
    expand_date_directives,
    format_filename,
    format_invoice_number,
    placeholders,
    sanitize_filename_part,
    substitute,
    validate_format,
)


WHEN = datetime(2024, 3, 31, 12, 0)


class TestPlaceholders:
    def test_in_order(self):
        assert placeholders("${YEAR}-${COUNTER}_${RECIPIENT}") == ["YEAR", "COUNTER", "RECIPIENT"]

    def test_none(self):
        assert placeholders("%Y%m") == []

    def test_validate_accepts_known(self):
        validate_format("${YEAR}${COUNTER}", NUMBER_PLACEHOLDERS)

    def test_validate_rejects_unknown(self):
        with pytest.raises(UnknownPlaceholder) as exc_info:
            validate_format("${YEAR}${BOGUS}", NUMBER_PLACEHOLDERS)
        assert exc_info.value.name == "BOGUS"

    @pytest.mark.parametrize("fmt, name", [
        ("${YEAR}${COUNTR", "COUNTR"),
        ("${INVOICE-NUMBER}_${RECIPIENT}.tex", "INVOICE-NUMBER"),
        ("${}", ""),
    ])
    def test_validate_rejects_malformed(self, fmt, name):
        with pytest.raises(UnknownPlaceholder) as exc_info:
            validate_format(fmt, FILENAME_PLACEHOLDERS)
        assert exc_info.value.name == name

    def test_malformed_never_reaches_output(self):
        context = FormatContext(when=WHEN, counter=1, recipient="acme")
        with pytest.raises(UnknownPlaceholder):
            format_invoice_number("${YEAR}${COUNTR", context)
        with pytest.raises(UnknownPlaceholder):
            format_filename("${INVOICE-NUMBER}_${RECIPIENT}.tex", context.with_number("2024"))
        with pytest.raises(UnknownPlaceholder):
            substitute("${A", {"A": "1"})

    def test_invoicenumber_not_allowed_in_number(self):
        with pytest.raises(UnknownPlaceholder):
            validate_format("${INVOICENUMBER}", NUMBER_PLACEHOLDERS)
        validate_format("${INVOICENUMBER}", FILENAME_PLACEHOLDERS)


class TestSubstitute:
    def test_replaces_values(self):
        assert substitute("${A}-${B}", {"A": "1", "B": "2"}) == "1-2"

    def test_unknown_raises(self):
        with pytest.raises(UnknownPlaceholder):
            substitute("${A}", {})

    def test_sanitize_only_values(self):
        assert substitute("out/${A}", {"A": "x/y:z"}, sanitize=True) == "out/x_y_z"

    def test_sanitize_filename_part(self):
        assert sanitize_filename_part('a/b\\c*d?e"f<g>h|i\x00') == "a_b_c_d_e_f_g_h_i_"


class TestDateDirectives:
    def test_strftime_applied(self):
        assert expand_date_directives("%Y%m${COUNTER}", WHEN) == "202403${COUNTER}"

    def test_placeholders_untouched(self):
        assert expand_date_directives("${YEAR}", WHEN) == "${YEAR}"

    def test_no_directives(self):
        assert expand_date_directives("plain", WHEN) == "plain"


class TestFormatInvoiceNumber:
    def test_year_counter_width_one(self):
        ctx = FormatContext(when=datetime(2024, 6, 1), counter=7, counter_width=1)
        assert format_invoice_number("${YEAR}${COUNTER}", ctx) == "20247"

    def test_year_counter_default_width(self):
        ctx = FormatContext(when=datetime(2024, 6, 1), counter=7)
        assert format_invoice_number("${YEAR}${COUNTER}", ctx) == "202407"

    def test_default_format(self):
        ctx = FormatContext(when=WHEN, counter=3)
        assert format_invoice_number("%Y%m${COUNTER}", ctx) == "20240303"

    def test_counter_wider_than_width(self):
        ctx = FormatContext(when=WHEN, counter=123, counter_width=2)
        assert format_invoice_number("${COUNTER}", ctx) == "123"

    def test_date_placeholders(self):
        ctx = FormatContext(when=WHEN, counter=1, date_format="%d.%m.%Y")
        assert format_invoice_number("${DAY}.${MONTH}|${DATE}", ctx) == "31.03|31.03.2024"

    def test_recipient(self):
        ctx = FormatContext(when=WHEN, counter=1, recipient="acme")
        assert format_invoice_number("${RECIPIENT}-${COUNTER}", ctx) == "acme-01"

    def test_unknown_placeholder(self):
        ctx = FormatContext(when=WHEN, counter=1)
        with pytest.raises(UnknownPlaceholder):
            format_invoice_number("${BOGUS}", ctx)


class TestFormatFilename:
    def test_default_format(self):
        ctx = FormatContext(when=WHEN, counter=1, recipient="acme").with_number("20240301")
        assert format_filename("${INVOICENUMBER}_${INVOICE}_${RECIPIENT}.tex", ctx) == "20240301_invoice_acme.tex"

    def test_translated_invoice_word(self):
        ctx = FormatContext(when=WHEN, counter=1, recipient="acme", invoice_word="Rechnung").with_number("1")
        assert format_filename("${INVOICE}_${INVOICENUMBER}.tex", ctx) == "Rechnung_1.tex"

    def test_sanitizes_values(self):
        ctx = FormatContext(when=WHEN, counter=1, recipient="a/b").with_number("2024/01")
        assert format_filename("${INVOICENUMBER}_${RECIPIENT}.tex", ctx) == "2024_01_a_b.tex"


class TestInvoiceCounter:
    def test_next_returns_current_then_increments(self):
        counter = InvoiceCounter(5)
        assert counter.next() == 5
        assert counter.next() == 6
        assert counter.value == 7

    def test_default_start(self):
        assert InvoiceCounter().next() == 1

    def test_negative_start(self):
        with pytest.raises(ValueError):
            InvoiceCounter(-1)

    def test_thread_safe(self):
        counter = InvoiceCounter(0)
        seen = []
        lock = threading.Lock()

        def draw():
            for _ in range(100):
                value = counter.next()
                with lock:
                    seen.append(value)

        threads = [threading.Thread(target=draw) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(seen) == list(range(800))
