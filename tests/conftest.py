"""Shared test fixtures for invoicer tests."""

from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

from invoicer.config import Config, DirectoriesConfig, InvoiceConfig, PaymentConfig
from invoicer.logging_setup import reset_logging
from invoicer.recipients import Recipient
from invoicer.worklog import WorklogEntry


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep developer environment overrides out of config tests."""
    monkeypatch.delenv("INVOICER_OUTPUT_DIR", raising=False)
    monkeypatch.delenv("INVOICER_PDF_GENERATOR", raising=False)
    yield
    reset_logging()


@pytest.fixture
def make_entry():
    """Factory fixture that creates WorklogEntry instances with defaults."""
    def _make_entry(**overrides):
        defaults = {
            "start": datetime(2024, 3, 4, 9, 0),
            "hours": Decimal("1"),
            "message": "work",
            "rate": Decimal("100"),
            "tags": frozenset(),
            "source": "worklog.csv",
            "row": 2,
        }
        defaults.update(overrides)
        if isinstance(defaults["tags"], (list, tuple, set, str)):
            tags = defaults["tags"]
            defaults["tags"] = frozenset([tags] if isinstance(tags, str) else tags)
        for key in ("hours", "rate"):
            if defaults[key] is not None and not isinstance(defaults[key], Decimal):
                defaults[key] = Decimal(str(defaults[key]))
        return WorklogEntry(**defaults)
    return _make_entry


@pytest.fixture
def make_recipient():
    """Factory fixture that creates Recipient instances with defaults."""
    def _make_recipient(name="acme", **overrides):
        defaults = {
            "companyname": f"{name.title()} Corp",
            "contact": {"fullname": "Jane Roe", "street": "1 Loop Rd", "zipcode": "12345", "city": "Berlin"},
            "tags": {"dev": "Software development"},
        }
        defaults.update(overrides)
        return Recipient(name=name, **defaults)
    return _make_recipient


@pytest.fixture
def make_config(tmp_path):
    """Factory fixture for a Config writing into tmp_path/invoices, compiling disabled."""
    def _make_config(**overrides):
        invoice = overrides.pop("invoice", None) or InvoiceConfig()
        payment = overrides.pop("payment", None) or PaymentConfig(
            accountholder="John Doe",
            iban="DE00 1234 5678 9000",
            bic="TESTDEFF",
            taxid="12/345/67890",
            tax_rate=Decimal("19"),
        )
        defaults = {
            "pdf_generator": "",
            "directories": DirectoriesConfig(
                config=str(tmp_path),
                tags=str(tmp_path / "tags"),
                invoices=str(tmp_path / "invoices"),
            ),
            "contact": {"fullname": "John Doe", "street": "2 Main St", "zipcode": "54321", "city": "Hamburg"},
            "invoice": invoice,
            "payment": payment,
            "working_dir": Path(tmp_path),
        }
        defaults.update(overrides)
        return Config(**defaults)
    return _make_config


@pytest.fixture
def now():
    return datetime(2024, 3, 31, 12, 0, 0)
