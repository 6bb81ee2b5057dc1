"""Tests for locale tables (invoicer.locale)."""

from decimal import Decimal

from invoicer.config import BUNDLED_LOCALES_DIR
from invoicer.locale import Locale, currency_symbol, load_locale


class TestFormatting:
    def test_english_number(self):
        assert Locale().format_number(Decimal("1234.5")) == "1,234.50"

    def test_german_number(self):
        de = Locale(name="de", decimalseparator=",", thousandseparator=".")
        assert de.format_number(Decimal("1234567.891")) == "1.234.567,89"

    def test_digits(self):
        assert Locale().format_number(Decimal("19"), 1) == "19.0"

    def test_amount_with_symbol(self):
        assert Locale().format_amount(Decimal("357")) == "357.00 €"
        assert Locale().format_amount(Decimal("10"), "USD") == "10.00 $"

    def test_amount_zero_decimal_currency(self):
        assert Locale().format_amount(Decimal("1500"), "JPY") == "1,500 ¥"

    def test_currency_symbol_fallback(self):
        assert currency_symbol("usd") == "$"
        assert currency_symbol("XYZ") == "€"

    def test_tr_falls_back_to_key(self):
        assert Locale(translations={"total": "Summe"}).tr("total") == "Summe"
        assert Locale().tr("total") == "total"


class TestLoadLocale:
    def test_bundled_german(self):
        de = load_locale(BUNDLED_LOCALES_DIR, "de")
        assert de.name == "de"
        assert de.decimalseparator == ","
        assert de.tr("invoice") == "Rechnung"

    def test_bundled_english(self):
        en = load_locale(BUNDLED_LOCALES_DIR, "en")
        assert en.tr("invoice") == "invoice"
        assert en.tr("total") == "Total"

    def test_unknown_falls_back_to_default(self, caplog):
        loc = load_locale(BUNDLED_LOCALES_DIR, "xx")
        assert loc.name == "en"
        assert "xx" in caplog.text

    def test_empty_name_is_default(self):
        assert load_locale(BUNDLED_LOCALES_DIR, "").name == "en"

    def test_no_tables_at_all(self, tmp_path):
        loc = load_locale(tmp_path, "de")
        assert loc == Locale()

    def test_custom_table(self, tmp_path):
        (tmp_path / "fr.toml").write_text(
            'decimalseparator = ","\nthousandseparator = " "\n[translations]\ninvoice = "facture"\n'
        )
        fr = load_locale(tmp_path, "fr")
        assert fr.format_number(Decimal("1234.5")) == "1 234,50"
        assert fr.tr("invoice") == "facture"
