"""Configuration loading for invoicer."""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

import tomli

from .errors import ConfigError
from .identifiers import substitute

logger = logging.getLogger("invoicer.config")

PACKAGE_DIR = Path(__file__).parent
BUNDLED_TEMPLATES_DIR = PACKAGE_DIR / "templates"
BUNDLED_LOCALES_DIR = PACKAGE_DIR / "locales"

OVERWRITE_POLICIES = ("Force", "RenameOld", "RenameNew", "Skip")


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"           # INFO or DEBUG
    output: str = "console"       # console, file, or both
    file: str = ""                # log file path
    rotate: bool = True           # enable rotation
    max_size_mb: int = 10         # max file size before rotation
    backup_count: int = 5         # rotated files to keep


@dataclass
class DirectoriesConfig:
    """Directory layout. Values may use ${WORKING_DIR}, ${HOME}, ${CONFIG_DIR}, ${YEAR}, ${MONTH}."""
    config: str = "${WORKING_DIR}"
    tags: str = "${CONFIG_DIR}/tags"      # recipient records, one <name>.toml per recipient
    templates: str = ""                   # empty = bundled templates
    locales: str = ""                     # empty = bundled locales
    invoices: str = "${WORKING_DIR}"


@dataclass
class PaymentConfig:
    accountholder: str = ""
    iban: str = ""
    bic: str = ""
    taxid: str = ""
    currency: str = "EUR"
    tax_rate: Decimal = Decimal("0")      # percent
    default_rate: Decimal | None = None   # global fallback hourly rate


@dataclass
class InvoiceConfig:
    locale: str = "en"
    template: str = "invoice.tex"
    timesheet_template: str = "timesheet.tex"
    timesheet: bool = True
    number_format: str = "%Y%m${COUNTER}"
    date_format: str = "%Y/%m/%d"
    filename_format: str = "${INVOICENUMBER}_${INVOICE}_${RECIPIENT}.tex"
    counter_width: int = 2
    days_for_payment: int = 14
    calculate_value_added_tax: bool = True
    output_folder: str = ""  # overrides directories.invoices when set

    def merged(self, overrides: dict) -> "InvoiceConfig":
        """Copy with per-recipient overrides applied (unknown keys ignored)."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            logger.warning("Ignoring unknown invoice settings: %s", ", ".join(sorted(unknown)))
        return replace(self, **{k: v for k, v in overrides.items() if k in known})

    @property
    def generate_timesheet(self) -> bool:
        return self.timesheet and bool(self.timesheet_template)


@dataclass
class Config:
    overwrite: str = "RenameOld"   # Force, RenameOld, RenameNew or Skip
    pdf_generator: str = "pdflatex"  # executable, "weasyprint", or "" to skip compiling
    jobs: int = 1                  # parallel render/compile workers
    compile_timeout: int = 120     # seconds
    counter: int = 1               # first invoice counter value of a run
    directories: DirectoriesConfig = field(default_factory=DirectoriesConfig)
    contact: dict[str, str] = field(default_factory=dict)
    payment: PaymentConfig = field(default_factory=PaymentConfig)
    invoice: InvoiceConfig = field(default_factory=InvoiceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    config_path: Path | None = None
    working_dir: Path = field(default_factory=Path.cwd)

    def directory_values(self, when: datetime | None = None) -> dict[str, str]:
        """Placeholder values available in [directories] entries."""
        when = when or datetime.now()
        values = {
            "WORKING_DIR": str(self.working_dir),
            "HOME": str(Path.home()),
            "YEAR": f"{when.year:04d}",
            "MONTH": f"{when.month:02d}",
        }
        values["CONFIG_DIR"] = str(self._expand_dir(self.directories.config, values))
        return values

    @staticmethod
    def _expand_dir(raw: str, values: dict[str, str]) -> Path:
        return Path(substitute(raw, values)).expanduser()

    def resolve_dir(self, raw: str, when: datetime | None = None) -> Path:
        return self._expand_dir(raw, self.directory_values(when))

    @property
    def config_dir(self) -> Path:
        return Path(self.directory_values()["CONFIG_DIR"])

    @property
    def tags_dir(self) -> Path:
        return self.resolve_dir(self.directories.tags)

    @property
    def templates_dir(self) -> Path:
        if not self.directories.templates:
            return BUNDLED_TEMPLATES_DIR
        return self.resolve_dir(self.directories.templates)

    @property
    def locales_dir(self) -> Path:
        if not self.directories.locales:
            return BUNDLED_LOCALES_DIR
        return self.resolve_dir(self.directories.locales)

    def output_dir(self, when: datetime | None = None) -> Path:
        """Directory invoices are written to; output_folder wins over directories.invoices."""
        raw = self.invoice.output_folder or self.directories.invoices
        return self.resolve_dir(raw, when)


def read_toml(path: Path) -> dict:
    """Read a TOML file, turning decode errors into ConfigError."""
    try:
        with open(path, "rb") as f:
            return tomli.load(f)
    except tomli.TOMLDecodeError as e:
        raise ConfigError(f"Error reading {path}: {e}") from e


def to_decimal(value, name: str) -> Decimal:
    """Convert a TOML number or numeric string to Decimal (floats via str())."""
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ConfigError(f"Invalid number for {name}: {value!r}") from e


def _parse_payment(data: dict) -> PaymentConfig:
    default_rate = data.get("default_rate")
    return PaymentConfig(
        accountholder=data.get("accountholder", ""),
        iban=data.get("iban", ""),
        bic=data.get("bic", ""),
        taxid=str(data.get("taxid", "")),
        currency=data.get("currency", "EUR"),
        tax_rate=to_decimal(data.get("tax_rate", 0), "payment.tax_rate"),
        default_rate=to_decimal(default_rate, "payment.default_rate") if default_rate is not None else None,
    )


def _parse_invoice(data: dict) -> InvoiceConfig:
    return InvoiceConfig().merged(data)


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from TOML file."""
    if config_path is None:
        # Look for config in standard locations
        candidates = [
            Path("invoicer.toml"),
            Path.home() / ".config/invoicer/invoicer.toml",
        ]
        for candidate in candidates:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None or not config_path.exists():
        # Return default config
        logger.debug("No config file found, using defaults")
        config = Config()
        _apply_env_overrides(config)
        return config

    data = read_toml(config_path)

    config = Config(config_path=config_path)
    # Without an explicit [directories] config entry, paths are relative to the config file
    config.directories.config = str(config_path.resolve().parent)

    if "overwrite" in data:
        config.overwrite = data["overwrite"]

    if "pdf_generator" in data:
        config.pdf_generator = data["pdf_generator"]

    if "jobs" in data:
        config.jobs = int(data["jobs"])

    if "compile_timeout" in data:
        config.compile_timeout = int(data["compile_timeout"])

    if "counter" in data:
        config.counter = int(data["counter"])

    # "folders" is the older name of the table
    dirs = data.get("directories", data.get("folders"))
    if dirs:
        config.directories = DirectoriesConfig(
            config=dirs.get("config", config.directories.config),
            tags=dirs.get("tags", "${CONFIG_DIR}/tags"),
            templates=dirs.get("templates", ""),
            locales=dirs.get("locales", ""),
            invoices=dirs.get("invoices", "${WORKING_DIR}"),
        )

    if "contact" in data:
        config.contact = {k: str(v) for k, v in data["contact"].items()}

    if "payment" in data:
        config.payment = _parse_payment(data["payment"])

    if "invoice" in data:
        config.invoice = _parse_invoice(data["invoice"])

    if "logging" in data:
        log = data["logging"]
        config.logging = LoggingConfig(
            level=log.get("level", "INFO"),
            output=log.get("output", "console"),
            file=log.get("file", ""),
            rotate=log.get("rotate", True),
            max_size_mb=log.get("max_size_mb", 10),
            backup_count=log.get("backup_count", 5),
        )

    _apply_env_overrides(config)
    logger.debug("Loaded config from %s", config_path)
    return config


def _apply_env_overrides(config: Config) -> None:
    output_dir = os.environ.get("INVOICER_OUTPUT_DIR")
    if output_dir:
        config.invoice.output_folder = output_dir

    # Empty value is meaningful here: it turns compiling off
    if "INVOICER_PDF_GENERATOR" in os.environ:
        config.pdf_generator = os.environ["INVOICER_PDF_GENERATOR"]
