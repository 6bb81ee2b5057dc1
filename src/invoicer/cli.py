"""Command-line interface: python -m invoicer <command>

Every command returns a result dict which is printed as JSON; the exit
status is 1 when the result has status "error".
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

from .builder import InvoiceBuilder
from .config import Config, load_config
from .identifiers import InvoiceCounter
from .logging_setup import setup_logging
from .recipients import Recipient, load_recipient, load_recipients_dir, load_recipients_for_tags
from .worklog import WorklogStore


def _load_config(args) -> Config:
    config = load_config(Path(args.config) if args.config else None)
    if getattr(args, "jobs", None):
        config.jobs = args.jobs
    setup_logging(config, verbose=args.verbose)
    return config


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date (expected YYYY-MM-DD): {value}")


def _load_store(paths: list[str]) -> WorklogStore:
    return WorklogStore.merge(*(WorklogStore.from_csv(Path(path)) for path in paths))


def _resolve_recipients(args, config: Config, store: WorklogStore | None = None) -> list[Recipient]:
    """Explicit --recipient files, else records accepting the worklog's tags, else the whole tags dir."""
    if args.recipient:
        return [load_recipient(Path(p)) for p in args.recipient]
    if store is not None and store.tags():
        return load_recipients_for_tags(config.tags_dir, store.tags())
    return load_recipients_dir(config.tags_dir)


def cmd_generate(args) -> dict:
    """Generate one invoice per recipient from the given worklogs."""
    config = _load_config(args)
    store = _load_store(args.worklog)
    recipients = _resolve_recipients(args, config, store)
    if not recipients:
        return {"status": "error", "error": f"No recipients found (tags dir: {config.tags_dir})"}

    counter = InvoiceCounter(args.counter if args.counter is not None else config.counter)
    builder = InvoiceBuilder(config, recipients, counter=counter, now=_parse_date(args.date))
    report = builder.generate(store, dry_run=args.dry_run)

    result = report.to_dict()
    result["dry_run"] = args.dry_run
    result["entries"] = len(store)
    result["next_counter"] = counter.value
    return result


def cmd_check_config(args) -> dict:
    """Validate configuration, format strings and recipient records."""
    config = _load_config(args)
    recipients = _resolve_recipients(args, config)
    InvoiceBuilder(config, recipients)
    return {
        "status": "ok",
        "config": str(config.config_path) if config.config_path else None,
        "overwrite": config.overwrite,
        "pdf_generator": config.pdf_generator,
        "tags_dir": str(config.tags_dir),
        "templates_dir": str(config.templates_dir),
        "output_dir": str(config.output_dir()),
        "recipients": len(recipients),
    }


def cmd_recipients(args) -> dict:
    """List recipients and the tags they accept."""
    config = _load_config(args)
    store = _load_store(args.worklog) if args.worklog else None
    recipients = _resolve_recipients(args, config, store)
    return {
        "status": "ok",
        "tags_dir": str(config.tags_dir),
        "recipients": [
            {
                "name": r.name,
                "companyname": r.companyname,
                "tags": list(r.accepted_tags),
                "locale": r.locale or config.invoice.locale,
            }
            for r in recipients
        ],
    }


def build_parser():
    parser = argparse.ArgumentParser(
        prog="python -m invoicer",
        description="Generate invoices from tagged worklogs",
    )
    parser.add_argument("--config", "-c", help="Path to invoicer.toml (default: ./invoicer.toml)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    # generate
    p_gen = sub.add_parser("generate", help="Generate invoices from worklog CSV files")
    p_gen.add_argument("worklog", nargs="+", help="Worklog CSV file(s)")
    p_gen.add_argument("--recipient", "-r", action="append", help="Recipient TOML file (can specify multiple)")
    p_gen.add_argument("--counter", type=int, help="First invoice counter value (default: from config)")
    p_gen.add_argument("--date", "-d", help="Invoice date (YYYY-MM-DD, default: today)")
    p_gen.add_argument("--jobs", "-j", type=int, help="Parallel render/compile workers")
    p_gen.add_argument("--dry-run", action="store_true", help="Report what would be written without writing")

    # check-config
    p_check = sub.add_parser("check-config", help="Validate configuration and recipient records")
    p_check.add_argument("--recipient", "-r", action="append", help="Recipient TOML file (can specify multiple)")

    # recipients
    p_rec = sub.add_parser("recipients", help="List recipients")
    p_rec.add_argument("worklog", nargs="*", help="Only recipients for tags in these worklogs")
    p_rec.add_argument("--recipient", "-r", action="append", help="Recipient TOML file (can specify multiple)")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    commands = {
        "generate": cmd_generate,
        "check-config": cmd_check_config,
        "recipients": cmd_recipients,
    }

    try:
        result = commands[args.command](args)
        print(json.dumps(result, indent=2, ensure_ascii=False))
        if result.get("status") == "error":
            sys.exit(1)
    except Exception as e:
        print(json.dumps({"status": "error", "error": str(e)}))
        sys.exit(1)


if __name__ == "__main__":
    main()
