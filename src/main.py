from __future__ import annotations

import argparse
import logging
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Sequence

from config import AppSettings, config
from db.db import init_db
from domain.period import DateRange, PeriodType
from domain.reconciliation import LegacyBatch, OpeningBalances
from domain.tax_class import SpiritsClass, TaxClass
from domain.volume import gallons_to_liters
from importers.cellar_export import CellarExportImporter
from services.tax_rates import load_rate_table
from services.ttb_reporting import TTBReportingService
from utils.ttb_reports import (
    render_form,
    render_history,
    render_legacy_batches,
    render_opening_balances,
    render_period_snapshot,
    render_reconciliation,
)


def build_service(settings: AppSettings, *, cellar_export: Path | None = None) -> TTBReportingService:
    session = init_db(settings.database_url)
    return TTBReportingService(
        session,
        organization_id=settings.organization_id,
        cellar=CellarExportImporter(cellar_export or settings.cellar_export_path),
        rates=load_rate_table(settings.tax_rates_path),
    )


def _parse_balances(pairs: Sequence[str], keys: type[TaxClass] | type[SpiritsClass]) -> dict[str, Decimal]:
    balances: dict[str, Decimal] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"Expected CLASS=GALLONS, got {pair!r}")
        balances[keys(key).value] = Decimal(value)
    return balances


def run(args: argparse.Namespace, service: TTBReportingService) -> None:
    if args.command == "reconcile":
        result = service.get_reconciliation_summary(
            args.as_of, period_start=args.period_start, previous_reconciliation_id=args.previous_id
        )
        render_reconciliation(result)
    elif args.command == "save":
        if args.previous_id is None and args.chain:
            last = service.get_last_reconciliation()
            args.previous_id = last.id if last is not None else None
        snapshot_id = service.save_reconciliation(
            reconciliation_date=args.as_of,
            name=args.name,
            notes=args.notes,
            period_start_date=args.period_start,
            previous_reconciliation_id=args.previous_id,
        )
        print(f"Saved reconciliation {snapshot_id}")
    elif args.command == "history":
        render_history(service.get_reconciliation_history())
    elif args.command == "form":
        period = DateRange.for_period(args.period_type, args.year, args.number)
        form = service.build_ttb_form_512017(period.start, period.end)
        if args.save:
            render_period_snapshot(service.save_period_snapshot(args.period_type, args.year, args.number, form=form))
        render_form(form)
    elif args.command == "finalize":
        render_period_snapshot(service.finalize_period_snapshot(args.id))
    elif args.command == "opening-balances":
        if args.date is not None:
            current = service.get_opening_balances()
            balances = OpeningBalances(
                balance_date=args.date,
                bulk={**current.bulk, **_parse_balances(args.bulk, TaxClass)},
                bottled={**current.bottled, **_parse_balances(args.bottled, TaxClass)},
                spirits={**current.spirits, **_parse_balances(args.spirits, SpiritsClass)},
                notes=args.notes if args.notes is not None else current.notes,
            )
            service.update_opening_balances(balances)
        render_opening_balances(service.get_opening_balances())
    elif args.command == "legacy":
        if args.legacy_command == "add":
            service.create_legacy_batch(
                LegacyBatch(
                    name=args.name,
                    class_key=args.class_key,
                    volume_liters=gallons_to_liters(args.gallons),
                    effective_date=args.effective,
                    notes=args.notes,
                )
            )
        elif args.legacy_command == "delete":
            service.delete_legacy_batch(args.id)
        render_legacy_batches(service.list_legacy_batches())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile cellar inventory against TTB and build F 5120.17.")
    parser.add_argument("--cellar-export", type=Path, default=None)
    commands = parser.add_subparsers(dest="command", required=True)

    reconcile = commands.add_parser("reconcile", help="Show the reconciliation as of a date")
    reconcile.add_argument("--as-of", type=date.fromisoformat, required=True)
    reconcile.add_argument("--period-start", type=date.fromisoformat, default=None)
    reconcile.add_argument("--previous-id", type=int, default=None)

    save = commands.add_parser("save", help="Save a reconciliation snapshot")
    save.add_argument("--as-of", type=date.fromisoformat, required=True)
    save.add_argument("--name", default=None)
    save.add_argument("--notes", default=None)
    save.add_argument("--period-start", type=date.fromisoformat, default=None)
    save.add_argument("--previous-id", type=int, default=None)
    save.add_argument("--chain", action="store_true", help="Chain from the last saved reconciliation")

    commands.add_parser("history", help="List saved reconciliations")

    form = commands.add_parser("form", help="Build TTB F 5120.17 for a period")
    form.add_argument("--year", type=int, required=True)
    form.add_argument("--period-type", type=PeriodType, choices=list(PeriodType), default=PeriodType.MONTHLY)
    form.add_argument("--number", type=int, default=None, help="Month (1-12) or quarter (1-4)")
    form.add_argument("--save", action="store_true", help="Save the period as a draft snapshot")

    finalize = commands.add_parser("finalize", help="Finalize a saved period snapshot")
    finalize.add_argument("--id", type=int, required=True)

    opening = commands.add_parser("opening-balances", help="Show or update TTB opening balances")
    opening.add_argument("--date", type=date.fromisoformat, default=None)
    opening.add_argument("--bulk", nargs="*", default=[], metavar="CLASS=GALLONS")
    opening.add_argument("--bottled", nargs="*", default=[], metavar="CLASS=GALLONS")
    opening.add_argument("--spirits", nargs="*", default=[], metavar="CLASS=GALLONS")
    opening.add_argument("--notes", default=None)

    legacy = commands.add_parser("legacy", help="Manage legacy batches")
    legacy_commands = legacy.add_subparsers(dest="legacy_command", required=True)
    legacy_add = legacy_commands.add_parser("add")
    legacy_add.add_argument("--name", required=True)
    legacy_add.add_argument("--class", dest="class_key", required=True)
    legacy_add.add_argument("--gallons", type=Decimal, required=True)
    legacy_add.add_argument("--effective", type=date.fromisoformat, required=True)
    legacy_add.add_argument("--notes", default=None)
    legacy_commands.add_parser("list")
    legacy_delete = legacy_commands.add_parser("delete")
    legacy_delete.add_argument("--id", type=int, required=True)
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    settings = config()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    run(args, build_service(settings, cellar_export=args.cellar_export))


if __name__ == "__main__":
    main()
