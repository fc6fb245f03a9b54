from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from domain.period_snapshot import TTBPeriodSnapshot
from domain.reconciliation import (
    GUIDANCE_TEXT,
    LegacyBatch,
    OpeningBalances,
    ReconciliationGuidance,
    ReconciliationResult,
    ReconciliationSnapshot,
)
from domain.tax_class import EFFERVESCENT_CLASSES, SPIRITS_CLASS_LABELS, TAX_CLASS_LABELS, TaxClass
from domain.ttb_form import EFFERVESCENT_COLUMN, TTBForm512017Data
from domain.volume import liters_to_gallons

from .formatting import format_currency, format_decimal, format_gallons, format_signed_gallons


def _table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> list[str]:
    """First column left-aligned, the rest right-aligned."""
    widths = [max(len(headers[i]), max((len(row[i]) for row in rows), default=0)) for i in range(len(headers))]

    def fmt(cells: Sequence[str]) -> str:
        first = f"{cells[0]:<{widths[0]}}"
        rest = [f"{cell:>{widths[i + 1]}}" for i, cell in enumerate(cells[1:])]
        return " ".join([first, *rest])

    header = fmt(headers)
    lines = [header, "-" * len(header)]
    lines.extend(fmt(row) for row in rows)
    return lines


def render_reconciliation(result: ReconciliationResult) -> None:
    print(f"Reconciliation as of {result.as_of.isoformat()}:")
    if not result.has_opening_balances:
        print("  No opening balances recorded; TTB totals are the production recorded in the system.")
    elif result.is_initial_reconciliation:
        print(f"  Initial reconciliation against opening balances of {result.opening_balance_date}")

    rows = [
        (
            row.label,
            format_gallons(row.ttb_total),
            format_gallons(row.current_inventory),
            format_gallons(row.removals),
            format_gallons(row.legacy_batches),
            format_signed_gallons(row.difference),
            "yes" if row.is_reconciled else "no",
        )
        for row in result.rows
        if row.ttb_total or row.current_inventory or row.removals or row.legacy_batches
    ]
    totals = result.totals
    rows.append(
        (
            "Total",
            format_gallons(totals.ttb_total),
            format_gallons(totals.current_inventory),
            format_gallons(totals.removals),
            format_gallons(totals.legacy_batches),
            format_signed_gallons(totals.difference),
            "yes" if totals.is_reconciled else "no",
        )
    )
    lines = _table(("Class", "TTB", "Inventory", "Removals", "Legacy", "Difference", "OK"), rows)
    lines.insert(len(lines) - 1, "-" * len(lines[0]))
    print("\n".join(lines))

    if totals.guidance != ReconciliationGuidance.RECONCILED:
        print(GUIDANCE_TEXT[totals.guidance])
    if result.unclassified:
        print(f"{len(result.unclassified)} record(s) excluded from totals:")
        for issue in result.unclassified:
            print(f"  [{issue.kind}] {issue.record_id}: {issue.message}")
    if result.production_check is not None and result.production_check.flagged:
        print(
            "Production check: more volume batched than pressed or purchased "
            f"({format_gallons(liters_to_gallons(result.production_check.unbatched_liters))} gal)"
        )


def render_history(snapshots: Sequence[ReconciliationSnapshot]) -> None:
    print("Reconciliation history:")
    if not snapshots:
        print("  (never reconciled)")
        return
    rows = [
        (
            str(s.id),
            s.reconciliation_date.isoformat(),
            s.name or "",
            format_gallons(s.ttb_balance),
            format_signed_gallons(s.difference),
            "yes" if s.is_reconciled else "no",
            str(s.previous_reconciliation_id or ""),
        )
        for s in snapshots
    ]
    print("\n".join(_table(("Id", "Date", "Name", "TTB", "Difference", "OK", "Previous"), rows)))


def _ledger_rows(form: TTBForm512017Data, bottled: bool) -> list[tuple[str, ...]]:
    classes = [c for c in TaxClass if c not in EFFERVESCENT_CLASSES]
    if bottled:
        columns = [form.bottled_wines[c] for c in classes] + [form.effervescent_bottled(), form.bottled_totals]
    else:
        columns = [form.bulk_wines[c] for c in classes] + [form.effervescent_bulk(), form.bulk_totals]
    names = columns[0].line_names()
    return [(name, *(format_gallons(getattr(column, name)) for column in columns)) for name in names]


def render_form(form: TTBForm512017Data) -> None:
    classes = [c for c in TaxClass if c not in EFFERVESCENT_CLASSES]
    headers = ("Line", *(c.value for c in classes), EFFERVESCENT_COLUMN, "total")

    print(f"TTB F 5120.17 for {form.period.start.isoformat()} .. {form.period.end.isoformat()}")
    print(f"Beginning inventory source: {form.beginning_source.value}")
    print("Part I Section A - Bulk wines (gal):")
    print("\n".join(_table(headers, _ledger_rows(form, bottled=False))))
    print("Part I Section B - Bottled wines (gal):")
    print("\n".join(_table(headers, _ledger_rows(form, bottled=True))))

    distillery = form.distillery_operations
    print("Distillery operations (gal):")
    print(
        "\n".join(
            _table(
                ("Item", "Gallons"),
                [
                    ("Cider sent to DSP", format_gallons(distillery.cider_sent_to_dsp)),
                    ("Brandy received", format_gallons(distillery.brandy_received)),
                    ("Brandy used in fortification", format_gallons(distillery.brandy_used_in_fortification)),
                ],
            )
        )
    )

    recon = form.cider_brandy_reconciliation
    print("Cider / brandy reconciliation (gal):")
    print(
        "\n".join(
            _table(
                ("Product", "Opening", "Received", "Used", "Expected", "Actual", "Discrepancy"),
                [
                    (
                        row.product,
                        format_gallons(row.opening),
                        format_gallons(row.received),
                        format_gallons(row.used),
                        format_gallons(row.expected_ending),
                        format_gallons(row.actual_ending),
                        format_signed_gallons(row.discrepancy),
                    )
                    for row in (recon.cider, recon.brandy, recon.total)
                ],
            )
        )
    )

    materials = form.materials
    print("Materials received and used:")
    print(
        "\n".join(
            _table(
                ("Material", "Amount"),
                [
                    ("Apples (lbs)", format_decimal(materials.apples_lbs)),
                    ("Other fruit (lbs)", format_decimal(materials.other_fruit_lbs)),
                    ("Honey (lbs)", format_decimal(materials.honey_lbs)),
                    ("Sugar (lbs)", format_decimal(materials.sugar_lbs)),
                    ("Juice purchased (gal)", format_gallons(materials.juice_purchased_gallons)),
                    ("Juice pressed (gal)", format_gallons(materials.juice_pressed_gallons)),
                ],
            )
        )
    )

    balance = form.balance_check
    status = "balanced" if balance.balanced else f"variance {format_signed_gallons(balance.variance)} gal"
    print(
        f"Balance check: available {format_gallons(balance.total_available)} gal, "
        f"accounted for {format_gallons(balance.total_accounted_for)} gal ({status})"
    )

    print("Tax:")
    tax_rows = [
        (
            row.label,
            format_gallons(row.taxable_gallons),
            format_currency(row.tax_rate) if row.tax_rate is not None else "",
            format_currency(row.gross_tax),
            format_currency(row.small_producer_credit),
            format_currency(row.net_tax),
        )
        for row in [*form.tax.rows, form.tax.total]
        if row.taxable_gallons or row.tax_class is None
    ]
    print("\n".join(_table(("Class", "Taxable gal", "Rate", "Gross", "Credit", "Net"), tax_rows)))


def render_opening_balances(balances: OpeningBalances) -> None:
    date_text = balances.balance_date.isoformat() if balances.balance_date else "(not set)"
    print(f"Opening balances as of {date_text}:")
    rows = [
        (TAX_CLASS_LABELS[c], format_gallons(balances.bulk[c]), format_gallons(balances.bottled[c])) for c in TaxClass
    ]
    rows.extend((SPIRITS_CLASS_LABELS[s], format_gallons(v), "") for s, v in balances.spirits.items())
    print("\n".join(_table(("Class", "Bulk", "Bottled"), rows)))


def render_legacy_batches(legacy_batches: Sequence[LegacyBatch]) -> None:
    print("Legacy batches:")
    if not legacy_batches:
        print("  (empty)")
        return
    rows = [
        (
            str(legacy.id),
            legacy.name,
            legacy.class_key,
            format_gallons(liters_to_gallons(legacy.volume_liters)),
            legacy.effective_date.isoformat(),
        )
        for legacy in legacy_batches
    ]
    print("\n".join(_table(("Id", "Name", "Class", "Gallons", "Effective"), rows)))


def render_period_snapshot(snapshot: TTBPeriodSnapshot) -> None:
    total = sum(snapshot.ending_bulk.values(), start=Decimal(0)) + sum(
        snapshot.ending_bottled.values(), start=Decimal(0)
    )
    print(
        f"Period snapshot {snapshot.id} ({snapshot.period.start.isoformat()} .. {snapshot.period.end.isoformat()}): "
        f"{snapshot.status.value}, ending on hand {format_gallons(total)} gal"
    )
