from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from domain.cellar import (
    BatchId,
    BatchMeasurement,
    BatchOrigin,
    BatchTransfer,
    CellarRecords,
    RemovalKind,
    SalesChannel,
)
from domain.errors import InvalidVolumeError
from domain.inventory import InventoryAggregator, group_by_year
from domain.period import DateRange
from domain.tax_class import ProductType, TaxClass
from tests.helpers.cellar import gal, make_batch, make_removal, make_run

YEAR_2024 = DateRange(start=date(2024, 1, 1), end=date(2024, 12, 31))


def test_bulk_volume_uses_latest_measurement_and_later_flows() -> None:
    batch = make_batch("b1", gallons=500, start=date(2024, 1, 1))
    records = CellarRecords(
        batches=[batch],
        measurements=[BatchMeasurement(batch_id=BatchId("b1"), measured_on=date(2024, 2, 1), volume_liters=gal(480))],
        packaging_runs=[
            # same day as the measurement: already reflected in it
            make_run("r0", "b1", gallons=20, on=date(2024, 2, 1)),
            make_run("r1", "b1", gallons=100, on=date(2024, 2, 10)),
        ],
    )
    aggregator = InventoryAggregator(records)

    assert aggregator.bulk_volume(batch, date(2023, 12, 31)) == Decimal(0)
    assert aggregator.bulk_volume(batch, date(2024, 1, 15)) == gal(500)
    assert aggregator.bulk_volume(batch, date(2024, 2, 5)) == gal(480)
    assert aggregator.bulk_volume(batch, date(2024, 3, 1)) == gal(380)


def test_packaged_volume_net_of_removals() -> None:
    records = CellarRecords(
        batches=[make_batch("b1", gallons=500, start=date(2024, 1, 1))],
        packaging_runs=[make_run("r1", "b1", gallons=200, on=date(2024, 2, 1), loss=2)],
        removals=[make_removal("s1", gallons=100, on=date(2024, 3, 1), run_id="r1")],
    )
    aggregator = InventoryAggregator(records)
    run = records.packaging_run("r1")

    assert aggregator.packaged_volume(run, date(2024, 1, 31)) == Decimal(0)
    assert aggregator.packaged_volume(run, date(2024, 2, 28)) == gal(198)
    assert aggregator.packaged_volume(run, date(2024, 3, 31)) == gal(98)

    totals = aggregator.current_inventory(date(2024, 3, 31), TaxClass.HARD_CIDER)
    assert totals.bulk == gal(300)
    assert totals.packaged == gal(98)
    assert totals.total == gal(398)


@pytest.mark.parametrize("blend_gallons", [0, 500])
def test_blended_volume_is_counted_once(blend_gallons: int) -> None:
    records = CellarRecords(
        batches=[
            make_batch("b1", gallons=300, start=date(2024, 1, 10)),
            make_batch("b2", gallons=200, start=date(2024, 1, 12)),
            make_batch("blend", gallons=blend_gallons, start=date(2024, 3, 1), origin=BatchOrigin.BLEND),
        ],
        transfers=[
            BatchTransfer(
                id="t1",
                source_batch_id=BatchId("b1"),
                destination_batch_id=BatchId("blend"),
                transferred_on=date(2024, 3, 1),
                volume_liters=gal(300),
            ),
            BatchTransfer(
                id="t2",
                source_batch_id=BatchId("b2"),
                destination_batch_id=BatchId("blend"),
                transferred_on=date(2024, 3, 1),
                volume_liters=gal(200),
            ),
        ],
    )
    aggregator = InventoryAggregator(records)

    assert aggregator.current_inventory(date(2024, 2, 1)).bulk == gal(500)
    assert aggregator.current_inventory(date(2024, 3, 1)).bulk == gal(500)
    assert aggregator.bulk_volume(records.batch(BatchId("blend")), date(2024, 3, 1)) == gal(500)

    activity = aggregator.activity(YEAR_2024)
    assert activity.produced[TaxClass.HARD_CIDER] == gal(500)
    assert activity.transferred_in[TaxClass.HARD_CIDER] == Decimal(0)
    assert activity.transferred_out[TaxClass.HARD_CIDER] == Decimal(0)


def test_missing_abv_is_reported_not_counted() -> None:
    records = CellarRecords(
        batches=[
            make_batch("b1", gallons=100, start=date(2024, 1, 1), abv=None),
            make_batch("b2", gallons=50, start=date(2024, 1, 1)),
        ]
    )

    snapshot = InventoryAggregator(records).snapshot(date(2024, 6, 30))

    assert snapshot.totals().bulk == gal(50)
    assert len(snapshot.unclassified) == 1
    issue = snapshot.unclassified[0]
    assert issue.kind == "classification"
    assert issue.record_id == "b1"
    assert snapshot.unclassified_liters == gal(100)


def test_measured_abv_overrides_declared_abv() -> None:
    records = CellarRecords(
        batches=[make_batch("b1", gallons=100, start=date(2024, 1, 1), abv=None)],
        measurements=[BatchMeasurement(batch_id=BatchId("b1"), measured_on=date(2024, 2, 1), abv=Decimal("9.2"))],
    )
    aggregator = InventoryAggregator(records)

    assert aggregator.snapshot(date(2024, 1, 31)).unclassified
    after = aggregator.snapshot(date(2024, 2, 1))
    assert not after.unclassified
    assert after.by_class()[TaxClass.WINE_UNDER_16].bulk == gal(100)


def test_negative_bulk_volume_is_flagged() -> None:
    batch = make_batch("b1", gallons=100, start=date(2024, 1, 1))
    records = CellarRecords(
        batches=[batch],
        packaging_runs=[make_run("r1", "b1", gallons=150, on=date(2024, 2, 1))],
    )
    aggregator = InventoryAggregator(records)

    with pytest.raises(InvalidVolumeError) as excinfo:
        aggregator.bulk_volume(batch, date(2024, 2, 1))
    assert excinfo.value.context["batch_id"] == "b1"

    snapshot = aggregator.snapshot(date(2024, 2, 1))
    assert [issue.kind for issue in snapshot.unclassified] == ["invalid_volume"]
    assert snapshot.totals().packaged == gal(150)


def test_brandy_and_fermenters_are_tracked_apart() -> None:
    records = CellarRecords(
        batches=[
            make_batch("c1", gallons=400, start=date(2024, 1, 1), in_fermenter=True),
            make_batch("c2", gallons=100, start=date(2024, 1, 1)),
            make_batch(
                "br1",
                gallons=30,
                start=date(2024, 1, 5),
                abv="60",
                product_type=ProductType.BRANDY,
                origin=BatchOrigin.DSP_RECEIPT,
            ),
        ]
    )
    aggregator = InventoryAggregator(records)
    snapshot = aggregator.snapshot(date(2024, 1, 31))

    assert snapshot.brandy_liters == gal(30)
    assert snapshot.totals().bulk == gal(500)
    assert snapshot.in_fermenters()[TaxClass.HARD_CIDER] == gal(400)

    activity = aggregator.activity(YEAR_2024)
    assert activity.brandy_received_liters == gal(30)
    assert activity.brandy_receipt_count == 1
    assert activity.produced[TaxClass.HARD_CIDER] == gal(500)


def test_activity_moves_between_classes() -> None:
    records = CellarRecords(
        batches=[
            make_batch("cider", gallons=300, start=date(2024, 1, 1)),
            make_batch("wine", gallons=100, start=date(2024, 1, 1), abv="10", product_type=ProductType.WINE),
            make_batch(
                "brandy",
                gallons=20,
                start=date(2023, 12, 1),
                abv="60",
                product_type=ProductType.BRANDY,
                origin=BatchOrigin.DSP_RECEIPT,
            ),
            make_batch(
                "pommeau",
                gallons=40,
                start=date(2024, 1, 1),
                abv="18",
                product_type=ProductType.POMMEAU,
                origin=BatchOrigin.OTHER,
            ),
        ],
        transfers=[
            BatchTransfer(
                id="t1",
                source_batch_id=BatchId("cider"),
                destination_batch_id=BatchId("wine"),
                transferred_on=date(2024, 2, 1),
                volume_liters=gal(50),
                loss_liters=gal(1),
            ),
            BatchTransfer(
                id="t2",
                source_batch_id=BatchId("brandy"),
                destination_batch_id=BatchId("pommeau"),
                transferred_on=date(2024, 2, 2),
                volume_liters=gal(10),
            ),
        ],
    )

    activity = InventoryAggregator(records).activity(YEAR_2024)

    assert activity.transferred_out[TaxClass.HARD_CIDER] == gal(50)
    assert activity.transferred_in[TaxClass.WINE_UNDER_16] == gal(50)
    assert activity.bulk_losses[TaxClass.HARD_CIDER] == gal(1)
    assert activity.spirits_added[TaxClass.WINE_16_TO_21] == gal(10)
    assert [t.destination_batch for t in activity.brandy_transfers] == ["POMMEAU"]
    assert activity.brandy_receipt_count == 0
    assert activity.additions(TaxClass.WINE_16_TO_21) == gal(50)


def test_activity_removals_by_kind_and_channel() -> None:
    records = CellarRecords(
        batches=[make_batch("b1", gallons=500, start=date(2024, 1, 1))],
        packaging_runs=[make_run("r1", "b1", gallons=200, on=date(2024, 2, 1), loss=2)],
        removals=[
            make_removal("s1", gallons=100, on=date(2024, 3, 1), run_id="r1", channel=SalesChannel.TASTING_ROOM),
            make_removal("s2", gallons=10, on=date(2024, 3, 2), run_id="r1"),
            make_removal("s3", gallons=3, on=date(2024, 3, 3), run_id="r1", kind=RemovalKind.BREAKAGE),
            make_removal("s4", gallons=25, on=date(2024, 3, 4), batch_id="b1", channel=SalesChannel.WHOLESALE),
            make_removal("s5", gallons=5, on=date(2025, 1, 2), batch_id="b1"),
        ],
    )

    activity = InventoryAggregator(records).activity(YEAR_2024)

    assert activity.bottled_from_bulk[TaxClass.HARD_CIDER] == gal(198)
    assert activity.bottled_into_packages[TaxClass.HARD_CIDER] == gal(198)
    assert activity.packaged_removals[RemovalKind.TAXPAID][TaxClass.HARD_CIDER] == gal(110)
    assert activity.packaged_removals[RemovalKind.BREAKAGE][TaxClass.HARD_CIDER] == gal(3)
    assert activity.bulk_removals[RemovalKind.TAXPAID][TaxClass.HARD_CIDER] == gal(25)
    assert activity.taxpaid(TaxClass.HARD_CIDER) == gal(135)
    assert activity.taxpaid_by_channel[SalesChannel.TASTING_ROOM] == gal(100)
    assert activity.taxpaid_by_channel[SalesChannel.WHOLESALE] == gal(25)
    assert activity.taxpaid_by_channel[SalesChannel.UNCATEGORIZED] == gal(10)
    # packaging loss 2 + breakage 3 + taxpaid 135
    assert activity.removals(TaxClass.HARD_CIDER) == gal(140)


def test_group_by_year() -> None:
    records = CellarRecords(
        batches=[
            make_batch("old", gallons=100, start=date(2022, 9, 1)),
            make_batch("new", gallons=250, start=date(2024, 1, 1)),
        ],
        packaging_runs=[make_run("r1", "old", gallons=40, on=date(2023, 5, 1))],
    )

    years = group_by_year(InventoryAggregator(records).snapshot(date(2024, 6, 30)))

    assert list(years) == [2022, 2024]
    assert years[2022] == (gal(60), gal(40), 1, 1)
    assert years[2024] == (gal(250), Decimal(0), 1, 0)
