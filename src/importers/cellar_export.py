from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from domain.cellar import (
    AdditivePurchase,
    Batch,
    BatchLoss,
    BatchMeasurement,
    BatchTransfer,
    CellarRecords,
    DistilleryShipment,
    FruitPurchase,
    JuicePurchase,
    PackagingRun,
    PressRun,
    Removal,
)
from domain.errors import TTBEngineError
from domain.inventory import RecordIssue

logger = logging.getLogger(__name__)

# export key -> record model, in dependency order
_SECTIONS: tuple[tuple[str, type[BaseModel]], ...] = (
    ("batches", Batch),
    ("measurements", BatchMeasurement),
    ("transfers", BatchTransfer),
    ("losses", BatchLoss),
    ("packaging_runs", PackagingRun),
    ("removals", Removal),
    ("distillery_shipments", DistilleryShipment),
    ("press_runs", PressRun),
    ("juice_purchases", JuicePurchase),
    ("fruit_purchases", FruitPurchase),
    ("additive_purchases", AdditivePurchase),
)


class CellarExportImporter:
    """Load a JSON cellar export into ``CellarRecords``.

    Malformed records are skipped and reported in ``issues`` instead of
    failing the whole import, as are records referencing a skipped batch or
    packaging run.
    """

    def __init__(self, source_path: str | Path) -> None:
        self._source_path = Path(source_path)
        self.issues: list[RecordIssue] = []

    def load_records(self) -> CellarRecords:
        with self._source_path.open(encoding="utf-8") as handle:
            raw: dict[str, Any] = json.load(handle)
        return self.parse(raw)

    def parse(self, raw: dict[str, Any]) -> CellarRecords:
        self.issues = []
        sections: dict[str, list[Any]] = {}
        for key, model in _SECTIONS:
            sections[key] = self._parse_section(key, model, raw.get(key) or [])

        batch_ids = {batch.id for batch in sections["batches"]}
        sections["measurements"] = self._drop_orphans(
            "measurements", sections["measurements"], lambda m: m.batch_id in batch_ids
        )
        sections["transfers"] = self._drop_orphans(
            "transfers",
            sections["transfers"],
            lambda t: t.source_batch_id in batch_ids and t.destination_batch_id in batch_ids,
        )
        sections["losses"] = self._drop_orphans("losses", sections["losses"], lambda l: l.batch_id in batch_ids)
        sections["packaging_runs"] = self._drop_orphans(
            "packaging_runs", sections["packaging_runs"], lambda r: r.batch_id in batch_ids
        )
        run_ids = {run.id for run in sections["packaging_runs"]}
        sections["removals"] = self._drop_orphans(
            "removals",
            sections["removals"],
            lambda r: (r.batch_id in batch_ids) if r.batch_id is not None else (r.packaging_run_id in run_ids),
        )
        sections["distillery_shipments"] = self._drop_orphans(
            "distillery_shipments", sections["distillery_shipments"], lambda s: s.batch_id in batch_ids
        )

        records = CellarRecords(**sections)
        logger.info(
            "Loaded %d batches, %d packaging runs and %d removals from %s (%d skipped)",
            len(records.batches),
            len(records.packaging_runs),
            len(records.removals),
            self._source_path,
            len(self.issues),
        )
        return records

    def _parse_section(self, key: str, model: type[BaseModel], rows: list[dict[str, Any]]) -> list[Any]:
        parsed: list[Any] = []
        for index, row in enumerate(rows):
            record_id = str(row.get("id", f"{key}[{index}]"))
            try:
                parsed.append(model.model_validate(row))
            except TTBEngineError as err:
                logger.warning("Skipping %s record %s: %s", key, record_id, err)
                self.issues.append(RecordIssue.from_error(err, record_id=record_id))
            except ValidationError as err:
                logger.warning("Skipping %s record %s: %s", key, record_id, err)
                self.issues.append(
                    RecordIssue(kind="invalid_record", record_id=record_id, message=str(err), context={"section": key})
                )
        return parsed

    def _drop_orphans(self, key: str, records: list[Any], keep: Callable[[Any], bool]) -> list[Any]:
        kept: list[Any] = []
        for record in records:
            if keep(record):
                kept.append(record)
                continue
            record_id = str(getattr(record, "id", getattr(record, "batch_id", key)))
            logger.warning("Skipping %s record %s: references a missing record", key, record_id)
            self.issues.append(
                RecordIssue(
                    kind="missing_reference",
                    record_id=record_id,
                    message=f"{key} record references a batch or packaging run that was not imported",
                    context={"section": key},
                )
            )
        return kept


__all__ = ["CellarExportImporter"]
