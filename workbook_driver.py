"""
Product Reconciliation System — Workbook Batch Driver

Reads inventory rows from every worksheet, fetches all eligible identifiers
in one batch, and inserts two rows under each record:
  1. the web row: values found on the product page, in the record's columns
  2. the comparison row: one verdict comment per compared column, coloured
     green (match), red (mismatch) or orange (inconclusive)

Rows are processed bottom-up so earlier row indices stay valid while rows
are inserted.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, Optional

from openpyxl import load_workbook
from openpyxl.styles import PatternFill
from openpyxl.worksheet.worksheet import Worksheet

from models import (
    ExtractedFieldSet, FetchStatus, InventoryRecord, RecordReconciliation,
    VerdictStatus,
)
from normalizer import parse_dimension_triple
from reconciler import DEFAULT_POLICY, ReconciliationPolicy, reconcile_record
from fetch_orchestrator import FetchOrchestrator

logger = logging.getLogger(__name__)


class WorkbookError(ValueError):
    """The uploaded bytes are not a readable workbook."""

# ============================================================
# Layout
# ============================================================

@dataclass(frozen=True)
class SheetLayout:
    """Where the inventory data lives in each worksheet."""
    header_row: int = 3
    first_data_row: int = 4
    identifier_col: str = 'Z'
    part_no_col: str = 'E'
    title_col: str = 'C'
    weight_col: str = 'S'
    length_col: str = 'U'
    width_col: str = 'V'
    height_col: str = 'W'
    material_col: str = 'P'
    classification_col: str = 'N'
    # A row is a record when any of these holds a value
    presence_cols: tuple[str, ...] = ('A', 'B', 'C', 'Z')

    @classmethod
    def from_settings(cls, settings) -> SheetLayout:
        return cls(header_row=settings.header_row,
                   first_data_row=settings.first_data_row)

    @property
    def verdict_columns(self) -> dict[str, str]:
        return {
            'external_id': self.identifier_col,
            'manufacturer_part_no': self.part_no_col,
            'title': self.title_col,
            'weight': self.weight_col,
            'dimensions': self.length_col,
            'material': self.material_col,
            'material_classification': self.classification_col,
        }

    @property
    def writable_columns(self) -> frozenset[str]:
        return frozenset({
            self.identifier_col, self.part_no_col, self.title_col,
            self.weight_col, self.length_col, self.width_col,
            self.height_col, self.material_col, self.classification_col,
        })


DEFAULT_LAYOUT = SheetLayout()

VERDICT_COLORS: dict[VerdictStatus, str] = {
    VerdictStatus.MATCH: 'FFD5F4E6',
    VerdictStatus.MISMATCH: 'FFFDEAEA',
    VerdictStatus.INCONCLUSIVE: 'FFFFF3CD',
}


def verdict_fill(status: VerdictStatus) -> PatternFill:
    color = VERDICT_COLORS[status]
    return PatternFill(fill_type='solid', start_color=color, end_color=color)

# ============================================================
# Report
# ============================================================

@dataclass
class BatchReport:
    """Tracks counts for one processed workbook."""
    sheets: int = 0
    records: int = 0
    succeeded: int = 0
    partial: int = 0
    failed: int = 0
    not_attempted: int = 0
    verdicts: dict[str, int] = field(default_factory=lambda: {
        s.value: 0 for s in VerdictStatus
    })

    def add(self, reconciliation: RecordReconciliation) -> None:
        self.records += 1
        status = reconciliation.fetch_status
        if status == FetchStatus.SUCCEEDED:
            self.succeeded += 1
        elif status == FetchStatus.PARTIAL:
            self.partial += 1
        elif status == FetchStatus.FAILED:
            self.failed += 1
        else:
            self.not_attempted += 1
        for verdict in reconciliation.verdicts.values():
            self.verdicts[verdict.status.value] += 1

    def as_dict(self) -> dict[str, Any]:
        return {
            'sheets': self.sheets,
            'records': self.records,
            'succeeded': self.succeeded,
            'partially_succeeded': self.partial,
            'failed': self.failed,
            'not_attempted': self.not_attempted,
            'verdicts': dict(self.verdicts),
        }

# ============================================================
# Reading
# ============================================================

def _has_value(value: Any) -> bool:
    return value is not None and str(value).strip() != ''


def find_record_rows(ws: Worksheet, layout: SheetLayout = DEFAULT_LAYOUT) -> list[int]:
    return [
        r for r in range(layout.first_data_row, ws.max_row + 1)
        if any(_has_value(ws[f"{c}{r}"].value) for c in layout.presence_cols)
    ]


def read_inventory_records(ws: Worksheet,
                           layout: SheetLayout = DEFAULT_LAYOUT) -> list[InventoryRecord]:
    records = []
    for r in find_record_rows(ws, layout):
        def cell(col: str) -> Any:
            return ws[f"{col}{r}"].value
        records.append(InventoryRecord(
            row_index=r,
            sheet_name=ws.title,
            external_id=cell(layout.identifier_col),
            manufacturer_part_no=cell(layout.part_no_col),
            title=cell(layout.title_col),
            weight_raw=cell(layout.weight_col),
            length_raw=cell(layout.length_col),
            width_raw=cell(layout.width_col),
            height_raw=cell(layout.height_col),
            material=cell(layout.material_col),
            material_classification_note=cell(layout.classification_col),
        ))
    return records


def is_eligible(identifier: str, prefix: str) -> bool:
    return bool(identifier) and identifier.upper().startswith(prefix.upper())

# ============================================================
# Writing
# ============================================================

class RowWriter:
    """Cell writes restricted to the layout's data columns."""

    def __init__(self, ws: Worksheet, layout: SheetLayout = DEFAULT_LAYOUT):
        self.ws = ws
        self.layout = layout

    def set(self, column: str, row: int, value: Any,
            fill: Optional[PatternFill] = None) -> None:
        if column not in self.layout.writable_columns:
            raise ValueError(f"Column {column} is not a writable data column")
        cell = self.ws[f"{column}{row}"]
        cell.value = value
        if fill is not None:
            cell.fill = fill


def _cell_number(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return int(value) if float(value).is_integer() else value


def write_web_row(writer: RowWriter, row: int, record: InventoryRecord,
                  field_set: ExtractedFieldSet) -> None:
    layout = writer.layout
    writer.set(layout.identifier_col, row, record.external_id)
    if not field_set.is_usable:
        return
    writer.set(layout.part_no_col, row, field_set.secondary_part_number)
    writer.set(layout.title_col, row, field_set.title)
    writer.set(layout.weight_col, row, field_set.weight)
    axes = parse_dimension_triple(field_set.dimensions)
    for col, value in zip((layout.length_col, layout.width_col, layout.height_col), axes):
        if value is not None:
            writer.set(col, row, _cell_number(value))
    writer.set(layout.material_col, row, field_set.material)
    writer.set(layout.classification_col, row, field_set.material_rating)


def write_comparison_row(writer: RowWriter, row: int,
                         reconciliation: RecordReconciliation) -> None:
    columns = writer.layout.verdict_columns
    for name, verdict in reconciliation.verdicts.items():
        writer.set(columns[name], row, verdict.comment, verdict_fill(verdict.status))

# ============================================================
# Batch Driver
# ============================================================

class WorkbookReconciler:

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        layout: SheetLayout = DEFAULT_LAYOUT,
        policy: ReconciliationPolicy = DEFAULT_POLICY,
        identifier_prefix: str = 'A2V',
    ):
        self.orchestrator = orchestrator
        self.layout = layout
        self.policy = policy
        self.identifier_prefix = identifier_prefix

    @classmethod
    def from_settings(cls, orchestrator: FetchOrchestrator, settings,
                      policy: Optional[ReconciliationPolicy] = None) -> WorkbookReconciler:
        return cls(
            orchestrator,
            layout=SheetLayout.from_settings(settings),
            policy=policy or ReconciliationPolicy.from_settings(settings),
            identifier_prefix=settings.identifier_prefix,
        )

    async def process_workbook(self, data: bytes) -> tuple[bytes, BatchReport]:
        """Processed workbook bytes plus batch counts."""
        try:
            values_wb = load_workbook(BytesIO(data), data_only=True)
            wb = load_workbook(BytesIO(data))
        except Exception as e:
            raise WorkbookError(f"Cannot read workbook: {e}") from e

        report = BatchReport()
        plan: list[tuple[Worksheet, list[InventoryRecord]]] = []
        for ws in wb.worksheets:
            values_ws = values_wb[ws.title]
            if values_ws.max_row < self.layout.header_row:
                logger.info("Skipping sheet %r: no header row", ws.title)
                continue
            records = read_inventory_records(values_ws, self.layout)
            plan.append((ws, records))
            report.sheets += 1
        values_wb.close()

        eligible = [
            record.identifier
            for _, records in plan for record in records
            if is_eligible(record.identifier, self.identifier_prefix)
        ]
        logger.info("%d records, %d eligible identifiers",
                    sum(len(records) for _, records in plan), len(eligible))
        field_sets = await self.orchestrator.fetch_many(eligible)

        for ws, records in plan:
            writer = RowWriter(ws, self.layout)
            for record in reversed(records):
                field_set = field_sets.get(record.identifier) or ExtractedFieldSet(
                    identifier=record.identifier, status=FetchStatus.NOT_ATTEMPTED)
                reconciliation = reconcile_record(record, field_set, self.policy)

                web_row = record.row_index + 1
                ws.insert_rows(web_row, amount=2)
                write_web_row(writer, web_row, record, field_set)
                write_comparison_row(writer, web_row + 1, reconciliation)
                report.add(reconciliation)

        out = BytesIO()
        wb.save(out)
        wb.close()
        return out.getvalue(), report


async def reconcile_file(
    input_path: Path,
    output_path: Path,
    orchestrator: FetchOrchestrator,
    settings,
    policy: Optional[ReconciliationPolicy] = None,
) -> BatchReport:
    """File-to-file convenience used by the CLI."""
    input_path = Path(input_path).expanduser()
    if not input_path.exists():
        raise FileNotFoundError(f"Excel file not found: {input_path}")

    driver = WorkbookReconciler.from_settings(orchestrator, settings, policy=policy)
    processed, report = await driver.process_workbook(input_path.read_bytes())
    Path(output_path).expanduser().write_bytes(processed)
    logger.info("Wrote %s (%d records)", output_path, report.records)
    return report
