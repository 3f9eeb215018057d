"""
Product Reconciliation System — Core Pydantic Models
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field

# ============================================================
# Enums
# ============================================================

class FetchStatus(str, Enum):
    NOT_ATTEMPTED = "not_attempted"
    FETCHING = "fetching"
    SUCCEEDED = "succeeded"
    PARTIAL = "partially_succeeded"
    FAILED = "failed"

class VerdictStatus(str, Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    INCONCLUSIVE = "inconclusive"


# Statuses whose field set carries usable page content
USABLE_STATUSES = frozenset({FetchStatus.SUCCEEDED, FetchStatus.PARTIAL})

# ============================================================
# Inventory Side
# ============================================================

class InventoryRecord(BaseModel):
    """One workbook row. Cell values are kept as read (str, number or None)."""
    model_config = ConfigDict(frozen=True)

    row_index: int
    sheet_name: str = ""
    external_id: Any = None
    manufacturer_part_no: Any = None
    title: Any = None
    weight_raw: Any = None
    length_raw: Any = None
    width_raw: Any = None
    height_raw: Any = None
    material: Any = None
    material_classification_note: Any = None

    @property
    def identifier(self) -> str:
        return str(self.external_id).strip() if self.external_id is not None else ""

# ============================================================
# Web Side
# ============================================================

# Fields filled by the extraction paths; None means "not found"
EXTRACTED_FIELDS: tuple[str, ...] = (
    'title', 'secondary_part_number', 'weight', 'dimensions', 'material',
    'material_classification', 'material_rating', 'statistical_code',
    'origin_country', 'availability', 'description', 'product_link',
)

# A field set holding all of these stops the extraction cascade
CORE_FIELDS: tuple[str, ...] = (
    'title', 'secondary_part_number', 'weight', 'dimensions', 'material',
    'material_classification',
)

# Any of these makes a fetch count as fully succeeded
SUBSTANTIVE_FIELDS: tuple[str, ...] = (
    'weight', 'dimensions', 'material', 'material_classification',
)


class ExtractedFieldSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str = ""
    source_url: Optional[str] = None
    title: Optional[str] = None
    secondary_part_number: Optional[str] = None
    weight: Optional[str] = None
    dimensions: Optional[str] = None
    material: Optional[str] = None
    material_classification: Optional[str] = None
    material_rating: Optional[str] = None
    statistical_code: Optional[str] = None
    origin_country: Optional[str] = None
    availability: Optional[str] = None
    description: Optional[str] = None
    product_link: Optional[str] = None
    status: FetchStatus = FetchStatus.NOT_ATTEMPTED
    failure_reason: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return all(getattr(self, f) is not None for f in CORE_FIELDS)

    @property
    def missing_fields(self) -> list[str]:
        return [f for f in CORE_FIELDS if getattr(self, f) is None]

    @property
    def has_substance(self) -> bool:
        return any(getattr(self, f) is not None for f in SUBSTANTIVE_FIELDS)

    @property
    def is_usable(self) -> bool:
        return self.status in USABLE_STATUSES


def merge_keeping_first(a: ExtractedFieldSet, b: ExtractedFieldSet) -> ExtractedFieldSet:
    """
    Combine two partial field sets. A field already populated in `a` is never
    replaced; `b` only fills the gaps. Identity and status stay with `a`.
    """
    updates: dict[str, Any] = {}
    for name in EXTRACTED_FIELDS:
        if getattr(a, name) is None and getattr(b, name) is not None:
            updates[name] = getattr(b, name)
    if not a.identifier and b.identifier:
        updates['identifier'] = b.identifier
    if a.source_url is None and b.source_url is not None:
        updates['source_url'] = b.source_url
    if not updates:
        return a
    return a.model_copy(update=updates)


class FetchedDocument(BaseModel):
    """Raw transport output for one product page."""
    url: str
    status_code: int
    html: str = ""
    embedded_product: Optional[dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.status_code == 200

# ============================================================
# Reconciliation Output
# ============================================================

class Verdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: VerdictStatus
    comment: str

    @classmethod
    def match(cls, comment: str) -> Verdict:
        return cls(status=VerdictStatus.MATCH, comment=comment)

    @classmethod
    def mismatch(cls, comment: str) -> Verdict:
        return cls(status=VerdictStatus.MISMATCH, comment=comment)

    @classmethod
    def inconclusive(cls, comment: str) -> Verdict:
        return cls(status=VerdictStatus.INCONCLUSIVE, comment=comment)


class RecordReconciliation(BaseModel):
    row_index: int
    identifier: str = ""
    fetch_status: FetchStatus = FetchStatus.NOT_ATTEMPTED
    verdicts: dict[str, Verdict] = Field(default_factory=dict)

# ============================================================
# API Schemas
# ============================================================

class HealthResponse(BaseModel):
    status: str = "OK"
    service: str
    version: str
    transport: str
    timestamp: str
    uptime_seconds: int = 0


class FetchRequest(BaseModel):
    identifiers: list[str] = Field(min_length=1)
    concurrency: Optional[int] = Field(default=None, ge=1, le=32)


class FetchResponse(BaseModel):
    results: dict[str, ExtractedFieldSet]
    counts: dict[str, int] = Field(default_factory=dict)
