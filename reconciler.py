"""
Product Reconciliation System — Field Reconciliation

Compares one inventory record against the field set extracted for its
identifier. Every comparator is pure and returns a Verdict whose comment is
written verbatim into the workbook's comparison row.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Optional

from models import (
    ExtractedFieldSet, FetchStatus, InventoryRecord, RecordReconciliation, Verdict,
)
from normalizer import (
    DimensionTriple, classify_material_rating, format_number,
    normalize_identifier, normalize_mass, parse_dimension_triple,
    parse_numeric_token,
)

# ============================================================
# Policy
# ============================================================

@dataclass(frozen=True)
class ReconciliationPolicy:
    """Tunable comparison thresholds."""
    # Percent of the Excel weight; 0 means only float noise is tolerated
    weight_tolerance_pct: float = 0.0
    weight_epsilon: float = 1e-6
    dimension_epsilon: float = 1e-6

    @classmethod
    def from_settings(cls, settings) -> ReconciliationPolicy:
        return cls(
            weight_tolerance_pct=settings.weight_tolerance_pct,
            weight_epsilon=settings.weight_epsilon,
            dimension_epsilon=settings.dimension_epsilon,
        )


DEFAULT_POLICY = ReconciliationPolicy()

# Comparison columns, in workbook order
COMPARED_FIELDS = (
    'external_id', 'manufacturer_part_no', 'title', 'weight',
    'dimensions', 'material', 'material_classification',
)

# ============================================================
# Helpers
# ============================================================

def _is_missing(value: Any) -> bool:
    """None and blank strings are missing; 0 is a real value."""
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _as_text(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return format_number(value)
    return str(value)


def _fold(value: Any) -> str:
    return re.sub(r'\s+', ' ', _as_text(value).strip().lower())


def _missing_verdict(excel_missing: bool, web_missing: bool,
                     web_label: str = 'Web fehlt') -> Optional[Verdict]:
    if excel_missing and web_missing:
        return Verdict.inconclusive('Beide fehlen')
    if excel_missing:
        return Verdict.inconclusive('Excel fehlt')
    if web_missing:
        return Verdict.inconclusive(web_label)
    return None

# ============================================================
# Comparators
# ============================================================

def compare_text(excel: Any, web: Any) -> Verdict:
    missing = _missing_verdict(_is_missing(excel), _is_missing(web))
    if missing:
        return missing
    if _fold(excel) == _fold(web):
        return Verdict.match('identisch')
    return Verdict.mismatch('abweichend')


def compare_part_number(excel: Any, web: Any) -> Verdict:
    missing = _missing_verdict(_is_missing(excel), _is_missing(web))
    if missing:
        return missing
    if normalize_identifier(_as_text(excel)) == normalize_identifier(_as_text(web)):
        return Verdict.match('identisch (normalisiert)')
    return Verdict.mismatch(f"abweichend: Excel {_as_text(excel)} vs. Web {_as_text(web)}")


def compare_weight(excel: Any, web: Any, tolerance_pct: float = 0.0,
                   epsilon: float = 1e-6) -> Verdict:
    """
    Both sides normalized to kg. Accepted when the absolute difference is
    within tolerance_pct of the Excel value (floored at epsilon). The comment
    always carries the signed relative delta.
    """
    ex_kg = normalize_mass(excel)
    web_kg = normalize_mass(web)
    missing = _missing_verdict(ex_kg is None, web_kg is None, 'Web fehlt/unklar')
    if missing:
        return missing

    diff_pct = (web_kg - ex_kg) / max(1e-9, abs(ex_kg)) * 100
    allowed = max(abs(ex_kg) * tolerance_pct / 100.0, epsilon)
    if abs(web_kg - ex_kg) <= allowed:
        return Verdict.match(f"Δ {diff_pct:.1f}%")
    return Verdict.mismatch(
        f"Excel {ex_kg:.3f} kg vs. Web {web_kg:.3f} kg ({diff_pct:.1f}%)")


_AXIS_LABELS = ('L', 'B', 'H')


def _render_triple(triple: DimensionTriple) -> str:
    return '×'.join(format_number(v) for v in triple)


def compare_dimensions(excel_length: Any, excel_width: Any, excel_height: Any,
                       web_text: Any, epsilon: float = 1e-6) -> Verdict:
    """
    Axis-wise comparison in mm. Only axes present on both sides are compared,
    and one differing axis fails the whole triple.
    """
    excel = DimensionTriple(
        parse_numeric_token(excel_length),
        parse_numeric_token(excel_width),
        parse_numeric_token(excel_height),
    )
    web = parse_dimension_triple(web_text)
    missing = _missing_verdict(not excel.any_present, not web.any_present,
                               'Web fehlt/unklar')
    if missing:
        return missing

    shared = [(label, e, w) for label, e, w in zip(_AXIS_LABELS, excel, web)
              if e is not None and w is not None]
    if not shared:
        return Verdict.inconclusive('keine vergleichbaren Achsen')

    if all(abs(e - w) <= epsilon for _, e, w in shared):
        axes = '×'.join(label for label, _, _ in shared)
        return Verdict.match(f"{axes} identisch (mm)")
    return Verdict.mismatch(
        f"Excel {_render_triple(excel)} mm vs. Web {_render_triple(web)} mm")


def compare_material_classification(excel_code: Any, web_text: Any) -> Verdict:
    mapped = classify_material_rating(web_text)
    excel_missing = _is_missing(excel_code)
    if excel_missing and mapped is None:
        return Verdict.inconclusive('Beide fehlen')
    if excel_missing:
        return Verdict.inconclusive('Excel fehlt')
    if mapped is None:
        if _is_missing(web_text):
            return Verdict.inconclusive('Web fehlt')
        return Verdict.inconclusive('Web nicht interpretierbar')
    if _as_text(excel_code).strip().upper() == mapped:
        return Verdict.match('identisch')
    return Verdict.mismatch(f"Excel {_as_text(excel_code)} vs. Web {mapped}")

# ============================================================
# Record Reconciliation
# ============================================================

def reconcile_record(
    record: InventoryRecord,
    field_set: Optional[ExtractedFieldSet],
    policy: ReconciliationPolicy = DEFAULT_POLICY,
) -> RecordReconciliation:
    """
    Per-field verdicts for one record. A field set that never yielded page
    content (failed / not attempted) counts as missing on every field.
    """
    usable = field_set is not None and field_set.is_usable

    def web(name: str) -> Optional[str]:
        return getattr(field_set, name) if usable else None

    verdicts = {
        'external_id': compare_text(record.external_id, web('identifier')),
        'manufacturer_part_no': compare_part_number(
            record.manufacturer_part_no, web('secondary_part_number')),
        'title': compare_text(record.title, web('title')),
        'weight': compare_weight(
            record.weight_raw, web('weight'),
            tolerance_pct=policy.weight_tolerance_pct,
            epsilon=policy.weight_epsilon),
        'dimensions': compare_dimensions(
            record.length_raw, record.width_raw, record.height_raw,
            web('dimensions'), epsilon=policy.dimension_epsilon),
        'material': compare_text(record.material, web('material')),
        'material_classification': compare_material_classification(
            record.material_classification_note, web('material_classification')),
    }

    return RecordReconciliation(
        row_index=record.row_index,
        identifier=record.identifier,
        fetch_status=field_set.status if field_set is not None else FetchStatus.NOT_ATTEMPTED,
        verdicts=verdicts,
    )
