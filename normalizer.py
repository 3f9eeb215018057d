"""
Product Reconciliation System — Value Normalization

Pure, total helpers that turn raw cell and page tokens into canonical
quantities: mass in kilograms, length in millimeters, identifiers without
separators. Unparseable input yields None, never an exception.
"""
from __future__ import annotations
import math
import re
from typing import Any, NamedTuple, Optional

# ============================================================
# Numeric Tokens
# ============================================================

_SIGNED_NUMBER_RE = re.compile(r'-?\d+(?:\.\d+)?')
_WHITESPACE_RE = re.compile(r'\s+')


def _unify_decimal_separator(s: str) -> str:
    """'1.234,5' -> '1234.5', '1,234.5' -> '1234.5', '2,5' -> '2.5'."""
    if ',' in s and '.' in s:
        if s.rfind(',') > s.rfind('.'):
            return s.replace('.', '').replace(',', '.')
        return s.replace(',', '')
    return s.replace(',', '.')


def parse_numeric_token(raw: Any) -> Optional[float]:
    """First signed decimal number in `raw`, comma-decimal aware."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
        return None if math.isnan(value) else value
    s = _unify_decimal_separator(_WHITESPACE_RE.sub('', str(raw)))
    m = _SIGNED_NUMBER_RE.search(s)
    return float(m.group()) if m else None


def format_number(value: Optional[float]) -> str:
    """Compact rendering: 100.0 -> '100', 107.30 -> '107.3'."""
    if value is None:
        return ''
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.6f}".rstrip('0').rstrip('.')

# ============================================================
# Units
# ============================================================

def normalize_mass(raw: Any) -> Optional[float]:
    """Mass in kg. Unit markers are matched most specific first; no marker means kg."""
    num = parse_numeric_token(raw)
    if num is None:
        return None
    if isinstance(raw, (int, float)):
        return num
    s = _WHITESPACE_RE.sub('', str(raw).lower())
    if 'mg' in s:
        return num / 1e6
    if 'kg' in s:
        return num
    if 'g' in s:
        return num / 1000.0
    if 't' in s:
        return num * 1000.0
    return num


def normalize_length(raw: Any) -> Optional[float]:
    """Length in mm. No marker means mm."""
    num = parse_numeric_token(raw)
    if num is None:
        return None
    if isinstance(raw, (int, float)):
        return num
    s = _WHITESPACE_RE.sub('', str(raw).lower())
    if 'mm' in s:
        return num
    if 'cm' in s:
        return num * 10.0
    if 'm' in s:
        return num * 1000.0
    return num

# ============================================================
# Dimensions
# ============================================================

class DimensionTriple(NamedTuple):
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None

    @property
    def any_present(self) -> bool:
        return any(v is not None for v in self)


# Multiplication signs seen on product pages, including fullwidth forms
_TIMES_RE = re.compile(r'[×xX*＊Ｘｘ]')
# A unit counts only when no further letter follows ("30messing" is 30 mm);
# x is the axis separator after _TIMES_RE
_UNIT = r'(mm|cm|m)(?![a-wyzäöüß])'
_DIMENSION_TOKEN_RE = re.compile(r'(\d+(?:\.\d+)?)(?:' + _UNIT + r')?')
_TRAILING_UNIT_RE = re.compile(r'\d(?:\.\d+)?[^\d]*?' + _UNIT + r'\W*$')

DIAMETER_MARKERS = ('Ø', 'ø', '⌀')


def _dimension_values(raw: Any) -> list[float]:
    """
    All length tokens of a dimension text, in mm.

    A unit attached to a token wins; otherwise a unit after the last number
    applies; otherwise millimeters.
    """
    if raw is None:
        return []
    s = _TIMES_RE.sub('x', str(raw)).lower()
    s = _WHITESPACE_RE.sub('', s).replace('，', ',').replace(',', '.')
    trailing = _TRAILING_UNIT_RE.search(s)
    default_unit = trailing.group(1) if trailing else 'mm'
    values = []
    for number, unit in _DIMENSION_TOKEN_RE.findall(s):
        value = normalize_length(number + (unit or default_unit))
        if value is not None:
            values.append(value)
    return values


def parse_dimension_triple(raw: Any) -> DimensionTriple:
    """
    Best-effort positional split into length / width / height (mm).

    '100×50×30 mm' -> (100, 50, 30); 'BT 3x30x107,3x228' -> (3, 30, 107.3).
    Tokens beyond the third are ignored; missing axes stay None.
    """
    values = _dimension_values(raw)[:3]
    return DimensionTriple(*values)


def render_dimensions(raw: Any) -> Optional[str]:
    """Canonical display text for a dimension value found on a page."""
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    nums = [format_number(v) for v in _dimension_values(text)]
    if any(m in text for m in DIAMETER_MARKERS) and len(nums) >= 2:
        return f"Durchmesser×Höhe: {nums[0]}×{nums[1]} mm"
    if len(nums) >= 3:
        return f"L×B×H: {nums[0]}×{nums[1]}×{nums[2]} mm"
    if len(nums) == 2:
        return f"L×B: {nums[0]}×{nums[1]} mm"
    return text

# ============================================================
# Identifiers & Coded Ratings
# ============================================================

_ID_NOISE_RE = re.compile(r'[\s-]+')


def normalize_identifier(raw: Any) -> str:
    if raw is None:
        return ''
    return _ID_NOISE_RE.sub('', str(raw).upper())


NON_WELDABLE_RATING = 'OHNE/N/N/N/N'

_NEGATIONS = ('nicht', 'not ', 'non-')
_WELD_MARKERS = ('schweiss', 'weld')


def classify_material_rating(text: Any) -> Optional[str]:
    """Coded rating for the 'not weldable / castable / bondable / forgeable' phrase."""
    if text is None:
        return None
    t = str(text).lower().replace('ß', 'ss')
    if any(n in t for n in _NEGATIONS) and any(w in t for w in _WELD_MARKERS):
        return NON_WELDABLE_RATING
    return None
