"""
Product Reconciliation System — Product Page Extraction Pipeline

Handles the product page shapes served for a vendor identifier:
1. Embedded product object (window.initialData, the richest source)
2. Technical data tables and definition lists
3. Loose "Label: value" text inside spec/detail/info blocks
4. Page metadata (document title, headline, explicitly tagged elements)

Each path yields a partial field set. Paths run in that order and are
combined with merge_keeping_first, so a value found by an earlier path is
never replaced by a later one.
"""
from __future__ import annotations
import logging
import re
from typing import Any, Callable, Iterator, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from models import (
    ExtractedFieldSet, FetchedDocument, FetchStatus, merge_keeping_first,
)
from normalizer import classify_material_rating, format_number, render_dimensions

logger = logging.getLogger(__name__)

# ============================================================
# Label → Field Rules
# ============================================================

# Evaluated top to bottom; the first rule whose keyword occurs in the
# lower-cased label (and none of whose exclusions do) decides the field.
FIELD_RULES: list[tuple[str, tuple[str, ...], tuple[str, ...]]] = [
    ('dimensions', ('abmessung', 'größe', 'dimension'), ()),
    ('weight', ('gewicht', 'weight'), ('einheit', 'unit')),
    ('material_classification',
     ('materialklassifizierung', 'material classification'), ()),
    ('material', ('werkstoff', 'material'),
     ('klassifizierung', 'classification', 'nummer', 'number')),
    ('secondary_part_number',
     ('weitere artikelnummer', 'additional article number',
      'additional material number', 'part number'), ()),
    ('statistical_code', ('statistische warennummer', 'statistical', 'import'), ()),
    ('origin_country', ('ursprungsland', 'origin'), ()),
    ('availability', ('verfügbar', 'stock', 'lager'), ()),
    ('title', ('produkttitel', 'produktname', 'product title', 'product name'), ()),
]


def classify_label(label: str, rules=FIELD_RULES) -> Optional[str]:
    key = (label or '').strip().lower()
    if not key:
        return None
    for field_name, keywords, excluded in rules:
        if any(k in key for k in keywords) and not any(x in key for x in excluded):
            return field_name
    return None

# ============================================================
# Value Cleaning
# ============================================================

PLACEHOLDER_VALUES = {'', '-', '–', 'n/a'}


def clean_value(raw: Any) -> Optional[str]:
    """Flatten an embedded-object or DOM value to display text, None if empty."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return format_number(raw)
    if isinstance(raw, dict):
        value = clean_value(raw.get('value'))
        unit = clean_value(raw.get('unit'))
        if value is None:
            return None
        return f"{value} {unit}" if unit else value
    if isinstance(raw, (list, tuple)):
        parts = [p for p in (clean_value(item) for item in raw) if p]
        return ', '.join(parts) if parts else None
    text = str(raw)
    if '<' in text and '>' in text:
        text = BeautifulSoup(text, 'html.parser').get_text(' ')
    text = re.sub(r'\s+', ' ', text).strip()
    if text.lower() in PLACEHOLDER_VALUES:
        return None
    return text


def _assign(values: dict[str, str], field_name: Optional[str], raw: Any) -> bool:
    """Set a field once per path. Dimensions are stored in canonical form."""
    if field_name is None or field_name in values:
        return False
    value = clean_value(raw)
    if value is None:
        return False
    if field_name == 'dimensions':
        value = render_dimensions(value)
    values[field_name] = value
    return True

# ============================================================
# Candidate Pair Harvesting
# ============================================================

class CandidatePairs:
    """
    Lower-cased label → first-seen value, tagged with where it was found
    ('table', 'dl', 'text'). A label is stored at most once.
    """

    def __init__(self):
        self._pairs: dict[str, tuple[str, str]] = {}

    def add(self, label: str, value: str, source: str) -> bool:
        key = re.sub(r'\s+', ' ', label or '').strip().rstrip(':').strip().lower()
        val = (value or '').strip()
        if not key or val in PLACEHOLDER_VALUES or key in self._pairs:
            return False
        self._pairs[key] = (val, source)
        return True

    def get(self, label: str) -> Optional[str]:
        entry = self._pairs.get(label.lower())
        return entry[0] if entry else None

    def source_of(self, label: str) -> Optional[str]:
        entry = self._pairs.get(label.lower())
        return entry[1] if entry else None

    def items(self, *sources: str) -> Iterator[tuple[str, str]]:
        for label, (value, source) in self._pairs.items():
            if not sources or source in sources:
                yield label, value

    def __len__(self) -> int:
        return len(self._pairs)

    def __contains__(self, label: str) -> bool:
        return label.lower() in self._pairs


SPEC_BLOCK_SELECTOR = '[class*="spec"], [class*="detail"], [class*="info"], [data-spec]'
MAX_LABEL_LENGTH = 80

# Elements that start a new line in rendered text
BLOCK_TAGS = frozenset({
    'p', 'div', 'li', 'br', 'tr', 'dt', 'dd', 'section',
    'h1', 'h2', 'h3', 'h4', 'h5', 'h6',
})


def _add_text_pairs(pairs: CandidatePairs, text: str) -> None:
    for line in text.splitlines():
        label, sep, value = line.partition(':')
        if sep and 0 < len(label.strip()) <= MAX_LABEL_LENGTH:
            pairs.add(label, value, 'text')


def _text_lines(element: Tag) -> list[str]:
    """
    Rendered lines of a block, one per block-level element.

    Inline markup stays on its line, so `<b>Gewicht:</b> 2 kg` reads as one
    pair. A line holding several colons is split back into its text nodes.
    """
    lines: list[list[str]] = [[]]

    def walk(node: Tag) -> None:
        for child in node.children:
            if isinstance(child, Tag):
                block = child.name in BLOCK_TAGS
                if block:
                    lines.append([])
                walk(child)
                if block:
                    lines.append([])
            elif isinstance(child, NavigableString) and not isinstance(child, Comment):
                if child.strip():
                    lines[-1].append(child.strip())

    walk(element)
    rendered = []
    for fragments in lines:
        joined = ' '.join(fragments)
        if joined.count(':') > 1:
            rendered.extend(fragments)
        elif joined:
            rendered.append(joined)
    return rendered


def harvest_candidate_pairs(soup: BeautifulSoup) -> CandidatePairs:
    """Scan tables, then definition lists, then colon-delimited text blocks."""
    pairs = CandidatePairs()

    for row in soup.find_all('tr'):
        cells = row.find_all(['td', 'th'])
        if len(cells) >= 2:
            pairs.add(cells[0].get_text(' ', strip=True),
                      cells[1].get_text(' ', strip=True), 'table')

    for dl in soup.find_all('dl'):
        for dt, dd in zip(dl.find_all('dt'), dl.find_all('dd')):
            pairs.add(dt.get_text(' ', strip=True), dd.get_text(' ', strip=True), 'dl')

    for element in soup.select(SPEC_BLOCK_SELECTOR):
        flat = element.get_text(' ', strip=True)
        if flat.count(':') == 1:
            _add_text_pairs(pairs, flat)
        else:
            _add_text_pairs(pairs, '\n'.join(_text_lines(element)))

    return pairs

# ============================================================
# Extraction Paths
# ============================================================

# Direct product properties, consulted after the technical specifications
DIRECT_PROPERTIES: list[tuple[str, str]] = [
    ('weight', 'weight'),
    ('dimensions', 'dimensions'),
    ('basicMaterial', 'material'),
    ('materialClassification', 'material_classification'),
    ('importCodeNumber', 'statistical_code'),
    ('additionalMaterialNumbers', 'secondary_part_number'),
]


def extract_from_embedded(product: dict[str, Any], page_url: str = '') -> ExtractedFieldSet:
    values: dict[str, str] = {}
    _assign(values, 'title', product.get('name'))
    _assign(values, 'description', product.get('description'))
    link = clean_value(product.get('url'))
    if link:
        values['product_link'] = urljoin(page_url, link)

    localizations = product.get('localizations') or {}
    for spec in localizations.get('technicalSpecifications') or []:
        if not isinstance(spec, dict):
            continue
        field_name = classify_label(str(spec.get('key') or ''))
        if _assign(values, field_name, spec.get('value')):
            logger.debug("embedded spec %r -> %s", spec.get('key'), field_name)

    for prop, field_name in DIRECT_PROPERTIES:
        _assign(values, field_name, product.get(prop))

    return ExtractedFieldSet(**values)


def extract_from_pairs(pairs: CandidatePairs, *sources: str) -> ExtractedFieldSet:
    values: dict[str, str] = {}
    for label, value in pairs.items(*sources):
        field_name = classify_label(label)
        if field_name is None:
            logger.debug("unmapped label %r", label)
            continue
        _assign(values, field_name, value)
    return ExtractedFieldSet(**values)


PAGE_SELECTORS: dict[str, list[str]] = {
    'title': ['h1', '.product-title', '.title', '[data-testid="product-title"]'],
    'description': ['.description', '.product-description'],
    'weight': ['[data-testid="weight"]', '.weight'],
    'dimensions': ['[data-testid="dimensions"]', '.dimensions'],
    'material': ['[data-testid="material"]', '.material'],
    'availability': ['.availability', '.stock', '[data-testid="availability"]'],
}

TITLE_SUFFIXES = (' | MoBase', ' | Siemens Mobility')


def clean_page_title(title: Optional[str]) -> Optional[str]:
    if not title:
        return None
    if '404' in title or 'not found' in title.lower():
        return None
    for suffix in TITLE_SUFFIXES:
        title = title.replace(suffix, '')
    return clean_value(title)


def extract_from_page(soup: BeautifulSoup) -> ExtractedFieldSet:
    values: dict[str, str] = {}
    for field_name, selectors in PAGE_SELECTORS.items():
        for selector in selectors:
            element = soup.select_one(selector)
            if element is not None and _assign(values, field_name, element.get_text(' ', strip=True)):
                break
    if 'title' not in values and soup.title is not None:
        title = clean_page_title(soup.title.get_text())
        if title:
            values['title'] = title
    return ExtractedFieldSet(**values)

# ============================================================
# Main Extractor
# ============================================================

class DocumentExtractor:
    """Runs the extraction paths over one fetched page, best source first."""

    def extract(self, document: FetchedDocument, identifier: str = '') -> ExtractedFieldSet:
        result = ExtractedFieldSet(identifier=identifier, source_url=document.url)

        if not document.ok:
            logger.info("%s: no usable content (HTTP %s)", identifier, document.status_code)
            return result.model_copy(update={
                'status': FetchStatus.FAILED,
                'failure_reason': f"HTTP {document.status_code}",
            })

        soup_cache: list[BeautifulSoup] = []
        pairs_cache: list[CandidatePairs] = []

        def soup() -> BeautifulSoup:
            if not soup_cache:
                soup_cache.append(BeautifulSoup(document.html or '', 'html.parser'))
            return soup_cache[0]

        def pairs() -> CandidatePairs:
            if not pairs_cache:
                pairs_cache.append(harvest_candidate_pairs(soup()))
            return pairs_cache[0]

        paths: list[tuple[str, Callable[[], Optional[ExtractedFieldSet]]]] = [
            ('embedded', lambda: extract_from_embedded(document.embedded_product, document.url)
             if document.embedded_product else None),
            ('table', lambda: extract_from_pairs(pairs(), 'table', 'dl')),
            ('text', lambda: extract_from_pairs(pairs(), 'text')),
            ('page', lambda: extract_from_page(soup())),
        ]

        for name, run in paths:
            if result.is_complete:
                logger.debug("%s: complete before %s path", identifier, name)
                break
            partial = run()
            if partial is None:
                continue
            before = set(result.missing_fields)
            result = merge_keeping_first(result, partial)
            filled = before - set(result.missing_fields)
            if filled:
                logger.debug("%s: %s path filled %s", identifier, name, sorted(filled))

        if result.material_rating is None:
            rating = classify_material_rating(result.material_classification)
            if rating:
                result = result.model_copy(update={'material_rating': rating})

        status = FetchStatus.SUCCEEDED if result.has_substance else FetchStatus.PARTIAL
        return result.model_copy(update={'status': status})
