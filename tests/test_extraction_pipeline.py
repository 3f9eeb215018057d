"""Tests for product page extraction."""
import pytest
from bs4 import BeautifulSoup

from extraction_pipeline import (
    CandidatePairs, DocumentExtractor, classify_label, clean_page_title,
    clean_value, extract_from_embedded, extract_from_pairs,
    harvest_candidate_pairs,
)
from models import ExtractedFieldSet, FetchedDocument, FetchStatus, merge_keeping_first
from normalizer import NON_WELDABLE_RATING
from transport import parse_embedded_product

from conftest import KNOWN_ID, TABLE_PAGE, embedded_page, product_url


def _document(html: str, status_code: int = 200) -> FetchedDocument:
    return FetchedDocument(
        url=product_url(KNOWN_ID), status_code=status_code, html=html,
        embedded_product=parse_embedded_product(html),
    )


class TestClassifyLabel:
    """Tests for the ordered label rules."""

    @pytest.mark.parametrize("label,expected", [
        ("Gewicht", "weight"),
        ("Net weight", "weight"),
        ("Abmessungen", "dimensions"),
        ("Materialklassifizierung", "material_classification"),
        ("Werkstoff", "material"),
        ("Weitere Artikelnummer", "secondary_part_number"),
        ("Additional material number", "secondary_part_number"),
        ("Statistische Warennummer", "statistical_code"),
        ("Ursprungsland", "origin_country"),
        ("Country of origin", "origin_country"),
        ("Lagerbestand", "availability"),
        ("Produktname", "title"),
    ])
    def test_known_labels(self, label, expected):
        assert classify_label(label) == expected

    def test_exclusions(self):
        """Unit labels are not weights; classification labels are not materials."""
        assert classify_label("Gewichtseinheit") is None
        assert classify_label("material classification") == "material_classification"

    def test_unknown_label(self):
        assert classify_label("Farbe") is None
        assert classify_label("") is None


class TestCandidatePairs:
    """Tests for label/value harvesting."""

    def test_first_writer_wins(self):
        pairs = CandidatePairs()
        assert pairs.add("Gewicht", "2 kg", "table")
        assert not pairs.add("gewicht", "3 kg", "text")
        assert pairs.get("Gewicht") == "2 kg"
        assert pairs.source_of("gewicht") == "table"

    def test_placeholders_skipped(self):
        pairs = CandidatePairs()
        assert not pairs.add("Farbe", "-", "table")
        assert not pairs.add("Farbe", "", "table")
        assert "farbe" not in pairs

    def test_harvest_priority(self):
        html = """
        <table><tr><td>Gewicht:</td><td>2 kg</td></tr></table>
        <dl><dt>Werkstoff</dt><dd>Stahl</dd></dl>
        <div class="spec-item">Gewicht: 9 kg</div>
        <div class="product-info">Ursprungsland: DE</div>
        """
        pairs = harvest_candidate_pairs(BeautifulSoup(html, "html.parser"))
        assert pairs.get("gewicht") == "2 kg"
        assert pairs.source_of("werkstoff") == "dl"
        assert pairs.source_of("ursprungsland") == "text"
        assert dict(pairs.items("text")) == {"ursprungsland": "DE"}
        assert len(pairs) == 3

    def test_inline_labels_in_one_block(self):
        html = """
        <div class="spec-list">
          <p><b>Gewicht:</b> 2 kg</p>
          <p><b>Werkstoff:</b> Stahl</p>
          <ul><li><span>Ursprungsland:</span> <span>DE</span></li></ul>
        </div>
        """
        pairs = harvest_candidate_pairs(BeautifulSoup(html, "html.parser"))
        assert pairs.get("gewicht") == "2 kg"
        assert pairs.get("werkstoff") == "Stahl"
        assert pairs.get("ursprungsland") == "DE"

    def test_line_breaks_separate_pairs(self):
        html = '<div class="details">Gewicht: 2 kg<br>Werkstoff: Stahl</div>'
        pairs = harvest_candidate_pairs(BeautifulSoup(html, "html.parser"))
        assert pairs.get("gewicht") == "2 kg"
        assert pairs.get("werkstoff") == "Stahl"


class TestExtractionPaths:
    """Tests for the individual extraction paths."""

    def test_embedded_object(self):
        product = {
            "name": "Lagerbuchse komplett",
            "description": "<p>Buchse aus Stahl</p>",
            "url": "/de/p/A2V00001234567",
            "localizations": {"technicalSpecifications": [
                {"key": "Gewicht", "value": "2,5 kg"},
                {"key": "Abmessungen", "value": "100x50x30"},
            ]},
            "basicMaterial": "Stahl",
            "weight": 9.9,
            "additionalMaterialNumbers": ["BT-4711", "BT-4712"],
        }
        result = extract_from_embedded(product, product_url(KNOWN_ID))
        assert result.title == "Lagerbuchse komplett"
        assert result.description == "Buchse aus Stahl"
        assert result.product_link == "https://www.mymobase.com/de/p/A2V00001234567"
        assert result.weight == "2,5 kg"
        assert result.dimensions == "L×B×H: 100×50×30 mm"
        assert result.material == "Stahl"
        assert result.secondary_part_number == "BT-4711, BT-4712"

    def test_pairs_by_source(self):
        pairs = CandidatePairs()
        pairs.add("Gewicht", "2 kg", "table")
        pairs.add("Werkstoff", "Stahl", "text")
        assert extract_from_pairs(pairs, "table", "dl").material is None
        assert extract_from_pairs(pairs, "text").material == "Stahl"

    def test_clean_value(self):
        assert clean_value({"value": 2.5, "unit": "kg"}) == "2.5 kg"
        assert clean_value("  -  ") is None
        assert clean_value(None) is None

    def test_clean_page_title(self):
        assert clean_page_title("Lagerbuchse | MoBase") == "Lagerbuchse"
        assert clean_page_title("Seite | Siemens Mobility") == "Seite"
        assert clean_page_title("404 Not Found") is None


class TestMergeKeepingFirst:

    def test_never_overwrites(self):
        first = ExtractedFieldSet(identifier=KNOWN_ID, title="A")
        second = ExtractedFieldSet(title="B", weight="1 kg")
        merged = merge_keeping_first(first, second)
        assert merged.title == "A"
        assert merged.weight == "1 kg"
        assert merged.identifier == KNOWN_ID

    def test_inputs_untouched(self):
        first = ExtractedFieldSet()
        merge_keeping_first(first, ExtractedFieldSet(title="B"))
        assert first.title is None


class TestDocumentExtractor:
    """Tests for the full extraction cascade."""

    def setup_method(self):
        self.extractor = DocumentExtractor()

    def test_table_page(self):
        result = self.extractor.extract(_document(TABLE_PAGE), KNOWN_ID)
        assert result.status == FetchStatus.SUCCEEDED
        assert result.identifier == KNOWN_ID
        assert result.title == "Lagerbuchse"
        assert result.secondary_part_number == "BT-4711"
        assert result.weight == "2,5 kg"
        assert result.dimensions == "L×B×H: 100×50×30 mm"
        assert result.material == "Stahl"
        assert result.material_rating == NON_WELDABLE_RATING
        assert result.origin_country == "DE"

    def test_embedded_values_win_over_tables(self):
        """A title from the embedded object survives a conflicting table label."""
        body = "<table><tr><td>Produktname</td><td>Anderer Titel</td></tr>" \
               "<tr><td>Werkstoff</td><td>Messing</td></tr></table>"
        html = embedded_page({"name": "Lagerbuchse komplett"}, body=body)
        result = self.extractor.extract(_document(html), KNOWN_ID)
        assert result.title == "Lagerbuchse komplett"
        assert result.material == "Messing"

    def test_text_blocks_fill_gaps(self):
        html = '<html><body><div class="product-info">Gewicht: 1,2 kg</div></body></html>'
        result = self.extractor.extract(_document(html), KNOWN_ID)
        assert result.weight == "1,2 kg"
        assert result.status == FetchStatus.SUCCEEDED

    def test_inline_labelled_block(self):
        html = ('<html><body><div class="product-info">'
                '<p><b>Gewicht:</b> 2 kg</p><p><b>Werkstoff:</b> Stahl</p>'
                '</div></body></html>')
        result = self.extractor.extract(_document(html), KNOWN_ID)
        assert result.weight == "2 kg"
        assert result.material == "Stahl"

    def test_title_only_is_partial(self):
        html = "<html><head><title>Dichtring | MoBase</title></head><body><p>Keine Daten</p></body></html>"
        result = self.extractor.extract(_document(html), KNOWN_ID)
        assert result.status == FetchStatus.PARTIAL
        assert result.title == "Dichtring"
        assert result.weight is None

    def test_not_found_title_ignored(self):
        html = "<html><head><title>404 Not Found</title></head><body></body></html>"
        result = self.extractor.extract(_document(html), KNOWN_ID)
        assert result.title is None
        assert result.status == FetchStatus.PARTIAL

    def test_http_error_is_failure(self):
        result = self.extractor.extract(_document("", status_code=404), KNOWN_ID)
        assert result.status == FetchStatus.FAILED
        assert result.failure_reason == "HTTP 404"
        assert result.title is None
