"""
Pytest fixtures shared by the reconciliation tests: canned product pages,
an in-memory transport serving them, and inventory workbooks.
"""
import json
from io import BytesIO

import pytest
from openpyxl import Workbook

from fetch_orchestrator import DEFAULT_BASE_URL
from transport import InMemoryTransport

KNOWN_ID = "A2V00001234567"
MISSING_ID = "A2V00009999999"

TABLE_PAGE = """
<html>
<head><title>Lagerbuchse | MoBase</title></head>
<body>
  <h1>Lagerbuchse</h1>
  <table>
    <tr><th>Weitere Artikelnummer</th><td>BT-4711</td></tr>
    <tr><td>Gewicht</td><td>2,5 kg</td></tr>
    <tr><td>Abmessung</td><td>100 x 50 x 30 mm</td></tr>
    <tr><td>Werkstoff</td><td>Stahl</td></tr>
    <tr><td>Materialklassifizierung</td><td>nicht schweiß-, guss-, klebe-, schmiedbar</td></tr>
    <tr><td>Ursprungsland</td><td>DE</td></tr>
    <tr><td>Farbe</td><td>-</td></tr>
  </table>
</body>
</html>
"""


def embedded_page(product: dict, title: str = "Produkt | MoBase", body: str = "") -> str:
    """A product page carrying the product object in window.initialData."""
    payload = json.dumps({"product/dataProduct": {"data": {"product": product}}})
    return (
        f"<html><head><title>{title}</title></head><body>{body}"
        f"<script>window.initialData = {payload};</script></body></html>"
    )


def product_url(identifier: str) -> str:
    return DEFAULT_BASE_URL + identifier


HEADER = {
    "C": "Bezeichnung", "E": "Herstellernummer", "N": "Materialklassifizierung",
    "P": "Werkstoff", "S": "Gewicht", "U": "Länge", "V": "Breite",
    "W": "Höhe", "Z": "A2V-Nummer",
}


def build_workbook(rows: list[dict], header_row: int = 3, extra_sheets: dict | None = None) -> bytes:
    """Workbook bytes with a header at `header_row` and one record per dict."""
    wb = Workbook()
    ws = wb.active
    ws.title = "DB"
    ws["A1"] = "Produktliste"
    for col, label in HEADER.items():
        ws[f"{col}{header_row}"] = label
    for offset, row in enumerate(rows):
        for col, value in row.items():
            ws[f"{col}{header_row + 1 + offset}"] = value
    for name, cells in (extra_sheets or {}).items():
        extra = wb.create_sheet(name)
        for ref, value in cells.items():
            extra[ref] = value
    out = BytesIO()
    wb.save(out)
    return out.getvalue()


MATCHING_ROW = {
    "Z": KNOWN_ID, "E": "BT 4711", "C": "Lagerbuchse", "S": 2.5,
    "U": 100, "V": 50, "W": 30, "P": "Stahl", "N": "OHNE/N/N/N/N",
}


@pytest.fixture
def page_transport():
    """Transport serving the table page for KNOWN_ID; everything else is a 404."""
    return InMemoryTransport({product_url(KNOWN_ID): TABLE_PAGE})


@pytest.fixture
def inventory_workbook():
    """Three records: a known A2V id, a non-A2V id, an A2V id without page."""
    return build_workbook([
        MATCHING_ROW,
        {"Z": "XYZ-1", "C": "Sonstiges"},
        {"Z": MISSING_ID, "C": "Unbekannt", "S": "1 kg"},
    ])
