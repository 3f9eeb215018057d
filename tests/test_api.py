"""Tests for the HTTP API."""
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

import api
from config import Settings

from conftest import KNOWN_ID, MISSING_ID

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@pytest.fixture
def client(page_transport):
    api.install_transport(page_transport)
    with TestClient(api.app) as c:
        yield c
    api.install_transport(None)


class TestHealth:

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "OK"
        assert body["service"] == api.SERVICE_NAME
        assert body["transport"] == "ready"
        assert "X-Response-Time-Ms" in resp.headers


class TestProcessExcel:
    """Tests for the workbook upload endpoint."""

    def test_processed_workbook_returned(self, client, inventory_workbook):
        resp = client.post("/api/process-excel",
                           files={"file": ("db.xlsx", inventory_workbook, XLSX)})
        assert resp.status_code == 200
        assert resp.headers["content-type"] == XLSX
        assert "DB_Produktvergleich_verarbeitet.xlsx" in resp.headers["content-disposition"]
        assert resp.headers["X-Batch-Records"] == "3"
        assert resp.headers["X-Batch-Succeeded"] == "1"
        ws = load_workbook(BytesIO(resp.content))["DB"]
        assert ws["Z6"].value == "identisch"

    def test_empty_upload(self, client):
        resp = client.post("/api/process-excel", files={"file": ("db.xlsx", b"", XLSX)})
        assert resp.status_code == 400

    def test_not_a_workbook(self, client):
        resp = client.post("/api/process-excel", files={"file": ("db.xlsx", b"hello", XLSX)})
        assert resp.status_code == 400
        assert "Cannot read workbook" in resp.json()["detail"]

    def test_too_large(self, client, inventory_workbook, monkeypatch):
        monkeypatch.setattr(api._state, "settings", Settings(max_upload_size_mb=0))
        resp = client.post("/api/process-excel",
                           files={"file": ("db.xlsx", inventory_workbook, XLSX)})
        assert resp.status_code == 413


class TestFetch:

    def test_field_sets_returned(self, client):
        resp = client.post("/api/fetch", json={
            "identifiers": [KNOWN_ID, KNOWN_ID, MISSING_ID], "concurrency": 2,
        })
        assert resp.status_code == 200
        body = resp.json()
        assert set(body["results"]) == {KNOWN_ID, MISSING_ID}
        assert body["results"][KNOWN_ID]["status"] == "succeeded"
        assert body["results"][KNOWN_ID]["weight"] == "2,5 kg"
        assert body["results"][MISSING_ID]["status"] == "failed"
        assert body["counts"]["total"] == 2

    def test_empty_identifier_list_rejected(self, client):
        resp = client.post("/api/fetch", json={"identifiers": []})
        assert resp.status_code == 422
