"""Tests for the error body contract and server-side failure logging."""

import logging

from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

import main


class TestErrorBodies:
    def test_unknown_route_is_not_found(self, client):
        response = client.get("/no-such-route")
        assert response.status_code == 404
        assert response.json()["error_type"] == "NotFoundError"

    def test_wrong_role_is_authorization_error(self, client, tourist):
        headers, _ = tourist
        response = client.post("/products", json={"name": "Map", "price": 1}, headers=headers)
        assert response.status_code == 403
        assert response.json()["error_type"] == "AuthorizationError"


class TestServerFailures:
    def test_store_failure_logged_with_traceback(self, client, seller, monkeypatch, caplog):
        headers, _ = seller

        def broken_insert(collection_name, data):
            raise PyMongoError("connection reset")

        monkeypatch.setattr(main, "create_document", broken_insert)
        with caplog.at_level(logging.ERROR, logger="main"):
            response = client.post("/products", json={"name": "Map", "price": 1}, headers=headers)

        assert response.status_code == 500
        assert response.json() == {"error": "Database unavailable", "error_type": "UnexpectedError"}
        records = [r for r in caplog.records if r.name == "main" and r.levelno == logging.ERROR]
        assert records
        assert records[0].exc_info is not None
        assert records[0].exc_info[0] is PyMongoError

    def test_unhandled_exception_uses_error_body(self, mock_db, guide, monkeypatch, caplog):
        def broken_public(doc):
            raise RuntimeError("boom")

        monkeypatch.setattr(main, "public", broken_public)
        client = TestClient(main.app, raise_server_exceptions=False)
        with caplog.at_level(logging.ERROR, logger="main"):
            response = client.get("/tour-guides")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error", "error_type": "UnexpectedError"}
        assert any(r.exc_info and r.exc_info[0] is RuntimeError for r in caplog.records)
