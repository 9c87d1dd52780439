from __future__ import annotations

import asyncio

import pytest
import requests

from shop_plugin import catalog_remote
from shop_plugin.catalog_remote import CatalogFetchError, CatalogRemote, request_definition


class _FakeResponse:
    def __init__(self, payload=None, status_code=200, json_error=None):
        self._payload = payload
        self.status_code = status_code
        self._json_error = json_error
        self.closed = False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._json_error is not None:
            raise self._json_error
        return self._payload

    def close(self):
        self.closed = True


class _FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []
        self.closed = False

    def get(self, url, timeout=None):
        self.requests.append((url, timeout))
        if self.error is not None:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


def test_request_definition_returns_payload():
    response = _FakeResponse({"setData": []})
    session = _FakeSession(response)

    payload = request_definition("https://example.test/en_us.json", timeout=2.5, session=session)

    assert payload == {"setData": []}
    assert session.requests == [("https://example.test/en_us.json", 2.5)]
    assert response.closed
    assert not session.closed


@pytest.mark.parametrize(
    "session",
    [
        _FakeSession(error=requests.ConnectionError("offline")),
        _FakeSession(_FakeResponse(status_code=503)),
        _FakeSession(_FakeResponse(json_error=ValueError("bad json"))),
        _FakeSession(_FakeResponse(payload=[1, 2, 3])),
    ],
)
def test_request_definition_wraps_failures(session):
    with pytest.raises(CatalogFetchError):
        request_definition("https://example.test/en_us.json", timeout=1, session=session)


def test_request_definition_closes_owned_session(monkeypatch):
    session = _FakeSession(_FakeResponse({"ok": True}))
    monkeypatch.setattr(catalog_remote, "create_http_session", lambda *args, **kwargs: session)

    assert request_definition("https://example.test", timeout=1) == {"ok": True}
    assert session.closed


def test_catalog_remote_fetches_off_loop_and_reuses_session(monkeypatch):
    created = []

    def fake_session(*args, **kwargs):
        session = _FakeSession(_FakeResponse({"sets": {}}))
        created.append(session)
        return session

    monkeypatch.setattr(catalog_remote, "create_http_session", fake_session)
    remote = CatalogRemote("https://example.test/catalog.json", timeout=3)

    async def scenario():
        first = await remote.fetch_content_set_definition()
        second = await remote.fetch_content_set_definition()
        return first, second

    first, second = asyncio.run(scenario())

    assert first == second == {"sets": {}}
    assert len(created) == 1
    assert len(created[0].requests) == 2
    remote.close()
    assert created[0].closed


def test_create_http_session_sets_headers():
    session = catalog_remote.create_http_session("Agent/1")
    try:
        assert session.headers["User-Agent"] == "Agent/1"
        assert session.headers["Accept"] == "application/json"
    finally:
        session.close()
