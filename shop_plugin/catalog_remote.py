"""HTTP access to the published TFT content-set definition."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import requests
from requests import exceptions as requests_exceptions

from shop_plugin.settings import DEFAULT_CATALOG_URL

_LOGGER = logging.getLogger("TFT.ShopOverlay.Catalog")
USER_AGENT = "TFTShopOverlay/catalog"


class CatalogFetchError(RuntimeError):
    """Remote catalog could not be fetched or decoded."""


def create_http_session(user_agent: str = USER_AGENT) -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})
    return session


def request_definition(url: str, *, timeout: float, session: Optional[requests.Session] = None) -> Dict[str, Any]:
    """Blocking fetch of the content-set document; every failure surfaces as CatalogFetchError."""

    owns_session = session is None
    http = session or create_http_session()
    response: Optional[requests.Response] = None
    try:
        try:
            response = http.get(url, timeout=timeout)
            response.raise_for_status()
        except requests_exceptions.RequestException as exc:
            raise CatalogFetchError(f"Catalog request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise CatalogFetchError(f"Unable to parse catalog response: {exc}") from exc
        if not isinstance(payload, dict):
            raise CatalogFetchError(f"Catalog response must be an object, got {type(payload).__name__}")
        return payload
    finally:
        if response is not None:
            response.close()
        if owns_session:
            http.close()


class CatalogRemote:
    """Async facade that runs the blocking request off the event loop."""

    def __init__(self, url: str = DEFAULT_CATALOG_URL, *, timeout: float = 5.0) -> None:
        self._url = url
        self._timeout = timeout
        self._session: Optional[requests.Session] = None

    @property
    def url(self) -> str:
        return self._url

    async def fetch_content_set_definition(self) -> Dict[str, Any]:
        if self._session is None:
            self._session = create_http_session()
        _LOGGER.debug("Fetching content-set definition from %s", self._url)
        return await asyncio.to_thread(request_definition, self._url, timeout=self._timeout, session=self._session)

    def close(self) -> None:
        session = self._session
        self._session = None
        if session is not None:
            session.close()
