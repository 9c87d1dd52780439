"""HTTP existence check for candidate asset URLs."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import List, Optional

import requests
from requests import exceptions as requests_exceptions

_LOGGER = logging.getLogger("TFT.ShopOverlay.Client.Assets")
USER_AGENT = "TFTShopOverlay/assets"


class HttpAssetProbe:
    """Answers "does this URL load?" without ever raising.

    Probes run in worker threads. Each worker thread gets its own ``requests.Session``; an
    injected session is shared, so calls through it are serialised.
    """

    def __init__(self, *, timeout: float = 3.0, session: Optional[requests.Session] = None) -> None:
        self._timeout = timeout
        self._shared_session = session
        self._local = threading.local()
        self._lock = threading.Lock()
        self._owned_sessions: List[requests.Session] = []

    def _thread_session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = USER_AGENT
            self._local.session = session
            with self._lock:
                self._owned_sessions.append(session)
        return session

    def check(self, url: str) -> bool:
        shared = self._shared_session
        if shared is not None:
            with self._lock:
                return self._check_with(shared, url)
        return self._check_with(self._thread_session(), url)

    def _check_with(self, session: requests.Session, url: str) -> bool:
        try:
            response = session.head(url, timeout=self._timeout, allow_redirects=True)
            try:
                if response.status_code == 405:
                    response.close()
                    response = session.get(url, timeout=self._timeout, stream=True)
                return 200 <= response.status_code < 300
            finally:
                response.close()
        except requests_exceptions.RequestException as exc:
            _LOGGER.debug("Asset probe failed for %s: %s", url, exc)
            return False

    async def __call__(self, url: str) -> bool:
        return await asyncio.to_thread(self.check, url)

    def close(self) -> None:
        with self._lock:
            sessions = self._owned_sessions
            self._owned_sessions = []
        self._local = threading.local()
        for session in sessions:
            session.close()
