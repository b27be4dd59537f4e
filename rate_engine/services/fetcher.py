"""Raw-content fetchers for remote spreadsheets and uploaded pricing files."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

import requests

from rate_engine.core.config import settings
from rate_engine.core.exceptions import SourceUnavailable

logger = logging.getLogger('rate_engine.fetcher')

GOOGLE_SHEETS_ID = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")


def to_workbook_export_url(url: str) -> str:
    """Turn a Google Sheets URL into its full-workbook xlsx export URL."""
    match = GOOGLE_SHEETS_ID.search(url)
    if not match:
        return url
    return f"https://docs.google.com/spreadsheets/d/{match.group(1)}/export?format=xlsx"


class ContentFetcher:
    """Base fetcher interface."""

    def fetch_bytes(self, location: str) -> bytes:
        raise NotImplementedError


class HttpContentFetcher(ContentFetcher):
    """Fetch over HTTP(S), falling back to the local filesystem for plain paths."""

    def __init__(self, timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.timeout = timeout if timeout is not None else settings.HTTP_FETCH_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def fetch_bytes(self, location: str) -> bytes:
        if not location:
            raise SourceUnavailable(str(location), "empty location")

        if location.startswith(("http://", "https://")):
            return self._fetch_http(location)
        return self._read_file(location)

    def _fetch_http(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Failed to fetch {url}: {e}")
            raise SourceUnavailable(url, str(e)) from e
        logger.debug(f"Fetched {len(response.content)} bytes from {url}")
        return response.content

    def _read_file(self, location: str) -> bytes:
        path = Path(location)
        try:
            return path.read_bytes()
        except OSError as e:
            logger.warning(f"Failed to read {path}: {e}")
            raise SourceUnavailable(location, str(e)) from e
