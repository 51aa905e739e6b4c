"""Station identifiers and the brand -> scraper factory.

Identifiers have the form ``brand:vendor-specific-id``. They are validated
when configuration is loaded so a typo fails the process at startup rather
than on every tick.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

import requests

from pricemonitor.core.config import ConfigError
from pricemonitor.models import Sample

logger = logging.getLogger(__name__)

USER_AGENT = "PriceMonitorBot/1.0"
REQUEST_TIMEOUT = 10

BRAND_SHELL = "shell"
BRAND_ARAL = "aral"

_IDENTIFIER_PATTERNS = {
    BRAND_SHELL: re.compile(r"^[0-9]+-[0-9A-Za-z-]+$"),
    BRAND_ARAL: re.compile(r"^[A-Za-z-]+/[A-Za-z0-9-]+/[0-9]+$"),
}

IDENTIFIER_HELP = (
    "identifier does not match the format ('brand:station-identifier'), i.e "
    "shell:10027720-erfurt-bei-den-froschackern-2 or "
    "aral:st-ingbert/ensheimer-strasse-152/18111200"
)


class ScrapeError(RuntimeError):
    """Raised when a station page cannot be fetched or parsed."""


def new_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    return session


class Station(ABC):
    """A configured station that knows how to scrape its own prices."""

    brand = ""

    def __init__(self, vendor_id: str, session: Optional[requests.Session] = None, timeout: float = REQUEST_TIMEOUT) -> None:
        self.vendor_id = vendor_id
        self._identifier = f"{self.brand}:{vendor_id}"
        self._session = session or new_session()
        self._timeout = timeout

    def identifier(self) -> str:
        return self._identifier

    @abstractmethod
    def scrape_prices(self) -> Sample:
        """Fetch the station's current prices; raises `ScrapeError` on failure."""

    def _get(self, url: str) -> requests.Response:
        try:
            response = self._session.get(url, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ScrapeError(f"{self._identifier}: request to {url} failed: {exc}") from exc
        return response

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._identifier!r})"


def split_identifier(identifier: str) -> tuple[str, str]:
    """Validate an identifier and return ``(brand, vendor_id)``."""
    identifier = identifier.strip()
    brand, sep, vendor_id = identifier.partition(":")
    if not sep:
        raise ConfigError(f"{identifier!r}: {IDENTIFIER_HELP}")
    pattern = _IDENTIFIER_PATTERNS.get(brand)
    if pattern is None:
        raise ConfigError(f"{identifier!r}: unknown brand {brand!r}")
    if not pattern.match(vendor_id):
        raise ConfigError(f"{identifier!r}: {IDENTIFIER_HELP}")
    return brand, vendor_id


def new_station(identifier: str, session: Optional[requests.Session] = None, timeout: float = REQUEST_TIMEOUT) -> Station:
    """Build the scraper for a ``brand:id`` identifier."""
    # Imported here to keep the vendor modules free to import this one.
    from pricemonitor.vendors.aral import AralStation
    from pricemonitor.vendors.shell import ShellStation

    brand, vendor_id = split_identifier(identifier)
    if brand == BRAND_SHELL:
        return ShellStation(vendor_id, session=session, timeout=timeout)
    return AralStation(vendor_id, session=session, timeout=timeout)


def build_stations(identifiers: Iterable[str], timeout: float = REQUEST_TIMEOUT) -> List[Station]:
    """Build scrapers for every identifier, sharing one HTTP session."""
    session = new_session()
    stations = [new_station(identifier, session=session, timeout=timeout) for identifier in identifiers]
    logger.info("Tracking %d stations", len(stations))
    return stations
