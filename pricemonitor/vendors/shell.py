"""Scraper for Shell station pages on find.shell.com."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup

from pricemonitor.models import Sample
from pricemonitor.vendors.stations import BRAND_SHELL, ScrapeError, Station

logger = logging.getLogger(__name__)

SCRAPE_URL = "https://find.shell.com/de/fuel/{vendor_id}"
PREFERRED_COUNTRY = "DE"

# e.g. "{countryCode, select, DE {Super E10} other {Super E10}}"
_LOCAL_NAME_ENTRY = re.compile(r"(\w+) \{([^{}]*)\}")


def parse_fuel_local_names(message: Optional[str]) -> Dict[str, str]:
    """Split an ICU select message into a country code -> fuel name mapping."""
    if not message:
        return {}
    return {code: name for code, name in _LOCAL_NAME_ENTRY.findall(message)}


def _dig(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def translate_fuel_name(code: str, local_names: Dict[str, Any]) -> str:
    names = parse_fuel_local_names(local_names.get(code))
    for candidate in (names.get(PREFERRED_COUNTRY), names.get("other")):
        if candidate and candidate.strip():
            return candidate.strip()
    return code


def parse_station_page(html: str) -> Sample:
    """Build a sample from the React props embedded in a station page."""
    soup = BeautifulSoup(html, "html.parser")
    node = soup.find(attrs={"data-react-props": True})
    if node is None:
        raise ScrapeError("could not find data-react-props for extraction")

    try:
        props = json.loads(node["data-react-props"])
    except (TypeError, ValueError) as exc:
        raise ScrapeError(f"could not decode data-react-props: {exc}") from exc

    location = props.get("location") or {}
    lat, lng = location.get("lat"), location.get("lng")
    if lat is None or lng is None:
        raise ScrapeError("station page is missing coordinates")

    local_names = _dig(props, "config", "intlData", "messages", "info_window", "sections", "fuels", "fuel_local_names") or {}
    raw_prices = _dig(location, "fuel_pricing", "prices") or {}

    try:
        geo_location = "%f,%f" % (float(lat), float(lng))
        prices: Dict[str, float] = {
            translate_fuel_name(code, local_names): float(value)
            for code, value in raw_prices.items()
            if value is not None
        }
    except (TypeError, ValueError) as exc:
        raise ScrapeError(f"unexpected value in station data: {exc}") from exc

    return Sample(
        address=location.get("formatted_address") or "",
        geo_location=geo_location,
        brand=BRAND_SHELL,
        prices=prices,
    )


class ShellStation(Station):
    brand = BRAND_SHELL

    @property
    def url(self) -> str:
        return SCRAPE_URL.format(vendor_id=self.vendor_id)

    def scrape_prices(self) -> Sample:
        response = self._get(self.url)
        try:
            sample = parse_station_page(response.text)
        except ScrapeError as exc:
            raise ScrapeError(f"{self.identifier()}: {exc}") from exc
        logger.debug("Scraped %d prices for %s", len(sample.prices), self.identifier())
        return sample
