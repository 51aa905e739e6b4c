"""Scraper for Aral stations: station page for metadata, JSON API for prices."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Tuple
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup

from pricemonitor.etl.transform import parse_cent_price
from pricemonitor.models import Sample
from pricemonitor.vendors.stations import BRAND_ARAL, ScrapeError, Station

logger = logging.getLogger(__name__)

PAGE_URL = "https://tankstelle.aral.de/{vendor_id}"
API_URL = "https://api.tankstelle.aral.de/api/v3/stations/{station_number}/prices"

_FUELS_MARKER = "window.FUELS = "
_ADDRESS_SELECTOR = "main > header > div > div > div > div:nth-of-type(2) > div:nth-of-type(2) > div:nth-of-type(1) > p"


def _parse_fuel_names(soup: BeautifulSoup) -> Dict[str, str]:
    for script in soup.find_all("script"):
        text = script.string or script.get_text()
        if _FUELS_MARKER not in text:
            continue
        for statement in text.split(";"):
            if _FUELS_MARKER in statement:
                payload = statement.split(_FUELS_MARKER, 1)[1].strip()
                try:
                    return json.loads(payload)
                except ValueError as exc:
                    raise ScrapeError(f"could not parse fuel name map: {exc}") from exc
    raise ScrapeError("could not find fuel names script in station page")


def _parse_geo_location(soup: BeautifulSoup) -> str:
    link = soup.find("a", href=lambda href: bool(href) and "destination=" in href)
    if link is None:
        raise ScrapeError("could not find geolocation in station page")
    destination = parse_qs(urlparse(link["href"]).query).get("destination")
    if not destination:
        raise ScrapeError("directions link carries no destination")
    return destination[0]


def parse_station_page(html: str) -> Tuple[str, str, Dict[str, str]]:
    """Return ``(address, geo_location, fuel_names)`` from a station page."""
    soup = BeautifulSoup(html, "html.parser")
    fuel_names = _parse_fuel_names(soup)

    paragraphs = soup.select(_ADDRESS_SELECTOR)
    if len(paragraphs) < 2:
        raise ScrapeError("could not find address in station page")
    address = ", ".join(p.get_text(strip=True) for p in paragraphs[:2])

    return address, _parse_geo_location(soup), fuel_names


def parse_prices(payload: Dict[str, Any], fuel_names: Dict[str, str]) -> Dict[str, float]:
    """Map API prices (cents, keyed by fuel id) onto display names."""
    raw_prices = (payload.get("data") or {}).get("prices") or {}
    prices: Dict[str, float] = {}
    for fuel_id, name in fuel_names.items():
        price = parse_cent_price(raw_prices.get(fuel_id))
        if price is None:
            continue
        prices[name] = price
    return prices


class AralStation(Station):
    brand = BRAND_ARAL

    @property
    def page_url(self) -> str:
        return PAGE_URL.format(vendor_id=self.vendor_id)

    @property
    def api_url(self) -> str:
        return API_URL.format(station_number=self.vendor_id.rsplit("/", 1)[-1])

    def scrape_prices(self) -> Sample:
        page = self._get(self.page_url)
        try:
            address, geo_location, fuel_names = parse_station_page(page.text)
        except ScrapeError as exc:
            raise ScrapeError(f"{self.identifier()}: {exc}") from exc

        api_response = self._get(self.api_url)
        try:
            payload = api_response.json()
        except ValueError as exc:
            raise ScrapeError(f"{self.identifier()}: could not parse price data: {exc}") from exc

        prices = parse_prices(payload, fuel_names)
        logger.debug("Scraped %d prices for %s", len(prices), self.identifier())
        return Sample(address=address, geo_location=geo_location, brand=BRAND_ARAL, prices=prices)
