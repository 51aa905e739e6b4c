"""Utilities for turning scraped samples into database rows."""

import logging
import uuid
from typing import Any, List, Optional

from pricemonitor.models import Row, Sample

logger = logging.getLogger(__name__)


def flatten_sample(sample: Sample, station_id: uuid.UUID) -> List[Row]:
    """Expand one sample into a row per fuel price, attributed to `station_id`."""
    return [
        Row(
            sample_id=sample.id,
            fuel_name=fuel_name,
            price=float(price),
            time=sample.time,
            station_id=station_id,
        )
        for fuel_name, price in sample.prices.items()
    ]


def parse_cent_price(value: Any) -> Optional[float]:
    """Convert a price given in cents (string or number) to the unit price.

    Missing, unparsable and zero prices yield None; vendors publish zero for
    fuels that are listed but not currently sold.
    """
    if value is None:
        return None
    try:
        cents = float(str(value).strip().replace(",", "."))
    except ValueError:
        logger.debug("Unable to parse price %r", value)
        return None
    if cents == 0.0:
        return None
    return cents / 100
