import logging

import httpx

from app.config import settings
from app.utils.exceptions import GeocodingFailedException
from app.utils.geo import is_valid_coordinate

logger = logging.getLogger(__name__)


class Geocoder:
    """Address -> (lat, lng) through a Google-compatible geocoding endpoint."""

    def __init__(self, api_url: str, api_key: str | None, timeout: float = 5.0):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout

    def geocode(self, address: str) -> tuple[float, float]:
        if not self.api_key:
            raise GeocodingFailedException("Geocoding is not configured and the booking has no pickup coordinates")
        if not address or not address.strip():
            raise GeocodingFailedException("Booking has no pickup address to geocode")

        try:
            response = httpx.get(
                self.api_url,
                params={"address": address, "key": self.api_key},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Geocoding request failed for {address!r}: {e}")
            raise GeocodingFailedException() from e

        if payload.get("status") != "OK" or not payload.get("results"):
            logger.warning(f"Geocoding returned {payload.get('status')!r} for {address!r}")
            raise GeocodingFailedException()

        location = payload["results"][0].get("geometry", {}).get("location", {})
        lat, lng = location.get("lat"), location.get("lng")
        if lat is None or lng is None or not is_valid_coordinate(lat, lng):
            raise GeocodingFailedException()
        return float(lat), float(lng)


geocoder = Geocoder(
    settings.GEOCODING_API_URL,
    settings.GEOCODING_API_KEY,
    settings.GEOCODING_TIMEOUT_SECONDS,
)


def get_geocoder() -> Geocoder:
    """FastAPI dependency; overridden in tests."""
    return geocoder
