# tripchat/api/geocoding.py
"""Geocoding backends used by the itinerary enricher.

Each backend exposes the two lookups the enricher needs, keyword search
scoped to a city and structured address search, as coroutines returning
``(lat, lng)`` or ``None``. The vendor SDKs are blocking, so every call is
pushed to a worker thread and awaited; callers that await one lookup at a
time therefore never have two requests in flight.
"""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Dict, Optional

import googlemaps
import requests

from tripchat.api.config import get_geocoding_config

logger = logging.getLogger(__name__)

Coordinate = tuple[float, float]

CACHE_MAX_SIZE = 1000


class Geocoder:
    """Base class for resolution services.

    Subclasses implement ``_keyword_lookup`` and ``_address_lookup`` as plain
    blocking calls. Successful results are memoised per query in a
    least-recently-used cache of ``cache_size`` entries.
    """

    name = "base"

    def __init__(self, cache_size: int = CACHE_MAX_SIZE):
        self.cache_size = cache_size
        self._cache: OrderedDict[tuple, Coordinate] = OrderedDict()

    def is_ready(self) -> bool:
        raise NotImplementedError

    async def search_by_keyword(self, keyword: str, city: Optional[str] = None) -> Optional[Coordinate]:
        if not keyword:
            return None
        return await self._cached(("keyword", keyword, city or ""), self._keyword_lookup, keyword, city)

    async def search_by_address(self, address: str) -> Optional[Coordinate]:
        if not address:
            return None
        return await self._cached(("address", address), self._address_lookup, address)

    async def _cached(self, key: tuple, lookup, *args) -> Optional[Coordinate]:
        if key in self._cache:
            logger.debug("Geocode cache hit for %s", key)
            self._cache.move_to_end(key)
            return self._cache[key]

        coords = await asyncio.to_thread(lookup, *args)
        if coords is not None:
            self._cache[key] = coords
            if len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return coords

    def _keyword_lookup(self, keyword: str, city: Optional[str]) -> Optional[Coordinate]:
        raise NotImplementedError

    def _address_lookup(self, address: str) -> Optional[Coordinate]:
        raise NotImplementedError


def _parse_amap_location(location: Any) -> Optional[Coordinate]:
    """AMap encodes locations as a ``"lng,lat"`` string."""
    if not isinstance(location, str) or "," not in location:
        return None
    try:
        lng, lat = (float(part) for part in location.split(",", 1))
    except ValueError:
        return None
    return lat, lng


class AmapGeocoder(Geocoder):
    """AMap (Gaode) web-service API."""

    name = "amap"

    PLACE_TEXT_URL = "https://restapi.amap.com/v3/place/text"
    GEOCODE_URL = "https://restapi.amap.com/v3/geocode/geo"
    NATIONWIDE = "全国"

    def __init__(self, api_key: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        super().__init__()
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    def is_ready(self) -> bool:
        return bool(self.api_key)

    def _get(self, url: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            response = self._session.get(url, params={**params, "key": self.api_key}, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"AMap request to {url} failed: {e}")
            return None

        if data.get("status") != "1":
            logger.warning(f"AMap returned status={data.get('status')} info={data.get('info')}")
            return None
        return data

    def _keyword_lookup(self, keyword: str, city: Optional[str]) -> Optional[Coordinate]:
        data = self._get(self.PLACE_TEXT_URL, {
            "keywords": keyword,
            "city": city or self.NATIONWIDE,
            "citylimit": "true" if city else "false",
            "offset": 1,
            "page": 1,
            "extensions": "base",
        })
        pois = (data or {}).get("pois") or []
        if not pois:
            logger.debug(f"No POI found for '{keyword}' in {city or self.NATIONWIDE}")
            return None
        return _parse_amap_location(pois[0].get("location"))

    def _address_lookup(self, address: str) -> Optional[Coordinate]:
        data = self._get(self.GEOCODE_URL, {"address": address})
        geocodes = (data or {}).get("geocodes") or []
        if not geocodes:
            logger.debug(f"No geocode found for address '{address}'")
            return None
        return _parse_amap_location(geocodes[0].get("location"))


class GoogleMapsGeocoder(Geocoder):
    """Google Places text search plus the Geocoding API."""

    name = "google"

    def __init__(self, api_key: str, language: str = "zh-CN", timeout: float = 5.0):
        super().__init__()
        self.api_key = api_key
        self.language = language
        self.timeout = timeout
        self._gmaps: googlemaps.Client | None = None

    def _get_client(self) -> googlemaps.Client | None:
        """Return a cached googlemaps.Client instance."""
        if self._gmaps is None:
            if not self.api_key:
                logger.error("No Google Maps API key found in config")
                return None
            try:
                logger.info(f"Initializing Google Maps client with key: {self.api_key[:10]}...")
                self._gmaps = googlemaps.Client(key=self.api_key, timeout=self.timeout)
            except Exception as e:
                logger.error(f"Failed to initialize Google Maps client: {e}")
                return None
        return self._gmaps

    def is_ready(self) -> bool:
        return self._get_client() is not None

    def _keyword_lookup(self, keyword: str, city: Optional[str]) -> Optional[Coordinate]:
        client = self._get_client()
        if client is None:
            return None

        query = f"{keyword} {city}" if city else keyword
        try:
            response = client.places(query=query, language=self.language)
        except googlemaps.exceptions.ApiError as e:
            logger.warning(f"Places search rejected for '{query}': {e}")
            return None
        except (googlemaps.exceptions.TransportError, googlemaps.exceptions.Timeout) as e:
            logger.error(f"Places search error for '{query}': {e}")
            return None

        results = response.get("results") or []
        if not results:
            logger.debug(f"No place found for '{query}'")
            return None
        loc = results[0]["geometry"]["location"]
        return loc["lat"], loc["lng"]

    def _address_lookup(self, address: str) -> Optional[Coordinate]:
        client = self._get_client()
        if client is None:
            return None

        try:
            results = client.geocode(address, language=self.language)
        except googlemaps.exceptions.ApiError as e:
            logger.warning(f"Geocode rejected for '{address}': {e}")
            return None
        except (googlemaps.exceptions.TransportError, googlemaps.exceptions.Timeout) as e:
            logger.error(f"Geocoding error for '{address}': {e}")
            return None

        if not results:
            logger.debug(f"No results found for address: {address}")
            return None
        loc = results[0]["geometry"]["location"]
        return loc["lat"], loc["lng"]


def get_geocoder(config: Optional[Dict[str, Any]] = None) -> Geocoder:
    """Build the geocoder selected by ``GEOCODER_PROVIDER``."""
    cfg = config or get_geocoding_config()
    if cfg["provider"] == "google":
        return GoogleMapsGeocoder(cfg["google_api_key"], timeout=cfg["timeout_seconds"])
    return AmapGeocoder(cfg["amap_api_key"], timeout=cfg["timeout_seconds"])


__all__ = [
    "Coordinate",
    "Geocoder",
    "AmapGeocoder",
    "GoogleMapsGeocoder",
    "get_geocoder",
]
