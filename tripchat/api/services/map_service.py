# tripchat/api/services/map_service.py
"""Service layer for resolving itinerary points to map coordinates."""

import asyncio
import logging
import random
import re
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from tripchat.api.config import get_enrichment_config
from tripchat.api.geocoding import Coordinate, Geocoder
from tripchat.api.models import Itinerary, ItineraryPoint, is_sentinel

logger = logging.getLogger(__name__)

# ASCII or full-width parentheses, e.g. "雷峰塔(门票)" or "楼外楼（孤山路店）".
_PARENTHETICAL_RE = re.compile(r"[\(（].*?[\)）]")


def clean_poi_name(name: str) -> str:
    """Strip parenthetical qualifiers from a place name."""
    return _PARENTHETICAL_RE.sub("", name).strip()


class GeocodeStrategy(str, Enum):
    NAME = "name"
    CLEAN_NAME = "clean_name"
    ADDRESS = "address"
    CITY_CENTER = "city_center"
    LAST_KNOWN = "last_known"
    UNRESOLVED = "unresolved"


# Only real lookups may seed the jitter fallback for later points.
LOOKUP_STRATEGIES = frozenset({
    GeocodeStrategy.NAME,
    GeocodeStrategy.CLEAN_NAME,
    GeocodeStrategy.ADDRESS,
    GeocodeStrategy.CITY_CENTER,
})


class GeocodingEnricher:
    """Attach coordinates to every point of an itinerary.

    Points are resolved one at a time, in order, with a fixed pause after
    each point because the geocoding service enforces a request-rate
    ceiling. Each point walks a fallback chain (name, cleaned name, address,
    city centre, jitter around the last real hit) and the first strategy
    that yields a coordinate wins. Lookup failures are treated as "not
    found"; ``enrich`` itself never raises and never drops or reorders
    points.
    """

    def __init__(
        self,
        geocoder: Geocoder,
        request_delay: float = 0.15,
        readiness_wait: float = 1.0,
        jitter_degrees: float = 0.0025,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.geocoder = geocoder
        self.request_delay = request_delay
        self.readiness_wait = readiness_wait
        self.jitter_degrees = jitter_degrees
        self._rng = rng or random.Random()
        self._sleep = sleep

    @classmethod
    def from_config(cls, geocoder: Geocoder, config: Optional[Dict[str, Any]] = None, **kwargs) -> "GeocodingEnricher":
        cfg = config or get_enrichment_config()
        return cls(
            geocoder,
            request_delay=cfg["request_delay"],
            readiness_wait=cfg["readiness_wait"],
            jitter_degrees=cfg["jitter_degrees"],
            **kwargs,
        )

    async def enrich(self, itinerary: Itinerary, default_city: Optional[str] = None) -> Itinerary:
        """Resolve coordinates in place and return the same itinerary.

        Args:
            itinerary: Parsed itinerary; its points are updated in place
            default_city: Scope used for points that carry no city of their own

        Returns:
            The same itinerary object, or it untouched if the geocoder never
            became ready
        """
        if not await self._wait_until_ready():
            logger.warning(f"Geocoder '{self.geocoder.name}' not ready. Returning itinerary without coordinates.")
            return itinerary

        start_time = time.time()
        last_valid: Optional[Coordinate] = None
        resolved_count = 0

        for point in itinerary.points:
            coords, strategy = await self._resolve_point(point, default_city)

            if coords is None and last_valid is not None:
                coords = self._jitter(last_valid)
                strategy = GeocodeStrategy.LAST_KNOWN

            if coords is None:
                point.lat, point.lng = 0.0, 0.0
                logger.warning(f"Could not place '{point.name}' on the map")
            else:
                point.lat, point.lng = coords
                resolved_count += 1
                logger.debug(f"Placed [{point.name}] via {strategy.value}")

            if strategy in LOOKUP_STRATEGIES:
                last_valid = coords

            await self._sleep(self.request_delay)

        duration = time.time() - start_time
        logger.info(f"Geocoded {resolved_count}/{len(itinerary.points)} points in {duration:.2f}s")
        return itinerary

    async def _resolve_point(
        self, point: ItineraryPoint, default_city: Optional[str]
    ) -> Tuple[Optional[Coordinate], GeocodeStrategy]:
        city = point.city or default_city or ""
        scope = city or None

        coords = await self._keyword(point.name, scope)
        if coords:
            return coords, GeocodeStrategy.NAME

        clean = clean_poi_name(point.name)
        if clean and clean != point.name:
            coords = await self._keyword(clean, scope)
            if coords:
                return coords, GeocodeStrategy.CLEAN_NAME

        if point.address:
            coords = await self._address(point.address)
            if coords:
                return coords, GeocodeStrategy.ADDRESS

        if city:
            coords = await self._keyword(city, city)
            if coords:
                return coords, GeocodeStrategy.CITY_CENTER

        return None, GeocodeStrategy.UNRESOLVED

    async def _keyword(self, keyword: str, city: Optional[str]) -> Optional[Coordinate]:
        if not keyword:
            return None
        try:
            coords = await self.geocoder.search_by_keyword(keyword, city)
        except Exception as e:
            logger.warning(f"Keyword search failed for '{keyword}': {e}")
            return None
        return self._usable(coords)

    async def _address(self, address: str) -> Optional[Coordinate]:
        try:
            coords = await self.geocoder.search_by_address(address)
        except Exception as e:
            logger.warning(f"Address search failed for '{address}': {e}")
            return None
        return self._usable(coords)

    @staticmethod
    def _usable(coords: Optional[Coordinate]) -> Optional[Coordinate]:
        if coords is None or is_sentinel(*coords):
            return None
        return coords

    def _jitter(self, origin: Coordinate) -> Coordinate:
        lat, lng = origin
        spread = self.jitter_degrees
        return (
            lat + self._rng.uniform(-spread, spread),
            lng + self._rng.uniform(-spread, spread),
        )

    def _geocoder_ready(self) -> bool:
        try:
            return self.geocoder.is_ready()
        except Exception as e:
            logger.error(f"Geocoder readiness check failed: {e}")
            return False

    async def _wait_until_ready(self) -> bool:
        if self._geocoder_ready():
            return True
        logger.info(f"Waiting {self.readiness_wait:.1f}s for geocoder '{self.geocoder.name}'")
        await self._sleep(self.readiness_wait)
        return self._geocoder_ready()


__all__ = ["GeocodingEnricher", "GeocodeStrategy", "clean_poi_name"]
