import asyncio
import random

import pytest

from tripchat.api.errors import TransportError
from tripchat.api.geocoding import Geocoder
from tripchat.api.models import Itinerary, ItineraryPoint, StreamChunk
from tripchat.api.services.map_service import GeocodingEnricher


class FakeGeocoder(Geocoder):
    """Scripted geocoder that records every lookup in order.

    ``keyword_results`` maps either ``(keyword, city)`` or a bare keyword to
    a coordinate; ``address_results`` maps addresses. Anything listed in
    ``fail_on`` raises instead of answering.
    """

    name = "fake"

    def __init__(self, keyword_results=None, address_results=None, ready=True, fail_on=(), events=None):
        super().__init__()
        self.keyword_results = keyword_results or {}
        self.address_results = address_results or {}
        self.ready = ready
        self.fail_on = set(fail_on)
        self.calls = []
        self.events = events if events is not None else []
        self.in_flight = 0
        self.max_in_flight = 0

    def is_ready(self):
        return self.ready

    async def _track(self, call):
        self.calls.append(call)
        self.events.append(("lookup",) + call)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1

    async def search_by_keyword(self, keyword, city=None):
        await self._track(("keyword", keyword, city))
        if keyword in self.fail_on:
            raise RuntimeError(f"lookup exploded for {keyword}")
        if (keyword, city) in self.keyword_results:
            return self.keyword_results[(keyword, city)]
        return self.keyword_results.get(keyword)

    async def search_by_address(self, address):
        await self._track(("address", address))
        if address in self.fail_on:
            raise RuntimeError(f"lookup exploded for {address}")
        return self.address_results.get(address)


class RecordingSleep:
    """Stand-in for asyncio.sleep that logs delays into a shared event list."""

    def __init__(self, events):
        self.events = events
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        self.events.append(("sleep", delay))
        await asyncio.sleep(0)


class FakeTransport:
    """Chat transport that replays scripted chunks.

    ``fail_after`` raises TransportError once that many chunks have been
    yielded. ``gate`` (an asyncio.Event) holds the stream open until set.
    """

    def __init__(self, chunks=(), fail_after=None, title="杭州两日游", title_error=None, gate=None):
        self.chunks = list(chunks)
        self.fail_after = fail_after
        self.title = title
        self.title_error = title_error
        self.gate = gate
        self.requests = []
        self.title_calls = []

    async def stream_chat(self, system_prompt, history):
        self.requests.append((system_prompt, history))
        if self.gate is not None:
            await self.gate.wait()
        for i, text in enumerate(self.chunks):
            if self.fail_after is not None and i >= self.fail_after:
                raise TransportError("connection reset")
            yield StreamChunk(text)
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise TransportError("connection reset")

    async def generate_title(self, user_text, assistant_text):
        self.title_calls.append((user_text, assistant_text))
        if self.title_error is not None:
            raise self.title_error
        return self.title


def make_itinerary(*points):
    return Itinerary(points=[
        p if isinstance(p, ItineraryPoint) else ItineraryPoint(**p) for p in points
    ])


@pytest.fixture
def events():
    return []


@pytest.fixture
def sleeper(events):
    return RecordingSleep(events)


@pytest.fixture
def make_enricher(sleeper):
    def _make(geocoder, **kwargs):
        kwargs.setdefault("request_delay", 0.15)
        kwargs.setdefault("readiness_wait", 1.0)
        kwargs.setdefault("rng", random.Random(7))
        return GeocodingEnricher(geocoder, sleep=sleeper, **kwargs)
    return _make
