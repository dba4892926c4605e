import sys
from pathlib import Path

import mongomock
import pytest

# modules import each other by bare name, as the app does when run from backend/
sys.path.insert(0, str(Path(__file__).resolve().parent))

from config import Settings
from models import GeoPoint, Itinerary, ItineraryPlace, Place, ResolvedRef, UnresolvedRef


@pytest.fixture
def settings():
    return Settings(
        foursquare_api_key="fsq-test",
        openai_api_key="",
        gemini_api_key="",
        log_level="WARNING",
    )


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def make_place():
    def _make(external_id="fsq1", name="Cafe A", category="Coffee Shop", **kwargs):
        kwargs.setdefault("point", GeoPoint(lon=-122.4, lat=37.8))
        return Place(external_id=external_id, name=name, category=category, **kwargs)
    return _make


@pytest.fixture
def make_itinerary():
    def _make(places=None, **kwargs):
        entries = []
        for index, (place_id, name, duration) in enumerate(places or [], start=1):
            ref = UnresolvedRef(int(place_id.split("-")[1])) if place_id.startswith("placeholder-") \
                else ResolvedRef(place_id)
            entries.append(ItineraryPlace(ref=ref, name=name, order=index, estimated_duration=duration))
        kwargs.setdefault("user_id", "u1")
        kwargs.setdefault("title", "Afternoon out")
        itinerary = Itinerary(places=entries, **kwargs)
        itinerary.update_totals()
        return itinerary
    return _make
