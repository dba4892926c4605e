"""
Tests for the place cache.

Plain reads/writes run against mongomock; geo queries are checked against a
mock collection because the in-memory engine has no ``$near``.
"""
from datetime import datetime
from unittest.mock import MagicMock, Mock

from pymongo import DESCENDING
from pymongo.errors import ServerSelectionTimeoutError

from models import GeoPoint
from place_cache import PlaceCacheStore


def test_upsert_then_get(db, make_place):
    store = PlaceCacheStore(db.places)
    now = datetime(2024, 3, 1, 9, 0)

    assert store.upsert(make_place("a", total_checkins=10), now=now)
    assert store.upsert(make_place("a", name="Cafe A (renamed)", total_checkins=20), now=now)

    assert db.places.count_documents({}) == 1
    place = store.get_by_id("a")
    assert place.name == "Cafe A (renamed)"
    assert place.last_updated == now
    assert place.popularity == 8


def test_get_missing(db):
    assert PlaceCacheStore(db.places).get_by_id("nope") is None


def test_upsert_failure_is_swallowed(make_place):
    collection = Mock()
    collection.replace_one.side_effect = ServerSelectionTimeoutError("no server")
    store = PlaceCacheStore(collection)

    assert store.upsert(make_place("a")) is False
    assert store.upsert_many([make_place("a"), make_place("b")]) == 0


def test_lookup_failure_is_a_miss():
    collection = Mock()
    collection.find_one.side_effect = ServerSelectionTimeoutError("no server")
    assert PlaceCacheStore(collection).get_by_id("a") is None


def _cursor_collection(docs):
    collection = Mock()
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.__iter__.return_value = iter(docs)
    collection.find.return_value = cursor
    return collection, cursor


def test_find_near_query_and_order(make_place):
    collection, cursor = _cursor_collection([make_place("a").to_document()])
    point = GeoPoint(lon=-122.4, lat=37.8)

    places = PlaceCacheStore(collection).find_near(point, 2000, 5)

    query = collection.find.call_args.args[0]
    assert query["location.coordinates"]["$near"] == {
        "$geometry": {"type": "Point", "coordinates": [-122.4, 37.8]},
        "$maxDistance": 2000,
    }
    assert query["is_active"] is True
    cursor.sort.assert_called_once_with([("popularity", DESCENDING), ("rating", DESCENDING)])
    cursor.limit.assert_called_once_with(5)
    assert [p.external_id for p in places] == ["a"]


def test_search_by_category_is_escaped_and_case_insensitive():
    collection, cursor = _cursor_collection([])
    PlaceCacheStore(collection).search_by_category("Bar (Wine)", GeoPoint(lon=0, lat=0))

    query = collection.find.call_args.args[0]
    assert query["category"] == {"$regex": r"Bar\ \(Wine\)", "$options": "i"}
    cursor.sort.assert_called_once_with([("rating", DESCENDING), ("popularity", DESCENDING)])
