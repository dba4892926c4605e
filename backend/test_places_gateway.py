"""
Tests for the Foursquare gateway.

The HTTP session is a mock; the place cache is a mock too, so we can assert
exactly which writes happened.
"""
from datetime import timedelta
from unittest.mock import Mock

import pytest
import requests

from errors import NotFound, UnknownCategory, UpstreamUnavailable
from models import GeoPoint, utcnow
from places_gateway import PlacesGateway, category_id_for, photo_url

POINT = GeoPoint(lon=-122.4, lat=37.8)


def response(status=200, payload=None):
    r = Mock()
    r.status_code = status
    r.ok = 200 <= status < 300
    r.text = ""
    r.json.return_value = payload if payload is not None else {}
    return r


def fsq(fsq_id, name="Cafe A", category="Coffee Shop"):
    return {
        "fsq_id": fsq_id,
        "name": name,
        "categories": [{"name": category}],
        "geocodes": {"main": {"latitude": 37.8, "longitude": -122.4}},
        "stats": {"total_photos": 1, "total_tips": 2},
        "rating": 8.0,
    }


@pytest.fixture
def cache():
    cache = Mock()
    cache.get_by_id.return_value = None
    return cache


@pytest.fixture
def session():
    session = Mock()
    session.headers = {}
    return session


@pytest.fixture
def gateway(settings, cache, session):
    return PlacesGateway(settings, cache, session=session)


class TestSearch:
    def test_sends_auth_header(self, gateway, session):
        assert session.headers["Authorization"] == "fsq-test"

    def test_results_are_cached_and_returned(self, gateway, session, cache):
        session.get.return_value = response(payload={"results": [fsq("a"), fsq("b", "Park B", "Park")]})

        places = gateway.search(query="coffee", point=POINT, radius=1000, limit=5)

        assert [p.external_id for p in places] == ["a", "b"]
        cached = cache.upsert_many.call_args.args[0]
        assert [p.external_id for p in cached] == ["a", "b"]

    def test_params_use_provider_lat_lon_and_drop_empty(self, gateway, session):
        session.get.return_value = response(payload={"results": []})

        gateway.search(query="coffee", near="Oakland", point=POINT, limit=5)

        url = session.get.call_args.args[0]
        params = session.get.call_args.kwargs["params"]
        assert url.endswith("/places/search")
        assert params["ll"] == "37.8,-122.4"
        assert "near" not in params
        assert "categories" not in params
        assert params["radius"] == 5000
        assert session.get.call_args.kwargs["timeout"] == 10.0

    def test_near_only(self, gateway, session):
        session.get.return_value = response(payload={"results": []})
        gateway.search(near="Oakland, CA")
        params = session.get.call_args.kwargs["params"]
        assert params["near"] == "Oakland, CA"
        assert "ll" not in params

    @pytest.mark.parametrize("failure", [
        requests.exceptions.Timeout("slow"),
        requests.exceptions.ConnectionError("refused"),
    ])
    def test_transport_failure_leaves_cache_untouched(self, gateway, session, cache, failure):
        session.get.side_effect = failure
        with pytest.raises(UpstreamUnavailable):
            gateway.search(query="coffee", point=POINT)
        cache.upsert_many.assert_not_called()
        cache.upsert.assert_not_called()

    def test_http_error_leaves_cache_untouched(self, gateway, session, cache):
        session.get.return_value = response(status=500)
        with pytest.raises(UpstreamUnavailable):
            gateway.search(query="coffee", point=POINT)
        cache.upsert_many.assert_not_called()

    def test_invalid_json(self, gateway, session):
        r = response()
        r.json.side_effect = ValueError("not json")
        session.get.return_value = r
        with pytest.raises(UpstreamUnavailable):
            gateway.search(query="coffee", point=POINT)


class TestDetails:
    def test_fresh_cache_hit_skips_network(self, gateway, session, cache, make_place):
        cache.get_by_id.return_value = make_place("a", last_updated=utcnow())
        assert gateway.get_details("a").external_id == "a"
        session.get.assert_not_called()

    def test_stale_cache_refetches(self, gateway, session, cache, make_place):
        cache.get_by_id.return_value = make_place("a", last_updated=utcnow() - timedelta(hours=25))
        session.get.return_value = response(payload=fsq("a", name="Cafe A v2"))

        place = gateway.get_details("a")

        assert place.name == "Cafe A v2"
        cache.upsert.assert_called_once_with(place)

    def test_cache_ttl_comes_from_settings(self, settings, session, cache, make_place):
        settings.place_cache_ttl_hours = 1
        gateway = PlacesGateway(settings, cache, session=session)
        cache.get_by_id.return_value = make_place("a", last_updated=utcnow() - timedelta(hours=2))
        session.get.return_value = response(payload=fsq("a"))

        gateway.get_details("a")

        session.get.assert_called_once()

    def test_stale_cache_served_when_provider_down(self, gateway, session, cache, make_place):
        stale = make_place("a", last_updated=utcnow() - timedelta(days=3))
        cache.get_by_id.return_value = stale
        session.get.return_value = response(status=503)
        assert gateway.get_details("a") is stale

    def test_missing_place(self, gateway, session):
        session.get.return_value = response(status=404)
        with pytest.raises(NotFound):
            gateway.get_details("nope")

    def test_down_without_cache(self, gateway, session):
        session.get.side_effect = requests.exceptions.Timeout()
        with pytest.raises(UpstreamUnavailable):
            gateway.get_details("a")


class TestEnrichment:
    def test_photos_get_urls(self, gateway, session):
        session.get.return_value = response(payload=[{"prefix": "https://img/", "suffix": "/p.jpg"}])
        photos = gateway.get_photos("a", limit=3)
        assert photos[0]["url"] == "https://img/original/p.jpg"
        assert session.get.call_args.kwargs["params"] == {"limit": 3}

    def test_photos_degrade_to_empty(self, gateway, session):
        session.get.side_effect = requests.exceptions.Timeout()
        assert gateway.get_photos("a") == []

    def test_tips_degrade_to_empty(self, gateway, session):
        session.get.return_value = response(status=404)
        assert gateway.get_tips("a") == []

    def test_photo_url_needs_both_parts(self):
        assert photo_url({"prefix": "x"}) is None
        assert photo_url({"prefix": "a/", "suffix": "/b"}, "300x300") == "a/300x300/b"


class TestCategoriesAndTrending:
    def test_category_lookup(self):
        assert category_id_for(" Museum ") == "10000"
        assert category_id_for("spaceport") is None

    def test_unknown_category(self, gateway, session):
        with pytest.raises(UnknownCategory):
            gateway.search_by_category_name("spaceport", POINT)
        session.get.assert_not_called()

    def test_category_search_uses_taxonomy_id(self, gateway, session):
        session.get.return_value = response(payload={"results": [fsq("a")]})
        gateway.search_by_category_name("cafe", POINT, radius=2000, limit=5)
        params = session.get.call_args.kwargs["params"]
        assert params["categories"] == "13032"
        assert params["radius"] == 2000

    def test_trending(self, gateway, session, cache):
        session.get.return_value = response(payload={"results": [fsq("t")]})
        places = gateway.get_trending(POINT, limit=3)
        assert session.get.call_args.args[0].endswith("/places/trending")
        assert [p.external_id for p in places] == ["t"]
        cache.upsert_many.assert_called_once()

    def test_trending_failure_propagates(self, gateway, session, cache):
        session.get.return_value = response(status=502)
        with pytest.raises(UpstreamUnavailable):
            gateway.get_trending(POINT)
        cache.upsert_many.assert_not_called()
