"""
Gateway to the Foursquare Places API.

Every search populates the place cache as a side effect; detail lookups are
cache-first with a configurable staleness window (24 hours by default) to
conserve provider quota.
"""

import logging
from datetime import timedelta

import requests

from errors import NotFound, UnknownCategory, UpstreamUnavailable
from models import Place

logger = logging.getLogger(__name__)

SORT_MODES = ("RATING", "POPULARITY", "DISTANCE")

# Human labels -> Foursquare category taxonomy ids
CATEGORY_IDS = {
    "restaurant": "13065",
    "cafe": "13032",
    "bar": "13003",
    "coffee": "13032",
    "pizza": "13065",
    "italian": "13065",
    "chinese": "13065",
    "japanese": "13065",
    "indian": "13065",
    "mexican": "13065",
    "american": "13065",
    "french": "13065",
    "thai": "13065",
    "mediterranean": "13065",
    "park": "16032",
    "museum": "10000",
    "art": "10000",
    "theater": "14000",
    "cinema": "14000",
    "shopping": "17000",
    "retail": "17000",
    "gym": "18000",
    "fitness": "18000",
    "spa": "11100",
    "beauty": "11100",
    "hotel": "19000",
    "lodging": "19000",
}

PLACE_FIELDS = ",".join([
    "fsq_id", "name", "description", "categories", "geocodes", "location",
    "tel", "website", "email", "social_media", "hours", "price", "rating",
    "stats", "attributes",
])


def category_id_for(label):
    return CATEGORY_IDS.get((label or "").strip().lower())


def photo_url(photo, size="original"):
    """Build a displayable URL from a provider photo's prefix/suffix pair."""
    prefix, suffix = photo.get("prefix"), photo.get("suffix")
    if not prefix or not suffix:
        return None
    return f"{prefix}{size}{suffix}"


class PlacesGateway:
    def __init__(self, settings, cache, session=None):
        self.base_url = settings.foursquare_base_url.rstrip("/")
        self.timeout = settings.places_timeout_seconds
        self.default_radius = settings.default_radius_m
        self.cache_ttl = timedelta(hours=settings.place_cache_ttl_hours)
        self.cache = cache
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": settings.foursquare_api_key,
            "Accept": "application/json",
        })

    # ---------------- transport ----------------

    def _get(self, path, params=None):
        url = f"{self.base_url}{path}"
        try:
            r = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout:
            logger.error("Foursquare timeout on %s", path)
            raise UpstreamUnavailable("Places provider timed out")
        except requests.exceptions.RequestException as e:
            logger.error("Foursquare request error on %s: %s", path, e)
            raise UpstreamUnavailable("Failed to reach places provider")

        if r.status_code == 404:
            raise NotFound("Place not found")
        if not r.ok:
            logger.error("Foursquare error on %s: %s %s", path, r.status_code, r.text[:200])
            raise UpstreamUnavailable(f"Places provider error: {r.status_code}")
        try:
            return r.json()
        except ValueError:
            raise UpstreamUnavailable("Places provider returned invalid JSON")

    @staticmethod
    def _provider_ll(point):
        # the provider wants "latitude,longitude"
        return f"{point.lat},{point.lon}"

    def _cache_results(self, payloads):
        places = [Place.from_provider(p) for p in payloads if p.get("fsq_id")]
        self.cache.upsert_many(places)
        return places

    # ---------------- operations ----------------

    def search(self, query=None, near=None, point=None, radius=None,
               categories=None, limit=20, sort="RATING"):
        params = {
            "query": query,
            "near": None if point else near,
            "ll": self._provider_ll(point) if point else None,
            "radius": radius or self.default_radius,
            "categories": categories,
            "limit": limit,
            "sort": sort,
            "fields": PLACE_FIELDS,
        }
        # empty values are omitted, not sent as ""
        params = {k: v for k, v in params.items() if v}

        data = self._get("/places/search", params=params)
        return self._cache_results(data.get("results") or [])

    def get_details(self, external_id):
        cached = self.cache.get_by_id(external_id)
        if cached and not cached.is_stale(ttl=self.cache_ttl):
            logger.debug("Cache hit: place %s", external_id)
            return cached

        logger.debug("Cache miss: fetching place %s", external_id)
        try:
            data = self._get(f"/places/{external_id}", params={"fields": PLACE_FIELDS})
        except UpstreamUnavailable:
            if cached:
                logger.warning("Serving stale cache for %s", external_id)
                return cached
            raise
        if not data or not data.get("fsq_id"):
            raise NotFound("Place not found")

        place = Place.from_provider(data)
        self.cache.upsert(place)
        return place

    def get_photos(self, external_id, limit=10):
        try:
            data = self._get(f"/places/{external_id}/photos", params={"limit": limit})
        except (UpstreamUnavailable, NotFound) as e:
            logger.warning("Foursquare photos error for %s: %s", external_id, e)
            return []
        photos = data if isinstance(data, list) else data.get("photos") or []
        return [dict(p, url=photo_url(p)) for p in photos]

    def get_tips(self, external_id, limit=10):
        try:
            data = self._get(f"/places/{external_id}/tips", params={"limit": limit})
        except (UpstreamUnavailable, NotFound) as e:
            logger.warning("Foursquare tips error for %s: %s", external_id, e)
            return []
        return data if isinstance(data, list) else data.get("tips") or []

    def search_by_category_name(self, label, point, radius=None, limit=20):
        category_id = category_id_for(label)
        if not category_id:
            raise UnknownCategory(f"Invalid category: {label}")
        return self.search(categories=category_id, point=point, radius=radius, limit=limit)

    def get_trending(self, point, limit=10):
        data = self._get("/places/trending", params={"ll": self._provider_ll(point), "limit": limit})
        return self._cache_results(data.get("results") or [])
