"""
MongoDB-backed cache of places returned by the external provider.

The provider is authoritative; this collection is a disposable mirror.
Writes are best-effort: a failing cache must never break the read that
triggered it.
"""

import logging
import re

from pymongo import ASCENDING, DESCENDING, GEOSPHERE
from pymongo.errors import PyMongoError

from models import Place, utcnow

logger = logging.getLogger(__name__)


class PlaceCacheStore:
    def __init__(self, collection):
        self.collection = collection

    def ensure_indexes(self):
        self.collection.create_index([("location.coordinates", GEOSPHERE)])
        self.collection.create_index([("external_id", ASCENDING)], unique=True)
        self.collection.create_index([("category", ASCENDING)])
        self.collection.create_index([("rating", DESCENDING)])
        self.collection.create_index([("popularity", DESCENDING)])

    def upsert(self, place, now=None):
        """Insert or replace ``place``; returns False (and logs) if the store is unavailable."""
        place.last_updated = now or utcnow()
        place.update_popularity()
        try:
            self.collection.replace_one(
                {"external_id": place.external_id},
                place.to_document(),
                upsert=True,
            )
            return True
        except PyMongoError as e:
            logger.warning("Cache place error for %s: %s", place.external_id, e)
            return False

    def upsert_many(self, places, now=None):
        now = now or utcnow()
        return sum(1 for place in places if self.upsert(place, now=now))

    def get_by_id(self, external_id):
        try:
            doc = self.collection.find_one({"external_id": external_id})
        except PyMongoError as e:
            logger.warning("Cache lookup failed for %s: %s", external_id, e)
            return None
        return Place.from_document(doc) if doc else None

    def _near(self, point, max_distance_m):
        return {
            "$near": {
                "$geometry": point.to_geojson(),
                "$maxDistance": max_distance_m,
            }
        }

    def find_near(self, point, max_distance_m=5000, limit=20):
        query = {
            "location.coordinates": self._near(point, max_distance_m),
            "is_active": True,
        }
        cursor = (
            self.collection.find(query)
            .sort([("popularity", DESCENDING), ("rating", DESCENDING)])
            .limit(limit)
        )
        return [Place.from_document(doc) for doc in cursor]

    def search_by_category(self, category, point, max_distance_m=5000, limit=20):
        query = {
            "category": {"$regex": re.escape(category or ""), "$options": "i"},
            "location.coordinates": self._near(point, max_distance_m),
            "is_active": True,
        }
        cursor = (
            self.collection.find(query)
            .sort([("rating", DESCENDING), ("popularity", DESCENDING)])
            .limit(limit)
        )
        return [Place.from_document(doc) for doc in cursor]
