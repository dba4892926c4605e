"""
MongoDB persistence for itineraries and users.

Itineraries are loaded into ``models.Itinerary`` aggregates and written back
whole; users stay plain documents, as the rest of the app treats them.
"""

import logging

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, GEOSPHERE, ReturnDocument

from models import Itinerary, utcnow

logger = logging.getLogger(__name__)


def to_object_id(value):
    """Return an ObjectId, or None when ``value`` is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    # ObjectId(None) would mint a fresh id
    if value is None:
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


class ItineraryRepository:
    def __init__(self, collection):
        self.collection = collection

    def ensure_indexes(self):
        self.collection.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        self.collection.create_index([("location.coordinates", GEOSPHERE)])
        self.collection.create_index([("type", ASCENDING), ("mood", ASCENDING), ("purpose", ASCENDING)])
        self.collection.create_index([("is_public", ASCENDING), ("like_count", DESCENDING)])

    def insert(self, itinerary, now=None):
        now = now or utcnow()
        itinerary.created_at = itinerary.created_at or now
        itinerary.updated_at = now
        result = self.collection.insert_one(itinerary.to_document())
        itinerary.id = str(result.inserted_id)
        return itinerary

    def save(self, itinerary, now=None):
        itinerary.updated_at = now or utcnow()
        self.collection.replace_one({"_id": ObjectId(itinerary.id)}, itinerary.to_document())
        return itinerary

    def get(self, itinerary_id):
        oid = to_object_id(itinerary_id)
        if oid is None:
            return None
        doc = self.collection.find_one({"_id": oid})
        return Itinerary.from_document(doc) if doc else None

    def get_owned(self, itinerary_id, user_id):
        oid = to_object_id(itinerary_id)
        if oid is None:
            return None
        doc = self.collection.find_one({"_id": oid, "user_id": str(user_id)})
        return Itinerary.from_document(doc) if doc else None

    def delete_owned(self, itinerary_id, user_id):
        oid = to_object_id(itinerary_id)
        if oid is None:
            return False
        result = self.collection.delete_one({"_id": oid, "user_id": str(user_id)})
        return result.deleted_count == 1

    def count_for_user(self, user_id):
        return self.collection.count_documents({"user_id": str(user_id)})

    def list_for_user(self, user_id, page=1, limit=10, type=None, status=None):
        query = {"user_id": str(user_id)}
        if type:
            query["type"] = type
        if status == "completed":
            query["is_completed"] = True
        elif status == "active":
            query["is_completed"] = False

        cursor = (
            self.collection.find(query)
            .sort("created_at", DESCENDING)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        items = [Itinerary.from_document(doc) for doc in cursor]
        return items, self.collection.count_documents(query)

    def find_popular(self, limit=10):
        cursor = (
            self.collection.find({"is_public": True})
            .sort([("like_count", DESCENDING), ("shares", DESCENDING)])
            .limit(limit)
        )
        return [Itinerary.from_document(doc) for doc in cursor]

    def find_by_location(self, point, max_distance_m=50000, limit=20):
        query = {
            "location.coordinates": {
                "$near": {
                    "$geometry": point.to_geojson(),
                    "$maxDistance": max_distance_m,
                }
            },
            "is_public": True,
        }
        cursor = self.collection.find(query).sort("created_at", DESCENDING).limit(limit)
        return [Itinerary.from_document(doc) for doc in cursor]


class UserRepository:
    def __init__(self, collection):
        self.collection = collection

    def ensure_indexes(self):
        self.collection.create_index([("email", ASCENDING)], unique=True)
        self.collection.create_index([("session_token", ASCENDING)])
        self.collection.create_index([("location.coordinates", GEOSPHERE)])

    def create(self, doc):
        result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    def get(self, user_id):
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return self.collection.find_one({"_id": oid})

    def find_by_email(self, email):
        return self.collection.find_one({"email": email})

    def find_by_session_token(self, token):
        if not token:
            return None
        return self.collection.find_one({"session_token": token})

    def update(self, user_id, fields):
        return self.collection.find_one_and_update(
            {"_id": to_object_id(user_id)},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )

    def delete(self, user_id):
        return self.collection.delete_one({"_id": to_object_id(user_id)}).deleted_count == 1

    def add_points(self, user_id, points):
        self.collection.update_one({"_id": to_object_id(user_id)}, {"$inc": {"points": points}})

    def add_badge(self, user_id, name, description, now=None):
        """Award a badge once; returns True if it was newly added."""
        result = self.collection.update_one(
            {"_id": to_object_id(user_id), "badges.name": {"$ne": name}},
            {"$push": {"badges": {
                "name": name,
                "description": description,
                "earned_at": now or utcnow(),
            }}},
        )
        return result.modified_count == 1

    def add_favorite(self, user_id, favorite):
        result = self.collection.update_one(
            {"_id": to_object_id(user_id), "favorites.place_id": {"$ne": favorite["place_id"]}},
            {"$push": {"favorites": favorite}},
        )
        return result.modified_count == 1

    def remove_favorite(self, user_id, place_id):
        self.collection.update_one(
            {"_id": to_object_id(user_id)},
            {"$pull": {"favorites": {"place_id": place_id}}},
        )

    def upsert_visited(self, user_id, entry):
        oid = to_object_id(user_id)
        fields = {"visited_places.$.visited_at": entry["visited_at"]}
        if entry.get("rating"):
            fields["visited_places.$.rating"] = entry["rating"]
        result = self.collection.update_one(
            {"_id": oid, "visited_places.place_id": entry["place_id"]},
            {"$set": fields},
        )
        if result.matched_count == 0:
            self.collection.update_one({"_id": oid}, {"$push": {"visited_places": entry}})
