"""
AI itinerary generation.

The language model proposes a skeleton of named stops; each stop is then
resolved against the places provider. Stops that cannot be resolved become
placeholders so the itinerary is never shorter than what the model proposed.
"""

import logging

from pymongo.errors import PyMongoError

from errors import GenerationFailed, MissingLocation
from models import (
    DEFAULT_MOOD, DEFAULT_PURPOSE, DEFAULT_TYPE, DESCRIPTION_MAX, ITINERARY_TYPES,
    MOODS, PURPOSES, TITLE_MAX, GeoPoint, Itinerary, ItineraryPlace, ResolvedRef,
    UnresolvedRef, clip, coerce_choice,
)

logger = logging.getLogger(__name__)

GENERATION_POINTS = 15
STUB_SEARCH_RADIUS_M = 5000
STUB_SEARCH_LIMIT = 5


def stored_location(user):
    location = (user or {}).get("location") or {}
    return GeoPoint.from_geojson(location.get("coordinates"))


def best_match(stub, results):
    """First result whose name contains the stub's name, or whose category contains its category."""
    name = (stub.get("name") or "").lower()
    category = (stub.get("category") or "").lower()
    for place in results:
        if name and name in (place.name or "").lower():
            return place
        if category and category in (place.category or "").lower():
            return place
    return None


class ItineraryGenerator:
    def __init__(self, places, recommender, itineraries, users):
        self.places = places
        self.recommender = recommender
        self.itineraries = itineraries
        self.users = users

    def resolve_location(self, user, location_hint=None):
        if location_hint:
            return location_hint if isinstance(location_hint, GeoPoint) else GeoPoint.parse(location_hint)
        point = stored_location(user)
        if point is None:
            raise MissingLocation("Location is required for itinerary generation")
        return point

    def resolve_stub(self, stub, index, point):
        """Returns ``(entry, details)``; details is None for placeholders."""
        match = None
        try:
            results = self.places.search(
                query=stub["name"],
                point=point,
                radius=STUB_SEARCH_RADIUS_M,
                limit=STUB_SEARCH_LIMIT,
            )
            match = best_match(stub, results)
        except Exception as e:
            # any per-stub failure becomes a placeholder
            logger.warning("Error finding place %s: %s", stub.get("name"), e)

        if match is None:
            entry = ItineraryPlace(
                ref=UnresolvedRef(index),
                name=stub["name"],
                category=stub.get("category", ""),
            )
        else:
            entry = ItineraryPlace(
                ref=ResolvedRef(match.external_id),
                name=match.name,
                category=match.category,
            )
        entry.order = index + 1
        entry.estimated_duration = stub.get("estimatedDuration") or 60
        entry.notes = stub.get("notes", "")
        return entry, match

    def generate(self, user, prompt, location_hint=None, preferences=None):
        """Generate, persist and return ``(itinerary, details_by_place_id)``."""
        point = self.resolve_location(user, location_hint)
        effective_prefs = dict(user.get("preferences") or {})
        effective_prefs.update(preferences or {})

        response = self.recommender.generate_itinerary_skeleton(prompt, effective_prefs, str(point))
        if not response.get("success"):
            raise GenerationFailed(response.get("error") or "Failed to generate itinerary")
        skeleton = response["itinerary"]

        entries, details = [], {}
        for index, stub in enumerate(skeleton["places"]):
            entry, match = self.resolve_stub(stub, index, point)
            entries.append(entry)
            details[entry.place_id] = match.to_json() if match else None

        user_location = user.get("location") or {}
        itinerary = Itinerary(
            user_id=str(user["_id"]),
            title=clip(skeleton.get("title"), TITLE_MAX) or "AI Generated Itinerary",
            description=clip(skeleton.get("description"), DESCRIPTION_MAX),
            type=coerce_choice(skeleton.get("type"), ITINERARY_TYPES, DEFAULT_TYPE),
            mood=coerce_choice(skeleton.get("mood"), MOODS, DEFAULT_MOOD),
            purpose=coerce_choice(skeleton.get("purpose"), PURPOSES, DEFAULT_PURPOSE),
            location=point,
            city=user_location.get("city"),
            country=user_location.get("country"),
            places=entries,
            estimated_cost=skeleton.get("estimatedCost") or 0,
            tags=skeleton.get("tags") or [],
            ai_generated=True,
            ai_prompt=prompt,
        )
        itinerary.update_totals()
        self.itineraries.insert(itinerary)
        logger.info("Generated itinerary %s with %d stops for user %s",
                    itinerary.id, len(entries), itinerary.user_id)

        try:
            self.users.add_points(user["_id"], GENERATION_POINTS)
        except PyMongoError as e:
            logger.warning("Could not award points to %s: %s", user["_id"], e)

        return itinerary, details
