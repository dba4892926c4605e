"""Itinerary use cases: load the aggregate, apply a domain operation, save it."""

import logging

from errors import ApiError, NotFound

logger = logging.getLogger(__name__)


class ItineraryService:
    def __init__(self, repository, places):
        self.repository = repository
        self.places = places

    def _owned(self, itinerary_id, user_id):
        itinerary = self.repository.get_owned(itinerary_id, user_id)
        if itinerary is None:
            raise NotFound("Itinerary not found")
        return itinerary

    def list_for_user(self, user_id, page=1, limit=10, type=None, status=None):
        items, total = self.repository.list_for_user(user_id, page, limit, type, status)
        return {
            "itineraries": [i.to_json() for i in items],
            "pagination": {
                "current": page,
                "pages": (total + limit - 1) // limit,
                "total": total,
            },
        }

    def resolve_details(self, itinerary):
        """Live place details per entry, re-fetched through the cache-first gateway."""
        details = {}
        for entry in itinerary.places:
            if not entry.ref.resolved:
                continue
            try:
                details[entry.place_id] = self.places.get_details(entry.place_id).to_json()
            except ApiError as e:
                logger.warning("No details for %s: %s", entry.place_id, e)
                details[entry.place_id] = None
        return details

    def get_with_details(self, itinerary_id, user_id):
        itinerary = self._owned(itinerary_id, user_id)
        return itinerary.to_json(place_details=self.resolve_details(itinerary))

    def update(self, itinerary_id, user_id, title=None, description=None, places=None, is_public=None):
        itinerary = self._owned(itinerary_id, user_id)
        if title:
            itinerary.title = title
        if description:
            itinerary.description = description
        if places is not None:
            itinerary.replace_places(places)
        if is_public is not None:
            itinerary.is_public = is_public
        return self.repository.save(itinerary)

    def delete(self, itinerary_id, user_id):
        if not self.repository.delete_owned(itinerary_id, user_id):
            raise NotFound("Itinerary not found")

    def add_place(self, itinerary_id, user_id, entry):
        itinerary = self._owned(itinerary_id, user_id)
        itinerary.add_place(entry)
        return self.repository.save(itinerary)

    def remove_place(self, itinerary_id, user_id, place_id):
        itinerary = self._owned(itinerary_id, user_id)
        itinerary.remove_place(place_id)
        return self.repository.save(itinerary)

    def mark_visited(self, itinerary_id, user_id, place_id, rating=None):
        itinerary = self._owned(itinerary_id, user_id)
        if itinerary.mark_visited(place_id, rating) is None:
            logger.info("Place %s not on itinerary %s, nothing to mark", place_id, itinerary_id)
        return self.repository.save(itinerary)

    def toggle_like(self, itinerary_id, user_id):
        # any authenticated user may like any itinerary
        itinerary = self.repository.get(itinerary_id)
        if itinerary is None:
            raise NotFound("Itinerary not found")
        liked = itinerary.toggle_like(user_id)
        self.repository.save(itinerary)
        return liked, itinerary.like_count

    def share(self, itinerary_id):
        itinerary = self.repository.get(itinerary_id)
        if itinerary is None:
            raise NotFound("Itinerary not found")
        shares = itinerary.record_share()
        self.repository.save(itinerary)
        return shares

    def popular(self, limit=10):
        return [i.to_json() for i in self.repository.find_popular(limit)]

    def by_location(self, point, radius=50000, limit=20):
        return [i.to_json() for i in self.repository.find_by_location(point, radius, limit)]
