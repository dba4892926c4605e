"""
User accounts, bearer sessions, preferences and the gamification extras
(favorites, visited places, points and badges).
"""

import logging
import secrets
from datetime import timedelta

from werkzeug.security import check_password_hash, generate_password_hash

from errors import ApiError, Conflict, NotFound, Unauthorized, ValidationError
from models import GeoPoint, utcnow

logger = logging.getLogger(__name__)

SESSION_REFRESH_WINDOW = timedelta(minutes=10)

FAVORITE_POINTS = 5
VISIT_POINTS = 10
# visited-count -> (badge name, description)
VISIT_BADGES = {
    1: ("First Explorer", "Visited your first place!"),
    10: ("Adventure Seeker", "Visited 10 different places!"),
}

CUISINES = ("italian", "chinese", "japanese", "indian", "mexican", "american", "french", "thai", "mediterranean", "other")
PRICE_RANGES = ("budget", "moderate", "expensive", "luxury")
ATMOSPHERES = ("quiet", "vibrant", "romantic", "family-friendly", "casual", "formal", "outdoor", "cozy")

DEFAULT_PREFERENCES = {"cuisine": [], "priceRange": "moderate", "atmosphere": [], "activities": []}


def _iso(value):
    return value.isoformat() if value else None


def _place_entry_json(entry, date_key):
    data = {
        "placeId": entry["place_id"],
        "name": entry.get("name"),
        "category": entry.get("category"),
        date_key: _iso(entry.get(date_key.replace("At", "_at"))),
    }
    if "rating" in entry:
        data["rating"] = entry.get("rating")
    return data


def public_profile(user):
    location = user.get("location") or {}
    point = GeoPoint.from_geojson(location.get("coordinates"))
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "avatar": user.get("avatar", ""),
        "preferences": user.get("preferences") or dict(DEFAULT_PREFERENCES),
        "location": {
            "coordinates": point.to_list() if point else None,
            "city": location.get("city"),
            "country": location.get("country"),
        },
        "favorites": [_place_entry_json(f, "addedAt") for f in user.get("favorites", [])],
        "visitedPlaces": [_place_entry_json(v, "visitedAt") for v in user.get("visited_places", [])],
        "points": user.get("points", 0),
        "badges": [
            {"name": b["name"], "description": b.get("description"), "earnedAt": _iso(b.get("earned_at"))}
            for b in user.get("badges", [])
        ],
        "isActive": user.get("is_active", True),
        "lastActive": _iso(user.get("last_active")),
        "createdAt": _iso(user.get("created_at")),
    }


class AccountService:
    def __init__(self, users, places, session_ttl_minutes=60 * 24 * 7):
        self.users = users
        self.places = places
        self.session_ttl = timedelta(minutes=session_ttl_minutes)

    # ---------------- sessions ----------------

    def _start_session(self, user):
        token = secrets.token_hex(32)
        now = utcnow()
        self.users.update(user["_id"], {
            "session_token": token,
            "session_expires": now + self.session_ttl,
            "last_active": now,
        })
        return token

    def register(self, name, email, password, preferences=None):
        email = email.strip().lower()
        if self.users.find_by_email(email):
            raise Conflict("User already exists with this email")

        now = utcnow()
        user = self.users.create({
            "name": name.strip(),
            "email": email,
            "password_hash": generate_password_hash(password),
            "avatar": "",
            "preferences": dict(DEFAULT_PREFERENCES, **(preferences or {})),
            "location": None,
            "favorites": [],
            "visited_places": [],
            "points": 0,
            "badges": [],
            "is_active": True,
            "session_token": None,
            "session_expires": None,
            "last_active": now,
            "created_at": now,
        })
        logger.info("Registered user %s", user["_id"])
        return user, self._start_session(user)

    def login(self, email, password):
        user = self.users.find_by_email((email or "").strip().lower())
        if not user or not check_password_hash(user["password_hash"], password or ""):
            raise Unauthorized("Invalid credentials")
        if not user.get("is_active", True):
            raise Unauthorized("Account is deactivated")
        token = self._start_session(user)
        return self.users.get(user["_id"]), token

    def logout(self, token):
        user = self.users.find_by_session_token(token)
        if not user:
            raise Unauthorized("Invalid session")
        self.users.update(user["_id"], {"session_token": None, "session_expires": None})

    def authenticate(self, token):
        """Resolve a bearer token to a user document, sliding the expiry when close to it."""
        if not token:
            raise Unauthorized()
        user = self.users.find_by_session_token(token)
        if not user or not user.get("session_expires"):
            raise Unauthorized("Invalid token.")

        now = utcnow()
        if user["session_expires"] < now:
            self.users.update(user["_id"], {"session_token": None, "session_expires": None})
            raise Unauthorized("Token expired.")
        if not user.get("is_active", True):
            raise Unauthorized("Account is deactivated.")

        if user["session_expires"] - now < SESSION_REFRESH_WINDOW:
            user["session_expires"] = now + self.session_ttl
            self.users.update(user["_id"], {"session_expires": user["session_expires"]})
        return user

    # ---------------- profile ----------------

    def _reload(self, user):
        fresh = self.users.get(user["_id"])
        if fresh is None:
            raise NotFound("User not found")
        return fresh

    def update_profile(self, user, name=None, email=None):
        fields = {}
        if name:
            fields["name"] = name.strip()
        if email:
            email = email.strip().lower()
            if email != user.get("email") and self.users.find_by_email(email):
                raise Conflict("Email already in use")
            fields["email"] = email
        if not fields:
            return user
        return self.users.update(user["_id"], fields)

    def update_location(self, user, point, city=None, country=None):
        return self.users.update(user["_id"], {
            "location": {"coordinates": point.to_geojson(), "city": city, "country": country},
        })

    def update_preferences(self, user, preferences):
        merged = dict(user.get("preferences") or DEFAULT_PREFERENCES)
        merged.update({k: v for k, v in preferences.items() if v is not None})
        return self.users.update(user["_id"], {"preferences": merged})

    def change_password(self, user, current_password, new_password):
        if not check_password_hash(user["password_hash"], current_password or ""):
            raise ValidationError.single("currentPassword", "Current password is incorrect")
        self.users.update(user["_id"], {"password_hash": generate_password_hash(new_password)})

    def delete_account(self, user):
        self.users.delete(user["_id"])
        logger.info("Deleted user %s", user["_id"])

    def stats(self, user):
        return {
            "totalFavorites": len(user.get("favorites", [])),
            "totalVisited": len(user.get("visited_places", [])),
            "totalPoints": user.get("points", 0),
            "totalBadges": len(user.get("badges", [])),
            "memberSince": _iso(user.get("created_at")),
            "lastActive": _iso(user.get("last_active")),
        }

    # ---------------- favorites / visits ----------------

    def add_favorite(self, user, place_id, name, category=None):
        added = self.users.add_favorite(user["_id"], {
            "place_id": place_id,
            "name": name,
            "category": category,
            "added_at": utcnow(),
        })
        if not added:
            raise Conflict("Place is already in favorites")
        self.users.add_points(user["_id"], FAVORITE_POINTS)
        return self._reload(user)

    def remove_favorite(self, user, place_id):
        self.users.remove_favorite(user["_id"], place_id)
        return self._reload(user)

    def mark_visited(self, user, place_id, name, category=None, rating=None):
        self.users.upsert_visited(user["_id"], {
            "place_id": place_id,
            "name": name,
            "category": category,
            "visited_at": utcnow(),
            "rating": rating,
        })
        self.users.add_points(user["_id"], VISIT_POINTS)
        user = self._reload(user)

        badge = VISIT_BADGES.get(len(user.get("visited_places", [])))
        if badge and self.users.add_badge(user["_id"], *badge):
            user = self._reload(user)
        return user

    def with_details(self, entries, date_key):
        """Attach live place details to favorite/visited entries; failures yield None."""
        result = []
        for entry in entries:
            item = _place_entry_json(entry, date_key)
            try:
                item["details"] = self.places.get_details(entry["place_id"]).to_json()
            except ApiError as e:
                logger.warning("No details for %s: %s", entry["place_id"], e)
                item["details"] = None
            result.append(item)
        return result
