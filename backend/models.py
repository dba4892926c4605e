"""
Domain model for places and itineraries.

Everything in here is pure: methods mutate the in-memory objects and return,
persistence is the repositories' job. Documents stored in MongoDB use
snake_case keys, JSON sent to the frontend uses camelCase keys.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

ITINERARY_TYPES = ("morning", "afternoon", "evening", "night", "full-day", "custom")
MOODS = ("relaxed", "energetic", "romantic", "adventurous", "social", "productive", "cultural")
PURPOSES = ("work", "relax", "explore", "dine", "nightlife", "culture", "shopping", "outdoor")

DEFAULT_TYPE = "custom"
DEFAULT_MOOD = "relaxed"
DEFAULT_PURPOSE = "explore"
DEFAULT_VISIT_MINUTES = 60

TITLE_MAX = 100
DESCRIPTION_MAX = 500

PLACE_CACHE_TTL = timedelta(hours=24)
PLACEHOLDER_PREFIX = "placeholder-"


def utcnow():
    return datetime.utcnow()


def coerce_choice(value, choices, default):
    if isinstance(value, str) and value.lower() in choices:
        return value.lower()
    return default


def clip(text, limit):
    text = (text or "").strip()
    return text[:limit]


def _js_round(value):
    # Math.round semantics (half up), not banker's rounding
    return int(math.floor(value + 0.5))


# ============== Geography ==============

@dataclass
class GeoPoint:
    """A point stored longitude first, as 2dsphere indexes expect."""
    lon: float
    lat: float

    @classmethod
    def parse(cls, text):
        """Parse a ``"longitude,latitude"`` string. Raises ValueError."""
        if not isinstance(text, str):
            raise ValueError("location must be a 'longitude,latitude' string")
        parts = [p.strip() for p in text.split(",")]
        if len(parts) != 2:
            raise ValueError("location must be a 'longitude,latitude' string")
        lon, lat = float(parts[0]), float(parts[1])
        if not (-180 <= lon <= 180 and -90 <= lat <= 90):
            raise ValueError("coordinates out of range")
        return cls(lon=lon, lat=lat)

    @classmethod
    def from_coordinates(cls, coordinates):
        if not coordinates or len(coordinates) < 2:
            return None
        return cls(lon=float(coordinates[0]), lat=float(coordinates[1]))

    @classmethod
    def from_geojson(cls, doc):
        if not doc:
            return None
        return cls.from_coordinates(doc.get("coordinates"))

    def to_geojson(self):
        return {"type": "Point", "coordinates": [self.lon, self.lat]}

    def to_list(self):
        return [self.lon, self.lat]

    def __str__(self):
        return f"{self.lon},{self.lat}"


# ============== Places ==============

def compute_popularity(checkins, tips, photos, rating):
    """Popularity score used to rank cached places."""
    return (
        (checkins or 0) * 0.4
        + (tips or 0) * 0.3
        + (photos or 0) * 0.2
        + (rating or 0) * 0.1
    )


def _group_items(groups, index):
    try:
        return [item.get("name") for item in groups[index].get("items", []) if item.get("name")]
    except (IndexError, AttributeError):
        return []


@dataclass
class Place:
    external_id: str
    name: str
    category: str = "Unknown"
    description: str = ""
    categories: list = field(default_factory=list)
    point: Optional[GeoPoint] = None
    address: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    formatted_address: str = ""
    phone: str = ""
    website: str = ""
    email: str = ""
    social: dict = field(default_factory=dict)
    is_open: bool = False
    hours: list = field(default_factory=list)
    price: Optional[int] = None
    rating: Optional[float] = None
    total_photos: int = 0
    total_tips: int = 0
    total_checkins: int = 0
    photos: list = field(default_factory=list)
    tips: list = field(default_factory=list)
    attributes: dict = field(default_factory=dict)
    popularity: float = 0.0
    last_updated: Optional[datetime] = None
    is_active: bool = True

    @classmethod
    def from_provider(cls, data):
        """Normalize a Foursquare place payload."""
        location = data.get("location") or {}
        geocode = (data.get("geocodes") or {}).get("main") or {}
        stats = data.get("stats") or {}
        hours = data.get("hours") or {}
        social = data.get("social_media") or {}
        categories = data.get("categories") or []
        groups = (data.get("attributes") or {}).get("groups") or []

        point = None
        if geocode.get("longitude") is not None and geocode.get("latitude") is not None:
            point = GeoPoint(lon=float(geocode["longitude"]), lat=float(geocode["latitude"]))

        price = data.get("price")
        if not isinstance(price, int) or not 1 <= price <= 4:
            price = None
        try:
            rating = max(0.0, min(10.0, float(data["rating"])))
        except (KeyError, TypeError, ValueError):
            rating = None

        place = cls(
            external_id=data.get("fsq_id") or data.get("id"),
            name=data.get("name") or "Unknown",
            description=data.get("description") or "",
            category=(categories[0].get("name") if categories else None) or "Unknown",
            categories=categories,
            point=point,
            address=location.get("address") or "",
            city=location.get("locality") or "",
            state=location.get("region") or "",
            country=location.get("country") or "",
            formatted_address=location.get("formatted_address") or "",
            phone=data.get("tel") or "",
            website=data.get("website") or "",
            email=data.get("email") or "",
            social={
                "facebook": social.get("facebook_id") or social.get("facebook") or "",
                "instagram": social.get("instagram") or "",
                "twitter": social.get("twitter") or "",
            },
            is_open=bool(hours.get("open_now") or hours.get("is_open")),
            hours=hours.get("regular") or hours.get("open") or [],
            price=price,
            rating=rating,
            total_photos=stats.get("total_photos") or 0,
            total_tips=stats.get("total_tips") or 0,
            total_checkins=stats.get("total_checkins") or stats.get("total_ratings") or 0,
            photos=data.get("photos") or [],
            tips=data.get("tips") or [],
            attributes={
                "atmosphere": _group_items(groups, 0),
                "cuisine": _group_items(groups, 1),
                "features": _group_items(groups, 2),
                "accessibility": _group_items(groups, 3),
            },
        )
        place.update_popularity()
        return place

    def update_popularity(self):
        self.popularity = compute_popularity(
            self.total_checkins, self.total_tips, self.total_photos, self.rating
        )
        return self.popularity

    def is_stale(self, now=None, ttl=PLACE_CACHE_TTL):
        if self.last_updated is None:
            return True
        return (now or utcnow()) - self.last_updated >= ttl

    @property
    def full_address(self):
        return ", ".join(p for p in (self.address, self.city, self.state, self.country) if p)

    def to_document(self):
        return {
            "external_id": self.external_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "categories": self.categories,
            "location": {
                "address": self.address,
                "city": self.city,
                "state": self.state,
                "country": self.country,
                "formatted_address": self.formatted_address,
                "coordinates": self.point.to_geojson() if self.point else None,
            },
            "contact": {"phone": self.phone, "website": self.website, "email": self.email},
            "social": self.social,
            "hours": {"is_open": self.is_open, "open": self.hours},
            "price": self.price,
            "rating": self.rating,
            "stats": {
                "total_photos": self.total_photos,
                "total_tips": self.total_tips,
                "total_checkins": self.total_checkins,
            },
            "photos": self.photos,
            "tips": self.tips,
            "attributes": self.attributes,
            "popularity": self.popularity,
            "last_updated": self.last_updated,
            "is_active": self.is_active,
        }

    @classmethod
    def from_document(cls, doc):
        location = doc.get("location") or {}
        contact = doc.get("contact") or {}
        hours = doc.get("hours") or {}
        stats = doc.get("stats") or {}
        place = cls(
            external_id=doc["external_id"],
            name=doc.get("name", "Unknown"),
            description=doc.get("description", ""),
            category=doc.get("category", "Unknown"),
            categories=doc.get("categories") or [],
            point=GeoPoint.from_geojson(location.get("coordinates")),
            address=location.get("address", ""),
            city=location.get("city", ""),
            state=location.get("state", ""),
            country=location.get("country", ""),
            formatted_address=location.get("formatted_address", ""),
            phone=contact.get("phone", ""),
            website=contact.get("website", ""),
            email=contact.get("email", ""),
            social=doc.get("social") or {},
            is_open=bool(hours.get("is_open")),
            hours=hours.get("open") or [],
            price=doc.get("price"),
            rating=doc.get("rating"),
            total_photos=stats.get("total_photos", 0),
            total_tips=stats.get("total_tips", 0),
            total_checkins=stats.get("total_checkins", 0),
            photos=doc.get("photos") or [],
            tips=doc.get("tips") or [],
            attributes=doc.get("attributes") or {},
            last_updated=doc.get("last_updated"),
            is_active=doc.get("is_active", True),
        )
        # never trust a stored score
        place.update_popularity()
        return place

    def to_json(self):
        return {
            "id": self.external_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "categories": self.categories,
            "location": {
                "address": self.address,
                "city": self.city,
                "state": self.state,
                "country": self.country,
                "formattedAddress": self.formatted_address or self.full_address,
                "coordinates": self.point.to_list() if self.point else None,
            },
            "contact": {"phone": self.phone, "website": self.website, "email": self.email},
            "social": self.social,
            "hours": {"isOpen": self.is_open, "open": self.hours},
            "price": self.price,
            "rating": self.rating,
            "stats": {
                "totalPhotos": self.total_photos,
                "totalTips": self.total_tips,
                "totalCheckins": self.total_checkins,
            },
            "photos": self.photos,
            "tips": self.tips,
            "attributes": self.attributes,
            "popularity": round(self.popularity, 2),
            "isOpen": self.is_open,
        }


# ============== Place references ==============

@dataclass(frozen=True)
class ResolvedRef:
    """A reference to a real place at the external provider."""
    external_id: str
    resolved = True

    def __str__(self):
        return self.external_id


@dataclass(frozen=True)
class UnresolvedRef:
    """An AI-suggested stop that could not be matched to a real place."""
    local_index: int
    resolved = False

    def __str__(self):
        return f"{PLACEHOLDER_PREFIX}{self.local_index}"


def place_ref_from_string(value):
    value = str(value)
    suffix = value[len(PLACEHOLDER_PREFIX):]
    if value.startswith(PLACEHOLDER_PREFIX) and suffix.isdigit():
        return UnresolvedRef(int(suffix))
    return ResolvedRef(value)


# ============== Itineraries ==============

@dataclass
class ItineraryPlace:
    ref: object
    name: str = ""
    category: str = ""
    order: int = 0
    estimated_duration: int = DEFAULT_VISIT_MINUTES
    notes: str = ""
    is_visited: bool = False
    rating: Optional[int] = None

    @property
    def place_id(self):
        return str(self.ref)

    def to_document(self):
        return {
            "place_id": self.place_id,
            "name": self.name,
            "category": self.category,
            "order": self.order,
            "estimated_duration": self.estimated_duration,
            "notes": self.notes,
            "is_visited": self.is_visited,
            "rating": self.rating,
        }

    @classmethod
    def from_document(cls, doc):
        return cls(
            ref=place_ref_from_string(doc["place_id"]),
            name=doc.get("name", ""),
            category=doc.get("category", ""),
            order=doc.get("order", 0),
            estimated_duration=doc.get("estimated_duration", DEFAULT_VISIT_MINUTES),
            notes=doc.get("notes", ""),
            is_visited=doc.get("is_visited", False),
            rating=doc.get("rating"),
        )

    def to_json(self):
        return {
            "placeId": self.place_id,
            "resolved": self.ref.resolved,
            "name": self.name,
            "category": self.category,
            "order": self.order,
            "estimatedDuration": self.estimated_duration,
            "notes": self.notes,
            "isVisited": self.is_visited,
            "rating": self.rating,
        }


@dataclass
class Like:
    user_id: str
    liked_at: datetime


@dataclass
class Itinerary:
    user_id: str
    title: str
    description: str = ""
    type: str = DEFAULT_TYPE
    mood: str = DEFAULT_MOOD
    purpose: str = DEFAULT_PURPOSE
    location: Optional[GeoPoint] = None
    city: Optional[str] = None
    country: Optional[str] = None
    places: List[ItineraryPlace] = field(default_factory=list)
    total_duration: int = 0
    total_distance: int = 0
    estimated_cost: float = 0
    tags: List[str] = field(default_factory=list)
    is_public: bool = False
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    ai_generated: bool = False
    ai_prompt: Optional[str] = None
    likes: List[Like] = field(default_factory=list)
    shares: int = 0
    weather: Optional[dict] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # ---- derived ----

    @property
    def like_count(self):
        return len(self.likes)

    @property
    def completion_percentage(self):
        if not self.places:
            return 0
        visited = sum(1 for p in self.places if p.is_visited)
        return _js_round(visited / len(self.places) * 100)

    def find_place(self, place_id):
        return next((p for p in self.places if p.place_id == place_id), None)

    # ---- mutations ----

    def update_totals(self):
        """Recompute total duration. Total distance needs a routing service and stays as is."""
        self.total_duration = sum(p.estimated_duration for p in self.places)
        return self

    def _renumber(self):
        for index, entry in enumerate(self.places, start=1):
            entry.order = index

    def add_place(self, entry):
        max_order = max((p.order for p in self.places), default=0)
        entry.order = max_order + 1
        self.places.append(entry)
        self.update_totals()
        return entry

    def remove_place(self, place_id):
        before = len(self.places)
        self.places = [p for p in self.places if p.place_id != place_id]
        self._renumber()
        self.update_totals()
        return len(self.places) != before

    def replace_places(self, entries):
        # keep the caller's ordering, then close any gaps
        self.places = sorted(entries, key=lambda p: p.order or 0)
        self._renumber()
        self.update_totals()
        return self

    def mark_visited(self, place_id, rating=None, now=None):
        """Returns the visited entry, or None when the place is not on the list."""
        entry = self.find_place(place_id)
        if entry is not None:
            entry.is_visited = True
            if rating is not None:
                entry.rating = rating
        # one-way: never reverted by later edits
        if not self.is_completed and self.places and all(p.is_visited for p in self.places):
            self.is_completed = True
            self.completed_at = now or utcnow()
        return entry

    def toggle_like(self, user_id, now=None):
        """Returns True when the user now likes the itinerary."""
        user_id = str(user_id)
        if any(like.user_id == user_id for like in self.likes):
            self.likes = [like for like in self.likes if like.user_id != user_id]
            return False
        self.likes.append(Like(user_id=user_id, liked_at=now or utcnow()))
        return True

    def record_share(self):
        self.shares += 1
        return self.shares

    # ---- serialization ----

    def to_document(self):
        return {
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "mood": self.mood,
            "purpose": self.purpose,
            "location": {
                "coordinates": self.location.to_geojson() if self.location else None,
                "city": self.city,
                "country": self.country,
            },
            "places": [p.to_document() for p in self.places],
            "total_duration": self.total_duration,
            "total_distance": self.total_distance,
            "estimated_cost": self.estimated_cost,
            "tags": list(self.tags),
            "is_public": self.is_public,
            "is_completed": self.is_completed,
            "completed_at": self.completed_at,
            "ai_generated": self.ai_generated,
            "ai_prompt": self.ai_prompt,
            "likes": [{"user_id": l.user_id, "liked_at": l.liked_at} for l in self.likes],
            "like_count": self.like_count,
            "shares": self.shares,
            "weather": self.weather,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc):
        location = doc.get("location") or {}
        return cls(
            id=str(doc["_id"]) if doc.get("_id") is not None else None,
            user_id=str(doc["user_id"]),
            title=doc.get("title", ""),
            description=doc.get("description", ""),
            type=doc.get("type", DEFAULT_TYPE),
            mood=doc.get("mood", DEFAULT_MOOD),
            purpose=doc.get("purpose", DEFAULT_PURPOSE),
            location=GeoPoint.from_geojson(location.get("coordinates")),
            city=location.get("city"),
            country=location.get("country"),
            places=[ItineraryPlace.from_document(p) for p in doc.get("places", [])],
            total_duration=doc.get("total_duration", 0),
            total_distance=doc.get("total_distance", 0),
            estimated_cost=doc.get("estimated_cost", 0),
            tags=list(doc.get("tags") or []),
            is_public=doc.get("is_public", False),
            is_completed=doc.get("is_completed", False),
            completed_at=doc.get("completed_at"),
            ai_generated=doc.get("ai_generated", False),
            ai_prompt=doc.get("ai_prompt"),
            likes=[Like(user_id=str(l["user_id"]), liked_at=l.get("liked_at"))
                   for l in doc.get("likes", [])],
            shares=doc.get("shares", 0),
            weather=doc.get("weather"),
            created_at=doc.get("created_at"),
            updated_at=doc.get("updated_at"),
        )

    def to_json(self, place_details=None):
        """``place_details`` maps place ids to resolved detail payloads (or None)."""
        places = []
        for entry in self.places:
            item = entry.to_json()
            if place_details is not None:
                item["details"] = place_details.get(entry.place_id)
            places.append(item)
        return {
            "id": self.id,
            "user": self.user_id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "mood": self.mood,
            "purpose": self.purpose,
            "location": {
                "coordinates": self.location.to_list() if self.location else None,
                "city": self.city,
                "country": self.country,
            },
            "places": places,
            "totalDuration": self.total_duration,
            "totalDistance": self.total_distance,
            "estimatedCost": self.estimated_cost,
            "tags": self.tags,
            "isPublic": self.is_public,
            "isCompleted": self.is_completed,
            "completedAt": _iso(self.completed_at),
            "completionPercentage": self.completion_percentage,
            "aiGenerated": self.ai_generated,
            "aiPrompt": self.ai_prompt,
            "likes": [{"user": l.user_id, "likedAt": _iso(l.liked_at)} for l in self.likes],
            "likeCount": self.like_count,
            "shares": self.shares,
            "weather": self.weather,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


def _iso(value):
    return value.isoformat() if isinstance(value, datetime) else value
