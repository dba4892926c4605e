"""
Request and model-output schemas.

Every JSON body and query string the API accepts is validated by one of the
pydantic models below through ``parse()``, which turns pydantic's error list
into the ``{"field", "message", "value"}`` entries of a single
``errors.ValidationError`` so clients see all problems at once.

The itinerary skeleton and recommendation shapes validate what the language
model sends back. They are lenient about types (the model is not) but strict
about structure.
"""

from typing import Annotated, List, Literal, Optional

from pydantic import (
    BaseModel, ConfigDict, EmailStr, Field, PlainValidator, field_validator,
)
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel

from accounts import ATMOSPHERES, CUISINES, PRICE_RANGES
from errors import ValidationError
from models import (
    DEFAULT_VISIT_MINUTES, ITINERARY_TYPES, MOODS, PURPOSES, GeoPoint, ItineraryPlace,
    place_ref_from_string,
)
from places_gateway import SORT_MODES

TIMES_OF_DAY = ("morning", "afternoon", "evening", "night")
QUICK_RESPONSE_CONTEXTS = ("food", "work", "entertainment")
ITINERARY_STATUSES = ("completed", "active")


# ============== Coordinates ==============

def _lonlat(value):
    """``"longitude,latitude"`` string to a GeoPoint; an empty string means no location."""
    if value == "" or isinstance(value, GeoPoint):
        return value or None
    try:
        return GeoPoint.parse(value)
    except ValueError:
        raise ValueError("Location must be in format: longitude,latitude")


def _coordinates(value):
    """``[longitude, latitude]`` array to a GeoPoint."""
    if isinstance(value, GeoPoint):
        return value
    try:
        lon, lat = (float(v) for v in value)
    except (TypeError, ValueError):
        raise ValueError("Coordinates must be an array of [longitude, latitude]")
    if not (-180 <= lon <= 180 and -90 <= lat <= 90):
        raise ValueError("Coordinates out of range")
    return GeoPoint(lon=lon, lat=lat)


LonLat = Annotated[GeoPoint, PlainValidator(_lonlat)]
Coordinates = Annotated[GeoPoint, PlainValidator(_coordinates)]


class Schema(BaseModel):
    # snake_case attributes, camelCase on the wire
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ============== Error mapping ==============

def _field_name(loc):
    name = ""
    for part in loc:
        if isinstance(part, int):
            name += f"[{part}]"
        else:
            name += f".{part}" if name else str(part)
    return name or "body"


def _message(error):
    ctx = error.get("ctx") or {}
    if "error" in ctx:
        return str(ctx["error"])
    return error["msg"]


def parse(schema, data):
    """Validate ``data`` against ``schema``. Raises errors.ValidationError."""
    if not isinstance(data, dict):
        raise ValidationError.single("body", "Request body must be a JSON object", data)
    try:
        return schema.model_validate(data)
    except SchemaError as e:
        raise ValidationError([
            {
                "field": _field_name(error["loc"]),
                "message": _message(error),
                "value": None if error["type"] == "missing" else error.get("input"),
            }
            for error in e.errors()
        ])


# ============== Auth ==============

class RegisterRequest(Schema):
    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6)
    preferences: Optional[dict] = None


class LoginRequest(Schema):
    email: EmailStr
    password: str = Field(min_length=1)


class ProfileUpdate(Schema):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None


class LocationUpdate(Schema):
    coordinates: Coordinates
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)


class PreferencesUpdate(Schema):
    cuisine: Optional[List[Literal[CUISINES]]] = None
    price_range: Optional[Literal[PRICE_RANGES]] = None
    atmosphere: Optional[List[Literal[ATMOSPHERES]]] = None
    activities: Optional[List[Literal[PURPOSES]]] = None


class PasswordChange(Schema):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


# ============== Places ==============

class PlaceSearchQuery(Schema):
    query: Optional[str] = None
    near: Optional[str] = None
    ll: Optional[LonLat] = None
    radius: Optional[int] = Field(None, ge=100, le=50000)
    limit: int = Field(20, ge=1, le=50)
    sort: Literal[SORT_MODES] = "RATING"
    categories: Optional[str] = None


class LocationQuery(Schema):
    ll: Optional[LonLat] = None
    radius: Optional[int] = Field(None, ge=100, le=50000)
    limit: Optional[int] = Field(None, ge=1, le=50)


class LimitQuery(Schema):
    limit: int = Field(10, ge=1, le=50)


class FavoriteRequest(Schema):
    place_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=200)
    category: Optional[str] = Field(None, max_length=100)


class PlaceVisitRequest(FavoriteRequest):
    rating: Optional[int] = Field(None, ge=1, le=5)


# ============== Chat ==============

class ConversationRequest(Schema):
    message: str = Field(min_length=1, max_length=1000)
    location: Optional[LonLat] = None
    context: Optional[dict] = None


class RecommendationRequest(Schema):
    location: Optional[LonLat] = None
    context: Optional[dict] = None


class SuggestionQuery(Schema):
    location: Optional[LonLat] = None
    time_of_day: Optional[Literal[TIMES_OF_DAY]] = None
    mood: Optional[Literal[MOODS]] = None
    purpose: Optional[Literal[PURPOSES]] = None


class QuickResponseQuery(Schema):
    context: Optional[Literal[QUICK_RESPONSE_CONTEXTS]] = None


class ChatMessage(Schema):
    role: Optional[str] = None
    content: str = Field(min_length=1, max_length=1000)


class PreferenceAnalysisRequest(Schema):
    conversation_history: List[ChatMessage] = Field(min_length=1)


# ============== Itineraries ==============

class GenerateRequest(Schema):
    prompt: str = Field(min_length=10, max_length=500)
    location: Optional[LonLat] = None
    preferences: Optional[dict] = None


class ItineraryListQuery(Schema):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=50)
    type: Optional[Literal[ITINERARY_TYPES]] = None
    status: Optional[Literal[ITINERARY_STATUSES]] = None


class ItineraryLocationQuery(Schema):
    ll: LonLat
    radius: int = Field(50000, ge=1000, le=100000)
    limit: int = Field(20, ge=1, le=50)


class ItineraryPlaceIn(Schema):
    place_id: str = Field(min_length=1)
    name: Optional[str] = Field(None, max_length=200)
    category: Optional[str] = Field(None, max_length=100)
    order: Optional[int] = Field(None, ge=0)
    estimated_duration: Optional[int] = Field(None, ge=15, le=480)
    notes: Optional[str] = Field(None, max_length=500)
    is_visited: bool = False
    rating: Optional[int] = Field(None, ge=1, le=5)

    def to_entry(self):
        return ItineraryPlace(
            ref=place_ref_from_string(self.place_id),
            name=self.name or "",
            category=self.category or "",
            order=self.order or 0,
            estimated_duration=self.estimated_duration or DEFAULT_VISIT_MINUTES,
            notes=self.notes or "",
            is_visited=self.is_visited,
            rating=self.rating,
        )


class ItineraryUpdate(Schema):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    places: Optional[List[ItineraryPlaceIn]] = None
    is_public: Optional[bool] = None


class AddPlaceRequest(Schema):
    place_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=200)
    category: str = Field("", max_length=100)
    estimated_duration: int = Field(DEFAULT_VISIT_MINUTES, ge=15, le=480)
    notes: str = Field("", max_length=500)


class StopVisitRequest(Schema):
    rating: Optional[int] = Field(None, ge=1, le=5)


# ============== Language-model output ==============

def _whole_number(value, default=0):
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return default


class SkeletonStop(Schema):
    name: str = Field(min_length=1)
    category: str = ""
    description: str = ""
    estimated_duration: int = DEFAULT_VISIT_MINUTES
    notes: str = ""

    @field_validator("name", "category", "description", "notes", mode="before")
    @classmethod
    def as_text(cls, v):
        return "" if v is None else str(v)

    @field_validator("estimated_duration", mode="before")
    @classmethod
    def as_minutes(cls, v):
        return _whole_number(v, DEFAULT_VISIT_MINUTES) or DEFAULT_VISIT_MINUTES


class ItinerarySkeleton(Schema):
    title: str = "AI Generated Itinerary"
    description: str = ""
    type: Optional[str] = None
    mood: Optional[str] = None
    purpose: Optional[str] = None
    places: List[SkeletonStop]
    total_duration: int = 0
    estimated_cost: int = 0
    tags: List[str] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def default_title(cls, v):
        return str(v) if v else "AI Generated Itinerary"

    @field_validator("description", mode="before")
    @classmethod
    def as_text(cls, v):
        return "" if v is None else str(v)

    @field_validator("places", mode="before")
    @classmethod
    def named_stops_only(cls, v):
        # stops without a name are dropped, not fatal
        if not isinstance(v, list):
            raise ValueError("itinerary skeleton has no places list")
        return [stop for stop in v if isinstance(stop, dict) and stop.get("name")]

    @field_validator("total_duration", "estimated_cost", mode="before")
    @classmethod
    def as_whole_number(cls, v):
        return _whole_number(v)

    @field_validator("tags", mode="before")
    @classmethod
    def as_tags(cls, v):
        return [str(t) for t in v] if isinstance(v, list) else []


class Recommendation(Schema):
    place: str = ""
    category: str = ""
    reasoning: str = ""
    match_score: Optional[float] = None

    @field_validator("place", "category", "reasoning", mode="before")
    @classmethod
    def as_text(cls, v):
        return "" if v is None else str(v)

    @field_validator("match_score", mode="before")
    @classmethod
    def as_score(cls, v):
        try:
            return float(v)
        except (TypeError, ValueError):
            return None


class RecommendationSet(Schema):
    recommendations: List[Recommendation]
    summary: str = ""

    @field_validator("recommendations", mode="before")
    @classmethod
    def objects_only(cls, v):
        if not isinstance(v, list):
            raise ValueError("recommendations must be a list")
        return [rec for rec in v if isinstance(rec, dict)]

    @field_validator("summary", mode="before")
    @classmethod
    def as_text(cls, v):
        return "" if v is None else str(v)
