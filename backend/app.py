import io
import logging
import time
from datetime import datetime
from functools import wraps

from flask import Blueprint, Flask, current_app, g, jsonify, request, send_file
from pymongo import MongoClient
from werkzeug.exceptions import HTTPException

from accounts import AccountService, public_profile
from config import Settings, configure_logging
from errors import (
    ApiError, MissingLocation, NotFound, Unauthorized, UpstreamUnavailable, ValidationError,
)
from itineraries import ItineraryService
from llm import RecommendationGateway
from models import ItineraryPlace, place_ref_from_string
from orchestrator import ItineraryGenerator, best_match, stored_location
from pdf import generate_itinerary_pdf
from place_cache import PlaceCacheStore
from places_gateway import PlacesGateway
from preferences import (
    analyze_conversation, contextual_suggestions, quick_responses, time_of_day,
)
from repositories import ItineraryRepository, UserRepository, to_object_id
from schemas import (
    AddPlaceRequest, ConversationRequest, FavoriteRequest, GenerateRequest, ItineraryListQuery,
    ItineraryLocationQuery, ItineraryUpdate, LimitQuery, LocationQuery, LocationUpdate,
    LoginRequest, PasswordChange, PlaceSearchQuery, PlaceVisitRequest, PreferenceAnalysisRequest,
    PreferencesUpdate, ProfileUpdate, QuickResponseQuery, RecommendationRequest,
    RegisterRequest, StopVisitRequest, SuggestionQuery, parse,
)

logger = logging.getLogger(__name__)

CHAT_SEARCH_RADIUS_M = 5000


class Services:
    """Everything a request handler needs, built once per app."""

    def __init__(self, settings, db, places=None, recommender=None):
        self.settings = settings
        self.place_cache = PlaceCacheStore(db["places"])
        self.places = places or PlacesGateway(settings, self.place_cache)
        self.recommender = recommender or RecommendationGateway(settings)
        self.itinerary_repo = ItineraryRepository(db["itineraries"])
        self.users = UserRepository(db["users"])
        self.accounts = AccountService(self.users, self.places, settings.session_ttl_minutes)
        self.itineraries = ItineraryService(self.itinerary_repo, self.places)
        self.generator = ItineraryGenerator(self.places, self.recommender, self.itinerary_repo, self.users)

    def ensure_indexes(self):
        self.place_cache.ensure_indexes()
        self.itinerary_repo.ensure_indexes()
        self.users.ensure_indexes()


def services():
    return current_app.extensions["localmate"]


def ok(data=None, message=None, status=200):
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def _bearer_token():
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.lower().startswith("bearer "):
        return None
    return auth_header[7:].strip() or None


# Provided a simple route protection overlay
def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        token = _bearer_token()
        if not token:
            raise Unauthorized()
        g.current_user = services().accounts.authenticate(token)
        g.session_token = token
        return f(*args, **kwargs)
    return decorated


def optional_auth(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        g.current_user = None
        token = _bearer_token()
        if token:
            try:
                g.current_user = services().accounts.authenticate(token)
            except Unauthorized:
                # anonymous access is fine for these routes
                g.current_user = None
        return f(*args, **kwargs)
    return decorated


def json_body(schema):
    body = request.get_json(silent=True)
    return parse(schema, {} if body is None else body)


def query_args(schema):
    # "?radius=" is the same as leaving radius out
    return parse(schema, {k: v for k, v in request.args.items() if v != ""})


def location_or_stored(point, message):
    """An explicit point, else the caller's saved location, else MissingLocation."""
    if point is not None:
        return point
    point = stored_location(g.get("current_user"))
    if point is None:
        raise MissingLocation(message)
    return point


api = Blueprint("api", __name__)


@api.route("/health", methods=["GET"])
def health():
    return jsonify({
        "status": "OK",
        "timestamp": datetime.utcnow().isoformat(),
    })


# ============== Auth ==============

@api.route("/api/auth/register", methods=["POST"])
def register():
    body = json_body(RegisterRequest)
    user, token = services().accounts.register(body.name, body.email, body.password, body.preferences)
    return ok({"user": public_profile(user), "token": token}, "User registered successfully", 201)


@api.route("/api/auth/login", methods=["POST"])
def login():
    body = json_body(LoginRequest)
    user, token = services().accounts.login(body.email, body.password)
    return ok({"user": public_profile(user), "token": token}, "Login successful")


@api.route("/api/auth/logout", methods=["POST"])
@login_required
def logout():
    services().accounts.logout(g.session_token)
    return ok(message="Logged out successfully")


@api.route("/api/auth/profile", methods=["GET"])
@login_required
def get_profile():
    return ok({"user": public_profile(g.current_user)})


@api.route("/api/auth/profile", methods=["PUT"])
@login_required
def update_profile():
    body = json_body(ProfileUpdate)
    user = services().accounts.update_profile(g.current_user, name=body.name, email=body.email)
    return ok({"user": public_profile(user)}, "Profile updated successfully")


@api.route("/api/auth/location", methods=["PUT"])
@login_required
def update_location():
    body = json_body(LocationUpdate)
    user = services().accounts.update_location(g.current_user, body.coordinates, body.city, body.country)
    return ok({"user": public_profile(user)}, "Location updated successfully")


@api.route("/api/auth/preferences", methods=["PUT"])
@login_required
def update_preferences():
    preferences = json_body(PreferencesUpdate).model_dump(by_alias=True)
    user = services().accounts.update_preferences(g.current_user, preferences)
    return ok({"user": public_profile(user)}, "Preferences updated successfully")


@api.route("/api/auth/password", methods=["PUT"])
@login_required
def change_password():
    body = json_body(PasswordChange)
    services().accounts.change_password(g.current_user, body.current_password, body.new_password)
    return ok(message="Password changed successfully")


@api.route("/api/auth/account", methods=["DELETE"])
@login_required
def delete_account():
    services().accounts.delete_account(g.current_user)
    return ok(message="Account deleted successfully")


@api.route("/api/auth/stats", methods=["GET"])
@login_required
def user_stats():
    stats = services().accounts.stats(g.current_user)
    stats["totalItineraries"] = services().itinerary_repo.count_for_user(g.current_user["_id"])
    return ok({"stats": stats})


# ============== Places ==============

def _place_list(places, **extra):
    data = {"places": [p.to_json() for p in places], "total": len(places)}
    data.update(extra)
    return ok(data)


@api.route("/api/places/search", methods=["GET"])
@optional_auth
def search_places():
    q = query_args(PlaceSearchQuery)
    point = q.ll
    if point is None and not q.near:
        point = stored_location(g.current_user)
    radius = q.radius or services().settings.default_radius_m

    places = services().places.search(
        query=q.query, near=q.near, point=point, radius=radius,
        categories=q.categories, limit=q.limit, sort=q.sort,
    )
    return _place_list(places, searchParams={
        "query": q.query,
        "near": q.near,
        "ll": str(point) if point else None,
        "radius": radius,
        "categories": q.categories,
        "limit": q.limit,
        "sort": q.sort,
    })


def _location_query():
    q = query_args(LocationQuery)
    return q.ll, q.radius or services().settings.default_radius_m, q.limit


@api.route("/api/places/nearby", methods=["GET"])
@optional_auth
def nearby_places():
    point, radius, limit = _location_query()
    point = location_or_stored(point, "Location is required for nearby places")
    places = services().place_cache.find_near(point, radius, limit or 20)
    return _place_list(places)


@api.route("/api/places/trending", methods=["GET"])
@optional_auth
def trending_places():
    point, _, limit = _location_query()
    point = location_or_stored(point, "Location is required for trending places")
    try:
        places = services().places.get_trending(point, limit or 10)
    except UpstreamUnavailable as e:
        logger.warning("Trending places unavailable: %s", e)
        places = []
    return _place_list(places)


@api.route("/api/places/category/<category>", methods=["GET"])
@optional_auth
def places_by_category(category):
    point, radius, limit = _location_query()
    point = location_or_stored(point, "Location is required for category search")
    places = services().places.search_by_category_name(category, point, radius, limit or 20)
    return _place_list(places, category=category)


@api.route("/api/places/favorites", methods=["GET"])
@login_required
def get_favorites():
    favorites = services().accounts.with_details(g.current_user.get("favorites", []), "addedAt")
    return ok({"favorites": favorites, "total": len(favorites)})


@api.route("/api/places/favorite", methods=["POST"])
@login_required
def add_favorite():
    body = json_body(FavoriteRequest)
    user = services().accounts.add_favorite(g.current_user, body.place_id, body.name, body.category)
    return ok({"favorites": public_profile(user)["favorites"]}, "Added to favorites successfully")


@api.route("/api/places/favorite/<place_id>", methods=["DELETE"])
@login_required
def remove_favorite(place_id):
    user = services().accounts.remove_favorite(g.current_user, place_id)
    return ok({"favorites": public_profile(user)["favorites"]}, "Removed from favorites successfully")


@api.route("/api/places/visited", methods=["GET"])
@login_required
def get_visited():
    visited = services().accounts.with_details(g.current_user.get("visited_places", []), "visitedAt")
    return ok({"visitedPlaces": visited, "total": len(visited)})


@api.route("/api/places/visited", methods=["POST"])
@login_required
def mark_place_visited():
    body = json_body(PlaceVisitRequest)
    user = services().accounts.mark_visited(
        g.current_user, body.place_id, body.name, body.category, body.rating,
    )
    profile = public_profile(user)
    return ok({
        "visitedPlaces": profile["visitedPlaces"],
        "points": profile["points"],
        "badges": profile["badges"],
    }, "Marked as visited successfully")


@api.route("/api/places/<place_id>", methods=["GET"])
@optional_auth
def place_details(place_id):
    place = services().places.get_details(place_id)

    user_interaction = None
    if g.current_user:
        visited = next((v for v in g.current_user.get("visited_places", [])
                        if v["place_id"] == place_id), None)
        user_interaction = {
            "isFavorite": any(f["place_id"] == place_id for f in g.current_user.get("favorites", [])),
            "visited": visited is not None,
            "rating": visited.get("rating") if visited else None,
        }
    return ok({"place": place.to_json(), "userInteraction": user_interaction})


@api.route("/api/places/<place_id>/photos", methods=["GET"])
@optional_auth
def place_photos(place_id):
    photos = services().places.get_photos(place_id, query_args(LimitQuery).limit)
    return ok({"photos": photos, "total": len(photos)})


@api.route("/api/places/<place_id>/tips", methods=["GET"])
@optional_auth
def place_tips(place_id):
    tips = services().places.get_tips(place_id, query_args(LimitQuery).limit)
    return ok({"tips": tips, "total": len(tips)})


# ============== Chat ==============

def _user_context(user):
    if not user:
        return {}
    point = stored_location(user)
    return {
        "preferences": user.get("preferences"),
        "location": str(point) if point else None,
        "history": {
            "favorites": len(user.get("favorites", [])),
            "visited": len(user.get("visited_places", [])),
            "points": user.get("points", 0),
        },
    }


@api.route("/api/chat/conversation", methods=["POST"])
@optional_auth
def chat_conversation():
    body = json_body(ConversationRequest)
    message = body.message

    svc = services()
    intent = svc.recommender.extract_intent(message)

    point = body.location or stored_location(g.current_user)
    available = []
    if point is not None:
        try:
            available = svc.places.search(point=point, radius=CHAT_SEARCH_RADIUS_M, limit=10)
        except ApiError as e:
            logger.warning("Error fetching available places: %s", e)

    response = svc.recommender.converse(message, _user_context(g.current_user), available)
    response["intent"] = intent
    response["context"] = {
        "location": str(point) if point else None,
        "timeOfDay": time_of_day(datetime.now().hour),
        "availablePlaces": len(available),
    }
    return ok(response)


@api.route("/api/chat/recommendations", methods=["POST"])
@login_required
def chat_recommendations():
    body = json_body(RecommendationRequest)

    svc = services()
    user = g.current_user
    point = location_or_stored(body.location, "Location is required for personalized recommendations")
    result = svc.recommender.generate_recommendations(user.get("preferences"), str(point), body.context)

    matched = []
    if result.get("success"):
        try:
            places = svc.places.search(point=point, radius=CHAT_SEARCH_RADIUS_M, limit=20)
        except ApiError as e:
            logger.warning("Error fetching recommended places: %s", e)
            places = []
        for rec in result["recommendations"]:
            place = best_match({"name": rec["place"], "category": rec["category"]}, places)
            if place is not None:
                matched.append(dict(rec, place=place.to_json()))

    return ok({
        "recommendations": matched,
        "summary": result.get("summary", ""),
        "userPreferences": user.get("preferences"),
    })


@api.route("/api/chat/suggestions", methods=["GET"])
def chat_suggestions():
    q = query_args(SuggestionQuery)
    period = q.time_of_day or time_of_day(datetime.now().hour)
    return ok({"suggestions": contextual_suggestions(period, q.mood, q.purpose)})


@api.route("/api/chat/quick-responses", methods=["GET"])
def chat_quick_responses():
    q = query_args(QuickResponseQuery)
    return ok({"quickResponses": quick_responses(q.context)})


@api.route("/api/chat/analyze-preferences", methods=["POST"])
@login_required
def chat_analyze_preferences():
    body = json_body(PreferenceAnalysisRequest)
    history = [msg.model_dump() for msg in body.conversation_history]

    analysis = analyze_conversation(history)
    if analysis["newPreferences"]:
        services().accounts.update_preferences(g.current_user, analysis["newPreferences"])
    return ok({
        "analysis": analysis,
        "updatedPreferences": bool(analysis["newPreferences"]),
    })


# ============== Itineraries ==============

@api.route("/api/itineraries/generate", methods=["POST"])
@login_required
def generate_itinerary():
    body = json_body(GenerateRequest)
    itinerary, details = services().generator.generate(
        g.current_user, body.prompt, body.location, body.preferences,
    )
    return ok(
        {"itinerary": itinerary.to_json(place_details=details)},
        "Itinerary generated successfully",
        201,
    )


@api.route("/api/itineraries", methods=["GET"])
@login_required
def list_itineraries():
    q = query_args(ItineraryListQuery)
    data = services().itineraries.list_for_user(g.current_user["_id"], q.page, q.limit, q.type, q.status)
    return ok(data)


@api.route("/api/itineraries/popular", methods=["GET"])
def popular_itineraries():
    return ok({"itineraries": services().itineraries.popular(query_args(LimitQuery).limit)})


@api.route("/api/itineraries/location", methods=["GET"])
def itineraries_by_location():
    q = query_args(ItineraryLocationQuery)
    return ok({"itineraries": services().itineraries.by_location(q.ll, q.radius, q.limit)})


def _check_id(itinerary_id):
    if to_object_id(itinerary_id) is None:
        raise ValidationError.single("id", "Invalid ID format", itinerary_id)


@api.route("/api/itineraries/<itinerary_id>", methods=["GET"])
@login_required
def get_itinerary(itinerary_id):
    _check_id(itinerary_id)
    data = services().itineraries.get_with_details(itinerary_id, g.current_user["_id"])
    return ok({"itinerary": data})


@api.route("/api/itineraries/<itinerary_id>", methods=["PUT"])
@login_required
def update_itinerary(itinerary_id):
    _check_id(itinerary_id)
    body = json_body(ItineraryUpdate)
    places = [p.to_entry() for p in body.places] if body.places is not None else None
    itinerary = services().itineraries.update(
        itinerary_id, g.current_user["_id"],
        title=body.title, description=body.description, places=places, is_public=body.is_public,
    )
    return ok({"itinerary": itinerary.to_json()}, "Itinerary updated successfully")


@api.route("/api/itineraries/<itinerary_id>", methods=["DELETE"])
@login_required
def delete_itinerary(itinerary_id):
    _check_id(itinerary_id)
    services().itineraries.delete(itinerary_id, g.current_user["_id"])
    return ok(message="Itinerary deleted successfully")


@api.route("/api/itineraries/<itinerary_id>/places", methods=["POST"])
@login_required
def add_itinerary_place(itinerary_id):
    _check_id(itinerary_id)
    body = json_body(AddPlaceRequest)
    entry = ItineraryPlace(
        ref=place_ref_from_string(body.place_id),
        name=body.name,
        category=body.category,
        estimated_duration=body.estimated_duration,
        notes=body.notes,
    )
    itinerary = services().itineraries.add_place(itinerary_id, g.current_user["_id"], entry)
    return ok({"itinerary": itinerary.to_json()}, "Place added to itinerary")


@api.route("/api/itineraries/<itinerary_id>/places/<place_id>", methods=["DELETE"])
@login_required
def remove_itinerary_place(itinerary_id, place_id):
    _check_id(itinerary_id)
    itinerary = services().itineraries.remove_place(itinerary_id, g.current_user["_id"], place_id)
    return ok({"itinerary": itinerary.to_json()}, "Place removed from itinerary")


@api.route("/api/itineraries/<itinerary_id>/places/<place_id>/visited", methods=["PUT"])
@login_required
def mark_itinerary_place_visited(itinerary_id, place_id):
    _check_id(itinerary_id)
    rating = json_body(StopVisitRequest).rating
    itinerary = services().itineraries.mark_visited(itinerary_id, g.current_user["_id"], place_id, rating)
    return ok({"itinerary": itinerary.to_json()}, "Place marked as visited")


@api.route("/api/itineraries/<itinerary_id>/like", methods=["POST"])
@login_required
def like_itinerary(itinerary_id):
    _check_id(itinerary_id)
    liked, count = services().itineraries.toggle_like(itinerary_id, g.current_user["_id"])
    return ok({"isLiked": liked, "likeCount": count},
              "Itinerary liked" if liked else "Itinerary unliked")


@api.route("/api/itineraries/<itinerary_id>/share", methods=["POST"])
@login_required
def share_itinerary(itinerary_id):
    _check_id(itinerary_id)
    shares = services().itineraries.share(itinerary_id)
    return ok({"shares": shares}, "Itinerary shared successfully")


@api.route("/api/itineraries/<itinerary_id>/pdf", methods=["GET"])
@login_required
def itinerary_pdf(itinerary_id):
    _check_id(itinerary_id)
    itinerary = services().itinerary_repo.get_owned(itinerary_id, g.current_user["_id"])
    if itinerary is None:
        raise NotFound("Itinerary not found")
    return send_file(
        io.BytesIO(generate_itinerary_pdf(itinerary)),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"itinerary-{itinerary_id}.pdf",
    )


# ============== App factory ==============

def create_app(settings=None, db=None, places=None, recommender=None):
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = Flask(__name__)
    owns_db = db is None
    if owns_db:
        db = MongoClient(settings.mongo_uri)[settings.mongo_db_name]
    svc = Services(settings, db, places=places, recommender=recommender)
    if owns_db:
        svc.ensure_indexes()
    app.extensions["localmate"] = svc
    app.register_blueprint(api)

    @app.before_request
    def start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def log_request(response):
        elapsed_ms = (time.perf_counter() - g.get("request_started", time.perf_counter())) * 1000
        logger.info("%s %s %s %.1fms", request.method, request.path, response.status_code, elapsed_ms)
        response.headers["Access-Control-Allow-Origin"] = settings.cors_origin
        response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        return response

    @app.errorhandler(ApiError)
    def handle_api_error(e):
        if e.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({"success": False, "message": "Route not found"}), 404

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return jsonify({"success": False, "message": e.description}), e.code
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"success": False, "message": "Internal server error"}), 500

    return app


if __name__ == "__main__":
    settings = Settings.from_env()
    app = create_app(settings)
    logger.info("Starting server on http://127.0.0.1:%s", settings.port)
    app.run(host="0.0.0.0", port=settings.port, debug=True)
