"""Tests for the itinerary and user repositories, backed by mongomock."""
from datetime import datetime, timedelta
from unittest.mock import MagicMock, Mock

from bson import ObjectId
from pymongo import DESCENDING

from models import GeoPoint
from repositories import ItineraryRepository, UserRepository, to_object_id


def test_to_object_id():
    oid = ObjectId()
    assert to_object_id(oid) is oid
    assert to_object_id(str(oid)) == oid
    assert to_object_id("not-an-id") is None
    assert to_object_id(None) is None


class TestItineraryRepository:
    def test_insert_get_save(self, db, make_itinerary):
        repo = ItineraryRepository(db.itineraries)
        itinerary = repo.insert(make_itinerary([("a", "A", 30)]))

        assert itinerary.id is not None
        loaded = repo.get(itinerary.id)
        assert loaded.title == "Afternoon out"
        assert loaded.created_at is not None

        loaded.toggle_like("u7")
        repo.save(loaded)
        doc = db.itineraries.find_one({"_id": ObjectId(itinerary.id)})
        assert doc["like_count"] == 1

    def test_get_rejects_bad_ids(self, db):
        repo = ItineraryRepository(db.itineraries)
        assert repo.get("garbage") is None
        assert repo.get(str(ObjectId())) is None

    def test_ownership(self, db, make_itinerary):
        repo = ItineraryRepository(db.itineraries)
        itinerary = repo.insert(make_itinerary(user_id="owner"))

        assert repo.get_owned(itinerary.id, "intruder") is None
        assert not repo.delete_owned(itinerary.id, "intruder")
        assert repo.get_owned(itinerary.id, "owner") is not None
        assert repo.delete_owned(itinerary.id, "owner")
        assert repo.get(itinerary.id) is None

    def test_list_for_user_paginates_newest_first(self, db, make_itinerary):
        repo = ItineraryRepository(db.itineraries)
        start = datetime(2024, 1, 1)
        for i in range(5):
            repo.insert(make_itinerary(title=f"t{i}", is_completed=i % 2 == 0), now=start + timedelta(days=i))
        repo.insert(make_itinerary(user_id="someone-else"))

        items, total = repo.list_for_user("u1", page=1, limit=2)
        assert total == 5
        assert [i.title for i in items] == ["t4", "t3"]

        items, total = repo.list_for_user("u1", page=3, limit=2)
        assert [i.title for i in items] == ["t0"]

        items, total = repo.list_for_user("u1", status="completed")
        assert total == 3
        items, total = repo.list_for_user("u1", status="active")
        assert total == 2
        assert repo.count_for_user("u1") == 5

    def test_find_popular(self, db, make_itinerary):
        repo = ItineraryRepository(db.itineraries)
        quiet = make_itinerary(title="quiet", is_public=True, shares=9)
        loved = make_itinerary(title="loved", is_public=True)
        loved.toggle_like("a")
        loved.toggle_like("b")
        shared = make_itinerary(title="shared", is_public=True, shares=3)
        shared.toggle_like("a")
        private = make_itinerary(title="private")
        for user_id in ("a", "b", "c"):
            private.toggle_like(user_id)
        for i in (private, loved, shared, quiet):
            repo.insert(i)

        assert [i.title for i in repo.find_popular(10)] == ["loved", "shared", "quiet"]
        assert [i.title for i in repo.find_popular(1)] == ["loved"]

    def test_find_by_location_public_newest_first(self):
        collection = Mock()
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.__iter__.return_value = iter([])
        collection.find.return_value = cursor

        ItineraryRepository(collection).find_by_location(GeoPoint(lon=-122.4, lat=37.8), 50000, 20)

        query = collection.find.call_args.args[0]
        assert query["is_public"] is True
        assert query["location.coordinates"]["$near"]["$geometry"]["coordinates"] == [-122.4, 37.8]
        assert query["location.coordinates"]["$near"]["$maxDistance"] == 50000
        cursor.sort.assert_called_once_with("created_at", DESCENDING)
        cursor.limit.assert_called_once_with(20)


class TestUserRepository:
    def _user(self, repo, email="ana@example.com"):
        return repo.create({"name": "Ana", "email": email, "points": 0, "badges": [],
                            "favorites": [], "visited_places": []})

    def test_create_find_update_delete(self, db):
        repo = UserRepository(db.users)
        user = self._user(repo)

        assert repo.find_by_email("ana@example.com")["_id"] == user["_id"]
        updated = repo.update(user["_id"], {"session_token": "tok"})
        assert updated["session_token"] == "tok"
        assert repo.find_by_session_token("tok")["_id"] == user["_id"]
        assert repo.find_by_session_token(None) is None
        assert repo.get(None) is None

        assert repo.delete(str(user["_id"]))
        assert repo.get(user["_id"]) is None

    def test_points_and_badges(self, db):
        repo = UserRepository(db.users)
        user = self._user(repo)

        repo.add_points(user["_id"], 5)
        repo.add_points(user["_id"], 10)
        assert repo.add_badge(user["_id"], "First Explorer", "Visited your first place!")
        assert not repo.add_badge(user["_id"], "First Explorer", "Visited your first place!")

        fresh = repo.get(user["_id"])
        assert fresh["points"] == 15
        assert [b["name"] for b in fresh["badges"]] == ["First Explorer"]

    def test_favorites_are_unique(self, db):
        repo = UserRepository(db.users)
        user = self._user(repo)
        favorite = {"place_id": "fsq1", "name": "Cafe A", "category": "Cafe", "added_at": datetime(2024, 1, 1)}

        assert repo.add_favorite(user["_id"], favorite)
        assert not repo.add_favorite(user["_id"], dict(favorite))
        repo.remove_favorite(user["_id"], "fsq1")
        assert repo.get(user["_id"])["favorites"] == []

    def test_upsert_visited(self, db):
        repo = UserRepository(db.users)
        user = self._user(repo)
        first = datetime(2024, 1, 1)
        later = datetime(2024, 2, 1)

        repo.upsert_visited(user["_id"], {"place_id": "fsq1", "name": "Cafe A", "category": "Cafe",
                                          "visited_at": first, "rating": None})
        repo.upsert_visited(user["_id"], {"place_id": "fsq1", "name": "Cafe A", "category": "Cafe",
                                          "visited_at": later, "rating": 4})

        visited = repo.get(user["_id"])["visited_places"]
        assert len(visited) == 1
        assert visited[0]["visited_at"] == later
        assert visited[0]["rating"] == 4
