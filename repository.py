"""
Storage for users and movies.

MongoRepo runs against a pymongo Database. InMemoryRepo keeps documents in
dicts and evaluates the same MovieQuery criteria in Python; it backs the test
suite and database-less development runs.

Documents are returned with their raw "_id" (an ObjectId); callers serialize.
"""

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document
from queries import (
    MovieQuery,
    overview_pipeline,
    recent_years_pipeline,
    shape_overview,
    shape_recent_years,
    shape_stats,
    shape_top_genres,
    stats_pipeline,
    top_genres_pipeline,
    empty_stats,
    TOP_GENRES_LIMIT,
    RECENT_YEARS_LIMIT,
)

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


# --- MongoDB repo ---
class MongoRepo:
    def __init__(self, database: Database):
        self.db = database

    # -- Users --
    def create_user(self, data: Document) -> Document:
        return create_document("user", data, database=self.db)

    def get_user(self, user_id: ObjectId) -> Optional[Document]:
        return self.db.user.find_one({"_id": user_id})

    def find_user_by_email(self, email: str) -> Optional[Document]:
        return self.db.user.find_one({"email": email})

    def update_user(self, user_id: ObjectId, fields: Document) -> Optional[Document]:
        fields = {**fields, "updated_at": now_utc()}
        return self.db.user.find_one_and_update(
            {"_id": user_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
        )

    def add_to_watchlist(self, user_id: ObjectId, movie_id: str) -> bool:
        """Append movie_id unless already present. Returns False on duplicates."""
        result = self.db.user.update_one(
            {"_id": user_id, "watchlist": {"$ne": movie_id}},
            {"$push": {"watchlist": movie_id}, "$set": {"updated_at": now_utc()}},
        )
        return result.modified_count == 1

    # -- Movies --
    def create_movie(self, data: Document) -> Document:
        return create_document("movie", data, database=self.db)

    def get_movie(self, movie_id: ObjectId, owner_id: str) -> Optional[Document]:
        return self.db.movie.find_one({"_id": movie_id, "added_by": owner_id})

    def update_movie(self, movie_id: ObjectId, owner_id: str, fields: Document) -> Optional[Document]:
        fields = {**fields, "updated_at": now_utc()}
        return self.db.movie.find_one_and_update(
            {"_id": movie_id, "added_by": owner_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
        )

    def delete_movie(self, movie_id: ObjectId, owner_id: str) -> Optional[Document]:
        return self.db.movie.find_one_and_delete({"_id": movie_id, "added_by": owner_id})

    def list_movies(self, query: MovieQuery) -> Tuple[List[Document], int]:
        match = query.to_filter()
        total = self.db.movie.count_documents(match)
        cursor = self.db.movie.find(match).sort(query.sort).skip(query.skip).limit(query.limit)
        return list(cursor), total

    def movie_stats(self, query: MovieQuery) -> Document:
        return shape_stats(list(self.db.movie.aggregate(stats_pipeline(query.to_filter()))))

    def owner_overview(self, owner_id: str) -> Document:
        return shape_overview(list(self.db.movie.aggregate(overview_pipeline(owner_id))))

    def top_genres(self, owner_id: str, limit: int = TOP_GENRES_LIMIT) -> List[Document]:
        return shape_top_genres(list(self.db.movie.aggregate(top_genres_pipeline(owner_id, limit))))

    def recent_years(self, owner_id: str, limit: int = RECENT_YEARS_LIMIT) -> List[Document]:
        return shape_recent_years(list(self.db.movie.aggregate(recent_years_pipeline(owner_id, limit))))

    def movies_by_ids(self, ids: List[str], limit: int) -> List[Document]:
        ids = [i for i in ids if ObjectId.is_valid(i)][:limit]
        found = {str(d["_id"]): d for d in self.db.movie.find({"_id": {"$in": [ObjectId(i) for i in ids]}})}
        return [found[i] for i in ids if i in found]

    def status(self) -> Document:
        return {"backend": "mongodb", "collections": self.db.list_collection_names()[:10]}


# --- In-memory repo ---
def _sort_documents(docs: List[Document], order: List[Tuple[str, int]]) -> List[Document]:
    # stable multi-key sort: apply keys last to first; missing values sort first ascending, like MongoDB
    result = list(docs)
    for name, direction in reversed(order):
        result.sort(key=lambda d: (d.get(name) is not None, d.get(name) if d.get(name) is not None else 0),
                    reverse=direction < 0)
    return result


class InMemoryRepo:
    """Dict-backed store. One re-entrant lock guards every read and write."""

    def __init__(self):
        self._users: Dict[ObjectId, Document] = {}
        self._movies: Dict[ObjectId, Document] = {}
        self._lock = threading.RLock()

    # Users
    def create_user(self, data: Document) -> Document:
        now = now_utc()
        doc = {**copy.deepcopy(data), "_id": ObjectId(), "updated_at": now}
        doc.setdefault("created_at", now)
        with self._lock:
            self._users[doc["_id"]] = doc
            return copy.deepcopy(doc)

    def get_user(self, user_id: ObjectId) -> Optional[Document]:
        with self._lock:
            doc = self._users.get(user_id)
            return copy.deepcopy(doc) if doc else None

    def find_user_by_email(self, email: str) -> Optional[Document]:
        with self._lock:
            for doc in self._users.values():
                if doc.get("email") == email:
                    return copy.deepcopy(doc)
        return None

    def update_user(self, user_id: ObjectId, fields: Document) -> Optional[Document]:
        with self._lock:
            doc = self._users.get(user_id)
            if doc is None:
                return None
            doc.update(copy.deepcopy(fields))
            doc["updated_at"] = now_utc()
            return copy.deepcopy(doc)

    def add_to_watchlist(self, user_id: ObjectId, movie_id: str) -> bool:
        with self._lock:
            doc = self._users.get(user_id)
            if doc is None or movie_id in doc.setdefault("watchlist", []):
                return False
            doc["watchlist"].append(movie_id)
            doc["updated_at"] = now_utc()
            return True

    # Movies
    def create_movie(self, data: Document) -> Document:
        now = now_utc()
        doc = {**copy.deepcopy(data), "_id": ObjectId(), "updated_at": now}
        doc.setdefault("created_at", now)
        with self._lock:
            self._movies[doc["_id"]] = doc
            return copy.deepcopy(doc)

    def _owned_movie(self, movie_id: ObjectId, owner_id: str) -> Optional[Document]:
        doc = self._movies.get(movie_id)
        if doc is None or doc.get("added_by") != owner_id:
            return None
        return doc

    def get_movie(self, movie_id: ObjectId, owner_id: str) -> Optional[Document]:
        with self._lock:
            doc = self._owned_movie(movie_id, owner_id)
            return copy.deepcopy(doc) if doc else None

    def update_movie(self, movie_id: ObjectId, owner_id: str, fields: Document) -> Optional[Document]:
        with self._lock:
            doc = self._owned_movie(movie_id, owner_id)
            if doc is None:
                return None
            doc.update(copy.deepcopy(fields))
            doc["updated_at"] = now_utc()
            return copy.deepcopy(doc)

    def delete_movie(self, movie_id: ObjectId, owner_id: str) -> Optional[Document]:
        with self._lock:
            if self._owned_movie(movie_id, owner_id) is None:
                return None
            return self._movies.pop(movie_id)

    def _matching(self, query: MovieQuery) -> List[Document]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._movies.values() if query.matches(d)]

    def _owned(self, owner_id: str) -> List[Document]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._movies.values() if d.get("added_by") == owner_id]

    def list_movies(self, query: MovieQuery) -> Tuple[List[Document], int]:
        matched = _sort_documents(self._matching(query), query.sort)
        return matched[query.skip:query.skip + query.limit], len(matched)

    def movie_stats(self, query: MovieQuery) -> Document:
        matched = self._matching(query)
        if not matched:
            return empty_stats()
        genres = set()
        for d in matched:
            genres.update(d.get("genres") or [])
        return shape_stats([{
            "total_movies": len(matched),
            "avg_rating": sum(d.get("rating") or 0 for d in matched) / len(matched),
            "total_runtime": sum(d.get("duration") or 0 for d in matched),
            "genres": list(genres),
        }])

    def owner_overview(self, owner_id: str) -> Document:
        owned = self._owned(owner_id)
        if not owned:
            return shape_overview([])
        return shape_overview([{
            "total_movies": len(owned),
            "avg_rating": sum(d.get("rating") or 0 for d in owned) / len(owned),
            "total_runtime": sum(d.get("duration") or 0 for d in owned),
            "watched_count": sum(1 for d in owned if d.get("watched")),
        }])

    def top_genres(self, owner_id: str, limit: int = TOP_GENRES_LIMIT) -> List[Document]:
        counts: Dict[str, int] = {}
        for d in self._owned(owner_id):
            for g in d.get("genres") or []:
                counts[g] = counts.get(g, 0) + 1
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        return shape_top_genres([{"_id": g, "count": c} for g, c in ranked])

    def recent_years(self, owner_id: str, limit: int = RECENT_YEARS_LIMIT) -> List[Document]:
        counts: Dict[Any, int] = {}
        for d in self._owned(owner_id):
            counts[d.get("year")] = counts.get(d.get("year"), 0) + 1
        ranked = sorted(counts.items(), key=lambda kv: (kv[0] is not None, kv[0] or 0), reverse=True)[:limit]
        return shape_recent_years([{"_id": y, "count": c} for y, c in ranked])

    def movies_by_ids(self, ids: List[str], limit: int) -> List[Document]:
        ids = [ObjectId(i) for i in ids if ObjectId.is_valid(i)][:limit]
        with self._lock:
            return [copy.deepcopy(self._movies[i]) for i in ids if i in self._movies]

    def status(self) -> Document:
        return {"backend": "memory", "collections": ["movie", "user"]}
