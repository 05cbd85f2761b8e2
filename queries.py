"""
Movie list criteria and aggregation pipelines.

`build_movie_query` turns the list endpoint's query parameters into a
`MovieQuery`; the query renders itself as a MongoDB filter/sort/window and can
also evaluate itself against a plain document, so the in-memory repository
applies exactly the same predicate.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
DEFAULT_SORT = "-createdAt"

TOP_GENRES_LIMIT = 5
RECENT_YEARS_LIMIT = 5

SORTABLE_FIELDS = {
    "title", "year", "rating", "duration", "director", "watched",
    "watch_date", "personal_rating", "created_at", "updated_at",
}

# camelCase names sent by older clients
FIELD_ALIASES = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "watchDate": "watch_date",
    "personalRating": "personal_rating",
}

TEXT_SEARCH_FIELDS = ("title", "description", "director")

SortSpec = List[Tuple[str, int]]

_WORD = re.compile(r"\w+", re.UNICODE)


def parse_sort(sort: Optional[str]) -> SortSpec:
    """
    Parse a sort string such as "-createdAt" or "year,-rating" into
    [(field, direction)] pairs. Unknown fields are dropped; if nothing usable
    remains the default (newest first) is returned.
    """
    order: SortSpec = []
    for token in re.split(r"[,\s]+", sort or ""):
        if not token:
            continue
        direction = 1
        if token[0] in "+-":
            direction = -1 if token[0] == "-" else 1
            token = token[1:]
        name = FIELD_ALIASES.get(token, token)
        if name in SORTABLE_FIELDS and name not in [f for f, _ in order]:
            order.append((name, direction))
    if not order and sort != DEFAULT_SORT:
        return parse_sort(DEFAULT_SORT)
    return order


def parse_watched(value: Optional[str]) -> Optional[bool]:
    # any value other than "true" means unwatched, as long as the parameter is present
    if value is None:
        return None
    return str(value).strip().lower() == "true"


def _page_number(value: Any) -> int:
    try:
        page = int(value)
    except (TypeError, ValueError):
        return DEFAULT_PAGE
    return page if page >= 1 else DEFAULT_PAGE


def _page_size(value: Any) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    return limit if 1 <= limit <= MAX_LIMIT else DEFAULT_LIMIT


def search_terms(text: str) -> List[str]:
    return [t.lower() for t in _WORD.findall(text or "")]


@dataclass
class MovieQuery:
    owner_id: str
    genre: Optional[str] = None
    year: Optional[int] = None
    watched: Optional[bool] = None
    search: Optional[str] = None
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT
    sort: SortSpec = field(default_factory=lambda: parse_sort(DEFAULT_SORT))

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def to_filter(self) -> Dict[str, Any]:
        """MongoDB filter. The owner clause is always present."""
        query: Dict[str, Any] = {"added_by": self.owner_id}
        if self.genre:
            query["genres"] = self.genre
        if self.year is not None:
            query["year"] = self.year
        if self.watched is not None:
            query["watched"] = self.watched
        if self.search:
            query["$text"] = {"$search": self.search}
        return query

    def matches(self, doc: Dict[str, Any]) -> bool:
        """Evaluate the filter against a document held in memory."""
        if doc.get("added_by") != self.owner_id:
            return False
        if self.genre and self.genre not in (doc.get("genres") or []):
            return False
        if self.year is not None and doc.get("year") != self.year:
            return False
        if self.watched is not None and bool(doc.get("watched", False)) != self.watched:
            return False
        if self.search:
            # $text semantics: a document matches when any search term is a word of an indexed field
            words = set()
            for name in TEXT_SEARCH_FIELDS:
                words.update(search_terms(doc.get(name) or ""))
            if not any(term in words for term in search_terms(self.search)):
                return False
        return True

    def page_count(self, total: int) -> int:
        return math.ceil(total / self.limit) if total else 0

    def pagination(self, total: int) -> Dict[str, int]:
        return {"page": self.page, "limit": self.limit, "total": total, "pages": self.page_count(total)}


def build_movie_query(owner_id: str, page: Any = None, limit: Any = None, sort: Optional[str] = None,
                      genre: Optional[str] = None, year: Optional[int] = None, search: Optional[str] = None,
                      watched: Optional[str] = None) -> MovieQuery:
    search = (search or "").strip() or None
    return MovieQuery(
        owner_id=owner_id,
        genre=genre or None,
        year=year,
        watched=parse_watched(watched),
        search=search,
        page=_page_number(page if page is not None else DEFAULT_PAGE),
        limit=_page_size(limit if limit is not None else DEFAULT_LIMIT),
        sort=parse_sort(sort or DEFAULT_SORT),
    )


# -----------------------------
# Aggregations
# -----------------------------

def empty_stats() -> Dict[str, Any]:
    return {"total_movies": 0, "avg_rating": 0, "total_runtime": 0, "genres": []}


def empty_overview() -> Dict[str, Any]:
    return {"total_movies": 0, "avg_rating": 0, "total_runtime": 0, "watched_count": 0}


def stats_pipeline(match: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"$match": match},
        {"$group": {
            "_id": None,
            "total_movies": {"$sum": 1},
            "avg_rating": {"$avg": "$rating"},
            "total_runtime": {"$sum": "$duration"},
            "genres": {"$push": "$genres"},
        }},
        {"$project": {
            "_id": 0,
            "total_movies": 1,
            "avg_rating": 1,
            "total_runtime": 1,
            "genres": {"$reduce": {"input": "$genres", "initialValue": [], "in": {"$setUnion": ["$$value", "$$this"]}}},
        }},
    ]


def overview_pipeline(owner_id: str) -> List[Dict[str, Any]]:
    return [
        {"$match": {"added_by": owner_id}},
        {"$group": {
            "_id": None,
            "total_movies": {"$sum": 1},
            "avg_rating": {"$avg": "$rating"},
            "total_runtime": {"$sum": "$duration"},
            "watched_count": {"$sum": {"$cond": ["$watched", 1, 0]}},
        }},
        {"$project": {"_id": 0}},
    ]


def top_genres_pipeline(owner_id: str, limit: int = TOP_GENRES_LIMIT) -> List[Dict[str, Any]]:
    return [
        {"$match": {"added_by": owner_id}},
        {"$unwind": "$genres"},
        {"$group": {"_id": "$genres", "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
        {"$limit": limit},
    ]


def recent_years_pipeline(owner_id: str, limit: int = RECENT_YEARS_LIMIT) -> List[Dict[str, Any]]:
    return [
        {"$match": {"added_by": owner_id}},
        {"$group": {"_id": "$year", "count": {"$sum": 1}}},
        {"$sort": {"_id": -1}},
        {"$limit": limit},
    ]


def _round_avg(value: Any) -> float:
    return round(float(value or 0), 2)


def shape_stats(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    if not rows:
        return empty_stats()
    row = rows[0]
    return {
        "total_movies": int(row.get("total_movies") or 0),
        "avg_rating": _round_avg(row.get("avg_rating")),
        "total_runtime": int(row.get("total_runtime") or 0),
        "genres": sorted(row.get("genres") or []),
    }


def shape_overview(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    if not rows:
        return empty_overview()
    row = rows[0]
    return {
        "total_movies": int(row.get("total_movies") or 0),
        "avg_rating": _round_avg(row.get("avg_rating")),
        "total_runtime": int(row.get("total_runtime") or 0),
        "watched_count": int(row.get("watched_count") or 0),
    }


def shape_top_genres(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{"genre": r["_id"], "count": r["count"]} for r in rows]


def shape_recent_years(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{"year": r["_id"], "count": r["count"]} for r in rows]
