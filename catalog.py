"""
Client-side view of a user's movie collection.

The collection is parsed once at the fetch boundary (`parse_collection`) into
typed `CatalogMovie` records held by an immutable `MovieCache`. Everything
downstream (genre options, filtering, sorting, summary) is a pure function of
the cache contents and a `ViewState`.
"""

from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pyuca import Collator

ALL_GENRES = "all"
SORT_KEYS = ("name", "year", "rating")
ASC = "asc"
DESC = "desc"

# default Unicode collation table (DUCET)
_COLLATOR = Collator()


class CollectionFormatError(ValueError):
    """Raised when a fetched payload does not contain a movie list."""


@dataclass(frozen=True)
class CatalogMovie:
    id: str
    name: str = ""
    description: str = ""
    genre: str = ""
    year: Optional[int] = None
    rating: Optional[float] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def parse_movie(record: Mapping[str, Any]) -> Optional[CatalogMovie]:
    """Build a CatalogMovie from a server or legacy client record; None when it has no id."""
    movie_id = record.get("id") or record.get("_id")
    if not movie_id:
        return None
    genre = _text(record.get("genre"))
    if not genre:
        genres = record.get("genres")
        if isinstance(genres, list) and genres:
            genre = _text(genres[0])
    year = record.get("year")
    if year is None:
        year = record.get("releaseYear", record.get("release_year"))
    return CatalogMovie(
        id=str(movie_id),
        name=_text(record.get("name")) or _text(record.get("title")),
        description=_text(record.get("description")),
        genre=genre,
        year=_number(year),
        rating=_number(record.get("rating")),
        raw=dict(record),
    )


def _extract_records(payload: Any) -> List[Any]:
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("data", "movies", "results"):
            inner = payload.get(key)
            if isinstance(inner, list):
                return inner
            if key == "data" and isinstance(inner, dict):
                return _extract_records(inner)
    raise CollectionFormatError(f"Unexpected response format: {type(payload).__name__}")


def parse_collection(payload: Any) -> Tuple[CatalogMovie, ...]:
    """
    Turn a fetched payload into a tuple of CatalogMovie.

    Accepts a bare list, the API envelope ({"data": {"movies": [...]}}) or a
    dict wrapping the list under "data", "movies" or "results". None yields an
    empty collection; anything else raises CollectionFormatError. Entries that
    are not objects or have no id are dropped.
    """
    movies = []
    for record in _extract_records(payload):
        if isinstance(record, Mapping):
            movie = parse_movie(record)
            if movie is not None:
                movies.append(movie)
    return tuple(movies)


@dataclass(frozen=True)
class MovieCache:
    movies: Tuple[CatalogMovie, ...] = ()

    def replace(self, movies: Iterable[CatalogMovie]) -> "MovieCache":
        return MovieCache(tuple(movies))

    def upsert(self, movie: CatalogMovie) -> "MovieCache":
        if any(m.id == movie.id for m in self.movies):
            return MovieCache(tuple(movie if m.id == movie.id else m for m in self.movies))
        return MovieCache(self.movies + (movie,))

    def remove(self, movie_id: str) -> "MovieCache":
        return MovieCache(tuple(m for m in self.movies if m.id != movie_id))

    def __len__(self):
        return len(self.movies)


@dataclass(frozen=True)
class ViewState:
    search: str = ""
    genre: str = ALL_GENRES
    sort_key: str = "name"
    sort_order: str = ASC

    def toggle_sort(self, key: str) -> "ViewState":
        if key not in SORT_KEYS:
            raise ValueError(f"unknown sort key: {key}")
        if key == self.sort_key:
            return replace(self, sort_order=DESC if self.sort_order == ASC else ASC)
        return replace(self, sort_key=key, sort_order=ASC)

    def with_search(self, text: str) -> "ViewState":
        return replace(self, search=text or "")

    def with_genre(self, genre: str) -> "ViewState":
        return replace(self, genre=genre or ALL_GENRES)


def genre_options(movies: Iterable[CatalogMovie]) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for m in movies:
        if m.genre:
            seen.setdefault(m.genre, None)
    return (ALL_GENRES,) + tuple(seen)


def matches(movie: CatalogMovie, search: str, genre: str) -> bool:
    needle = search.lower()
    found = not search or needle in movie.name.lower() or needle in movie.description.lower()
    return found and (genre == ALL_GENRES or movie.genre == genre)


def _name_key(movie: CatalogMovie):
    return _COLLATOR.sort_key(movie.name)


_SORT_KEY_FUNCS = {
    "name": _name_key,
    "year": lambda m: m.year or 0,
    "rating": lambda m: m.rating or 0,
}


def sort_movies(movies: Iterable[CatalogMovie], key: str, order: str = ASC) -> List[CatalogMovie]:
    func = _SORT_KEY_FUNCS.get(key)
    if func is None:
        return list(movies)
    return sorted(movies, key=func, reverse=order == DESC)


def visible_movies(movies: Iterable[CatalogMovie], state: ViewState) -> List[CatalogMovie]:
    filtered = [m for m in movies if matches(m, state.search, state.genre)]
    return sort_movies(filtered, state.sort_key, state.sort_order)


@dataclass(frozen=True)
class Summary:
    average_rating: float
    min_year: int
    max_year: int


def summarize(movies: List[CatalogMovie]) -> Optional[Summary]:
    if not movies:
        return None
    average = sum(m.rating or 0 for m in movies) / len(movies)
    years = [m.year or 0 for m in movies]
    # halves round up
    rounded = float(Decimal(str(average)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))
    return Summary(average_rating=rounded, min_year=min(years), max_year=max(years))


@dataclass(frozen=True)
class CatalogView:
    genres: Tuple[str, ...]
    movies: Tuple[CatalogMovie, ...]
    total: int
    summary: Optional[Summary]


def view(cache: MovieCache, state: ViewState) -> CatalogView:
    """Derive everything the list screen shows from the cache and the view state."""
    shown = visible_movies(cache.movies, state)
    return CatalogView(
        genres=genre_options(cache.movies),
        movies=tuple(shown),
        total=len(cache),
        summary=summarize(shown),
    )
