"""Movie Catalogue API client and the list session built on it."""

import logging
from typing import Any, Dict, List, Optional

import requests

from catalog import (
    CatalogMovie,
    CatalogView,
    CollectionFormatError,
    MovieCache,
    ViewState,
    parse_collection,
    parse_movie,
    view,
)

logger = logging.getLogger(__name__)

FETCH_PAGE_SIZE = 100


class ApiError(Exception):
    """Raised when the API answers with an error envelope or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[List[Dict]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class MovieAPI:
    """Client for the Movie Catalogue REST API."""

    def __init__(self, base_url: str = "http://localhost:8000", session=None, token: Optional[str] = None,
                 timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.token = token
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """Send a request and return the decoded JSON body, raising ApiError on failure."""
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"Movie API error: {e}")
            raise ApiError(str(e)) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            errors = body.get("errors") if isinstance(body, dict) else None
            raise ApiError(message or f"HTTP {response.status_code}", response.status_code, errors)
        return body

    # -- Auth --
    def _authenticate(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = self._request("POST", path, json=payload)
        self.token = body["data"]["token"]
        return body["data"]["user"]

    def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        return self._authenticate("/api/auth/register", {"name": name, "email": email, "password": password})

    def login(self, email: str, password: str) -> Dict[str, Any]:
        return self._authenticate("/api/auth/login", {"email": email, "password": password})

    def guest_login(self) -> Dict[str, Any]:
        return self._authenticate("/api/auth/guest")

    def logout(self) -> None:
        self._request("POST", "/api/auth/logout")
        self.token = None

    # -- Movies --
    def list_movies(self, **params) -> Dict[str, Any]:
        return self._request("GET", "/api/movies", params=params)

    def get_movie(self, movie_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/movies/{movie_id}")["data"]["movie"]

    def create_movie(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/api/movies", json=data)["data"]["movie"]

    def update_movie(self, movie_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/api/movies/{movie_id}", json=data)["data"]["movie"]

    def delete_movie(self, movie_id: str) -> None:
        self._request("DELETE", f"/api/movies/{movie_id}")

    def toggle_watched(self, movie_id: str) -> Dict[str, Any]:
        return self._request("PUT", f"/api/movies/{movie_id}/watch")["data"]["movie"]

    def add_to_watchlist(self, movie_id: str) -> None:
        self._request("POST", f"/api/movies/{movie_id}/watchlist")

    def overview_stats(self) -> Dict[str, Any]:
        return self._request("GET", "/api/movies/stats/overview")["data"]


class MovieListSession:
    """
    Holds the fetched collection and the view state for one list screen.

    The cache is the only source of truth until the next `refresh`; edits made
    elsewhere are not merged.
    """

    def __init__(self, api: MovieAPI):
        self.api = api
        self.cache = MovieCache()
        self.state = ViewState()
        self.error = ""

    def fetch_all(self) -> List[CatalogMovie]:
        """Walk every page of the unfiltered list and parse it at the boundary."""
        movies: List[CatalogMovie] = []
        page = 1
        while True:
            payload = self.api.list_movies(page=page, limit=FETCH_PAGE_SIZE)
            movies.extend(parse_collection(payload))
            pages = 1
            if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
                pages = (payload["data"].get("pagination") or {}).get("pages", 1)
            if page >= pages:
                return movies
            page += 1

    def refresh(self) -> CatalogView:
        self.error = ""
        try:
            self.cache = self.cache.replace(self.fetch_all())
        except (ApiError, CollectionFormatError) as e:
            logger.warning("Failed to load movies: %s", e)
            self.error = f"Failed to load movies: {str(e) or 'Please try again later.'}"
            self.cache = MovieCache()
        return self.view()

    def view(self) -> CatalogView:
        return view(self.cache, self.state)

    def search(self, text: str) -> CatalogView:
        self.state = self.state.with_search(text)
        return self.view()

    def filter_genre(self, genre: str) -> CatalogView:
        self.state = self.state.with_genre(genre)
        return self.view()

    def sort_by(self, key: str) -> CatalogView:
        self.state = self.state.toggle_sort(key)
        return self.view()

    def reset_filters(self) -> CatalogView:
        self.state = ViewState(sort_key=self.state.sort_key, sort_order=self.state.sort_order)
        return self.view()

    def delete(self, movie_id: str) -> bool:
        try:
            self.api.delete_movie(movie_id)
        except ApiError as e:
            logger.warning("Delete error: %s", e)
            self.error = "Failed to delete movie"
            return False
        self.cache = self.cache.remove(movie_id)
        return True

    def update(self, movie_id: str, data: Dict[str, Any]) -> CatalogMovie:
        """Send the update and fold the server's record into the cache. ApiError propagates."""
        updated = parse_movie(self.api.update_movie(movie_id, data))
        if updated is None:
            raise CollectionFormatError("updated movie has no id")
        self.cache = self.cache.upsert(updated)
        return updated
