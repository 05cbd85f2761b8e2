"""
Database Schemas for the Movie Catalogue (MongoDB)

Each Pydantic model corresponds to a collection. The collection name is the
lowercased class name (e.g., User -> "user", Movie -> "movie").

We store references via ObjectId strings.
"""

from datetime import datetime
from typing import List, Optional, Literal

from pydantic import BaseModel, Field, EmailStr

GENRES = (
    "Action", "Adventure", "Animation", "Comedy", "Crime",
    "Documentary", "Drama", "Family", "Fantasy", "History",
    "Horror", "Music", "Mystery", "Romance", "Sci-Fi",
    "Thriller", "War", "Western",
)

GenreName = Literal[
    "Action", "Adventure", "Animation", "Comedy", "Crime",
    "Documentary", "Drama", "Family", "Fantasy", "History",
    "Horror", "Music", "Mystery", "Romance", "Sci-Fi",
    "Thriller", "War", "Western",
]

MIN_YEAR = 1888
MAX_YEARS_AHEAD = 5

DEFAULT_POSTER = "https://res.cloudinary.com/demo/image/upload/v1570979130/default-movie-poster.png"
DEFAULT_AVATAR = "/default-avatar.png"

YOUTUBE_URL_PATTERN = r"^(https?://)?(www\.)?(youtube\.com|youtu\.?be)/.+$"


def max_release_year() -> int:
    return datetime.now().year + MAX_YEARS_AHEAD


def format_duration(minutes: Optional[int]) -> str:
    """Render a runtime in minutes as '2h 46m' (or '45m' under an hour)."""
    minutes = minutes or 0
    hours, rest = divmod(minutes, 60)
    return f"{hours}h {rest}m" if hours > 0 else f"{rest}m"


# Core user schema
class User(BaseModel):
    name: str
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash")
    role: Literal["user", "admin"] = "user"
    avatar: str = DEFAULT_AVATAR
    favorite_genres: List[GenreName] = []
    watchlist: List[str] = Field(default_factory=list, description="Movie ObjectId strings, in insertion order")
    last_login: Optional[datetime] = None


class CastMember(BaseModel):
    name: Optional[str] = None
    character: Optional[str] = None


class Movie(BaseModel):
    title: str = Field(..., max_length=200)
    description: str = Field(..., max_length=2000)
    year: int = Field(..., ge=MIN_YEAR)
    director: str
    genres: List[GenreName] = Field(..., min_length=1)
    duration: int = Field(..., ge=1, description="Runtime in minutes")
    rating: float = Field(0, ge=0, le=10)
    poster: str = DEFAULT_POSTER
    backdrop: Optional[str] = None
    trailer: Optional[str] = Field(None, pattern=YOUTUBE_URL_PATTERN)
    cast: List[CastMember] = []
    added_by: str = Field(..., description="Owning user id")
    watched: bool = False
    watch_date: Optional[datetime] = None
    personal_rating: float = Field(0, ge=0, le=10)
    review: Optional[str] = Field(None, max_length=1000)
    tags: List[str] = []
    is_public: bool = True
