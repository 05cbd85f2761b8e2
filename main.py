import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Any, Dict

from fastapi import FastAPI, HTTPException, Depends, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, Field, EmailStr, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException
from bson import ObjectId

from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ALGORITHM,
    API_VERSION,
    CORS_ORIGINS,
    PORT,
    SECRET_KEY,
    configure_logging,
)
from database import db, ensure_indexes
from queries import DEFAULT_LIMIT, DEFAULT_PAGE, DEFAULT_SORT, build_movie_query
from repository import InMemoryRepo, MongoRepo
from schemas import (
    DEFAULT_AVATAR,
    DEFAULT_POSTER,
    MIN_YEAR,
    YOUTUBE_URL_PATTERN,
    CastMember,
    GenreName,
    Movie,
    User,
    format_duration,
    max_release_year,
)

logger = logging.getLogger(__name__)

GUEST_EMAIL = "guest@moviemaster.com"
GUEST_NAME = "Guest User"
GUEST_PASSWORD = "guest123"
PROFILE_WATCHLIST_LIMIT = 10

# -----------------------------
# Storage
# -----------------------------
if db is not None:
    repository = MongoRepo(db)
else:
    logger.warning("DATABASE_URL/DATABASE_NAME not set; using in-memory storage")
    repository = InMemoryRepo()


def get_repo():
    return repository


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    if db is not None:
        ensure_indexes(db)
    logger.info("Movie Catalogue API %s started (storage=%s)", API_VERSION, type(repository).__name__)
    yield


# -----------------------------
# App and Security Config
# -----------------------------
app = FastAPI(title="Movie Catalogue API", version=API_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

# -----------------------------
# Helpers
# -----------------------------

def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid ID")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc["id"] = str(doc.pop("_id"))
    return doc


def success(data: Any = None, message: Optional[str] = None, status_code: int = 200) -> JSONResponse:
    body: Dict[str, Any] = {"status": "success"}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def owner_summary(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": user["id"], "name": user.get("name"), "email": user.get("email"), "avatar": user.get("avatar")}


def serialize_movie(doc: Dict[str, Any], owner: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    movie = serialize_doc(doc)
    movie["formatted_duration"] = format_duration(movie.get("duration"))
    if owner is not None:
        movie["added_by"] = owner
    return movie


def user_public(user: Dict[str, Any], repo) -> Dict[str, Any]:
    # counters are derived from the owned-movie set, never stored
    totals = repo.owner_overview(user["id"])
    return {
        "id": user["id"],
        "name": user.get("name"),
        "email": user.get("email"),
        "avatar": user.get("avatar", DEFAULT_AVATAR),
        "role": user.get("role", "user"),
        "favorite_genres": user.get("favorite_genres", []),
        "movie_count": totals["total_movies"],
        "total_watch_time": totals["total_runtime"],
    }


# -----------------------------
# Schemas (request/response)
# -----------------------------
class RegisterRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    avatar: Optional[str] = None
    favorite_genres: Optional[List[GenreName]] = None


_REQUIRED_TEXT = {"title": "Title is required", "description": "Description is required", "director": "Director is required"}


class MovieCreate(BaseModel):
    title: str = Field(max_length=200)
    description: str = Field(max_length=2000)
    year: int
    director: str
    genres: List[GenreName]
    duration: int
    rating: float = 0
    poster: Optional[str] = None
    backdrop: Optional[str] = None
    trailer: Optional[str] = Field(None, pattern=YOUTUBE_URL_PATTERN)
    cast: List[CastMember] = []
    watched: bool = False
    personal_rating: float = 0
    review: Optional[str] = Field(None, max_length=1000)
    tags: List[str] = []
    is_public: bool = True

    @field_validator("title", "description", "director", mode="before")
    @classmethod
    def required_text(cls, value, info):
        if isinstance(value, str):
            value = value.strip()
        if not value:
            raise ValueError(_REQUIRED_TEXT[info.field_name])
        return value

    @field_validator("year")
    @classmethod
    def valid_year(cls, value):
        if not MIN_YEAR <= value <= max_release_year():
            raise ValueError("Please provide a valid year")
        return value

    @field_validator("genres")
    @classmethod
    def some_genre(cls, value):
        if not value:
            raise ValueError("At least one genre is required")
        return value

    @field_validator("duration")
    @classmethod
    def positive_duration(cls, value):
        if value < 1:
            raise ValueError("Duration must be at least 1 minute")
        return value

    @field_validator("rating", "personal_rating")
    @classmethod
    def rating_range(cls, value, info):
        if not 0 <= value <= 10:
            label = "Rating" if info.field_name == "rating" else "Personal rating"
            raise ValueError(f"{label} must be between 0 and 10")
        return value

    @field_validator("tags")
    @classmethod
    def trim_tags(cls, value):
        return [t.strip() for t in value if t and t.strip()]


# -----------------------------
# Error handlers
# -----------------------------
def error_response(status_code: int, message: str, errors: Optional[List[Dict[str, Any]]] = None, headers=None):
    body: Dict[str, Any] = {"status": "error", "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        ctx_error = (err.get("ctx") or {}).get("error")
        errors.append({"field": ".".join(loc), "message": str(ctx_error) if ctx_error else err.get("msg")})
    logger.info("Validation failed on %s %s: %s", request.method, request.url.path, errors)
    return error_response(status.HTTP_400_BAD_REQUEST, "Validation failed", errors)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server error")


# -----------------------------
# Auth dependencies
# -----------------------------
def get_current_user(token: Optional[str] = Depends(oauth2_scheme), repo=Depends(get_repo)) -> Dict[str, Any]:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authorized, token failed",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, no token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None or not ObjectId.is_valid(user_id):
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = repo.get_user(ObjectId(user_id))
    if not user:
        raise credentials_exception
    return serialize_doc(user)


def auth_payload(user_doc: Dict[str, Any], repo) -> Dict[str, Any]:
    user = serialize_doc(user_doc)
    return {"user": user_public(user, repo), "token": create_access_token({"sub": user["id"]})}


# -----------------------------
# Basic routes
# -----------------------------
@app.get("/")
def root():
    return {"message": "Movie Catalogue API running"}


@app.get("/api/health")
def health(repo=Depends(get_repo)):
    status_msg = {
        "status": "success",
        "message": "Movie Catalogue API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": API_VERSION,
        "database": "Not Available",
        "collections": [],
    }
    try:
        info = repo.status()
        status_msg["database"] = f"Connected ({info['backend']})"
        status_msg["collections"] = info["collections"]
    except Exception as e:
        logger.warning("Health check could not reach storage: %s", e)
        status_msg["database"] = f"Error: {str(e)[:80]}"
    return status_msg


# -----------------------------
# Auth endpoints
# -----------------------------
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, repo=Depends(get_repo)):
    if repo.find_user_by_email(payload.email):
        raise HTTPException(status_code=400, detail="User already exists with this email")
    doc = User(name=payload.name.strip(), email=payload.email, password_hash=hash_password(payload.password))
    created = repo.create_user(doc.model_dump())
    logger.info("Registered user %s", payload.email)
    return success(auth_payload(created, repo), "User registered successfully", status_code=201)


@app.post("/api/auth/login")
def login(payload: LoginRequest, repo=Depends(get_repo)):
    user_doc = repo.find_user_by_email(payload.email)
    if not user_doc or not verify_password(payload.password, user_doc.get("password_hash", "")):
        logger.info("Failed login for %s", payload.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    user_doc = repo.update_user(user_doc["_id"], {"last_login": datetime.now(timezone.utc)})
    return success(auth_payload(user_doc, repo), "Login successful")


@app.post("/api/auth/guest")
def guest_login(repo=Depends(get_repo)):
    user_doc = repo.find_user_by_email(GUEST_EMAIL)
    if not user_doc:
        guest = User(name=GUEST_NAME, email=GUEST_EMAIL, password_hash=hash_password(GUEST_PASSWORD))
        user_doc = repo.create_user(guest.model_dump())
        logger.info("Created guest user")
    return success(auth_payload(user_doc, repo), "Guest login successful")


@app.get("/api/auth/me")
def me(current_user: Dict[str, Any] = Depends(get_current_user), repo=Depends(get_repo)):
    return success({"user": user_public(current_user, repo)})


@app.post("/api/auth/logout")
def logout(current_user: Dict[str, Any] = Depends(get_current_user)):
    # tokens are stateless; the client discards its copy
    return success(message="Logout successful")


# -----------------------------
# User profile
# -----------------------------
@app.get("/api/users/profile")
def get_profile(current_user: Dict[str, Any] = Depends(get_current_user), repo=Depends(get_repo)):
    profile = user_public(current_user, repo)
    watchlist = repo.movies_by_ids(current_user.get("watchlist", []), PROFILE_WATCHLIST_LIMIT)
    fields = ("title", "poster", "year", "rating", "duration", "genres")
    profile["watchlist"] = [{"id": str(m["_id"]), **{k: m.get(k) for k in fields}} for m in watchlist]
    return success({"user": profile})


@app.put("/api/users/profile")
def update_profile(update: ProfileUpdate, current_user: Dict[str, Any] = Depends(get_current_user),
                   repo=Depends(get_repo)):
    update_dict = update.model_dump(exclude_none=True)
    fresh = repo.update_user(to_object_id(current_user["id"]), update_dict)
    return success({"user": user_public(serialize_doc(fresh), repo)}, "Profile updated successfully")


@app.get("/api/users/stats")
def user_stats(current_user: Dict[str, Any] = Depends(get_current_user), repo=Depends(get_repo)):
    totals = repo.owner_overview(current_user["id"])
    return success({"user_stats": {
        "movie_count": totals["total_movies"],
        "total_watch_time": totals["total_runtime"],
        "favorite_genres": current_user.get("favorite_genres", []),
        "avg_rating": totals["avg_rating"],
        "watched_count": totals["watched_count"],
        "total_runtime": totals["total_runtime"],
    }})


# -----------------------------
# Movies
# -----------------------------
@app.get("/api/movies")
def list_movies(
    page: int = DEFAULT_PAGE,
    limit: int = DEFAULT_LIMIT,
    sort: str = DEFAULT_SORT,
    genre: Optional[str] = None,
    year: Optional[int] = None,
    search: Optional[str] = None,
    watched: Optional[str] = None,
    current_user: Dict[str, Any] = Depends(get_current_user),
    repo=Depends(get_repo),
):
    query = build_movie_query(current_user["id"], page=page, limit=limit, sort=sort, genre=genre, year=year,
                              search=search, watched=watched)
    docs, total = repo.list_movies(query)
    stats = repo.movie_stats(query)
    owner = owner_summary(current_user)
    return success({
        "movies": [serialize_movie(d, owner) for d in docs],
        "pagination": query.pagination(total),
        "stats": stats,
    })


@app.get("/api/movies/stats/overview")
def overview_stats(current_user: Dict[str, Any] = Depends(get_current_user), repo=Depends(get_repo)):
    user_id = current_user["id"]
    return success({
        "overview": repo.owner_overview(user_id),
        "top_genres": repo.top_genres(user_id),
        "recent_years": repo.recent_years(user_id),
    })


@app.get("/api/movies/{movie_id}")
def get_movie(movie_id: str, current_user: Dict[str, Any] = Depends(get_current_user), repo=Depends(get_repo)):
    doc = repo.get_movie(to_object_id(movie_id), current_user["id"])
    if not doc:
        raise HTTPException(status_code=404, detail="Movie not found")
    return success({"movie": serialize_movie(doc, owner_summary(current_user))})


def movie_document(payload: MovieCreate, owner_id: str, watch_date: Optional[datetime]) -> Dict[str, Any]:
    data = payload.model_dump()
    data["poster"] = data.get("poster") or DEFAULT_POSTER
    return Movie(**data, added_by=owner_id, watch_date=watch_date).model_dump()


@app.post("/api/movies", status_code=201)
def create_movie(payload: MovieCreate, current_user: Dict[str, Any] = Depends(get_current_user),
                 repo=Depends(get_repo)):
    watch_date = datetime.now(timezone.utc) if payload.watched else None
    doc = repo.create_movie(movie_document(payload, current_user["id"], watch_date))
    logger.info("Created movie id=%s title=%s user=%s", doc["_id"], doc["title"], current_user["id"])
    return success({"movie": serialize_movie(doc)}, "Movie added successfully", status_code=201)


@app.put("/api/movies/{movie_id}")
def update_movie(movie_id: str, payload: MovieCreate, current_user: Dict[str, Any] = Depends(get_current_user),
                 repo=Depends(get_repo)):
    oid = to_object_id(movie_id)
    existing = repo.get_movie(oid, current_user["id"])
    if not existing:
        raise HTTPException(status_code=404, detail="Movie not found")
    if payload.watched:
        watch_date = existing.get("watch_date") if existing.get("watched") else datetime.now(timezone.utc)
    else:
        watch_date = None
    doc = repo.update_movie(oid, current_user["id"], movie_document(payload, current_user["id"], watch_date))
    if not doc:
        raise HTTPException(status_code=404, detail="Movie not found")
    logger.info("Updated movie id=%s user=%s", movie_id, current_user["id"])
    return success({"movie": serialize_movie(doc)}, "Movie updated successfully")


@app.delete("/api/movies/{movie_id}")
def delete_movie(movie_id: str, current_user: Dict[str, Any] = Depends(get_current_user), repo=Depends(get_repo)):
    deleted = repo.delete_movie(to_object_id(movie_id), current_user["id"])
    if not deleted:
        raise HTTPException(status_code=404, detail="Movie not found")
    logger.info("Deleted movie id=%s user=%s", movie_id, current_user["id"])
    return success(message="Movie deleted successfully")


@app.put("/api/movies/{movie_id}/watch")
def toggle_watch_status(movie_id: str, current_user: Dict[str, Any] = Depends(get_current_user),
                        repo=Depends(get_repo)):
    oid = to_object_id(movie_id)
    movie = repo.get_movie(oid, current_user["id"])
    if not movie:
        raise HTTPException(status_code=404, detail="Movie not found")
    watched = not movie.get("watched", False)
    doc = repo.update_movie(oid, current_user["id"], {
        "watched": watched,
        "watch_date": datetime.now(timezone.utc) if watched else None,
    })
    if not doc:
        raise HTTPException(status_code=404, detail="Movie not found")
    return success({"movie": serialize_movie(doc)}, f"Movie marked as {'watched' if watched else 'unwatched'}")


@app.post("/api/movies/{movie_id}/watchlist")
def add_to_watchlist(movie_id: str, current_user: Dict[str, Any] = Depends(get_current_user),
                     repo=Depends(get_repo)):
    if not repo.get_movie(to_object_id(movie_id), current_user["id"]):
        raise HTTPException(status_code=404, detail="Movie not found")
    if not repo.add_to_watchlist(to_object_id(current_user["id"]), movie_id):
        raise HTTPException(status_code=400, detail="Movie already in watchlist")
    return success(message="Movie added to watchlist")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
