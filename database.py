"""
MongoDB connection for the movie catalogue.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; callers
decide what to do in that case (the API falls back to in-memory storage).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pymongo import ASCENDING, DESCENDING, TEXT, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def create_document(collection_name: str, data: Dict[str, Any], database: Optional[Database] = None) -> Dict[str, Any]:
    """Insert a document, stamping created_at/updated_at. Returns the stored document with its _id."""
    target = database if database is not None else db
    if target is None:
        raise RuntimeError("Database not configured")
    now = datetime.now(timezone.utc)
    doc = dict(data)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = target[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def ensure_indexes(database: Database) -> None:
    """Create the indexes the movie queries rely on ($text search needs the text index)."""
    database.movie.create_index(
        [("title", TEXT), ("description", TEXT), ("director", TEXT)],
        name="movie_text",
    )
    database.movie.create_index([("added_by", ASCENDING), ("created_at", DESCENDING)])
    database.user.create_index("email", unique=True)
    logger.info("Ensured indexes on %s", database.name)
