"""
Database connection

MongoDB is configured through DATABASE_URL and DATABASE_NAME. When either
is missing the module still imports and `db` stays None, so the banner and
/test endpoints can report the problem instead of crashing at startup.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from errors import ShopError
from settings import get_settings

logger = structlog.get_logger(__name__)

_settings = get_settings()

client: Optional[MongoClient] = None
db: Optional[Database] = None

if _settings.database_url and _settings.database_name:
    client = MongoClient(_settings.database_url)
    db = client[_settings.database_name]


def get_db() -> Database:
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise ShopError("Database not configured")
    return db


def _resolve(database: Optional[Database]) -> Database:
    if database is not None:
        return database
    return get_db()


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database: Optional[Database] = None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(mode="json")
    else:
        doc = dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = _resolve(database)[collection_name].insert_one(doc)
    logger.debug("Document created", collection=collection_name, id=str(result.inserted_id))
    return str(result.inserted_id)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id coming from a URL or payload; None when malformed."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc
