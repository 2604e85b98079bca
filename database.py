"""
MongoDB access for the store.

The connection is opened once at import from DATABASE_URL / DATABASE_NAME.
When either is missing `db` stays None and every request that needs the
store fails with 503 instead of crashing the process.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

import settings

logger = logging.getLogger(__name__)

db: Optional[Database] = None

if settings.DATABASE_URL and settings.DATABASE_NAME:
    client = MongoClient(settings.DATABASE_URL)
    db = client[settings.DATABASE_NAME]

# Never returned to clients
PRIVATE_FIELDS = ("password", "resetOTP", "resetOTPExpires")


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db


def utcnow() -> datetime:
    # naive UTC, which is what pymongo hands back on reads
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def doc_to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for field in PRIVATE_FIELDS:
        doc.pop(field, None)
    return doc


def create_document(collection_name: str, data, database: Optional[Database] = None) -> str:
    """Insert a document (dict or pydantic model) with timestamps and return its id."""
    database = database if database is not None else get_db()
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None,
                  database: Optional[Database] = None) -> List[Dict[str, Any]]:
    database = database if database is not None else get_db()
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["cart"].create_index([("userId", ASCENDING)], unique=True)
    database["wishlist"].create_index([("userId", ASCENDING)], unique=True)
    database["review"].create_index([("productId", ASCENDING), ("userId", ASCENDING)], unique=True)
    database["address"].create_index([("userId", ASCENDING)])
    database["order"].create_index([("userId", ASCENDING), ("created_at", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)
