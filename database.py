"""
MongoDB access

One client per process. Route functions receive the database through the
``get_db`` dependency so tests can swap in another backend.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL
from errors import InternalError

client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db: Optional[Database] = client[DATABASE_NAME] if client is not None else None


def get_db() -> Database:
    if db is None:
        raise InternalError("Database not configured")
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["cartitem"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["order"].create_index([("checkout_id", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING)])
    database["wishlist"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["review"].create_index([("product_id", ASCENDING)])


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
