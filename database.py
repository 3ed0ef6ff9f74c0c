"""
Database Helper Functions

MongoDB access for the storefront. The managed document store owns
durability, indexing and query planning; this module only builds the client
and offers a few helpers used across the components.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import DESCENDING, MongoClient
from pymongo.errors import OperationFailure

from config import config

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL, tz_aware=True)
    db = _client[config.DATABASE_NAME]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a single document with timestamps and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize(doc: dict) -> dict:
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out


def newest_first(docs, field: str = "created_at") -> list:
    """Sort documents by a timestamp, newest first, undated documents last."""
    return sorted(docs, key=lambda d: (d.get(field) is not None, d.get(field) or 0), reverse=True)


def find_newest_first(collection, filter_dict: dict, field: str = "created_at") -> list:
    try:
        return list(collection.find(filter_dict).sort(field, DESCENDING))
    except OperationFailure as e:
        # e.g. the store refuses the sort without a matching index
        logger.warning(f"Sorted query on '{collection.name}' failed, sorting locally: {e}")
        return newest_first(collection.find(filter_dict), field)
