"""
MongoDB connection and document helpers.

The collection name for each entity is the lowercased entity name
("store", "product", "order").
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.decimal128 import Decimal128
from pymongo import MongoClient
from pymongo.database import Database


def connect(database_url: Optional[str], database_name: str) -> Database:
    client = MongoClient(database_url or "mongodb://localhost:27017", tz_aware=True)
    return client[database_name]


def to_bson(value: Any) -> Any:
    """Recursively convert Decimal values to Decimal128 so BSON can store them."""
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, dict):
        return {k: to_bson(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_bson(v) for v in value]
    return value


def from_bson(value: Any) -> Any:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, dict):
        return {k: from_bson(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_bson(v) for v in value]
    return value


def to_object_id(id_str: str) -> Optional[ObjectId]:
    if not ObjectId.is_valid(id_str):
        return None
    return ObjectId(id_str)


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    doc = from_bson(doc)
    doc["id"] = str(doc.pop("_id"))
    created_at = doc.get("created_at")
    if isinstance(created_at, datetime) and created_at.tzinfo is None:
        doc["created_at"] = created_at.replace(tzinfo=timezone.utc)
    return doc


def create_document(db: Database, collection_name: str, data: Dict[str, Any]) -> str:
    result = db[collection_name].insert_one(to_bson(dict(data)))
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {}).sort("_id", 1)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(doc) for doc in cursor]
