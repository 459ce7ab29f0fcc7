"""
MongoDB access helpers

The module-level ``db`` handle is None until DATABASE_URL is configured.
Services receive the database explicitly so routes can inject it through
``get_db`` and tests can swap in an in-memory client.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.decimal128 import Decimal128
from fastapi import HTTPException
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL
from errors import NotFoundError

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = MongoClient(DATABASE_URL) if DATABASE_URL else None
db: Optional[Database] = client[DATABASE_NAME] if client is not None else None


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def ensure_indexes(database: Database) -> None:
    database["quotation"].create_index([("quotation_id", ASCENDING)], unique=True)
    database["booking"].create_index([("booking_id", ASCENDING)], unique=True)
    database["user"].create_index([("username", ASCENDING)], unique=True)
    logger.info("Indexes ensured on %s", database.name)


# ----------------------------
# BSON conversion
# ----------------------------
def to_mongo(value: Any) -> Any:
    """Convert Decimals and plain dates into types BSON can store."""
    if isinstance(value, dict):
        return {k: to_mongo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_mongo(v) for v in value]
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    return value


def from_mongo(doc: Any) -> Any:
    """Inverse of to_mongo; also exposes ``_id`` as a string ``id``."""
    if isinstance(doc, dict):
        out = {}
        for k, v in doc.items():
            if k == "_id":
                out["id"] = str(v)
            else:
                out[k] = from_mongo(v)
        return out
    if isinstance(doc, list):
        return [from_mongo(v) for v in doc]
    if isinstance(doc, Decimal128):
        return doc.to_decimal()
    return doc


def identity_query(ref: str, code_field: str) -> Dict[str, Any]:
    """Match a document by ObjectId or by its human-readable code."""
    if ObjectId.is_valid(ref):
        return {"_id": ObjectId(ref)}
    return {code_field: ref}


def object_id(ref: str, label: str = "Document") -> ObjectId:
    if not ObjectId.is_valid(ref):
        raise NotFoundError(f"{label} not found")
    return ObjectId(ref)


# ----------------------------
# Generic document helpers
# ----------------------------
def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    doc = to_mongo(dict(data))
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    database[collection_name].insert_one(doc)
    return from_mongo(doc)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {}).sort("created_at", -1)
    if limit:
        cursor = cursor.limit(limit)
    return [from_mongo(d) for d in cursor]
