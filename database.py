"""
MongoDB access helpers.

One MongoClient is created per process, lazily, on the first request that
needs the store. Collection names are the lowercase schema class names
(User -> "user", LedgerCategory -> "ledgercategory").
"""

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import get_settings
from log import get_logger

logger = get_logger(__name__)

USERS = "user"
EXPENSES = "expense"
SAVINGS = "saving"
LEDGERS = "ledger"
LEDGER_CATEGORIES = "ledgercategory"

_client: Optional[MongoClient] = None
_db: Optional[Database] = None
_connect_lock = threading.Lock()


def connect() -> Database:
    """Return the shared database handle, connecting on first use."""
    global _client, _db
    if _db is not None:
        return _db
    with _connect_lock:
        if _db is None:
            settings = get_settings()
            client = MongoClient(settings.database_url)
            database = client[settings.database_name]
            ensure_indexes(database)
            _client, _db = client, database
            logger.info("database_connected", database=settings.database_name)
    return _db


def get_db() -> Database:
    # FastAPI dependency; tests override it with an in-memory database.
    return connect()


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index("email", unique=True)
    db[USERS].create_index("reset_token")
    db[LEDGER_CATEGORIES].create_index([("user_id", ASCENDING), ("slug", ASCENDING)], unique=True)
    for name in (EXPENSES, SAVINGS, LEDGERS):
        db[name].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db[LEDGERS].create_index([("user_id", ASCENDING), ("type", ASCENDING)])


def utcnow() -> datetime:
    # Stored as naive UTC, which is what pymongo hands back by default.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(db: Database, collection_name: str, data) -> Dict[str, Any]:
    """Insert a document, stamping created_at/updated_at. Returns the stored document."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = db[collection_name].insert_one(data_dict)
    data_dict["_id"] = result.inserted_id
    return data_dict


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    sort: Optional[list] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return value


def serialize_document(doc: Optional[Dict[str, Any]], exclude: tuple = ()) -> Optional[Dict[str, Any]]:
    """Convert a stored document to its JSON shape: ``_id`` -> ``id``, camelCase keys."""
    if doc is None:
        return None
    out = {}
    for key, value in doc.items():
        if key in exclude:
            continue
        name = "id" if key == "_id" else to_camel(key)
        out[name] = _serialize_value(value)
    return out
