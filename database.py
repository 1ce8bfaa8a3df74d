"""
Database connection

A single MongoClient per process. Collections are named after the lower-cased
schema class: User -> "user", Todo -> "todo".
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

from config import get_settings
from errors import StoreError
from logger import get_logger

log = get_logger("database")

client: Optional[MongoClient] = None
db: Optional[Database] = None


def connect(url: Optional[str] = None, name: Optional[str] = None,
            mongo_client: Optional[MongoClient] = None) -> Database:
    """Open the connection and make sure the indexes the app relies on exist.

    ``mongo_client`` lets callers hand in an already built client (tests use an
    in-memory one).
    """
    global client, db
    if mongo_client is None:
        settings = get_settings()
        url = url or settings.database_url
        name = name or settings.database_name
        mongo_client = MongoClient(url)
    else:
        name = name or get_settings().database_name

    client = mongo_client
    db = client[name]
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["todo"].create_index([("owner", ASCENDING)])
    log.info("Connected to database %s", name)
    return db


def disconnect() -> None:
    global client, db
    if client is not None:
        client.close()
        log.info("Database connection closed")
    client = None
    db = None


def get_db() -> Database:
    if db is None:
        raise StoreError("database is not connected")
    return db


def collection(name: str) -> Collection:
    return get_db()[name]


def create_document(collection_name: str, data: Dict[str, Any]) -> str:
    now = datetime.now(timezone.utc)
    data.setdefault("_id", ObjectId())
    data.setdefault("created_at", now)
    data.setdefault("updated_at", now)
    res = collection(collection_name).insert_one(data)
    return str(res.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = collection(collection_name).find(filter_dict or {}).sort("_id", ASCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
