"""
Database access

MongoDB connection plus the small helpers every route module shares. The
connection is configured from DATABASE_URL / DATABASE_NAME (a .env file is
honoured). When those are missing `db` stays None and `get_db` answers 500.
"""

import logging
import math
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import HTTPException
from pymongo import ASCENDING, MongoClient

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
USE_TRANSACTIONS = os.getenv("DATABASE_TRANSACTIONS", "false").lower() == "true"

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    try:
        _client = MongoClient(DATABASE_URL)
        db = _client[DATABASE_NAME]
    except Exception as e:
        logger.error("Could not connect to MongoDB: %s", e)
        db = None


def get_db():
    if db is None:
        raise HTTPException(500, "Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def session_kwargs(session) -> Dict[str, Any]:
    return {"session": session} if session is not None else {}


def create_document(database, collection_name: str, data, session=None) -> str:
    """Insert a pydantic model or dict, stamping created_at/updated_at."""
    if hasattr(data, "model_dump"):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict, **session_kwargs(session))
    return str(result.inserted_id)


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    # ObjectId(None) would mint a fresh id
    if value is None:
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    d = {**doc}
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, ObjectId):
            d[k] = str(v)
    return d


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


@contextmanager
def transaction(database):
    """
    Yield a session bound to a multi-document transaction, or None.

    Transactions need a replica set, so they are opt-in through
    DATABASE_TRANSACTIONS. With None, callers undo their own partial writes.
    """
    client = getattr(database, "client", None)
    if not USE_TRANSACTIONS or client is None:
        yield None
        return
    with client.start_session() as session:
        with session.start_transaction():
            yield session


def ensure_indexes(database) -> None:
    """Create the unique indexes the routes rely on for one-per-key documents."""
    database["user"].create_index("email", unique=True)
    database["cart"].create_index("user_id", unique=True)
    database["review"].create_index([("product_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
