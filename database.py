"""
MongoDB access for Lingo Quests.

The module-level ``db`` handle is None until DATABASE_URL and DATABASE_NAME
are both set. Datetimes are stored as naive UTC, which is also what pymongo
hands back.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config

logger = logging.getLogger(__name__)

db: Optional[Database] = None

if config.DATABASE_URL and config.DATABASE_NAME:
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]
else:
    logger.warning("DATABASE_URL / DATABASE_NAME not set, database disabled")


def get_database() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value):
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return value


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id as a string."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("clerk_id", ASCENDING)], unique=True)
    database["user_quest"].create_index([("user_id", ASCENDING), ("quest_id", ASCENDING)], unique=True)
    database["user_quest"].create_index([("user_id", ASCENDING), ("status", ASCENDING)])
    database["quest"].create_index([("status", ASCENDING), ("conditions.type", ASCENDING)])
    database["quest"].create_index([("priority", DESCENDING), ("start_date", ASCENDING)])
    database["payment_transaction"].create_index([("transaction_id", ASCENDING)], unique=True)
    database["payment_transaction"].create_index(
        [("user_id", ASCENDING), ("plan_id", ASCENDING), ("status", ASCENDING), ("created_at", DESCENDING)]
    )
    database["user_progress"].create_index([("user_id", ASCENDING), ("language_id", ASCENDING)], unique=True)
    database["session"].create_index([("token", ASCENDING)], unique=True)
