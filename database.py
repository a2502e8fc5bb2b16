"""
MongoDB access for the admin back office.

The collections are shared with the mobile app backend, so their names and
document layout follow that app rather than the lowercase-class-name rule.
Documents use string ``_id`` values throughout.
"""
import logging
import time
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient

import config

logger = logging.getLogger(__name__)

ADMINS = "Admin"
CATEGORIES = "services"
SERVICES = "serviceList"
PARTNERS = "partners"
USERS = "serveit_users"
BOOKINGS = "Bookings"

db = None

if config.DATABASE_URL:
    try:
        _client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000)
        db = _client[config.DATABASE_NAME]
    except Exception as e:
        logger.error("Could not create MongoDB client: %s", e)


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(ObjectId())


def collection(name: str):
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db[name]


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document and return its string id. Stamps createdAt when missing."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    doc.setdefault("_id", new_id())
    if doc.get("createdAt") is None:
        doc["createdAt"] = now_ms()
    collection(collection_name).insert_one(doc)
    return doc["_id"]


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = collection(collection_name).find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc
