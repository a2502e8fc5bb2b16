import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, StrictBool

import database
from auth import require_access
from bookings import sort_newest_first

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"], dependencies=[Depends(require_access("users"))])


class UserStatusBody(BaseModel):
    blocked: StrictBool
    blockReason: str = ""


def _get_user_or_404(user_id: str) -> dict:
    doc = database.collection(database.USERS).find_one({"_id": user_id})
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    return doc


@router.get("")
def list_users(
    blocked: Optional[bool] = None,
    limit: int = Query(50, ge=0),
    offset: int = Query(0, ge=0),
):
    query = {} if blocked is None else {"blocked": blocked}
    cursor = database.collection(database.USERS).find(query).skip(offset)
    if limit:
        cursor = cursor.limit(limit)
    return [database.serialize(d) for d in cursor]


@router.get("/{user_id}")
def get_user(user_id: str):
    return database.serialize(_get_user_or_404(user_id))


@router.patch("/{user_id}/status")
def update_user_status(user_id: str, body: UserStatusBody):
    _get_user_or_404(user_id)
    reason = body.blockReason.strip()
    if body.blocked and not reason:
        raise HTTPException(status_code=400, detail="blockReason is required when blocking a user")

    now = database.now_ms()
    if body.blocked:
        changes = {"blocked": True, "blockedAt": now, "unblockedAt": None, "blockReason": reason}
    else:
        changes = {"blocked": False, "blockedAt": None, "unblockedAt": now, "blockReason": ""}
    changes["updatedAt"] = now

    users = database.collection(database.USERS)
    users.update_one({"_id": user_id}, {"$set": changes})
    logger.info("User %s %s", user_id, "blocked" if body.blocked else "unblocked")
    return database.serialize(users.find_one({"_id": user_id}))


@router.delete("/{user_id}")
def delete_user(user_id: str):
    _get_user_or_404(user_id)
    database.collection(database.USERS).delete_one({"_id": user_id})
    logger.info("User %s deleted", user_id)
    return {"ok": True, "message": "User deleted successfully"}


@router.get("/{user_id}/bookings")
def user_booking_history(user_id: str):
    doc = database.collection(database.BOOKINGS).find_one({"_id": user_id})
    if not doc:
        return {"bookings": [], "address": None, "userId": user_id}
    bookings = sort_newest_first(b for b in doc.get("bookings") or [] if isinstance(b, dict))
    return {"bookings": bookings, "address": doc.get("address"), "userId": user_id}
