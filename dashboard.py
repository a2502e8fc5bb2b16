import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

import database
from auth import get_current_admin
from bookings import flatten, sort_newest_first, created_at_ms
from partners import all_partners, find_partner, partner_display_name
from schemas import BOOKING_STATUSES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"], dependencies=[Depends(get_current_admin)])

WEEK_MS = 7 * 24 * 60 * 60 * 1000
RECENT_LIMIT = 5


def percentage_change(current: int, previous: int) -> int:
    if previous == 0:
        return 100 if current > 0 else 0
    # half-up rounding, so 2.5 -> 3 and -2.5 -> -2
    return int(math.floor((current - previous) / previous * 100 + 0.5))


def month_starts(now: datetime):
    """Epoch ms of the first instant of this month and of the previous month (UTC)."""
    this_month = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 1:
        prev_month = datetime(now.year - 1, 12, 1, tzinfo=timezone.utc)
    else:
        prev_month = datetime(now.year, now.month - 1, 1, tzinfo=timezone.utc)
    return int(this_month.timestamp() * 1000), int(prev_month.timestamp() * 1000)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ------------------ Aggregations ------------------

def user_stats(users: List[Dict[str, Any]]) -> Dict[str, int]:
    total = len(users)
    blocked = sum(1 for u in users if u.get("blocked") is True)
    # No historical snapshot is stored, so the baseline is a fixed offset (same for partners).
    return {"total": total, "active": total - blocked, "blocked": blocked, "change": percentage_change(total, total - 10)}


def partner_stats(partners: List[Dict[str, Any]]) -> Dict[str, int]:
    total = len(partners)
    counts = {"verified": 0, "pending_verification": 0, "rejected": 0}
    for p in partners:
        counts[p["verificationStatus"]] += 1
    return {
        "total": total,
        "verified": counts["verified"],
        "pending": counts["pending_verification"],
        "rejected": counts["rejected"],
        "change": percentage_change(total, total - 5),
    }


def booking_stats(rows: List[Dict[str, Any]], now: datetime) -> Dict[str, int]:
    start_of_month, start_of_prev_month = month_starts(now)
    monthly = sum(1 for b in rows if created_at_ms(b) >= start_of_month)
    previous = sum(1 for b in rows if start_of_prev_month <= created_at_ms(b) < start_of_month)
    stats = {"total": len(rows), "monthly": monthly}
    for status in BOOKING_STATUSES:
        stats[status] = sum(1 for b in rows if b.get("bookingStatus") == status)
    stats["change"] = percentage_change(monthly, previous)
    return stats


def booking_trends(rows: List[Dict[str, Any]], now_ms: int) -> List[Dict[str, Any]]:
    """Four rolling 7-day buckets ending now, oldest first. Not aligned to calendar weeks."""
    trends = []
    for i in range(3, -1, -1):
        week_start = now_ms - (i + 1) * WEEK_MS
        week_end = now_ms - i * WEEK_MS
        count = sum(1 for b in rows if week_start <= created_at_ms(b) < week_end)
        trends.append({"week": f"Week {4 - i}", "bookings": count, "weekStart": week_start, "weekEnd": week_end})
    return trends


def provider_name(provider_id: Optional[str]) -> str:
    if not provider_id:
        return "Not Assigned"
    try:
        partner = find_partner(provider_id)
    except PyMongoError as e:
        logger.warning("Could not fetch provider %s: %s", provider_id, e)
        return "Not Assigned"
    if partner is None:
        return "Not Assigned"
    return partner_display_name(partner) or "Unknown Provider"


def recent_bookings(customer_docs: List[Dict[str, Any]], limit: int = RECENT_LIMIT) -> List[Dict[str, Any]]:
    owners = {str(d.get("_id")): d for d in customer_docs}
    recent = sort_newest_first(flatten(customer_docs))[:limit]
    out = []
    for booking in recent:
        owner = owners.get(booking["userId"], {})
        out.append({
            **booking,
            "userName": owner.get("userName"),
            "userMobileNo": owner.get("mobileNo"),
            "providerName": provider_name(booking.get("providerId")),
        })
    return out


def pending_validations(partners: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    pending = [p for p in partners if p["verificationStatus"] == "pending_verification"]
    # oldest first: review priority
    return sorted(pending, key=created_at_ms)


# ------------------ Routes ------------------

@router.get("/stats")
async def dashboard_stats():
    users, partners, customer_docs = await asyncio.gather(
        run_in_threadpool(database.get_documents, database.USERS),
        run_in_threadpool(all_partners),
        run_in_threadpool(database.get_documents, database.BOOKINGS),
    )
    return {
        "users": user_stats(users),
        "partners": partner_stats(partners),
        "bookings": booking_stats(flatten(customer_docs), _utcnow()),
    }


@router.get("/recent-bookings")
def dashboard_recent_bookings():
    return {"bookings": recent_bookings(database.get_documents(database.BOOKINGS))}


@router.get("/pending-validations")
def dashboard_pending_validations():
    return {"partners": pending_validations(all_partners())}


@router.get("/booking-trends")
def dashboard_booking_trends():
    rows = flatten(database.get_documents(database.BOOKINGS))
    return {"trends": booking_trends(rows, int(_utcnow().timestamp() * 1000))}
