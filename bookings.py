"""
Booking queries.

Bookings are not a collection of their own: each customer has one document in
``Bookings`` holding their address and an embedded ``bookings`` array. Every
query therefore reads the whole collection, flattens it into rows, and filters
in memory, because the filters target embedded fields and fields derived from
the free-text address.
"""
import logging
import re
from typing import Optional, List, Dict, Any, Iterable

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

import database
from auth import require_access
from partners import find_partner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["bookings"], dependencies=[Depends(require_access("bookings"))])

PINCODE_RE = re.compile(r"\b(\d{6})\b")

# Checked in order, first match wins. Aliases for one city share a pattern.
CITY_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"Mumbai|Bombay",
        r"Delhi",
        r"Bangalore|Bengaluru",
        r"Chennai",
        r"Kolkata|Calcutta",
        r"Pune",
        r"Hyderabad",
        r"Ahmedabad",
        r"Chhatrapati Sambhajinagar|Aurangabad",
        r"Nagpur",
        r"Thane",
        r"Nashik",
    ]
]


def extract_pincode(address: Optional[str]) -> Optional[str]:
    if not address or not isinstance(address, str):
        return None
    match = PINCODE_RE.search(address)
    return match.group(1) if match else None


def extract_city(address: Optional[str]) -> Optional[str]:
    if not address or not isinstance(address, str):
        return None
    for pattern in CITY_PATTERNS:
        match = pattern.search(address)
        if match:
            return match.group(0)
    return None


def created_at_ms(doc: Dict[str, Any]) -> int:
    value = doc.get("createdAt")
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def sort_newest_first(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # sorted() is stable with reverse=True, so ties keep encounter order
    return sorted(rows, key=created_at_ms, reverse=True)


def flatten(customer_docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """One row per embedded booking, carrying the owner and the derived address fields."""
    rows = []
    for doc in customer_docs:
        bookings = doc.get("bookings")
        if not isinstance(bookings, list):
            continue
        address = doc.get("address") or ""
        pincode = extract_pincode(address)
        city = extract_city(address)
        for booking in bookings:
            if not isinstance(booking, dict):
                continue
            rows.append({
                **booking,
                "userId": str(doc.get("_id")),
                "userAddress": address,
                "userPincode": pincode,
                "userCity": city,
            })
    return rows


class BookingFilter(BaseModel):
    bookingId: Optional[str] = None
    service: Optional[str] = None
    city: Optional[str] = None
    pincode: Optional[str] = None
    status: Optional[str] = None
    providerId: Optional[str] = None
    startDate: Optional[int] = None
    endDate: Optional[int] = None
    limit: int = Field(50, ge=0)
    offset: int = Field(0, ge=0)

    def matches(self, row: Dict[str, Any]) -> bool:
        if self.bookingId and self.bookingId.lower() not in str(row.get("bookingId") or "").lower():
            return False
        if self.service and row.get("serviceName") != self.service:
            return False
        if self.status and row.get("bookingStatus") != self.status:
            return False
        if self.providerId and row.get("providerId") != self.providerId:
            return False
        created_at = created_at_ms(row)
        if self.startDate is not None and created_at < self.startDate:
            return False
        if self.endDate is not None and created_at > self.endDate:
            return False
        # address-derived filters only apply when the field could be derived
        city = row.get("userCity")
        if self.city and city and self.city.lower() not in city.lower():
            return False
        pincode = row.get("userPincode")
        if self.pincode and pincode and pincode != self.pincode:
            return False
        return True


def distinct(values: Iterable[Any]) -> List[Any]:
    return list(dict.fromkeys(v for v in values if v))


def facets(rows: List[Dict[str, Any]]) -> Dict[str, List[Any]]:
    return {
        "services": distinct(r.get("serviceName") for r in rows),
        "cities": distinct(r.get("userCity") for r in rows),
        "pincodes": distinct(r.get("userPincode") for r in rows),
        "statuses": distinct(r.get("bookingStatus") for r in rows),
    }


def resolve_provider(provider_id: str) -> Optional[Dict[str, Any]]:
    """Fetch a partner for display; read failures become ``None``."""
    try:
        return find_partner(provider_id)
    except PyMongoError as e:
        logger.warning("Could not fetch provider %s: %s", provider_id, e)
        return None


def list_bookings(flt: BookingFilter, customer_docs: Optional[Iterable[Dict[str, Any]]] = None) -> Dict[str, Any]:
    if customer_docs is None:
        customer_docs = database.get_documents(database.BOOKINGS)

    rows = [r for r in flatten(customer_docs) if flt.matches(r)]

    providers: Dict[str, Optional[Dict[str, Any]]] = {}
    for row in rows:
        provider_id = row.get("providerId")
        if not provider_id:
            row["providerInfo"] = None
            continue
        if provider_id not in providers:
            providers[provider_id] = resolve_provider(provider_id)
        row["providerInfo"] = providers[provider_id]

    rows = sort_newest_first(rows)
    page = rows[flt.offset:flt.offset + flt.limit]
    return {"bookings": page, "total": len(rows), "filters": facets(rows)}


def get_booking_details(booking_id: str) -> Dict[str, Any]:
    # linear scan; bookingId is unique across all customer documents
    found = None
    owner = None
    for doc in database.get_documents(database.BOOKINGS):
        for booking in doc.get("bookings") or []:
            if isinstance(booking, dict) and booking.get("bookingId") == booking_id:
                found, owner = booking, doc
                break
        if found is not None:
            break

    if found is None:
        raise HTTPException(status_code=404, detail="Booking not found")

    address = owner.get("address")
    provider_info = resolve_provider(found["providerId"]) if found.get("providerId") else None
    return {
        "booking": {
            **found,
            "userAddress": address,
            "userPincode": extract_pincode(address),
            "userCity": extract_city(address),
            "userId": str(owner.get("_id")),
            "userName": owner.get("userName"),
            "userMobileNo": owner.get("mobileNo"),
        },
        "providerInfo": provider_info,
        "userInfo": database.serialize(owner),
    }


@router.get("")
def get_all_bookings(
    bookingId: Optional[str] = None,
    service: Optional[str] = None,
    city: Optional[str] = None,
    pincode: Optional[str] = None,
    status: Optional[str] = None,
    providerId: Optional[str] = None,
    startDate: Optional[int] = None,
    endDate: Optional[int] = None,
    limit: int = Query(50, ge=0),
    offset: int = Query(0, ge=0),
):
    flt = BookingFilter(
        bookingId=bookingId, service=service, city=city, pincode=pincode, status=status,
        providerId=providerId, startDate=startDate, endDate=endDate, limit=limit, offset=offset,
    )
    return list_bookings(flt)


@router.get("/{booking_id}")
def booking_details(booking_id: str):
    return get_booking_details(booking_id)
