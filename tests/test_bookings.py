import pytest
from pymongo.errors import PyMongoError

import bookings
import database
from bookings import BookingFilter, extract_city, extract_pincode, flatten, list_bookings
from tests.conftest import bearer


# ------------------ derived address fields ------------------

def test_extract_pincode():
    assert extract_pincode("12 MG Road, Bangalore 560001") == "560001"
    assert extract_pincode("12 MG Road, Bangalore") is None
    assert extract_pincode("Phone 98765432101, Pune") is None
    assert extract_pincode("") is None
    assert extract_pincode(None) is None


def test_extract_city():
    assert extract_city("12 MG Road, Bangalore 560001") == "Bangalore"
    assert extract_city("Andheri West, bombay") == "bombay"
    assert extract_city("Sector 5, Bengaluru") == "Bengaluru"
    assert extract_city("Somewhere quiet") is None
    assert extract_city(None) is None


def test_city_patterns_first_match_wins():
    # Mumbai is listed before Thane
    assert extract_city("Thane, near Mumbai") == "Mumbai"


def test_flatten_carries_owner_and_derived_fields():
    rows = flatten([
        {"_id": "u1", "address": "5 Park St, Kolkata 700016", "bookings": [{"bookingId": "B1"}, "junk"]},
        {"_id": "u2", "bookings": None},
        {"_id": "u3"},
    ])
    assert rows == [{
        "bookingId": "B1",
        "userId": "u1",
        "userAddress": "5 Park St, Kolkata 700016",
        "userPincode": "700016",
        "userCity": "Kolkata",
    }]


# ------------------ listing ------------------

def _docs(*items, address="12 MG Road, Bangalore 560001", owner="u1"):
    return [{"_id": owner, "address": address, "bookings": [dict(s) for s in items]}]


SAMPLE = [
    {"bookingId": "B1", "serviceName": "AC", "bookingStatus": "pending", "createdAt": 100},
    {"bookingId": "B2", "serviceName": "AC", "bookingStatus": "done", "createdAt": 200},
    {"bookingId": "B3", "serviceName": "Plumb", "bookingStatus": "pending", "createdAt": 300},
]


def test_filters_are_conjunctive():
    result = list_bookings(BookingFilter(service="AC", status="pending"), _docs(*SAMPLE))
    assert [b["bookingId"] for b in result["bookings"]] == ["B1"]
    assert result["total"] == 1


def test_results_sorted_newest_first_with_stable_ties():
    docs = _docs(
        {"bookingId": "A", "createdAt": 5},
        {"bookingId": "B", "createdAt": 9},
        {"bookingId": "C", "createdAt": 5},
        {"bookingId": "D"},
    )
    result = list_bookings(BookingFilter(), docs)
    assert [b["bookingId"] for b in result["bookings"]] == ["B", "A", "C", "D"]


def test_pagination_applies_after_filtering():
    items = []
    for i in range(14):
        items.append({"bookingId": f"B{i:02d}", "serviceName": "AC" if i < 10 else "Plumb", "createdAt": 1000 - i})
    result = list_bookings(BookingFilter(service="AC", limit=4, offset=4), _docs(*items))
    assert result["total"] == 10
    assert [b["bookingId"] for b in result["bookings"]] == ["B04", "B05", "B06", "B07"]


def test_offset_past_the_end_returns_empty_page():
    result = list_bookings(BookingFilter(offset=10), _docs(*SAMPLE))
    assert result["bookings"] == []
    assert result["total"] == 3


def test_booking_id_is_case_insensitive_substring():
    docs = _docs({"bookingId": "BK-ab12"}, {"bookingId": "BK-cd34"})
    result = list_bookings(BookingFilter(bookingId="AB1"), docs)
    assert [b["bookingId"] for b in result["bookings"]] == ["BK-ab12"]


def test_date_bounds_are_inclusive_and_optional():
    docs = _docs(*SAMPLE)
    both = list_bookings(BookingFilter(startDate=100, endDate=200), docs)
    assert {b["bookingId"] for b in both["bookings"]} == {"B1", "B2"}
    from_only = list_bookings(BookingFilter(startDate=200), docs)
    assert {b["bookingId"] for b in from_only["bookings"]} == {"B2", "B3"}
    until_zero = list_bookings(BookingFilter(endDate=0), docs)
    assert until_zero["total"] == 0


def test_city_and_pincode_filters():
    docs = (
        _docs({"bookingId": "P1"}, address="Baner, Pune 411045", owner="u1")
        + _docs({"bookingId": "M1"}, address="Andheri, Mumbai 400053", owner="u2")
        + _docs({"bookingId": "X1"}, address="somewhere without markers", owner="u3")
    )
    by_city = list_bookings(BookingFilter(city="mum"), docs)
    # bookings whose city could not be derived are not excluded by the city filter
    assert {b["bookingId"] for b in by_city["bookings"]} == {"M1", "X1"}

    by_pin = list_bookings(BookingFilter(pincode="411045"), docs)
    assert {b["bookingId"] for b in by_pin["bookings"]} == {"P1", "X1"}


def test_provider_filter(db):
    docs = _docs({"bookingId": "B1", "providerId": "p1"}, {"bookingId": "B2", "providerId": "p2"})
    result = list_bookings(BookingFilter(providerId="p2"), docs)
    assert [b["bookingId"] for b in result["bookings"]] == ["B2"]


def test_facets_cover_filtered_unpaginated_set_in_first_appearance_order():
    docs = (
        _docs(
            {"bookingId": "B1", "serviceName": "AC", "bookingStatus": "pending", "createdAt": 3},
            {"bookingId": "B2", "serviceName": "Plumb", "bookingStatus": "completed", "createdAt": 2},
            owner="u1",
        )
        + _docs(
            {"bookingId": "B3", "serviceName": "AC", "bookingStatus": "cancelled", "createdAt": 1},
            address="Koregaon Park, Pune 411001",
            owner="u2",
        )
    )
    result = list_bookings(BookingFilter(limit=1), docs)
    assert len(result["bookings"]) == 1
    assert result["filters"] == {
        "services": ["AC", "Plumb"],
        "cities": ["Bangalore", "Pune"],
        "pincodes": ["560001", "411001"],
        "statuses": ["pending", "completed", "cancelled"],
    }


def test_provider_lookups_are_memoized_per_call(monkeypatch):
    calls = []

    def fake_find(provider_id):
        calls.append(provider_id)
        return {"id": provider_id, "personalDetails": {"fullName": "Ravi"}}

    monkeypatch.setattr(bookings, "find_partner", fake_find)
    docs = _docs(
        {"bookingId": "B1", "providerId": "p1", "createdAt": 1},
        {"bookingId": "B2", "providerId": "p1", "createdAt": 2},
        {"bookingId": "B3", "providerId": "p2", "createdAt": 3},
        {"bookingId": "B4", "createdAt": 4},
    )
    result = list_bookings(BookingFilter(), docs)
    assert sorted(calls) == ["p1", "p2"]
    info = {b["bookingId"]: b["providerInfo"] for b in result["bookings"]}
    assert info["B1"]["id"] == info["B2"]["id"] == "p1"
    assert info["B4"] is None


def test_provider_read_failure_degrades_to_null(monkeypatch):
    def broken(provider_id):
        raise PyMongoError("connection reset")

    monkeypatch.setattr(bookings, "find_partner", broken)
    result = list_bookings(BookingFilter(), _docs({"bookingId": "B1", "providerId": "p1"}))
    assert result["bookings"][0]["providerInfo"] is None


# ------------------ HTTP ------------------

@pytest.fixture
def headers(make_admin):
    return bearer(make_admin(role="sub_admin", access=["bookings"]))


@pytest.fixture
def stored(db):
    db[database.PARTNERS].insert_one({"_id": "p1", "personalDetails": {"fullName": "Ravi"}, "verificationDetails": {"verified": True}})
    db[database.BOOKINGS].insert_many([
        {
            "_id": "u1",
            "address": "12 MG Road, Bangalore 560001",
            "userName": "Asha",
            "mobileNo": "900",
            "bookings": [
                {"bookingId": "B1", "serviceName": "AC", "bookingStatus": "pending", "createdAt": 100, "providerId": "p1"},
                {"bookingId": "B2", "serviceName": "AC", "bookingStatus": "completed", "createdAt": 200},
            ],
        },
        {
            "_id": "u2",
            "address": "Baner, Pune 411045",
            "bookings": [{"bookingId": "B3", "serviceName": "Plumb", "bookingStatus": "pending", "createdAt": 300, "providerId": "ghost"}],
        },
    ])


def test_list_endpoint(client, headers, stored):
    res = client.get("/api/bookings", params={"status": "pending"}, headers=headers)
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 2
    assert [b["bookingId"] for b in body["bookings"]] == ["B3", "B1"]
    assert body["bookings"][0]["providerInfo"] is None
    assert body["bookings"][1]["providerInfo"]["verificationStatus"] == "verified"
    assert body["filters"]["cities"] == ["Pune", "Bangalore"]


def test_list_endpoint_rejects_bad_query(client, headers, stored):
    assert client.get("/api/bookings", params={"limit": -1}, headers=headers).status_code == 400
    assert client.get("/api/bookings", params={"startDate": "yesterday"}, headers=headers).status_code == 400


def test_detail_endpoint(client, headers, stored):
    res = client.get("/api/bookings/B1", headers=headers)
    assert res.status_code == 200
    body = res.json()
    assert body["booking"]["userId"] == "u1"
    assert body["booking"]["userPincode"] == "560001"
    assert body["booking"]["userCity"] == "Bangalore"
    assert body["booking"]["userName"] == "Asha"
    assert body["booking"]["userMobileNo"] == "900"
    assert body["providerInfo"]["id"] == "p1"
    assert body["userInfo"]["id"] == "u1"


def test_detail_with_missing_provider_and_unknown_booking(client, headers, stored):
    res = client.get("/api/bookings/B3", headers=headers)
    assert res.status_code == 200
    assert res.json()["providerInfo"] is None
    res = client.get("/api/bookings/NOPE", headers=headers)
    assert res.status_code == 404
    assert res.json() == {"ok": False, "error": "Booking not found"}


def test_bookings_need_capability(client, make_admin, stored):
    res = client.get("/api/bookings", headers=bearer(make_admin(role="sub_admin", access=["users"])))
    assert res.status_code == 403
