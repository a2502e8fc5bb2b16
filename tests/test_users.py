import pytest

import database
from tests.conftest import bearer


@pytest.fixture
def headers(make_admin):
    return bearer(make_admin(role="sub_admin", access=["users"]))


@pytest.fixture
def customers(db):
    db[database.USERS].insert_many([
        {"_id": "u1", "name": "Asha", "phoneNumber": "900", "blocked": False},
        {"_id": "u2", "name": "Vikram", "phoneNumber": "901", "blocked": True, "blockReason": "abuse"},
        {"_id": "u3", "name": "Neha", "phoneNumber": "902", "blocked": False},
    ])


def test_list_users_with_blocked_filter_and_paging(client, headers, customers):
    assert [u["id"] for u in client.get("/api/users", headers=headers).json()] == ["u1", "u2", "u3"]
    assert [u["id"] for u in client.get("/api/users?blocked=true", headers=headers).json()] == ["u2"]
    assert [u["id"] for u in client.get("/api/users?blocked=false", headers=headers).json()] == ["u1", "u3"]
    assert [u["id"] for u in client.get("/api/users?limit=1&offset=1", headers=headers).json()] == ["u2"]


def test_get_user(client, headers, customers):
    assert client.get("/api/users/u1", headers=headers).json()["name"] == "Asha"
    assert client.get("/api/users/nope", headers=headers).status_code == 404


def test_block_requires_reason(client, headers, customers):
    res = client.patch("/api/users/u1/status", json={"blocked": True}, headers=headers)
    assert res.status_code == 400
    res = client.patch("/api/users/u1/status", json={"blocked": True, "blockReason": "   "}, headers=headers)
    assert res.status_code == 400


def test_block_and_unblock(client, headers, customers):
    res = client.patch("/api/users/u1/status", json={"blocked": True, "blockReason": "fraud"}, headers=headers)
    assert res.status_code == 200
    user = res.json()
    assert user["blocked"] is True
    assert user["blockReason"] == "fraud"
    assert isinstance(user["blockedAt"], int)
    assert user["unblockedAt"] is None

    res = client.patch("/api/users/u1/status", json={"blocked": False}, headers=headers)
    user = res.json()
    assert user["blocked"] is False
    assert user["blockReason"] == ""
    assert user["blockedAt"] is None
    assert isinstance(user["unblockedAt"], int)
    assert user["updatedAt"] == user["unblockedAt"]


def test_status_update_validation_and_missing_user(client, headers, customers):
    assert client.patch("/api/users/u1/status", json={"blocked": "yes"}, headers=headers).status_code == 400
    assert client.patch("/api/users/zz/status", json={"blocked": False}, headers=headers).status_code == 404


def test_delete_user(client, headers, customers):
    res = client.delete("/api/users/u3", headers=headers)
    assert res.json() == {"ok": True, "message": "User deleted successfully"}
    assert client.delete("/api/users/u3", headers=headers).status_code == 404


def test_user_booking_history_newest_first(client, db, headers):
    db[database.BOOKINGS].insert_one({
        "_id": "u1",
        "address": "Flat 2, Baner, Pune 411045",
        "bookings": [
            {"bookingId": "B1", "createdAt": 100},
            {"bookingId": "B2", "createdAt": 300},
            {"bookingId": "B3", "createdAt": 200},
        ],
    })
    res = client.get("/api/users/u1/bookings", headers=headers).json()
    assert [b["bookingId"] for b in res["bookings"]] == ["B2", "B3", "B1"]
    assert res["address"] == "Flat 2, Baner, Pune 411045"

    empty = client.get("/api/users/u9/bookings", headers=headers).json()
    assert empty == {"bookings": [], "address": None, "userId": "u9"}
