import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-secret-0123456789abcdef0123456789abcdef"
os.environ.pop("DATABASE_URL", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import database
from cache import cache
from main import app


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["serveit_test"]
    monkeypatch.setattr(database, "db", mock_db)
    cache.clear()
    yield mock_db
    cache.clear()


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def make_admin(db):
    counter = {"n": 0}

    def _make(role="super_admin", access=None, email=None, password="s3cret-pass", is_active=True):
        counter["n"] += 1
        doc = {
            "_id": f"admin-{counter['n']}",
            "name": f"Admin {counter['n']}",
            "email": email or f"admin{counter['n']}@serveit.in",
            "password": auth.hash_password(password),
            "mobile": "9800000000",
            "role": role,
            "access": access or [],
            "isActive": is_active,
            "createdAt": 1_700_000_000_000 + counter["n"],
        }
        db[database.ADMINS].insert_one(doc)
        return auth.public_admin(doc)

    return _make


def bearer(admin):
    return {"Authorization": f"Bearer {auth.create_access_token(admin)}"}


@pytest.fixture
def super_headers(make_admin):
    return bearer(make_admin())
