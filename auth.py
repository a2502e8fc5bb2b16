import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field, StrictBool, field_validator

import config
import database
from cache import TTLCache, get_cache, admin_key
from schemas import Admin, Role

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)

PUBLIC_ADMIN_FIELDS = ["id", "name", "email", "mobile", "role", "access", "isActive", "createdAt"]

# ------------------ Helpers ------------------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # unrecognised hash format in the stored document
        return False


def create_access_token(admin: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.JWT_EXPIRES_MINUTES))
    payload = {
        "id": admin["id"],
        "role": admin.get("role"),
        "access": list(admin.get("access") or []),
        "exp": expire,
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def public_admin(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Strip the password hash (and any other internal field) from an admin document."""
    admin = database.serialize(doc)
    return {k: admin.get(k) for k in PUBLIC_ADMIN_FIELDS}


def _find_admin_by_email(email: str, cache: TTLCache) -> Optional[Dict[str, Any]]:
    cached = cache.get(admin_key(email))
    if cached is not None:
        return cached
    doc = database.collection(database.ADMINS).find_one({"email": email})
    if not doc:
        return None
    admin = public_admin(doc)
    cache.set(admin_key(email), admin)
    return admin


# ------------------ Credentials & sessions ------------------

def register(body: "RegisterBody") -> Dict[str, Any]:
    admins = database.collection(database.ADMINS)
    if admins.find_one({"email": body.email}):
        raise HTTPException(status_code=409, detail="Admin with this email already exists")
    admin = Admin(
        name=body.name,
        email=body.email,
        password=hash_password(body.password),
        mobile=body.mobile,
        role=body.role,
        access=body.access,
        createdAt=database.now_ms(),
    )
    admin_id = database.create_document(database.ADMINS, admin)
    created = public_admin(admins.find_one({"_id": admin_id}))
    logger.info("Registered %s %s", created["role"], created["email"])
    return {"token": create_access_token(created), "admin": created}


def login(email: str, password: str, cache: TTLCache) -> Dict[str, Any]:
    admin = _find_admin_by_email(email, cache)
    if admin is None:
        logger.info("Login failed for %s: unknown email", email)
        raise HTTPException(status_code=401, detail="Invalid credentials")

    # The cache never holds the hash, so the current document is always read by id.
    doc = database.collection(database.ADMINS).find_one({"_id": admin["id"]})
    if not doc:
        cache.clear(admin_key(email))
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not verify_password(password, doc.get("password", "")):
        logger.info("Login failed for %s: password mismatch", email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if doc.get("isActive") is False:
        raise HTTPException(status_code=403, detail="Account is disabled")

    fresh = public_admin(doc)
    logger.info("Login succeeded for %s", email)
    return {"token": create_access_token(fresh), "admin": fresh}


def validate_session(token: Optional[str]) -> Dict[str, Any]:
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    payload = decode_token(token)
    admin_id = payload.get("id")
    if not admin_id:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    doc = database.collection(database.ADMINS).find_one({"_id": admin_id})
    if not doc:
        raise HTTPException(status_code=401, detail="Account no longer exists")
    if doc.get("isActive") is False:
        raise HTTPException(status_code=403, detail="Account is disabled")
    return public_admin(doc)


def refresh(admin: Dict[str, Any]) -> Dict[str, Any]:
    return {"token": create_access_token(admin), "admin": admin}


# ------------------ Access control ------------------

def can_access(admin: Dict[str, Any], capability: str) -> bool:
    role = admin.get("role")
    if role == "super_admin":
        return True
    if role == "sub_admin":
        return capability in (admin.get("access") or [])
    return False


def bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def get_current_admin(request: Request) -> Dict[str, Any]:
    admin = validate_session(bearer_token(request))
    request.state.admin = admin
    return admin


def require_access(capability: str):
    def dependency(admin: Dict[str, Any] = Depends(get_current_admin)) -> Dict[str, Any]:
        if not admin:
            raise HTTPException(status_code=401, detail="Unauthorized")
        if can_access(admin, capability):
            return admin
        if admin.get("role") == "sub_admin":
            raise HTTPException(status_code=403, detail=f"Access denied. Required permission: {capability}")
        raise HTTPException(status_code=403, detail="Access denied. Invalid role.")

    return dependency


# ------------------ Routes ------------------

class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8)
    mobile: str = Field(..., min_length=1)
    role: Role = "sub_admin"
    access: List[str] = []

    @field_validator("name", "mobile", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="before")
    @classmethod
    def _lower(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("access")
    @classmethod
    def _strip_access(cls, v):
        return [a.strip() for a in v if a.strip()]


class LoginBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def _lower(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class AdminStatusBody(BaseModel):
    isActive: StrictBool


public_router = APIRouter(prefix="/api/auth", tags=["auth"])
router = APIRouter(prefix="/api", tags=["admins"])


@public_router.post("/register", status_code=201)
def register_admin(body: RegisterBody):
    return {"ok": True, **register(body)}


@public_router.post("/login")
def login_admin(body: LoginBody, cache: TTLCache = Depends(get_cache)):
    return {"ok": True, **login(body.email, body.password, cache)}


@public_router.post("/logout")
def logout():
    # Tokens are stateless; the client discards its copy.
    return {"ok": True}


@router.get("/auth/me")
def me(admin: dict = Depends(get_current_admin)):
    return {"ok": True, "admin": admin}


@router.post("/auth/refresh")
def refresh_token(admin: dict = Depends(get_current_admin)):
    return {"ok": True, **refresh(admin)}


@router.get("/admins")
def list_admins(admin: dict = Depends(require_access("settings"))):
    docs = database.collection(database.ADMINS).find({}).sort("createdAt", -1)
    return {"ok": True, "admins": [public_admin(d) for d in docs]}


@router.put("/admin/{admin_id}/status")
def toggle_admin_status(admin_id: str, body: AdminStatusBody, admin: dict = Depends(require_access("settings")), cache: TTLCache = Depends(get_cache)):
    if admin_id == admin["id"]:
        raise HTTPException(status_code=400, detail="Cannot disable your own account")
    admins = database.collection(database.ADMINS)
    doc = admins.find_one({"_id": admin_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Admin not found")
    admins.update_one({"_id": admin_id}, {"$set": {"isActive": body.isActive}})
    cache.clear(admin_key(doc.get("email", "")))
    logger.info("Admin %s set isActive=%s on %s", admin["id"], body.isActive, admin_id)
    updated = public_admin(doc)
    updated["isActive"] = body.isActive
    return {"ok": True, "admin": updated}
