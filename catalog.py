import logging
import uuid
from typing import Optional, List, Dict, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

import database
from auth import require_access
from cache import TTLCache, get_cache, service_key
from schemas import Category, CategoryKind, Service, SubService, Unit, CATEGORY_IDS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["catalog"], dependencies=[Depends(require_access("categories"))])


# ------------------ Helpers ------------------

def _service_doc_id(category_id: str, service_id: str) -> str:
    return f"{category_id}/{service_id}"


def normalize_sub_services(raw: Any) -> List[Dict[str, Any]]:
    """Older documents keep sub-services as a ``{name: {...}}`` map; always hand back a list."""
    if not raw:
        return []
    if isinstance(raw, list):
        return [dict(s) for s in raw if isinstance(s, dict)]
    if isinstance(raw, dict):
        return [{"name": name, **(rest or {})} for name, rest in raw.items()]
    return []


def sub_service_identity(sub: Dict[str, Any]) -> str:
    return str(sub.get("id") or sub.get("name"))


def _name_key(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def _serialize_service(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = database.serialize(doc)
    out["id"] = doc.get("serviceId") or out["id"].split("/", 1)[-1]
    out.pop("serviceId", None)
    out["subServices"] = normalize_sub_services(doc.get("subServices"))
    return out


def _ensure_unique_names(subs: List[SubService]) -> None:
    seen = set()
    for sub in subs:
        if _name_key(sub.name) in seen:
            raise HTTPException(status_code=409, detail=f"Duplicate subservice name: {sub.name.strip()}")
        seen.add(_name_key(sub.name))


def _clean_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name must not be blank")
    return name


def _new_sub_service(sub: SubService) -> Dict[str, Any]:
    item = sub.model_dump()
    item["id"] = uuid.uuid4().hex
    item["name"] = item["name"].strip()
    return item


def _services_collection():
    return database.collection(database.SERVICES)


def load_service(category_id: str, service_id: str, cache: TTLCache) -> Dict[str, Any]:
    key = service_key(category_id, service_id)
    cached = cache.get(key)
    if cached is not None:
        return cached
    doc = _services_collection().find_one({"_id": _service_doc_id(category_id, service_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Service not found")
    service = _serialize_service(doc)
    cache.set(key, service)
    return service


def _write_sub_services(category_id: str, service_id: str, items: List[Dict[str, Any]], cache: TTLCache) -> None:
    # whole-array rewrite; a concurrent writer between our read and this write loses
    _services_collection().update_one(
        {"_id": _service_doc_id(category_id, service_id)},
        {"$set": {"subServices": items, "updatedAt": database.now_ms()}},
    )
    cache.clear(service_key(category_id, service_id))


class PartialBody(BaseModel):
    """PATCH body: any field may be left out, none may be sent as null."""

    @field_validator("*")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("must not be null")
        return v


# ------------------ Categories ------------------

class CategoryUpdateBody(PartialBody):
    isActive: Optional[bool] = None
    category: Optional[CategoryKind] = None


@router.get("")
def list_categories():
    return [database.serialize(d) for d in database.get_documents(database.CATEGORIES)]


@router.post("", status_code=201)
def create_category(body: Category):
    category_id = CATEGORY_IDS[body.category]
    categories = database.collection(database.CATEGORIES)
    categories.update_one(
        {"_id": category_id},
        {"$set": {"category": body.category, "isActive": body.isActive}, "$setOnInsert": {"createdAt": database.now_ms()}},
        upsert=True,
    )
    return database.serialize(categories.find_one({"_id": category_id}))


@router.patch("/{category_id}")
def update_category(category_id: str, body: CategoryUpdateBody):
    categories = database.collection(database.CATEGORIES)
    if not categories.find_one({"_id": category_id}):
        raise HTTPException(status_code=404, detail="Category not found")
    changes = body.model_dump(exclude_none=True)
    if changes:
        categories.update_one({"_id": category_id}, {"$set": changes})
    return database.serialize(categories.find_one({"_id": category_id}))


@router.delete("/{category_id}")
def delete_category(category_id: str):
    database.collection(database.CATEGORIES).delete_one({"_id": category_id})
    return {"ok": True}


# ------------------ Services ------------------

class ServiceUpdateBody(PartialBody):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    icon: Optional[str] = None
    isActive: Optional[bool] = None
    subServices: Optional[List[SubService]] = None


@router.get("/{category_id}/services")
def list_services(category_id: str):
    docs = database.get_documents(database.SERVICES, {"categoryId": category_id})
    return [_serialize_service(d) for d in docs]


@router.post("/{category_id}/services", status_code=201)
def create_service(category_id: str, body: Service, cache: TTLCache = Depends(get_cache)):
    service_id = body.name.strip()
    if not service_id:
        raise HTTPException(status_code=400, detail="name must not be blank")
    doc_id = _service_doc_id(category_id, service_id)
    if _services_collection().find_one({"_id": doc_id}):
        raise HTTPException(status_code=409, detail="Service with this name already exists")

    _ensure_unique_names(body.subServices)
    sub_services = [_new_sub_service(sub) for sub in body.subServices]

    data = {
        **body.model_dump(exclude={"subServices"}),
        "_id": doc_id,
        "serviceId": service_id,
        "categoryId": category_id,
        "name": service_id,
        "subServices": sub_services,
        "createdAt": database.now_ms(),
    }
    database.create_document(database.SERVICES, data)
    cache.clear(service_key(category_id, service_id))
    return _serialize_service(data)


@router.get("/{category_id}/services/{service_id}")
def get_service(category_id: str, service_id: str, cache: TTLCache = Depends(get_cache)):
    return load_service(category_id, service_id, cache)


@router.patch("/{category_id}/services/{service_id}")
def update_service(category_id: str, service_id: str, body: ServiceUpdateBody, cache: TTLCache = Depends(get_cache)):
    doc_id = _service_doc_id(category_id, service_id)
    services = _services_collection()
    existing = services.find_one({"_id": doc_id})
    if not existing:
        raise HTTPException(status_code=404, detail="Service not found")

    changes = body.model_dump(exclude_none=True, exclude={"subServices"})
    if "name" in changes:
        changes["name"] = _clean_name(changes["name"])
    if body.subServices is not None:
        _ensure_unique_names(body.subServices)
        # keep ids of entries the caller sent back, mint ids for new ones
        items = []
        for sub in body.subServices:
            items.append(sub.model_dump() if sub.id else _new_sub_service(sub))
        changes["subServices"] = items
    if changes:
        changes["updatedAt"] = database.now_ms()
        services.update_one({"_id": doc_id}, {"$set": changes})
    cache.clear(service_key(category_id, service_id))
    return _serialize_service(services.find_one({"_id": doc_id}))


@router.delete("/{category_id}/services/{service_id}")
def delete_service(category_id: str, service_id: str, cache: TTLCache = Depends(get_cache)):
    _services_collection().delete_one({"_id": _service_doc_id(category_id, service_id)})
    cache.clear(service_key(category_id, service_id))
    return {"ok": True}


# ------------------ Sub-services ------------------

class SubServiceUpdateBody(PartialBody):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    unit: Optional[Unit] = None
    minPrice: Optional[float] = Field(None, ge=0)
    maxPrice: Optional[float] = Field(None, ge=0)


def _current_sub_services(category_id: str, service_id: str) -> List[Dict[str, Any]]:
    doc = _services_collection().find_one({"_id": _service_doc_id(category_id, service_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Service not found")
    return normalize_sub_services(doc.get("subServices"))


@router.post("/{category_id}/services/{service_id}/subservices", status_code=201)
def add_sub_service(category_id: str, service_id: str, body: SubService, cache: TTLCache = Depends(get_cache)):
    items = _current_sub_services(category_id, service_id)
    if any(_name_key(s.get("name")) == _name_key(body.name) for s in items):
        raise HTTPException(status_code=409, detail="Subservice with this name already exists")
    item = _new_sub_service(body)
    items.append(item)
    _write_sub_services(category_id, service_id, items, cache)
    return item


@router.patch("/{category_id}/services/{service_id}/subservices/{sub_id}")
def update_sub_service(category_id: str, service_id: str, sub_id: str, body: SubServiceUpdateBody, cache: TTLCache = Depends(get_cache)):
    items = _current_sub_services(category_id, service_id)
    idx = next((i for i, s in enumerate(items) if sub_service_identity(s) == sub_id), None)
    if idx is None:
        raise HTTPException(status_code=404, detail="Subservice not found")

    changes = body.model_dump(exclude_none=True)
    if "name" in changes:
        changes["name"] = _clean_name(changes["name"])
        clash = any(i != idx and _name_key(s.get("name")) == _name_key(changes["name"]) for i, s in enumerate(items))
        if clash:
            raise HTTPException(status_code=409, detail="Subservice with this name already exists")
    merged = {**items[idx], **changes}
    if merged.get("minPrice") is None:
        merged["minPrice"] = 0
    # legacy entries may lack maxPrice; a raised minPrice alone drags maxPrice up with it
    if merged.get("maxPrice") is None or ("maxPrice" not in changes and merged["maxPrice"] < merged["minPrice"]):
        merged["maxPrice"] = merged["minPrice"]
    if merged["maxPrice"] < merged["minPrice"]:
        raise HTTPException(status_code=400, detail="maxPrice must be greater than or equal to minPrice")

    items[idx] = merged
    _write_sub_services(category_id, service_id, items, cache)
    return merged


@router.delete("/{category_id}/services/{service_id}/subservices/{sub_id}")
def delete_sub_service(category_id: str, service_id: str, sub_id: str, cache: TTLCache = Depends(get_cache)):
    items = _current_sub_services(category_id, service_id)
    remaining = [s for s in items if sub_service_identity(s) != sub_id]
    if len(remaining) == len(items):
        raise HTTPException(status_code=404, detail="Subservice not found")
    _write_sub_services(category_id, service_id, remaining, cache)
    return {"ok": True}
