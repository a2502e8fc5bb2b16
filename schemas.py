"""
Database Schemas for the ServeIt admin back office

Each Pydantic model describes a document as it is stored in MongoDB. Field
names are camelCase because the same documents are read and written by the
mobile app backend.
"""
from __future__ import annotations
from pydantic import BaseModel, Field, EmailStr, model_validator
from typing import Optional, List, Literal

Role = Literal["super_admin", "sub_admin"]
CategoryKind = Literal["men", "women"]
Unit = Literal["per service", "per unit", "per hour", "per day"]
VerificationStatus = Literal["pending_verification", "verified", "rejected"]

CATEGORY_IDS = {"men": "menservices", "women": "womenservices"}

BOOKING_STATUSES = ["pending", "accepted", "completed", "cancelled"]


class Admin(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., description="bcrypt hash, never returned to clients")
    mobile: str
    role: Role = "sub_admin"
    access: List[str] = []
    isActive: bool = True
    createdAt: Optional[int] = None


class Category(BaseModel):
    category: CategoryKind
    isActive: bool = True


class SubService(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: str = ""
    unit: Unit = "per service"
    minPrice: float = Field(0, ge=0)
    maxPrice: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def _price_range(self):
        if self.maxPrice is None:
            self.maxPrice = self.minPrice
        if self.maxPrice < self.minPrice:
            raise ValueError("maxPrice must be greater than or equal to minPrice")
        return self


class Service(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    icon: str = ""
    isActive: bool = True
    subServices: List[SubService] = []
