import logging
from typing import Optional, Dict, Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, field_validator

import database
from auth import get_current_admin, require_access
from schemas import VerificationStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/partners", tags=["partners"], dependencies=[Depends(require_access("partners"))])


def verification_status(doc: Dict[str, Any]) -> VerificationStatus:
    """Derive a partner's status from its verification flags.

    The ``status`` field stored on the document is only a copy for other
    readers and is never consulted here.
    """
    details = doc.get("verificationDetails") or {}
    if details.get("verified") is True:
        return "verified"
    if details.get("rejected") is True:
        return "rejected"
    return "pending_verification"


def normalize_partner(doc: Dict[str, Any]) -> Dict[str, Any]:
    partner = database.serialize(doc)
    status = verification_status(doc)
    partner["verificationStatus"] = status
    partner["status"] = status
    return partner


def partner_display_name(partner: Dict[str, Any]) -> Optional[str]:
    personal = partner.get("personalDetails") or {}
    return personal.get("fullName") or partner.get("name")


def find_partner(partner_id: str) -> Optional[Dict[str, Any]]:
    doc = database.collection(database.PARTNERS).find_one({"_id": partner_id})
    return normalize_partner(doc) if doc else None


def all_partners():
    return [normalize_partner(d) for d in database.get_documents(database.PARTNERS)]


def _get_or_404(partner_id: str) -> Dict[str, Any]:
    partner = find_partner(partner_id)
    if partner is None:
        raise HTTPException(status_code=404, detail="Partner not found")
    return partner


class VerifyBody(BaseModel):
    remark: str = ""


class RejectBody(BaseModel):
    rejectionReason: str = Field(..., min_length=1)
    remark: str = ""

    @field_validator("rejectionReason")
    @classmethod
    def _not_blank(cls, v):
        if not v.strip():
            raise ValueError("rejectionReason must not be blank")
        return v.strip()


@router.get("")
def list_partners(status: Literal["pending_verification", "verified", "rejected", "all"] = Query("all")):
    items = all_partners()
    if status != "all":
        items = [p for p in items if p["verificationStatus"] == status]
    return items


@router.get("/{partner_id}")
def get_partner(partner_id: str):
    return _get_or_404(partner_id)


@router.post("/{partner_id}/verify")
def verify_partner(partner_id: str, body: Optional[VerifyBody] = None, admin: dict = Depends(get_current_admin)):
    _get_or_404(partner_id)
    body = body or VerifyBody()
    changes = {
        "verificationDetails.verified": True,
        "verificationDetails.rejected": False,
        "verificationDetails.verifiedAt": database.now_ms(),
        "verificationDetails.verifiedBy": admin["id"],
        "verificationDetails.rejectionReason": "",
        "status": "verified",
    }
    if body.remark:
        changes["verificationDetails.remark"] = body.remark
    database.collection(database.PARTNERS).update_one({"_id": partner_id}, {"$set": changes})
    logger.info("Partner %s verified by %s", partner_id, admin["id"])
    return _get_or_404(partner_id)


@router.post("/{partner_id}/reject")
def reject_partner(partner_id: str, body: RejectBody, admin: dict = Depends(get_current_admin)):
    _get_or_404(partner_id)
    changes = {
        "verificationDetails.verified": False,
        "verificationDetails.rejected": True,
        "verificationDetails.rejectionReason": body.rejectionReason,
        "verificationDetails.remark": body.remark,
        "status": "rejected",
    }
    database.collection(database.PARTNERS).update_one({"_id": partner_id}, {"$set": changes})
    logger.info("Partner %s rejected by %s: %s", partner_id, admin["id"], body.rejectionReason)
    return _get_or_404(partner_id)
