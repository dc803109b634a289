"""
Vendor application workflow.

An application moves pending -> approved or pending -> rejected; both targets
are terminal. Approval is the only place where a user's role is elevated
(consumer -> vendor). Because the application and the user live in different
collections, approval runs as a two-step saga: the application is flipped
first and restored to pending if the user update cannot be applied.
"""

import logging
from typing import Dict, List, Optional

from pydantic import ValidationError as SchemaError
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, find_by_id, get_documents, now, sanitize, to_obj_id
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from schemas import BusinessProfile, VendorApplication
from security import load_owned

logger = logging.getLogger(__name__)

OPEN_STATUSES = ("pending", "approved")


def submit_application(db, user: Dict, profile: BusinessProfile) -> Dict:
    if user.get("role") != "consumer":
        raise AuthorizationError("Only consumers can apply to be vendors")
    existing = db["vendorapplication"].find_one({"user_id": user["id"], "status": {"$in": list(OPEN_STATUSES)}})
    if existing:
        raise ConflictError(f"You already have a {existing['status']} vendor application")

    application = VendorApplication(user_id=user["id"], **profile.model_dump())
    try:
        app_id = create_document(db, "vendorapplication", application)
    except DuplicateKeyError:
        raise ConflictError("You already have a pending vendor application")
    logger.info("Vendor application %s submitted by user %s", app_id, user["id"])
    return get_application(db, app_id)


def get_application(db, application_id: str) -> Dict:
    doc = find_by_id(db, "vendorapplication", application_id)
    if not doc:
        raise NotFoundError("Application not found")
    return sanitize(doc)


def get_latest_application(db, user_id: str) -> Dict:
    doc = db["vendorapplication"].find_one(
        {"user_id": user_id}, sort=[("created_at", DESCENDING), ("_id", DESCENDING)]
    )
    if not doc:
        raise NotFoundError("Vendor application not found for this user")
    return sanitize(doc)


def list_applications(db, status: Optional[str] = None) -> List[Dict]:
    q = {"status": status} if status else {}
    return get_documents(db, "vendorapplication", q, sort=[("created_at", DESCENDING), ("_id", DESCENDING)])


def update_application(db, user: Dict, application_id: str, changes: Dict) -> Dict:
    """Merge-patch the business fields of a pending application.

    Keys absent from ``changes`` (or set to None) keep their stored value.
    """
    current = load_owned(db, "vendorapplication", application_id, user, "user_id",
                         "update this application", allow_admin=False)
    if current["status"] != "pending":
        raise ConflictError(f"Application is already {current['status']}")

    patch = {k: v for k, v in changes.items() if v is not None and k in BusinessProfile.model_fields}
    if not patch:
        raise ValidationError("No fields to update")
    merged = {k: current.get(k) for k in BusinessProfile.model_fields}
    merged.update(patch)
    try:
        BusinessProfile(**merged)
    except SchemaError as exc:
        raise ValidationError(f"Invalid application fields: {exc}")

    patch["updated_at"] = now()
    doc = db["vendorapplication"].find_one_and_update(
        {"_id": current["_id"], "status": "pending"},
        {"$set": patch},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise ConflictError("Application is no longer pending")
    return sanitize(doc)


def _transition(db, application_id: str, admin: Dict, target: str, extra: Optional[Dict] = None) -> Dict:
    update = {"status": target, "reviewed_by": admin["id"], "reviewed_at": now(), "updated_at": now()}
    update.update(extra or {})
    current = get_application(db, application_id)
    doc = db["vendorapplication"].find_one_and_update(
        {"_id": to_obj_id(current["id"]), "status": "pending"},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        current = get_application(db, application_id)
        raise ConflictError(f"Application is already {current['status']}")
    return doc


def _revert_to_pending(db, application_oid) -> None:
    db["vendorapplication"].update_one(
        {"_id": application_oid},
        {"$set": {"status": "pending", "reviewed_by": None, "reviewed_at": None, "updated_at": now()}},
    )


def approve_application(db, admin: Dict, application_id: str) -> Dict:
    doc = _transition(db, application_id, admin, "approved")
    try:
        user_oid = to_obj_id(doc["user_id"])
        if not db["user"].find_one({"_id": user_oid}):
            raise NotFoundError("Applicant not found")
        res = db["user"].update_one(
            {"_id": user_oid, "role": "consumer"},
            {"$set": {"role": "vendor", "updated_at": now()}},
        )
        if res.matched_count == 0:
            raise ConflictError("Applicant is no longer a consumer")
    except (NotFoundError, ConflictError, ValidationError, PyMongoError) as exc:
        logger.error("Rolling back approval of application %s: %s", application_id, exc)
        _revert_to_pending(db, doc["_id"])
        raise
    logger.info("Vendor application %s approved by %s; user %s is now a vendor",
                application_id, admin["id"], doc["user_id"])
    return sanitize(doc)


def reject_application(db, admin: Dict, application_id: str, reason: Optional[str] = None) -> Dict:
    doc = _transition(db, application_id, admin, "rejected", {"rejection_reason": reason})
    logger.info("Vendor application %s rejected by %s", application_id, admin["id"])
    return sanitize(doc)
