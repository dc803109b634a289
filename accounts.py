"""Identity store: registration, login and administrative account changes."""

import logging
from typing import Dict, List, Optional

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from database import create_document, find_by_id, get_documents, now, to_obj_id
from errors import AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from schemas import User
from security import create_access_token, hash_password, public_user, verify_password

logger = logging.getLogger(__name__)

ACCOUNT_STATUSES = ("active", "inactive", "banned")


def register_user(db, username: str, email: str, password: str, role: str = "consumer") -> Dict:
    email = email.lower()
    if db["user"].find_one({"email": email}):
        raise ConflictError("An account with this email already exists, please login")
    user_doc = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
    )
    try:
        uid = create_document(db, "user", user_doc)
    except DuplicateKeyError:
        raise ConflictError("An account with this email already exists, please login")
    logger.info("Registered %s user %s", role, uid)
    return public_user(db["user"].find_one({"_id": to_obj_id(uid)}))


def login_user(db, email: str, password: str) -> Dict:
    user = db["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        logger.info("Failed login for %s", email)
        raise AuthenticationError("Invalid email or password")
    if user.get("active", "active") != "active":
        raise AuthorizationError(f"Account is {user.get('active')}")
    token = create_access_token(str(user["_id"]), user.get("role", "consumer"))
    return {"access_token": token, "token_type": "bearer", "user": public_user(user)}


def change_password(db, user_id: str, old_password: str, new_password: str) -> None:
    user = db["user"].find_one({"_id": to_obj_id(user_id)})
    if not user:
        raise NotFoundError("User not found")
    if not verify_password(old_password, user.get("password_hash", "")):
        raise ValidationError("Old password incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": now()}},
    )


def list_users(db, role: Optional[str] = None, active: Optional[str] = None) -> List[Dict]:
    q = {}
    if role:
        q["role"] = role
    if active:
        q["active"] = active
    return [public_user(u) for u in get_documents(db, "user", q, sort=[("created_at", ASCENDING), ("_id", ASCENDING)])]


def set_account_status(db, admin: Dict, user_id: str, active: str) -> Dict:
    if active not in ACCOUNT_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(ACCOUNT_STATUSES)}")
    if user_id == admin["id"]:
        raise ConflictError("Admins cannot change their own account status")
    target = find_by_id(db, "user", user_id)
    if target is None:
        raise NotFoundError("User not found")
    db["user"].update_one({"_id": target["_id"]}, {"$set": {"active": active, "updated_at": now()}})
    logger.info("Admin %s set user %s to %s", admin["id"], user_id, active)
    return public_user(db["user"].find_one({"_id": target["_id"]}))


def bootstrap_admin(db, email: str, password: str) -> Dict:
    """Create the first admin account; refused once any admin exists."""
    if db["user"].count_documents({"role": "admin"}) > 0:
        raise ConflictError("Admin already exists")
    return register_user(db, "Administrator", email, password, role="admin")


def dashboard_counts(db) -> Dict[str, int]:
    return {
        "total_users": db["user"].count_documents({}),
        "total_vendors": db["user"].count_documents({"role": "vendor"}),
        "pending_applications": db["vendorapplication"].count_documents({"status": "pending"}),
        "total_products": db["product"].count_documents({}),
        "total_orders": db["order"].count_documents({}),
        "total_reviews": db["review"].count_documents({}),
    }
