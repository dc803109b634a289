import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from database import find_by_id, get_db, sanitize, to_obj_id
from errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 30 * 24 * 60))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


# Credentials

def verify_password_policy(password: str) -> None:
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password) or not re.search(r"[0-9]", password):
        raise ValidationError("Password must include at least one letter and one digit")


def hash_password(password: str) -> str:
    verify_password_policy(password)
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


# Tokens

def create_access_token(subject: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": subject, "role": role, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Return {"sub", "role"} for a valid token, raise AuthenticationError otherwise."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationError("Could not validate credentials")
    if not payload.get("sub"):
        raise AuthenticationError("Could not validate credentials")
    return {"sub": payload["sub"], "role": payload.get("role")}


def public_user(doc: Dict) -> Dict:
    user = sanitize(doc)
    user.pop("password_hash", None)
    return user


def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db=Depends(get_db)) -> Dict:
    # The stored role wins over the token claim so that an approval takes effect without re-login.
    if not token:
        raise AuthenticationError("Unauthorized, please login to access this resource")
    claims = decode_access_token(token)
    try:
        user_oid = to_obj_id(claims["sub"])
    except ValidationError:
        raise AuthenticationError("Could not validate credentials")
    user = db["user"].find_one({"_id": user_oid})
    if not user:
        raise AuthenticationError("Could not validate credentials")
    if user.get("active", "active") != "active":
        raise AuthorizationError(f"Account is {user.get('active')}")
    return public_user(user)


# Authorization gate

def is_role_allowed(role: Optional[str], allowed: Iterable[str]) -> bool:
    return role is not None and role in set(allowed)


def require_role(*roles: str):
    def role_dep(current_user=Depends(get_current_user)):
        if not is_role_allowed(current_user.get("role"), roles):
            raise AuthorizationError("Access denied: insufficient role")
        return current_user
    return role_dep


def is_owner_or_admin(user: Dict, owner_id: Optional[str], allow_admin: bool = True) -> bool:
    if owner_id is not None and str(owner_id) == str(user.get("id")):
        return True
    return allow_admin and user.get("role") == "admin"


def ensure_owner_or_admin(user: Dict, owner_id: Optional[str], action: str, allow_admin: bool = True) -> None:
    if not is_owner_or_admin(user, owner_id, allow_admin=allow_admin):
        logger.info("User %s denied: %s", user.get("id"), action)
        raise AuthorizationError(f"You are not authorized to {action}")


def load_owned(db, collection_name: str, doc_id: str, user: Dict, owner_field: str, action: str,
               allow_admin: bool = True, missing: str = "Not found") -> Dict:
    """Fetch a document the caller owns, or any document for an admin.

    Only admins learn that an id does not exist; everyone else gets the same
    AuthorizationError for a missing document as for someone else's.
    """
    doc = find_by_id(db, collection_name, doc_id)
    if doc is None and allow_admin and user.get("role") == "admin":
        raise NotFoundError(missing)
    ensure_owner_or_admin(user, doc.get(owner_field) if doc else None, action, allow_admin=allow_admin)
    return doc
