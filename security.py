"""Password hashing, bearer tokens and the authorization policy."""

import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import insert_document, parse_object_id, utcnow
from errors import DuplicateError, ForbiddenError, NotFoundError, UnauthenticatedError
from schemas import SignupRequest, User

logger = logging.getLogger(__name__)

password_hasher = PasswordHasher()

# action -> capability required; admin satisfies every capability
ACTION_POLICY = {
    "product:read": "public",
    "product:create": "authenticated",
    "product:update": "owner",
    "product:delete": "owner",
    "product:restock": "admin",
    "cart:use": "authenticated",
    "order:checkout": "authenticated",
    "order:read": "owner",
    "order:list_own": "authenticated",
    "order:update_status": "admin",
    "order:cancel": "admin",
    "order:list_all": "admin",
    "order:stats": "admin",
}


def hash_password(password: str) -> str:
    return password_hasher.hash(password)


def verify_password(password: str, encoded: str) -> bool:
    try:
        return password_hasher.verify(encoded, password)
    except (VerificationError, InvalidHash):
        return False


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in user.items() if k != "password_hash"}


def _owns(actor: Dict[str, Any], resource: Optional[Dict[str, Any]]) -> bool:
    if resource is None:
        return False
    owner = resource.get("created_by") or resource.get("user_id")
    return owner is not None and str(owner) == str(actor["_id"])


def authorize(actor: Optional[Dict[str, Any]], action: str, resource: Optional[Dict[str, Any]] = None) -> None:
    """Raise unless ``actor`` may perform ``action`` on ``resource``.

    ``actor`` is the stored user document (or None for anonymous callers),
    so the role is always the one currently in the database.
    """
    required = ACTION_POLICY[action]
    if required == "public":
        return
    if actor is None:
        raise UnauthenticatedError()
    if actor.get("role") == "admin" or required == "authenticated":
        return
    if required == "owner" and _owns(actor, resource):
        return
    if required == "admin":
        raise ForbiddenError("Access denied. Admin privileges required.")
    raise ForbiddenError("Not authorized to access this resource")


class AuthService:
    """Signup, login and token lookup against the user and session collections."""

    def __init__(self, db: Database, token_ttl_hours: int = 24, allow_admin_signup: bool = False):
        self.db = db
        self.token_ttl = timedelta(hours=token_ttl_hours)
        self.allow_admin_signup = allow_admin_signup

    def signup(self, payload: SignupRequest) -> Dict[str, Any]:
        role = payload.role if self.allow_admin_signup else "customer"
        user = User(
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email.lower(),
            password_hash=hash_password(payload.password),
            phone=payload.phone,
            role=role,
        )
        try:
            doc = insert_document(self.db, "user", user)
        except DuplicateKeyError:
            raise DuplicateError("User already exists with this email")
        logger.info("Registered user %s with role %s", doc["_id"], role)
        return doc

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self.db["user"].find_one({"email": email.lower()})
        if not user or not verify_password(password, user["password_hash"]):
            raise UnauthenticatedError("Invalid credentials")
        return user

    def issue_token(self, user: Dict[str, Any]) -> str:
        token = secrets.token_urlsafe(32)
        now = utcnow()
        self.db["session"].insert_one({
            "token": token,
            "user_id": str(user["_id"]),
            "created_at": now,
            "expires_at": now + self.token_ttl,
        })
        return token

    def user_for_token(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            raise UnauthenticatedError("No token, authorization denied")
        session = self.db["session"].find_one({"token": token})
        if not session or session["expires_at"] <= utcnow():
            raise UnauthenticatedError("Token is not valid")
        user = self.db["user"].find_one({"_id": parse_object_id(session["user_id"])})
        if not user:
            raise UnauthenticatedError("User not found")
        return user

    def get_user(self, user_id: str) -> Dict[str, Any]:
        user = self.db["user"].find_one({"_id": parse_object_id(user_id, "user id")})
        if not user:
            raise NotFoundError("User", user_id)
        return user
