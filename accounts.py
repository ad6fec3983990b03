"""
Accounts: customer registration and login, seller upgrade, the separate
admin principal and admin-side user management.
"""
import logging
import re
from typing import Optional

from bson.objectid import ObjectId
from pymongo import ReturnDocument

from auth import UserPrincipal, admin_token, hash_password, user_token, verify_password
from database import Database, paginate, to_object_id, utcnow
from errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from schemas import Admin as AdminSchema, User as UserSchema
from settings import Settings

logger = logging.getLogger("storefront.accounts")

PASSWORD_RE = re.compile(r"(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")

PUBLIC_USER_FIELDS = ("name", "email", "role", "is_active", "store_name", "store_description", "is_verified")


def public_user(user: dict) -> dict:
    out = {"id": str(user["_id"])}
    for key in PUBLIC_USER_FIELDS:
        if user.get(key) is not None:
            out[key] = user[key]
    if user.get("created_at"):
        out["created_at"] = user["created_at"]
    return out


def _validate_registration(name: str, email: str, password: str):
    if not name or not email or not password:
        raise ValidationError("Please provide all required fields")
    if len(name.strip()) < 2:
        raise ValidationError("Name must be at least 2 characters long")
    if len(password) < 6:
        raise ValidationError("Password must be at least 6 characters long")
    if not PASSWORD_RE.match(password):
        raise ValidationError(
            "Password must contain at least one uppercase letter, one lowercase letter, and one number"
        )


# ----------------------- Customers -----------------------
def register_user(db: Database, settings: Settings, name: str, email: str, password: str) -> dict:
    _validate_registration(name, email, password)
    email = email.lower()
    if db["user"].find_one({"email": email}):
        raise ConflictError("Email already registered")
    user = UserSchema(name=name.strip(), email=email, password_hash=hash_password(password))
    doc = user.model_dump(exclude_none=True)
    user_id = db.create_document("user", doc)
    doc["_id"] = ObjectId(user_id)
    logger.info("Registered user %s", user_id)
    return {"token": user_token(doc, settings), "user": public_user(doc)}


def login_user(db: Database, settings: Settings, email: str, password: str) -> dict:
    if not email or not password:
        raise ValidationError("Please enter email and password")
    user = db["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash")):
        raise AuthenticationError("Invalid email or password")
    if not user.get("is_active", True):
        raise AuthenticationError("Account is deactivated")
    return {"token": user_token(user, settings), "user": public_user(user)}


def get_profile(db: Database, principal: UserPrincipal) -> dict:
    user = db["user"].find_one({"_id": ObjectId(principal.id)})
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


def become_seller(db: Database, principal: UserPrincipal, store_name: str, store_description: str = "") -> dict:
    if principal.role == "seller":
        raise ConflictError("You are already a seller")
    if not store_name or not store_name.strip():
        raise ValidationError("Store name is required")
    user = db["user"].find_one_and_update(
        {"_id": ObjectId(principal.id), "role": {"$ne": "seller"}},
        {"$set": {
            "role": "seller",
            "store_name": store_name.strip(),
            "store_description": store_description or "",
            "is_verified": False,
            "updated_at": utcnow(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise ConflictError("You are already a seller")
    logger.info("User %s upgraded to seller (%s)", principal.id, store_name)
    return public_user(user)


# ----------------------- Admins -----------------------
def ensure_initial_admin(db: Database, settings: Settings) -> bool:
    """Create the bootstrap admin unless one with that email exists. Returns True if created."""
    email = settings.admin_email.lower()
    if db["admin"].find_one({"email": email}):
        return False
    admin = AdminSchema(email=email, password_hash=hash_password(settings.admin_password))
    db.create_document("admin", admin)
    logger.info("Initial admin account created (%s)", email)
    return True


def login_admin(db: Database, settings: Settings, email: str, password: str) -> dict:
    admin = db["admin"].find_one({"email": (email or "").lower()})
    if not admin or not verify_password(password, admin.get("password_hash")):
        raise AuthenticationError("Invalid email or password")
    return {"token": admin_token(admin, settings), "admin": {"id": str(admin["_id"]), "email": admin["email"]}}


def list_users(db: Database, page: int = 1, limit: int = 20) -> dict:
    result = paginate(db["user"], {}, page, limit)
    result["items"] = [public_user(u) for u in result["items"]]
    return result


def get_user(db: Database, user_id: str) -> dict:
    user = db["user"].find_one({"_id": to_object_id(user_id, "User")})
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


def update_user(db: Database, user_id: str, name: Optional[str] = None, email: Optional[str] = None,
                role: Optional[str] = None) -> dict:
    oid = to_object_id(user_id, "User")
    changes = {}
    if name is not None:
        if len(name.strip()) < 2:
            raise ValidationError("Name must be at least 2 characters long")
        changes["name"] = name.strip()
    if email is not None:
        email = email.lower()
        if db["user"].find_one({"email": email, "_id": {"$ne": oid}}):
            raise ConflictError("Email already registered")
        changes["email"] = email
    if role is not None:
        changes["role"] = role
    changes["updated_at"] = utcnow()
    user = db["user"].find_one_and_update({"_id": oid}, {"$set": changes}, return_document=ReturnDocument.AFTER)
    if not user:
        raise NotFoundError("User not found")
    return public_user(user)


def toggle_user_status(db: Database, user_id: str) -> dict:
    oid = to_object_id(user_id, "User")
    user = db["user"].find_one({"_id": oid})
    if not user:
        raise NotFoundError("User not found")
    active = not user.get("is_active", True)
    db["user"].update_one({"_id": oid}, {"$set": {"is_active": active, "updated_at": utcnow()}})
    logger.info("User %s %s", user_id, "activated" if active else "deactivated")
    return {"id": user_id, "is_active": active}


def delete_user(db: Database, user_id: str) -> None:
    oid = to_object_id(user_id, "User")
    res = db["user"].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise NotFoundError("User not found")
    db["cart"].delete_one({"user_id": oid})
    db["wishlist"].delete_one({"user_id": oid})
