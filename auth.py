"""
Authentication

Bearer tokens are signed with PyJWT and carry {"id", "kind", "exp"}, where
kind is "user" or "admin". get_principal resolves the token once into a
Principal; handlers and services branch on principal.kind, never on the
underlying collection.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional, Union

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from bson.objectid import ObjectId
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict

from errors import AuthenticationError, AuthorizationError
from settings import Settings

logger = logging.getLogger("storefront.auth")

security = HTTPBearer(auto_error=False)
_hasher = PasswordHasher()


# ----------------------- Passwords -----------------------
def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return _hasher.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


# ----------------------- Tokens -----------------------
def create_token(payload: dict, settings: Settings) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=settings.jwt_expires_days)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


# ----------------------- Principals -----------------------
class UserPrincipal(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    id: str
    role: Literal["user", "seller"]
    name: str
    email: str

    @property
    def is_admin(self) -> bool:
        return False


class AdminPrincipal(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["admin"] = "admin"
    id: str
    email: str

    @property
    def is_admin(self) -> bool:
        return True


Principal = Union[UserPrincipal, AdminPrincipal]


def user_token(user: dict, settings: Settings) -> str:
    return create_token({"id": str(user["_id"]), "kind": "user"}, settings)


def admin_token(admin: dict, settings: Settings) -> str:
    return create_token({"id": str(admin["_id"]), "kind": "admin"}, settings)


def resolve_principal(database, payload: dict) -> Principal:
    subject = payload.get("id")
    if not subject or not ObjectId.is_valid(subject):
        raise AuthenticationError("Invalid token payload")
    if payload.get("kind") == "admin":
        admin = database["admin"].find_one({"_id": ObjectId(subject)})
        if not admin:
            raise AuthenticationError("Admin not found")
        return AdminPrincipal(id=subject, email=admin["email"])
    user = database["user"].find_one({"_id": ObjectId(subject)})
    if not user:
        raise AuthenticationError("User not found")
    if not user.get("is_active", True):
        raise AuthenticationError("Account is deactivated")
    return UserPrincipal(id=subject, role=user.get("role", "user"), name=user["name"], email=user["email"])


# ----------------------- Dependencies -----------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request):
    return request.app.state.database


def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
    database=Depends(get_database),
) -> Principal:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authorized, no token")
    payload = decode_token(credentials.credentials, settings)
    return resolve_principal(database, payload)


def require_user(principal: Principal = Depends(get_principal)) -> UserPrincipal:
    if principal.kind != "user":
        raise AuthorizationError("This action requires a customer account")
    return principal


def require_seller(principal: Principal = Depends(get_principal)) -> UserPrincipal:
    if principal.kind != "user" or principal.role != "seller":
        raise AuthorizationError("Only sellers can access this resource")
    return principal


def require_admin(principal: Principal = Depends(get_principal)) -> AdminPrincipal:
    if principal.kind != "admin":
        logger.warning("Admin-only access denied for %s %s", principal.kind, principal.id)
        raise AuthorizationError("Access denied. Admin only.")
    return principal
