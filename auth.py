"""
Credential and session store.

Passwords are hashed with bcrypt through passlib. A session is a signed JWT
carrying the user's id, name and email; the HTTP layer stores it in an
HTTP-only cookie. Password reset tokens live on the user document and are
single use.
"""

import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, Optional

import pydantic
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import get_settings
from database import USERS, create_document, to_object_id, utcnow
from errors import AuthError, ConflictError, DeliveryError, TokenError, ValidationError
from log import get_logger
from schemas import User as UserSchema

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6
INVALID_CREDENTIALS = "Invalid email or password"
INVALID_RESET_TOKEN = "Invalid or expired reset token"
RESET_REQUESTED_MESSAGE = "If an account exists with this email, you will receive a password reset link."


@lru_cache
def _pwd_context() -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=get_settings().bcrypt_rounds)


def verify_password(plain_password, hashed_password):
    if not hashed_password:
        return False
    return _pwd_context().verify(plain_password, hashed_password)


def get_password_hash(password):
    return _pwd_context().hash(password)


def _check_new_password(password: Optional[str]) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def public_user(user: dict, include_status: bool = False) -> dict:
    out = {"id": str(user["_id"]), "name": user.get("name"), "email": user.get("email")}
    if include_status:
        out["isEnabled"] = user.get("is_enabled") is not False
    return out


# ---------------------------
# Sessions
# ---------------------------
def create_access_token(user: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.session_expire_minutes))
    to_encode = {
        "sub": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def get_session(db: Database, token: Optional[str]) -> Optional[dict]:
    """Decode a session token. Returns None when absent, invalid, expired or orphaned."""
    if not token:
        return None
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    user_id = to_object_id(payload.get("sub"))
    if user_id is None:
        return None
    user = db[USERS].find_one({"_id": user_id}, {"is_enabled": 1})
    if not user:
        return None
    return {
        "user_id": str(user_id),
        "name": payload.get("name"),
        "email": payload.get("email"),
        "is_enabled": user.get("is_enabled") is not False,
    }


# ---------------------------
# Accounts
# ---------------------------
def signup(db: Database, name: Optional[str], email: Optional[str], password: Optional[str]) -> dict:
    name = (name or "").strip()
    email = normalize_email(email or "")
    if not name or not email or not password:
        raise ValidationError("All fields are required")
    _check_new_password(password)

    if db[USERS].find_one({"email": email}):
        raise ConflictError("Email already registered")

    try:
        user_doc = UserSchema(name=name, email=email, hashed_password=get_password_hash(password))
    except pydantic.ValidationError:
        raise ValidationError("Invalid email address")
    try:
        user = create_document(db, USERS, user_doc)
    except DuplicateKeyError:
        raise ConflictError("Email already registered")

    logger.info("user_signed_up", user_id=str(user["_id"]))
    return user


def login(db: Database, email: Optional[str], password: Optional[str]) -> dict:
    if not email or not password:
        raise ValidationError("Email and password are required")
    user = db[USERS].find_one({"email": normalize_email(email)})
    if not user:
        # Same cost as a real check so response time does not reveal the account.
        _pwd_context().dummy_verify()
        raise AuthError(INVALID_CREDENTIALS)
    if not verify_password(password, user.get("hashed_password", "")):
        raise AuthError(INVALID_CREDENTIALS)
    logger.info("user_logged_in", user_id=str(user["_id"]))
    return user


def change_password(db: Database, user_id: str, current_password: Optional[str], new_password: Optional[str]) -> None:
    if not current_password or not new_password:
        raise ValidationError("Current and new password are required")
    _check_new_password(new_password)

    user = db[USERS].find_one({"_id": to_object_id(user_id)})
    if not user:
        raise AuthError("Unauthorized")
    if not verify_password(current_password, user.get("hashed_password", "")):
        raise AuthError("Current password is incorrect")

    db[USERS].update_one(
        {"_id": user["_id"]},
        {"$set": {"hashed_password": get_password_hash(new_password), "updated_at": utcnow()}},
    )
    logger.info("password_changed", user_id=user_id)


# ---------------------------
# Password reset
# ---------------------------
def request_password_reset(db: Database, email: Optional[str], send: Callable[[str, str], None]) -> str:
    """
    Issue a reset token and hand it to ``send(email, token)``.

    The returned message is the same whether or not the account exists. Only a
    delivery failure is reported, as DeliveryError.
    """
    if not email:
        raise ValidationError("Email is required")

    user = db[USERS].find_one({"email": normalize_email(email)})
    if not user or user.get("is_enabled") is False:
        return RESET_REQUESTED_MESSAGE

    settings = get_settings()
    token = secrets.token_hex(32)
    expiry = utcnow() + timedelta(minutes=settings.reset_token_ttl_minutes)
    db[USERS].update_one(
        {"_id": user["_id"]},
        {"$set": {"reset_token": token, "reset_token_expiry": expiry}},
    )
    logger.info("reset_token_issued", user_id=str(user["_id"]))

    try:
        send(user["email"], token)
    except Exception as exc:
        logger.error("reset_email_failed", user_id=str(user["_id"]), error=str(exc))
        raise DeliveryError("Failed to send reset email. Please try again later.") from exc

    return RESET_REQUESTED_MESSAGE


def _valid_token_filter(token: str) -> dict:
    return {"reset_token": token, "reset_token_expiry": {"$gt": utcnow()}}


def verify_reset_token(db: Database, token: Optional[str]) -> bool:
    if not token:
        return False
    return db[USERS].find_one(_valid_token_filter(token), {"_id": 1}) is not None


def reset_password(db: Database, token: Optional[str], new_password: Optional[str]) -> None:
    if not token or not new_password:
        raise ValidationError("Token and password are required")
    _check_new_password(new_password)

    # Matching and clearing the token in one write keeps it single use.
    user = db[USERS].find_one_and_update(
        _valid_token_filter(token),
        {
            "$set": {"hashed_password": get_password_hash(new_password), "updated_at": utcnow()},
            "$unset": {"reset_token": "", "reset_token_expiry": ""},
        },
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise TokenError(INVALID_RESET_TOKEN)
    logger.info("password_reset", user_id=str(user["_id"]))
