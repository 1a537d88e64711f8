"""
Accounts in the ``users`` collection, password hashing and access tokens.
"""
import logging
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from accessors import SessionContext

logger = logging.getLogger(__name__)

SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "fallback_secret_key_change_in_production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 30)))

ROLES = ("family", "patient")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class EmailAlreadyRegistered(Exception):
    pass


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def session_from_token(token: Optional[str]) -> SessionContext:
    """Decode an access token; anything missing or invalid yields an anonymous session."""
    if not token:
        return SessionContext()
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return SessionContext()
    return SessionContext(
        user_id=payload.get("user_id"),
        email=payload.get("sub"),
        role=payload.get("role"),
    )


def token_for(user: dict) -> str:
    return create_access_token(
        data={"sub": user["email"], "user_id": user["id"], "role": user["role"]},
        expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


async def register(db, email: str, password: str, role: Optional[str] = None) -> bool:
    """Create an account; role defaults to family."""
    role = role or "family"
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    email = normalize_email(email)
    existing = await db.users.find_one({"email": email}, {"_id": 0})
    if existing:
        raise EmailAlreadyRegistered(email)

    await db.users.insert_one({
        "id": f"user_{uuid.uuid4().hex[:12]}",
        "email": email,
        "hashed_password": get_password_hash(password),
        "role": role,
        "createdAt": datetime.now(timezone.utc).isoformat(),
    })
    logger.info("Registered %s as %s", email, role)
    return True


async def login(db, email: str, password: str) -> Optional[dict]:
    """Return {email, role, id} for valid credentials, else None."""
    email = normalize_email(email)
    user_doc = await db.users.find_one({"email": email}, {"_id": 0})
    if not user_doc or not verify_password(password, user_doc["hashed_password"]):
        logger.info("Rejected login for %s", email)
        return None
    return {"email": user_doc["email"], "role": user_doc.get("role", "family"), "id": user_doc["id"]}
