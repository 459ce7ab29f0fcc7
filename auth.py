import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from bson import ObjectId
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import PASSWORD_SALT, TOKEN_TTL_HOURS
from database import get_db
from errors import AuthError, PermissionDeniedError

logger = logging.getLogger(__name__)

# ----------------------------
# Auth and Security Utilities
# ----------------------------
security = HTTPBearer(auto_error=False)
TOKENS: Dict[str, Dict] = {}


def hash_password(password: str) -> str:
    return hashlib.sha256((PASSWORD_SALT + password).encode()).hexdigest()


def verify_password(password: str, hashed: str) -> bool:
    return secrets.compare_digest(hash_password(password), hashed or "")


def create_token(user: Dict) -> str:
    token = secrets.token_urlsafe(32)
    now = datetime.now(timezone.utc)
    TOKENS[token] = {
        "user_id": str(user.get("_id")),
        "username": user.get("username"),
        "role": user.get("role", "user"),
        "issued_at": now,
        "expires_at": now + timedelta(hours=TOKEN_TTL_HOURS),
    }
    return token


def revoke_user_tokens(user_id: str) -> None:
    for token in [t for t, payload in TOKENS.items() if payload["user_id"] == user_id]:
        TOKENS.pop(token, None)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
) -> Dict:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise AuthError("Not authenticated")
    token = credentials.credentials
    payload = TOKENS.get(token)
    if not payload:
        logger.warning("Rejected unknown token")
        raise AuthError("Invalid token")
    if payload["expires_at"] < datetime.now(timezone.utc):
        TOKENS.pop(token, None)
        raise AuthError("Token expired")
    # Fetch latest user data
    user = db["user"].find_one({"_id": ObjectId(payload["user_id"])})
    if not user:
        TOKENS.pop(token, None)
        raise AuthError("User not found")
    return user


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
) -> Optional[Dict]:
    if not credentials:
        return None
    return get_current_user(credentials, db)


def has_role(user: Dict, required: List[str]) -> bool:
    return user.get("role", "user") in required


def require_role(required: List[str]):
    def _checker(user=Depends(get_current_user)):
        if not has_role(user, required):
            logger.warning("User %s (%s) denied; needs one of %s", user.get("username"), user.get("role"), required)
            raise PermissionDeniedError("Insufficient permissions")
        return user
    return _checker


def claim_admin_bootstrap(db: Database) -> bool:
    """Atomically claim the one-time right to register the first admin.

    Only the caller whose upsert creates the marker gets True.
    """
    try:
        result = db["bootstrap"].update_one(
            {"_id": "admin"},
            {"$setOnInsert": {"claimed_at": datetime.now(timezone.utc)}},
            upsert=True,
        )
    except DuplicateKeyError:
        return False
    return result.upserted_id is not None
