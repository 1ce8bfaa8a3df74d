"""
Authentication

Password hashing, the session token manager and the request gate.

A session token is a signed JWT naming the user, but a valid signature is not
enough: the exact token string must also still be listed in the user's
``tokens``. Logging out removes it from that list, which is what makes a
stateless token revocable.
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

import jwt
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, Header, Request
from pydantic import BaseModel

import database
from config import get_settings
from errors import AuthenticationError, StoreError
from logger import get_logger

log = get_logger("auth")

PBKDF2_ITERATIONS = 200_000
BEARER_PREFIX = "Bearer "


# -------------------- Passwords --------------------

def pbkdf2_hash(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode(), salt, iterations)


def hash_password(password: str) -> Tuple[str, str]:
    """Return ``(salt_hex, hash_hex)`` for a fresh random salt."""
    salt = secrets.token_bytes(16)
    return salt.hex(), pbkdf2_hash(password, salt).hex()


def verify_password(pw: str, salt_hex: str, hash_hex: str, iterations: int) -> bool:
    salt = bytes.fromhex(salt_hex)
    expected = bytes.fromhex(hash_hex)
    actual = pbkdf2_hash(pw, salt, iterations)
    return hmac.compare_digest(actual, expected)


# -------------------- Tokens --------------------

class TokenManager:
    """Issues, resolves and revokes session tokens.

    Every mutation is a single atomic update on the user document, so a
    concurrent logout and resolve on the same user cannot report a revoked
    token as valid.
    """

    algorithm = "HS256"

    def __init__(self, secret: str, ttl_seconds: Optional[int] = None):
        self._secret = secret
        self._ttl = ttl_seconds

    def _users(self):
        return database.collection("user")

    def encode(self, user_id: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "iat": now,
            # two logins within the same second must still yield distinct tokens
            "jti": secrets.token_hex(16),
        }
        if self._ttl:
            payload["exp"] = now + timedelta(seconds=self._ttl)
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def issue(self, user: Dict[str, Any]) -> str:
        token = self.encode(str(user["_id"]))
        res = self._users().update_one(
            {"_id": user["_id"]},
            {"$push": {"tokens": token}, "$set": {"updated_at": datetime.now(timezone.utc)}},
        )
        if res.matched_count == 0:
            raise StoreError(f"user {user['_id']} disappeared while issuing a token")
        user.setdefault("tokens", []).append(token)
        return token

    def revoke(self, user: Dict[str, Any], token: str) -> None:
        self._users().update_one({"_id": user["_id"]}, {"$pull": {"tokens": token}})
        active = user.get("tokens", [])
        if token in active:
            active.remove(token)

    def revoke_all(self, user: Dict[str, Any]) -> None:
        self._users().update_one({"_id": user["_id"]}, {"$set": {"tokens": []}})
        user["tokens"] = []

    def resolve(self, token: str) -> Optional[Dict[str, Any]]:
        """The user owning ``token``, or None. Bad input never raises."""
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "iat"]},
            )
            user_id = ObjectId(claims["sub"])
        except (jwt.PyJWTError, InvalidId, TypeError) as e:
            log.debug("Token rejected: %s", e)
            return None
        return self._users().find_one({"_id": user_id, "tokens": token})


@lru_cache()
def get_token_manager() -> TokenManager:
    settings = get_settings()
    return TokenManager(settings.jwt_secret, settings.token_ttl_seconds)


# -------------------- Gate --------------------

class AuthContext(BaseModel):
    """The resolved identity and the exact token the request used."""
    user: Dict[str, Any]
    token: str

    @property
    def user_id(self) -> ObjectId:
        return self.user["_id"]


def extract_token(authorization: Optional[str]) -> str:
    if not authorization:
        return ""
    value = authorization.strip()
    if not value.startswith(BEARER_PREFIX):
        return ""
    return value[len(BEARER_PREFIX):].strip()


def require_auth(request: Request,
                 authorization: Optional[str] = Header(None),
                 tokens: TokenManager = Depends(get_token_manager)) -> AuthContext:
    token = extract_token(authorization)
    user = tokens.resolve(token)
    if user is None:
        if authorization is None:
            reason = "absent"
        elif not token:
            reason = "malformed"
        else:
            reason = "invalid"
        log.info("Rejected %s %s: %s credential", request.method, request.url.path, reason)
        raise AuthenticationError()

    ctx = AuthContext(user=user, token=token)
    request.state.auth = ctx
    return ctx
