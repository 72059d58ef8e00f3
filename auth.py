import logging
from typing import Optional

import bcrypt
from fastapi import Header
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings

logger = logging.getLogger(__name__)

TOKEN_MISSING = "token_missing"
TOKEN_INVALID = "token_invalid"
TOKEN_EXPIRED = "token_expired"
INVALID_CREDENTIALS = "invalid_credentials"

_MESSAGES = {
    TOKEN_MISSING: "Authentication required. Please log in.",
    TOKEN_INVALID: "Invalid authentication token. Please log in again.",
    TOKEN_EXPIRED: "Your session has expired. Please log in again.",
    INVALID_CREDENTIALS: "Invalid email or password",
}


class AuthError(Exception):
    """401 failure with a machine-readable ``code`` for the client."""

    def __init__(self, code: str, message: Optional[str] = None) -> None:
        self.code = code
        self.message = message or _MESSAGES.get(code, "Authentication failed")
        super().__init__(self.message)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="access-token")


def issue_token(user_id: int) -> str:
    return _serializer().dumps({"id": user_id})


def read_token(token: str, *, max_age: Optional[int] = None) -> int:
    settings = get_settings()
    age = settings.token_max_age_secs if max_age is None else max_age
    try:
        data = _serializer().loads(token, max_age=age)
    except SignatureExpired as exc:
        raise AuthError(TOKEN_EXPIRED) from exc
    except BadSignature as exc:
        logger.info("token_rejected: reason=bad_signature")
        raise AuthError(TOKEN_INVALID) from exc

    user_id = data.get("id") if isinstance(data, dict) else None
    if not isinstance(user_id, int):
        raise AuthError(TOKEN_INVALID)
    return user_id


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthError(TOKEN_MISSING)
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError(TOKEN_MISSING)
    return token.strip()


def current_user_id(authorization: Optional[str] = Header(default=None)) -> int:
    return read_token(bearer_token(authorization))
