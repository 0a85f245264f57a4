from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from chatsync import config
from chatsync.errors import Unauthenticated


ATTACHMENT_AUDIENCE = "attachment"


def create_access_token(subject: str, expires_minutes: int = 60) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode({"sub": subject, "exp": expire}, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])


def user_id_from_token(token: str) -> str:
    try:
        payload = decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise Unauthenticated("Invalid token") from exc
    sub = payload.get("sub")
    if not sub:
        raise Unauthenticated("Invalid token")
    return sub


def create_signed_path_token(path: str, ttl_seconds: int) -> str:
    expire = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
    payload = {"path": path, "aud": ATTACHMENT_AUDIENCE, "exp": expire}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def read_signed_path_token(token: str) -> str:
    try:
        payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM], audience=ATTACHMENT_AUDIENCE)
    except jwt.ExpiredSignatureError as exc:
        raise Unauthenticated("Signed URL expired") from exc
    except jwt.PyJWTError as exc:
        raise Unauthenticated("Invalid signed URL") from exc
    return payload["path"]
