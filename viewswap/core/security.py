"""Signed identity tokens handed out by the identity-provider bridge."""

import hashlib
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from viewswap.core.config import get_settings

TOKEN_MAX_AGE = 30 * 24 * 3600  # 30 days


def get_token_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="viewswap-identity",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_identity_token(user_id: str) -> str:
    return get_token_serializer().dumps({"user_id": user_id})


def load_identity_token(token: str, max_age_seconds: int = TOKEN_MAX_AGE) -> dict[str, Any] | None:
    serializer = get_token_serializer()
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None
