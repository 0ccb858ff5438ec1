"""Shared FastAPI dependencies."""

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import Request

from viewswap.core.config import get_settings
from viewswap.core.exceptions import ForbiddenError, NotFoundError, UnauthorizedError
from viewswap.core.logging import bind_user_id
from viewswap.core.security import load_identity_token
from viewswap.models.account import Account


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_account(request: Request) -> Account:
    """Dependency: verify the identity token and return the caller's Account."""
    token = _bearer_token(request)
    if not token:
        raise UnauthorizedError("Not authenticated")
    payload = load_identity_token(token)
    if not payload:
        raise UnauthorizedError("Invalid or expired token")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid token")
    account = await Account.find_one(Account.user_id == user_id)
    if not account:
        raise UnauthorizedError("Account not found")
    bind_user_id(user_id)
    return account


async def require_admin(request: Request) -> Account:
    """Dependency: caller must be listed in ADMIN_USER_IDS."""
    account = await get_current_account(request)
    if account.user_id not in get_settings().admin_user_ids:
        raise ForbiddenError("Admin only")
    return account


def parse_object_id(value: str) -> PydanticObjectId:
    try:
        return PydanticObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError("Promotion not found")
