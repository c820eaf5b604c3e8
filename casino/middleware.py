"""
Request principals.

A player authenticates with the API key issued at registration. Their
username is the one principal the engines know them by: the host
account debited by play and credited by claim, the owner recorded on
each bet, the grantee of its payout handle at the oracle, and the
depositor of a liquidity position.

The house operator holds CASINO_ADMIN_KEY. That key mints host balances,
seeds the vaults and sets policy, and is never a player.
"""

import hmac
import os
from typing import Annotated

from fastapi import Depends, Request

from casino.api_errors import APIError


ADMIN_KEY = os.environ.get("CASINO_ADMIN_KEY", "")


def _get_bearer_token(request: Request) -> str | None:
    auth = request.headers.get("authorization", "")
    if auth.startswith("Bearer "):
        return auth[7:]
    return None


def _is_admin_key(token: str) -> bool:
    return bool(ADMIN_KEY) and hmac.compare_digest(token.encode(),
                                                   ADMIN_KEY.encode())


async def require_player(request: Request) -> str:
    """Resolve the bearer key to the player principal it was issued to."""
    token = _get_bearer_token(request)
    if not token:
        raise APIError(401, "auth_required", "Authorization header required")

    # The operator has no host account and owns no bets
    if _is_admin_key(token):
        raise APIError(401, "invalid_api_key",
                       "The house operator key cannot act as a player. "
                       "Register at /v1/auth/register.")

    user = request.app.state.auth_store.authenticate(token)
    if user is None:
        raise APIError(401, "invalid_api_key", "Invalid or rotated API key")
    return user.username


async def require_house_operator(request: Request) -> None:
    if not ADMIN_KEY:
        raise APIError(500, "admin_required",
                       "CASINO_ADMIN_KEY not configured")
    token = _get_bearer_token(request)
    if not token:
        raise APIError(401, "auth_required", "Authorization header required")
    if not _is_admin_key(token):
        raise APIError(403, "admin_required", "House operator key required")


Player = Annotated[str, Depends(require_player)]
HouseOperator = Annotated[None, Depends(require_house_operator)]
