"""Authentication utilities.

Tokens are issued elsewhere; this module only maps a bearer token to the
trusted user id the core works with.
"""
from typing import Optional
from fastapi import Depends, Header, HTTPException
import logging

from storefront.config import ADMIN_TOKENS, VALID_TOKENS

logger = logging.getLogger(__name__)


def _mask(value: str, keep: int) -> str:
    return value[:keep] + "..." if len(value) > keep else value


def _unauthorized(detail: str, **fields) -> HTTPException:
    logger.warning(f"Authentication failed: {detail}", extra=fields)
    return HTTPException(status_code=401, detail=detail)


def _bearer_token(authorization: Optional[str]) -> str:
    if authorization is None:
        raise _unauthorized("Missing authorization header")
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise _unauthorized(
            "Invalid authorization header format",
            auth_header=_mask(authorization, 20)
        )
    return token


def verify_token(authorization: Optional[str] = Header(None)) -> str:
    """
    Resolve the ``Authorization: Bearer <token>`` header to a known token.

    Args:
        authorization: Authorization header value

    Returns:
        The customer or admin token

    Raises:
        HTTPException: 401 if the header is missing, malformed or unknown
    """
    token = _bearer_token(authorization)
    if token not in VALID_TOKENS | ADMIN_TOKENS:
        raise _unauthorized("Invalid token", token_prefix=_mask(token, 8))
    return token


def get_user_id_from_token(token: str) -> str:
    """Stable user id for a token; carts and orders are keyed by it."""
    # Tokens sharing a 10-character prefix map to the same user
    return f"user_{token[:10]}"


def is_admin_token(token: str) -> bool:
    return token in ADMIN_TOKENS


def get_current_user_id(token: str = Depends(verify_token)) -> str:
    """Dependency returning the authenticated user id."""
    return get_user_id_from_token(token)


def require_admin(token: str = Depends(verify_token)) -> str:
    """Dependency for administrative routes."""
    if not is_admin_token(token):
        logger.warning("Authorization failed: admin token required", extra={
            "user_id": get_user_id_from_token(token)
        })
        raise HTTPException(status_code=403, detail="Administrator access required")
    return get_user_id_from_token(token)
