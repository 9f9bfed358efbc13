"""
Authentication middleware.
Reads the user id forwarded by the trusted auth proxy and places it on request state.
Requests without a valid user are anonymous; routes that need a user reject them.
"""

import hmac
import logging
import re
from fastapi import Request
from fastapi.responses import JSONResponse
from plurr.core.config import settings

logger = logging.getLogger(__name__)

USER_ID_PATTERN = re.compile(r'^[A-Za-z0-9._@:|+-]{1,128}$')


def get_user_from_header(header_value: str | None) -> str | None:
    """
    Extract and validate a user id from a header value.

    Args:
        header_value: Raw header value containing the user id

    Returns:
        Cleaned user id or None if invalid
    """
    if not header_value:
        return None
    user_id = header_value.strip()
    if not USER_ID_PATTERN.match(user_id):
        return None
    return user_id


def proxy_secret_valid(headers: dict) -> bool:
    if not settings.PROXY_SHARED_SECRET:
        return True
    proxy_secret = headers.get(settings.X_PROXY_SECRET_HEADER.lower()) or ""
    return hmac.compare_digest(proxy_secret.encode(), settings.PROXY_SHARED_SECRET.encode())


def resolve_user_id(headers: dict) -> str | None:
    """Resolve the optional authenticated user id from lower-cased request headers."""
    debug_mode = settings.DEBUG or settings.SKIP_HEADER_CHECK
    user_id = get_user_from_header(headers.get(settings.X_USER_ID_HEADER.lower()))

    if debug_mode:
        if user_id:
            logger.debug(f"Debug mode: Using header user {user_id}")
            return user_id
        logger.debug(f"Debug mode: No valid header, using mock user {settings.MOCK_USER_ID}")
        return settings.MOCK_USER_ID

    if not proxy_secret_valid(headers):
        logger.warning("Invalid or missing proxy secret; treating request as anonymous")
        return None
    return user_id


async def auth_middleware(request: Request, call_next):
    try:
        # Get headers with case-insensitive lookup
        headers = {k.lower(): v for k, v in request.headers.items()}
        user_id = resolve_user_id(headers)
    except Exception as e:
        logger.error(f"Authentication middleware error: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal authentication error", "code": "INTERNAL_ERROR"}
        )

    request.state.user_id = user_id
    request.state.is_authenticated = user_id is not None
    return await call_next(request)
