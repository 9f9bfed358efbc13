"""
Random identifiers for entities and lobby join codes.
"""

import logging
import secrets
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from plurr.core.config import settings
from plurr.core.exceptions import ResourceExhaustedError

logger = logging.getLogger(__name__)

ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def new_id(length: int = 16) -> str:
    """Generate a random lowercase base-36 identifier from a CSPRNG."""
    if length <= 0:
        raise ValueError("Identifier length must be positive")
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def new_join_code() -> str:
    return new_id(settings.JOIN_CODE_LENGTH)


async def allocate_unique_id(db: AsyncSession, column, length: int, max_attempts: int | None = None) -> str:
    """
    Generate an identifier that is not yet used in ``column``.

    Args:
        db: Database session
        column: Mapped column to check, e.g. ``models.Image.id``
        length: Identifier length
        max_attempts: Retry budget, defaults to ``settings.ID_MAX_ATTEMPTS``

    Returns:
        An identifier with no existing row at check time

    Raises:
        ResourceExhaustedError: every generated candidate collided
    """
    attempts = max_attempts or settings.ID_MAX_ATTEMPTS
    for _ in range(attempts):
        candidate = new_id(length)
        result = await db.execute(select(column).where(column == candidate).limit(1))
        if result.first() is None:
            return candidate
        logger.warning(f"Identifier collision on {column.key}, regenerating")
    raise ResourceExhaustedError(column.key, attempts)
