"""Stock keeping unit code generation."""
import logging
import secrets
import string
from typing import Callable

from storefront.config import SKU_MAX_ATTEMPTS
from storefront.errors import SKUExhaustedError
from storefront.monitoring import sku_collisions_counter

logger = logging.getLogger(__name__)

LETTERS = string.ascii_uppercase
DIGITS = string.digits


def generate_sku() -> str:
    """
    Generate a random SKU candidate.

    Format: three letters, four digits, three letters (e.g. ``KQZ-0482-MBT``).
    Uniqueness is not checked here, see ``assign_unique_sku``.
    """
    head = "".join(secrets.choice(LETTERS) for _ in range(3))
    number = "".join(secrets.choice(DIGITS) for _ in range(4))
    tail = "".join(secrets.choice(LETTERS) for _ in range(3))
    return f"{head}-{number}-{tail}"


def assign_unique_sku(
    exists: Callable[[str], bool],
    max_attempts: int = SKU_MAX_ATTEMPTS,
    generator: Callable[[], str] = generate_sku
) -> str:
    """
    Generate a SKU that is not yet taken.

    Args:
        exists: Predicate telling whether a code is already persisted
        max_attempts: Upper bound on candidates tried
        generator: Candidate source

    Returns:
        A free SKU code

    Raises:
        SKUExhaustedError: If every candidate collided
    """
    for attempt in range(1, max_attempts + 1):
        candidate = generator().upper()
        if not exists(candidate):
            return candidate
        sku_collisions_counter.add(1)
        logger.warning("SKU collision, regenerating", extra={
            "sku": candidate,
            "attempt": attempt,
            "max_attempts": max_attempts
        })

    logger.error("SKU generation exhausted", extra={"max_attempts": max_attempts})
    raise SKUExhaustedError(max_attempts)
