"""Order number, tracking number and temporary gateway transaction id generation."""

import logging
import secrets
import string
import time
from typing import Optional

from pawmart.core.config import settings
from pawmart.core.exceptions import ConflictError
from pawmart.database.base import OrderStore
from pawmart.database.operations import tracking_key

logger = logging.getLogger(__name__)

TRACKING_ALPHABET = string.ascii_uppercase + string.digits
TRACKING_NUMBER_LENGTH = 12


def _millis() -> int:
    return int(time.time() * 1000)


def _four_digits() -> int:
    return 1000 + secrets.randbelow(9000)


def generate_order_number() -> str:
    return f"ORD-{_millis()}-{_four_digits()}"


def generate_temp_txnid() -> str:
    return f"TEMP-{_millis()}-{_four_digits()}"


def generate_tracking_number() -> str:
    return "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(TRACKING_NUMBER_LENGTH))


def is_valid_tracking_number(value: Optional[str]) -> bool:
    return (
        value is not None
        and len(value) == TRACKING_NUMBER_LENGTH
        and all(ch in TRACKING_ALPHABET for ch in value)
    )


async def allocate_tracking_number(store: OrderStore, max_attempts: Optional[int] = None) -> str:
    """
    Draw tracking numbers until one is unused.

    The chosen number is only claimed when the caller commits its
    `ReserveKey`, so a concurrent claim still surfaces as a conflict.

    Raises:
        ConflictError: after `max_attempts` collisions
    """
    max_attempts = max_attempts or settings.TRACKING_NUMBER_MAX_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        candidate = generate_tracking_number()
        if not await store.key_exists(tracking_key(candidate)):
            return candidate
        logger.warning(f"Tracking number collision on attempt {attempt}/{max_attempts}")

    logger.error(f"Could not allocate a unique tracking number after {max_attempts} attempts")
    raise ConflictError(
        "Could not allocate a unique tracking number",
        {"attempts": max_attempts}
    )
