"""Human-readable booking reference generation."""

import logging
import secrets
from typing import Awaitable, Callable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import ReferenceGenerationError
from ..models.booking import Booking

logger = logging.getLogger(__name__)

# No 0/O or 1/I, so references survive being read aloud over the phone
REFERENCE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
REFERENCE_LENGTH = 6


def generate_reference(
    prefix: Optional[str] = None,
    choice: Callable[[Sequence[str]], str] = secrets.choice,
) -> str:
    """Return one candidate reference such as ``PP-7KQ2ZD``."""
    if prefix is None:
        prefix = settings.reference_prefix
    return prefix + "".join(choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH))


async def reference_exists(session: AsyncSession, reference: str) -> bool:
    stmt = select(Booking.id).where(Booking.reference == reference).limit(1)
    result = await session.execute(stmt)
    return result.first() is not None


class ReferenceGenerator:
    """
    Produces references not yet used by any booking.

    ``exists`` answers whether a candidate is taken; ``choice`` is the random
    source and can be replaced in tests to force collisions.
    """

    def __init__(
        self,
        exists: Callable[[str], Awaitable[bool]],
        prefix: Optional[str] = None,
        max_attempts: Optional[int] = None,
        choice: Callable[[Sequence[str]], str] = secrets.choice,
    ):
        self.exists = exists
        self.prefix = settings.reference_prefix if prefix is None else prefix
        self.max_attempts = settings.reference_max_attempts if max_attempts is None else max_attempts
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.choice = choice

    async def next_reference(self) -> str:
        """
        Return an unused reference.

        Raises:
            ReferenceGenerationError: If every attempt collided
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = generate_reference(self.prefix, self.choice)
            if not await self.exists(candidate):
                return candidate
            logger.warning(
                "Booking reference collision",
                extra={"reference": candidate, "attempt": attempt}
            )

        logger.error(
            "Booking reference space exhausted; random source may be broken",
            extra={"attempts": self.max_attempts}
        )
        raise ReferenceGenerationError(self.max_attempts)
