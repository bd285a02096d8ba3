"""Human-facing order number allocation."""

import logging
import secrets
from datetime import datetime
from typing import Callable, Optional

from app.config import get_settings
from app.database.order_store import OrderStore, order_store
from app.errors import OrderNumberExhausted
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)
settings = get_settings()


def _random_suffix() -> int:
    return secrets.randbelow(10000)


class OrderNumberAllocator:
    """Generates ``<PREFIX><YYMMDD><NNNN>`` numbers unique in the order store."""

    def __init__(
        self,
        store: OrderStore = order_store,
        prefix: Optional[str] = None,
        max_attempts: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
        random_suffix: Callable[[], int] = _random_suffix,
    ) -> None:
        self.store = store
        self.prefix = prefix or settings.order_number_prefix
        self.max_attempts = max_attempts or settings.order_number_max_attempts
        self._clock = clock
        self._random_suffix = random_suffix

    def generate(self) -> str:
        return f"{self.prefix}{self._clock():%y%m%d}{self._random_suffix() % 10000:04d}"

    async def allocate(self) -> str:
        """Return a number not yet used by any order.

        Raises OrderNumberExhausted after ``max_attempts`` collisions.
        """
        for attempt in range(1, self.max_attempts + 1):
            number = self.generate()
            if not await self.store.order_number_exists(number):
                return number
            logger.info("Order number %s exists, retrying (attempt %d)", number, attempt)
        logger.error("Could not generate unique order number after %d attempts", self.max_attempts)
        raise OrderNumberExhausted()


# Global allocator instance
order_number_allocator = OrderNumberAllocator()
