"""Utilities package."""

from app.utils.helpers import (
    from_minor_units,
    generate_hash,
    generate_uuid,
    round_money,
    to_minor_units,
    utcnow,
)
from app.utils.logger import setup_logging

__all__ = [
    "setup_logging",
    "generate_uuid",
    "generate_hash",
    "utcnow",
    "round_money",
    "to_minor_units",
    "from_minor_units",
]
