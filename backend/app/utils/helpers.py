"""Utility helper functions."""

import hashlib
import secrets
import uuid
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def generate_uuid() -> str:
    """Generate a unique UUID."""
    return str(uuid.uuid4())


def generate_hash(text: str) -> str:
    """Generate SHA256 hash of text."""
    return hashlib.sha256(text.encode()).hexdigest()


def generate_api_key() -> str:
    """Generate a random admin API key."""
    return secrets.token_urlsafe(32)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from MongoDB."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def round_money(amount: Decimal) -> Decimal:
    """Round a monetary amount to cents, half up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to integer cents."""
    return int(round_money(Decimal(amount)) * 100)


def from_minor_units(cents: int) -> Decimal:
    """Convert integer cents back to a two-place decimal."""
    return (Decimal(int(cents)) / 100).quantize(CENT)
