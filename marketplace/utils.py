# marketplace/utils.py
"""Shared utilities: logging, retry decorator, clock and money helpers."""
import os
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from functools import wraps
from dotenv import load_dotenv

from .errors import ValidationError

load_dotenv()

CENT = Decimal("0.01")
# largest value a Numeric(12, 2) column holds
MAX_MONEY = Decimal("9999999999.99")


def get_logger(name=__name__):
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        level=getattr(logging, level, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("marketplace")


def retry(exceptions, tries=3, delay=1, backoff=2, logger=logger):
    def deco_retry(f):
        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    logger.warning("Retryable error in %s: %s, retrying in %s sec", f.__name__, e, mdelay)
                    time.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)
        return f_retry
    return deco_retry


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands timestamps back naive; everything is stored in UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def to_money(value, field="amount") -> Decimal:
    """Coerce ``value`` to a two-place Decimal.

    Floats go through ``str`` so 19.99 stays 19.99. More than two decimal
    places, NaN, infinities and magnitudes beyond `MAX_MONEY` are rejected
    with ``ValidationError``.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number") from None
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if abs(amount) > MAX_MONEY:
        raise ValidationError(f"{field} must not exceed {MAX_MONEY}")
    try:
        rounded = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"{field} is out of range") from None
    if amount != rounded:
        raise ValidationError(f"{field} must have at most two decimal places")
    return rounded


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
