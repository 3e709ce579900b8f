# autopay/utils/validators.py

import re
from datetime import datetime
from typing import Callable

# ---------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------

UPI_ID_PATTERN = re.compile(r"^[a-zA-Z0-9.\-_]{2,256}@[a-zA-Z]{2,64}$")

Clock = Callable[[], datetime]


def is_valid_upi_id(value: str) -> bool:
    """True for a VPA of the form ``handle@bank``."""
    return bool(value) and UPI_ID_PATTERN.match(value) is not None


def utcnow() -> datetime:
    """Default clock: naive UTC, matching the DateTime columns."""
    return datetime.utcnow()


def epoch_ms(moment: datetime) -> int:
    """Milliseconds since the epoch for a naive UTC instant."""
    return int((moment - datetime(1970, 1, 1)).total_seconds() * 1000)


def epoch_seconds(moment: datetime) -> int:
    return epoch_ms(moment) // 1000


def from_epoch_seconds(value) -> datetime:
    return datetime.utcfromtimestamp(int(value))


def to_minor_units(amount_major) -> int:
    """INR to paise."""
    return int(round(float(amount_major) * 100))
