"""RFC 3339 timestamp helpers and the cached-expiry acceptance rule."""

import re
import time
from datetime import datetime, timezone
from typing import Optional

from autossl_acme.constants import EXPIRY_SAFETY_MARGIN_SECONDS
from autossl_acme.exceptions import ValidationError


_RFC3339_PATTERN = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[Tt ](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>[Zz]|[+-]\d{2}:\d{2})$"
)


def parse_rfc3339(value: str) -> datetime:
    """
    Parse an RFC 3339 timestamp into an aware UTC datetime.

    Fractions finer than microseconds (ACME servers send nanoseconds)
    are truncated.

    Raises:
        ValidationError: If the value is not an RFC 3339 timestamp
    """
    match = _RFC3339_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ValidationError(
            code="invalid_rfc3339",
            message=f"Invalid RFC 3339 date: {value!r}",
            details={"value": value},
        )

    fraction = match.group("fraction")
    offset = match.group("offset")
    text = f"{match.group('date')}T{match.group('time')}"
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    text += "+00:00" if offset in ("Z", "z") else offset

    try:
        return datetime.fromisoformat(text).astimezone(timezone.utc)
    except ValueError as e:
        raise ValidationError(
            code="invalid_rfc3339",
            message=f"Invalid RFC 3339 date: {value!r}",
            details={"value": value, "error": str(e)},
        )


def rfc3339_to_epoch(value: str) -> int:
    return int(parse_rfc3339(value).timestamp())


def get_epoch_seconds_if_is_acceptable_expiry_time(
    expiry: str,
    margin_seconds: int = EXPIRY_SAFETY_MARGIN_SECONDS,
    now: Optional[float] = None,
) -> Optional[int]:
    """
    Return the expiry as epoch seconds if it is far enough in the future.

    Args:
        expiry: RFC 3339 expiry of a DCV success
        margin_seconds: Minimum remaining validity
        now: Current epoch seconds (defaults to time.time())

    Returns:
        Epoch seconds, or None when the expiry falls within the margin
    """
    epoch = rfc3339_to_epoch(expiry)
    if now is None:
        now = time.time()
    if now < epoch - margin_seconds:
        return epoch
    return None
