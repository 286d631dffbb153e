"""Date helpers shared by the source models, converters and stores."""

from datetime import datetime, timedelta, timezone
from typing import Optional

# Camunda's "yyyy-MM-dd'T'HH:mm:ss.SSSZ"
DATE_FORMAT = '%Y-%m-%dT%H:%M:%S.{millis}%z'


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Convert to a naive datetime in UTC. Naive input is assumed to be UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert to an aware UTC datetime. Naive input is assumed to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_date(value: Optional[datetime]) -> Optional[str]:
    """Render a date as ``2024-01-31T10:15:00.000+0000``."""
    if value is None:
        return None
    value = to_utc(value)
    millis = f'{value.microsecond // 1000:03d}'
    return value.strftime(DATE_FORMAT.format(millis=millis))


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a Camunda REST timestamp into a naive UTC datetime."""
    if not value:
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    # 2024-01-31T10:15:00.000+0000 -> +00:00
    if len(text) > 5 and text[-5] in '+-' and text[-4:].isdigit():
        text = f'{text[:-2]}:{text[-2:]}'
    return to_utc_naive(datetime.fromisoformat(text))


def add_days(value: Optional[datetime], days: Optional[int]) -> Optional[datetime]:
    if value is None or not days:
        return None
    return value + timedelta(days=days)
