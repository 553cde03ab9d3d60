from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from ..config import get_settings


def business_tz() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_naive_to_local(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc).astimezone(business_tz())


def local_today() -> date:
    return datetime.now(business_tz()).date()
