"""
Context utilities for telemetry.

Provides the client metadata snapshot consumed by default events and
engagement requests, and the event timestamp clock.
"""

import locale
import platform
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

EVENT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class ClientInfo:
    """Read-only snapshot of device/locale/platform facts."""
    platform: str = "UNKNOWN"
    device_name: Optional[str] = None
    device_type: Optional[str] = None
    device_model: Optional[str] = None
    manufacturer: Optional[str] = None
    operating_system: Optional[str] = None
    operating_system_version: Optional[str] = None
    timezone_offset: Optional[str] = None
    country_code: Optional[str] = None
    language_code: Optional[str] = None
    locale: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


def _timezone_offset() -> str:
    offset = -time.timezone if not time.localtime().tm_isdst else -time.altzone
    sign = "+" if offset >= 0 else "-"
    offset = abs(offset)
    return f"{sign}{offset // 3600:02d}{(offset % 3600) // 60:02d}"


def get_client_info() -> ClientInfo:
    """
    Collect a ClientInfo snapshot from the host interpreter.

    Returns:
        ClientInfo with whatever facts the platform exposes
    """
    lang, _ = locale.getlocale()
    language_code = country_code = None
    if lang and "_" in lang:
        language_code, country_code = lang.split("_", 1)
    elif lang:
        language_code = lang

    system = platform.system() or "UNKNOWN"
    return ClientInfo(
        platform=f"{system.upper()}_PY",
        device_name=platform.node() or None,
        device_type="PC",
        device_model=platform.machine() or None,
        operating_system=system,
        operating_system_version=platform.release() or None,
        timezone_offset=_timezone_offset(),
        country_code=country_code,
        language_code=language_code,
        locale=lang,
    )


def format_event_timestamp(moment: datetime) -> str:
    """Format as YYYY-MM-DD HH:MM:SS.mmm in UTC."""
    moment = moment.astimezone(timezone.utc)
    return f"{moment.strftime(EVENT_TIMESTAMP_FORMAT)}.{moment.microsecond // 1000:03d}"


def parse_event_timestamp(value: str) -> Optional[datetime]:
    try:
        return datetime.strptime(value, EVENT_TIMESTAMP_FORMAT + ".%f").replace(tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def utc_now() -> Optional[datetime]:
    """Default clock."""
    return datetime.now(timezone.utc)


Clock = Callable[[], Optional[datetime]]
