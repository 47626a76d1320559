"""Reads Claude quota windows from the locally written hook cache."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from llmquota.windows import (
    ErrorCategory,
    Product,
    SourceError,
    Window,
    WindowKind,
)

_STALE_AFTER = timedelta(hours=1)


class _Malformed(ValueError):
    """The cache contents do not have the expected shape."""


def _reject_constant(name: str) -> Any:
    raise _Malformed(f"invalid JSON constant {name}")


def _number(obj: dict, key: str) -> Optional[float]:
    value = obj.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _Malformed(f"{key}: expected a number")
    return float(value)


def _integer(obj: dict, key: str) -> Optional[int]:
    value = obj.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise _Malformed(f"{key}: expected an integer")
    return value


def _from_unix(seconds: int) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as err:
        raise _Malformed(f"timestamp out of range: {seconds}") from err


@dataclass(frozen=True)
class _CacheWindow:
    used_percentage: Optional[float]
    resets_at: Optional[int]

    @classmethod
    def from_json(cls, obj: dict, key: str) -> Optional["_CacheWindow"]:
        value = obj.get(key)
        if value is None:
            return None
        if not isinstance(value, dict):
            raise _Malformed(f"{key}: expected an object")
        return cls(_number(value, "used_percentage"), _integer(value, "resets_at"))

    def validate(self, name: str) -> None:
        if self.used_percentage is None:
            raise _Malformed(f"missing {name} used_percentage")
        if self.resets_at is None:
            raise _Malformed(f"missing {name} resets_at")

    def is_valid(self) -> bool:
        return self.used_percentage is not None and self.resets_at is not None

    def to_window(
        self,
        kind: WindowKind,
        label: str,
        captured_at: datetime,
        stale: bool,
        stale_age: timedelta,
    ) -> Window:
        return Window(
            product=Product.CLAUDE,
            kind=kind,
            label=label,
            used_percent=self.used_percentage,
            resets_at=_from_unix(self.resets_at),
            captured_at=captured_at,
            stale=stale,
            stale_age=stale_age,
        )


@dataclass(frozen=True)
class _ClaudeCache:
    five_hour: _CacheWindow
    seven_day: _CacheWindow
    sonnet_seven_day: Optional[_CacheWindow]
    written_at: int

    @classmethod
    def parse(cls, contents: bytes) -> "_ClaudeCache":
        data = json.loads(contents, parse_constant=_reject_constant)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise _Malformed("cache must be a JSON object")

        five_hour = _CacheWindow.from_json(data, "five_hour")
        seven_day = _CacheWindow.from_json(data, "seven_day")
        sonnet = _CacheWindow.from_json(data, "sonnet_seven_day")
        sonnet_weekly = _CacheWindow.from_json(data, "sonnet_weekly")
        written_at = _integer(data, "written_at")

        if written_at is None:
            raise _Malformed("missing written_at")
        if five_hour is None:
            raise _Malformed("missing five_hour window")
        five_hour.validate("five_hour")
        if seven_day is None:
            raise _Malformed("missing seven_day window")
        seven_day.validate("seven_day")

        valid_sonnet = next(
            (w for w in (sonnet, sonnet_weekly) if w is not None and w.is_valid()),
            None,
        )
        return cls(five_hour, seven_day, valid_sonnet, written_at)


@dataclass(frozen=True)
class ClaudeReader:
    """Reads the Claude rate-limit cache file."""

    cache_path: str

    def fetch(self, now: datetime) -> list[Window]:
        """Return the Claude windows in the cache, raising SourceError on failure."""
        try:
            contents = Path(self.cache_path).read_bytes()
        except FileNotFoundError as err:
            raise SourceError(Product.CLAUDE, ErrorCategory.MISSING, err) from err
        except OSError as err:
            raise SourceError(Product.CLAUDE, ErrorCategory.READ, err) from err

        try:
            cache = _ClaudeCache.parse(contents)
            written_at = _from_unix(cache.written_at)
            stale_age = max(now - written_at, timedelta(0))
            stale = stale_age > _STALE_AFTER

            windows = [
                cache.five_hour.to_window(
                    WindowKind.FIVE_HOUR, "Claude 5h", written_at, stale, stale_age
                ),
                cache.seven_day.to_window(
                    WindowKind.SEVEN_DAY, "Claude 7d", written_at, stale, stale_age
                ),
            ]
            if cache.sonnet_seven_day is not None:
                windows.append(
                    cache.sonnet_seven_day.to_window(
                        WindowKind.SONNET_SEVEN_DAY,
                        "Sonnet 7d",
                        written_at,
                        stale,
                        stale_age,
                    )
                )
        except ValueError as err:
            raise SourceError(Product.CLAUDE, ErrorCategory.MALFORMED, err) from err
        return windows