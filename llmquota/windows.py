"""Quota window model shared by the Claude and Codex sources."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Mapping, Optional


class Product(str, Enum):
    """The tool a quota window belongs to."""

    CLAUDE = "claude"
    CODEX = "codex"


class WindowKind(str, Enum):
    """The kind of rolling quota window."""

    FIVE_HOUR = "five_hour"
    SEVEN_DAY = "seven_day"
    SONNET_SEVEN_DAY = "sonnet_seven_day"


_DURATIONS = {
    WindowKind.FIVE_HOUR: timedelta(minutes=300),
    WindowKind.SEVEN_DAY: timedelta(minutes=10080),
    WindowKind.SONNET_SEVEN_DAY: timedelta(minutes=10080),
}


def window_duration(kind: WindowKind | str) -> timedelta:
    """Return the length of a quota window of the given kind."""
    return _DURATIONS[WindowKind(kind)]


@dataclass(frozen=True)
class Window:
    """One quota window as reported by a source."""

    product: Product
    kind: WindowKind
    label: str
    used_percent: float
    resets_at: datetime
    captured_at: datetime
    stale: bool = False
    stale_age: timedelta = timedelta(0)
    metadata: Optional[Mapping[str, str]] = None


class ErrorCategory(str, Enum):
    """Why a source could not produce windows."""

    MISSING = "missing"
    MALFORMED = "malformed"
    NO_USABLE_EVENT = "no_usable_event"
    READ = "read_error"


class SourceError(Exception):
    """A source failed to produce quota windows."""

    def __init__(
        self,
        source: Product | str,
        category: ErrorCategory | str,
        err: Optional[BaseException] = None,
    ) -> None:
        self.source = Product(source)
        self.category = ErrorCategory(category)
        self.err = err
        super().__init__(self._message())

    def _message(self) -> str:
        base = f"{self.source.value} source {self.category.value}"
        if self.err is None:
            return base
        return f"{base}: {self.err}"

    def __str__(self) -> str:
        return self._message()