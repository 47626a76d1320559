"""Reads Codex quota windows from the newest usable session rollout."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from llmquota.windows import (
    ErrorCategory,
    Product,
    SourceError,
    Window,
    WindowKind,
)

_PRIMARY_MINUTES = 300
_SECONDARY_MINUTES = 10080


class _Malformed(ValueError):
    """A rollout line does not have the expected shape."""


def _reject_constant(name: str) -> Any:
    raise _Malformed(f"invalid JSON constant {name}")


def _object(obj: dict, key: str) -> dict:
    value = obj.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _Malformed(f"{key}: expected an object")
    return value


def _string(obj: dict, key: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _Malformed(f"{key}: expected a string")
    return value


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


@dataclass(frozen=True)
class _RateLimitWindow:
    used_percent: Optional[float]
    window_minutes: Optional[int]
    resets_at: Optional[int]

    @classmethod
    def from_json(cls, obj: dict) -> "_RateLimitWindow":
        return cls(
            _number(obj, "used_percent"),
            _integer(obj, "window_minutes"),
            _integer(obj, "resets_at"),
        )

    def validate(self, name: str, want_minutes: int) -> None:
        if self.used_percent is None:
            raise _Malformed(f"missing {name} used_percent")
        if self.window_minutes is None:
            raise _Malformed(f"missing {name} window_minutes")
        if self.window_minutes != want_minutes:
            raise _Malformed(f"unexpected {name} window_minutes")
        if self.resets_at is None:
            raise _Malformed(f"missing {name} resets_at")

    def to_window(
        self,
        kind: WindowKind,
        label: str,
        captured_at: datetime,
        metadata: Optional[dict],
    ) -> Window:
        try:
            resets_at = datetime.fromtimestamp(self.resets_at, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as err:
            raise _Malformed(f"resets_at out of range: {self.resets_at}") from err
        return Window(
            product=Product.CODEX,
            kind=kind,
            label=label,
            used_percent=self.used_percent,
            resets_at=resets_at,
            captured_at=captured_at,
            metadata=metadata,
        )


@dataclass(frozen=True)
class _RateLimits:
    primary: _RateLimitWindow
    secondary: _RateLimitWindow
    plan_type: str

    @classmethod
    def from_json(cls, obj: dict) -> "_RateLimits":
        return cls(
            _RateLimitWindow.from_json(_object(obj, "primary")),
            _RateLimitWindow.from_json(_object(obj, "secondary")),
            _string(obj, "plan_type"),
        )

    def validate(self) -> None:
        self.primary.validate("primary", _PRIMARY_MINUTES)
        self.secondary.validate("secondary", _SECONDARY_MINUTES)

    def windows(self, now: datetime) -> list[Window]:
        self.validate()
        metadata = {"plan_type": self.plan_type} if self.plan_type else None
        return [
            self.primary.to_window(WindowKind.FIVE_HOUR, "Codex 5h", now, metadata),
            self.secondary.to_window(WindowKind.SEVEN_DAY, "Codex 7d", now, metadata),
        ]


def _parse_rate_limit_line(line: str) -> Optional[_RateLimits]:
    try:
        event = json.loads(line, parse_constant=_reject_constant)
        if event is None:
            return None
        if not isinstance(event, dict):
            return None
        event_type = _string(event, "type")
        payload = _object(event, "payload")
        payload_type = _string(payload, "type")
        raw_limits = payload.get("rate_limits")
        if raw_limits is not None and not isinstance(raw_limits, dict):
            return None
        limits = _RateLimits.from_json(raw_limits) if raw_limits is not None else None
    except ValueError:
        return None

    if event_type != "event_msg" or payload_type != "token_count" or limits is None:
        return None
    try:
        limits.validate()
    except _Malformed:
        return None
    return limits


def _windows_from_rollout(path: str, now: datetime) -> Optional[list[Window]]:
    try:
        contents = Path(path).read_bytes().decode("utf-8", errors="replace")
    except OSError as err:
        raise SourceError(Product.CODEX, ErrorCategory.READ, err) from err

    selected = None
    for raw in contents.split("\n"):
        line = raw.strip()
        if not line:
            continue
        limits = _parse_rate_limit_line(line)
        if limits is not None:
            selected = limits

    if selected is None:
        return None
    try:
        return selected.windows(now)
    except _Malformed:
        return None


def _is_rollout_name(name: str) -> bool:
    return name.startswith("rollout-") and name.endswith(".jsonl")


def _walk_files(root: str) -> Iterator[str]:
    if not os.path.isdir(root):
        yield root
        return

    def fail(err: OSError) -> None:
        raise err

    for dirpath, _dirs, files in os.walk(root, onerror=fail):
        for name in files:
            yield os.path.join(dirpath, name)


@dataclass(frozen=True)
class CodexReader:
    """Reads rate limits from Codex session rollout files."""

    sessions_root: str

    def fetch(self, now: datetime) -> list[Window]:
        """Return windows from the newest rollout holding a usable rate-limit event."""
        try:
            os.stat(self.sessions_root)
        except FileNotFoundError as err:
            raise SourceError(Product.CODEX, ErrorCategory.MISSING, err) from err
        except OSError as err:
            raise SourceError(Product.CODEX, ErrorCategory.READ, err) from err

        for path in self._rollout_candidates():
            windows = _windows_from_rollout(path, now)
            if windows is not None:
                return windows

        raise SourceError(
            Product.CODEX,
            ErrorCategory.NO_USABLE_EVENT,
            ValueError("no usable Codex rate-limit event"),
        )

    def _rollout_candidates(self) -> list[str]:
        candidates: list[tuple[int, str]] = []
        try:
            for path in _walk_files(self.sessions_root):
                if not _is_rollout_name(os.path.basename(path)):
                    continue
                candidates.append((os.lstat(path).st_mtime_ns, path))
        except OSError as err:
            raise SourceError(Product.CODEX, ErrorCategory.READ, err) from err

        candidates.sort(key=lambda candidate: candidate[0], reverse=True)
        return [path for _mtime, path in candidates]