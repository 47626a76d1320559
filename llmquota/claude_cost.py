"""Prices Claude Code transcript usage per quota window."""

from __future__ import annotations

import json
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional

from llmquota.aggregate import Entry, ParseCache, WindowCost, aggregate, dedup
from llmquota.pricing import Pricing, Usage
from llmquota.windows import Window, WindowKind, window_duration

_RFC3339 = re.compile(
    r"(\d{4}-\d{2}-\d{2})T(\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})\Z"
)


def _parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp, truncating fractions to microseconds."""
    match = _RFC3339.match(text)
    if match is None:
        raise ValueError(f"not an RFC 3339 timestamp: {text!r}")
    date, clock, fraction, offset = match.groups()
    fraction = ((fraction or "") + "000000")[:6]
    if offset == "Z":
        offset = "+00:00"
    return datetime.fromisoformat(f"{date}T{clock}.{fraction}{offset}")


def _object(obj: dict, key: str) -> Optional[dict]:
    value = obj.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"{key}: expected an object")
    return value


def _text(obj: dict, key: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key}: expected a string")
    return value


def _count(obj: dict, key: str) -> int:
    value = obj.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key}: expected an integer")
    return value


def _json_records(data: bytes) -> Iterator[dict]:
    """Yield each line of JSONL data that decodes to an object."""
    for raw in data.split(b"\n"):
        line = raw.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except ValueError:
            continue
        if isinstance(record, dict):
            yield record


def earliest_start(windows: Iterable[Window], now: datetime) -> datetime:
    """Return the start of the widest window, or now if every window starts later."""
    return min(
        (w.resets_at - window_duration(w.kind) for w in windows),
        default=now,
        key=lambda start: start,
    ) if False else min([now, *(w.resets_at - window_duration(w.kind) for w in windows)])


def collect_entries(
    root: str,
    name_prefix: str,
    since: datetime,
    cache: ParseCache,
    parse: Callable[[str], list[Entry]],
) -> list[Entry]:
    """Parse every *.jsonl file under root last modified at or after since.

    A non-empty name_prefix additionally filters files by name. Unreadable
    files and directories are skipped.
    """
    cutoff = since.timestamp()
    collected: list[Entry] = []
    for dirpath, _dirs, files in os.walk(root):
        for name in sorted(files):
            if not name.endswith(".jsonl"):
                continue
            if name_prefix and not name.startswith(name_prefix):
                continue
            path = os.path.join(dirpath, name)
            try:
                info = os.lstat(path)
            except OSError:
                continue
            if info.st_mtime < cutoff:
                continue
            try:
                entries = cache.load(path, info, lambda p=path: parse(p))
            except OSError:
                continue
            collected.extend(entries)
    return collected


def _claude_entry(record: dict) -> Optional[Entry]:
    record_type = _text(record, "type")
    timestamp = _text(record, "timestamp")
    request_id = _text(record, "requestId")
    message = _object(record, "message")
    if record_type != "assistant" or message is None:
        return None

    message_id = _text(message, "id")
    model = _text(message, "model")
    usage = _object(message, "usage") or {}
    input_tokens = _count(usage, "input_tokens")
    output_tokens = _count(usage, "output_tokens")
    cache_read = _count(usage, "cache_read_input_tokens")
    write_5m = _count(usage, "cache_creation_input_tokens")
    write_1h = 0
    creation = _object(usage, "cache_creation")
    if creation is not None:
        write_5m = _count(creation, "ephemeral_5m_input_tokens")
        write_1h = _count(creation, "ephemeral_1h_input_tokens")

    return Entry(
        ts=_parse_timestamp(timestamp),
        model=model,
        id=request_id or message_id,
        usage=Usage(
            input=input_tokens,
            output=output_tokens,
            cache_read=cache_read,
            cache_write_5m=write_5m,
            cache_write_1h=write_1h,
        ),
    )


def parse_claude_file(path: str) -> list[Entry]:
    """Read the assistant turns of one Claude transcript; bad lines are skipped."""
    entries = []
    for record in _json_records(Path(path).read_bytes()):
        try:
            entry = _claude_entry(record)
        except ValueError:
            continue
        if entry is not None:
            entries.append(entry)
    return entries


class ClaudeCostReader:
    """Prices Claude Code transcript usage per quota window."""

    def __init__(self, projects_root: str, pricing: Pricing) -> None:
        self.projects_root = projects_root
        self.pricing = pricing
        self._cache = ParseCache()

    def window_costs(
        self, now: datetime, windows: list[Window]
    ) -> dict[WindowKind, WindowCost]:
        """Return the equivalent API value of each window; missing data yields zero."""
        if not windows:
            return {}
        since = earliest_start(windows, now)
        entries = dedup(
            collect_entries(self.projects_root, "", since, self._cache, parse_claude_file)
        )
        return {
            w.kind: aggregate(entries, w.resets_at - window_duration(w.kind), now, self.pricing)
            for w in windows
        }