"""Summing priced usage entries per quota window, with a per-file parse cache."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable

from llmquota.pricing import Pricing, Usage


@dataclass(frozen=True)
class Entry:
    """One priceable turn; ``id`` is the dedup key, empty when there is none."""

    ts: datetime
    model: str
    usage: Usage
    id: str = ""


@dataclass
class WindowCost:
    """Equivalent API value of one window."""

    amount: float = 0.0
    estimated: bool = False
    incomplete: bool = False


def aggregate(
    entries: Iterable[Entry], window_start: datetime, now: datetime, pricing: Pricing
) -> WindowCost:
    """Sum the cost of entries whose timestamp lies in [window_start, now]."""
    cost = WindowCost()
    for entry in entries:
        if entry.ts < window_start or entry.ts > now:
            continue
        amount, known, estimated = pricing.price(entry.model, entry.usage)
        if not known:
            cost.incomplete = True
            continue
        cost.amount += amount
        if estimated:
            cost.estimated = True
    return cost


def dedup(entries: Iterable[Entry]) -> list[Entry]:
    """Drop entries repeating an earlier non-empty id; entries without an id are kept."""
    seen: set[str] = set()
    kept = []
    for entry in entries:
        if entry.id:
            if entry.id in seen:
                continue
            seen.add(entry.id)
        kept.append(entry)
    return kept


class ParseCache:
    """Memoizes parsed entries per file, keyed by size and modification time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._files: dict[str, tuple[tuple[int, int], tuple[Entry, ...]]] = {}

    def load(
        self,
        path: str,
        stat: os.stat_result,
        parse: Callable[[], Iterable[Entry]],
    ) -> list[Entry]:
        """Return cached entries when the file is unchanged, otherwise parse and store."""
        key = (stat.st_size, stat.st_mtime_ns)
        with self._lock:
            cached = self._files.get(path)
            if cached is not None and cached[0] == key:
                return list(cached[1])
            entries = tuple(parse())
            self._files[path] = (key, entries)
            return list(entries)