"""Prices Codex rollout usage per quota window, as an estimate at API rates."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from llmquota.aggregate import Entry, ParseCache, WindowCost, aggregate
from llmquota.claude_cost import (
    _count,
    _json_records,
    _object,
    _parse_timestamp,
    _text,
    collect_entries,
    earliest_start,
)
from llmquota.pricing import Pricing, Usage
from llmquota.windows import Window, WindowKind, window_duration


def parse_codex_file(path: str) -> list[Entry]:
    """Read the token_count turns of one rollout, each priced under the latest model."""
    entries = []
    current_model = ""
    for record in _json_records(Path(path).read_bytes()):
        try:
            record_type = _text(record, "type")
            timestamp = _text(record, "timestamp")
            payload = _object(record, "payload") or {}
            payload_type = _text(payload, "type")
            model = _text(payload, "model")
            info = _object(payload, "info")
            last = (_object(info, "last_token_usage") or {}) if info is not None else {}
            input_tokens = _count(last, "input_tokens")
            output_tokens = _count(last, "output_tokens")
            cached_input = _count(last, "cached_input_tokens")
            reasoning = _count(last, "reasoning_output_tokens")
        except ValueError:
            continue

        # turn_context only names the model; it is not a billable event.
        if record_type == "turn_context" and model:
            current_model = model
            continue
        if payload_type != "token_count" or info is None:
            continue
        try:
            when = _parse_timestamp(timestamp)
        except ValueError:
            continue

        entries.append(
            Entry(
                ts=when,
                model=current_model,
                usage=Usage(
                    input=max(input_tokens - cached_input, 0),
                    output=output_tokens + reasoning,
                    cache_read=cached_input,
                ),
            )
        )
    return entries


class CodexCostReader:
    """Prices Codex rollout usage per quota window."""

    def __init__(self, sessions_root: str, pricing: Pricing) -> None:
        self.sessions_root = sessions_root
        self.pricing = pricing
        self._cache = ParseCache()

    def window_costs(
        self, now: datetime, windows: list[Window]
    ) -> dict[WindowKind, WindowCost]:
        """Return the estimated API value of each window; missing data yields zero."""
        if not windows:
            return {}
        since = earliest_start(windows, now)
        # Each rollout is a distinct session and each token_count a distinct turn.
        entries = collect_entries(
            self.sessions_root, "rollout-", since, self._cache, parse_codex_file
        )
        return {
            w.kind: aggregate(entries, w.resets_at - window_duration(w.kind), now, self.pricing)
            for w in windows
        }