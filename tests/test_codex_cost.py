import os
from datetime import datetime

import pytest

from llmquota.codex_cost import CodexCostReader, parse_codex_file
from llmquota.pricing import Usage, load_pricing
from llmquota.windows import Product, Window, WindowKind

TABLE = """{"models": {
  "claude-opus-4-8": {"input": 5.0, "output": 25.0, "cache_write_5m": 6.25,
                      "cache_write_1h": 10.0, "cache_read": 0.5},
  "gpt-5-codex": {"input": 1.25, "output": 10.0, "cache_read": 0.125, "estimated": true}
}}"""


def ts(text):
    return datetime.fromisoformat(text.replace("Z", "+00:00"))


NOW = ts("2026-05-28T13:00:00Z")


def write_file(path, body, modified=NOW):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)
    stamp = modified.timestamp()
    os.utime(path, (stamp, stamp))


def five_hour():
    resets_at = ts("2026-05-28T16:00:00Z")
    return [
        Window(
            product=Product.CODEX,
            kind=WindowKind.FIVE_HOUR,
            label="",
            used_percent=0.0,
            resets_at=resets_at,
            captured_at=resets_at,
        )
    ]


@pytest.fixture
def pricing():
    return load_pricing(TABLE)


def test_uses_last_token_usage_and_model(tmp_path, pricing):
    body = (
        '{"type":"turn_context","timestamp":"2026-05-28T11:00:00Z","payload":{"model":"gpt-5-codex"}}\n'
        '{"type":"event_msg","timestamp":"2026-05-28T11:30:00Z","payload":{"type":"token_count","info":{"last_token_usage":{"input_tokens":1000000,"cached_input_tokens":200000,"output_tokens":500000,"reasoning_output_tokens":500000}}}}\n'
    )
    write_file(tmp_path / "2026" / "05" / "28" / "rollout-x.jsonl", body)
    got = CodexCostReader(str(tmp_path), pricing).window_costs(NOW, five_hour())
    wc = got[WindowKind.FIVE_HOUR]
    assert wc.amount == pytest.approx(11.025, abs=1e-9)
    assert wc.estimated


def test_token_count_before_model_is_incomplete(tmp_path, pricing):
    body = '{"type":"event_msg","timestamp":"2026-05-28T11:30:00Z","payload":{"type":"token_count","info":{"last_token_usage":{"output_tokens":1000000}}}}\n'
    write_file(tmp_path / "2026" / "05" / "28" / "rollout-y.jsonl", body)
    wc = CodexCostReader(str(tmp_path), pricing).window_costs(NOW, five_hour())[
        WindowKind.FIVE_HOUR
    ]
    assert wc.amount == 0
    assert wc.incomplete


def test_sums_multiple_token_counts(tmp_path, pricing):
    body = (
        '{"type":"turn_context","timestamp":"2026-05-28T11:00:00Z","payload":{"model":"gpt-5-codex"}}\n'
        '{"type":"event_msg","timestamp":"2026-05-28T11:15:00Z","payload":{"type":"token_count","info":{"last_token_usage":{"output_tokens":1000000}}}}\n'
        '{"type":"event_msg","timestamp":"2026-05-28T11:30:00Z","payload":{"type":"token_count","info":{"last_token_usage":{"output_tokens":1000000}}}}\n'
    )
    write_file(tmp_path / "2026" / "05" / "28" / "rollout-z.jsonl", body)
    got = CodexCostReader(str(tmp_path), pricing).window_costs(NOW, five_hour())
    assert got[WindowKind.FIVE_HOUR].amount == pytest.approx(20.0, abs=1e-9)


def test_ignores_files_without_rollout_prefix(tmp_path, pricing):
    body = (
        '{"type":"turn_context","timestamp":"2026-05-28T11:00:00Z","payload":{"model":"gpt-5-codex"}}\n'
        '{"type":"event_msg","timestamp":"2026-05-28T11:15:00Z","payload":{"type":"token_count","info":{"last_token_usage":{"output_tokens":1000000}}}}\n'
    )
    write_file(tmp_path / "session.jsonl", body)
    got = CodexCostReader(str(tmp_path), pricing).window_costs(NOW, five_hour())
    assert got[WindowKind.FIVE_HOUR].amount == 0.0


def test_no_windows_gives_empty_result(tmp_path, pricing):
    assert CodexCostReader(str(tmp_path), pricing).window_costs(NOW, []) == {}


def test_parse_codex_file_clamps_input_and_keeps_model(tmp_path):
    body = (
        '{"type":"turn_context","timestamp":"2026-05-28T11:00:00Z","payload":{"model":"gpt-5-codex"}}\n'
        '{"type":"turn_context","timestamp":"2026-05-28T11:01:00Z","payload":{"model":""}}\n'
        '{"type":"event_msg","timestamp":"2026-05-28T11:15:00Z","payload":{"type":"token_count","info":null}}\n'
        "garbage\n"
        '{"type":"event_msg","timestamp":"2026-05-28T11:20:00Z","payload":{"type":"token_count","info":{"last_token_usage":{"input_tokens":5,"cached_input_tokens":9,"output_tokens":2,"reasoning_output_tokens":3}}}}\n'
    )
    path = tmp_path / "rollout-a.jsonl"
    path.write_text(body)
    entries = parse_codex_file(str(path))
    assert len(entries) == 1
    entry = entries[0]
    assert entry.model == "gpt-5-codex"
    assert entry.id == ""
    assert entry.ts == ts("2026-05-28T11:20:00Z")
    assert entry.usage == Usage(input=0, output=5, cache_read=9)