# llmquota

See how much of your Claude Code and Codex rate-limit windows you have used,
and what the tokens spent in each window would cost at API prices.

`llmquota` reads:

- the Claude quota cache written by its own Claude status-line hook, giving the
  Claude 5-hour, 7-day and (when reported) Sonnet 7-day windows;
- the newest Codex rollout file under `~/.codex/sessions` that holds a usable
  rate-limit event, giving the Codex 5-hour and 7-day windows;
- Claude transcripts under `~/.claude/projects` and Codex rollouts, to add up
  the token usage inside each window.

## Installing

```
pip install .
```

This installs the `llm-quota` command. The package has no third-party
dependencies.

## Usage

```
llm-quota [flags]
llm-quota install-claude-hook
llm-quota uninstall-claude-hook
llm-quota version
```

Run without a subcommand, `llm-quota` prints one line per quota window: its
label, the percentage used, the time until it resets, the usage value (unless
`--no-cost`), the Codex plan type when known, and a stale marker when the Claude
cache is more than an hour old. A source with no data is reported as
`Claude: no data (missing)` and the like.

Flags:

| Flag             | Effect                                                     |
|------------------|------------------------------------------------------------|
| `--only=claude`  | Show only Claude rows                                      |
| `--only=codex`   | Show only Codex rows                                       |
| `--no-trend`     | Accepted and recorded; the text report has no trend line   |
| `--no-cost`      | Leave out the usage value                                  |
| `--icons`        | Accepted and recorded (also `LLM_QUOTA_ICONS=1` or `true`) |
| `--version`      | Print version information and exit                         |
| `-h`, `--help`   | Show help                                                  |

Unknown flags, an `--only=` value other than `claude` or `codex`, and unknown
arguments exit with status 2.

### The Claude hook

Claude Code hands its rate limits to its status-line command. On a run without
a subcommand, if the hook is not installed and you have not declined it before,
`llm-quota` asks whether to install a managed status line in
`~/.claude/settings.json` that writes those limits to
`~/.cache/llm-quota/claude.json`. Answering "no" is remembered in
`~/.cache/llm-quota/state.json`.

```
llm-quota install-claude-hook
llm-quota uninstall-claude-hook
```

Installing keeps any status line you already had: it runs as a passthrough and
its full settings are stored so uninstalling can put it back. Managed
`PostToolUse` hooks left by older installs are removed; other settings and hooks
are left alone. When the settings file changes, a timestamped backup of it is
written first, and a symlinked settings file stays a symlink.

The managed status line runs `llm-quota claude-statusline-cache-writer --cache
<path> [--passthrough <command>]`; `llm-quota claude-hook-cache-writer --cache
<path>` writes the same cache from hook JSON on standard input. These two are
meant to be run by Claude Code, not by hand.

## Using it as a library

```python
from datetime import datetime, timezone

from llmquota.claude_source import ClaudeReader
from llmquota.codex_source import CodexReader
from llmquota.windows import SourceError

now = datetime.now(timezone.utc)
try:
    for window in ClaudeReader("/home/me/.cache/llm-quota/claude.json").fetch(now):
        print(window.label, window.used_percent, window.resets_at)
except SourceError as err:
    print(err.category, err)

windows = CodexReader("/home/me/.codex/sessions").fetch(now)
```

`SourceError.category` is an `ErrorCategory`: `MISSING`, `MALFORMED`,
`NO_USABLE_EVENT` or `READ`.

Usage values come from `llmquota.claude_cost.ClaudeCostReader` and
`llmquota.codex_cost.CodexCostReader`, given a pricing table parsed by
`llmquota.pricing.load_pricing`:

```python
from llmquota.claude_cost import ClaudeCostReader
from llmquota.pricing import load_pricing

pricing = load_pricing(
    '{"models": {"claude-opus-4-8": {"input": 5, "output": 25,'
    ' "cache_write_5m": 6.25, "cache_write_1h": 10, "cache_read": 0.5}}}'
)
costs = ClaudeCostReader("/home/me/.claude/projects", pricing).window_costs(now, windows)
```

Rates are USD per million tokens; a model id with a `[...]` suffix is priced as
its base model. `window_costs` returns a `WindowCost` per window kind with
`amount`, `estimated` (a model's rates are marked `"estimated": true`) and
`incomplete` (some tokens came from a model the table does not know).

Hook management is in `llmquota.claude_hook`: `install_claude_hook`,
`uninstall_claude_hook`, `claude_hook_declined` and
`record_claude_hook_declined`.

## What it does not do

- There is no interactive screen: the command prints a one-off text report and
  exits. `--no-trend` and `--icons` are accepted but change nothing in it.
- No usage history is stored, so there are no trend lines or pace forecasts.
- No pricing table ships with the package. The command prices with an empty
  table, so any window with usage shows `$0.00*` (incomplete); load your own
  table with `load_pricing` to get real figures through the library.

## Running the tests

```
pip install .[test]
pytest
```