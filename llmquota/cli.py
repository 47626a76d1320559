"""Command line entry point: hook management subcommands and the quota view."""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import IO, Callable, Optional, Sequence

from llmquota.aggregate import WindowCost
from llmquota.claude_cost import ClaudeCostReader
from llmquota.claude_hook import (
    ClaudeHookPaths,
    InstallResult,
    claude_hook_declined,
    install_claude_hook,
    managed_hook_command,
    managed_status_line_command,
    record_claude_hook_declined,
    run_claude_hook_cache_writer,
    run_claude_statusline_cache_writer,
    uninstall_claude_hook,
)
from llmquota.claude_source import ClaudeReader
from llmquota.codex_cost import CodexCostReader
from llmquota.codex_source import CodexReader
from llmquota.pricing import Pricing
from llmquota.windows import ErrorCategory, Product, SourceError, Window

VERSION = "dev"
COMMIT = "none"
BUILD_DATE = "unknown"

_MARKER = "llm-quota"
_STATUSLINE_USAGE = (
    "usage: claude-statusline-cache-writer --cache <path> [--passthrough <command>]"
)
_HOOK_USAGE = "usage: claude-hook-cache-writer --cache <path>"

_USAGE = """llm-quota — Claude Code and Codex quota TUI

Usage:
  llm-quota [flags]
  llm-quota install-claude-hook
  llm-quota uninstall-claude-hook
  llm-quota version

Flags:
  --only=claude   Show only Claude rows
  --only=codex    Show only Codex rows
  --no-trend      Hide the per-row sparkline and pace forecast line
  --no-cost       Hide the per-window equivalent API-value clusters
  --icons         Use Nerd Font icons (also: LLM_QUOTA_ICONS=1; toggle live with i)
  --version       Print version information and exit
  -h, --help      Show this help

Runtime keys:
  r refresh   v cycle providers   t trend line   c cost   i toggle icons   q quit
"""


class Visibility(Enum):
    """Which providers' rows are shown."""

    BOTH = "both"
    CLAUDE_ONLY = "claude"
    CODEX_ONLY = "codex"


@dataclass
class DisplayPrefs:
    """Display options chosen on the command line."""

    visibility: Visibility = Visibility.BOTH
    hide_trend: bool = False
    hide_cost: bool = False
    icons: bool = False


def default_codex_sessions_root() -> str:
    """Return the directory holding Codex session rollouts."""
    return str(Path.home() / ".codex" / "sessions")


def default_claude_hook_paths() -> ClaudeHookPaths:
    """Return the standard config, state, cache and executable locations."""
    home = Path.home()
    executable = os.path.abspath(sys.argv[0]) if sys.argv and sys.argv[0] else ""
    return ClaudeHookPaths(
        claude_config_path=str(home / ".claude" / "settings.json"),
        state_path=str(home / ".cache" / "llm-quota" / "state.json"),
        cache_path=str(home / ".cache" / "llm-quota" / "claude.json"),
        executable_path=executable,
    )


def _is_current_managed_status_line(config: dict, executable: str, cache: str) -> bool:
    status_line = config.get("statusLine")
    if not isinstance(status_line, dict):
        return False
    if status_line.get("llm_quota_marker") != _MARKER:
        return False
    passthrough = status_line.get("llm_quota_passthrough")
    if not isinstance(passthrough, str):
        passthrough = ""
    command = status_line.get("command")
    if not isinstance(command, str):
        return False
    return command == managed_status_line_command(executable, cache, passthrough)


def _is_current_managed_hook(hook: dict, executable: str, cache: str) -> bool:
    if hook.get("llm_quota_marker") != _MARKER or hook.get("matcher") != "*":
        return False
    nested = hook.get("hooks")
    if not isinstance(nested, list) or len(nested) != 1:
        return False
    command_hook = nested[0]
    if not isinstance(command_hook, dict) or command_hook.get("type") != "command":
        return False
    command = command_hook.get("command")
    if not isinstance(command, str):
        return False
    return command == managed_hook_command(executable, cache)


def claude_hook_installed(paths: ClaudeHookPaths) -> bool:
    """Return whether the Claude config holds the current managed hook or status line."""
    try:
        contents = Path(paths.claude_config_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return False
    if not contents.strip():
        return False

    config = json.loads(contents)
    if config is None:
        return False
    if not isinstance(config, dict):
        raise ValueError("claude config must be a JSON object")
    if _is_current_managed_status_line(config, paths.executable_path, paths.cache_path):
        return True
    hooks = config.get("hooks")
    if not isinstance(hooks, dict):
        return False
    entries = hooks.get("PostToolUse")
    if not isinstance(entries, list):
        return False
    return any(
        isinstance(entry, dict)
        and _is_current_managed_hook(entry, paths.executable_path, paths.cache_path)
        for entry in entries
    )


@dataclass
class _Model:
    """Everything the quota view needs to read and price the windows."""

    claude_reader: ClaudeReader
    codex_reader: CodexReader
    claude_cost: ClaudeCostReader
    codex_cost: CodexCostReader
    claude_hook_installed: bool
    prefs: DisplayPrefs


def _format_duration(delta: timedelta) -> str:
    minutes = max(int(delta.total_seconds()) // 60, 0)
    days, minutes = divmod(minutes, 24 * 60)
    hours, minutes = divmod(minutes, 60)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _format_cost(cost: Optional[WindowCost]) -> str:
    if cost is None or (cost.amount == 0 and not cost.incomplete):
        return ""
    text = ("~" if cost.estimated else "") + f"${cost.amount:.2f}"
    return text + ("*" if cost.incomplete else "")


def _window_line(window: Window, cost: Optional[WindowCost], now: datetime) -> str:
    parts = [
        f"{window.label:<10}",
        f"{window.used_percent:5.1f}%",
        f"resets in {_format_duration(window.resets_at - now)}",
    ]
    cost_text = _format_cost(cost)
    if cost_text:
        parts.append(cost_text)
    if window.metadata and window.metadata.get("plan_type"):
        parts.append(f"[{window.metadata['plan_type']}]")
    if window.stale:
        parts.append(f"(stale {_format_duration(window.stale_age)} ago)")
    return "  ".join(parts)


def _report_lines(model: _Model, now: datetime) -> list[str]:
    sections = []
    if model.prefs.visibility is not Visibility.CODEX_ONLY:
        sections.append(("Claude", Product.CLAUDE, model.claude_reader, model.claude_cost))
    if model.prefs.visibility is not Visibility.CLAUDE_ONLY:
        sections.append(("Codex", Product.CODEX, model.codex_reader, model.codex_cost))

    lines = []
    for name, product, reader, cost_reader in sections:
        try:
            windows = reader.fetch(now)
        except SourceError as err:
            lines.append(f"{name}: no data ({err.category.value})")
            if (
                product is Product.CLAUDE
                and err.category is ErrorCategory.MISSING
                and not model.claude_hook_installed
            ):
                lines.append("  run `llm-quota install-claude-hook` to collect Claude quota data")
            continue
        costs = {} if model.prefs.hide_cost else cost_reader.window_costs(now, windows)
        lines.extend(_window_line(w, costs.get(w.kind), now) for w in windows)
    return lines


def _show_report(model: _Model) -> None:
    for line in _report_lines(model, datetime.now(timezone.utc)):
        print(line)


@dataclass
class AppDeps:
    """The side-effecting operations the command relies on."""

    paths: Callable[[], ClaudeHookPaths] = field(default=default_claude_hook_paths)
    claude_hook_installed: Callable[[ClaudeHookPaths], bool] = field(
        default=claude_hook_installed
    )
    claude_hook_declined: Callable[[str], bool] = field(default=claude_hook_declined)
    record_claude_hook_declined: Callable[[str], None] = field(
        default=record_claude_hook_declined
    )
    install_claude_hook: Callable[[ClaudeHookPaths], InstallResult] = field(
        default=install_claude_hook
    )
    uninstall_claude_hook: Callable[[ClaudeHookPaths], InstallResult] = field(
        default=uninstall_claude_hook
    )
    codex_sessions_root: Callable[[], str] = field(default=default_codex_sessions_root)
    start_tui: Callable[[_Model], None] = field(default=_show_report)


def parse_display_flags(args: Sequence[str]) -> tuple[DisplayPrefs, bool]:
    """Return the display preferences and whether help was requested.

    Raises ValueError for an unknown flag or a bad --only value.
    """
    prefs = DisplayPrefs()
    if os.environ.get("LLM_QUOTA_ICONS") in ("1", "true"):
        prefs.icons = True
    for arg in args:
        if arg in ("-h", "--help"):
            return prefs, True
        if arg == "--only=claude":
            prefs.visibility = Visibility.CLAUDE_ONLY
        elif arg == "--only=codex":
            prefs.visibility = Visibility.CODEX_ONLY
        elif arg.startswith("--only="):
            raise ValueError(
                f"invalid --only value: {arg} (use --only=claude or --only=codex)"
            )
        elif arg == "--no-trend":
            prefs.hide_trend = True
        elif arg == "--no-cost":
            prefs.hide_cost = True
        elif arg == "--icons":
            prefs.icons = True
        else:
            raise ValueError(f"unknown flag: {arg}")
    return prefs, False


def print_usage(stream: IO[str]) -> None:
    """Write the help text to stream."""
    stream.write(_USAGE)


def is_yes(value: str) -> bool:
    """Return whether a prompt answer means yes."""
    return value.strip().lower() in ("y", "yes")


def _error(stream: IO[str], message: object) -> None:
    print(f"llm-quota: {message}", file=stream)


def _report_result(stream: IO[str], result: InstallResult) -> None:
    print(result.message, file=stream)
    if result.backup_path:
        print(f"backup: {result.backup_path}", file=stream)


def _run_hook_change(
    action: Callable[[ClaudeHookPaths], InstallResult],
    stdout: IO[str],
    stderr: IO[str],
    deps: AppDeps,
) -> int:
    try:
        result = action(deps.paths())
    except Exception as err:  # noqa: BLE001 - reported to the user
        _error(stderr, err)
        return 1
    _report_result(stdout, result)
    return 0


def _run_statusline_writer(
    args: Sequence[str], stdin: IO, stdout: IO, stderr: IO
) -> int:
    if len(args) not in (2, 4) or args[0] != "--cache" or not args[1]:
        _error(stderr, _STATUSLINE_USAGE)
        return 2
    passthrough = ""
    if len(args) == 4:
        if args[2] != "--passthrough" or not args[3]:
            _error(stderr, _STATUSLINE_USAGE)
            return 2
        passthrough = args[3]
    try:
        run_claude_statusline_cache_writer(
            stdin, stdout, stderr, args[1], passthrough, datetime.now(timezone.utc)
        )
    except Exception as err:  # noqa: BLE001 - reported to the user
        _error(stderr, err)
        return 1
    return 0


def _run_hook_writer(args: Sequence[str], stdin: IO, stderr: IO) -> int:
    if len(args) != 2 or args[0] != "--cache" or not args[1]:
        _error(stderr, _HOOK_USAGE)
        return 2
    try:
        run_claude_hook_cache_writer(stdin, args[1], datetime.now(timezone.utc))
    except Exception as err:  # noqa: BLE001 - reported to the user
        _error(stderr, err)
        return 1
    return 0


def _offer_first_launch_install(
    stdin: IO, stdout: IO[str], stderr: IO[str], deps: AppDeps
) -> Optional[int]:
    """Prompt to install the hook; return an exit code only when the run must stop."""
    try:
        paths = deps.paths()
    except Exception as err:  # noqa: BLE001 - reported to the user
        _error(stderr, err)
        return 1
    try:
        if deps.claude_hook_installed(paths):
            return None
        if deps.claude_hook_declined(paths.state_path):
            return None
    except Exception as err:  # noqa: BLE001 - the prompt is optional
        _error(stderr, f"skipping Claude hook prompt: {err}")
        return None

    print("llm-quota can install an app-owned Claude hook to write local quota data.", file=stdout)
    print(
        "It preserves unrelated Claude configuration and only updates the llm-quota hook entry.",
        file=stdout,
    )
    stdout.write("Install llm-quota Claude hook now? [y/N] ")
    stdout.flush()

    try:
        answer = stdin.readline()
    except OSError as err:
        _error(stderr, err)
        return 1
    if isinstance(answer, bytes):
        answer = answer.decode("utf-8", errors="replace")

    if is_yes(answer):
        try:
            result = deps.install_claude_hook(paths)
        except Exception as err:  # noqa: BLE001 - reported to the user
            _error(stderr, err)
            return 1
        _report_result(stdout, result)
        return None

    try:
        deps.record_claude_hook_declined(paths.state_path)
    except Exception as err:  # noqa: BLE001 - reported, not fatal
        _error(stderr, f"could not record Claude hook decline: {err}")
    return None


def _source_backed_model(deps: AppDeps, prefs: DisplayPrefs) -> _Model:
    paths = deps.paths()
    codex_root = deps.codex_sessions_root()
    try:
        installed = bool(deps.claude_hook_installed(paths))
    except Exception:  # noqa: BLE001 - treated as not installed
        installed = False

    # No rate table ships with the package: unpriced usage shows as incomplete.
    pricing = Pricing()
    projects_root = os.path.join(os.path.dirname(paths.claude_config_path), "projects")
    return _Model(
        claude_reader=ClaudeReader(paths.cache_path),
        codex_reader=CodexReader(codex_root),
        claude_cost=ClaudeCostReader(projects_root, pricing),
        codex_cost=CodexCostReader(codex_root, pricing),
        claude_hook_installed=installed,
        prefs=prefs,
    )


def run(
    args: Sequence[str],
    stdin: Optional[IO] = None,
    stdout: Optional[IO[str]] = None,
    stderr: Optional[IO[str]] = None,
    deps: Optional[AppDeps] = None,
) -> int:
    """Run the command with the given arguments and return its exit code."""
    stdin = sys.stdin if stdin is None else stdin
    stdout = sys.stdout if stdout is None else stdout
    stderr = sys.stderr if stderr is None else stderr
    deps = AppDeps() if deps is None else deps
    args = list(args)

    if args and args[0] in ("version", "--version"):
        if len(args) > 1:
            _error(stderr, f"unknown argument: {args[1]}")
            return 2
        print(f"llm-quota {VERSION} (commit {COMMIT}, built {BUILD_DATE})", file=stdout)
        return 0

    if args and not args[0].startswith("-"):
        command, rest = args[0], args[1:]
        if command == "claude-hook-cache-writer":
            return _run_hook_writer(rest, stdin, stderr)
        if command == "claude-statusline-cache-writer":
            return _run_statusline_writer(rest, stdin, stdout, stderr)
        if command in ("install-claude-hook", "uninstall-claude-hook"):
            if rest:
                _error(stderr, f"unknown argument: {rest[0]}")
                return 2
            action = (
                deps.install_claude_hook
                if command == "install-claude-hook"
                else deps.uninstall_claude_hook
            )
            return _run_hook_change(action, stdout, stderr, deps)
        _error(stderr, f"unknown argument: {command}")
        return 2

    try:
        prefs, show_help = parse_display_flags(args)
    except ValueError as err:
        _error(stderr, err)
        return 2
    if show_help:
        print_usage(stdout)
        return 0

    code = _offer_first_launch_install(stdin, stdout, stderr, deps)
    if code is not None:
        return code

    try:
        model = _source_backed_model(deps, prefs)
        deps.start_tui(model)
    except Exception as err:  # noqa: BLE001 - reported to the user
        _error(stderr, err)
        return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Console entry point."""
    return run(sys.argv[1:] if argv is None else list(argv))


if __name__ == "__main__":
    sys.exit(main())