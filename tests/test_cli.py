import io
import json
import os
from datetime import datetime, timezone

import pytest

from llmquota.claude_hook import (
    ClaudeHookPaths,
    InstallResult,
    claude_hook_declined,
    managed_hook_command,
    managed_status_line_command,
)
from llmquota.claude_source import ClaudeReader
from llmquota.cli import (
    VERSION,
    AppDeps,
    DisplayPrefs,
    Visibility,
    claude_hook_installed,
    is_yes,
    parse_display_flags,
    print_usage,
    run,
)

HOOK_INPUT = (
    '{"rate_limits":{"five_hour":{"used_percentage":42.3,"resets_at":1778942485},'
    '"seven_day":{"used_percentage":85.7,"resets_at":1779382265}}}'
)


def make_paths(tmp_path, executable=True):
    return ClaudeHookPaths(
        claude_config_path=str(tmp_path / "settings.json"),
        state_path=str(tmp_path / "state.json"),
        cache_path=str(tmp_path / "claude.json"),
        executable_path=str(tmp_path / "llm-quota") if executable else "",
    )


def base_deps(tmp_path, events, **overrides):
    values = dict(
        paths=lambda: make_paths(tmp_path),
        codex_sessions_root=lambda: str(tmp_path / ".codex" / "sessions"),
        start_tui=lambda model: events.append("tui"),
    )
    values.update(overrides)
    return AppDeps(**values)


def invoke(args, deps, stdin=""):
    stdout, stderr = io.StringIO(), io.StringIO()
    code = run(args, io.StringIO(stdin), stdout, stderr, deps)
    return code, stdout.getvalue(), stderr.getvalue()


def test_install_command_installs_without_starting_tui(tmp_path):
    events = []

    def install(paths):
        events.append("install")
        return InstallResult(changed=True, message="installed llm-quota Claude hook")

    code, out, err = invoke(
        ["install-claude-hook"], base_deps(tmp_path, events, install_claude_hook=install)
    )
    assert code == 0, err
    assert events == ["install"]
    assert "installed llm-quota Claude hook" in out


def test_uninstall_command_reports_backup(tmp_path):
    events = []
    backup = str(tmp_path / "settings.json.llm-quota-backup")

    def uninstall(paths):
        events.append("uninstall")
        return InstallResult(
            changed=True, backup_path=backup, message="uninstalled llm-quota Claude hook"
        )

    code, out, err = invoke(
        ["uninstall-claude-hook"],
        base_deps(tmp_path, events, uninstall_claude_hook=uninstall),
    )
    assert code == 0, err
    assert events == ["uninstall"]
    assert "uninstalled llm-quota Claude hook" in out
    assert "backup: " + backup in out


def test_uninstall_rejects_extra_args(tmp_path):
    events = []

    def uninstall(paths):
        events.append("uninstall")
        return InstallResult(changed=True, message="uninstalled")

    code, out, err = invoke(
        ["uninstall-claude-hook", "extra"],
        base_deps(tmp_path, events, uninstall_claude_hook=uninstall),
    )
    assert code == 2
    assert err == "llm-quota: unknown argument: extra\n"
    assert out == ""
    assert events == []


def test_install_failure_exits_one(tmp_path):
    def install(paths):
        raise OSError("boom")

    code, out, err = invoke(
        ["install-claude-hook"], base_deps(tmp_path, [], install_claude_hook=install)
    )
    assert code == 1
    assert err == "llm-quota: boom\n"
    assert out == ""


def test_first_launch_decline_records_before_tui(tmp_path):
    events = []
    deps = base_deps(
        tmp_path,
        events,
        claude_hook_installed=lambda paths: False,
        claude_hook_declined=lambda state: False,
        record_claude_hook_declined=lambda state: events.append("decline"),
    )
    code, out, err = invoke([], deps, stdin="n\n")
    assert code == 0, err
    assert "Install llm-quota Claude hook now? [y/N]" in out
    assert "installed llm-quota Claude hook" not in out
    assert events == ["decline", "tui"]


def test_first_launch_decline_persists_state(tmp_path):
    events = []
    deps = base_deps(tmp_path, events, claude_hook_installed=lambda paths: False)
    code, _out, err = invoke([], deps, stdin="no\n")
    assert code == 0, err
    assert claude_hook_declined(str(tmp_path / "state.json")) is True
    assert events == ["tui"]


def test_first_launch_accept_installs_before_tui(tmp_path):
    events = []

    def install(paths):
        events.append("install")
        return InstallResult(changed=True, message="installed llm-quota Claude hook")

    deps = base_deps(
        tmp_path,
        events,
        claude_hook_installed=lambda paths: False,
        claude_hook_declined=lambda state: False,
        install_claude_hook=install,
    )
    code, out, err = invoke([], deps, stdin="yes\n")
    assert code == 0, err
    assert "Install llm-quota Claude hook now? [y/N]" in out
    assert "installed llm-quota Claude hook" in out
    assert events == ["install", "tui"]


def test_first_launch_upgrades_old_managed_hook(tmp_path):
    config_path = tmp_path / "settings.json"
    config_path.write_text(
        '{"hooks":{"PostToolUse":[{"name":"llm-quota","llm_quota_marker":"llm-quota",'
        '"matcher":"*","command":"cat > old-cache.json"}]}}'
    )
    events = []

    def install(paths):
        events.append("install")
        return InstallResult(changed=True, message="installed llm-quota Claude hook")

    deps = base_deps(
        tmp_path,
        events,
        paths=lambda: make_paths(tmp_path, executable=False),
        claude_hook_declined=lambda state: False,
        install_claude_hook=install,
    )
    code, out, err = invoke([], deps, stdin="yes\n")
    assert code == 0, err
    assert "Install llm-quota Claude hook now? [y/N]" in out
    assert events == ["install", "tui"]


def test_first_launch_paths_failure_exits_one(tmp_path):
    def paths():
        raise OSError("no home")

    code, _out, err = invoke([], base_deps(tmp_path, [], paths=paths))
    assert code == 1
    assert err == "llm-quota: no home\n"


def test_installed_ignores_markerless_named_hook(tmp_path):
    cache = str(tmp_path / "claude.json")
    (tmp_path / "settings.json").write_text(
        json.dumps(
            {
                "hooks": {
                    "PostToolUse": [
                        {
                            "name": "llm-quota",
                            "matcher": "*",
                            "hooks": [
                                {
                                    "type": "command",
                                    "command": "llm-quota claude-hook-cache-writer --cache " + cache,
                                }
                            ],
                        }
                    ]
                }
            }
        )
    )
    paths = ClaudeHookPaths(claude_config_path=str(tmp_path / "settings.json"), cache_path=cache)
    assert claude_hook_installed(paths) is False


def test_installed_matches_quoted_cache_path(tmp_path):
    cache = str(tmp_path / "rob's cache.json")
    command = managed_hook_command("", cache)
    assert "'\\''" in command
    (tmp_path / "settings.json").write_text(
        json.dumps(
            {
                "hooks": {
                    "PostToolUse": [
                        {
                            "name": "llm-quota",
                            "llm_quota_marker": "llm-quota",
                            "matcher": "*",
                            "hooks": [{"type": "command", "command": command}],
                        }
                    ]
                }
            }
        )
    )
    paths = ClaudeHookPaths(claude_config_path=str(tmp_path / "settings.json"), cache_path=cache)
    assert claude_hook_installed(paths) is True


def test_installed_matches_managed_status_line(tmp_path):
    cache = str(tmp_path / "claude.json")
    executable = str(tmp_path / "llm-quota")
    (tmp_path / "settings.json").write_text(
        json.dumps(
            {
                "statusLine": {
                    "type": "command",
                    "command": managed_status_line_command(executable, cache, "statusline.sh"),
                    "llm_quota_marker": "llm-quota",
                    "llm_quota_passthrough": "statusline.sh",
                }
            }
        )
    )
    paths = ClaudeHookPaths(
        claude_config_path=str(tmp_path / "settings.json"),
        cache_path=cache,
        executable_path=executable,
    )
    assert claude_hook_installed(paths) is True


def test_installed_rejects_wrong_status_line_cache_path(tmp_path):
    executable = str(tmp_path / "llm-quota")
    (tmp_path / "settings.json").write_text(
        json.dumps(
            {
                "statusLine": {
                    "type": "command",
                    "command": managed_status_line_command(
                        executable, str(tmp_path / "old.json"), "statusline.sh"
                    ),
                    "llm_quota_marker": "llm-quota",
                    "llm_quota_passthrough": "statusline.sh",
                }
            }
        )
    )
    paths = ClaudeHookPaths(
        claude_config_path=str(tmp_path / "settings.json"),
        cache_path=str(tmp_path / "claude.json"),
        executable_path=executable,
    )
    assert claude_hook_installed(paths) is False


def test_installed_missing_and_empty_config(tmp_path):
    paths = make_paths(tmp_path)
    assert claude_hook_installed(paths) is False
    (tmp_path / "settings.json").write_text("  \n")
    assert claude_hook_installed(paths) is False


def test_installed_invalid_json_raises(tmp_path):
    (tmp_path / "settings.json").write_text("{")
    with pytest.raises(ValueError):
        claude_hook_installed(make_paths(tmp_path))


def test_unknown_argument_exit_code(tmp_path):
    code, out, err = invoke(["bogus"], base_deps(tmp_path, []))
    assert code == 2
    assert err == "llm-quota: unknown argument: bogus\n"
    assert out == ""


def test_hook_cache_writer_command_writes_cache(tmp_path):
    events = []
    cache = str(tmp_path / "quota cache" / "claude cache.json")
    code, out, err = invoke(
        ["claude-hook-cache-writer", "--cache", cache],
        base_deps(tmp_path, events),
        stdin=HOOK_INPUT,
    )
    assert code == 0, err
    assert out == "" and err == ""
    assert events == []
    windows = ClaudeReader(cache).fetch(datetime.fromtimestamp(1778930000, tz=timezone.utc))
    assert len(windows) == 2


@pytest.mark.parametrize(
    "args",
    [
        ["claude-hook-cache-writer"],
        ["claude-hook-cache-writer", "--cache"],
        ["claude-hook-cache-writer", "--path", "claude.json"],
        ["claude-hook-cache-writer", "--cache", "claude.json", "extra"],
    ],
)
def test_hook_cache_writer_rejects_bad_args(tmp_path, args):
    events = []
    target = str(tmp_path / "quota cache" / "claude cache.json")
    args = [target if a == "claude.json" else a for a in args]
    code, out, _err = invoke(args, base_deps(tmp_path, events), stdin=HOOK_INPUT)
    assert code == 2
    assert out == ""
    assert events == []
    assert not os.path.exists(target)


def test_hook_cache_writer_bad_input_exits_one(tmp_path):
    cache = str(tmp_path / "claude.json")
    code, _out, err = invoke(
        ["claude-hook-cache-writer", "--cache", cache], base_deps(tmp_path, []), stdin="{}"
    )
    assert code == 1
    assert err == "llm-quota: missing rate_limits\n"


def test_statusline_cache_writer_command_writes_cache(tmp_path):
    cache = str(tmp_path / "claude.json")
    code, _out, err = invoke(
        ["claude-statusline-cache-writer", "--cache", cache],
        base_deps(tmp_path, []),
        stdin=HOOK_INPUT,
    )
    assert code == 0, err
    windows = ClaudeReader(cache).fetch(datetime.fromtimestamp(1778930000, tz=timezone.utc))
    assert [w.label for w in windows] == ["Claude 5h", "Claude 7d"]


@pytest.mark.parametrize(
    "args",
    [
        ["claude-statusline-cache-writer"],
        ["claude-statusline-cache-writer", "--cache", ""],
        ["claude-statusline-cache-writer", "--cache", "x.json", "--passthrough"],
        ["claude-statusline-cache-writer", "--cache", "x.json", "--other", "cmd"],
    ],
)
def test_statusline_cache_writer_rejects_bad_args(tmp_path, args):
    code, out, err = invoke(args, base_deps(tmp_path, []), stdin=HOOK_INPUT)
    assert code == 2
    assert out == ""
    assert "claude-statusline-cache-writer --cache <path>" in err


def test_no_arg_startup_builds_source_backed_model(tmp_path):
    config_path = str(tmp_path / ".claude" / "settings.json")
    cache_path = str(tmp_path / ".cache" / "llm-quota" / "claude.json")
    codex_sessions = str(tmp_path / ".codex" / "sessions")
    captured = []
    deps = AppDeps(
        paths=lambda: ClaudeHookPaths(
            claude_config_path=config_path,
            state_path=str(tmp_path / ".cache" / "llm-quota" / "state.json"),
            cache_path=cache_path,
            executable_path=str(tmp_path / "llm-quota"),
        ),
        codex_sessions_root=lambda: codex_sessions,
        claude_hook_installed=lambda paths: True,
        start_tui=captured.append,
    )
    code, out, err = invoke([], deps)
    assert code == 0, (out, err)
    assert len(captured) == 1
    model = captured[0]
    assert model.claude_reader.cache_path == cache_path
    assert model.codex_reader.sessions_root == codex_sessions
    assert model.claude_cost.projects_root == str(tmp_path / ".claude" / "projects")
    assert model.codex_cost.sessions_root == codex_sessions
    assert model.claude_hook_installed is True


def test_start_failure_exits_one(tmp_path):
    def start(model):
        raise RuntimeError("terminal unavailable")

    deps = base_deps(tmp_path, [], claude_hook_installed=lambda paths: True, start_tui=start)
    code, _out, err = invoke([], deps)
    assert code == 1
    assert err == "llm-quota: terminal unavailable\n"


def test_default_view_prints_claude_windows(tmp_path, capsys):
    cache = tmp_path / "claude.json"
    now = int(datetime.now(timezone.utc).timestamp())
    cache.write_text(
        json.dumps(
            {
                "five_hour": {"used_percentage": 42.3, "resets_at": now + 3600},
                "seven_day": {"used_percentage": 85.7, "resets_at": now + 86400},
                "written_at": now,
            }
        )
    )
    deps = AppDeps(
        paths=lambda: make_paths(tmp_path),
        codex_sessions_root=lambda: str(tmp_path / "sessions"),
        claude_hook_installed=lambda paths: True,
    )
    code = run(["--only=claude"], io.StringIO(""), io.StringIO(), io.StringIO(), deps)
    printed = capsys.readouterr().out
    assert code == 0
    assert "Claude 5h" in printed
    assert "42.3%" in printed
    assert "Codex" not in printed


@pytest.mark.parametrize(
    "args,visibility,show_help",
    [
        ([], Visibility.BOTH, False),
        (["--only=claude"], Visibility.CLAUDE_ONLY, False),
        (["--only=codex"], Visibility.CODEX_ONLY, False),
        (["--help"], Visibility.BOTH, True),
        (["-h"], Visibility.BOTH, True),
    ],
)
def test_parse_display_flags(monkeypatch, args, visibility, show_help):
    monkeypatch.delenv("LLM_QUOTA_ICONS", raising=False)
    prefs, help_requested = parse_display_flags(args)
    assert help_requested is show_help
    assert prefs.visibility is visibility


@pytest.mark.parametrize("args", [["--only=both"], ["--solid-bars"], ["--nope"]])
def test_parse_display_flags_errors(args):
    with pytest.raises(ValueError):
        parse_display_flags(args)


def test_help_exits_zero_and_prints_usage(tmp_path):
    code, out, _err = invoke(["--help"], base_deps(tmp_path, []))
    assert code == 0
    assert "Usage:" in out


def test_unknown_flag_exits_two(tmp_path):
    code, _out, err = invoke(["--nope"], base_deps(tmp_path, []))
    assert code == 2
    assert "unknown flag" in err


def test_invalid_only_value_exits_two(tmp_path):
    code, _out, err = invoke(["--only=both"], base_deps(tmp_path, []))
    assert code == 2
    assert "invalid --only value" in err


def test_parse_no_trend():
    prefs, show_help = parse_display_flags(["--no-trend"])
    assert show_help is False
    assert prefs.hide_trend is True


def test_parse_icons_flag(monkeypatch):
    monkeypatch.setenv("LLM_QUOTA_ICONS", "")
    prefs, _ = parse_display_flags(["--icons"])
    assert prefs.icons is True


@pytest.mark.parametrize("value,expected", [("1", True), ("true", True), ("", False)])
def test_parse_icons_env(monkeypatch, value, expected):
    monkeypatch.setenv("LLM_QUOTA_ICONS", value)
    prefs, _ = parse_display_flags([])
    assert prefs.icons is expected


def test_parse_no_cost_and_default():
    prefs, show_help = parse_display_flags(["--no-cost"])
    assert show_help is False
    assert prefs.hide_cost is True
    default, _ = parse_display_flags([])
    assert default.hide_cost is False
    assert default == DisplayPrefs(icons=default.icons)


@pytest.mark.parametrize("args", [["version"], ["--version"]])
def test_version_reports_build_version(tmp_path, args):
    events = []
    code, out, err = invoke(args, base_deps(tmp_path, events))
    assert code == 0
    assert out.startswith("llm-quota " + VERSION)
    assert err == ""
    assert events == []


@pytest.mark.parametrize("args", [["version", "extra"], ["--version", "extra"]])
def test_version_rejects_extra_args(tmp_path, args):
    code, out, err = invoke(args, base_deps(tmp_path, []))
    assert code == 2
    assert err == "llm-quota: unknown argument: extra\n"
    assert out == ""


def test_help_mentions_icons():
    stream = io.StringIO()
    print_usage(stream)
    usage = stream.getvalue()
    assert "--icons" in usage
    assert "LLM_QUOTA_ICONS" in usage


@pytest.mark.parametrize(
    "answer,expected",
    [("y", True), ("YES \n", True), (" yes", True), ("n", False), ("", False), ("yep", False)],
)
def test_is_yes(answer, expected):
    assert is_yes(answer) is expected