"""Installs the app-owned Claude status line hook and writes its quota cache."""

from __future__ import annotations

import contextlib
import io
import json
import math
import os
import shutil
import stat
import subprocess
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Optional

_MANAGED_HOOK_NAME = "llm-quota"
_MANAGED_HOOK_MARKER = "llm-quota"
_ORIGINAL_STATUS_LINE_KEY = "llm_quota_original_statusLine"
_HOOK_EVENT = "PostToolUse"
_JSON_WHITESPACE = " \t\n\r"
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


@dataclass(frozen=True)
class ClaudeHookPaths:
    """Where the Claude config, app state and quota cache live."""

    claude_config_path: str = ""
    state_path: str = ""
    cache_path: str = ""
    executable_path: str = ""


@dataclass(frozen=True)
class InstallResult:
    """Outcome of an install or uninstall."""

    changed: bool = False
    backup_path: str = ""
    message: str = ""


class HookInputError(ValueError):
    """The JSON handed to a cache writer is unusable."""


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _loads(contents: bytes | str) -> Any:
    return json.loads(contents, parse_constant=_reject_constant)


def _clone(value: dict) -> dict:
    clone = json.loads(json.dumps(value))
    return clone if isinstance(clone, dict) else {}


def _string_or_empty(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _is_managed(entry: dict) -> bool:
    return entry.get("llm_quota_marker") == _MANAGED_HOOK_MARKER


def shell_quote(value: str) -> str:
    """Quote value for a POSIX shell using single quotes."""
    return "'" + value.replace("'", "'\\''") + "'"


def managed_hook_command(executable_path: str, cache_path: str) -> str:
    """Return the command line of the managed PostToolUse hook."""
    executable = executable_path or _MANAGED_HOOK_NAME
    return (
        shell_quote(executable)
        + " claude-hook-cache-writer --cache "
        + shell_quote(cache_path)
    )


def managed_status_line_command(
    executable_path: str, cache_path: str, passthrough: str
) -> str:
    """Return the command line of the managed status line."""
    executable = executable_path or _MANAGED_HOOK_NAME
    command = (
        shell_quote(executable)
        + " claude-statusline-cache-writer --cache "
        + shell_quote(cache_path)
    )
    if passthrough:
        command += " --passthrough " + shell_quote(passthrough)
    return command


def _read_claude_config(path: str) -> tuple[dict, bool]:
    try:
        contents = Path(path).read_bytes()
    except FileNotFoundError:
        return {}, False
    if not contents.strip():
        return {}, True
    config = _loads(contents)
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ValueError("claude config must be a JSON object")
    return config, True


def _install_managed_status_line(
    config: dict, executable_path: str, cache_path: str
) -> None:
    status_line = config.get("statusLine")
    if not isinstance(status_line, dict):
        status_line = None

    passthrough = ""
    original: Optional[dict] = None
    if status_line is not None:
        if _is_managed(status_line):
            passthrough = _string_or_empty(status_line.get("llm_quota_passthrough"))
            stored = status_line.get(_ORIGINAL_STATUS_LINE_KEY)
            original = stored if isinstance(stored, dict) else None
        else:
            passthrough = _string_or_empty(status_line.get("command"))
            original = _clone(status_line)

    managed = {
        "type": "command",
        "command": managed_status_line_command(executable_path, cache_path, passthrough),
        "llm_quota_marker": _MANAGED_HOOK_MARKER,
        "llm_quota_passthrough": passthrough,
    }
    if original is not None:
        managed[_ORIGINAL_STATUS_LINE_KEY] = original
    config["statusLine"] = managed


def _remove_managed_tool_hook(config: dict) -> None:
    hooks = config.get("hooks")
    if not isinstance(hooks, dict):
        return
    entries = hooks.get(_HOOK_EVENT)
    if not isinstance(entries, list):
        return
    hooks[_HOOK_EVENT] = [
        entry for entry in entries if not (isinstance(entry, dict) and _is_managed(entry))
    ]


def _backup_stamp() -> str:
    seconds, nanos = divmod(time.time_ns(), 1_000_000_000)
    stamp = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y%m%dT%H%M%S")
    return f"{stamp}.{nanos:09d}Z"


def _backup_file(path: str) -> str:
    backup_path = f"{path}.llm-quota-backup-{_backup_stamp()}"
    with open(path, "rb") as source:
        fd = os.open(backup_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as target:
            shutil.copyfileobj(source, target)
    return backup_path


def _resolve_write_path(path: str) -> str:
    try:
        info = os.lstat(path)
    except FileNotFoundError:
        return path
    if not stat.S_ISLNK(info.st_mode):
        return path
    target = os.readlink(path)
    if not os.path.isabs(target):
        target = os.path.join(os.path.dirname(path), target)
    return target


def _write_json_atomic(path: str, value: Any) -> None:
    write_path = _resolve_write_path(path)
    directory = os.path.dirname(write_path) or "."
    os.makedirs(directory, mode=0o700, exist_ok=True)
    contents = json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False) + "\n"

    fd, temp_path = tempfile.mkstemp(
        prefix=f".{os.path.basename(write_path)}.", suffix=".tmp", dir=directory
    )
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(contents.encode("utf-8"))
        os.replace(temp_path, write_path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.remove(temp_path)


def install_claude_hook(paths: ClaudeHookPaths) -> InstallResult:
    """Install the managed status line, backing up the config when it changes."""
    if not paths.claude_config_path:
        raise ValueError("claude config path is required")
    if not paths.cache_path:
        raise ValueError("cache path is required")

    config, existed = _read_claude_config(paths.claude_config_path)
    original = _clone(config)

    _install_managed_status_line(config, paths.executable_path, paths.cache_path)
    _remove_managed_tool_hook(config)
    if original == config:
        return InstallResult(message="llm-quota Claude hook already installed")

    backup_path = _backup_file(paths.claude_config_path) if existed else ""
    _write_json_atomic(paths.claude_config_path, config)
    return InstallResult(
        changed=True, backup_path=backup_path, message="installed llm-quota Claude hook"
    )


def uninstall_claude_hook(paths: ClaudeHookPaths) -> InstallResult:
    """Remove the managed hooks and restore any wrapped status line."""
    if not paths.claude_config_path:
        raise ValueError("claude config path is required")

    not_installed = InstallResult(message="llm-quota Claude hook is not installed")
    config, existed = _read_claude_config(paths.claude_config_path)
    if not existed or not config:
        return not_installed
    original = _clone(config)

    status_line = config.get("statusLine")
    if isinstance(status_line, dict) and _is_managed(status_line):
        passthrough = _string_or_empty(status_line.get("llm_quota_passthrough"))
        stored = status_line.get(_ORIGINAL_STATUS_LINE_KEY)
        if isinstance(stored, dict):
            config["statusLine"] = _clone(stored)
        elif passthrough:
            config["statusLine"] = {"type": "command", "command": passthrough}
        else:
            del config["statusLine"]
    _remove_managed_tool_hook(config)

    if original == config:
        return not_installed

    backup_path = _backup_file(paths.claude_config_path)
    _write_json_atomic(paths.claude_config_path, config)
    return InstallResult(
        changed=True, backup_path=backup_path, message="uninstalled llm-quota Claude hook"
    )


def _read_decline_state(path: str) -> bool:
    try:
        contents = Path(path).read_bytes()
    except FileNotFoundError:
        return False
    state = _loads(contents)
    if state is None:
        return False
    if not isinstance(state, dict):
        raise ValueError("state must be a JSON object")
    declined = state.get("claude_hook_declined")
    if declined is None:
        return False
    if not isinstance(declined, bool):
        raise ValueError("claude_hook_declined: expected a boolean")
    return declined


def record_claude_hook_declined(state_path: str) -> None:
    """Remember that the user declined the hook install."""
    if not state_path:
        raise ValueError("state path is required")
    _read_decline_state(state_path)
    _write_json_atomic(state_path, {"claude_hook_declined": True})


def claude_hook_declined(state_path: str) -> bool:
    """Return whether the user has declined the hook install."""
    if not state_path:
        raise ValueError("state path is required")
    return _read_decline_state(state_path)


def _decode_error(detail: Any) -> HookInputError:
    return HookInputError(f"decode Claude hook input: {detail}")


@dataclass(frozen=True)
class _HookWindow:
    used_percentage: Optional[float]
    resets_at: Optional[int]

    @classmethod
    def from_json(cls, obj: dict, key: str) -> Optional["_HookWindow"]:
        value = obj.get(key)
        if value is None:
            return None
        if not isinstance(value, dict):
            raise _decode_error(f"{key}: expected an object")
        used = value.get("used_percentage")
        if used is not None and (isinstance(used, bool) or not isinstance(used, (int, float))):
            raise _decode_error(f"{key}.used_percentage: expected a number")
        resets = value.get("resets_at")
        if resets is not None and (
            isinstance(resets, bool)
            or not isinstance(resets, int)
            or not _INT64_MIN <= resets <= _INT64_MAX
        ):
            raise _decode_error(f"{key}.resets_at: expected an integer")
        return cls(used, resets)

    def validate(self, name: str) -> None:
        if self.used_percentage is None:
            raise HookInputError(f"missing {name} used_percentage")
        if self.resets_at is None:
            raise HookInputError(f"missing {name} resets_at")

    def is_valid(self) -> bool:
        return self.used_percentage is not None and self.resets_at is not None

    def to_json(self) -> dict:
        return {"used_percentage": self.used_percentage, "resets_at": self.resets_at}


@dataclass(frozen=True)
class _RateLimits:
    five_hour: Optional[_HookWindow]
    seven_day: Optional[_HookWindow]
    sonnet_seven_day: Optional[_HookWindow]
    sonnet_weekly: Optional[_HookWindow]

    @classmethod
    def from_json(cls, value: Any) -> Optional["_RateLimits"]:
        if value is None:
            return None
        if not isinstance(value, dict):
            raise _decode_error("rate_limits: expected an object")
        return cls(
            _HookWindow.from_json(value, "five_hour"),
            _HookWindow.from_json(value, "seven_day"),
            _HookWindow.from_json(value, "sonnet_seven_day"),
            _HookWindow.from_json(value, "sonnet_weekly"),
        )

    def validate(self) -> None:
        if self.five_hour is None:
            raise HookInputError("missing five_hour rate limit")
        self.five_hour.validate("five_hour")
        if self.seven_day is None:
            raise HookInputError("missing seven_day rate limit")
        self.seven_day.validate("seven_day")

    def valid_sonnet_seven_day(self) -> Optional[_HookWindow]:
        return next(
            (
                w
                for w in (self.sonnet_seven_day, self.sonnet_weekly)
                if w is not None and w.is_valid()
            ),
            None,
        )


def _decode_hook_input(contents: bytes) -> Any:
    text = contents.decode("utf-8", errors="replace")
    decoder = json.JSONDecoder(parse_constant=_reject_constant)
    start = len(text) - len(text.lstrip(_JSON_WHITESPACE))
    if start == len(text):
        raise _decode_error("EOF")
    try:
        value, end = decoder.raw_decode(text, start)
    except ValueError as err:
        raise _decode_error(err) from err
    rest = text[end:].lstrip(_JSON_WHITESPACE)
    if rest:
        try:
            decoder.raw_decode(rest)
        except ValueError as err:
            raise _decode_error(err) from err
        raise _decode_error("trailing JSON value")
    return value


def _rate_limits_from_input(value: Any) -> Optional[_RateLimits]:
    if value is None:
        value = {}
    if not isinstance(value, dict):
        raise _decode_error("input must be a JSON object")
    limits = _RateLimits.from_json(value.get("rate_limits"))
    nested = None
    payload = value.get("payload")
    if payload is not None:
        if not isinstance(payload, dict):
            raise _decode_error("payload: expected an object")
        nested = _RateLimits.from_json(payload.get("rate_limits"))
    return limits if limits is not None else nested


def _write_claude_cache(
    contents: bytes, cache_path: str, now: datetime, require_rate_limits: bool
) -> None:
    if not cache_path:
        raise ValueError("cache path is required")

    limits = _rate_limits_from_input(_decode_hook_input(contents))
    if limits is None:
        if not require_rate_limits:
            return
        raise HookInputError("missing rate_limits")
    limits.validate()

    cache: dict[str, Any] = {
        "five_hour": limits.five_hour.to_json(),
        "seven_day": limits.seven_day.to_json(),
        "written_at": math.floor(now.timestamp()),
    }
    sonnet = limits.valid_sonnet_seven_day()
    if sonnet is not None:
        cache["sonnet_seven_day"] = sonnet.to_json()
    _write_json_atomic(cache_path, cache)


def _read_all(stream: IO) -> bytes:
    data = stream.read()
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


def _emit(stream: Optional[IO], data: bytes) -> None:
    if stream is None or not data:
        return
    if isinstance(stream, io.TextIOBase):
        stream.write(data.decode("utf-8", errors="replace"))
    else:
        stream.write(data)
    flush = getattr(stream, "flush", None)
    if flush is not None:
        flush()


def run_claude_hook_cache_writer(input_stream: IO, cache_path: str, now: datetime) -> None:
    """Write the quota cache from hook JSON; rate limits are required."""
    _write_claude_cache(_read_all(input_stream), cache_path, now, True)


def run_claude_statusline_cache_writer(
    input_stream: IO,
    stdout: Optional[IO],
    stderr: Optional[IO],
    cache_path: str,
    passthrough: str,
    now: datetime,
) -> None:
    """Write the quota cache from status line JSON, then run the wrapped command.

    With a passthrough command, cache errors are ignored and the command's own
    failure is raised as subprocess.CalledProcessError.
    """
    contents = _read_all(input_stream)
    if not passthrough:
        _write_claude_cache(contents, cache_path, now, False)
        return
    with contextlib.suppress(ValueError, OSError):
        _write_claude_cache(contents, cache_path, now, False)

    completed = subprocess.run(
        ["sh", "-c", passthrough], input=contents, capture_output=True, check=False
    )
    _emit(stdout, completed.stdout)
    _emit(stderr, completed.stderr)
    if completed.returncode != 0:
        raise subprocess.CalledProcessError(
            completed.returncode, passthrough, completed.stdout, completed.stderr
        )