"""
Console logging for audits.

Each module gets a named :class:`Logger` that prints coloured,
timestamped lines to stderr.  Per-audit state, that is the named
timers and the optional log file, lives in ``contextvars`` so
concurrent audits in one event loop keep their own copies.

With ``WRITE_TO_FILE=true`` every audit also gets a plain-text log
under ``.logs/`` and its final JSON result under ``.results/``.
"""

from __future__ import annotations

import contextvars
import dataclasses
import os
import pathlib
import re
import sys
import time
from datetime import UTC, datetime
from typing import TextIO

Fields = dict[str, object]

_ANSI_RE = re.compile(r"\033\[[0-9;]*m")

RESET = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
RED = "\033[31m"
GREEN = "\033[32m"
YELLOW = "\033[33m"
BLUE = "\033[34m"
MAGENTA = "\033[35m"
CYAN = "\033[36m"
GRAY = "\033[90m"

MAX_VALUE_CHARS = 300


@dataclasses.dataclass(frozen=True)
class _Level:
    colour: str
    symbol: str


_LEVELS = {
    "info": _Level(CYAN, "ℹ"),
    "success": _Level(GREEN, "✓"),
    "warn": _Level(YELLOW, "⚠"),
    "error": _Level(RED, "✗"),
    "debug": _Level(GRAY, "•"),
    "timing": _Level(MAGENTA, "⏱"),
}


def _paint(text: str, *codes: str) -> str:
    return f"{''.join(codes)}{text}{RESET}"


# ============================================================================
# Per-audit state
# ============================================================================

_timers_var: contextvars.ContextVar[dict[tuple[str, str], tuple[float, str]] | None] = contextvars.ContextVar(
    "consent_audit_timers", default=None
)
_log_file_var: contextvars.ContextVar[TextIO | None] = contextvars.ContextVar("consent_audit_log_file", default=None)


def _timers() -> dict[tuple[str, str], tuple[float, str]]:
    timers = _timers_var.get()
    if timers is None:
        timers = {}
        _timers_var.set(timers)
    return timers


def reset_timers() -> None:
    """Forget every running timer of the current context."""
    _timers_var.set({})


# ============================================================================
# Output
# ============================================================================


def file_output_enabled() -> bool:
    """Whether ``WRITE_TO_FILE`` asks for log and result files."""
    return os.environ.get("WRITE_TO_FILE", "").strip().lower() == "true"


def _notice(text: str, colour: str = CYAN) -> None:
    """Logger-internal status line, never mirrored to the log file."""
    print(_paint(f"[Logger] {text}", colour), file=sys.stderr)


def _emit(line: str) -> None:
    print(line, file=sys.stderr)
    stream = _log_file_var.get()
    if stream is not None:
        stream.write(_ANSI_RE.sub("", line) + "\n")
        stream.flush()


def _safe_name(domain: str) -> str:
    """Turn *domain* into a short filesystem-safe file stem."""
    stem = domain.removeprefix("www.")
    return re.sub(r"[^A-Za-z0-9.-]", "_", stem)[:50]


def _file_stamp(now: datetime) -> str:
    return now.strftime("%Y-%m-%d_%H-%M-%S")


def start_log_file(domain: str) -> None:
    """Open a fresh ``.logs/<domain>_<time>.log`` for the current audit."""
    if not file_output_enabled():
        return
    end_log_file()

    now = datetime.now(UTC)
    directory = pathlib.Path.cwd() / ".logs"
    path = directory / f"{_safe_name(domain)}_{_file_stamp(now)}.log"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        stream = path.open("a", encoding="utf-8")
    except OSError as exc:
        _notice(f"Cannot open log file: {exc}", RED)
        return

    rule = "=" * 80
    stream.write(f"\n{rule}\n  Consent Audit Log - {domain}\n  Started: {now.isoformat()}\n{rule}\n")
    _log_file_var.set(stream)
    _notice(f"Writing logs to: {path}")


def end_log_file() -> None:
    """Close the current audit's log file, if one is open."""
    stream = _log_file_var.get()
    if stream is None:
        return
    _log_file_var.set(None)
    try:
        stream.close()
    except OSError as exc:
        _notice(f"Cannot close log file: {exc}", YELLOW)


def save_result_file(domain: str, result_json: str) -> str | None:
    """Write the serialised audit result to ``.results/``.

    Returns the written path, or ``None`` when file output is off or
    the write failed.
    """
    if not file_output_enabled():
        return None

    directory = pathlib.Path.cwd() / ".results"
    path = directory / f"{_safe_name(domain)}_{_file_stamp(datetime.now(UTC))}.json"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        path.write_text(result_json, encoding="utf-8")
    except OSError as exc:
        _notice(f"Cannot save result: {exc}", RED)
        return None
    _notice(f"Result saved to: {path}")
    return str(path)


# ============================================================================
# Formatting
# ============================================================================


def _clock() -> str:
    """Current UTC wall-clock time as ``HH:MM:SS.mmm``."""
    return datetime.now(UTC).isoformat(timespec="milliseconds")[11:23]


def _format_duration(ms: float) -> str:
    if ms < 1000:
        return f"{int(ms)}ms"
    if ms < 60_000:
        return f"{ms / 1000:.2f}s"
    minutes, rest = divmod(ms, 60_000)
    return f"{int(minutes)}m {rest / 1000:.1f}s"


def _render(value: object) -> str:
    if value is None:
        return _paint("None", DIM)
    if isinstance(value, bool):
        return _paint(str(value), GREEN if value else RED)
    if isinstance(value, (int, float)):
        return _paint(str(value), YELLOW)
    if isinstance(value, str):
        if len(value) > MAX_VALUE_CHARS:
            value = value[: MAX_VALUE_CHARS - 3] + "..."
        return _paint(f'"{value}"', GREEN)
    if isinstance(value, (list, tuple, set, dict)):
        unit = "keys" if isinstance(value, dict) else "items"
        return _paint(f"[{len(value)} {unit}]", CYAN)
    return str(value)


def _format_line(level: str, context: str, message: str, fields: Fields | None) -> str:
    style = _LEVELS[level]
    parts = [
        _paint(f"[{_clock()}]", GRAY),
        _paint(style.symbol, style.colour),
        _paint(f"[{context}]", BOLD),
        message,
    ]
    parts.extend(f"{_paint(f'{key}=', DIM)}{_render(value)}" for key, value in (fields or {}).items())
    return " ".join(parts)


# ============================================================================
# Logger
# ============================================================================


class Logger:
    """Named console logger with per-audit timers."""

    def __init__(self, context: str = "ConsentAudit") -> None:
        self._context = context

    def _log(self, level: str, message: str, fields: Fields | None = None) -> None:
        _emit(_format_line(level, self._context, message, fields))

    def info(self, message: str, fields: Fields | None = None) -> None:
        self._log("info", message, fields)

    def success(self, message: str, fields: Fields | None = None) -> None:
        self._log("success", message, fields)

    def warn(self, message: str, fields: Fields | None = None) -> None:
        self._log("warn", message, fields)

    def error(self, message: str, fields: Fields | None = None) -> None:
        self._log("error", message, fields)

    def debug(self, message: str, fields: Fields | None = None) -> None:
        self._log("debug", message, fields)

    def start_timer(self, label: str) -> None:
        """Start the timer *label*, scoped to this logger and the current audit."""
        _timers()[(self._context, label)] = (time.monotonic(), _clock())
        self._log("timing", f"Starting: {label}")

    def end_timer(self, label: str, message: str | None = None) -> float:
        """Stop the timer *label*, log and return its duration in milliseconds."""
        entry = _timers().pop((self._context, label), None)
        if entry is None:
            self.warn(f'Timer "{label}" was not started')
            return 0.0
        started, started_at = entry
        elapsed_ms = (time.monotonic() - started) * 1000
        took = _paint(_format_duration(elapsed_ms), MAGENTA)
        self._log(
            "timing",
            f"{message or f'Completed: {label}'} {_paint('took', DIM)} {took} {_paint(f'(started {started_at})', DIM)}",
        )
        return elapsed_ms

    def section(self, title: str) -> None:
        """Print a banner that opens a major stage."""
        rule = _paint("─" * 60, BLUE)
        for line in ("", rule, _paint(f"  {title}", BLUE, BOLD), rule, ""):
            _emit(line)

    def subsection(self, title: str) -> None:
        """Print a smaller heading inside a stage."""
        _emit("\n" + _paint(f"  ▸ {title}", CYAN))


def create_logger(context: str) -> Logger:
    """Create a logger for a specific module."""
    return Logger(context)
