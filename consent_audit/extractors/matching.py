"""
Generic declarative pattern matching shared by all extractors.

Each extractor describes what it looks for as a table of
``PatternRule`` entries (signal name → compiled regex).  The helpers
here are the only code that runs those tables, so adding a platform
or CMP is a data change.
"""

from __future__ import annotations

import dataclasses
import re
from typing import Iterable, Mapping


@dataclasses.dataclass(frozen=True)
class PatternRule:
    """One regex that, when it matches, reports *signal*."""

    signal: str
    pattern: re.Pattern[str]


def compile_table(
    table: Mapping[str, Iterable[str]],
    *,
    literal: bool = False,
    flags: int = re.IGNORECASE,
) -> tuple[PatternRule, ...]:
    """Compile a ``signal → patterns`` mapping into ordered rules.

    Args:
        table: Signals in priority order, each with its patterns.
        literal: Treat patterns as plain substrings.
        flags: Regex flags applied to every pattern.
    """
    rules: list[PatternRule] = []
    for signal, patterns in table.items():
        for raw in patterns:
            source = re.escape(raw) if literal else raw
            rules.append(PatternRule(signal=signal, pattern=re.compile(source, flags)))
    return tuple(rules)


def first_signal(rules: Iterable[PatternRule], text: str) -> str | None:
    """Return the signal of the first rule (in table order) that matches *text*."""
    for rule in rules:
        if rule.pattern.search(text):
            return rule.signal
    return None


def matched_signals(rules: Iterable[PatternRule], text: str) -> list[str]:
    """Return every distinct matching signal, in table order."""
    seen: list[str] = []
    for rule in rules:
        if rule.signal not in seen and rule.pattern.search(text):
            seen.append(rule.signal)
    return seen


def any_match(patterns: Iterable[re.Pattern[str]], text: str) -> bool:
    """Return ``True`` if any of *patterns* matches *text*."""
    return any(p.search(text) for p in patterns)


def any_match_in(patterns: Iterable[re.Pattern[str]], texts: Iterable[str]) -> bool:
    """Return ``True`` if any pattern matches any of *texts*."""
    compiled = list(patterns)
    return any(p.search(text) for text in texts for p in compiled)


def distinct_hits(patterns: Iterable[re.Pattern[str]], text: str) -> int:
    """Count how many of *patterns* match *text* at least once."""
    return sum(1 for p in patterns if p.search(text))


def extract_ids(pattern: re.Pattern[str], text: str, group: int = 1) -> list[str]:
    """Return the unique captured IDs of *pattern* in *text*, in order of appearance."""
    ids: list[str] = []
    for match in pattern.finditer(text):
        value = match.group(group)
        if value and value not in ids:
            ids.append(value)
    return ids


def compile_all(patterns: Iterable[str], flags: int = re.IGNORECASE) -> tuple[re.Pattern[str], ...]:
    """Compile a list of regex sources with shared flags."""
    return tuple(re.compile(p, flags) for p in patterns)
