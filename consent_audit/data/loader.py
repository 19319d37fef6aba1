"""
Data loader for the third-party domain reference tables.

The JSON data files live alongside this module and are parsed once,
on first use, into ``KnownDomain`` records.
"""

from __future__ import annotations

import json
import pathlib
from typing import Any

from consent_audit.models import signals

# Resolve path to the data directory (same directory as this module)
_DATA_DIR = pathlib.Path(__file__).resolve().parent

# ============================================================================
# JSON File Loading
# ============================================================================


def _load_json(relative_path: str) -> Any:
    """Load and parse a JSON file relative to the data directory.

    Raises:
        FileNotFoundError: If the JSON file does not exist.
        json.JSONDecodeError: If the file contains invalid JSON.
    """
    full_path = _DATA_DIR / relative_path
    if not full_path.exists():
        raise FileNotFoundError(f"Data file not found: {relative_path}")
    with open(full_path, encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as exc:
            raise json.JSONDecodeError(
                f"Invalid JSON in {relative_path}: {exc.msg}",
                exc.doc,
                exc.pos,
            ) from exc


def _load_domain_table(filename: str) -> dict[str, signals.KnownDomain]:
    raw: dict[str, dict[str, Any]] = _load_json(filename)
    return {key.lower(): signals.KnownDomain.model_validate(val) for key, val in raw.items()}


# ============================================================================
# Known Domains
# ============================================================================

_known_domains: dict[str, signals.KnownDomain] | None = None
_partial_domains: dict[str, signals.KnownDomain] | None = None


def get_known_domains() -> dict[str, signals.KnownDomain]:
    """Get the domain → reference entry table (lazy loaded and cached)."""
    global _known_domains
    if _known_domains is None:
        _known_domains = _load_domain_table("known_domains.json")
    return _known_domains


def get_partial_domains() -> dict[str, signals.KnownDomain]:
    """Get the hostname-fragment fallback table (lazy loaded and cached).

    Consulted only when neither the exact domain nor one of its
    parent domains is listed in :func:`get_known_domains`.
    """
    global _partial_domains
    if _partial_domains is None:
        _partial_domains = _load_domain_table("partial_domains.json")
    return _partial_domains


def find_known_domain(domain: str) -> signals.KnownDomain | None:
    """Look up *domain*: exact entry, then a listed parent domain, then a name fragment."""
    domain = domain.lower().lstrip(".")
    known = get_known_domains()
    if domain in known:
        return known[domain]
    for candidate, info in known.items():
        if domain.endswith("." + candidate):
            return info
    for fragment, info in get_partial_domains().items():
        if fragment in domain:
            return info
    return None
