"""
Error taxonomy and helpers for consistent error message extraction.

Browser-facing failures are mapped onto a small set of typed
exceptions so the orchestrator can decide per class whether to
retry, degrade, or abort.  "No consent control found" is not an
error and has no exception here; it is a normal click outcome.
"""

from __future__ import annotations

import re


class AuditError(Exception):
    """Base class for all errors raised by the audit pipeline."""


class InvalidUrl(AuditError):
    """The URL to analyse could not be normalised into an http(s) URL."""


class NavigationTimeout(AuditError):
    """The page never reached its settled state within the timeout."""


class SessionClosed(AuditError):
    """The browser page, context, or process died mid-operation."""


class SessionUnavailable(AuditError):
    """A new isolated browser session could not be created."""


class NavigationFailed(AuditError):
    """Navigation failed for a reason other than a timeout (DNS, TLS, HTTP)."""


class MalformedSignalInput(AuditError):
    """An extractor received structurally invalid crawl data."""


# Message fragments Playwright and the Chromium protocol emit when the
# target (page, context, or browser process) has gone away.
_SESSION_DESTROYED_RE = re.compile(
    r"target (page, context or browser )?(has been |was )?closed"
    r"|browser has been closed"
    r"|context (has been |was )?closed"
    r"|page (has been |was )?closed"
    r"|session closed"
    r"|target crashed"
    r"|page crashed"
    r"|connection closed"
    r"|browser\.newcontext: target closed",
    re.IGNORECASE,
)


def is_session_destroyed(error: BaseException) -> bool:
    """Return ``True`` if *error* means the underlying session is gone.

    Matches the typed :class:`SessionClosed` / :class:`SessionUnavailable`
    exceptions as well as raw Playwright errors whose message carries
    one of the known "target closed" signatures.  Ordinary timeouts
    never match.
    """
    if isinstance(error, (SessionClosed, SessionUnavailable)):
        return True
    if isinstance(error, NavigationTimeout):
        return False
    return bool(_SESSION_DESTROYED_RE.search(str(error)))


def get_error_message(error: BaseException | object) -> str:
    """
    Safely extract an error message from an unknown error type.
    """
    if isinstance(error, Exception):
        return str(error) or type(error).__name__
    return "Unknown error"
