"""
Consent control search.

An in-page script walks each relevant frame's document and its open
shadow roots up to a bounded depth and returns a flat list of
clickable candidates.  Ranking those candidates against the consent
vocabulary is a pure Python function so tie-breaks can be tested
without a browser.

Every candidate element is stamped with a ``data-consent-audit-id``
attribute; Playwright CSS locators pierce open shadow roots, so the
stamp alone is enough to click the element later in its frame.
"""

from __future__ import annotations

import dataclasses
import re
from typing import Any

from playwright import async_api

from consent_audit.consent import vocabulary
from consent_audit.utils import errors, logger
from consent_audit.utils import url as url_mod

log = logger.create_logger("ConsentSearch")

CANDIDATE_ATTRIBUTE = "data-consent-audit-id"
MAX_CANDIDATES_PER_FRAME = 400
# Longer texts are prose, not button labels.
MAX_LABEL_LENGTH = 80

# Match levels, best first.
MATCH_CMP_SELECTOR = 3
MATCH_EXACT_PHRASE = 2
MATCH_CONTAINED_PHRASE = 1
NO_MATCH = 0

_WALKER_JS = """([maxDepth, selectorPairs, attrName, limit, frameIndex]) => {
    const CLICKABLE = 'button, a, [role="button"], [role="link"], input[type="button"], '
        + 'input[type="submit"], [onclick], [tabindex]:not([tabindex="-1"])';
    const out = [];
    let counter = 0;

    const describe = (el) => {
        let s = el.tagName.toLowerCase();
        if (el.id) s += '#' + el.id;
        return s;
    };

    const visit = (root, depth, path) => {
        if (depth > maxDepth || out.length >= limit) return;
        let elements = [];
        try {
            elements = Array.from(root.querySelectorAll(CLICKABLE));
        } catch (e) {
            elements = [];
        }
        for (const el of elements) {
            if (out.length >= limit) break;
            const rect = el.getBoundingClientRect();
            const style = window.getComputedStyle(el);
            const visible = rect.width > 0 && rect.height > 0
                && style.visibility !== 'hidden' && style.display !== 'none'
                && parseFloat(style.opacity || '1') > 0;
            let matched = null;
            for (const [cmp, sel] of selectorPairs) {
                try {
                    if (el.matches(sel)) { matched = [cmp, sel]; break; }
                } catch (e) { /* selector not supported in this engine */ }
            }
            const id = frameIndex + '-' + (counter++);
            el.setAttribute(attrName, id);
            const tag = el.tagName.toLowerCase();
            out.push({
                path: path + ' > ' + describe(el),
                tag,
                role: el.getAttribute('role'),
                text: (el.innerText || el.textContent || el.value || '').trim().slice(0, 200),
                attrs: {
                    id: el.id || '',
                    class: typeof el.className === 'string' ? el.className : '',
                    ariaLabel: el.getAttribute('aria-label') || '',
                    title: el.getAttribute('title') || '',
                    value: tag === 'input' ? (el.value || '') : '',
                    type: el.getAttribute('type') || '',
                },
                area: Math.round(rect.width * rect.height),
                isNativeButton: tag === 'button' || tag === 'input',
                selector: '[' + attrName + '="' + id + '"]',
                depth,
                visible,
                cmp: matched ? matched[0] : null,
                matchedSelector: matched ? matched[1] : null,
            });
        }
        let hosts = [];
        try {
            hosts = Array.from(root.querySelectorAll('*')).filter((el) => el.shadowRoot);
        } catch (e) {
            hosts = [];
        }
        for (const host of hosts) {
            visit(host.shadowRoot, depth + 1, path + ' > ' + describe(host) + '::shadow');
        }
    };

    visit(document, 0, 'document');
    return out;
}"""


@dataclasses.dataclass(frozen=True)
class Candidate:
    """A clickable element found by the in-page walker."""

    path: str
    tag: str
    text: str
    selector: str
    frame_index: int
    depth: int = 0
    role: str | None = None
    attrs: dict[str, str] = dataclasses.field(default_factory=dict)
    area: int = 0
    is_native_button: bool = False
    visible: bool = True
    cmp: str | None = None
    matched_selector: str | None = None

    @property
    def label(self) -> str:
        """Normalised text used for phrase matching."""
        parts = [self.text, self.attrs.get("ariaLabel", ""), self.attrs.get("title", ""), self.attrs.get("value", "")]
        return normalize_text(next((p for p in parts if p and p.strip()), ""))


@dataclasses.dataclass(frozen=True)
class RankedCandidate:
    """A candidate with its match level for one intent."""

    candidate: Candidate
    level: int


def normalize_text(text: str) -> str:
    """Lower-case, collapse whitespace and trim punctuation at the ends."""
    collapsed = re.sub(r"\s+", " ", text or "").strip().lower()
    return collapsed.strip(" .!:;»«›‹>→✓×")


def _contains_phrase(text: str, phrase: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(phrase)}(?!\w)", text) is not None


def phrase_match_level(text: str, intent: vocabulary.Intent) -> int:
    """Match level of *text* against the phrases for *intent*."""
    label = normalize_text(text)
    if not label or len(label) > MAX_LABEL_LENGTH:
        return NO_MATCH
    if any(_contains_phrase(label, neg) for neg in vocabulary.NEGATIVE_PHRASES.get(intent, ())):
        return NO_MATCH
    if intent == "accept":
        # "Nur notwendige akzeptieren" is an essential-only control
        for other in ("reject", "essential"):
            if any(_contains_phrase(label, p) for p in vocabulary.phrases_for(other) if p not in vocabulary.EXACT_ONLY_PHRASES):
                return NO_MATCH

    phrases = vocabulary.phrases_for(intent)
    if label in phrases:
        return MATCH_EXACT_PHRASE
    for phrase in phrases:
        if phrase in vocabulary.EXACT_ONLY_PHRASES:
            continue
        if _contains_phrase(label, phrase):
            return MATCH_CONTAINED_PHRASE
    return NO_MATCH


def match_level(candidate: Candidate, intent: vocabulary.Intent, cmp_selectors: set[str] | None = None) -> int:
    """Match level of *candidate* for *intent*.

    A CMP selector hit beats an exact phrase, which beats a phrase
    contained in a longer label.
    """
    if candidate.matched_selector and (cmp_selectors is None or candidate.matched_selector in cmp_selectors):
        return MATCH_CMP_SELECTOR
    return phrase_match_level(candidate.label, intent)


def rank(
    candidates: list[Candidate],
    intent: vocabulary.Intent,
    cmp_selectors: set[str] | None = None,
) -> list[RankedCandidate]:
    """Return the visible candidates matching *intent*, best first.

    Order: match level, then native ``<button>``/``<input>`` before
    generic clickables, then larger rendered area, then shallower
    depth.  Ties keep document order.
    """
    ranked = [
        RankedCandidate(candidate=c, level=match_level(c, intent, cmp_selectors))
        for c in candidates
        if c.visible
    ]
    matched = [r for r in ranked if r.level > NO_MATCH]
    return sorted(
        matched,
        key=lambda r: (-r.level, not r.candidate.is_native_button, -r.candidate.area, r.candidate.depth),
    )


def _from_raw(item: dict[str, Any], frame_index: int, frame_depth: int) -> Candidate:
    return Candidate(
        path=item.get("path", ""),
        tag=item.get("tag", ""),
        text=item.get("text") or "",
        selector=item.get("selector", ""),
        frame_index=frame_index,
        depth=frame_depth + int(item.get("depth") or 0),
        role=item.get("role"),
        attrs={k: str(v) for k, v in (item.get("attrs") or {}).items()},
        area=int(item.get("area") or 0),
        is_native_button=bool(item.get("isNativeButton")),
        visible=bool(item.get("visible")),
        cmp=item.get("cmp"),
        matched_selector=item.get("matchedSelector"),
    )


def _frame_depth(frame: async_api.Frame) -> int:
    depth = 0
    parent = frame.parent_frame
    while parent is not None:
        depth += 1
        parent = parent.parent_frame
    return depth


def searchable_frames(page: async_api.Page, max_depth: int) -> list[tuple[int, async_api.Frame]]:
    """Frames worth searching: the main frame, same-origin frames and consent frames."""
    main = page.main_frame
    main_host = url_mod.extract_domain(main.url)
    frames: list[tuple[int, async_api.Frame]] = []
    for index, frame in enumerate(page.frames):
        if frame.is_detached():
            continue
        depth = _frame_depth(frame)
        if depth > max_depth:
            continue
        if frame == main:
            frames.append((index, frame))
            continue
        same_origin = url_mod.extract_domain(frame.url) == main_host
        if same_origin or vocabulary.is_consent_frame(frame, main):
            frames.append((index, frame))
    return frames


async def collect_candidates(
    page: async_api.Page,
    intent: vocabulary.Intent,
    max_depth: int = 5,
) -> list[Candidate]:
    """Walk every searchable frame and return the flat candidate list."""
    selector_pairs = [list(pair) for pair in vocabulary.cmp_selectors(intent)]
    candidates: list[Candidate] = []
    for index, frame in searchable_frames(page, max_depth):
        frame_depth = _frame_depth(frame)
        try:
            raw = await frame.evaluate(
                _WALKER_JS,
                [max_depth - frame_depth, selector_pairs, CANDIDATE_ATTRIBUTE, MAX_CANDIDATES_PER_FRAME, index],
            )
        except async_api.Error as exc:
            if errors.is_session_destroyed(exc):
                raise errors.SessionClosed(f"Browser session closed: {exc.message}") from exc
            # Frames detach while banners animate away.
            log.debug("Frame search failed", {"frame": frame.url[:80], "error": exc.message[:120]})
            continue
        candidates.extend(_from_raw(item, index, frame_depth) for item in raw or [])
    log.debug("Candidates collected", {"intent": intent, "count": len(candidates)})
    return candidates


async def find_best(
    page: async_api.Page,
    intent: vocabulary.Intent,
    max_depth: int = 5,
) -> RankedCandidate | None:
    """Return the best-ranked candidate for *intent*, if any."""
    candidates = await collect_candidates(page, intent, max_depth)
    ranked = rank(candidates, intent)
    return ranked[0] if ranked else None
