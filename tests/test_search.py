"""Tests for consent_audit.consent.search — candidate matching and ranking."""

from __future__ import annotations

import pytest

from consent_audit.consent import search


def _candidate(text: str, **overrides) -> search.Candidate:
    fields = {
        "path": f"document > {text or 'element'}",
        "tag": "button",
        "text": text,
        "selector": f'[data-consent-audit-id="{text}"]',
        "frame_index": 0,
        "is_native_button": True,
        "area": 1000,
    }
    fields.update(overrides)
    return search.Candidate(**fields)


class TestNormalizeText:
    def test_collapses_and_lowercases(self) -> None:
        assert search.normalize_text("  Alle\n  AKZEPTIEREN  ") == "alle akzeptieren"

    def test_strips_decoration(self) -> None:
        assert search.normalize_text("Akzeptieren »") == "akzeptieren"


class TestPhraseMatchLevel:
    @pytest.mark.parametrize(
        ("text", "intent", "level"),
        [
            ("Alle akzeptieren", "accept", search.MATCH_EXACT_PHRASE),
            ("Akzeptieren und schließen", "accept", search.MATCH_CONTAINED_PHRASE),
            ("Alle ablehnen", "reject", search.MATCH_EXACT_PHRASE),
            ("Nur notwendige Cookies", "essential", search.MATCH_EXACT_PHRASE),
            ("Auswahl speichern", "save", search.MATCH_EXACT_PHRASE),
            ("Cookie settings", "settings", search.MATCH_EXACT_PHRASE),
        ],
    )
    def test_levels(self, text: str, intent: str, level: int) -> None:
        assert search.phrase_match_level(text, intent) == level  # type: ignore[arg-type]

    def test_negative_phrase_blocks_accept(self) -> None:
        assert search.phrase_match_level("Nicht akzeptieren", "accept") == search.NO_MATCH

    def test_essential_label_is_not_accept(self) -> None:
        assert search.phrase_match_level("Nur notwendige akzeptieren", "accept") == search.NO_MATCH

    def test_exact_only_phrase_not_contained(self) -> None:
        assert search.phrase_match_level("OK", "accept") == search.MATCH_EXACT_PHRASE
        assert search.phrase_match_level("Book now", "accept") == search.NO_MATCH

    def test_long_prose_ignored(self) -> None:
        prose = "Wir verwenden Cookies, und wenn Sie auf akzeptieren klicken, " * 3
        assert search.phrase_match_level(prose, "accept") == search.NO_MATCH

    def test_whole_word_only(self) -> None:
        assert search.phrase_match_level("Rejection letters", "reject") == search.NO_MATCH


class TestCandidateLabel:
    def test_falls_back_to_aria_label(self) -> None:
        candidate = _candidate("", attrs={"ariaLabel": "Alle ablehnen"})
        assert candidate.label == "alle ablehnen"


class TestRank:
    def test_cmp_selector_beats_phrase(self) -> None:
        phrase = _candidate("Alle akzeptieren")
        cmp = _candidate("", matched_selector="#onetrust-accept-btn-handler", cmp="OneTrust")
        ranked = search.rank([phrase, cmp], "accept")
        assert ranked[0].candidate is cmp
        assert ranked[0].level == search.MATCH_CMP_SELECTOR

    def test_tie_breaks(self) -> None:
        div = _candidate("Alle akzeptieren", tag="div", is_native_button=False, area=5000, path="a")
        button = _candidate("Alle akzeptieren", area=500, path="b")
        contained = _candidate("Akzeptieren und schließen", path="c")
        bigger = _candidate("Alle akzeptieren", area=900, path="d")
        ranked = search.rank([div, contained, button, bigger], "accept")
        assert [r.candidate.path for r in ranked] == ["d", "b", "a", "c"]

    def test_shallower_wins_on_equal_area(self) -> None:
        deep = _candidate("Ablehnen", depth=3, path="deep")
        shallow = _candidate("Ablehnen", depth=1, path="shallow")
        ranked = search.rank([deep, shallow], "reject")
        assert ranked[0].candidate.path == "shallow"

    def test_invisible_and_unmatched_dropped(self) -> None:
        hidden = _candidate("Alle akzeptieren", visible=False)
        other = _candidate("Newsletter")
        assert search.rank([hidden, other], "accept") == []

    def test_document_order_kept_on_full_tie(self) -> None:
        first = _candidate("Ablehnen", path="first")
        second = _candidate("Ablehnen", path="second")
        ranked = search.rank([first, second], "reject")
        assert [r.candidate.path for r in ranked] == ["first", "second"]
