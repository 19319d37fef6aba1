"""Tests for consent_audit.scoring.calculator and the scoring pipeline."""

from __future__ import annotations

import pytest
from conftest import analyzed, ga4_tag, hotjar_tag

from consent_audit.models import consent, report, signals
from consent_audit.scoring import calculator, score_signals


def _issues(errors: int = 0, warnings: int = 0, infos: int = 0) -> list[report.Issue]:
    found: list[report.Issue] = []
    for severity, count in (("error", errors), ("warning", warnings), ("info", infos)):
        found.extend(
            report.Issue(severity=severity, category="general", title=f"{severity} {i}", description="x")
            for i in range(count)
        )
    return found


def _successful_experiment(**overrides: object) -> consent.ConsentExperimentResult:
    return consent.ConsentExperimentResult(
        analysis=consent.ExperimentAnalysis(consent_works_properly=True, reject_works_properly=True),
        **overrides,
    )


class TestClamp:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(-3, 0), (0, 0), (49.6, 50), (100, 100), (150, 100)],
    )
    def test_clamp(self, value: float, expected: int) -> None:
        assert calculator.clamp(value) == expected


class TestTrackingProfile:
    def test_none(self, make_signals) -> None:
        assert calculator.tracking_profile(make_signals()) == "none"

    def test_major_wins(self, make_signals) -> None:
        assert calculator.tracking_profile(make_signals(tags=[hotjar_tag(), ga4_tag()])) == "major"

    def test_secondary_only(self, make_signals) -> None:
        assert calculator.tracking_profile(make_signals(tags=[hotjar_tag()])) == "secondary-only"

    def test_server_side_only(self, make_signals) -> None:
        tracking_tags = signals.TrackingTagsResult(server_side=signals.ServerSideTracking(detected=True))
        assert calculator.tracking_profile(make_signals(tracking_tags=tracking_tags)) == "server-side-only"

    def test_unrecognised_tracking_cookies(self, make_signals) -> None:
        profile = calculator.tracking_profile(make_signals(cookies=[analyzed("_uetsid", "marketing")]))
        assert profile == "secondary-only"


class TestCalculateScore:
    def test_no_tracking_scores_zero(self, make_signals) -> None:
        breakdown = calculator.calculate_score(make_signals(), report.GdprChecklist(score=80), _issues(infos=1))
        assert breakdown.tracking_profile == "none"
        assert breakdown.tracking_score == 0
        assert breakdown.tracking_baseline == 0
        assert breakdown.penalties == 0
        assert breakdown.bonuses == 0
        assert breakdown.overall == 32
        assert breakdown.factors == ["Kein Tracking erkannt"]

    def test_penalties(self, make_signals) -> None:
        s = make_signals(tags=[ga4_tag()])
        breakdown = calculator.calculate_score(s, report.GdprChecklist(score=50), _issues(errors=2, warnings=1))
        assert breakdown.tracking_baseline == 100
        assert breakdown.penalties == 35
        assert breakdown.tracking_score == 65
        assert breakdown.overall == 59
        assert breakdown.factors == ["2 Fehler (-30)", "1 Warnung(en) (-5)"]

    def test_info_issues_are_free(self, make_signals) -> None:
        breakdown = calculator.calculate_score(
            make_signals(tags=[hotjar_tag()]), report.GdprChecklist(score=100), _issues(infos=4)
        )
        assert breakdown.tracking_score == calculator.BASELINES["secondary-only"]

    def test_tracking_score_is_clamped_at_zero(self, make_signals) -> None:
        breakdown = calculator.calculate_score(
            make_signals(tags=[ga4_tag()]), report.GdprChecklist(score=0), _issues(errors=8)
        )
        assert breakdown.tracking_score == 0
        assert breakdown.overall == 0

    def test_bonuses_are_clamped_at_hundred(self, make_signals, balanced_banner, consent_mode_v2) -> None:
        s = make_signals(
            tags=[ga4_tag()],
            banner=balanced_banner,
            consent_mode=consent_mode_v2,
            tcf=signals.TcfResult(detected=True, valid_tc_string=True),
            experiment=_successful_experiment(),
        )
        breakdown = calculator.calculate_score(s, report.GdprChecklist(score=100), [])
        assert breakdown.bonuses == 4 * calculator.BONUS
        assert breakdown.tracking_score == 100
        assert breakdown.overall == 100

    def test_bonuses_offset_penalties(self, make_signals, balanced_banner) -> None:
        s = make_signals(tags=[hotjar_tag()], banner=balanced_banner)
        breakdown = calculator.calculate_score(s, report.GdprChecklist(score=100), _issues(warnings=2))
        assert breakdown.tracking_score == 70 - 10 + 5
        assert breakdown.factors[-1] == "Akzeptieren und Ablehnen gleichwertig angeboten (+5)"

    def test_incomplete_experiment_earns_no_bonus(self, make_signals) -> None:
        s = make_signals(tags=[hotjar_tag()], experiment=_successful_experiment(error="Ablehnen-Test fehlgeschlagen"))
        breakdown = calculator.calculate_score(s, report.GdprChecklist(score=100), [])
        assert breakdown.bonuses == 0

    def test_server_side_baseline(self, make_signals) -> None:
        tracking_tags = signals.TrackingTagsResult(server_side=signals.ServerSideTracking(detected=True))
        breakdown = calculator.calculate_score(
            make_signals(tracking_tags=tracking_tags), report.GdprChecklist(score=100), []
        )
        assert breakdown.tracking_score == 85
        assert breakdown.overall == 91


class TestScoreSignals:
    def test_page_without_tracking(self, make_signals) -> None:
        scored = score_signals(make_signals())
        assert scored.breakdown.tracking_score == 0
        assert not scored.dma_checklist.applicable
        assert [i.title for i in scored.issues] == ["Kein Tracking erkannt"]
        assert scored.breakdown.overall == round(calculator.GDPR_WEIGHT * scored.gdpr_checklist.score)

    def test_tracking_without_banner(self, make_signals) -> None:
        scored = score_signals(make_signals(tags=[ga4_tag()]))
        assert scored.issues[0].title == "Kein Cookie-Banner erkannt"
        assert scored.breakdown.tracking_profile == "major"
        assert scored.breakdown.tracking_score < calculator.BASELINES["major"]

    def test_well_configured_site(self, make_signals, balanced_banner, consent_mode_v2) -> None:
        s = make_signals(
            tags=[ga4_tag()],
            banner=balanced_banner,
            consent_mode=consent_mode_v2,
            tcf=signals.TcfResult(detected=True, valid_tc_string=True),
        )
        scored = score_signals(s)
        assert all(i.severity != "error" for i in scored.issues)
        assert scored.dma_checklist.summary.compliant == 2
        breakdown = scored.breakdown
        expected = calculator.clamp(
            calculator.GDPR_WEIGHT * breakdown.gdpr_score + calculator.TRACKING_WEIGHT * breakdown.tracking_score
        )
        assert breakdown.overall == expected
        assert 0 <= breakdown.overall <= 100
