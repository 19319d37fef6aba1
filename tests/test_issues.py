"""Tests for consent_audit.scoring.issues — user-facing findings."""

from __future__ import annotations

from conftest import analyzed, ga4_tag

from consent_audit.models import consent, crawl, signals
from consent_audit.scoring import issues


def _titles(found) -> list[str]:
    return [i.title for i in found]


class TestBannerIssues:
    def test_no_tracking_is_info(self, make_signals) -> None:
        found = issues.generate(make_signals())
        assert len(found) == 1
        assert found[0].severity == "info"
        assert found[0].title == "Kein Tracking erkannt"

    def test_tracking_without_banner_is_error(self, make_signals) -> None:
        found = issues.banner_issues(make_signals(tags=[ga4_tag()]))
        assert [(i.severity, i.title) for i in found] == [("error", "Kein Cookie-Banner erkannt")]

    def test_tracking_cookies_alone_need_a_banner(self, make_signals) -> None:
        found = issues.banner_issues(make_signals(cookies=[analyzed("_ga", "analytics")]))
        assert found[0].severity == "error"

    def test_banner_without_reject_or_settings(self, make_signals) -> None:
        banner = signals.CookieBannerResult(detected=True, has_accept_button=True)
        found = issues.banner_issues(make_signals(banner=banner))
        assert [i.severity for i in found] == ["warning", "info"]

    def test_balanced_banner_has_no_issues(self, make_signals, balanced_banner) -> None:
        assert issues.banner_issues(make_signals(banner=balanced_banner)) == []


class TestConsentSignals:
    def test_google_tags_without_consent_mode(self, make_signals) -> None:
        found = issues.consent_mode_issues(make_signals(tags=[ga4_tag()]))
        assert _titles(found) == ["Google Consent Mode nicht erkannt"]

    def test_v1_reports_missing_parameters(self, make_signals) -> None:
        mode = signals.ConsentModeResult(
            detected=True,
            version="v1",
            default_consent={"ad_storage": "denied"},
            parameters=signals.ConsentModeParameters(ad_storage=True),
        )
        found = issues.consent_mode_issues(make_signals(tags=[ga4_tag()], consent_mode=mode))
        assert _titles(found) == [
            "Google Consent Mode v1 erkannt",
            "Fehlende Consent Mode v2 Parameter",
            "Kein Consent Update erkannt",
        ]

    def test_complete_v2(self, make_signals, consent_mode_v2) -> None:
        assert issues.consent_mode_issues(make_signals(tags=[ga4_tag()], consent_mode=consent_mode_v2)) == []

    def test_consent_mode_ignored_without_google(self, make_signals) -> None:
        assert issues.consent_mode_issues(make_signals()) == []

    def test_tcf(self, make_signals) -> None:
        assert _titles(issues.tcf_issues(make_signals(tags=[ga4_tag()]))) == ["TCF nicht implementiert"]
        tcf = signals.TcfResult(detected=True)
        assert _titles(issues.tcf_issues(make_signals(tags=[ga4_tag()], tcf=tcf))) == ["Kein gültiger TC String"]
        valid = signals.TcfResult(detected=True, valid_tc_string=True)
        assert issues.tcf_issues(make_signals(tags=[ga4_tag()], tcf=valid)) == []


class TestCookieIssues:
    def test_cookies_without_banner(self, make_signals) -> None:
        cookies = [analyzed("_fbp", "marketing"), analyzed("_ga", "analytics", is_long_lived=True)]
        found = issues.cookie_issues(make_signals(cookies=cookies))
        assert [(i.severity, i.title) for i in found] == [
            ("error", "Marketing-Cookies ohne Consent"),
            ("warning", "Analytics-Cookies ohne Consent"),
            ("warning", "Sehr lange Cookie-Laufzeiten"),
        ]

    def test_banner_suppresses_consent_findings(self, make_signals, balanced_banner) -> None:
        found = issues.cookie_issues(make_signals(banner=balanced_banner, cookies=[analyzed("_fbp", "marketing")]))
        assert found == []


class TestExperimentIssues:
    def test_none(self) -> None:
        assert issues.experiment_issues(None) == []

    def test_tracking_before_consent(self) -> None:
        experiment = consent.ConsentExperimentResult(
            before=consent.CookieSnapshot(tracking_cookies_found=["_ga"]),
        )
        found = issues.experiment_issues(experiment)
        assert found[0].severity == "error"
        assert found[0].title == "Tracking vor Einwilligung"
        assert "_ga" in found[0].description

    def test_reclassified_reject_suppresses_pre_consent_issue(self) -> None:
        experiment = consent.ConsentExperimentResult(
            after_reject=consent.ConsentArmResult(
                button_found=True,
                click_successful=True,
                reclassified_as_accept=True,
                tracking_before_interaction=["_ga"],
            ),
        )
        found = issues.experiment_issues(experiment)
        assert _titles(found) == ["Speichern-Aktion wirkt wie Zustimmung"]

    def test_pre_interaction_tracking_in_reject_arm(self) -> None:
        experiment = consent.ConsentExperimentResult(
            after_reject=consent.ConsentArmResult(tracking_before_interaction=["_fbp"]),
        )
        assert _titles(issues.experiment_issues(experiment)) == ["Tracking vor Einwilligung"]

    def test_reject_not_respected(self) -> None:
        experiment = consent.ConsentExperimentResult(
            after_reject=consent.ConsentArmResult(
                button_found=True,
                click_successful=True,
                new_cookies=[crawl.RawCookie(name="_ga", value="1", domain=".example.com")],
            ),
            analysis=consent.ExperimentAnalysis(reject_works_properly=False),
        )
        found = issues.experiment_issues(experiment)
        assert found[0].title == "Ablehnung wird nicht respektiert"
        assert "_ga" in found[0].description

    def test_failed_clicks(self) -> None:
        experiment = consent.ConsentExperimentResult(
            after_accept=consent.ConsentArmResult(button_found=True),
            after_reject=consent.ConsentArmResult(button_found=True),
        )
        assert _titles(issues.experiment_issues(experiment)) == [
            "Akzeptieren-Klick fehlgeschlagen",
            "Ablehnen-Klick fehlgeschlagen",
        ]

    def test_incomplete_experiment_is_not_judged(self) -> None:
        experiment = consent.ConsentExperimentResult(
            after_reject=consent.ConsentArmResult(button_found=True, click_successful=True),
            error="Ablehnen-Test fehlgeschlagen: timeout",
        )
        found = issues.experiment_issues(experiment)
        assert [(i.severity, i.title) for i in found] == [("info", "Einwilligungstest unvollständig")]
        assert found[0].description == "Ablehnen-Test fehlgeschlagen: timeout"


class TestTrackingIssues:
    def test_multiple_and_legacy_ga_ids(self, make_signals) -> None:
        found = issues.tracking_issues(make_signals(tags=[ga4_tag(ids=["G-ABC123", "UA-12345-1"])]))
        assert _titles(found) == ["Mehrere Google Analytics IDs erkannt", "UA-Property erkannt"]

    def test_meta_via_gtm(self, make_signals) -> None:
        meta = signals.TagDetection(
            platform="meta-pixel",
            name="Meta Pixel",
            category="advertising",
            tier="major",
            gatekeeper="Meta",
            detection_methods=["network"],
            via_tag_manager=True,
        )
        found = issues.tracking_issues(make_signals(tags=[meta]))
        assert _titles(found) == ["Meta Pixel über GTM erkannt"]
        assert "network" in found[0].description

    def test_marketing_parameters(self, make_signals) -> None:
        tracking_tags = signals.TrackingTagsResult(
            marketing_parameters=signals.MarketingParameters(gclid=True, utm=True)
        )
        found = issues.tracking_issues(make_signals(tracking_tags=tracking_tags))
        assert found[0].severity == "info"
        assert "gclid, utm" in found[0].description

    def test_server_side(self, make_signals) -> None:
        server_side = signals.ServerSideTracking(
            detected=True,
            indicators=[
                signals.ServerSideIndicator(
                    type="sgtm",
                    confidence="high",
                    description="Server-Side Google Tag Manager auf eigener Domain",
                    evidence=["https://sgtm.example.com/g/collect"],
                )
            ],
            summary=signals.ServerSideSummary(has_server_side_gtm=True),
        )
        tracking_tags = signals.TrackingTagsResult(server_side=server_side)
        found = issues.server_side_issues(make_signals(tracking_tags=tracking_tags))
        assert _titles(found) == [
            "Server-Side Google Tag Manager erkannt",
            "Server-Side Tracking: Server-Side Google Tag Manager auf eigener Domain",
        ]
        assert all(i.severity == "info" for i in found)


class TestOtherIssues:
    def test_ecommerce_findings_are_forwarded(self, make_signals) -> None:
        data_layer = signals.DataLayerResult(
            has_data_layer=True,
            ecommerce=signals.EcommerceAnalysis(
                detected=True,
                issues=[
                    signals.EcommerceIssue(
                        severity="error", event="purchase", issue="Kein Transaktionswert", recommendation="value"
                    )
                ],
            ),
        )
        found = issues.ecommerce_issues(make_signals(data_layer=data_layer))
        assert [(i.severity, i.category, i.description) for i in found] == [("error", "ecommerce", "Event: purchase")]

    def test_third_party_listing_is_truncated(self, make_signals) -> None:
        unknown = [f"vendor{i}.io" for i in range(7)]
        third_party = signals.ThirdPartyDomainsResult(
            risk_assessment=signals.ThirdPartyRisk(high_risk_domains=["tiktok.com"], unknown_domains=unknown)
        )
        found = issues.third_party_issues(make_signals(third_party=third_party))
        assert [i.severity for i in found] == ["warning", "info"]
        assert "tiktok.com" in found[0].description
        assert found[1].description.endswith("vendor4.io und 2 weitere.")


class TestGenerate:
    def test_sorted_by_severity(self, make_signals) -> None:
        found = issues.generate(make_signals(tags=[ga4_tag()]))
        severities = [i.severity for i in found]
        assert severities == sorted(severities, key=["error", "warning", "info"].index)
        assert _titles(found)[:2] == ["Kein Cookie-Banner erkannt", "Google Consent Mode nicht erkannt"]
