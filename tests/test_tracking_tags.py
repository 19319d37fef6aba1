"""Tests for consent_audit.extractors.tracking_tags — platform, parameter and server-side detection."""

from __future__ import annotations

from consent_audit.extractors import tracking_tags

GTAG_SCRIPT = "https://www.googletagmanager.com/gtag/js?id=G-ABC1234"
GTM_SCRIPT = "https://www.googletagmanager.com/gtm.js?id=GTM-AB12CD"
META_PIXEL_REQUEST = "https://www.facebook.com/tr/?id=123456789012345&ev=PageView"
FBEVENTS_SCRIPT = "https://connect.facebook.net/en_US/fbevents.js"


def _platforms(result) -> list[str]:
    return [t.platform for t in result.tags]


class TestPlatformDetection:
    def test_empty_page(self, make_crawl) -> None:
        result = tracking_tags.analyze(make_crawl())
        assert result.tags == []
        assert not result.server_side.detected

    def test_ga4_via_gtag_script(self, make_crawl) -> None:
        result = tracking_tags.analyze(make_crawl(scripts=[GTAG_SCRIPT]))
        assert _platforms(result) == ["google-analytics"]
        tag = result.tags[0]
        assert tag.tier == "major"
        assert tag.gatekeeper == "Google"
        assert tag.detection_methods == ["script"]
        assert tag.ids == ["G-ABC1234"]
        assert not tag.via_tag_manager

    def test_tag_seen_only_on_network_is_attributed_to_gtm(self, make_crawl) -> None:
        result = tracking_tags.analyze(make_crawl(scripts=[GTM_SCRIPT], requests=[META_PIXEL_REQUEST]))
        by_platform = {t.platform: t for t in result.tags}
        assert set(by_platform) == {"google-tag-manager", "meta-pixel"}
        assert by_platform["google-tag-manager"].ids == ["GTM-AB12CD"]
        assert not by_platform["google-tag-manager"].via_tag_manager
        assert by_platform["meta-pixel"].detection_methods == ["network"]
        assert by_platform["meta-pixel"].via_tag_manager

    def test_script_tag_is_not_attributed_to_gtm(self, make_crawl) -> None:
        result = tracking_tags.analyze(make_crawl(scripts=[GTM_SCRIPT, GTAG_SCRIPT]))
        ga = next(t for t in result.tags if t.platform == "google-analytics")
        assert not ga.via_tag_manager

    def test_without_gtm_nothing_is_attributed(self, make_crawl) -> None:
        result = tracking_tags.analyze(make_crawl(requests=[META_PIXEL_REQUEST]))
        assert not result.tags[0].via_tag_manager

    def test_injected_script_tag_is_attributed_to_gtm(self, make_crawl) -> None:
        crawl_result = make_crawl(
            document_html=f'<html><head><script async src="{GTM_SCRIPT}"></script></head></html>',
            scripts=[GTM_SCRIPT, FBEVENTS_SCRIPT],
            requests=[META_PIXEL_REQUEST],
            has_fbq=True,
        )
        meta = tracking_tags.analyze(crawl_result).get("meta-pixel")
        assert meta is not None
        assert "script" in meta.detection_methods
        assert meta.via_tag_manager

    def test_pixel_in_served_document_is_not_attributed_to_gtm(self, make_crawl) -> None:
        crawl_result = make_crawl(
            document_html=f'<script src="{GTM_SCRIPT}"></script><script src="{FBEVENTS_SCRIPT}"></script>',
            scripts=[GTM_SCRIPT, FBEVENTS_SCRIPT],
            requests=[META_PIXEL_REQUEST],
        )
        meta = tracking_tags.analyze(crawl_result).get("meta-pixel")
        assert meta is not None
        assert not meta.via_tag_manager

    def test_gtag_global_alone_is_not_google_analytics(self, make_crawl) -> None:
        crawl_result = make_crawl(inline=["gtag('config', 'AW-123456789');"], has_gtag=True)
        assert "google-analytics" not in _platforms(tracking_tags.analyze(crawl_result))

    def test_gtag_global_with_measurement_id_is_google_analytics(self, make_crawl) -> None:
        crawl_result = make_crawl(inline=["gtag('config', 'G-ABC1234');"], has_gtag=True)
        ga = tracking_tags.analyze(crawl_result).get("google-analytics")
        assert ga is not None
        assert ga.detection_methods == ["global"]
        assert ga.ids == ["G-ABC1234"]

    def test_meta_pixel_id_from_network_request(self, make_crawl) -> None:
        crawl_result = make_crawl(
            requests=[META_PIXEL_REQUEST, "https://www.facebook.com/tr?ev=Lead&id=987654321098765&noscript=1"]
        )
        meta = tracking_tags.analyze(crawl_result).get("meta-pixel")
        assert meta is not None
        assert meta.detection_methods == ["network"]
        assert meta.ids == ["123456789012345", "987654321098765"]

    def test_meta_pixel_id_from_init_call(self, make_crawl) -> None:
        crawl_result = make_crawl(inline=["fbq('init', '123456789012345'); fbq('track', 'PageView');"], has_fbq=True)
        result = tracking_tags.analyze(crawl_result)
        meta = next(t for t in result.tags if t.platform == "meta-pixel")
        assert meta.detection_methods == ["global"]
        assert meta.ids == ["123456789012345"]

    def test_secondary_platform_from_additional_global(self, make_crawl) -> None:
        result = tracking_tags.analyze(make_crawl(additional={"hj": True}))
        assert _platforms(result) == ["hotjar"]
        assert result.tags[0].tier == "secondary"
        assert result.tags[0].gatekeeper is None


class TestMarketingParameters:
    def test_none(self, make_crawl) -> None:
        params = tracking_tags.detect_marketing_parameters(make_crawl())
        assert params.model_dump() == {name: False for name in params.model_dump()}

    def test_click_ids_and_utm_in_requests(self, make_crawl) -> None:
        crawl_result = make_crawl(
            requests=["https://www.example.com/landing?gclid=abc&utm_source=newsletter&utm_medium=email"]
        )
        params = tracking_tags.detect_marketing_parameters(crawl_result)
        assert params.gclid
        assert params.utm
        assert not params.fbclid

    def test_any_utm_parameter_sets_the_flag(self, make_crawl) -> None:
        crawl_result = make_crawl(requests=["https://cdn.other.net/x.js?utm_campaign=spring"])
        assert tracking_tags.detect_marketing_parameters(crawl_result).utm


class TestServerSide:
    def test_sgtm_on_first_party_subdomain(self, make_crawl) -> None:
        crawl_result = make_crawl(requests=["https://sgtm.example.com/g/collect?v=2&tid=G-ABC1234"])
        server_side = tracking_tags.detect_server_side(crawl_result)
        assert server_side.detected
        sgtm = next(i for i in server_side.indicators if i.type == "sgtm")
        assert sgtm.confidence == "high"
        assert sgtm.evidence == ["https://sgtm.example.com/g/collect"]
        assert server_side.summary.has_server_side_gtm
        assert server_side.first_party_endpoints == ["https://sgtm.example.com/g/collect"]
        assert not server_side.summary.has_first_party_proxy

    def test_sgtm_on_unremarkable_host_is_medium(self, make_crawl) -> None:
        crawl_result = make_crawl(requests=["https://www.example.com/g/collect?v=2"])
        sgtm = tracking_tags.detect_server_side(crawl_result).indicators[0]
        assert sgtm.type == "sgtm"
        assert sgtm.confidence == "medium"

    def test_third_party_collect_is_not_server_side(self, make_crawl) -> None:
        crawl_result = make_crawl(requests=["https://www.google-analytics.com/g/collect?v=2"])
        assert not tracking_tags.detect_server_side(crawl_result).detected

    def test_meta_event_id_deduplication(self, make_crawl) -> None:
        crawl_result = make_crawl(requests=["https://www.facebook.com/tr/?id=1&ev=Purchase&eid=order-42"])
        server_side = tracking_tags.detect_server_side(crawl_result)
        assert server_side.summary.has_meta_capi
        assert server_side.indicators[0].confidence == "low"

    def test_cookie_bridging_from_http_only_first_party_header(self, make_crawl) -> None:
        crawl_result = make_crawl(
            set_cookies=[
                ("https://www.example.com/", "FPID=abc; Path=/; HttpOnly; Secure"),
                ("https://www.example.com/", "_fbp=fb.1.2; Path=/"),
            ]
        )
        server_side = tracking_tags.detect_server_side(crawl_result)
        assert server_side.cookie_bridging
        bridging = server_side.indicators[0]
        assert bridging.type == "cookie_bridging"
        assert bridging.evidence == ["FPID via www.example.com"]

    def test_third_party_set_cookie_is_not_bridging(self, make_crawl) -> None:
        crawl_result = make_crawl(set_cookies=[("https://tracker.other.net/", "_ga=1; HttpOnly")])
        assert not tracking_tags.detect_server_side(crawl_result).cookie_bridging

    def test_result_carries_server_side(self, make_crawl) -> None:
        crawl_result = make_crawl(requests=["https://sgtm.example.com/g/collect?v=2"])
        assert tracking_tags.analyze(crawl_result).server_side.summary.has_server_side_gtm
