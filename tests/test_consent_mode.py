"""Tests for consent_audit.extractors.consent_mode — Google Consent Mode detection."""

from __future__ import annotations

import pytest

from consent_audit.extractors import consent_mode
from consent_audit.utils import errors

V2_DEFAULT = """
gtag('consent', 'default', {
  'ad_storage': 'denied',
  'analytics_storage': 'denied',
  'ad_user_data': 'denied',
  'ad_personalization': 'denied',
  'wait_for_update': 500,
  'region': ['DE', 'AT']
});
"""

ONETRUST_UPDATE = """
function OptanonWrapper() {
  gtag('consent', 'update', {'ad_storage': 'granted', 'analytics_storage': 'granted'});
}
"""

TCF_UPDATE = """
__tcfapi('addEventListener', 2, function (tcData) {
  if (tcData.eventStatus === 'useractioncomplete') {
    gtag('consent', 'update', {'ad_storage': 'granted'});
  }
});
"""


class TestAnalyze:
    def test_v2_default(self, make_crawl) -> None:
        result = consent_mode.analyze(make_crawl(inline=[V2_DEFAULT]))
        assert result.detected
        assert result.version == "v2"
        assert result.default_consent == {
            "ad_storage": "denied",
            "analytics_storage": "denied",
            "ad_user_data": "denied",
            "ad_personalization": "denied",
        }
        assert result.region_settings == ["DE", "AT"]
        assert result.wait_for_update == 500
        assert not result.update_consent.detected
        assert result.update_consent.update_trigger is None

    def test_v1(self, make_crawl) -> None:
        script = "gtag('consent', 'default', {'ad_storage': 'denied', 'analytics_storage': 'denied'});"
        result = consent_mode.analyze(make_crawl(inline=[script]))
        assert result.version == "v1"
        assert not result.parameters.ad_user_data

    def test_update_from_cmp_callback(self, make_crawl) -> None:
        result = consent_mode.analyze(make_crawl(inline=[V2_DEFAULT, ONETRUST_UPDATE]))
        update = result.update_consent
        assert update.detected
        assert update.update_trigger == "custom"
        assert update.triggered_after_banner
        assert update.update_settings["ad_storage"] == "granted"

    def test_update_from_tcf_listener(self, make_crawl) -> None:
        result = consent_mode.analyze(make_crawl(inline=[V2_DEFAULT, TCF_UPDATE]))
        assert result.update_consent.update_trigger == "tcf_api"

    def test_prose_does_not_count(self, make_crawl) -> None:
        html = "<p>We respect your consent. Consent mode and ad storage are explained below.</p>"
        assert not consent_mode.analyze(make_crawl(html=html)).detected

    def test_data_layer_arguments_object(self, make_crawl) -> None:
        data_layer = [{"0": "consent", "1": "default", "2": {"ad_storage": "denied", "ad_user_data": "denied"}}]
        result = consent_mode.analyze(make_crawl(data_layer=data_layer))
        assert result.detected
        assert result.version == "v2"
        assert result.default_consent["ad_storage"] == "denied"

    def test_data_layer_array_update(self, make_crawl) -> None:
        data_layer = [["consent", "update", {"analytics_storage": "granted"}]]
        result = consent_mode.analyze(make_crawl(data_layer=data_layer))
        assert result.update_consent.detected
        assert result.update_consent.update_settings == {"analytics_storage": "granted"}

    def test_malformed_data_layer_entry(self, make_crawl) -> None:
        with pytest.raises(errors.MalformedSignalInput):
            consent_mode.analyze(make_crawl(data_layer=[["consent", "update", "granted"]]))


class TestCheckCompleteness:
    def test_complete_v2(self, consent_mode_v2) -> None:
        completeness = consent_mode.check_completeness(consent_mode_v2)
        assert completeness.missing_v2_parameters == []
        assert completeness.has_proper_update_flow

    def test_missing_v2_parameters(self, make_crawl) -> None:
        script = "gtag('consent', 'default', {'ad_storage': 'denied'});"
        completeness = consent_mode.check_completeness(consent_mode.analyze(make_crawl(inline=[script])))
        assert completeness.missing_v2_parameters == ["ad_user_data", "ad_personalization"]
        assert not completeness.has_proper_update_flow
