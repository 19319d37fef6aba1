"""Tests for consent_audit.extractors.tcf — IAB TCF detection."""

from __future__ import annotations

import pytest

from consent_audit.extractors import tcf
from consent_audit.models import crawl
from consent_audit.utils import errors

TC_STRING = "CPXxRfAPXxRfAAfKABENB-CgAAAAAAAAAAYgAAAAAAAA.YAAAAAAAAAAA"


class TestIsValidTcString:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (TC_STRING, True),
            (None, False),
            ("", False),
            ("CPshort", False),
            ("CPXxRfAPXxRfAAfKABENB CgAAAAAAAAAAYgAAAA", False),
            ("CPXxRf.AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", False),
            ("BOEFEAyOEFEAyAHABDENAI4AAAB9vABAASA", False),
            ("abcdefghijklmnopqrstuvwxyz0123456789ABCD", False),
        ],
    )
    def test_validation(self, value: str | None, expected: bool) -> None:
        assert tcf.is_valid_tc_string(value) is expected


class TestAnalyze:
    def test_api_data(self, make_crawl) -> None:
        tcf_data = {"tcString": TC_STRING, "cmpId": 28, "gdprApplies": True, "tcfPolicyVersion": 4}
        result = tcf.analyze(make_crawl(has_tcf_api=True, tcf_data=tcf_data))
        assert result.detected
        assert result.version == "2.2"
        assert result.cmp_id == 28
        assert result.cmp_name == "OneTrust"
        assert result.gdpr_applies is True
        assert result.valid_tc_string
        assert result.detection_methods == ["api"]

    def test_older_policy_version(self, make_crawl) -> None:
        tcf_data = {"tcString": TC_STRING, "cmpId": "7", "tcfPolicyVersion": 2}
        result = tcf.analyze(make_crawl(has_tcf_api=True, tcf_data=tcf_data))
        assert result.version == "2.0"
        assert result.cmp_name == "Didomi"

    def test_cookie(self, make_crawl) -> None:
        cookie = crawl.RawCookie(name="euconsent-v2", value=TC_STRING, domain=".example.com")
        result = tcf.analyze(make_crawl(cookies=[cookie]))
        assert result.detection_methods == ["cookie"]
        assert result.version == "2"
        assert result.tc_string == TC_STRING

    def test_legacy_cookie(self, make_crawl) -> None:
        cookie = crawl.RawCookie(name="euconsent", value=TC_STRING, domain=".example.com")
        assert tcf.analyze(make_crawl(cookies=[cookie])).version == "1"

    def test_invalid_cookie_value(self, make_crawl) -> None:
        cookie = crawl.RawCookie(name="euconsent-v2", value="abc", domain=".example.com")
        result = tcf.analyze(make_crawl(cookies=[cookie]))
        assert result.detected
        assert not result.valid_tc_string

    def test_v1_consent_string_is_not_a_valid_tc_string(self, make_crawl) -> None:
        cookie = crawl.RawCookie(name="euconsent", value="BOEFEAyOEFEAyAHABDENAI4AAAB9vABAASA", domain=".example.com")
        result = tcf.analyze(make_crawl(cookies=[cookie]))
        assert result.detected
        assert result.version == "1"
        assert not result.valid_tc_string

    def test_token_in_content(self, make_crawl) -> None:
        script = f"window.__tc = '{TC_STRING}';"
        result = tcf.analyze(make_crawl(inline=[script]))
        assert result.detection_methods == ["tc-string"]
        assert result.tc_string == TC_STRING

    def test_not_detected(self, make_crawl) -> None:
        result = tcf.analyze(make_crawl(html="<p>Hello</p>"))
        assert not result.detected
        assert result.detection_methods == []

    def test_non_numeric_cmp_id(self, make_crawl) -> None:
        with pytest.raises(errors.MalformedSignalInput):
            tcf.analyze(make_crawl(has_tcf_api=True, tcf_data={"cmpId": "abc"}))

    def test_boolean_cmp_id(self, make_crawl) -> None:
        with pytest.raises(errors.MalformedSignalInput):
            tcf.analyze(make_crawl(has_tcf_api=True, tcf_data={"cmpId": True}))
