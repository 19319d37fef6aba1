"""Tests for consent_audit.utils.serialization — camelCase conversion."""

from __future__ import annotations

import pydantic
import pytest

from consent_audit.models import signals
from consent_audit.utils.serialization import snake_to_camel, to_camel_dict


class TestSnakeToCamel:
    """Tests for snake_to_camel()."""

    @pytest.mark.parametrize(
        ("input_str", "expected"),
        [
            ("my_field_name", "myFieldName"),
            ("single", "single"),
            ("a_b_c", "aBC"),
            ("has_reject_button", "hasRejectButton"),
            ("is_eu", "isEu"),
            ("tc_string", "tcString"),
            ("cookie_consent_test", "cookieConsentTest"),
        ],
    )
    def test_conversion(self, input_str: str, expected: str) -> None:
        assert snake_to_camel(input_str) == expected

    def test_empty_string(self) -> None:
        assert snake_to_camel("") == ""


class TestToCamelDict:
    def test_nested_keys_converted(self) -> None:
        result = to_camel_dict(signals.TrackingTagsResult())
        assert "marketingParameters" in result
        assert "serverSide" in result
        assert "firstPartyEndpoints" in result["serverSide"]

    def test_populate_by_name(self) -> None:
        banner = signals.CookieBannerResult(detected=True, has_accept_button=True)
        assert to_camel_dict(banner)["hasAcceptButton"] is True

    def test_populate_by_alias(self) -> None:
        banner = signals.CookieBannerResult.model_validate({"detected": True, "hasRejectButton": True})
        assert banner.has_reject_button is True

    def test_frozen(self) -> None:
        banner = signals.CookieBannerResult()
        with pytest.raises(pydantic.ValidationError):
            banner.detected = True  # type: ignore[misc]
