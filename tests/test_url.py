"""Tests for consent_audit.utils.url — URL normalisation and domain helpers."""

from __future__ import annotations

import pytest

from consent_audit.utils import errors
from consent_audit.utils.url import (
    extract_domain,
    get_base_domain,
    is_same_site,
    is_third_party,
    normalize_url,
    query_parameter_names,
)

# ── normalize_url ───────────────────────────────────────────────


class TestNormalizeUrl:
    """Tests for normalize_url()."""

    def test_adds_https_scheme(self) -> None:
        assert normalize_url("example.com") == "https://example.com"

    def test_keeps_http_scheme(self) -> None:
        assert normalize_url("http://example.com/path") == "http://example.com/path"

    def test_strips_whitespace(self) -> None:
        assert normalize_url("  https://example.com  ") == "https://example.com"

    def test_empty_raises(self) -> None:
        with pytest.raises(errors.InvalidUrl, match="Ungültige URL"):
            normalize_url("   ")

    def test_unsupported_scheme_raises(self) -> None:
        with pytest.raises(errors.InvalidUrl):
            normalize_url("ftp://example.com")

    def test_space_in_host_raises(self) -> None:
        with pytest.raises(errors.InvalidUrl):
            normalize_url("exa mple.com")


# ── extract_domain ──────────────────────────────────────────────


class TestExtractDomain:
    """Tests for extract_domain()."""

    def test_simple_url(self) -> None:
        assert extract_domain("https://example.com/path") == "example.com"

    def test_url_with_port(self) -> None:
        assert extract_domain("https://example.com:8080/path") == "example.com"

    def test_url_with_subdomain(self) -> None:
        assert extract_domain("https://www.example.com/path") == "www.example.com"

    def test_empty_string_returns_unknown(self) -> None:
        assert extract_domain("") == "unknown"

    def test_url_without_scheme(self) -> None:
        # urlparse without scheme treats the whole thing as path
        assert extract_domain("example.com") == "unknown"


# ── get_base_domain ─────────────────────────────────────────────


class TestGetBaseDomain:
    """Tests for get_base_domain()."""

    def test_strips_www(self) -> None:
        assert get_base_domain("www.example.com") == "example.com"

    def test_subdomain(self) -> None:
        assert get_base_domain("sub.example.com") == "example.com"

    def test_cookie_domain_leading_dot(self) -> None:
        assert get_base_domain(".example.com") == "example.com"

    def test_lowercases(self) -> None:
        assert get_base_domain("WWW.EXAMPLE.COM") == "example.com"

    def test_single_label(self) -> None:
        assert get_base_domain("localhost") == "localhost"

    @pytest.mark.parametrize(
        ("domain", "expected"),
        [
            ("example.co.uk", "example.co.uk"),
            ("deep.sub.example.co.uk", "example.co.uk"),
            ("shop.example.co.at", "example.co.at"),
        ],
    )
    def test_two_part_tlds(self, domain: str, expected: str) -> None:
        assert get_base_domain(domain) == expected


# ── is_same_site / is_third_party ───────────────────────────────


class TestThirdParty:
    def test_same_site_subdomains(self) -> None:
        assert is_same_site("cdn.example.com", "www.example.com")

    def test_different_sites(self) -> None:
        assert not is_same_site("google-analytics.com", "www.example.com")

    def test_third_party_request(self) -> None:
        assert is_third_party("https://www.googletagmanager.com/gtm.js", "https://www.example.com/")

    def test_first_party_request(self) -> None:
        assert not is_third_party("https://static.example.com/app.js", "https://www.example.com/")

    def test_unknown_domain_is_third_party(self) -> None:
        assert is_third_party("data:text/plain,hi", "https://www.example.com/")


class TestQueryParameterNames:
    def test_lowercases_names(self) -> None:
        assert query_parameter_names("https://a.com/?GCLID=1&utm_source=x") == {"gclid", "utm_source"}

    def test_blank_values_kept(self) -> None:
        assert query_parameter_names("https://a.com/?fbclid=") == {"fbclid"}

    def test_no_query(self) -> None:
        assert query_parameter_names("https://a.com/") == set()
