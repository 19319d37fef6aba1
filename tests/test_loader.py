"""Tests for consent_audit.data.loader — reference table loading and lookup."""

from __future__ import annotations

import pytest

from consent_audit.data import loader
from consent_audit.models import signals


class TestLoadJson:
    def test_known_domains_file_exists(self) -> None:
        data = loader._load_json("known_domains.json")
        assert isinstance(data, dict)
        assert len(data) > 0

    def test_missing_file_raises(self) -> None:
        with pytest.raises(FileNotFoundError):
            loader._load_json("nonexistent/file.json")


class TestTables:
    def test_known_domains(self) -> None:
        known = loader.get_known_domains()
        assert all(isinstance(v, signals.KnownDomain) for v in known.values())
        assert known["google-analytics.com"].company == "Google"

    def test_keys_are_lower_case(self) -> None:
        assert all(key == key.lower() for key in loader.get_known_domains())

    def test_cached(self) -> None:
        assert loader.get_known_domains() is loader.get_known_domains()
        assert loader.get_partial_domains() is loader.get_partial_domains()


class TestFindKnownDomain:
    def test_exact(self) -> None:
        info = loader.find_known_domain("facebook.net")
        assert info is not None
        assert info.company == "Meta"

    def test_parent_domain(self) -> None:
        info = loader.find_known_domain("stats.g.doubleclick.net")
        assert info is not None
        assert info.category == "advertising"

    def test_case_and_leading_dot(self) -> None:
        assert loader.find_known_domain(".Google-Analytics.com") is not None

    def test_fragment_fallback(self) -> None:
        info = loader.find_known_domain("metrics.adobe-cdn.example")
        assert info is not None
        assert info.company == "Adobe"

    def test_unknown(self) -> None:
        assert loader.find_known_domain("tracker.unknown-vendor.io") is None
