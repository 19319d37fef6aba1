"""Tests for consent_audit.scoring.dma — gatekeeper detection and DMA checks."""

from __future__ import annotations

from conftest import ga4_tag

from consent_audit.models import signals
from consent_audit.scoring import dma


def _meta_tag() -> signals.TagDetection:
    return signals.TagDetection(
        platform="meta-pixel", name="Meta Pixel", category="advertising", tier="major", gatekeeper="Meta"
    )


def _statuses(checklist) -> dict[str, str]:
    return {c.id: c.status for c in checklist.checks}


class TestGatekeepers:
    def test_fixed_order(self, make_signals) -> None:
        found = dma.detect_gatekeepers(make_signals(tags=[_meta_tag(), ga4_tag()]))
        assert [g.name for g in found] == ["Google", "Meta"]
        assert found[0].services == ["Google Analytics"]

    def test_non_gatekeeper_tags_are_ignored(self, make_signals) -> None:
        tag = signals.TagDetection(platform="hotjar", name="Hotjar", category="session-replay", tier="secondary")
        assert dma.detect_gatekeepers(make_signals(tags=[tag])) == []


class TestEvaluate:
    def test_not_applicable_without_gatekeepers(self, make_signals) -> None:
        checklist = dma.evaluate(make_signals())
        assert not checklist.applicable
        assert checklist.checks == []

    def test_google_with_consent_mode_v2(self, make_signals, consent_mode_v2) -> None:
        checklist = dma.evaluate(make_signals(tags=[ga4_tag()], consent_mode=consent_mode_v2))
        assert checklist.applicable
        assert _statuses(checklist) == {
            "dma_consent_google": "compliant",
            "dma_data_combination_google": "compliant",
        }
        assert checklist.summary.compliant == 2

    def test_google_v2_without_update(self, make_signals, consent_mode_v2) -> None:
        mode = consent_mode_v2.model_copy(update={"update_consent": signals.ConsentModeUpdate()})
        checklist = dma.evaluate(make_signals(tags=[ga4_tag()], consent_mode=mode))
        check = checklist.checks[0]
        assert check.status == "requires_review"
        assert check.recommendation

    def test_google_with_outdated_consent_mode(self, make_signals) -> None:
        mode = signals.ConsentModeResult(detected=True, version="v1")
        checklist = dma.evaluate(make_signals(tags=[ga4_tag()], consent_mode=mode))
        assert _statuses(checklist) == {
            "dma_consent_google": "non_compliant",
            "dma_data_combination_google": "requires_review",
        }

    def test_meta_without_banner(self, make_signals) -> None:
        checklist = dma.evaluate(make_signals(tags=[_meta_tag()]))
        assert _statuses(checklist) == {
            "dma_consent_meta": "non_compliant",
            "dma_data_combination_meta": "non_compliant",
            "dma_encryption_meta": "requires_review",
        }
        assert checklist.summary.non_compliant == 2
        assert checklist.summary.requires_review == 1

    def test_meta_encryption_with_capi(self, make_signals, balanced_banner) -> None:
        tracking_tags = signals.TrackingTagsResult(
            tags=[_meta_tag()],
            server_side=signals.ServerSideTracking(
                detected=True, summary=signals.ServerSideSummary(has_meta_capi=True)
            ),
        )
        checklist = dma.evaluate(make_signals(tracking_tags=tracking_tags, banner=balanced_banner))
        encryption = next(c for c in checklist.checks if c.id == "dma_encryption_meta")
        assert "Server-Side API" in encryption.details
        assert _statuses(checklist)["dma_consent_meta"] == "requires_review"

    def test_other_gatekeeper_with_tcf(self, make_signals) -> None:
        tag = signals.TagDetection(
            platform="tiktok-pixel", name="TikTok Pixel", category="advertising", tier="major", gatekeeper="ByteDance"
        )
        tcf = signals.TcfResult(detected=True)
        checklist = dma.evaluate(make_signals(tags=[tag], tcf=tcf))
        assert _statuses(checklist)["dma_consent_bytedance"] == "requires_review"
        assert checklist.checks[0].service == "TikTok Pixel"
