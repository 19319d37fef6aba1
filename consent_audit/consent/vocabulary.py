"""Declarative consent vocabulary: phrases, CMP selectors and CMP API calls.

Everything the consent engine matches against lives here as data so
new CMPs and phrasings are added without touching the search or
click code.  Phrases are lower-case and compared against normalised
element text.
"""

from __future__ import annotations

import dataclasses
from typing import Literal
from urllib import parse

from playwright import async_api

Intent = Literal["accept", "reject", "essential", "save", "settings"]

# ============================================================================
# Phrases (DE / EN)
# ============================================================================

PHRASES: dict[str, tuple[str, ...]] = {
    "accept": (
        "alle akzeptieren",
        "alle cookies akzeptieren",
        "akzeptieren",
        "alle zulassen",
        "alle erlauben",
        "zustimmen",
        "allen zustimmen",
        "einverstanden",
        "annehmen",
        "ich stimme zu",
        "verstanden",
        "accept all",
        "accept all cookies",
        "accept cookies",
        "accept",
        "allow all",
        "allow cookies",
        "i agree",
        "agree",
        "got it",
        "ok",
    ),
    "reject": (
        "alle ablehnen",
        "ablehnen",
        "nicht zustimmen",
        "nicht akzeptieren",
        "nein, danke",
        "verweigern",
        "reject all",
        "reject",
        "decline all",
        "decline",
        "deny",
        "refuse",
        "do not accept",
    ),
    "essential": (
        "nur notwendige",
        "nur notwendige cookies",
        "nur essenzielle",
        "nur essenziell",
        "nur erforderliche",
        "nur technisch notwendige",
        "weiter ohne einwilligung",
        "only essential",
        "only necessary",
        "essential only",
        "necessary only",
        "continue without accepting",
        "use necessary cookies only",
    ),
    "save": (
        "auswahl speichern",
        "einstellungen speichern",
        "auswahl bestätigen",
        "speichern",
        "save selection",
        "save preferences",
        "save settings",
        "confirm choices",
        "confirm my choices",
        "save",
    ),
    "settings": (
        "einstellungen",
        "cookie-einstellungen",
        "individuelle einstellungen",
        "mehr optionen",
        "anpassen",
        "details anzeigen",
        "settings",
        "cookie settings",
        "manage preferences",
        "manage options",
        "customize",
        "customise",
        "preferences",
        "more options",
    ),
}

# Keywords next to a checkbox/switch that mark a non-essential purpose.
NON_ESSENTIAL_TOGGLE_KEYWORDS: tuple[str, ...] = (
    "marketing",
    "analytics",
    "analyse",
    "advertising",
    "werbung",
    "personalization",
    "personalisierung",
    "statistics",
    "statistik",
    "tracking",
    "targeting",
    "performance",
    "social media",
    "externe medien",
)

# Phrases that would match an intent by substring but mean something else.
NEGATIVE_PHRASES: dict[str, tuple[str, ...]] = {
    "accept": ("nicht akzeptieren", "do not accept", "ohne akzeptieren", "without accepting"),
}

# Phrases allowed to match only when the element text equals them.
EXACT_ONLY_PHRASES: frozenset[str] = frozenset({"ok", "agree", "got it", "save", "speichern"})

# ============================================================================
# CMP definitions
# ============================================================================


@dataclasses.dataclass(frozen=True)
class CmpDefinition:
    """Selectors of one consent management platform."""

    name: str
    detect: tuple[str, ...]
    accept: tuple[str, ...] = ()
    reject: tuple[str, ...] = ()
    essential: tuple[str, ...] = ()
    settings: tuple[str, ...] = ()
    save: tuple[str, ...] = ()

    def selectors_for(self, intent: Intent) -> tuple[str, ...]:
        """Return the selectors registered for *intent*."""
        return getattr(self, intent)

CMP_DEFINITIONS: tuple[CmpDefinition, ...] = (
    CmpDefinition(
        name="Cookiebot",
        detect=("#CybotCookiebotDialog",),
        accept=(
            "#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowAll",
            "#CybotCookiebotDialogBodyButtonAccept",
            "#CybotCookiebotDialogBodyLevelButtonAccept",
            "a[data-cb-accept]",
        ),
        reject=(
            "#CybotCookiebotDialogBodyButtonDecline",
            "#CybotCookiebotDialogBodyLevelButtonLevelOptinDeclineAll",
        ),
        settings=("#CybotCookiebotDialogBodyLevelButtonCustomize", "#CybotCookiebotDialogNavDetails"),
        save=("#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowallSelection",),
    ),
    CmpDefinition(
        name="OneTrust",
        detect=("#onetrust-banner-sdk", "#onetrust-consent-sdk"),
        accept=("#onetrust-accept-btn-handler", "#accept-recommended-btn-handler"),
        reject=("#onetrust-reject-all-handler", ".ot-pc-refuse-all-handler"),
        settings=("#onetrust-pc-btn-handler",),
        save=(".save-preference-btn-handler",),
    ),
    CmpDefinition(
        name="Usercentrics",
        detect=("#usercentrics-root", "#uc-banner", "[data-testid='uc-default-banner']"),
        accept=("[data-testid='uc-accept-all-button']", "#uc-btn-accept-banner", ".uc-btn-accept-banner"),
        reject=("[data-testid='uc-deny-all-button']", "#uc-btn-deny-banner", ".uc-btn-deny-banner"),
        settings=("[data-testid='uc-more-button']",),
        save=("[data-testid='uc-save-button']",),
    ),
    CmpDefinition(
        name="CookieYes",
        detect=(".cky-consent-container",),
        accept=(".cky-btn-accept", "#cky-btn-accept"),
        reject=(".cky-btn-reject", "#cky-btn-reject"),
        settings=(".cky-btn-customize",),
        save=(".cky-btn-preferences",),
    ),
    CmpDefinition(
        name="Didomi",
        detect=("#didomi-popup", "#didomi-notice", "#didomi-host"),
        accept=("#didomi-notice-agree-button", "[data-testid='notice-accept-btn']"),
        reject=("#didomi-notice-disagree-button", "[data-testid='notice-disagree-btn']"),
        essential=(".didomi-continue-without-agreeing",),
        settings=("#didomi-notice-learn-more-button",),
        save=(".didomi-consent-popup-actions button[aria-label*='Save']",),
    ),
    CmpDefinition(
        name="Quantcast",
        detect=(".qc-cmp2-container", "#qc-cmp2-ui"),
        accept=("[data-testid='GDPR-CTA-accept']", ".qc-cmp2-summary-buttons button[mode='primary']", "#accept-choices"),
        reject=("[data-testid='GDPR-CTA-refuse']", ".qc-cmp2-summary-buttons button[mode='secondary']", "#deny-consent"),
        save=("#save-and-exit",),
    ),
    CmpDefinition(
        name="TrustArc",
        detect=("#truste-consent-track", ".truste_box_overlay", "#consent_blackbar"),
        accept=("#truste-consent-button", "#consent_prompt_submit"),
        reject=("#truste-consent-required", "#consent_prompt_decline"),
        settings=("#truste-show-consent",),
    ),
    CmpDefinition(
        name="Sourcepoint",
        detect=("[id^='sp_message_container']",),
        accept=("button[title='Accept']", "button[title='Accept All']", "button[title='Alle akzeptieren']"),
        reject=("button[title='Reject']", "button[title='Reject All']", "button[title='Alle ablehnen']"),
        settings=("button[title='Settings']", "button[title='Einstellungen']"),
    ),
    CmpDefinition(
        name="Consentmanager",
        detect=("#cmpbox", "#cmpwrapper"),
        accept=(".cmpboxbtnyes", "#cmpbntyestxt"),
        reject=(".cmpboxbtnno", "#cmpbntnotxt"),
        settings=(".cmpboxbtncustom",),
        save=(".cmpboxbtnsave",),
    ),
    CmpDefinition(
        name="Osano",
        detect=(".osano-cm-window",),
        accept=(".osano-cm-accept-all", ".osano-cm-button--type_accept"),
        reject=(".osano-cm-deny", ".osano-cm-button--type_deny"),
        settings=(".osano-cm-manage",),
        save=(".osano-cm-save",),
    ),
    CmpDefinition(
        name="Klaro",
        detect=(".klaro .cookie-notice", ".klaro .cookie-modal", "#klaro"),
        accept=(".klaro .cm-btn-accept-all", "#klaro .cm-btn-success", ".klaro .cm-btn-accept"),
        reject=(".klaro .cm-btn-decline", ".klaro .cm-btn-deny"),
        settings=(".klaro .cm-link.cn-learn-more",),
        save=(".klaro .cm-btn-accept",),
    ),
    CmpDefinition(
        name="Iubenda",
        detect=("#iubenda-cs-banner", ".iubenda-cs-container"),
        accept=(".iubenda-cs-accept-btn", "#iubenda-cs-accept-btn"),
        reject=(".iubenda-cs-reject-btn", "#iubenda-cs-reject-btn"),
        settings=(".iubenda-cs-customize-btn",),
    ),
    CmpDefinition(
        name="Termly",
        detect=("#termly-code-snippet-support",),
        accept=("[data-tid='banner-accept']", ".t-acceptAllBtn"),
        reject=("[data-tid='banner-decline']", ".t-declineAllBtn"),
        settings=("[data-tid='banner-manage']",),
    ),
    CmpDefinition(
        name="Complianz",
        detect=(".cmplz-cookiebanner", "#cmplz-cookiebanner-container"),
        accept=(".cmplz-btn.cmplz-accept", "#cmplz-accept-all", ".cmplz-accept"),
        reject=(".cmplz-btn.cmplz-deny", "#cmplz-deny-all", ".cmplz-deny"),
        settings=(".cmplz-btn.cmplz-view-preferences",),
        save=(".cmplz-btn.cmplz-save-preferences",),
    ),
    CmpDefinition(
        name="Borlabs",
        detect=("#BorlabsCookieBox", ".BorlabsCookie"),
        accept=("#BorlabsCookieBoxButtonAccept", ".BorlabsCookie button[data-cookie-accept-all]"),
        reject=("#BorlabsCookieBoxButtonDecline", ".BorlabsCookie button[data-cookie-refuse]"),
        essential=(".BorlabsCookie a[data-cookie-accept-only-essential]",),
        settings=(".BorlabsCookie a[data-cookie-individual]",),
        save=(".BorlabsCookie button[data-cookie-accept]",),
    ),
    CmpDefinition(
        name="Real Cookie Banner",
        detect=("[id^='rcb-']", ".rcb-banner"),
        accept=("a[data-rcb-action='accept-all']", "button[data-rcb-action='accept-all']"),
        reject=("a[data-rcb-action='accept-essentials']", "button[data-rcb-action='accept-essentials']"),
        settings=("a[data-rcb-action='change-individual']",),
        save=("a[data-rcb-action='save']",),
    ),
    CmpDefinition(
        name="CCM19",
        detect=("#ccm-widget", ".ccm-root"),
        accept=(".ccm--save-settings[data-full-consent='true']", "button.ccm--button-primary"),
        reject=(".ccm--decline-cookies",),
        settings=(".ccm--ctrl-open-settings",),
        save=(".ccm--save-settings",),
    ),
    CmpDefinition(
        name="Cookie Notice",
        detect=("#cookie-notice",),
        accept=("#cn-accept-cookie", ".cn-button[data-cookie-action='accept']"),
        reject=("#cn-refuse-cookie", ".cn-button[data-cookie-action='refuse']"),
    ),
    CmpDefinition(
        name="GDPR Cookie Consent",
        detect=("#cookie-law-info-bar", ".cli-bar-container"),
        accept=("#cookie_action_close_header", "#wt-cli-accept-all-btn", "#gdpr-cookie-accept"),
        reject=("#cookie_action_close_header_reject", "#wt-cli-reject-btn", "#gdpr-cookie-decline"),
        settings=(".cli_settings_button",),
        save=("#wt-cli-privacy-save-btn",),
    ),
    CmpDefinition(
        name="Axeptio",
        detect=("#axeptio_overlay", ".axeptio_widget"),
        accept=("#axeptio_btn_acceptAll",),
        reject=("#axeptio_btn_dismiss",),
        settings=("#axeptio_btn_configure",),
    ),
    CmpDefinition(
        name="CookieFirst",
        detect=(".cookiefirst-root",),
        accept=("[data-cookiefirst-action='accept']",),
        reject=("[data-cookiefirst-action='reject']",),
        settings=("[data-cookiefirst-action='adjust']",),
        save=("[data-cookiefirst-action='save']",),
    ),
    CmpDefinition(
        name="Cookie Information",
        detect=("#coiOverlay", "#coi-banner-wrapper"),
        accept=("button.coi-banner__accept", "#coiBannerAccept"),
        reject=("button[onclick*='declineAll']", "#declineButton"),
        settings=("#coiBannerSettings",),
    ),
    CmpDefinition(
        name="Orestbida",
        detect=("#cc-main", "#cc_div"),
        accept=("#cc-main [data-role='all']", "#c-p-bn"),
        reject=("#cc-main [data-role='necessary']", "#c-s-bn"),
        settings=("#cc-main [data-role='show']", ".c-bn.c_link"),
        save=("#cc-main [data-role='save']", "#s-sv-bn"),
    ),
    CmpDefinition(
        name="Shopify",
        detect=("#shopify-pc__banner",),
        accept=("#shopify-pc__banner__btn-accept",),
        reject=("#shopify-pc__banner__btn-decline",),
        settings=("#shopify-pc__banner__btn-manage-prefs",),
        save=("#shopify-pc__prefs__header-save",),
    ),
)

# ============================================================================
# CMP JavaScript APIs
# ============================================================================


@dataclasses.dataclass(frozen=True)
class CmpApiCall:
    """One programmatic consent call.

    ``function`` is the dotted path that must resolve to a callable on
    ``window`` before ``expression`` is evaluated.
    """

    cmp: str
    function: str
    expression: str

# Tried in order; the first call whose function exists wins.
CMP_API_CALLS: dict[str, tuple[CmpApiCall, ...]] = {
    "accept": (
        CmpApiCall("Cookiebot", "Cookiebot.submitCustomConsent", "Cookiebot.submitCustomConsent(true, true, true)"),
        CmpApiCall("OneTrust", "OneTrust.AllowAll", "OneTrust.AllowAll()"),
        CmpApiCall("Usercentrics", "UC_UI.acceptAllConsents", "UC_UI.acceptAllConsents()"),
        CmpApiCall("Usercentrics", "UC_UI.acceptAll", "UC_UI.acceptAll()"),
        CmpApiCall("Didomi", "Didomi.setUserAgreeToAll", "Didomi.setUserAgreeToAll()"),
        CmpApiCall("Complianz", "cmplz_accept_all", "cmplz_accept_all()"),
        CmpApiCall(
            "Klaro",
            "klaro.getManager",
            "(() => { const m = klaro.getManager(); m.changeAll(true); m.saveAndApplyConsents(); })()",
        ),
        CmpApiCall("CookieConsent", "CookieConsent.acceptCategory", "CookieConsent.acceptCategory('all')"),
        CmpApiCall("Consentmanager", "__cmp", "__cmp('setConsent', 1)"),
        CmpApiCall("consentApi", "consentApi.consentAll", "consentApi.consentAll()"),
    ),
    "reject": (
        CmpApiCall("Cookiebot", "Cookiebot.submitCustomConsent", "Cookiebot.submitCustomConsent(false, false, false)"),
        CmpApiCall("OneTrust", "OneTrust.RejectAll", "OneTrust.RejectAll()"),
        CmpApiCall("Usercentrics", "UC_UI.denyAllConsents", "UC_UI.denyAllConsents()"),
        CmpApiCall("Usercentrics", "UC_UI.rejectAllConsents", "UC_UI.rejectAllConsents()"),
        CmpApiCall("Didomi", "Didomi.setUserDisagreeToAll", "Didomi.setUserDisagreeToAll()"),
        CmpApiCall("Complianz", "cmplz_deny_all", "cmplz_deny_all()"),
        CmpApiCall(
            "Klaro",
            "klaro.getManager",
            "(() => { const m = klaro.getManager(); m.changeAll(false); m.saveAndApplyConsents(); })()",
        ),
        CmpApiCall("CookieConsent", "CookieConsent.acceptCategory", "CookieConsent.acceptCategory([])"),
        CmpApiCall("Consentmanager", "__cmp", "__cmp('setConsent', 0)"),
    ),
}


# ============================================================================
# Consent frames
# ============================================================================

# Matched against iframe hostnames only; full URLs of ad-sync
# iframes often carry ``gdpr=1`` in their query strings.
CONSENT_HOST_KEYWORDS: tuple[str, ...] = (
    "consent",
    "onetrust",
    "cookiebot",
    "usercentrics",
    "sourcepoint",
    "trustarc",
    "didomi",
    "quantcast",
    "privacy-mgmt",
    "gdpr",
    "cmp",
    "cookie",
)

CONSENT_HOST_EXCLUDE: tuple[str, ...] = (
    "cookie-sync",
    "pixel",
    "-sync.",
    "ad-sync",
    "user-sync",
    "match.",
    "prebid",
)


def is_consent_host(frame_url: str) -> bool:
    """Return ``True`` if *frame_url*'s hostname looks like a consent manager."""
    hostname = (parse.urlparse(frame_url).hostname or "").lower()
    if not hostname or any(ex in hostname for ex in CONSENT_HOST_EXCLUDE):
        return False
    return any(kw in hostname for kw in CONSENT_HOST_KEYWORDS)


def is_consent_frame(frame: async_api.Frame, main_frame: async_api.Frame) -> bool:
    """Return ``True`` if *frame* is a consent-manager iframe other than the main frame."""
    if frame == main_frame:
        return False
    return is_consent_host(frame.url)


def phrases_for(intent: Intent) -> tuple[str, ...]:
    """Return the DE/EN phrases for *intent*."""
    return PHRASES[intent]


def cmp_selectors(intent: Intent) -> list[tuple[str, str]]:
    """Return ``(cmp name, selector)`` pairs for *intent* across all CMPs."""
    return [(cmp.name, selector) for cmp in CMP_DEFINITIONS for selector in cmp.selectors_for(intent)]
