"""
Third-party domain inventory.

Requests to hosts outside the page's registrable domain are grouped
by base domain, annotated from the curated reference table and
checked for data transfers to non-EU or high-risk jurisdictions.
"""

from __future__ import annotations

import dataclasses

from consent_audit.data import loader
from consent_audit.models import crawl, signals
from consent_audit.utils import logger
from consent_audit.utils import url as url_mod

log = logger.create_logger("ThirdParty")

HIGH_RISK_COUNTRIES = frozenset({"CN", "RU"})


@dataclasses.dataclass
class _DomainStats:
    request_count: int = 0
    cookie_names: set[str] = dataclasses.field(default_factory=set)


def _group_key(host: str, enrich: bool) -> str:
    """Base domain, unless the full host has its own reference entry (e.g. ``fonts.googleapis.com``)."""
    host = host.lower().lstrip(".")
    if enrich and host in loader.get_known_domains():
        return host
    return url_mod.get_base_domain(host)


def _owning_group(host: str, groups: dict[str, _DomainStats]) -> str | None:
    host = host.lower().lstrip(".")
    if host in groups:
        return host
    base = url_mod.get_base_domain(host)
    return base if base in groups else None


def aggregate(crawl_result: crawl.CrawlResult, enrich: bool = True) -> dict[str, _DomainStats]:
    """Request and cookie counts per third-party domain.

    Without *enrich* hosts are always grouped by base domain.
    """
    groups: dict[str, _DomainStats] = {}
    for request in crawl_result.network_requests:
        host = request.domain or url_mod.extract_domain(request.url)
        if host == "unknown" or url_mod.is_same_site(host, crawl_result.page_domain):
            continue
        groups.setdefault(_group_key(host, enrich), _DomainStats()).request_count += 1

    for cookie in crawl_result.cookies:
        key = _owning_group(cookie.domain, groups)
        if key:
            groups[key].cookie_names.add(cookie.name)
    for header in crawl_result.set_cookie_headers:
        key = _owning_group(url_mod.extract_domain(header.url), groups)
        if key and header.cookie_name:
            groups[key].cookie_names.add(header.cookie_name)
    return groups


def analyze(crawl_result: crawl.CrawlResult, enrich: bool = True) -> signals.ThirdPartyDomainsResult:
    """Build the third-party domain table.

    With ``enrich=False`` the reference table is not consulted: every
    domain is reported as unknown and no risk assessment is made.
    """
    groups = aggregate(crawl_result, enrich)
    if not groups:
        return signals.ThirdPartyDomainsResult.not_detected()

    domains: list[signals.ThirdPartyDomain] = []
    high_risk: list[str] = []
    cross_border: list[str] = []
    unknown: list[str] = []
    for domain, stats in groups.items():
        info = loader.find_known_domain(domain) if enrich else None
        domains.append(
            signals.ThirdPartyDomain(
                domain=domain,
                category=info.category if info else "other",
                company=info.company if info else None,
                country=info.country if info else None,
                is_eu_based=info.is_eu if info else None,
                request_count=stats.request_count,
                cookies_set=len(stats.cookie_names),
                known=info is not None,
            )
        )
        if not enrich:
            continue
        if info is None:
            unknown.append(domain)
            continue
        if info.country in HIGH_RISK_COUNTRIES:
            high_risk.append(domain)
        if not info.is_eu:
            cross_border.append(domain)

    domains.sort(key=lambda d: d.request_count, reverse=True)
    categories: dict[str, int] = {}
    for entry in domains:
        categories[entry.category] = categories.get(entry.category, 0) + 1

    log.debug(
        "Third-party domains aggregated",
        {"domains": len(domains), "unknown": len(unknown), "highRisk": len(high_risk)},
    )
    return signals.ThirdPartyDomainsResult(
        total_count=len(domains),
        domains=domains,
        categories=categories,
        risk_assessment=signals.ThirdPartyRisk(
            high_risk_domains=high_risk, cross_border_transfers=cross_border, unknown_domains=unknown
        ),
    )
