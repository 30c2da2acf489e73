"""
Platform Detection Module
=========================

Guesses a storefront's e-commerce platform from its home page: script
hosts, the generator meta tag, HTML markers and platform headers.
Used when a brand has no platform recorded.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from catalog_pipeline.ingestion.fetcher import Fetcher
from catalog_pipeline.ingestion.normalizer import normalize_url
from catalog_pipeline.ingestion.sitemap import make_soup

PLATFORMS = ["shopify", "woocommerce", "magento", "vtex", "tiendanube", "wix"]

# A platform needs more than this combined weight to be reported
MIN_SCORE = 0.7


@dataclass
class PlatformGuess:
    """A detected platform with its confidence and the evidence for it."""

    platform: str
    confidence: float
    evidence: list[str] = field(default_factory=list)


def extract_script_hosts(page: str | BeautifulSoup, base_url: str) -> list[str]:
    soup = make_soup(page) if isinstance(page, str) else page
    hosts: list[str] = []
    for script in soup.find_all("script", src=True):
        src = str(script.get("src") or "").strip()
        if not src:
            continue
        host = urlparse(urljoin(base_url, src)).hostname
        if host and host.lower() not in hosts:
            hosts.append(host.lower())
    return hosts


def extract_generator(page: str | BeautifulSoup) -> str | None:
    soup = make_soup(page) if isinstance(page, str) else page
    tag = soup.find("meta", attrs={"name": re.compile(r"^generator$", re.IGNORECASE)})
    content = str(tag.get("content") or "").strip() if tag else ""
    return content.lower() or None


def score_platform(
    html: str,
    hosts: list[str],
    headers: dict[str, str],
    generator: str | None,
) -> PlatformGuess | None:
    """
    Score every known platform and return the winner.

    Confidence grows with the winner's score and its lead over the
    runner-up, clamped to [0.4, 0.98].
    """
    lower = html.lower()
    headers = {key.lower(): value for key, value in headers.items()}
    generator = generator or ""
    scores = {platform: 0.0 for platform in PLATFORMS}
    evidence: dict[str, list[str]] = {platform: [] for platform in PLATFORMS}

    def add(platform: str, marker: str, weight: float) -> None:
        scores[platform] += weight
        evidence[platform].append(marker)

    if any("cdn.shopify.com" in host or "shopify" in host for host in hosts):
        add("shopify", "script_host:shopify", 0.9)
    if "shopify" in lower or "myshopify" in lower:
        add("shopify", "html_marker:shopify", 0.5)
    if headers.get("x-shopid") or headers.get("x-shopify-shop-id"):
        add("shopify", "header:shopify", 0.8)

    if "woocommerce" in lower or "wp-content" in lower or "wp-json" in lower:
        add("woocommerce", "html_marker:woocommerce", 0.6)
    if "woocommerce" in generator or "wordpress" in generator:
        add("woocommerce", "meta_generator:wp", 0.5)

    if any("vtex" in host for host in hosts):
        add("vtex", "script_host:vtex", 0.9)
    if "vtex" in lower:
        add("vtex", "html_marker:vtex", 0.6)

    if any("wix" in host for host in hosts):
        add("wix", "script_host:wix", 0.9)
    if "wix" in generator:
        add("wix", "meta_generator:wix", 0.8)
    if "wix.com" in lower or "wixsite" in lower:
        add("wix", "html_marker:wix", 0.6)

    if any("tiendanube" in host or "nuvemshop" in host for host in hosts):
        add("tiendanube", "script_host:tiendanube", 0.9)
    if "tiendanube" in lower or "nuvemshop" in lower:
        add("tiendanube", "html_marker:tiendanube", 0.6)

    if "magento" in lower or "mage/" in lower:
        add("magento", "html_marker:magento", 0.6)
    if "magento" in generator:
        add("magento", "meta_generator:magento", 0.7)

    ranked = sorted(scores.items(), key=lambda entry: entry[1], reverse=True)
    top_platform, top_score = ranked[0]
    if top_score <= MIN_SCORE:
        return None
    gap = top_score - ranked[1][1]
    confidence = min(0.98, max(0.4, 0.55 + gap * 0.25 + top_score * 0.12))
    return PlatformGuess(top_platform, round(confidence, 4), evidence[top_platform])


async def detect_platform(fetcher: Fetcher, site_url: str) -> PlatformGuess | None:
    """Fetch the home page and guess its platform, or None if unknown."""
    url = normalize_url(site_url)
    if not url:
        return None
    result = await fetcher.fetch_text(url)
    if result.status_code >= 400 or not result.text:
        return None
    html = result.text
    soup = make_soup(html)
    return score_platform(
        html,
        extract_script_hosts(soup, result.final_url or url),
        result.headers,
        extract_generator(soup),
    )
