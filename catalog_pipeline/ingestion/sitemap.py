"""
Sitemap Discovery Module
========================

Discovers candidate product URLs from robots.txt / sitemap.xml and
provides the URL heuristics used to tell product pages from listing,
content and account pages.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from catalog_pipeline.ingestion.fetcher import Fetcher
from catalog_pipeline.ingestion.normalizer import safe_origin

logger = logging.getLogger(__name__)

MAX_SITEMAP_CANDIDATES = 3
MAX_SITEMAP_CHILDREN = 5

_EXCLUDE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"/(blog|blogs|journal|news|noticias|press|about|nosotros|quienes-somos|contacto|contact|faq|ayuda)(/|$)",
        r"/(category|categories|categoria|categorias|collection|collections|coleccion|colecciones|tag|tags)(/|$)",
        r"/(search|busqueda|buscar|cart|carrito|checkout|account|cuenta|login|register|policies|privacy|privacidad|terms|terminos|legal)(/|$)",
        r"/(portfolio|portafolio)(/|$)",
    )
]

_INCLUDE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"/products?/[^/?#]+",
        r"/productos?/[^/?#]+",
        r"/product-page/[^/?#]+",
        r"/product-[^/?#]+",
        r"/tienda/[^/?#]+",
        r"/shop/[^/?#]+",
        r"/catalog/product/view",
        r"/p/?$",
    )
]


def make_soup(html: str) -> BeautifulSoup:
    """Parse an HTML document."""
    return BeautifulSoup(html, "lxml")


def extract_sitemap_urls(xml: str, limit: int = 200) -> list[str]:
    """Extract <loc> entries from a sitemap or sitemap index."""
    urls = []
    for loc in BeautifulSoup(xml, "xml").find_all("loc"):
        text = loc.get_text(strip=True)
        if not text:
            continue
        urls.append(text)
        if len(urls) >= limit:
            break
    return urls


def sitemaps_from_robots(robots_text: str) -> list[str]:
    """Return the Sitemap: entries of a robots.txt, deduplicated in order."""
    urls: list[str] = []
    for line in robots_text.splitlines():
        line = line.strip()
        if not line.lower().startswith("sitemap:"):
            continue
        url = line.split(":", 1)[1].strip()
        if url and url not in urls:
            urls.append(url)
    return urls


async def discover_from_sitemap(fetcher: Fetcher, base_url: str, limit: int = 200) -> list[str]:
    """
    Discover URLs from a site's sitemap.

    Tries robots.txt sitemaps plus /sitemap.xml (at most three
    candidates). The first candidate that returns a body wins; if it is a
    sitemap index, the first of its children that returns a body is used.

    Args:
        fetcher: HTTP fetcher
        base_url: Any URL on the site
        limit: Maximum number of URLs to return

    Returns:
        Up to limit URLs (may include non-product pages)
    """
    origin = safe_origin(base_url)
    robots = await fetcher.fetch_text(urljoin(origin, "/robots.txt"))
    robots_text = robots.text if robots.ok else ""

    candidates = sitemaps_from_robots(robots_text)
    fallback = urljoin(origin, "/sitemap.xml")
    if fallback not in candidates:
        candidates.append(fallback)

    sitemap_text = ""
    for url in candidates[:MAX_SITEMAP_CANDIDATES]:
        result = await fetcher.fetch_text(url)
        if not result.ok or not result.text:
            continue
        sitemap_text = result.text
        if "<sitemapindex" in sitemap_text:
            for child in extract_sitemap_urls(sitemap_text, MAX_SITEMAP_CHILDREN):
                child_result = await fetcher.fetch_text(child)
                if not child_result.ok or not child_result.text:
                    continue
                sitemap_text = child_result.text
                break
        break

    if not sitemap_text:
        return []
    urls = extract_sitemap_urls(sitemap_text, limit)
    logger.debug(f"Sitemap discovery for {origin}: {len(urls)} URLs")
    return urls


def is_likely_product_url(url: str) -> bool:
    """Heuristic: does the URL path look like a single product page?"""
    path = urlparse(url).path or "/"
    if any(pattern.search(path) for pattern in _EXCLUDE_PATTERNS):
        return False
    return any(pattern.search(path) for pattern in _INCLUDE_PATTERNS)


def extract_links(page: str | BeautifulSoup, base_url: str) -> list[str]:
    """
    Extract same-origin absolute links from a page, deduplicated in order.

    Fragment-only, mailto: and tel: links are skipped.
    """
    soup = make_soup(page) if isinstance(page, str) else page
    origin = safe_origin(base_url)
    links: list[str] = []
    for anchor in soup.select("a[href]"):
        href = str(anchor.get("href") or "").strip()
        if not href or href.startswith("#"):
            continue
        if href.lower().startswith(("mailto:", "tel:", "javascript:")):
            continue
        absolute = urljoin(base_url, href).split("#", 1)[0]
        if safe_origin(absolute) != origin:
            continue
        if absolute not in links:
            links.append(absolute)
    return links


def count_product_links(page: str | BeautifulSoup, base_url: str) -> int:
    """Count distinct product-looking links on a page (listing detection)."""
    return sum(1 for link in extract_links(page, base_url) if is_likely_product_url(link))
