"""Tests for the HTTP fetcher, sitemap discovery and platform detection."""

import hashlib
import json

import httpx
import pytest

from catalog_pipeline.config import RateLimitConfig
from catalog_pipeline.ingestion import fetcher as fetcher_module
from catalog_pipeline.ingestion.fetcher import Fetcher, FetchResult, TokenBucket
from catalog_pipeline.ingestion.platform import (
    detect_platform,
    extract_generator,
    extract_script_hosts,
    score_platform,
)
from catalog_pipeline.ingestion.sitemap import (
    count_product_links,
    discover_from_sitemap,
    extract_links,
    extract_sitemap_urls,
    is_likely_product_url,
    sitemaps_from_robots,
)

ORIGIN = "https://shop.example"
FAST = RateLimitConfig(requests_per_second=1000, burst_limit=1000)


class RecordingTransport(httpx.MockTransport):
    """Mock transport that answers by path and records requested paths."""

    def __init__(self, routes: dict[str, httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.routes.get(request.url.path, httpx.Response(404))

    @property
    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


def urlset(*paths: str) -> str:
    entries = "".join(f"<url><loc>{ORIGIN}{path}</loc></url>" for path in paths)
    return f'<?xml version="1.0"?><urlset>{entries}</urlset>'


class TestFetchResult:
    """Tests for the FetchResult dataclass."""

    def test_ok(self) -> None:
        """Test the 2xx check."""
        assert FetchResult(url="u", status_code=204, content=b"", final_url="u").ok
        assert not FetchResult(url="u", status_code=301, content=b"", final_url="u").ok
        assert not FetchResult(url="u", status_code=404, content=b"", final_url="u").ok

    def test_text_replaces_invalid_bytes(self) -> None:
        """Test that bodies decode even with invalid UTF-8."""
        result = FetchResult(url="u", status_code=200, content=b"caf\xc3\xa9 \xff", final_url="u")
        assert result.text.startswith("café ")


class TestFetcher:
    """Tests for the Fetcher class."""

    @pytest.mark.asyncio
    async def test_fetch_sends_user_agent(self) -> None:
        """Test request headers and response fields."""
        transport = RecordingTransport(
            {
                "/page": httpx.Response(
                    200,
                    text="<html></html>",
                    headers={"content-type": "text/html; charset=utf-8", "x-shopid": "1"},
                )
            }
        )
        fetcher = Fetcher(user_agent="TestBot/1.0", rate_limit=FAST, transport=transport)
        result = await fetcher.fetch(f"{ORIGIN}/page")

        assert transport.requests[0].headers["User-Agent"] == "TestBot/1.0"
        assert result.ok
        assert result.content_type == "text/html"
        assert result.headers["x-shopid"] == "1"
        assert result.text == "<html></html>"

    @pytest.mark.asyncio
    async def test_fetch_returns_error_status(self) -> None:
        """Test that HTTP errors are returned, not raised."""
        fetcher = Fetcher(rate_limit=FAST, transport=RecordingTransport({}))
        result = await fetcher.fetch_text(f"{ORIGIN}/missing")
        assert result.status_code == 404
        assert not result.ok

    @pytest.mark.asyncio
    async def test_fetch_follows_redirects(self) -> None:
        """Test that redirects are followed and the final URL recorded."""
        transport = RecordingTransport(
            {
                "/old": httpx.Response(301, headers={"location": f"{ORIGIN}/new"}),
                "/new": httpx.Response(200, text="moved"),
            }
        )
        fetcher = Fetcher(rate_limit=FAST, transport=transport)
        result = await fetcher.fetch(f"{ORIGIN}/old")

        assert result.url == f"{ORIGIN}/old"
        assert result.final_url == f"{ORIGIN}/new"
        assert result.text == "moved"

    @pytest.mark.asyncio
    async def test_fetch_timeout_propagates(self) -> None:
        """Test that timeouts are raised to the caller."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        fetcher = Fetcher(rate_limit=FAST, transport=httpx.MockTransport(handler))
        with pytest.raises(httpx.TimeoutException):
            await fetcher.fetch(f"{ORIGIN}/slow")

    @pytest.mark.asyncio
    async def test_rate_limiter_per_host(self) -> None:
        """Test that each host gets its own bucket."""
        fetcher = Fetcher(rate_limit=FAST, transport=RecordingTransport({}))
        await fetcher.fetch(f"{ORIGIN}/a")
        await fetcher.fetch(f"{ORIGIN}/b")
        await fetcher.fetch("https://cdn.example/c")
        assert set(fetcher._rate_limiters) == {"shop.example", "cdn.example"}

    @pytest.mark.asyncio
    async def test_rate_limiters_are_bounded(self, monkeypatch) -> None:
        """Test that the least recently used host bucket is evicted."""
        monkeypatch.setattr(fetcher_module, "MAX_TRACKED_HOSTS", 2)
        fetcher = Fetcher(rate_limit=FAST, transport=RecordingTransport({}))
        await fetcher.fetch("https://a.example/")
        await fetcher.fetch("https://b.example/")
        await fetcher.fetch("https://a.example/again")
        await fetcher.fetch("https://c.example/")
        assert list(fetcher._rate_limiters) == ["a.example", "c.example"]

    @pytest.mark.asyncio
    async def test_client_is_reused_until_closed(self) -> None:
        """Test that requests share one pooled client."""
        fetcher = Fetcher(rate_limit=FAST, transport=RecordingTransport({}))
        await fetcher.fetch(f"{ORIGIN}/a")
        client = fetcher._client
        await fetcher.fetch(f"{ORIGIN}/b")
        assert fetcher._client is client

        await fetcher.aclose()
        assert client.is_closed
        await fetcher.fetch(f"{ORIGIN}/c")
        assert fetcher._client is not client
        await fetcher.aclose()

    @pytest.mark.asyncio
    async def test_post_json(self) -> None:
        """Test JSON POST requests."""
        transport = RecordingTransport({"/graphql": httpx.Response(200, json={"data": {}})})
        fetcher = Fetcher(rate_limit=FAST, transport=transport)
        result = await fetcher.post_json(f"{ORIGIN}/graphql", {"query": "{ products }"})

        request = transport.requests[0]
        assert request.method == "POST"
        assert json.loads(request.content) == {"query": "{ products }"}
        assert result.ok

    def test_compute_hash(self) -> None:
        """Test SHA-256 content hashing."""
        assert Fetcher.compute_hash(b"image") == hashlib.sha256(b"image").hexdigest()


class TestTokenBucket:
    """Tests for the TokenBucket rate limiter."""

    @pytest.mark.asyncio
    async def test_burst_consumes_tokens(self) -> None:
        """Test that a burst is served from the bucket."""
        bucket = TokenBucket(requests_per_second=1000, burst_limit=2)
        await bucket.acquire()
        assert bucket.tokens == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_empty_bucket_waits(self) -> None:
        """Test that an empty bucket still grants a token after waiting."""
        bucket = TokenBucket(requests_per_second=1000, burst_limit=1)
        await bucket.acquire()
        await bucket.acquire()
        assert bucket.tokens < 1.0


class TestSitemapParsing:
    """Tests for sitemap and link helpers."""

    def test_extract_sitemap_urls(self) -> None:
        """Test <loc> extraction with a limit."""
        xml = urlset("/products/a", "/products/b", "/products/c")
        assert extract_sitemap_urls(xml) == [
            f"{ORIGIN}/products/a",
            f"{ORIGIN}/products/b",
            f"{ORIGIN}/products/c",
        ]
        assert len(extract_sitemap_urls(xml, limit=2)) == 2

    def test_sitemaps_from_robots(self) -> None:
        """Test Sitemap: lines are collected once each."""
        robots = (
            "User-agent: *\nDisallow: /cart\n"
            f"Sitemap: {ORIGIN}/sitemap.xml\nsitemap: {ORIGIN}/products.xml\n"
            f"Sitemap: {ORIGIN}/sitemap.xml\n"
        )
        assert sitemaps_from_robots(robots) == [f"{ORIGIN}/sitemap.xml", f"{ORIGIN}/products.xml"]

    @pytest.mark.parametrize(
        "path",
        [
            "/products/camisa-lino",
            "/producto/blusa",
            "/product-page/vestido",
            "/tienda/bolso-cuero",
            "/vestido-midi/p",
        ],
    )
    def test_product_urls(self, path) -> None:
        """Test URLs recognized as product pages."""
        assert is_likely_product_url(f"{ORIGIN}{path}")

    @pytest.mark.parametrize(
        "path",
        ["/", "/collections/verano", "/blog/products/nuevo", "/cart", "/pages/about", "/account/login"],
    )
    def test_non_product_urls(self, path) -> None:
        """Test URLs rejected as product pages."""
        assert not is_likely_product_url(f"{ORIGIN}{path}")

    def test_extract_links(self) -> None:
        """Test same-origin link extraction."""
        html = """
<a href="/products/a#reviews">A</a>
<a href='/products/a'>A again</a>
<a href="#top">Top</a>
<a href="mailto:hola@shop.example">Mail</a>
<a href="https://other.example/products/b">Other</a>
<a href="products/c">Relative</a>
"""
        links = extract_links(html, f"{ORIGIN}/tienda/")
        assert links == [f"{ORIGIN}/products/a", f"{ORIGIN}/tienda/products/c"]

    def test_extract_links_unquoted_href(self) -> None:
        """Test anchors whose href is not quoted."""
        html = "<ul><li><a href=/p/1>Uno</a><li><a class=item href=/products/dos>Dos</a></ul>"
        assert extract_links(html, ORIGIN) == [f"{ORIGIN}/p/1", f"{ORIGIN}/products/dos"]

    def test_count_product_links(self) -> None:
        """Test counting product links on a listing page."""
        html = '<a href="/products/a"></a><a href="/products/b"></a><a href="/blog/x"></a>'
        assert count_product_links(html, ORIGIN) == 2


class TestSitemapDiscovery:
    """Tests for discover_from_sitemap."""

    @pytest.mark.asyncio
    async def test_default_sitemap(self) -> None:
        """Test falling back to /sitemap.xml when robots.txt is missing."""
        transport = RecordingTransport(
            {"/sitemap.xml": httpx.Response(200, text=urlset("/products/a", "/pages/b"))}
        )
        urls = await discover_from_sitemap(Fetcher(rate_limit=FAST, transport=transport), ORIGIN)

        assert urls == [f"{ORIGIN}/products/a", f"{ORIGIN}/pages/b"]
        assert transport.paths == ["/robots.txt", "/sitemap.xml"]

    @pytest.mark.asyncio
    async def test_sitemap_index_skips_failing_child(self) -> None:
        """Test that the first child returning a body is used."""
        index = (
            "<sitemapindex>"
            f"<sitemap><loc>{ORIGIN}/broken.xml</loc></sitemap>"
            f"<sitemap><loc>{ORIGIN}/products.xml</loc></sitemap>"
            "</sitemapindex>"
        )
        transport = RecordingTransport(
            {
                "/sitemap.xml": httpx.Response(200, text=index),
                "/products.xml": httpx.Response(200, text=urlset("/products/a")),
            }
        )
        urls = await discover_from_sitemap(Fetcher(rate_limit=FAST, transport=transport), ORIGIN)
        assert urls == [f"{ORIGIN}/products/a"]

    @pytest.mark.asyncio
    async def test_at_most_three_candidates(self) -> None:
        """Test that only the first three sitemap candidates are tried."""
        robots = "\n".join(f"Sitemap: {ORIGIN}/s{i}.xml" for i in range(5))
        transport = RecordingTransport({"/robots.txt": httpx.Response(200, text=robots)})
        urls = await discover_from_sitemap(Fetcher(rate_limit=FAST, transport=transport), ORIGIN)

        assert urls == []
        assert transport.paths == ["/robots.txt", "/s0.xml", "/s1.xml", "/s2.xml"]


class TestPlatformDetection:
    """Tests for storefront platform detection."""

    def test_extract_script_hosts(self) -> None:
        """Test script host extraction with relative sources."""
        html = '<script src="//cdn.shopify.com/s/app.js"></script><script src="/theme.js"></script>'
        assert extract_script_hosts(html, ORIGIN) == ["cdn.shopify.com", "shop.example"]

    def test_extract_generator(self) -> None:
        """Test the generator meta tag."""
        assert extract_generator('<meta name="generator" content="WordPress 6.4">') == "wordpress 6.4"
        assert extract_generator("<html></html>") is None
        assert extract_generator("<meta content=Shopify name=GENERATOR>") == "shopify"

    def test_score_shopify(self) -> None:
        """Test Shopify detection from the CDN script host."""
        html = '<script src="https://cdn.shopify.com/s/app.js"></script>'
        guess = score_platform(html, ["cdn.shopify.com"], {}, None)

        assert guess is not None
        assert guess.platform == "shopify"
        assert guess.confidence == 0.98
        assert guess.evidence == ["script_host:shopify", "html_marker:shopify"]

    def test_score_woocommerce(self) -> None:
        """Test WooCommerce detection from WordPress markers."""
        html = '<link href="/wp-content/themes/x/style.css">'
        guess = score_platform(html, [], {}, "wordpress 6.4")

        assert guess is not None
        assert guess.platform == "woocommerce"
        assert guess.evidence == ["html_marker:woocommerce", "meta_generator:wp"]

    def test_score_header_only(self) -> None:
        """Test that a Shopify header alone is enough."""
        guess = score_platform("<html></html>", [], {"X-Shopify-Shop-Id": "42"}, None)
        assert guess is not None
        assert guess.platform == "shopify"

    def test_score_unknown(self) -> None:
        """Test that weak evidence gives no guess."""
        assert score_platform("<html>magento</html>", [], {}, None) is None

    @pytest.mark.asyncio
    async def test_detect_platform(self) -> None:
        """Test detection from a fetched home page."""
        home = '<html><script src="https://io.vtex.com.br/app.js"></script>vtex</html>'
        transport = RecordingTransport({"/": httpx.Response(200, text=home)})
        guess = await detect_platform(Fetcher(rate_limit=FAST, transport=transport), "shop.example")

        assert guess is not None
        assert guess.platform == "vtex"

    @pytest.mark.asyncio
    async def test_detect_platform_error_page(self) -> None:
        """Test that an error page gives no guess."""
        transport = RecordingTransport({"/": httpx.Response(500, text="shopify")})
        assert await detect_platform(Fetcher(rate_limit=FAST, transport=transport), ORIGIN) is None
