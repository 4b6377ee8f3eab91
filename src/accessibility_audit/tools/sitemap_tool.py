"""Sitemap tool - locate and parse sitemap.xml, sitemap indexes and robots.txt."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config.loader import RetryPolicy, SitemapConfig

logger = logging.getLogger(__name__)


@dataclass
class SitemapDocument:
    """Parsed sitemap: page locations and, for indexes, child sitemap locations."""

    pages: list[str] = field(default_factory=list)
    sitemaps: list[str] = field(default_factory=list)

    @property
    def is_index(self) -> bool:
        return bool(self.sitemaps)


@dataclass
class SitemapResult:
    """Page URLs found through one conventional sitemap location."""

    source_url: str
    urls: list[str]
    fetched: list[str] = field(default_factory=list)


def make_client(timeout: float = 30.0) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True, trust_env=False)


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    policy: Optional[RetryPolicy] = None,
) -> httpx.Response:
    """GET with retry for transient transport failures. HTTP error statuses are not retried."""
    policy = policy or RetryPolicy()
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=1, min=policy.backoff_seconds, max=policy.backoff_max_seconds
        ),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    ):
        with attempt:
            return await client.get(url)
    raise RuntimeError("unreachable")


def site_origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def parse_sitemap(xml_text: str) -> SitemapDocument | None:
    """
    Parse a sitemap or sitemap index.
    Returns None when the document is not a sitemap (<urlset> or <sitemapindex>).
    """
    soup = BeautifulSoup(xml_text, "xml")
    root = soup.find(["urlset", "sitemapindex"])
    if root is None:
        return None

    doc = SitemapDocument()
    if root.name == "sitemapindex":
        for sitemap in root.find_all("sitemap"):
            loc = sitemap.find("loc")
            if loc and loc.get_text(strip=True):
                doc.sitemaps.append(loc.get_text(strip=True))
    else:
        for url in root.find_all("url"):
            loc = url.find("loc")
            if loc and loc.get_text(strip=True):
                doc.pages.append(loc.get_text(strip=True))
    return doc


def parse_robots_txt(text: str) -> list[str]:
    """Extract Sitemap: directives from robots.txt."""
    sitemaps: list[str] = []
    for line in text.splitlines():
        key, _, value = line.partition(":")
        if key.strip().lower() == "sitemap" and value.strip():
            if value.strip() not in sitemaps:
                sitemaps.append(value.strip())
    return sitemaps


async def _load_sitemap(
    client: httpx.AsyncClient,
    url: str,
    policy: Optional[RetryPolicy],
) -> SitemapDocument | None:
    try:
        r = await fetch_with_retry(client, url, policy)
    except httpx.HTTPError as e:
        logger.debug("Sitemap %s unreachable: %s", url, e)
        return None
    if r.status_code != 200:
        logger.debug("Sitemap %s returned HTTP %s", url, r.status_code)
        return None
    doc = parse_sitemap(r.text)
    if doc is None:
        logger.debug("Sitemap %s is not sitemap XML", url)
    return doc


async def fetch_robots_sitemaps(
    client: httpx.AsyncClient,
    base_url: str,
    policy: Optional[RetryPolicy] = None,
) -> list[str]:
    """Sitemap URLs advertised by the site's robots.txt."""
    robots_url = urljoin(site_origin(base_url), "/robots.txt")
    try:
        r = await fetch_with_retry(client, robots_url, policy)
    except httpx.HTTPError as e:
        logger.debug("robots.txt unreachable at %s: %s", robots_url, e)
        return []
    if r.status_code != 200:
        return []
    return parse_robots_txt(r.text)


async def find_sitemap_urls(
    client: httpx.AsyncClient,
    base_url: str,
    config: Optional[SitemapConfig] = None,
    policy: Optional[RetryPolicy] = None,
    limit: Optional[int] = None,
    extra_locations: Iterable[str] = (),
    accept: Optional[Callable[[str], bool]] = None,
) -> SitemapResult | None:
    """
    Try conventional sitemap locations in order.
    The first one that yields at least one page location passing accept wins.
    Child sitemaps of an index are only followed when config.follow_index is set,
    up to config.max_index_depth levels.
    """
    config = config or SitemapConfig()
    origin = site_origin(base_url)
    candidates = [urljoin(origin, path) for path in config.paths]
    for loc in extra_locations:
        if loc not in candidates:
            candidates.append(loc)

    for sitemap_url in candidates:
        logger.info("Trying sitemap %s", sitemap_url)
        doc = await _load_sitemap(client, sitemap_url, policy)
        if doc is None:
            continue

        urls = [u for u in doc.pages if accept is None or accept(u)]
        fetched = [sitemap_url]
        if doc.is_index:
            logger.info("Sitemap index at %s lists %d sitemaps", sitemap_url, len(doc.sitemaps))
            if config.follow_index:
                urls.extend(
                    await _follow_index(client, doc.sitemaps, config.max_index_depth, policy, limit, fetched, accept)
                )

        if urls:
            if limit is not None:
                urls = urls[:limit]
            logger.info("Sitemap %s provided %d URLs", sitemap_url, len(urls))
            return SitemapResult(source_url=sitemap_url, urls=urls, fetched=fetched)
        logger.info("Sitemap %s has no usable page locations", sitemap_url)

    return None


async def _follow_index(
    client: httpx.AsyncClient,
    sitemaps: list[str],
    max_depth: int,
    policy: Optional[RetryPolicy],
    limit: Optional[int],
    fetched: list[str],
    accept: Optional[Callable[[str], bool]] = None,
) -> list[str]:
    """Breadth-first walk of child sitemaps, bounded by depth and page limit."""
    urls: list[str] = []
    level = list(sitemaps)
    depth = 1
    while level and depth <= max_depth:
        next_level: list[str] = []
        for child_url in level:
            if limit is not None and len(urls) >= limit:
                return urls
            if child_url in fetched:
                continue
            fetched.append(child_url)
            doc = await _load_sitemap(client, child_url, policy)
            if doc is None:
                continue
            urls.extend(u for u in doc.pages if accept is None or accept(u))
            next_level.extend(doc.sitemaps)
        level = next_level
        depth += 1
    return urls
