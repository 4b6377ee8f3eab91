"""Discover tool - enumerate the pages of a site to audit."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from ..config.loader import Config
from ..errors import DiscoveryFailure
from ..models.page_record import CrawlOptions, CrawlStats, DiscoveryStrategy, PageRecord
from .browser_tool import BrowserSessionManager
from .sitemap_tool import (
    fetch_robots_sitemaps,
    fetch_with_retry,
    find_sitemap_urls,
    make_client,
    site_origin,
)

logger = logging.getLogger(__name__)

_SKIP_PREFIXES = ("#", "mailto:", "tel:", "javascript:", "data:")


def normalize_url(url: str, base: str | None = None) -> str | None:
    """
    Normalize URL: resolve against base, lowercase scheme/host, strip query,
    fragment and trailing slash. Returns None for non-http(s) URLs.
    """
    url = url.strip()
    if base:
        url = urljoin(base, url)
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in ("http", "https") or not parsed.netloc:
        return None
    path = parsed.path.rstrip("/") or "/"
    return f"{scheme}://{parsed.netloc.lower()}{path}"


def should_include_url(url: str, options: CrawlOptions, extra_excludes: list[str] | None = None) -> bool:
    """Apply exclude patterns, then the include allowlist when one is set."""
    for pattern in options.exclude_patterns:
        if pattern in url:
            return False
    for pattern in extra_excludes or ():
        if pattern in url.lower():
            return False
    if options.include_patterns:
        return any(pattern in url for pattern in options.include_patterns)
    return True


# ---------------------------------------------------------------------------
# Link sources
# ---------------------------------------------------------------------------


@dataclass
class ExtractedPage:
    """Title and anchors of a fetched page. Links are absolute (href, text) pairs."""

    url: str
    title: str = ""
    links: list[tuple[str, str]] = field(default_factory=list)


def parse_links(html: str, base_url: str, title: str | None = None) -> ExtractedPage:
    soup = BeautifulSoup(html, "lxml")
    if title is None:
        title = soup.title.get_text(strip=True) if soup.title else ""
    links: list[tuple[str, str]] = []
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if not href or href.lower().startswith(_SKIP_PREFIXES):
            continue
        links.append((urljoin(base_url, href), a.get_text(" ", strip=True)))
    return ExtractedPage(url=base_url, title=title, links=links)


class LinkSource(ABC):
    """Loads a page and returns its anchors. Raises DiscoveryFailure on any load error."""

    @abstractmethod
    async def extract(self, url: str, timeout: float) -> ExtractedPage: ...


class BrowserLinkSource(LinkSource):
    """Extract links from the rendered DOM using the shared browser session."""

    def __init__(self, sessions: BrowserSessionManager, wait_until: str = "domcontentloaded"):
        self.sessions = sessions
        self.wait_until = wait_until

    async def extract(self, url: str, timeout: float) -> ExtractedPage:
        # SessionInitFailure is fatal and must not become a DiscoveryFailure
        session = await self.sessions.acquire()
        try:
            page = await asyncio.wait_for(session.new_page(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise DiscoveryFailure(f"Opening a page for {url} timed out after {timeout}s") from e
        except Exception as e:
            raise DiscoveryFailure(f"Could not open page for {url}: {e}") from e

        try:
            await asyncio.wait_for(page.navigate(url, self.wait_until, timeout), timeout=timeout + 5)
            title = await asyncio.wait_for(page.title(), timeout=timeout)
            html = await asyncio.wait_for(page.content(), timeout=timeout)
            final_url = page.url or url
        except asyncio.TimeoutError as e:
            raise DiscoveryFailure(f"Loading {url} timed out after {timeout}s") from e
        except Exception as e:
            raise DiscoveryFailure(f"Could not load {url}: {e or type(e).__name__}") from e
        finally:
            try:
                await asyncio.wait_for(page.close(), timeout=timeout)
            except Exception as e:
                logger.debug("Closing discovery page for %s failed: %s", url, e or type(e).__name__)

        return parse_links(html, final_url, title=title or "")


class HttpLinkSource(LinkSource):
    """Extract links from the raw HTML served over HTTP."""

    def __init__(self, client: httpx.AsyncClient, config: Optional[Config] = None):
        self.client = client
        self.config = config or Config()

    async def extract(self, url: str, timeout: float) -> ExtractedPage:
        try:
            r = await fetch_with_retry(self.client, url, self.config.retry_policy)
        except httpx.HTTPError as e:
            raise DiscoveryFailure(f"Could not fetch {url}: {e}") from e
        if r.status_code != 200:
            raise DiscoveryFailure(f"Could not fetch {url}: HTTP {r.status_code}")
        content_type = r.headers.get("content-type", "")
        if "html" not in content_type.lower():
            raise DiscoveryFailure(f"{url} is not HTML ({content_type or 'no content-type'})")
        return parse_links(r.text, str(r.url))


# ---------------------------------------------------------------------------
# Discovery session state
# ---------------------------------------------------------------------------


@dataclass
class DiscoverySession:
    """All mutable state of one discovery run."""

    base_url: str
    root: str
    origin_host: str
    options: CrawlOptions
    extra_excludes: list[str] = field(default_factory=list)
    seen: set[str] = field(default_factory=set)
    records: list[PageRecord] = field(default_factory=list)

    @classmethod
    def start(cls, base_url: str, options: CrawlOptions) -> "DiscoverySession":
        root = normalize_url(base_url)
        if root is None:
            raise ValueError(f"Base URL must be an absolute http(s) URL: {base_url!r}")
        return cls(
            base_url=base_url,
            root=root,
            origin_host=urlparse(root).netloc,
            options=options,
        )

    @property
    def full(self) -> bool:
        return len(self.records) >= self.options.max_pages


def _eligible(session: DiscoverySession, url: str) -> str | None:
    """Normalized key for url if it may enter the frontier, else None. Does not mark it seen."""
    key = normalize_url(url)
    if key is None or key in session.seen:
        return None
    if not session.options.include_external and urlparse(key).netloc != session.origin_host:
        return None
    # Patterns see the absolute URL with its trailing slash and query intact
    if not should_include_url(url.strip(), session.options, session.extra_excludes):
        return None
    return key


def _admit(
    session: DiscoverySession,
    url: str,
    title: str,
    depth: int,
    parent: Optional[str],
) -> PageRecord | None:
    """Record url once, if it passes filters and the page cap has room."""
    if session.full:
        return None
    key = _eligible(session, url)
    if key is None:
        return None
    session.seen.add(key)
    record = PageRecord(url=key, title=title[:200], depth=depth, discovered_from=parent)
    session.records.append(record)
    return record


def _expand(session: DiscoverySession, parent: PageRecord, page: ExtractedPage) -> list[PageRecord]:
    children: list[PageRecord] = []
    for href, text in page.links:
        if session.full:
            break
        record = _admit(session, href, text, parent.depth + 1, parent.url)
        if record is not None:
            children.append(record)
    return children


def _manual_record(session: DiscoverySession, error: str | None = None) -> list[PageRecord]:
    return [PageRecord(url=session.root, depth=0, discovered_from="manual", error=error)]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


async def _crawl(
    session: DiscoverySession,
    link_source: LinkSource,
    seeds: list[str] | None = None,
) -> list[PageRecord]:
    """Breadth-first traversal from the root, depth by depth."""
    options = session.options
    session.seen.add(session.root)
    root_page = await link_source.extract(session.root, options.timeout)
    root = PageRecord(url=session.root, title=root_page.title, depth=0, discovered_from=None)
    session.records.append(root)

    frontier: list[PageRecord] = []
    if options.max_depth >= 1:
        frontier = _expand(session, root, root_page)
        for url in seeds or ():
            record = _admit(session, url, "", 1, root.url)
            if record is not None:
                frontier.append(record)

    depth = 1
    while frontier and depth < options.max_depth and not session.full:
        logger.info("Crawling depth %d: %d pages, %d found so far", depth, len(frontier), len(session.records))
        next_frontier: list[PageRecord] = []
        for record in frontier:
            if session.full:
                break
            try:
                page = await link_source.extract(record.url, options.timeout)
            except DiscoveryFailure as e:
                logger.warning("Link extraction failed for %s: %s", record.url, e)
                record.mark_invalid(str(e))
                continue
            next_frontier.extend(_expand(session, record, page))
        frontier = next_frontier
        depth += 1

    logger.info("Crawl finished: %d pages discovered", len(session.records))
    return session.records


async def _from_sitemap(
    session: DiscoverySession,
    client: httpx.AsyncClient,
    config: Config,
) -> list[PageRecord]:
    result = await find_sitemap_urls(
        client,
        session.root,
        config.sitemap,
        config.retry_policy,
        accept=lambda url: _eligible(session, url) is not None,
    )
    if result is None:
        return []
    for url in result.urls:
        if session.full:
            break
        _admit(session, url, "", 0, result.source_url)
    return session.records


async def _comprehensive_seeds(
    session: DiscoverySession,
    client: httpx.AsyncClient,
    config: Config,
) -> list[str]:
    """Extra depth-1 candidates from the sitemap, robots.txt and common paths."""
    limit = config.discovery.comprehensive_seed_limit
    if limit == 0:
        return []

    seeds: list[str] = []
    session.seen.add(session.root)
    robots_sitemaps = await fetch_robots_sitemaps(client, session.root, config.retry_policy)
    sitemap = await find_sitemap_urls(
        client,
        session.root,
        config.sitemap,
        config.retry_policy,
        extra_locations=robots_sitemaps,
        accept=lambda url: _eligible(session, url) is not None,
    )
    for url in sitemap.urls if sitemap else ():
        if len(seeds) >= limit:
            return seeds
        key = _eligible(session, url)
        if key and key not in seeds:
            seeds.append(key)

    origin = site_origin(session.root)
    for path in config.discovery.common_paths:
        if len(seeds) >= limit:
            break
        key = _eligible(session, urljoin(origin, path))
        if not key or key in seeds:
            continue
        try:
            r = await fetch_with_retry(client, key, config.retry_policy)
        except httpx.HTTPError as e:
            logger.debug("Common path %s unreachable: %s", key, e)
            continue
        if r.status_code == 200:
            seeds.append(key)

    logger.info("Comprehensive discovery seeded %d extra candidates", len(seeds))
    return seeds


async def discover_tool(
    base_url: str,
    strategy: DiscoveryStrategy | str,
    options: Optional[CrawlOptions] = None,
    link_source: Optional[LinkSource] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    config: Optional[Config] = None,
) -> list[PageRecord]:
    """
    Enumerate candidate pages for base_url.

    Records are unique by normalized URL, never exceed options.max_pages, and
    carry depth = parent depth + 1. A failure to read the root page falls back
    to the manual single-page result annotated with the error.
    """
    strategy = DiscoveryStrategy(strategy)
    config = config or Config()
    options = options or config.audit.crawl
    session = DiscoverySession.start(base_url, options)
    logger.info("Discovering pages of %s (strategy=%s, max_pages=%d, max_depth=%d)",
                session.root, strategy.value, options.max_pages, options.max_depth)

    if strategy == DiscoveryStrategy.MANUAL:
        return _manual_record(session)

    owns_client = http_client is None
    client = http_client or make_client(options.timeout)
    link_source = link_source or HttpLinkSource(client, config)
    try:
        if strategy == DiscoveryStrategy.SITEMAP:
            records = await _from_sitemap(session, client, config)
            if records:
                return records
            logger.info("No usable sitemap for %s, falling back to auto crawl", session.root)
            session = DiscoverySession.start(base_url, options)
            return await _crawl(session, link_source)

        if strategy == DiscoveryStrategy.COMPREHENSIVE:
            session.extra_excludes = [p.lower() for p in config.discovery.login_patterns]
            seeds = await _comprehensive_seeds(session, client, config)
            return await _crawl(session, link_source, seeds)

        return await _crawl(session, link_source)
    except DiscoveryFailure as e:
        logger.warning("Discovery of %s failed (%s), auditing the base URL only", session.root, e)
        return _manual_record(session, error=str(e))
    finally:
        if owns_client:
            await client.aclose()


def crawl_stats(records: list[PageRecord]) -> CrawlStats:
    """Counts of discovered pages by validity and depth."""
    depths: dict[int, int] = {}
    for record in records:
        depths[record.depth] = depths.get(record.depth, 0) + 1
    valid = sum(1 for r in records if r.is_valid)
    return CrawlStats(total=len(records), valid=valid, invalid=len(records) - valid, depths=depths)
