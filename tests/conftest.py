"""Shared fakes for browser engines, pages and link sources."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import pytest

from accessibility_audit.config.loader import ScannerConfig
from accessibility_audit.errors import DiscoveryFailure
from accessibility_audit.tools.browser_tool import BrowserSession, BrowserSessionManager, EngineFactory, PageHandle
from accessibility_audit.tools.discover_tool import ExtractedPage, LinkSource
from accessibility_audit.tools.scan_tool import AXE_READY, AXE_RUN


@dataclass
class FakeBehaviour:
    """What every fake page does. Shared by all sessions of a factory so it survives recycling."""

    title: str = "Home"
    html: str = "<html><head><title>Home</title></head><body></body></html>"
    pages: dict[str, tuple[str, str]] = field(default_factory=dict)  # url -> (title, html)
    violations: list[dict[str, Any]] = field(default_factory=list)
    # url (or None for any url) -> number of pages on which injection fails
    inject_failures: dict[Optional[str], int] = field(default_factory=dict)
    failing_sources: set[str] = field(default_factory=set)
    blocked_strategies: set[str] = field(default_factory=set)
    failing_strategies: set[str] = field(default_factory=set)
    run_error: Optional[Exception] = None
    run_delay: float = 0.0
    content_delay: float = 0.0
    close_hangs: bool = False
    calls: list[tuple] = field(default_factory=list)

    def take_inject_failure(self, url: str) -> bool:
        for key in (url, None):
            if self.inject_failures.get(key, 0) > 0:
                self.inject_failures[key] -= 1
                return True
        return False


class FakePage(PageHandle):
    def __init__(self, behaviour: FakeBehaviour):
        self.behaviour = behaviour
        self._url = "about:blank"
        self._title = ""
        self._html = ""
        self._injected = False
        self._inject_failing: Optional[bool] = None
        self.closed = False

    async def navigate(self, url: str, wait_until: str, timeout: float) -> None:
        self.behaviour.calls.append(("navigate", url, wait_until))
        await asyncio.sleep(0)
        if wait_until in self.behaviour.failing_strategies:
            raise RuntimeError(f"net::ERR_TIMED_OUT ({wait_until})")
        self._url = url
        self._title, self._html = self.behaviour.pages.get(url, (self.behaviour.title, self.behaviour.html))
        if wait_until in self.behaviour.blocked_strategies:
            self._title = "Just a moment..."

    async def title(self) -> str:
        return self._title

    @property
    def url(self) -> str:
        return self._url

    async def content(self) -> str:
        if self.behaviour.content_delay:
            await asyncio.sleep(self.behaviour.content_delay)
        return self._html

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if script == AXE_READY:
            return self._injected
        if script == AXE_RUN:
            self.behaviour.calls.append(("run", self._url, arg))
            if self.behaviour.run_delay:
                await asyncio.sleep(self.behaviour.run_delay)
            if self.behaviour.run_error is not None:
                raise self.behaviour.run_error
            return list(self.behaviour.violations)
        raise AssertionError(f"unexpected script: {script}")

    async def inject_script(self, src: str) -> None:
        self.behaviour.calls.append(("inject", self._url, src))
        if self._inject_failing is None:
            self._inject_failing = self.behaviour.take_inject_failure(self._url)
        if self._inject_failing or src in self.behaviour.failing_sources:
            raise RuntimeError(f"failed to load {src}")
        self._injected = True

    async def close(self) -> None:
        self.closed = True


class FakeSession(BrowserSession):
    def __init__(self, engine: str, behaviour: FakeBehaviour):
        self.engine = engine
        self.behaviour = behaviour
        self.pages: list[FakePage] = []
        self.closed = False
        self.terminated = False

    async def new_page(self) -> PageHandle:
        page = FakePage(self.behaviour)
        self.pages.append(page)
        return page

    async def close(self) -> None:
        if self.behaviour.close_hangs:
            await asyncio.sleep(3600)
        self.closed = True

    async def terminate(self) -> None:
        self.terminated = True


class FakeEngineFactory(EngineFactory):
    def __init__(
        self,
        name: str = "fake-engine",
        behaviour: Optional[FakeBehaviour] = None,
        error: Optional[Exception] = None,
        hang: bool = False,
    ):
        self.name = name
        self.behaviour = behaviour or FakeBehaviour()
        self.error = error
        self.hang = hang
        self.launches = 0
        self.sessions: list[FakeSession] = []

    async def launch(self) -> BrowserSession:
        self.launches += 1
        if self.hang:
            await asyncio.sleep(3600)
        if self.error is not None:
            raise self.error
        session = FakeSession(self.name, self.behaviour)
        self.sessions.append(session)
        return session


class FakeLinkSource(LinkSource):
    """Serves a fixed site map: url -> (title, [(href, text), ...])."""

    def __init__(self, site: dict[str, tuple[str, list[tuple[str, str]]]], failing: set[str] | None = None):
        self.site = site
        self.failing = failing or set()
        self.visited: list[str] = []

    async def extract(self, url: str, timeout: float) -> ExtractedPage:
        self.visited.append(url)
        if url in self.failing or url not in self.site:
            raise DiscoveryFailure(f"Could not load {url}: HTTP 500")
        title, links = self.site[url]
        return ExtractedPage(url=url, title=title, links=list(links))


def mock_client(routes: dict[str, tuple[int, str, str]]) -> httpx.AsyncClient:
    """AsyncClient answering url -> (status, content-type, body); everything else is 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        status, content_type, body = routes.get(str(request.url), (404, "text/plain", "not found"))
        return httpx.Response(status, headers={"content-type": content_type}, text=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def behaviour() -> FakeBehaviour:
    return FakeBehaviour()


@pytest.fixture
def factory(behaviour) -> FakeEngineFactory:
    return FakeEngineFactory("fake-chromium", behaviour)


@pytest.fixture
def manager(factory) -> BrowserSessionManager:
    return BrowserSessionManager([factory], init_timeout=1.0, close_timeout=0.5)


@pytest.fixture
def scanner_config() -> ScannerConfig:
    return ScannerConfig(
        base_retry_delay=0,
        settle_delay=0,
        navigation_timeout=1,
        inject_timeout=1,
        engine_ready_timeout=0.1,
        engine_poll_interval=0.01,
        scan_timeout=0.5,
    )


@pytest.fixture
def sleeps(monkeypatch) -> list[float]:
    """Records every non-zero asyncio.sleep delay; sleeping only yields to the loop."""
    recorded: list[float] = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, result=None):
        if delay:
            recorded.append(delay)
        return await real_sleep(0, result)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return recorded
