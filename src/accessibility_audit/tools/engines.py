"""Browser engine adapters: Playwright (chromium, firefox, webkit) and Selenium Chrome."""

import asyncio
import functools
import logging
import os
import signal
from typing import Any, Callable, Optional

from ..config.loader import BrowserConfig
from .browser_tool import BrowserSession, EngineFactory, PageHandle

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Playwright: one context per page
# ---------------------------------------------------------------------------


class PlaywrightPage(PageHandle):
    def __init__(self, context, page):
        self._context = context
        self._page = page

    async def navigate(self, url: str, wait_until: str, timeout: float) -> None:
        await self._page.goto(url, wait_until=wait_until, timeout=timeout * 1000)

    async def title(self) -> str:
        return await self._page.title()

    @property
    def url(self) -> str:
        return self._page.url

    async def content(self) -> str:
        return await self._page.content()

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._page.evaluate(script, arg)

    async def inject_script(self, src: str) -> None:
        await self._page.add_script_tag(url=src)

    async def close(self) -> None:
        try:
            await self._page.close()
        finally:
            await self._context.close()


class PlaywrightSession(BrowserSession):
    isolated_pages = True

    def __init__(self, engine: str, playwright, browser, config: BrowserConfig):
        self.engine = engine
        self._playwright = playwright
        self._browser = browser
        self._config = config

    async def new_page(self) -> PageHandle:
        context = await self._browser.new_context(
            viewport={"width": self._config.viewport_width, "height": self._config.viewport_height},
            user_agent=self._config.user_agent,
            extra_http_headers={
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9",
                "Accept-Language": "en-US,en;q=0.5",
            },
        )
        page = await context.new_page()
        return PlaywrightPage(context, page)

    async def close(self) -> None:
        try:
            await self._browser.close()
        finally:
            await self._playwright.stop()

    async def terminate(self) -> None:
        # Stopping the driver kills every browser it launched
        await self._playwright.stop()


class PlaywrightEngineFactory(EngineFactory):
    """Launch a Playwright browser of the given type."""

    def __init__(self, browser_type: str, config: BrowserConfig):
        self.browser_type = browser_type
        self.name = f"playwright-{browser_type}"
        self.config = config

    async def launch(self) -> BrowserSession:
        from playwright.async_api import async_playwright

        playwright = await async_playwright().start()
        try:
            launcher = getattr(playwright, self.browser_type)
            # Chromium-only switches are rejected by firefox and webkit
            args = self.config.launch_args if self.browser_type == "chromium" else []
            browser = await launcher.launch(
                headless=self.config.headless,
                args=args,
                timeout=self.config.init_timeout * 1000,
            )
        except BaseException:
            await playwright.stop()
            raise
        return PlaywrightSession(self.name, playwright, browser, self.config)


# ---------------------------------------------------------------------------
# Selenium: a single window reused for every page
# ---------------------------------------------------------------------------

_READY_STATES = {
    "domcontentloaded": ("interactive", "complete"),
    "load": ("complete",),
    "networkidle": ("complete",),
}

_ASYNC_EVALUATE = """
const done = arguments[arguments.length - 1];
const fn = (__FN__);
Promise.resolve()
  .then(() => fn(arguments[0]))
  .then((value) => done({ok: true, value: value}),
        (err) => done({ok: false, error: String(err && err.message || err)}));
"""

_ASYNC_INJECT = """
const src = arguments[0];
const done = arguments[arguments.length - 1];
const script = document.createElement('script');
script.src = src;
script.onload = () => done(true);
script.onerror = () => done('failed to load ' + src);
(document.head || document.documentElement).appendChild(script);
"""

_RESOURCE_COUNT = "return performance.getEntriesByType('resource').length;"


class SeleniumPage(PageHandle):
    def __init__(self, driver, poll_interval: float = 0.25):
        self._driver = driver
        self._poll_interval = poll_interval
        self._url = ""

    async def _call(self, fn: Callable, *args):
        return await asyncio.to_thread(fn, *args)

    async def navigate(self, url: str, wait_until: str, timeout: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        await self._call(self._driver.set_page_load_timeout, timeout)
        await self._call(self._driver.get, url)

        accepted = _READY_STATES.get(wait_until, ("complete",))
        while True:
            state = await self._call(self._driver.execute_script, "return document.readyState;")
            if state in accepted:
                break
            if loop.time() >= deadline:
                raise TimeoutError(f"document.readyState stuck at {state!r} for {url}")
            await asyncio.sleep(self._poll_interval)

        if wait_until == "networkidle":
            # Idle once the resource count stops growing for two polls
            previous, stable = -1, 0
            while stable < 2 and loop.time() < deadline:
                count = await self._call(self._driver.execute_script, _RESOURCE_COUNT)
                stable = stable + 1 if count == previous else 0
                previous = count
                await asyncio.sleep(self._poll_interval)

        self._url = await self._call(lambda: self._driver.current_url)

    async def title(self) -> str:
        return await self._call(lambda: self._driver.title)

    @property
    def url(self) -> str:
        # Read after navigation, off the event loop
        return self._url

    async def content(self) -> str:
        return await self._call(lambda: self._driver.page_source)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        result = await self._call(self._driver.execute_async_script, _ASYNC_EVALUATE.replace("__FN__", script), arg)
        if not isinstance(result, dict) or not result.get("ok"):
            error = result.get("error") if isinstance(result, dict) else result
            raise RuntimeError(f"Script evaluation failed: {error}")
        return result.get("value")

    async def inject_script(self, src: str) -> None:
        result = await self._call(self._driver.execute_async_script, _ASYNC_INJECT, src)
        if result is not True:
            raise RuntimeError(str(result))

    async def close(self) -> None:
        # The window is shared, so only blank it
        await self._call(self._driver.get, "about:blank")
        self._url = "about:blank"


class SeleniumSession(BrowserSession):
    isolated_pages = False

    def __init__(self, engine: str, driver):
        self.engine = engine
        self._driver = driver

    async def new_page(self) -> PageHandle:
        return SeleniumPage(self._driver)

    async def close(self) -> None:
        await asyncio.to_thread(self._driver.quit)

    async def terminate(self) -> None:
        service = getattr(self._driver, "service", None)
        process = getattr(service, "process", None)
        if process is None:
            return
        # chromedriver leads its own process group, which holds the browser too
        if hasattr(os, "killpg"):
            try:
                os.killpg(process.pid, signal.SIGKILL)
                return
            except OSError as e:
                logger.debug("Killing process group %s failed: %s", process.pid, e)
        if process.poll() is None:
            process.kill()


def _quit_quietly(driver) -> None:
    try:
        driver.quit()
    except Exception as e:
        logger.debug("Quitting abandoned Chrome failed: %s", e)


def _quit_when_ready(loop: asyncio.AbstractEventLoop, future: asyncio.Future) -> None:
    """Done callback for a launch whose caller gave up: quit the late driver."""
    if future.cancelled() or future.exception() is not None:
        return
    logger.warning("Chrome started after its launch was abandoned, quitting it")
    loop.run_in_executor(None, _quit_quietly, future.result())


class SeleniumEngineFactory(EngineFactory):
    """Launch headless Chrome through Selenium WebDriver."""

    name = "selenium-chrome"

    def __init__(self, config: BrowserConfig, script_timeout: float = 120.0):
        self.config = config
        self.script_timeout = script_timeout

    def _create_driver(self):
        from selenium import webdriver
        from selenium.webdriver.chrome.options import Options
        from selenium.webdriver.chrome.service import Service

        chrome_options = Options()
        if self.config.headless:
            chrome_options.add_argument("--headless=new")
        for arg in self.config.launch_args:
            chrome_options.add_argument(arg)
        chrome_options.add_argument(f"--user-agent={self.config.user_agent}")
        chrome_options.add_argument(
            f"--window-size={self.config.viewport_width},{self.config.viewport_height}"
        )
        chrome_options.page_load_strategy = "eager"

        # A new session lets terminate() kill chromedriver and Chrome together
        driver_service = Service(
            executable_path=self.config.chromedriver_path,
            popen_kw={"start_new_session": True},
        )
        driver = webdriver.Chrome(service=driver_service, options=chrome_options)
        try:
            driver.set_script_timeout(self.script_timeout)
        except Exception:
            _quit_quietly(driver)
            raise
        return driver

    async def launch(self) -> BrowserSession:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self._create_driver)
        try:
            # The driver thread outlives a cancelled launch; its driver is quit on arrival
            driver = await asyncio.shield(future)
        except asyncio.CancelledError:
            future.add_done_callback(functools.partial(_quit_when_ready, loop))
            raise
        return SeleniumSession(self.name, driver)


ENGINE_REGISTRY: dict[str, Callable[[BrowserConfig], EngineFactory]] = {
    "playwright-chromium": lambda cfg: PlaywrightEngineFactory("chromium", cfg),
    "playwright-firefox": lambda cfg: PlaywrightEngineFactory("firefox", cfg),
    "playwright-webkit": lambda cfg: PlaywrightEngineFactory("webkit", cfg),
    "selenium-chrome": SeleniumEngineFactory,
}


def build_engine_chain(
    names: list[str] | None = None,
    config: Optional[BrowserConfig] = None,
) -> list[EngineFactory]:
    """Resolve engine names, in priority order, into factories."""
    config = config or BrowserConfig()
    names = names if names is not None else config.engines
    chain: list[EngineFactory] = []
    for name in names:
        builder = ENGINE_REGISTRY.get(name)
        if builder is None:
            raise ValueError(f"Unknown browser engine: {name}. Known: {sorted(ENGINE_REGISTRY)}")
        chain.append(builder(config))
    return chain
