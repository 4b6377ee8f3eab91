"""Tests for the browser session manager and engine chain."""

import asyncio
import os
import signal
import subprocess
import sys
import threading
import time

import pytest

from accessibility_audit.config.loader import BrowserConfig
from accessibility_audit.errors import SessionInitFailure
from accessibility_audit.tools.browser_tool import BrowserSessionManager
from accessibility_audit.tools.engines import (
    PlaywrightEngineFactory,
    SeleniumEngineFactory,
    SeleniumPage,
    SeleniumSession,
    build_engine_chain,
)

from conftest import FakeBehaviour, FakeEngineFactory


class TestBrowserSessionManager:
    @pytest.mark.asyncio
    async def test_first_working_engine_wins(self):
        broken = FakeEngineFactory("playwright-chromium", error=RuntimeError("Executable doesn't exist"))
        working = FakeEngineFactory("playwright-firefox")
        unused = FakeEngineFactory("selenium-chrome")
        manager = BrowserSessionManager([broken, working, unused])

        session = await manager.acquire()

        assert session.engine == "playwright-firefox"
        assert manager.active_engine == "playwright-firefox"
        assert broken.launches == 1
        assert unused.launches == 0

    @pytest.mark.asyncio
    async def test_all_engines_failing_raises_session_init_failure(self):
        manager = BrowserSessionManager([
            FakeEngineFactory("playwright-chromium", error=RuntimeError("no chromium")),
            FakeEngineFactory("selenium-chrome", error=OSError("chromedriver missing")),
        ])

        with pytest.raises(SessionInitFailure) as exc_info:
            await manager.acquire()

        assert set(exc_info.value.errors) == {"playwright-chromium", "selenium-chrome"}
        assert "chromedriver missing" in str(exc_info.value)
        assert manager.active_engine is None
        assert not manager.is_active

    @pytest.mark.asyncio
    async def test_launch_timeout_moves_to_next_engine(self):
        slow = FakeEngineFactory("playwright-chromium", hang=True)
        fallback = FakeEngineFactory("selenium-chrome")
        manager = BrowserSessionManager([slow, fallback], init_timeout=0.05)

        session = await manager.acquire()

        assert session.engine == "selenium-chrome"

    @pytest.mark.asyncio
    async def test_acquire_reuses_live_session(self, manager, factory):
        first = await manager.acquire()
        second = await manager.acquire()

        assert first is second
        assert factory.launches == 1

    @pytest.mark.asyncio
    async def test_recycle_launches_fresh_session(self, manager, factory):
        first = await manager.acquire()
        await manager.recycle()
        second = await manager.acquire()

        assert first is not second
        assert first.closed
        assert manager.launch_count == 2

    @pytest.mark.asyncio
    async def test_release_terminates_when_close_hangs(self):
        factory = FakeEngineFactory("fake", FakeBehaviour(close_hangs=True))
        manager = BrowserSessionManager([factory], close_timeout=0.05)
        session = await manager.acquire()

        await manager.release()

        assert session.terminated
        assert not manager.is_active

    @pytest.mark.asyncio
    async def test_release_without_session_is_noop(self, manager, factory):
        await manager.release()
        assert factory.launches == 0

    @pytest.mark.asyncio
    async def test_context_manager_releases(self, manager):
        async with manager:
            session = await manager.acquire()
        assert session.closed
        assert not manager.is_active


class TestEngineChain:
    def test_default_chain_order(self):
        chain = build_engine_chain(config=BrowserConfig())
        assert [f.name for f in chain] == ["playwright-chromium", "playwright-firefox", "selenium-chrome"]
        assert isinstance(chain[0], PlaywrightEngineFactory)
        assert isinstance(chain[-1], SeleniumEngineFactory)

    def test_explicit_names(self):
        chain = build_engine_chain(["selenium-chrome", "playwright-webkit"])
        assert [f.name for f in chain] == ["selenium-chrome", "playwright-webkit"]

    def test_unknown_engine_rejected(self):
        with pytest.raises(ValueError, match="Unknown browser engine"):
            build_engine_chain(["netscape"])


class FakeDriver:
    """Just enough of a WebDriver for the Selenium adapter."""

    def __init__(self, redirects: dict[str, str] | None = None, process=None):
        self.redirects = redirects or {}
        self.service = type("Service", (), {"process": process})()
        self.quit_called = threading.Event()
        self.url_reads: list[int] = []
        self._current_url = "about:blank"

    @property
    def current_url(self) -> str:
        self.url_reads.append(threading.get_ident())
        return self._current_url

    def set_page_load_timeout(self, timeout):
        pass

    def get(self, url):
        self._current_url = self.redirects.get(url, url)

    def execute_script(self, script, *args):
        return "complete"

    def quit(self):
        self.quit_called.set()


def _process_gone(pid: int) -> bool:
    try:
        with open(f"/proc/{pid}/status") as f:
            return "zombie" in f.read()
    except FileNotFoundError:
        return True


class SlowSeleniumFactory(SeleniumEngineFactory):
    def __init__(self, driver: FakeDriver, startup: float):
        super().__init__(BrowserConfig())
        self.driver = driver
        self.startup = startup

    def _create_driver(self):
        time.sleep(self.startup)
        return self.driver


class TestSeleniumEngine:
    @pytest.mark.asyncio
    async def test_launch_returns_session(self):
        driver = FakeDriver()

        session = await SlowSeleniumFactory(driver, startup=0).launch()

        assert session.engine == "selenium-chrome"
        assert not driver.quit_called.is_set()
        await session.close()
        assert driver.quit_called.is_set()

    @pytest.mark.asyncio
    async def test_abandoned_launch_quits_late_driver(self):
        driver = FakeDriver()
        factory = SlowSeleniumFactory(driver, startup=0.3)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(factory.launch(), timeout=0.05)

        assert await asyncio.to_thread(driver.quit_called.wait, 5)

    @pytest.mark.asyncio
    async def test_page_url_is_read_off_the_event_loop(self):
        driver = FakeDriver(redirects={"https://example.com/old": "https://example.com/new"})
        page = SeleniumPage(driver, poll_interval=0)

        await page.navigate("https://example.com/old", "load", 5)

        assert page.url == "https://example.com/new"
        assert driver.url_reads
        assert threading.get_ident() not in driver.url_reads

    @pytest.mark.skipif(not hasattr(os, "killpg"), reason="process groups are POSIX only")
    @pytest.mark.asyncio
    async def test_terminate_kills_driver_and_browser_processes(self):
        # Stands in for chromedriver (group leader) and the Chrome it spawned
        script = (
            "import subprocess, sys, time\n"
            "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
            "print(child.pid, flush=True)\n"
            "time.sleep(60)\n"
        )
        leader = subprocess.Popen(
            [sys.executable, "-c", script], stdout=subprocess.PIPE, text=True, start_new_session=True
        )
        child_pid = int(leader.stdout.readline())
        session = SeleniumSession("selenium-chrome", FakeDriver(process=leader))

        await session.terminate()

        assert leader.wait(timeout=5) == -signal.SIGKILL
        leader.stdout.close()
        if os.path.isdir("/proc"):
            for _ in range(50):
                if _process_gone(child_pid):
                    break
                time.sleep(0.1)
            assert _process_gone(child_pid)
