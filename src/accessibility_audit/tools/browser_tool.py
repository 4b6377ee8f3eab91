"""Browser tool - one shared headless browser session behind an engine fallback chain."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from ..errors import SessionInitFailure

logger = logging.getLogger(__name__)


class PageHandle(ABC):
    """Narrow page capability every engine adapter provides."""

    @abstractmethod
    async def navigate(self, url: str, wait_until: str, timeout: float) -> None:
        """Load url, returning once the wait_until condition is met."""

    @abstractmethod
    async def title(self) -> str: ...

    @property
    @abstractmethod
    def url(self) -> str: ...

    @abstractmethod
    async def content(self) -> str: ...

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Evaluate a JS function expression, e.g. "(arg) => ...", with one argument."""

    @abstractmethod
    async def inject_script(self, src: str) -> None:
        """Add a <script src=...> tag and wait for it to load."""

    @abstractmethod
    async def close(self) -> None: ...


class BrowserSession(ABC):
    """A launched browser. Callers never need to know which engine is behind it."""

    engine: str = "unknown"
    # True when every page gets its own isolated context
    isolated_pages: bool = True

    @abstractmethod
    async def new_page(self) -> PageHandle: ...

    @abstractmethod
    async def close(self) -> None:
        """Graceful shutdown."""

    @abstractmethod
    async def terminate(self) -> None:
        """Kill the browser process. Used when close() hangs."""


class EngineFactory(ABC):
    """Launches one kind of browser session."""

    name: str = "engine"

    @abstractmethod
    async def launch(self) -> BrowserSession: ...


class BrowserSessionManager:
    """
    Owns at most one live BrowserSession.

    The session is created lazily on acquire() by trying each engine factory
    in priority order. release() never hangs: a close that exceeds its timeout
    is followed by a forced terminate.
    """

    def __init__(
        self,
        factories: Sequence[EngineFactory],
        init_timeout: float = 60.0,
        close_timeout: float = 10.0,
    ):
        self.factories = list(factories)
        self.init_timeout = init_timeout
        self.close_timeout = close_timeout
        self.active_engine: Optional[str] = None
        self.launch_count = 0
        self._session: Optional[BrowserSession] = None
        self._lock = asyncio.Lock()

    @property
    def is_active(self) -> bool:
        return self._session is not None

    async def acquire(self) -> BrowserSession:
        """Return the live session, launching one through the fallback chain if needed."""
        async with self._lock:
            if self._session is not None:
                return self._session

            errors: dict[str, str] = {}
            for factory in self.factories:
                logger.info("Launching browser engine %s", factory.name)
                try:
                    session = await asyncio.wait_for(factory.launch(), timeout=self.init_timeout)
                except asyncio.TimeoutError:
                    errors[factory.name] = f"initialization timed out after {self.init_timeout}s"
                    logger.warning("Engine %s timed out during launch", factory.name)
                    continue
                except Exception as e:
                    errors[factory.name] = str(e) or type(e).__name__
                    logger.warning("Engine %s failed to launch: %s", factory.name, e)
                    continue

                self._session = session
                self.active_engine = factory.name
                self.launch_count += 1
                logger.info("Browser session ready on %s", factory.name)
                return session

            self.active_engine = None
            raise SessionInitFailure(errors)

    async def release(self, timeout: float | None = None) -> None:
        """Close the live session, force-terminating it if close does not finish in time."""
        async with self._lock:
            session, self._session = self._session, None
            if session is None:
                return
            timeout = self.close_timeout if timeout is None else timeout
            try:
                await asyncio.wait_for(session.close(), timeout=timeout)
                logger.debug("Browser session on %s closed", session.engine)
                return
            except asyncio.TimeoutError:
                logger.warning("Closing %s exceeded %ss, terminating", session.engine, timeout)
            except Exception as e:
                logger.warning("Closing %s failed (%s), terminating", session.engine, e)

            try:
                await asyncio.wait_for(session.terminate(), timeout=timeout)
            except Exception as e:
                logger.error("Could not terminate %s browser: %s", session.engine, e)

    async def recycle(self) -> None:
        """Tear down the session so the next acquire() launches a fresh browser."""
        logger.info("Recycling browser session (%s)", self.active_engine)
        await self.release()

    async def __aenter__(self) -> "BrowserSessionManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
