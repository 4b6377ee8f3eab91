"""Multi-page orchestrator - control plane for a full audit session."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from ..config.loader import AuditOptions, Config
from ..errors import SessionInitFailure
from ..models.audit_result import PageAuditResult
from ..models.audit_session import AuditSession
from ..models.page_record import PageRecord
from ..tools.aggregate_tool import summarize
from ..tools.browser_tool import BrowserSessionManager
from ..tools.discover_tool import BrowserLinkSource, LinkSource, crawl_stats, discover_tool
from ..tools.engines import build_engine_chain
from ..tools.scan_tool import AccessibilityScanner

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationState:
    """Mutable state of one audit run. Results are indexed like pages."""

    session: AuditSession
    primary: BrowserSessionManager
    managers: list[BrowserSessionManager] = field(default_factory=list)
    pages: list[PageRecord] = field(default_factory=list)
    results: list[Optional[PageAuditResult]] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    def record(self, index: int, result: PageAuditResult) -> None:
        self.results[index] = result

    def final_results(self, error: Optional[str]) -> list[PageAuditResult]:
        """Results in discovery order, with a sentinel for every page never scanned."""
        return [
            result
            or PageAuditResult.not_scanned(page.url, error=error or "Page was not scanned", title=page.title)
            for page, result in zip(self.pages, self.results)
        ]


class MultiPageOrchestrator:
    """
    Runs discovery, then scans every valid page in two passes.

    The primary pass uses max_concurrent workers, each owning its own
    browser session. Pages that come back with the not-scanned sentinel are
    scanned once more in a slower retry pass and replaced in place on
    success. Only SessionInitFailure stops a run; it is reported on the
    session instead of raised.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        manager_factory: Optional[Callable[[], BrowserSessionManager]] = None,
        link_source: Optional[LinkSource] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or Config()
        self.manager_factory = manager_factory or self._default_manager
        self.link_source = link_source
        self.http_client = http_client

    def _default_manager(self) -> BrowserSessionManager:
        browser = self.config.browser
        return BrowserSessionManager(
            build_engine_chain(browser.engines, browser),
            init_timeout=browser.init_timeout,
            close_timeout=browser.close_timeout,
        )

    async def run(self, base_url: Optional[str] = None, options: Optional[AuditOptions] = None) -> AuditSession:
        """Run a complete audit session for base_url."""
        options = options or self.config.audit
        base_url = base_url or self.config.base_url
        if not base_url:
            raise ValueError("No base URL given and none configured")

        session = AuditSession(
            id=uuid.uuid4().hex,
            base_url=base_url,
            strategy=options.strategy,
            criteria_set=options.criteria_set,
            custom_criteria=list(options.custom_criteria),
        )
        primary = self.manager_factory()
        state = OrchestrationState(session=session, primary=primary, managers=[primary])
        scanner = AccessibilityScanner(self.config.scanner, max_retries=options.max_retries)
        logger.info("Starting audit %s of %s (strategy=%s, criteria=%s)",
                    session.id, base_url, options.strategy.value, options.criteria_set.value)

        try:
            records = await self._discover(state, base_url, options)
            session.crawl_stats = crawl_stats(records)
            state.pages = [r for r in records if r.is_valid]
            state.results = [None] * len(state.pages)
            logger.info("Discovered %d pages, %d valid for scanning", len(records), len(state.pages))

            await self._primary_pass(state, scanner, options)
            if options.retry_failed_pages and state.failed:
                await self._retry_pass(state, scanner, options)
        except SessionInitFailure as e:
            logger.error("Audit %s aborted: %s", session.id, e)
            session.error = str(e)
        finally:
            await asyncio.gather(*(m.release() for m in state.managers))

        session.pages = state.final_results(session.error)
        session.summary = summarize(session.pages)
        session.ended_at = datetime.now(timezone.utc)
        logger.info("Audit %s finished: %d/%d pages scanned, average score %.2f",
                    session.id, session.summary.scanned_pages, session.summary.total_pages,
                    session.summary.average_score)
        return session

    async def _discover(self, state: OrchestrationState, base_url: str, options: AuditOptions) -> list[PageRecord]:
        link_source = self.link_source
        if link_source is None and self.config.discovery.link_source == "browser":
            link_source = BrowserLinkSource(state.primary)
        return await discover_tool(
            base_url,
            options.strategy,
            options.crawl,
            link_source=link_source,
            http_client=self.http_client,
            config=self.config,
        )

    async def _primary_pass(
        self,
        state: OrchestrationState,
        scanner: AccessibilityScanner,
        options: AuditOptions,
    ) -> None:
        total = len(state.pages)
        if total == 0:
            return

        queue: asyncio.Queue[int] = asyncio.Queue()
        for index in range(total):
            queue.put_nowait(index)

        # One browser per worker; the first worker reuses the discovery session
        workers = [state.primary]
        for _ in range(min(options.max_concurrent, total) - 1):
            manager = self.manager_factory()
            state.managers.append(manager)
            workers.append(manager)

        async def worker(manager: BrowserSessionManager) -> None:
            first = True
            while True:
                try:
                    index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                if not first and options.delay_between_pages:
                    await asyncio.sleep(options.delay_between_pages)
                first = False

                page = state.pages[index]
                logger.info("[%d/%d] Scanning %s", index + 1, total, page.url)
                result = await scanner.scan(manager, page.url, page.title)
                state.record(index, result)
                if not result.is_scanned and options.retry_failed_pages:
                    state.failed.append(index)

        tasks = [asyncio.create_task(worker(m)) for m in workers]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _retry_pass(
        self,
        state: OrchestrationState,
        scanner: AccessibilityScanner,
        options: AuditOptions,
    ) -> None:
        delay = options.delay_between_pages * options.retry_delay_multiplier
        failed = sorted(state.failed)
        logger.info("Retrying %d failed pages", len(failed))
        for n, index in enumerate(failed, 1):
            if delay:
                await asyncio.sleep(delay)
            page = state.pages[index]
            logger.info("[retry %d/%d] Scanning %s", n, len(failed), page.url)
            result = await scanner.scan(state.primary, page.url, page.title)
            if result.is_scanned:
                state.record(index, result)
                logger.info("Retry succeeded for %s", page.url)
            else:
                logger.warning("Retry failed for %s: %s", page.url, result.error)
