"""Tests for the multi-page orchestrator."""

import pytest

from accessibility_audit.agent.orchestrator import MultiPageOrchestrator
from accessibility_audit.config.loader import AuditOptions, Config
from accessibility_audit.models.page_record import CrawlOptions, DiscoveryStrategy
from accessibility_audit.tools.browser_tool import BrowserSessionManager

from conftest import FakeBehaviour, FakeEngineFactory, FakeLinkSource

ROOT = "https://example.com/"
PAGE_A = "https://example.com/a"
PAGE_B = "https://example.com/b"

SITE = {ROOT: ("Home", [(PAGE_A, "A"), (PAGE_B, "B")])}

VIOLATION = {
    "id": "image-alt",
    "impact": "critical",
    "tags": ["wcag2a", "wcag111"],
    "help": "Images must have alternate text",
    "nodeCount": 1,
}


class ManagerPool:
    """manager_factory that remembers every manager it built."""

    def __init__(self, behaviour: FakeBehaviour, error: Exception | None = None):
        self.behaviour = behaviour
        self.error = error
        self.managers: list[BrowserSessionManager] = []
        self.factories: list[FakeEngineFactory] = []

    def __call__(self) -> BrowserSessionManager:
        factory = FakeEngineFactory(f"fake-{len(self.factories)}", self.behaviour, error=self.error)
        manager = BrowserSessionManager([factory], init_timeout=1.0, close_timeout=0.5)
        self.factories.append(factory)
        self.managers.append(manager)
        return manager


@pytest.fixture
def config(scanner_config) -> Config:
    config = Config()
    config.scanner = scanner_config
    return config


def _options(**overrides) -> AuditOptions:
    values = dict(
        strategy=DiscoveryStrategy.AUTO,
        crawl=CrawlOptions(max_depth=1),
        delay_between_pages=0,
        max_retries=0,
    )
    values.update(overrides)
    return AuditOptions(**values)


class TestMultiPageOrchestrator:
    @pytest.mark.asyncio
    async def test_full_run(self, config, behaviour):
        behaviour.violations = [VIOLATION]
        pool = ManagerPool(behaviour)
        orchestrator = MultiPageOrchestrator(config, manager_factory=pool, link_source=FakeLinkSource(SITE))

        session = await orchestrator.run(ROOT, _options())

        assert session.error is None
        assert [p.url for p in session.pages] == [ROOT, PAGE_A, PAGE_B]
        assert all(p.is_scanned for p in session.pages)
        assert session.crawl_stats.total == 3
        assert session.pages_discovered == 3
        assert session.summary.scanned_pages == 3
        assert session.summary.average_score == 9.4
        assert session.summary.common_issues[0].rule_id == "image-alt"
        assert session.summary.common_issues[0].page_count == 3
        assert session.ended_at is not None
        assert session.duration_seconds >= 0
        assert len(pool.managers) == 1
        assert not pool.managers[0].is_active

    @pytest.mark.asyncio
    async def test_retry_pass_replaces_result_in_place(self, config, behaviour):
        behaviour.inject_failures = {PAGE_A: 1}
        pool = ManagerPool(behaviour)
        orchestrator = MultiPageOrchestrator(config, manager_factory=pool, link_source=FakeLinkSource(SITE))

        session = await orchestrator.run(ROOT, _options())

        assert [p.url for p in session.pages] == [ROOT, PAGE_A, PAGE_B]
        assert all(p.is_scanned for p in session.pages)
        navigations = [c[1] for c in behaviour.calls if c[0] == "navigate"]
        assert navigations.count(PAGE_A) == 2
        assert session.summary.failed_pages == 0

    @pytest.mark.asyncio
    async def test_retry_disabled_keeps_sentinel(self, config, behaviour):
        behaviour.inject_failures = {PAGE_A: 1}
        pool = ManagerPool(behaviour)
        orchestrator = MultiPageOrchestrator(config, manager_factory=pool, link_source=FakeLinkSource(SITE))

        session = await orchestrator.run(ROOT, _options(retry_failed_pages=False))

        page_a = session.pages[1]
        assert page_a.url == PAGE_A
        assert page_a.score == -1
        assert "injection_failed" in page_a.error
        assert session.summary.failed_pages == 1
        assert session.summary.scanned_pages == 2

    @pytest.mark.asyncio
    async def test_page_failing_both_passes_stays_sentinel(self, config, behaviour):
        behaviour.inject_failures = {PAGE_B: 10}
        pool = ManagerPool(behaviour)
        orchestrator = MultiPageOrchestrator(config, manager_factory=pool, link_source=FakeLinkSource(SITE))

        session = await orchestrator.run(ROOT, _options(max_retries=1))

        assert session.error is None
        assert not session.pages[2].is_scanned
        assert session.pages[2].attempts == 2
        assert session.summary.best_page.url in (ROOT, PAGE_A)

    @pytest.mark.asyncio
    async def test_concurrent_workers_get_own_sessions(self, config, behaviour):
        site = {ROOT: ("Home", [(f"https://example.com/p{i}", f"P{i}") for i in range(5)])}
        pool = ManagerPool(behaviour)
        orchestrator = MultiPageOrchestrator(config, manager_factory=pool, link_source=FakeLinkSource(site))

        session = await orchestrator.run(ROOT, _options(max_concurrent=3))

        assert len(pool.managers) == 3
        assert all(f.launches == 1 for f in pool.factories)
        assert [p.url for p in session.pages] == [ROOT] + [f"https://example.com/p{i}" for i in range(5)]
        assert all(p.is_scanned for p in session.pages)
        assert not any(m.is_active for m in pool.managers)

    @pytest.mark.asyncio
    async def test_invalid_pages_not_scanned(self, config, behaviour):
        site = {ROOT: ("Home", [(PAGE_A, "A")])}
        pool = ManagerPool(behaviour)
        source = FakeLinkSource(site, failing={PAGE_A})
        orchestrator = MultiPageOrchestrator(config, manager_factory=pool, link_source=source)

        session = await orchestrator.run(ROOT, _options(crawl=CrawlOptions(max_depth=2)))

        assert [p.url for p in session.pages] == [ROOT]
        assert session.crawl_stats.invalid == 1

    @pytest.mark.asyncio
    async def test_session_init_failure_reported_on_session(self, config):
        pool = ManagerPool(FakeBehaviour(), error=RuntimeError("browser not installed"))
        orchestrator = MultiPageOrchestrator(config, manager_factory=pool)

        session = await orchestrator.run(ROOT, _options(strategy=DiscoveryStrategy.MANUAL))

        assert "All browser engines failed to start" in session.error
        assert len(session.pages) == 1
        assert session.pages[0].score == -1
        assert session.pages[0].error == session.error
        assert session.summary.failed_pages == 1
        assert session.summary.overall_risk_level == "UNKNOWN"

    @pytest.mark.asyncio
    async def test_session_init_failure_during_browser_discovery(self, config):
        pool = ManagerPool(FakeBehaviour(), error=RuntimeError("browser not installed"))
        orchestrator = MultiPageOrchestrator(config, manager_factory=pool)

        session = await orchestrator.run(ROOT, _options())

        assert session.error is not None
        assert session.pages == []

    @pytest.mark.asyncio
    async def test_base_url_from_config(self, config, behaviour):
        config.base_url = ROOT
        config.audit = _options(strategy=DiscoveryStrategy.MANUAL)
        orchestrator = MultiPageOrchestrator(config, manager_factory=ManagerPool(behaviour))

        session = await orchestrator.run()

        assert session.base_url == ROOT
        assert [p.url for p in session.pages] == [ROOT]

    @pytest.mark.asyncio
    async def test_missing_base_url(self, config):
        with pytest.raises(ValueError):
            await MultiPageOrchestrator(config).run()


class TestPacing:
    @pytest.mark.asyncio
    async def test_delay_between_pages_skipped_before_first_page(self, config, behaviour, sleeps):
        orchestrator = MultiPageOrchestrator(config, manager_factory=ManagerPool(behaviour), link_source=FakeLinkSource(SITE))

        await orchestrator.run(ROOT, _options(delay_between_pages=2))

        assert sleeps == [2, 2]

    @pytest.mark.asyncio
    async def test_each_worker_skips_delay_before_its_first_page(self, config, behaviour, sleeps):
        orchestrator = MultiPageOrchestrator(config, manager_factory=ManagerPool(behaviour), link_source=FakeLinkSource(SITE))

        await orchestrator.run(ROOT, _options(delay_between_pages=2, max_concurrent=3))

        assert sleeps == []

    @pytest.mark.asyncio
    async def test_retry_pass_uses_multiplied_delay(self, config, behaviour, sleeps):
        behaviour.inject_failures = {PAGE_A: 1}
        orchestrator = MultiPageOrchestrator(config, manager_factory=ManagerPool(behaviour), link_source=FakeLinkSource(SITE))

        session = await orchestrator.run(ROOT, _options(delay_between_pages=2, retry_delay_multiplier=3))

        assert sleeps == [2, 2, 6]
        assert all(p.is_scanned for p in session.pages)
