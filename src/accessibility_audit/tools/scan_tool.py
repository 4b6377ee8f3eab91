"""Scan tool - run axe-core against one page with escalation, timeouts and retry."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from ..config.loader import ScannerConfig
from ..errors import (
    NavigationFailure,
    PageBlocked,
    ScanAttemptError,
    ScanEngineError,
    ScanEngineInjectionFailure,
    ScanTimeout,
)
from ..models.audit_result import PageAuditResult
from ..models.criteria import criteria_for_rule
from ..models.violation import Severity, ViolationRecord
from .browser_tool import BrowserSessionManager, PageHandle

logger = logging.getLogger(__name__)

AXE_READY = "() => typeof window.axe !== 'undefined' && typeof window.axe.run === 'function'"

# Only the fields we keep cross the page boundary
AXE_RUN = """async (options) => {
  const results = await window.axe.run(document, options);
  return results.violations.map((v) => ({
    id: v.id,
    impact: v.impact,
    tags: v.tags,
    description: v.description,
    help: v.help,
    helpUrl: v.helpUrl,
    nodeCount: v.nodes.length,
    sample: v.nodes.length ? v.nodes[0].html : null,
  }));
}"""

SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 6.0,
    Severity.SERIOUS: 3.0,
    Severity.MODERATE: 1.0,
    Severity.MINOR: 0.5,
}
STANDARD_PENALTY = 2.0
SAMPLE_MAX_CHARS = 250
PAGE_CLOSE_TIMEOUT = 10.0


class ScanState(str, Enum):
    """States of one page scan."""

    ATTEMPTING = "attempting"
    NAVIGATION_FAILED = "navigation_failed"
    INJECTION_FAILED = "injection_failed"
    SCAN_TIMED_OUT = "scan_timed_out"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"
    COMPLETED = "completed"


def failure_state(error: ScanAttemptError) -> ScanState:
    """Map a typed attempt failure to its state."""
    if isinstance(error, ScanTimeout):
        return ScanState.SCAN_TIMED_OUT
    if isinstance(error, ScanEngineInjectionFailure):
        return ScanState.INJECTION_FAILED
    return ScanState.NAVIGATION_FAILED


@dataclass
class ScanTrace:
    """State transitions and errors of one scan, in order."""

    url: str
    states: list[ScanState] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    attempts: int = 0

    def move(self, state: ScanState) -> None:
        logger.debug("%s: %s", self.url, state.value)
        self.states.append(state)
        if state == ScanState.ATTEMPTING:
            self.attempts += 1

    @property
    def state(self) -> Optional[ScanState]:
        return self.states[-1] if self.states else None


def parse_axe_violations(raw: list[dict[str, Any]] | None) -> list[ViolationRecord]:
    """Convert axe-core violation entries into ViolationRecords."""
    violations: list[ViolationRecord] = []
    for item in raw or []:
        rule_id = item.get("id")
        if not rule_id:
            continue
        try:
            severity = Severity(item.get("impact") or Severity.MODERATE.value)
        except ValueError:
            severity = Severity.MODERATE
        count = item.get("nodeCount")
        if count is None:
            count = len(item.get("nodes") or [])
        sample = item.get("sample")
        violations.append(
            ViolationRecord(
                rule_id=rule_id,
                severity=severity,
                criteria_ids=criteria_for_rule(rule_id, item.get("tags") or ()),
                description=item.get("help") or item.get("description") or "",
                help_url=item.get("helpUrl"),
                occurrence_count=max(1, int(count)),
                sample_element=sample[:SAMPLE_MAX_CHARS] if sample else None,
            )
        )
    return violations


def compute_score(violations: list[ViolationRecord], formula: str = "weighted") -> float:
    """
    Page score on a 0-10 scale, two decimals.
    weighted: 100 - (6*critical + 3*serious + 1*moderate + 0.5*minor), over 10.
    standard: 100 - 2 per violated rule, over 10.
    """
    if formula == "standard":
        penalty = STANDARD_PENALTY * len(violations)
    else:
        penalty = sum(SEVERITY_WEIGHTS[v.severity] for v in violations)
    return round(max(0.0, 100.0 - penalty) / 10.0, 2)


@dataclass
class _AttemptOutcome:
    title: str
    violations: list[ViolationRecord]
    engine: str


class AccessibilityScanner:
    """
    Scans a single page per call.

    Each attempt opens a fresh page on the shared session. Attempts are driven
    by tenacity: a failed attempt recycles the whole browser session and waits
    attempt * base_retry_delay before the next one. After max_retries + 1 attempts the page gets the
    not-scanned sentinel result. SessionInitFailure is never caught here.
    """

    def __init__(self, config: Optional[ScannerConfig] = None, max_retries: Optional[int] = None):
        self.config = config or ScannerConfig()
        self.max_retries = self.config.max_retries if max_retries is None else max_retries

    async def scan(self, sessions: BrowserSessionManager, url: str, title: str = "") -> PageAuditResult:
        result, _ = await self.scan_with_trace(sessions, url, title)
        return result

    async def scan_with_trace(
        self,
        sessions: BrowserSessionManager,
        url: str,
        title: str = "",
    ) -> tuple[PageAuditResult, ScanTrace]:
        trace = ScanTrace(url)
        started = time.monotonic()
        max_attempts = self.max_retries + 1
        base_delay = self.config.base_retry_delay

        async def recycle_before_retry(retry_state: RetryCallState) -> None:
            trace.move(ScanState.RETRYING)
            await sessions.recycle()

        # attempt n failing waits n * base_delay before attempt n + 1
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_incrementing(start=base_delay, increment=base_delay),
            retry=retry_if_exception_type(ScanAttemptError),
            before_sleep=recycle_before_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    number = attempt.retry_state.attempt_number
                    trace.move(ScanState.ATTEMPTING)
                    try:
                        outcome = await self._attempt(sessions, url)
                    except ScanAttemptError as e:
                        state = failure_state(e)
                        trace.move(state)
                        trace.errors.append(f"{state.value}: {e}")
                        logger.warning("Scan attempt %d/%d for %s failed (%s): %s",
                                       number, max_attempts, url, state.value, e)
                        raise
        except RetryError:
            trace.move(ScanState.EXHAUSTED)
            last_error = trace.errors[-1] if trace.errors else "unknown error"
            logger.error("Giving up on %s after %d attempts: %s", url, max_attempts, last_error)
            result = PageAuditResult.not_scanned(
                url,
                error=f"Scan failed after {max_attempts} attempts: {last_error}",
                title=title,
                attempts=max_attempts,
                audit_duration_ms=int((time.monotonic() - started) * 1000),
            )
            return result, trace

        trace.move(ScanState.COMPLETED)
        score = compute_score(outcome.violations, self.config.scoring_formula)
        logger.info("Scanned %s: score %.2f, %d violations (attempt %d, %s)",
                    url, score, len(outcome.violations), number, outcome.engine)
        result = PageAuditResult(
            url=url,
            title=outcome.title or title,
            score=score,
            violations=outcome.violations,
            audit_duration_ms=int((time.monotonic() - started) * 1000),
            attempts=number,
            engine=outcome.engine,
        )
        return result, trace

    async def _attempt(self, sessions: BrowserSessionManager, url: str) -> _AttemptOutcome:
        session = await sessions.acquire()
        try:
            page = await asyncio.wait_for(session.new_page(), timeout=self.config.navigation_timeout)
        except asyncio.TimeoutError as e:
            raise NavigationFailure("opening a new page timed out") from e
        except Exception as e:
            raise NavigationFailure(f"could not open a new page: {e}") from e

        try:
            title = await self._navigate(page, url)
            if self.config.settle_delay:
                await asyncio.sleep(self.config.settle_delay)
            await self._inject(page)
            await self._wait_until_ready(page)
            raw = await self._run(page)
        finally:
            try:
                await asyncio.wait_for(page.close(), timeout=PAGE_CLOSE_TIMEOUT)
            except Exception as e:
                logger.debug("Closing page for %s failed: %s", url, e or type(e).__name__)

        return _AttemptOutcome(title=title, violations=parse_axe_violations(raw), engine=session.engine)

    def check_blocked(self, title: str, url: str) -> None:
        """Raise PageBlocked if the loaded document looks like a challenge or error page."""
        lowered_title = (title or "").lower()
        for indicator in self.config.block_title_indicators:
            if indicator in lowered_title:
                raise PageBlocked(f"page title {title!r} matches block indicator {indicator!r}")
        lowered_url = (url or "").lower()
        for indicator in self.config.block_url_indicators:
            if indicator in lowered_url:
                raise PageBlocked(f"page URL {url} matches block indicator {indicator!r}")

    async def _navigate(self, page: PageHandle, url: str) -> str:
        """Load url, escalating through the wait strategies. Returns the page title."""
        timeout = self.config.navigation_timeout
        errors: list[str] = []
        blocked = False
        for wait_until in self.config.wait_strategies:
            try:
                await asyncio.wait_for(page.navigate(url, wait_until, timeout), timeout=timeout + 5)
                title = await asyncio.wait_for(page.title(), timeout=timeout)
                self.check_blocked(title, page.url)
                return title
            except PageBlocked as e:
                blocked = True
                errors.append(f"{wait_until}: {e}")
            except asyncio.TimeoutError:
                errors.append(f"{wait_until}: timed out after {timeout}s")
            except Exception as e:
                errors.append(f"{wait_until}: {e or type(e).__name__}")
            logger.debug("Navigation to %s with %s failed: %s", url, wait_until, errors[-1])

        detail = "; ".join(errors) or "no wait strategies configured"
        if blocked:
            raise PageBlocked(detail)
        raise NavigationFailure(detail)

    async def _inject(self, page: PageHandle) -> None:
        errors: list[str] = []
        for src in self.config.script_sources:
            try:
                await asyncio.wait_for(page.inject_script(src), timeout=self.config.inject_timeout)
                logger.debug("Injected axe-core from %s", src)
                return
            except asyncio.TimeoutError:
                errors.append(f"{src}: timed out")
            except Exception as e:
                errors.append(f"{src}: {e or type(e).__name__}")
        raise ScanEngineInjectionFailure("; ".join(errors) or "no script sources configured")

    async def _wait_until_ready(self, page: PageHandle) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.engine_ready_timeout
        while True:
            try:
                ready = await asyncio.wait_for(
                    page.evaluate(AXE_READY), timeout=self.config.engine_ready_timeout
                )
            except asyncio.TimeoutError as e:
                raise ScanEngineInjectionFailure("readiness check timed out") from e
            except Exception as e:
                raise ScanEngineInjectionFailure(f"readiness check failed: {e}") from e
            if ready:
                return
            if loop.time() >= deadline:
                raise ScanEngineInjectionFailure(
                    f"axe-core not ready after {self.config.engine_ready_timeout}s"
                )
            await asyncio.sleep(self.config.engine_poll_interval)

    async def _run(self, page: PageHandle) -> list[dict[str, Any]]:
        options = {
            "runOnly": {"type": "tag", "values": list(self.config.run_tags)},
            "resultTypes": ["violations"],
        }
        try:
            raw = await asyncio.wait_for(page.evaluate(AXE_RUN, options), timeout=self.config.scan_timeout)
        except asyncio.TimeoutError as e:
            raise ScanTimeout(f"axe-core run exceeded {self.config.scan_timeout}s") from e
        except Exception as e:
            raise ScanEngineError(f"axe-core run failed: {e}") from e
        if not isinstance(raw, list):
            raise ScanEngineError(f"unexpected axe-core result: {type(raw).__name__}")
        return raw
