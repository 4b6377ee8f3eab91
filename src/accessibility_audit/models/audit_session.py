"""Audit session and its aggregate summary."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from .audit_result import PageAuditResult
from .criteria import CriteriaSetName
from .page_record import CrawlStats, DiscoveryStrategy


class PageScore(BaseModel):
    url: str
    score: float


class CommonIssue(BaseModel):
    """A rule violated on more than one page."""

    rule_id: str
    page_count: int
    pages: list[str] = Field(default_factory=list)


class SessionSummary(BaseModel):
    """Aggregates over scanned pages. Sentinel results only count towards failed_pages."""

    total_pages: int = 0
    scanned_pages: int = 0
    failed_pages: int = 0
    total_violations: int = 0
    average_score: float = 0.0
    best_page: Optional[PageScore] = None
    worst_page: Optional[PageScore] = None
    violations_by_severity: dict[str, int] = Field(
        default_factory=lambda: {"critical": 0, "serious": 0, "moderate": 0, "minor": 0}
    )
    violations_by_rule: dict[str, int] = Field(default_factory=dict)
    common_issues: list[CommonIssue] = Field(default_factory=list)
    average_legal_risk: int = 0
    overall_risk_level: str = "UNKNOWN"


class AuditSession(BaseModel):
    """One multi-page audit run."""

    id: str
    base_url: str
    strategy: DiscoveryStrategy
    criteria_set: CriteriaSetName = CriteriaSetName.SET_A
    custom_criteria: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None
    pages: list[PageAuditResult] = Field(default_factory=list)
    crawl_stats: CrawlStats = Field(default_factory=CrawlStats)
    summary: SessionSummary = Field(default_factory=SessionSummary)
    error: Optional[str] = Field(None, description="Set when the session could not run at all")

    @property
    def pages_discovered(self) -> int:
        return self.crawl_stats.total

    @property
    def duration_seconds(self) -> float | None:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()
