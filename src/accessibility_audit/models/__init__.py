"""Data models for the accessibility audit system."""

from .page_record import PageRecord, CrawlOptions, CrawlStats, DiscoveryStrategy
from .violation import ViolationRecord, Severity, SEVERITY_ORDER
from .audit_result import PageAuditResult, SENTINEL_SCORE
from .audit_session import AuditSession, SessionSummary, CommonIssue, PageScore
from .criteria import (
    CriteriaSet,
    CriteriaSetName,
    Criterion,
    PRIORITY_CRITERIA,
    REGULATORY_CRITICAL_IDS,
    resolve_criteria_set,
)
from .verdict import ComplianceLevel, ComplianceVerdict

__all__ = [
    "PageRecord",
    "CrawlOptions",
    "CrawlStats",
    "DiscoveryStrategy",
    "ViolationRecord",
    "Severity",
    "SEVERITY_ORDER",
    "PageAuditResult",
    "SENTINEL_SCORE",
    "AuditSession",
    "SessionSummary",
    "CommonIssue",
    "PageScore",
    "CriteriaSet",
    "CriteriaSetName",
    "Criterion",
    "PRIORITY_CRITERIA",
    "REGULATORY_CRITICAL_IDS",
    "resolve_criteria_set",
    "ComplianceLevel",
    "ComplianceVerdict",
]
