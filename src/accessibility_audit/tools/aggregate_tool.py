"""Aggregate tool - session-level statistics over per-page scan results."""

from collections import defaultdict

from ..models.audit_result import PageAuditResult
from ..models.audit_session import CommonIssue, PageScore, SessionSummary
from ..models.criteria import is_priority_criterion
from ..models.violation import Severity

COMMON_ISSUES_LIMIT = 10

LEGAL_RISK_WEIGHTS = {"critical": 15, "serious": 8, "priority": 5}


def legal_risk(page: PageAuditResult) -> int:
    """Estimated legal risk of one scanned page, 0-100."""
    critical = sum(1 for v in page.violations if v.severity == Severity.CRITICAL)
    serious = sum(1 for v in page.violations if v.severity == Severity.SERIOUS)
    priority = sum(
        1 for v in page.violations if any(is_priority_criterion(c) for c in v.criteria_ids)
    )
    risk = (
        critical * LEGAL_RISK_WEIGHTS["critical"]
        + serious * LEGAL_RISK_WEIGHTS["serious"]
        + priority * LEGAL_RISK_WEIGHTS["priority"]
    )
    return min(100, risk)


def risk_level(average_risk: float) -> str:
    if average_risk > 70:
        return "HIGH"
    if average_risk > 40:
        return "MEDIUM"
    return "LOW"


def common_issues(pages: list[PageAuditResult], limit: int = COMMON_ISSUES_LIMIT) -> list[CommonIssue]:
    """Rules violated on more than one page, most widespread first."""
    pages_by_rule: dict[str, list[str]] = defaultdict(list)
    for page in pages:
        for rule_id in dict.fromkeys(v.rule_id for v in page.violations):
            if page.url not in pages_by_rule[rule_id]:
                pages_by_rule[rule_id].append(page.url)

    issues = [
        CommonIssue(rule_id=rule_id, page_count=len(urls), pages=urls)
        for rule_id, urls in pages_by_rule.items()
        if len(urls) > 1
    ]
    issues.sort(key=lambda i: (-i.page_count, i.rule_id))
    return issues[:limit]


def summarize(pages: list[PageAuditResult]) -> SessionSummary:
    """
    Build the session summary.
    Sentinel (not scanned) results only count towards failed_pages; a run
    with nothing scanned yields empty aggregates and risk level UNKNOWN.
    """
    scanned = [p for p in pages if p.is_scanned]
    summary = SessionSummary(
        total_pages=len(pages),
        scanned_pages=len(scanned),
        failed_pages=len(pages) - len(scanned),
    )
    if not scanned:
        return summary

    summary.total_violations = sum(len(p.violations) for p in scanned)
    summary.average_score = round(sum(p.score for p in scanned) / len(scanned), 2)

    best = max(scanned, key=lambda p: p.score)
    worst = min(scanned, key=lambda p: p.score)
    summary.best_page = PageScore(url=best.url, score=best.score)
    summary.worst_page = PageScore(url=worst.url, score=worst.score)

    by_rule: dict[str, int] = defaultdict(int)
    for page in scanned:
        for v in page.violations:
            summary.violations_by_severity[v.severity.value] += 1
            by_rule[v.rule_id] += 1
    summary.violations_by_rule = dict(sorted(by_rule.items(), key=lambda kv: (-kv[1], kv[0])))
    summary.common_issues = common_issues(scanned)

    risks = [legal_risk(p) for p in scanned]
    average_risk = sum(risks) / len(risks)
    summary.average_legal_risk = round(average_risk)
    summary.overall_risk_level = risk_level(average_risk)
    return summary
