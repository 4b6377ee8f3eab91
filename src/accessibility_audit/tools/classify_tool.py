"""Classify tool - rule-based compliance verdict from page scores and violations."""

from typing import Optional, Sequence

from ..models.audit_session import AuditSession
from ..models.criteria import CriteriaSet, resolve_criteria_set
from ..models.verdict import ComplianceLevel, ComplianceVerdict
from ..models.violation import ViolationRecord

# (fully, partial) score thresholds
REGULATORY_SCORE_GATE = (9.0, 8.0)  # strict: every score must exceed
STANDARD_SCORE_GATE = (9.0, 7.0)  # inclusive
CRITICAL_PASS_GATE = (0.75, 0.50)

RECOMMENDATIONS: dict[ComplianceLevel, tuple[str, ...]] = {
    ComplianceLevel.FULLY_COMPLIANT: (
        "Maintain the current accessibility level across the whole site",
        "Set up continuous monitoring to catch regressions",
    ),
    ComplianceLevel.PARTIALLY_COMPLIANT: (
        "Fix the violations on the lowest scoring pages first",
        "Add an accessibility check to the release process",
        "Set monthly improvement targets",
    ),
    ComplianceLevel.NON_COMPLIANT: (
        "Start a prioritised remediation plan",
        "Fix critical violations on every page",
        "Consider an external expert audit",
        "Make accessibility validation mandatory before release",
    ),
}

REGULATORY_RECOMMENDATIONS: dict[ComplianceLevel, tuple[str, ...]] = {
    ComplianceLevel.FULLY_COMPLIANT: (
        "Eligible to apply for the digital accessibility seal",
        "Consider an official accessibility certification",
    ),
    ComplianceLevel.PARTIALLY_COMPLIANT: (
        "Work towards full compliance (every page above 9.0)",
    ),
    ComplianceLevel.NON_COMPLIANT: (
        "Not eligible for the digital accessibility seal",
        "Bring every page above 8.0 first",
    ),
}


def _lower(a: ComplianceLevel, b: ComplianceLevel) -> ComplianceLevel:
    return a if a.rank <= b.rank else b


def _score_gate(scores: list[float], regulatory: bool) -> ComplianceLevel:
    if regulatory:
        fully, partial = REGULATORY_SCORE_GATE
        if all(s > fully for s in scores):
            return ComplianceLevel.FULLY_COMPLIANT
        if all(s > partial for s in scores):
            return ComplianceLevel.PARTIALLY_COMPLIANT
        return ComplianceLevel.NON_COMPLIANT

    fully, partial = STANDARD_SCORE_GATE
    if all(s >= fully for s in scores):
        return ComplianceLevel.FULLY_COMPLIANT
    if all(s >= partial for s in scores):
        return ComplianceLevel.PARTIALLY_COMPLIANT
    return ComplianceLevel.NON_COMPLIANT


def _critical_gate(pass_rate: float) -> ComplianceLevel:
    fully, partial = CRITICAL_PASS_GATE
    if pass_rate >= fully:
        return ComplianceLevel.FULLY_COMPLIANT
    if pass_rate >= partial:
        return ComplianceLevel.PARTIALLY_COMPLIANT
    return ComplianceLevel.NON_COMPLIANT


def violated_critical_criteria(
    violations_per_page: Sequence[Sequence[ViolationRecord]],
    criteria_set: CriteriaSet,
) -> list[str]:
    """Critical criteria violated on at least one page, in criteria-set order."""
    hit = {c for page in violations_per_page for v in page for c in v.criteria_ids}
    return [c for c in criteria_set.critical_ids if c in hit]


def classify(
    page_scores: Sequence[float],
    violations_per_page: Sequence[Sequence[ViolationRecord]],
    criteria_set: CriteriaSet,
) -> ComplianceVerdict:
    """
    Derive the compliance verdict for a set of audited pages.

    Pages with the not-scanned sentinel (score < 0) are ignored. The
    regulatory set is judged by two gates, page scores and the critical
    criteria pass-rate, and the final level is the lower of the two. Other
    sets are judged by page scores only. Pure and deterministic.
    """
    if len(page_scores) != len(violations_per_page):
        raise ValueError("page_scores and violations_per_page must have the same length")

    pages = [(s, list(v)) for s, v in zip(page_scores, violations_per_page) if s >= 0]
    if not pages:
        return ComplianceVerdict(
            level=ComplianceLevel.NON_COMPLIANT,
            aggregate_score=0.0,
            critical_criteria_pass_rate=0.0,
            criteria_set=criteria_set.name,
            reasons=("No pages were audited",),
            recommendations=("Run a full audit of the site",),
        )

    scores = [s for s, _ in pages]
    violations = [v for _, v in pages]
    average = round(sum(scores) / len(scores), 2)
    regulatory = criteria_set.is_regulatory

    total_critical = len(criteria_set.critical_ids)
    failed = violated_critical_criteria(violations, criteria_set)
    pass_rate = (total_critical - len(failed)) / total_critical if total_critical else 1.0

    score_level = _score_gate(scores, regulatory)
    level = _lower(score_level, _critical_gate(pass_rate)) if regulatory else score_level

    reasons = [f"Average score: {average}/10"]
    fully, partial = REGULATORY_SCORE_GATE if regulatory else STANDARD_SCORE_GATE
    strict = "above" if regulatory else "at or above"
    if score_level == ComplianceLevel.FULLY_COMPLIANT:
        reasons.append(f"All {len(scores)} pages score {strict} {fully}")
    elif score_level == ComplianceLevel.PARTIALLY_COMPLIANT:
        reasons.append(f"All {len(scores)} pages score {strict} {partial}")
        below = sum(1 for s in scores if not (s > fully if regulatory else s >= fully))
        reasons.append(f"{below} pages are not {strict} {fully}")
    else:
        below = sum(1 for s in scores if not (s > partial if regulatory else s >= partial))
        reasons.append(f"{below} pages are not {strict} {partial}")

    passed = total_critical - len(failed)
    reasons.append(
        f"Critical criteria: {passed} of {total_critical} passed ({round(pass_rate * 100)}%)"
    )
    if failed:
        reasons.append(f"Critical criteria violated: {', '.join(failed)}")
    if regulatory:
        reasons.append(f"Regulatory rubric: {level.value}")
    reasons.append(f"Total violations across all pages: {sum(len(v) for v in violations)}")

    recommendations = RECOMMENDATIONS[level]
    if regulatory:
        recommendations = recommendations + REGULATORY_RECOMMENDATIONS[level]

    return ComplianceVerdict(
        level=level,
        aggregate_score=average,
        critical_criteria_pass_rate=pass_rate,
        criteria_set=criteria_set.name,
        reasons=tuple(reasons),
        recommendations=recommendations,
    )


def classify_session(session: AuditSession, criteria_set: Optional[CriteriaSet] = None) -> ComplianceVerdict:
    criteria_set = criteria_set or resolve_criteria_set(session.criteria_set, session.custom_criteria)
    return classify(
        [p.score for p in session.pages],
        [p.violations for p in session.pages],
        criteria_set,
    )


def compliance_report(session: AuditSession, verdict: Optional[ComplianceVerdict] = None) -> str:
    """Plain-text justification block for console output."""
    criteria_set = resolve_criteria_set(session.criteria_set, session.custom_criteria)
    verdict = verdict or classify_session(session, criteria_set)

    lines = [
        f"Compliance report ({criteria_set.name.value}) for {session.base_url}",
        f"Level: {verdict.level.value}",
        f"Average score: {verdict.aggregate_score}/10",
        f"Critical criteria pass rate: {round(verdict.critical_criteria_pass_rate * 100)}%",
    ]
    if session.error:
        lines.append(f"Session error: {session.error}")

    lines += ["", "Reasons:"]
    lines += [f"  - {r}" for r in verdict.reasons]
    lines += ["", "Recommendations:"]
    lines += [f"  - {r}" for r in verdict.recommendations]

    lines += ["", "Pages:"]
    for page in session.pages:
        if not page.is_scanned:
            lines.append(f"  {page.url}  not scanned  ({page.error or 'unknown error'})")
            continue
        page_level = classify([page.score], [page.violations], criteria_set).level
        lines.append(
            f"  {page.url}  {page.score}/10  {page_level.value}  {len(page.violations)} violations"
        )
    return "\n".join(lines)
