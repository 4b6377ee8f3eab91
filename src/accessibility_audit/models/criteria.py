"""WCAG criteria sets used for compliance classification."""

import re
from enum import Enum
from typing import Iterable

from pydantic import BaseModel, Field


class CriteriaSetName(str, Enum):
    """Selectable criteria sets."""

    SET_A = "set-A"  # 15 priority WCAG 2.1 AA criteria
    SET_B = "set-B"  # 10 critical aspects of the regulatory checklist
    CUSTOM = "custom"


class Criterion(BaseModel):
    """A WCAG success criterion."""

    id: str
    name: str
    level: str = Field(pattern="^(A|AA|AAA)$")
    priority: str = Field(pattern="^P[012]$")


PRIORITY_CRITERIA: tuple[Criterion, ...] = (
    Criterion(id="1.1.1", name="Non-text Content", level="A", priority="P0"),
    Criterion(id="1.4.3", name="Contrast (Minimum)", level="AA", priority="P0"),
    Criterion(id="1.4.4", name="Resize Text", level="AA", priority="P1"),
    Criterion(id="1.2.2", name="Captions (Prerecorded)", level="A", priority="P1"),
    Criterion(id="1.3.1", name="Info and Relationships", level="A", priority="P1"),
    Criterion(id="1.4.10", name="Reflow", level="AA", priority="P2"),
    Criterion(id="2.1.1", name="Keyboard", level="A", priority="P0"),
    Criterion(id="2.4.1", name="Bypass Blocks", level="A", priority="P1"),
    Criterion(id="2.4.2", name="Page Titled", level="A", priority="P2"),
    Criterion(id="2.4.7", name="Focus Visible", level="AA", priority="P1"),
    Criterion(id="2.2.1", name="Timing Adjustable", level="A", priority="P2"),
    Criterion(id="3.3.1", name="Error Identification", level="A", priority="P1"),
    Criterion(id="3.3.2", name="Labels or Instructions", level="A", priority="P0"),
    Criterion(id="3.1.1", name="Language of Page", level="A", priority="P2"),
    Criterion(id="4.1.2", name="Name, Role, Value", level="A", priority="P0"),
)

REGULATORY_CRITICAL_IDS: tuple[str, ...] = (
    "1.1.1", "1.4.3", "2.1.1", "2.4.1", "2.4.7",
    "3.3.2", "4.1.2", "1.3.1", "2.2.1", "3.3.1",
)

_BY_ID = {c.id: c for c in PRIORITY_CRITERIA}

# axe-core rule id -> WCAG success criterion
AXE_RULE_CRITERIA: dict[str, str] = {
    "color-contrast": "1.4.3",
    "color-contrast-enhanced": "1.4.6",
    "image-alt": "1.1.1",
    "img-redundant-alt": "1.1.1",
    "object-alt": "1.1.1",
    "role-img-alt": "1.1.1",
    "svg-img-alt": "1.1.1",
    "input-image-alt": "1.1.1",
    "area-alt": "1.1.1",
    "page-title": "2.4.2",
    "document-title": "2.4.2",
    "frame-title": "2.4.2",
    "skip-link": "2.4.1",
    "bypass": "2.4.1",
    "focus-visible": "2.4.7",
    "focus-order-semantics": "2.4.3",
    "focusable-content": "2.1.1",
    "scrollable-region-focusable": "2.1.1",
    "label": "3.3.2",
    "form-field-multiple-labels": "3.3.2",
    "label-content-name-mismatch": "3.3.2",
    "select-name": "3.3.2",
    "html-lang": "3.1.1",
    "html-has-lang": "3.1.1",
    "html-lang-valid": "3.1.1",
    "valid-lang": "3.1.1",
    "aria-allowed-attr": "4.1.2",
    "aria-required-attr": "4.1.2",
    "aria-valid-attr-value": "4.1.2",
    "aria-valid-attr": "4.1.2",
    "aria-hidden-body": "4.1.2",
    "aria-hidden-focus": "4.1.2",
    "aria-input-field-name": "4.1.2",
    "aria-required-children": "4.1.2",
    "aria-required-parent": "4.1.2",
    "aria-roles": "4.1.2",
    "button-name": "4.1.2",
    "link-name": "4.1.2",
    "input-button-name": "4.1.2",
    "focusable-no-name": "4.1.2",
    "landmark-one-main": "1.3.1",
    "heading-order": "1.3.1",
    "list": "1.3.1",
    "listitem": "1.3.1",
    "region": "1.3.1",
    "heading-has-content": "1.3.1",
    "landmark-unique": "1.3.1",
    "page-has-heading-one": "1.3.1",
    "td-has-header": "1.3.1",
    "td-headers-attr": "1.3.1",
    "th-has-data-cells": "1.3.1",
    "definition-list": "1.3.1",
    "dlitem": "1.3.1",
    "meta-viewport": "1.4.4",
    "meta-viewport-large": "1.4.4",
    "meta-refresh": "2.2.1",
    "marquee": "2.2.2",
    "blink": "2.2.2",
    "video-caption": "1.2.2",
    "identical-links-same-purpose": "2.4.4",
    "link-in-text-block": "1.4.1",
}

_WCAG_TAG = re.compile(r"^wcag(\d)(\d)(\d{1,2})$")


class CriteriaSet(BaseModel):
    """A resolved criteria set: the ids it covers and which of them gate compliance."""

    name: CriteriaSetName
    criteria_ids: list[str] = Field(default_factory=list)
    critical_ids: list[str] = Field(default_factory=list)

    @property
    def is_regulatory(self) -> bool:
        return self.name == CriteriaSetName.SET_B


def get_criterion(criterion_id: str) -> Criterion | None:
    return _BY_ID.get(criterion_id)


def is_priority_criterion(criterion_id: str) -> bool:
    """P0/P1 criteria weigh into the legal risk estimate."""
    criterion = _BY_ID.get(criterion_id)
    return criterion is not None and criterion.priority in ("P0", "P1")


def criteria_for_rule(rule_id: str, tags: Iterable[str] = ()) -> list[str]:
    """
    Map an axe rule to WCAG criteria ids.
    Uses the explicit rule map first, then wcagNNN tags (wcag143 -> 1.4.3).
    """
    found: set[str] = set()
    mapped = AXE_RULE_CRITERIA.get(rule_id)
    if mapped:
        found.add(mapped)
    for tag in tags:
        m = _WCAG_TAG.match(tag)
        if m:
            found.add(f"{m.group(1)}.{m.group(2)}.{m.group(3)}")
    return sorted(found)


def resolve_criteria_set(
    name: CriteriaSetName | str,
    custom_ids: Iterable[str] | None = None,
) -> CriteriaSet:
    """Resolve a criteria set selector to concrete ids."""
    name = CriteriaSetName(name)
    if name == CriteriaSetName.SET_B:
        ids = list(REGULATORY_CRITICAL_IDS)
        return CriteriaSet(name=name, criteria_ids=ids, critical_ids=ids)

    if name == CriteriaSetName.CUSTOM:
        selected = [c for c in PRIORITY_CRITERIA if c.id in set(custom_ids or ())]
        if selected:
            return CriteriaSet(
                name=name,
                criteria_ids=[c.id for c in selected],
                critical_ids=[c.id for c in selected if c.priority == "P0"],
            )
        # Empty or unknown custom list falls back to the priority set

    return CriteriaSet(
        name=name,
        criteria_ids=[c.id for c in PRIORITY_CRITERIA],
        critical_ids=[c.id for c in PRIORITY_CRITERIA if c.priority == "P0"],
    )
