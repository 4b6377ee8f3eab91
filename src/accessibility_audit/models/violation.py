"""Rule violation reported by the scan engine."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Severity(str, Enum):
    """axe-core impact levels."""

    CRITICAL = "critical"
    SERIOUS = "serious"
    MODERATE = "moderate"
    MINOR = "minor"


SEVERITY_ORDER = (Severity.CRITICAL, Severity.SERIOUS, Severity.MODERATE, Severity.MINOR)


class ViolationRecord(BaseModel):
    """One failed rule on one page, with the number of offending elements."""

    rule_id: str
    severity: Severity = Severity.MODERATE
    criteria_ids: list[str] = Field(default_factory=list, description="WCAG success criteria, sorted")
    description: str = ""
    help_url: Optional[str] = None
    occurrence_count: int = Field(default=1, ge=1)
    sample_element: Optional[str] = None
