"""Compliance verdict derived from an audit session."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .criteria import CriteriaSetName


class ComplianceLevel(str, Enum):
    """Ordered from worst to best."""

    NON_COMPLIANT = "NonCompliant"
    PARTIALLY_COMPLIANT = "PartiallyCompliant"
    FULLY_COMPLIANT = "FullyCompliant"

    @property
    def rank(self) -> int:
        return LEVEL_RANK[self]


LEVEL_RANK = {
    ComplianceLevel.NON_COMPLIANT: 0,
    ComplianceLevel.PARTIALLY_COMPLIANT: 1,
    ComplianceLevel.FULLY_COMPLIANT: 2,
}


class ComplianceVerdict(BaseModel):
    """Final compliance level with its justification. Never mutated."""

    model_config = ConfigDict(frozen=True)

    level: ComplianceLevel
    aggregate_score: float
    critical_criteria_pass_rate: float = Field(ge=0.0, le=1.0)
    criteria_set: CriteriaSetName
    reasons: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()
