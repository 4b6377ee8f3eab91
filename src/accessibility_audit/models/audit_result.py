"""Per-page scan result."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from .violation import ViolationRecord

# Score marking a page that was never scanned, as opposed to a genuine 0.
SENTINEL_SCORE = -1.0


class PageAuditResult(BaseModel):
    """Outcome of scanning one page."""

    url: str
    title: str = ""
    score: float = Field(..., ge=SENTINEL_SCORE, le=10.0)
    violations: list[ViolationRecord] = Field(default_factory=list)
    audit_duration_ms: int = Field(default=0, ge=0)
    attempts: int = Field(default=0, ge=0)
    engine: Optional[str] = None
    error: Optional[str] = None
    scanned_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_scanned(self) -> bool:
        return self.score >= 0

    @classmethod
    def not_scanned(
        cls,
        url: str,
        error: str,
        title: str = "",
        attempts: int = 0,
        audit_duration_ms: int = 0,
    ) -> "PageAuditResult":
        """Build a sentinel result for a page whose scan never completed."""
        return cls(
            url=url,
            title=title,
            score=SENTINEL_SCORE,
            attempts=attempts,
            audit_duration_ms=audit_duration_ms,
            error=error,
        )
