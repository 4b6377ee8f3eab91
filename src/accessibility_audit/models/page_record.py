"""Discovered page record and crawl options."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DiscoveryStrategy(str, Enum):
    """How pages of a site are enumerated."""

    MANUAL = "manual"
    SITEMAP = "sitemap"
    AUTO = "auto"
    COMPREHENSIVE = "comprehensive"


class CrawlOptions(BaseModel):
    """Bounds and filters applied while discovering pages."""

    max_pages: int = Field(default=20, ge=1)
    max_depth: int = Field(default=2, ge=0)
    include_external: bool = Field(default=False)
    exclude_patterns: list[str] = Field(
        default_factory=lambda: [
            "/admin", "/login", "/logout", "/api/",
            ".pdf", ".jpg", ".png", ".gif", ".zip",
            "/wp-admin", "/wp-content",
        ]
    )
    include_patterns: list[str] = Field(default_factory=list)
    timeout: float = Field(default=30.0, gt=0, description="Per-page timeout in seconds")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PageRecord(BaseModel):
    """A page found during discovery. Only the validity flag changes after creation."""

    url: str = Field(..., description="Normalized URL")
    title: str = Field(default="")
    depth: int = Field(default=0, ge=0, description="Crawl depth from the base URL")
    discovered_from: Optional[str] = Field(None, description="Parent page, sitemap or 'manual'")
    discovered_at: datetime = Field(default_factory=_now)
    is_valid: bool = Field(default=True)
    error: Optional[str] = None

    def mark_invalid(self, error: str) -> None:
        self.is_valid = False
        self.error = error


class CrawlStats(BaseModel):
    """Counts over the discovered page list."""

    total: int = 0
    valid: int = 0
    invalid: int = 0
    depths: dict[int, int] = Field(default_factory=dict)
