"""Tools for the accessibility audit system."""

from .discover_tool import discover_tool, crawl_stats
from .sitemap_tool import find_sitemap_urls
from .browser_tool import BrowserSessionManager
from .engines import build_engine_chain
from .scan_tool import AccessibilityScanner, compute_score
from .aggregate_tool import summarize
from .classify_tool import classify, classify_session, compliance_report

__all__ = [
    "discover_tool",
    "crawl_stats",
    "find_sitemap_urls",
    "BrowserSessionManager",
    "build_engine_chain",
    "AccessibilityScanner",
    "compute_score",
    "summarize",
    "classify",
    "classify_session",
    "compliance_report",
]
