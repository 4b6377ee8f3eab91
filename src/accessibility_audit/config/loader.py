"""Configuration loader for the accessibility audit system."""

import json
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

from ..models.criteria import CriteriaSetName
from ..models.page_record import CrawlOptions, DiscoveryStrategy


class SitemapConfig(BaseModel):
    """Where to look for sitemaps and whether to follow sitemap indexes."""

    paths: list[str] = Field(
        default_factory=lambda: [
            "/sitemap.xml",
            "/sitemap_index.xml",
            "/sitemap-index.xml",
            "/sitemaps.xml",
            "/site-map.xml",
        ]
    )
    follow_index: bool = Field(default=False)
    max_index_depth: int = Field(default=1, ge=1)


class DiscoveryConfig(BaseModel):
    """Link extraction and comprehensive-strategy seeding."""

    link_source: str = Field(default="browser", pattern="^(browser|http)$")
    comprehensive_seed_limit: int = Field(default=10, ge=0, le=10)
    common_paths: list[str] = Field(
        default_factory=lambda: [
            "/about", "/contact", "/services", "/products", "/portfolio",
            "/projects", "/team", "/news", "/blog", "/faq", "/help",
            "/privacy", "/terms", "/legal", "/accessibility",
        ]
    )
    login_patterns: list[str] = Field(
        default_factory=lambda: [
            "/login", "/signin", "/register", "/signup", "/admin",
            "/dashboard", "/account", "/profile", "/checkout", "/payment",
        ]
    )


class BrowserConfig(BaseModel):
    """Engine fallback chain and launch settings."""

    engines: list[str] = Field(
        default_factory=lambda: ["playwright-chromium", "playwright-firefox", "selenium-chrome"]
    )
    headless: bool = Field(default=True)
    init_timeout: float = Field(default=60.0, gt=0)
    close_timeout: float = Field(default=10.0, gt=0)
    launch_args: list[str] = Field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-gpu",
            "--disable-blink-features=AutomationControlled",
            "--disable-extensions",
            "--mute-audio",
            "--no-first-run",
        ]
    )
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        )
    )
    viewport_width: int = Field(default=1280, ge=320)
    viewport_height: int = Field(default=720, ge=240)
    chromedriver_path: Optional[str] = Field(default=None)


class ScannerConfig(BaseModel):
    """Per-page scan behaviour."""

    max_retries: int = Field(default=2, ge=0)
    base_retry_delay: float = Field(default=3.0, ge=0)
    wait_strategies: list[str] = Field(
        default_factory=lambda: ["domcontentloaded", "networkidle", "load"]
    )
    navigation_timeout: float = Field(default=60.0, gt=0)
    inject_timeout: float = Field(default=10.0, gt=0)
    engine_ready_timeout: float = Field(default=5.0, gt=0)
    engine_poll_interval: float = Field(default=0.5, gt=0)
    scan_timeout: float = Field(default=30.0, gt=0)
    settle_delay: float = Field(default=2.0, ge=0)
    script_sources: list[str] = Field(
        default_factory=lambda: [
            "https://cdnjs.cloudflare.com/ajax/libs/axe-core/4.7.0/axe.min.js",
            "https://unpkg.com/axe-core@4.7.0/axe.min.js",
        ]
    )
    run_tags: list[str] = Field(
        default_factory=lambda: ["wcag2a", "wcag2aa", "wcag21a", "wcag21aa"]
    )
    block_title_indicators: list[str] = Field(
        default_factory=lambda: [
            "cloudflare", "checking your browser", "just a moment", "attention required",
            "access denied", "forbidden", "error 404", "error 500", "blocked",
        ]
    )
    block_url_indicators: list[str] = Field(
        default_factory=lambda: ["/cdn-cgi/challenge", "captcha", "blocked"]
    )
    scoring_formula: str = Field(default="weighted", pattern="^(weighted|standard)$")


class AuditOptions(BaseModel):
    """Options for one multi-page audit run."""

    strategy: DiscoveryStrategy = Field(default=DiscoveryStrategy.AUTO)
    crawl: CrawlOptions = Field(default_factory=CrawlOptions)
    criteria_set: CriteriaSetName = Field(default=CriteriaSetName.SET_A)
    custom_criteria: list[str] = Field(default_factory=list)
    max_concurrent: int = Field(default=1, ge=1)
    delay_between_pages: float = Field(default=5.0, ge=0)
    retry_failed_pages: bool = Field(default=True)
    retry_delay_multiplier: float = Field(default=2.0, ge=1)
    max_retries: Optional[int] = Field(default=None, ge=0)


class RetryPolicy(BaseModel):
    """Retry configuration for transient HTTP failures."""

    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=2.0, ge=0)
    backoff_max_seconds: float = Field(default=10.0, ge=0)


class OutputConfig(BaseModel):
    """Output configuration."""

    output_path: Optional[str] = Field(default="./output/audit.json")
    indent: int = Field(default=2, ge=0)


class Config(BaseModel):
    """Full system configuration."""

    base_url: Optional[str] = None
    audit: AuditOptions = Field(default_factory=AuditOptions)
    sitemap: SitemapConfig = Field(default_factory=SitemapConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    output_config: OutputConfig = Field(default_factory=OutputConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load config from YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Load config from dictionary."""
        return cls(**data)


def load_config(path: str | Path) -> Config:
    """Load configuration from file (YAML or JSON)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, encoding="utf-8") as f:
        content = f.read()

    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(content) or {}
    else:
        data = json.loads(content)

    return Config.from_dict(data)
