"""Licensed, paced crawl jobs for store reviews and blog listings."""

__version__ = "0.1.0"

from storecrawl.config import settings, CrawlerThresholds
from storecrawl.crawl_config import CrawlJobConfig, CrawlFilters, parse_job_config
from storecrawl.database import AbstractCrawlStore, LocalSqliteCrawlStore
from storecrawl.exceptions import (
    CrawlError,
    CallerError,
    InvalidJobConfig,
    UnsupportedSite,
    LicenseCheckFailed,
    LicenseInvalid,
    JobAlreadyRunning,
    JobNotFound,
    InvalidJobState,
    SessionUnavailable,
    NavigationTimeout,
    NavigationError,
    ExtractionError,
    ExtractionFatal,
)
from storecrawl.models import (
    CrawlJob,
    CrawlResult,
    CrawlStatistics,
    ExtractedItem,
    IngestOutcome,
    JobFilter,
    JobPage,
    JobStatus,
    JobType,
    PageExtraction,
    ProgressDelta,
    SourceSite,
)
from storecrawl.license import LicenseGate, LicenseStatus, DatabaseLicenseGate, StaticLicenseGate
from storecrawl.extractors import get_extractor, supported_sites
from storecrawl.infrastructure import BrowserSessionManager, PageNavigator, ScopedPage
from storecrawl.job_service import CrawlJobService, StartJobRequest
from storecrawl.ingestion import ResultIngestionPipeline, compute_quality
from storecrawl.job_runner import CrawlJobRunner, OutcomeKind, PageOutcome

__all__ = [
    "settings",
    "CrawlerThresholds",
    "CrawlJobConfig",
    "CrawlFilters",
    "parse_job_config",
    "AbstractCrawlStore",
    "LocalSqliteCrawlStore",
    # Errors
    "CrawlError",
    "CallerError",
    "InvalidJobConfig",
    "UnsupportedSite",
    "LicenseCheckFailed",
    "LicenseInvalid",
    "JobAlreadyRunning",
    "JobNotFound",
    "InvalidJobState",
    "SessionUnavailable",
    "NavigationTimeout",
    "NavigationError",
    "ExtractionError",
    "ExtractionFatal",
    # Models
    "CrawlJob",
    "CrawlResult",
    "CrawlStatistics",
    "ExtractedItem",
    "IngestOutcome",
    "JobFilter",
    "JobPage",
    "JobStatus",
    "JobType",
    "PageExtraction",
    "ProgressDelta",
    "SourceSite",
    # License Gate
    "LicenseGate",
    "LicenseStatus",
    "DatabaseLicenseGate",
    "StaticLicenseGate",
    # Crawling
    "get_extractor",
    "supported_sites",
    "BrowserSessionManager",
    "PageNavigator",
    "ScopedPage",
    "CrawlJobService",
    "StartJobRequest",
    "ResultIngestionPipeline",
    "compute_quality",
    "CrawlJobRunner",
    "OutcomeKind",
    "PageOutcome",
]
