"""Data models for crawl jobs, results and extractor output."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from storecrawl.constants import DEFAULT_LIST_LIMIT


class JobStatus(str, Enum):
    """Crawl job lifecycle states."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})


class JobType(str, Enum):
    """Kind of crawl a job performs."""
    PAGE_SCRAPE = "PAGE_SCRAPE"  # One-shot, single page
    PAGINATED_SEARCH = "PAGINATED_SEARCH"


class SourceSite(str, Enum):
    """Supported target sites. Each has exactly one extractor variant."""
    SMARTSTORE = "SMARTSTORE"
    NAVER_BLOG = "NAVER_BLOG"


@dataclass
class CrawlResult:
    """One persisted item belonging to a job. Never mutated after insert."""

    job_id: int
    item_type: str
    data: dict[str, Any]
    item_id: Optional[str] = None  # Site-native id, used for dedup
    quality: float = 0.0
    item_order: int = 0
    page_number: int = 0
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "item_id": self.item_id,
            "item_type": self.item_type,
            "data": self.data,
            "quality": self.quality,
            "item_order": self.item_order,
            "page_number": self.page_number,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class CrawlJob:
    """One crawl execution attempt."""

    id: int
    user_email: str
    source_site: SourceSite
    job_type: JobType
    config: dict[str, Any]
    status: JobStatus = JobStatus.PENDING
    priority: int = 5
    scheduled_at: Optional[datetime] = None

    # Progress counters
    total_items: int = 0
    processed_items: int = 0
    success_items: int = 0
    failed_items: int = 0
    skipped_items: int = 0  # Duplicates dropped by ingestion

    # Timing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    estimated_remaining_ms: Optional[int] = None

    # Failure info
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_details: Optional[dict[str, Any]] = None

    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    results: list[CrawlResult] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self, include_results: bool = True) -> dict:
        """Convert to dictionary for JSON serialization."""
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        data = {
            "id": self.id,
            "user_email": self.user_email,
            "source_site": self.source_site.value,
            "job_type": self.job_type.value,
            "config": self.config,
            "status": self.status.value,
            "priority": self.priority,
            "scheduled_at": iso(self.scheduled_at),
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "success_items": self.success_items,
            "failed_items": self.failed_items,
            "skipped_items": self.skipped_items,
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
            "duration_ms": self.duration_ms,
            "estimated_remaining_ms": self.estimated_remaining_ms,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "error_details": self.error_details,
            "metadata": self.metadata,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_results:
            data["results"] = [result.to_dict() for result in self.results]
        return data


@dataclass
class ProgressDelta:
    """Counter increments reported after a page has been ingested."""
    total: int = 0
    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0

    def is_valid(self) -> bool:
        counts = (self.total, self.processed, self.success, self.failed, self.skipped)
        return all(count >= 0 for count in counts) and (
            self.success + self.failed + self.skipped <= self.processed
        )


@dataclass
class ExtractedItem:
    """One item produced by a site extractor, before ingestion."""
    item_type: str
    data: dict[str, Any]
    native_id: Optional[str] = None

    def searchable_text(self) -> str:
        """Text used for keyword filters."""
        parts = [self.data.get("title"), self.data.get("content")]
        return " ".join(part for part in parts if part).lower()


@dataclass
class PageExtraction:
    """A page's worth of items plus the continuation signal."""
    items: list[ExtractedItem] = field(default_factory=list)
    has_next: bool = False
    next_cursor: Optional[str] = None
    candidates_found: int = 0  # Items on the page before filters and caps
    filtered_out: int = 0


@dataclass
class RowFailure:
    """A single row rejected by storage during a batch insert."""
    item_order: int
    native_id: Optional[str]
    reason: str


@dataclass
class IngestOutcome:
    """Result of ingesting one page of extracted items."""
    job_id: int
    page_number: int
    inserted: int = 0
    skipped_duplicates: int = 0
    failures: list[RowFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def processed(self) -> int:
        return self.inserted + self.skipped_duplicates + self.failed


@dataclass
class JobFilter:
    """Filter and pagination for job listings."""
    user_email: Optional[str] = None
    status: Optional[JobStatus] = None
    source_site: Optional[SourceSite] = None
    job_type: Optional[JobType] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    page: int = 1
    limit: int = DEFAULT_LIST_LIMIT


@dataclass
class JobPage:
    """One page of a job listing."""
    jobs: list[CrawlJob]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


@dataclass
class CrawlStatistics:
    """Per-user job statistics."""
    total_jobs: int = 0
    pending_jobs: int = 0
    running_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    total_items_processed: int = 0
    average_duration_ms: int = 0
    jobs_by_type: dict[str, int] = field(default_factory=dict)
    jobs_by_site: dict[str, int] = field(default_factory=dict)
    recent_jobs: list[CrawlJob] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_jobs": self.total_jobs,
            "pending_jobs": self.pending_jobs,
            "running_jobs": self.running_jobs,
            "completed_jobs": self.completed_jobs,
            "failed_jobs": self.failed_jobs,
            "cancelled_jobs": self.cancelled_jobs,
            "total_items_processed": self.total_items_processed,
            "average_duration_ms": self.average_duration_ms,
            "jobs_by_type": self.jobs_by_type,
            "jobs_by_site": self.jobs_by_site,
            "recent_jobs": [job.to_dict(include_results=False) for job in self.recent_jobs],
        }
