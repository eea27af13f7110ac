"""
Crawl job state machine.

PENDING -> RUNNING -> {COMPLETED | FAILED | CANCELLED}

Every transition is a compare-and-set against the stored status, so a
cancel racing normal completion resolves to exactly one terminal state.
At most one PENDING or RUNNING job exists per user: the check-and-create
is serialized per user in-process and backed by a partial unique index in
storage.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from storecrawl.constants import DEFAULT_JOB_PRIORITY, RECENT_JOBS_COUNT
from storecrawl.crawl_config import CrawlJobConfig, parse_job_config
from storecrawl.database import AbstractCrawlStore
from storecrawl.exceptions import (
    CrawlError,
    InvalidJobConfig,
    InvalidJobState,
    JobAlreadyRunning,
    JobNotFound,
    LicenseCheckFailed,
    LicenseInvalid,
)
from storecrawl.extractors import get_extractor, with_site_defaults
from storecrawl.license import LicenseGate, LicenseStatus
from storecrawl.models import (
    ACTIVE_STATUSES,
    CrawlJob,
    CrawlResult,
    CrawlStatistics,
    JobFilter,
    JobPage,
    JobStatus,
    JobType,
    ProgressDelta,
    RowFailure,
    SourceSite,
)

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100


@dataclass
class StartJobRequest:
    """A caller's request to start a crawl."""
    user_email: str
    source_site: Union[str, SourceSite]
    config: Union[Dict[str, Any], CrawlJobConfig]
    job_type: JobType = JobType.PAGINATED_SEARCH
    priority: int = DEFAULT_JOB_PRIORITY
    scheduled_at: Optional[datetime] = None


def elapsed_ms(start: Optional[datetime], end: datetime) -> Optional[int]:
    if start is None:
        return None
    return max(int((end - start).total_seconds() * 1000), 0)


class CrawlJobService:
    """Owns crawl job lifecycle and progress counters."""

    def __init__(
        self,
        store: AbstractCrawlStore,
        license_gate: LicenseGate,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.license_gate = license_gate
        self.clock = clock
        # Entries vanish once no start for the user holds or awaits the lock
        self._user_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _user_lock(self, user_email: str) -> asyncio.Lock:
        return self._user_locks.setdefault(user_email, asyncio.Lock())

    async def _check_license(self, user_email: str) -> LicenseStatus:
        try:
            return await self.license_gate.check_license(user_email)
        except CrawlError:
            raise
        except Exception as e:
            logger.error(f"License lookup failed for {user_email}: {e}")
            raise LicenseCheckFailed(
                "License could not be verified",
                details={"error_type": type(e).__name__, "error": str(e)},
            ) from e

    def _require_job(self, job_id: int) -> CrawlJob:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Crawl job {job_id} not found", details={"job_id": job_id})
        return job

    def _transition_rejected(self, job_id: int, action: str) -> InvalidJobState:
        job = self._require_job(job_id)
        return InvalidJobState(
            f"Cannot {action} job {job_id} in state {job.status.value}",
            details={"job_id": job_id, "status": job.status.value},
        )

    # -- start ----------------------------------------------------------------

    def _prepare_config(self, request: StartJobRequest) -> CrawlJobConfig:
        extractor = get_extractor(request.source_site)
        if isinstance(request.config, CrawlJobConfig):
            config = request.config.model_copy()
        else:
            config = parse_job_config(with_site_defaults(request.config, extractor))
        extractor.validate_config(config)
        if request.job_type == JobType.PAGE_SCRAPE:
            config.max_pages = 1
        return config

    async def start_job(self, request: StartJobRequest) -> CrawlJob:
        """
        Validate the request and create a PENDING job.

        Raises:
            UnsupportedSite: Unknown site
            InvalidJobConfig: Configuration does not validate
            LicenseInvalid: No active, unexpired license
            LicenseCheckFailed: The license lookup itself failed
            JobAlreadyRunning: The user already has a PENDING or RUNNING job
        """
        source_site = get_extractor(request.source_site).site
        config = self._prepare_config(request)
        if not 1 <= request.priority <= 10:
            raise InvalidJobConfig(
                "priority must be between 1 and 10",
                details={"priority": request.priority},
            )

        async with self._user_lock(request.user_email):
            license_status = await self._check_license(request.user_email)
            now = self.clock()
            if not license_status.is_valid(now):
                logger.info(f"Rejected crawl start for {request.user_email}: no valid license")
                raise LicenseInvalid(
                    "An active license is required to start a crawl",
                    details={
                        "active": license_status.active,
                        "expires_at": license_status.expires_at.isoformat() if license_status.expires_at else None,
                    },
                )

            active = self.store.find_active_job(request.user_email)
            if active is not None:
                raise JobAlreadyRunning(
                    f"Job {active.id} is already {active.status.value.lower()}",
                    details={"job_id": active.id, "status": active.status.value},
                )

            job = self.store.create_job(
                user_email=request.user_email,
                source_site=source_site,
                job_type=request.job_type,
                config=config.to_payload(),
                priority=request.priority,
                scheduled_at=request.scheduled_at,
                now=now,
            )
            if job is None:
                raise JobAlreadyRunning("Another crawl job was started concurrently")

        logger.info(f"Created crawl job {job.id} ({source_site.value}) for {request.user_email}")
        return job

    # -- runner transitions ---------------------------------------------------

    async def transition_to_running(self, job_id: int) -> CrawlJob:
        """PENDING -> RUNNING."""
        now = self.clock()
        if not self.store.transition_status(job_id, [JobStatus.PENDING], JobStatus.RUNNING, now, started_at=now):
            raise self._transition_rejected(job_id, "start")
        logger.info(f"Crawl job {job_id} running")
        return self._require_job(job_id)

    async def record_progress(
        self,
        job_id: int,
        delta: ProgressDelta,
        metadata: Optional[Dict[str, Any]] = None,
        estimated_remaining_ms: Optional[int] = None,
    ) -> CrawlJob:
        """
        Add to the job's counters. Counters only ever grow.

        Raises:
            JobNotFound: Unknown job
            InvalidJobState: Job is not RUNNING
        """
        if not delta.is_valid():
            raise ValueError(f"Invalid progress delta: {delta}")

        fields: Dict[str, Any] = {}
        if metadata is not None:
            fields["metadata"] = metadata
        if estimated_remaining_ms is not None:
            fields["estimated_remaining_ms"] = estimated_remaining_ms

        if not self.store.increment_progress(job_id, delta, self.clock(), **fields):
            raise self._transition_rejected(job_id, "record progress for")
        return self._require_job(job_id)

    async def record_results(
        self,
        job_id: int,
        results: Sequence[CrawlResult],
        delta: Optional[ProgressDelta] = None,
    ) -> tuple[int, int, List[RowFailure]]:
        """
        Store result rows and count them against the job in one transaction.

        ``delta`` holds counts settled before storage (items handed in, rows
        rejected or deduplicated earlier); the rows' own outcomes are added
        to it. A job that is no longer RUNNING gets neither rows nor counts.

        Returns:
            Tuple of (inserted, duplicates, failures)

        Raises:
            JobNotFound: Unknown job
            InvalidJobState: Job is not RUNNING
        """
        delta = delta or ProgressDelta()
        if not delta.is_valid():
            raise ValueError(f"Invalid progress delta: {delta}")

        stored = self.store.insert_results(job_id, results, delta, self.clock())
        if stored is None:
            raise self._transition_rejected(job_id, "record results for")
        return stored

    async def complete_job(self, job_id: int) -> CrawlJob:
        """RUNNING -> COMPLETED."""
        job = self._require_job(job_id)
        now = self.clock()
        if not self.store.transition_status(
            job_id,
            [JobStatus.RUNNING],
            JobStatus.COMPLETED,
            now,
            completed_at=now,
            duration_ms=elapsed_ms(job.started_at, now),
            estimated_remaining_ms=0,
        ):
            raise self._transition_rejected(job_id, "complete")
        logger.info(f"Crawl job {job_id} completed")
        return self._require_job(job_id)

    async def fail_job(
        self,
        job_id: int,
        error_code: str,
        error_message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> CrawlJob:
        """RUNNING -> FAILED. Not retried here."""
        job = self._require_job(job_id)
        now = self.clock()
        if not self.store.transition_status(
            job_id,
            [JobStatus.RUNNING],
            JobStatus.FAILED,
            now,
            completed_at=now,
            duration_ms=elapsed_ms(job.started_at, now),
            error_code=error_code,
            error_message=error_message,
            error_details=details or {},
        ):
            raise self._transition_rejected(job_id, "fail")
        logger.info(f"Crawl job {job_id} failed: {error_code} - {error_message}")
        return self._require_job(job_id)

    # -- caller operations ----------------------------------------------------

    async def cancel_job(self, job_id: int, user_email: str) -> CrawlJob:
        """
        PENDING or RUNNING -> CANCELLED, by the owning user only.

        Raises:
            JobNotFound: Unknown job, or owned by another user
            InvalidJobState: Job already terminal
        """
        job = self.store.get_job(job_id)
        if job is None or job.user_email != user_email:
            raise JobNotFound(f"Crawl job {job_id} not found", details={"job_id": job_id})
        if job.is_terminal:
            raise InvalidJobState(
                f"Job {job_id} is already {job.status.value}",
                details={"job_id": job_id, "status": job.status.value},
            )

        now = self.clock()
        if not self.store.transition_status(
            job_id,
            ACTIVE_STATUSES,
            JobStatus.CANCELLED,
            now,
            completed_at=now,
            duration_ms=elapsed_ms(job.started_at, now),
        ):
            raise self._transition_rejected(job_id, "cancel")
        logger.info(f"Crawl job {job_id} cancelled by {user_email}")
        return self._require_job(job_id)

    async def is_cancelled(self, job_id: int) -> bool:
        job = self.store.get_job(job_id)
        return job is not None and job.status == JobStatus.CANCELLED

    async def get_job(self, job_id: int, user_email: Optional[str] = None,
                      include_results: bool = True) -> CrawlJob:
        """Fetch a job with its results in traversal order."""
        job = self.store.get_job(job_id)
        if job is None or (user_email is not None and job.user_email != user_email):
            raise JobNotFound(f"Crawl job {job_id} not found", details={"job_id": job_id})
        if include_results:
            job.results = self.store.get_results(job_id)
        return job

    async def list_jobs(self, job_filter: Optional[JobFilter] = None) -> JobPage:
        job_filter = job_filter or JobFilter()
        job_filter.page = max(job_filter.page, 1)
        job_filter.limit = min(max(job_filter.limit, 1), MAX_LIST_LIMIT)
        jobs, total = self.store.list_jobs(job_filter)
        return JobPage(jobs=jobs, page=job_filter.page, limit=job_filter.limit, total=total)

    async def get_statistics(self, user_email: str) -> CrawlStatistics:
        """Counts by status, type and site, plus totals and recent jobs."""
        stats = CrawlStatistics()
        by_status: Dict[str, int] = {}
        for row in self.store.job_status_counts(user_email):
            count = row["count"]
            stats.total_jobs += count
            by_status[row["status"]] = by_status.get(row["status"], 0) + count
            stats.jobs_by_type[row["job_type"]] = stats.jobs_by_type.get(row["job_type"], 0) + count
            stats.jobs_by_site[row["source_site"]] = stats.jobs_by_site.get(row["source_site"], 0) + count

        stats.pending_jobs = by_status.get(JobStatus.PENDING.value, 0)
        stats.running_jobs = by_status.get(JobStatus.RUNNING.value, 0)
        stats.completed_jobs = by_status.get(JobStatus.COMPLETED.value, 0)
        stats.failed_jobs = by_status.get(JobStatus.FAILED.value, 0)
        stats.cancelled_jobs = by_status.get(JobStatus.CANCELLED.value, 0)

        totals = self.store.job_totals(user_email)
        stats.total_items_processed = totals["total_success"] or 0
        stats.average_duration_ms = int(round(totals["avg_duration"] or 0))

        recent, _ = self.store.list_jobs(JobFilter(user_email=user_email, page=1, limit=RECENT_JOBS_COUNT))
        stats.recent_jobs = recent
        return stats
