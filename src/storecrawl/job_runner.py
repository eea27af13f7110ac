"""
Crawl job runner.

Runs one job as a strictly sequential pipeline:

    acquire page -> [delay -> cancel check -> navigate -> extract -> ingest]* -> complete

Every exception raised while handling a page is converted into an explicit
``PageOutcome`` at the page boundary; the loop branches on its kind.
``run_job`` never raises: every failure resolves into a terminal job state.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError

from storecrawl.browser_config import PageNavigationOptions, StealthPageSettings
from storecrawl.config import CrawlerThresholds, default_thresholds
from storecrawl.constants import (
    ERROR_CONSECUTIVE_FAILURES,
    ERROR_INTERNAL,
    ERROR_SESSION_UNAVAILABLE,
    ERROR_SITE_BLOCKED,
)
from storecrawl.crawl_config import CrawlJobConfig, parse_job_config
from storecrawl.exceptions import (
    CrawlError,
    ExtractionError,
    ExtractionFatal,
    InvalidJobConfig,
    InvalidJobState,
    JobNotFound,
    NavigationError,
    NavigationTimeout,
    SessionUnavailable,
    UnsupportedSite,
)
from storecrawl.extractors import SiteExtractor, get_extractor
from storecrawl.infrastructure.browser_session import BrowserSessionManager, ScopedPage
from storecrawl.infrastructure.navigator import PageNavigator
from storecrawl.ingestion import ResultIngestionPipeline
from storecrawl.job_service import CrawlJobService, StartJobRequest
from storecrawl.models import CrawlJob, IngestOutcome, PageExtraction, ProgressDelta
from storecrawl.utils.challenge_handler import is_block_status
from storecrawl.utils.human_simulator import HumanSimulator, create_human_simulator_from_thresholds

logger = logging.getLogger(__name__)


class OutcomeKind(Enum):
    """How a page ended."""
    OK = "ok"
    TRANSIENT = "transient"  # Page skipped, job continues
    FATAL = "fatal"  # Job aborts


@dataclass
class PageOutcome:
    """Result of processing one page."""
    kind: OutcomeKind
    page_number: int
    url: str
    extraction: Optional[PageExtraction] = None
    ingest: Optional[IngestOutcome] = None
    error: Optional[CrawlError] = None
    elapsed_ms: int = 0


def classify_error(error: Exception) -> tuple[OutcomeKind, CrawlError]:
    """Map a page-level exception to an outcome kind and a typed error."""
    if isinstance(error, ExtractionFatal):
        return OutcomeKind.FATAL, error
    if isinstance(error, NavigationError) and is_block_status(error.status_code):
        return OutcomeKind.FATAL, ExtractionFatal(
            error.message,
            code=ERROR_SITE_BLOCKED,
            details={**error.details, "status": error.status_code},
        )
    if isinstance(error, (NavigationTimeout, NavigationError, ExtractionError)):
        return OutcomeKind.TRANSIENT, error
    if isinstance(error, PlaywrightError):
        return OutcomeKind.TRANSIENT, NavigationError(f"Browser page error: {error.message}")
    raise error


class CrawlJobRunner:
    """
    Executes crawl jobs.

    Usage:
        runner = CrawlJobRunner(job_service, session_manager, ingestion)
        job = await runner.start_and_run(StartJobRequest(...))
    """

    def __init__(
        self,
        job_service: CrawlJobService,
        session_manager: BrowserSessionManager,
        ingestion: Optional[ResultIngestionPipeline] = None,
        thresholds: Optional[CrawlerThresholds] = None,
        human_simulator: Optional[HumanSimulator] = None,
        page_settings: Optional[StealthPageSettings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the runner.

        Args:
            job_service: Job state machine
            session_manager: Browser session lending pages
            ingestion: Result pipeline; built on the job service's store if omitted
            thresholds: Failure, retry and pacing bounds
            human_simulator: Navigation pacing; built from thresholds if omitted
            page_settings: Fingerprint settings for acquired pages
            sleep: Awaitable sleep used for request delays and backoff
        """
        self.job_service = job_service
        self.session_manager = session_manager
        self.thresholds = thresholds or default_thresholds
        self.ingestion = ingestion or ResultIngestionPipeline(
            job_service.store, job_service, thresholds=self.thresholds
        )
        self.human_simulator = human_simulator or create_human_simulator_from_thresholds(self.thresholds)
        self.page_settings = page_settings or StealthPageSettings()
        self.sleep = sleep

    async def start_and_run(self, request: StartJobRequest) -> CrawlJob:
        """Create a job and run it to a terminal state.

        Caller errors from ``start_job`` propagate; nothing after creation does.
        """
        job = await self.job_service.start_job(request)
        return await self.run_job(job.id)

    async def run_job(self, job_id: int) -> CrawlJob:
        """Run a PENDING job to a terminal state."""
        try:
            await self._run(job_id)
        except Exception as e:
            logger.exception(f"Unexpected error running crawl job {job_id}")
            await self._fail(job_id, ERROR_INTERNAL, str(e) or type(e).__name__, {"error_type": type(e).__name__})
        return await self.job_service.get_job(job_id)

    async def _fail(self, job_id: int, code: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        try:
            await self.job_service.fail_job(job_id, code, message, details)
        except (InvalidJobState, JobNotFound) as e:
            logger.info(f"Job {job_id} not failed ({e.code}): {e.message}")

    async def _run(self, job_id: int) -> None:
        try:
            job = await self.job_service.transition_to_running(job_id)
        except InvalidJobState as e:
            logger.info(f"Job {job_id} not started: {e.message}")
            return

        # Validated after the transition so a bad stored config ends FAILED
        try:
            config = parse_job_config(job.config)
            extractor = get_extractor(job.source_site)
        except (InvalidJobConfig, UnsupportedSite) as e:
            logger.warning(f"Job {job_id} has an unusable configuration: {e.message}")
            await self._fail(job_id, e.code, e.message, e.details)
            return

        scoped = await self._acquire_page(job_id)
        if scoped is None:
            return

        try:
            await self._crawl(job, config, extractor, scoped)
        finally:
            await scoped.release()

    async def _acquire_page(self, job_id: int) -> Optional[ScopedPage]:
        """Acquire a page, retrying with exponential backoff."""
        attempts = max(self.thresholds.session_acquire_attempts, 1)
        last_error: Optional[SessionUnavailable] = None

        for attempt in range(1, attempts + 1):
            try:
                return await self.session_manager.acquire_page(self.page_settings)
            except SessionUnavailable as e:
                last_error = e
                if attempt == attempts or self.session_manager.is_terminating:
                    break
                delay = min(
                    self.thresholds.session_backoff_base_seconds * (2 ** (attempt - 1)),
                    self.thresholds.session_backoff_max_seconds,
                )
                logger.warning(
                    f"Job {job_id}: browser session unavailable (attempt {attempt}/{attempts}), "
                    f"retrying in {delay:.1f}s: {e.message}"
                )
                await self.sleep(delay)

        await self._fail(
            job_id,
            ERROR_SESSION_UNAVAILABLE,
            last_error.message,
            {**last_error.details, "attempts": attempt},
        )
        return None

    def _navigation_options(self, config: CrawlJobConfig, referer: Optional[str]) -> PageNavigationOptions:
        return PageNavigationOptions(
            wait_strategy=config.wait_strategy,
            timeout=config.navigation_timeout,
            referer=referer,
            simulate_human_behavior=config.simulate_human_behavior,
            require_success=True,
        )

    async def _process_page(
        self,
        job: CrawlJob,
        config: CrawlJobConfig,
        extractor: SiteExtractor,
        navigator: PageNavigator,
        page,
        page_number: int,
        url: str,
        referer: Optional[str],
        remaining_items: int,
    ) -> PageOutcome:
        start = time.monotonic()
        try:
            navigation = await navigator.navigate(page, url, self._navigation_options(config, referer))
            extraction = await extractor.extract_page(
                page, config, page_number, remaining_items, status=navigation.status
            )
        except Exception as e:
            kind, error = classify_error(e)
            return PageOutcome(
                kind=kind,
                page_number=page_number,
                url=url,
                error=error,
                elapsed_ms=int((time.monotonic() - start) * 1000),
            )

        ingest = await self.ingestion.ingest(job.id, page_number, extraction.items)
        return PageOutcome(
            kind=OutcomeKind.OK,
            page_number=page_number,
            url=url,
            extraction=extraction,
            ingest=ingest,
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )

    async def _crawl(self, job: CrawlJob, config: CrawlJobConfig, extractor: SiteExtractor,
                     scoped: ScopedPage) -> None:
        navigator = PageNavigator(self.human_simulator, reload_markers=extractor.reload_markers)
        threshold = max(self.thresholds.consecutive_failure_threshold, 1)

        page_number = 1
        url = config.start_url
        referer: Optional[str] = None
        remaining_items = config.max_items
        consecutive_failures = 0
        page_times: List[int] = []
        metadata: Dict[str, Any] = {"pages_processed": 0, "pages_failed": 0, "last_page_url": None}

        while True:
            if page_number > 1 and config.request_delay > 0:
                await self.sleep(config.request_delay_seconds)

            if await self.job_service.is_cancelled(job.id):
                logger.info(f"Job {job.id} cancelled; stopping before page {page_number}")
                return

            try:
                outcome = await self._process_page(
                    job, config, extractor, navigator, scoped.page,
                    page_number, url, referer, remaining_items,
                )
            except (InvalidJobState, JobNotFound) as e:
                logger.info(f"Job {job.id} stopped during page {page_number}: {e.message}")
                return

            page_times.append(outcome.elapsed_ms)
            metadata["last_page_url"] = url

            if outcome.kind == OutcomeKind.FATAL:
                error = outcome.error
                logger.warning(f"Job {job.id} page {page_number} fatal: {error.code} - {error.message}")
                await self._fail(job.id, error.code, error.message, {**error.details, "page_number": page_number})
                return

            if outcome.kind == OutcomeKind.TRANSIENT:
                consecutive_failures += 1
                metadata["pages_failed"] += 1
                error = outcome.error
                logger.warning(
                    f"Job {job.id} page {page_number} skipped ({consecutive_failures}/{threshold}): "
                    f"{error.code} - {error.message}"
                )
                if consecutive_failures >= threshold:
                    await self._fail(
                        job.id,
                        ERROR_CONSECUTIVE_FAILURES,
                        f"{consecutive_failures} consecutive page failures",
                        {
                            "page_number": page_number,
                            "last_error": error.to_dict(),
                        },
                    )
                    return
                has_next = page_number < config.max_pages
                next_url = extractor.build_page_url(config.start_url, page_number + 1)
            else:
                consecutive_failures = 0
                metadata["pages_processed"] += 1
                remaining_items -= len(outcome.extraction.items)
                has_next = outcome.extraction.has_next
                next_url = outcome.extraction.next_cursor or extractor.build_page_url(
                    config.start_url, page_number + 1
                )
                referer = url

            remaining_pages = (config.max_pages - page_number) if has_next else 0
            estimate = int(sum(page_times) / len(page_times) * remaining_pages)
            try:
                await self.job_service.record_progress(
                    job.id, ProgressDelta(), metadata=dict(metadata), estimated_remaining_ms=estimate
                )
            except InvalidJobState as e:
                logger.info(f"Job {job.id} stopped after page {page_number}: {e.message}")
                return

            if not has_next:
                break
            page_number += 1
            url = next_url

        try:
            await self.job_service.complete_job(job.id)
        except InvalidJobState as e:
            logger.info(f"Job {job.id} not completed: {e.message}")
