"""Tests for the crawl job state machine."""

import asyncio
import gc
from datetime import datetime, timedelta

import pytest

pytest_plugins = ('pytest_asyncio',)

from storecrawl.exceptions import (
    InvalidJobConfig,
    InvalidJobState,
    JobAlreadyRunning,
    JobNotFound,
    LicenseCheckFailed,
    LicenseInvalid,
    UnsupportedSite,
)
from storecrawl.job_service import CrawlJobService, StartJobRequest, elapsed_ms
from storecrawl.license import LicenseStatus, StaticLicenseGate
from storecrawl.models import CrawlResult, JobFilter, JobStatus, JobType, ProgressDelta, SourceSite

OWNER = "owner@example.com"
REVIEWS_URL = "https://smartstore.naver.com/demo-shop/products/123"
BLOG_URL = "https://blog.naver.com/PostList.naver?blogId=demo"


def smartstore_request(user_email=OWNER, **kwargs):
    config = kwargs.pop("config", {"startUrl": REVIEWS_URL})
    return StartJobRequest(user_email=user_email, source_site="SMARTSTORE", config=config, **kwargs)


async def running_job(job_service, user_email=OWNER):
    job = await job_service.start_job(smartstore_request(user_email))
    return await job_service.transition_to_running(job.id)


def result_row(job_id, item_id, order, page=1):
    return CrawlResult(
        job_id=job_id,
        item_id=item_id,
        item_type="review",
        data={"content": f"review {item_id}", "rating": 4.0},
        quality=0.6,
        item_order=order,
        page_number=page,
    )


class TestStartJob:
    """Job creation, license checks and the one-active-job rule."""

    @pytest.mark.asyncio
    async def test_creates_pending_job_with_defaults(self, job_service):
        job = await job_service.start_job(smartstore_request())

        assert job.status == JobStatus.PENDING
        assert job.source_site == SourceSite.SMARTSTORE
        assert job.job_type == JobType.PAGINATED_SEARCH
        assert job.priority == 5
        assert job.total_items == job.processed_items == 0
        assert job.config["startUrl"] == REVIEWS_URL
        assert job.config["maxPages"] == 10
        assert job.config["requestDelay"] == 1500  # SmartStore default

    @pytest.mark.asyncio
    async def test_explicit_request_delay_wins_over_site_default(self, job_service):
        job = await job_service.start_job(
            smartstore_request(config={"startUrl": REVIEWS_URL, "requestDelay": 200})
        )
        assert job.config["requestDelay"] == 200

    @pytest.mark.asyncio
    async def test_site_is_case_insensitive(self, job_service):
        job = await job_service.start_job(
            StartJobRequest(user_email=OWNER, source_site="naver_blog", config={"startUrl": BLOG_URL})
        )
        assert job.source_site == SourceSite.NAVER_BLOG

    @pytest.mark.asyncio
    async def test_page_scrape_forces_single_page(self, job_service):
        job = await job_service.start_job(
            smartstore_request(
                config={"startUrl": REVIEWS_URL, "maxPages": 7},
                job_type=JobType.PAGE_SCRAPE,
            )
        )
        assert job.config["maxPages"] == 1

    @pytest.mark.asyncio
    async def test_unsupported_site(self, job_service, store):
        with pytest.raises(UnsupportedSite):
            await job_service.start_job(
                StartJobRequest(user_email=OWNER, source_site="COUPANG", config={"startUrl": REVIEWS_URL})
            )
        assert store.list_jobs(JobFilter())[1] == 0

    @pytest.mark.asyncio
    async def test_invalid_config(self, job_service):
        with pytest.raises(InvalidJobConfig) as exc_info:
            await job_service.start_job(smartstore_request(config={"startUrl": REVIEWS_URL, "maxPages": 0}))
        assert exc_info.value.details["errors"]

    @pytest.mark.asyncio
    async def test_missing_start_url(self, job_service):
        with pytest.raises(InvalidJobConfig):
            await job_service.start_job(smartstore_request(config={"maxPages": 2}))

    @pytest.mark.asyncio
    async def test_unsupported_item_type(self, job_service):
        with pytest.raises(InvalidJobConfig):
            await job_service.start_job(
                smartstore_request(config={"startUrl": REVIEWS_URL, "itemType": "post"})
            )

    @pytest.mark.asyncio
    async def test_priority_out_of_range(self, job_service):
        with pytest.raises(InvalidJobConfig):
            await job_service.start_job(smartstore_request(priority=11))

    @pytest.mark.asyncio
    async def test_inactive_license_creates_no_job(self, store, clock, make_license_gate):
        gate = make_license_gate({OWNER: LicenseStatus(active=False)})
        service = CrawlJobService(store, gate, clock=clock)

        with pytest.raises(LicenseInvalid):
            await service.start_job(smartstore_request())

        assert gate.calls == [OWNER]
        assert store.list_jobs(JobFilter(user_email=OWNER))[1] == 0

    @pytest.mark.asyncio
    async def test_failing_license_lookup_is_a_typed_rejection(self, store, clock, make_license_gate):
        """A lookup that raises surfaces as LicenseCheckFailed and creates no job."""
        gate = make_license_gate(error=ConnectionError("license service unreachable"))
        service = CrawlJobService(store, gate, clock=clock)

        with pytest.raises(LicenseCheckFailed) as exc_info:
            await service.start_job(smartstore_request())

        assert exc_info.value.code == "LICENSE_CHECK_FAILED"
        assert exc_info.value.details["error_type"] == "ConnectionError"
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert store.list_jobs(JobFilter(user_email=OWNER))[1] == 0

    @pytest.mark.asyncio
    async def test_crawl_errors_from_license_lookup_pass_through(self, store, clock, make_license_gate):
        gate = make_license_gate(error=LicenseInvalid("revoked"))
        service = CrawlJobService(store, gate, clock=clock)

        with pytest.raises(LicenseInvalid):
            await service.start_job(smartstore_request())

    @pytest.mark.asyncio
    async def test_user_locks_are_released_after_start(self, job_service):
        """Per-user locks do not accumulate once starts finish."""
        await job_service.start_job(smartstore_request())
        await job_service.start_job(smartstore_request(user_email="other@example.com"))
        gc.collect()

        assert len(job_service._user_locks) == 0

    @pytest.mark.asyncio
    async def test_expired_license_rejected(self, store, clock):
        expired = LicenseStatus(active=True, expires_at=datetime(2025, 12, 31))
        service = CrawlJobService(store, StaticLicenseGate({OWNER: expired}), clock=clock)

        with pytest.raises(LicenseInvalid) as exc_info:
            await service.start_job(smartstore_request())
        assert exc_info.value.details["expires_at"] == "2025-12-31T00:00:00"

    @pytest.mark.asyncio
    async def test_future_expiry_accepted(self, store, clock):
        status = LicenseStatus(active=True, expires_at=clock.now + timedelta(days=30))
        service = CrawlJobService(store, StaticLicenseGate({OWNER: status}), clock=clock)

        job = await service.start_job(smartstore_request())
        assert job.status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_second_start_rejected_while_active(self, job_service):
        first = await job_service.start_job(smartstore_request())

        with pytest.raises(JobAlreadyRunning) as exc_info:
            await job_service.start_job(smartstore_request())
        assert exc_info.value.details["job_id"] == first.id

        await job_service.transition_to_running(first.id)
        with pytest.raises(JobAlreadyRunning):
            await job_service.start_job(smartstore_request())

    @pytest.mark.asyncio
    async def test_concurrent_starts_yield_one_job(self, job_service, store):
        results = await asyncio.gather(
            *(job_service.start_job(smartstore_request()) for _ in range(5)),
            return_exceptions=True,
        )

        created = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, JobAlreadyRunning)]
        assert len(created) == 1
        assert len(rejected) == 4
        assert store.list_jobs(JobFilter(user_email=OWNER))[1] == 1

    @pytest.mark.asyncio
    async def test_users_are_independent(self, job_service):
        first = await job_service.start_job(smartstore_request("a@example.com"))
        second = await job_service.start_job(smartstore_request("b@example.com"))
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_new_job_after_terminal_state(self, job_service):
        job = await running_job(job_service)
        await job_service.complete_job(job.id)

        again = await job_service.start_job(smartstore_request())
        assert again.status == JobStatus.PENDING
        assert again.id != job.id


class TestTransitions:
    """Runner-driven transitions and progress."""

    @pytest.mark.asyncio
    async def test_transition_to_running_sets_started_at(self, job_service):
        job = await job_service.start_job(smartstore_request())
        running = await job_service.transition_to_running(job.id)

        assert running.status == JobStatus.RUNNING
        assert running.started_at is not None

    @pytest.mark.asyncio
    async def test_transition_to_running_twice_rejected(self, job_service):
        job = await running_job(job_service)
        with pytest.raises(InvalidJobState):
            await job_service.transition_to_running(job.id)

    @pytest.mark.asyncio
    async def test_unknown_job(self, job_service):
        with pytest.raises(JobNotFound):
            await job_service.transition_to_running(999)
        with pytest.raises(JobNotFound):
            await job_service.complete_job(999)

    @pytest.mark.asyncio
    async def test_record_progress_accumulates(self, job_service):
        job = await running_job(job_service)

        await job_service.record_progress(job.id, ProgressDelta(total=5, processed=5, success=4, skipped=1))
        updated = await job_service.record_progress(
            job.id, ProgressDelta(total=3, processed=3, success=2, failed=1),
            metadata={"pages_processed": 2}, estimated_remaining_ms=1200,
        )

        assert updated.total_items == 8
        assert updated.processed_items == 8
        assert updated.success_items == 6
        assert updated.failed_items == 1
        assert updated.skipped_items == 1
        assert updated.metadata == {"pages_processed": 2}
        assert updated.estimated_remaining_ms == 1200

    @pytest.mark.asyncio
    async def test_record_progress_rejects_invalid_delta(self, job_service):
        job = await running_job(job_service)
        with pytest.raises(ValueError):
            await job_service.record_progress(job.id, ProgressDelta(total=-1))
        with pytest.raises(ValueError):
            await job_service.record_progress(job.id, ProgressDelta(processed=1, success=2))

    @pytest.mark.asyncio
    async def test_record_progress_requires_running(self, job_service):
        job = await job_service.start_job(smartstore_request())
        with pytest.raises(InvalidJobState):
            await job_service.record_progress(job.id, ProgressDelta(total=1, processed=1, success=1))

    @pytest.mark.asyncio
    async def test_record_results_counts_rows_with_settled_delta(self, job_service):
        job = await running_job(job_service)
        rows = [result_row(job.id, "r1", 1), result_row(job.id, "r2", 2)]

        stored = await job_service.record_results(job.id, rows, ProgressDelta(total=3, processed=1, skipped=1))
        updated = await job_service.get_job(job.id)

        assert stored == (2, 0, [])
        assert updated.total_items == 3
        assert updated.processed_items == 3
        assert updated.success_items == 2
        assert updated.skipped_items == 1
        assert len(updated.results) == updated.success_items

    @pytest.mark.asyncio
    async def test_record_results_after_cancel_writes_nothing(self, job_service):
        """A cancelled job gets neither rows nor counts."""
        job = await running_job(job_service)
        await job_service.cancel_job(job.id, OWNER)

        with pytest.raises(InvalidJobState):
            await job_service.record_results(job.id, [result_row(job.id, "r1", 1)], ProgressDelta(total=1))

        updated = await job_service.get_job(job.id)
        assert updated.results == []
        assert updated.total_items == 0
        assert updated.success_items == 0

    @pytest.mark.asyncio
    async def test_complete_sets_timing(self, job_service):
        job = await running_job(job_service)
        completed = await job_service.complete_job(job.id)

        assert completed.status == JobStatus.COMPLETED
        assert completed.completed_at > completed.started_at
        assert completed.duration_ms == elapsed_ms(completed.started_at, completed.completed_at)
        assert completed.estimated_remaining_ms == 0

    @pytest.mark.asyncio
    async def test_complete_requires_running(self, job_service):
        job = await job_service.start_job(smartstore_request())
        with pytest.raises(InvalidJobState):
            await job_service.complete_job(job.id)

    @pytest.mark.asyncio
    async def test_fail_records_error(self, job_service):
        job = await running_job(job_service)
        failed = await job_service.fail_job(job.id, "SITE_BLOCKED", "captcha", {"page_number": 2})

        assert failed.status == JobStatus.FAILED
        assert failed.error_code == "SITE_BLOCKED"
        assert failed.error_message == "captcha"
        assert failed.error_details == {"page_number": 2}
        assert failed.duration_ms is not None

    @pytest.mark.asyncio
    async def test_terminal_states_are_final(self, job_service):
        job = await running_job(job_service)
        await job_service.complete_job(job.id)

        with pytest.raises(InvalidJobState):
            await job_service.fail_job(job.id, "X", "late failure")
        with pytest.raises(InvalidJobState):
            await job_service.complete_job(job.id)
        assert (await job_service.get_job(job.id)).status == JobStatus.COMPLETED


class TestCancel:
    """Owner-only cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_pending(self, job_service):
        job = await job_service.start_job(smartstore_request())
        cancelled = await job_service.cancel_job(job.id, OWNER)

        assert cancelled.status == JobStatus.CANCELLED
        assert cancelled.completed_at is not None
        assert cancelled.duration_ms is None  # never started
        assert await job_service.is_cancelled(job.id)

    @pytest.mark.asyncio
    async def test_cancel_running(self, job_service):
        job = await running_job(job_service)
        cancelled = await job_service.cancel_job(job.id, OWNER)

        assert cancelled.status == JobStatus.CANCELLED
        assert cancelled.duration_ms is not None

    @pytest.mark.asyncio
    async def test_cancel_by_other_user_looks_like_missing_job(self, job_service):
        job = await job_service.start_job(smartstore_request())

        with pytest.raises(JobNotFound):
            await job_service.cancel_job(job.id, "intruder@example.com")
        assert (await job_service.get_job(job.id)).status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancel_terminal_job_rejected(self, job_service):
        job = await running_job(job_service)
        await job_service.cancel_job(job.id, OWNER)

        with pytest.raises(InvalidJobState):
            await job_service.cancel_job(job.id, OWNER)

    @pytest.mark.asyncio
    async def test_transitions_after_cancel_rejected(self, job_service):
        job = await running_job(job_service)
        await job_service.cancel_job(job.id, OWNER)

        with pytest.raises(InvalidJobState):
            await job_service.complete_job(job.id)
        with pytest.raises(InvalidJobState):
            await job_service.record_progress(job.id, ProgressDelta(total=1, processed=1, success=1))

    @pytest.mark.asyncio
    async def test_cancel_frees_user_slot(self, job_service):
        job = await job_service.start_job(smartstore_request())
        await job_service.cancel_job(job.id, OWNER)

        again = await job_service.start_job(smartstore_request())
        assert again.status == JobStatus.PENDING


class TestQueries:
    """get_job, list_jobs and statistics."""

    @pytest.mark.asyncio
    async def test_get_job_scoped_to_owner(self, job_service):
        job = await job_service.start_job(smartstore_request())

        assert (await job_service.get_job(job.id, user_email=OWNER)).id == job.id
        with pytest.raises(JobNotFound):
            await job_service.get_job(job.id, user_email="other@example.com")
        with pytest.raises(JobNotFound):
            await job_service.get_job(12345)

    @pytest.mark.asyncio
    async def test_list_jobs_pagination(self, job_service):
        for _ in range(5):
            job = await job_service.start_job(smartstore_request())
            await job_service.cancel_job(job.id, OWNER)

        first = await job_service.list_jobs(JobFilter(user_email=OWNER, page=1, limit=2))
        last = await job_service.list_jobs(JobFilter(user_email=OWNER, page=3, limit=2))

        assert first.total == 5
        assert first.total_pages == 3
        assert len(first.jobs) == 2
        assert len(last.jobs) == 1
        assert first.jobs[0].id > first.jobs[1].id  # newest first

    @pytest.mark.asyncio
    async def test_list_jobs_limit_clamped(self, job_service):
        page = await job_service.list_jobs(JobFilter(limit=1000, page=0))
        assert page.limit == 100
        assert page.page == 1

    @pytest.mark.asyncio
    async def test_list_jobs_filters(self, job_service):
        blog = await job_service.start_job(
            StartJobRequest(user_email="a@example.com", source_site="NAVER_BLOG", config={"startUrl": BLOG_URL})
        )
        await job_service.start_job(smartstore_request("b@example.com"))

        by_site = await job_service.list_jobs(JobFilter(source_site=SourceSite.NAVER_BLOG))
        by_status = await job_service.list_jobs(JobFilter(status=JobStatus.RUNNING))

        assert [job.id for job in by_site.jobs] == [blog.id]
        assert by_status.total == 0

    @pytest.mark.asyncio
    async def test_statistics(self, job_service):
        completed = await running_job(job_service)
        await job_service.record_progress(completed.id, ProgressDelta(total=4, processed=4, success=4))
        await job_service.complete_job(completed.id)

        failed = await running_job(job_service)
        await job_service.fail_job(failed.id, "SITE_BLOCKED", "blocked")

        await job_service.start_job(smartstore_request())
        await job_service.start_job(smartstore_request("other@example.com"))

        stats = await job_service.get_statistics(OWNER)
        durations = [
            (await job_service.get_job(job_id)).duration_ms for job_id in (completed.id, failed.id)
        ]

        assert stats.total_jobs == 3
        assert stats.completed_jobs == 1
        assert stats.failed_jobs == 1
        assert stats.pending_jobs == 1
        assert stats.running_jobs == 0
        assert stats.total_items_processed == 4
        assert stats.average_duration_ms == round(sum(durations) / 2)
        assert stats.jobs_by_site == {"SMARTSTORE": 3}
        assert stats.jobs_by_type == {"PAGINATED_SEARCH": 3}
        assert len(stats.recent_jobs) == 3

    @pytest.mark.asyncio
    async def test_statistics_for_unknown_user(self, job_service):
        stats = await job_service.get_statistics("nobody@example.com")
        assert stats.total_jobs == 0
        assert stats.average_duration_ms == 0
        assert stats.recent_jobs == []
