"""Command-line interface for storecrawl."""

import asyncio
import sys
import json
from datetime import datetime, timedelta
from typing import Optional

from storecrawl.config import CrawlerThresholds, settings
from storecrawl.constants import DEFAULT_LIST_LIMIT
from storecrawl.database import LocalSqliteCrawlStore
from storecrawl.exceptions import CrawlError
from storecrawl.extractors import resolve_site, supported_sites
from storecrawl.infrastructure.browser_session import BrowserSessionManager
from storecrawl.job_runner import CrawlJobRunner
from storecrawl.job_service import CrawlJobService, StartJobRequest
from storecrawl.license import DatabaseLicenseGate
from storecrawl.logging_config import setup_logging
from storecrawl.models import JobFilter, JobStatus, JobType


def _load_thresholds(path: Optional[str]) -> CrawlerThresholds:
    return CrawlerThresholds.from_file(path) if path else CrawlerThresholds.from_env()


def _build_service(args) -> CrawlJobService:
    store = LocalSqliteCrawlStore(args.database_url)
    return CrawlJobService(store, DatabaseLicenseGate(store))


def _emit(data, output: str) -> None:
    if output == "json":
        print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def print_job(job, show_results: bool = False):
    """Print a job summary.

    Args:
        job: CrawlJob object
        show_results: Also print each persisted result
    """
    print(f"\n{'=' * 60}")
    print(f"Crawl job #{job.id} [{job.status.value}]")
    print(f"{'=' * 60}")
    print(f"  User:      {job.user_email}")
    print(f"  Site:      {job.source_site.value} ({job.job_type.value})")
    print(f"  Start URL: {job.config.get('startUrl')}")
    print(
        f"  Items:     total={job.total_items} processed={job.processed_items} "
        f"success={job.success_items} failed={job.failed_items} skipped={job.skipped_items}"
    )
    if job.duration_ms is not None:
        print(f"  Duration:  {job.duration_ms / 1000:.1f}s")
    if job.metadata:
        print(f"  Pages:     {job.metadata.get('pages_processed', 0)} processed, "
              f"{job.metadata.get('pages_failed', 0)} failed")
    if job.error_code:
        print(f"  Error:     {job.error_code} - {job.error_message}")

    if show_results and job.results:
        print(f"\nResults:")
        for result in job.results:
            summary = result.data.get("title") or result.data.get("content") or ""
            print(
                f"  p{result.page_number}#{result.item_order} "
                f"[{result.quality:.2f}] {result.item_id or '-'}: {summary[:60]}"
            )
    print()


def crawl_command(args):
    """Start a crawl job and run it to completion."""
    payload = {}
    if args.config_file:
        with open(args.config_file, "r") as f:
            payload = json.load(f)
    payload["startUrl"] = args.start_url
    for key, value in (
        ("maxPages", args.max_pages),
        ("maxItems", args.max_items),
        ("requestDelay", args.request_delay),
        ("itemType", args.item_type),
    ):
        if value is not None:
            payload[key] = value
    if args.fast:
        payload["simulateHumanBehavior"] = False

    thresholds = _load_thresholds(args.thresholds_file)
    if args.fast:
        thresholds.human_sim_fast_mode = True

    async def _run():
        service = _build_service(args)
        session = BrowserSessionManager(
            headless=not args.headed,
            thresholds=thresholds,
        )
        runner = CrawlJobRunner(service, session, thresholds=thresholds)
        try:
            return await runner.start_and_run(
                StartJobRequest(
                    user_email=args.user,
                    source_site=args.site,
                    config=payload,
                    job_type=JobType.PAGE_SCRAPE if args.page_scrape else JobType.PAGINATED_SEARCH,
                    priority=args.priority,
                )
            )
        finally:
            await session.shutdown()
            service.store.close()

    job = asyncio.run(_run())
    if args.output == "json":
        _emit(job.to_dict(), "json")
    else:
        print_job(job, show_results=args.show_results)
    if job.status != JobStatus.COMPLETED:
        sys.exit(2)


def jobs_command(args):
    """List jobs."""
    job_filter = JobFilter(
        user_email=args.user,
        status=JobStatus(args.status) if args.status else None,
        page=args.page,
        limit=args.limit,
    )
    if args.site:
        job_filter.source_site = resolve_site(args.site)

    service = _build_service(args)
    try:
        job_page = asyncio.run(service.list_jobs(job_filter))
    finally:
        service.store.close()

    if args.output == "json":
        _emit(
            {
                "jobs": [job.to_dict(include_results=False) for job in job_page.jobs],
                "page": job_page.page,
                "limit": job_page.limit,
                "total": job_page.total,
                "total_pages": job_page.total_pages,
            },
            "json",
        )
        return

    if not job_page.jobs:
        print("No crawl jobs found.")
        return
    for job in job_page.jobs:
        created = job.created_at.strftime("%Y-%m-%d %H:%M") if job.created_at else "-"
        print(
            f"#{job.id:<5} {job.status.value:<10} {job.source_site.value:<11} "
            f"{job.success_items:>5} items  {created}  {job.user_email}"
        )
    print(f"\nPage {job_page.page}/{max(job_page.total_pages, 1)} ({job_page.total} jobs)")


def show_command(args):
    """Show one job with its results."""
    service = _build_service(args)
    try:
        job = asyncio.run(service.get_job(args.job_id, user_email=args.user))
    finally:
        service.store.close()

    if args.output == "json":
        _emit(job.to_dict(), "json")
    else:
        print_job(job, show_results=True)


def cancel_command(args):
    """Cancel a pending or running job."""
    service = _build_service(args)
    try:
        job = asyncio.run(service.cancel_job(args.job_id, args.user))
    finally:
        service.store.close()
    print(f"Crawl job #{job.id} cancelled.")


def stats_command(args):
    """Print per-user statistics."""
    service = _build_service(args)
    try:
        stats = asyncio.run(service.get_statistics(args.user))
    finally:
        service.store.close()

    if args.output == "json":
        _emit(stats.to_dict(), "json")
        return

    print(f"\nCrawl statistics for {args.user}")
    print("-" * 40)
    print(f"  Total jobs:     {stats.total_jobs}")
    print(f"  Pending:        {stats.pending_jobs}")
    print(f"  Running:        {stats.running_jobs}")
    print(f"  Completed:      {stats.completed_jobs}")
    print(f"  Failed:         {stats.failed_jobs}")
    print(f"  Cancelled:      {stats.cancelled_jobs}")
    print(f"  Items stored:   {stats.total_items_processed}")
    print(f"  Avg duration:   {stats.average_duration_ms / 1000:.1f}s")
    for site, count in stats.jobs_by_site.items():
        print(f"  {site}: {count}")


def grant_license_command(args):
    """Create or update a user's license."""
    store = LocalSqliteCrawlStore(args.database_url)
    now = datetime.now()
    end_date = now + timedelta(days=args.days) if args.days else None
    try:
        store.save_license(args.user, not args.inactive, end_date, now)
    finally:
        store.close()
    expiry = end_date.strftime("%Y-%m-%d") if end_date else "never"
    print(f"License for {args.user}: active={not args.inactive}, expires={expiry}")


def _add_output_flag(subparser):
    subparser.add_argument(
        "--output",
        "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )


def main():
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="storecrawl - Licensed, paced crawl jobs for store reviews and blog listings"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.LOG_LEVEL,
        help="Set logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        default=settings.LOG_FILE,
        help="Write logs to file in addition to console",
    )
    parser.add_argument(
        "--database-url",
        default=settings.DATABASE_URL,
        help="Database URL (default: DATABASE_URL or sqlite:///storecrawl.db)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Crawl command parser
    crawl_parser = subparsers.add_parser("crawl", help="Start a crawl job and run it.")
    crawl_parser.add_argument("site", choices=supported_sites() + [s.lower() for s in supported_sites()],
                              help="Target site")
    crawl_parser.add_argument("start_url", help="First listing page URL")
    crawl_parser.add_argument("--user", required=True, help="Email of the licensed user")
    crawl_parser.add_argument("--item-type", help="Item kind, e.g. review or product")
    crawl_parser.add_argument("--max-pages", type=int, help="Maximum pages to traverse")
    crawl_parser.add_argument("--max-items", type=int, help="Maximum items to persist")
    crawl_parser.add_argument("--request-delay", type=int, help="Milliseconds between page loads")
    crawl_parser.add_argument("--priority", type=int, default=5, help="Job priority 1-10 (default: 5)")
    crawl_parser.add_argument("--config-file", help="JSON job configuration (filters, selectors, ...)")
    crawl_parser.add_argument("--thresholds-file", help="JSON file with CrawlerThresholds overrides")
    crawl_parser.add_argument("--page-scrape", action="store_true", help="Scrape only the start page")
    crawl_parser.add_argument("--headed", action="store_true", help="Show the browser window")
    crawl_parser.add_argument("--fast", action="store_true", help="Disable human-like pacing")
    crawl_parser.add_argument("--show-results", action="store_true", help="Print persisted results")
    _add_output_flag(crawl_parser)
    crawl_parser.set_defaults(func=crawl_command)

    # Jobs command parser
    jobs_parser = subparsers.add_parser("jobs", help="List crawl jobs.")
    jobs_parser.add_argument("--user", help="Only jobs of this user")
    jobs_parser.add_argument("--status", choices=[s.value for s in JobStatus], help="Filter by status")
    jobs_parser.add_argument("--site", help="Filter by site")
    jobs_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    jobs_parser.add_argument(
        "--limit", type=int, default=DEFAULT_LIST_LIMIT, help=f"Jobs per page (default: {DEFAULT_LIST_LIMIT})"
    )
    _add_output_flag(jobs_parser)
    jobs_parser.set_defaults(func=jobs_command)

    # Show command parser
    show_parser = subparsers.add_parser("show", help="Show a job and its results.")
    show_parser.add_argument("job_id", type=int, help="Job id")
    show_parser.add_argument("--user", help="Only show the job if owned by this user")
    _add_output_flag(show_parser)
    show_parser.set_defaults(func=show_command)

    # Cancel command parser
    cancel_parser = subparsers.add_parser("cancel", help="Cancel a pending or running job.")
    cancel_parser.add_argument("job_id", type=int, help="Job id")
    cancel_parser.add_argument("--user", required=True, help="Email of the job owner")
    cancel_parser.set_defaults(func=cancel_command)

    # Stats command parser
    stats_parser = subparsers.add_parser("stats", help="Show job statistics for a user.")
    stats_parser.add_argument("--user", required=True, help="User email")
    _add_output_flag(stats_parser)
    stats_parser.set_defaults(func=stats_command)

    # Grant-license command parser
    license_parser = subparsers.add_parser("grant-license", help="Create or update a user license.")
    license_parser.add_argument("user", help="User email")
    license_parser.add_argument("--days", type=int, help="Days until expiry (omit for a lifetime license)")
    license_parser.add_argument("--inactive", action="store_true", help="Store the license as inactive")
    license_parser.set_defaults(func=grant_license_command)

    args = parser.parse_args()

    # Configure logging based on flags
    setup_logging(
        level=args.log_level,
        log_file=getattr(args, 'log_file', None),
    )

    if not hasattr(args, "func"):
        parser.print_help()
        return

    try:
        args.func(args)
    except CrawlError as e:
        print(f"Error [{e.code}]: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
