"""
Result ingestion pipeline.

Turns one page of extractor output into ordered, deduplicated, scored
``CrawlResult`` rows and reports the page's counts to the job service.
"""

import logging
from typing import Any, List, Optional, Sequence

from storecrawl.config import CrawlerThresholds, default_thresholds
from storecrawl.constants import DEFAULT_QUALITY_WEIGHTS, QUALITY_FIELD_WEIGHTS
from storecrawl.database import AbstractCrawlStore
from storecrawl.job_service import CrawlJobService
from storecrawl.models import CrawlResult, ExtractedItem, IngestOutcome, ProgressDelta, RowFailure

logger = logging.getLogger(__name__)


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, tuple, dict)):
        return len(value) > 0
    return True


def compute_quality(item: ExtractedItem) -> float:
    """
    Weighted fraction of the item type's expected fields that are present.

    Returns:
        Score between 0.0 and 1.0
    """
    weights = QUALITY_FIELD_WEIGHTS.get(item.item_type, DEFAULT_QUALITY_WEIGHTS)
    total = sum(weights.values())
    if total <= 0:
        return 0.0
    present = sum(weight for field_name, weight in weights.items() if _is_present(item.data.get(field_name)))
    return round(present / total, 4)


def normalize_item(item: ExtractedItem) -> ExtractedItem:
    """Strip string values and normalize the native id.

    Raises:
        ValueError: Item has no type or its payload is not a mapping
    """
    if not item.item_type:
        raise ValueError("item has no type")
    if not isinstance(item.data, dict):
        raise ValueError(f"item payload must be a mapping, got {type(item.data).__name__}")

    data = {
        key: value.strip() if isinstance(value, str) else value
        for key, value in item.data.items()
    }
    native_id = str(item.native_id).strip() if item.native_id is not None else None
    return ExtractedItem(item_type=item.item_type, data=data, native_id=native_id or None)


class ResultIngestionPipeline:
    """
    Persists extracted items for a running job.

    Usage:
        pipeline = ResultIngestionPipeline(store, job_service)
        outcome = await pipeline.ingest(job.id, page_number, extraction.items)
    """

    def __init__(
        self,
        store: AbstractCrawlStore,
        job_service: CrawlJobService,
        thresholds: Optional[CrawlerThresholds] = None,
    ):
        self.store = store
        self.job_service = job_service
        self.thresholds = thresholds or default_thresholds

    def _build_rows(self, job_id: int, page_number: int, items: Sequence[ExtractedItem],
                    outcome: IngestOutcome) -> List[CrawlResult]:
        existing = self.store.existing_item_ids(
            job_id, [item.native_id for item in items if item.native_id is not None]
        )
        seen = set()
        rows = []

        for item_order, raw_item in enumerate(items, start=1):
            try:
                item = normalize_item(raw_item)
            except ValueError as e:
                outcome.failures.append(RowFailure(item_order, raw_item.native_id, str(e)))
                continue

            if item.native_id is not None:
                if item.native_id in existing or item.native_id in seen:
                    outcome.skipped_duplicates += 1
                    continue
                seen.add(item.native_id)

            rows.append(
                CrawlResult(
                    job_id=job_id,
                    item_id=item.native_id,
                    item_type=item.item_type,
                    data=item.data,
                    quality=compute_quality(item),
                    item_order=item_order,
                    page_number=page_number,
                )
            )
        return rows

    async def ingest(self, job_id: int, page_number: int, items: Sequence[ExtractedItem]) -> IngestOutcome:
        """
        Persist one page of items and record the page's progress.

        Duplicates (same job and native id) are skipped and counted; rows the
        store rejects are reported individually while their siblings commit.

        Raises:
            JobNotFound: Unknown job
            InvalidJobState: Job is no longer RUNNING
        """
        outcome = IngestOutcome(job_id=job_id, page_number=page_number)
        if not items:
            return outcome

        rows = self._build_rows(job_id, page_number, items, outcome)

        # Counts settled before storage travel with the first batch
        settled = ProgressDelta(
            total=len(items),
            processed=outcome.processed,
            failed=outcome.failed,
            skipped=outcome.skipped_duplicates,
        )
        batch_size = max(self.thresholds.ingest_batch_size, 1)
        batches = [rows[start:start + batch_size] for start in range(0, len(rows), batch_size)] or [[]]
        for batch in batches:
            inserted, duplicates, failures = await self.job_service.record_results(job_id, batch, settled)
            settled = ProgressDelta()
            outcome.inserted += inserted
            outcome.skipped_duplicates += duplicates
            outcome.failures.extend(failures)

        for failure in outcome.failures:
            logger.warning(
                f"Job {job_id} page {page_number} item {failure.item_order} rejected: {failure.reason}"
            )

        logger.debug(
            f"Job {job_id} page {page_number}: {outcome.inserted} inserted, "
            f"{outcome.skipped_duplicates} duplicates, {outcome.failed} failed"
        )
        return outcome
