"""
Crawl job configuration payload.

Validated Pydantic models for the site-agnostic configuration envelope that
is stored on every job. Both snake_case and the camelCase keys used by API
clients (maxPages, requestDelay, dateRange, excludeKeywords, ...) are
accepted.
"""
from datetime import date
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from storecrawl.constants import (
    DEFAULT_MAX_ITEMS,
    DEFAULT_MAX_PAGES,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    DEFAULT_REQUEST_DELAY_MS,
    MAX_PAGES_CEILING,
)
from storecrawl.exceptions import InvalidJobConfig


class RatingRange(BaseModel):
    """Inclusive rating bounds on a 0-5 scale."""

    min: Optional[float] = Field(default=None, ge=0, le=5)
    max: Optional[float] = Field(default=None, ge=0, le=5)

    @model_validator(mode="after")
    def _check_order(self) -> "RatingRange":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("rating.min must not exceed rating.max")
        return self


class DateRange(BaseModel):
    """Inclusive date bounds."""

    model_config = ConfigDict(populate_by_name=True)

    from_date: Optional[date] = Field(default=None, alias="from")
    to_date: Optional[date] = Field(default=None, alias="to")

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.from_date and self.to_date and self.from_date > self.to_date:
            raise ValueError("dateRange.from must not be after dateRange.to")
        return self


class CrawlFilters(BaseModel):
    """Item filters applied by extractors before items are counted."""

    model_config = ConfigDict(populate_by_name=True)

    rating: Optional[RatingRange] = None
    date_range: Optional[DateRange] = Field(default=None, alias="dateRange")
    keywords: List[str] = Field(default_factory=list)
    exclude_keywords: List[str] = Field(default_factory=list, alias="excludeKeywords")


class CrawlJobConfig(BaseModel):
    """
    Configuration stored on a crawl job.

    All fields are validated by Pydantic to ensure type safety and valid values.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    start_url: str = Field(
        alias="startUrl",
        description="First page to load (search, category or review listing URL)",
    )

    max_pages: int = Field(
        default=DEFAULT_MAX_PAGES,
        alias="maxPages",
        ge=1,
        le=MAX_PAGES_CEILING,
        description="Maximum number of result pages to traverse",
    )

    max_items: int = Field(
        default=DEFAULT_MAX_ITEMS,
        alias="maxItems",
        ge=1,
        description="Maximum number of items persisted for the job",
    )

    request_delay: int = Field(
        default=DEFAULT_REQUEST_DELAY_MS,
        alias="requestDelay",
        ge=0,
        description="Mandatory pause between page navigations in milliseconds",
    )

    item_type: Optional[str] = Field(
        default=None,
        alias="itemType",
        description="Item kind for sites that list several (e.g. 'review' or 'product')",
    )

    wait_strategy: Literal["load", "domcontentloaded", "networkidle"] = Field(
        default="domcontentloaded",
        alias="waitStrategy",
        description="When to consider navigation complete",
    )

    navigation_timeout: int = Field(
        default=DEFAULT_NAVIGATION_TIMEOUT_MS,
        alias="navigationTimeout",
        ge=1000,
        le=300000,
        description="Navigation timeout in milliseconds",
    )

    simulate_human_behavior: bool = Field(
        default=True,
        alias="simulateHumanBehavior",
        description="Add randomized pauses, hovers and scrolls around navigation",
    )

    filters: CrawlFilters = Field(default_factory=CrawlFilters)

    selectors: Dict[str, str] = Field(
        default_factory=dict,
        description="Per-field CSS selector overrides for the site extractor",
    )

    @property
    def request_delay_seconds(self) -> float:
        return self.request_delay / 1000.0

    def to_payload(self) -> dict:
        """Serialize for storage, using API-facing keys."""
        return self.model_dump(mode="json", by_alias=True)


def parse_job_config(payload) -> CrawlJobConfig:
    """Validate a raw configuration payload.

    Raises:
        InvalidJobConfig: If the payload does not validate.
    """
    if isinstance(payload, CrawlJobConfig):
        return payload
    try:
        return CrawlJobConfig.model_validate(payload or {})
    except ValidationError as e:
        raise InvalidJobConfig(
            "Invalid crawl job configuration",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e
