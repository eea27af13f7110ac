"""
License Gate.

A crawl job may only start for a user holding an active license whose end
date is absent (lifetime license) or still in the future.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from storecrawl.database import AbstractCrawlStore

logger = logging.getLogger(__name__)


@dataclass
class LicenseStatus:
    """Result of a license lookup."""
    active: bool
    expires_at: Optional[datetime] = None

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.active:
            return False
        if self.expires_at is None:
            return True
        return self.expires_at > (now or datetime.now())


class LicenseGate(ABC):
    """Consulted before a job is created."""

    @abstractmethod
    async def check_license(self, user_email: str) -> LicenseStatus:
        pass


class DatabaseLicenseGate(LicenseGate):
    """Reads licenses from the crawl store's ``licenses`` table."""

    def __init__(self, store: AbstractCrawlStore):
        self.store = store

    async def check_license(self, user_email: str) -> LicenseStatus:
        record = self.store.get_license(user_email)
        if record is None:
            logger.debug(f"No license found for {user_email}")
            return LicenseStatus(active=False)
        return LicenseStatus(active=record["is_active"], expires_at=record["end_date"])


class StaticLicenseGate(LicenseGate):
    """Serves fixed license statuses.

    Users without an explicit entry get ``default``.
    """

    def __init__(self, statuses: Optional[dict] = None, default: Optional[LicenseStatus] = None):
        self.statuses = dict(statuses or {})
        self.default = default or LicenseStatus(active=False)

    async def check_license(self, user_email: str) -> LicenseStatus:
        return self.statuses.get(user_email, self.default)
