from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalendarSyncResult:
    synced: int
    failed: int


CalendarSync = Callable[[], CalendarSyncResult]


def sync_calendar_accounts() -> CalendarSyncResult:
    # External calendar providers plug in here; none ship with this service.
    logger.debug("No calendar sync provider configured")
    return CalendarSyncResult(synced=0, failed=0)
