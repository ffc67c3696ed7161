"""
Bookkeeping Jobs

Background jobs for delivery side effects that failed after the delivery's
state was already saved:
- Replay PENDING bookkeeping tasks (units, expense, ledger, metrics, sale status)
- Mark tasks ABANDONED once they run out of attempts
"""

import logging
from typing import Dict
from datetime import datetime, timezone

from app.database import get_db_session
from app.services.bookkeeping_service import BookkeepingService

logger = logging.getLogger(__name__)


async def retry_bookkeeping() -> Dict[str, int]:
    """
    Replay pending bookkeeping tasks.

    Runs every BOOKKEEPING_RETRY_INTERVAL_MINUTES. Each task is retried in
    its own savepoint, so one failing task does not block the others.
    """
    logger.info("Starting bookkeeping retry...")
    start_time = datetime.now(timezone.utc)

    async with get_db_session() as session:
        stats = await BookkeepingService(session).retry_pending()

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    if stats["retried"]:
        logger.info(
            f"Bookkeeping retry finished in {duration:.2f}s: "
            f"{stats['done']} done, {stats['failed']} failed, {stats['abandoned']} abandoned"
        )
    return stats


JOBS = {
    "retry_bookkeeping": retry_bookkeeping,
}
