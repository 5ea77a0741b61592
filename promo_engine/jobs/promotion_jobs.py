"""
Promotion Lifecycle Jobs

Moves promotions through their lifecycle based on their validity window:
- SCHEDULED -> ACTIVE once the start date has arrived
- ACTIVE / SCHEDULED -> EXPIRED once the end date has passed

Cart eligibility checks the dates on its own, so a late run never lets an
expired promotion apply; the job keeps the stored status honest for the
back office and for the SQL candidate filter.
"""

import logging
from typing import Dict, Optional
from datetime import datetime, timezone

from sqlalchemy import update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.database import get_db_session
from promo_engine.db_types import utcnow
from promo_engine.models.promotion import Promotion, PromotionStatus

logger = logging.getLogger(__name__)


async def _apply_status_transitions(session: AsyncSession, now: datetime) -> Dict[str, int]:
    expired = await session.execute(
        update(Promotion)
        .where(
            Promotion.status.in_([PromotionStatus.ACTIVE.value, PromotionStatus.SCHEDULED.value]),
            Promotion.end_date.is_not(None),
            Promotion.end_date < now,
        )
        .values(status=PromotionStatus.EXPIRED.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    activated = await session.execute(
        update(Promotion)
        .where(
            Promotion.status == PromotionStatus.SCHEDULED.value,
            or_(Promotion.start_date.is_(None), Promotion.start_date <= now),
            or_(Promotion.end_date.is_(None), Promotion.end_date >= now),
        )
        .values(status=PromotionStatus.ACTIVE.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    return {"activated": activated.rowcount, "expired": expired.rowcount}


async def sync_promotion_statuses(
    now: Optional[datetime] = None,
    session: Optional[AsyncSession] = None,
) -> Dict[str, int]:
    """
    Sync stored promotion statuses with their validity windows.

    Runs every PROMOTION_STATUS_SYNC_INTERVAL_MINUTES. A caller-supplied
    session is flushed but not committed.
    """
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    logger.info("Starting promotion status sync...")

    if session is not None:
        result = await _apply_status_transitions(session, now)
        await session.flush()
    else:
        async with get_db_session() as db:
            result = await _apply_status_transitions(db, now)

    if result["activated"] or result["expired"]:
        logger.info(
            f"Promotion statuses updated: {result['activated']} activated, {result['expired']} expired"
        )
    return result
