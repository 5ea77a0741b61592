"""Promotion status sync job."""
import asyncio
from datetime import timedelta

from promo_engine.jobs.promotion_jobs import sync_promotion_statuses
from promo_engine.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from promo_engine.models.promotion import PromotionStatus
from tests.factories import NOW, create_promotion


async def test_sync_moves_promotions_through_their_lifecycle(db):
    due = await create_promotion(db, name="Due", status=PromotionStatus.SCHEDULED, start_date=NOW - timedelta(minutes=1))
    future = await create_promotion(db, name="Future", status=PromotionStatus.SCHEDULED, start_date=NOW + timedelta(days=7))
    ended = await create_promotion(db, name="Ended", status=PromotionStatus.ACTIVE, end_date=NOW - timedelta(seconds=1))
    missed = await create_promotion(
        db, name="Missed", status=PromotionStatus.SCHEDULED,
        start_date=NOW - timedelta(days=3), end_date=NOW - timedelta(days=1),
    )
    running = await create_promotion(db, name="Running", status=PromotionStatus.ACTIVE, end_date=NOW + timedelta(days=1))
    draft = await create_promotion(db, name="Draft", status=PromotionStatus.DRAFT, end_date=NOW - timedelta(days=1))

    result = await sync_promotion_statuses(now=NOW, session=db)
    await db.commit()

    assert result == {"activated": 1, "expired": 2}
    for promotion in (due, future, ended, missed, running, draft):
        await db.refresh(promotion)
    assert due.status == PromotionStatus.ACTIVE.value
    assert future.status == PromotionStatus.SCHEDULED.value
    assert ended.status == PromotionStatus.EXPIRED.value
    assert missed.status == PromotionStatus.EXPIRED.value
    assert running.status == PromotionStatus.ACTIVE.value
    assert draft.status == PromotionStatus.DRAFT.value


async def test_scheduler_registers_status_sync(db):
    start_scheduler()
    try:
        assert scheduler.running
        jobs = get_job_status()
        assert [job["id"] for job in jobs] == ["sync_promotion_statuses"]
    finally:
        shutdown_scheduler()

    assert get_job_status() == []
    # The stop itself runs on the next turn of the event loop
    await asyncio.sleep(0)
    assert not scheduler.running
