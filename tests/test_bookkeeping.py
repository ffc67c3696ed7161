"""Bookkeeping outbox: failed steps are queued and replayed."""
from contextlib import asynccontextmanager
from decimal import Decimal

from app.config import settings
from app.jobs import bookkeeping_jobs
from app.jobs.bookkeeping_jobs import JOBS
from app.models.bookkeeping import BookkeepingStep, BookkeepingTaskStatus
from app.models.expense import ExpenseCategory
from app.schemas.delivery import DeliveryOutcome
from app.services.bookkeeping_service import BookkeepingService
from app.services.delivery_service import DeliveryService
from app.services.expense_service import ExpenseService
from tests.conftest import ACTOR


async def _deliver_with_expense_outage(db, monkeypatch, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale()
    delivery = await schedule_delivery(sale, carrier, [("P-100", 2, [])], carrier_cost=Decimal("18.00"))

    async def expense_store_down(self, **kwargs):
        raise RuntimeError("expense store unavailable")

    monkeypatch.setattr(ExpenseService, "create_distribution_expense", expense_store_down)
    await DeliveryService(db).record_outcome(delivery.id, DeliveryOutcome(success=True), ACTOR)
    return delivery


async def test_retry_replays_pending_step(db, monkeypatch, make_carrier, make_sale, schedule_delivery):
    delivery = await _deliver_with_expense_outage(db, monkeypatch, make_carrier, make_sale, schedule_delivery)
    monkeypatch.undo()

    stats = await BookkeepingService(db).retry_pending()
    await db.commit()

    assert stats == {"retried": 1, "done": 1, "failed": 0, "abandoned": 0}
    delivery = await DeliveryService(db).require_delivery(delivery.id)
    expense = await ExpenseService(db).get_expense(delivery.distribution_expense_id)
    assert expense.category == ExpenseCategory.DISTRIBUTION.value
    assert expense.amount == Decimal("18.00")
    assert expense.created_by == ACTOR

    tasks = await BookkeepingService(db).list_for_delivery(delivery.id)
    assert tasks[0].status == BookkeepingTaskStatus.DONE.value
    assert tasks[0].completed_at is not None

    # Nothing left to replay
    assert (await BookkeepingService(db).retry_pending())["retried"] == 0


async def test_retry_abandons_after_max_attempts(db, monkeypatch, make_carrier, make_sale, schedule_delivery):
    monkeypatch.setattr(settings, "BOOKKEEPING_MAX_ATTEMPTS", 3)
    delivery = await _deliver_with_expense_outage(db, monkeypatch, make_carrier, make_sale, schedule_delivery)
    service = BookkeepingService(db)

    first = await service.retry_pending()
    second = await service.retry_pending()
    await db.commit()

    assert first["failed"] == 1
    assert second["abandoned"] == 1
    tasks = await service.list_for_delivery(delivery.id)
    assert tasks[0].attempts == 3
    assert tasks[0].status == BookkeepingTaskStatus.ABANDONED.value
    assert (await service.retry_pending())["retried"] == 0


async def test_replayed_steps_skip_completed_work(db, make_carrier, make_sale, schedule_delivery):
    carrier = await make_carrier()
    sale = await make_sale()
    delivery = await schedule_delivery(sale, carrier, [("P-100", 2, [])])
    delivery = await DeliveryService(db).record_outcome(delivery.id, DeliveryOutcome(success=True), ACTOR)
    service = BookkeepingService(db)
    ref = {"delivery_id": str(delivery.id), "delivery_code": delivery.code}

    expense_id = await service.execute(BookkeepingStep.DISTRIBUTION_EXPENSE, ref, ACTOR)
    entry = await service.execute(
        BookkeepingStep.LEDGER_ENTRY, {**ref, "kind": "SUCCESSFUL_DELIVERY", "amount_collected": "0"}, ACTOR
    )

    assert expense_id == delivery.distribution_expense_id
    assert entry is None


async def test_retry_job_uses_its_own_session(monkeypatch, session_factory):
    @asynccontextmanager
    async def job_session():
        async with session_factory() as session:
            yield session
            await session.commit()

    monkeypatch.setattr(bookkeeping_jobs, "get_db_session", job_session)

    result = await JOBS["retry_bookkeeping"]()

    assert result["retried"] == 0
