from contextlib import contextmanager
from datetime import date

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

import scheduler
from database import Base
from domain import Frequency, TransactionDirection
from models import Transaction
from schemas import AccountIn, RecurringTemplateIn
from services import AccountService, RecurringTemplateService


def test_register_jobs_adds_daily_and_hourly_runs() -> None:
    manager = scheduler.SchedulerManager()
    manager.register_jobs()

    jobs = {job.id: job for job in manager.scheduler.get_jobs()}
    assert len(manager.scheduler.get_jobs()) == 2
    assert set(jobs) =={"recurring_daily", "recurring_hourly_safety"}
    assert jobs["recurring_daily"].args[0].startswith("daily_")
    assert jobs["recurring_hourly_safety"].args == ("hourly_safety_net",)


def test_run_job_generates_through_local_today(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        AccountService(session).create(AccountIn(name="Checking"))
        RecurringTemplateService(session).create(
            RecurringTemplateIn(
                name="Phone",
                direction=TransactionDirection.expense,
                amount_cents=6_000,
                frequency=Frequency.monthly,
                by_month_day=5,
                start_date=date(2024, 1, 5),
            ),
            today=date(2024, 1, 1),
        )

    @contextmanager
    def fake_scope():
        with Session(engine) as session:
            yield session
            session.commit()

    monkeypatch.setattr(scheduler, "session_scope", fake_scope)
    monkeypatch.setattr(scheduler, "local_today", lambda: date(2024, 3, 10))

    manager = scheduler.SchedulerManager()
    assert manager._run_job("test") == 3
    assert manager._run_job("test") == 0

    with Session(engine) as session:
        keys = session.scalars(
            select(Transaction.recurring_instance_key).order_by(Transaction.date)
        ).all()
    assert keys == ["2024-01-05", "2024-02-05", "2024-03-05"]
