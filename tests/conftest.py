from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from tutor_payments.config import Settings
from tutor_payments.data_models import GroupPaymentConfig, PRESENT
from tutor_payments.engine import PaymentCycleCalculator
from tutor_payments.store import RecordStore


class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int) -> None:
        self.now += timedelta(days=days)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 9, 0, 0))


@pytest.fixture
def store():
    return RecordStore("sqlite://")


@pytest.fixture
def calculator(store, clock):
    return PaymentCycleCalculator(store, Settings(), clock=clock)


def make_group(store, group_id="g1", session_fee="25", threshold=4, monthly_fee=None):
    store.save_group(
        GroupPaymentConfig(
            group_id=group_id,
            session_fee=Decimal(session_fee) if session_fee is not None else None,
            payment_threshold=threshold,
            monthly_fee=Decimal(monthly_fee) if monthly_fee is not None else None,
        ),
        teacher_id="t1",
    )
    return group_id


def attend(store, group_id, student_id, count, start=datetime(2024, 1, 1, 17, 0), status=PRESENT):
    for week in range(count):
        session_id = store.record_session(group_id, start + timedelta(weeks=week))
        store.record_attendance(session_id, student_id, status)
