"""Persistence layer for groups, attendance and payments.

The calculator talks to the database only through ``RecordStore``. It
defaults to SQLite for local development, but accepts any
SQLAlchemy-compatible URL (e.g. PostgreSQL). Each method opens its own
session, so a store instance can be shared by every calculation of a process.

At most one active (PENDING or OVERDUE) payment may exist per student and
group. This is enforced by a partial unique index on SQLite and PostgreSQL.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker

from .data_models import (
    ACTIVE_PAYMENT_STATUSES,
    PAID,
    PAYMENT_STATUSES,
    PENDING,
    PRESENT,
    ABSENT,
    AttendanceRecord,
    Enrollment,
    GroupPaymentConfig,
    Payment,
)
from .utils import money, utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()


class DuplicateActivePaymentError(Exception):
    """Raised when a second active payment is created for a student and group."""


class PaymentNotFoundError(LookupError):
    pass


class GroupModel(Base):
    __tablename__ = "groups"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=True)
    teacher_id = Column(String(64), index=True, nullable=True)
    session_fee = Column(Numeric(10, 2), nullable=True)
    payment_threshold = Column(Integer, nullable=True)
    monthly_fee = Column(Numeric(10, 2), nullable=True)


class GroupStudentModel(Base):
    __tablename__ = "group_students"
    __table_args__ = (UniqueConstraint("group_id", "student_id", name="uq_group_students_pair"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(String(64), ForeignKey("groups.id", ondelete="CASCADE"), index=True, nullable=False)
    student_id = Column(String(64), index=True, nullable=False)
    teacher_id = Column(String(64), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    joined_at = Column(DateTime, default=utcnow, nullable=False)


class SessionModel(Base):
    __tablename__ = "sessions"

    id = Column(String(64), primary_key=True)
    group_id = Column(String(64), ForeignKey("groups.id", ondelete="CASCADE"), index=True, nullable=False)
    date = Column(DateTime, nullable=False)


class AttendanceModel(Base):
    __tablename__ = "attendances"
    __table_args__ = (UniqueConstraint("session_id", "student_id", name="uq_attendances_session_student"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), ForeignKey("sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    student_id = Column(String(64), index=True, nullable=False)
    status = Column(String(16), nullable=False)


class PaymentModel(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(64), index=True, nullable=False)
    group_id = Column(String(64), index=True, nullable=False)
    teacher_id = Column(String(64), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(16), nullable=False, default=PENDING)
    due_date = Column(DateTime, nullable=False)
    paid_date = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


Index(
    "uq_payments_active_pair",
    PaymentModel.student_id,
    PaymentModel.group_id,
    unique=True,
    sqlite_where=PaymentModel.status.in_(list(ACTIVE_PAYMENT_STATUSES)),
    postgresql_where=PaymentModel.status.in_(list(ACTIVE_PAYMENT_STATUSES)),
)

_UPDATABLE_PAYMENT_FIELDS = {"status", "amount", "due_date", "paid_date", "notes"}


class RecordStore:
    """Database-backed record store used by the payment calculator."""

    def __init__(self, url: str) -> None:
        self._engine = create_engine(url, future=True)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)

    # -- reads used by the calculator ---------------------------------------

    def find_group_config(self, group_id: str) -> Optional[GroupPaymentConfig]:
        with self._session_factory() as session:
            row = session.get(GroupModel, group_id)
            if row is None:
                return None
            return GroupPaymentConfig(
                group_id=row.id,
                session_fee=row.session_fee,
                payment_threshold=row.payment_threshold,
                monthly_fee=row.monthly_fee,
            )

    def find_attendance(self, student_id: str, group_id: str, status: str = PRESENT) -> List[AttendanceRecord]:
        with self._session_factory() as session:
            rows = session.execute(
                select(AttendanceModel, SessionModel)
                .join(SessionModel, AttendanceModel.session_id == SessionModel.id)
                .where(
                    AttendanceModel.student_id == student_id,
                    SessionModel.group_id == group_id,
                    AttendanceModel.status == status,
                )
                .order_by(SessionModel.date.asc())
            ).all()
            return [
                AttendanceRecord(
                    student_id=attendance.student_id,
                    group_id=class_session.group_id,
                    status=attendance.status,
                    session_date=class_session.date,
                )
                for attendance, class_session in rows
            ]

    def find_payments(
        self, student_id: str, group_id: str, status_in: Optional[Iterable[str]] = None
    ) -> List[Payment]:
        query = select(PaymentModel).where(
            PaymentModel.student_id == student_id,
            PaymentModel.group_id == group_id,
        )
        if status_in is not None:
            query = query.where(PaymentModel.status.in_(list(status_in)))
        query = query.order_by(PaymentModel.due_date.asc(), PaymentModel.id.asc())
        with self._session_factory() as session:
            return [self._to_payment(row) for row in session.execute(query).scalars()]

    def find_group_payments(self, group_id: str, status_in: Optional[Iterable[str]] = None) -> List[Payment]:
        query = select(PaymentModel).where(PaymentModel.group_id == group_id)
        if status_in is not None:
            query = query.where(PaymentModel.status.in_(list(status_in)))
        with self._session_factory() as session:
            return [self._to_payment(row) for row in session.execute(query.order_by(PaymentModel.id)).scalars()]

    def find_active_enrollments(
        self, group_id: Optional[str] = None, student_id: Optional[str] = None
    ) -> List[Enrollment]:
        query = select(GroupStudentModel).where(GroupStudentModel.is_active.is_(True))
        if group_id is not None:
            query = query.where(GroupStudentModel.group_id == group_id)
        if student_id is not None:
            query = query.where(GroupStudentModel.student_id == student_id)
        query = query.order_by(GroupStudentModel.joined_at.asc(), GroupStudentModel.id.asc())
        with self._session_factory() as session:
            return [
                Enrollment(
                    student_id=row.student_id,
                    group_id=row.group_id,
                    teacher_id=row.teacher_id,
                    is_active=row.is_active,
                )
                for row in session.execute(query).scalars()
            ]

    # -- payment writes -----------------------------------------------------

    def create_payment(
        self,
        student_id: str,
        group_id: str,
        amount: Decimal,
        due_date: datetime,
        *,
        teacher_id: Optional[str] = None,
        status: str = PENDING,
        notes: Optional[str] = None,
    ) -> Payment:
        if status not in PAYMENT_STATUSES:
            raise ValueError(f"Unknown payment status: {status}")
        row = PaymentModel(
            student_id=student_id,
            group_id=group_id,
            teacher_id=teacher_id,
            amount=money(amount),
            status=status,
            due_date=due_date,
            notes=notes,
        )
        with self._session_factory() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                logger.debug("Rejected %s payment for student %s in group %s: %s", status, student_id, group_id, exc)
                raise DuplicateActivePaymentError(
                    f"An active payment already exists for student {student_id} in group {group_id}"
                ) from exc
            return self._to_payment(row)

    def update_payment(self, payment_id: int, **fields: Any) -> Payment:
        unknown = set(fields) - _UPDATABLE_PAYMENT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update payment fields: {', '.join(sorted(unknown))}")
        if "status" in fields and fields["status"] not in PAYMENT_STATUSES:
            raise ValueError(f"Unknown payment status: {fields['status']}")
        with self._session_factory() as session:
            row = session.get(PaymentModel, payment_id)
            if row is None:
                raise PaymentNotFoundError(f"Payment {payment_id} not found")
            for name, value in fields.items():
                setattr(row, name, money(value) if name == "amount" else value)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateActivePaymentError(
                    f"An active payment already exists for student {row.student_id} in group {row.group_id}"
                ) from exc
            return self._to_payment(row)

    def mark_paid(self, payment_id: int, paid_date: Optional[datetime] = None) -> Payment:
        return self.update_payment(payment_id, status=PAID, paid_date=paid_date or utcnow())

    # -- writes performed by the surrounding application --------------------

    def save_group(
        self,
        config: GroupPaymentConfig,
        *,
        name: Optional[str] = None,
        teacher_id: Optional[str] = None,
    ) -> None:
        with self._session_factory() as session:
            session.merge(
                GroupModel(
                    id=config.group_id,
                    name=name,
                    teacher_id=teacher_id,
                    session_fee=config.session_fee,
                    payment_threshold=config.payment_threshold,
                    monthly_fee=config.monthly_fee,
                )
            )
            session.commit()

    def enroll_student(self, group_id: str, student_id: str, teacher_id: Optional[str] = None) -> None:
        with self._session_factory() as session:
            row = session.execute(
                select(GroupStudentModel).where(
                    GroupStudentModel.group_id == group_id,
                    GroupStudentModel.student_id == student_id,
                )
            ).scalar_one_or_none()
            if row is None:
                session.add(GroupStudentModel(group_id=group_id, student_id=student_id, teacher_id=teacher_id))
            else:
                row.is_active = True
                row.teacher_id = teacher_id or row.teacher_id
            session.commit()

    def deactivate_student(self, group_id: str, student_id: str) -> None:
        with self._session_factory() as session:
            session.execute(
                GroupStudentModel.__table__.update()
                .where(
                    GroupStudentModel.group_id == group_id,
                    GroupStudentModel.student_id == student_id,
                )
                .values(is_active=False)
            )
            session.commit()

    def record_session(self, group_id: str, session_date: datetime, session_id: Optional[str] = None) -> str:
        session_id = session_id or uuid4().hex
        with self._session_factory() as session:
            session.add(SessionModel(id=session_id, group_id=group_id, date=session_date))
            session.commit()
        return session_id

    def record_attendance(self, session_id: str, student_id: str, status: str = PRESENT) -> None:
        """Store a student's attendance for a session, replacing any previous record."""
        if status not in (PRESENT, ABSENT):
            raise ValueError(f"Unknown attendance status: {status}")
        with self._session_factory() as session:
            session.execute(
                AttendanceModel.__table__.delete().where(
                    AttendanceModel.session_id == session_id,
                    AttendanceModel.student_id == student_id,
                )
            )
            session.add(AttendanceModel(session_id=session_id, student_id=student_id, status=status))
            session.commit()

    @staticmethod
    def _to_payment(row: PaymentModel) -> Payment:
        return Payment(
            id=row.id,
            student_id=row.student_id,
            group_id=row.group_id,
            teacher_id=row.teacher_id,
            amount=Decimal(row.amount),
            status=row.status,
            due_date=row.due_date,
            paid_date=row.paid_date,
            notes=row.notes,
            created_at=row.created_at,
        )

    @staticmethod
    def payment_to_dict(payment: Payment) -> Dict[str, Any]:
        return {
            "id": payment.id,
            "student_id": payment.student_id,
            "group_id": payment.group_id,
            "amount": float(payment.amount),
            "status": payment.status,
            "due_date": payment.due_date.isoformat(),
            "paid_date": payment.paid_date.isoformat() if payment.paid_date else None,
        }


def create_store_from_env(url: str | None) -> RecordStore:
    return RecordStore(url or "sqlite:///tutor_payments.sqlite3")
