"""Data models for the payment-cycle calculator.

This module defines dataclasses representing the entities the calculator
reads and produces: a group's fee configuration, attendance records, payment
records, enrollments and the computed status results. The persistence layer
converts its rows into these objects so the calculation engine never deals
with ORM instances directly.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

# Attendance statuses
PRESENT = "PRESENT"
ABSENT = "ABSENT"

# Payment record statuses
PENDING = "PENDING"
PAID = "PAID"
OVERDUE = "OVERDUE"
CANCELLED = "CANCELLED"
PAYMENT_STATUSES = (PENDING, PAID, OVERDUE, CANCELLED)
ACTIVE_PAYMENT_STATUSES = (PENDING, OVERDUE)

# Computed cycle statuses
A_JOUR = "A_JOUR"
EN_ATTENTE = "EN_ATTENTE"
EN_RETARD = "EN_RETARD"
CYCLE_STATUSES = (A_JOUR, EN_ATTENTE, EN_RETARD)

DEFAULT_PAYMENT_THRESHOLD = 8


@dataclass
class GroupPaymentConfig:
    """Fee configuration of a tutoring group.

    Attributes
    ----------
    group_id: str
        Identifier of the group.
    session_fee: Optional[Decimal]
        Price of one attended session. Zero or ``None`` means "not set".
    payment_threshold: Optional[int]
        Number of attended sessions billed as one cycle. ``None`` or a
        non-positive value falls back to the default threshold.
    monthly_fee: Optional[Decimal]
        Price of a full cycle, used to derive the session fee when
        ``session_fee`` is missing.
    """

    group_id: str
    session_fee: Optional[Decimal] = None
    payment_threshold: Optional[int] = None
    monthly_fee: Optional[Decimal] = None

    def effective_threshold(self, default: int = DEFAULT_PAYMENT_THRESHOLD) -> int:
        if self.payment_threshold and self.payment_threshold > 0:
            return self.payment_threshold
        return default

    def effective_session_fee(self, default_threshold: int = DEFAULT_PAYMENT_THRESHOLD) -> Optional[Decimal]:
        """Return the per-session fee, derived from ``monthly_fee`` if needed.

        Returns ``None`` when neither fee allows a positive value.
        """
        if self.session_fee is not None and self.session_fee > 0:
            return Decimal(self.session_fee)
        threshold = self.effective_threshold(default_threshold)
        if self.monthly_fee is not None and self.monthly_fee > 0 and threshold > 0:
            return Decimal(self.monthly_fee) / Decimal(threshold)
        return None


@dataclass
class AttendanceRecord:
    student_id: str
    group_id: str
    status: str  # PRESENT or ABSENT
    session_date: datetime


@dataclass
class Payment:
    """A payment record for one billed cycle of a (student, group) pair."""

    id: int
    student_id: str
    group_id: str
    teacher_id: Optional[str]
    amount: Decimal
    status: str  # PENDING, PAID, OVERDUE or CANCELLED
    due_date: datetime
    paid_date: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_PAYMENT_STATUSES


@dataclass
class Enrollment:
    student_id: str
    group_id: str
    teacher_id: Optional[str]
    is_active: bool = True


@dataclass
class PaymentCycleResult:
    """Computed payment status of a student in a group.

    ``total_sessions_in_cycle`` holds the unpaid sessions of the current,
    not yet completed cycle. ``next_due_date`` is ``None`` when nothing is
    billed or about to be billed.
    """

    student_id: str
    group_id: str
    attended_sessions: int
    total_sessions_in_cycle: int
    current_status: str  # A_JOUR, EN_ATTENTE or EN_RETARD
    amount_due: Decimal
    next_due_date: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "student_id": self.student_id,
            "group_id": self.group_id,
            "attended_sessions": self.attended_sessions,
            "total_sessions_in_cycle": self.total_sessions_in_cycle,
            "current_status": self.current_status,
            "amount_due": float(self.amount_due),
            "next_due_date": self.next_due_date.isoformat() if self.next_due_date else None,
        }


@dataclass
class GroupPaymentSummary:
    """Aggregated payment statuses of the active students of a group."""

    group_id: str
    total_students: int = 0
    students_up_to_date: int = 0
    students_pending: int = 0
    students_overdue: int = 0
    pending_amount: Decimal = Decimal("0")
    overdue_amount: Decimal = Decimal("0")
    total_revenue: Decimal = Decimal("0")

    def to_dict(self) -> dict:
        return {
            "group_id": self.group_id,
            "total_students": self.total_students,
            "students_up_to_date": self.students_up_to_date,
            "students_pending": self.students_pending,
            "students_overdue": self.students_overdue,
            "pending_amount": float(self.pending_amount),
            "overdue_amount": float(self.overdue_amount),
            "total_revenue": float(self.total_revenue),
        }


@dataclass
class StudentPaymentOverview:
    student_id: str
    results: List[PaymentCycleResult] = field(default_factory=list)
    overall_status: str = A_JOUR
    total_amount_due: Decimal = Decimal("0")
