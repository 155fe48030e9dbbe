"""Core calculation engine for student payment cycles.

A group bills its students per cycle of ``payment_threshold`` attended
sessions. This module turns a student's attendance and payment history into a
``PaymentCycleResult`` (up to date, pending or overdue, with the amount due)
and keeps the PENDING payment records that represent billed cycles.

Reads and writes are kept apart: ``compute_status`` never writes, while
``promote_stale_payment``, ``ensure_pending_payment`` and
``ensure_initial_pending_payment`` are the only operations that touch payment
records. ``calculate_status`` is the promote-then-compute composition used by
request handlers.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from .config import Settings
from .data_models import (
    A_JOUR,
    ACTIVE_PAYMENT_STATUSES,
    EN_ATTENTE,
    EN_RETARD,
    OVERDUE,
    PAID,
    PENDING,
    PRESENT,
    GroupPaymentSummary,
    Payment,
    PaymentCycleResult,
    StudentPaymentOverview,
)
from .store import DuplicateActivePaymentError, RecordStore
from .utils import money, utcnow

logger = logging.getLogger(__name__)

STATUS_PRIORITY = {A_JOUR: 0, EN_ATTENTE: 1, EN_RETARD: 2}

_DISPLAY_LABELS = {
    PENDING: "EN ATTENTE",
    OVERDUE: "EN RETARD",
    PAID: "À JOUR",
}


def display_label(status: str) -> str:
    """Return the label shown to users for a payment record status."""
    return _DISPLAY_LABELS.get(status, status)


@dataclass
class _CycleSnapshot:
    """Counts and records for one (student, group) pair at a point in time."""

    threshold: int
    session_fee: Decimal
    attended_sessions: int
    unpaid_sessions: int
    active_payments: List[Payment]


def _neutral_result(student_id: str, group_id: str) -> PaymentCycleResult:
    return PaymentCycleResult(
        student_id=student_id,
        group_id=group_id,
        attended_sessions=0,
        total_sessions_in_cycle=0,
        current_status=A_JOUR,
        amount_due=Decimal("0"),
        next_due_date=None,
    )


class PaymentCycleCalculator:
    """Payment status calculations over a ``RecordStore``.

    Parameters
    ----------
    store: RecordStore
        Persistence collaborator. Anything exposing the same methods works,
        which is how the tests substitute failing stores.
    settings: Settings
        Default threshold and grace period. Read from the environment when
        omitted.
    clock: Callable[[], datetime]
        Returns the current naive UTC time.
    """

    def __init__(
        self,
        store: RecordStore,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._settings = settings or Settings.from_env()
        self._clock = clock or utcnow
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def grace_period(self) -> timedelta:
        return timedelta(days=self._settings.grace_days)

    def _pair_lock(self, student_id: str, group_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((student_id, group_id), threading.Lock())

    def _snapshot(self, student_id: str, group_id: str) -> Optional[_CycleSnapshot]:
        """Load the counts the status rules work on.

        Returns ``None`` when the group has no usable fee configuration.
        """
        config = self._store.find_group_config(group_id)
        if config is None:
            logger.warning("Missing payment configuration for group %s", group_id)
            return None
        threshold = config.effective_threshold(self._settings.default_threshold)
        session_fee = config.effective_session_fee(self._settings.default_threshold)
        if not session_fee:
            logger.warning("Group %s has neither a session fee nor a monthly fee", group_id)
            return None

        attended = len(self._store.find_attendance(student_id, group_id, PRESENT))
        completed_cycles = len(self._store.find_payments(student_id, group_id, [PAID]))
        paid_sessions = completed_cycles * threshold
        unpaid = attended - paid_sessions
        if unpaid < 0:
            # More paid cycles than attended sessions; the history is inconsistent.
            logger.warning(
                "Student %s in group %s has %d paid sessions but only %d attended; treating as up to date",
                student_id,
                group_id,
                paid_sessions,
                attended,
            )
            unpaid = 0

        active = self._store.find_payments(student_id, group_id, ACTIVE_PAYMENT_STATUSES)
        logger.debug(
            "Cycle for student %s in group %s: attended=%d completed_cycles=%d unpaid=%d threshold=%d fee=%s",
            student_id,
            group_id,
            attended,
            completed_cycles,
            unpaid,
            threshold,
            session_fee,
        )
        return _CycleSnapshot(
            threshold=threshold,
            session_fee=session_fee,
            attended_sessions=attended,
            unpaid_sessions=unpaid,
            active_payments=active,
        )

    def _stale_payment(self, snapshot: _CycleSnapshot, now: datetime) -> Optional[Payment]:
        """Return the PENDING payment that has outlived the grace period, if any.

        Only applies once a full cycle is unpaid and no payment is already
        OVERDUE.
        """
        if snapshot.unpaid_sessions < snapshot.threshold:
            return None
        if any(p.status == OVERDUE for p in snapshot.active_payments):
            return None
        pending = next((p for p in snapshot.active_payments if p.status == PENDING), None)
        if pending is not None and now - pending.due_date > self.grace_period:
            return pending
        return None

    def _decide_status(self, snapshot: _CycleSnapshot, now: datetime) -> str:
        unpaid = snapshot.unpaid_sessions
        if unpaid == 0:
            return A_JOUR
        if unpaid >= snapshot.threshold:
            if any(p.status == OVERDUE for p in snapshot.active_payments):
                return EN_RETARD
            if self._stale_payment(snapshot, now) is not None:
                return EN_RETARD
            # A PENDING payment inside its grace period, or none created yet.
            return EN_ATTENTE
        return EN_ATTENTE

    def compute_status(self, student_id: str, group_id: str) -> PaymentCycleResult:
        """Compute the payment status of a student in a group without writing.

        A PENDING payment past its grace period is reported as ``EN_RETARD``
        but left untouched; use ``promote_stale_payment`` to persist that.
        """
        snapshot = self._snapshot(student_id, group_id)
        if snapshot is None:
            return _neutral_result(student_id, group_id)
        now = self._clock()
        status = self._decide_status(snapshot, now)

        active = snapshot.active_payments
        unpaid = snapshot.unpaid_sessions
        pending_total = sum((p.amount for p in active), Decimal("0"))
        if active and pending_total > 0:
            amount_due = pending_total
        elif unpaid > 0:
            amount_due = snapshot.session_fee * unpaid
        else:
            amount_due = Decimal("0")

        if active:
            next_due_date: Optional[datetime] = min(p.due_date for p in active)
        elif unpaid >= snapshot.threshold:
            next_due_date = now + self.grace_period
        else:
            next_due_date = None

        return PaymentCycleResult(
            student_id=student_id,
            group_id=group_id,
            attended_sessions=snapshot.attended_sessions,
            total_sessions_in_cycle=unpaid,
            current_status=status,
            amount_due=money(amount_due),
            next_due_date=next_due_date,
        )

    def promote_stale_payment(self, student_id: str, group_id: str) -> Optional[Payment]:
        """Mark a PENDING payment past its grace period as OVERDUE.

        Returns the updated payment, or ``None`` when nothing qualified.
        Repeating the call is harmless.
        """
        snapshot = self._snapshot(student_id, group_id)
        if snapshot is None:
            return None
        stale = self._stale_payment(snapshot, self._clock())
        if stale is None:
            return None
        promoted = self._store.update_payment(stale.id, status=OVERDUE)
        logger.info(
            "Payment %s of student %s in group %s is overdue (due %s)",
            promoted.id,
            student_id,
            group_id,
            promoted.due_date.isoformat(),
        )
        return promoted

    def calculate_status(self, student_id: str, group_id: str) -> PaymentCycleResult:
        """Promote a stale PENDING payment, then compute the status."""
        self.promote_stale_payment(student_id, group_id)
        return self.compute_status(student_id, group_id)

    def ensure_pending_payment(self, student_id: str, group_id: str, teacher_id: Optional[str]) -> bool:
        """Create a PENDING payment once a full cycle is unpaid.

        Nothing is created while the pair already has a PENDING or OVERDUE
        payment. Returns True when a payment was created.
        """
        with self._pair_lock(student_id, group_id):
            snapshot = self._snapshot(student_id, group_id)
            if snapshot is None:
                return False
            if snapshot.unpaid_sessions < snapshot.threshold or snapshot.active_payments:
                return False
            try:
                payment = self._store.create_payment(
                    student_id,
                    group_id,
                    snapshot.session_fee * snapshot.threshold,
                    self._clock() + self.grace_period,
                    teacher_id=teacher_id,
                    status=PENDING,
                    notes=f"Automatic payment - {snapshot.threshold} sessions",
                )
            except DuplicateActivePaymentError:
                logger.info("Active payment for student %s in group %s created concurrently", student_id, group_id)
                return False
        logger.info(
            "Created pending payment %s of %s for student %s in group %s",
            payment.id,
            payment.amount,
            student_id,
            group_id,
        )
        return True

    def ensure_initial_pending_payment(self, student_id: str, group_id: str, teacher_id: Optional[str]) -> None:
        """Bill the first cycle of a newly enrolled student.

        Does nothing if the student already has any payment in the group or
        the group's fees are not configured.
        """
        config = self._store.find_group_config(group_id)
        session_fee = config.effective_session_fee(self._settings.default_threshold) if config else None
        if not session_fee:
            logger.warning("Missing payment configuration for group %s; no initial payment created", group_id)
            return
        threshold = config.effective_threshold(self._settings.default_threshold)
        with self._pair_lock(student_id, group_id):
            if self._store.find_payments(student_id, group_id):
                return
            try:
                payment = self._store.create_payment(
                    student_id,
                    group_id,
                    session_fee * threshold,
                    self._clock() + self.grace_period,
                    teacher_id=teacher_id,
                    status=PENDING,
                    notes=f"Initial payment - {threshold} sessions",
                )
            except DuplicateActivePaymentError:
                logger.info("Initial payment for student %s in group %s created concurrently", student_id, group_id)
                return
        logger.info("Created initial payment %s for student %s in group %s", payment.id, student_id, group_id)

    def refresh_group_payment_statuses(self, group_id: str) -> int:
        """Run ``ensure_pending_payment`` for every active student of a group.

        A failure for one student is logged and does not stop the others.
        Returns the number of payments created.
        """
        created = 0
        for enrollment in self._store.find_active_enrollments(group_id=group_id):
            try:
                if self.ensure_pending_payment(enrollment.student_id, group_id, enrollment.teacher_id):
                    created += 1
            except Exception:
                logger.exception(
                    "Could not refresh payment status of student %s in group %s", enrollment.student_id, group_id
                )
        return created

    def promote_group_stale_payments(self, group_id: str) -> int:
        """Run ``promote_stale_payment`` for every active student of a group."""
        promoted = 0
        for enrollment in self._store.find_active_enrollments(group_id=group_id):
            try:
                if self.promote_stale_payment(enrollment.student_id, group_id) is not None:
                    promoted += 1
            except Exception:
                logger.exception(
                    "Could not promote payments of student %s in group %s", enrollment.student_id, group_id
                )
        return promoted

    def summarize_group(self, group_id: str) -> GroupPaymentSummary:
        """Count the active students of a group by payment status.

        A student whose status cannot be computed is counted as pending.
        """
        summary = GroupPaymentSummary(group_id=group_id)
        for enrollment in self._store.find_active_enrollments(group_id=group_id):
            summary.total_students += 1
            try:
                result = self.compute_status(enrollment.student_id, group_id)
            except Exception:
                logger.exception(
                    "Could not compute payment status of student %s in group %s", enrollment.student_id, group_id
                )
                summary.students_pending += 1
                continue
            if result.current_status == A_JOUR:
                summary.students_up_to_date += 1
            elif result.current_status == EN_RETARD:
                summary.students_overdue += 1
                summary.overdue_amount += result.amount_due
            else:
                summary.students_pending += 1
                summary.pending_amount += result.amount_due
        paid = self._store.find_group_payments(group_id, [PAID])
        summary.total_revenue = money(sum((p.amount for p in paid), Decimal("0")))
        return summary

    def student_overview(self, student_id: str) -> StudentPaymentOverview:
        """Payment status of a student across all groups they are active in."""
        overview = StudentPaymentOverview(student_id=student_id)
        for enrollment in self._store.find_active_enrollments(student_id=student_id):
            try:
                result = self.compute_status(student_id, enrollment.group_id)
            except Exception:
                logger.exception(
                    "Could not compute payment status of student %s in group %s", student_id, enrollment.group_id
                )
                result = _neutral_result(student_id, enrollment.group_id)
            overview.results.append(result)
            overview.total_amount_due += result.amount_due
            if STATUS_PRIORITY[result.current_status] > STATUS_PRIORITY[overview.overall_status]:
                overview.overall_status = result.current_status
        return overview
