"""Output helpers for the payment calculator.

Plain-text rendering of status results and group reports for the terminal.
"""

from __future__ import annotations

from typing import Iterable

from .data_models import GroupPaymentSummary, Payment, PaymentCycleResult, StudentPaymentOverview
from .engine import display_label


def _date(value) -> str:
    return value.strftime("%Y-%m-%d") if value else "-"


def print_status(result: PaymentCycleResult) -> None:
    """Print the payment status of one student in one group."""
    print(f"Payment status: student {result.student_id}, group {result.group_id}")
    print("-" * 72)
    print(f"Status             : {result.current_status}")
    print(f"Attended sessions  : {result.attended_sessions}")
    print(f"Unpaid in cycle    : {result.total_sessions_in_cycle}")
    print(f"Amount due         : {result.amount_due:.2f}")
    print(f"Next due date      : {_date(result.next_due_date)}")
    print("-" * 72)


def print_payments(payments: Iterable[Payment]) -> None:
    headers = ["Id", "Amount", "Status", "Due", "Paid"]
    print("\t".join(headers))
    for payment in payments:
        row = [
            str(payment.id),
            f"{payment.amount:.2f}",
            display_label(payment.status),
            _date(payment.due_date),
            _date(payment.paid_date),
        ]
        print("\t".join(row))


def print_group_summary(summary: GroupPaymentSummary) -> None:
    print(f"Group {summary.group_id}")
    print("=" * 72)
    print(f"Students           : {summary.total_students}")
    print(f"Up to date         : {summary.students_up_to_date}")
    print(f"Pending            : {summary.students_pending} ({summary.pending_amount:.2f} due)")
    print(f"Overdue            : {summary.students_overdue} ({summary.overdue_amount:.2f} due)")
    print(f"Revenue            : {summary.total_revenue:.2f}")
    print("=" * 72)


def print_student_overview(overview: StudentPaymentOverview) -> None:
    """Print one row per group, followed by the overall status."""
    print(f"{'Group':20s} {'Status':>12s} {'Attended':>10s} {'Unpaid':>8s} {'Due':>12s}")
    for result in overview.results:
        print(
            f"{result.group_id:20s} {result.current_status:>12s} {result.attended_sessions:10d} "
            f"{result.total_sessions_in_cycle:8d} {result.amount_due:12.2f}"
        )
    print("-" * 72)
    print(f"Overall status     : {overview.overall_status}")
    print(f"Total amount due   : {overview.total_amount_due:.2f}")
