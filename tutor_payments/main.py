"""Command-line interface for the payment calculator.

Operators use it to inspect payment statuses and to run the maintenance
operations that the web application normally triggers: billing students who
completed a cycle, billing newly enrolled students, and marking payments
overdue once their grace period has elapsed.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click

from .config import Settings
from .data_models import ABSENT, PRESENT, GroupPaymentConfig
from .engine import PaymentCycleCalculator
from .formatter import print_group_summary, print_payments, print_status, print_student_overview
from .store import PaymentNotFoundError, RecordStore, create_store_from_env
from .utils import parse_datetime, to_decimal, utcnow


def export_to_json(path: Path, data: Dict[str, Any]) -> None:
    if path.suffix.lower() != ".json":
        raise click.BadParameter("Export must use .json extension")
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def _calculator(ctx: click.Context) -> PaymentCycleCalculator:
    return ctx.obj["calculator"]


def _store(ctx: click.Context) -> RecordStore:
    return ctx.obj["store"]


@click.group()
@click.option(
    "--database-url",
    "database_url",
    envvar="TUTOR_PAYMENTS_DATABASE_URL",
    help="SQLAlchemy database URL",
)
@click.option("--verbose", "-v", is_flag=True, help="Log calculation details")
@click.pass_context
def cli(ctx: click.Context, database_url: Optional[str], verbose: bool) -> None:
    """Payment-cycle calculator for tutoring groups."""
    settings = Settings.from_env()
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    store = create_store_from_env(database_url or settings.database_url)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["store"] = store
    ctx.obj["calculator"] = PaymentCycleCalculator(store, settings)


def parse_amount(value: Optional[str]) -> Optional[Decimal]:
    try:
        return to_decimal(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc))


def parse_date_option(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_datetime(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc))


@cli.command()
@click.argument("group_id")
@click.option("--session-fee", "session_fee", help="Price of one attended session")
@click.option("--threshold", "threshold", type=int, help="Sessions per payment cycle")
@click.option("--monthly-fee", "monthly_fee", help="Price of a full cycle, used when no session fee is set")
@click.option("--teacher", "teacher_id", help="Teacher of the group")
@click.option("--name", "name", help="Display name")
@click.pass_context
def group(
    ctx: click.Context,
    group_id: str,
    session_fee: Optional[str],
    threshold: Optional[int],
    monthly_fee: Optional[str],
    teacher_id: Optional[str],
    name: Optional[str],
) -> None:
    """Create or update a group's fee configuration."""
    if threshold is not None and threshold <= 0:
        raise click.BadParameter("Threshold must be positive")
    config = GroupPaymentConfig(
        group_id=group_id,
        session_fee=parse_amount(session_fee),
        payment_threshold=threshold,
        monthly_fee=parse_amount(monthly_fee),
    )
    _store(ctx).save_group(config, name=name, teacher_id=teacher_id)
    fee = config.effective_session_fee(ctx.obj["settings"].default_threshold)
    if fee is None:
        click.echo(f"Group {group_id} saved without fees; its students will show as up to date")
    else:
        click.echo(f"Group {group_id} saved ({fee:.2f} per session)")


@cli.command()
@click.argument("group_id")
@click.argument("student_ids", nargs=-1, required=True)
@click.option("--date", "session_date", help="Session date (YYYY-MM-DD), defaults to now")
@click.option("--absent", "absent", multiple=True, help="Student absent from the session")
@click.pass_context
def attend(
    ctx: click.Context,
    group_id: str,
    student_ids: Tuple[str, ...],
    session_date: Optional[str],
    absent: Tuple[str, ...],
) -> None:
    """Record a session's attendance and bill students who completed a cycle."""
    store = _store(ctx)
    session_id = store.record_session(group_id, parse_date_option(session_date) or utcnow())
    for student_id in student_ids:
        store.record_attendance(session_id, student_id, ABSENT if student_id in absent else PRESENT)
    created = _calculator(ctx).refresh_group_payment_statuses(group_id)
    click.echo(f"Session {session_id} recorded; {created} pending payment(s) created")


@cli.command()
@click.argument("payment_id", type=int)
@click.option("--date", "paid_date", help="Payment date (YYYY-MM-DD), defaults to now")
@click.pass_context
def pay(ctx: click.Context, payment_id: int, paid_date: Optional[str]) -> None:
    """Mark a payment as paid."""
    try:
        payment = _store(ctx).mark_paid(payment_id, parse_date_option(paid_date))
    except PaymentNotFoundError as exc:
        raise click.BadParameter(str(exc))
    click.echo(f"Payment {payment.id} of {payment.amount:.2f} marked paid")


@cli.command()
@click.argument("student_id")
@click.argument("group_id")
@click.option("--no-promote", is_flag=True, help="Do not mark stale pending payments as overdue")
@click.option("--output", "output", type=str, help="Output file path (.json)")
@click.pass_context
def status(ctx: click.Context, student_id: str, group_id: str, no_promote: bool, output: Optional[str]) -> None:
    """Show the payment status of a student in a group."""
    calculator = _calculator(ctx)
    if no_promote:
        result = calculator.compute_status(student_id, group_id)
    else:
        result = calculator.calculate_status(student_id, group_id)
    payments = _store(ctx).find_payments(student_id, group_id)
    if output:
        path = Path(output)
        export_to_json(
            path,
            {"status": result.to_dict(), "payments": [RecordStore.payment_to_dict(p) for p in payments]},
        )
        click.echo(f"Status exported to {path}")
    else:
        print_status(result)
        if payments:
            print_payments(payments)


@cli.command()
@click.argument("student_id")
@click.argument("group_id")
@click.option("--teacher", "teacher_id", help="Teacher recorded on the created payment")
@click.pass_context
def ensure(ctx: click.Context, student_id: str, group_id: str, teacher_id: Optional[str]) -> None:
    """Create a pending payment if the student completed an unpaid cycle."""
    if _calculator(ctx).ensure_pending_payment(student_id, group_id, teacher_id):
        click.echo("Pending payment created")
    else:
        click.echo("No payment needed")


@cli.command()
@click.argument("student_id")
@click.argument("group_id")
@click.option("--teacher", "teacher_id", help="Teacher of the group")
@click.pass_context
def enroll(ctx: click.Context, student_id: str, group_id: str, teacher_id: Optional[str]) -> None:
    """Enroll a student in a group and bill their first cycle."""
    _store(ctx).enroll_student(group_id, student_id, teacher_id)
    _calculator(ctx).ensure_initial_pending_payment(student_id, group_id, teacher_id)
    click.echo(f"Student {student_id} enrolled in group {group_id}")


@cli.command()
@click.argument("group_id")
@click.pass_context
def refresh(ctx: click.Context, group_id: str) -> None:
    """Create pending payments for every student of a group who needs one."""
    created = _calculator(ctx).refresh_group_payment_statuses(group_id)
    click.echo(f"{created} pending payment(s) created")


@cli.command()
@click.argument("group_id")
@click.pass_context
def promote(ctx: click.Context, group_id: str) -> None:
    """Mark pending payments past their grace period as overdue."""
    promoted = _calculator(ctx).promote_group_stale_payments(group_id)
    click.echo(f"{promoted} payment(s) marked overdue")


@cli.command("group-summary")
@click.argument("group_id")
@click.option("--output", "output", type=str, help="Output file path (.json)")
@click.pass_context
def group_summary(ctx: click.Context, group_id: str, output: Optional[str]) -> None:
    """Count a group's students by payment status."""
    summary_data = _calculator(ctx).summarize_group(group_id)
    if output:
        path = Path(output)
        export_to_json(path, {"summary": summary_data.to_dict()})
        click.echo(f"Summary exported to {path}")
    else:
        print_group_summary(summary_data)


@cli.command()
@click.argument("student_id")
@click.pass_context
def student(ctx: click.Context, student_id: str) -> None:
    """Show a student's payment status in every group."""
    overview = _calculator(ctx).student_overview(student_id)
    if not overview.results:
        click.echo(f"Student {student_id} is not enrolled in any group")
        return
    print_student_overview(overview)


if __name__ == "__main__":
    cli()
