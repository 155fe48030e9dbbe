import json
from datetime import timedelta
from decimal import Decimal

import pytest
from click.testing import CliRunner

from conftest import attend, make_group

from tutor_payments.data_models import OVERDUE, PENDING
from tutor_payments.main import cli
from tutor_payments.store import RecordStore
from tutor_payments.utils import utcnow


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'payments.sqlite3'}"


@pytest.fixture
def file_store(db_url):
    store = RecordStore(db_url)
    make_group(store, "g1", session_fee="20", threshold=4)
    return store


def run(db_url, *args):
    result = CliRunner().invoke(cli, ["--database-url", db_url, *args])
    assert result.exit_code == 0, result.output
    return result.output


def test_status_command(db_url, file_store):
    attend(file_store, "g1", "s1", 4)

    output = run(db_url, "status", "s1", "g1")

    assert "EN_ATTENTE" in output
    assert "80.00" in output


def test_status_export_json(db_url, file_store, tmp_path):
    attend(file_store, "g1", "s1", 2)
    target = tmp_path / "status.json"

    run(db_url, "status", "s1", "g1", "--output", str(target))

    data = json.loads(target.read_text(encoding="utf-8"))
    assert data["status"]["current_status"] == "EN_ATTENTE"
    assert data["status"]["amount_due"] == 40.0
    assert data["payments"] == []


def test_status_export_requires_json(db_url, file_store, tmp_path):
    result = CliRunner().invoke(
        cli, ["--database-url", db_url, "status", "s1", "g1", "--output", str(tmp_path / "status.csv")]
    )
    assert result.exit_code != 0


def test_status_no_promote_leaves_payment_pending(db_url, file_store):
    attend(file_store, "g1", "s1", 4)
    file_store.create_payment("s1", "g1", Decimal("80"), utcnow() - timedelta(days=40))

    output = run(db_url, "status", "s1", "g1", "--no-promote")

    assert "EN_RETARD" in output
    assert file_store.find_payments("s1", "g1")[0].status == PENDING

    run(db_url, "status", "s1", "g1")
    assert file_store.find_payments("s1", "g1")[0].status == OVERDUE


def test_ensure_command(db_url, file_store):
    attend(file_store, "g1", "s1", 4)

    assert "Pending payment created" in run(db_url, "ensure", "s1", "g1", "--teacher", "t1")
    assert "No payment needed" in run(db_url, "ensure", "s1", "g1", "--teacher", "t1")


def test_enroll_command_bills_first_cycle(db_url, file_store):
    run(db_url, "enroll", "s9", "g1", "--teacher", "t1")

    assert [e.student_id for e in file_store.find_active_enrollments(group_id="g1")] == ["s9"]
    assert file_store.find_payments("s9", "g1")[0].amount == Decimal("80")


def test_refresh_and_promote_commands(db_url, file_store):
    file_store.enroll_student("g1", "s1", "t1")
    file_store.enroll_student("g1", "s2", "t1")
    attend(file_store, "g1", "s1", 4)
    attend(file_store, "g1", "s2", 4)
    file_store.create_payment("s2", "g1", Decimal("80"), utcnow() - timedelta(days=35))

    assert "1 pending payment(s) created" in run(db_url, "refresh", "g1")
    assert "1 payment(s) marked overdue" in run(db_url, "promote", "g1")


def test_group_summary_command(db_url, file_store, tmp_path):
    file_store.enroll_student("g1", "s1", "t1")
    attend(file_store, "g1", "s1", 3)

    assert "Pending            : 1 (60.00 due)" in run(db_url, "group-summary", "g1")

    target = tmp_path / "summary.json"
    run(db_url, "group-summary", "g1", "--output", str(target))
    summary = json.loads(target.read_text(encoding="utf-8"))["summary"]
    assert summary["students_pending"] == 1
    assert summary["pending_amount"] == 60.0


def test_student_command(db_url, file_store):
    assert "not enrolled" in run(db_url, "student", "s1")

    file_store.enroll_student("g1", "s1", "t1")
    attend(file_store, "g1", "s1", 1)
    output = run(db_url, "student", "s1")
    assert "Overall status     : EN_ATTENTE" in output
    assert "20.00" in output


def test_group_command(db_url, file_store):
    output = run(db_url, "group", "g2", "--monthly-fee", "1,200", "--threshold", "8", "--teacher", "t1")

    assert "150.00 per session" in output
    config = file_store.find_group_config("g2")
    assert config.monthly_fee == Decimal("1200")
    assert config.payment_threshold == 8

    assert "without fees" in run(db_url, "group", "g3")


def test_group_command_rejects_bad_values(db_url, file_store):
    runner = CliRunner()
    assert runner.invoke(cli, ["--database-url", db_url, "group", "g2", "--session-fee", "abc"]).exit_code != 0
    assert runner.invoke(cli, ["--database-url", db_url, "group", "g2", "--threshold", "0"]).exit_code != 0


def test_attend_command_bills_completed_cycles(db_url, file_store):
    file_store.enroll_student("g1", "s1", "t1")
    file_store.enroll_student("g1", "s2", "t1")
    attend(file_store, "g1", "s1", 3)
    attend(file_store, "g1", "s2", 3)

    output = run(db_url, "attend", "g1", "s1", "s2", "--absent", "s2", "--date", "2024-02-05")

    assert "1 pending payment(s) created" in output
    assert len(file_store.find_payments("s1", "g1")) == 1
    assert file_store.find_payments("s2", "g1") == []


def test_pay_command(db_url, file_store):
    payment = file_store.create_payment("s1", "g1", Decimal("80"), utcnow())

    assert "marked paid" in run(db_url, "pay", str(payment.id), "--date", "2024-02-10")

    paid = file_store.find_payments("s1", "g1")[0]
    assert paid.status == "PAID"
    assert paid.paid_date.date().isoformat() == "2024-02-10"

    missing = CliRunner().invoke(cli, ["--database-url", db_url, "pay", "999"])
    assert missing.exit_code != 0
