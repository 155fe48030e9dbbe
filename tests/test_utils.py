from datetime import datetime
from decimal import Decimal

import pytest

from tutor_payments.config import DEFAULT_DATABASE_URL, Settings
from tutor_payments.data_models import GroupPaymentConfig
from tutor_payments.utils import money, parse_datetime, to_decimal

def test_to_decimal():
    assert to_decimal("1,250.50") == Decimal("1250.50")
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(3) == Decimal(3)
    assert to_decimal(None) is None
    assert to_decimal("  ") is None
    with pytest.raises(ValueError):
        to_decimal("ten")

def test_money_rounds_half_up():
    assert money(Decimal("2.345")) == Decimal("2.35")
    assert money(Decimal("200") / Decimal("3")) == Decimal("66.67")

def test_parse_datetime():
    assert parse_datetime("2024-03-01") == datetime(2024, 3, 1)
    assert parse_datetime("2024-03-01T10:00:00+01:00") == datetime(2024, 3, 1, 9, 0)
    with pytest.raises(ValueError):
        parse_datetime("March 1st")


def test_effective_session_fee():
    assert GroupPaymentConfig("g", session_fee=Decimal("15")).effective_session_fee() == Decimal("15")
    derived = GroupPaymentConfig("g", session_fee=Decimal("0"), payment_threshold=8, monthly_fee=Decimal("200"))
    assert derived.effective_session_fee() == Decimal("25")
    assert GroupPaymentConfig("g", monthly_fee=Decimal("80")).effective_session_fee(default_threshold=4) == Decimal("20")
    assert GroupPaymentConfig("g").effective_session_fee() is None
    assert GroupPaymentConfig("g", payment_threshold=0).effective_threshold() == 8

def test_settings_from_env():
    settings = Settings.from_env(
        {
            "TUTOR_PAYMENTS_DATABASE_URL": "sqlite:///other.db",
            "TUTOR_PAYMENTS_DEFAULT_THRESHOLD": "6",
            "TUTOR_PAYMENTS_GRACE_DAYS": "15",
            "TUTOR_PAYMENTS_LOG_LEVEL": "info",
        }
    )
    assert settings.database_url == "sqlite:///other.db"
    assert settings.default_threshold == 6
    assert settings.grace_days == 15
    assert settings.log_level == "INFO"

    defaults = Settings.from_env({})
    assert defaults.database_url == DEFAULT_DATABASE_URL
    assert defaults.default_threshold == 8
    assert defaults.grace_days == 30

@pytest.mark.parametrize("value", ["0", "-3", "eight"])
def test_settings_reject_invalid_numbers(value):
    with pytest.raises(ValueError):
        Settings.from_env({"TUTOR_PAYMENTS_GRACE_DAYS": value})
