"""
Unit tests for configuration
"""

import logging
from datetime import datetime, UTC
from unittest.mock import patch

import pytest
from loguru import logger

from config.economy_config import (
    RewardPolicy,
    day_tag,
    month_tag,
    previous_month_tag,
)


def test_config_loading():
    """Test that configuration loads with sane defaults"""
    from config.config import (
        API_RATE_LIMIT,
        DB_LOCK_TIMEOUT_MS,
        DB_STATEMENT_TIMEOUT_MS,
        PI_VERIFY_TIMEOUT_SECONDS,
    )

    assert API_RATE_LIMIT
    assert DB_LOCK_TIMEOUT_MS > 0
    assert DB_STATEMENT_TIMEOUT_MS > 0
    assert 0 < PI_VERIFY_TIMEOUT_SECONDS <= 30


def test_validate_config_requires_admin_secret(monkeypatch):
    import config.config as cfg

    monkeypatch.setattr(cfg, "ADMIN_SECRET", "")
    with pytest.raises(ValueError, match="ADMIN_SECRET"):
        cfg.validate_config()

    monkeypatch.setattr(cfg, "ADMIN_SECRET", "s3cret")
    assert cfg.validate_config() is True


# ===========================
# CALENDAR TAGS
# ===========================


def test_calendar_tags():
    moment = datetime(2026, 1, 31, 23, 59, 59, tzinfo=UTC)

    assert day_tag(moment) == "2026-01-31"
    assert month_tag(moment) == "2026-01"


@pytest.mark.parametrize(
    "moment,expected",
    [
        (datetime(2026, 3, 1, 0, 5, tzinfo=UTC), "2026-02"),
        (datetime(2026, 1, 15, 12, 0, tzinfo=UTC), "2025-12"),
        (datetime(2024, 3, 31, 0, 0, tzinfo=UTC), "2024-02"),
    ],
)
def test_previous_month_tag(moment, expected):
    assert previous_month_tag(moment) == expected


# ===========================
# REWARD POLICY
# ===========================


def test_reward_policy_defaults():
    policy = RewardPolicy()

    assert policy.daily_login_bonus == 5
    assert policy.level_complete_bonus == 1
    assert policy.invite_bonus == 10
    assert policy.free_allowance == {"skip": 3, "hint": 3, "restart": 3}
    assert policy.consumable_cost == {"skip": 50, "hint": 50, "restart": 50}


def test_ad_reward_amount():
    policy = RewardPolicy()

    assert policy.ad_reward_amount(0) == 50
    assert policy.ad_reward_amount(48) == 2
    assert policy.ad_reward_amount(500) == 2
    assert RewardPolicy(ad_reward_decay=False).ad_reward_amount(500) == 50


def test_reward_policy_from_env(monkeypatch):
    """Test that economy numbers can be tuned through the environment"""
    monkeypatch.setenv("DAILY_LOGIN_BONUS", "7")
    monkeypatch.setenv("CONSUMABLE_COST", "25")
    monkeypatch.setenv("FREE_ALLOWANCE", "5")
    monkeypatch.setenv("AD_REWARD_DECAY", "false")
    monkeypatch.setenv("AD_COOLDOWN_SECONDS", "0")

    policy = RewardPolicy.from_env()

    assert policy.daily_login_bonus == 7
    assert policy.consumable_cost["hint"] == 25
    assert policy.free_allowance["restart"] == 5
    assert policy.ad_reward_decay is False
    assert policy.ad_cooldown_seconds == 0
    assert policy.level_complete_bonus == 1


# ===========================
# LOGGING
# ===========================


@pytest.fixture
def restore_loguru():
    yield
    logger.remove()


def test_setup_logging_file_sink_only_with_log_dir(tmp_path, monkeypatch, restore_loguru):
    import config.logging as log_cfg

    monkeypatch.setattr(log_cfg, "SENTRY_DSN", "")

    log_cfg.setup_logging(log_dir="")
    assert list(tmp_path.iterdir()) == []

    log_cfg.setup_logging(log_dir=str(tmp_path / "logs"))
    logger.warning("coin ledger ready")

    files = list((tmp_path / "logs").glob("pimaze_*.log"))
    assert len(files) == 1
    assert "coin ledger ready" in files[0].read_text(encoding="utf-8")
    assert logging.getLogger("sqlalchemy.engine").level == logging.ERROR


def test_errors_forwarded_to_sentry(monkeypatch, restore_loguru):
    import config.logging as log_cfg

    monkeypatch.setattr(log_cfg, "SENTRY_DSN", "https://key@sentry.example/1")
    with patch("config.logging.sentry_sdk") as sentry:
        log_cfg.setup_logging(log_dir="")
        logger.info("not forwarded")
        logger.error("month close failed")

    sentry.capture_message.assert_called_once_with("month close failed", level="error")
    sentry.capture_exception.assert_not_called()
