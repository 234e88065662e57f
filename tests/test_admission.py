"""Tests for upload admission: TTL grammar and ceilings."""

import uuid

import pytest

from ephemeral_drop.admission import AdmissionController, parse_duration, parse_flag
from ephemeral_drop.config import Settings
from ephemeral_drop.errors import PayloadTooLarge, ValidationError

WEEK = 7 * 86400


class TestParseDuration:
    @pytest.mark.parametrize(
        ("text", "seconds"),
        [
            ("45s", 45),
            ("30m", 1800),
            ("24h", 86400),
            ("7d", WEEK),
            (" 30m ", 1800),
        ],
    )
    def test_valid(self, text: str, seconds: int) -> None:
        assert parse_duration(text) == seconds

    @pytest.mark.parametrize(
        "text",
        ["0m", "-5h", "abc", "15", "", "m", "5w", "5 m", "+5m", "05m", "1.5h", "5mm", "5M"],
    )
    def test_invalid(self, text: str) -> None:
        with pytest.raises(ValidationError):
            parse_duration(text)


class TestParseFlag:
    def test_only_true_is_true(self) -> None:
        assert parse_flag("true") is True
        assert parse_flag("false") is False
        assert parse_flag("True") is False
        assert parse_flag("1") is False
        assert parse_flag(None) is False


class TestAdmissionController:
    @pytest.fixture
    def controller(self) -> AdmissionController:
        return AdmissionController(max_file_size=1000, max_ttl_seconds=WEEK)

    @pytest.mark.parametrize("text", ["30m", "24h", "7d"])
    def test_within_ceiling(self, controller: AdmissionController, text: str) -> None:
        assert controller.check_ttl(text) == parse_duration(text)

    def test_over_ceiling(self, controller: AdmissionController) -> None:
        with pytest.raises(ValidationError, match="maximum"):
            controller.check_ttl("8d")

    def test_missing_ttl(self, controller: AdmissionController) -> None:
        with pytest.raises(ValidationError):
            controller.check_ttl(None)

    def test_size_limit(self, controller: AdmissionController) -> None:
        controller.check_size(1000)
        with pytest.raises(PayloadTooLarge) as exc_info:
            controller.check_size(1001)
        assert exc_info.value.status_code == 413

    def test_admit_mints_ticket(self, controller: AdmissionController) -> None:
        ticket = controller.admit(size=10, expires_in="1m", burn_after_read=True, now=1_000)
        assert ticket.expires_at == 1_060
        assert ticket.burn_after_read is True
        assert uuid.UUID(ticket.id).version == 4
        assert len(ticket.delete_token) == 32
        assert ticket.delete_token not in ticket.id.replace("-", "")

    def test_admit_fresh_ids(self, controller: AdmissionController) -> None:
        first = controller.admit(10, "1m", False, now=0)
        second = controller.admit(10, "1m", False, now=0)
        assert first.id != second.id
        assert first.delete_token != second.delete_token

    def test_size_checked_before_ttl(self, controller: AdmissionController) -> None:
        with pytest.raises(PayloadTooLarge):
            controller.admit(size=5000, expires_in="bogus", burn_after_read=False, now=0)


class TestSettingsCeiling:
    def test_max_ttl_seconds(self) -> None:
        assert Settings(max_ttl="30d").max_ttl_seconds == 30 * 86400

    def test_invalid_max_ttl_fails(self) -> None:
        with pytest.raises(ValidationError):
            _ = Settings(max_ttl="forever").max_ttl_seconds
