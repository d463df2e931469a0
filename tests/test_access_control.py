"""Just-in-time disclosure of property access notes"""

from datetime import date, datetime, timedelta

import pytest
from cryptography.fernet import Fernet, InvalidToken

from villacare.clock import booking_start, booking_start_utc
from villacare.encryption import decrypt_access_notes, encrypt_access_notes
from villacare.services.access_control import (
    disclose,
    format_available_at,
    get_access_notes_for_ui,
)

BOOKING_AT = datetime(2026, 3, 10, 10, 0)
KEY = Fernet.generate_key().decode()
NOTES = "Key safe behind the olive tree, code 4821"


@pytest.fixture
def encrypted_notes():
    return encrypt_access_notes(NOTES, key=KEY)


def _decrypt(token: str) -> str:
    return decrypt_access_notes(token, key=KEY)


class TestDisclose:
    def test_denied_one_second_before_window(self, encrypted_notes):
        now = BOOKING_AT - timedelta(hours=24, seconds=1)
        result = disclose(now, BOOKING_AT, encrypted_notes, decrypt=_decrypt)

        assert result.can_view is False
        assert result.notes is None
        assert result.available_at == BOOKING_AT - timedelta(hours=24)

    def test_window_opens_exactly_24h_before(self, encrypted_notes):
        now = BOOKING_AT - timedelta(hours=24)
        result = disclose(now, BOOKING_AT, encrypted_notes, decrypt=_decrypt)

        assert result.can_view is True
        assert result.notes == NOTES
        assert result.available_at is None

    def test_still_visible_at_start_time(self, encrypted_notes):
        result = disclose(BOOKING_AT, BOOKING_AT, encrypted_notes, decrypt=_decrypt)

        assert result.can_view is True
        assert result.notes == NOTES

    def test_gone_after_start_time(self, encrypted_notes):
        now = BOOKING_AT + timedelta(seconds=1)
        result = disclose(now, BOOKING_AT, encrypted_notes, decrypt=_decrypt)

        assert result.can_view is False
        assert result.notes is None
        assert result.available_at is None

    def test_no_decryption_outside_window(self):
        def explode(_token):
            raise AssertionError("decrypt called outside the access window")

        early = disclose(BOOKING_AT - timedelta(days=3), BOOKING_AT, "ciphertext", decrypt=explode)
        late = disclose(BOOKING_AT + timedelta(days=1), BOOKING_AT, "ciphertext", decrypt=explode)

        assert early.can_view is False
        assert late.can_view is False

    def test_empty_notes_inside_window(self):
        result = disclose(BOOKING_AT - timedelta(hours=2), BOOKING_AT, None, decrypt=_decrypt)

        assert result.can_view is True
        assert result.notes is None

    def test_custom_window(self, encrypted_notes):
        now = BOOKING_AT - timedelta(hours=30)
        result = disclose(now, BOOKING_AT, encrypted_notes, window_hours=48, decrypt=_decrypt)

        assert result.can_view is True
        assert result.notes == NOTES

    def test_wrong_key_raises(self, encrypted_notes):
        other_key = Fernet.generate_key().decode()

        with pytest.raises(InvalidToken):
            disclose(
                BOOKING_AT,
                BOOKING_AT,
                encrypted_notes,
                decrypt=lambda token: decrypt_access_notes(token, key=other_key),
            )


class TestBookingStart:
    def test_combines_date_and_time(self):
        assert booking_start(date(2026, 3, 10), "14:30") == datetime(2026, 3, 10, 14, 30)

    @pytest.mark.parametrize("raw_time", [None, "", "later", "25:00", "10:75"])
    def test_unparseable_time_defaults_to_nine(self, raw_time):
        assert booking_start(date(2026, 3, 10), raw_time) == datetime(2026, 3, 10, 9, 0)

    def test_utc_conversion_follows_daylight_saving(self):
        # Madrid is UTC+1 in winter and UTC+2 in summer
        assert booking_start_utc(date(2026, 3, 10), "10:00") == datetime(2026, 3, 10, 9, 0)
        assert booking_start_utc(date(2026, 7, 1), "10:00") == datetime(2026, 7, 1, 8, 0)

    def test_property_timezone_overrides_default(self):
        assert booking_start_utc(date(2026, 7, 1), "10:00", "Europe/London") == datetime(2026, 7, 1, 9, 0)
        assert booking_start_utc(date(2026, 7, 1), "10:00", "UTC") == datetime(2026, 7, 1, 10, 0)


class TestFormatAvailableAt:
    def test_minutes(self):
        now = datetime(2026, 3, 9, 9, 30)
        assert format_available_at(datetime(2026, 3, 9, 10, 0), now) == "Available in 30 minutes"

    def test_hours(self):
        now = datetime(2026, 3, 9, 0, 0)
        assert format_available_at(datetime(2026, 3, 9, 10, 0), now) == "Available in 10 hours"

    def test_days(self):
        now = datetime(2026, 3, 6, 10, 0)
        assert format_available_at(datetime(2026, 3, 9, 10, 0), now) == "Available in 3 days"


class TestGetAccessNotesForUi:
    """``now`` is UTC; booking date and time are Madrid wall-clock time"""

    def test_countdown_message_before_window(self):
        # 10:00 CET is 09:00 UTC, so the window opens at 09:00 UTC the day before
        now = datetime(2026, 3, 9, 6, 0)
        result = get_access_notes_for_ui(now, date(2026, 3, 10), "10:00", "ciphertext")

        assert result.can_view is False
        assert result.available_at == datetime(2026, 3, 9, 9, 0)
        assert result.message == "Available in 3 hours"

    def test_past_booking_message(self):
        now = datetime(2026, 3, 11, 6, 0)
        result = get_access_notes_for_ui(now, date(2026, 3, 10), "10:00", "ciphertext")

        assert result.can_view is False
        assert result.message == "Access notes are no longer available for past bookings"

    def test_visible_with_configured_key(self):
        encrypted = encrypt_access_notes(NOTES)
        now = datetime(2026, 3, 10, 8, 0)
        result = get_access_notes_for_ui(now, date(2026, 3, 10), "10:00", encrypted)

        assert result.can_view is True
        assert result.notes == NOTES

    def test_hidden_once_local_start_passed_in_summer(self):
        # 10:00 CEST is 08:00 UTC; at 09:00 UTC (11:00 local) the clean has started
        encrypted = encrypt_access_notes(NOTES)

        before = get_access_notes_for_ui(datetime(2026, 7, 1, 8, 0), date(2026, 7, 1), "10:00", encrypted)
        after = get_access_notes_for_ui(datetime(2026, 7, 1, 9, 0), date(2026, 7, 1), "10:00", encrypted)

        assert before.can_view is True
        assert before.notes == NOTES
        assert after.can_view is False
        assert after.notes is None

    def test_window_opens_at_local_time_in_summer(self):
        encrypted = encrypt_access_notes(NOTES)

        early = get_access_notes_for_ui(
            datetime(2026, 6, 30, 7, 59, 59), date(2026, 7, 1), "10:00", encrypted
        )
        opened = get_access_notes_for_ui(datetime(2026, 6, 30, 8, 0), date(2026, 7, 1), "10:00", encrypted)

        assert early.can_view is False
        assert early.available_at == datetime(2026, 6, 30, 8, 0)
        assert opened.can_view is True
        assert opened.notes == NOTES

    def test_property_timezone(self):
        encrypted = encrypt_access_notes(NOTES)
        now = datetime(2026, 7, 1, 8, 30)

        madrid = get_access_notes_for_ui(now, date(2026, 7, 1), "10:00", encrypted)
        london = get_access_notes_for_ui(now, date(2026, 7, 1), "10:00", encrypted, tz_name="Europe/London")

        assert madrid.can_view is False
        assert london.can_view is True
