from datetime import timedelta
from urllib.parse import parse_qsl, urlencode

import pytest
from conftest import T0, TWILIO_TEST_TOKEN
from fastapi.testclient import TestClient

from villacare.database import get_db
from villacare.main import app
from villacare.models import Booking, BookingStatus, ProcessedMessage, SeriesFrequency, SeriesStatus
from villacare.routes import cron
from villacare.routes.twilio import EMPTY_TWIML, get_signature_verifier
from villacare.services.twilio_service import get_notifier
from villacare.webhook_security import TwilioSignatureVerifier, compute_twilio_signature

WEBHOOK_URL = "http://testserver/webhooks/twilio"


@pytest.fixture
def client(db, notifier):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_signature_verifier] = lambda: TwilioSignatureVerifier(TWILIO_TEST_TOKEN)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _post(client, params, token=TWILIO_TEST_TOKEN):
    raw_body = urlencode(params)
    signature = compute_twilio_signature(token, WEBHOOK_URL, parse_qsl(raw_body))
    return client.post(
        "/webhooks/twilio",
        content=raw_body,
        headers={
            "Content-Type": "application/x-www-form-urlencoded",
            "X-Twilio-Signature": signature,
        },
    )


class TestTwilioWebhook:
    def test_accept_reply(self, client, db, notifier, make_booking):
        booking = make_booking(with_tracker=True)

        response = _post(client, {"MessageSid": "SM1", "From": "whatsapp:+34600111222", "Body": "ACCEPT"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert response.text == EMPTY_TWIML
        db.expire_all()
        assert db.get(Booking, booking.id).status == BookingStatus.CONFIRMED
        assert len(notifier.sent) == 2

    def test_invalid_signature_is_rejected(self, client, db, make_booking):
        make_booking()

        response = _post(
            client,
            {"MessageSid": "SM1", "From": "whatsapp:+34600111222", "Body": "ACCEPT"},
            token="wrong-token",
        )

        assert response.status_code == 403
        assert db.query(ProcessedMessage).count() == 0

    def test_unknown_sender_still_acknowledged(self, client, notifier):
        response = _post(client, {"MessageSid": "SM2", "From": "whatsapp:+4915112345678", "Body": "YES"})

        assert response.status_code == 200
        assert notifier.sent == []

    def test_get_health_check(self, client):
        response = client.get("/webhooks/twilio")

        assert response.status_code == 200
        assert response.text == "Twilio WhatsApp Webhook"


class TestCronRoutes:
    def test_booking_reminders(self, client, db, make_booking, monkeypatch):
        make_booking(with_tracker=True, created_at=T0)
        monkeypatch.setattr(cron, "utcnow", lambda: T0 + timedelta(minutes=61))

        response = client.get("/cron/booking-reminders")

        assert response.status_code == 200
        body = response.json()
        assert body["reminded"] == 1
        assert body["processed"] == 1
        assert body["timestamp"] == (T0 + timedelta(minutes=61)).isoformat()

    def test_recurring_bookings(self, client, make_booking, monkeypatch):
        make_booking(
            status=BookingStatus.CONFIRMED,
            is_recurring=True,
            series_group_id="rec_route000000001",
            series_frequency=SeriesFrequency.WEEKLY,
            series_status=SeriesStatus.ACTIVE,
        )
        monkeypatch.setattr(cron, "utcnow", lambda: T0)

        response = client.get("/cron/recurring-bookings")

        assert response.status_code == 200
        assert response.json()["bookings_created"] == 4

    def test_secret_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(cron, "CRON_SECRET", "s3cret")

        assert client.get("/cron/booking-reminders").status_code == 401
        assert (
            client.get("/cron/booking-reminders", headers={"Authorization": "Bearer wrong"}).status_code
            == 401
        )
        assert (
            client.get("/cron/booking-reminders", headers={"Authorization": "Bearer s3cret"}).status_code
            == 200
        )
