"""HTTP tests for main.py using FastAPI's TestClient"""

from fastapi.testclient import TestClient

from config import Settings
from conftest import FIXED_NOW, FailingProvider
from graph.workflow import BookingOrchestrator
from main import create_app

BOOKING = {
    "name": "Ona Petraitienė",
    "phone": "+37060000000",
    "date": "2026-02-26",
    "time": "10:00",
    "service": "Konsultacija",
}


def test_banner_and_health(client):
    root = client.get("/")
    assert root.status_code == 200
    assert root.text == "Sanadenta API is running"

    assert client.get("/health").json() == {"ok": True}


class TestFreeSlots:

    def test_consultation_day(self, client):
        response = client.get("/free-slots", params={"date": "2026-02-26", "service": "Konsultacija"})
        body = response.json()

        assert response.status_code == 200
        assert body["ok"] is True
        assert body["allowed"] is True
        assert body["durationMinutes"] == 15
        assert body["durationSource"] == "service"
        assert body["stepMinutes"] == 15
        assert body["workHours"] == {"start": "08:00", "end": "17:00"}
        assert len(body["slots"]) == 36
        assert body["slots"][0] == "08:00"
        assert body["slots"][-1] == "16:45"

    def test_explicit_duration(self, client):
        body = client.get("/free-slots", params={"date": "2026-02-26", "durationMinutes": "90"}).json()

        assert body["durationMinutes"] == 90
        assert body["durationSource"] == "explicit"
        assert body["slots"][-1] == "15:30"

    def test_closed_days_are_not_errors(self, client):
        body = client.get("/free-slots", params={"date": "2026-02-24"}).json()
        assert (body["allowed"], body["reason"], body["slots"]) == (False, "weekday", [])

        body = client.get("/free-slots", params={"date": "2026-02-23"}).json()
        assert (body["allowed"], body["reason"]) == (False, "surgeon-day")

    def test_bad_date(self, client):
        for params in ({}, {"date": "2026-02-30"}, {"date": "tomorrow"}):
            response = client.get("/free-slots", params=params)
            assert response.status_code == 400
            assert response.json()["reason"] == "bad-date"

    def test_bad_duration(self, client):
        for value in ("abc", "0", "30.5", "1000"):
            response = client.get("/free-slots", params={"date": "2026-02-26", "durationMinutes": value})
            assert response.status_code == 400
            assert response.json()["reason"] == "invalid-duration"


class TestCreateBooking:

    def test_created(self, client, provider):
        response = client.post("/create-booking", json=BOOKING)
        body = response.json()

        assert response.status_code == 200
        assert body["success"] is True
        assert body["eventId"] == "evt-0001"
        assert body["reservedUntil"] == "10:15"
        assert body["start"] == "2026-02-26T10:00:00+02:00"
        assert body["durationMinutes"] == 15
        assert body["htmlLink"].startswith("memory://")
        assert provider.events[0].summary == "Sanadenta - Konsultacija - Ona Petraitienė"

    def test_second_booking_for_same_slot_conflicts(self, client):
        assert client.post("/create-booking", json=BOOKING).status_code == 200

        response = client.post("/create-booking", json={**BOOKING, "name": "Jonas"})
        assert response.status_code == 409
        assert response.json() == {"error": "Time slot already booked"}

    def test_booked_slot_leaves_the_listing(self, client):
        client.post("/create-booking", json=BOOKING)
        slots = client.get("/free-slots", params={"date": "2026-02-26", "service": "Konsultacija"}).json()["slots"]

        assert "10:00" not in slots
        assert len(slots) == 35

    def test_missing_fields_never_reach_the_calendar(self, client, provider):
        payload = {k: v for k, v in BOOKING.items() if k != "phone"}
        first = client.post("/create-booking", json=payload)
        second = client.post("/create-booking", json=payload)

        assert first.status_code == second.status_code == 400
        assert first.json() == second.json()
        assert first.json()["reason"] == "missing-fields"
        assert "phone" in first.json()["error"]
        assert provider.calls == []

    def test_empty_body(self, client):
        response = client.post("/create-booking")
        assert response.status_code == 400
        assert response.json()["reason"] == "missing-fields"

    def test_non_object_body(self, client):
        response = client.post("/create-booking", json=["not", "an", "object"])
        assert response.status_code == 400

    def test_rejections(self, client, provider):
        cases = [
            ({"date": "2026-02-23"}, "surgeon-day"),
            ({"date": "2026-02-24"}, "weekday"),
            ({"time": "16:50"}, "outside-working-hours"),
            ({"time": "07:00"}, "outside-working-hours"),
        ]
        for override, reason in cases:
            response = client.post("/create-booking", json={**BOOKING, **override})
            assert response.status_code == 400
            assert response.json()["reason"] == reason
        assert provider.events == []

    def test_bad_time(self, client):
        response = client.post("/create-booking", json={**BOOKING, "time": "10.00"})
        assert response.status_code == 400
        assert response.json()["reason"] == "bad-time"


class TestApiKey:

    def make_client(self, orchestrator) -> TestClient:
        settings = Settings(_env_file=None, api_key="s3cret")
        return TestClient(create_app(settings=settings, orchestrator=orchestrator))

    def test_key_required_when_configured(self, orchestrator):
        client = self.make_client(orchestrator)

        response = client.get("/free-slots", params={"date": "2026-02-26"})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

        response = client.get("/free-slots", params={"date": "2026-02-26"}, headers={"x-api-key": "wrong"})
        assert response.status_code == 401

    def test_valid_key(self, orchestrator):
        client = self.make_client(orchestrator)
        response = client.get("/free-slots", params={"date": "2026-02-26"}, headers={"x-api-key": "s3cret"})
        assert response.status_code == 200

    def test_health_is_open(self, orchestrator):
        assert self.make_client(orchestrator).get("/health").status_code == 200


class TestProviderFailures:

    def test_unconfigured_provider_answers_503(self, settings):
        client = TestClient(create_app(settings=settings))

        assert client.get("/health").status_code == 200

        response = client.get("/free-slots", params={"date": "2026-02-26"})
        assert response.status_code == 503
        assert "GOOGLE_SERVICE_ACCOUNT_JSON" in response.json()["details"]

        assert client.post("/create-booking", json=BOOKING).status_code == 503

    def test_input_errors_win_over_missing_provider(self, settings):
        client = TestClient(create_app(settings=settings))
        response = client.post("/create-booking", json={"name": "Ona"})
        assert response.status_code == 400

    def test_provider_error_answers_502(self, config, settings):
        orchestrator = BookingOrchestrator(config, FailingProvider(), clock=lambda: FIXED_NOW)
        client = TestClient(create_app(settings=settings, orchestrator=orchestrator))

        response = client.get("/free-slots", params={"date": "2026-02-26"})
        assert response.status_code == 502
        assert response.json()["error"] == "Calendar provider error"
        assert response.json()["kind"] == "transient"

        response = client.post("/create-booking", json=BOOKING)
        assert response.status_code == 502
