import unittest
from datetime import timedelta
from unittest import mock

from fastapi.testclient import TestClient

from venue_presence.core.db import get_db
from venue_presence.core.errors import StoreUnavailable
from venue_presence.main import app

from venue_fixtures import NOW, VENUE_ID, add_venue, make_session_factory, north_of_venue, qr_payload

USER_ID = "user-1"
HEADERS = {"X-User-Id": USER_ID, "User-Agent": "venue-tests"}

CLOCKED_MODULES = (
    "venue_presence.services.entry",
    "venue_presence.services.presence_state_machine",
    "venue_presence.services.rate_limit",
    "venue_presence.api.routes.venue_events",
)


def _location(meters=10, accuracy=15.0):
    lat, lng = north_of_venue(meters)
    return {"lat": lat, "lng": lng, "accuracy": accuracy}


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.session_factory = make_session_factory()
        with self.session_factory() as db:
            add_venue(db)

        def override_get_db():
            db = self.session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        self.addCleanup(app.dependency_overrides.clear)

        self.now = NOW
        for module in CLOCKED_MODULES:
            patcher = mock.patch(f"{module}.utcnow", side_effect=lambda: self.now)
            patcher.start()
            self.addCleanup(patcher.stop)

        self.client = TestClient(app)

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)

    def request_nonce(self, meters=10, accuracy=15.0, headers=HEADERS):
        return self.client.post(
            "/v1/venue-events/nonce",
            json={"staticQRData": qr_payload(), "location": _location(meters, accuracy), "sessionId": "s-1"},
            headers=headers,
        )

    def verify(self, nonce, meters=10, accuracy=15.0, headers=HEADERS):
        return self.client.post(
            "/v1/venue-events/verify",
            json={"nonce": nonce, "location": _location(meters, accuracy)},
            headers=headers,
        )

    def ping(self, meters=10, accuracy=15.0):
        return self.client.post(
            "/v1/venue-events/ping",
            json={"venueId": VENUE_ID, "location": _location(meters, accuracy), "batteryLevel": 80},
            headers=HEADERS,
        )

    def join(self):
        nonce = self.request_nonce().json()["nonce"]
        self.assertTrue(self.verify(nonce).json()["success"])
        return nonce


class TestHealth(ApiTestCase):
    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})


class TestNonceEndpoint(ApiTestCase):
    def test_success(self):
        response = self.request_nonce()

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(len(body["nonce"]), 64)
        self.assertEqual(body["eventId"], f"{VENUE_ID}_recurring_event")
        self.assertEqual(body["venueRules"], "Be kind.")
        self.assertNotIn("reason", body)

    def test_outside_radius(self):
        body = self.request_nonce(meters=500).json()

        self.assertFalse(body["success"])
        self.assertEqual(body["reason"], "outside_radius")
        self.assertEqual(body["locationTips"], "Stand near the bar.")
        self.assertNotIn("nonce", body)

    def test_invalid_qr(self):
        response = self.client.post(
            "/v1/venue-events/nonce",
            json={"staticQRData": "{}", "location": _location(), "sessionId": "s-1"},
            headers=HEADERS,
        )
        self.assertEqual(response.json(), {"success": False, "reason": "invalid_qr"})

    def test_poor_accuracy_is_a_bad_request(self):
        response = self.request_nonce(accuracy=800)
        self.assertEqual(response.status_code, 400)

    def test_missing_location_is_invalid(self):
        response = self.client.post(
            "/v1/venue-events/nonce",
            json={"staticQRData": qr_payload(), "sessionId": "s-1"},
            headers=HEADERS,
        )
        self.assertEqual(response.status_code, 422)

    def test_out_of_range_coordinates_are_invalid(self):
        response = self.client.post(
            "/v1/venue-events/nonce",
            json={
                "staticQRData": qr_payload(),
                "location": {"lat": 123.0, "lng": 0.0, "accuracy": 10},
                "sessionId": "s-1",
            },
            headers=HEADERS,
        )
        self.assertEqual(response.status_code, 422)

    def test_requires_user(self):
        response = self.request_nonce(headers={})
        self.assertEqual(response.status_code, 401)

    def test_rate_limited(self):
        for _ in range(5):
            self.assertEqual(self.request_nonce().status_code, 200)

        response = self.request_nonce()
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json(), {"success": False, "reason": "rate_limited"})
        self.assertEqual(response.headers["Retry-After"], "60")

    def test_store_unavailable(self):
        with mock.patch(
            "venue_presence.api.routes.venue_events.entry.issue_nonce",
            side_effect=StoreUnavailable("save_token"),
        ):
            response = self.request_nonce()

        self.assertEqual(response.status_code, 503)
        self.assertEqual(
            response.json(),
            {"success": False, "reason": "store_unavailable", "retryable": True},
        )


class TestVerifyEndpoint(ApiTestCase):
    def test_success_then_replay(self):
        nonce = self.request_nonce().json()["nonce"]

        self.advance(20)
        first = self.verify(nonce)
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json(), {"success": True, "eventId": f"{VENUE_ID}_recurring_event"})

        self.advance(5)
        replay = self.verify(nonce).json()
        self.assertFalse(replay["success"])
        self.assertEqual(replay["reason"], "token_consumed")

    def test_uppercase_nonce_is_accepted(self):
        nonce = self.request_nonce().json()["nonce"]
        self.assertTrue(self.verify(nonce.upper()).json()["success"])

    def test_malformed_nonce_is_invalid(self):
        self.assertEqual(self.verify("not-a-nonce").status_code, 422)
        self.assertEqual(self.verify("g" * 64).status_code, 422)

    def test_unknown_nonce(self):
        body = self.verify("0" * 64).json()
        self.assertEqual(body["reason"], "invalid_token")

    def test_expired_nonce(self):
        nonce = self.request_nonce().json()["nonce"]
        self.advance(13 * 60)

        body = self.verify(nonce).json()
        self.assertEqual(body["reason"], "expired_token")
        self.assertTrue(body["requiresRescan"])

    def test_other_user_cannot_use_nonce(self):
        nonce = self.request_nonce().json()["nonce"]
        body = self.verify(nonce, headers={"X-User-Id": "user-2"}).json()
        self.assertEqual(body["reason"], "invalid_binding")

    def test_rate_limited(self):
        for _ in range(3):
            self.assertEqual(self.verify("0" * 64).status_code, 200)
        self.assertEqual(self.verify("0" * 64).status_code, 429)


class TestPingAndSession(ApiTestCase):
    def test_ping_without_session(self):
        body = self.ping().json()

        self.assertEqual(body["newState"], "inactive")
        self.assertEqual(body["reason"], "no_session")
        self.assertFalse(body["profileVisible"])
        self.assertEqual(body["userMessage"], "Please scan the venue QR code to join the event.")

    def test_session_not_found(self):
        response = self.client.get(f"/v1/venue-events/{VENUE_ID}/session", headers=HEADERS)
        self.assertEqual(response.status_code, 404)

    def test_step_away_and_return(self):
        self.join()

        reasons = []
        for _ in range(3):
            self.advance(60)
            reasons.append(self.ping(meters=300).json()["reason"])
        self.assertEqual(reasons, ["outside_ping_1", "outside_ping_2", "stepped_away"])

        self.advance(10)
        self.assertEqual(self.ping(meters=300).json()["reason"], "too_frequent")

        self.advance(60)
        body = self.ping(meters=10).json()
        self.assertEqual(body["reason"], "returned")
        self.assertEqual(body["newState"], "active")
        self.assertTrue(body["stateChanged"])
        self.assertTrue(body["profileVisible"])
        self.assertEqual(body["nextPingIntervalSeconds"], 60)

        session = self.client.get(f"/v1/venue-events/{VENUE_ID}/session", headers=HEADERS).json()
        self.assertEqual(session["state"], "active")
        self.assertTrue(session["profileVisible"])
        self.assertEqual(session["totalDurationSeconds"], 180)
        self.assertEqual(
            [(c["from"], c["to"], c["reason"]) for c in session["recentStateChanges"]],
            [
                ("inactive", "active", "qr_entry"),
                ("active", "paused", "consecutive_outside_pings"),
                ("paused", "active", "returned_inside"),
            ],
        )

    def test_invalid_battery_level(self):
        response = self.client.post(
            "/v1/venue-events/ping",
            json={"venueId": VENUE_ID, "location": _location(), "batteryLevel": 140},
            headers=HEADERS,
        )
        self.assertEqual(response.status_code, 422)


if __name__ == '__main__':
    unittest.main()
