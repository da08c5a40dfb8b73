import unittest
from datetime import timedelta

from venue_presence.models.presence_session import PresenceSession
from venue_presence.models.venue import Venue
from venue_presence.schemas.enums import VenueState
from venue_presence.services import entry, venue_store
from venue_presence.services.presence_state_machine import (
    LocationPing,
    next_ping_interval,
    no_session_outcome,
    on_ping,
    process_ping,
)

from venue_fixtures import (
    NOW,
    VENUE_ID,
    add_venue,
    location_at,
    make_session_factory,
    qr_payload,
)

USER_ID = "user-1"

INSIDE = LocationPing(is_inside=True, distance=10.0, accuracy=15.0)
NEARBY = LocationPing(is_inside=False, distance=80.0, accuracy=15.0)
FAR = LocationPing(is_inside=False, distance=400.0, accuracy=15.0)


def minutes(n):
    return NOW + timedelta(minutes=n)


class TestOnPing(unittest.TestCase):
    def setUp(self):
        self.session = PresenceSession.opened(VENUE_ID, USER_ID, f"{VENUE_ID}_recurring_event", NOW)

    def ping(self, location, at, venue_open=True):
        outcome = on_ping(self.session, location, at, venue_open)
        self.assertEqual(self.session.profile_visible, self.session.state == VenueState.active)
        self.assertEqual(outcome.profile_visible, outcome.new_state == VenueState.active)
        return outcome

    def step_away(self):
        for n in (1, 2, 3):
            outcome = self.ping(FAR, minutes(n))
        return outcome

    def test_inside_ping_keeps_active_and_accrues_time(self):
        outcome = self.ping(INSIDE, minutes(1))

        self.assertEqual(outcome.new_state, VenueState.active)
        self.assertFalse(outcome.state_changed)
        self.assertEqual(outcome.reason, "staying_active")
        self.assertEqual(self.session.total_duration_seconds, 60)
        self.assertEqual(self.session.last_ping_at, minutes(1))
        self.assertEqual(self.session.last_inside_ping_at, minutes(1))

    def test_two_outside_pings_do_not_pause(self):
        first = self.ping(FAR, minutes(1))
        second = self.ping(FAR, minutes(2))

        self.assertEqual(first.reason, "outside_ping_1")
        self.assertEqual(second.reason, "outside_ping_2")
        self.assertEqual(self.session.state, VenueState.active)
        self.assertEqual(self.session.consecutive_outside_pings, 2)

    def test_three_outside_pings_pause(self):
        outcome = self.step_away()

        self.assertEqual(outcome.new_state, VenueState.paused)
        self.assertTrue(outcome.state_changed)
        self.assertEqual(outcome.reason, "stepped_away")
        self.assertFalse(outcome.profile_visible)
        self.assertEqual(self.session.paused_at, minutes(3))
        self.assertEqual(self.session.recent_state_changes[-1]["reason"], "consecutive_outside_pings")

    def test_inside_ping_resets_outside_counter(self):
        self.ping(FAR, minutes(1))
        self.ping(FAR, minutes(2))
        self.ping(INSIDE, minutes(3))
        outcome = self.ping(FAR, minutes(4))

        self.assertEqual(outcome.reason, "outside_ping_1")
        self.assertEqual(self.session.state, VenueState.active)

    def test_paused_returns_on_inside_ping(self):
        self.step_away()
        outcome = self.ping(INSIDE, minutes(4))

        self.assertEqual(outcome.new_state, VenueState.active)
        self.assertTrue(outcome.state_changed)
        self.assertEqual(outcome.reason, "returned")
        self.assertIsNone(self.session.paused_at)
        self.assertEqual(self.session.consecutive_outside_pings, 0)

    def test_grace_resume_when_close(self):
        self.step_away()
        outcome = self.ping(NEARBY, minutes(8))

        self.assertEqual(outcome.reason, "grace_resume")
        self.assertEqual(outcome.new_state, VenueState.active)

    def test_stays_paused_when_far_during_grace(self):
        self.step_away()
        outcome = self.ping(FAR, minutes(8))

        self.assertEqual(outcome.reason, "staying_paused")
        self.assertEqual(outcome.new_state, VenueState.paused)
        self.assertFalse(outcome.state_changed)

    def test_grace_expiry_goes_inactive(self):
        self.step_away()
        outcome = self.ping(FAR, minutes(14))

        self.assertEqual(outcome.reason, "grace_expired")
        self.assertEqual(outcome.new_state, VenueState.inactive)
        self.assertTrue(outcome.state_changed)
        self.assertIsNone(self.session.paused_at)

    def test_paused_time_is_not_counted(self):
        self.step_away()
        self.ping(FAR, minutes(5))
        self.assertEqual(self.session.total_duration_seconds, 180)

    def test_inactive_reactivates_after_recent_join(self):
        self.step_away()
        self.ping(FAR, minutes(14))
        outcome = self.ping(INSIDE, minutes(16))

        self.assertEqual(outcome.reason, "reactivated")
        self.assertEqual(outcome.new_state, VenueState.active)
        self.assertEqual(self.session.consecutive_outside_pings, 0)

    def test_inactive_needs_qr_after_join_window(self):
        self.step_away()
        self.ping(FAR, minutes(14))
        outcome = self.ping(INSIDE, minutes(31))

        self.assertEqual(outcome.reason, "needs_qr_scan")
        self.assertEqual(outcome.new_state, VenueState.inactive)
        self.assertFalse(outcome.state_changed)

    def test_too_frequent_changes_nothing(self):
        self.ping(FAR, minutes(1))
        outcome = self.ping(FAR, minutes(1) + timedelta(seconds=30))

        self.assertEqual(outcome.reason, "too_frequent")
        self.assertFalse(outcome.state_changed)
        self.assertEqual(self.session.consecutive_outside_pings, 1)
        self.assertEqual(self.session.last_ping_at, minutes(1))

    def test_exactly_sixty_seconds_is_accepted(self):
        outcome = self.ping(INSIDE, NOW + timedelta(seconds=60))
        self.assertEqual(outcome.reason, "staying_active")

    def test_venue_closed_forces_inactive(self):
        outcome = self.ping(INSIDE, minutes(1), venue_open=False)

        self.assertEqual(outcome.reason, "venue_closed")
        self.assertEqual(outcome.new_state, VenueState.inactive)
        self.assertTrue(outcome.state_changed)
        self.assertFalse(self.session.profile_visible)

        again = self.ping(INSIDE, minutes(2), venue_open=False)
        self.assertEqual(again.reason, "venue_closed")
        self.assertFalse(again.state_changed)

    def test_venue_closed_wins_over_grace_resume(self):
        self.step_away()
        outcome = self.ping(NEARBY, minutes(5), venue_open=False)

        self.assertEqual(outcome.reason, "venue_closed")
        self.assertEqual(outcome.new_state, VenueState.inactive)

    def test_venue_closed_applies_even_when_too_frequent(self):
        outcome = self.ping(INSIDE, NOW + timedelta(seconds=10), venue_open=False)
        self.assertEqual(outcome.reason, "venue_closed")

    def test_history_is_capped(self):
        at = NOW
        for _ in range(8):
            for _ in range(3):
                at += timedelta(minutes=1)
                self.ping(FAR, at)
            at += timedelta(minutes=1)
            self.ping(INSIDE, at)

        changes = self.session.recent_state_changes
        self.assertEqual(len(changes), 10)
        self.assertEqual(changes[-1]["to"], "active")
        self.assertEqual(changes[-1]["timestamp"], at.isoformat())


class TestNextPingInterval(unittest.TestCase):
    def test_base_intervals(self):
        self.assertEqual(next_ping_interval(VenueState.active, 10, 15), 60)
        self.assertEqual(next_ping_interval(VenueState.paused, 10, 15), 120)
        self.assertEqual(next_ping_interval(VenueState.inactive, 10, 15), 300)

    def test_far_and_inaccurate_back_off(self):
        self.assertEqual(next_ping_interval(VenueState.paused, 400, 15), 180)
        self.assertEqual(next_ping_interval(VenueState.paused, 400, 150), 216)
        self.assertEqual(next_ping_interval(VenueState.active, 10, 150), 72)

    def test_no_session(self):
        outcome = no_session_outcome(FAR)
        self.assertEqual(outcome.reason, "no_session")
        self.assertEqual(outcome.new_state, VenueState.inactive)
        self.assertFalse(outcome.profile_visible)
        self.assertEqual(outcome.next_ping_interval, 450)


class TestProcessPing(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        add_venue(self.db)

    def tearDown(self):
        self.db.close()

    def join(self):
        issued = entry.issue_nonce(self.db, qr_payload(), location_at(10), USER_ID, "s", now=NOW)
        self.assertTrue(entry.verify_entry(self.db, issued.nonce, location_at(10), USER_ID, now=NOW).success)

    def ping(self, meters, at, accuracy=15.0):
        return process_ping(self.db, USER_ID, VENUE_ID, location_at(meters, accuracy=accuracy, when=at), now=at)

    def stored(self):
        return venue_store.get_session(self.db, VENUE_ID, USER_ID)

    def test_no_session(self):
        outcome = self.ping(10, minutes(1))
        self.assertEqual(outcome.reason, "no_session")
        self.assertIsNone(self.stored())

    def test_step_away_and_return_is_persisted(self):
        self.join()
        for n in (1, 2, 3):
            outcome = self.ping(300, minutes(n))
        self.assertEqual(outcome.reason, "stepped_away")
        self.assertEqual(self.stored().state, VenueState.paused)
        self.assertFalse(self.stored().profile_visible)

        outcome = self.ping(10, minutes(4))
        self.assertEqual(outcome.reason, "returned")
        self.assertEqual(self.stored().state, VenueState.active)
        self.assertEqual(self.stored().total_duration_seconds, 180)

    def test_too_frequent_is_not_persisted(self):
        self.join()
        self.ping(300, minutes(1))
        outcome = self.ping(300, minutes(1) + timedelta(seconds=20))

        self.assertEqual(outcome.reason, "too_frequent")
        self.assertEqual(self.stored().consecutive_outside_pings, 1)
        self.assertEqual(self.stored().last_ping_at, minutes(1))

    def test_inside_uses_effective_radius(self):
        self.join()
        self.assertEqual(self.ping(59, minutes(1)).reason, "staying_active")
        self.assertEqual(self.ping(61, minutes(2)).reason, "outside_ping_1")

    def test_disabled_event_hub_closes_session(self):
        self.join()
        venue = self.db.get(Venue, VENUE_ID)
        venue.event_hub_settings = {**venue.event_hub_settings, "enabled": False}
        self.db.commit()

        outcome = self.ping(10, minutes(1))
        self.assertEqual(outcome.reason, "venue_closed")
        self.assertEqual(self.stored().state, VenueState.inactive)


if __name__ == '__main__':
    unittest.main()
