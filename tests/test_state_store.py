import tempfile
import unittest
from pathlib import Path

from fitcal.state_store import StateStore


class StateStoreTests(unittest.TestCase):
    def test_audit_events_round_trip_newest_first(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = StateStore(str(Path(temp_dir) / "data" / "state.db"))
            store.record_audit_event(event_id="42", action="create", details={"title": "Run"})
            store.record_audit_event(event_id="42", action="update", details={"fields": ["title"]})
            store.record_audit_event(event_id="", action="refetch", details={"count": 3})

            events = store.recent_audit_events(limit=10)
            self.assertEqual([item["action"] for item in events], ["refetch", "update", "create"])
            self.assertEqual(events[1]["details"], {"fields": ["title"]})

            creates = store.recent_audit_events(action="create")
            self.assertEqual(len(creates), 1)
            self.assertEqual(creates[0]["event_id"], "42")

    def test_meta(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = StateStore(str(Path(temp_dir) / "state.db"))
            self.assertIsNone(store.get_meta("last_refetch_at"))
            store.set_meta("last_refetch_at", "2025-03-10T07:00:00")
            store.set_meta("last_refetch_at", "2025-03-10T08:00:00")
            self.assertEqual(store.get_meta("last_refetch_at"), "2025-03-10T08:00:00")


if __name__ == "__main__":
    unittest.main()
