import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient

from fitcal.models import RemoteOperationFailed
from fitcal.web_admin import create_app


LEG_DAY = {
    "id": "42",
    "title": "Leg day",
    "start": "2025-03-11T18:00:00",
    "end": "2025-03-11T19:30:00",
    "description": "Squats",
    "color": "#ef4444",
}


class WebAdminTests(unittest.TestCase):
    def setUp(self) -> None:
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        env = {
            "FITCAL_CONFIG_PATH": str(Path(temp_dir.name) / "config.yaml"),
            "FITCAL_STATE_PATH": str(Path(temp_dir.name) / "state.db"),
        }
        patcher = mock.patch.dict(os.environ, env)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = TestClient(create_app())
        self.context = self.client.app.state.context

    def test_healthz(self) -> None:
        response = self.client.get("/healthz")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_config_token_is_masked(self) -> None:
        response = self.client.put(
            "/api/config",
            json={"payload": {"remote": {"user_id": "u1", "api_token": "secret"}}},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["config"]["remote"]["api_token"], "***")
        self.assertEqual(self.context.store.config.api_token, "secret")
        self.assertEqual(self.client.get("/api/config").json()["remote"]["user_id"], "u1")

        rejected = self.client.put("/api/config", json={"payload": {"caldav": {"url": "x"}}})
        self.assertEqual(rejected.status_code, 400)

    def test_create_event(self) -> None:
        self.context.store.create_event = mock.Mock(
            return_value={"id": "42", "title": "Run", "start": "2025-03-10T07:00:00"}
        )

        response = self.client.post(
            "/api/events",
            json={"title": "Run", "date": "2025-03-10", "start_time": "07:00"},
        )

        self.assertEqual(response.status_code, 200)
        event = response.json()["event"]
        self.assertEqual(event["id"], "42")
        self.assertFalse(event["pending"])
        self.assertEqual(event["end"], "2025-03-10T08:00:00")
        self.assertEqual(event["display"]["time"], "07:00 - 08:00")
        payload = self.context.store.create_event.call_args.args[0]
        self.assertEqual(payload["start"], "2025-03-10T07:00:00")
        self.assertEqual(payload["color"], "#28375cff")
        self.assertEqual([item["id"] for item in self.client.get("/api/events").json()["events"]], ["42"])
        audit = self.client.get("/api/audit", params={"action": "create"}).json()["events"]
        self.assertEqual(audit[0]["event_id"], "42")

    def test_create_with_bad_date_is_rejected(self) -> None:
        self.context.store.create_event = mock.Mock()

        response = self.client.post("/api/events", json={"title": "Run", "date": "03/10/2025"})

        self.assertEqual(response.status_code, 400)
        self.context.store.create_event.assert_not_called()

    def test_unchanged_patch_sends_no_body(self) -> None:
        self.context.controller.merge_refetch_batch([LEG_DAY])
        self.context.store.update_event = mock.Mock(return_value=None)

        response = self.client.patch(
            "/api/events/42",
            json={
                "title": "Leg day",
                "date": "2025-03-11",
                "start_time": "18:00",
                "end_time": "19:30",
                "description": "Squats",
                "color": "#ef4444",
            },
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["changes"], {})
        self.assertEqual(response.json()["event"]["title"], "Leg day")
        self.context.store.update_event.assert_called_once_with("42", None)

    def test_patch_unknown_event(self) -> None:
        response = self.client.patch("/api/events/nope", json={"title": "Run", "date": "2025-03-10"})
        self.assertEqual(response.status_code, 404)

    def test_delete_failure_keeps_event(self) -> None:
        self.context.controller.merge_refetch_batch([LEG_DAY])
        self.context.store.delete_event = mock.Mock(side_effect=RemoteOperationFailed(500, "boom"))

        response = self.client.delete("/api/events/42")

        self.assertEqual(response.status_code, 502)
        self.assertIsNotNone(self.context.controller.get("42"))

    def test_delete_event(self) -> None:
        self.context.controller.merge_refetch_batch([LEG_DAY])
        self.context.store.delete_event = mock.Mock(return_value=None)

        response = self.client.delete("/api/events/42")

        self.assertEqual(response.json(), {"removed": True})
        self.assertIsNone(self.context.controller.get("42"))

    def test_event_form(self) -> None:
        self.context.controller.merge_refetch_batch([LEG_DAY])

        form = self.client.get("/api/events/42/form").json()

        self.assertEqual(
            form,
            {
                "title": "Leg day",
                "date": "2025-03-11",
                "start_time": "18:00",
                "end_time": "19:30",
                "offset": "",
                "description": "Squats",
                "color": "#ef4444",
            },
        )
        self.assertEqual(self.client.get("/api/events/missing/form").status_code, 404)

    def test_resubmitted_form_keeps_offset_event_unchanged(self) -> None:
        self.context.controller.merge_refetch_batch(
            [
                {
                    "id": "7",
                    "title": "Run",
                    "start": "2025-03-10T07:00:00-05:00",
                    "end": "2025-03-10T08:00:00-05:00",
                }
            ]
        )
        self.context.store.update_event = mock.Mock(return_value=None)
        form = self.client.get("/api/events/7/form").json()
        self.assertEqual(form["offset"], "-05:00")

        response = self.client.patch("/api/events/7", json=form)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["changes"], {})
        self.assertEqual(response.json()["event"]["start"], "2025-03-10T07:00:00-05:00")
        self.context.store.update_event.assert_called_once_with("7", None)

    def test_title_edit_does_not_invent_an_end(self) -> None:
        self.context.controller.merge_refetch_batch([{"id": "7", "title": "Run", "start": "2025-03-10T07:00:00"}])
        self.context.store.update_event = mock.Mock(return_value={"id": "7", "title": "Long run"})
        form = self.client.get("/api/events/7/form").json()
        form["title"] = "Long run"

        response = self.client.patch("/api/events/7", json=form)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["changes"], {"title": "Long run"})
        self.assertIsNone(response.json()["event"]["end"])
        self.context.store.update_event.assert_called_once_with("7", {"title": "Long run"})

    def test_refresh_trigger_and_status(self) -> None:
        self.context.scheduler.trigger_manual = mock.Mock()
        self.context.store.list_events = mock.Mock(return_value=[LEG_DAY])

        self.assertEqual(self.client.post("/api/refresh/run").json(), {"message": "refresh triggered"})
        self.context.scheduler.trigger_manual.assert_called_once_with()
        self.assertIsNone(self.client.get("/api/refresh/status").json()["last_refetch_at"])

        self.assertEqual(len(self.client.post("/api/events/refresh").json()["events"]), 1)

        status = self.client.get("/api/refresh/status").json()
        self.assertFalse(status["scheduler_running"])
        self.assertIsNotNone(status["last_refetch_at"])

    def test_calendar_status(self) -> None:
        self.context.store.external_status = mock.Mock(return_value=True)
        self.assertEqual(self.client.get("/api/calendar/status").json(), {"connected": True})


if __name__ == "__main__":
    unittest.main()
