"""HTTP tests for the v1 API using FastAPI's TestClient and an in-memory database."""

import threading
import unittest
from contextlib import contextmanager
from unittest.mock import patch

from db_support import (
    ACCOUNT,
    TODAY,
    arn,
    export_json,
    inspector_finding,
    make_orchestrator,
    make_session_factory,
)
from fastapi.testclient import TestClient

from vulntrail.core.config import settings
from vulntrail.core.database import get_db, get_read_db
from vulntrail.main import app
from vulntrail.services.errors import LockTimeoutError
from vulntrail.services.operations import OperationRegistry

PREFIX = settings.API_V1_PREFIX


def _upload_files(*files: tuple[str, bytes]) -> list[tuple[str, tuple[str, bytes, str]]]:
    return [("files", (name, content, "application/octet-stream")) for name, content in files]


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.Session = make_session_factory()

        def override_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_read_db] = override_db
        self._saved_state = (app.state.orchestrator, app.state.operations)
        self.orchestrator = make_orchestrator(self.Session)
        app.state.orchestrator = self.orchestrator
        app.state.operations = OperationRegistry()
        today_patch = patch("vulntrail.services.ingest.today_utc", return_value=TODAY)
        today_patch.start()
        self.addCleanup(today_patch.stop)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        app.state.orchestrator, app.state.operations = self._saved_state
        self.engine.dispose()

    def upload(self, *files: tuple[str, bytes], account_id: str | None = None, operation_id: str | None = None):
        data = {}
        if account_id:
            data["account_id"] = account_id
        if operation_id:
            data["operation_id"] = operation_id
        data = data or None
        return self.client.post(f"{PREFIX}/uploads", files=_upload_files(*files), data=data)


class TestUploads(ApiTestCase):
    def test_upload_batch(self) -> None:
        response = self.upload(
            ("02-01-2024.json", export_json(inspector_finding("B", last="2024-02-01T08:00:00Z"))),
            ("01-10-2024.json", export_json(inspector_finding("A"), inspector_finding("B"))),
        )
        self.assertEqual(response.status_code, 201, response.text)
        body = response.json()
        self.assertEqual(body["state"], "COMMITTED")
        self.assertEqual([f["filename"] for f in body["files"]], ["01-10-2024.json", "02-01-2024.json"])
        self.assertEqual(body["files"][0]["finding_count"], 2)
        self.assertEqual(body["files"][1]["fixed"]["total_fixed"], 1)

        status = self.client.get(f"{PREFIX}/uploads/{body['operation_id']}")
        self.assertEqual(status.status_code, 200)
        self.assertEqual(status.json()["state"], "COMMITTED")
        self.assertEqual(status.json()["files_done"], 2)

    def test_account_id_form_field(self) -> None:
        content = export_json(inspector_finding("A", account=None))
        response = self.upload(("01-10-2024.json", content), account_id="999988887777")
        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(response.json()["files"][0]["account_id"], "999988887777")

    def test_skipped_records_reported(self) -> None:
        bad = inspector_finding("B")
        del bad["severity"]
        response = self.upload(("01-10-2024.json", export_json(inspector_finding("A"), bad)))
        self.assertEqual(response.status_code, 201)
        item = response.json()["files"][0]
        self.assertEqual(item["skipped"], 1)
        self.assertEqual(item["diagnostics"][0]["index"], 2)

    def test_duplicate_is_422(self) -> None:
        content = export_json(inspector_finding("A"))
        self.assertEqual(self.upload(("01-10-2024.json", content)).status_code, 201)
        response = self.upload(("01-10-2024.json", content))
        self.assertEqual(response.status_code, 422)
        detail = response.json()["detail"]
        self.assertEqual(detail["error"], "DuplicateReportError")
        self.assertFalse(detail["retryable"])
        failed = self.client.get(f"{PREFIX}/uploads/{detail['operation_id']}").json()
        self.assertEqual(failed["state"], "FAILED")

    def test_unsupported_format_is_422(self) -> None:
        response = self.upload(("01-10-2024.txt", b"hello"))
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["filename"], "01-10-2024.txt")

    def test_lock_timeout_is_503(self) -> None:
        with patch.object(
            self.orchestrator.lock_manager,
            "hold",
            side_effect=LockTimeoutError("Timed out waiting for ingestion lock."),
        ):
            response = self.upload(("01-10-2024.json", export_json(inspector_finding("A"))))
        self.assertEqual(response.status_code, 503)
        self.assertTrue(response.json()["detail"]["retryable"])
        self.assertIn("Retry-After", response.headers)

    def test_missing_files_is_422(self) -> None:
        response = self.client.post(f"{PREFIX}/uploads", data={"account_id": ACCOUNT})
        self.assertEqual(response.status_code, 422)

    def test_unknown_operation(self) -> None:
        self.assertEqual(self.client.get(f"{PREFIX}/uploads/nope").status_code, 404)
        self.assertEqual(self.client.post(f"{PREFIX}/uploads/nope/cancel").status_code, 404)

    def test_cancel_finished_operation_conflicts(self) -> None:
        response = self.upload(("01-10-2024.json", export_json(inspector_finding("A"))))
        operation_id = response.json()["operation_id"]
        self.assertEqual(self.client.post(f"{PREFIX}/uploads/{operation_id}/cancel").status_code, 409)


class TestInFlightUploads(ApiTestCase):
    """Uploads whose batch is held at the account lock until the test releases it."""

    def setUp(self) -> None:
        super().setUp()
        self.waiting = threading.Event()
        self.release = threading.Event()
        real_hold = self.orchestrator.lock_manager.hold

        @contextmanager
        def gated_hold(db, accounts):
            self.waiting.set()
            self.release.wait(5)
            with real_hold(db, accounts):
                yield

        hold_patch = patch.object(self.orchestrator.lock_manager, "hold", gated_hold)
        hold_patch.start()
        self.addCleanup(hold_patch.stop)

    def tearDown(self) -> None:
        self.release.set()
        super().tearDown()

    def start_upload(self, operation_id: str) -> tuple[threading.Thread, dict]:
        outcome: dict = {}

        def post() -> None:
            outcome["response"] = self.upload(
                ("01-10-2024.json", export_json(inspector_finding("A"))),
                operation_id=operation_id,
            )

        worker = threading.Thread(target=post)
        worker.start()
        self.assertTrue(self.waiting.wait(5))
        return worker, outcome

    def test_poll_while_running(self) -> None:
        worker, outcome = self.start_upload("poll-0001")
        running = self.client.get(f"{PREFIX}/uploads/poll-0001")
        self.assertEqual(running.status_code, 200)
        self.assertEqual(running.json()["state"], "VALIDATING")
        self.assertEqual(running.json()["files_total"], 1)
        self.assertEqual(running.json()["files_done"], 0)

        self.release.set()
        worker.join(10)
        self.assertEqual(outcome["response"].status_code, 201, outcome["response"].text)
        self.assertEqual(outcome["response"].json()["operation_id"], "poll-0001")
        done = self.client.get(f"{PREFIX}/uploads/poll-0001").json()
        self.assertEqual(done["state"], "COMMITTED")
        self.assertEqual(done["files_done"], 1)

    def test_cancel_while_running(self) -> None:
        worker, outcome = self.start_upload("cancel-0001")
        cancelled = self.client.post(f"{PREFIX}/uploads/cancel-0001/cancel")
        self.assertEqual(cancelled.status_code, 202)

        self.release.set()
        worker.join(10)
        response = outcome["response"]
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["error"], "BatchCancelledError")
        self.assertEqual(self.client.get(f"{PREFIX}/uploads/cancel-0001").json()["state"], "FAILED")
        self.assertEqual(self.client.get(f"{PREFIX}/reports").json()["total"], 0)

    def test_reused_operation_id_conflicts(self) -> None:
        self.release.set()
        first = self.upload(("01-10-2024.json", export_json(inspector_finding("A"))), operation_id="same-id")
        self.assertEqual(first.status_code, 201)
        second = self.upload(("02-01-2024.json", export_json(inspector_finding("A"))), operation_id="same-id")
        self.assertEqual(second.status_code, 409)

    def test_operation_id_format_validated(self) -> None:
        self.release.set()
        response = self.upload(("01-10-2024.json", export_json(inspector_finding("A"))), operation_id="bad id/..")
        self.assertEqual(response.status_code, 422)


class TestReadEndpoints(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        response = self.upload(
            ("01-10-2024.json", export_json(inspector_finding("A", severity="CRITICAL"), inspector_finding("B"))),
            ("02-01-2024.json", export_json(inspector_finding("B", last="2024-02-01T08:00:00Z"))),
        )
        self.assertEqual(response.status_code, 201, response.text)

    def test_findings(self) -> None:
        response = self.client.get(f"{PREFIX}/findings", params={"severity": "high"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total"], 1)
        self.assertEqual(body["items"][0]["match_key"], arn("B"))

    def test_findings_page_size_limit(self) -> None:
        response = self.client.get(f"{PREFIX}/findings", params={"page_size": settings.MAX_PAGE_SIZE + 1})
        self.assertEqual(response.status_code, 422)

    def test_timeline_accepts_arn_with_slashes(self) -> None:
        response = self.client.get(f"{PREFIX}/findings/timeline/{arn('A')}")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["current_status"], "FIXED")
        self.assertEqual(body["history"][0]["fixed_date"], "2024-02-01")

    def test_fixed(self) -> None:
        response = self.client.get(f"{PREFIX}/fixed", params={"severity": "CRITICAL"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total"], 1)
        self.assertEqual(body["summary"]["by_severity"]["CRITICAL"], 1)
        self.assertEqual(body["items"][0]["days_active"], 22)

    def test_reports(self) -> None:
        response = self.client.get(f"{PREFIX}/reports", params={"account_id": ACCOUNT})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total"], 2)
        self.assertEqual(body["items"][0]["report_run_date"], "2024-02-01")
        self.assertEqual(body["items"][0]["diff_summary"]["fixed_count"], 1)


class TestHealth(ApiTestCase):
    def test_health_reports_database(self) -> None:
        response = self.client.get(f"{PREFIX}/health")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["database"], "connected")
        self.assertEqual(body["dialect"], "sqlite")
        self.assertFalse(body["cross_process_locking"])


if __name__ == "__main__":
    unittest.main()
