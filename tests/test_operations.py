"""Tests for the ingest operation state machine and registry."""

import unittest

from vulntrail.services.errors import BatchCancelledError
from vulntrail.services.operations import IngestOperation, IngestState, OperationRegistry


class TestIngestOperation(unittest.TestCase):
    def test_happy_path_with_two_files(self) -> None:
        op = IngestOperation(files_total=2)
        op.transition(IngestState.VALIDATING)
        for name in ("a.json", "b.json"):
            op.transition(IngestState.ARCHIVING, current_file=name)
            op.transition(IngestState.REPLACING)
            op.transition(IngestState.DIFFING)
            op.file_done()
        op.transition(IngestState.COMMITTED)
        status = op.to_status()
        self.assertEqual(status.state, "COMMITTED")
        self.assertEqual(status.files_done, 2)
        self.assertEqual(status.current_file, "b.json")
        self.assertIsNotNone(status.finished_at)

    def test_invalid_transition(self) -> None:
        op = IngestOperation()
        with self.assertRaises(ValueError):
            op.transition(IngestState.REPLACING)

    def test_fail_from_any_state_and_stays_failed(self) -> None:
        op = IngestOperation()
        op.transition(IngestState.VALIDATING)
        op.fail("bad file")
        self.assertEqual(op.state, IngestState.FAILED)
        self.assertEqual(op.error, "bad file")
        op.fail("second error")
        self.assertEqual(op.error, "bad file")
        with self.assertRaises(ValueError):
            op.transition(IngestState.ARCHIVING)

    def test_cancel_only_before_writing(self) -> None:
        op = IngestOperation()
        op.transition(IngestState.VALIDATING)
        op.transition(IngestState.ARCHIVING)
        self.assertFalse(op.cancel())
        op.raise_if_cancelled()

        early = IngestOperation()
        self.assertTrue(early.cancel())
        self.assertTrue(early.cancel_requested)
        with self.assertRaises(BatchCancelledError):
            early.raise_if_cancelled()

    def test_accepted_cancel_blocks_archiving(self) -> None:
        op = IngestOperation(files_total=1)
        op.transition(IngestState.VALIDATING)
        self.assertTrue(op.cancel())
        with self.assertRaises(BatchCancelledError):
            op.transition(IngestState.ARCHIVING, current_file="a.json")
        self.assertEqual(op.state, IngestState.VALIDATING)
        self.assertIsNone(op.current_file)


class TestOperationRegistry(unittest.TestCase):
    def test_create_and_get(self) -> None:
        registry = OperationRegistry()
        op = registry.create(files_total=3)
        self.assertIs(registry.get(op.id), op)
        self.assertEqual(op.files_total, 3)
        self.assertIsNone(registry.get("missing"))

    def test_client_chosen_id(self) -> None:
        registry = OperationRegistry()
        op = registry.create(files_total=1, operation_id="nightly-0001")
        self.assertEqual(op.id, "nightly-0001")
        self.assertIs(registry.get("nightly-0001"), op)
        with self.assertRaises(ValueError):
            registry.create(files_total=1, operation_id="nightly-0001")

    def test_evicts_oldest_finished_only(self) -> None:
        registry = OperationRegistry(max_entries=2)
        running = registry.create(1)
        done = registry.create(1)
        done.fail("x")
        newest = registry.create(1)
        self.assertIsNotNone(registry.get(running.id))
        self.assertIsNone(registry.get(done.id))
        self.assertIsNotNone(registry.get(newest.id))


if __name__ == "__main__":
    unittest.main()
