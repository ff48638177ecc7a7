import unittest

from solartrack.db.operations import OperationTracker


class OperationTrackerTests(unittest.IsolatedAsyncioTestCase):
    async def test_lifecycle_and_snapshot(self) -> None:
        tracker = OperationTracker()
        op_id = await tracker.start("milestone_sync_all", "*", trigger="schedule", metadata={"actorId": "ops"})
        await tracker.update(op_id, phase="projects", message="Syncing", progress={"current": 1, "total": 3})

        snapshot = await tracker.snapshot()
        self.assertEqual(snapshot["activeOperationCount"], 1)
        self.assertEqual(snapshot["activeOperations"][0]["progress"], {"current": 1, "total": 3})

        await tracker.finish(op_id, status="completed", stats={"projects_synced": 3})
        operation = await tracker.get(op_id)
        self.assertEqual(operation["status"], "completed")
        self.assertEqual(operation["phase"], "completed")
        self.assertEqual(operation["stats"], {"projects_synced": 3})
        self.assertTrue(operation["finishedAt"])
        self.assertEqual((await tracker.snapshot())["activeOperationCount"], 0)

    async def test_history_is_bounded_newest_first(self) -> None:
        tracker = OperationTracker(max_history=2)
        first = await tracker.start("milestone_sync", "p1")
        second = await tracker.start("milestone_sync", "p2")
        third = await tracker.start("milestone_sync", "p3")

        self.assertIsNone(await tracker.get(first))
        self.assertEqual([op["id"] for op in await tracker.list()], [third, second])

    async def test_unknown_ids_are_ignored(self) -> None:
        tracker = OperationTracker()
        await tracker.update("OP-missing", phase="x")
        await tracker.finish(None, status="failed", error="boom")
        self.assertIsNone(await tracker.get("OP-missing"))


if __name__ == "__main__":
    unittest.main()
