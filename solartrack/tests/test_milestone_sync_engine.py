import asyncio
import unittest
from unittest.mock import patch

import aiosqlite

from solartrack.db.connection import transaction
from solartrack.db.repositories.documents import SqliteDocumentRepository
from solartrack.db.repositories.milestones import SqliteMilestoneAuditRepository
from solartrack.db.repositories.projects import SqliteProjectRepository
from solartrack.db.repositories.settings import SqliteMilestoneSettingsRepository
from solartrack.db.sqlite_migrations import run_migrations
from solartrack.db.sync_engine import (
    MilestonePersistenceError,
    MilestoneSyncEngine,
    ProjectNotFoundError,
    UnknownMilestoneError,
)
from solartrack.milestones.catalog import load_catalog
from solartrack.models import Document, Provenance


class _RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list = []

    async def notify(self, notifications) -> None:
        self.sent.extend(notifications)


class _FailingAuditRepository:
    async def record(self, record) -> None:
        raise RuntimeError("disk I/O error")


class MilestoneSyncEngineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        self.catalog = load_catalog()
        await run_migrations(self.db, self.catalog)

        self.projects = SqliteProjectRepository(self.db)
        self.documents = SqliteDocumentRepository(self.db)
        async with transaction(self.db):
            await self.projects.upsert("p1", "Rooftop A")
            await self.documents.upsert(
                "p1",
                Document(id="doc-1", typeCode="TPC_REVIEW", submittedAt="2024/03/01"),
            )
        self.notifier = _RecordingNotifier()
        self.engine = MilestoneSyncEngine(self.db, self.catalog, notifier=self.notifier)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def _project_row(self, project_id: str = "p1") -> dict:
        project = await self.projects.get(project_id)
        self.assertIsNotNone(project)
        return project

    async def test_sync_persists_changes_and_progress(self) -> None:
        outcome = await self.engine.sync_project("p1", "user-1")

        self.assertEqual(
            [(c.code, c.from_, c.to) for c in outcome.sync.changes],
            [
                ("ADMIN_01_CREATED", False, True),
                ("ADMIN_02_TAIPOWER_SUBMIT", False, True),
                ("ENG_01_SITE_SURVEY", False, True),
            ],
        )
        self.assertEqual(outcome.progress.adminProgress, 20.0)
        self.assertEqual(outcome.progress.engineeringProgress, 5.0)
        self.assertEqual(outcome.progress.overallProgress, 12.5)
        self.assertEqual(outcome.progress.adminStage, "取得台電審查意見書")
        self.assertEqual(outcome.progress.engineeringStage, "設計/圖說定稿")
        self.assertEqual(outcome.progress.constructionStatus, "已開工")

        row = await self._project_row()
        self.assertEqual(row["overall_progress"], 12.5)
        self.assertEqual(row["admin_stage"], "取得台電審查意見書")
        self.assertEqual(row["construction_status"], "已開工")

        states = {s.code: s for s in await self.engine.list_states("p1")}
        self.assertEqual(states["ADMIN_02_TAIPOWER_SUBMIT"].completedByActorId, "user-1")
        self.assertEqual(states["ENG_01_SITE_SURVEY"].provenance, Provenance.DERIVED)

        audit = await SqliteMilestoneAuditRepository(self.db).list_for_project("p1")
        self.assertEqual(len(audit), 3)
        self.assertTrue(all(record.action == "insert" for record in audit))

    async def test_second_sync_without_document_changes_is_empty(self) -> None:
        await self.engine.sync_project("p1", "user-1")
        second = await self.engine.sync_project("p1", "user-2")
        self.assertEqual(second.sync.changes, [])
        audit = await SqliteMilestoneAuditRepository(self.db).list_for_project("p1")
        self.assertEqual(len(audit), 3)

    async def test_issued_document_advances_next_milestone(self) -> None:
        await self.engine.sync_project("p1", "user-1")
        async with transaction(self.db):
            await self.documents.upsert(
                "p1",
                Document(id="doc-1", typeCode="TPC_REVIEW", submittedAt="2024-03-01", attachedFileCount=1),
            )
        outcome = await self.engine.sync_project("p1", "user-1")
        self.assertEqual([c.code for c in outcome.sync.changes], ["ADMIN_03_TAIPOWER_OPINION"])
        self.assertEqual(outcome.progress.adminProgress, 30.0)

    async def test_persistence_failure_rolls_back_and_plan_can_be_retried(self) -> None:
        with patch(
            "solartrack.db.sync_engine.get_milestone_audit_repository",
            return_value=_FailingAuditRepository(),
        ):
            with self.assertRaises(MilestonePersistenceError) as ctx:
                await self.engine.sync_project("p1", "user-1")

        self.assertEqual(await self.engine.list_states("p1"), [])
        row = await self._project_row()
        self.assertIsNone(row["progress_updated_at"])
        self.assertEqual(self.notifier.sent, [])

        plan = ctx.exception.plan
        self.assertEqual(len(plan.changes), 3)
        outcome = await self.engine.apply_plan(plan)
        self.assertEqual(outcome.progress.overallProgress, 12.5)
        self.assertEqual(len(await self.engine.list_states("p1")), 3)

    async def test_retried_plan_keeps_manual_edit_made_after_failure(self) -> None:
        with patch(
            "solartrack.db.sync_engine.get_milestone_audit_repository",
            return_value=_FailingAuditRepository(),
        ):
            with self.assertRaises(MilestonePersistenceError) as ctx:
                await self.engine.sync_project("p1", "user-1")

        await self.engine.set_manual_state(
            "p1", "ADMIN_02_TAIPOWER_SUBMIT", is_completed=False, actor_id="admin", note="withdrawn"
        )
        outcome = await self.engine.apply_plan(ctx.exception.plan)

        self.assertNotIn("ADMIN_02_TAIPOWER_SUBMIT", [c.code for c in outcome.sync.changes])
        self.assertIn("ADMIN_02_TAIPOWER_SUBMIT", outcome.sync.unsynced)
        states = {s.code: s for s in await self.engine.list_states("p1")}
        self.assertFalse(states["ADMIN_02_TAIPOWER_SUBMIT"].isCompleted)
        self.assertEqual(states["ADMIN_02_TAIPOWER_SUBMIT"].provenance, Provenance.MANUAL)
        self.assertTrue(states["ADMIN_01_CREATED"].isCompleted)
        self.assertEqual(len(ctx.exception.plan.changes), 3)

    async def test_stale_plan_applied_after_sync_writes_nothing(self) -> None:
        plan = await self.engine.compute_plan("p1", "user-1")
        await self.engine.sync_project("p1", "user-1")

        outcome = await self.engine.apply_plan(plan)

        self.assertEqual(outcome.sync.changes, [])
        self.assertEqual(outcome.progress.overallProgress, 12.5)
        audit = await SqliteMilestoneAuditRepository(self.db).list_for_project("p1")
        self.assertEqual(len(audit), 3)

    async def test_manual_completion_racing_a_revoking_sync_is_kept(self) -> None:
        await self.engine.sync_project("p1", "user-1")
        async with transaction(self.db):
            await self.documents.upsert("p1", Document(id="doc-1", typeCode="TPC_REVIEW"))

        await asyncio.gather(
            self.engine.sync_project("p1", "user-1"),
            self.engine.set_manual_state(
                "p1", "ADMIN_02_TAIPOWER_SUBMIT", is_completed=True, actor_id="admin", note="paper copy"
            ),
        )

        states = {s.code: s for s in await self.engine.list_states("p1")}
        submit = states["ADMIN_02_TAIPOWER_SUBMIT"]
        self.assertTrue(submit.isCompleted)
        self.assertEqual(submit.provenance, Provenance.MANUAL)
        self.assertEqual(submit.note, "paper copy")

        follow_up = await self.engine.sync_project("p1", "user-1")
        self.assertIn("ADMIN_02_TAIPOWER_SUBMIT", follow_up.sync.synced)
        self.assertNotIn("ADMIN_02_TAIPOWER_SUBMIT", [c.code for c in follow_up.sync.changes])

    async def test_overlapping_syncs_apply_transitions_once(self) -> None:
        first, second = await asyncio.gather(
            self.engine.sync_project("p1", "user-1"),
            self.engine.sync_project("p1", "user-2"),
        )

        self.assertEqual(sorted([len(first.sync.changes), len(second.sync.changes)]), [0, 3])
        self.assertEqual(first.progress.overallProgress, second.progress.overallProgress)
        audit = await SqliteMilestoneAuditRepository(self.db).list_for_project("p1")
        self.assertEqual(len(audit), 3)
        self.assertEqual(len(await self.engine.list_states("p1")), 3)

    async def test_sync_all_continues_past_failing_project(self) -> None:
        async with transaction(self.db):
            await self.projects.upsert("p2", "Rooftop B")
            await self.projects.upsert("p3", "Retired", is_deleted=True)
        original = self.engine.sync_project
        seen: list[str] = []

        async def flaky(project_id, actor_id=None, *, trigger="api"):
            seen.append(project_id)
            if project_id == "p2":
                raise RuntimeError("boom")
            return await original(project_id, actor_id, trigger=trigger)

        self.engine.sync_project = flaky
        stats = await self.engine.sync_all_projects("user-1", trigger="schedule")

        self.assertEqual(sorted(seen), ["p1", "p2"])
        self.assertEqual(stats["projects_total"], 2)
        self.assertEqual(stats["projects_synced"], 1)
        self.assertEqual(stats["projects_failed"], 1)
        self.assertEqual(stats["changes"], 3)
        self.assertEqual(stats["errors"], [{"projectId": "p2", "error": "boom"}])

        operation = await self.engine.get_operation(stats["operation_id"])
        self.assertEqual(operation["status"], "completed")
        self.assertEqual(operation["trigger"], "schedule")
        self.assertEqual(operation["counters"]["projectsFailed"], 1)

    async def test_manual_completion_survives_later_syncs(self) -> None:
        await self.engine.sync_project("p1", "user-1")
        state, summary = await self.engine.set_manual_state(
            "p1",
            "ADMIN_03_TAIPOWER_OPINION",
            is_completed=True,
            actor_id="admin",
            note="紙本意見書已收",
        )
        self.assertEqual(state.provenance, Provenance.MANUAL)
        self.assertEqual(summary.adminProgress, 30.0)

        outcome = await self.engine.sync_project("p1", "user-1")
        self.assertEqual(outcome.sync.changes, [])
        self.assertIn("ADMIN_03_TAIPOWER_OPINION", outcome.sync.synced)
        self.assertEqual(outcome.progress.adminProgress, 30.0)

        audit = await SqliteMilestoneAuditRepository(self.db).list_for_project("p1")
        self.assertEqual(audit[0].action, "manual")
        self.assertEqual(audit[0].actorId, "admin")

    async def test_manual_uncompletion_of_derived_milestone_is_recomputed(self) -> None:
        await self.engine.sync_project("p1", "user-1")
        await self.engine.set_manual_state("p1", "ADMIN_02_TAIPOWER_SUBMIT", is_completed=False, actor_id="admin")
        outcome = await self.engine.sync_project("p1", "user-1")
        self.assertEqual([(c.code, c.to) for c in outcome.sync.changes], [("ADMIN_02_TAIPOWER_SUBMIT", True)])

    async def test_legacy_rows_fall_back_to_note_markers(self) -> None:
        await self.db.executemany(
            """INSERT INTO project_milestones
               (project_id, milestone_code, is_completed, completed_at, note, provenance, updated_at)
               VALUES (?, ?, 1, '2023-12-01', ?, NULL, '2023-12-01')""",
            [
                ("p1", "ADMIN_03_TAIPOWER_OPINION", "手動勾選"),
                ("p1", "ADMIN_04_ENERGY_APPROVAL", "自動完成 (SSOT)"),
            ],
        )
        await self.db.commit()

        outcome = await self.engine.sync_project("p1", "user-1")
        self.assertIn("ADMIN_03_TAIPOWER_OPINION", outcome.sync.synced)
        changes = {c.code: c.to for c in outcome.sync.changes}
        self.assertNotIn("ADMIN_03_TAIPOWER_OPINION", changes)
        self.assertIs(changes["ADMIN_04_ENERGY_APPROVAL"], False)

    async def test_completion_notifications_follow_definition_settings(self) -> None:
        settings = SqliteMilestoneSettingsRepository(self.db)
        definitions = {d.code: d for d in await settings.list_definitions()}
        async with transaction(self.db):
            await settings.upsert_definition(
                definitions["ADMIN_02_TAIPOWER_SUBMIT"].model_copy(
                    update={"notifyOnComplete": True, "notifyRecipients": ["pm@example.com"]}
                )
            )

        await self.engine.sync_project("p1", "user-1")
        self.assertEqual(len(self.notifier.sent), 1)
        notification = self.notifier.sent[0]
        self.assertEqual(notification.code, "ADMIN_02_TAIPOWER_SUBMIT")
        self.assertEqual(notification.recipients, ["pm@example.com"])
        self.assertEqual(notification.actor_id, "user-1")

    async def test_admin_weights_change_rollup(self) -> None:
        settings = SqliteMilestoneSettingsRepository(self.db)
        weights = await settings.get_weights()
        async with transaction(self.db):
            await settings.set_weights(weights.model_copy(update={"adminWeightPct": 80, "engineeringWeightPct": 20}))
        outcome = await self.engine.sync_project("p1", "user-1")
        # 20.00 * 0.8 + 5.00 * 0.2
        self.assertEqual(outcome.progress.overallProgress, 17.0)

    async def test_unknown_project_and_code_are_rejected(self) -> None:
        async with transaction(self.db):
            await self.projects.upsert("gone", "Deleted", is_deleted=True)
        with self.assertRaises(ProjectNotFoundError):
            await self.engine.sync_project("missing")
        with self.assertRaises(ProjectNotFoundError):
            await self.engine.sync_project("gone")
        with self.assertRaises(UnknownMilestoneError):
            await self.engine.set_manual_state("p1", "NOT_A_MILESTONE", is_completed=True)

    async def test_recalculate_progress_uses_stored_states(self) -> None:
        await self.engine.sync_project("p1", "user-1")
        summary = await self.engine.recalculate_progress("p1")
        self.assertEqual(summary.overallProgress, 12.5)


if __name__ == "__main__":
    unittest.main()
