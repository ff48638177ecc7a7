"""PostgreSQL repository for milestone definitions and progress weights."""
from __future__ import annotations

import json

import asyncpg

from solartrack.db.repositories.settings import WEIGHTS_KEY, parse_weights, row_to_definition
from solartrack.models import MilestoneDefinition, WeightConfig


class PostgresMilestoneSettingsRepository:
    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def list_definitions(self, active_only: bool = False) -> list[MilestoneDefinition]:
        query = "SELECT * FROM milestone_definitions"
        if active_only:
            query += " WHERE is_active"
        query += " ORDER BY sort_order, code"
        rows = await self.db.fetch(query)
        return [row_to_definition(row) for row in rows]

    async def upsert_definition(self, definition: MilestoneDefinition) -> None:
        await self.db.execute(
            """INSERT INTO milestone_definitions
               (code, milestone_type, weight, sort_order, is_active, display_name,
                notify_on_complete, notify_recipients)
               VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb)
               ON CONFLICT(code) DO UPDATE SET
                 milestone_type=EXCLUDED.milestone_type, weight=EXCLUDED.weight,
                 sort_order=EXCLUDED.sort_order, is_active=EXCLUDED.is_active,
                 display_name=EXCLUDED.display_name,
                 notify_on_complete=EXCLUDED.notify_on_complete,
                 notify_recipients=EXCLUDED.notify_recipients""",
            definition.code,
            definition.milestoneType.value,
            definition.weight,
            definition.sortOrder,
            definition.isActive,
            definition.displayName,
            definition.notifyOnComplete,
            json.dumps(definition.notifyRecipients),
        )

    async def get_weights(self) -> WeightConfig:
        raw = await self.db.fetchval(
            "SELECT setting_value FROM progress_settings WHERE setting_key = $1", WEIGHTS_KEY
        )
        return parse_weights(raw)

    async def set_weights(self, weights: WeightConfig) -> None:
        await self.db.execute(
            """INSERT INTO progress_settings (setting_key, setting_value, updated_at)
               VALUES ($1, $2, now())
               ON CONFLICT(setting_key) DO UPDATE SET
                 setting_value=EXCLUDED.setting_value, updated_at=EXCLUDED.updated_at""",
            WEIGHTS_KEY, weights.model_dump_json(),
        )
