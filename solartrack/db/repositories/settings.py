"""SQLite repository for milestone definitions and progress weights."""
from __future__ import annotations

import json
import logging
from typing import Any

import aiosqlite
from pydantic import ValidationError

from solartrack import config
from solartrack.models import MilestoneDefinition, WeightConfig

logger = logging.getLogger("solartrack.db")

WEIGHTS_KEY = "weights"


def default_weights() -> WeightConfig:
    return WeightConfig(
        adminWeightPct=config.DEFAULT_ADMIN_WEIGHT_PCT,
        engineeringWeightPct=config.DEFAULT_ENGINEERING_WEIGHT_PCT,
    )


def parse_weights(raw: Any) -> WeightConfig:
    if not raw:
        return default_weights()
    try:
        data = json.loads(raw) if isinstance(raw, str) else raw
        return WeightConfig(**data)
    except (TypeError, ValueError, ValidationError):
        logger.warning("Ignoring malformed weights setting %r", raw)
        return default_weights()


def _recipients(raw: Any) -> list[str]:
    if isinstance(raw, list):
        return [str(item) for item in raw]
    try:
        parsed = json.loads(raw or "[]")
    except (TypeError, ValueError):
        return []
    return [str(item) for item in parsed] if isinstance(parsed, list) else []


def row_to_definition(row: Any) -> MilestoneDefinition:
    data = dict(row)
    return MilestoneDefinition(
        code=data["code"],
        milestoneType=data["milestone_type"],
        weight=float(data.get("weight") or 0),
        sortOrder=int(data.get("sort_order") or 0),
        isActive=bool(data.get("is_active")),
        displayName=data.get("display_name") or "",
        notifyOnComplete=bool(data.get("notify_on_complete")),
        notifyRecipients=_recipients(data.get("notify_recipients")),
    )


class SqliteMilestoneSettingsRepository:
    """Definitions and weight settings. Writes do not commit; wrap them in ``transaction``."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def list_definitions(self, active_only: bool = False) -> list[MilestoneDefinition]:
        query = "SELECT * FROM milestone_definitions"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY sort_order, code"
        async with self.db.execute(query) as cur:
            rows = await cur.fetchall()
        return [row_to_definition(row) for row in rows]

    async def upsert_definition(self, definition: MilestoneDefinition) -> None:
        await self.db.execute(
            """INSERT INTO milestone_definitions
               (code, milestone_type, weight, sort_order, is_active, display_name,
                notify_on_complete, notify_recipients)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(code) DO UPDATE SET
                 milestone_type=excluded.milestone_type, weight=excluded.weight,
                 sort_order=excluded.sort_order, is_active=excluded.is_active,
                 display_name=excluded.display_name,
                 notify_on_complete=excluded.notify_on_complete,
                 notify_recipients=excluded.notify_recipients""",
            (
                definition.code,
                definition.milestoneType.value,
                definition.weight,
                definition.sortOrder,
                1 if definition.isActive else 0,
                definition.displayName,
                1 if definition.notifyOnComplete else 0,
                json.dumps(definition.notifyRecipients),
            ),
        )

    async def get_weights(self) -> WeightConfig:
        async with self.db.execute(
            "SELECT setting_value FROM progress_settings WHERE setting_key = ?",
            (WEIGHTS_KEY,),
        ) as cur:
            row = await cur.fetchone()
        return parse_weights(row[0] if row else None)

    async def set_weights(self, weights: WeightConfig) -> None:
        await self.db.execute(
            """INSERT INTO progress_settings (setting_key, setting_value, updated_at)
               VALUES (?, ?, datetime('now'))
               ON CONFLICT(setting_key) DO UPDATE SET
                 setting_value=excluded.setting_value, updated_at=excluded.updated_at""",
            (WEIGHTS_KEY, weights.model_dump_json()),
        )
