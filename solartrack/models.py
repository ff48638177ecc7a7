"""Pydantic models for milestone sync inputs, stored state and outputs."""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CheckKind(str, Enum):
    ALWAYS_TRUE = "always_true"
    SUBMITTED = "submitted"
    ISSUED = "issued"
    ALL_PREREQUISITES = "all_prerequisites"


class MilestoneType(str, Enum):
    ADMIN = "admin"
    ENGINEERING = "engineering"


class Provenance(str, Enum):
    MANUAL = "manual"
    DERIVED = "derived"


# ── Inputs owned by collaborators ──────────────────────────────────

class Document(BaseModel):
    id: str
    typeCode: Optional[str] = None
    typeLabel: Optional[str] = None  # legacy free-text label
    submittedAt: Optional[str] = None
    issuedAt: Optional[str] = None
    attachedFileCount: int = 0
    externalFileRef: Optional[str] = None  # e.g. a Drive file id
    isCurrent: bool = True
    isDeleted: bool = False


class MilestoneRule(BaseModel):
    code: str
    triggerTypeCode: Optional[str] = None
    triggerTypeLabels: list[str] = Field(default_factory=list)  # ordered, first match wins
    checkKind: CheckKind
    prerequisites: list[str] = Field(default_factory=list)
    sticky: Optional[bool] = None  # None -> config.STICKY_MANUAL_COMPLETIONS
    description: str = ""


class CrossTrigger(BaseModel):
    sourceCode: str
    targetCode: str


class MilestoneDefinition(BaseModel):
    code: str
    milestoneType: MilestoneType
    weight: float = 0.0
    sortOrder: int = 0
    isActive: bool = True
    displayName: str = ""
    notifyOnComplete: bool = False
    notifyRecipients: list[str] = Field(default_factory=list)


class WeightConfig(BaseModel):
    adminWeightPct: float = 50.0
    engineeringWeightPct: float = 50.0


class ConstructionStatusRule(BaseModel):
    status: str
    anyOf: list[str] = Field(default_factory=list)


# ── Stored state ───────────────────────────────────────────────────

class ProjectMilestoneState(BaseModel):
    id: Optional[int] = None
    code: str
    isCompleted: bool = False
    completedAt: Optional[str] = None
    completedByActorId: Optional[str] = None
    note: Optional[str] = None
    provenance: Optional[Provenance] = None  # None on rows that predate the column
    updatedAt: Optional[str] = None


# ── Outputs ────────────────────────────────────────────────────────

class MilestoneChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    from_: bool = Field(alias="from")
    to: bool
    source: str = "rule"  # "rule" | "cross_trigger"
    reason: str = ""


class SyncResult(BaseModel):
    synced: list[str] = Field(default_factory=list)
    unsynced: list[str] = Field(default_factory=list)
    changes: list[MilestoneChange] = Field(default_factory=list)


class ProgressSummary(BaseModel):
    adminProgress: float = 0.0
    engineeringProgress: float = 0.0
    overallProgress: float = 0.0
    adminStage: Optional[str] = None
    engineeringStage: Optional[str] = None
    constructionStatus: Optional[str] = None


class ProjectSyncResult(BaseModel):
    projectId: str
    sync: SyncResult
    progress: ProgressSummary
    operationId: str = ""


class AuditRecord(BaseModel):
    projectId: str
    milestoneCode: str
    actorId: Optional[str] = None
    action: str  # "insert" | "update"
    oldValue: Optional[dict] = None
    newValue: dict = Field(default_factory=dict)
    createdAt: str = ""
