"""Schemas for the OMERO auto-import pipeline.

Covers watch targets, discovered files, resolved identities, work items,
companion sets, and the per-item outcomes a run aggregates.
"""

from datetime import datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class AdminCredential(BaseModel):
    """OMERO admin account used with ``--sudo`` to act as other users."""

    model_config = ConfigDict(frozen=True)

    user: str = Field(min_length=1)
    password: SecretStr


class WatchTarget(BaseModel):
    """One configured root directory plus its suffix allow-list."""

    model_config = ConfigDict(frozen=True)

    root: Path
    suffixes: tuple[str, ...]


class CandidateFile(BaseModel):
    """A file found inside the scan window."""

    model_config = ConfigDict(frozen=True)

    path: Path
    created_at: datetime


class ImportIdentity(BaseModel):
    """Routing metadata read from a sidecar descriptor."""

    model_config = ConfigDict(frozen=True)

    container_id: int = Field(ge=0, description="OMERO Dataset ID")
    identity_name: str = Field(min_length=1, description="OMERO user to import as")


class WorkItem(BaseModel):
    """A candidate file bound to the identity it is imported as."""

    model_config = ConfigDict(frozen=True)

    candidate: CandidateFile
    identity: ImportIdentity


class CompanionSet(BaseModel):
    """A descriptor plus the companion files (READMEs) found next to it."""

    model_config = ConfigDict(frozen=True)

    descriptor: CandidateFile
    identity: ImportIdentity
    companions: tuple[CandidateFile, ...] = ()

    @property
    def files(self) -> list[CandidateFile]:
        """Upload order: descriptor first, then companions."""
        return [self.descriptor, *self.companions]


class Stage(StrEnum):
    """Which part of the run produced an outcome."""

    SCAN = "scan"
    IMPORT = "import"
    ANNOTATION = "annotation"


class OutcomeStatus(StrEnum):
    IMPORTED = "imported"
    ANNOTATED = "annotated"
    SKIPPED = "skipped"
    FAILED = "failed"


class OutcomeKind(StrEnum):
    """Error taxonomy for non-successful outcomes."""

    NONE = ""
    TARGET_WARNING = "target_warning"
    FILE_SKIP = "file_skip"
    OPERATION_FAILURE = "operation_failure"


class Outcome(BaseModel):
    """Result of processing one watch target, file, or annotation upload."""

    timestamp: datetime
    path: str
    stage: Stage
    status: OutcomeStatus
    kind: OutcomeKind = OutcomeKind.NONE
    reason: str = ""
    identity_name: str = ""
    container_id: int | None = None


class RunReport(BaseModel):
    """Everything a single pipeline run produced, in processing order."""

    started_at: datetime
    finished_at: datetime | None = None
    outcomes: list[Outcome] = Field(default_factory=list)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def imported(self) -> int:
        return self._count(OutcomeStatus.IMPORTED)

    @property
    def annotated(self) -> int:
        return self._count(OutcomeStatus.ANNOTATED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)
