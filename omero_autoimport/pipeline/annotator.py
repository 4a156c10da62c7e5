"""Attach descriptor and README files to datasets as file annotations.

Runs as a separate pass after imports. Descriptors found in the scan window
are paired with README files that arrived next to them in the same window;
each file of a set is uploaded, wrapped as a FileAnnotation and linked to
the set's dataset. A descriptor without any README yet is deferred to a
later run.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from omero_autoimport.integrations.omero_cli import OmeroCli, OmeroCommandError, OmeroSession
from omero_autoimport.scanner.descriptor import DescriptorFields, Invalid, resolve
from omero_autoimport.scanner.locator import (
    NewFileFilter,
    SkippedPath,
    find_new_files,
    glob_matcher,
    read_birth_time,
)
from omero_autoimport.schemas.ingest import (
    AdminCredential,
    CandidateFile,
    CompanionSet,
    ImportIdentity,
    Outcome,
    OutcomeKind,
    OutcomeStatus,
    Stage,
)

logger = logging.getLogger(__name__)


class InvalidDescriptor(BaseModel):
    descriptor: CandidateFile
    invalid: Invalid


class CompanionDiscovery(BaseModel):
    """Result of the descriptor/README scan over one watch directory."""

    sets: list[CompanionSet] = Field(default_factory=list)
    deferred: list[CandidateFile] = Field(default_factory=list)
    invalid: list[InvalidDescriptor] = Field(default_factory=list)
    skipped: list[SkippedPath] = Field(default_factory=list)
    misconfigured: str | None = None


class SessionPool:
    """Impersonated sessions for one annotation pass, one per user.

    A session is opened on first use and reused for every later upload by
    the same user. A failed login is not cached.
    """

    def __init__(self, cli: OmeroCli, credential: AdminCredential) -> None:
        self._cli = cli
        self._credential = credential
        self._sessions: dict[str, OmeroSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, identity_name: str) -> OmeroSession:
        session = self._sessions.get(identity_name)
        if session is None:
            logger.info("Creating new session for user '%s'", identity_name)
            session = self._cli.login(identity_name, self._credential)
            self._sessions[identity_name] = session
        return session


def discover_companion_sets(
    root: str | Path,
    window: NewFileFilter,
    *,
    descriptor_name: str,
    companion_glob: str,
    fields: DescriptorFields | None = None,
    birth_time: Callable[[Path], float] = read_birth_time,
) -> CompanionDiscovery:
    """Find new descriptors under ``root`` and the new READMEs beside each.

    Descriptors are searched recursively; companions only in the
    descriptor's own directory.
    """
    found = find_new_files(root, glob_matcher(descriptor_name), window, birth_time=birth_time)
    discovery = CompanionDiscovery(skipped=found.skipped, misconfigured=found.misconfigured)

    for descriptor in found.candidates:
        companions = find_new_files(
            descriptor.path.parent,
            glob_matcher(companion_glob),
            window,
            recursive=False,
            birth_time=birth_time,
        )
        discovery.skipped.extend(companions.skipped)
        if not companions.candidates:
            discovery.deferred.append(descriptor)
            continue

        identity = resolve(descriptor.path, fields)
        if isinstance(identity, Invalid):
            discovery.invalid.append(InvalidDescriptor(descriptor=descriptor, invalid=identity))
            continue

        discovery.sets.append(
            CompanionSet(
                descriptor=descriptor,
                identity=identity,
                companions=tuple(companions.candidates),
            )
        )
    return discovery


def _outcome(
    file: CandidateFile,
    identity: ImportIdentity,
    status: OutcomeStatus,
    reason: str = "",
) -> Outcome:
    return Outcome(
        timestamp=datetime.now(UTC),
        path=str(file.path),
        stage=Stage.ANNOTATION,
        status=status,
        kind=OutcomeKind.OPERATION_FAILURE if status == OutcomeStatus.FAILED else OutcomeKind.NONE,
        reason=reason,
        identity_name=identity.identity_name,
        container_id=identity.container_id,
    )


def annotate(companion_set: CompanionSet, cli: OmeroCli, sessions: SessionPool) -> list[Outcome]:
    """Upload and link every file of a set to its dataset, descriptor first.

    Each file succeeds or fails on its own; a failure at any step for one
    file does not stop the next. A set without companions is left alone.
    """
    identity = companion_set.identity
    descriptor = companion_set.descriptor.path
    if not companion_set.companions:
        logger.info("No new README next to '%s' yet, deferring annotation", descriptor)
        return []

    logger.info(
        "Annotating dataset %d with metadata + %d README(s)",
        identity.container_id,
        len(companion_set.companions),
    )

    try:
        session = sessions.get(identity.identity_name)
    except OmeroCommandError as exc:
        logger.error("Cannot open session for '%s': %s", identity.identity_name, exc.detail)
        return [
            _outcome(f, identity, OutcomeStatus.FAILED, f"login: {exc.detail}")
            for f in companion_set.files
        ]

    outcomes = []
    for file in companion_set.files:
        try:
            logger.info("Uploading '%s'", file.path)
            original = cli.upload(session, file.path)
            annotation = cli.new_file_annotation(session, original)
            cli.link_annotation(session, identity.container_id, annotation)
        except OmeroCommandError as exc:
            logger.error("Failed to annotate dataset %d with '%s': %s", identity.container_id, file.path, exc)
            outcomes.append(_outcome(file, identity, OutcomeStatus.FAILED, str(exc)))
            continue
        except Exception as exc:
            logger.exception("Unexpected error annotating dataset %d with '%s'", identity.container_id, file.path)
            outcomes.append(_outcome(file, identity, OutcomeStatus.FAILED, f"unexpected error: {exc}"))
            continue
        logger.info("Linked %s ('%s') to Dataset:%d", annotation, file.path.name, identity.container_id)
        outcomes.append(_outcome(file, identity, OutcomeStatus.ANNOTATED))
    return outcomes
