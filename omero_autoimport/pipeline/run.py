"""One complete auto-import run over every configured watch directory.

For each directory, in order:
  1. load its suffix allow-list
  2. find new files (birth time inside the window) matching those suffixes
  3. resolve dataset and user from the descriptor next to each file
  4. import each file in place as that user
  5. annotate datasets with new descriptor + README files

A bad directory or a bad file is logged and recorded as an outcome; it
never stops the rest of the run. Only configuration problems detected
before scanning (``ConfigFatal``) abort a run.
"""

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from omero_autoimport.integrations.omero_cli import OmeroCli
from omero_autoimport.pipeline.annotator import SessionPool, annotate, discover_companion_sets
from omero_autoimport.pipeline.importer import import_item
from omero_autoimport.scanner.descriptor import DescriptorFields, Invalid, InvalidKind, resolve
from omero_autoimport.scanner.locator import TimeWindow, locate, read_birth_time
from omero_autoimport.scanner.watchlist import ConfigFatal, SuffixListError, load_suffixes
from omero_autoimport.schemas.ingest import (
    AdminCredential,
    CandidateFile,
    Outcome,
    OutcomeKind,
    OutcomeStatus,
    RunReport,
    Stage,
    WatchTarget,
    WorkItem,
)

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(hours=24)


class ScanSettings(BaseModel):
    """File naming and window settings shared by every watch directory."""

    model_config = ConfigDict(frozen=True)

    window: timedelta = DEFAULT_WINDOW
    suffix_file: str = ".suffixes.json"
    descriptor_name: str = "elabftw-metadata.json"
    companion_glob: str = "README*.html"
    fields: DescriptorFields = DescriptorFields()


def _not_processed(
    path: str | Path,
    stage: Stage,
    kind: OutcomeKind,
    reason: str,
    status: OutcomeStatus = OutcomeStatus.SKIPPED,
) -> Outcome:
    return Outcome(
        timestamp=datetime.now(UTC),
        path=str(path),
        stage=stage,
        status=status,
        kind=kind,
        reason=reason,
    )


def _descriptor_skip(path: Path, stage: Stage, invalid: Invalid, descriptor_name: str) -> Outcome:
    if invalid.kind == InvalidKind.MISSING:
        logger.warning("Missing %s next to %s, skipping.", descriptor_name, path)
    elif invalid.kind == InvalidKind.UNREADABLE:
        logger.warning("Unreadable %s next to %s, skipping: %s", descriptor_name, path, invalid.reason)
    else:
        logger.warning("Invalid descriptor for %s, skipping: %s", path, invalid.reason)
    return _not_processed(path, stage, OutcomeKind.FILE_SKIP, invalid.reason)


class _TargetRun:
    """State for processing a single watch directory within a run."""

    def __init__(
        self,
        target: WatchTarget,
        *,
        credential: AdminCredential,
        cli: OmeroCli,
        settings: ScanSettings,
        now: datetime,
        birth_time: Callable[[Path], float],
        imported: set[Path],
        annotated: set[Path],
    ) -> None:
        self.target = target
        self.credential = credential
        self.cli = cli
        self.settings = settings
        self.now = now
        self.birth_time = birth_time
        self.imported = imported
        self.annotated = annotated
        self.outcomes: list[Outcome] = []

    def import_pass(self) -> bool:
        """Import new files; returns False if the directory could not be scanned."""
        root = self.target.root
        logger.info("Looking for new image files in '%s'", root)
        found = locate(
            root,
            self.target.suffixes,
            self.settings.window,
            self.now,
            birth_time=self.birth_time,
        )
        if found.misconfigured:
            logger.warning("Cannot scan '%s' (%s), skipping.", root, found.misconfigured)
            self.outcomes.append(
                _not_processed(root, Stage.SCAN, OutcomeKind.TARGET_WARNING, found.misconfigured)
            )
            return False

        for skipped in found.skipped:
            self.outcomes.append(
                _not_processed(skipped.path, Stage.SCAN, OutcomeKind.FILE_SKIP, skipped.reason)
            )

        if not found.candidates:
            logger.info("No new files found in '%s'.", root)
            return True
        logger.info("Found %d new file(s) in '%s'.", len(found.candidates), root)

        for candidate in found.candidates:
            if candidate.path in self.imported:
                logger.info("Already handled '%s' in this run, not importing again.", candidate.path)
                continue
            self.imported.add(candidate.path)
            try:
                self.outcomes.append(self._import_one(candidate))
            except Exception as exc:
                logger.exception("Unexpected error importing '%s'", candidate.path)
                self.outcomes.append(
                    _not_processed(
                        candidate.path,
                        Stage.IMPORT,
                        OutcomeKind.OPERATION_FAILURE,
                        f"unexpected error: {exc}",
                        status=OutcomeStatus.FAILED,
                    )
                )
        return True

    def _import_one(self, candidate: CandidateFile) -> Outcome:
        sidecar = candidate.path.parent / self.settings.descriptor_name
        identity = resolve(sidecar, self.settings.fields)
        if isinstance(identity, Invalid):
            return _descriptor_skip(candidate.path, Stage.IMPORT, identity, self.settings.descriptor_name)
        return import_item(WorkItem(candidate=candidate, identity=identity), self.credential, self.cli)

    def annotation_pass(self) -> None:
        root = self.target.root
        discovery = discover_companion_sets(
            root,
            TimeWindow(self.settings.window, self.now),
            descriptor_name=self.settings.descriptor_name,
            companion_glob=self.settings.companion_glob,
            fields=self.settings.fields,
            birth_time=self.birth_time,
        )
        if discovery.misconfigured:
            logger.warning("Cannot scan '%s' for metadata (%s).", root, discovery.misconfigured)
            self.outcomes.append(
                _not_processed(root, Stage.ANNOTATION, OutcomeKind.TARGET_WARNING, discovery.misconfigured)
            )
            return

        for skipped in discovery.skipped:
            self.outcomes.append(
                _not_processed(skipped.path, Stage.ANNOTATION, OutcomeKind.FILE_SKIP, skipped.reason)
            )
        for descriptor in discovery.deferred:
            logger.info("No new README next to '%s' yet, annotation deferred.", descriptor.path)
        for bad in discovery.invalid:
            if bad.descriptor.path in self.annotated:
                continue
            self.annotated.add(bad.descriptor.path)
            self.outcomes.append(
                _descriptor_skip(bad.descriptor.path, Stage.ANNOTATION, bad.invalid, self.settings.descriptor_name)
            )

        sessions = SessionPool(self.cli, self.credential)
        for companion_set in discovery.sets:
            descriptor = companion_set.descriptor.path
            if descriptor in self.annotated:
                logger.info("Already annotated from '%s' in this run.", descriptor)
                continue
            self.annotated.add(descriptor)
            try:
                self.outcomes.extend(annotate(companion_set, self.cli, sessions))
            except Exception as exc:
                logger.exception("Unexpected error annotating from '%s'", descriptor)
                self.outcomes.append(
                    _not_processed(
                        descriptor,
                        Stage.ANNOTATION,
                        OutcomeKind.OPERATION_FAILURE,
                        f"unexpected error: {exc}",
                        status=OutcomeStatus.FAILED,
                    )
                )


def _scan_root(
    root: Path,
    *,
    credential: AdminCredential,
    cli: OmeroCli,
    settings: ScanSettings,
    now: datetime,
    birth_time: Callable[[Path], float],
    imported: set[Path],
    annotated: set[Path],
) -> list[Outcome]:
    try:
        suffixes = load_suffixes(root, settings.suffix_file)
    except SuffixListError as exc:
        logger.warning("Skipping %s: %s", root, exc)
        return [_not_processed(root, Stage.SCAN, OutcomeKind.TARGET_WARNING, str(exc))]

    target_run = _TargetRun(
        WatchTarget(root=root.absolute(), suffixes=suffixes),
        credential=credential,
        cli=cli,
        settings=settings,
        now=now,
        birth_time=birth_time,
        imported=imported,
        annotated=annotated,
    )
    try:
        if target_run.import_pass():
            target_run.annotation_pass()
    except Exception as exc:
        logger.exception("Unexpected error while processing '%s'", root)
        target_run.outcomes.append(
            _not_processed(
                root,
                Stage.SCAN,
                OutcomeKind.TARGET_WARNING,
                f"unexpected error: {exc}",
                status=OutcomeStatus.FAILED,
            )
        )
    return target_run.outcomes


def _check_credential(credential: AdminCredential | None) -> AdminCredential:
    if credential is None:
        raise ConfigFatal("no admin credentials")
    if not credential.user or not credential.password.get_secret_value():
        raise ConfigFatal("empty admin user or password")
    return credential


def run(
    watch_dirs: Sequence[str | Path],
    credential: AdminCredential | None,
    *,
    cli: OmeroCli,
    settings: ScanSettings | None = None,
    now: datetime | None = None,
    birth_time: Callable[[Path], float] = read_birth_time,
) -> RunReport:
    """Scan every watch directory once, importing and annotating new files.

    Raises:
        ConfigFatal: No watch paths, none of them exists, or the admin
            credential is missing. Nothing has been scanned at that point.
    """
    settings = settings or ScanSettings()
    now = now or datetime.now(UTC)
    credential = _check_credential(credential)
    if not watch_dirs:
        raise ConfigFatal("no watch paths configured")

    report = RunReport(started_at=now)
    valid: list[Path] = []
    for d in map(Path, watch_dirs):
        if d.is_dir():
            valid.append(d)
        else:
            logger.warning("Watch path '%s' does not exist or is not a directory, skipping.", d)
            report.outcomes.append(
                _not_processed(d, Stage.SCAN, OutcomeKind.TARGET_WARNING, "not a directory")
            )
    if not valid:
        raise ConfigFatal("no valid watch directories found")

    logger.info("===== Starting new-images upload run (window %s) =====", settings.window)
    imported: set[Path] = set()
    annotated: set[Path] = set()
    for root in valid:
        logger.info("--- Scanning '%s' ---", root)
        outcomes = _scan_root(
            root,
            credential=credential,
            cli=cli,
            settings=settings,
            now=now,
            birth_time=birth_time,
            imported=imported,
            annotated=annotated,
        )
        report.outcomes.extend(outcomes)
        logger.info("--- Finished '%s' (%d outcome(s)) ---", root, len(outcomes))

    report.finished_at = datetime.now(UTC)
    logger.info(
        "===== Done: imported=%d annotated=%d skipped=%d failed=%d =====",
        report.imported,
        report.annotated,
        report.skipped,
        report.failed,
    )
    return report
