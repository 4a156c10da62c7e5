"""Import one work item into OMERO as the user named in its descriptor."""

import logging
from datetime import UTC, datetime

from omero_autoimport.integrations.omero_cli import OmeroCli, OmeroCommandError
from omero_autoimport.schemas.ingest import (
    AdminCredential,
    Outcome,
    OutcomeKind,
    OutcomeStatus,
    Stage,
    WorkItem,
)

logger = logging.getLogger(__name__)


def import_item(item: WorkItem, credential: AdminCredential, cli: OmeroCli) -> Outcome:
    """Run one in-place import and classify the result.

    Blocks until ``omero import`` exits. A failure is reported, never
    retried; the caller moves on to the next item.
    """
    path = item.candidate.path
    identity = item.identity
    logger.info(
        "Importing '%s' as '%s' -> dataset %d",
        path,
        identity.identity_name,
        identity.container_id,
    )

    try:
        cli.import_file(path, identity, credential)
    except OmeroCommandError as exc:
        logger.error("Failed to import '%s': %s", path, exc.detail)
        return Outcome(
            timestamp=datetime.now(UTC),
            path=str(path),
            stage=Stage.IMPORT,
            status=OutcomeStatus.FAILED,
            kind=OutcomeKind.OPERATION_FAILURE,
            reason=exc.detail,
            identity_name=identity.identity_name,
            container_id=identity.container_id,
        )

    logger.info("SUCCESS: imported '%s'", path)
    return Outcome(
        timestamp=datetime.now(UTC),
        path=str(path),
        stage=Stage.IMPORT,
        status=OutcomeStatus.IMPORTED,
        identity_name=identity.identity_name,
        container_id=identity.container_id,
    )
