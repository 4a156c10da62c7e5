"""Resolve the OMERO dataset and user for a file from its sidecar descriptor.

The descriptor is a JSON document (an eLabFTW export by default). Only two
scalar fields are read, at fixed dotted key paths; everything else in the
document is ignored.
"""

import json
import logging
import re
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from omero_autoimport.schemas.ingest import ImportIdentity

logger = logging.getLogger(__name__)

_DIGITS = re.compile(r"[0-9]+")


class DescriptorFields(BaseModel):
    """Dotted key paths of the two routing fields inside a descriptor."""

    model_config = ConfigDict(frozen=True)

    container_id: str = "metafold_integration.external_links.omero.dataset_id"
    identity_name: str = "metafold_integration.external_links.omero.user_name"


class InvalidKind(StrEnum):
    MISSING = "missing"
    UNREADABLE = "unreadable"
    INVALID = "invalid"


class Invalid(BaseModel):
    """Why a descriptor could not produce an ImportIdentity."""

    model_config = ConfigDict(frozen=True)

    kind: InvalidKind
    reason: str


def _lookup(document: object, dotted: str) -> object:
    """Walk ``document`` along ``dotted``; raise KeyError if any step is missing."""
    node = document
    for key in dotted.split("."):
        if not isinstance(node, dict) or key not in node:
            raise KeyError(dotted)
        node = node[key]
    return node


def _parse_container_id(value: object) -> int | None:
    # bool is an int subclass; true/false is never a dataset id
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and _DIGITS.fullmatch(value):
        return int(value)
    return None


def resolve(
    descriptor_path: str | Path, fields: DescriptorFields | None = None
) -> ImportIdentity | Invalid:
    """Read and validate the routing fields of a sidecar descriptor.

    Returns:
        An ImportIdentity, or an Invalid whose ``kind`` separates a missing
        file, an unreadable file, and a file with bad content.
    """
    fields = fields or DescriptorFields()
    path = Path(descriptor_path)

    if not path.is_file():
        return Invalid(kind=InvalidKind.MISSING, reason=f"missing descriptor {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        return Invalid(kind=InvalidKind.UNREADABLE, reason=f"cannot read descriptor {path}: {exc}")

    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        return Invalid(kind=InvalidKind.INVALID, reason=f"malformed JSON in {path}: {exc}")

    try:
        raw_id = _lookup(document, fields.container_id)
    except KeyError:
        return Invalid(kind=InvalidKind.INVALID, reason=f"no {fields.container_id} in {path}")
    try:
        raw_name = _lookup(document, fields.identity_name)
    except KeyError:
        return Invalid(kind=InvalidKind.INVALID, reason=f"no {fields.identity_name} in {path}")

    container_id = _parse_container_id(raw_id)
    if container_id is None:
        return Invalid(kind=InvalidKind.INVALID, reason=f"invalid dataset_id {raw_id!r} in {path}")

    name = raw_name.strip() if isinstance(raw_name, str) else ""
    if not name:
        return Invalid(kind=InvalidKind.INVALID, reason=f"empty user name {raw_name!r} in {path}")

    identity = ImportIdentity(container_id=container_id, identity_name=name)
    logger.debug("Resolved %s -> user=%s dataset=%d", path, name, container_id)
    return identity
