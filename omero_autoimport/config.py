"""Single source of truth for all configuration.

All modules import from here, never from os.environ directly.

Values come from ``secrets/internal.env`` (or the SOPS-encrypted
``secrets/internal.env.enc`` when AUTOIMPORT_USE_SOPS=true). Process
environment variables take precedence over file values so a cron entry can
override a single setting.
"""

import os
from pathlib import Path

from omero_autoimport.secrets import load_dotenv_optional, load_secrets

PROJECT_ROOT = Path(__file__).resolve().parent.parent

USE_SOPS = os.environ.get("AUTOIMPORT_USE_SOPS", "false").lower() == "true"


def _load(scope: str) -> dict[str, str | None]:
    """Load values for a given scope, environment overriding the file."""
    if USE_SOPS:
        values = load_secrets(PROJECT_ROOT / f"secrets/{scope}.env.enc")
    else:
        values = load_dotenv_optional(PROJECT_ROOT / f"secrets/{scope}.env")
    return {**values, **os.environ}


_internal = _load("internal")


def _get(key: str, default: str) -> str:
    value = _internal.get(key)
    return default if value is None else value


# --- Input files ---
WATCH_LIST_FILE: str = _get("AUTOIMPORT_WATCH_LIST_FILE", "/etc/omero-autoimport/watch_directories.json")
ADMIN_CRED_FILE: str = _get(
    "AUTOIMPORT_ADMIN_CRED_FILE", "/opt/omero/credentials_auto_in-place_import.json"
)
SUFFIX_FILE: str = _get("AUTOIMPORT_SUFFIX_FILE", ".suffixes.json")
METADATA_FILE: str = _get("AUTOIMPORT_METADATA_FILE", "elabftw-metadata.json")
README_GLOB: str = _get("AUTOIMPORT_README_GLOB", "README*.html")

# Dotted key paths inside the sidecar descriptor
DATASET_ID_KEY: str = _get(
    "AUTOIMPORT_DATASET_ID_KEY", "metafold_integration.external_links.omero.dataset_id"
)
USER_NAME_KEY: str = _get(
    "AUTOIMPORT_USER_NAME_KEY", "metafold_integration.external_links.omero.user_name"
)

# --- Scan window & run log ---
TIME_SPAN_SECONDS: int = int(_get("AUTOIMPORT_TIME_SPAN", "86400"))  # 24 hours
LOG_FILE: str = _get("AUTOIMPORT_LOG_FILE", "/var/log/omero_upload.log")

# --- OMERO CLI ---
OMERO_BIN: str = _get("OMERO_BIN", "/opt/omero/server/venv3/bin/omero")
OMERO_CLIENT_DIR: str = _get("OMERO_CLIENT_DIR", "/opt/omero/server/OMERO.server/lib/client")
OMERO_HOST: str = _get("OMERO_HOST", "localhost")
OMERO_RUN_AS: str = _get("OMERO_RUN_AS", "omero-server")
OMERO_WORKDIR: str = _get("OMERO_WORKDIR", "/tmp/omero")
OMERO_PARALLEL_UPLOAD: int = int(_get("OMERO_PARALLEL_UPLOAD", "4"))
OMERO_DEPTH: int = int(_get("OMERO_DEPTH", "10"))
OMERO_IMPORT_TIMEOUT: float = float(_get("OMERO_IMPORT_TIMEOUT", "3600"))
OMERO_COMMAND_TIMEOUT: float = float(_get("OMERO_COMMAND_TIMEOUT", "300"))
